"""
Crypto Layer — Encryption at rest for the trust store.

Classes:
- KeyProvider: Interface for anything able to hand out a store key
- MachineKeyProvider: Key derived from machine-specific material
- StaticKeyProvider / EnvKeyProvider: Key derived from a passphrase
- NullKeyProvider: No key (encryption disabled, or key deliberately absent)
- StoreCipher: Fernet encrypt/decrypt bound to a KeyProvider
"""
# Import from the submodule directly:
#   from gentrust.core.crypto.keys import StoreCipher, MachineKeyProvider
