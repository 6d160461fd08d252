#!/usr/bin/env python3
"""
gentrust Core Crypto — Store Keys
===================================
Key derivation is a pluggable capability: the trust store only ever talks
to a `StoreCipher`, which asks its `KeyProvider` for a key at the moment
it needs one. Swapping, disabling or mocking key derivation never touches
the store's read/write logic.

Keys are 32 bytes derived with HKDF-SHA256 and encoded for Fernet
(AES-128-CBC + HMAC-SHA256, from the ``cryptography`` package).

Fail-closed rule: a provider that cannot produce a key returns None, and
the cipher raises KeyUnavailableError. Nothing ever falls back to
plaintext.

Import from: gentrust.core.crypto.keys
"""

from __future__ import annotations

import base64
import getpass
import logging
import os
from pathlib import Path
from typing import Optional

from cryptography.fernet import Fernet, InvalidToken
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.kdf.hkdf import HKDF

from gentrust.core.constants import IS_WINDOWS
from gentrust.core.types import KeyUnavailableError

__all__ = [
    'KeyProvider', 'NullKeyProvider', 'StaticKeyProvider', 'EnvKeyProvider',
    'MachineKeyProvider', 'StoreCipher', 'derive_key', 'key_provider_from_config',
]

logger = logging.getLogger("gentrust.core.crypto.keys")

KDF_SALT = b"gentrust-trust-store-v1"
KDF_INFO = b"gentrust store encryption"

MACHINE_ID_FILES = ("/etc/machine-id", "/var/lib/dbus/machine-id")


def derive_key(material: bytes, salt: bytes = KDF_SALT) -> bytes:
    """Derive a Fernet key (urlsafe base64 of 32 bytes) from raw material."""
    hkdf = HKDF(algorithm=hashes.SHA256(), length=32, salt=salt, info=KDF_INFO)
    return base64.urlsafe_b64encode(hkdf.derive(material))


class KeyProvider:
    """Interface: return a Fernet key, or None when no key is available."""

    name = "abstract"

    def get_key(self) -> Optional[bytes]:
        raise NotImplementedError


class NullKeyProvider(KeyProvider):
    name = "none"

    def get_key(self) -> Optional[bytes]:
        return None


class StaticKeyProvider(KeyProvider):
    """Key derived from a passphrase held in memory."""

    name = "static"

    def __init__(self, passphrase: str):
        if not passphrase:
            raise ValueError("passphrase must not be empty")
        self._key = derive_key(passphrase.encode('utf-8'))

    def get_key(self) -> Optional[bytes]:
        return self._key


class EnvKeyProvider(KeyProvider):
    """Key derived from a passphrase in an environment variable, read at
    call time so a missing variable fails the next load."""

    name = "env"

    def __init__(self, variable: str = "GENTRUST_STORE_KEY"):
        self.variable = variable

    def get_key(self) -> Optional[bytes]:
        value = os.environ.get(self.variable)
        if not value:
            return None
        return derive_key(value.encode('utf-8'))


class MachineKeyProvider(KeyProvider):
    """Key derived from the machine id plus the current user name.

    A store copied to another machine (or read by another account) cannot
    be decrypted there.
    """

    name = "machine"

    def __init__(self, machine_id_files=MACHINE_ID_FILES):
        self.machine_id_files = tuple(machine_id_files)

    def _machine_id(self) -> Optional[str]:
        for candidate in self.machine_id_files:
            try:
                value = Path(candidate).read_text(encoding='utf-8').strip()
            except OSError:
                continue
            if value:
                return value
        if IS_WINDOWS:
            try:
                import winreg
                with winreg.OpenKey(winreg.HKEY_LOCAL_MACHINE,
                                    r"SOFTWARE\Microsoft\Cryptography") as key:
                    value, _ = winreg.QueryValueEx(key, "MachineGuid")
                    return str(value)
            except OSError as e:
                logger.debug("MachineGuid unavailable: %s", e)
        return None

    def get_key(self) -> Optional[bytes]:
        machine_id = self._machine_id()
        if not machine_id:
            logger.warning("No machine id found; store key unavailable")
            return None
        try:
            user = getpass.getuser()
        except (KeyError, OSError):
            user = ""
        return derive_key(f"{machine_id}:{user}".encode('utf-8'))


class StoreCipher:
    """Fernet wrapper bound to a KeyProvider."""

    def __init__(self, provider: KeyProvider):
        self.provider = provider

    def _fernet(self) -> Fernet:
        key = self.provider.get_key()
        if not key:
            raise KeyUnavailableError(
                f"Store encryption key unavailable (provider: {self.provider.name})")
        return Fernet(key)

    def encrypt(self, plaintext: bytes) -> str:
        return self._fernet().encrypt(plaintext).decode('ascii')

    def decrypt(self, token: str) -> bytes:
        fernet = self._fernet()
        try:
            return fernet.decrypt(token.encode('ascii'))
        except (InvalidToken, ValueError) as e:
            raise KeyUnavailableError(
                "Store could not be decrypted: wrong key or tampered ciphertext") from e


def key_provider_from_config(config) -> Optional[KeyProvider]:
    """Pick the provider for a TrustConfig. None means encryption is off."""
    if not config.encryption_enabled:
        return None
    if os.environ.get(config.encryption_key_env):
        return EnvKeyProvider(config.encryption_key_env)
    return MachineKeyProvider()
