"""
gentrust — Store key provider and cipher tests.
"""

import sys

import pytest

from gentrust.core.config import TrustConfig
from gentrust.core.crypto.keys import (
    EnvKeyProvider, MachineKeyProvider, NullKeyProvider, StaticKeyProvider,
    StoreCipher, derive_key, key_provider_from_config,
)
from gentrust.core.types import KeyUnavailableError


class TestKeyProviders:

    def test_derive_key_is_deterministic(self):
        assert derive_key(b"secret") == derive_key(b"secret")
        assert derive_key(b"secret") != derive_key(b"other")
        assert len(derive_key(b"secret")) == 44  # urlsafe base64 of 32 bytes

    def test_static_rejects_empty(self):
        with pytest.raises(ValueError):
            StaticKeyProvider("")

    def test_env_provider_reads_at_call_time(self, monkeypatch):
        provider = EnvKeyProvider("GENTRUST_TEST_KEY")
        monkeypatch.delenv("GENTRUST_TEST_KEY", raising=False)
        assert provider.get_key() is None
        monkeypatch.setenv("GENTRUST_TEST_KEY", "hunter2")
        assert provider.get_key() == derive_key(b"hunter2")

    def test_machine_provider_uses_machine_id(self, tmp_path):
        machine_id = tmp_path / "machine-id"
        machine_id.write_text("abc123\n")
        provider = MachineKeyProvider(machine_id_files=[str(machine_id)])
        assert provider.get_key() == provider.get_key()
        assert provider.get_key() is not None

    def test_machine_provider_without_id(self, tmp_path):
        provider = MachineKeyProvider(machine_id_files=[str(tmp_path / "missing")])
        # Windows falls back to the registry; elsewhere there is no key
        if sys.platform != 'win32':
            assert provider.get_key() is None

    def test_provider_from_config(self, tmp_path, monkeypatch):
        assert key_provider_from_config(TrustConfig(base_dir=tmp_path)) is None
        cfg = TrustConfig(base_dir=tmp_path, encryption_enabled=True)
        assert isinstance(key_provider_from_config(cfg), MachineKeyProvider)
        monkeypatch.setenv("GENTRUST_STORE_KEY", "pass")
        assert isinstance(key_provider_from_config(cfg), EnvKeyProvider)


class TestStoreCipher:

    def test_round_trip(self):
        cipher = StoreCipher(StaticKeyProvider("pw"))
        token = cipher.encrypt(b"payload")
        assert token != "payload"
        assert cipher.decrypt(token) == b"payload"

    def test_missing_key_fails_closed(self):
        cipher = StoreCipher(NullKeyProvider())
        with pytest.raises(KeyUnavailableError):
            cipher.encrypt(b"payload")

    def test_wrong_key(self):
        token = StoreCipher(StaticKeyProvider("right")).encrypt(b"payload")
        with pytest.raises(KeyUnavailableError):
            StoreCipher(StaticKeyProvider("wrong")).decrypt(token)

    def test_tampered_token(self):
        cipher = StoreCipher(StaticKeyProvider("pw"))
        token = cipher.encrypt(b"payload")
        tampered = token[:-4] + ("AAAA" if not token.endswith("AAAA") else "BBBB")
        with pytest.raises(KeyUnavailableError):
            cipher.decrypt(tampered)
