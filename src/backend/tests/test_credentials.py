"""Tests for the encrypted credential store."""
import json

import pytest

from oblivion.errors import CredentialNotFound, DecryptionError
from oblivion.services.credentials import CredentialStore

# Fast KDF for tests; production default is 120k iterations
ITERATIONS = 1000


@pytest.fixture
def store(tmp_path):
    return CredentialStore(tmp_path / "credentials.json", iterations=ITERATIONS)


class TestRoundTrip:

    def test_save_and_load(self, store):
        store.save("openai", "sk-secret-123", "correct horse")
        assert store.load("openai", "correct horse") == "sk-secret-123"

    def test_wrong_passphrase(self, store):
        store.save("openai", "sk-secret-123", "correct horse")
        with pytest.raises(DecryptionError):
            store.load("openai", "battery staple")

    def test_unknown_provider(self, store):
        with pytest.raises(CredentialNotFound):
            store.load("anthropic", "whatever")

    def test_fresh_salt_and_iv_per_save(self, store):
        first = store.save("openai", "sk", "pw")
        second = store.save("openai", "sk", "pw")
        assert first.salt != second.salt
        assert first.iv != second.iv
        assert first.ciphertext != second.ciphertext

    def test_memory_only_store(self):
        store = CredentialStore(iterations=ITERATIONS)
        store.save("groq", "gsk", "pw")
        assert store.load("groq", "pw") == "gsk"
        assert store.path is None


class TestPersistence:

    def test_reload_from_disk(self, store, tmp_path):
        store.save("openai", "sk-secret", "pw")
        reopened = CredentialStore(tmp_path / "credentials.json", iterations=ITERATIONS)
        assert reopened.list_providers() == ["openai"]
        assert reopened.load("openai", "pw") == "sk-secret"

    def test_secret_never_written_in_plaintext(self, store, tmp_path):
        store.save("openai", "sk-very-secret", "pw")
        raw = (tmp_path / "credentials.json").read_text()
        assert "sk-very-secret" not in raw
        assert set(json.loads(raw)["openai"]) >= {"ciphertext", "salt", "iv", "kdf_iterations"}

    def test_blob_bound_to_provider(self, store, tmp_path):
        """A blob copied under another provider's name does not decrypt."""
        store.save("openai", "sk-secret", "pw")
        path = tmp_path / "credentials.json"
        data = json.loads(path.read_text())
        data["groq"] = dict(data["openai"], provider_id="groq")
        path.write_text(json.dumps(data))

        reopened = CredentialStore(path, iterations=ITERATIONS)
        with pytest.raises(DecryptionError):
            reopened.load("groq", "pw")

    def test_delete(self, store):
        store.save("openai", "sk", "pw")
        store.delete("openai")
        assert not store.has("openai")
        with pytest.raises(CredentialNotFound):
            store.delete("openai")


class TestSecretSource:

    def test_decrypts_on_every_call(self, store):
        store.save("openai", "sk-1", "pw")
        asked = []

        def passphrase():
            asked.append(True)
            return "pw"

        source = store.secret_source("openai", passphrase)
        assert source() == "sk-1"
        store.save("openai", "sk-2", "pw")
        assert source() == "sk-2"
        assert len(asked) == 2
