import pytest

from frontdesk.services.crypto_service import CredentialCipher, CredentialCipherError, build_cipher

from tests.conftest import TEST_KEY


class TestCredentialCipher:
    def test_token_format(self, cipher):
        token = cipher.encrypt("EAAG-secret-token")

        iv, tag, ciphertext = token.split(":")
        assert len(iv) == 32
        assert len(tag) == 32
        assert len(ciphertext) == len("EAAG-secret-token") * 2
        assert cipher.decrypt(token) == "EAAG-secret-token"

    def test_random_iv(self, cipher):
        assert cipher.encrypt("same") != cipher.encrypt("same")

    def test_tampered_ciphertext(self, cipher):
        iv, tag, ciphertext = cipher.encrypt("secret").split(":")
        tampered = f"{iv}:{tag}:{'00' * (len(ciphertext) // 2)}"

        with pytest.raises(CredentialCipherError):
            cipher.decrypt(tampered)

    def test_wrong_key(self, cipher):
        token = cipher.encrypt("secret")

        with pytest.raises(CredentialCipherError):
            CredentialCipher("ab" * 32).decrypt(token)

    @pytest.mark.parametrize("token", ["", "no-colons", "zz:zz:zz"])
    def test_malformed_tokens(self, cipher, token):
        with pytest.raises(CredentialCipherError):
            cipher.decrypt(token)

    @pytest.mark.parametrize("key", ["", "not-hex", "abcd"])
    def test_invalid_keys(self, key):
        with pytest.raises(CredentialCipherError):
            CredentialCipher(key)

    def test_empty_plaintext(self, cipher):
        with pytest.raises(CredentialCipherError):
            cipher.encrypt("")


class TestBuildCipher:
    def test_none_without_key(self):
        assert build_cipher(None) is None
        assert build_cipher("") is None

    def test_with_key(self):
        assert isinstance(build_cipher(TEST_KEY), CredentialCipher)
