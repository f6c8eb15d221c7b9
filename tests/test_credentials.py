"""
Tests for salts, password hashes and the credential manager
"""
import pytest

from watchlist import crypto
from watchlist.credentials import answer_challenge, new_registration
from watchlist.errors import AlreadyExists, AuthDenied, NotFound, ParseError


class TestSaltsAndHashes:
    """Tests for the hashing primitives"""

    def test_salt_shape(self):
        salt = crypto.generate_salt()
        assert salt.startswith("$1$")
        assert len(salt) == crypto.SALT_LENGTH == 11
        assert all(ch in crypto.SALT_CHARS for ch in salt[3:])
        assert crypto.check_salt(salt) == salt

    def test_salts_differ(self):
        assert len({crypto.generate_salt() for _ in range(20)}) == 20

    @pytest.mark.parametrize("salt", ["", "$1$short", "$2$abcdefgh", "$1$abc:efgh", "$1$abcdefghi"])
    def test_bad_salts(self, salt):
        with pytest.raises(ParseError):
            crypto.check_salt(salt)

    def test_hash_is_reproducible(self):
        salt = "$1$abcdefgh"
        first = crypto.hash_password("secret1", salt)
        assert first == crypto.hash_password("secret1", salt)
        assert len(first) == crypto.HASH_LENGTH
        assert ":" not in first

    def test_hash_depends_on_password_and_salt(self):
        base = crypto.hash_password("secret1", "$1$abcdefgh")
        assert base != crypto.hash_password("secret2", "$1$abcdefgh")
        assert base != crypto.hash_password("secret1", "$1$abcdefgi")

    def test_verify_hash(self):
        assert crypto.verify_hash("abc", "abc")
        assert not crypto.verify_hash("abc", "abd")


class TestCredentialManager:
    """Tests for registration and the challenge/proof login"""

    def test_register_then_login_same_password(self, credential_manager):
        password_hash, salt = new_registration("secret1")
        credential_manager.register("alice", password_hash, salt)

        challenge = credential_manager.challenge("alice")
        assert challenge == salt
        proof = answer_challenge("secret1", challenge)
        assert proof == password_hash
        assert credential_manager.authenticate("alice", proof, challenge).username == "alice"

    def test_wrong_password_is_denied(self, credential_manager):
        credential_manager.register("alice", *new_registration("secret1"))
        salt = credential_manager.challenge("alice")
        with pytest.raises(AuthDenied):
            credential_manager.authenticate("alice", answer_challenge("wrong", salt), salt)

    def test_proof_with_other_salt_is_denied(self, credential_manager):
        credential_manager.register("alice", *new_registration("secret1"))
        other = "$1$zzzzzzzz"
        with pytest.raises(AuthDenied):
            credential_manager.authenticate("alice", answer_challenge("secret1", other), other)

    def test_unknown_user(self, credential_manager):
        with pytest.raises(NotFound):
            credential_manager.challenge("mallory")

    def test_duplicate_registration(self, credential_manager):
        credential_manager.register("alice", *new_registration("secret1"))
        with pytest.raises(AlreadyExists):
            credential_manager.register("alice", *new_registration("other"))

    def test_register_rejects_malformed_salt_or_hash(self, credential_manager):
        with pytest.raises(ParseError):
            credential_manager.register("alice", "h" * crypto.HASH_LENGTH, "salt")
        with pytest.raises(ParseError):
            credential_manager.register("alice", "short", crypto.generate_salt())
