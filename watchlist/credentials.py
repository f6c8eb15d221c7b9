"""
credentials.py - salted password registration and the two-step login.

Server side (CredentialManager):
    register(username, hash, salt)      store once, AlreadyExists on repeat
    challenge(username) -> salt         NotFound for unknown users
    authenticate(username, hash, salt)  AuthDenied on mismatch

Client side (new_registration / answer_challenge): the plaintext password
never leaves the client; only H(password, salt) does.

Known weakness, kept on purpose: the hash and the salt both travel over the
wire, so anyone who can read the channel can replay a login. The TLS layer
is the only thing standing in the way.
"""

import logging
from typing import Tuple

from . import crypto
from .errors import AuthDenied, ParseError
from .models import Credential
from .records import UserTable

logger = logging.getLogger(__name__)


class CredentialManager:
    def __init__(self, users: UserTable) -> None:
        self.users = users

    def register(self, username: str, password_hash: str, salt: str) -> Credential:
        """Store a new (hash, salt) pair; existing usernames are never overwritten."""
        crypto.check_salt(salt)
        if len(password_hash) != crypto.HASH_LENGTH:
            raise ParseError("password hash has the wrong length")
        credential = Credential(username, password_hash, salt)
        self.users.add(credential)
        return credential

    def challenge(self, username: str) -> str:
        """Salt the client needs to recompute its hash. Raises NotFound."""
        return self.users.lookup(username).salt

    def authenticate(self, username: str, password_hash: str, salt: str) -> Credential:
        """
        Compare the client's proof with the stored hash.

        The salt in the proof must be the one we handed out; a proof built
        on another salt is denied rather than reported as malformed.
        """
        credential = self.users.lookup(username)
        if salt != credential.salt or not crypto.verify_hash(credential.password_hash, password_hash):
            logger.warning("authentication failed for %r", username)
            raise AuthDenied(f"wrong password for {username!r}")
        logger.info("user %r authenticated", username)
        return credential


def new_registration(password: str) -> Tuple[str, str]:
    """Fresh salt plus H(password, salt), ready for a registration request."""
    salt = crypto.generate_salt()
    return crypto.hash_password(password, salt), salt


def answer_challenge(password: str, salt: str) -> str:
    """Recompute H(password, salt) for the salt the server sent back."""
    return crypto.hash_password(password, salt)
