"""
crypto.py - password hashing, salts, and the TLS key material bootstrap.

Why this exists:
- Keep every hashing and key detail in one place so the credential code can
  call `hash_password/verify_hash` without caring about the KDF parameters.
- Hash output is URL-safe Base64 without '=' padding: fixed width and free of
  the ':' separator, so it drops straight into a request line.

Notes:
- H(password, salt) is PBKDF2-HMAC-SHA256. Same (password, salt) always gives
  the same hash; nothing about the password can be read back from it.
- Salts look like crypt(3) salts: "$1$" followed by 8 characters from
  "./0-9A-Za-z". The prefix names the hash scheme version.
- The server certificate is self-signed RSA-2048, the same thing
  `openssl req -newkey rsa:2048 -nodes -x509 -days 365` would produce.
"""

import base64
import datetime
import hmac
import ipaddress
import secrets
import string
from pathlib import Path
from typing import Tuple

from cryptography import x509
from cryptography.exceptions import InvalidKey
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import rsa
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC
from cryptography.x509.oid import ExtendedKeyUsageOID, NameOID

from .errors import ParseError

SALT_PREFIX = "$1$"
SALT_CHARS = "./" + string.digits + string.ascii_uppercase + string.ascii_lowercase
SALT_RANDOM_LENGTH = 8
SALT_LENGTH = len(SALT_PREFIX) + SALT_RANDOM_LENGTH

HASH_ITERATIONS = 100_000
HASH_BYTES = 32
HASH_LENGTH = (HASH_BYTES * 4 + 2) // 3  # unpadded Base64 length

CERT_KEY_SIZE = 2048
CERT_VALID_DAYS = 365


# -----------------------------
# Base64 URL helper (no padding)
# -----------------------------

def b64url_encode(data: bytes) -> str:
    """URL-safe Base64 without '=' padding."""
    return base64.urlsafe_b64encode(data).rstrip(b"=").decode("ascii")


# -----------------------------
# Salts and password hashes
# -----------------------------

def generate_salt() -> str:
    """Fresh "$1$xxxxxxxx" salt from the OS CSPRNG."""
    return SALT_PREFIX + "".join(secrets.choice(SALT_CHARS) for _ in range(SALT_RANDOM_LENGTH))


def check_salt(salt: str) -> str:
    """Raise ParseError unless `salt` has the exact shape generate_salt() produces."""
    if len(salt) != SALT_LENGTH or not salt.startswith(SALT_PREFIX):
        raise ParseError(f"salt must be {SALT_PREFIX!r} plus {SALT_RANDOM_LENGTH} characters")
    if any(ch not in SALT_CHARS for ch in salt[len(SALT_PREFIX):]):
        raise ParseError("salt contains characters outside ./0-9A-Za-z")
    return salt


def hash_password(password: str, salt: str) -> str:
    """
    H(password, salt): PBKDF2-HMAC-SHA256 over the UTF-8 password, salted with
    the full salt string. Returns 43 characters of Base64url.
    """
    kdf = PBKDF2HMAC(
        algorithm=hashes.SHA256(),
        length=HASH_BYTES,
        salt=check_salt(salt).encode("ascii"),
        iterations=HASH_ITERATIONS,
    )
    return b64url_encode(kdf.derive(password.encode("utf-8")))


def verify_hash(expected: str, candidate: str) -> bool:
    """Byte-for-byte comparison in constant time."""
    return hmac.compare_digest(expected.encode("utf-8"), candidate.encode("utf-8"))


# -----------------------------
# TLS key material
# -----------------------------

def generate_rsa(key_size: int = CERT_KEY_SIZE) -> Tuple[rsa.RSAPrivateKey, rsa.RSAPublicKey]:
    """Generate a fresh RSA keypair (public exponent 65537)."""
    priv = rsa.generate_private_key(public_exponent=65537, key_size=key_size)
    return priv, priv.public_key()


def export_privkey_pem(priv: rsa.RSAPrivateKey) -> bytes:
    """
    Export private key in PKCS#8 (unencrypted) form.
    Store safely if you write this to disk; this is the raw key.
    """
    return priv.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.PKCS8,
        encryption_algorithm=serialization.NoEncryption()
    )


def load_privkey_pem(pem_bytes: bytes):
    """Load an unencrypted PKCS#8 PEM private key."""
    return serialization.load_pem_private_key(pem_bytes, password=None)


def self_signed_certificate(priv: rsa.RSAPrivateKey, common_name: str = "localhost") -> x509.Certificate:
    """Self-signed server certificate valid for localhost and 127.0.0.1."""
    name = x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, common_name)])
    now = datetime.datetime.now(datetime.timezone.utc)
    alt_names = [x509.DNSName(common_name), x509.DNSName("localhost"),
                 x509.IPAddress(ipaddress.ip_address("127.0.0.1"))]
    return (
        x509.CertificateBuilder()
        .subject_name(name)
        .issuer_name(name)
        .public_key(priv.public_key())
        .serial_number(x509.random_serial_number())
        .not_valid_before(now - datetime.timedelta(minutes=5))
        .not_valid_after(now + datetime.timedelta(days=CERT_VALID_DAYS))
        .add_extension(x509.SubjectAlternativeName(alt_names), critical=False)
        .add_extension(x509.BasicConstraints(ca=True, path_length=None), critical=True)
        .add_extension(x509.KeyUsage(
            digital_signature=True, content_commitment=False, key_encipherment=True,
            data_encipherment=False, key_agreement=False, key_cert_sign=True,
            crl_sign=False, encipher_only=False, decipher_only=False), critical=True)
        .add_extension(x509.ExtendedKeyUsage([ExtendedKeyUsageOID.SERVER_AUTH]), critical=False)
        .add_extension(x509.SubjectKeyIdentifier.from_public_key(priv.public_key()), critical=False)
        .add_extension(x509.AuthorityKeyIdentifier.from_issuer_public_key(priv.public_key()),
                       critical=False)
        .sign(priv, hashes.SHA256())
    )


def write_self_signed(cert_path: Path, key_path: Path, common_name: str = "localhost") -> None:
    """Create key.pem/cert.pem for the server. Parent directories are created."""
    priv, _ = generate_rsa()
    cert = self_signed_certificate(priv, common_name)
    cert_path.parent.mkdir(parents=True, exist_ok=True)
    key_path.parent.mkdir(parents=True, exist_ok=True)
    with open(key_path, "wb") as f:
        f.write(export_privkey_pem(priv))
    key_path.chmod(0o600)
    with open(cert_path, "wb") as f:
        f.write(cert.public_bytes(serialization.Encoding.PEM))


def check_certificate_pair(cert_path: Path, key_path: Path) -> None:
    """
    Make sure the key really belongs to the certificate before handing both
    to the TLS layer, whose own error for a mismatch is hard to read.
    """
    with open(cert_path, "rb") as f:
        cert = x509.load_pem_x509_certificate(f.read())
    with open(key_path, "rb") as f:
        priv = load_privkey_pem(f.read())
    if not isinstance(priv, rsa.RSAPrivateKey):
        raise InvalidKey("Server key must be an RSA private key.")
    cert_pub = cert.public_key().public_bytes(
        serialization.Encoding.DER, serialization.PublicFormat.SubjectPublicKeyInfo)
    key_pub = priv.public_key().public_bytes(
        serialization.Encoding.DER, serialization.PublicFormat.SubjectPublicKeyInfo)
    if cert_pub != key_pub:
        raise InvalidKey(f"{key_path} does not match the certificate in {cert_path}.")
