# localca/crypto/keys.py
"""
RSA key helpers using cryptography.
Provides:
 - generate_rsa_key(bits)
 - encrypt_private_key(key, passphrase) -> PEM bytes (PKCS#8, AES-256)
 - load_private_key(pem_bytes, passphrase)
 - key_matches_cert(key, cert) -> bool
"""
import logging

from cryptography.exceptions import UnsupportedAlgorithm
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import rsa

from localca.common.config import SUPPORTED_KEY_SIZES
from localca.common.errors import InvalidConfigError, KeyGenerationError, SigningError

logger = logging.getLogger(__name__)

PUBLIC_EXPONENT = 65537


def generate_rsa_key(bits: int) -> rsa.RSAPrivateKey:
    if bits not in SUPPORTED_KEY_SIZES:
        raise InvalidConfigError(f"unsupported RSA key size {bits}")
    logger.debug("generating %d-bit RSA key", bits)
    try:
        return rsa.generate_private_key(public_exponent=PUBLIC_EXPONENT, key_size=bits)
    except (ValueError, UnsupportedAlgorithm) as e:
        raise KeyGenerationError(f"RSA key generation failed: {e}") from e


def encrypt_private_key(key: rsa.RSAPrivateKey, passphrase: str) -> bytes:
    """
    Serialize a private key as encrypted PKCS#8 PEM.
    BestAvailableEncryption uses AES-256-CBC with a PBKDF2-derived key.
    """
    if not passphrase:
        raise InvalidConfigError("refusing to write an unencrypted private key: passphrase is empty")
    return key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.PKCS8,
        encryption_algorithm=serialization.BestAvailableEncryption(passphrase.encode()),
    )


def load_private_key(pem_bytes: bytes, passphrase: str) -> rsa.RSAPrivateKey:
    """Decrypt a PEM private key. Wrong passphrase or corrupt data -> SigningError."""
    try:
        key = serialization.load_pem_private_key(pem_bytes, password=passphrase.encode() if passphrase else None)
    except (ValueError, TypeError, UnsupportedAlgorithm) as e:
        raise SigningError(f"cannot decrypt private key: {e}") from e
    if not isinstance(key, rsa.RSAPrivateKey):
        raise SigningError(f"expected an RSA private key, got {type(key).__name__}")
    return key


def public_der(key) -> bytes:
    return key.public_bytes(
        serialization.Encoding.DER,
        serialization.PublicFormat.SubjectPublicKeyInfo,
    )


def key_matches_cert(key: rsa.RSAPrivateKey, cert) -> bool:
    """True if the private key is the counterpart of cert's public key."""
    return public_der(key.public_key()) == public_der(cert.public_key())
