# localca/crypto/ca.py
"""
Create a Root CA (RSA key + self-signed X.509) and load it back for signing.
Writes (names configurable, see CAPaths):
  rootCA.key  (private, AES-256 encrypted, mode 0400)  -- DO NOT COMMIT
  rootCA.crt  (public)
  rootCA.srl  (hex serial, seeded with 128 random bits, never reset)
  rootCA.db   (issued-certificate store)
"""
import datetime
import logging
import os

from cryptography import x509
from cryptography.hazmat.primitives.asymmetric import rsa

from localca.common.config import CAConfig, CAPaths
from localca.common.errors import InvalidConfigError, LocalCAError, MissingCAError, PersistenceError, SigningError
from localca.crypto import keys, pki
from localca.common.utils import now_utc
from localca.storage import db as dbmod
from localca.storage.files import ArtifactWriter, refuse_existing
from localca.storage.serial import SerialState

logger = logging.getLogger(__name__)

CA_PATH_LENGTH = 1


class CertificateAuthority:
    """A loaded root CA: private key, self-signed certificate and serial state."""

    def __init__(self, key: rsa.RSAPrivateKey, cert: x509.Certificate, serial: SerialState, paths: CAPaths):
        self.key = key
        self.cert = cert
        self.serial = serial
        self.paths = paths

    @property
    def subject(self) -> x509.Name:
        return self.cert.subject

    @property
    def not_after(self) -> datetime.datetime:
        return self.cert.not_valid_after_utc

    def subject_key_identifier(self) -> x509.SubjectKeyIdentifier:
        try:
            return self.cert.extensions.get_extension_for_class(x509.SubjectKeyIdentifier).value
        except x509.ExtensionNotFound:
            return x509.SubjectKeyIdentifier.from_public_key(self.cert.public_key())

    def __repr__(self):
        return f"CertificateAuthority(subject={self.subject.rfc4514_string()!r}, cert={self.paths.cert!r})"


def build_root_certificate(key: rsa.RSAPrivateKey, config: CAConfig, now: datetime.datetime) -> x509.Certificate:
    subject = issuer = pki.build_name(config.subject)
    public_key = key.public_key()
    try:
        return (
            x509.CertificateBuilder()
            .subject_name(subject)
            .issuer_name(issuer)
            .public_key(public_key)
            .serial_number(x509.random_serial_number())
            .not_valid_before(now)
            .not_valid_after(now + datetime.timedelta(days=config.validity_days))
            .add_extension(x509.BasicConstraints(ca=True, path_length=CA_PATH_LENGTH), critical=True)
            .add_extension(pki.ca_key_usage(), critical=True)
            .add_extension(x509.SubjectKeyIdentifier.from_public_key(public_key), critical=False)
            .add_extension(x509.AuthorityKeyIdentifier.from_issuer_public_key(public_key), critical=False)
            .sign(key, pki.SIGNATURE_HASH())
        )
    except (ValueError, TypeError) as e:
        raise SigningError(f"cannot self-sign root certificate: {e}") from e


def create_root_ca(config: CAConfig, paths: CAPaths, overwrite: bool = False) -> CertificateAuthority:
    """
    Generate the root key pair and self-signed certificate, seed the serial
    file if absent and initialise the certificate store.

    Raises AlreadyExistsError if key or certificate exist and overwrite is False.
    """
    refuse_existing([paths.key, paths.cert], overwrite)

    key = keys.generate_rsa_key(config.key_bits)
    key_pem = keys.encrypt_private_key(key, config.passphrase.get_secret_value())
    now = now_utc()
    cert = build_root_certificate(key, config, now)
    pki.verify_cert_signed_by_ca(cert, cert, at=now)

    writer = ArtifactWriter(overwrite=overwrite)
    serial = SerialState(paths.serial, paths.store)
    try:
        writer.write(paths.key, key_pem, private=True)
        writer.write(paths.cert, pki.cert_pem(cert))
        if serial.initialize():
            writer.written.append(paths.serial)
        dbmod.init_db(paths.store)
    except LocalCAError as e:
        e.partial_paths = writer.written
        raise

    logger.info(
        "created root CA %s (%d bits, valid until %s)",
        cert.subject.rfc4514_string(), config.key_bits, cert.not_valid_after_utc.isoformat(),
    )
    return CertificateAuthority(key, cert, serial, paths)


def load_ca(paths: CAPaths, passphrase: str) -> CertificateAuthority:
    """
    Load CA key, certificate and serial state for signing.
    Missing files -> MissingCAError; undecryptable or mismatched key -> SigningError.
    """
    for label, p in (("key", paths.key), ("cert", paths.cert), ("serial", paths.serial)):
        if not os.path.exists(p):
            raise MissingCAError(f"missing CA {label}: {p}", path=p)

    try:
        with open(paths.cert, "rb") as f:
            cert = pki.load_cert(f.read())
        with open(paths.key, "rb") as f:
            key_pem = f.read()
    except OSError as e:
        raise PersistenceError(f"cannot read CA files: {e}", path=e.filename) from e
    except ValueError as e:
        raise MissingCAError(f"unreadable CA certificate {paths.cert}: {e}", path=paths.cert) from e
    if not pki.may_sign_certificates(cert):
        raise InvalidConfigError(f"{paths.cert} is not a CA certificate", path=paths.cert)

    key = keys.load_private_key(key_pem, passphrase)
    if not keys.key_matches_cert(key, cert):
        raise SigningError(f"CA key {paths.key} does not match certificate {paths.cert}")

    serial = SerialState(paths.serial, paths.store)
    serial.read()
    return CertificateAuthority(key, cert, serial, paths)
