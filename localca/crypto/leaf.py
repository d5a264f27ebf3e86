# localca/crypto/leaf.py
"""
Issue a leaf (server/client) certificate signed by the root CA.
Produces in out_dir:
  <name>.key  (private, AES-256 encrypted, mode 0400)
  <name>.csr
  <name>.crt
  <name>.p12  (optional: key + cert + CA chain)
"""
import datetime
import logging
import os
from typing import Dict, Optional

from cryptography import x509

from localca.common.config import LeafConfig
from localca.common.errors import InvalidConfigError, LocalCAError, MalformedRequestError, SigningError
from localca.common.utils import now_utc, serial_to_hex
from localca.crypto import keys, pki
from localca.crypto.bundle import export_pkcs12
from localca.crypto.ca import CertificateAuthority
from localca.storage import db as dbmod
from localca.storage.files import ArtifactWriter, refuse_existing

logger = logging.getLogger(__name__)


class LeafCertificate:
    """An issued end-entity certificate with its key, request and output paths."""

    def __init__(self, key, csr: x509.CertificateSigningRequest, cert: x509.Certificate, paths: Dict[str, str]):
        self.key = key
        self.csr = csr
        self.cert = cert
        self.paths = paths

    @property
    def serial(self) -> int:
        return self.cert.serial_number

    @property
    def not_after(self) -> datetime.datetime:
        return self.cert.not_valid_after_utc

    def __repr__(self):
        return f"LeafCertificate(subject={self.cert.subject.rfc4514_string()!r}, serial={serial_to_hex(self.serial)})"


def leaf_paths(out_dir: str, name: str, with_pkcs12: bool = False) -> Dict[str, str]:
    paths = {ext: os.path.join(out_dir, f"{name}.{ext}") for ext in ("key", "csr", "crt")}
    if with_pkcs12:
        paths["p12"] = os.path.join(out_dir, f"{name}.p12")
    return paths


def leaf_not_after(ca: CertificateAuthority, now: datetime.datetime, validity_days: int, clamp: bool = False) -> datetime.datetime:
    """
    End of the leaf validity window. A leaf may not outlive its CA: refuse,
    or clamp to the CA's notAfter when clamp is set.
    """
    if ca.not_after <= now:
        raise InvalidConfigError(f"CA certificate expired at {ca.not_after.isoformat()}")
    requested = now + datetime.timedelta(days=validity_days)
    if requested <= ca.not_after:
        return requested
    if not clamp:
        raise InvalidConfigError(
            f"requested validity of {validity_days} days ends {requested.isoformat()}, "
            f"after the CA certificate expires ({ca.not_after.isoformat()}); "
            "shorten the validity or allow clamping"
        )
    logger.warning(
        "leaf validity clamped from %s to CA expiry %s", requested.isoformat(), ca.not_after.isoformat()
    )
    return ca.not_after


def build_leaf_certificate(
    ca: CertificateAuthority,
    csr: x509.CertificateSigningRequest,
    serial: int,
    not_before: datetime.datetime,
    not_after: datetime.datetime,
) -> x509.Certificate:
    """Sign the request with the CA key, applying the end-entity extension policy."""
    try:
        san = csr.extensions.get_extension_for_class(x509.SubjectAlternativeName)
    except x509.ExtensionNotFound as e:
        raise MalformedRequestError("certificate request carries no subjectAltName") from e
    if not len(san.value):
        raise MalformedRequestError("certificate request has an empty subjectAltName")

    builder = (
        x509.CertificateBuilder()
        .subject_name(csr.subject)
        .issuer_name(ca.subject)
        .public_key(csr.public_key())
        .serial_number(serial)
        .not_valid_before(not_before)
        .not_valid_after(not_after)
    )
    for ext, critical in pki.leaf_policy_extensions():
        builder = builder.add_extension(ext, critical=critical)
    builder = (
        builder.add_extension(san.value, critical=san.critical)
        .add_extension(x509.SubjectKeyIdentifier.from_public_key(csr.public_key()), critical=False)
        .add_extension(
            x509.AuthorityKeyIdentifier.from_issuer_subject_key_identifier(ca.subject_key_identifier()),
            critical=False,
        )
    )
    try:
        return builder.sign(ca.key, pki.SIGNATURE_HASH())
    except (ValueError, TypeError) as e:
        raise SigningError(f"cannot sign leaf certificate: {e}") from e


def issue_leaf(
    ca: CertificateAuthority,
    config: LeafConfig,
    out_dir: str = ".",
    overwrite: bool = False,
    now: Optional[datetime.datetime] = None,
) -> LeafCertificate:
    """
    Generate a leaf key and request, sign it with the CA under a fresh serial,
    verify the result against the CA and write the artifacts.

    The serial is consumed only once the certificate is signed, verified and
    recorded in the CA's certificate store. On failure the raised error lists
    any files already written in partial_paths.
    """
    paths = leaf_paths(out_dir, config.name, config.pkcs12)
    refuse_existing(paths.values(), overwrite)

    now = now or now_utc()
    not_after = leaf_not_after(ca, now, config.validity_days, config.clamp_validity)

    key = keys.generate_rsa_key(config.key_bits)
    key_pem = keys.encrypt_private_key(key, config.key_passphrase.get_secret_value())
    csr = pki.build_csr(key, config.subject, config.sans)
    pki.check_csr(csr)

    writer = ArtifactWriter(overwrite=overwrite)
    try:
        writer.write(paths["key"], key_pem, private=True)
        writer.write(paths["csr"], pki.csr_pem(csr))

        with ca.serial.reserve() as serial:
            cert = build_leaf_certificate(ca, csr, serial, now, not_after)
            pki.verify_cert_signed_by_ca(cert, ca.cert, at=now)
            dbmod.record_issued(ca.paths.store, cert, paths["crt"])

        writer.write(paths["crt"], pki.cert_pem(cert))

        if config.pkcs12:
            password = config.pkcs12_password.get_secret_value() if config.pkcs12_password else None
            if not password:
                logger.warning("PKCS#12 bundle %s is not password protected", paths["p12"])
            p12 = export_pkcs12(config.name, key, cert, [ca.cert], password)
            writer.write(paths["p12"], p12, private=True)
    except LocalCAError as e:
        e.partial_paths = writer.written
        raise

    logger.info(
        "issued %s serial %s valid until %s",
        config.subject.common_name, serial_to_hex(cert.serial_number), not_after.isoformat(),
    )
    return LeafCertificate(key, csr, cert, paths)
