# localca/crypto/pki.py

from cryptography import x509
from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.x509.oid import ExtendedKeyUsageOID, NameOID
import datetime
import ipaddress
from typing import Iterable, List, Optional, Tuple

from localca.common.config import DistinguishedName, SanType, SubjectAltName
from localca.common.errors import ChainVerificationError, InvalidConfigError, MalformedRequestError
from localca.common.utils import now_utc, serial_to_hex

SIGNATURE_HASH = hashes.SHA256

EKU_NAMES = {
    ExtendedKeyUsageOID.SERVER_AUTH: "serverAuth",
    ExtendedKeyUsageOID.CLIENT_AUTH: "clientAuth",
    ExtendedKeyUsageOID.CODE_SIGNING: "codeSigning",
    ExtendedKeyUsageOID.EMAIL_PROTECTION: "emailProtection",
    ExtendedKeyUsageOID.TIME_STAMPING: "timeStamping",
    ExtendedKeyUsageOID.OCSP_SIGNING: "OCSPSigning",
}


def load_cert(pem_bytes: bytes) -> x509.Certificate:
    """Load a PEM-encoded certificate and return an x509.Certificate object."""
    return x509.load_pem_x509_certificate(pem_bytes)


def cert_pem(cert: x509.Certificate) -> bytes:
    return cert.public_bytes(serialization.Encoding.PEM)


def build_name(dn: DistinguishedName) -> x509.Name:
    """C, ST, L, O, OU, CN and optional emailAddress, in that order."""
    attrs = [
        (NameOID.COUNTRY_NAME, dn.country),
        (NameOID.STATE_OR_PROVINCE_NAME, dn.state),
        (NameOID.LOCALITY_NAME, dn.locality),
        (NameOID.ORGANIZATION_NAME, dn.organization),
        (NameOID.ORGANIZATIONAL_UNIT_NAME, dn.organizational_unit),
        (NameOID.COMMON_NAME, dn.common_name),
    ]
    if dn.email:
        attrs.append((NameOID.EMAIL_ADDRESS, dn.email))
    try:
        return x509.Name([x509.NameAttribute(oid, value) for oid, value in attrs])
    except ValueError as e:
        raise InvalidConfigError(f"invalid subject name: {e}") from e


def general_names(sans: Iterable[SubjectAltName]) -> List[x509.GeneralName]:
    names: List[x509.GeneralName] = []
    for san in sans:
        try:
            if san.type is SanType.IP:
                names.append(x509.IPAddress(ipaddress.ip_address(san.value)))
            else:
                names.append(x509.DNSName(san.value))
        except ValueError as e:
            raise InvalidConfigError(f"invalid subjectAltName {san}: {e}") from e
    return names


def ca_key_usage() -> x509.KeyUsage:
    return x509.KeyUsage(
        digital_signature=False,
        content_commitment=False,
        key_encipherment=False,
        data_encipherment=False,
        key_agreement=False,
        key_cert_sign=True,
        crl_sign=True,
        encipher_only=False,
        decipher_only=False,
    )


def leaf_key_usage() -> x509.KeyUsage:
    return x509.KeyUsage(
        digital_signature=True,
        content_commitment=False,
        key_encipherment=True,
        data_encipherment=False,
        key_agreement=False,
        key_cert_sign=False,
        crl_sign=False,
        encipher_only=False,
        decipher_only=False,
    )


def leaf_policy_extensions() -> List[Tuple[x509.ExtensionType, bool]]:
    """End-entity policy: (extension, critical) pairs, SAN excluded."""
    return [
        (x509.BasicConstraints(ca=False, path_length=None), True),
        (leaf_key_usage(), True),
        (x509.ExtendedKeyUsage([ExtendedKeyUsageOID.SERVER_AUTH, ExtendedKeyUsageOID.CLIENT_AUTH]), False),
    ]


def leaf_extensions(sans: Iterable[SubjectAltName]) -> List[Tuple[x509.ExtensionType, bool]]:
    return leaf_policy_extensions() + [(x509.SubjectAlternativeName(general_names(sans)), False)]


def build_csr(key, dn: DistinguishedName, sans: Iterable[SubjectAltName]) -> x509.CertificateSigningRequest:
    """CSR carrying the subject and the requested leaf extensions."""
    builder = x509.CertificateSigningRequestBuilder().subject_name(build_name(dn))
    for ext, critical in leaf_extensions(sans):
        builder = builder.add_extension(ext, critical=critical)
    return builder.sign(key, SIGNATURE_HASH())


def csr_pem(csr: x509.CertificateSigningRequest) -> bytes:
    return csr.public_bytes(serialization.Encoding.PEM)


def check_csr(csr: x509.CertificateSigningRequest) -> None:
    """Self-consistency check: the CSR is signed by the key it carries."""
    if not csr.is_signature_valid:
        raise MalformedRequestError("certificate request signature does not match its public key")


def may_sign_certificates(cert: x509.Certificate) -> bool:
    """CA flag set and keyCertSign allowed (or key usage unrestricted)."""
    try:
        if not cert.extensions.get_extension_for_class(x509.BasicConstraints).value.ca:
            return False
    except x509.ExtensionNotFound:
        return False
    try:
        return cert.extensions.get_extension_for_class(x509.KeyUsage).value.key_cert_sign
    except x509.ExtensionNotFound:
        return True


def verify_cert_signed_by_ca(
    cert: x509.Certificate,
    ca_cert: x509.Certificate,
    at: Optional[datetime.datetime] = None,
) -> None:
    """
    Verify that `cert` was issued by `ca_cert` (a root verifies against itself).

    Checks issuer name, the CA's right to sign, the signature, the validity
    window at `at` (default: now) and that cert does not outlive the CA.
    Raises ChainVerificationError on the first failed check.
    """
    if cert.issuer != ca_cert.subject:
        raise ChainVerificationError("certificate issuer does not match CA subject")
    if not may_sign_certificates(ca_cert):
        raise ChainVerificationError("CA certificate is not allowed to sign certificates")
    try:
        cert.verify_directly_issued_by(ca_cert)
    except (InvalidSignature, ValueError, TypeError) as e:
        raise ChainVerificationError(f"signature verification failed: {str(e) or type(e).__name__}") from e

    now = at or now_utc()
    for c, label in ((cert, "certificate"), (ca_cert, "CA certificate")):
        if now < c.not_valid_before_utc or now > c.not_valid_after_utc:
            raise ChainVerificationError(f"{label} is not valid at {now.isoformat()}")
    if cert.not_valid_after_utc > ca_cert.not_valid_after_utc:
        raise ChainVerificationError("certificate outlives its CA certificate")


def check_cn(cert: x509.Certificate, expected_cn: str) -> None:
    """Check the Common Name (CN) in cert subject matches expected_cn. Raises ValueError on mismatch."""
    attrs = cert.subject.get_attributes_for_oid(NameOID.COMMON_NAME)
    if not attrs:
        raise ValueError("certificate has no Common Name (CN)")
    cn = attrs[0].value
    if cn != expected_cn:
        raise ValueError(f"CN mismatch: expected '{expected_cn}', got '{cn}'")


def cert_fingerprint_hex(cert: x509.Certificate) -> str:
    """Return the SHA-256 fingerprint of the certificate as a hex string."""
    return cert.fingerprint(hashes.SHA256()).hex()


def san_strings(cert: x509.Certificate) -> List[str]:
    """SAN entries as 'DNS:name' / 'IP:addr', in certificate order."""
    try:
        san = cert.extensions.get_extension_for_class(x509.SubjectAlternativeName).value
    except x509.ExtensionNotFound:
        return []
    out = []
    for gn in san:
        if isinstance(gn, x509.DNSName):
            out.append(f"DNS:{gn.value}")
        elif isinstance(gn, x509.IPAddress):
            out.append(f"IP:{gn.value}")
        else:
            out.append(f"{type(gn).__name__}:{gn.value}")
    return out


def eku_names(cert: x509.Certificate) -> List[str]:
    try:
        eku = cert.extensions.get_extension_for_class(x509.ExtendedKeyUsage).value
    except x509.ExtensionNotFound:
        return []
    return [EKU_NAMES.get(oid, oid.dotted_string) for oid in eku]


def basic_constraints(cert: x509.Certificate) -> Optional[x509.BasicConstraints]:
    try:
        return cert.extensions.get_extension_for_class(x509.BasicConstraints).value
    except x509.ExtensionNotFound:
        return None


def describe(cert: x509.Certificate) -> dict:
    """Summary of the fields an operator checks after issuance."""
    bc = basic_constraints(cert)
    if bc is None:
        bc_text = "<none>"
    elif bc.ca:
        bc_text = "CA:TRUE" + (f", pathlen:{bc.path_length}" if bc.path_length is not None else "")
    else:
        bc_text = "CA:FALSE"
    return {
        "subject": cert.subject.rfc4514_string(),
        "issuer": cert.issuer.rfc4514_string(),
        "serial": serial_to_hex(cert.serial_number),
        "not_before": cert.not_valid_before_utc.isoformat(),
        "not_after": cert.not_valid_after_utc.isoformat(),
        "basic_constraints": bc_text,
        "san": san_strings(cert),
        "eku": eku_names(cert),
        "sha256": cert_fingerprint_hex(cert),
    }
