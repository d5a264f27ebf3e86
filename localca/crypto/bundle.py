# localca/crypto/bundle.py
"""
PKCS#12 export: leaf key + leaf certificate + CA chain in one archive.
An empty or missing password produces an unencrypted archive, as
`openssl pkcs12 -export -passout pass:` does.
"""
from typing import Iterable, Optional

from cryptography import x509
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.serialization import pkcs12

from localca.common.errors import SigningError


def export_pkcs12(
    name: str,
    key,
    cert: x509.Certificate,
    chain: Iterable[x509.Certificate] = (),
    password: Optional[str] = None,
) -> bytes:
    if password:
        encryption = serialization.BestAvailableEncryption(password.encode())
    else:
        encryption = serialization.NoEncryption()
    try:
        return pkcs12.serialize_key_and_certificates(
            name=name.encode(),
            key=key,
            cert=cert,
            cas=list(chain) or None,
            encryption_algorithm=encryption,
        )
    except (ValueError, TypeError) as e:
        raise SigningError(f"cannot build PKCS#12 bundle: {e}") from e
