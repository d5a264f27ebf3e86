# localca/storage/db.py
"""
SQLite store of issued certificates, kept next to the CA files.
Provides:
 - init_db(path)
 - record_issued(path, cert, cert_path)
 - max_serial(path) -> int or None
 - find_by_serial(path, serial) -> dict or None
 - list_issued(path) -> list of dicts

The store is the recovery source for the serial counter: the row for a
certificate is committed before the serial file is advanced.
"""

import logging
import sqlite3
from contextlib import closing
from typing import Dict, List, Optional

from cryptography import x509

from localca.common.errors import PersistenceError
from localca.common.utils import hex_to_serial, now_utc, serial_to_hex
from localca.crypto.pki import cert_fingerprint_hex

logger = logging.getLogger(__name__)

CREATE_SQL = """
CREATE TABLE IF NOT EXISTS issued (
    serial_hex TEXT PRIMARY KEY,   -- uppercase hex, as in the .srl file
    common_name TEXT NOT NULL,
    not_before TEXT NOT NULL,      -- ISO 8601 UTC
    not_after TEXT NOT NULL,
    fingerprint TEXT NOT NULL,     -- SHA-256 hex
    cert_path TEXT,
    issued_at TEXT NOT NULL
);
"""

COLUMNS = ("serial_hex", "common_name", "not_before", "not_after", "fingerprint", "cert_path", "issued_at")


def get_conn(path: str) -> sqlite3.Connection:
    try:
        return sqlite3.connect(path, timeout=5)
    except sqlite3.Error as e:
        raise PersistenceError(f"cannot open certificate store {path}: {e}", path=path) from e


def init_db(path: str) -> None:
    with closing(get_conn(path)) as conn:
        try:
            conn.execute(CREATE_SQL)
            conn.commit()
        except sqlite3.Error as e:
            raise PersistenceError(f"cannot initialise certificate store {path}: {e}", path=path) from e


def _common_name(cert: x509.Certificate) -> str:
    attrs = cert.subject.get_attributes_for_oid(x509.NameOID.COMMON_NAME)
    return attrs[0].value if attrs else cert.subject.rfc4514_string()


def record_issued(path: str, cert: x509.Certificate, cert_path: Optional[str] = None) -> None:
    """
    Insert one issued certificate. A duplicate serial is a PersistenceError:
    the primary key is the last line of defence for serial uniqueness.
    """
    row = (
        serial_to_hex(cert.serial_number),
        _common_name(cert),
        cert.not_valid_before_utc.isoformat(),
        cert.not_valid_after_utc.isoformat(),
        cert_fingerprint_hex(cert),
        cert_path,
        now_utc().isoformat(),
    )
    with closing(get_conn(path)) as conn:
        try:
            conn.execute(CREATE_SQL)
            conn.execute(f"INSERT INTO issued ({', '.join(COLUMNS)}) VALUES (?,?,?,?,?,?,?)", row)
            conn.commit()
        except sqlite3.IntegrityError as e:
            raise PersistenceError(f"serial {row[0]} already recorded in {path}", path=path) from e
        except sqlite3.Error as e:
            raise PersistenceError(f"cannot record certificate in {path}: {e}", path=path) from e
    logger.debug("recorded serial %s (%s) in %s", row[0], row[1], path)


def list_issued(path: str) -> List[Dict]:
    with closing(get_conn(path)) as conn:
        try:
            conn.execute(CREATE_SQL)
            rows = conn.execute(f"SELECT {', '.join(COLUMNS)} FROM issued ORDER BY issued_at").fetchall()
        except sqlite3.Error as e:
            raise PersistenceError(f"cannot read certificate store {path}: {e}", path=path) from e
    return [dict(zip(COLUMNS, r)) for r in rows]


def find_by_serial(path: str, serial: int) -> Optional[Dict]:
    with closing(get_conn(path)) as conn:
        try:
            conn.execute(CREATE_SQL)
            row = conn.execute(
                f"SELECT {', '.join(COLUMNS)} FROM issued WHERE serial_hex = ?", (serial_to_hex(serial),)
            ).fetchone()
        except sqlite3.Error as e:
            raise PersistenceError(f"cannot read certificate store {path}: {e}", path=path) from e
    return dict(zip(COLUMNS, row)) if row else None


def max_serial(path: str) -> Optional[int]:
    """Highest serial recorded, or None for an empty store."""
    # hex strings of different lengths do not sort numerically, so compare in Python
    serials = [hex_to_serial(r["serial_hex"]) for r in list_issued(path)]
    return max(serials) if serials else None
