# localca/common/utils.py
import datetime


def now_utc() -> datetime.datetime:
    """Current time, timezone-aware UTC, truncated to whole seconds."""
    return datetime.datetime.now(datetime.timezone.utc).replace(microsecond=0)


def serial_to_hex(serial: int) -> str:
    """Uppercase, even-length hex, the way OpenSSL writes .srl files."""
    h = format(serial, "X")
    return h if len(h) % 2 == 0 else "0" + h


def hex_to_serial(text: str) -> int:
    """Parse a hex serial (optionally colon-separated). Raises ValueError."""
    return int(text.strip().replace(":", ""), 16)

