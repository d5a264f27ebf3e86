# localca/storage/serial.py
"""
File-backed serial counter (OpenSSL .srl format: one line of hex).

The file holds the last serial handed out; the next certificate gets
value + 1. Read-increment-persist runs under an exclusive flock so that
concurrent issuers against one CA never share a serial.
"""
import fcntl
import logging
import os
import secrets
import time
from contextlib import contextmanager
from typing import Iterator, Optional

from localca.common.errors import MissingCAError, PersistenceError, SigningError
from localca.common.utils import hex_to_serial, serial_to_hex
from localca.storage import db as dbmod
from localca.storage.files import PUBLIC_MODE, atomic_write

logger = logging.getLogger(__name__)

INITIAL_BITS = 128
MAX_SERIAL = (1 << 159) - 1  # X.509 serials are at most 20 octets and positive
LOCK_TIMEOUT = 10.0


def random_serial() -> int:
    return secrets.randbits(INITIAL_BITS) or 1


class SerialState:

    def __init__(self, path: str, store_path: Optional[str] = None, lock_timeout: float = LOCK_TIMEOUT):
        self.path = path
        self.store_path = store_path
        self.lock_timeout = lock_timeout

    @property
    def lock_path(self) -> str:
        return self.path + ".lock"

    def exists(self) -> bool:
        return os.path.exists(self.path)

    def read(self) -> int:
        try:
            with open(self.path, "r") as f:
                text = f.readline()
        except FileNotFoundError as e:
            raise MissingCAError(f"missing CA serial: {self.path} (create it with create-ca)", path=self.path) from e
        except OSError as e:
            raise PersistenceError(f"cannot read serial file {self.path}: {e}", path=self.path) from e
        try:
            value = hex_to_serial(text)
        except ValueError as e:
            raise PersistenceError(f"serial file {self.path} is not valid hex: {text.strip()!r}", path=self.path) from e
        if value < 0:
            raise PersistenceError(f"serial file {self.path} holds a negative value", path=self.path)
        return value

    def write(self, value: int) -> None:
        atomic_write(self.path, (serial_to_hex(value) + "\n").encode(), PUBLIC_MODE)

    def initialize(self) -> bool:
        """Seed with random entropy if no serial file exists. Never resets an existing one."""
        with self.locked():
            if self.exists():
                logger.info("keeping existing serial file %s", self.path)
                return False
            self.write(random_serial())
            logger.info("created serial file %s", self.path)
            return True

    @contextmanager
    def locked(self) -> Iterator[None]:
        """Exclusive cross-process lock on <serial>.lock, bounded by lock_timeout."""
        try:
            os.makedirs(os.path.dirname(os.path.abspath(self.lock_path)), exist_ok=True)
            f = open(self.lock_path, "a+")
        except OSError as e:
            raise PersistenceError(f"cannot open lock file {self.lock_path}: {e}", path=self.lock_path) from e
        start = time.monotonic()
        with f:
            while True:
                try:
                    fcntl.flock(f.fileno(), fcntl.LOCK_EX | fcntl.LOCK_NB)
                    break
                except BlockingIOError:
                    if time.monotonic() - start > self.lock_timeout:
                        raise PersistenceError(
                            f"timed out waiting for serial lock {self.lock_path}", path=self.lock_path
                        )
                    time.sleep(0.05)
            try:
                yield
            finally:
                fcntl.flock(f.fileno(), fcntl.LOCK_UN)

    def next_value(self) -> int:
        """
        Next serial to issue: one past the larger of the serial file and the
        highest serial in the certificate store. The store covers a crash
        between recording a certificate and advancing the file.
        """
        current = self.read()
        if self.store_path and os.path.exists(self.store_path):
            recorded = dbmod.max_serial(self.store_path)
            if recorded is not None and recorded > current:
                logger.warning(
                    "serial file %s (%s) is behind the certificate store (%s); recovering",
                    self.path, serial_to_hex(current), serial_to_hex(recorded),
                )
                current = recorded
        nxt = current + 1
        if nxt > MAX_SERIAL:
            raise SigningError(f"serial space exhausted for {self.path}")
        return nxt

    @contextmanager
    def reserve(self) -> Iterator[int]:
        """
        Hold the lock, yield the next serial, and persist it only if the
        block completes. An exception inside the block consumes nothing.
        """
        with self.locked():
            nxt = self.next_value()
            yield nxt
            self.write(nxt)
            logger.debug("serial %s advanced to %s", self.path, serial_to_hex(nxt))
