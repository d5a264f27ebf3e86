# localca/common/errors.py
"""
Error taxonomy for the CA tool.

Library code raises these; only the CLI turns them into messages and exit codes.
Exit codes: 2 = configuration, 3 = I/O, 4 = cryptographic/backend.
"""
from typing import Iterable, List, Optional

EXIT_OK = 0
EXIT_CONFIG = 2
EXIT_IO = 3
EXIT_CRYPTO = 4


class LocalCAError(Exception):
    exit_code = 1

    def __init__(self, msg: str, path: Optional[str] = None, partial_paths: Iterable[str] = ()):
        super().__init__(msg)
        self.path = path
        self.partial_paths: List[str] = list(partial_paths)


class InvalidConfigError(LocalCAError):
    exit_code = EXIT_CONFIG


class AlreadyExistsError(LocalCAError):
    exit_code = EXIT_CONFIG


class MissingCAError(LocalCAError):
    exit_code = EXIT_CONFIG


class PersistenceError(LocalCAError):
    exit_code = EXIT_IO


class KeyGenerationError(LocalCAError):
    exit_code = EXIT_CRYPTO


class MalformedRequestError(LocalCAError):
    exit_code = EXIT_CRYPTO


class SigningError(LocalCAError):
    exit_code = EXIT_CRYPTO


class ChainVerificationError(LocalCAError):
    """Issued certificate does not verify against its CA. Indicates a bug."""
    exit_code = EXIT_CRYPTO
