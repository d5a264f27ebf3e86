# localca/prompts.py
"""
Interactive fallback for values not given as flags or LOCALCA_* variables.
Only used when stdin is a terminal and --no-input was not passed.
"""
import getpass
import sys
from typing import Callable, Optional

from localca.common.errors import InvalidConfigError


class Prompter:

    def __init__(
        self,
        enabled: bool = True,
        input_fn: Callable[[str], str] = input,
        getpass_fn: Callable[[str], str] = getpass.getpass,
    ):
        self.enabled = enabled
        self.input_fn = input_fn
        self.getpass_fn = getpass_fn

    @classmethod
    def for_terminal(cls, no_input: bool = False) -> "Prompter":
        return cls(enabled=not no_input and sys.stdin.isatty())

    def ask(self, label: str, current: Optional[str] = None, default: Optional[str] = None) -> str:
        """Return current if set, else prompt (Enter = default). Fails if nothing is available."""
        if current not in (None, ""):
            return current
        if self.enabled:
            hint = f" (default {default})" if default else ""
            answer = self.input_fn(f"{label}{hint}: ").strip()
            if answer:
                return answer
        if default not in (None, ""):
            return default
        raise InvalidConfigError(f"{label} must not be empty")

    def secret(self, label: str, current: Optional[str] = None, confirm: bool = False) -> str:
        """Like ask() for passphrases: no echo, no default, optional confirmation."""
        if current:
            return current
        if not self.enabled:
            raise InvalidConfigError(f"{label} is required (flag, environment variable or interactive prompt)")
        value = self.getpass_fn(f"{label}: ")
        if not value:
            raise InvalidConfigError(f"{label} must not be empty")
        if confirm and self.getpass_fn(f"Verifying - {label}: ") != value:
            raise InvalidConfigError(f"{label} entries do not match")
        return value

    def optional_secret(self, label: str, current: Optional[str] = None) -> Optional[str]:
        """Passphrase that may legitimately be empty (PKCS#12 export)."""
        if current is not None:
            return current
        if not self.enabled:
            return None
        return self.getpass_fn(f"{label} (empty = none): ") or None
