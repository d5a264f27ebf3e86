# localca/common/log.py
"""
Logging setup. Modules log through logging.getLogger(__name__); the CLI
calls setup_logging() once. User-facing output stays on stdout via print.
"""
import logging
import os
import sys
from typing import Optional

LOG_FORMAT = "%(asctime)s %(levelname)-7s %(name)s: %(message)s"
ENV_LOG_LEVEL = "LOCALCA_LOG_LEVEL"


def setup_logging(level: Optional[str] = None) -> logging.Logger:
    """Configure the 'localca' logger hierarchy to write to stderr."""
    level_name = (level or os.environ.get(ENV_LOG_LEVEL) or "WARNING").upper()
    numeric = getattr(logging, level_name, None)
    if not isinstance(numeric, int):
        numeric = logging.WARNING

    root = logging.getLogger("localca")
    root.setLevel(numeric)
    # re-running setup (tests, repeated main() calls) must not stack handlers
    for h in list(root.handlers):
        if getattr(h, "_localca", False):
            root.removeHandler(h)
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    handler._localca = True
    root.addHandler(handler)
    return root
