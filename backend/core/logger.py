# ---------------------------------------------------------------------------
# Author  : Kyle <kyle@hacking-linux.com>
# Version : 20261017v1
# ---------------------------------------------------------------------------
"""
Centralised logging configuration.

Levels, handlers and rotation live in  etc/logging.conf.  The file handler
writes to ``log/app.log`` under the project root unless ``PVAULT_LOG_DIR``
points somewhere else (the test-suite uses a temporary directory).

Two ready-made handles:
    from core.logger import logger            # application log
    from core.logger import security_logger   # lockouts, alerts, denials

Never pass passwords, keys, tokens or decrypted content to either of them.
"""

import configparser
import logging
import logging.config
import os
from pathlib import Path

_PROJECT_ROOT = Path(__file__).resolve().parent.parent.parent
_LOGGING_CONF = _PROJECT_ROOT / "etc" / "logging.conf"


def _log_file() -> Path:
    log_dir = Path(os.environ.get("PVAULT_LOG_DIR") or _PROJECT_ROOT / "log")
    log_dir.mkdir(parents=True, exist_ok=True)
    return log_dir / "app.log"


def _configure() -> None:
    """
    Load etc/logging.conf with the %(log_file)s placeholder resolved.

    RawConfigParser is required: the format strings contain %(asctime)s etc.
    which an interpolating parser would choke on.
    """
    raw = _LOGGING_CONF.read_text(encoding="utf-8")
    raw = raw.replace("%(log_file)s", str(_log_file()).replace("\\", "/"))

    parser = configparser.RawConfigParser()
    parser.read_string(raw)
    logging.config.fileConfig(parser, disable_existing_loggers=False)


_configure()

logger = logging.getLogger("pvault")
security_logger = logger.getChild("security")
