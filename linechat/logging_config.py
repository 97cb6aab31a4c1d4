from __future__ import annotations

import logging
import os
from pathlib import Path

from .config import ChatServerConfig

# Everything the server logs lives under this logger; third-party and
# warnings output stays at WARNING on the root.
PACKAGE_LOGGER = "linechat"


def level_from_name(name: str) -> int:
    """Map ``"info"``/``"WARNING"``/... to a logging level, raising on junk."""
    key = str(name).strip().upper()
    if key == "WARN":
        key = "WARNING"
    try:
        return logging.getLevelNamesMapping()[key]
    except KeyError:
        raise ValueError(f"unknown log level: {name!r}") from None


def _file_handler(log_file: str) -> logging.Handler:
    p = Path(log_file).expanduser()
    p.parent.mkdir(parents=True, exist_ok=True)
    handler = logging.FileHandler(p, encoding="utf-8")
    try:
        os.chmod(p, 0o600)
    except OSError:
        pass
    return handler


def configure_logging(cfg: ChatServerConfig) -> None:
    """Install console and/or file handlers for a validated config.

    Handlers previously installed on the root logger are closed and replaced,
    so calling this twice does not duplicate output.
    """
    handlers: list[logging.Handler] = []
    if cfg.log_console:
        handlers.append(logging.StreamHandler())
    if cfg.log_file:
        handlers.append(_file_handler(cfg.log_file))

    formatter = logging.Formatter(fmt=cfg.log_format, datefmt=cfg.log_datefmt)
    for h in handlers:
        h.setFormatter(formatter)

    root = logging.getLogger()
    for h in list(root.handlers):
        root.removeHandler(h)
        h.close()
    for h in handlers:
        root.addHandler(h)
    root.setLevel(logging.WARNING)

    logging.getLogger(PACKAGE_LOGGER).setLevel(level_from_name(cfg.log_level))

    logging.captureWarnings(True)
