from __future__ import annotations

import logging
import os
import sys
from pathlib import Path
from typing import Any

from .config import ChatRuntimeConfig
from .util import expand_path

DEFAULT_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


def _parse_level(value: Any, default: int) -> int:
    if value is None:
        return default
    if isinstance(value, int):
        return value
    text = str(value).strip().upper()
    if not text:
        return default
    if text == "WARN":
        return logging.WARNING

    level = logging.getLevelName(text)
    if isinstance(level, int):
        return level

    try:
        return int(text)
    except ValueError:
        return default


def _file_handler(path: str) -> logging.Handler:
    p = Path(expand_path(path))
    p.parent.mkdir(parents=True, exist_ok=True)
    handler = logging.FileHandler(p, encoding="utf-8")
    try:
        os.chmod(p, 0o600)
    except OSError:
        pass
    return handler


def configure_logging(cfg: ChatRuntimeConfig) -> None:
    """Configure Python logging for rchat from a fully resolved config.

    The terminal belongs to the chat: records go to the log file, and to
    stderr only when console logging is switched on. With neither, logging
    is silenced instead of falling back to stderr.
    """
    handlers: list[logging.Handler] = []
    if cfg.log_file:
        handlers.append(_file_handler(cfg.log_file))
    if cfg.log_console:
        handlers.append(logging.StreamHandler(sys.stderr))

    formatter = logging.Formatter(
        fmt=str(cfg.log_format or "").strip() or DEFAULT_FORMAT,
        datefmt=cfg.log_datefmt or None,
    )
    for h in handlers:
        h.setFormatter(formatter)

    if not handlers:
        handlers.append(logging.NullHandler())

    root = logging.getLogger()
    for h in list(root.handlers):
        root.removeHandler(h)
        h.close()

    for h in handlers:
        root.addHandler(h)

    root.setLevel(_parse_level(cfg.log_level, logging.WARNING))

    # Library loggers
    logging.getLogger("RNS").setLevel(_parse_level(cfg.log_rns_level, logging.WARNING))

    logging.captureWarnings(True)
