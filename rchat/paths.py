from __future__ import annotations

import os
from pathlib import Path


def default_rchat_dir() -> Path:
    override = os.environ.get("RCHAT_HOME")
    if override:
        return Path(override)
    return Path.home() / ".rchat"


def default_config_path() -> Path:
    return default_rchat_dir() / "rchat.toml"


def default_identity_path() -> Path:
    return default_rchat_dir() / "identity"


def default_log_path() -> Path:
    return default_rchat_dir() / "rchat.log"


def ensure_private_dir(path: Path) -> None:
    path.mkdir(parents=True, exist_ok=True)
    try:
        # Best-effort tightening; may fail on some filesystems.
        os.chmod(path, 0o700)
    except OSError:
        pass
