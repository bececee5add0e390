from __future__ import annotations

from dataclasses import asdict, dataclass, replace
from typing import Any


@dataclass(frozen=True)
class ChatRuntimeConfig:
    config_path: str | None = None
    configdir: str | None = None
    identity_path: str | None = None
    name: str | None = None
    app_name: str = "rchat"
    announce_on_start: bool = True
    announce_period_s: float = 0.0
    join_timeout_s: float = 0.0
    path_timeout_s: float = 15.0
    strict_decoding: bool = False
    log_level: str = "WARNING"
    log_rns_level: str = "WARNING"
    log_console: bool = False
    log_file: str | None = None
    log_format: str = "%(asctime)s %(levelname)s %(name)s[%(threadName)s]: %(message)s"
    log_datefmt: str | None = None


def load_toml(path: str) -> dict:
    import tomllib

    with open(path, "rb") as f:
        return tomllib.load(f)


def apply_config_data(cfg: ChatRuntimeConfig, data: dict[str, Any]) -> ChatRuntimeConfig:
    """Merge a parsed rchat.toml into ``cfg``.

    Keys may live at the top level or in a ``[chat]`` table; ``[logging]``
    keys map onto the ``log_*`` fields. Unknown keys are ignored.
    """
    if not isinstance(data, dict):
        return cfg

    chat = data.get("chat")
    if isinstance(chat, dict):
        data = {**data, **chat}

    log_table = data.get("logging")
    if isinstance(log_table, dict):
        mapped: dict[str, object] = {}
        for key, field in (
            ("level", "log_level"),
            ("rns_level", "log_rns_level"),
            ("console", "log_console"),
            ("file", "log_file"),
            ("format", "log_format"),
            ("datefmt", "log_datefmt"),
        ):
            if key in log_table:
                mapped[field] = log_table.get(key)
        data = {**data, **mapped}

    allowed = set(asdict(cfg).keys())
    # Where the config came from is decided by the caller, not the file.
    allowed.discard("config_path")
    updates = {k: v for k, v in data.items() if k in allowed}

    for float_key in ("announce_period_s", "join_timeout_s", "path_timeout_s"):
        if float_key in updates:
            try:
                updates[float_key] = float(updates[float_key])
            except (TypeError, ValueError) as e:
                raise ValueError(f"{float_key} must be a number") from e

    for opt_key in ("configdir", "name", "log_file", "log_datefmt"):
        if opt_key in updates and updates[opt_key] == "":
            updates[opt_key] = None

    return replace(cfg, **updates) if updates else cfg
