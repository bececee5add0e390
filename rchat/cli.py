from __future__ import annotations

import argparse
import os
import sys
from dataclasses import replace
from pathlib import Path

import RNS

from .config import ChatRuntimeConfig, apply_config_data, load_toml
from .errors import ChatError, DecodeError
from .logging_config import configure_logging
from .paths import (
    default_config_path,
    default_identity_path,
    default_log_path,
    ensure_private_dir,
)
from .reticulum import RnsTransport
from .session import ChatSession, join_room, open_room
from .util import normalize_nick


def _write_default_config(config_path: str, identity_path: str) -> None:
    cfg_dir = os.path.dirname(config_path)
    if cfg_dir:
        ensure_private_dir(Path(cfg_dir))

    log_path = str(default_log_path())

    content = f"""# rchat configuration (TOML)
#
# This file was created on first run.

[chat]

# Optional: Reticulum configuration directory.
# If left unset, Reticulum will choose its default (usually ~/.reticulum).
configdir = ""

# Where rchat stores its persistent identity (Reticulum Identity file).
# The identity hash is your node id in every room.
identity_path = {identity_path!r}

# Nickname announced to the room after joining (empty: none).
name = ""

# Announce the room destination so peers on the network can find us.
# announce_period_s: if >0, periodically re-announce.
announce_on_start = true
announce_period_s = 0.0

# Seconds to wait for the first peer when joining with a ticket (0: forever).
join_timeout_s = 0.0

# Seconds to wait for a path to each bootstrap peer (0: forever).
path_timeout_s = 15.0

# Stop the session on the first undecodable chat message instead of
# skipping it.
strict_decoding = false

[logging]

# Log level for rchat itself.
level = "WARNING"

# Log level for Reticulum/RNS Python logging (if used by your install).
rns_level = "WARNING"

# Log to stderr as well. Off by default: it would interleave with the chat.
console = false

# Log file path (leave empty to disable).
file = {log_path!r}

# Log format and optional date format.
format = "%(asctime)s %(levelname)s %(name)s[%(threadName)s]: %(message)s"
datefmt = ""
"""

    with open(config_path, "w", encoding="utf-8") as f:
        f.write(content)


def _ensure_first_run_files(config_path: str, identity_path: str) -> bool:
    created_any = False

    if not os.path.exists(config_path):
        _write_default_config(config_path, identity_path)
        created_any = True

    if not os.path.exists(identity_path):
        storage_dir = os.path.dirname(identity_path)
        if storage_dir:
            ensure_private_dir(Path(storage_dir))
        ident = RNS.Identity()
        ident.to_file(identity_path)
        try:
            os.chmod(identity_path, 0o600)
        except OSError:
            pass
        created_any = True

    return created_any


def _build_arg_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(
        prog="rchat", description="Chat in a room over Reticulum"
    )

    p.add_argument("-n", "--name", default=None, help="Nickname to announce")
    p.add_argument(
        "--config",
        default=str(default_config_path()),
        help="Path to a TOML config file (created on first run)",
    )
    p.add_argument("--configdir", default=None, help="Reticulum config directory")
    p.add_argument(
        "--identity",
        default=str(default_identity_path()),
        help="Path to identity file (created on first run)",
    )
    p.add_argument(
        "--no-announce",
        action="store_true",
        help="Do not announce the room destination on start",
    )
    p.add_argument(
        "--join-timeout",
        type=float,
        default=None,
        help="Seconds to wait for the first peer when joining (0 waits forever)",
    )
    p.add_argument(
        "--strict",
        action="store_true",
        help="End the session on the first malformed chat message",
    )
    p.add_argument(
        "--log-level",
        default=None,
        help="Logging level override (DEBUG, INFO, WARNING, ERROR). Default comes from config.",
    )
    p.add_argument(
        "--log-file",
        default=None,
        help="Log file path override (empty disables file logging). Default comes from config.",
    )
    p.add_argument(
        "--log-console",
        action="store_true",
        help="Also write log records to stderr",
    )

    sub = p.add_subparsers(dest="command", required=True)
    sub.add_parser("open", help="Open a new chat room")
    join = sub.add_parser("join", help="Join a chat room from a ticket")
    join.add_argument("ticket", help="Ticket printed by another member")

    return p


def build_config(args: argparse.Namespace) -> ChatRuntimeConfig:
    config_path = str(args.config)
    cfg = ChatRuntimeConfig(
        config_path=config_path,
        configdir=args.configdir,
        identity_path=str(args.identity),
    )

    if config_path and os.path.exists(config_path):
        cfg = apply_config_data(cfg, load_toml(config_path))
        # The command line wins over the identity path stored in the file.
        if args.identity != str(default_identity_path()):
            cfg = replace(cfg, identity_path=str(args.identity))
        if args.configdir is not None:
            cfg = replace(cfg, configdir=args.configdir)

    if args.name is not None:
        cfg = replace(cfg, name=args.name)
    if args.no_announce:
        cfg = replace(cfg, announce_on_start=False)
    if args.join_timeout is not None:
        cfg = replace(cfg, join_timeout_s=float(args.join_timeout))
    if args.strict:
        cfg = replace(cfg, strict_decoding=True)
    if args.log_level is not None:
        cfg = replace(cfg, log_level=str(args.log_level))
    if args.log_file is not None:
        cfg = replace(cfg, log_file=str(args.log_file) if str(args.log_file) else None)
    if args.log_console:
        cfg = replace(cfg, log_console=True)

    if cfg.name is not None:
        nick = normalize_nick(cfg.name)
        if nick is None:
            raise ValueError(f"invalid nickname {cfg.name!r}")
        cfg = replace(cfg, name=nick)

    return cfg


def main(argv: list[str] | None = None) -> None:
    args = _build_arg_parser().parse_args(sys.argv[1:] if argv is None else argv)

    try:
        if args.command == "join":
            topic, nodes = join_room(args.ticket)
        else:
            topic, nodes = open_room()
    except DecodeError as e:
        print(f"rchat: invalid ticket: {e}", file=sys.stderr)
        raise SystemExit(2)

    if _ensure_first_run_files(str(args.config), str(args.identity)):
        print(
            "Created default rchat files:\n"
            f"- Config:   {args.config}\n"
            f"- Identity: {args.identity}",
            file=sys.stderr,
        )

    try:
        cfg = build_config(args)
    except (OSError, ValueError) as e:
        print(f"rchat: bad configuration: {e}", file=sys.stderr)
        raise SystemExit(2)

    configure_logging(cfg)

    session = ChatSession(
        RnsTransport(cfg),
        topic,
        nodes,
        name=cfg.name,
        joining=args.command == "join",
        strict=cfg.strict_decoding,
    )
    try:
        session.run()
    except KeyboardInterrupt:
        raise SystemExit(130)
    except DecodeError as e:
        print(f"rchat: {e}", file=sys.stderr)
        raise SystemExit(2)
    except ChatError as e:
        print(f"rchat: {e}", file=sys.stderr)
        raise SystemExit(1)


if __name__ == "__main__":
    main()
