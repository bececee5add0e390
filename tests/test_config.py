import pytest

from rchat.cli import _build_arg_parser, build_config, main
from rchat.config import ChatRuntimeConfig, apply_config_data, load_toml


def test_apply_config_tables(tmp_path) -> None:
    p = tmp_path / "rchat.toml"
    p.write_text(
        """
[chat]
name = "Alice"
configdir = ""
join_timeout_s = 30
strict_decoding = true
unknown_key = 1

[logging]
level = "DEBUG"
file = ""
""",
        encoding="utf-8",
    )
    cfg = apply_config_data(ChatRuntimeConfig(config_path=str(p)), load_toml(str(p)))
    assert cfg.name == "Alice"
    assert cfg.configdir is None
    assert cfg.join_timeout_s == 30.0
    assert cfg.strict_decoding is True
    assert cfg.log_level == "DEBUG"
    assert cfg.log_file is None
    assert cfg.config_path == str(p)


def test_config_file_cannot_move_itself() -> None:
    cfg = apply_config_data(ChatRuntimeConfig(config_path="a.toml"), {"config_path": "b.toml"})
    assert cfg.config_path == "a.toml"


def test_bad_number_in_config() -> None:
    with pytest.raises(ValueError):
        apply_config_data(ChatRuntimeConfig(), {"join_timeout_s": "soon"})


def test_command_line_overrides_file(tmp_path) -> None:
    p = tmp_path / "rchat.toml"
    p.write_text('[chat]\nname = "Alice"\nannounce_on_start = true\n', encoding="utf-8")
    args = _build_arg_parser().parse_args(
        ["--config", str(p), "--name", " Bob ", "--no-announce", "--strict", "open"]
    )
    cfg = build_config(args)
    assert cfg.name == "Bob"
    assert cfg.announce_on_start is False
    assert cfg.strict_decoding is True


def test_invalid_nickname_rejected(tmp_path) -> None:
    args = _build_arg_parser().parse_args(
        ["--config", str(tmp_path / "missing.toml"), "--name", "   ", "open"]
    )
    with pytest.raises(ValueError):
        build_config(args)


def test_join_requires_ticket() -> None:
    with pytest.raises(SystemExit):
        _build_arg_parser().parse_args(["join"])


def test_bad_ticket_exits_without_side_effects(tmp_path, capsys) -> None:
    config = tmp_path / "rchat.toml"
    identity = tmp_path / "identity"
    with pytest.raises(SystemExit) as exc:
        main(
            [
                "--config",
                str(config),
                "--identity",
                str(identity),
                "join",
                "not a valid ticket",
            ]
        )
    assert exc.value.code == 2
    assert "invalid ticket" in capsys.readouterr().err
    assert not config.exists()
    assert not identity.exists()


@pytest.fixture
def root_logger():
    import logging

    root = logging.getLogger()
    saved = list(root.handlers), root.level
    yield root
    for h in list(root.handlers):
        root.removeHandler(h)
        h.close()
    for h in saved[0]:
        root.addHandler(h)
    root.setLevel(saved[1])


def test_configure_logging_file_and_levels(tmp_path, root_logger) -> None:
    import logging

    from rchat.logging_config import configure_logging

    log_file = tmp_path / "logs" / "rchat.log"
    cfg = ChatRuntimeConfig(
        log_level="debug", log_console=False, log_file=str(log_file), log_rns_level="ERROR"
    )
    configure_logging(cfg)
    assert root_logger.level == logging.DEBUG
    assert logging.getLogger("RNS").level == logging.ERROR
    assert not any(
        type(h) is logging.StreamHandler for h in root_logger.handlers
    )
    logging.getLogger("rchat.test").info("hello log")
    for h in root_logger.handlers:
        h.flush()
    assert "hello log" in log_file.read_text(encoding="utf-8")


def test_configure_logging_keeps_terminal_quiet_by_default(root_logger) -> None:
    import logging

    from rchat.logging_config import configure_logging

    configure_logging(ChatRuntimeConfig())
    assert [type(h) for h in root_logger.handlers] == [logging.NullHandler]
    assert root_logger.level == logging.WARNING


def test_configure_logging_console_opt_in(root_logger) -> None:
    import logging
    import sys

    from rchat.logging_config import configure_logging

    configure_logging(ChatRuntimeConfig(log_console=True))
    streams = [h for h in root_logger.handlers if type(h) is logging.StreamHandler]
    assert len(streams) == 1 and streams[0].stream is sys.stderr


def test_log_console_flag(tmp_path) -> None:
    args = _build_arg_parser().parse_args(
        ["--config", str(tmp_path / "missing.toml"), "--log-console", "open"]
    )
    cfg = build_config(args)
    assert cfg.log_console is True

    args = _build_arg_parser().parse_args(["--config", str(tmp_path / "missing.toml"), "open"])
    assert build_config(args).log_console is False


def test_first_run_config_logs_to_file_only(tmp_path, monkeypatch) -> None:
    from rchat.cli import _write_default_config

    monkeypatch.setenv("RCHAT_HOME", str(tmp_path / "home"))
    p = tmp_path / "home" / "rchat.toml"
    _write_default_config(str(p), str(tmp_path / "home" / "identity"))
    cfg = apply_config_data(ChatRuntimeConfig(), load_toml(str(p)))
    assert cfg.log_console is False
    assert cfg.log_file == str(tmp_path / "home" / "rchat.log")
