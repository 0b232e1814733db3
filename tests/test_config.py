import json

import pytest

from mamebridge.config import BridgeConfig, config_from_dict, load_config, parse_terminator


def test_defaults():
    cfg = BridgeConfig()
    cfg.validate()
    assert (cfg.upstream_host, cfg.upstream_port) == ("127.0.0.1", 8000)
    assert cfg.reconnect_delay == 2.0
    assert cfg.terminator_bytes == b"\r"
    assert cfg.bus_port == 8001
    assert "mame_start" in cfg.session_start_names
    assert "mame_stop" in cfg.session_stop_names


@pytest.mark.parametrize(
    "value, expected",
    [("cr", b"\r"), ("LF", b"\n"), (" crlf ", b"\r\n"), ("\r", b"\r"), ("\r\n", b"\r\n")],
)
def test_parse_terminator(value, expected):
    assert parse_terminator(value) == expected


def test_parse_terminator_rejects_other_values():
    with pytest.raises(ValueError):
        parse_terminator(";")


def test_flat_dict():
    cfg = config_from_dict({"upstream_host": "10.0.0.5", "upstream_port": "8100", "handshake": False})
    assert cfg.upstream_host == "10.0.0.5"
    assert cfg.upstream_port == 8100
    assert cfg.handshake is False


def test_nested_dict():
    cfg = config_from_dict(
        {
            "upstream": {"host": "10.0.0.5", "port": 8100, "reconnect_delay": 5},
            "bus": {"port": 9001},
            "line_terminator": "lf",
        }
    )
    assert (cfg.upstream_host, cfg.upstream_port, cfg.reconnect_delay) == ("10.0.0.5", 8100, 5.0)
    assert cfg.bus_port == 9001
    assert cfg.terminator_bytes == b"\n"


def test_session_names_from_dict():
    cfg = config_from_dict({"session_start_names": ["game_start"], "session_stop_names": ["game_stop"]})
    assert cfg.session_start_names == ("game_start",)
    assert cfg.session_stop_names == ("game_stop",)


@pytest.mark.parametrize(
    "raw",
    [
        {"upstream_port": 0},
        {"upstream_port": 70000},
        {"bus_port": -1},
        {"reconnect_delay": -1},
        {"line_terminator": "semicolon"},
        {"upstream_host": ""},
        {"session_start_names": ["x"], "session_stop_names": ["x"]},
    ],
)
def test_invalid_values_rejected(raw):
    with pytest.raises(ValueError):
        config_from_dict(raw)


def test_unknown_keys_rejected():
    with pytest.raises(ValueError, match="colour"):
        config_from_dict({"colour": "blue"})


def test_non_mapping_rejected():
    with pytest.raises(ValueError):
        config_from_dict(["upstream_port", 8000])


def test_load_json(tmp_path):
    path = tmp_path / "bridge.json"
    path.write_text(json.dumps({"upstream": {"port": 8100}}), encoding="utf-8")
    assert load_config(path).upstream_port == 8100


def test_load_yaml(tmp_path):
    path = tmp_path / "bridge.yaml"
    path.write_text("upstream:\n  host: emu.local\n  port: 8100\nprune_failed_subscribers: true\n", encoding="utf-8")
    cfg = load_config(path)
    assert cfg.upstream_host == "emu.local"
    assert cfg.prune_failed_subscribers is True


def test_load_empty_file_gives_defaults(tmp_path):
    path = tmp_path / "empty.yaml"
    path.write_text("", encoding="utf-8")
    assert load_config(path) == BridgeConfig()


def test_load_missing_file(tmp_path):
    with pytest.raises(FileNotFoundError):
        load_config(tmp_path / "nope.json")


@pytest.mark.parametrize(
    "value, expected",
    [(True, True), (False, False), ("false", False), ("No", False), ("yes", True), (" TRUE ", True)],
)
def test_bool_fields_parse_words(value, expected):
    cfg = config_from_dict({"handshake": value, "prune_failed_subscribers": value})
    assert cfg.handshake is expected
    assert cfg.prune_failed_subscribers is expected


@pytest.mark.parametrize("value", ["maybe", 1, 0, None, [True]])
def test_bool_fields_reject_other_values(value):
    with pytest.raises(ValueError, match="handshake"):
        config_from_dict({"handshake": value})


@pytest.mark.parametrize("section", ["upstream", "bus"])
def test_non_mapping_section_rejected(section):
    with pytest.raises(ValueError, match=section):
        config_from_dict({section: "10.0.0.5"})


def test_scalar_session_names_rejected():
    with pytest.raises(ValueError, match="session_start_names"):
        config_from_dict({"session_start_names": "game_start"})
    with pytest.raises(ValueError, match="session_stop_names"):
        config_from_dict({"session_stop_names": ["game_stop", 3]})


@pytest.mark.parametrize(
    "raw",
    [{"upstream_port": 80.5}, {"upstream_port": True}, {"bus_port": "eighty"}, {"reconnect_delay": "soon"}, {"upstream_host": 10}],
)
def test_mistyped_values_rejected(raw):
    with pytest.raises(ValueError):
        config_from_dict(raw)


def test_load_yaml_with_mistyped_section(tmp_path):
    path = tmp_path / "bridge.yaml"
    path.write_text("upstream: 10.0.0.5\n", encoding="utf-8")
    with pytest.raises(ValueError):
        load_config(path)


def test_load_invalid_yaml(tmp_path):
    path = tmp_path / "bridge.yaml"
    path.write_text("upstream: [unclosed\n", encoding="utf-8")
    with pytest.raises(ValueError):
        load_config(path)
