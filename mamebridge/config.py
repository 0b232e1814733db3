from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Tuple

import json

try:
    import yaml  # type: ignore
except Exception:  # pragma: no cover - optional dependency
    yaml = None

from .bus.local import DEFAULT_BUS_HOST, DEFAULT_BUS_PORT

TERMINATORS = {
    "cr": b"\r",
    "lf": b"\n",
    "crlf": b"\r\n",
}


def parse_terminator(value: str) -> bytes:
    """Accept a terminator alias (``cr``/``lf``/``crlf``) or the literal characters."""
    key = value.strip().lower()
    if key in TERMINATORS:
        return TERMINATORS[key]
    raw = value.encode("latin-1")
    if raw in TERMINATORS.values():
        return raw
    raise ValueError(f"Unsupported line terminator {value!r} (use cr, lf or crlf)")


@dataclass(slots=True)
class BridgeConfig:
    """Runtime settings of the bridge."""

    upstream_host: str = "127.0.0.1"
    upstream_port: int = 8000
    reconnect_delay: float = 2.0
    line_terminator: str = "cr"
    handshake: bool = True
    bus_host: str = DEFAULT_BUS_HOST
    bus_port: int = DEFAULT_BUS_PORT
    session_start_names: Tuple[str, ...] = ("mame_start", "session_start")
    session_stop_names: Tuple[str, ...] = ("mame_stop", "session_stop")
    prune_failed_subscribers: bool = False

    def validate(self) -> None:
        if not self.upstream_host:
            raise ValueError("upstream_host must not be empty")
        for name in ("upstream_port", "bus_port"):
            port = getattr(self, name)
            # bus_port 0 binds an ephemeral port
            lowest = 0 if name == "bus_port" else 1
            if not lowest <= port <= 65535:
                raise ValueError(f"{name} out of range: {port}")
        if self.reconnect_delay < 0:
            raise ValueError("reconnect_delay must not be negative")
        parse_terminator(self.line_terminator)
        overlap = set(self.session_start_names) & set(self.session_stop_names)
        if overlap:
            raise ValueError(f"Names cannot both start and stop a session: {sorted(overlap)}")

    @property
    def terminator_bytes(self) -> bytes:
        return parse_terminator(self.line_terminator)


_BOOL_STRINGS = {"true": True, "yes": True, "on": True, "false": False, "no": False, "off": False}


def _as_bool(key: str, value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, str) and value.strip().lower() in _BOOL_STRINGS:
        return _BOOL_STRINGS[value.strip().lower()]
    raise ValueError(f"{key} must be true or false, got {value!r}")


def _as_int(key: str, value: Any) -> int:
    if isinstance(value, (bool, float)):
        raise ValueError(f"{key} must be an integer, got {value!r}")
    try:
        return int(value)
    except (TypeError, ValueError):
        raise ValueError(f"{key} must be an integer, got {value!r}") from None


def _as_float(key: str, value: Any) -> float:
    if isinstance(value, bool):
        raise ValueError(f"{key} must be a number, got {value!r}")
    try:
        return float(value)
    except (TypeError, ValueError):
        raise ValueError(f"{key} must be a number, got {value!r}") from None


def _as_str(key: str, value: Any) -> str:
    if not isinstance(value, str):
        raise ValueError(f"{key} must be a string, got {value!r}")
    return value


def _as_names(key: str, value: Any) -> Tuple[str, ...]:
    if not isinstance(value, (list, tuple)) or not all(isinstance(v, str) for v in value):
        raise ValueError(f"{key} must be a list of names, got {value!r}")
    return tuple(value)


_FIELDS = {
    "upstream_host": _as_str,
    "upstream_port": _as_int,
    "reconnect_delay": _as_float,
    "line_terminator": _as_str,
    "handshake": _as_bool,
    "bus_host": _as_str,
    "bus_port": _as_int,
    "session_start_names": _as_names,
    "session_stop_names": _as_names,
    "prune_failed_subscribers": _as_bool,
}


def _section(raw: Dict[str, Any], name: str) -> Dict[str, Any]:
    section = raw.get(name)
    if section is None:
        return {}
    if not isinstance(section, dict):
        raise ValueError(f"'{name}' section must be an object/dict, got {section!r}")
    return section


def config_from_dict(raw: Dict[str, Any]) -> BridgeConfig:
    """Build a validated config from a plain mapping (unknown keys rejected)."""
    if not isinstance(raw, dict):
        raise ValueError("Configuration must be an object/dict")

    # Accept the nested layout used in the example config as well
    flat: Dict[str, Any] = {}
    for key, value in _section(raw, "upstream").items():
        flat[f"upstream_{key}" if key in ("host", "port") else key] = value
    for key, value in _section(raw, "bus").items():
        flat[f"bus_{key}"] = value
    flat.update({k: v for k, v in raw.items() if k not in ("upstream", "bus")})

    unknown = set(flat) - set(_FIELDS)
    if unknown:
        raise ValueError(f"Unknown configuration keys: {', '.join(sorted(map(str, unknown)))}")

    kwargs = {key: _FIELDS[key](key, value) for key, value in flat.items()}
    cfg = BridgeConfig(**kwargs)
    cfg.validate()
    return cfg


def load_config(path: str | Path) -> BridgeConfig:
    """Parse a YAML/JSON config file into a structured config object."""

    file_path = Path(path)
    if not file_path.exists():
        raise FileNotFoundError(file_path)

    text = file_path.read_text(encoding="utf-8")
    if file_path.suffix.lower() in {".yaml", ".yml"}:
        if yaml is None:
            raise RuntimeError("PyYAML is required to load YAML configs")
        try:
            raw = yaml.safe_load(text) or {}
        except yaml.YAMLError as e:
            raise ValueError(f"Invalid YAML in {file_path}: {e}") from e
    else:
        raw = json.loads(text or "{}")

    return config_from_dict(raw)
