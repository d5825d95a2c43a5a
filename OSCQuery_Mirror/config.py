"""Remote endpoint configuration: environment, optional JSON file, defaults."""

from __future__ import annotations

import json
import os
from dataclasses import asdict, dataclass
from typing import Any, Dict, List, Optional, Tuple


_DEFAULT_REMOTE_HOST = "127.0.0.1"
_DEFAULT_REMOTE_PORT = 5678
_DEFAULT_REQUEST_TIMEOUT_SEC = 2.0
_DEFAULT_PUSH_RECONNECT_SEC = 2.0
_DEFAULT_CONFIG_PATH = os.path.expanduser("~/.oscquery_mirror/config.json")
_TRUE_TOKENS = {"1", "true", "yes", "on"}
_FALSE_TOKENS = {"0", "false", "no", "off"}


@dataclass
class MirrorConfig:
    remote_host: str = _DEFAULT_REMOTE_HOST
    remote_port: int = _DEFAULT_REMOTE_PORT
    # Send to 127.0.0.1 whatever remote_host says.
    use_local: bool = True
    # OSC port override; None means "send to remote_port".
    custom_osc_port: Optional[int] = None
    keep_values_on_sync: bool = False
    # Local UDP port for direct inbound datagrams; None disables the receiver.
    listen_port: Optional[int] = None
    enabled: bool = True
    log_incoming: bool = False
    log_outgoing: bool = False
    request_timeout_sec: float = _DEFAULT_REQUEST_TIMEOUT_SEC
    push_reconnect_sec: float = _DEFAULT_PUSH_RECONNECT_SEC

    def effective_host(self) -> str:
        return "127.0.0.1" if self.use_local else self.remote_host

    def effective_osc_port(self) -> int:
        if self.custom_osc_port is not None:
            return int(self.custom_osc_port)
        return int(self.remote_port)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def _config_path() -> str:
    override = os.environ.get("OSCQUERY_MIRROR_CONFIG")
    if isinstance(override, str) and override.strip():
        return os.path.abspath(os.path.expanduser(override.strip()))
    return _DEFAULT_CONFIG_PATH


def _load_optional_config() -> Dict[str, Any]:
    """Load optional JSON config payload from disk."""
    config_path = _config_path()
    if not os.path.exists(config_path):
        return {}
    try:
        with open(config_path, "r", encoding="utf-8") as handle:
            payload = json.load(handle)
        if isinstance(payload, dict):
            return payload
    except Exception:
        return {}
    return {}


def _config_or_env(config_payload: Dict[str, Any], key: str, env_key: str, default: Any) -> Any:
    """Return environment override, config value, or default."""
    env_value = os.environ.get(env_key)
    if env_value is not None and str(env_value).strip():
        return env_value
    if isinstance(config_payload, dict) and key in config_payload:
        value = config_payload.get(key)
        if value is not None and (not isinstance(value, str) or value.strip()):
            return value
    return default


def _coerce_bool(value: Any, default: bool, key: str, warnings: List[str]) -> bool:
    if isinstance(value, bool):
        return value
    token = str(value).strip().lower()
    if token in _TRUE_TOKENS:
        return True
    if token in _FALSE_TOKENS:
        return False
    warnings.append(f"invalid_bool:{key}")
    return default


def _coerce_port(value: Any, default: Optional[int], key: str, warnings: List[str]) -> Optional[int]:
    if value is None:
        return default
    try:
        port = int(str(value).strip())
    except (TypeError, ValueError):
        warnings.append(f"invalid_port:{key}")
        return default
    if port < 1 or port > 65535:
        warnings.append(f"port_out_of_range:{key}")
        return default
    return port


def _coerce_seconds(value: Any, default: float, key: str, warnings: List[str]) -> float:
    try:
        seconds = float(str(value).strip())
    except (TypeError, ValueError):
        warnings.append(f"invalid_seconds:{key}")
        return default
    if seconds <= 0:
        warnings.append(f"invalid_seconds:{key}")
        return default
    return seconds


def load_mirror_config() -> Tuple[MirrorConfig, List[str]]:
    """
    Resolve the mirror configuration.

    Order per key:
    1) OSCQUERY_* environment variable
    2) ~/.oscquery_mirror/config.json (or the file named by OSCQUERY_MIRROR_CONFIG)
    3) built-in default

    Invalid values fall back to the default and are reported in the returned
    warnings list.
    """
    payload = _load_optional_config()
    warnings: List[str] = []

    remote_host = str(
        _config_or_env(payload, "remote_host", "OSCQUERY_REMOTE_HOST", _DEFAULT_REMOTE_HOST)
    ).strip() or _DEFAULT_REMOTE_HOST

    config = MirrorConfig(
        remote_host=remote_host,
        remote_port=_coerce_port(
            _config_or_env(payload, "remote_port", "OSCQUERY_REMOTE_PORT", _DEFAULT_REMOTE_PORT),
            _DEFAULT_REMOTE_PORT,
            "remote_port",
            warnings,
        ),
        use_local=_coerce_bool(
            _config_or_env(payload, "use_local", "OSCQUERY_USE_LOCAL", True), True, "use_local", warnings
        ),
        custom_osc_port=_coerce_port(
            _config_or_env(payload, "custom_osc_port", "OSCQUERY_OSC_PORT", None),
            None,
            "custom_osc_port",
            warnings,
        ),
        keep_values_on_sync=_coerce_bool(
            _config_or_env(payload, "keep_values_on_sync", "OSCQUERY_KEEP_VALUES", False),
            False,
            "keep_values_on_sync",
            warnings,
        ),
        listen_port=_coerce_port(
            _config_or_env(payload, "listen_port", "OSCQUERY_LISTEN_PORT", None),
            None,
            "listen_port",
            warnings,
        ),
        log_incoming=_coerce_bool(
            _config_or_env(payload, "log_incoming", "OSCQUERY_LOG_INCOMING", False),
            False,
            "log_incoming",
            warnings,
        ),
        log_outgoing=_coerce_bool(
            _config_or_env(payload, "log_outgoing", "OSCQUERY_LOG_OUTGOING", False),
            False,
            "log_outgoing",
            warnings,
        ),
        request_timeout_sec=_coerce_seconds(
            _config_or_env(payload, "request_timeout_sec", "OSCQUERY_REQUEST_TIMEOUT", _DEFAULT_REQUEST_TIMEOUT_SEC),
            _DEFAULT_REQUEST_TIMEOUT_SEC,
            "request_timeout_sec",
            warnings,
        ),
        push_reconnect_sec=_coerce_seconds(
            _config_or_env(payload, "push_reconnect_sec", "OSCQUERY_PUSH_RECONNECT", _DEFAULT_PUSH_RECONNECT_SEC),
            _DEFAULT_PUSH_RECONNECT_SEC,
            "push_reconnect_sec",
            warnings,
        ),
    )
    return config, warnings
