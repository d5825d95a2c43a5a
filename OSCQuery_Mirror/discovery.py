"""HTTP side of OSCQuery: HOST_INFO and structure requests."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

import requests

from OSCQuery_Mirror.config import MirrorConfig


logger = logging.getLogger("OSCQueryMirror.discovery")

REQUEST_TIMEOUT_SEC = 2.0


class DiscoveryError(Exception):
    """Structured error raised by discovery requests."""

    def __init__(self, code: str, message: str):
        super().__init__(message)
        self.code = code
        self.message = message


@dataclass
class HostInfo:
    name: str = ""
    osc_port: Optional[int] = None
    osc_transport: Optional[str] = None
    extensions: Dict[str, Any] = field(default_factory=dict)

    @property
    def has_listen(self) -> bool:
        return bool(self.extensions.get("LISTEN", False))

    @classmethod
    def from_payload(cls, payload: Dict[str, Any]) -> "HostInfo":
        osc_port = payload.get("OSC_PORT")
        try:
            osc_port = int(osc_port) if osc_port is not None else None
        except (TypeError, ValueError, OverflowError):
            logger.warning(f"Ignoring invalid OSC_PORT in HOST_INFO: {osc_port!r}")
            osc_port = None
        extensions = payload.get("EXTENSIONS")
        return cls(
            name=str(payload.get("NAME") or ""),
            osc_port=osc_port,
            osc_transport=payload.get("OSC_TRANSPORT"),
            extensions=extensions if isinstance(extensions, dict) else {},
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "osc_port": self.osc_port,
            "osc_transport": self.osc_transport,
            "extensions": dict(self.extensions),
            "has_listen": self.has_listen,
        }


class DiscoveryClient:
    """Issues the two discovery requests against the configured remote."""

    def __init__(self, config: MirrorConfig, session: Optional[requests.Session] = None):
        self.config = config
        self.session = session or requests.Session()

    def base_url(self) -> str:
        return f"http://{self.config.effective_host()}:{self.config.remote_port}/"

    def _get_json(self, url: str, label: str) -> Dict[str, Any]:
        timeout = self.config.request_timeout_sec or REQUEST_TIMEOUT_SEC
        try:
            response = self.session.get(url, timeout=timeout)
        except requests.Timeout:
            raise DiscoveryError("timeout", f"{label} request timed out after {timeout}s ({url})")
        except requests.RequestException as e:
            raise DiscoveryError("transport_error", f"{label} request failed ({url}): {str(e)}")

        status = response.status_code
        if status < 200 or status >= 300:
            raise DiscoveryError("bad_status", f"Failed to request {label}, status code = {status}")

        content = response.text
        if self.config.log_incoming:
            logger.info(f"Request status code : {status}, content :\n{content}")

        try:
            data = json.loads(content)
        except ValueError as e:
            raise DiscoveryError("invalid_json", f"{label} response is not valid JSON: {str(e)}")
        if not isinstance(data, dict):
            raise DiscoveryError("invalid_json", f"{label} response is not a JSON object")
        return data

    def request_host_info(self) -> Optional[HostInfo]:
        """GET ``/?HOST_INFO``; ``None`` when the remote did not answer usefully."""
        url = self.base_url() + "?HOST_INFO"
        try:
            payload = self._get_json(url, "HOST_INFO")
        except DiscoveryError as e:
            logger.warning(f"Error with host info request: {e.message}")
            return None
        if self.config.log_incoming:
            logger.info(f"Received HOST_INFO :\n{json.dumps(payload, indent=2)}")
        return HostInfo.from_payload(payload)

    def request_structure(self) -> Optional[Dict[str, Any]]:
        """GET ``/``; the parsed namespace or ``None``."""
        try:
            return self._get_json(self.base_url(), "structure")
        except DiscoveryError as e:
            logger.warning(f"Error with structure request: {e.message}")
            return None

    def close(self) -> None:
        try:
            self.session.close()
        except Exception as e:
            logger.debug(f"Error closing HTTP session: {str(e)}")
