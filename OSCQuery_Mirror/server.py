# oscquery_mirror_server.py
from mcp.server.fastmcp import FastMCP, Context
import logging
import threading
from collections import deque
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import AsyncIterator, Dict, Any, List, Union, Optional

from OSCQuery_Mirror.config import load_mirror_config
from OSCQuery_Mirror.engine import MirrorEngine, MirrorEventListener
from OSCQuery_Mirror.mirror_tree import MirrorGroup, MirrorParameter

# Configure logging
logging.basicConfig(level=logging.INFO,
                    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s')
logger = logging.getLogger("OSCQueryMirrorServer")

_RECENT_CHANGES_LIMIT = 200


def _utc_now_iso() -> str:
    """Return UTC timestamp in ISO8601 format."""
    return datetime.now(timezone.utc).isoformat()


class RecentChanges(MirrorEventListener):
    """Keeps the latest mirror events so tools can report them."""

    def __init__(self, limit: int = _RECENT_CHANGES_LIMIT):
        self._events = deque(maxlen=limit)
        self._lock = threading.Lock()
        self.structure_updates = 0
        self.last_structure_at: Optional[str] = None

    def on_structure_changed(self, root_description: Dict[str, Any]) -> None:
        with self._lock:
            self.structure_updates += 1
            self.last_structure_at = _utc_now_iso()
            self._events.append({"event": "structure_changed", "at": self.last_structure_at})

    def on_value_changed(self, address: str, value: Any) -> None:
        with self._lock:
            self._events.append({"event": "value_changed", "address": address, "value": value, "at": _utc_now_iso()})

    def snapshot(self, limit: int) -> List[Dict[str, Any]]:
        with self._lock:
            rows = list(self._events)
        if limit > 0:
            rows = rows[-limit:]
        return rows


@asynccontextmanager
async def server_lifespan(server: FastMCP) -> AsyncIterator[Dict[str, Any]]:
    """Manage server startup and shutdown lifecycle"""
    try:
        logger.info("OSCQueryMirror server starting up")
        try:
            get_mirror_engine()
            logger.info("Mirror engine started, first sync requested")
        except Exception as e:
            logger.warning(f"Could not start mirror engine on startup: {str(e)}")

        yield {}
    finally:
        global _mirror_engine
        if _mirror_engine:
            logger.info("Closing mirror engine on shutdown")
            _mirror_engine.close()
            _mirror_engine = None
        logger.info("OSCQueryMirror server shut down")

# Create the MCP server with lifespan support
mcp = FastMCP(
    "OSCQueryMirror",
    lifespan=server_lifespan
)

# Global engine for the configured remote
_mirror_engine = None
_recent_changes = RecentChanges()
_engine_lock = threading.Lock()


def get_mirror_engine() -> MirrorEngine:
    """Get or create the engine for the configured remote"""
    global _mirror_engine

    with _engine_lock:
        if _mirror_engine is None:
            config, warnings = load_mirror_config()
            for warning in warnings:
                logger.warning(f"Config warning: {warning}")
            engine = MirrorEngine(config)
            engine.add_listener(_recent_changes)
            engine.start()
            _mirror_engine = engine
            logger.info(
                f"Created mirror engine for {config.effective_host()}:{config.remote_port}"
            )
        return _mirror_engine


def _error_payload(error: str, exc: Exception) -> Dict[str, Any]:
    return {
        "ok": False,
        "error": error,
        "message": str(exc)
    }


def _not_found(address: str) -> Dict[str, Any]:
    return {
        "ok": False,
        "error": "not_found",
        "message": f"No mirrored node at {address}"
    }


@mcp.tool()
def sync_now(ctx: Context) -> Dict[str, Any]:
    """
    Re-run OSCQuery discovery (HOST_INFO then structure) in the background.

    A request made while a sync is running is folded into one follow-up sync.
    """
    try:
        engine = get_mirror_engine()
        started = engine.sync_now()
        return {
            "ok": True,
            "started": started,
            "coalesced": not started,
            "remote": engine.describe()["remote"]
        }
    except Exception as e:
        logger.error(f"Error requesting sync: {str(e)}")
        return _error_payload("sync_failed", e)


@mcp.tool()
def get_mirror_status(ctx: Context) -> Dict[str, Any]:
    """Get remote, OSC target, LISTEN support and sync state of the mirror"""
    try:
        engine = get_mirror_engine()
        status = engine.describe()
        status["ok"] = True
        status["structure_updates"] = _recent_changes.structure_updates
        status["last_structure_at"] = _recent_changes.last_structure_at
        return status
    except Exception as e:
        logger.error(f"Error getting mirror status: {str(e)}")
        return _error_payload("status_failed", e)


@mcp.tool()
def get_mirror_tree(ctx: Context, address: str = "/") -> Dict[str, Any]:
    """
    Get the mirrored parameter tree, or the subtree below an address.

    Parameters:
    - address: Group or parameter address, e.g. "/layer1/opacity" (default: root)
    """
    try:
        engine = get_mirror_engine()
        with engine.tree.lock:
            node = engine.tree.find(address)
            if node is None:
                return _not_found(address)
            return {
                "ok": True,
                "node": node.to_dict()
            }
    except Exception as e:
        logger.error(f"Error reading mirror tree: {str(e)}")
        return _error_payload("tree_failed", e)


@mcp.tool()
def get_parameter(ctx: Context, address: str) -> Dict[str, Any]:
    """
    Get one mirrored parameter with its type, range and current value.

    Parameters:
    - address: Parameter address, e.g. "/master/volume"
    """
    try:
        engine = get_mirror_engine()
        param = engine.get_parameter(address)
        if param is None:
            return _not_found(address)
        return {
            "ok": True,
            "parameter": param.to_dict()
        }
    except Exception as e:
        logger.error(f"Error getting parameter: {str(e)}")
        return _error_payload("get_failed", e)


@mcp.tool()
def set_parameter(
    ctx: Context,
    address: str,
    value: Union[bool, int, float, str, List[Union[int, float]]]
) -> Dict[str, Any]:
    """
    Set a mirrored parameter; the new value is sent to the remote.

    Parameters:
    - address: Parameter address
    - value: Scalar for bool/int/float/string/enum, list for points and RGBA colors (0..1)
    """
    try:
        engine = get_mirror_engine()
        param = engine.get_parameter(address)
        if param is None:
            return _not_found(address)
        if param.read_only:
            return {
                "ok": False,
                "error": "read_only",
                "message": f"{address} is read-only"
            }
        changed = engine.set_value(address, value)
        return {
            "ok": True,
            "changed": changed,
            "parameter": engine.get_parameter(address).to_dict()
        }
    except Exception as e:
        logger.error(f"Error setting parameter: {str(e)}")
        return _error_payload("set_failed", e)


@mcp.tool()
def trigger_parameter(ctx: Context, address: str) -> Dict[str, Any]:
    """
    Fire a trigger parameter (sends an argument-less OSC message).

    Parameters:
    - address: Trigger address
    """
    try:
        engine = get_mirror_engine()
        param = engine.get_parameter(address)
        if param is None:
            return _not_found(address)
        if not param.is_trigger:
            return {
                "ok": False,
                "error": "not_a_trigger",
                "message": f"{address} is a {param.kind.value} parameter"
            }
        return {
            "ok": engine.trigger(address),
            "address": param.address
        }
    except Exception as e:
        logger.error(f"Error firing trigger: {str(e)}")
        return _error_payload("trigger_failed", e)


@mcp.tool()
def set_listen(ctx: Context, address: str, enabled: bool = True) -> Dict[str, Any]:
    """
    Enable or disable push updates for every parameter of a group.

    Parameters:
    - address: Group address
    - enabled: True sends LISTEN, False sends IGNORE
    """
    try:
        engine = get_mirror_engine()
        group = engine.tree.get_group(address)
        if group is None or group is engine.tree.root:
            return _not_found(address)
        changed = engine.set_listen(address, enabled)
        return {
            "ok": True,
            "changed": changed,
            "listen": group.listen_enabled,
            "has_listen_extension": engine.has_listen_extension,
            "push_connected": engine.describe()["push_connected"]
        }
    except Exception as e:
        logger.error(f"Error updating listen state: {str(e)}")
        return _error_payload("listen_failed", e)


@mcp.tool()
def listen_to_all(ctx: Context) -> Dict[str, Any]:
    """Enable push updates on every mirrored group (remote must support LISTEN)"""
    try:
        engine = get_mirror_engine()
        if not engine.has_listen_extension:
            return {
                "ok": False,
                "error": "listen_unsupported",
                "message": "Remote does not advertise the LISTEN extension"
            }
        return {
            "ok": True,
            "groups_enabled": engine.listen_all()
        }
    except Exception as e:
        logger.error(f"Error enabling listen on all groups: {str(e)}")
        return _error_payload("listen_failed", e)


@mcp.tool()
def send_osc_message(
    ctx: Context,
    address: str,
    arguments: Optional[List[Union[bool, int, float, str, List[Union[int, float, str]]]]] = None
) -> Dict[str, Any]:
    """
    Send a raw OSC message to the remote, bypassing the mirror tree.

    Parameters:
    - address: OSC address pattern
    - arguments: Values to send; nested lists are flattened
    """
    try:
        engine = get_mirror_engine()
        sent = engine.send_message(address, *(arguments or []))
        host, port = engine.osc_target()
        return {
            "ok": sent,
            "address": address,
            "target": f"{host}:{port}"
        }
    except Exception as e:
        logger.error(f"Error sending OSC message: {str(e)}")
        return _error_payload("send_failed", e)


@mcp.tool()
def get_recent_changes(ctx: Context, limit: int = 50) -> Dict[str, Any]:
    """
    Get the latest structure and value events seen by the mirror.

    Parameters:
    - limit: Maximum number of events to return, newest last
    """
    try:
        events = _recent_changes.snapshot(int(limit))
        return {
            "ok": True,
            "count": len(events),
            "events": events
        }
    except Exception as e:
        logger.error(f"Error reading recent changes: {str(e)}")
        return _error_payload("changes_failed", e)


def _summarize_group(group: MirrorGroup) -> Dict[str, Any]:
    parameters = list(group.iter_parameters())
    return {
        "address": group.address,
        "label": group.label,
        "parameter_count": len(parameters),
        "read_only_count": len([p for p in parameters if isinstance(p, MirrorParameter) and p.read_only]),
        "listen": group.listen_enabled
    }


@mcp.tool()
def list_groups(ctx: Context) -> Dict[str, Any]:
    """List every mirrored group with parameter counts and listen state"""
    try:
        engine = get_mirror_engine()
        with engine.tree.lock:
            groups = [_summarize_group(group) for group in engine.tree.root.iter_groups()]
        return {
            "ok": True,
            "group_count": len(groups),
            "groups": groups
        }
    except Exception as e:
        logger.error(f"Error listing groups: {str(e)}")
        return _error_payload("list_failed", e)

# Main execution
def main():
    """Run the MCP server"""
    mcp.run()

if __name__ == "__main__":
    main()
