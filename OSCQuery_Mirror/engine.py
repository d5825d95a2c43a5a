"""One mirror engine per remote: discovery worker, tree, sync channel, routes."""

from __future__ import annotations

import copy
import logging
import threading
from typing import Any, Callable, Dict, List, Optional, Tuple

import requests

from OSCQuery_Mirror.config import MirrorConfig
from OSCQuery_Mirror.discovery import DiscoveryClient, HostInfo
from OSCQuery_Mirror.mirror_tree import (
    ChangeOrigin,
    MirrorGroup,
    MirrorParameter,
    MirrorTree,
    MirrorTreeListener,
)
from OSCQuery_Mirror.reconciler import GroupFlags, rebuild, reconcile, snapshot_flags
from OSCQuery_Mirror.route_bridge import RouteBinding, RouteBridge
from OSCQuery_Mirror.sync_channel import DatagramReceiver, PushChannel, SyncChannel
from OSCQuery_Mirror.type_codec import TypeMappingError, build_script_message


logger = logging.getLogger("OSCQueryMirror.engine")

_WORKER_JOIN_TIMEOUT_SEC = 2.0


class MirrorEventListener:
    """Host-side subscriber for mirror events."""

    def on_structure_changed(self, root_description: Dict[str, Any]) -> None:
        pass

    def on_value_changed(self, address: str, value: Any) -> None:
        pass


class MirrorEngine(MirrorTreeListener):
    """
    Mirror of a single OSCQuery remote.

    ``sync_now()`` runs HOST_INFO then structure discovery on a background
    worker. A request made while a cycle is running is remembered and runs
    once more when the current cycle finishes.
    """

    def __init__(
        self,
        config: Optional[MirrorConfig] = None,
        session: Optional[requests.Session] = None,
        transport: Any = None,
        push_factory: Optional[Callable[..., Any]] = None,
        receiver_factory: Optional[Callable[..., Any]] = None,
    ):
        self.config = config or MirrorConfig()
        self.tree = MirrorTree()
        self.discovery = DiscoveryClient(self.config, session=session)
        self.sync_channel = SyncChannel(
            self.tree,
            self.osc_target,
            transport=transport,
            is_enabled=lambda: self.config.enabled,
            log_incoming=self.config.log_incoming,
            log_outgoing=self.config.log_outgoing,
        )
        self.routes = RouteBridge(self.tree)
        self.host_info: Optional[HostInfo] = None
        self.tree_data: Optional[Dict[str, Any]] = None
        self.push_channel: Any = None
        self.receiver: Any = None

        self._push_factory = push_factory or self._default_push_factory
        self._receiver_factory = receiver_factory or DatagramReceiver
        self._listeners: List[MirrorEventListener] = []
        self._state_lock = threading.Lock()
        self._worker: Optional[threading.Thread] = None
        self._pending_sync = False
        self._stop_event = threading.Event()
        self._closed = False

        self.tree.add_listener(self.sync_channel)
        self.tree.add_listener(self)

    # -- configuration ------------------------------------------------------

    @property
    def has_listen_extension(self) -> bool:
        return self.sync_channel.listen_supported

    @property
    def server_name(self) -> str:
        return self.host_info.name if self.host_info is not None else ""

    @property
    def sync_in_flight(self) -> bool:
        with self._state_lock:
            return self._worker is not None

    @property
    def pending_sync(self) -> bool:
        with self._state_lock:
            return self._pending_sync

    def osc_target(self) -> Tuple[str, int]:
        return self.config.effective_host(), self.config.effective_osc_port()

    def add_listener(self, listener: MirrorEventListener) -> None:
        if listener not in self._listeners:
            self._listeners.append(listener)

    def remove_listener(self, listener: MirrorEventListener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    # -- lifecycle ----------------------------------------------------------

    def start(self) -> None:
        if self.config.listen_port:
            self.receiver = self._receiver_factory(self.config.listen_port, self.sync_channel.handle_message)
            if not self.receiver.start():
                self.receiver = None
        self.sync_now()

    def close(self) -> None:
        """Tear down: push channel first, then receiver and worker."""
        self._closed = True
        self._teardown_push_channel()
        if self.receiver is not None:
            self.receiver.stop()
            self.receiver = None

        self._stop_event.set()
        with self._state_lock:
            worker = self._worker
            self._pending_sync = False
        if worker is not None and worker is not threading.current_thread():
            worker.join(_WORKER_JOIN_TIMEOUT_SEC)
            if worker.is_alive():
                logger.warning("Sync worker still alive after close, abandoning it")

        self.routes.clear()
        self.sync_channel.close()
        self.discovery.close()
        logger.info("Mirror engine closed")

    # -- discovery ----------------------------------------------------------

    def sync_now(self) -> bool:
        """
        Request a discovery cycle.

        Returns True when a worker was started, False when the request was
        folded into the pending follow-up of the cycle already running.
        """
        with self._state_lock:
            if self._closed:
                return False
            if self._worker is not None:
                self._pending_sync = True
                logger.debug("Sync already in flight, marking pending")
                return False
            self._stop_event.clear()
            self._worker = threading.Thread(target=self._sync_worker, name="OSCQuerySync", daemon=True)
            worker = self._worker
        worker.start()
        return True

    def _sync_worker(self) -> None:
        while True:
            try:
                self.run_sync_cycle()
            except Exception as e:
                logger.error(f"Sync cycle failed: {str(e)}")
            with self._state_lock:
                if not self._pending_sync or self._stop_event.is_set():
                    self._pending_sync = False
                    self._worker = None
                    return
                self._pending_sync = False

    def run_sync_cycle(self) -> None:
        """Run HOST_INFO then structure discovery on the calling thread."""
        if not self.config.enabled:
            return

        host_info = self.discovery.request_host_info()
        if host_info is not None:
            self.apply_host_info(host_info)

        if self._stop_event.is_set():
            return

        structure = self.discovery.request_structure()
        if structure is not None:
            self.apply_structure(structure)

    def apply_host_info(self, host_info: HostInfo) -> None:
        self.host_info = host_info
        if host_info.osc_port is not None and host_info.osc_port != self.config.remote_port:
            logger.info(
                f"OSC_PORT is different from remotePort, setting custom OSC Port to {host_info.osc_port}"
            )
            self.config.custom_osc_port = host_info.osc_port
        self.sync_channel.listen_supported = host_info.has_listen
        self.setup_push_channel()

    def apply_structure(self, structure: Dict[str, Any], preserve_values: Optional[bool] = None) -> MirrorGroup:
        preserve = self.config.keep_values_on_sync if preserve_values is None else preserve_values
        root = reconcile(self.tree, structure, preserve)
        self.tree_data = structure
        if self.push_channel is not None and self.push_channel.is_connected:
            self.sync_channel.resubscribe_all()
        for listener in list(self._listeners):
            try:
                listener.on_structure_changed(structure)
            except Exception as e:
                logger.error(f"Structure listener failed: {str(e)}")
        return root

    # -- push channel -------------------------------------------------------

    def _default_push_factory(self, url: str, on_open, on_binary, on_text) -> PushChannel:
        return PushChannel(
            url,
            on_open=on_open,
            on_binary=on_binary,
            on_text=on_text,
            reconnect_delay=self.config.push_reconnect_sec,
            open_timeout=self.config.request_timeout_sec,
        )

    def push_url(self) -> str:
        return f"ws://{self.config.effective_host()}:{self.config.remote_port}/"

    def setup_push_channel(self) -> None:
        url = self.push_url()
        wanted = not self._closed and self.config.enabled and self.has_listen_extension
        if wanted and self.push_channel is not None and getattr(self.push_channel, "url", None) == url:
            logger.debug(f"Keeping websocket to {url}")
            return
        self._teardown_push_channel()
        if not wanted:
            return
        logger.info("Server has LISTEN extension, setting up websocket")
        self.push_channel = self._push_factory(
            url,
            self.sync_channel.resubscribe_all,
            self.sync_channel.handle_push_binary,
            self.sync_channel.handle_push_text,
        )
        self.sync_channel.attach_push_channel(self.push_channel)
        self.push_channel.start()

    def _teardown_push_channel(self) -> None:
        push = self.push_channel
        self.push_channel = None
        self.sync_channel.attach_push_channel(None)
        if push is not None:
            push.stop()

    # -- host operations ----------------------------------------------------

    def get_parameter(self, address: str) -> Optional[MirrorParameter]:
        return self.tree.get_parameter(address)

    def get_value(self, address: str) -> Any:
        param = self.tree.get_parameter(address)
        return copy.deepcopy(param.value) if param is not None else None

    def set_value(self, address: str, value: Any) -> bool:
        return self.tree.set_value(address, value, origin=ChangeOrigin.LOCAL)

    def trigger(self, address: str) -> bool:
        return self.tree.trigger(address, origin=ChangeOrigin.LOCAL)

    def set_listen(self, address: str, enabled: bool) -> bool:
        return self.tree.set_listen(address, enabled)

    def listen_all(self) -> int:
        """Enable listening on every group when the remote supports LISTEN."""
        if not self.has_listen_extension:
            logger.warning("Remote has no LISTEN extension, can't listen to all")
            return 0
        changed = 0
        with self.tree.lock:
            for group in list(self.tree.root.iter_groups()):
                if self.tree.set_listen(group, True):
                    changed += 1
        return changed

    def send_message(self, address: str, *arguments: Any) -> bool:
        """Send a free-form OSC message, as a script would."""
        if not self.config.enabled or not address:
            return False
        try:
            message = build_script_message(address, arguments)
        except TypeMappingError as e:
            logger.error(f"Error sending message : {e.message}")
            return False
        return self.sync_channel.send_message(message)

    def bind_route(self, source: Any, target_address: str) -> RouteBinding:
        return self.routes.bind(source, target_address)

    # -- tree listener ------------------------------------------------------

    def parameter_changed(self, param: MirrorParameter, origin: ChangeOrigin) -> None:
        value = copy.deepcopy(param.value)
        for listener in list(self._listeners):
            try:
                listener.on_value_changed(param.address, value)
            except Exception as e:
                logger.error(f"Value listener failed: {str(e)}")

    # -- persistence --------------------------------------------------------

    def export_state(self) -> Dict[str, Any]:
        with self.tree.lock:
            flags = snapshot_flags(self.tree.root)
            return {
                "treeData": copy.deepcopy(self.tree_data),
                "values": self.tree.value_state(),
                "flags": flags.to_dict(),
            }

    def load_state(self, data: Dict[str, Any], resync: bool = True) -> bool:
        """Rebuild the tree from exported state, then optionally re-sync."""
        tree_data = data.get("treeData") if isinstance(data, dict) else None
        if not isinstance(tree_data, dict):
            logger.warning("Saved state has no tree data, nothing to restore")
            return False
        values = data.get("values") if isinstance(data.get("values"), dict) else {}
        rebuild(self.tree, tree_data, values=values, flags=GroupFlags.from_dict(data.get("flags")))
        self.tree_data = tree_data
        if resync:
            self.sync_now()
        return True

    def describe(self) -> Dict[str, Any]:
        host, port = self.osc_target()
        return {
            "remote": f"{self.config.effective_host()}:{self.config.remote_port}",
            "osc_target": f"{host}:{port}",
            "osc_port_overridden": self.config.custom_osc_port is not None,
            "server_name": self.server_name,
            "host_info": self.host_info.to_dict() if self.host_info is not None else None,
            "has_listen_extension": self.has_listen_extension,
            "push_connected": bool(self.push_channel is not None and self.push_channel.is_connected),
            "sync_in_flight": self.sync_in_flight,
            "keep_values_on_sync": self.config.keep_values_on_sync,
            "enabled": self.config.enabled,
            "parameter_count": len(list(self.tree.root.iter_parameters())),
            "route_count": len(self.routes.bindings),
        }
