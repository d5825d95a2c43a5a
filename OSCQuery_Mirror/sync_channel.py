"""Runtime link between the mirror tree and the remote: OSC out, OSC and websocket in."""

from __future__ import annotations

import json
import logging
import socket
import threading
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

from pythonosc import dispatcher, osc_server
from pythonosc.osc_message import OscMessage
from pythonosc.osc_packet import OscPacket, ParseError
from websockets.exceptions import ConnectionClosed, WebSocketException
from websockets.sync.client import connect as ws_connect

from OSCQuery_Mirror.mirror_tree import (
    ChangeOrigin,
    MirrorGroup,
    MirrorParameter,
    MirrorTree,
    MirrorTreeListener,
)
from OSCQuery_Mirror.type_codec import TypeMappingError, build_message, coerce_inbound, encode


logger = logging.getLogger("OSCQueryMirror.sync")

LISTEN_COMMAND = "LISTEN"
IGNORE_COMMAND = "IGNORE"


class PushChannel:
    """
    Persistent websocket to the remote with its own receive thread.

    The thread connects, calls ``on_open`` once the socket is up, then
    delivers binary frames to ``on_binary`` and text frames to ``on_text``
    until the socket closes. It reconnects after ``reconnect_delay`` seconds
    until :meth:`stop` is called.
    """

    def __init__(
        self,
        url: str,
        on_open: Optional[Callable[[], None]] = None,
        on_binary: Optional[Callable[[bytes], None]] = None,
        on_text: Optional[Callable[[str], None]] = None,
        connect_factory: Optional[Callable[..., Any]] = None,
        reconnect_delay: float = 2.0,
        open_timeout: float = 2.0,
    ):
        self.url = url
        self.on_open = on_open
        self.on_binary = on_binary
        self.on_text = on_text
        self.connect_factory = connect_factory or ws_connect
        self.reconnect_delay = reconnect_delay
        self.open_timeout = open_timeout
        self._ws = None
        self._connected = False
        self._send_lock = threading.Lock()
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None

    @property
    def is_connected(self) -> bool:
        return self._connected

    def start(self) -> None:
        if self._thread is not None and self._thread.is_alive():
            return
        self._stop_event.clear()
        self._thread = threading.Thread(target=self._run, name="OSCQueryPush", daemon=True)
        self._thread.start()

    def stop(self, timeout: float = 2.0) -> None:
        self._stop_event.set()
        ws = self._ws
        if ws is not None:
            try:
                ws.close()
            except Exception as e:
                logger.debug(f"Error closing websocket: {str(e)}")
        if self._thread is not None and self._thread.is_alive() and self._thread is not threading.current_thread():
            self._thread.join(timeout)
            if self._thread.is_alive():
                logger.warning("Websocket thread still alive after stop")
        self._connected = False
        self._ws = None

    def send_json(self, payload: Dict[str, Any]) -> bool:
        ws = self._ws
        if not self._connected or ws is None:
            return False
        try:
            with self._send_lock:
                ws.send(json.dumps(payload))
            return True
        except (ConnectionClosed, OSError) as e:
            logger.warning(f"Websocket send failed: {str(e)}")
            return False

    def _run(self) -> None:
        while not self._stop_event.is_set():
            try:
                ws = self.connect_factory(self.url, open_timeout=self.open_timeout)
            except (OSError, TimeoutError, WebSocketException) as e:
                if not self._stop_event.is_set():
                    logger.error(f"Connection error {str(e)}")
                self._stop_event.wait(self.reconnect_delay)
                continue

            self._ws = ws
            self._connected = True
            logger.info(f"Websocket connection is opened ({self.url})")
            try:
                if self.on_open is not None:
                    self.on_open()
                for message in ws:
                    if isinstance(message, (bytes, bytearray)):
                        if self.on_binary is not None:
                            self.on_binary(bytes(message))
                    elif self.on_text is not None:
                        self.on_text(message)
            except ConnectionClosed:
                pass
            except Exception as e:
                logger.error(f"Error in websocket receive loop: {str(e)}")
            finally:
                self._connected = False
                self._ws = None
                try:
                    ws.close()
                except Exception:
                    pass
                logger.info("Websocket connection is closed")

            self._stop_event.wait(self.reconnect_delay)


class DatagramReceiver:
    """Threaded OSC/UDP server feeding every message to one handler."""

    def __init__(self, port: int, handler: Callable[[str, List[Any]], None], host: str = "0.0.0.0"):
        self.host = host
        self.port = port
        self.handler = handler
        self._server: Optional[osc_server.ThreadingOSCUDPServer] = None
        self._thread: Optional[threading.Thread] = None

    def start(self) -> bool:
        disp = dispatcher.Dispatcher()
        disp.set_default_handler(self._on_message)
        try:
            self._server = osc_server.ThreadingOSCUDPServer((self.host, self.port), disp)
        except OSError as e:
            logger.error(f"Could not bind OSC receiver on {self.host}:{self.port}: {str(e)}")
            self._server = None
            return False
        self._thread = threading.Thread(target=self._server.serve_forever, name="OSCQueryReceiver", daemon=True)
        self._thread.start()
        logger.info(f"OSC receiver listening on {self.host}:{self.port}")
        return True

    def stop(self, timeout: float = 2.0) -> None:
        if self._server is None:
            return
        try:
            self._server.shutdown()
            self._server.server_close()
        except Exception as e:
            logger.error(f"Error stopping OSC receiver: {str(e)}")
        if self._thread is not None:
            self._thread.join(timeout)
        self._server = None
        self._thread = None

    def _on_message(self, address: str, *args: Any) -> None:
        self.handler(address, list(args))


class SyncChannel(MirrorTreeListener):
    """
    Bidirectional value sync for one mirror tree.

    Local changes are sent as OSC datagrams to ``resolve_target()``. Inbound
    messages, from datagrams or the push channel, are applied with
    ``ChangeOrigin.REMOTE`` and therefore never sent back.
    """

    def __init__(
        self,
        tree: MirrorTree,
        resolve_target: Callable[[], Tuple[str, int]],
        transport: Any = None,
        is_enabled: Optional[Callable[[], bool]] = None,
        log_incoming: bool = False,
        log_outgoing: bool = False,
    ):
        self.tree = tree
        self.resolve_target = resolve_target
        self.transport = transport or socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
        self.is_enabled = is_enabled or (lambda: True)
        self.log_incoming = log_incoming
        self.log_outgoing = log_outgoing
        self.listen_supported = False
        self.push_channel: Optional[PushChannel] = None

    # -- outbound -----------------------------------------------------------

    def parameter_changed(self, param: MirrorParameter, origin: ChangeOrigin) -> None:
        if origin is not ChangeOrigin.LOCAL:
            return
        self.send_parameter(param)

    def send_parameter(self, param: MirrorParameter) -> bool:
        try:
            message = build_message(param.address, encode(param.tag, param.value))
        except TypeMappingError as e:
            logger.error(f"Can't send to address {param.address} : {e.message}")
            return False
        return self.send_message(message)

    def send_message(self, message: OscMessage) -> bool:
        if not self.is_enabled():
            return False
        host, port = self.resolve_target()
        if self.log_outgoing:
            logger.info(f"Send OSC : {message.address} {list(message.params)}")
        try:
            self.transport.sendto(message.dgram, (host, port))
            return True
        except OSError as e:
            logger.error(f"Error sending OSC to {host}:{port} : {str(e)}")
            return False

    # -- inbound ------------------------------------------------------------

    def handle_message(self, address: str, args: Sequence[Any]) -> bool:
        """Apply one received OSC message to the tree."""
        if self.log_incoming:
            logger.info(f"Received OSC : {address} {list(args)}")
        param = self.tree.get_parameter(address)
        if param is None:
            logger.debug(f"No mirrored parameter for {address}")
            return False
        if param.is_trigger:
            return self.tree.trigger(param, origin=ChangeOrigin.REMOTE)
        try:
            value = coerce_inbound(param.tag, args)
        except TypeMappingError as e:
            logger.debug(f"Ignoring message for {address}: {e.message}")
            return False
        return self.tree.set_value(param, value, origin=ChangeOrigin.REMOTE)

    def handle_packet(self, data: bytes) -> int:
        """Parse a raw OSC packet (message or bundle) and apply its messages."""
        try:
            packet = OscPacket(data)
        except ParseError as e:
            logger.error(f"Invalid OSC packet ({len(data)} bytes): {str(e)}")
            return 0
        if not packet.messages:
            logger.error("Empty message")
            return 0
        handled = 0
        for timed in packet.messages:
            if self.handle_message(timed.message.address, list(timed.message.params)):
                handled += 1
        return handled

    def handle_push_binary(self, data: bytes) -> None:
        if self.log_incoming:
            logger.info(f"Websocket data received : {len(data)} bytes")
        self.handle_packet(data)

    def handle_push_text(self, message: str) -> None:
        if self.log_incoming:
            logger.info(f"Websocket message received : {message}")

    # -- subscriptions ------------------------------------------------------

    def attach_push_channel(self, push_channel: Optional[PushChannel]) -> None:
        self.push_channel = push_channel

    def listen_changed(self, group: MirrorGroup) -> None:
        self.update_listen(group)

    def update_listen(self, group: MirrorGroup) -> int:
        """Send LISTEN or IGNORE for every parameter below ``group``."""
        if not self.listen_supported or not self.is_enabled():
            return 0
        push = self.push_channel
        if push is None or not push.is_connected:
            logger.warning("Websocket not connected, can't LISTEN")
            return 0
        command = LISTEN_COMMAND if group.listen_enabled else IGNORE_COMMAND
        addresses = [param.address for param in group.iter_parameters()]
        return self._send_commands(command, addresses)

    def resubscribe_all(self) -> int:
        """Reissue LISTEN for every listen-enabled group of the current tree."""
        push = self.push_channel
        if push is None or not push.is_connected:
            logger.warning("Websocket not connected, can't LISTEN")
            return 0
        addresses: List[str] = []
        seen = set()
        with self.tree.lock:
            for group in self.tree.root.iter_groups():
                if not group.listen_enabled:
                    continue
                for param in group.iter_parameters():
                    if param.address not in seen:
                        seen.add(param.address)
                        addresses.append(param.address)
        return self._send_commands(LISTEN_COMMAND, addresses)

    def _send_commands(self, command: str, addresses: List[str]) -> int:
        sent = 0
        for address in addresses:
            if self.push_channel is not None and self.push_channel.send_json({"COMMAND": command, "DATA": address}):
                sent += 1
        if self.log_outgoing and sent:
            logger.info(f"Sent {command} for {sent} parameters")
        return sent

    def close(self) -> None:
        try:
            self.transport.close()
        except Exception as e:
            logger.debug(f"Error closing OSC transport: {str(e)}")
