from __future__ import annotations

import logging
import queue
import socket
import threading
from typing import Optional

from .game.model import Card
from .game.operation import OpTag, Operation
from .game.table import GameState
from .net.net import close_quietly, format_address, open_client, open_listener, recv_msg, send_msg
from .net.protocol import (
    REQUEST_PORT,
    SNAPSHOT_PORT,
    ProtocolError,
    check_hello,
    decode_state,
    encode_operation,
    hello,
)

logger = logging.getLogger(__name__)

SNAPSHOT_QUEUE_SIZE = 8


class ViewerSession:
    """One viewer's connection to a coordinator.

    Owns the outbound request channel and the inbound snapshot channel. A
    background reader publishes every snapshot to a bounded queue that the
    presentation layer drains with ``try_get``; when the queue is full the
    oldest snapshot is dropped.

    By default the viewer dials the coordinator's snapshot port. With
    ``listen=True`` it opens its own snapshot listener and asks the
    coordinator to dial back with a connect request.
    """

    def __init__(
        self,
        host: str,
        port: int = REQUEST_PORT,
        snapshot_port: int = SNAPSHOT_PORT,
        listen: bool = False,
        bind: str = "0.0.0.0",
        advertise: Optional[str] = None,
        queue_size: int = SNAPSHOT_QUEUE_SIZE,
        timeout: float = 5.0,
    ) -> None:
        self.host = host
        self.port = port
        self.snapshot_port = snapshot_port
        self.listen = listen
        self.bind = bind
        self.advertise = advertise
        self.timeout = timeout
        self.ip_addr = ""
        self.request_sock: Optional[socket.socket] = None
        self.snapshot_sock: Optional[socket.socket] = None
        self.snapshot_srv: Optional[socket.socket] = None
        self.snapshots: "queue.Queue[GameState]" = queue.Queue(maxsize=queue_size)
        self.state: Optional[GameState] = None
        self.connected = False
        self.stopped = threading.Event()
        self.host_gone = threading.Event()
        self.recv_thread: Optional[threading.Thread] = None
        self._send_lock = threading.Lock()

    # --------------------------- setup ---------------------------

    def open(self) -> "ViewerSession":
        if self.listen:
            self._open_listening()
        else:
            self._open_dialing()
        self.connected = True
        return self

    def __enter__(self) -> "ViewerSession":
        if self.request_sock is None:
            self.open()
        return self

    def __exit__(self, *exc) -> None:
        self.close()

    def _open_dialing(self) -> None:
        self.snapshot_sock = open_client(self.host, self.snapshot_port, timeout=self.timeout)
        self.ip_addr = format_address(self.snapshot_sock.getsockname())
        send_msg(self.snapshot_sock, hello("viewer", self.ip_addr))
        check_hello(recv_msg(self.snapshot_sock), "host")
        self._open_request_channel()
        self._start_recv_loop()

    def _open_listening(self) -> None:
        self.snapshot_srv = open_listener(self.bind, self.snapshot_port, backlog=1, timeout=self.timeout)
        local_port = self.snapshot_srv.getsockname()[1]
        self.request_sock = open_client(self.host, self.port, timeout=self.timeout)
        advertised = self.advertise or self.request_sock.getsockname()[0]
        self.ip_addr = f"{advertised}:{local_port}"
        send_msg(self.request_sock, hello("viewer", self.ip_addr))
        self.send(Operation(OpTag.CONNECT, ip_addr=self.ip_addr))
        try:
            conn, _addr = self.snapshot_srv.accept()
        finally:
            close_quietly(self.snapshot_srv)
            self.snapshot_srv = None
        conn.settimeout(None)
        self.snapshot_sock = conn
        check_hello(recv_msg(conn), "host")
        self._start_recv_loop()

    def _open_request_channel(self) -> None:
        self.request_sock = open_client(self.host, self.port, timeout=self.timeout)
        send_msg(self.request_sock, hello("viewer", self.ip_addr))

    def _start_recv_loop(self) -> None:
        def loop() -> None:
            try:
                while not self.stopped.is_set():
                    state = decode_state(recv_msg(self.snapshot_sock))
                    self._publish(state)
                    if not state.host_still_present:
                        logger.info("host left the table")
                        self.host_gone.set()
                        break
            except (ConnectionError, ProtocolError, OSError) as e:
                if not self.stopped.is_set():
                    logger.info("snapshot channel closed: %s", e)
            finally:
                self.connected = False

        self.recv_thread = threading.Thread(target=loop, name="snapshot-reader", daemon=True)
        self.recv_thread.start()

    def _publish(self, state: GameState) -> None:
        self.state = state
        while True:
            try:
                self.snapshots.put_nowait(state)
                return
            except queue.Full:
                try:
                    self.snapshots.get_nowait()
                except queue.Empty:
                    pass

    # --------------------------- requests ---------------------------

    def send(self, op: Operation) -> None:
        if self.request_sock is None:
            return
        with self._send_lock:
            send_msg(self.request_sock, encode_operation(op))

    def try_get(self, timeout: float = 0.0) -> Optional[GameState]:
        try:
            if timeout <= 0:
                return self.snapshots.get_nowait()
            return self.snapshots.get(timeout=timeout)
        except queue.Empty:
            return None

    def move(self, src: int, dest: int, card: Card) -> None:
        self.send(Operation(OpTag.MOVE, pile1=src, pile2=dest, card=card))

    def flip(self, slot: int, card: Card) -> None:
        self.send(Operation(OpTag.FLIP, pile1=slot, card=card))

    def create(self, slot: int, name: Optional[str] = None) -> None:
        if name is None:
            name = self.state.next_default_name() if self.state else "Pile 1"
        self.send(Operation(OpTag.CREATE, pile1=slot, name=name))

    def shuffle(self, slot: int) -> None:
        self.send(Operation(OpTag.SHUFFLE, pile1=slot))

    def delete(self, slot: int) -> None:
        self.send(Operation(OpTag.DELETE, pile1=slot))

    def face_up(self, slot: int) -> None:
        self.send(Operation(OpTag.FACE_UP, pile1=slot))

    def face_down(self, slot: int) -> None:
        self.send(Operation(OpTag.FACE_DOWN, pile1=slot))

    def move_all(self, src: int, dest: int) -> None:
        self.send(Operation(OpTag.MOVE_ALL, pile1=src, pile2=dest))

    def protect(self, slot: int, owner: str) -> None:
        self.send(Operation(OpTag.PROTECT, pile1=slot, name=owner))

    def unprotect(self, slot: int, owner: str) -> None:
        self.send(Operation(OpTag.UNPROTECT, pile1=slot, name=owner))

    def pile_move(self, src: int, dest: int) -> None:
        self.send(Operation(OpTag.PILE_MOVE, pile1=src, pile2=dest))

    # --------------------------- teardown ---------------------------

    def close(self) -> None:
        if self.stopped.is_set():
            return
        self.stopped.set()
        if self.request_sock is not None and not self.host_gone.is_set():
            try:
                self.send(Operation(OpTag.DISCONNECT, ip_addr=self.ip_addr))
            except OSError:
                pass
        close_quietly(self.request_sock)
        close_quietly(self.snapshot_sock)
        close_quietly(self.snapshot_srv)
        self.connected = False
