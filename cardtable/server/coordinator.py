from __future__ import annotations

import logging
import random
import socket
import threading
from typing import Dict, List, Optional

from ..game.dispatcher import Dispatcher
from ..game.table import GameState, Table
from ..net.net import close_quietly, format_address, open_listener, parse_address, recv_msg
from ..net.protocol import REQUEST_PORT, SNAPSHOT_PORT, ProtocolError, check_hello, decode_operation
from .broadcaster import Broadcaster, ViewerLink

logger = logging.getLogger(__name__)

ACCEPT_POLL = 0.5


class Coordinator:
    """The game host: owns the table, accepts viewers and broadcasts snapshots.

    Two listeners run side by side. The request listener takes one connection
    per viewer and reads operations from it on a dedicated thread. The
    snapshot listener takes connections viewers open to receive snapshots;
    viewers that listen themselves are dialed instead, via a connect request.
    """

    def __init__(
        self,
        bind: str = "0.0.0.0",
        request_port: int = REQUEST_PORT,
        snapshot_port: int = SNAPSHOT_PORT,
        table: Optional[Table] = None,
        rng: Optional[random.Random] = None,
    ) -> None:
        self.bind = bind
        self._request_port = request_port
        self._snapshot_port = snapshot_port
        self.broadcaster = Broadcaster()
        self.dispatcher = Dispatcher(
            table=table,
            rng=rng,
            on_change=self.broadcaster.broadcast,
            on_connect=self.connect_viewer,
            on_disconnect=self.disconnect_viewer,
        )
        self.request_srv: Optional[socket.socket] = None
        self.snapshot_srv: Optional[socket.socket] = None
        self.stopped = threading.Event()
        self.threads: List[threading.Thread] = []
        self._threads_lock = threading.Lock()
        # viewer address -> request sockets announced under it
        self.request_socks: Dict[str, List[socket.socket]] = {}
        self._socks_lock = threading.Lock()

    # --------------------------- lifecycle ---------------------------

    @property
    def request_port(self) -> int:
        if self.request_srv is not None:
            return self.request_srv.getsockname()[1]
        return self._request_port

    @property
    def snapshot_port(self) -> int:
        if self.snapshot_srv is not None:
            return self.snapshot_srv.getsockname()[1]
        return self._snapshot_port

    def start(self) -> None:
        """Bind both listeners and start accepting. Bind errors propagate."""
        self.request_srv = open_listener(self.bind, self._request_port, timeout=ACCEPT_POLL)
        try:
            self.snapshot_srv = open_listener(self.bind, self._snapshot_port, timeout=ACCEPT_POLL)
        except OSError:
            close_quietly(self.request_srv)
            raise
        logger.info(
            "coordinator listening on %s (requests :%d, snapshots :%d)",
            self.bind, self.request_port, self.snapshot_port,
        )
        self._spawn(self._accept_loop, self.request_srv, self._handle_request_conn, name="accept-requests")
        self._spawn(self._accept_loop, self.snapshot_srv, self._handle_snapshot_conn, name="accept-snapshots")

    def serve_forever(self) -> None:
        if self.request_srv is None:
            self.start()
        try:
            while not self.stopped.wait(ACCEPT_POLL):
                pass
        finally:
            self.stop()

    def stop(self) -> None:
        """Tell viewers the host is leaving, then close listeners and viewer channels."""
        if self.stopped.is_set():
            return
        self.stopped.set()
        logger.info("coordinator shutting down")
        self.dispatcher.set_host_present(False)
        close_quietly(self.request_srv)
        close_quietly(self.snapshot_srv)
        self.broadcaster.close_all()
        with self._socks_lock:
            socks = [s for group in self.request_socks.values() for s in group]
            self.request_socks.clear()
        for sock in socks:
            close_quietly(sock)
        current = threading.current_thread()
        with self._threads_lock:
            threads = list(self.threads)
        for t in threads:
            if t is not current:
                t.join(2.0)

    def snapshot(self) -> GameState:
        return self.dispatcher.snapshot()

    # --------------------------- viewer registry ---------------------------

    def connect_viewer(self, ip_addr: str) -> None:
        """Dial a listening viewer and register the snapshot channel (connect request)."""
        try:
            target = parse_address(ip_addr, self._default_viewer_port())
        except ValueError as e:
            logger.warning("ignoring connect: %s", e)
            return
        link = ViewerLink(ip_addr, dial=target)
        # called under the dispatcher lock: the current snapshot goes out first
        self.broadcaster.register(link, self.dispatcher.table.snapshot())
        self._track(link.thread)

    def disconnect_viewer(self, ip_addr: str) -> None:
        removed = self.broadcaster.unregister(ip_addr)
        with self._socks_lock:
            socks = self.request_socks.pop(ip_addr, [])
        for sock in socks:
            close_quietly(sock)
        if removed or socks:
            logger.info("viewer %s disconnected", ip_addr)

    def _default_viewer_port(self) -> int:
        # port 0 only makes sense for our own listener
        return self._snapshot_port or SNAPSHOT_PORT

    # --------------------------- connection handling ---------------------------

    def _spawn(self, target, *args, name: str) -> threading.Thread:
        t = threading.Thread(target=target, args=args, name=name, daemon=True)
        t.start()
        self._track(t)
        return t

    def _track(self, thread: threading.Thread) -> None:
        # only started threads are tracked, so a dead one is a finished one
        with self._threads_lock:
            self.threads = [t for t in self.threads if t.is_alive()]
            self.threads.append(thread)

    def _accept_loop(self, srv: socket.socket, handler) -> None:
        while not self.stopped.is_set():
            try:
                conn, addr = srv.accept()
            except socket.timeout:
                continue
            except OSError as e:
                if self.stopped.is_set():
                    break
                logger.error("accept failed, stopping coordinator: %s", e)
                threading.Thread(target=self.stop, daemon=True).start()
                break
            conn.settimeout(None)
            logger.debug("accepted %s", format_address(addr))
            self._spawn(handler, conn, addr, name=f"conn-{format_address(addr)}")

    def _handle_request_conn(self, conn: socket.socket, addr) -> None:
        ip_addr = format_address(addr)
        try:
            ip_addr = check_hello(recv_msg(conn), "viewer") or ip_addr
            with self._socks_lock:
                self.request_socks.setdefault(ip_addr, []).append(conn)
            logger.info("viewer %s opened request channel", ip_addr)
            while not self.stopped.is_set():
                op = decode_operation(recv_msg(conn))
                self.dispatcher.dispatch(op)
        except ConnectionError:
            logger.info("viewer %s closed request channel", ip_addr)
        except ProtocolError as e:
            logger.warning("dropping viewer %s: %s", ip_addr, e)
        except OSError as e:
            if not self.stopped.is_set():
                logger.warning("request channel to %s failed: %s", ip_addr, e)
        finally:
            with self._socks_lock:
                group = self.request_socks.get(ip_addr)
                if group and conn in group:
                    group.remove(conn)
                    if not group:
                        del self.request_socks[ip_addr]
            close_quietly(conn)

    def _handle_snapshot_conn(self, conn: socket.socket, addr) -> None:
        ip_addr = format_address(addr)
        try:
            ip_addr = check_hello(recv_msg(conn), "viewer") or ip_addr
        except (ConnectionError, ProtocolError) as e:
            logger.warning("rejecting snapshot channel from %s: %s", ip_addr, e)
            close_quietly(conn)
            return
        except OSError as e:
            logger.warning("snapshot handshake with %s failed: %s", ip_addr, e)
            close_quietly(conn)
            return
        link = ViewerLink(ip_addr, sock=conn)
        with self.dispatcher.lock:
            if self.stopped.is_set():
                close_quietly(conn)
                return
            self.broadcaster.register(link, self.dispatcher.table.snapshot())
        self._track(link.thread)
        logger.info("viewer %s opened snapshot channel", ip_addr)
