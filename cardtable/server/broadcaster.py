from __future__ import annotations

import logging
import queue
import socket
import threading
from typing import List, Optional, Tuple

from ..game.table import GameState
from ..net.net import close_quietly, encode_frame, open_client, send_frame
from ..net.protocol import ProtocolError, encode_state, hello

logger = logging.getLogger(__name__)

_CLOSE = None  # outbox sentinel: flush what is queued, then close

OUTBOX_SIZE = 4


class ViewerLink:
    """Snapshot channel to one viewer, owned by a single writer thread.

    The link either wraps a socket the viewer opened (inbound) or dials the
    viewer itself (outbound, from a connect request). Frames are queued by the
    broadcaster and written in order; the first write error marks the link
    failed and closes the socket.
    """

    def __init__(
        self,
        ip_addr: str,
        sock: Optional[socket.socket] = None,
        dial: Optional[Tuple[str, int]] = None,
        connect_timeout: float = 5.0,
        outbox_size: int = OUTBOX_SIZE,
    ) -> None:
        if sock is None and dial is None:
            raise ValueError("ViewerLink needs a socket or an address to dial")
        self.ip_addr = ip_addr
        self.sock = sock
        self.dial = dial
        self.connect_timeout = connect_timeout
        self.outbox: "queue.Queue[Optional[bytes]]" = queue.Queue(maxsize=outbox_size)
        self.dropped = 0
        self.failed = threading.Event()
        self.closed = threading.Event()
        self._closing = False
        self._outbox_lock = threading.Lock()
        self.thread = threading.Thread(target=self._run, name=f"writer-{ip_addr}", daemon=True)

    def start(self) -> None:
        self.thread.start()

    @property
    def alive(self) -> bool:
        return not self.failed.is_set() and not self.closed.is_set()

    def enqueue(self, frame: bytes) -> None:
        """Queue a snapshot frame. A full outbox loses its oldest frame; only the newest table matters."""
        with self._outbox_lock:
            if self._closing or not self.alive:
                return
            self._put(frame)

    def close(self) -> None:
        """Ask the writer to flush pending frames and close the channel."""
        with self._outbox_lock:
            if self._closing or self.closed.is_set():
                return
            self._closing = True
            self._put(_CLOSE)

    def abort(self) -> None:
        self.closed.set()
        with self._outbox_lock:
            if not self._closing:
                self._closing = True
                self._put(_CLOSE)
        close_quietly(self.sock)

    def _put(self, item: Optional[bytes]) -> None:
        # the writer thread is the only consumer, so room made here stays free
        while True:
            try:
                self.outbox.put_nowait(item)
                return
            except queue.Full:
                try:
                    self.outbox.get_nowait()
                    self.dropped += 1
                except queue.Empty:
                    pass

    def join(self, timeout: Optional[float] = None) -> None:
        if self.thread.is_alive():
            self.thread.join(timeout)

    def _run(self) -> None:
        try:
            if self.sock is None:
                host, port = self.dial
                logger.info("dialing viewer %s at %s:%d", self.ip_addr, host, port)
                self.sock = open_client(host, port, timeout=self.connect_timeout)
            send_frame(self.sock, encode_frame(hello("host")))
            while True:
                frame = self.outbox.get()
                if frame is _CLOSE:
                    break
                send_frame(self.sock, frame)
        except OSError as e:
            if not self.closed.is_set():
                logger.warning("snapshot channel to %s failed: %s", self.ip_addr, e)
                self.failed.set()
        finally:
            self.closed.set()
            close_quietly(self.sock)


class Broadcaster:
    """Registry of viewer snapshot links and fan-out of each new snapshot."""

    def __init__(self) -> None:
        self._links: List[ViewerLink] = []
        self._lock = threading.Lock()

    def __len__(self) -> int:
        with self._lock:
            self._prune()
            return len(self._links)

    def links(self) -> List[ViewerLink]:
        with self._lock:
            self._prune()
            return list(self._links)

    def register(self, link: ViewerLink, state: Optional[GameState] = None) -> None:
        """Add ``link``, replacing any link registered under the same address.

        When ``state`` is given it is queued as the link's first snapshot.
        """
        with self._lock:
            stale = [l for l in self._links if l.ip_addr == link.ip_addr]
            self._links = [l for l in self._links if l.ip_addr != link.ip_addr]
            self._links.append(link)
        for old in stale:
            logger.info("replacing snapshot channel for %s", old.ip_addr)
            old.abort()
        if state is not None:
            frame = self._encode(state)
            if frame is not None:
                link.enqueue(frame)
        link.start()

    def unregister(self, ip_addr: str) -> List[ViewerLink]:
        with self._lock:
            removed = [l for l in self._links if l.ip_addr == ip_addr]
            self._links = [l for l in self._links if l.ip_addr != ip_addr]
        for link in removed:
            link.close()
        return removed

    def broadcast(self, state: GameState) -> int:
        """Queue ``state`` on every live link; returns how many links got it."""
        frame = self._encode(state)
        if frame is None:
            return 0
        with self._lock:
            self._prune()
            links = list(self._links)
        for link in links:
            link.enqueue(frame)
        return len(links)

    def close_all(self, timeout: float = 2.0) -> None:
        with self._lock:
            links = self._links
            self._links = []
        for link in links:
            link.close()
        for link in links:
            link.join(timeout)
            if link.thread.is_alive():
                link.abort()

    @staticmethod
    def _encode(state: GameState) -> Optional[bytes]:
        try:
            return encode_frame(encode_state(state))
        except ProtocolError as e:
            logger.error("snapshot not sent: %s", e)
            return None

    def _prune(self) -> None:
        dead = [l for l in self._links if not l.alive]
        if dead:
            for link in dead:
                logger.info("dropping viewer %s", link.ip_addr)
            self._links = [l for l in self._links if l.alive]
