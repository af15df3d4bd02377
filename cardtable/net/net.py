from __future__ import annotations

import json
import socket
import struct
from typing import Any, Dict, Optional, Tuple

from .protocol import MAX_FRAME_BYTES, ProtocolError


# Length-prefixed JSON messages over TCP: 4-byte big-endian length, then UTF-8 JSON


def encode_frame(payload: Dict[str, Any]) -> bytes:
    data = json.dumps(payload, separators=(",", ":")).encode("utf-8")
    if len(data) > MAX_FRAME_BYTES:
        raise ProtocolError(f"frame too large ({len(data)} bytes)")
    return struct.pack("!I", len(data)) + data


def send_frame(sock: socket.socket, frame: bytes) -> None:
    sock.sendall(frame)


def send_msg(sock: socket.socket, payload: Dict[str, Any]) -> None:
    sock.sendall(encode_frame(payload))


def recv_exact(sock: socket.socket, num_bytes: int) -> bytes:
    chunks = []
    remaining = num_bytes
    while remaining > 0:
        chunk = sock.recv(remaining)
        if not chunk:
            raise ConnectionError("socket closed")
        chunks.append(chunk)
        remaining -= len(chunk)
    return b"".join(chunks)


def recv_msg(sock: socket.socket) -> Dict[str, Any]:
    header = recv_exact(sock, 4)
    (length,) = struct.unpack("!I", header)
    if length > MAX_FRAME_BYTES:
        raise ProtocolError(f"frame too large ({length} bytes)")
    body = recv_exact(sock, length)
    try:
        msg = json.loads(body.decode("utf-8"))
    except (UnicodeDecodeError, ValueError) as e:
        raise ProtocolError(f"undecodable frame: {e}") from e
    if not isinstance(msg, dict) or "type" not in msg:
        raise ProtocolError("frame is not a typed message")
    return msg


def open_listener(bind: str, port: int, backlog: int = 16, timeout: Optional[float] = None) -> socket.socket:
    srv = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    srv.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
    try:
        srv.bind((bind, port))
        srv.listen(backlog)
    except OSError:
        srv.close()
        raise
    if timeout is not None:
        srv.settimeout(timeout)
    return srv


def open_client(host: str, port: int, timeout: Optional[float] = None) -> socket.socket:
    sock = socket.create_connection((host, port), timeout=timeout)
    sock.settimeout(None)
    return sock


def parse_address(addr: str, default_port: int) -> Tuple[str, int]:
    """Split ``host`` or ``host:port`` into a (host, port) pair."""
    host, sep, port = addr.strip().rpartition(":")
    if not sep:
        return addr.strip(), default_port
    try:
        return host, int(port)
    except ValueError:
        raise ValueError(f"bad address: {addr!r}") from None


def format_address(addr: Tuple[str, int]) -> str:
    return f"{addr[0]}:{addr[1]}"


def close_quietly(sock: Optional[socket.socket]) -> None:
    if sock is None:
        return
    try:
        sock.shutdown(socket.SHUT_RDWR)
    except OSError:
        pass
    try:
        sock.close()
    except OSError:
        pass
