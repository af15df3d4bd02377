from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Optional

from .model import Card


class OpTag(Enum):
    MOVE = "move"
    FLIP = "flip"
    CREATE = "create"
    CONNECT = "connect"
    SHUFFLE = "shuffle"
    DELETE = "delete"
    FACE_UP = "faceUp"
    FACE_DOWN = "faceDown"
    MOVE_ALL = "moveAll"
    PROTECT = "protect"
    UNPROTECT = "unprotect"
    PILE_MOVE = "pileMove"
    DISCONNECT = "disconnect"


@dataclass
class Operation:
    """A viewer request. Only the fields used by ``tag`` matter; the rest ride along untouched."""

    tag: OpTag
    pile1: int = -1
    pile2: int = -1
    card: Optional[Card] = None
    name: str = ""
    ip_addr: str = ""


# Longest pile name or owner tag a request may carry. Keeps a full snapshot
# (every name twice, every owner once) far below the frame limit.
MAX_NAME_LENGTH = 64
MAX_ADDRESS_LENGTH = 255
