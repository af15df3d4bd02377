from __future__ import annotations

from typing import Any, Dict, List, Optional

from ..game.model import NO_OWNER, Card, Face, Pile, Rank, Suit
from ..game.operation import OpTag, Operation
from ..game.table import MAX_NUMBER_OF_PILES, GameState

# Message types exchanged over the wire
# All messages are JSON objects with a 'type' field
# Handshake, first frame on every connection:
# - hello: { type: 'hello', role: 'viewer'|'host', proto: 1, ipAddr: str }
# Request channel (viewer -> coordinator):
# - op: { type: 'op', op: str, pile1: int, pile2: int, card: {suit, rank}|null, name: str, ipAddr: str }
# Snapshot channel (coordinator -> viewer):
# - state: { type: 'state', table: [null|{name, owner, cards: [{suit, rank, face}, ...]}, ...],
#            pileNames: [str, ...], defaultPileCounter: int, hostStillPresent: bool }

PROTO_VERSION = 1

REQUEST_PORT = 4242
SNAPSHOT_PORT = 4243

MAX_FRAME_BYTES = 1 << 20


class ProtocolError(RuntimeError):
    """A frame that cannot be decoded into a valid message."""


def hello(role: str, ip_addr: str = "") -> Dict[str, Any]:
    return {"type": "hello", "role": role, "proto": PROTO_VERSION, "ipAddr": ip_addr}


def check_hello(msg: Dict[str, Any], role: str) -> str:
    """Validate a hello frame from ``role`` and return the address it announces."""
    if msg.get("type") != "hello" or msg.get("proto") != PROTO_VERSION:
        raise ProtocolError("protocol mismatch")
    if msg.get("role") != role:
        raise ProtocolError(f"expected hello from {role}, got {msg.get('role')!r}")
    addr = msg.get("ipAddr", "")
    if not isinstance(addr, str):
        raise ProtocolError("bad ipAddr")
    return addr


# --------------------------- cards and piles ---------------------------


def card_identity_to_wire(card: Optional[Card]) -> Optional[Dict[str, str]]:
    if card is None:
        return None
    return {"suit": card.suit.value, "rank": card.rank.value}


def card_to_wire(card: Card) -> Dict[str, str]:
    return {"suit": card.suit.value, "rank": card.rank.value, "face": card.face.value}


def card_from_wire(data: Any) -> Card:
    if not isinstance(data, dict):
        raise ProtocolError("card must be an object")
    try:
        suit = Suit(data["suit"])
        rank = Rank(data["rank"])
        face = Face(data.get("face", Face.DOWN.value))
    except (KeyError, ValueError) as e:
        raise ProtocolError(f"bad card: {data!r}") from e
    return Card(suit, rank, face)


def pile_to_wire(pile: Optional[Pile]) -> Optional[Dict[str, Any]]:
    if pile is None:
        return None
    return {"name": pile.name, "owner": pile.owner, "cards": [card_to_wire(c) for c in pile]}


def pile_from_wire(data: Any) -> Optional[Pile]:
    if data is None:
        return None
    if not isinstance(data, dict) or not isinstance(data.get("name"), str):
        raise ProtocolError("bad pile")
    cards = data.get("cards", [])
    if not isinstance(cards, list):
        raise ProtocolError("pile cards must be a list")
    owner = data.get("owner", NO_OWNER)
    if not isinstance(owner, str):
        raise ProtocolError("bad pile owner")
    return Pile(data["name"], [card_from_wire(c) for c in cards], owner)


# --------------------------- operations ---------------------------


def encode_operation(op: Operation) -> Dict[str, Any]:
    return {
        "type": "op",
        "op": op.tag.value,
        "pile1": op.pile1,
        "pile2": op.pile2,
        "card": card_identity_to_wire(op.card),
        "name": op.name,
        "ipAddr": op.ip_addr,
    }


def _int_field(msg: Dict[str, Any], key: str) -> int:
    value = msg.get(key, -1)
    # bool is an int subclass; reject it
    if not isinstance(value, int) or isinstance(value, bool):
        raise ProtocolError(f"{key} must be an integer")
    return value


def _str_field(msg: Dict[str, Any], key: str) -> str:
    value = msg.get(key, "")
    if value is None:
        return ""
    if not isinstance(value, str):
        raise ProtocolError(f"{key} must be a string")
    return value


def decode_operation(msg: Dict[str, Any]) -> Operation:
    if msg.get("type") != "op":
        raise ProtocolError(f"expected op, got {msg.get('type')!r}")
    try:
        tag = OpTag(msg.get("op"))
    except ValueError:
        raise ProtocolError(f"unknown operation {msg.get('op')!r}") from None
    card_data = msg.get("card")
    return Operation(
        tag=tag,
        pile1=_int_field(msg, "pile1"),
        pile2=_int_field(msg, "pile2"),
        card=card_from_wire(card_data) if card_data is not None else None,
        name=_str_field(msg, "name"),
        ip_addr=_str_field(msg, "ipAddr"),
    )


# --------------------------- snapshots ---------------------------


def encode_state(state: GameState) -> Dict[str, Any]:
    return {
        "type": "state",
        "table": [pile_to_wire(p) for p in state.table],
        "pileNames": sorted(state.pile_names),
        "defaultPileCounter": state.default_pile_counter,
        "hostStillPresent": state.host_still_present,
    }


def decode_state(msg: Dict[str, Any]) -> GameState:
    if msg.get("type") != "state":
        raise ProtocolError(f"expected state, got {msg.get('type')!r}")
    table = msg.get("table")
    if not isinstance(table, list) or len(table) != MAX_NUMBER_OF_PILES:
        raise ProtocolError("table must list every slot")
    names = msg.get("pileNames", [])
    if not isinstance(names, list) or not all(isinstance(n, str) for n in names):
        raise ProtocolError("pileNames must be a list of strings")
    counter = msg.get("defaultPileCounter", 1)
    if not isinstance(counter, int) or isinstance(counter, bool) or counter < 1:
        raise ProtocolError("defaultPileCounter must be a positive integer")
    present = msg.get("hostStillPresent", True)
    if not isinstance(present, bool):
        raise ProtocolError("hostStillPresent must be a boolean")
    piles: List[Optional[Pile]] = [pile_from_wire(p) for p in table]
    return GameState(
        table=piles,
        pile_names=set(names),
        default_pile_counter=counter,
        host_still_present=present,
    )
