from __future__ import annotations

from dataclasses import dataclass, field
from typing import List, Optional, Set

from .model import Card, Face, Pile, Rank, Suit

NUM_ROWS = 3
NUM_COLUMNS = 8
MAX_NUMBER_OF_PILES = NUM_ROWS * NUM_COLUMNS
MID_OF_TABLE = MAX_NUMBER_OF_PILES // 2 - 1
MAIN_DECK_NAME = "deck"
DEFAULT_PILE_PREFIX = "Pile "


@dataclass
class GameState:
    """Snapshot of the table. Holds its own copies of every pile and card."""

    table: List[Optional[Pile]]
    pile_names: Set[str] = field(default_factory=set)
    default_pile_counter: int = 1
    host_still_present: bool = True

    def pile_at(self, slot: int) -> Optional[Pile]:
        if 0 <= slot < len(self.table):
            return self.table[slot]
        return None

    def next_default_name(self) -> str:
        return f"{DEFAULT_PILE_PREFIX}{self.default_pile_counter}"


def build_deck(face: Face = Face.DOWN) -> Pile:
    deck = Pile(MAIN_DECK_NAME)
    for suit in Suit:
        for rank in Rank:
            deck.add_card(Card(suit, rank, face))
    return deck


class Table:
    """The authoritative table: slots, live pile names and the default-pile counter.

    Not thread-safe on its own; the dispatcher serializes access.
    """

    def __init__(self, with_deck: bool = True) -> None:
        self.slots: List[Optional[Pile]] = [None for _ in range(MAX_NUMBER_OF_PILES)]
        self.pile_names: Set[str] = set()
        self.default_pile_counter = 1
        self.host_still_present = True
        if with_deck:
            self.place(MID_OF_TABLE, build_deck())

    @staticmethod
    def in_range(slot: int) -> bool:
        return isinstance(slot, int) and 0 <= slot < MAX_NUMBER_OF_PILES

    def get(self, slot: int) -> Optional[Pile]:
        if not self.in_range(slot):
            return None
        return self.slots[slot]

    def is_empty(self, slot: int) -> bool:
        return self.in_range(slot) and self.slots[slot] is None

    def place(self, slot: int, pile: Pile) -> None:
        self.slots[slot] = pile
        self.pile_names.add(pile.name)

    def remove(self, slot: int) -> Pile:
        pile = self.slots[slot]
        self.slots[slot] = None
        self.pile_names.discard(pile.name)
        return pile

    def piles(self) -> List[Pile]:
        return [p for p in self.slots if p is not None]

    def card_count(self) -> int:
        return sum(len(p) for p in self.piles())

    def snapshot(self) -> GameState:
        return GameState(
            table=[p.copy() if p is not None else None for p in self.slots],
            pile_names=set(self.pile_names),
            default_pile_counter=self.default_pile_counter,
            host_still_present=self.host_still_present,
        )
