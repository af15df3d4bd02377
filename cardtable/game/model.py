from __future__ import annotations

import random
from enum import Enum
from typing import Iterator, List, Optional

NO_OWNER = "noOwner"


class Suit(Enum):
    CLUBS = "clubs"
    DIAMONDS = "diamonds"
    HEARTS = "hearts"
    SPADES = "spades"


class Rank(Enum):
    ACE = "ace"
    TWO = "two"
    THREE = "three"
    FOUR = "four"
    FIVE = "five"
    SIX = "six"
    SEVEN = "seven"
    EIGHT = "eight"
    NINE = "nine"
    TEN = "ten"
    JACK = "jack"
    QUEEN = "queen"
    KING = "king"


class Face(Enum):
    UP = "up"
    DOWN = "down"


class Card:
    """A playing card. Two cards are equal when suit and rank match, whatever their face."""

    def __init__(self, suit: Suit, rank: Rank, face: Face = Face.DOWN) -> None:
        self.suit = suit
        self.rank = rank
        self.face = face

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Card):
            return NotImplemented
        return self.suit == other.suit and self.rank == other.rank

    def __hash__(self) -> int:
        return hash((self.suit, self.rank))

    def __repr__(self) -> str:
        return f"Card({self.suit.value}, {self.rank.value}, {self.face.value})"

    @property
    def is_face_up(self) -> bool:
        return self.face is Face.UP

    def flip(self) -> None:
        self.face = Face.DOWN if self.face is Face.UP else Face.UP

    def set_face_up(self) -> None:
        self.face = Face.UP

    def set_face_down(self) -> None:
        self.face = Face.DOWN

    def copy(self) -> "Card":
        return Card(self.suit, self.rank, self.face)


class Pile:
    """Named, ordered stack of cards. Index 0 is the bottom, the tail is the top."""

    def __init__(self, name: str, cards: Optional[List[Card]] = None, owner: str = NO_OWNER) -> None:
        self.name = name
        self.cards: List[Card] = list(cards) if cards else []
        self.owner = owner

    def __len__(self) -> int:
        return len(self.cards)

    def __iter__(self) -> Iterator[Card]:
        return iter(self.cards)

    def __repr__(self) -> str:
        return f"Pile({self.name!r}, {len(self.cards)} cards, owner={self.owner!r})"

    @property
    def size(self) -> int:
        return len(self.cards)

    def add_card(self, card: Card) -> None:
        self.cards.append(card)

    def take_card(self, index: int) -> Card:
        # raises IndexError when out of range; callers check first
        return self.cards.pop(index)

    def get_card(self, index: int) -> Card:
        return self.cards[index]

    def index_of(self, card: Card) -> int:
        for i, c in enumerate(self.cards):
            if c == card:
                return i
        return -1

    def shuffle(self, rng: Optional[random.Random] = None) -> None:
        (rng or random).shuffle(self.cards)

    def set_owner(self, owner: str) -> None:
        self.owner = owner

    def get_owner(self) -> str:
        return self.owner

    def copy(self) -> "Pile":
        return Pile(self.name, [c.copy() for c in self.cards], self.owner)
