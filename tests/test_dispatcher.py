"""
Tests for the request dispatcher.

Tests:
- Per-operation semantics
- Rejected requests leave the table alone and broadcast nothing
- Table invariants over a sequence of operations
- Algebraic laws (idempotence, inverses, pile relocation)
"""

from collections import Counter

import pytest

from cardtable.game.dispatcher import Dispatcher
from cardtable.game.model import NO_OWNER, Card, Face, Rank, Suit
from cardtable.game.operation import MAX_ADDRESS_LENGTH, MAX_NAME_LENGTH, OpTag, Operation
from cardtable.game.table import MAIN_DECK_NAME, MID_OF_TABLE, build_deck

DECK = MID_OF_TABLE
ACE_OF_CLUBS = Card(Suit.CLUBS, Rank.ACE)


def op(tag, **kwargs) -> Operation:
    return Operation(tag, **kwargs)


def check_invariants(table, owners_given=()):
    piles = table.piles()
    assert len(table.pile_names) == len(piles)
    assert {p.name for p in piles} == table.pile_names
    assert Counter(c for p in piles for c in p) == Counter(build_deck().cards)
    for p in piles:
        assert p.owner == NO_OWNER or p.owner in owners_given


class TestBootAndCreate:
    def test_boot_state(self, dispatcher):
        state = dispatcher.snapshot()
        deck = state.table[DECK]
        assert deck.name == MAIN_DECK_NAME
        assert len(deck) == 52
        assert all(c.face is Face.DOWN for c in deck)
        assert all(p is None for i, p in enumerate(state.table) if i != DECK)
        assert state.default_pile_counter == 1
        assert state.host_still_present

    def test_create_default_name_bumps_counter(self, dispatcher, table, broadcasts):
        assert dispatcher.dispatch(op(OpTag.CREATE, pile1=0, name="Pile 1"))
        assert table.get(0).name == "Pile 1"
        assert len(table.get(0)) == 0
        assert table.default_pile_counter == 2
        assert len(broadcasts) == 1
        assert broadcasts[0].default_pile_counter == 2

        assert not dispatcher.dispatch(op(OpTag.CREATE, pile1=0, name="Pile 1"))
        assert table.default_pile_counter == 2
        assert len(broadcasts) == 1

    def test_create_custom_name_keeps_counter(self, dispatcher, table):
        assert dispatcher.dispatch(op(OpTag.CREATE, pile1=3, name="hand"))
        assert dispatcher.dispatch(op(OpTag.CREATE, pile1=4, name="Pile 7"))
        assert table.default_pile_counter == 1

    def test_create_rejects_duplicate_name_elsewhere(self, dispatcher, table):
        dispatcher.dispatch(op(OpTag.CREATE, pile1=0, name="X"))
        assert not dispatcher.dispatch(op(OpTag.CREATE, pile1=1, name="X"))
        assert table.get(1) is None

    def test_create_rejects_occupied_slot_and_reserved_name(self, dispatcher, table):
        assert not dispatcher.dispatch(op(OpTag.CREATE, pile1=DECK, name="Y"))
        assert not dispatcher.dispatch(op(OpTag.CREATE, pile1=0, name=MAIN_DECK_NAME))
        assert table.pile_names == {MAIN_DECK_NAME}

    @pytest.mark.parametrize("slot", [-1, 24, 100])
    def test_create_rejects_bad_slot(self, dispatcher, table, slot):
        assert not dispatcher.dispatch(op(OpTag.CREATE, pile1=slot, name="Z"))
        assert "Z" not in table.pile_names


class TestMoves:
    def test_move_one_card(self, dispatcher, table, broadcasts):
        dispatcher.dispatch(op(OpTag.CREATE, pile1=0, name="X"))
        assert dispatcher.dispatch(op(OpTag.MOVE, pile1=DECK, pile2=0, card=ACE_OF_CLUBS))
        assert list(table.get(0)) == [ACE_OF_CLUBS]
        assert len(table.get(DECK)) == 51
        assert table.get(DECK).index_of(ACE_OF_CLUBS) == -1
        assert len(broadcasts) == 2

    def test_move_keeps_face(self, dispatcher, table):
        dispatcher.dispatch(op(OpTag.CREATE, pile1=0, name="X"))
        dispatcher.dispatch(op(OpTag.FLIP, pile1=DECK, card=ACE_OF_CLUBS))
        dispatcher.dispatch(op(OpTag.MOVE, pile1=DECK, pile2=0, card=ACE_OF_CLUBS))
        assert table.get(0).get_card(0).is_face_up

    def test_move_requires_destination(self, dispatcher, table, broadcasts):
        assert not dispatcher.dispatch(op(OpTag.MOVE, pile1=DECK, pile2=0, card=ACE_OF_CLUBS))
        assert len(table.get(DECK)) == 52
        assert broadcasts == []

    def test_move_missing_card(self, dispatcher, table):
        dispatcher.dispatch(op(OpTag.CREATE, pile1=0, name="X"))
        assert not dispatcher.dispatch(op(OpTag.MOVE, pile1=0, pile2=DECK, card=ACE_OF_CLUBS))

    def test_move_and_back(self, dispatcher, table):
        before = Counter(table.get(DECK).cards)
        dispatcher.dispatch(op(OpTag.CREATE, pile1=0, name="X"))
        card = Card(Suit.HEARTS, Rank.SEVEN)
        dispatcher.dispatch(op(OpTag.MOVE, pile1=DECK, pile2=0, card=card))
        dispatcher.dispatch(op(OpTag.MOVE, pile1=0, pile2=DECK, card=card))
        assert Counter(table.get(DECK).cards) == before
        assert len(table.get(0)) == 0

    def test_move_all(self, dispatcher, table):
        dispatcher.dispatch(op(OpTag.CREATE, pile1=0, name="X"))
        dispatcher.dispatch(op(OpTag.MOVE, pile1=DECK, pile2=0, card=ACE_OF_CLUBS))
        order = list(table.get(DECK).cards)
        assert dispatcher.dispatch(op(OpTag.MOVE_ALL, pile1=DECK, pile2=0))
        assert len(table.get(DECK)) == 0
        assert len(table.get(0)) == 52
        assert table.get(0).cards[1:] == order

    def test_move_all_needs_two_piles(self, dispatcher, table):
        assert not dispatcher.dispatch(op(OpTag.MOVE_ALL, pile1=DECK, pile2=0))
        assert not dispatcher.dispatch(op(OpTag.MOVE_ALL, pile1=DECK, pile2=DECK))
        assert len(table.get(DECK)) == 52

    def test_pile_move(self, dispatcher, table):
        dispatcher.dispatch(op(OpTag.PROTECT, pile1=DECK, name="alice"))
        deck = table.get(DECK)
        cards = list(deck.cards)
        assert dispatcher.dispatch(op(OpTag.PILE_MOVE, pile1=DECK, pile2=23))
        moved = table.get(23)
        assert table.get(DECK) is None
        assert moved.name == MAIN_DECK_NAME
        assert moved.owner == "alice"
        assert moved.cards == cards
        assert table.pile_names == {MAIN_DECK_NAME}

    def test_pile_move_needs_empty_destination(self, dispatcher, table):
        dispatcher.dispatch(op(OpTag.CREATE, pile1=0, name="X"))
        assert not dispatcher.dispatch(op(OpTag.PILE_MOVE, pile1=DECK, pile2=0))
        assert not dispatcher.dispatch(op(OpTag.PILE_MOVE, pile1=5, pile2=6))
        assert not dispatcher.dispatch(op(OpTag.PILE_MOVE, pile1=DECK, pile2=DECK))
        assert table.get(DECK).name == MAIN_DECK_NAME


class TestFaces:
    def test_flip_toggles_first_match(self, dispatcher, table):
        assert dispatcher.dispatch(op(OpTag.FLIP, pile1=DECK, card=ACE_OF_CLUBS))
        assert table.get(DECK).get_card(0).is_face_up
        assert dispatcher.dispatch(op(OpTag.FLIP, pile1=DECK, card=ACE_OF_CLUBS))
        assert table.get(DECK).get_card(0).face is Face.DOWN

    def test_flip_absent(self, dispatcher):
        dispatcher.dispatch(op(OpTag.CREATE, pile1=0, name="X"))
        assert not dispatcher.dispatch(op(OpTag.FLIP, pile1=0, card=ACE_OF_CLUBS))
        assert not dispatcher.dispatch(op(OpTag.FLIP, pile1=1, card=ACE_OF_CLUBS))

    def test_face_up_and_down_idempotent(self, dispatcher, table):
        dispatcher.dispatch(op(OpTag.FACE_UP, pile1=DECK))
        once = [c.face for c in table.get(DECK)]
        dispatcher.dispatch(op(OpTag.FACE_UP, pile1=DECK))
        assert [c.face for c in table.get(DECK)] == once == [Face.UP] * 52
        dispatcher.dispatch(op(OpTag.FACE_DOWN, pile1=DECK))
        dispatcher.dispatch(op(OpTag.FACE_DOWN, pile1=DECK))
        assert all(c.face is Face.DOWN for c in table.get(DECK))

    def test_face_up_empty_slot(self, dispatcher, broadcasts):
        assert not dispatcher.dispatch(op(OpTag.FACE_UP, pile1=0))
        assert broadcasts == []


class TestShuffleAndDelete:
    def test_shuffle_changes_order(self, dispatcher, table, broadcasts):
        before = list(table.get(DECK).cards)
        assert dispatcher.dispatch(op(OpTag.SHUFFLE, pile1=DECK))
        after = table.get(DECK).cards
        assert after != before
        assert Counter(after) == Counter(before)
        assert len(broadcasts) == 1

    def test_shuffle_empty_slot(self, dispatcher):
        assert not dispatcher.dispatch(op(OpTag.SHUFFLE, pile1=0))

    def test_delete_only_if_empty(self, dispatcher, table):
        assert not dispatcher.dispatch(op(OpTag.DELETE, pile1=DECK))
        assert len(table.get(DECK)) == 52

        dispatcher.dispatch(op(OpTag.CREATE, pile1=0, name="X"))
        dispatcher.dispatch(op(OpTag.MOVE_ALL, pile1=DECK, pile2=0))
        assert dispatcher.dispatch(op(OpTag.DELETE, pile1=DECK))
        assert table.get(DECK) is None
        assert MAIN_DECK_NAME not in table.pile_names

    def test_deleted_name_can_be_reused(self, dispatcher, table):
        dispatcher.dispatch(op(OpTag.CREATE, pile1=0, name="X"))
        dispatcher.dispatch(op(OpTag.DELETE, pile1=0))
        assert dispatcher.dispatch(op(OpTag.CREATE, pile1=5, name="X"))

    def test_delete_empty_slot(self, dispatcher):
        assert not dispatcher.dispatch(op(OpTag.DELETE, pile1=0))


class TestProtection:
    def test_protect_unprotect(self, dispatcher, table):
        dispatcher.dispatch(op(OpTag.CREATE, pile1=0, name="X"))
        assert dispatcher.dispatch(op(OpTag.PROTECT, pile1=0, name="alice"))
        assert not dispatcher.dispatch(op(OpTag.UNPROTECT, pile1=0, name="bob"))
        assert table.get(0).owner == "alice"
        assert dispatcher.dispatch(op(OpTag.UNPROTECT, pile1=0, name="alice"))
        assert table.get(0).owner == NO_OWNER

    def test_protect_overrides_owner(self, dispatcher, table):
        dispatcher.dispatch(op(OpTag.PROTECT, pile1=DECK, name="alice"))
        dispatcher.dispatch(op(OpTag.PROTECT, pile1=DECK, name="bob"))
        assert table.get(DECK).owner == "bob"

    def test_protect_empty_slot(self, dispatcher):
        assert not dispatcher.dispatch(op(OpTag.PROTECT, pile1=0, name="alice"))
        assert not dispatcher.dispatch(op(OpTag.UNPROTECT, pile1=0, name="alice"))


class TestConnectionHooks:
    def test_connect_and_disconnect_call_hooks(self, table, broadcasts):
        seen = []
        d = Dispatcher(
            table=table,
            on_change=broadcasts.append,
            on_connect=lambda addr: seen.append(("connect", addr)),
            on_disconnect=lambda addr: seen.append(("disconnect", addr)),
        )
        assert not d.dispatch(op(OpTag.CONNECT, ip_addr="10.0.0.2"))
        assert not d.dispatch(op(OpTag.DISCONNECT, ip_addr="10.0.0.2"))
        assert seen == [("connect", "10.0.0.2"), ("disconnect", "10.0.0.2")]
        assert broadcasts == []

    def test_host_flag_broadcasts(self, dispatcher, broadcasts):
        state = dispatcher.set_host_present(False)
        assert not state.host_still_present
        assert broadcasts[-1].host_still_present is False


def test_invariants_hold_over_session(dispatcher, table):
    script = [
        op(OpTag.CREATE, pile1=0, name="Pile 1"),
        op(OpTag.CREATE, pile1=1, name="Pile 2"),
        op(OpTag.CREATE, pile1=2, name="Pile 2"),
        op(OpTag.SHUFFLE, pile1=DECK),
        op(OpTag.MOVE, pile1=DECK, pile2=0, card=Card(Suit.SPADES, Rank.FIVE)),
        op(OpTag.MOVE, pile1=DECK, pile2=1, card=Card(Suit.HEARTS, Rank.JACK)),
        op(OpTag.PROTECT, pile1=1, name="carol"),
        op(OpTag.FACE_UP, pile1=0),
        op(OpTag.MOVE_ALL, pile1=1, pile2=0),
        op(OpTag.DELETE, pile1=1),
        op(OpTag.PILE_MOVE, pile1=0, pile2=20),
        op(OpTag.CREATE, pile1=0, name="Pile 3"),
        op(OpTag.UNPROTECT, pile1=20, name="carol"),
        op(OpTag.DELETE, pile1=DECK),
    ]
    counters = []
    for step in script:
        dispatcher.dispatch(step)
        check_invariants(table, owners_given={"carol"})
        counters.append(table.default_pile_counter)
    assert counters == sorted(counters)
    assert table.default_pile_counter == 4
    assert len(table.get(20)) == 2


class TestNameLimits:
    """Names and owner tags longer than MAX_NAME_LENGTH are invalid requests."""

    def test_create_rejects_long_name(self, dispatcher, table, broadcasts):
        assert not dispatcher.dispatch(op(OpTag.CREATE, pile1=0, name="x" * (MAX_NAME_LENGTH + 1)))
        assert table.get(0) is None
        assert table.pile_names == {MAIN_DECK_NAME}
        assert broadcasts == []

    def test_create_accepts_name_at_limit(self, dispatcher, table):
        assert dispatcher.dispatch(op(OpTag.CREATE, pile1=0, name="x" * MAX_NAME_LENGTH))

    def test_protect_rejects_long_owner(self, dispatcher, table):
        assert not dispatcher.dispatch(op(OpTag.PROTECT, pile1=DECK, name="a" * 600_000))
        assert table.get(DECK).owner == NO_OWNER

    def test_connect_ignores_long_address(self, table):
        seen = []
        d = Dispatcher(table=table, on_connect=seen.append, on_disconnect=seen.append)
        d.dispatch(op(OpTag.CONNECT, ip_addr="1" * (MAX_ADDRESS_LENGTH + 1)))
        d.dispatch(op(OpTag.DISCONNECT, ip_addr="1" * (MAX_ADDRESS_LENGTH + 1)))
        assert seen == []


class TestListenerFailures:
    """A failing change listener never reaches the caller or undoes the change."""

    @staticmethod
    def failing(state):
        raise RuntimeError("listener down")

    def test_dispatch_survives_listener_error(self, table):
        d = Dispatcher(table=table, on_change=self.failing)
        assert d.dispatch(op(OpTag.CREATE, pile1=0, name="X"))
        assert table.get(0).name == "X"
        assert d.dispatch(op(OpTag.SHUFFLE, pile1=DECK))

    def test_set_host_present_survives_listener_error(self, table):
        d = Dispatcher(table=table, on_change=self.failing)
        state = d.set_host_present(False)
        assert state.host_still_present is False
        assert table.host_still_present is False
