from __future__ import annotations

import logging
import random
import threading
from typing import Callable, Dict, Optional

from .model import Face, NO_OWNER, Pile
from .operation import MAX_ADDRESS_LENGTH, MAX_NAME_LENGTH, OpTag, Operation
from .table import DEFAULT_PILE_PREFIX, MAIN_DECK_NAME, GameState, Table

logger = logging.getLogger(__name__)

ChangeListener = Callable[[GameState], None]
AddressHook = Callable[[str], None]


class Dispatcher:
    """Applies operations to a Table one at a time under a single table-wide lock.

    Each handler returns True when the table changed. Only then is the change
    listener called, still holding the lock, so listeners observe snapshots in
    the same order the mutations were applied. Rejected requests are dropped
    without a reply.

    connect and disconnect do not touch the table; they are forwarded to the
    hooks installed by the connection manager.
    """

    def __init__(
        self,
        table: Optional[Table] = None,
        rng: Optional[random.Random] = None,
        on_change: Optional[ChangeListener] = None,
        on_connect: Optional[AddressHook] = None,
        on_disconnect: Optional[AddressHook] = None,
    ) -> None:
        self.table = table if table is not None else Table()
        # Random() with no seed draws from os.urandom
        self.rng = rng if rng is not None else random.Random()
        self.lock = threading.RLock()
        self.on_change = on_change
        self.on_connect = on_connect
        self.on_disconnect = on_disconnect
        self._handlers: Dict[OpTag, Callable[[Operation], bool]] = {
            OpTag.MOVE: self._move,
            OpTag.FLIP: self._flip,
            OpTag.CREATE: self._create,
            OpTag.CONNECT: self._connect,
            OpTag.SHUFFLE: self._shuffle,
            OpTag.DELETE: self._delete,
            OpTag.FACE_UP: self._face_up,
            OpTag.FACE_DOWN: self._face_down,
            OpTag.MOVE_ALL: self._move_all,
            OpTag.PROTECT: self._protect,
            OpTag.UNPROTECT: self._unprotect,
            OpTag.PILE_MOVE: self._pile_move,
            OpTag.DISCONNECT: self._disconnect,
        }

    def dispatch(self, op: Operation) -> bool:
        handler = self._handlers.get(op.tag)
        if handler is None:
            logger.debug("no handler for %r", op.tag)
            return False
        with self.lock:
            changed = handler(op)
            if not changed:
                logger.debug("ignored %s (pile1=%s pile2=%s name=%r)", op.tag.value, op.pile1, op.pile2, op.name[:MAX_NAME_LENGTH])
                return False
            logger.debug("applied %s", op.tag.value)
            self._notify(self.table.snapshot())
            return True

    def snapshot(self) -> GameState:
        with self.lock:
            return self.table.snapshot()

    def set_host_present(self, present: bool) -> GameState:
        """Update the host-still-present flag and broadcast it."""
        with self.lock:
            self.table.host_still_present = present
            state = self.table.snapshot()
            self._notify(state)
            return state

    def _notify(self, state: GameState) -> None:
        # a failing listener never undoes the mutation or reaches the caller
        if self.on_change is None:
            return
        try:
            self.on_change(state)
        except Exception:
            logger.exception("change listener failed")

    # --------------------------- handlers ---------------------------

    def _move(self, op: Operation) -> bool:
        src = self.table.get(op.pile1)
        dest = self.table.get(op.pile2)
        if src is None or dest is None or op.card is None:
            return False
        idx = src.index_of(op.card)
        if idx < 0:
            return False
        dest.add_card(src.take_card(idx))
        return True

    def _flip(self, op: Operation) -> bool:
        pile = self.table.get(op.pile1)
        if pile is None or op.card is None:
            return False
        idx = pile.index_of(op.card)
        if idx < 0:
            return False
        pile.get_card(idx).flip()
        return True

    def _create(self, op: Operation) -> bool:
        if not self.table.is_empty(op.pile1):
            return False
        name = op.name
        if len(name) > MAX_NAME_LENGTH:
            return False
        if name == MAIN_DECK_NAME or name in self.table.pile_names:
            return False
        if name == f"{DEFAULT_PILE_PREFIX}{self.table.default_pile_counter}":
            self.table.default_pile_counter += 1
        self.table.place(op.pile1, Pile(name))
        return True

    def _connect(self, op: Operation) -> bool:
        if op.ip_addr and len(op.ip_addr) <= MAX_ADDRESS_LENGTH and self.on_connect is not None:
            self.on_connect(op.ip_addr)
        return False

    def _shuffle(self, op: Operation) -> bool:
        pile = self.table.get(op.pile1)
        if pile is None:
            return False
        pile.shuffle(self.rng)
        return True

    def _delete(self, op: Operation) -> bool:
        pile = self.table.get(op.pile1)
        if pile is None or len(pile) != 0:
            return False
        self.table.remove(op.pile1)
        return True

    def _set_faces(self, slot: int, face: Face) -> bool:
        pile = self.table.get(slot)
        if pile is None:
            return False
        for card in pile:
            card.face = face
        return True

    def _face_up(self, op: Operation) -> bool:
        return self._set_faces(op.pile1, Face.UP)

    def _face_down(self, op: Operation) -> bool:
        return self._set_faces(op.pile1, Face.DOWN)

    def _move_all(self, op: Operation) -> bool:
        src = self.table.get(op.pile1)
        dest = self.table.get(op.pile2)
        if src is None or dest is None or src is dest:
            return False
        for _ in range(len(src)):
            dest.add_card(src.take_card(0))
        return True

    def _protect(self, op: Operation) -> bool:
        pile = self.table.get(op.pile1)
        if pile is None or len(op.name) > MAX_NAME_LENGTH:
            return False
        pile.set_owner(op.name)
        return True

    def _unprotect(self, op: Operation) -> bool:
        pile = self.table.get(op.pile1)
        if pile is None or pile.get_owner() != op.name:
            return False
        pile.set_owner(NO_OWNER)
        return True

    def _pile_move(self, op: Operation) -> bool:
        if self.table.get(op.pile1) is None or not self.table.is_empty(op.pile2):
            return False
        pile = self.table.remove(op.pile1)
        self.table.place(op.pile2, pile)
        return True

    def _disconnect(self, op: Operation) -> bool:
        if op.ip_addr and len(op.ip_addr) <= MAX_ADDRESS_LENGTH and self.on_disconnect is not None:
            self.on_disconnect(op.ip_addr)
        return False
