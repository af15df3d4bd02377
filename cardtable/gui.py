from __future__ import annotations

import logging
import time
from typing import Optional, Tuple

import pygame

from .game.model import Card, Face, NO_OWNER, Pile, Rank, Suit
from .game.table import MAX_NUMBER_OF_PILES, NUM_COLUMNS, NUM_ROWS, GameState
from .viewer import ViewerSession

logger = logging.getLogger(__name__)


# --------------------------- Pygame rendering ---------------------------

WINDOW_BG = (15, 18, 25)
SLOT_BG = (23, 28, 38)
SLOT_EMPTY = (32, 38, 50)
TEXT = (230, 235, 245)
SUBTEXT = (155, 165, 185)
ACCENT = (58, 123, 213)
CARD_FACE = (240, 240, 235)
CARD_BACK = (60, 130, 200)
CARD_BACK_OUTLINE = (40, 95, 160)
RED_SUIT = (200, 50, 60)
BLACK_SUIT = (25, 25, 30)
OWNED = (240, 190, 90)

SLOT_W = 120
SLOT_H = 160
SLOT_GAP = 12
PANEL_PADDING = 28
TOP_BAR = 64
BOTTOM_BAR = 60

RANK_LABELS = {
    Rank.ACE: "A", Rank.TWO: "2", Rank.THREE: "3", Rank.FOUR: "4", Rank.FIVE: "5",
    Rank.SIX: "6", Rank.SEVEN: "7", Rank.EIGHT: "8", Rank.NINE: "9", Rank.TEN: "10",
    Rank.JACK: "J", Rank.QUEEN: "Q", Rank.KING: "K",
}
SUIT_LABELS = {Suit.CLUBS: "C", Suit.DIAMONDS: "D", Suit.HEARTS: "H", Suit.SPADES: "S"}

HELP = "click: select/create  right-click: flip top  S shuffle  U/D face up/down  A move all  P/O protect/unprotect  X delete"


def card_label(card: Card) -> str:
    return f"{RANK_LABELS[card.rank]}{SUIT_LABELS[card.suit]}"


def slot_rect(slot: int) -> pygame.Rect:
    row, col = divmod(slot, NUM_COLUMNS)
    x = PANEL_PADDING + col * (SLOT_W + SLOT_GAP)
    y = TOP_BAR + row * (SLOT_H + SLOT_GAP)
    return pygame.Rect(x, y, SLOT_W, SLOT_H)


def slot_at(pos: Tuple[int, int]) -> Optional[int]:
    for slot in range(MAX_NUMBER_OF_PILES):
        if slot_rect(slot).collidepoint(pos):
            return slot
    return None


class TableGui:
    """Window onto one viewer session. Every click becomes an operation; nothing is changed locally."""

    def __init__(self, session: ViewerSession, player: str) -> None:
        pygame.init()
        pygame.display.set_caption("Card Table")
        width = PANEL_PADDING * 2 + NUM_COLUMNS * SLOT_W + (NUM_COLUMNS - 1) * SLOT_GAP
        height = TOP_BAR + NUM_ROWS * SLOT_H + (NUM_ROWS - 1) * SLOT_GAP + BOTTOM_BAR
        self.screen = pygame.display.set_mode((width, height))
        self.clock = pygame.time.Clock()
        self.font = pygame.font.SysFont("Arial", 20)
        self.font_small = pygame.font.SysFont("Arial", 15)
        self.font_big = pygame.font.SysFont("Arial", 34, bold=True)

        self.session = session
        self.player = player
        self.state: Optional[GameState] = None
        self.selected: Optional[int] = None
        self.move_all_pending = False
        self.running = True
        self.info_message = "Waiting for the table..."
        self.message_timer: float = 0.0

    # --------------------------- Utility ---------------------------
    def show_message(self, text: str, seconds: float = 2.0) -> None:
        self.info_message = text
        self.message_timer = time.time() + seconds

    def pile(self, slot: Optional[int]) -> Optional[Pile]:
        if self.state is None or slot is None:
            return None
        return self.state.pile_at(slot)

    def owned_by_other(self, pile: Pile) -> bool:
        return pile.owner not in (NO_OWNER, self.player)

    # --------------------------- Draw ---------------------------
    def draw(self) -> None:
        self.screen.fill(WINDOW_BG)
        title = self.font_big.render("Card Table", True, TEXT)
        self.screen.blit(title, (PANEL_PADDING, 14))
        who = self.font.render(f"playing as {self.player}", True, SUBTEXT)
        self.screen.blit(who, (self.screen.get_width() - PANEL_PADDING - who.get_width(), 24))

        for slot in range(MAX_NUMBER_OF_PILES):
            self.draw_slot(slot)

        status_text = self.info_message
        if self.message_timer and time.time() > self.message_timer:
            self.message_timer = 0
            self.info_message = ""
            status_text = ""
        self.draw_status_bar(status_text or HELP)
        pygame.display.flip()

    def draw_slot(self, slot: int) -> None:
        rect = slot_rect(slot)
        pile = self.pile(slot)
        if pile is None:
            pygame.draw.rect(self.screen, SLOT_EMPTY, rect, 1, border_radius=8)
            return
        pygame.draw.rect(self.screen, SLOT_BG, rect, border_radius=8)
        if slot == self.selected:
            pygame.draw.rect(self.screen, ACCENT, rect, 3, border_radius=8)

        name = self.font_small.render(pile.name, True, TEXT)
        self.screen.blit(name, (rect.x + 8, rect.y + 6))
        count = self.font_small.render(f"{len(pile)} cards", True, SUBTEXT)
        self.screen.blit(count, (rect.x + 8, rect.bottom - 22))
        if pile.owner != NO_OWNER:
            owner = self.font_small.render(pile.owner, True, OWNED)
            self.screen.blit(owner, (rect.right - owner.get_width() - 8, rect.bottom - 22))

        if len(pile):
            self.draw_card(pile.get_card(len(pile) - 1), pygame.Rect(rect.x + 25, rect.y + 30, 70, 98))

    def draw_card(self, card: Card, rect: pygame.Rect) -> None:
        if card.face is Face.DOWN:
            pygame.draw.rect(self.screen, CARD_BACK, rect, border_radius=6)
            pygame.draw.rect(self.screen, CARD_BACK_OUTLINE, rect, 2, border_radius=6)
            return
        pygame.draw.rect(self.screen, CARD_FACE, rect, border_radius=6)
        color = RED_SUIT if card.suit in (Suit.HEARTS, Suit.DIAMONDS) else BLACK_SUIT
        label = self.font.render(card_label(card), True, color)
        self.screen.blit(label, (rect.centerx - label.get_width() // 2, rect.centery - label.get_height() // 2))

    def draw_status_bar(self, text: str) -> None:
        if not text:
            return
        surf = self.font_small.render(text, True, SUBTEXT)
        self.screen.blit(surf, (PANEL_PADDING, self.screen.get_height() - BOTTOM_BAR + 20))

    # --------------------------- Input ---------------------------
    def click(self, pos: Tuple[int, int]) -> None:
        slot = slot_at(pos)
        if slot is None or self.state is None:
            return
        target = self.pile(slot)
        src = self.pile(self.selected)

        if src is None:
            if target is None:
                self.session.create(slot)
            else:
                self.selected = slot
            return
        if slot == self.selected:
            self.selected = None
            self.move_all_pending = False
            return
        if self.owned_by_other(src):
            self.show_message(f"{src.name} belongs to {src.owner}")
        elif self.move_all_pending:
            if target is not None:
                self.session.move_all(self.selected, slot)
        elif target is None:
            self.session.pile_move(self.selected, slot)
        elif len(src):
            self.session.move(self.selected, slot, src.get_card(len(src) - 1))
        self.selected = None
        self.move_all_pending = False

    def flip_top(self, pos: Tuple[int, int]) -> None:
        slot = slot_at(pos)
        pile = self.pile(slot)
        if pile is not None and len(pile):
            self.session.flip(slot, pile.get_card(len(pile) - 1))

    def key(self, key: int) -> None:
        pile = self.pile(self.selected)
        if pile is None:
            return
        if key == pygame.K_s:
            self.session.shuffle(self.selected)
        elif key == pygame.K_u:
            self.session.face_up(self.selected)
        elif key == pygame.K_d:
            self.session.face_down(self.selected)
        elif key == pygame.K_a:
            self.move_all_pending = True
            self.show_message(f"Click where {pile.name} should go")
            return
        elif key == pygame.K_p:
            self.session.protect(self.selected, self.player)
        elif key == pygame.K_o:
            self.session.unprotect(self.selected, self.player)
        elif key in (pygame.K_x, pygame.K_DELETE):
            if len(pile):
                self.show_message("Only empty piles can be deleted")
                return
            self.session.delete(self.selected)
        else:
            return
        self.selected = None

    def run(self) -> None:
        while self.running:
            for event in pygame.event.get():
                if event.type == pygame.QUIT:
                    self.running = False
                elif event.type == pygame.MOUSEBUTTONDOWN:
                    if event.button == 1:
                        self.click(event.pos)
                    elif event.button == 3:
                        self.flip_top(event.pos)
                elif event.type == pygame.KEYDOWN:
                    if event.key == pygame.K_ESCAPE:
                        self.running = False
                    else:
                        self.key(event.key)

            # Poll incoming
            state = self.session.try_get(0.0)
            while state is not None:
                self.state = state
                if self.selected is not None and self.pile(self.selected) is None:
                    self.selected = None
                if self.info_message == "Waiting for the table...":
                    self.info_message = ""
                state = self.session.try_get(0.0)

            if self.session.host_gone.is_set():
                self.show_message("The host left the table.", 3.0)
                self.draw()
                pygame.time.wait(2000)
                self.running = False
            elif not self.session.connected and self.state is not None:
                self.show_message("Lost connection to the host.", 3.0)

            self.draw()
            self.clock.tick(60)

        self.session.close()
        pygame.quit()


# --------------------------- Entrypoints ---------------------------

def run_viewer_gui(session: ViewerSession, player: str) -> None:
    gui = TableGui(session, player)
    gui.run()
