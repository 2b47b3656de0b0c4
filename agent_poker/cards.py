"""Card codes as supplied by the dealer oracle.

A card is an integer ``0..51``: ``code % 13`` is the rank (0 = deuce through
12 = ace) and ``code // 13`` the suit (hearts, diamonds, clubs, spades).  The
engine never shuffles or deals on its own; it only validates and renders the
codes it is handed.
"""

from __future__ import annotations

from enum import IntEnum, Enum
from typing import Iterable, Sequence

from agent_poker.errors import DuplicateCard, InvalidCard

DECK_SIZE = 52


class Suit(str, Enum):
    HEARTS = "h"
    DIAMONDS = "d"
    CLUBS = "c"
    SPADES = "s"


SUIT_ORDER: list[Suit] = [Suit.HEARTS, Suit.DIAMONDS, Suit.CLUBS, Suit.SPADES]


class Rank(IntEnum):
    TWO = 2
    THREE = 3
    FOUR = 4
    FIVE = 5
    SIX = 6
    SEVEN = 7
    EIGHT = 8
    NINE = 9
    TEN = 10
    JACK = 11
    QUEEN = 12
    KING = 13
    ACE = 14


RANK_SYMBOLS = {
    Rank.TWO: "2",
    Rank.THREE: "3",
    Rank.FOUR: "4",
    Rank.FIVE: "5",
    Rank.SIX: "6",
    Rank.SEVEN: "7",
    Rank.EIGHT: "8",
    Rank.NINE: "9",
    Rank.TEN: "T",
    Rank.JACK: "J",
    Rank.QUEEN: "Q",
    Rank.KING: "K",
    Rank.ACE: "A",
}


class Card:
    __slots__ = ("rank", "suit")

    def __init__(self, rank: Rank, suit: Suit) -> None:
        self.rank = rank
        self.suit = suit

    def __repr__(self) -> str:
        return f"{RANK_SYMBOLS[self.rank]}{self.suit.value}"

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Card):
            return NotImplemented
        return self.rank == other.rank and self.suit == other.suit

    def __hash__(self) -> int:
        return hash((self.rank, self.suit))

    @property
    def code(self) -> int:
        return SUIT_ORDER.index(self.suit) * 13 + (self.rank - Rank.TWO)

    @classmethod
    def from_code(cls, code: int) -> Card:
        if not is_valid_code(code):
            raise InvalidCard(f"Invalid card code: {code!r}")
        return cls(Rank(code % 13 + Rank.TWO), SUIT_ORDER[code // 13])


def is_valid_code(code: object) -> bool:
    # bool is an int subclass; reject it explicitly
    return isinstance(code, int) and not isinstance(code, bool) and 0 <= code < DECK_SIZE


def card_to_str(code: int) -> str:
    return repr(Card.from_code(code))


def cards_to_str(codes: Iterable[int]) -> str:
    return " ".join(card_to_str(c) for c in codes)


def validate_new_cards(cards: Sequence[int], dealt: Iterable[int]) -> None:
    """Reject out-of-range codes and any card already dealt this hand."""
    seen = set(dealt)
    for code in cards:
        if not is_valid_code(code):
            raise InvalidCard(f"Invalid card code: {code!r}")
        if code in seen:
            raise DuplicateCard(f"Card {card_to_str(code)} has already been dealt")
        seen.add(code)
