"""Typed rejections raised by the hand engine and the table manager.

Every error is a ``ValueError`` so callers that only care about "the
operation was refused" can keep catching ``ValueError``.  Each class carries
a stable ``code`` (its kind name) and the HTTP status the host maps it to.
"""

from __future__ import annotations


class PokerError(ValueError):
    """Base class for all engine rejections."""

    status_code: int = 400
    default_message: str = "Operation rejected"

    def __init__(self, message: str | None = None) -> None:
        super().__init__(message or self.default_message)

    @property
    def code(self) -> str:
        return type(self).__name__

    @property
    def message(self) -> str:
        return self.args[0]


# --- Configuration violations ---


class ConfigurationError(PokerError):
    pass


class InvalidTableConfig(ConfigurationError):
    default_message = "Invalid table configuration"


class TableNotJoinable(ConfigurationError):
    default_message = "Table is not accepting new players"


class TableFull(ConfigurationError):
    default_message = "Table is full"


class BuyInTooLow(ConfigurationError):
    default_message = "Buy-in amount too low"


class BuyInTooHigh(ConfigurationError):
    default_message = "Buy-in amount too high"


class AlreadySeated(ConfigurationError):
    default_message = "Agent is already seated at this table"


# --- Sequencing violations ---


class SequencingError(PokerError):
    pass


class HandInProgress(SequencingError):
    default_message = "Hand already in progress"


class NotEnoughPlayers(SequencingError):
    default_message = "Not enough players to start"


class InvalidGameState(SequencingError):
    default_message = "Invalid game state for this action"


class HandNotComplete(SequencingError):
    default_message = "Hand is not complete"


class CannotLeaveDuringHand(SequencingError):
    default_message = "Cannot leave during active hand"


# --- Turn / action violations ---


class TurnError(PokerError):
    pass


class PlayerNotActive(TurnError):
    default_message = "Player is not active"


class NotYourTurn(TurnError):
    default_message = "Not your turn"


class CannotCheck(TurnError):
    default_message = "Cannot check - must call or raise"


class RaiseTooSmall(TurnError):
    default_message = "Raise must be larger than current bet"


class InvalidCardCount(TurnError):
    default_message = "Invalid number of cards"


class InvalidCard(TurnError):
    default_message = "Invalid card code"


class DuplicateCard(TurnError):
    default_message = "Card has already been dealt this hand"


class InvalidAction(TurnError):
    default_message = "Unknown action"


# --- Financial violations ---


class InsufficientStack(PokerError):
    default_message = "Insufficient stack"


# --- Consistency violations ---


class ConsistencyError(PokerError):
    pass


class InvalidWinner(ConsistencyError):
    default_message = "Invalid winner"


class NoRakeToWithdraw(ConsistencyError):
    default_message = "No rake to withdraw"


class NotTableCreator(ConsistencyError):
    status_code = 403
    default_message = "Only the table creator can do that"


class ProtocolWalletNotConfigured(ConsistencyError):
    status_code = 503
    default_message = "Protocol wallet is not configured"


# --- Lookups (manager / host) ---


class TableNotFound(PokerError):
    status_code = 404
    default_message = "Table not found"


class SeatNotFound(PokerError):
    status_code = 404
    default_message = "Seat not found"


class TableExists(PokerError):
    status_code = 409
    default_message = "Table already exists"


# --- Authentication (manager / host) ---


class InvalidPin(PokerError):
    status_code = 403
    default_message = "Invalid PIN"
