"""Hand engine for a multi-seat poker table.

Owns one table's state and the seat records keyed by agent, and applies the
table/hand state machine: seating, button rotation, the betting-round
protocol, community-card reveals and settlement with protocol rake.

Every operation checks all of its preconditions before the first write, so a
rejected call leaves the table exactly as it was.  Cards come from an
external dealer oracle and funds move through the custody interface; the
engine never shuffles and never decides who holds the best hand.
"""

from __future__ import annotations

import logging
from enum import Enum
from typing import Any, Callable, Iterable, Iterator, Optional, Sequence

from agent_poker.cards import cards_to_str, validate_new_cards
from agent_poker.config import EngineSettings, get_settings
from agent_poker.custody import Custody, escrow_account, get_custody
from agent_poker.errors import (
    AlreadySeated,
    BuyInTooHigh,
    BuyInTooLow,
    CannotCheck,
    CannotLeaveDuringHand,
    HandInProgress,
    HandNotComplete,
    InsufficientStack,
    InvalidAction,
    InvalidCardCount,
    InvalidGameState,
    InvalidTableConfig,
    InvalidWinner,
    NoRakeToWithdraw,
    NotEnoughPlayers,
    NotTableCreator,
    NotYourTurn,
    PlayerNotActive,
    ProtocolWalletNotConfigured,
    RaiseTooSmall,
    SeatNotFound,
    TableFull,
    TableNotJoinable,
)

logger = logging.getLogger(__name__)


class TableState(str, Enum):
    WAITING = "waiting"
    PREFLOP = "preflop"
    FLOP = "flop"
    TURN = "turn"
    RIVER = "river"
    SHOWDOWN = "showdown"
    BETWEEN_HANDS = "between_hands"


class PokerAction(str, Enum):
    FOLD = "fold"
    CHECK = "check"
    CALL = "call"
    RAISE = "raise"
    ALL_IN = "all_in"


class NextStep(str, Enum):
    """What the table is waiting for."""

    START_HAND = "start_hand"
    PLAYER_ACTION = "player_action"
    DEAL_COMMUNITY = "deal_community"
    SETTLE_HAND = "settle_hand"


RESTING_STATES = (TableState.WAITING, TableState.BETWEEN_HANDS)
BETTING_STATES = (TableState.PREFLOP, TableState.FLOP, TableState.TURN, TableState.RIVER)

# current street -> (cards the dealer must reveal, street it opens)
STREET_TRANSITIONS: dict[TableState, tuple[int, TableState]] = {
    TableState.PREFLOP: (3, TableState.FLOP),
    TableState.FLOP: (1, TableState.TURN),
    TableState.TURN: (1, TableState.RIVER),
}

HOLE_CARD_COUNT = 2


class Seat:
    """One agent's seat at a table, keyed by (table, agent)."""

    def __init__(
        self,
        table_id: int,
        agent: str,
        human: str,
        stack: int,
        position: int,
    ) -> None:
        self.table_id = table_id
        self.agent = agent
        self.human = human
        self.stack = stack
        self.position = position
        self.current_bet: int = 0
        self.total_bet: int = 0
        self.is_active: bool = True
        self.is_folded: bool = False
        self.is_all_in: bool = False
        self.has_acted: bool = False
        self.hole_cards: list[int] = []
        self.last_action: str = ""

    @property
    def can_act(self) -> bool:
        """Seated, still in the hand and not all-in."""
        return self.is_active and not self.is_folded and not self.is_all_in

    def reset_for_new_hand(self) -> None:
        self.current_bet = 0
        self.total_bet = 0
        self.is_folded = False
        self.is_all_in = False
        self.has_acted = False
        self.hole_cards = []
        self.last_action = ""

    def reset_for_new_round(self) -> None:
        self.current_bet = 0
        self.has_acted = False

    def to_dict(self, reveal_cards: bool = False) -> dict[str, Any]:
        d: dict[str, Any] = {
            "table_id": self.table_id,
            "agent": self.agent,
            "human": self.human,
            "stack": self.stack,
            "position": self.position,
            "current_bet": self.current_bet,
            "total_bet": self.total_bet,
            "is_active": self.is_active,
            "is_folded": self.is_folded,
            "is_all_in": self.is_all_in,
            "has_acted": self.has_acted,
            "last_action": self.last_action,
        }
        if reveal_cards:
            d["hole_cards"] = list(self.hole_cards)
        return d

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Seat:
        seat = cls(
            data["table_id"],
            data["agent"],
            data["human"],
            data["stack"],
            data["position"],
        )
        seat.current_bet = data.get("current_bet", 0)
        seat.total_bet = data.get("total_bet", 0)
        seat.is_active = data.get("is_active", True)
        seat.is_folded = data.get("is_folded", False)
        seat.is_all_in = data.get("is_all_in", False)
        seat.has_acted = data.get("has_acted", False)
        seat.hole_cards = list(data.get("hole_cards", []))
        seat.last_action = data.get("last_action", "")
        return seat


class Table:
    """Static configuration plus the dynamic per-hand state of one table."""

    def __init__(
        self,
        table_id: int,
        creator: str,
        small_blind: int,
        big_blind: int,
        min_buy_in: int,
        max_buy_in: int,
        max_players: int,
        post_blinds: bool = False,
    ) -> None:
        self.table_id = table_id
        self.creator = creator
        self.small_blind = small_blind
        self.big_blind = big_blind
        self.min_buy_in = min_buy_in
        self.max_buy_in = max_buy_in
        self.max_players = max_players
        self.post_blinds = post_blinds

        self.player_count: int = 0
        self.current_hand: int = 0
        self.state: TableState = TableState.WAITING
        self.pot: int = 0
        self.dealer_position: int = 0
        self.current_turn: int = 0
        self.community_cards: list[int] = []
        self.accumulated_rake: int = 0
        self.last_result: Optional[dict[str, Any]] = None

    @property
    def community_card_count(self) -> int:
        return len(self.community_cards)

    def to_dict(self) -> dict[str, Any]:
        return {
            "table_id": self.table_id,
            "creator": self.creator,
            "small_blind": self.small_blind,
            "big_blind": self.big_blind,
            "min_buy_in": self.min_buy_in,
            "max_buy_in": self.max_buy_in,
            "max_players": self.max_players,
            "post_blinds": self.post_blinds,
            "player_count": self.player_count,
            "current_hand": self.current_hand,
            "state": self.state.value,
            "pot": self.pot,
            "dealer_position": self.dealer_position,
            "current_turn": self.current_turn,
            "community_cards": list(self.community_cards),
            "community_card_count": self.community_card_count,
            "accumulated_rake": self.accumulated_rake,
            "last_result": self.last_result,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Table:
        table = cls(
            table_id=data["table_id"],
            creator=data["creator"],
            small_blind=data["small_blind"],
            big_blind=data["big_blind"],
            min_buy_in=data["min_buy_in"],
            max_buy_in=data["max_buy_in"],
            max_players=data["max_players"],
            post_blinds=data.get("post_blinds", False),
        )
        table.player_count = data["player_count"]
        table.current_hand = data["current_hand"]
        table.state = TableState(data["state"])
        table.pot = data["pot"]
        table.dealer_position = data["dealer_position"]
        table.current_turn = data["current_turn"]
        table.community_cards = list(data.get("community_cards", []))
        table.accumulated_rake = data.get("accumulated_rake", 0)
        table.last_result = data.get("last_result")
        return table


class EventLog:
    """Ordered, human-readable record of a table's transitions."""

    def __init__(self, table_id: int, next_seq: int = 1, limit: int = 0) -> None:
        self.table_id = table_id
        self.next_seq = next_seq
        self.limit = limit  # 0 = keep everything
        self.events: list[dict[str, Any]] = []
        self._pending: list[dict[str, Any]] = []

    def record(
        self, kind: str, hand_number: int, message: str, **data: Any
    ) -> dict[str, Any]:
        event = {
            "seq": self.next_seq,
            "table_id": self.table_id,
            "type": kind,
            "hand_number": hand_number,
            "message": message,
            "data": data,
        }
        self.next_seq += 1
        self.events.append(event)
        if self.limit and len(self.events) > self.limit:
            del self.events[: len(self.events) - self.limit]
        self._pending.append(event)
        return event

    def iter_events(self, after: int = 0) -> Iterator[dict[str, Any]]:
        for event in self.events:
            if event["seq"] > after:
                yield event

    def drain(self) -> list[dict[str, Any]]:
        """Return events recorded since the last drain."""
        pending, self._pending = self._pending, []
        return pending


class HandEngine:
    """Applies table operations one at a time, all-or-nothing."""

    def __init__(
        self,
        table: Table,
        seats: Iterable[Seat] = (),
        custody: Custody | None = None,
        settings: EngineSettings | None = None,
        next_event_seq: int = 1,
    ) -> None:
        self.table = table
        self.seats: dict[str, Seat] = {s.agent: s for s in seats}
        self.custody = custody if custody is not None else get_custody()
        self.settings = settings if settings is not None else get_settings()
        self.events = EventLog(
            table.table_id, next_seq=next_event_seq, limit=self.settings.event_history
        )

    # ------------------------------------------------------------------
    # Table Lifecycle
    # ------------------------------------------------------------------

    @classmethod
    def create_table(
        cls,
        table_id: int,
        creator: str,
        small_blind: int,
        big_blind: int,
        min_buy_in: int,
        max_buy_in: int,
        max_players: int,
        post_blinds: bool = False,
        custody: Custody | None = None,
        settings: EngineSettings | None = None,
    ) -> HandEngine:
        """Create a table in the Waiting state with zeroed counters."""
        settings = settings if settings is not None else get_settings()

        if small_blind <= 0:
            raise InvalidTableConfig("Small blind must be positive")
        if big_blind < small_blind:
            raise InvalidTableConfig("Big blind must be at least the small blind")
        if min_buy_in <= 0 or min_buy_in > max_buy_in:
            raise InvalidTableConfig("Buy-in range must satisfy 0 < min <= max")
        if not 2 <= max_players <= settings.max_seats:
            raise InvalidTableConfig(
                f"Max players must be between 2 and {settings.max_seats}"
            )

        table = Table(
            table_id,
            creator,
            small_blind,
            big_blind,
            min_buy_in,
            max_buy_in,
            max_players,
            post_blinds=post_blinds,
        )
        engine = cls(table, custody=custody, settings=settings)
        engine._record(
            "table_created",
            f"Table {table_id} created with {small_blind}/{big_blind} blinds",
            creator=creator,
            small_blind=small_blind,
            big_blind=big_blind,
            min_buy_in=min_buy_in,
            max_buy_in=max_buy_in,
            max_players=max_players,
        )
        return engine

    def join_table(self, agent: str, human: str, buy_in_amount: int) -> Seat:
        """Seat *agent*, funded by *human*, after escrowing the buy-in."""
        t = self.table
        if t.state not in RESTING_STATES:
            raise TableNotJoinable()
        if t.player_count >= t.max_players:
            raise TableFull()
        if buy_in_amount < t.min_buy_in:
            raise BuyInTooLow(f"Buy-in must be at least {t.min_buy_in}")
        if buy_in_amount > t.max_buy_in:
            raise BuyInTooHigh(f"Buy-in must be at most {t.max_buy_in}")
        if agent in self.seats:
            raise AlreadySeated()

        position = self._free_position()

        # Funds must reach escrow before the seat exists
        self.custody.deposit(human, escrow_account(t.table_id), buy_in_amount)

        seat = Seat(t.table_id, agent, human, buy_in_amount, position)
        self.seats[agent] = seat
        t.player_count += 1

        self._record(
            "player_joined",
            f"Agent {agent} joined table at position {position}",
            agent=agent,
            position=position,
            stack=buy_in_amount,
        )
        return seat

    def leave_table(self, agent: str) -> int:
        """Pay the seat's stack back to its funding principal and remove it."""
        t = self.table
        if t.state not in RESTING_STATES:
            raise CannotLeaveDuringHand()
        seat = self._require_seat(agent)

        refund = seat.stack
        if refund > 0:
            self.custody.payout(escrow_account(t.table_id), seat.human, refund)

        del self.seats[agent]
        t.player_count -= 1

        self._record(
            "player_left",
            f"Agent {agent} left table with {refund}",
            agent=agent,
            position=seat.position,
            refund=refund,
        )
        return refund

    # ------------------------------------------------------------------
    # Hand Lifecycle
    # ------------------------------------------------------------------

    def start_hand(self) -> dict[str, Any]:
        """Rotate the button, reset every seat and open the PreFlop round."""
        t = self.table
        if t.player_count < 2:
            raise NotEnoughPlayers()
        if t.state not in RESTING_STATES:
            raise HandInProgress()
        if sum(1 for s in self.seats.values() if s.stack > 0) < 2:
            raise NotEnoughPlayers("Need at least two seats with chips")

        t.current_hand += 1
        t.pot = 0
        t.community_cards = []
        t.last_result = None

        dealer = self._next_seat(t.dealer_position)
        assert dealer is not None
        t.dealer_position = dealer.position

        for s in self.seats.values():
            s.reset_for_new_hand()
            if s.stack == 0:
                # Busted seats sit the hand out
                s.is_folded = True
                s.last_action = "Sitting out"

        t.state = TableState.PREFLOP

        sb = self._next_seat(t.dealer_position, _in_hand)
        assert sb is not None
        bb = self._next_seat(sb.position, _in_hand)
        assert bb is not None

        self._record(
            "hand_started",
            f"Hand {t.current_hand} started",
            dealer_position=t.dealer_position,
            small_blind_position=sb.position,
            big_blind_position=bb.position,
        )

        if t.post_blinds:
            self._force_bet(sb, t.small_blind, "SB")
            self._force_bet(bb, t.big_blind, "BB")

        first = self._next_seat(bb.position, _can_act)
        t.current_turn = first.position if first is not None else bb.position

        self._after_round_change()
        return self.get_state()

    def _force_bet(self, seat: Seat, amount: int, label: str) -> int:
        """Post a blind, capped at the seat's stack."""
        actual = min(amount, seat.stack)
        self._commit(seat, actual)
        seat.last_action = f"{label} {actual}"
        self._record(
            "blind_posted",
            f"Player {seat.position} posts {label} {actual}",
            position=seat.position,
            blind=label,
            amount=actual,
        )
        return actual

    def deal_hole_cards(self, agent: str, cards: Sequence[int]) -> dict[str, Any]:
        """Store the dealer oracle's two private cards for a seat."""
        t = self.table
        if t.state != TableState.PREFLOP:
            raise InvalidGameState("Hole cards can only be dealt before the flop")
        seat = self._require_seat(agent)
        if seat.is_folded:
            raise PlayerNotActive()
        if seat.hole_cards:
            raise InvalidGameState("Hole cards already dealt to this seat")
        cards = list(cards)
        if len(cards) != HOLE_CARD_COUNT:
            raise InvalidCardCount(
                f"Exactly {HOLE_CARD_COUNT} hole cards required, got {len(cards)}"
            )
        validate_new_cards(cards, self._dealt_cards())

        seat.hole_cards = cards
        # Cards stay out of the public event
        self._record(
            "hole_cards_dealt",
            f"Hole cards dealt to player {seat.position}",
            position=seat.position,
        )
        return self.get_seat_view(agent)

    def deal_community(self, cards: Sequence[int]) -> dict[str, Any]:
        """Reveal the next street and open its betting round."""
        t = self.table
        transition = STREET_TRANSITIONS.get(t.state)
        if transition is None:
            raise InvalidGameState(
                f"Cannot deal community cards in state {t.state.value}"
            )
        required, next_state = transition
        cards = list(cards)
        if len(cards) != required:
            raise InvalidCardCount(
                f"{next_state.value} requires {required} card(s), got {len(cards)}"
            )
        validate_new_cards(cards, self._dealt_cards())

        t.community_cards.extend(cards)
        t.state = next_state
        for s in self.seats.values():
            s.reset_for_new_round()

        first = self._next_seat(t.dealer_position, _can_act)
        if first is not None:
            t.current_turn = first.position

        self._record(
            "community_dealt",
            f"{next_state.value.capitalize()}: {cards_to_str(t.community_cards)}",
            street=next_state.value,
            cards=cards,
            community_cards=list(t.community_cards),
            pot=t.pot,
        )
        self._after_round_change()
        return self.get_state()

    def settle_hand(self, winner_agent: str, winner_position: int) -> dict[str, Any]:
        """Pay the pot, less rake, to the declared winner and close the hand.

        The winner is trusted input: only eligibility and consistency are
        checked here, never hand strength.
        """
        t = self.table
        in_hand = self._in_hand()
        showdown_reached = t.state in (TableState.RIVER, TableState.SHOWDOWN)
        last_standing = t.state in BETTING_STATES and len(in_hand) == 1
        if not (showdown_reached or last_standing):
            raise HandNotComplete()

        winner = self.seats.get(winner_agent)
        if winner is None:
            raise InvalidWinner("Winner is not seated at this table")
        if winner.position != winner_position:
            raise InvalidWinner(
                f"Seat of {winner_agent} is at position {winner.position}, not {winner_position}"
            )
        if winner.is_folded:
            raise InvalidWinner("A folded seat cannot win the pot")

        pot = t.pot
        rake = self.settings.rake_for(pot)
        payout = pot - rake

        t.accumulated_rake += rake
        winner.stack += payout
        if winner.stack > 0:
            winner.is_all_in = False
        t.pot = 0
        t.state = TableState.BETWEEN_HANDS
        for s in self.seats.values():
            s.reset_for_new_round()

        t.last_result = {
            "hand_number": t.current_hand,
            "winner": winner.agent,
            "winner_position": winner.position,
            "pot": pot,
            "rake": rake,
            "payout": payout,
        }
        self._record(
            "pot_awarded",
            f"Player {winner.position} wins {payout} (pot {pot} - rake {rake})",
            **t.last_result,
        )
        return self.get_state()

    def withdraw_rake(self, admin: str) -> int:
        """Transfer the accumulated rake to the protocol wallet."""
        t = self.table
        if admin != t.creator:
            raise NotTableCreator()
        amount = t.accumulated_rake
        if amount <= 0:
            raise NoRakeToWithdraw()
        wallet = self.settings.protocol_wallet
        if not wallet:
            raise ProtocolWalletNotConfigured()

        self.custody.payout(escrow_account(t.table_id), wallet, amount)
        t.accumulated_rake = 0

        self._record(
            "rake_withdrawn",
            f"Withdrawing {amount} rake to protocol wallet",
            amount=amount,
            protocol_wallet=wallet,
        )
        return amount

    # ------------------------------------------------------------------
    # Betting Round
    # ------------------------------------------------------------------

    @property
    def bet_to_match(self) -> int:
        """Highest bet posted this round by a seat still in the hand."""
        return max((s.current_bet for s in self._in_hand()), default=0)

    @property
    def round_complete(self) -> bool:
        """True once no seat owes an action in the current betting round."""
        if len(self._in_hand()) <= 1:
            return True
        to_match = self.bet_to_match
        actors = self._actors()
        if len(actors) <= 1:
            return all(s.current_bet >= to_match for s in actors)
        return all(s.has_acted and s.current_bet >= to_match for s in actors)

    @property
    def awaiting(self) -> NextStep:
        state = self.table.state
        if state in RESTING_STATES:
            return NextStep.START_HAND
        if state == TableState.SHOWDOWN or len(self._in_hand()) <= 1:
            return NextStep.SETTLE_HAND
        if self.round_complete:
            if state == TableState.RIVER:
                return NextStep.SETTLE_HAND
            return NextStep.DEAL_COMMUNITY
        return NextStep.PLAYER_ACTION

    def player_action(
        self, agent: str, action: PokerAction | str, amount: int = 0
    ) -> dict[str, Any]:
        """Apply one betting action by the seat whose turn it is."""
        t = self.table
        try:
            action = PokerAction(action)
        except ValueError:
            raise InvalidAction(f"Unknown action: {action}") from None

        if t.state not in BETTING_STATES:
            raise InvalidGameState("No betting round in progress")
        seat = self._require_seat(agent)
        if not seat.can_act:
            raise PlayerNotActive()
        if seat.position != t.current_turn:
            raise NotYourTurn()
        if self.round_complete:
            raise InvalidGameState(
                "Betting round is closed; deal the next street or settle the hand"
            )

        to_match = self.bet_to_match
        reopened = False

        if action == PokerAction.FOLD:
            seat.is_folded = True
            seat.last_action = "Fold"
            message = f"Player {seat.position} folds"
            committed = 0
        elif action == PokerAction.CHECK:
            if seat.current_bet != to_match:
                raise CannotCheck()
            seat.last_action = "Check"
            message = f"Player {seat.position} checks"
            committed = 0
        elif action == PokerAction.CALL:
            committed = to_match - seat.current_bet
            if seat.stack < committed:
                raise InsufficientStack(
                    f"Calling {committed} needs more than the {seat.stack} in stack"
                )
            self._commit(seat, committed)
            seat.last_action = f"Call {committed}"
            message = f"Player {seat.position} calls {committed}"
        elif action == PokerAction.RAISE:
            if amount <= to_match:
                raise RaiseTooSmall(f"Raise must be larger than {to_match}")
            committed = amount - seat.current_bet
            if seat.stack < committed:
                raise InsufficientStack(
                    f"Raising to {amount} needs {committed}, stack is {seat.stack}"
                )
            self._commit(seat, committed)
            seat.last_action = f"Raise {amount}"
            message = f"Player {seat.position} raises to {amount}"
            reopened = True
        else:
            committed = seat.stack
            self._commit(seat, committed)
            seat.last_action = f"All-In {seat.total_bet}"
            message = f"Player {seat.position} goes all-in for {committed}"
            reopened = seat.current_bet > to_match

        seat.has_acted = True
        if reopened:
            for other in self._actors():
                if other is not seat:
                    other.has_acted = False

        self._record(
            "action",
            message,
            position=seat.position,
            agent=seat.agent,
            action=action.value,
            amount=committed,
            current_bet=seat.current_bet,
            pot=t.pot,
        )

        nxt = self._next_seat(seat.position, _can_act)
        if nxt is not None:
            t.current_turn = nxt.position

        self._after_round_change()
        return self.get_state()

    def _commit(self, seat: Seat, amount: int) -> None:
        seat.stack -= amount
        seat.current_bet += amount
        seat.total_bet += amount
        self.table.pot += amount
        if seat.stack == 0:
            seat.is_all_in = True

    def _after_round_change(self) -> None:
        """Evaluate the round-closure predicate and announce the outcome."""
        t = self.table
        in_hand = self._in_hand()
        if len(in_hand) == 1:
            last = in_hand[0]
            self._record(
                "round_complete",
                f"Player {last.position} is the last player in the hand",
                street=t.state.value,
                next_step=NextStep.SETTLE_HAND.value,
            )
            return
        if not self.round_complete:
            return
        if t.state == TableState.RIVER:
            t.state = TableState.SHOWDOWN
            self._record(
                "showdown",
                f"Showdown between players {', '.join(str(s.position) for s in in_hand)}",
                positions=[s.position for s in in_hand],
                next_step=NextStep.SETTLE_HAND.value,
            )
            return
        self._record(
            "round_complete",
            f"Betting on the {t.state.value} is complete",
            street=t.state.value,
            pot=t.pot,
            next_step=NextStep.DEAL_COMMUNITY.value,
        )

    def get_valid_actions(self, agent: str) -> list[dict[str, Any]]:
        """Return the actions *agent* may take right now."""
        seat = self.seats.get(agent)
        t = self.table
        if (
            seat is None
            or t.state not in BETTING_STATES
            or not seat.can_act
            or seat.position != t.current_turn
            or self.round_complete
        ):
            return []

        to_match = self.bet_to_match
        to_call = to_match - seat.current_bet
        actions: list[dict[str, Any]] = [{"action": PokerAction.FOLD.value}]
        if to_call == 0:
            actions.append({"action": PokerAction.CHECK.value})
        elif seat.stack >= to_call:
            actions.append({"action": PokerAction.CALL.value, "amount": to_call})
        max_raise_to = seat.current_bet + seat.stack
        if max_raise_to > to_match:
            actions.append(
                {
                    "action": PokerAction.RAISE.value,
                    "min_amount": to_match + 1,
                    "max_amount": max_raise_to,
                }
            )
        actions.append({"action": PokerAction.ALL_IN.value, "amount": seat.stack})
        return actions

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _ordered_seats(self) -> list[Seat]:
        return sorted(self.seats.values(), key=lambda s: s.position)

    def _in_hand(self) -> list[Seat]:
        return [s for s in self._ordered_seats() if _in_hand(s)]

    def _actors(self) -> list[Seat]:
        return [s for s in self._ordered_seats() if _can_act(s)]

    def _next_seat(
        self, position: int, predicate: Callable[[Seat], bool] | None = None
    ) -> Optional[Seat]:
        """First seat strictly after *position*, wrapping in position order."""
        ordered = self._ordered_seats()
        after = [s for s in ordered if s.position > position]
        before = [s for s in ordered if s.position <= position]
        for s in after + before:
            if predicate is None or predicate(s):
                return s
        return None

    def _free_position(self) -> int:
        taken = {s.position for s in self.seats.values()}
        position = 0
        while position in taken:
            position += 1
        return position

    def _require_seat(self, agent: str) -> Seat:
        seat = self.seats.get(agent)
        if seat is None:
            raise SeatNotFound(f"Agent {agent} is not seated at table {self.table.table_id}")
        return seat

    def _dealt_cards(self) -> list[int]:
        dealt = list(self.table.community_cards)
        for s in self.seats.values():
            dealt.extend(s.hole_cards)
        return dealt

    def _record(self, kind: str, message: str, **data: Any) -> None:
        self.events.record(kind, self.table.current_hand, message, **data)
        logger.info("Table %s: %s", self.table.table_id, message)

    def iter_events(self, after: int = 0) -> Iterator[dict[str, Any]]:
        return self.events.iter_events(after)

    def drain_events(self) -> list[dict[str, Any]]:
        return self.events.drain()

    def get_state(self) -> dict[str, Any]:
        """Public snapshot of the table; hole cards are never included."""
        t = self.table
        awaiting = self.awaiting
        action_on = None
        if awaiting == NextStep.PLAYER_ACTION:
            for s in self.seats.values():
                if s.position == t.current_turn:
                    action_on = s.agent
        return {
            **t.to_dict(),
            "bet_to_match": self.bet_to_match if t.state in BETTING_STATES else 0,
            "round_complete": self.round_complete if t.state in BETTING_STATES else False,
            "awaiting": awaiting.value,
            "action_on": action_on,
            "seats": [s.to_dict() for s in self._ordered_seats()],
        }

    def get_seat_view(self, agent: str) -> dict[str, Any]:
        """Table snapshot plus *agent*'s own hole cards and legal actions."""
        seat = self._require_seat(agent)
        state = self.get_state()
        state["my_seat"] = seat.to_dict(reveal_cards=True)
        state["valid_actions"] = self.get_valid_actions(agent)
        return state

    # ------------------------------------------------------------------
    # Serialization (for Redis persistence)
    # ------------------------------------------------------------------

    def to_dict(self) -> dict[str, Any]:
        return {
            "table": self.table.to_dict(),
            "seats": [s.to_dict(reveal_cards=True) for s in self._ordered_seats()],
            "next_event_seq": self.events.next_seq,
        }

    @classmethod
    def from_dict(
        cls,
        data: dict[str, Any],
        custody: Custody | None = None,
        settings: EngineSettings | None = None,
    ) -> HandEngine:
        return cls(
            Table.from_dict(data["table"]),
            seats=[Seat.from_dict(s) for s in data.get("seats", [])],
            custody=custody,
            settings=settings,
            next_event_seq=data.get("next_event_seq", 1),
        )


def _in_hand(seat: Seat) -> bool:
    return seat.is_active and not seat.is_folded


def _can_act(seat: Seat) -> bool:
    return seat.can_act
