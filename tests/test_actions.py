"""Tests for betting actions: fold, check, call, raise, all-in, and round closure."""

import pytest

from agent_poker.config import EngineSettings
from agent_poker.custody import LedgerCustody
from agent_poker.engine import HandEngine, NextStep, TableState
from agent_poker.errors import (
    CannotCheck,
    InsufficientStack,
    InvalidAction,
    InvalidGameState,
    NotYourTurn,
    PlayerNotActive,
    RaiseTooSmall,
    SeatNotFound,
)


# ── Helpers ──────────────────────────────────────────────────────────

def _make_engine(n_players=3, stacks=None, **kwargs) -> HandEngine:
    stacks = stacks or [100] * n_players
    custody = LedgerCustody({f"h{i}": 1000 for i in range(len(stacks))})
    engine = HandEngine.create_table(
        table_id=7,
        creator="creator",
        small_blind=kwargs.pop("small_blind", 1),
        big_blind=kwargs.pop("big_blind", 2),
        min_buy_in=1,
        max_buy_in=1000,
        max_players=6,
        custody=custody,
        settings=EngineSettings(protocol_wallet="protocol"),
        **kwargs,
    )
    for i, stack in enumerate(stacks):
        engine.join_table(f"a{i}", f"h{i}", stack)
    return engine


def _action_agent(engine: HandEngine) -> str:
    """Return the agent whose turn it is."""
    return engine.get_state()["action_on"]


def _snapshot(engine: HandEngine) -> dict:
    return engine.to_dict()


# ── Fold ─────────────────────────────────────────────────────────────

class TestFold:
    def test_fold_marks_player(self):
        e = _make_engine(3)
        e.start_hand()
        agent = _action_agent(e)
        e.player_action(agent, "fold")
        seat = e.seats[agent]
        assert seat.is_folded
        assert seat.last_action == "Fold"

    def test_fold_always_valid(self):
        e = _make_engine(3)
        e.start_hand()
        names = [a["action"] for a in e.get_valid_actions(_action_agent(e))]
        assert "fold" in names

    def test_all_but_one_fold_awaits_settlement(self):
        e = _make_engine(3)
        e.start_hand()
        e.player_action(_action_agent(e), "fold")
        e.player_action(_action_agent(e), "fold")
        state = e.get_state()
        assert state["awaiting"] == "settle_hand"
        assert state["action_on"] is None
        assert state["round_complete"]

    def test_folded_seat_cannot_act_again(self):
        e = _make_engine(3)
        e.start_hand()
        agent = _action_agent(e)
        e.player_action(agent, "fold")
        with pytest.raises(PlayerNotActive):
            e.player_action(agent, "check")


# ── Check ────────────────────────────────────────────────────────────

class TestCheck:
    def test_check_when_nothing_to_match(self):
        e = _make_engine(2)
        e.start_hand()
        e.player_action("a0", "check")
        assert e.seats["a0"].last_action == "Check"
        assert e.table.current_turn == 1

    def test_cannot_check_facing_a_bet(self):
        e = _make_engine(2)
        e.start_hand()
        e.player_action("a0", "raise", 10)
        before = _snapshot(e)
        with pytest.raises(CannotCheck):
            e.player_action("a1", "check")
        assert _snapshot(e) == before

    def test_big_blind_may_check_its_option(self):
        e = _make_engine(3, post_blinds=True)
        e.start_hand()
        # dealer 1, SB 2, BB 0; a1 opens
        e.player_action("a1", "call")
        e.player_action("a2", "call")
        assert _action_agent(e) == "a0"
        e.player_action("a0", "check")
        assert e.awaiting == NextStep.DEAL_COMMUNITY


# ── Call ─────────────────────────────────────────────────────────────

class TestCall:
    def test_call_matches_bet(self):
        e = _make_engine(2)
        e.start_hand()
        e.player_action("a0", "raise", 10)
        e.player_action("a1", "call")
        seat = e.seats["a1"]
        assert seat.stack == 90
        assert seat.current_bet == 10
        assert seat.last_action == "Call 10"
        assert e.table.pot == 20

    def test_call_with_short_stack_rejected(self):
        e = _make_engine(2, stacks=[100, 5])
        e.start_hand()
        e.player_action("a0", "raise", 10)
        before = _snapshot(e)
        with pytest.raises(InsufficientStack):
            e.player_action("a1", "call")
        assert _snapshot(e) == before

    def test_short_stack_not_offered_call(self):
        e = _make_engine(2, stacks=[100, 5])
        e.start_hand()
        e.player_action("a0", "raise", 10)
        names = [a["action"] for a in e.get_valid_actions("a1")]
        assert names == ["fold", "all_in"]


# ── Raise ────────────────────────────────────────────────────────────

class TestRaise:
    def test_raise_to_total(self):
        e = _make_engine(2)
        e.start_hand()
        state = e.player_action("a0", "raise", 10)
        seat = e.seats["a0"]
        assert (seat.stack, seat.current_bet) == (90, 10)
        assert state["pot"] == 10
        assert state["bet_to_match"] == 10
        assert seat.last_action == "Raise 10"

    def test_raise_must_exceed_bet_to_match(self):
        e = _make_engine(2)
        e.start_hand()
        e.player_action("a0", "raise", 10)
        with pytest.raises(RaiseTooSmall):
            e.player_action("a1", "raise", 10)

    def test_raise_beyond_stack_rejected(self):
        e = _make_engine(2)
        e.start_hand()
        with pytest.raises(InsufficientStack):
            e.player_action("a0", "raise", 101)
        assert e.seats["a0"].stack == 100
        assert e.table.pot == 0

    def test_reraise_counts_existing_bet(self):
        e = _make_engine(2)
        e.start_hand()
        e.player_action("a0", "raise", 10)
        e.player_action("a1", "raise", 30)
        e.player_action("a0", "raise", 60)
        # a0 put in 10 then 50 more
        assert e.seats["a0"].stack == 40
        assert e.seats["a0"].current_bet == 60
        assert e.table.pot == 90

    def test_raise_reopens_action(self):
        e = _make_engine(3)
        e.start_hand()
        e.player_action("a1", "check")
        e.player_action("a2", "check")
        e.player_action("a0", "raise", 10)
        assert not e.round_complete
        assert not e.seats["a1"].has_acted
        assert _action_agent(e) == "a1"

    def test_valid_raise_bounds(self):
        e = _make_engine(2)
        e.start_hand()
        e.player_action("a0", "raise", 10)
        raise_opt = [a for a in e.get_valid_actions("a1") if a["action"] == "raise"][0]
        assert raise_opt["min_amount"] == 11
        assert raise_opt["max_amount"] == 100


# ── All-in ───────────────────────────────────────────────────────────

class TestAllIn:
    def test_all_in_commits_stack(self):
        e = _make_engine(2)
        e.start_hand()
        e.player_action("a0", "all_in")
        seat = e.seats["a0"]
        assert seat.stack == 0
        assert seat.is_all_in
        assert seat.current_bet == 100
        assert seat.last_action == "All-In 100"

    def test_short_all_in_does_not_reopen(self):
        e = _make_engine(3, stacks=[100, 100, 5])
        e.start_hand()
        e.player_action("a1", "raise", 10)
        e.player_action("a2", "all_in")
        assert e.seats["a1"].has_acted
        assert e.bet_to_match == 10
        e.player_action("a0", "call")
        assert e.round_complete

    def test_all_in_raise_reopens(self):
        e = _make_engine(2, stacks=[100, 50])
        e.start_hand()
        e.player_action("a0", "raise", 10)
        e.player_action("a1", "all_in")
        assert not e.seats["a0"].has_acted
        assert _action_agent(e) == "a0"
        e.player_action("a0", "call")
        assert e.round_complete

    def test_all_in_seat_skipped_for_turns(self):
        e = _make_engine(3, stacks=[100, 100, 5])
        e.start_hand()
        e.player_action("a1", "check")
        e.player_action("a2", "all_in")
        e.player_action("a0", "call")
        e.player_action("a1", "call")
        e.deal_community([0, 1, 2])
        # a2 is all-in, action starts with a0
        assert _action_agent(e) == "a0"

    def test_everyone_all_in_runs_out_the_board(self):
        e = _make_engine(2)
        e.start_hand()
        e.player_action("a0", "all_in")
        e.player_action("a1", "call")
        assert e.awaiting == NextStep.DEAL_COMMUNITY
        e.deal_community([0, 1, 2])
        e.deal_community([3])
        e.deal_community([4])
        assert e.table.state == TableState.SHOWDOWN
        assert e.awaiting == NextStep.SETTLE_HAND


# ── Turn order & round closure ───────────────────────────────────────

class TestTurnOrder:
    def test_out_of_turn_rejected(self):
        e = _make_engine(3)
        e.start_hand()
        before = _snapshot(e)
        with pytest.raises(NotYourTurn):
            e.player_action("a2", "check")
        assert _snapshot(e) == before

    def test_unknown_agent(self):
        e = _make_engine(2)
        e.start_hand()
        with pytest.raises(SeatNotFound):
            e.player_action("ghost", "check")

    def test_unknown_action(self):
        e = _make_engine(2)
        e.start_hand()
        with pytest.raises(InvalidAction):
            e.player_action("a0", "bluff")

    def test_no_action_outside_betting(self):
        e = _make_engine(2)
        with pytest.raises(InvalidGameState):
            e.player_action("a0", "check")

    def test_turn_skips_folded_seats(self):
        e = _make_engine(4)
        e.start_hand()
        # dealer 1, SB 2, BB 3; a0 opens
        assert _action_agent(e) == "a0"
        e.player_action("a0", "check")
        e.player_action("a1", "fold")
        e.player_action("a2", "check")
        e.player_action("a3", "raise", 10)
        assert _action_agent(e) == "a0"
        e.player_action("a0", "call")
        assert _action_agent(e) == "a2"

    def test_round_closes_when_all_matched(self):
        e = _make_engine(3)
        e.start_hand()
        e.player_action("a1", "raise", 10)
        e.player_action("a2", "call")
        assert not e.round_complete
        e.player_action("a0", "call")
        assert e.round_complete
        assert e.awaiting == NextStep.DEAL_COMMUNITY

    def test_no_action_once_round_closed(self):
        e = _make_engine(2)
        e.start_hand()
        e.player_action("a0", "check")
        e.player_action("a1", "check")
        with pytest.raises(InvalidGameState):
            e.player_action("a0", "check")

    def test_round_complete_event(self):
        e = _make_engine(2)
        e.start_hand()
        e.player_action("a0", "check")
        e.player_action("a1", "check")
        last = list(e.iter_events())[-1]
        assert last["type"] == "round_complete"
        assert last["data"]["next_step"] == "deal_community"

    def test_river_close_moves_to_showdown(self):
        e = _make_engine(2)
        e.start_hand()
        for cards in ([0, 1, 2], [3], [4]):
            e.player_action(_action_agent(e), "check")
            e.player_action(_action_agent(e), "check")
            e.deal_community(cards)
        e.player_action("a0", "check")
        state = e.player_action("a1", "check")
        assert state["state"] == "showdown"
        assert list(e.iter_events())[-1]["type"] == "showdown"

    def test_no_valid_actions_off_turn(self):
        e = _make_engine(3)
        e.start_hand()
        assert e.get_valid_actions("a2") == []
        assert e.get_valid_actions("ghost") == []
