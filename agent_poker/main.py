"""FastAPI application: REST endpoints over the table manager."""

import hmac
import logging
import os
from contextlib import asynccontextmanager

from fastapi import Depends, FastAPI, Header, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi import Limiter
from slowapi.errors import RateLimitExceeded
from slowapi.util import get_remote_address

from agent_poker import table_manager, table_store
from agent_poker.errors import PokerError
from agent_poker.models import (
    BalanceResponse,
    CreateTableRequest,
    CreditAccountRequest,
    DealCommunityRequest,
    EventsResponse,
    HealthResponse,
    HoleCardsRequest,
    JoinTableRequest,
    LeaveTableRequest,
    LeaveTableResponse,
    PlayerActionRequest,
    SettleHandRequest,
    TableSummary,
    WithdrawRakeRequest,
    WithdrawRakeResponse,
)

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    yield
    await table_store.close()


app = FastAPI(title="Agent Poker Table API", lifespan=lifespan)

# ---------- Rate Limiting ----------

_rate_limit_enabled = os.getenv("RATE_LIMIT_ENABLED", "1") != "0"

limiter = Limiter(
    key_func=get_remote_address,
    enabled=_rate_limit_enabled,
)
app.state.limiter = limiter


@app.exception_handler(RateLimitExceeded)
async def _rate_limit_handler(request: Request, exc: RateLimitExceeded):
    return JSONResponse(
        status_code=429,
        content={"detail": "Rate limit exceeded. Please slow down."},
    )


@app.exception_handler(PokerError)
async def _poker_error_handler(request: Request, exc: PokerError):
    if exc.status_code >= 500:
        logger.warning("%s on %s: %s", exc.code, request.url.path, exc.message)
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.message, "code": exc.code},
    )


app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # tighten in production
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# ---------- Dealer Auth ----------

DEALER_TOKEN = os.getenv("DEALER_TOKEN", "")


async def verify_dealer(authorization: str | None = Header(None)):
    """Validate the dealer oracle's bearer token."""
    if not DEALER_TOKEN:
        raise HTTPException(
            status_code=503,
            detail="Dealer not configured. Set DEALER_TOKEN env var.",
        )
    expected = f"Bearer {DEALER_TOKEN}"
    if not authorization or not hmac.compare_digest(authorization, expected):
        raise HTTPException(status_code=401, detail="Invalid dealer token")


# ---------- Admin Auth ----------

ADMIN_PASSWORD = os.getenv("ADMIN_PASSWORD", "")


async def verify_admin(authorization: str | None = Header(None)):
    """Validate admin bearer token against ADMIN_PASSWORD env var."""
    if not ADMIN_PASSWORD:
        raise HTTPException(
            status_code=503,
            detail="Admin not configured. Set ADMIN_PASSWORD env var.",
        )
    expected = f"Bearer {ADMIN_PASSWORD}"
    if not authorization or not hmac.compare_digest(authorization, expected):
        raise HTTPException(status_code=401, detail="Invalid admin password")


# ---------- Tables ----------


@app.get("/api/health", response_model=HealthResponse)
async def health():
    count = await table_manager.count_tables()
    return HealthResponse(status="ok" if count is not None else "degraded", tables=count)


@app.get("/api/tables", response_model=list[TableSummary])
@limiter.limit("30/minute")
async def list_tables(request: Request):
    return await table_manager.list_tables()


@app.post("/api/tables")
@limiter.limit("5/minute")
async def create_table(request: Request, req: CreateTableRequest):
    return await table_manager.create_table(req)


@app.get("/api/tables/{table_id}")
@limiter.limit("60/minute")
async def get_table(request: Request, table_id: int):
    return await table_manager.get_table_state(table_id)


@app.get("/api/tables/{table_id}/seats/{agent}")
@limiter.limit("60/minute")
async def get_seat(
    request: Request, table_id: int, agent: str, x_seat_pin: str = Header(...)
):
    """Seat view for one agent, including its hole cards and legal actions."""
    return await table_manager.get_seat_view(table_id, agent, x_seat_pin)


@app.get("/api/tables/{table_id}/events", response_model=EventsResponse)
@limiter.limit("60/minute")
async def get_events(request: Request, table_id: int, after: int = 0):
    events = await table_manager.get_events(table_id, after)
    return EventsResponse(table_id=table_id, events=events)


# ---------- Seats ----------


@app.post("/api/tables/{table_id}/join")
@limiter.limit("10/minute")
async def join_table(request: Request, table_id: int, req: JoinTableRequest):
    return await table_manager.join_table(table_id, req)


@app.post("/api/tables/{table_id}/leave", response_model=LeaveTableResponse)
@limiter.limit("10/minute")
async def leave_table(request: Request, table_id: int, req: LeaveTableRequest):
    refund = await table_manager.leave_table(table_id, req.agent, req.pin)
    return LeaveTableResponse(agent=req.agent, refund=refund)


@app.post("/api/tables/{table_id}/action")
@limiter.limit("60/minute")
async def player_action(request: Request, table_id: int, req: PlayerActionRequest):
    """Process an agent's betting action (fold, check, call, raise, all_in)."""
    return await table_manager.player_action(
        table_id, req.agent, req.pin, req.action.value, req.amount
    )


# ---------- Dealer ----------


@app.post("/api/tables/{table_id}/start")
@limiter.limit("30/minute")
async def start_hand(request: Request, table_id: int, _=Depends(verify_dealer)):
    return await table_manager.start_hand(table_id)


@app.post("/api/tables/{table_id}/hole_cards")
@limiter.limit("60/minute")
async def deal_hole_cards(
    request: Request, table_id: int, req: HoleCardsRequest, _=Depends(verify_dealer)
):
    return await table_manager.deal_hole_cards(table_id, req.agent, req.cards)


@app.post("/api/tables/{table_id}/community")
@limiter.limit("30/minute")
async def deal_community(
    request: Request, table_id: int, req: DealCommunityRequest, _=Depends(verify_dealer)
):
    return await table_manager.deal_community(table_id, req.cards)


@app.post("/api/tables/{table_id}/settle")
@limiter.limit("30/minute")
async def settle_hand(
    request: Request, table_id: int, req: SettleHandRequest, _=Depends(verify_dealer)
):
    return await table_manager.settle_hand(table_id, req.winner, req.winner_position)


# ---------- Admin ----------


@app.post("/api/tables/{table_id}/withdraw_rake", response_model=WithdrawRakeResponse)
@limiter.limit("10/minute")
async def withdraw_rake(request: Request, table_id: int, req: WithdrawRakeRequest):
    amount = await table_manager.withdraw_rake(table_id, req.admin, req.pin)
    return WithdrawRakeResponse(amount=amount)


# ---------- Accounts ----------


@app.post("/api/admin/accounts/{account}/credit", response_model=BalanceResponse)
@limiter.limit("10/minute")
async def credit_account(
    request: Request, account: str, req: CreditAccountRequest, _=Depends(verify_admin)
):
    """Fund a human's account from outside the tables."""
    balance = await table_manager.credit_account(account, req.amount, req.pin)
    return BalanceResponse(account=account, balance=balance)


@app.get("/api/accounts/{account}", response_model=BalanceResponse)
@limiter.limit("60/minute")
async def get_balance(request: Request, account: str):
    balance = await table_manager.get_balance(account)
    return BalanceResponse(account=account, balance=balance)
