"""Process-wide configuration.

Deployment knobs come from the environment.  Engine settings (rake
parameters, protocol wallet, seat capacity) live in a single
``EngineSettings`` instance that is initialised explicitly with
``configure()`` or lazily from the environment on first use.
"""

from __future__ import annotations

import os
from typing import Any, Optional

from pydantic import BaseModel, Field

REDIS_URL = os.getenv("REDIS_URL", "redis://localhost:6379/0")

BPS_DENOMINATOR = 10_000


class EngineSettings(BaseModel):
    protocol_wallet: Optional[str] = None
    fee_bps: int = Field(default=1, ge=0, le=BPS_DENOMINATOR)
    fee_divisor: int = Field(default=10, ge=1)  # 1 bp / 10 = 0.001%
    max_seats: int = Field(default=10, ge=2)
    event_history: int = Field(default=500, ge=0)  # events kept per table, 0 = unbounded

    def rake_for(self, pot: int) -> int:
        """Protocol fee taken from *pot*, rounded down."""
        return pot * self.fee_bps // (BPS_DENOMINATOR * self.fee_divisor)


_settings: Optional[EngineSettings] = None


def _settings_from_env() -> EngineSettings:
    return EngineSettings(protocol_wallet=os.getenv("PROTOCOL_WALLET") or None)


def get_settings() -> EngineSettings:
    global _settings
    if _settings is None:
        _settings = _settings_from_env()
    return _settings


def configure(**overrides: Any) -> EngineSettings:
    """Initialise the engine settings, starting from the environment defaults."""
    global _settings
    base = _settings_from_env().model_dump()
    base.update(overrides)
    _settings = EngineSettings(**base)
    return _settings


def reset_settings() -> None:
    global _settings
    _settings = None
