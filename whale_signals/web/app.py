"""
FastAPI service for Whale Signals.

Exposes the signal engine as JSON:
- GET /api/signals: ranked signals for the trailing window
- GET /api/signals/trades: ranked-wallet trades behind one outcome
- GET /health: liveness

Every request loads a fresh window and runs its own pass.
"""

import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import Depends, FastAPI, HTTPException, Query

from ..api_client import PolymarketAPIError
from ..config import settings
from ..engine import DEFAULT_TRADES_LIMIT, MAX_TRADES_LIMIT, SignalConfig, SignalEngine
from ..loader import DataApiLoader, LoaderError
from ..utils import utc_now

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# App setup
# ---------------------------------------------------------------------------

_loader: Optional[DataApiLoader] = None


@asynccontextmanager
async def lifespan(app: FastAPI):
    yield
    if _loader is not None:
        await _loader.close()


app = FastAPI(title="Whale Signals", docs_url="/docs", lifespan=lifespan)


def get_loader():
    """Shared Data API loader (one HTTP client per process)."""
    global _loader
    if _loader is None:
        _loader = DataApiLoader()
    return _loader


def get_engine() -> SignalEngine:
    """Engine configured from settings."""
    return SignalEngine(SignalConfig.from_settings(settings))


async def _load_window(loader, engine: SignalEngine, now):
    try:
        return await loader.load(engine.window_start(now))
    except (PolymarketAPIError, LoaderError) as e:
        logger.error(f"Trade window load failed: {e}")
        raise HTTPException(status_code=502, detail="Failed to load trade window")


# ---------------------------------------------------------------------------
# API routes
# ---------------------------------------------------------------------------


@app.get("/health")
async def health():
    return {"status": "ok"}


@app.get("/api/signals")
async def signals(
    limit: Optional[int] = Query(default=None, ge=1),
    loader=Depends(get_loader),
    engine: SignalEngine = Depends(get_engine),
):
    """Ranked signals for the trailing window, best percentile first."""
    now = utc_now()
    window = await _load_window(loader, engine, now)
    report = engine.run(window.trades, window.snapshots, now=now, limit=limit)
    return report.model_dump(mode="json")


@app.get("/api/signals/trades")
async def signal_trades(
    condition_id: Optional[str] = Query(default=None, alias="conditionId"),
    outcome: Optional[str] = None,
    limit: int = DEFAULT_TRADES_LIMIT,
    loader=Depends(get_loader),
    engine: SignalEngine = Depends(get_engine),
):
    """Ranked-wallet trades for one outcome, newest first."""
    if not condition_id and not outcome:
        raise HTTPException(status_code=400, detail="conditionId or outcome is required")

    now = utc_now()
    window = await _load_window(loader, engine, now)
    trades = engine.outcome_trades(
        window.trades,
        window.snapshots,
        condition_id=condition_id,
        outcome=outcome,
        limit=min(max(limit, 1), MAX_TRADES_LIMIT),
        now=now,
    )
    return {
        "conditionId": condition_id,
        "outcome": outcome,
        "since": engine.window_start(now).isoformat(),
        "periods": [s.period for s in window.snapshots],
        "trades": [t.model_dump(mode="json") for t in trades],
    }
