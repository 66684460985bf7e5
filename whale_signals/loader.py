"""
Trade window loaders for Whale Signals.

A loader supplies the two inputs of a pass: the trades inside the trailing
window and the leaderboard snapshots that define ranked wallets.

- JsonFileLoader reads JSON exported by the trade store.
- DataApiLoader pulls recent trades and leaderboard pages from the public
  Polymarket Data API. Leaderboard periods are fetched concurrently and merged
  in configured period order.

Loaders never store anything; a failed load raises and the pass is skipped.
"""

import asyncio
import json
import logging
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any, Iterable, Optional

from pydantic import ValidationError

from .api_client import PolymarketClient, create_client
from .config import settings
from .models import LeaderboardSnapshot, RankedWallet, Trade
from .utils import parse_timestamp, safe_float, utc_now

logger = logging.getLogger(__name__)


class LoaderError(Exception):
    """Raised when loader input cannot be read or understood."""


@dataclass
class TradeWindow:
    """Inputs for one pass."""

    trades: list[Trade] = field(default_factory=list)
    snapshots: list[LeaderboardSnapshot] = field(default_factory=list)


def parse_trades(records: Iterable[dict]) -> list[Trade]:
    """
    Validate raw trade records, skipping the ones that cannot be parsed.

    Args:
        records: Raw trade dicts (camelCase or snake_case keys).

    Returns:
        Parsed trades.
    """
    trades = []
    skipped = 0
    for record in records:
        try:
            trades.append(Trade.model_validate(record))
        except ValidationError as e:
            skipped += 1
            logger.debug(f"Skipping malformed trade record: {e}")
    if skipped:
        logger.warning(f"Skipped {skipped} malformed trade records")
    return trades


def parse_wallets(rows: Iterable[dict]) -> list[RankedWallet]:
    """Validate leaderboard rows, skipping rows without an address or rank."""
    wallets = []
    for row in rows:
        try:
            wallets.append(RankedWallet.model_validate(row))
        except ValidationError as e:
            logger.debug(f"Skipping malformed leaderboard row: {e}")
    return wallets


def parse_snapshots(payload: Any) -> list[LeaderboardSnapshot]:
    """
    Parse snapshots from any of the accepted JSON shapes.

    Accepted:
    - {"snapshots": [snapshot, ...]}
    - [snapshot, ...] where each snapshot has a "wallets" list
    - [wallet, ...], treated as a single "Daily" snapshot

    Raises:
        LoaderError: If the payload matches none of the shapes.
    """
    if isinstance(payload, dict):
        payload = payload.get("snapshots", payload.get("wallets"))
    if not isinstance(payload, list):
        raise LoaderError("Snapshots must be a list or an object with 'snapshots'")

    if payload and all(isinstance(item, dict) and "wallets" in item for item in payload):
        return [
            LeaderboardSnapshot(
                period=item.get("period", "Daily"),
                snapshot_at=item.get("snapshotAt", item.get("snapshot_at")),
                wallets=parse_wallets(item.get("wallets") or []),
            )
            for item in payload
        ]
    return [LeaderboardSnapshot(period="Daily", wallets=parse_wallets(payload))]


def _read_json(path: Path) -> Any:
    try:
        with open(path, "r", encoding="utf-8") as f:
            return json.load(f)
    except (OSError, json.JSONDecodeError) as e:
        raise LoaderError(f"Cannot read {path}: {e}") from e


class JsonFileLoader:
    """Loads a trade window from JSON files on disk."""

    def __init__(self, trades_path, snapshots_path=None):
        """
        Initialize the loader.

        Args:
            trades_path: JSON file with a list of trades (or {"trades": [...]}).
            snapshots_path: JSON file with leaderboard snapshots. Optional.
        """
        self.trades_path = Path(trades_path)
        self.snapshots_path = Path(snapshots_path) if snapshots_path else None

    def load_sync(self) -> TradeWindow:
        """Read and parse both files."""
        raw = _read_json(self.trades_path)
        if isinstance(raw, dict):
            raw = raw.get("trades", [])
        if not isinstance(raw, list):
            raise LoaderError(f"{self.trades_path}: expected a list of trades")
        trades = parse_trades(raw)

        snapshots = []
        if self.snapshots_path is not None:
            snapshots = parse_snapshots(_read_json(self.snapshots_path))

        logger.info(
            f"Loaded {len(trades)} trades and {len(snapshots)} snapshots from disk"
        )
        return TradeWindow(trades=trades, snapshots=snapshots)

    async def load(self, since: Optional[datetime] = None) -> TradeWindow:
        """Async wrapper; window filtering is left to the engine."""
        return self.load_sync()

    async def close(self) -> None:
        """Nothing to release."""


def trade_from_api(record: dict) -> dict:
    """Map a Data API trade record onto Trade field names."""
    size = safe_float(record.get("size"))
    price = safe_float(record.get("price"))
    return {
        "id": record.get("transactionHash"),
        "timestamp": record.get("timestamp"),
        "conditionId": record.get("conditionId"),
        "eventTitle": record.get("title"),
        "eventSlug": record.get("eventSlug") or record.get("slug"),
        "outcome": record.get("outcome"),
        "question": record.get("title"),
        "side": record.get("side"),
        "price": price,
        "tradeValue": size * price,
        "walletAddress": record.get("proxyWallet"),
    }


def wallet_from_api(row: dict, fallback_rank: int) -> dict:
    """Map a Data API leaderboard row onto RankedWallet field names."""
    try:
        rank = int(row.get("rank"))
    except (TypeError, ValueError):
        rank = fallback_rank
    return {
        "walletAddress": row.get("proxyWallet"),
        "rank": rank,
        "accountName": row.get("userName") or None,
        "totalPnl": row.get("pnl"),
    }


class DataApiLoader:
    """Loads a trade window from the Polymarket Data API."""

    def __init__(
        self,
        client: Optional[PolymarketClient] = None,
        periods: Optional[list[str]] = None,
        leaderboard_limit: Optional[int] = None,
        page_size: Optional[int] = None,
        max_trades: Optional[int] = None,
    ):
        """
        Initialize the loader.

        Args:
            client: API client (created if not provided).
            periods: Leaderboard periods in priority order.
            leaderboard_limit: Rows fetched per period.
            page_size: Trades fetched per request.
            max_trades: Stop paging after this many trades.
        """
        self.client = client or create_client()
        self.periods = periods or list(settings.leaderboard_periods)
        self.leaderboard_limit = leaderboard_limit or settings.leaderboard_limit
        self.page_size = page_size or settings.trades_page_size
        self.max_trades = max_trades or settings.max_trades

    async def fetch_trades(self, since: datetime) -> list[Trade]:
        """
        Page through recent trades until the window start is passed.

        Args:
            since: Oldest timestamp of interest.

        Returns:
            Parsed trades, newest first; may include a few older ones from the last page.
        """
        records: list[dict] = []
        offset = 0

        while len(records) < self.max_trades:
            page = await self.client.get_trades(limit=self.page_size, offset=offset)
            if not page:
                break
            records.extend(trade_from_api(r) for r in page)

            oldest = parse_timestamp(page[-1].get("timestamp"))
            if len(page) < self.page_size or (oldest is not None and oldest < since):
                break
            offset += self.page_size

        trades = parse_trades(records[: self.max_trades])
        logger.info(f"Fetched {len(trades)} trades since {since.isoformat()}")
        return trades

    async def fetch_snapshot(self, period: str) -> LeaderboardSnapshot:
        """Fetch one leaderboard period as a snapshot."""
        rows = await self.client.get_leaderboard(period=period, limit=self.leaderboard_limit)
        wallets = parse_wallets(
            wallet_from_api(row, fallback_rank=i + 1) for i, row in enumerate(rows)
        )
        return LeaderboardSnapshot(period=period, snapshot_at=utc_now(), wallets=wallets)

    async def fetch_snapshots(self) -> list[LeaderboardSnapshot]:
        """Fetch every period concurrently; results keep period order."""
        snapshots = await asyncio.gather(*(self.fetch_snapshot(p) for p in self.periods))
        logger.info(
            "Fetched leaderboard periods: "
            + ", ".join(f"{s.period}={len(s.wallets)}" for s in snapshots)
        )
        return list(snapshots)

    async def load(self, since: datetime) -> TradeWindow:
        """Fetch trades and snapshots; both complete before returning."""
        trades, snapshots = await asyncio.gather(
            self.fetch_trades(since),
            self.fetch_snapshots(),
        )
        return TradeWindow(trades=trades, snapshots=snapshots)

    async def close(self) -> None:
        """Close the underlying HTTP client."""
        await self.client.close()
