"""
Fill Source
===========
Reads watched wallets' fills from the data API and normalizes the
different payload shapes into one Fill record.

The upstream route is not contractually fixed, so requests are described
by named adapters. The configured adapter is tried first, then the
default chain, and the first adapter whose response is accepted wins.
"""

import asyncio
import logging
import math
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional, Dict, Any, List, Sequence

import aiohttp

from copymirror import __version__
from copymirror.config import CopySettings, get_settings

logger = logging.getLogger(__name__)

REQUEST_HEADERS = {
    "User-Agent": f"copymirror/{__version__}",
    "Accept": "application/json,text/plain,*/*",
}


# ─── Errors ─────────────────────────────────────────────────────────────────────
class FetchError(Exception):
    """A fill fetch failed."""


class UnauthorizedError(FetchError):
    """The data source answered 401."""


class NotFoundError(FetchError):
    """The data source answered 404."""


# ─── Data Classes ───────────────────────────────────────────────────────────────
@dataclass(frozen=True)
class Fill:
    """A single executed trade by a watched wallet."""
    id: str
    market_id: str
    outcome_id: str
    side: str  # "buy" or "sell"
    price: float
    size: float
    timestamp_ms: int
    source_address: str
    transaction_hash: Optional[str] = None
    outcome_index: Optional[int] = None


@dataclass(frozen=True)
class FillAdapter:
    """One known request/response shape of the fills endpoint."""
    name: str
    path: str  # may contain {address}
    address_param: Optional[str]  # None when the address is in the path
    records_key: Optional[str]  # key holding the list, None for a bare list

    def url(self, base_url: str, address: str) -> str:
        return base_url + self.path.format(address=address)

    def params(self, address: str, since_ms: Optional[int], limit: int) -> Dict[str, Any]:
        params: Dict[str, Any] = {"limit": limit}
        if self.address_param:
            params[self.address_param] = address
        if since_ms:
            params["since"] = int(since_ms // 1000)
        return params

    def extract(self, data: Any) -> List[Dict[str, Any]]:
        records = data
        if self.records_key and isinstance(data, dict) and data.get(self.records_key) is not None:
            records = data[self.records_key]
        if records is None:
            return []
        if not isinstance(records, list):
            raise FetchError(f"Unexpected response shape from adapter '{self.name}'")
        return records


ADAPTERS: Dict[str, FillAdapter] = {
    a.name: a for a in (
        FillAdapter("data-api", "/trades", "user", None),
        FillAdapter("fills", "/fills", "address", "fills"),
        FillAdapter("trades", "/trades", "address", "trades"),
        FillAdapter("v1-trades", "/v1/trades", "address", "trades"),
        FillAdapter("v1-fills", "/v1/fills", "address", "fills"),
        FillAdapter("fills-wallet", "/fills", "walletAddress", "fills"),
        FillAdapter("v1-trades-wallet", "/v1/trades", "walletAddress", "trades"),
        FillAdapter("fills-by-address", "/fills/address/{address}", None, "fills"),
        FillAdapter("trades-by-wallet", "/trades/wallet/{address}", None, "trades"),
    )
}

# Probe order used after the configured adapter
DEFAULT_CHAIN = (
    "fills",
    "trades",
    "v1-trades",
    "v1-fills",
    "fills-wallet",
    "v1-trades-wallet",
    "fills-by-address",
    "trades-by-wallet",
)


def candidate_adapters(preferred: Optional[str] = None) -> List[FillAdapter]:
    """Configured adapter first, then the default chain without repeats."""
    names = list(DEFAULT_CHAIN)
    if preferred:
        if preferred not in ADAPTERS:
            raise ValueError(f"Unknown fill adapter '{preferred}'. Known: {', '.join(sorted(ADAPTERS))}")
        names = [preferred] + [n for n in names if n != preferred]
    return [ADAPTERS[n] for n in names]


# ─── Normalization ──────────────────────────────────────────────────────────────
def _first(raw: Dict[str, Any], *keys: str) -> Any:
    for key in keys:
        value = raw.get(key)
        if value is not None:
            return value
    return None


def _text(value: Any) -> str:
    return "" if value is None else str(value)


def _number(value: Any) -> float:
    try:
        return float(value) if value is not None else 0.0
    except (TypeError, ValueError):
        return 0.0


def _timestamp_ms(value: Any) -> int:
    """Venue timestamps are seconds; anything unparsable means now."""
    now_ms = int(time.time() * 1000)
    if value is None or isinstance(value, bool):
        return now_ms
    try:
        seconds = float(value)
    except (TypeError, ValueError):
        try:
            ts = datetime.fromisoformat(str(value).replace('Z', '+00:00'))
            if ts.tzinfo is None:
                ts = ts.replace(tzinfo=timezone.utc)
            return int(ts.timestamp() * 1000)
        except ValueError:
            return now_ms
    if not math.isfinite(seconds) or seconds <= 0:
        return now_ms
    return int(seconds * 1000)


def normalize_fill(raw: Dict[str, Any], address: str) -> Fill:
    """Build a Fill from any known wire shape."""
    side_raw = str(_first(raw, "side", "action") or "").upper()
    side = "sell" if side_raw == "SELL" else "buy"

    tx_hash = _first(raw, "transactionHash", "txHash", "transaction_hash")
    fill_id = _first(raw, "id", "fillId", "tradeId")
    if fill_id is None:
        # Composite key keeps dedup stable for payloads without an id
        fill_id = f"{tx_hash or ''}-{_first(raw, 'asset', 'marketId') or ''}"

    outcome_index = _first(raw, "outcomeIndex", "outcome_index")
    try:
        outcome_index = int(outcome_index) if outcome_index is not None else None
    except (TypeError, ValueError):
        outcome_index = None

    return Fill(
        id=str(fill_id),
        market_id=_text(_first(raw, "marketId", "conditionId", "market")),
        outcome_id=_text(_first(raw, "asset", "outcomeId", "outcome_id", "outcomeIndex")),
        side=side,
        price=_number(_first(raw, "price", "fill_price", "execution_price")),
        size=_number(_first(raw, "size", "fill_amount", "amount", "execution_size")),
        timestamp_ms=_timestamp_ms(_first(raw, "timestamp", "time", "block_time")),
        source_address=address,
        transaction_hash=tx_hash,
        outcome_index=outcome_index,
    )


# ─── Fill Source ────────────────────────────────────────────────────────────────
class FillSource:
    """Stateless reader of a wallet's fills since a timestamp cursor."""

    def __init__(
        self,
        settings: Optional[CopySettings] = None,
        adapters: Optional[Sequence[FillAdapter]] = None,
        session: Optional[aiohttp.ClientSession] = None,
    ):
        self.settings = settings or get_settings()
        self.base_url = self.settings.data_api_url.rstrip("/")
        self.adapters = list(adapters) if adapters else candidate_adapters(self.settings.fill_api_version)
        self._session = session
        self._owns_session = session is None

    async def initialize(self):
        """Initialize the persistent aiohttp session."""
        if not self._session:
            timeout = aiohttp.ClientTimeout(total=self.settings.request_timeout_s)
            self._session = aiohttp.ClientSession(timeout=timeout)
            self._owns_session = True
            logger.info("✅ Fill source session initialized")

    async def close(self):
        """Close the aiohttp session."""
        if self._session and self._owns_session:
            await self._session.close()
            logger.info("🛑 Fill source session closed")
        self._session = None

    @property
    def session(self) -> aiohttp.ClientSession:
        if not self._session:
            timeout = aiohttp.ClientTimeout(total=self.settings.request_timeout_s)
            self._session = aiohttp.ClientSession(timeout=timeout)
            self._owns_session = True
        return self._session

    async def fetch_fills(
        self,
        address: str,
        since_ms: Optional[int] = None,
        limit: Optional[int] = None
    ) -> List[Fill]:
        """
        Fetch fills for a wallet made at or after since_ms.

        Args:
            address: Watched wallet address.
            since_ms: Lower bound in milliseconds (falsy = no bound).
            limit: Page size (defaults to settings.fetch_limit).

        Returns:
            Fills in the order the upstream API returned them.

        Raises:
            FetchError: when every candidate adapter failed. 401 and 404
                surface as UnauthorizedError and NotFoundError.
        """
        limit = limit or self.settings.fetch_limit
        last_error: Optional[Exception] = None

        for adapter in self.adapters:
            try:
                records = await self._request(adapter, address, since_ms, limit)
            except FetchError as e:
                logger.debug(f"Adapter '{adapter.name}' rejected for {address[:8]}...: {e}")
                last_error = e
                continue

            fills = [normalize_fill(r, address) for r in records if isinstance(r, dict)]
            logger.debug(f"📥 {len(fills)} fill(s) for {address[:8]}... via '{adapter.name}'")
            return fills

        raise last_error or FetchError("Unable to fetch fills: no adapters configured")

    async def _request(
        self,
        adapter: FillAdapter,
        address: str,
        since_ms: Optional[int],
        limit: int
    ) -> List[Dict[str, Any]]:
        url = adapter.url(self.base_url, address)
        params = adapter.params(address, since_ms, limit)
        try:
            async with self.session.get(url, params=params, headers=REQUEST_HEADERS) as response:
                if response.status == 401:
                    raise UnauthorizedError("Unauthorized (401) from data source")
                if response.status == 404:
                    raise NotFoundError(f"Not found (404): {url}")
                data = await response.json(content_type=None)
        except (aiohttp.ClientError, asyncio.TimeoutError, ValueError) as e:
            raise FetchError(f"Request to {url} failed: {e}") from e
        return adapter.extract(data)
