"""
Copy Trading Engine
===================
Scheduler that polls watched wallets, filters already-seen fills, sizes
the mirrored orders and submits them, reporting every step as an event.

Lifecycle is stopped -> running -> stopped. Ticks never overlap: the next
wait is armed only after the current tick's network calls complete.
"""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional, Dict, Any, List, Callable

from copymirror.api.fill_source import Fill, FillSource
from copymirror.api.order_mirror import (
    MirrorOrderRequest,
    OrderMirror,
    OrderResult,
    Side,
    load_account,
)
from copymirror.config import CopySettings, get_settings
from copymirror.engine.retry import RetryPolicy
from copymirror.engine.sizing import compute_mirror_size
from copymirror.engine.sync_state import SyncState, SyncStateStore

logger = logging.getLogger(__name__)


@dataclass
class CopyEvent:
    """Event delivered to the boundary (console, UI)."""
    kind: str  # "log" or "error"
    message: str
    time_ms: int = field(default_factory=lambda: int(time.time() * 1000))


@dataclass
class CopyTradeResult:
    """Result of mirroring one fill."""
    success: bool
    fill: Fill
    request: Optional[MirrorOrderRequest] = None
    order: Optional[OrderResult] = None
    error: Optional[str] = None
    timestamp: datetime = field(default_factory=datetime.now)


@dataclass
class CopyStats:
    """Statistics for one copy session."""
    ticks: int = 0
    skipped_ticks: int = 0
    fills_detected: int = 0
    total_copies: int = 0
    successful_copies: int = 0
    failed_copies: int = 0
    simulated_copies: int = 0
    fallback_copies: int = 0
    fetch_errors: int = 0
    total_volume: float = 0.0
    session_start: datetime = field(default_factory=datetime.now)


def _short(address: str) -> str:
    return f"{address[:6]}…"


class CopyTradingEngine:
    """
    Main copy trading engine that:
    1. Polls each watched wallet for fills since its high-water mark
    2. Drops fills already mirrored
    3. Sizes and submits a mirrored order per new fill
    4. Emits a log/error event for every step
    """

    def __init__(
        self,
        settings: Optional[CopySettings] = None,
        fill_source: Optional[FillSource] = None,
        order_mirror: Optional[OrderMirror] = None,
    ):
        self.settings = settings or get_settings()
        self.fill_source = fill_source
        self.order_mirror = order_mirror

        self.fetch_retry = RetryPolicy(self.settings.fetch_retries, self.settings.retry_backoff_ms)
        self.submit_retry = RetryPolicy(self.settings.submit_retries, self.settings.retry_backoff_ms)

        # State
        self._states = SyncStateStore(self.settings.seen_id_retention_ms)
        self._is_running = False
        self._stop_requested = False
        self._wake = asyncio.Event()
        self._tick_lock = asyncio.Lock()
        self._task: Optional[asyncio.Task] = None
        self._stats = CopyStats()
        self._event_callbacks: List[Callable] = []

    # ─── Lifecycle ──────────────────────────────────────────────────────────
    async def start(self) -> Dict[str, Any]:
        """Start the tick loop. Fails without a usable signing credential."""
        if self._is_running:
            logger.warning("Copy trading is already running")
            return {"ok": True}

        error = await self._prepare()
        if error:
            await self._close_components()
            return {"ok": False, "error": error}

        self._is_running = True
        self._stop_requested = False
        self._wake.clear()
        self._stats = CopyStats()

        mode = "DRY-RUN" if self.settings.dry_run else "LIVE"
        logger.info(f"""
        ╔══════════════════════════════════════════════════════╗
        ║        🤖 COPY MIRROR STARTED 🤖                      ║
        ╠══════════════════════════════════════════════════════╣
        ║  Wallets: {len(self.settings.target_addresses)}
        ║  Mode: {self.settings.execution_mode} / {mode}
        ║  Copy factor: {self.settings.copy_factor}x
        ║  Slippage: {self.settings.max_slippage_bps} bps
        ║  Interval: {self.settings.poll_interval_ms} ms
        ╚══════════════════════════════════════════════════════╝
        """)
        await self._emit_log(f"CopyTrader started. Watching {len(self.settings.target_addresses)} wallet(s).")

        self._task = asyncio.create_task(self._run_loop())
        return {"ok": True}

    async def stop(self) -> Dict[str, Any]:
        """
        Stop the tick loop and drain the in-flight tick.

        A tick running when stop is requested finishes its current network
        call but submits no further orders.
        """
        if not self._is_running:
            return {"ok": True}

        self._is_running = False
        self._stop_requested = True
        self._wake.set()

        task, self._task = self._task, None
        if task and task is not asyncio.current_task():
            await task

        await self._close_components()

        await self._emit_log("CopyTrader stopped")
        self._log_session_summary()
        return {"ok": True}

    async def run_once(self) -> Dict[str, Any]:
        """Prepare, run a single tick without arming the loop, and close."""
        try:
            error = await self._prepare()
            if error:
                return {"ok": False, "error": error}
            results = await self.tick()
        finally:
            await self._close_components()
        return {"ok": True, "results": results or []}

    async def _prepare(self) -> Optional[str]:
        """Resolve the signing credential and build missing components."""
        try:
            account = load_account(self.settings.private_key)
        except Exception as e:
            await self._emit_error(f"Cannot start: no usable private key ({e})")
            return str(e)

        try:
            if self.fill_source is None:
                self.fill_source = FillSource(self.settings)
            if self.order_mirror is None:
                self.order_mirror = OrderMirror(self.settings, account=account)
            await self.fill_source.initialize()
            await self.order_mirror.initialize()
        except Exception as e:
            await self._emit_error(f"Cannot start: {e}")
            return str(e)
        return None

    async def _close_components(self):
        if self.fill_source:
            await self.fill_source.close()
        if self.order_mirror:
            await self.order_mirror.close()

    async def _run_loop(self):
        interval = self.settings.poll_interval_ms / 1000
        while not self._stop_requested:
            try:
                await self.tick()
            except Exception as e:
                await self._emit_error(f"Tick failed: {e}")
            if self._stop_requested:
                break
            try:
                await asyncio.wait_for(self._wake.wait(), timeout=interval)
            except asyncio.TimeoutError:
                pass

    # ─── Tick ───────────────────────────────────────────────────────────────
    async def tick(self) -> Optional[List[CopyTradeResult]]:
        """
        Run one polling round over every watched wallet.

        Returns None when another tick is still running.
        """
        if self._tick_lock.locked():
            self._stats.skipped_ticks += 1
            await self._emit_log("Previous tick still running, skipping this one")
            return None

        async with self._tick_lock:
            self._stats.ticks += 1
            pending: List[Fill] = []
            for address in self.settings.target_addresses:
                pending.extend(await self._collect(address))

            if not pending:
                await self._emit_log("No new trades found this round")
                return []

            if not self.settings.dry_run:
                try:
                    await self.order_mirror.ensure_approvals()
                except Exception as e:
                    await self._emit_error(f"Approval check failed: {e}")

            results = []
            for index, fill in enumerate(pending):
                if self._stop_requested:
                    await self._emit_log(f"Stopped; {len(pending) - index} fill(s) not mirrored")
                    break
                results.append(await self._mirror(fill))
            return results

    async def _collect(self, address: str) -> List[Fill]:
        """Fetch and dedup one wallet; errors are reported, not raised."""
        state = self._states.get(address)
        since = state.high_water_mark_ms
        when = datetime.fromtimestamp(since / 1000).strftime("%H:%M:%S") if since else "start"
        await self._emit_log(f"Checking {_short(address)} for new trades since {when}")

        limit = self.settings.fetch_limit
        try:
            fills = await self.fetch_retry.run(
                lambda: self.fill_source.fetch_fills(address, since, limit),
                label=f"fetch {_short(address)}"
            )
        except Exception as e:
            self._stats.fetch_errors += 1
            await self._emit_error(f"[{_short(address)}] {e}")
            return []

        new_fills = state.observe(fills)
        await self._emit_log(f"Found {len(fills)} trade(s) for {_short(address)}, {len(new_fills)} new")

        if self.settings.prime_on_start and not state.primed:
            state.primed = True
            if new_fills:
                await self._emit_log(f"[{_short(address)}] Primed {len(new_fills)} existing trade(s), not mirrored")
            return []
        state.primed = True

        self._stats.fills_detected += len(new_fills)
        for fill in new_fills:
            await self._emit_log(
                f"[{_short(address)}] New {fill.side} fill {fill.id}: "
                f"{fill.size} @ {fill.price} on market {fill.market_id}"
            )
        return new_fills

    async def _mirror(self, fill: Fill) -> CopyTradeResult:
        """Size and submit one fill; errors are reported, not raised."""
        size = compute_mirror_size(fill, self.settings)
        request = MirrorOrderRequest(
            market_id=fill.market_id,
            outcome_id=fill.outcome_id,
            side=Side(fill.side),
            price=fill.price,
            size=size,
            outcome_index=fill.outcome_index,
        )
        tag = f"[{_short(fill.source_address)}]"
        self._stats.total_copies += 1

        if size <= 0:
            self._stats.failed_copies += 1
            error = "Calculated copy size is 0"
            await self._emit_error(f"{tag} Skipped {fill.side} fill {fill.id}: {error}")
            return CopyTradeResult(success=False, fill=fill, request=request, error=error)

        try:
            order = await self.submit_retry.run(
                lambda: self.order_mirror.submit(request),
                label=f"submit {fill.id}"
            )
        except Exception as e:
            self._stats.failed_copies += 1
            await self._emit_error(f"{tag} {e}")
            return CopyTradeResult(success=False, fill=fill, request=request, error=str(e))

        self._stats.successful_copies += 1
        self._stats.total_volume += size * fill.price
        if order.simulated:
            self._stats.simulated_copies += 1
            await self._emit_log(f"{tag} Simulated {fill.side} {size} @ {fill.price} -> {order.token}")
        else:
            if order.route == "fallback":
                self._stats.fallback_copies += 1
            await self._emit_log(
                f"{tag} Mirrored {fill.side} {size} @ {fill.price} on market {fill.market_id} "
                f"outcome {fill.outcome_id} via {order.route} -> {order.token}"
            )
        return CopyTradeResult(success=True, fill=fill, request=request, order=order)

    # ─── Events ─────────────────────────────────────────────────────────────
    def add_event_callback(self, callback: Callable):
        """Add a callback receiving every CopyEvent."""
        self._event_callbacks.append(callback)

    async def _emit_log(self, message: str):
        logger.info(message)
        await self._notify(CopyEvent(kind="log", message=message))

    async def _emit_error(self, message: str):
        logger.error(message)
        await self._notify(CopyEvent(kind="error", message=message))

    async def _notify(self, event: CopyEvent):
        for callback in self._event_callbacks:
            try:
                if asyncio.iscoroutinefunction(callback):
                    await callback(event)
                else:
                    callback(event)
            except Exception as e:
                logger.error(f"Event callback error: {e}")

    def _log_session_summary(self):
        duration = datetime.now() - self._stats.session_start

        logger.info(f"""
        ╔══════════════════════════════════════════════════════╗
        ║              📊 SESSION SUMMARY 📊                    ║
        ╠══════════════════════════════════════════════════════╣
        ║  Duration: {duration}
        ║  Ticks: {self._stats.ticks} (skipped {self._stats.skipped_ticks})
        ║  Fills detected: {self._stats.fills_detected}
        ║  Successful: {self._stats.successful_copies} (simulated {self._stats.simulated_copies})
        ║  Failed: {self._stats.failed_copies}
        ║  Volume: ${self._stats.total_volume:.2f}
        ╚══════════════════════════════════════════════════════╝
        """)

    # ─── Accessors ──────────────────────────────────────────────────────────
    def sync_state(self, address: str) -> SyncState:
        return self._states.get(address)

    @property
    def is_running(self) -> bool:
        return self._is_running

    @property
    def stats(self) -> CopyStats:
        return self._stats
