"""Background sweep that refreshes tokens before inbound traffic needs them."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import List, Optional

from tokenrelay.clients.sqlite_store import SQLiteTokenStore
from tokenrelay.core.errors import RelayError
from tokenrelay.core.providers import ProviderRegistry
from tokenrelay.services.token_lifecycle import TokenLifecycleService

logger = logging.getLogger(__name__)

REFRESH_INTERVAL_SECONDS = 300.0
REFRESH_THRESHOLD_SECONDS = 600


@dataclass
class RefreshCycleReport:
    refreshed: List[str] = field(default_factory=list)
    failed: List[str] = field(default_factory=list)
    skipped: List[str] = field(default_factory=list)


class RefreshScheduler:
    """
    Periodically refresh every token that expires within the threshold.

    The first cycle runs as soon as :meth:`start` is called. Cycles never
    overlap: a cycle requested while another is in flight returns ``None``
    without touching the store.
    """

    def __init__(
        self,
        store: SQLiteTokenStore,
        registry: ProviderRegistry,
        lifecycle: TokenLifecycleService,
        *,
        interval_seconds: float = REFRESH_INTERVAL_SECONDS,
        threshold_seconds: int = REFRESH_THRESHOLD_SECONDS,
    ) -> None:
        self._store = store
        self._registry = registry
        self._lifecycle = lifecycle
        self._interval = interval_seconds
        self._threshold = threshold_seconds
        self._cycle_lock = asyncio.Lock()
        self._task: Optional[asyncio.Task[None]] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.create_task(self._run_forever(), name="token-refresh")
        logger.info(
            "Background refresh loop started",
            extra={"interval_seconds": self._interval},
        )

    async def stop(self) -> None:
        task, self._task = self._task, None
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        logger.info("Background refresh loop stopped")

    async def _run_forever(self) -> None:
        while True:
            try:
                await self.run_cycle()
            except Exception:
                logger.exception("Refresh cycle aborted")
            await asyncio.sleep(self._interval)

    async def run_cycle(self) -> Optional[RefreshCycleReport]:
        if self._cycle_lock.locked():
            logger.info("Refresh cycle already in progress; skipping tick")
            return None
        async with self._cycle_lock:
            return await self._sweep()

    async def _sweep(self) -> RefreshCycleReport:
        report = RefreshCycleReport()
        removed = await self._store.clean_oauth_states()
        if removed:
            logger.debug("Removed %d expired OAuth states", removed)

        tokens, unreadable = await self._store.get_refresh_candidates(self._threshold)
        report.failed.extend(unreadable)
        if not tokens:
            return report

        logger.info("Checking %d connection(s) for refresh", len(tokens))
        for token in tokens:
            label = f"{token.provider}/{token.account}"
            provider = self._registry.get(token.provider)
            if provider is None:
                logger.warning('Unknown provider "%s"; skipping %s', token.provider, label)
                report.skipped.append(label)
                continue
            try:
                await self._lifecycle.refresh(token, provider)
            except RelayError as exc:
                logger.error("Failed to refresh %s: %s", label, exc.message)
                report.failed.append(label)
                continue
            except Exception:
                logger.exception("Unexpected error refreshing %s", label)
                report.failed.append(label)
                continue
            report.refreshed.append(label)
        return report


__all__ = [
    "REFRESH_INTERVAL_SECONDS",
    "REFRESH_THRESHOLD_SECONDS",
    "RefreshCycleReport",
    "RefreshScheduler",
]
