"""Background sweep that retires available spots past their ceiling.

The sweep uses the same conditional write as reservations, so a spot that
was reserved between the scan and the write is left alone. A failing row
is logged and retried on the next tick; the loop itself never stops on a
bad record.
"""

import asyncio
import logging
from datetime import datetime
from typing import Optional

from spot_handoff.domain.enums import SpotErrorCode
from spot_handoff.domain.results import SweepReport
from spot_handoff.domain.schemas import SpotRecord
from spot_handoff.services.spot_lifecycle import SpotLifecycle

logger = logging.getLogger(__name__)


class ExpirationSweeper:
    def __init__(self, lifecycle: SpotLifecycle, interval_seconds: Optional[int] = None, batch_size: int = 500):
        self.lifecycle = lifecycle
        self.store = lifecycle.store
        self.interval_seconds = interval_seconds or lifecycle.settings.sweep_interval_seconds
        self.batch_size = batch_size

    async def find_candidates(self, now: datetime) -> list[SpotRecord]:
        return await self.store.find_expired(now, limit=self.batch_size)

    async def retire(self, spot: SpotRecord, now: datetime) -> bool:
        """Expire one candidate; False if a concurrent write got there first."""
        result = await self.lifecycle.expire(spot, now)
        if result.ok:
            logger.info("Spot %s expired (expires_at=%s)", spot.id, spot.expires_at.isoformat())
            return True
        if result.error in (SpotErrorCode.CONFLICT, SpotErrorCode.NOT_FOUND, SpotErrorCode.INVALID_TRANSITION):
            logger.info("Sweep skipped spot %s: %s", spot.id, result.message)
            return False
        logger.warning("Sweep could not expire spot %s: %s", spot.id, result.message)
        return False

    async def sweep_once(self, now: Optional[datetime] = None) -> SweepReport:
        """One pass: scan for expired available spots and retire each."""
        now = now or self.lifecycle.clock()
        report = SweepReport()

        candidates = await self.find_candidates(now)
        report.scanned = len(candidates)

        for spot in candidates:
            try:
                if await self.retire(spot, now):
                    report.expired += 1
                else:
                    report.skipped += 1
            except Exception as e:
                report.failed += 1
                logger.error("Sweep failed for spot %s: %s", spot.id, e)

        if report.scanned:
            logger.info(
                "Sweep: scanned=%d expired=%d skipped=%d failed=%d",
                report.scanned, report.expired, report.skipped, report.failed,
            )
        return report

    async def run(self) -> None:
        """Sweep every ``interval_seconds`` until cancelled."""
        logger.info("Starting expiration sweeper (interval: %ss)", self.interval_seconds)
        while True:
            try:
                await self.sweep_once()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.error("Expiration sweep error: %s", e)
            await asyncio.sleep(self.interval_seconds)
