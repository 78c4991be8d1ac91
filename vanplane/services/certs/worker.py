from __future__ import annotations

import asyncio
from dataclasses import dataclass
import logging
from typing import Awaitable, Callable

from vanplane.core.config import Settings, get_settings
from vanplane.services.certs.pipeline import (
    PassOutcome,
    run_certificate_request_pass,
    run_network_intake_pass,
)


logger = logging.getLogger(__name__)

PassFn = Callable[[], Awaitable[PassOutcome]]


async def _wait_for_stop(stop: asyncio.Event, delay_s: float) -> bool:
    # Sleep for the reschedule delay, waking early when asked to stop.
    if stop.is_set():
        return True
    try:
        await asyncio.wait_for(stop.wait(), timeout=max(0.0, delay_s))
    except asyncio.TimeoutError:
        return False
    return True


@dataclass
class ReschedulingWorker:
    """Poll-claim-reschedule loop around one pass function.

    Each worker owns its timer and stop signal and shares nothing with other
    workers; all coordination goes through the database.
    """

    name: str
    run_pass: PassFn
    settings: Settings

    def delay_for(self, outcome: PassOutcome) -> float:
        if outcome is PassOutcome.PROCESSED:
            return self.settings.ca_drain_delay_s
        if outcome is PassOutcome.IDLE:
            return self.settings.ca_idle_delay_s
        return self.settings.ca_error_backoff_s

    async def run(self, stop: asyncio.Event) -> None:
        delay = self.settings.ca_worker_start_delay_s
        while not await _wait_for_stop(stop, delay):
            try:
                outcome = await self.run_pass()
            except Exception:  # noqa: BLE001 - passes handle their own errors; never let the loop die.
                logger.exception("%s pass raised", self.name)
                outcome = PassOutcome.FAILED
            delay = self.delay_for(outcome)
        logger.info("%s stopped", self.name)


def build_certificate_workers(settings: Settings | None = None) -> list[ReschedulingWorker]:
    active = settings or get_settings()
    return [
        ReschedulingWorker(name="network-intake", run_pass=run_network_intake_pass, settings=active),
        ReschedulingWorker(name="certificate-requests", run_pass=run_certificate_request_pass, settings=active),
    ]


def start_certificate_workers(stop: asyncio.Event) -> list[asyncio.Task[None]]:
    # One task per worker so a slow pass in one never delays the other.
    logger.info("Certificate module starting")
    return [
        asyncio.create_task(worker.run(stop), name=worker.name)
        for worker in build_certificate_workers()
    ]
