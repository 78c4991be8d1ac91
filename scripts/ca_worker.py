from __future__ import annotations

import asyncio
from datetime import datetime, timezone
import logging
import signal

from vanplane.core.logging import configure_logging
from vanplane.persistence.db import SessionLocal, engine
from vanplane.services.certs import get_certificate_issuer, start_certificate_workers


logger = logging.getLogger("vanplane.ca_worker")


async def _bootstrap_authorities() -> None:
    # Root and interior CAs must exist before any request can be signed.
    issuer = get_certificate_issuer()
    async with SessionLocal() as session:
        async with session.begin():
            await issuer.ensure_service_authorities(session, now=datetime.now(timezone.utc))


async def _main() -> None:
    configure_logging()
    await _bootstrap_authorities()
    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    for signum in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(signum, stop.set)
    tasks = start_certificate_workers(stop)
    await stop.wait()
    logger.info("Stopping certificate workers")
    await asyncio.gather(*tasks)
    await engine.dispose()


if __name__ == "__main__":
    asyncio.run(_main())
