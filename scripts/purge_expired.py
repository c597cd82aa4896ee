#!/usr/bin/env python3
"""
Remove expired OTP challenges and download tokens.

Intended to run from cron or a scheduled job:
    python scripts/purge_expired.py
"""

from __future__ import annotations

import asyncio
import logging

from permitflow.core.logging import configure_logging
from permitflow.db.session import AsyncSessionLocal, engine
from permitflow.services import otp

logger = logging.getLogger("permitflow.scripts.purge_expired")


async def main() -> None:
    configure_logging()
    async with AsyncSessionLocal() as session:
        challenges, tokens = await otp.purge_expired(session)
    await engine.dispose()
    logger.info("Purge complete challenges=%s tokens=%s", challenges, tokens)


if __name__ == "__main__":
    asyncio.run(main())
