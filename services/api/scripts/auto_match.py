#!/usr/bin/env python3
"""Auto-match batch job for cron.

Behavior:
- Moves every PENDING_SYNC staging product to NEEDS_REVIEW with a master
  product suggestion, in batches (one transaction per batch).
- Optionally limited to one merchant.

Run (local / cron):
  cd services/api
  python -m scripts.auto_match

Optional env vars:
  AUTO_MATCH_MERCHANT_ID=12
  AUTO_MATCH_BATCH=500
  AUTO_MATCH_MAX_BATCHES=20
"""

import asyncio
from dataclasses import asdict
import os
import sys


# Ensure imports work when executed as a script/module
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from dotenv import load_dotenv  # noqa: E402

from app.services.staging_pipeline import auto_match_pending  # noqa: E402
from app.stores.postgres import close_db, get_session, init_db, ping_db  # noqa: E402
from app.stores.redis import close_redis, init_redis  # noqa: E402

load_dotenv()


async def _run_batches(merchant_id: int | None, batch_size: int, max_batches: int) -> dict[str, int]:
    total = {
        "batches": 0,
        "scanned": 0,
        "suggested": 0,
        "unsuggested": 0,
        "barcode_matches": 0,
        "title_matches": 0,
    }
    for _ in range(max_batches):
        async with get_session() as session:
            stats = await auto_match_pending(session, merchant_id=merchant_id, limit=batch_size)
        total["batches"] += 1
        for key, value in asdict(stats).items():
            total[key] += value

        # Fewer rows than a full batch means the queue is drained
        if stats.scanned < batch_size:
            break
    return total


async def main() -> None:
    await init_db()
    await ping_db()
    try:
        await init_redis()
    except Exception as e:
        # Title snapshot cache is optional; matching falls back to the database
        print(f"Redis unavailable, running without cache: {e}")

    try:
        raw_merchant = os.getenv("AUTO_MATCH_MERCHANT_ID", "").strip()
        merchant_id = int(raw_merchant) if raw_merchant else None
        batch_size = int(os.getenv("AUTO_MATCH_BATCH", "500"))
        max_batches = int(os.getenv("AUTO_MATCH_MAX_BATCHES", "20"))

        total = await _run_batches(merchant_id, batch_size, max_batches)
        print(f"Auto-match done merchant_id={merchant_id}: {total}")
    finally:
        await close_redis()
        await close_db()


if __name__ == "__main__":
    asyncio.run(main())
