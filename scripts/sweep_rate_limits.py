import asyncio
import os
import sys

# Ensure src is in pythonpath
sys.path.append(os.path.join(os.path.dirname(__file__), "..", "src"))

from dotenv import load_dotenv
load_dotenv()

from taqwa_gate.config import settings
from taqwa_gate.db.kv_store import SqlKeyValueStore
from taqwa_gate.db.rate_limiter import RateLimiter
from taqwa_gate.db.session import async_engine


async def main():
    limiter = RateLimiter(SqlKeyValueStore())
    batch_size = settings.rate_limit_sweep_batch_size

    print(f"Sweeping rate windows untouched for {2 * limiter.window_ms // 1000}s...")
    total = 0
    try:
        # Repeat until a batch comes back short
        while True:
            deleted = await limiter.sweep(batch_size)
            total += deleted
            if deleted < batch_size:
                break
    finally:
        await async_engine.dispose()

    print(f"Done. Deleted {total} record(s).")


if __name__ == "__main__":
    asyncio.run(main())
