"""Expire pending reservations whose payment window has closed.

    shakara-sweep                 # one pass
    shakara-sweep --loop 60       # every 60 seconds until interrupted
"""

import argparse
import asyncio

from loguru import logger

from .config import Settings
from .infra.log import setup_logging
from .infra.sql import make_async_engine
from .model.store import CheckoutStore, create_schema


async def sweep_once(store: CheckoutStore) -> int:
    n = await store.expire_stale()
    if n:
        logger.info("expired {} stale reservation(s)", n)
    return n


async def run(database_url: str, loop_seconds: float = 0.0) -> int:
    engine, SessionAsync, gated = make_async_engine(database_url)
    try:
        async with engine.begin() as conn:
            await create_schema(conn)
        store = CheckoutStore(sessions=SessionAsync, gated=gated)
        total = await sweep_once(store)
        while loop_seconds > 0:
            await asyncio.sleep(loop_seconds)
            total += await sweep_once(store)
        return total
    finally:
        await engine.dispose()


def main(argv=None) -> None:
    settings = Settings.from_env()
    ap = argparse.ArgumentParser(description=__doc__.splitlines()[0])
    ap.add_argument("--database-url", default=settings.database_url)
    ap.add_argument("--loop", type=float, default=0.0,
                    help="repeat every N seconds (0 = single pass)")
    args = ap.parse_args(argv)

    setup_logging(settings.log_level)
    try:
        total = asyncio.run(run(args.database_url, args.loop))
    except KeyboardInterrupt:
        return
    print(f"expired: {total}")


if __name__ == "__main__":
    main()
