"""Create the checkout tables and seed discount codes.

    DATABASE_URL=sqlite:///./shakara.db python init_store.py discounts.json

The JSON file holds a list of discount rules, e.g.

    [{"code": "EARLYBIRD", "label": "Early Bird", "type": "flat",
      "amount": 20000, "min_cart_total": 50000, "max_uses": 100}]

`valid_from` / `valid_to` may be ISO-8601 strings.
"""
import asyncio
import json
import sys
from datetime import datetime

from shakara.config import Settings
from shakara.infra.sql import make_async_engine
from shakara.model.store import CheckoutStore, create_schema


def _ts(value):
    if value is None or isinstance(value, (int, float)):
        return value
    return datetime.fromisoformat(value.replace("Z", "+00:00")).timestamp()


def load_rules(path):
    with open(path) as f:
        rows = json.load(f)
    for row in rows:
        row["valid_from"] = _ts(row.get("valid_from"))
        row["valid_to"] = _ts(row.get("valid_to"))
    return rows


async def main(path=None):
    settings = Settings.from_env()
    engine, SessionAsync, gated = make_async_engine(settings.database_url)
    async with engine.begin() as conn:
        await create_schema(conn)
    print('✅ tables created')

    if path:
        store = CheckoutStore(sessions=SessionAsync, gated=gated)
        n = await store.upsert_discounts(load_rules(path))
        print(f'✅ {n} discount code(s) seeded')
    await engine.dispose()


if __name__ == "__main__":
    asyncio.run(main(sys.argv[1] if len(sys.argv) > 1 else None))
