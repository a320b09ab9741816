"""
keyvalue_stores — Hello World

One contract, many backends. Every write hands back an etag; pass it
on the next write and the store refuses to clobber someone else's change.
"""

import asyncio
import tempfile
from datetime import timedelta

from pydantic import BaseModel

from keyvalue_stores import (
    ConcurrencyError,
    DuplicateKeyError,
    KeyValueStoreSettings,
    Record,
    StoreFactory,
)
from keyvalue_stores.logging_config import setup_logging

# ─── Your record type (any pydantic model, dataclass or JSON value) ───


class Country(BaseModel):
    name: str
    capital: str
    population_millions: float = 0.0


async def tour(storage_type: str, root: str) -> None:
    print(f"\n=== {storage_type} ===\n")

    factory = StoreFactory(
        KeyValueStoreSettings(
            storage_type=storage_type,
            storage_root_path=root,
            sqlite_path=f"{root}/countries.db",
        )
    )
    countries = factory.create(Country, database="atlas", container="europe")

    # ──────────────────────────────────────
    #  1. Create
    # ──────────────────────────────────────
    etag = await countries.add("FR", Record(Country(name="France", capital="Paris")))
    print(f"  added FR          etag={etag}")

    try:
        await countries.add("FR", Record(Country(name="France", capital="Lyon")))
    except DuplicateKeyError as e:
        print(f"  second add        {e}")

    # ──────────────────────────────────────
    #  2. Update with the current etag
    # ──────────────────────────────────────
    current = await countries.get("FR")
    updated = current.value.model_copy(update={"population_millions": 68.4})
    new_etag = await countries.set("FR", current.with_value(updated))
    print(f"  updated FR        etag={new_etag}")

    # ──────────────────────────────────────
    #  3. A writer holding the old etag loses
    # ──────────────────────────────────────
    try:
        await countries.set("FR", Record(updated, etag=etag))
    except ConcurrencyError as e:
        print(f"  stale write       {e} (retryable={e.retryable})")

    # ──────────────────────────────────────
    #  4. Expiry
    # ──────────────────────────────────────
    await countries.add(
        "XX", Record(Country(name="Atlantis", capital="?"), ttl=timedelta(milliseconds=200))
    )
    print(f"  XX present        {await countries.contains_key('XX')}")
    await asyncio.sleep(0.3)
    print(f"  XX after ttl      {await countries.contains_key('XX')}")

    # ──────────────────────────────────────
    #  5. Remove with the current etag
    # ──────────────────────────────────────
    removed = await countries.remove("FR", new_etag)
    print(f"  removed FR        {removed}")

    await factory.close()


async def main():
    setup_logging(log_level="WARNING", json_logs=False)
    with tempfile.TemporaryDirectory() as root:
        for storage_type in ("memory", "file", "actor", "sqlite"):
            await tour(storage_type, root)


if __name__ == "__main__":
    asyncio.run(main())
