"""Example 02: Change notification.

- Watching a single record, optionally only for changes to some columns
- Model-level subscribers receiving create/update/destroy events
- Truncating a model
"""

import asyncio

from kvtable import ChangeEvent, Database


async def main():
    async with Database("memory://example-02") as db:
        orders = db.define("Order", indexes=["status"])

        def on_event(event: ChangeEvent) -> None:
            print(f"  [subscriber] {event.operation} columns={event.changed_columns}")

        orders.subscribe(on_event)

        await orders.create({"id": 10, "status": "new", "total": 25})

        async def on_status(record):
            print(f"  [watch] order 10 is now {record['status'] if record else 'gone'}")

        sub = await orders.watch(10, on_status, columns=["status"])

        await orders.update(10, {"total": 30})  # not a status change
        await orders.update(10, {"status": "paid"})
        await orders.update(10, {"status": "shipped"})
        await orders.destroy(10)
        await asyncio.sleep(0.05)

        sub.stop()
        await sub.wait_closed()

        await orders.bulk_create([{"id": i, "status": "new"} for i in range(5)])
        result = await orders.truncate()
        print(
            f"\nTruncated {result.records_removed} records, "
            f"{result.index_keys_removed} index keys"
        )


if __name__ == "__main__":
    asyncio.run(main())
