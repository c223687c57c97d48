"""Example 01: Basic Usage - records and indexes.

This example demonstrates the fundamental operations:
- Connecting a Database to an in-memory bucket
- Defining a model with indexed fields
- create / update / destroy
- find_one and find_all with equality, operators and ordering
- Inspecting how a query will be resolved
"""

import asyncio

from kvtable import Database, field


async def main():
    """Run the basic usage example."""
    print("=" * 80)
    print("KVTABLE BASIC USAGE EXAMPLE")
    print("=" * 80)

    async with Database("memory://example-01") as db:
        # Step 1: Define a model. Records are plain dicts with an integer `id`.
        users = db.define("User", {"name": "string", "age": "integer"}, indexes=["email"])

        # Step 2: Write records
        await users.create({"id": 1, "name": "Ann", "age": 34, "email": "ann@example.com"})
        await users.create({"id": 2, "name": "Bob", "age": 27, "email": "bob@example.com"})
        await users.create({"id": 3, "name": "Cid", "age": 41, "email": "cid@example.com"})
        print(f"\nStored {await users.count()} users")

        # Step 3: Primary-key, index and scan lookups
        for where in ({"id": 2}, {"email": "cid@example.com"}, {"age": {"gt": 30}}):
            plan = users.plan(where)
            found = await users.find_all(where, order=[("age", "DESC")])
            print(f"  {where!r:40} plan={plan.kind:<8} -> {[u['name'] for u in found]}")

        # Step 4: Expression filters
        adults = await users.find_all((field("age") >= 30) & field("name").startswith("A"))
        print(f"\nAge >= 30 and name starting with A: {[u['name'] for u in adults]}")

        # Step 5: Update moves index entries
        await users.update(1, {"email": "ann@new.example.com"})
        print(f"Old email matches: {await users.find_one({'email': 'ann@example.com'})}")
        print(f"New email matches: {await users.find_one({'email': 'ann@new.example.com'})}")

        # Step 6: Destroy
        await users.destroy(2)
        print(f"Remaining: {[u['name'] for u in await users.find_all(order=['id'])]}")


if __name__ == "__main__":
    asyncio.run(main())
