#!/usr/bin/env python3
"""Example: converging a fleet with the Reconciler.

This example runs against the in-memory provider, so it needs no cloud
account:
- Plan and apply a fleet file against an empty fleet
- Show that a second pass is a no-op
- Drift a tag and an instance type, then converge again
- Change an image to see a replacement warning

Run with: uv run python example_reconcile.py
"""

import asyncio
from dataclasses import replace
from pathlib import Path

from fleetsync import Reconciler, parse
from fleetsync.providers import MemoryProvider

FLEET_FILE = Path(__file__).parent / "fleet.yml"


def banner(title: str) -> None:
    print("\n" + "=" * 60)
    print(title)
    print("=" * 60)


async def main():
    specs = parse(FLEET_FILE)
    provider = MemoryProvider()
    reconciler = Reconciler(provider, concurrency=4)

    banner("Example 1: First pass creates everything")
    plan = await reconciler.plan(specs)
    print(plan.format_text())
    report = await reconciler.apply(plan)
    print(report.format_text())

    banner("Example 2: Second pass changes nothing")
    plan = await reconciler.plan(specs)
    print(plan.format_text())
    print(f"Converged: {plan.is_converged}")

    banner("Example 3: Drift is corrected in place")
    web02 = next(r for r in provider.resources.values() if r.name == "web02")
    provider.resources[web02.resource_id] = replace(
        web02, instance_type="t3.small", tags={**web02.tags, "env": "staging"}
    )
    report = await reconciler.converge(specs)
    print(report.format_text())

    banner("Example 4: Image changes are reported, not applied")
    changed = [replace(s, image="ami-0fedcba9876543210") if s.name == "db01" else s for s in specs]
    plan = await reconciler.plan(changed)
    print(plan.format_text())


if __name__ == "__main__":
    asyncio.run(main())
