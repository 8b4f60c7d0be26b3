#!/usr/bin/env python3
"""Example: conditional operations with the ConditionalOperator.

Loads the live fleet from state.yml into the memory provider and shuts
down only the Debian hosts. legacy01 has no facts, so every predicate
about it is unknown and it is never touched, not even by a negation.

Run with: uv run python example_conditional.py
"""

import asyncio
from pathlib import Path

from fleetsync import ConditionalOperator, parse_predicate
from fleetsync.progress import TextProgressReporter
from fleetsync.providers import MemoryProvider
from fleetsync.snapshot import Snapshot
from fleetsync.types import Operation

STATE_FILE = Path(__file__).parent / "state.yml"


async def main():
    provider = MemoryProvider.from_file(STATE_FILE)
    operator = ConditionalOperator(provider, reporter=TextProgressReporter())
    snapshot = await Snapshot.capture(provider)

    for expression in (
        'os_family == "Debian"',
        'not os_family == "Debian"',
        'distribution =~ "Ubuntu*" or distribution_version == "2023"',
    ):
        selected = operator.select(snapshot, parse_predicate(expression))
        print(f"{expression:<60} -> {[r.name for r in selected]}")

    print()
    report = await operator.run(parse_predicate('os_family == "Debian"'), Operation.parse("shutdown"))
    print(report.format_text())

    print("\nRunning the same operation again:")
    report = await operator.run(parse_predicate('os_family == "Debian"'), Operation.parse("shutdown"))
    print(report.format_text())


if __name__ == "__main__":
    asyncio.run(main())
