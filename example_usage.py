#!/usr/bin/env python3
"""
Example usage of ShowImages programmatically.

This script shows how to drive the acquisition engine from Python code
instead of the command line interface.
"""

import asyncio

from showimages.acquisition import AcquisitionEngine, Candidate, ResourceState, display_stats
from showimages.config import get_default_config
from showimages.utils import setup_logging


def on_terminal(instance):
    """Called once per image when it settles."""
    if instance.state is ResourceState.SUCCEEDED:
        via = instance.used_strategy_name or "direct"
        print(f"   ✓ {instance.id}: {instance.current_source} (via {via})")
    elif instance.state is ResourceState.FAILED:
        print(f"   ✗ {instance.id}: {instance.failure_reason.value}")


async def run():
    config = get_default_config()
    config.acquisition.load_timeout_ms = 5000
    config.acquisition.load_mode = "parallel"
    setup_logging(config)

    candidates = [
        Candidate(id="logo", url="https://www.python.org/static/img/python-logo.png"),
        Candidate(
            id="thumb",
            url="https://upload.wikimedia.org/wikipedia/commons/thumb/c/c3/Python-logo-notext.svg/120px-Python-logo-notext.svg.png",
            anchor="https://upload.wikimedia.org/wikipedia/commons/c/c3/Python-logo-notext.svg"
        ),
        Candidate(id="inline", url="data:image/gif;base64,R0lGODlhAQABAAAAACw="),
    ]

    async with AcquisitionEngine(config, on_terminal=on_terminal) as engine:
        print("\n1. Proxy chain:")
        for strategy in engine.strategies:
            print(f"   {strategy.name}: {strategy.apply(candidates[0].url)}")

        print("\n2. Loading images...")
        stats = await engine.acquire_many(candidates, show_progress=False)

    print("\n3. Summary:")
    display_stats(stats)


def main():
    """Example usage of ShowImages."""
    print("ShowImages - Programmatic Usage Example")
    print("=" * 50)
    asyncio.run(run())


if __name__ == "__main__":
    main()
