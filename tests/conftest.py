"""Shared fixtures: a scripted fetcher standing in for the network."""

import asyncio
from typing import Dict, List, Optional, Tuple

import pytest

from showimages.http_client import FetchResult


class FakeFetcher:
    """Fetcher whose outcome and latency are scripted per URL.

    Outcomes: ``ok``, ``error``, ``tiny`` (1x1 placeholder), ``raise`` and
    ``hang`` (never finishes on its own).
    """

    def __init__(self, script: Optional[Dict[str, Tuple[str, float]]] = None,
                 default: Tuple[str, float] = ('error', 0.0)):
        self.script = dict(script or {})
        self.default = default
        self.calls: List[str] = []
        self.cancelled: List[str] = []
        self.completed: List[str] = []
        self.closed = False

    async def fetch(self, url: str) -> FetchResult:
        self.calls.append(url)
        outcome, delay = self.script.get(url, self.default)
        try:
            if outcome == 'hang':
                await asyncio.Event().wait()
            await asyncio.sleep(delay)
        except asyncio.CancelledError:
            self.cancelled.append(url)
            raise
        self.completed.append(url)

        if outcome == 'ok':
            return FetchResult(url=url, ok=True, status_code=200, content_type='image/png',
                               width=640, height=480, size=2048)
        if outcome == 'tiny':
            return FetchResult(url=url, ok=True, status_code=200, width=1, height=1, size=43)
        if outcome == 'raise':
            raise RuntimeError(f"fetcher exploded on {url}")
        return FetchResult(url=url, ok=False, status_code=404, error='HTTP 404')

    async def aclose(self) -> None:
        self.closed = True


@pytest.fixture
def make_fetcher():
    """Factory for scripted fetchers: ``make_fetcher({url: (outcome, delay)})``."""
    return FakeFetcher
