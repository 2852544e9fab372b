"""Attempt racer: load several candidate URLs at once and keep the first good one."""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Dict, Iterable, List, Optional, Tuple

from ..http_client import Fetcher, FetchResult, is_ready
from .models import FailureReason, RaceFailure

logger = logging.getLogger(__name__)

ReadinessCheck = Callable[[FetchResult], bool]


class FetchHandle:
    """Cancellation handle for one in-flight fetch.

    ``cancel()`` is idempotent and leaves an already finished fetch alone, so
    its result is simply discarded.
    """

    def __init__(self, url: str, index: int, fetch: Awaitable[FetchResult]):
        self.url = url
        self.index = index
        self.task = asyncio.ensure_future(fetch)
        self._cancel_requested = False

    def cancel(self) -> bool:
        """Request cancellation; returns False when there was nothing to cancel."""
        if self.task.done():
            return False
        self._cancel_requested = True
        self.task.cancel()
        return True

    def done(self) -> bool:
        return self.task.done()

    @property
    def cancelled(self) -> bool:
        return self._cancel_requested

    def __repr__(self) -> str:
        if self._cancel_requested:
            status = 'cancelled'
        else:
            status = 'done' if self.task.done() else 'pending'
        return f"<FetchHandle #{self.index} {self.url} {status}>"


@dataclass
class RaceOutcome:
    """The winning candidate of one race."""
    url: str
    index: int
    result: FetchResult
    duration: float = 0.0
    cancelled: Tuple[str, ...] = ()
    handles: List[FetchHandle] = field(default_factory=list, repr=False)


def unique_candidates(candidates: Iterable[str]) -> List[str]:
    """Drop empty and repeated URLs, keeping first-seen order."""
    seen = set()
    urls = []
    for url in candidates:
        if url and url not in seen:
            seen.add(url)
            urls.append(url)
    return urls


class AttemptRacer:
    """Races host fetches for the candidates of a single attempt."""

    def __init__(self, fetcher: Fetcher, readiness: ReadinessCheck = is_ready):
        self.fetcher = fetcher
        self.readiness = readiness

    async def race(self, candidates: Iterable[str], timeout: Optional[float] = None) -> RaceOutcome:
        """Return the first candidate that loads and passes the readiness check.

        ``timeout`` is in seconds; ``None`` or ``<= 0`` waits indefinitely.
        Raises ``RaceFailure`` with ``TIMEOUT``, ``LOAD_ERROR`` or
        ``NO_CANDIDATES``. Every losing fetch is cancelled and awaited before
        this returns.
        """
        urls = unique_candidates(candidates)
        if not urls:
            raise RaceFailure(FailureReason.NO_CANDIDATES)

        loop = asyncio.get_running_loop()
        started = loop.time()
        deadline = started + timeout if timeout and timeout > 0 else None

        handles = [FetchHandle(url, i, self.fetcher.fetch(url)) for i, url in enumerate(urls)]
        by_task = {h.task: h for h in handles}
        pending = set(by_task)
        errors: Dict[str, str] = {}
        winner: Optional[Tuple[FetchHandle, FetchResult]] = None

        try:
            while pending and winner is None:
                remaining = None
                if deadline is not None:
                    remaining = deadline - loop.time()
                    if remaining <= 0:
                        break

                done, pending = await asyncio.wait(
                    pending, timeout=remaining, return_when=asyncio.FIRST_COMPLETED
                )

                # Several fetches may settle in the same tick; lower index wins
                for task in sorted(done, key=lambda t: by_task[t].index):
                    handle = by_task[task]
                    result = self._settle(handle, errors)
                    if result is not None and winner is None:
                        winner = (handle, result)
        finally:
            await self._cancel_all(handles)

        duration = loop.time() - started

        if winner is not None:
            handle, result = winner
            cancelled = tuple(h.url for h in handles if h.cancelled)
            logger.debug("Race won by %s after %.3fs (%d cancelled)", handle.url, duration, len(cancelled))
            return RaceOutcome(
                url=handle.url, index=handle.index, result=result,
                duration=duration, cancelled=cancelled, handles=handles
            )

        if pending:
            for handle in handles:
                if handle.cancelled:
                    errors.setdefault(handle.url, 'timeout')
            logger.debug("Race timed out after %.3fs: %s", duration, urls)
            raise RaceFailure(FailureReason.TIMEOUT, errors)

        logger.debug("Race failed, all %d candidates errored", len(urls))
        raise RaceFailure(FailureReason.LOAD_ERROR, errors)

    def _settle(self, handle: FetchHandle, errors: Dict[str, str]) -> Optional[FetchResult]:
        """Return the result of a finished fetch if it counts as a success."""
        try:
            result = handle.task.result()
        except asyncio.CancelledError:
            errors[handle.url] = 'cancelled'
            return None
        except Exception as e:
            # a misbehaving fetcher only loses its own candidate
            logger.debug("Fetch of %s raised %r", handle.url, e)
            errors[handle.url] = f"{e.__class__.__name__}: {e}"
            return None

        if not self.readiness(result):
            errors[handle.url] = result.error or (
                f"Not ready ({result.width}x{result.height})" if result.ok else 'load error'
            )
            return None
        return result

    @staticmethod
    async def _cancel_all(handles: List[FetchHandle]) -> None:
        """Cancel unfinished fetches and wait for them to wind down."""
        for handle in handles:
            handle.cancel()
        await asyncio.gather(*(h.task for h in handles), return_exceptions=True)
