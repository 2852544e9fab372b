"""Fallback sequencer: walks one resource instance through the strategy chain."""

import logging
import time
from typing import Callable, Hashable, List, Optional, Sequence, Tuple

from .models import AttemptRecord, FailureReason, RaceFailure, ResourceInstance
from .racer import AttemptRacer, RaceOutcome
from .registry import ResourceRegistry
from .strategies import TransformStrategy

logger = logging.getLogger(__name__)

CandidateFilter = Callable[[Hashable, str], bool]

LOAD_MODES = ('serial', 'parallel')


class FallbackSequencer:
    """State machine driving one instance from IDLE to a terminal state.

    The direct source is raced first (together with the first strategy's
    candidate in ``parallel`` load mode). Each failure advances to the next
    strategy in registry order, which always transforms the *original* source.
    Timeouts and load errors are treated alike until the chain runs out.
    """

    def __init__(
        self,
        racer: AttemptRacer,
        strategies: Sequence[TransformStrategy],
        resources: ResourceRegistry,
        timeout: Optional[float] = None,
        load_mode: str = 'serial'
    ):
        if load_mode not in LOAD_MODES:
            raise ValueError(f"Unknown load mode: {load_mode}")
        self.racer = racer
        self.strategies = tuple(strategies)
        self.resources = resources
        self.timeout = timeout
        self.load_mode = load_mode

    async def run(self, instance: ResourceInstance,
                  candidate_filter: Optional[CandidateFilter] = None) -> ResourceInstance:
        """Drive ``instance`` to a terminal state and return it."""
        source = instance.original_source

        if candidate_filter is not None and not candidate_filter(instance.id, source):
            logger.debug("Filtered %r: %s", instance.id, source)
            instance.filter_out()
            return instance

        instance.begin()

        if not source:
            instance.last_error = FailureReason.NO_CANDIDATES
            instance.fail(FailureReason.NO_CANDIDATES)
            return instance

        direct: List[Tuple[str, Optional[TransformStrategy]]] = [(source, None)]
        if self.load_mode == 'parallel' and self.strategies:
            first = self.strategies[0]
            direct.append((first.apply(source), first))

        if await self._attempt(instance, None, direct) is not None:
            return instance

        while instance.current_strategy_index + 1 < len(self.strategies):
            index = instance.advance()
            strategy = self.strategies[index]
            outcome = await self._attempt(instance, strategy, [(strategy.apply(source), strategy)])
            if outcome is not None:
                return instance

        logger.debug(
            "Chain exhausted for %r after %d attempts (last error: %s)",
            instance.id, len(instance.attempts),
            instance.last_error.value if instance.last_error else None
        )
        instance.fail(FailureReason.EXHAUSTED)
        return instance

    async def _attempt(
        self,
        instance: ResourceInstance,
        strategy: Optional[TransformStrategy],
        pairs: List[Tuple[str, Optional[TransformStrategy]]]
    ) -> Optional[RaceOutcome]:
        """Run one race; on success move the instance to SUCCEEDED."""
        strategy_name = strategy.name if strategy else None

        producers = {}
        for url, producer in pairs:
            if url and url not in producers:
                producers[url] = producer

        candidates = [url for url in producers if not self.resources.is_known_failed(url)]
        record = AttemptRecord(strategy=strategy_name, candidates=tuple(producers))
        instance.attempts.append(record)

        if not candidates:
            # every candidate already failed somewhere, nothing new to learn
            record.skipped = True
            record.reason = FailureReason.LOAD_ERROR
            if instance.last_error is None:
                instance.last_error = FailureReason.LOAD_ERROR
            logger.debug("Skipping %s for %r: candidates known to fail", strategy_name or 'direct', instance.id)
            return None

        started = time.monotonic()
        try:
            outcome = await self.racer.race(candidates, self.timeout)
        except RaceFailure as e:
            record.duration = time.monotonic() - started
            for url in candidates:
                self.resources.record_failure(url)
            record.reason = e.reason
            instance.last_error = e.reason
            logger.debug(
                "Attempt %s for %r failed (%s): %s",
                strategy_name or 'direct', instance.id, e.reason.value, candidates
            )
            return None

        record.winner = outcome.url
        record.duration = outcome.duration
        self.resources.record_success(outcome.url)

        producer = producers.get(outcome.url)
        instance.succeed(
            outcome.url,
            strategy_name=producer.name if producer else None,
            tag=producer.tag if producer else None
        )
        return outcome
