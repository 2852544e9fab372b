"""Acquisition engine: the facade callers use to turn thumbnails into originals."""

import asyncio
import inspect
import logging
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Hashable, Iterable, Optional, Sequence

from rich.table import Table

from ..config import Config
from ..http_client import Fetcher, HttpImageFetcher, is_ready
from ..utils import console, create_progress_bar, format_duration, is_data_url, shorten_url
from .models import FailureReason, ReentrantCallError, ResourceInstance, ResourceState
from .racer import AttemptRacer, ReadinessCheck
from .registry import ResourceRegistry
from .sequencer import CandidateFilter, FallbackSequencer
from .strategies import PrefixStrategy, StrategyRegistry, TransformStrategy, registry_from_names

logger = logging.getLogger(__name__)

TerminalCallback = Callable[[ResourceInstance], Any]


@dataclass
class Candidate:
    """A resource handed over by the document layer."""
    id: Hashable
    url: str
    anchor: Optional[str] = None


def default_filter(resource_id: Hashable, url: str) -> bool:
    """Skip empty and inline ``data:`` sources; there is nothing to upgrade."""
    return bool(url) and not is_data_url(url)


def resolve_target(current_url: Optional[str], anchor_hint_url: Optional[str]) -> str:
    """Pick the URL to acquire: the anchor's target when usable, else the current source."""
    if anchor_hint_url and not is_data_url(anchor_hint_url):
        return anchor_hint_url
    return current_url or ''


def build_registry(config: Config) -> StrategyRegistry:
    """Strategy registry in the order the configuration lists them."""
    extra = [
        PrefixStrategy(
            name=custom.name, prefix=custom.prefix, tag=custom.tag,
            strip_scheme=custom.strip_scheme, encode=custom.encode
        )
        for custom in config.acquisition.custom_strategies
    ]
    names = list(config.acquisition.strategies)
    for strategy in extra:
        if strategy.name not in names:
            names.append(strategy.name)
    return registry_from_names(names, extra)


def timeout_seconds(timeout_ms: Optional[int]) -> Optional[float]:
    if timeout_ms is None or timeout_ms <= 0:
        return None
    return timeout_ms / 1000.0


class AcquisitionEngine:
    """Composes the strategy registry, racer, sequencer and resource registry.

    Every id is acquired at most once per engine; ``on_terminal`` is invoked
    exactly once for it, when it reaches SUCCEEDED, FAILED or FILTERED.
    """

    def __init__(
        self,
        config: Optional[Config] = None,
        fetcher: Optional[Fetcher] = None,
        strategies: Optional[Sequence[TransformStrategy]] = None,
        candidate_filter: Optional[CandidateFilter] = default_filter,
        on_terminal: Optional[TerminalCallback] = None,
        readiness: ReadinessCheck = is_ready
    ):
        self.config = config or Config()
        self._owns_fetcher = fetcher is None
        self.fetcher = fetcher if fetcher is not None else HttpImageFetcher(self.config)
        self.strategies = strategies if strategies is not None else build_registry(self.config)
        self.candidate_filter = candidate_filter
        self.on_terminal = on_terminal
        self.resources = ResourceRegistry()
        self.racer = AttemptRacer(self.fetcher, readiness)
        self.reentrant_calls = 0

    async def acquire(
        self,
        resource_id: Hashable,
        hint_url: str,
        *,
        anchor_hint: Optional[str] = None,
        candidate_filter: Optional[CandidateFilter] = None,
        strategies: Optional[Sequence[TransformStrategy]] = None,
        timeout_ms: Optional[int] = None,
        load_mode: Optional[str] = None
    ) -> ResourceInstance:
        """Acquire ``hint_url`` for ``resource_id`` and return the terminal instance.

        A second call for an id that is in progress or finished starts
        nothing and returns the existing instance as it is.
        """
        settings = self.config.acquisition
        sequencer = FallbackSequencer(
            self.racer,
            strategies if strategies is not None else self.strategies,
            self.resources,
            timeout=timeout_seconds(settings.load_timeout_ms if timeout_ms is None else timeout_ms),
            load_mode=load_mode or settings.load_mode
        )

        try:
            instance = self.resources.claim(resource_id, hint_url, anchor_hint)
        except ReentrantCallError as e:
            self.reentrant_calls += 1
            logger.debug("Ignoring repeated acquire for %r: %s", resource_id, e)
            return e.instance

        try:
            await sequencer.run(
                instance,
                candidate_filter if candidate_filter is not None else self.candidate_filter
            )
        except BaseException as e:
            # cancelled or a caller hook raised; the id must still settle once
            if not instance.is_terminal:
                instance.fail(FailureReason.ABORTED)
                logger.warning("Aborted %s: %r", shorten_url(instance.original_source), e)
                await self._notify(instance)
            raise

        self._log_terminal(instance)
        await self._notify(instance)
        return instance

    async def notify_candidate(
        self,
        resource_id: Hashable,
        current_url: Optional[str],
        anchor_hint_url: Optional[str] = None
    ) -> ResourceInstance:
        """Entry point for the change-notification source."""
        target = resolve_target(current_url, anchor_hint_url)
        return await self.acquire(resource_id, target, anchor_hint=anchor_hint_url)

    def get(self, resource_id: Hashable) -> Optional[ResourceInstance]:
        return self.resources.get(resource_id)

    async def _notify(self, instance: ResourceInstance) -> None:
        if self.on_terminal is None:
            return
        try:
            result = self.on_terminal(instance)
            if inspect.isawaitable(result):
                await result
        except Exception:
            logger.exception("on_terminal callback failed for %r", instance.id)

    def _log_terminal(self, instance: ResourceInstance) -> None:
        if instance.state is ResourceState.SUCCEEDED:
            logger.info(
                "Loaded %s via %s", shorten_url(instance.current_source),
                instance.used_strategy_name or 'direct'
            )
        elif instance.state is ResourceState.FAILED:
            logger.warning(
                "Failed %s: %s (last error: %s)", shorten_url(instance.original_source),
                instance.failure_reason.value,
                instance.last_error.value if instance.last_error else 'none'
            )
        else:
            logger.debug("Filtered %s", shorten_url(instance.original_source))

    async def acquire_many(
        self,
        candidates: Iterable[Candidate],
        concurrency: Optional[int] = None,
        show_progress: bool = True
    ) -> Dict[str, Any]:
        """Acquire many resources concurrently and return summary statistics.

        Repeated ids are acquired once, the first occurrence wins.
        """
        items = []
        seen = set()
        for item in candidates:
            if item.id in seen:
                logger.debug("Skipping duplicate candidate %r", item.id)
                continue
            seen.add(item.id)
            items.append(item)

        stats: Dict[str, Any] = {
            'total_items': len(items),
            'succeeded': 0,
            'failed': 0,
            'filtered': 0,
            'total_duration': 0.0,
            'by_strategy': {},
            'errors': [],
            'instances': []
        }
        if not items:
            return stats

        semaphore = asyncio.Semaphore(concurrency or self.config.acquisition.max_concurrency)
        start_time = time.time()

        async def run_one(item: Candidate) -> ResourceInstance:
            async with semaphore:
                return await self.notify_candidate(item.id, item.url, item.anchor)

        if show_progress:
            with create_progress_bar() as progress:
                task = progress.add_task("Loading originals...", total=len(items))

                async def tracked(item: Candidate) -> ResourceInstance:
                    instance = await run_one(item)
                    progress.advance(task)
                    return instance

                instances = await asyncio.gather(*(tracked(item) for item in items))
        else:
            instances = await asyncio.gather(*(run_one(item) for item in items))

        for instance in instances:
            self._count(stats, instance)

        stats['total_duration'] = time.time() - start_time
        return stats

    @staticmethod
    def _count(stats: Dict[str, Any], instance: ResourceInstance) -> None:
        stats['instances'].append(instance)
        if instance.state is ResourceState.FILTERED:
            stats['filtered'] += 1
            return

        strategy = instance.used_strategy_name or 'direct'
        if instance.ok:
            stats['succeeded'] += 1
            counts = stats['by_strategy'].setdefault(strategy, {'succeeded': 0})
            counts['succeeded'] += 1
        else:
            stats['failed'] += 1
            stats['errors'].append({
                'resource': instance.original_source,
                'error': instance.failure_reason.value if instance.failure_reason else 'unknown',
                'last_error': instance.last_error.value if instance.last_error else None
            })

    async def aclose(self) -> None:
        if self._owns_fetcher:
            await self.fetcher.aclose()

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.aclose()


def display_stats(stats: Dict[str, Any]) -> None:
    """Render acquisition statistics."""
    table = Table(title="Acquisition Summary")
    table.add_column("Metric", style="cyan")
    table.add_column("Value", style="magenta")

    table.add_row("Total Items", str(stats['total_items']))
    table.add_row("Succeeded", str(stats['succeeded']))
    table.add_row("Failed", str(stats['failed']))
    table.add_row("Filtered", str(stats['filtered']))
    table.add_row("Duration", format_duration(stats['total_duration']))

    console.print(table)

    if stats['by_strategy']:
        strategy_table = Table(title="Winning Strategy")
        strategy_table.add_column("Strategy", style="cyan")
        strategy_table.add_column("Succeeded", style="green")
        strategy_table.add_column("Share", style="yellow")

        for strategy, counts in stats['by_strategy'].items():
            share = counts['succeeded'] / stats['succeeded'] * 100 if stats['succeeded'] else 0
            strategy_table.add_row(strategy, str(counts['succeeded']), f"{share:.1f}%")

        console.print(strategy_table)

    if stats['errors']:
        console.print(f"\n[bold red]Failures ({len(stats['errors'])}):[/bold red]")
        for error in stats['errors'][:10]:
            console.print(f"  • {shorten_url(error['resource'])}: {error['error']} ({error['last_error']})")

        if len(stats['errors']) > 10:
            console.print(f"  ... and {len(stats['errors']) - 10} more failures")
