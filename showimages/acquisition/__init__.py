"""Acquisition engine with a fallback chain of image proxies."""

from .engine import (
    AcquisitionEngine, Candidate, build_registry,
    default_filter, display_stats, resolve_target
)
from .models import (
    AcquisitionError, AttemptRecord, DuplicateStrategyError, FailureReason,
    RaceFailure, ReentrantCallError, ResourceInstance, ResourceState,
    StrategyNotFoundError, TerminalStateError
)
from .racer import AttemptRacer, FetchHandle, RaceOutcome
from .registry import ResourceRegistry
from .sequencer import FallbackSequencer
from .strategies import (
    TransformStrategy, PrefixStrategy, FileStack, SteemitImages, DDG, Pocket,
    StrategyRegistry, default_registry, registry_from_names
)

__all__ = [
    'AcquisitionEngine',
    'Candidate',
    'build_registry',
    'default_filter',
    'display_stats',
    'resolve_target',
    'AcquisitionError',
    'AttemptRecord',
    'DuplicateStrategyError',
    'FailureReason',
    'RaceFailure',
    'ReentrantCallError',
    'ResourceInstance',
    'ResourceState',
    'StrategyNotFoundError',
    'TerminalStateError',
    'AttemptRacer',
    'FetchHandle',
    'RaceOutcome',
    'ResourceRegistry',
    'FallbackSequencer',
    'TransformStrategy',
    'PrefixStrategy',
    'FileStack',
    'SteemitImages',
    'DDG',
    'Pocket',
    'StrategyRegistry',
    'default_registry',
    'registry_from_names',
]
