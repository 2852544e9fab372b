"""Tests for the fallback sequencer state machine."""

import pytest

from showimages.acquisition.models import (
    FailureReason, ResourceInstance, ResourceState, TerminalStateError
)
from showimages.acquisition.racer import AttemptRacer
from showimages.acquisition.registry import ResourceRegistry
from showimages.acquisition.sequencer import FallbackSequencer
from showimages.acquisition.strategies import PrefixStrategy

SOURCE = 'http://x/img.png'


def prefix_strategies(*names):
    return [PrefixStrategy(name, f"http://{name.lower()}/", tag=f"#{i:06d}") for i, name in enumerate(names)]


def make_sequencer(fetcher, strategies, timeout=1.0, load_mode='serial', resources=None):
    return FallbackSequencer(
        AttemptRacer(fetcher), strategies, resources if resources is not None else ResourceRegistry(),
        timeout=timeout, load_mode=load_mode
    )


class TestFallbackSequencer:
    """Test walking the strategy chain."""

    @pytest.mark.asyncio
    async def test_direct_success(self, make_fetcher):
        fetcher = make_fetcher({SOURCE: ('ok', 0.0)})
        sequencer = make_sequencer(fetcher, prefix_strategies('Alpha'))
        instance = await sequencer.run(ResourceInstance(id=1, original_source=SOURCE))

        assert instance.state is ResourceState.SUCCEEDED
        assert instance.used_strategy_name is None
        assert instance.tag is None
        assert instance.current_strategy_index == -1
        assert instance.current_source == SOURCE
        assert fetcher.calls == [SOURCE]

    @pytest.mark.asyncio
    async def test_strategies_tried_in_registry_order(self, make_fetcher):
        """Each failure advances exactly one strategy, never reordered or skipped."""
        strategies = prefix_strategies('Alpha', 'Beta', 'Gamma')
        fetcher = make_fetcher()
        instance = await make_sequencer(fetcher, strategies).run(
            ResourceInstance(id=1, original_source=SOURCE)
        )

        assert [a.strategy for a in instance.attempts] == [None, 'Alpha', 'Beta', 'Gamma']
        assert fetcher.calls == [
            SOURCE, 'http://alpha/x/img.png', 'http://beta/x/img.png', 'http://gamma/x/img.png'
        ]
        assert instance.current_strategy_index == 2

    @pytest.mark.asyncio
    async def test_transforms_are_not_compounded(self, make_fetcher):
        """Every strategy transforms the original source, not the previous candidate."""
        strategies = prefix_strategies('Alpha', 'Beta')
        fetcher = make_fetcher()
        await make_sequencer(fetcher, strategies).run(ResourceInstance(id=1, original_source=SOURCE))

        for strategy, called in zip(strategies, fetcher.calls[1:]):
            assert called == strategy.apply(SOURCE)
        assert 'http://beta/alpha/x/img.png' not in fetcher.calls

    @pytest.mark.asyncio
    async def test_fallback_success_records_strategy(self, make_fetcher):
        strategies = prefix_strategies('Alpha', 'Beta')
        fetcher = make_fetcher({'http://beta/x/img.png': ('ok', 0.0)})
        resources = ResourceRegistry()
        instance = await make_sequencer(fetcher, strategies, resources=resources).run(
            ResourceInstance(id=1, original_source=SOURCE)
        )

        assert instance.state is ResourceState.SUCCEEDED
        assert instance.used_strategy_name == 'Beta'
        assert instance.tag == strategies[1].tag
        assert instance.current_source == 'http://beta/x/img.png'
        assert instance.original_source == SOURCE
        assert resources.is_known_succeeded('http://beta/x/img.png')
        assert resources.is_known_failed(SOURCE)
        assert resources.is_known_failed('http://alpha/x/img.png')

    @pytest.mark.asyncio
    async def test_exhaustion_restores_original(self, make_fetcher):
        strategies = prefix_strategies('Alpha')
        fetcher = make_fetcher({'http://alpha/x/img.png': ('hang', 0.0)})
        instance = await make_sequencer(fetcher, strategies, timeout=0.05).run(
            ResourceInstance(id=1, original_source=SOURCE)
        )

        assert instance.state is ResourceState.FAILED
        assert instance.failure_reason is FailureReason.EXHAUSTED
        assert instance.last_error is FailureReason.TIMEOUT
        assert instance.current_source == SOURCE
        assert [a.reason for a in instance.attempts] == [FailureReason.LOAD_ERROR, FailureReason.TIMEOUT]

    @pytest.mark.asyncio
    async def test_timeout_advances_like_load_error(self, make_fetcher):
        strategies = prefix_strategies('Alpha')
        fetcher = make_fetcher({
            SOURCE: ('hang', 0.0),
            'http://alpha/x/img.png': ('ok', 0.0),
        })
        instance = await make_sequencer(fetcher, strategies, timeout=0.05).run(
            ResourceInstance(id=1, original_source=SOURCE)
        )
        assert instance.state is ResourceState.SUCCEEDED
        assert instance.used_strategy_name == 'Alpha'

    @pytest.mark.asyncio
    async def test_filter_rejects_before_any_fetch(self, make_fetcher):
        fetcher = make_fetcher({SOURCE: ('ok', 0.0)})
        seen = []

        def reject(resource_id, url):
            seen.append((resource_id, url))
            return False

        instance = await make_sequencer(fetcher, prefix_strategies('Alpha')).run(
            ResourceInstance(id='img-1', original_source=SOURCE), reject
        )

        assert instance.state is ResourceState.FILTERED
        assert instance.failure_reason is None
        assert instance.attempts == []
        assert fetcher.calls == []
        assert seen == [('img-1', SOURCE)]

    @pytest.mark.asyncio
    async def test_known_failed_candidates_are_skipped(self, make_fetcher):
        strategies = prefix_strategies('Alpha', 'Beta')
        resources = ResourceRegistry()
        resources.record_failure('http://alpha/x/img.png')
        fetcher = make_fetcher({'http://beta/x/img.png': ('ok', 0.0)})

        instance = await make_sequencer(fetcher, strategies, resources=resources).run(
            ResourceInstance(id=1, original_source=SOURCE)
        )

        assert instance.used_strategy_name == 'Beta'
        assert fetcher.calls == [SOURCE, 'http://beta/x/img.png']
        assert [a.skipped for a in instance.attempts] == [False, True, False]

    @pytest.mark.asyncio
    async def test_parallel_mode_races_first_strategy_with_direct(self, make_fetcher):
        strategies = prefix_strategies('Alpha', 'Beta')
        fetcher = make_fetcher({
            SOURCE: ('hang', 0.0),
            'http://alpha/x/img.png': ('ok', 0.01),
        })
        instance = await make_sequencer(fetcher, strategies, load_mode='parallel').run(
            ResourceInstance(id=1, original_source=SOURCE)
        )

        assert instance.state is ResourceState.SUCCEEDED
        assert instance.used_strategy_name == 'Alpha'
        assert instance.current_strategy_index == -1
        assert len(instance.attempts) == 1
        assert instance.attempts[0].candidates == (SOURCE, 'http://alpha/x/img.png')
        assert fetcher.cancelled == [SOURCE]

    @pytest.mark.asyncio
    async def test_parallel_mode_does_not_refetch_first_strategy(self, make_fetcher):
        strategies = prefix_strategies('Alpha', 'Beta')
        fetcher = make_fetcher({'http://beta/x/img.png': ('ok', 0.0)})
        instance = await make_sequencer(fetcher, strategies, load_mode='parallel').run(
            ResourceInstance(id=1, original_source=SOURCE)
        )

        assert instance.used_strategy_name == 'Beta'
        assert fetcher.calls.count('http://alpha/x/img.png') == 1
        assert instance.attempts[1].skipped

    @pytest.mark.asyncio
    async def test_empty_registry_fails_immediately(self, make_fetcher):
        fetcher = make_fetcher()
        instance = await make_sequencer(fetcher, []).run(ResourceInstance(id=1, original_source=SOURCE))

        assert instance.state is ResourceState.FAILED
        assert instance.failure_reason is FailureReason.EXHAUSTED
        assert len(instance.attempts) == 1

    @pytest.mark.asyncio
    async def test_empty_source_is_no_candidates(self, make_fetcher):
        fetcher = make_fetcher()
        instance = await make_sequencer(fetcher, prefix_strategies('Alpha')).run(
            ResourceInstance(id=1, original_source='')
        )

        assert instance.state is ResourceState.FAILED
        assert instance.failure_reason is FailureReason.NO_CANDIDATES
        assert fetcher.calls == []

    @pytest.mark.asyncio
    async def test_terminal_instance_cannot_run_again(self, make_fetcher):
        fetcher = make_fetcher({SOURCE: ('ok', 0.0)})
        sequencer = make_sequencer(fetcher, prefix_strategies('Alpha'))
        instance = await sequencer.run(ResourceInstance(id=1, original_source=SOURCE))

        with pytest.raises(TerminalStateError):
            await sequencer.run(instance)
        assert instance.state is ResourceState.SUCCEEDED
        assert fetcher.calls == [SOURCE]

    def test_unknown_load_mode(self, make_fetcher):
        with pytest.raises(ValueError):
            make_sequencer(make_fetcher(), [], load_mode='sideways')


class TestResourceInstance:
    """Test instance transitions."""

    def test_initial_state(self):
        instance = ResourceInstance(id=1, original_source=SOURCE)
        assert instance.state is ResourceState.IDLE
        assert instance.current_strategy_index == -1
        assert instance.current_source == SOURCE
        assert not instance.is_terminal

    def test_no_advance_after_terminal(self):
        instance = ResourceInstance(id=1, original_source=SOURCE)
        instance.begin()
        instance.fail(FailureReason.EXHAUSTED)
        with pytest.raises(TerminalStateError):
            instance.advance()
        with pytest.raises(TerminalStateError):
            instance.succeed('http://alpha/x/img.png')

    def test_filter_only_from_idle(self):
        instance = ResourceInstance(id=1, original_source=SOURCE)
        instance.begin()
        with pytest.raises(TerminalStateError):
            instance.filter_out()

    def test_to_dict(self):
        instance = ResourceInstance(id=7, original_source=SOURCE)
        instance.begin()
        instance.succeed('http://alpha/x/img.png', 'Alpha', '#fff')
        record = instance.to_dict()
        assert record['id'] == '7'
        assert record['state'] == 'succeeded'
        assert record['strategy'] == 'Alpha'
        assert record['failure_reason'] is None
