"""Tests for hook containers, outcomes and invocation."""

import pytest

from courier.errors import OptionsError
from courier.hooks import CONTINUE, HOOK_PHASES, Continue, Hooks, Replace, as_outcome, call_hook, call_init_hooks


def first(options):
    return None


def second(options):
    return None


class TestOutcomes:
    def test_none_continues(self):
        assert as_outcome(None) is CONTINUE

    def test_explicit_continue(self):
        assert isinstance(as_outcome(Continue()), Continue)

    def test_value_replaces(self):
        assert as_outcome(42) == Replace(42)

    def test_replace_passes_through(self):
        outcome = Replace(None)
        assert as_outcome(outcome) is outcome


class TestHooksContainer:
    def test_coerce_none(self):
        hooks = Hooks.coerce(None)
        for phase in HOOK_PHASES:
            assert getattr(hooks, phase) == []

    def test_coerce_single_callable(self):
        hooks = Hooks.coerce({"before_request": first})
        assert hooks.before_request == [first]

    def test_unknown_phase_rejected(self):
        with pytest.raises(OptionsError, match="Unknown hook phase"):
            Hooks.coerce({"beforeRequest": [first]})

    def test_non_callable_rejected(self):
        with pytest.raises(OptionsError, match="callable"):
            Hooks.coerce({"before_request": [first, "second"]})

    def test_merge_keeps_order(self):
        merged = Hooks(before_request=[first]).merge(Hooks(before_request=[second]))
        assert merged.before_request == [first, second]

    def test_copy_is_independent(self):
        hooks = Hooks(before_request=[first])
        clone = hooks.copy()
        clone.before_request.append(second)
        assert hooks.before_request == [first]


class TestInvocation:
    @pytest.mark.asyncio
    async def test_call_hook_awaits_coroutines(self):
        async def hook(value):
            return value * 2

        assert await call_hook(hook, 21) == 42

    @pytest.mark.asyncio
    async def test_call_hook_awaits_nested_awaitables(self):
        async def inner():
            return "done"

        def hook():
            return inner()

        assert await call_hook(hook) == "done"

    def test_init_hooks_mutate_raw_options(self):
        def add_header(raw):
            raw.setdefault("headers", {})["x-init"] = "1"

        raw = {}
        call_init_hooks([add_header], raw)
        assert raw == {"headers": {"x-init": "1"}}

    def test_async_init_hook_rejected(self):
        async def hook(raw):
            return None

        with pytest.raises(OptionsError, match="synchronous"):
            call_init_hooks([hook], {})
