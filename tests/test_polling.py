"""Tests for m365admin.core.polling."""

from unittest.mock import AsyncMock

import pytest

from m365admin.core.polling import MIN_POLL_INTERVAL_SECONDS, wait_until


def _condition(results):
    """Async condition returning the given results in order."""
    return AsyncMock(side_effect=list(results))


class TestWaitUntil:
    """Tests for wait_until."""

    async def test_true_on_first_check(self, poll_sleep):
        condition = _condition([True])

        assert await wait_until(condition, description="x", initial_delay=0, timeout=5)
        assert condition.await_count == 1
        poll_sleep.assert_not_awaited()

    async def test_polls_until_true(self, poll_sleep):
        condition = _condition([False, False, True])

        assert await wait_until(condition, description="x", initial_delay=0, timeout=5)
        assert condition.await_count == 3
        assert poll_sleep.await_count == 2

    async def test_zero_delay_still_waits_between_checks(self, poll_sleep):
        condition = _condition([False, False, False, True])

        await wait_until(condition, description="x", initial_delay=0, timeout=60)

        waits = [call.args[0] for call in poll_sleep.await_args_list]
        assert len(waits) == 3
        assert all(w >= MIN_POLL_INTERVAL_SECONDS for w in waits)

    async def test_gives_up_after_max_attempts(self, poll_sleep):
        condition = _condition([False] * 3)

        result = await wait_until(
            condition, description="x", initial_delay=0, timeout=5, max_attempts=3
        )

        assert result is False
        assert condition.await_count == 3

    async def test_condition_errors_propagate(self, poll_sleep):
        condition = AsyncMock(side_effect=RuntimeError("boom"))

        with pytest.raises(RuntimeError, match="boom"):
            await wait_until(condition, description="x", initial_delay=0, timeout=5)

    async def test_waits_initial_delay_first(self, poll_sleep):
        condition = _condition([True])

        await wait_until(condition, description="x", initial_delay=1.5, timeout=5)

        poll_sleep.assert_awaited_once_with(1.5)
