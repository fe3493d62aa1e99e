"""Retry policy around suspension points."""

import asyncio

import pytest

from copymirror.engine.retry import RetryPolicy


def _flaky(failures):
    calls = []

    async def operation():
        calls.append(1)
        if len(calls) <= failures:
            raise RuntimeError(f"failure {len(calls)}")
        return "done"

    return operation, calls


def test_default_policy_makes_one_attempt():
    operation, calls = _flaky(1)
    with pytest.raises(RuntimeError, match="failure 1"):
        asyncio.run(RetryPolicy().run(operation))
    assert len(calls) == 1


def test_retries_until_success():
    operation, calls = _flaky(2)
    assert asyncio.run(RetryPolicy(retries=2, backoff_ms=0).run(operation)) == "done"
    assert len(calls) == 3


def test_gives_up_with_last_error():
    operation, calls = _flaky(5)
    with pytest.raises(RuntimeError, match="failure 3"):
        asyncio.run(RetryPolicy(retries=2, backoff_ms=0).run(operation))
    assert len(calls) == 3
