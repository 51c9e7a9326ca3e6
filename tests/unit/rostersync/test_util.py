import asyncio

import pytest

from rostersync.exceptions import CredentialError
from rostersync.exceptions import FetchError
from rostersync.util import BatchResult
from rostersync.util import chunked
from rostersync.util import raise_if_fatal
from rostersync.util import run_bounded
from rostersync.util import timeit


class TestRunBounded:
    """Test the bounded concurrency executor."""

    @pytest.mark.parametrize("max_concurrency", [1, 2, 5])
    def test_never_exceeds_ceiling(self, max_concurrency):
        in_flight = 0
        peak = 0

        async def worker(item):
            nonlocal in_flight, peak
            in_flight += 1
            peak = max(peak, in_flight)
            await asyncio.sleep(0.01)
            in_flight -= 1
            return item * 2

        outcome = asyncio.run(run_bounded(range(10), worker, max_concurrency))

        assert peak == max_concurrency
        assert sorted(outcome.results) == [i * 2 for i in range(10)]
        assert outcome.errors == []

    def test_failure_does_not_cancel_siblings(self):
        async def worker(item):
            await asyncio.sleep(0)
            if item == 3:
                raise FetchError("https://graph.example/apps/3", "boom")
            return item

        outcome = asyncio.run(run_bounded(range(6), worker, 2))

        assert sorted(outcome.results) == [0, 1, 2, 4, 5]
        assert len(outcome.errors) == 1
        item, error = outcome.errors[0]
        assert item == 3
        assert isinstance(error, FetchError)

    def test_empty_batch(self):
        async def worker(item):
            return item

        outcome = asyncio.run(run_bounded([], worker, 5))
        assert outcome.results == []
        assert outcome.errors == []

    def test_invalid_ceiling(self):
        async def worker(item):
            return item

        with pytest.raises(ValueError):
            asyncio.run(run_bounded([1], worker, 0))


class TestChunked:
    @pytest.mark.parametrize(
        "size, chunk_size, expected",
        [
            (5, 2, [2, 2, 1]),
            (4, 2, [2, 2]),
            (0, 3, []),
            (3, 3000, [3]),
        ],
    )
    def test_chunk_sizes(self, size, chunk_size, expected):
        chunks = list(chunked(list(range(size)), chunk_size))
        assert [len(chunk) for chunk in chunks] == expected
        assert [item for chunk in chunks for item in chunk] == list(range(size))

    def test_invalid_chunk_size(self):
        with pytest.raises(ValueError):
            list(chunked([1, 2], 0))


class TestRaiseIfFatal:
    def test_credential_error_is_raised(self):
        outcome = BatchResult(errors=[("app-1", FetchError("url", "boom")), ("app-2", CredentialError("expired"))])
        with pytest.raises(CredentialError):
            raise_if_fatal(outcome)

    def test_other_errors_are_left_to_the_caller(self):
        outcome = BatchResult(errors=[("app-1", FetchError("url", "boom"))])
        raise_if_fatal(outcome)


class TestTimeit:
    def test_sync_function(self):
        @timeit
        def add(a, b):
            return a + b

        assert add(1, 2) == 3
        assert add.__name__ == "add"

    def test_coroutine_function(self):
        @timeit
        async def add(a, b):
            await asyncio.sleep(0)
            return a + b

        assert asyncio.run(add(1, 2)) == 3
