"""Tests for the Redis-backed sequence allocator."""
import asyncio

import pytest

from backend.app.core.exceptions import SequenceUnavailableError
from backend.app.services.sequence import SequenceAllocator
from backend.tests.conftest import MockRedis, UnreachableRedis


@pytest.mark.asyncio
async def test_sequence_starts_at_one_and_increases(allocator: SequenceAllocator):
    assert [await allocator.next_sequence(1) for _ in range(3)] == [1, 2, 3]


@pytest.mark.asyncio
async def test_sequences_are_per_product(allocator: SequenceAllocator):
    assert await allocator.next_sequence(1) == 1
    assert await allocator.next_sequence(2) == 1
    assert await allocator.next_sequence(1) == 2


@pytest.mark.asyncio
async def test_sequence_key_format(allocator: SequenceAllocator, mock_redis: MockRedis):
    await allocator.next_sequence(42)
    assert allocator.key_for(42) == "reservation:sequence:42"
    assert mock_redis._store == {"reservation:sequence:42": 1}


@pytest.mark.asyncio
async def test_concurrent_allocations_are_unique(allocator: SequenceAllocator):
    results = await asyncio.gather(*(allocator.next_sequence(7) for _ in range(50)))
    assert len(set(results)) == 50
    assert sorted(results) == list(range(1, 51))


@pytest.mark.asyncio
async def test_two_allocators_share_the_backing_counter(mock_redis: MockRedis):
    """Separate instances (processes) draw from the same counter."""
    first = SequenceAllocator(mock_redis)
    second = SequenceAllocator(mock_redis)
    assert await first.next_sequence(3) == 1
    assert await second.next_sequence(3) == 2


@pytest.mark.asyncio
async def test_unreachable_redis_raises():
    allocator = SequenceAllocator(UnreachableRedis())
    with pytest.raises(SequenceUnavailableError) as exc:
        await allocator.next_sequence(5)
    assert exc.value.status_code == 503
    assert exc.value.context == {"product_id": 5}
