"""
Test job cursor storage.
"""

import pytest
from sqlalchemy import func, select

from elevate.models import JobState


@pytest.mark.asyncio
async def test_unknown_job_has_no_state(state_store):
    assert await state_store.get("discovery:blocks") is None


@pytest.mark.asyncio
async def test_set_then_get(state_store):
    await state_store.set("discovery:blocks", {"lastPageNumber": 3})
    assert await state_store.get("discovery:blocks") == {"lastPageNumber": 3}

    await state_store.set("discovery:blocks", {"lastPageNumber": 4})
    assert await state_store.get("discovery:blocks") == {"lastPageNumber": 4}


@pytest.mark.asyncio
async def test_one_row_per_job(database, state_store):
    await state_store.set("discovery:assets", {"lastPageNumber": 1})
    await state_store.set("discovery:assets", {"lastPageNumber": 1})
    await state_store.set("discovery:assets", {"lastPageNumber": 2})

    async with database.session() as session:
        count = await session.execute(select(func.count(JobState.id)))
        assert count.scalar_one() == 1


@pytest.mark.asyncio
async def test_returned_state_is_a_copy(state_store):
    await state_store.set("discovery:transactions", {"sources": {"A": {"sync": False}}})

    state = await state_store.get("discovery:transactions")
    state["sources"]["A"]["sync"] = True

    assert await state_store.get("discovery:transactions") == {"sources": {"A": {"sync": False}}}
