import asyncio
import uuid

import pytest

from siteqa.core.nonconformance.errors import VersionConflict
from siteqa.core.nonconformance.store import InMemoryNcrStore


def test_load_by_id(make_ncr):
    ncr = make_ncr()
    store = InMemoryNcrStore([ncr])
    assert asyncio.run(store.load_by_id(ncr.id)) == ncr
    assert asyncio.run(store.load_by_id(uuid.uuid4())) is None


def test_conditional_update_bumps_version(make_ncr):
    ncr = make_ncr()
    store = InMemoryNcrStore([ncr])
    updated = asyncio.run(store.conditional_update(ncr.id, "open", 1, {"status": "investigating"}))
    assert updated.status == "investigating"
    assert updated.version == 2
    assert store.get(ncr.id) == updated
    assert ncr.status == "open"


@pytest.mark.parametrize("expected_status,expected_version", [
    ("investigating", 1),
    ("open", 2),
])
def test_conditional_update_rejects_stale_reads(make_ncr, expected_status, expected_version):
    ncr = make_ncr()
    store = InMemoryNcrStore([ncr])
    with pytest.raises(VersionConflict):
        asyncio.run(store.conditional_update(ncr.id, expected_status, expected_version, {"status": "closed"}))
    assert store.get(ncr.id) == ncr


def test_conditional_update_unknown_id():
    store = InMemoryNcrStore()
    with pytest.raises(VersionConflict):
        asyncio.run(store.conditional_update(uuid.uuid4(), "open", 1, {}))


def test_only_one_of_two_writers_with_same_read_wins(make_ncr):
    ncr = make_ncr()
    store = InMemoryNcrStore([ncr])

    async def scenario():
        return await asyncio.gather(
            store.conditional_update(ncr.id, "open", 1, {"status": "investigating"}),
            store.conditional_update(ncr.id, "open", 1, {"status": "investigating"}),
            return_exceptions=True,
        )

    results = asyncio.run(scenario())
    assert sum(isinstance(r, VersionConflict) for r in results) == 1
    assert store.get(ncr.id).version == 2
