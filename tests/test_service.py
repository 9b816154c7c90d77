from __future__ import annotations

import asyncio

import pytest

from recordcache.backends import InMemoryContactBackend
from recordcache.cache import RecordCache
from recordcache.domain import ContactCache
from recordcache.models import (
    Contact,
    ContactBatchUpdateItem,
    ContactCreate,
    ContactFilters,
    ContactStatus,
    ContactUpdate,
    InterestLevel,
)
from recordcache.service import ContactService


class CountingBackend(InMemoryContactBackend):
    def __init__(self) -> None:
        super().__init__()
        self.get_calls = 0
        self.query_calls = 0

    async def get(self, contact_id: str) -> Contact | None:
        self.get_calls += 1
        return await super().get(contact_id)

    async def query(self, filters: ContactFilters) -> list[Contact]:
        self.query_calls += 1
        return await super().query(filters)


def _service(cache: RecordCache) -> tuple[ContactService, CountingBackend]:
    backend = CountingBackend()
    contacts = ContactCache(cache, ttl_seconds=300.0, list_ttl_seconds=60.0)
    return ContactService(cache=cache, contacts=contacts, backend=backend), backend


@pytest.mark.asyncio
async def test_get_contact_populates_cache_on_miss(cache: RecordCache) -> None:
    service, backend = _service(cache)
    created = await backend.create(ContactCreate(first_name="John", email="john@example.com"))

    first = await service.get_contact(created.id)
    second = await service.get_contact(created.id)

    assert first == created
    assert second == created
    assert backend.get_calls == 1
    stats = cache.get_stats()
    assert (stats.hits, stats.misses) == (1, 1)


@pytest.mark.asyncio
async def test_missing_contact_is_not_cached(cache: RecordCache) -> None:
    service, backend = _service(cache)

    assert await service.get_contact("missing") is None
    assert await service.get_contact("missing") is None

    assert backend.get_calls == 2
    assert len(cache) == 0


@pytest.mark.asyncio
async def test_list_contacts_caches_list_and_records(cache: RecordCache) -> None:
    service, backend = _service(cache)
    jane = await backend.create(ContactCreate(first_name="Jane", email="jane@example.com"))
    await backend.create(ContactCreate(first_name="Sam", email="sam@example.com", status=ContactStatus.customer))

    first = await service.list_contacts(ContactFilters(status=ContactStatus.lead))
    second = await service.list_contacts(ContactFilters(status="lead"))

    assert first.cached is False
    assert second.cached is True
    assert [contact.id for contact in second.results] == [jane.id]
    assert backend.query_calls == 1

    assert await service.get_contact(jane.id) == jane
    assert backend.get_calls == 0


@pytest.mark.asyncio
async def test_writes_keep_list_views_consistent(cache: RecordCache) -> None:
    service, backend = _service(cache)
    filters = ContactFilters()
    jane = await service.create_contact(ContactCreate(first_name="Jane", email="jane@example.com"))

    listed = await service.list_contacts(filters)
    assert [contact.first_name for contact in listed.results] == ["Jane"]

    await service.create_contact(ContactCreate(first_name="Sam", email="sam@example.com"))
    listed = await service.list_contacts(filters)
    assert listed.cached is False
    assert {contact.first_name for contact in listed.results} == {"Jane", "Sam"}

    updated = await service.update_contact(jane.id, ContactUpdate(company="Acme"))
    assert updated is not None
    assert (await service.get_contact(jane.id)).company == "Acme"
    listed = await service.list_contacts(filters)
    assert listed.cached is False

    assert await service.delete_contact(jane.id) is True
    assert await service.get_contact(jane.id) is None
    listed = await service.list_contacts(filters)
    assert [contact.first_name for contact in listed.results] == ["Sam"]


@pytest.mark.asyncio
async def test_update_and_delete_of_unknown_contact(cache: RecordCache) -> None:
    service, _ = _service(cache)

    assert await service.update_contact("missing", ContactUpdate(title="CEO")) is None
    assert await service.delete_contact("missing") is False


@pytest.mark.asyncio
async def test_cache_passthroughs(cache: RecordCache, clock) -> None:
    service, backend = _service(cache)
    created = await backend.create(ContactCreate(first_name="John", email="john@example.com"))
    await service.get_contact(created.id)
    await service.list_contacts(ContactFilters())

    assert service.invalidate_tag("list") == 1

    clock.advance(301.0)
    assert service.cleanup() == 1
    assert service.cache_stats().size == 0


class GatedBackend(InMemoryContactBackend):
    """Blocks every query until ``release`` is set."""

    def __init__(self) -> None:
        super().__init__()
        self.entered = asyncio.Event()
        self.release = asyncio.Event()

    async def query(self, filters: ContactFilters) -> list[Contact]:
        results = await super().query(filters)
        self.entered.set()
        await self.release.wait()
        return results


@pytest.mark.asyncio
async def test_list_fetched_during_a_write_is_not_cached(cache: RecordCache) -> None:
    backend = GatedBackend()
    contacts = ContactCache(cache, ttl_seconds=300.0, list_ttl_seconds=60.0)
    service = ContactService(cache=cache, contacts=contacts, backend=backend)

    pending = asyncio.create_task(service.list_contacts(ContactFilters()))
    await backend.entered.wait()
    created = await service.create_contact(ContactCreate(first_name="Jane", email="jane@example.com"))
    backend.release.set()
    stale = await pending

    assert stale.results == []
    assert contacts.get_list(ContactFilters()) is None

    fresh = await service.list_contacts(ContactFilters())
    assert fresh.cached is False
    assert [contact.id for contact in fresh.results] == [created.id]
    assert (await service.list_contacts(ContactFilters())).cached is True


@pytest.mark.asyncio
async def test_invalidating_list_tag_also_discards_inflight_lists(cache: RecordCache) -> None:
    backend = GatedBackend()
    contacts = ContactCache(cache)
    service = ContactService(cache=cache, contacts=contacts, backend=backend)

    pending = asyncio.create_task(service.list_contacts(ContactFilters()))
    await backend.entered.wait()
    service.invalidate_tag("list")
    backend.release.set()
    await pending

    assert contacts.get_list(ContactFilters()) is None


@pytest.mark.asyncio
async def test_update_drops_cached_analysis(cache: RecordCache) -> None:
    service, backend = _service(cache)
    jane = await backend.create(ContactCreate(first_name="Jane", email="jane@example.com"))
    service.contacts.set_analysis(jane.id, {"score": 10})

    await service.update_contact(jane.id, ContactUpdate(interest_level=InterestLevel.hot))

    assert service.contacts.get_analysis(jane.id) is None


@pytest.mark.asyncio
async def test_create_contacts_batch_caches_each_and_clears_lists(cache: RecordCache) -> None:
    service, backend = _service(cache)
    await service.list_contacts(ContactFilters())

    created = await service.create_contacts_batch(
        [
            ContactCreate(first_name="Jane", email="jane@example.com"),
            ContactCreate(first_name="Sam", email="sam@example.com"),
        ]
    )

    assert [contact.first_name for contact in created] == ["Jane", "Sam"]
    assert cache.get_namespace_size("contact") == 2
    assert cache.get_namespace_size("contact_list") == 0
    assert service.contacts.list_generation == 1
    assert await service.get_contact(created[1].id) == created[1]
    assert backend.get_calls == 0


@pytest.mark.asyncio
async def test_update_contacts_batch_skips_unknown_ids(cache: RecordCache) -> None:
    service, backend = _service(cache)
    jane = await backend.create(ContactCreate(first_name="Jane", email="jane@example.com"))
    sam = await backend.create(ContactCreate(first_name="Sam", email="sam@example.com"))
    service.contacts.set_analysis(sam.id, {"score": 40})
    await service.list_contacts(ContactFilters())

    updated = await service.update_contacts_batch(
        [
            ContactBatchUpdateItem(id=jane.id, changes=ContactUpdate(company="Acme")),
            ContactBatchUpdateItem(id="missing", changes=ContactUpdate(company="Acme")),
            ContactBatchUpdateItem(id=sam.id, changes=ContactUpdate(status=ContactStatus.customer)),
        ]
    )

    assert [contact.id for contact in updated] == [jane.id, sam.id]
    assert service.contacts.get(jane.id).company == "Acme"
    assert service.contacts.get_analysis(sam.id) is None
    assert cache.get_namespace_size("contact_list") == 0


@pytest.mark.asyncio
async def test_batch_size_limits(cache: RecordCache) -> None:
    service, backend = _service(cache)
    too_many = [ContactCreate(first_name=f"C{index}", email=f"c{index}@example.com") for index in range(51)]

    with pytest.raises(ValueError, match="at least one"):
        await service.create_contacts_batch([])
    with pytest.raises(ValueError, match="cannot exceed 50"):
        await service.create_contacts_batch(too_many)
    with pytest.raises(ValueError, match="at least one"):
        await service.update_contacts_batch([])

    assert await backend.query(ContactFilters()) == []
