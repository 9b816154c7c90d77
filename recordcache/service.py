from __future__ import annotations

import logging
import time
from typing import Sequence

from recordcache.backends import ContactBackend
from recordcache.cache import CacheStats, RecordCache
from recordcache.domain import ContactCache
from recordcache.models import (
    MAX_BATCH_SIZE,
    Contact,
    ContactBatchUpdateItem,
    ContactCreate,
    ContactFilters,
    ContactListResponse,
    ContactUpdate,
)

logger = logging.getLogger("recordcache")


def _check_batch_size(size: int) -> None:
    if size == 0:
        raise ValueError("Batch must contain at least one contact.")
    if size > MAX_BATCH_SIZE:
        raise ValueError(f"Batch size cannot exceed {MAX_BATCH_SIZE} contacts.")


class ContactService:
    """Cache-aside access to contacts.

    Reads go through :class:`ContactCache` and fall back to the backend on a
    miss. Writes go to the backend first and then refresh the cached record
    and drop every cached contact list, so list views see the change.
    """

    def __init__(self, cache: RecordCache, contacts: ContactCache, backend: ContactBackend) -> None:
        self.cache = cache
        self.contacts = contacts
        self.backend = backend

    async def get_contact(self, contact_id: str) -> Contact | None:
        cached = self.contacts.get(contact_id)
        if cached is not None:
            logger.debug("contact %s served from cache", contact_id)
            return cached

        started = time.perf_counter()
        contact = await self.backend.get(contact_id)
        took_ms = int((time.perf_counter() - started) * 1000)
        if contact is None:
            logger.debug("contact %s not found upstream (%dms)", contact_id, took_ms)
            return None

        self.contacts.set(contact_id, contact)
        logger.debug("contact %s fetched in %dms and cached", contact_id, took_ms)
        return contact

    async def list_contacts(self, filters: ContactFilters) -> ContactListResponse:
        cached = self.contacts.get_list(filters)
        if cached is not None:
            return ContactListResponse(results=cached, cached=True)

        generation = self.contacts.list_generation
        started = time.perf_counter()
        results = await self.backend.query(filters)
        took_ms = int((time.perf_counter() - started) * 1000)

        if self.contacts.list_generation != generation:
            # a write landed while the query was in flight
            logger.info("contact list fetched in %dms but not cached: contacts changed meanwhile", took_ms)
            return ContactListResponse(results=results, cached=False)

        for contact in results:
            self.contacts.set(contact.id, contact)
        self.contacts.set_list(filters, results)
        logger.info(
            "contact list fetched: %d results in %dms (filters=%s)",
            len(results),
            took_ms,
            filters.model_dump(exclude_none=True),
        )
        return ContactListResponse(results=results, cached=False)

    async def create_contact(self, data: ContactCreate) -> Contact:
        contact = await self.backend.create(data)
        self.contacts.set(contact.id, contact)
        self.contacts.invalidate_lists()
        logger.info("contact %s created", contact.id)
        return contact

    async def create_contacts_batch(self, items: Sequence[ContactCreate]) -> list[Contact]:
        _check_batch_size(len(items))
        created: list[Contact] = []
        try:
            for data in items:
                contact = await self.backend.create(data)
                self.contacts.set(contact.id, contact)
                created.append(contact)
        finally:
            self.contacts.invalidate_lists()
        logger.info("contact batch created: %d contacts", len(created))
        return created

    async def update_contact(self, contact_id: str, changes: ContactUpdate) -> Contact | None:
        contact = await self.backend.update(contact_id, changes)
        if contact is None:
            self.contacts.invalidate(contact_id)
            return None
        self.contacts.set(contact_id, contact)
        self.contacts.drop_analysis(contact_id)
        self.contacts.invalidate_lists()
        logger.info("contact %s updated", contact_id)
        return contact

    async def update_contacts_batch(self, updates: Sequence[ContactBatchUpdateItem]) -> list[Contact]:
        """Apply each update; ids unknown to the backend are skipped."""
        _check_batch_size(len(updates))
        updated: list[Contact] = []
        try:
            for item in updates:
                contact = await self.backend.update(item.id, item.changes)
                self.contacts.drop_analysis(item.id)
                if contact is None:
                    self.cache.delete(self.contacts.kind, item.id)
                    continue
                self.contacts.set(item.id, contact)
                updated.append(contact)
        finally:
            self.contacts.invalidate_lists()
        logger.info("contact batch updated: %d of %d contacts", len(updated), len(updates))
        return updated

    async def delete_contact(self, contact_id: str) -> bool:
        deleted = await self.backend.delete(contact_id)
        self.contacts.invalidate(contact_id)
        if deleted:
            logger.info("contact %s deleted", contact_id)
        return deleted

    def cache_stats(self) -> CacheStats:
        return self.cache.get_stats()

    def invalidate_tag(self, tag: str) -> int:
        if tag in self.contacts.list_tags:
            self.contacts.list_generation += 1
        removed = self.cache.delete_by_tag(tag)
        logger.info("invalidated tag %r: %d entries removed", tag, removed)
        return removed

    def cleanup(self) -> int:
        return self.cache.force_cleanup()
