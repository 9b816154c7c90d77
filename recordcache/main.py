from __future__ import annotations

from contextlib import asynccontextmanager
from typing import Annotated

from fastapi import Depends, FastAPI, HTTPException, Query, Request
from fastapi.responses import JSONResponse

from recordcache.backends import ContactBackend, InMemoryContactBackend, RecordBackendError, RestContactBackend
from recordcache.cache import RecordCache
from recordcache.config import Settings, get_settings
from recordcache.domain import ANALYSIS_NAMESPACE, ContactCache, EntityCache
from recordcache.models import (
    CacheStatsResponse,
    CleanupResponse,
    Contact,
    ContactBatchCreate,
    ContactBatchResponse,
    ContactBatchUpdate,
    ContactCreate,
    ContactFilters,
    ContactListResponse,
    ContactUpdate,
    InvalidateResponse,
)
from recordcache.service import ContactService


class ServiceContainer:
    def __init__(self, settings: Settings, backend: ContactBackend | None = None) -> None:
        # the sweep thread belongs to the app lifespan, not to construction
        cache = RecordCache(
            max_entries=settings.cache_max_entries,
            default_ttl_seconds=settings.cache_default_ttl_seconds,
            sweep_interval_seconds=settings.cache_sweep_interval_seconds,
            autostart=False,
        )
        contacts = ContactCache(
            cache,
            ttl_seconds=settings.contact_cache_ttl_seconds,
            list_ttl_seconds=settings.contact_list_cache_ttl_seconds,
            analysis_ttl_seconds=settings.analysis_cache_ttl_seconds,
        )
        files = EntityCache(cache, "file", ttl_seconds=settings.file_cache_ttl_seconds)
        if backend is None:
            backend = RestContactBackend(settings) if settings.records_api_base else InMemoryContactBackend()

        self.settings = settings
        self.cache = cache
        self.contacts = contacts
        self.files = files
        self.backend = backend
        self.contact_service = ContactService(cache=cache, contacts=contacts, backend=backend)

    def namespace_sizes(self) -> dict[str, int]:
        namespaces = (
            self.contacts.kind,
            self.contacts.list_namespace,
            ANALYSIS_NAMESPACE,
            self.files.kind,
        )
        return {namespace: self.cache.get_namespace_size(namespace) for namespace in namespaces}

    def start(self) -> None:
        self.cache.start_sweeper()

    async def close(self) -> None:
        self.cache.shutdown()
        await self.backend.close()


def create_app(settings: Settings | None = None, backend: ContactBackend | None = None) -> FastAPI:
    settings = settings or get_settings()
    container = ServiceContainer(settings, backend=backend)

    @asynccontextmanager
    async def lifespan(_: FastAPI):
        container.start()
        try:
            yield
        finally:
            await container.close()

    app = FastAPI(title=settings.app_name, version=settings.app_version, lifespan=lifespan)
    app.state.container = container

    @app.exception_handler(RecordBackendError)
    async def backend_error_handler(_: Request, exc: RecordBackendError) -> JSONResponse:
        status_code = 502 if exc.status_code >= 500 else exc.status_code
        return JSONResponse(status_code=status_code, content={"detail": str(exc)})

    def get_contact_service() -> ContactService:
        return app.state.container.contact_service

    @app.get("/health")
    async def health() -> dict[str, str]:
        return {"status": "ok"}

    @app.get("/v1/contacts", response_model=ContactListResponse)
    async def list_contacts(
        filters: Annotated[ContactFilters, Query()],
        service: ContactService = Depends(get_contact_service),
    ) -> ContactListResponse:
        return await service.list_contacts(filters)

    @app.post("/v1/contacts/batch", response_model=ContactBatchResponse, status_code=201)
    async def create_contacts_batch(
        body: ContactBatchCreate,
        service: ContactService = Depends(get_contact_service),
    ) -> ContactBatchResponse:
        return ContactBatchResponse(results=await service.create_contacts_batch(body.contacts))

    # declared before /v1/contacts/{contact_id} so "batch" is not taken as an id
    @app.patch("/v1/contacts/batch", response_model=ContactBatchResponse)
    async def update_contacts_batch(
        body: ContactBatchUpdate,
        service: ContactService = Depends(get_contact_service),
    ) -> ContactBatchResponse:
        return ContactBatchResponse(results=await service.update_contacts_batch(body.updates))

    @app.get("/v1/contacts/{contact_id}", response_model=Contact)
    async def get_contact(contact_id: str, service: ContactService = Depends(get_contact_service)) -> Contact:
        contact = await service.get_contact(contact_id)
        if contact is None:
            raise HTTPException(status_code=404, detail="Contact not found")
        return contact

    @app.post("/v1/contacts", response_model=Contact, status_code=201)
    async def create_contact(body: ContactCreate, service: ContactService = Depends(get_contact_service)) -> Contact:
        return await service.create_contact(body)

    @app.patch("/v1/contacts/{contact_id}", response_model=Contact)
    async def update_contact(
        contact_id: str,
        body: ContactUpdate,
        service: ContactService = Depends(get_contact_service),
    ) -> Contact:
        contact = await service.update_contact(contact_id, body)
        if contact is None:
            raise HTTPException(status_code=404, detail="Contact not found")
        return contact

    @app.delete("/v1/contacts/{contact_id}", status_code=204)
    async def delete_contact(contact_id: str, service: ContactService = Depends(get_contact_service)) -> None:
        if not await service.delete_contact(contact_id):
            raise HTTPException(status_code=404, detail="Contact not found")

    @app.get("/v1/cache/stats", response_model=CacheStatsResponse)
    async def cache_stats(request: Request) -> CacheStatsResponse:
        container: ServiceContainer = request.app.state.container
        stats = container.contact_service.cache_stats()
        return CacheStatsResponse(
            hits=stats.hits,
            misses=stats.misses,
            size=stats.size,
            hit_rate=stats.hit_rate,
            last_cleanup=stats.last_cleanup,
            evictions=stats.evictions,
            expirations=stats.expirations,
            max_size=container.cache.max_size,
            namespaces=container.namespace_sizes(),
        )

    @app.post("/v1/cache/cleanup", response_model=CleanupResponse)
    async def cache_cleanup(service: ContactService = Depends(get_contact_service)) -> CleanupResponse:
        removed = service.cleanup()
        return CleanupResponse(removed=removed, size=service.cache_stats().size)

    @app.delete("/v1/cache/tags/{tag}", response_model=InvalidateResponse)
    async def invalidate_tag(tag: str, service: ContactService = Depends(get_contact_service)) -> InvalidateResponse:
        return InvalidateResponse(tag=tag, removed=service.invalidate_tag(tag))

    return app


app = create_app()
