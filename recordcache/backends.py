from __future__ import annotations

import asyncio
import logging
import random
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Protocol
from urllib.parse import quote

import httpx

from recordcache.config import Settings
from recordcache.models import Contact, ContactCreate, ContactFilters, ContactUpdate

logger = logging.getLogger("recordcache.backends")


def _contact_path(contact_id: str) -> str:
    return "/contacts/" + quote(contact_id, safe="")


class RecordBackendError(RuntimeError):
    def __init__(self, status_code: int, message: str) -> None:
        super().__init__(message)
        self.status_code = status_code


class ContactBackend(Protocol):
    """Backend of record for contacts. The cache never writes here itself."""

    async def get(self, contact_id: str) -> Contact | None: ...

    async def query(self, filters: ContactFilters) -> list[Contact]: ...

    async def create(self, data: ContactCreate) -> Contact: ...

    async def update(self, contact_id: str, changes: ContactUpdate) -> Contact | None: ...

    async def delete(self, contact_id: str) -> bool: ...

    async def close(self) -> None: ...


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def matches_filters(contact: Contact, filters: ContactFilters) -> bool:
    if filters.status is not None and contact.status != filters.status:
        return False
    if filters.interest_level is not None and contact.interest_level != filters.interest_level:
        return False
    if filters.company is not None and (contact.company or "").lower() != filters.company.lower():
        return False
    if filters.search:
        haystack = " ".join(
            value for value in (contact.name, contact.email, contact.company, contact.title) if value
        ).lower()
        if not all(token in haystack for token in filters.search.lower().split()):
            return False
    return True


class InMemoryContactBackend:
    """Process-local contact store used when no records API is configured."""

    def __init__(self, contacts: list[Contact] | None = None) -> None:
        self._contacts: dict[str, Contact] = {contact.id: contact for contact in contacts or []}
        self._lock = asyncio.Lock()

    async def get(self, contact_id: str) -> Contact | None:
        return self._contacts.get(contact_id)

    async def query(self, filters: ContactFilters) -> list[Contact]:
        matched = [contact for contact in self._contacts.values() if matches_filters(contact, filters)]
        matched.sort(key=lambda contact: contact.updated_at, reverse=True)
        return matched[filters.offset : filters.offset + filters.limit]

    async def create(self, data: ContactCreate) -> Contact:
        now = _utcnow()
        contact = Contact(id=f"local-{uuid.uuid4().hex[:12]}", created_at=now, updated_at=now, **data.model_dump())
        async with self._lock:
            self._contacts[contact.id] = contact
        return contact

    async def update(self, contact_id: str, changes: ContactUpdate) -> Contact | None:
        async with self._lock:
            current = self._contacts.get(contact_id)
            if current is None:
                return None
            merged = current.model_dump() | changes.model_dump(exclude_unset=True) | {"updated_at": _utcnow()}
            updated = Contact.model_validate(merged)
            self._contacts[contact_id] = updated
            return updated

    async def delete(self, contact_id: str) -> bool:
        async with self._lock:
            return self._contacts.pop(contact_id, None) is not None

    async def close(self) -> None:
        return None


@dataclass
class RequestResult:
    payload: Any | None
    status_code: int


class RestContactBackend:
    """Contact records served by a REST API under ``records_api_base``."""

    def __init__(self, settings: Settings, transport: httpx.AsyncBaseTransport | None = None) -> None:
        if not settings.records_api_base:
            raise ValueError("records_api_base must be configured for the REST backend.")
        self.settings = settings
        headers = {"Accept": "application/json", "User-Agent": "recordcache/0.1"}
        if settings.records_api_key:
            headers["Authorization"] = f"Bearer {settings.records_api_key}"
        self._http = httpx.AsyncClient(
            base_url=settings.records_api_base,
            timeout=settings.records_timeout_seconds,
            headers=headers,
            transport=transport,
        )

    async def close(self) -> None:
        await self._http.aclose()

    async def get(self, contact_id: str) -> Contact | None:
        result = await self._request_json(method="GET", path=_contact_path(contact_id), allow_404=True)
        if result.status_code == 404 or not isinstance(result.payload, dict):
            return None
        return Contact.model_validate(result.payload)

    async def query(self, filters: ContactFilters) -> list[Contact]:
        params = filters.model_dump(mode="json", exclude_none=True)
        result = await self._request_json(method="GET", path="/contacts", params=params)
        payload = result.payload
        if isinstance(payload, dict):
            payload = payload.get("results", [])
        if not isinstance(payload, list):
            return []
        return [Contact.model_validate(item) for item in payload if isinstance(item, dict)]

    async def create(self, data: ContactCreate) -> Contact:
        result = await self._request_json(method="POST", path="/contacts", json=data.model_dump(mode="json"))
        return self._contact_from_payload(result)

    async def update(self, contact_id: str, changes: ContactUpdate) -> Contact | None:
        result = await self._request_json(
            method="PATCH",
            path=_contact_path(contact_id),
            json=changes.model_dump(mode="json", exclude_unset=True),
            allow_404=True,
        )
        if result.status_code == 404:
            return None
        return self._contact_from_payload(result)

    async def delete(self, contact_id: str) -> bool:
        result = await self._request_json(method="DELETE", path=_contact_path(contact_id), allow_404=True)
        return result.status_code != 404

    async def _request_json(
        self,
        *,
        method: str,
        path: str,
        params: dict[str, Any] | None = None,
        json: Any | None = None,
        allow_404: bool = False,
    ) -> RequestResult:
        max_attempts = max(0, self.settings.records_retry_attempts)

        for attempt in range(max_attempts + 1):
            response = await self._http.request(method, path, params=params, json=json)
            payload = self._safe_json(response)
            status = response.status_code

            if status == 404 and allow_404:
                return RequestResult(payload=None, status_code=status)

            should_retry = status >= 500 or status == 429
            if should_retry and attempt < max_attempts:
                sleep_seconds = self._backoff_seconds(response.headers, attempt)
                logger.warning(
                    "Records API %s %s returned %d; retrying in %.2fs", method, path, status, sleep_seconds
                )
                await asyncio.sleep(sleep_seconds)
                continue

            if status >= 400:
                message = self._extract_error_message(payload) or f"Records API request failed with {status}."
                raise RecordBackendError(status, message)

            return RequestResult(payload=payload, status_code=status)

        raise RecordBackendError(500, "Records API request failed after retries.")

    @staticmethod
    def _contact_from_payload(result: RequestResult) -> Contact:
        if not isinstance(result.payload, dict):
            raise RecordBackendError(502, "Records API returned an unexpected payload.")
        return Contact.model_validate(result.payload)

    @staticmethod
    def _safe_json(response: httpx.Response) -> Any:
        try:
            return response.json()
        except ValueError:
            return None

    @staticmethod
    def _extract_error_message(payload: Any) -> str | None:
        if isinstance(payload, dict):
            for field_name in ("message", "error", "detail"):
                message = payload.get(field_name)
                if isinstance(message, str):
                    return message
        return None

    def _backoff_seconds(self, headers: httpx.Headers, attempt: int) -> float:
        retry_after = headers.get("retry-after")
        if retry_after:
            try:
                return max(0.0, float(retry_after))
            except ValueError:
                pass

        base = self.settings.records_backoff_base_seconds
        return min(8.0, base * (2**attempt) + random.uniform(0.0, 0.25))
