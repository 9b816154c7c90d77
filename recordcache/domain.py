from __future__ import annotations

from typing import Any, Sequence

from recordcache.cache import RecordCache

LIST_TAG = "list"
AI_TAG = "ai"
ANALYSIS_TAG = "analysis"
ANALYSIS_NAMESPACE = "ai_analysis"


class EntityCache:
    """Typed view of a :class:`RecordCache` for one entity kind.

    Single records live in namespace ``kind`` and carry the ``kind`` tag.
    List results live in ``<kind>_list`` and additionally carry ``list`` and
    ``<kind>:list``, so :meth:`invalidate` can drop every cached list of this
    kind whenever one record changes.

    ``list_generation`` goes up on every list invalidation. A caller that
    fetched a list while a write happened can compare generations and skip
    caching a result that is already stale.
    """

    def __init__(
        self,
        cache: RecordCache,
        kind: str,
        *,
        ttl_seconds: float | None = None,
        list_ttl_seconds: float | None = None,
    ) -> None:
        self.cache = cache
        self.kind = kind
        self.list_namespace = f"{kind}_list"
        self.list_tag = f"{kind}:{LIST_TAG}"
        self.ttl_seconds = ttl_seconds
        self.list_ttl_seconds = list_ttl_seconds
        self.list_generation = 0

    @property
    def list_tags(self) -> tuple[str, ...]:
        return (self.kind, LIST_TAG, self.list_tag)

    def get(self, record_id: Any) -> Any | None:
        return self.cache.get(self.kind, record_id)

    def set(self, record_id: Any, record: Any, ttl_seconds: float | None = None) -> None:
        ttl = self.ttl_seconds if ttl_seconds is None else ttl_seconds
        self.cache.set(self.kind, record_id, record, ttl_seconds=ttl, tags=[self.kind])

    def get_list(self, filters: Any) -> list[Any] | None:
        return self.cache.get(self.list_namespace, filters)

    def set_list(self, filters: Any, records: Sequence[Any], ttl_seconds: float | None = None) -> None:
        ttl = self.list_ttl_seconds if ttl_seconds is None else ttl_seconds
        self.cache.set(
            self.list_namespace,
            filters,
            list(records),
            ttl_seconds=ttl,
            tags=list(self.list_tags),
        )

    def invalidate(self, record_id: Any) -> None:
        self.cache.delete(self.kind, record_id)
        self.invalidate_lists()

    def invalidate_lists(self) -> int:
        self.list_generation += 1
        return self.cache.delete_by_tag(self.list_tag)

    def invalidate_all(self) -> int:
        self.list_generation += 1
        return self.cache.delete_by_tag(self.kind)


class ContactCache(EntityCache):
    """Contacts, contact lists and per-contact AI analyses."""

    def __init__(
        self,
        cache: RecordCache,
        *,
        ttl_seconds: float | None = None,
        list_ttl_seconds: float | None = None,
        analysis_ttl_seconds: float | None = None,
    ) -> None:
        super().__init__(cache, "contact", ttl_seconds=ttl_seconds, list_ttl_seconds=list_ttl_seconds)
        self.analysis_ttl_seconds = analysis_ttl_seconds

    def get_analysis(self, contact_id: Any) -> Any | None:
        return self.cache.get(ANALYSIS_NAMESPACE, contact_id)

    def set_analysis(self, contact_id: Any, analysis: Any, ttl_seconds: float | None = None) -> None:
        ttl = self.analysis_ttl_seconds if ttl_seconds is None else ttl_seconds
        self.cache.set(ANALYSIS_NAMESPACE, contact_id, analysis, ttl_seconds=ttl, tags=[AI_TAG, ANALYSIS_TAG])

    def drop_analysis(self, contact_id: Any) -> bool:
        return self.cache.delete(ANALYSIS_NAMESPACE, contact_id)

    def invalidate(self, record_id: Any) -> None:
        super().invalidate(record_id)
        self.drop_analysis(record_id)

    def invalidate_all(self) -> int:
        return super().invalidate_all() + self.cache.delete_by_tag(ANALYSIS_TAG)
