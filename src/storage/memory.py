"""In-memory storage backend for development and testing."""

import asyncio
from copy import deepcopy
from uuid import uuid4

from src.core.exceptions import DuplicateDocumentError
from src.storage.base import Document, Filter, MutateFn, StorageBackend, matches


class InMemoryStorage(StorageBackend):
    """In-memory storage implementation for development.

    A single lock serialises every operation, which makes unique-key
    creation and ``update_atomic`` trivially race-free. Documents are
    deep-copied on the way in and out so callers never share state.
    """

    def __init__(self) -> None:
        self._collections: dict[tuple[str, str], dict[str, Document]] = {}
        self._unique: dict[tuple[str, str, str], str] = {}
        self._lock = asyncio.Lock()

    def _bucket(self, tenant_id: str, collection: str) -> dict[str, Document]:
        return self._collections.setdefault((tenant_id, collection), {})

    # ==================== Document Operations ====================

    async def get(self, tenant_id: str, collection: str, doc_id: str) -> Document | None:
        async with self._lock:
            doc = self._bucket(tenant_id, collection).get(doc_id)
            return deepcopy(doc) if doc is not None else None

    async def create(
        self,
        tenant_id: str,
        collection: str,
        data: Document,
        doc_id: str | None = None,
        unique_key: str | None = None,
    ) -> Document:
        async with self._lock:
            bucket = self._bucket(tenant_id, collection)
            doc_id = doc_id or data.get("id") or str(uuid4())
            if doc_id in bucket:
                raise DuplicateDocumentError(collection, doc_id, existing_id=doc_id)
            if unique_key is not None:
                existing = self._unique.get((tenant_id, collection, unique_key))
                if existing is not None:
                    raise DuplicateDocumentError(collection, unique_key, existing_id=existing)
                self._unique[(tenant_id, collection, unique_key)] = doc_id

            doc = deepcopy(data)
            doc["id"] = doc_id
            bucket[doc_id] = doc
            return deepcopy(doc)

    async def update(
        self,
        tenant_id: str,
        collection: str,
        doc_id: str,
        fields: Document,
    ) -> Document | None:
        async with self._lock:
            doc = self._bucket(tenant_id, collection).get(doc_id)
            if doc is None:
                return None
            doc.update(deepcopy(fields))
            return deepcopy(doc)

    async def update_atomic(
        self,
        tenant_id: str,
        collection: str,
        doc_id: str,
        mutate: MutateFn,
    ) -> Document | None:
        async with self._lock:
            doc = self._bucket(tenant_id, collection).get(doc_id)
            if doc is None:
                return None
            fields = mutate(deepcopy(doc))
            if fields:
                doc.update(deepcopy(fields))
            return deepcopy(doc)

    async def delete(self, tenant_id: str, collection: str, doc_id: str) -> bool:
        async with self._lock:
            bucket = self._bucket(tenant_id, collection)
            if doc_id not in bucket:
                return False
            del bucket[doc_id]
            for key, owner in list(self._unique.items()):
                if key[:2] == (tenant_id, collection) and owner == doc_id:
                    del self._unique[key]
            return True

    async def query(
        self,
        tenant_id: str,
        collection: str,
        filters: list[Filter] | None = None,
        order_by: str | None = None,
        descending: bool = False,
        limit: int | None = None,
    ) -> list[Document]:
        async with self._lock:
            docs = [
                doc for doc in self._bucket(tenant_id, collection).values()
                if matches(doc, filters)
            ]
            if order_by:
                # Stable sort; reversing afterwards keeps ties in insertion order
                # once a caller flips a descending page back to chronological.
                docs.sort(key=lambda d: (d.get(order_by) is None, d.get(order_by)))
                if descending:
                    docs.reverse()
            if limit is not None:
                docs = docs[:limit]
            return deepcopy(docs)

    # ==================== Unique Keys ====================

    async def release_unique(self, tenant_id: str, collection: str, unique_key: str) -> bool:
        async with self._lock:
            return self._unique.pop((tenant_id, collection, unique_key), None) is not None

    # ==================== Ownership ====================

    async def find_owner(self, collection: str, doc_id: str) -> str | None:
        async with self._lock:
            for (tenant_id, name), bucket in self._collections.items():
                if name == collection and doc_id in bucket:
                    return tenant_id
            return None

    # ==================== Health Check ====================

    async def health_check(self) -> bool:
        return True

    # ==================== Development Helpers ====================

    async def clear_all(self) -> None:
        """Clear all data (for testing)."""
        async with self._lock:
            self._collections.clear()
            self._unique.clear()

    async def seed(self, tenant_id: str, collection: str, documents: list[Document]) -> None:
        """Bulk-load documents, e.g. a demo property catalogue."""
        for document in documents:
            await self.create(tenant_id, collection, document, doc_id=document.get("id"))

    def count(self, tenant_id: str, collection: str) -> int:
        """Number of documents in a collection (for tests)."""
        return len(self._collections.get((tenant_id, collection), {}))

    async def seed_demo_tenant(self, tenant_id: str = "demo") -> None:
        """Create a demo tenant with agent settings and a small catalogue."""
        await self.seed(tenant_id, "settings", [{
            "id": "agent",
            "company_name": "Demo Imóveis",
            "agent_name": "Sofia",
            "locale": "pt-BR",
        }])
        await self.seed(tenant_id, "properties", [
            {
                "id": "demo-copacabana",
                "tenant_id": tenant_id,
                "title": "Apartamento Vista Mar Copacabana",
                "description": "Apartamento amplo a uma quadra da praia.",
                "address": "Rua Barata Ribeiro, 100",
                "neighborhood": "Copacabana",
                "city": "Rio de Janeiro",
                "bedrooms": 2,
                "bathrooms": 2,
                "max_guests": 6,
                "capacity": 4,
                "base_price": 350.0,
                "price_per_extra_guest": 50.0,
                "cleaning_fee": 120.0,
                "weekend_surcharge": 20.0,
                "december_surcharge": 30.0,
                "amenities": ["wifi", "ar-condicionado", "vista para o mar", "cozinha"],
                "photos": [{"url": "https://example.com/demo/copa-1.jpg", "order": 1}],
            },
            {
                "id": "demo-ipanema",
                "tenant_id": tenant_id,
                "title": "Studio Ipanema",
                "description": "Studio compacto perto do metrô.",
                "neighborhood": "Ipanema",
                "city": "Rio de Janeiro",
                "bedrooms": 1,
                "bathrooms": 1,
                "max_guests": 2,
                "base_price": 220.0,
                "cleaning_fee": 80.0,
                "amenities": ["wifi", "ar-condicionado"],
            },
        ])
