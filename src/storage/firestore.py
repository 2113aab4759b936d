"""Firestore storage backend for production."""

import hashlib
import os
from uuid import uuid4

import structlog

from src.core.exceptions import DuplicateDocumentError
from src.storage.base import Document, Filter, MutateFn, StorageBackend

logger = structlog.get_logger()

UNIQUE_KEYS_COLLECTION = "_unique_keys"


class FirestoreStorage(StorageBackend):
    """Firestore storage implementation for production.

    Collection structure:
    - tenants/{tenant_id}/{collection}/{doc_id}
    - tenants/{tenant_id}/_unique_keys/{collection}:{sha1(unique_key)}

    ``find_owner`` relies on a collection-group index over the ``id`` field.
    """

    def __init__(self, project_id: str | None = None) -> None:
        self._project_id = project_id
        self._db = None
        self._initialized = False

    async def _ensure_initialized(self) -> None:
        """Lazy initialization of Firestore client."""
        if self._initialized:
            return

        try:
            from google.cloud import firestore

            # Check if using emulator
            if os.environ.get("FIRESTORE_EMULATOR_HOST"):
                logger.info("Using Firestore emulator")

            self._db = firestore.AsyncClient(project=self._project_id)
            self._initialized = True
            logger.info("Firestore client initialized", project=self._project_id)
        except Exception as e:
            logger.error("Failed to initialize Firestore", error=str(e))
            raise

    def _collection(self, tenant_id: str, collection: str):
        """Get reference to a tenant-scoped collection."""
        return self._db.collection("tenants").document(tenant_id).collection(collection)

    def _unique_ref(self, tenant_id: str, collection: str, unique_key: str):
        digest = hashlib.sha1(unique_key.encode("utf-8")).hexdigest()
        return self._collection(tenant_id, UNIQUE_KEYS_COLLECTION).document(f"{collection}:{digest}")

    # ==================== Document Operations ====================

    async def get(self, tenant_id: str, collection: str, doc_id: str) -> Document | None:
        await self._ensure_initialized()
        doc = await self._collection(tenant_id, collection).document(doc_id).get()
        if not doc.exists:
            return None
        return doc.to_dict()

    async def create(
        self,
        tenant_id: str,
        collection: str,
        data: Document,
        doc_id: str | None = None,
        unique_key: str | None = None,
    ) -> Document:
        await self._ensure_initialized()
        from google.cloud import firestore

        doc_id = doc_id or data.get("id") or str(uuid4())
        doc = {**data, "id": doc_id}
        doc_ref = self._collection(tenant_id, collection).document(doc_id)
        unique_ref = self._unique_ref(tenant_id, collection, unique_key) if unique_key else None

        @firestore.async_transactional
        async def _create(transaction) -> None:
            if unique_ref is not None:
                claim = await unique_ref.get(transaction=transaction)
                if claim.exists:
                    raise DuplicateDocumentError(
                        collection, unique_key, existing_id=claim.to_dict().get("doc_id")
                    )
            existing = await doc_ref.get(transaction=transaction)
            if existing.exists:
                raise DuplicateDocumentError(collection, doc_id, existing_id=doc_id)
            if unique_ref is not None:
                transaction.set(unique_ref, {"doc_id": doc_id, "key": unique_key})
            transaction.set(doc_ref, doc)

        await _create(self._db.transaction())
        return doc

    async def update(
        self,
        tenant_id: str,
        collection: str,
        doc_id: str,
        fields: Document,
    ) -> Document | None:
        await self._ensure_initialized()
        doc_ref = self._collection(tenant_id, collection).document(doc_id)
        snapshot = await doc_ref.get()
        if not snapshot.exists:
            return None
        await doc_ref.set(fields, merge=True)
        return {**snapshot.to_dict(), **fields}

    async def update_atomic(
        self,
        tenant_id: str,
        collection: str,
        doc_id: str,
        mutate: MutateFn,
    ) -> Document | None:
        await self._ensure_initialized()
        from google.cloud import firestore

        doc_ref = self._collection(tenant_id, collection).document(doc_id)

        @firestore.async_transactional
        async def _mutate(transaction) -> Document | None:
            snapshot = await doc_ref.get(transaction=transaction)
            if not snapshot.exists:
                return None
            current = snapshot.to_dict()
            fields = mutate(dict(current))
            if fields:
                transaction.set(doc_ref, fields, merge=True)
                current.update(fields)
            return current

        return await _mutate(self._db.transaction())

    async def delete(self, tenant_id: str, collection: str, doc_id: str) -> bool:
        await self._ensure_initialized()
        await self._collection(tenant_id, collection).document(doc_id).delete()
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
        await self._ensure_initialized()

        query = self._collection(tenant_id, collection)
        for field, op, value in filters or []:
            query = query.where(field, op, value)
        if order_by:
            query = query.order_by(order_by, direction="DESCENDING" if descending else "ASCENDING")
        if limit is not None:
            query = query.limit(limit)

        docs = await query.get()
        return [doc.to_dict() for doc in docs]

    # ==================== Unique Keys ====================

    async def release_unique(self, tenant_id: str, collection: str, unique_key: str) -> bool:
        await self._ensure_initialized()
        await self._unique_ref(tenant_id, collection, unique_key).delete()
        return True

    # ==================== Ownership ====================

    async def find_owner(self, collection: str, doc_id: str) -> str | None:
        await self._ensure_initialized()
        query = self._db.collection_group(collection).where("id", "==", doc_id).limit(1)
        docs = await query.get()
        for doc in docs:
            # tenants/{tenant_id}/{collection}/{doc_id}
            return doc.reference.parent.parent.id
        return None

    # ==================== Health Check ====================

    async def health_check(self) -> bool:
        try:
            await self._ensure_initialized()
            # Simple health check - try to access a collection
            await self._db.collection("_health").document("check").get()
            return True
        except Exception as e:
            logger.error("Firestore health check failed", error=str(e))
            return False
