"""Abstract base class for storage backends."""

from abc import ABC, abstractmethod
from collections.abc import Callable
from typing import Any

# A document is a plain dict; every document stores its own id under "id".
Document = dict[str, Any]

# (field, operator, value); operators: ==, !=, <, <=, >, >=, in, array_contains
Filter = tuple[str, str, Any]

MutateFn = Callable[[Document], Document | None]

SUPPORTED_OPERATORS = frozenset({"==", "!=", "<", "<=", ">", ">=", "in", "array_contains"})


class StorageBackend(ABC):
    """Tenant-scoped document store.

    Every call names a tenant and a collection; there is no way to address
    a document without its tenant, so cross-tenant reads are impossible
    through this interface. ``find_owner`` is the one exception and exists
    so callers can tell "missing" apart from "owned by someone else".
    """

    # ==================== Document Operations ====================

    @abstractmethod
    async def get(self, tenant_id: str, collection: str, doc_id: str) -> Document | None:
        """Get a document by ID."""
        ...

    @abstractmethod
    async def create(
        self,
        tenant_id: str,
        collection: str,
        data: Document,
        doc_id: str | None = None,
        unique_key: str | None = None,
    ) -> Document:
        """Create a document.

        Args:
            tenant_id: Owning tenant
            collection: Collection name
            data: Document body
            doc_id: Explicit ID; generated when omitted
            unique_key: Optional key that must be unique within
                (tenant, collection) among documents still holding it

        Returns:
            The stored document, including its ``id``

        Raises:
            DuplicateDocumentError: If ``doc_id`` or ``unique_key`` is taken
        """
        ...

    @abstractmethod
    async def update(
        self,
        tenant_id: str,
        collection: str,
        doc_id: str,
        fields: Document,
    ) -> Document | None:
        """Shallow-merge fields into a document. Returns None if missing."""
        ...

    @abstractmethod
    async def update_atomic(
        self,
        tenant_id: str,
        collection: str,
        doc_id: str,
        mutate: MutateFn,
    ) -> Document | None:
        """Read-modify-write a document without lost updates.

        ``mutate`` receives a copy of the current document and returns the
        fields to write, or None to leave the document untouched.
        """
        ...

    @abstractmethod
    async def delete(self, tenant_id: str, collection: str, doc_id: str) -> bool:
        """Delete a document."""
        ...

    @abstractmethod
    async def query(
        self,
        tenant_id: str,
        collection: str,
        filters: list[Filter] | None = None,
        order_by: str | None = None,
        descending: bool = False,
        limit: int | None = None,
    ) -> list[Document]:
        """Query documents in one tenant's collection."""
        ...

    # ==================== Unique Keys ====================

    @abstractmethod
    async def release_unique(self, tenant_id: str, collection: str, unique_key: str) -> bool:
        """Free a unique key so a new document may claim it."""
        ...

    # ==================== Ownership ====================

    @abstractmethod
    async def find_owner(self, collection: str, doc_id: str) -> str | None:
        """Return the tenant that owns a document ID, if any."""
        ...

    # ==================== Health Check ====================

    @abstractmethod
    async def health_check(self) -> bool:
        """Check if storage is healthy."""
        ...


def matches(document: Document, filters: list[Filter] | None) -> bool:
    """Evaluate query filters against a document in memory."""
    for field, op, value in filters or []:
        if op not in SUPPORTED_OPERATORS:
            raise ValueError(f"Unsupported filter operator: {op}")
        current = document.get(field)
        if op == "==":
            if current != value:
                return False
        elif op == "!=":
            if current == value:
                return False
        elif op == "in":
            if current not in value:
                return False
        elif op == "array_contains":
            if not isinstance(current, list) or value not in current:
                return False
        else:
            if current is None:
                return False
            if op == "<" and not current < value:
                return False
            if op == "<=" and not current <= value:
                return False
            if op == ">" and not current > value:
                return False
            if op == ">=" and not current >= value:
                return False
    return True
