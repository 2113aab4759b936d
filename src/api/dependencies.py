"""FastAPI dependencies for dependency injection."""

from dataclasses import dataclass
from typing import Annotated

from fastapi import Depends, Header, Request

from src.core.config import Settings, settings
from src.core.exceptions import AuthenticationError
from src.services.channels.whatsapp import TwilioWhatsAppAdapter, get_whatsapp_adapter
from src.services.conversation.engine import ConversationEngine, get_conversation_engine
from src.services.conversation.store import ConversationStore
from src.services.payments.reconciliation import PaymentReconciler
from src.storage.base import StorageBackend
from src.storage.memory import InMemoryStorage


# Storage singleton
_storage: StorageBackend | None = None


def get_storage() -> StorageBackend:
    """Get the storage backend singleton.

    ``storage_backend=firestore`` selects Firestore, anything else the
    in-memory store.
    """
    global _storage
    if _storage is None:
        if settings.storage_backend == "firestore":
            from src.storage.firestore import FirestoreStorage
            _storage = FirestoreStorage(project_id=settings.gcp_project_id or None)
        else:
            _storage = InMemoryStorage()
    return _storage


def reset_storage() -> None:
    """Reset the storage singleton (for testing)."""
    global _storage
    _storage = None


# Type aliases for cleaner dependency injection
StorageDep = Annotated[StorageBackend, Depends(get_storage)]
SettingsDep = Annotated[Settings, Depends(lambda: settings)]


def get_engine(storage: StorageDep) -> ConversationEngine:
    """Get conversation engine with storage dependency."""
    return get_conversation_engine(storage)


def get_store(storage: StorageDep) -> ConversationStore:
    return ConversationStore(storage)


def get_reconciler(storage: StorageDep) -> PaymentReconciler:
    return PaymentReconciler(storage)


EngineDep = Annotated[ConversationEngine, Depends(get_engine)]
StoreDep = Annotated[ConversationStore, Depends(get_store)]
ReconcilerDep = Annotated[PaymentReconciler, Depends(get_reconciler)]
WhatsAppDep = Annotated[TwilioWhatsAppAdapter, Depends(get_whatsapp_adapter)]


@dataclass(frozen=True)
class Principal:
    """Caller identity, already authenticated by the gateway."""

    tenant_id: str
    user_id: str


async def get_principal(
    x_tenant_id: Annotated[str | None, Header()] = None,
    x_user_id: Annotated[str | None, Header()] = None,
) -> Principal:
    """Read the pre-validated principal headers.

    There is no fallback tenant: a request without one is rejected.
    """
    tenant_id = (x_tenant_id or "").strip()
    user_id = (x_user_id or "").strip()
    if not tenant_id or not user_id:
        raise AuthenticationError("Missing tenant principal")
    return Principal(tenant_id=tenant_id, user_id=user_id)


PrincipalDep = Annotated[Principal, Depends(get_principal)]


async def verify_twilio_signature(
    request: Request,
    x_twilio_signature: Annotated[str | None, Header()] = None,
) -> bool:
    """Verify Twilio webhook signature.

    Enforced everywhere except development.
    """
    if settings.is_development:
        return True

    if not x_twilio_signature:
        raise AuthenticationError("Missing Twilio signature")

    # Get adapter and validate
    adapter = get_whatsapp_adapter()
    form = await request.form()

    if not adapter.validate_webhook(str(request.url), dict(form), x_twilio_signature):
        raise AuthenticationError("Invalid Twilio signature")

    return True


TwilioAuthDep = Annotated[bool, Depends(verify_twilio_signature)]
