"""Tenant-scoped commerce handlers registered with the function registry."""

from datetime import date, timedelta
from typing import Any
from uuid import uuid4

import structlog

from src.core.exceptions import FunctionError, PaymentProviderError, TenantIsolationError
from src.core.messages import format_currency, format_date, get_message
from src.core.timeutils import utc_now
from src.models import (
    Client,
    FunctionResult,
    OutgoingMessage,
    Property,
    Reservation,
    ReservationStatus,
    Transaction,
)
from src.services.channels.delivery import DeliveryDispatcher
from src.services.functions.pricing import calculate_quote, stay_dates
from src.services.functions.registry import FunctionContext, FunctionRegistry, FunctionSpec
from src.services.functions.schemas import (
    CalculatePriceArgs,
    CheckAvailabilityArgs,
    CreateReservationArgs,
    CreateTransactionArgs,
    GeneratePixPaymentArgs,
    GetPropertyDetailsArgs,
    PropertyRef,
    RegisterClientArgs,
    SearchPropertiesArgs,
    SendPropertyMediaArgs,
)
from src.services.payments.provider import PaymentProvider, map_provider_status
from src.services.ratelimit.limiter import SEARCH_POLICY, RateLimiter
from src.storage.base import StorageBackend

logger = structlog.get_logger()

CLIENTS = "clients"
PROPERTIES = "properties"
RESERVATIONS = "reservations"
TRANSACTIONS = "transactions"

MAX_SEARCH_RESULTS = 10
MAX_PHOTOS = 5
MAX_VIDEOS = 2

BLOCKING_STATUSES = {
    ReservationStatus.PENDING,
    ReservationStatus.PARTIAL_PAYMENT_PENDING,
    ReservationStatus.CONFIRMED,
    ReservationStatus.PAID,
}


def _compact(values: dict[str, Any]) -> dict[str, Any]:
    return {k: v for k, v in values.items() if v not in (None, [], {}, "")}


def _pending_reservation_scope(ctx: FunctionContext, arguments: dict[str, Any]) -> dict[str, Any]:
    """Name the reservation a call falls back on when it omits one."""
    if arguments.get("reservationId") or ctx.pending_reservation is None:
        return arguments
    return {**arguments, "reservationId": ctx.pending_reservation.reservation_id}


def find_by_name(properties: list[Property], name: str) -> Property | None:
    """Best match for a spoken property name: exact, then substring, then word overlap."""
    wanted = " ".join(name.split()).casefold()
    if not wanted:
        return None

    for prop in properties:
        if prop.title.casefold() == wanted:
            return prop
    for prop in properties:
        title = prop.title.casefold()
        if wanted in title or title in wanted:
            return prop

    wanted_words = {w for w in wanted.split() if len(w) > 2}
    best, best_score = None, 0
    for prop in properties:
        score = len(wanted_words & set(prop.title.casefold().split()))
        if score > best_score:
            best, best_score = prop, score
    return best


class CommerceFunctions:
    """Handlers for inventory, quoting, booking and payment requests.

    Each handler takes the call scope and its validated arguments and
    returns a FunctionResult. Expected failures are raised as FunctionError
    and converted by the registry.
    """

    def __init__(
        self,
        storage: StorageBackend,
        delivery: DeliveryDispatcher | None = None,
        payments: PaymentProvider | None = None,
    ) -> None:
        self.storage = storage
        self.delivery = delivery
        self.payments = payments

    # ==================== Lookups ====================

    async def _load_owned(self, ctx: FunctionContext, collection: str, doc_id: str) -> dict[str, Any]:
        """Load a record of the caller's tenant.

        Raises:
            TenantIsolationError: The ID belongs to another tenant
            FunctionError: ``not_found`` when nobody owns the ID
        """
        doc = await self.storage.get(ctx.tenant_id, collection, doc_id)
        if doc is not None:
            return doc

        owner = await self.storage.find_owner(collection, doc_id)
        if owner is not None and owner != ctx.tenant_id:
            logger.warning(
                "Cross-tenant record reference rejected",
                tenant_id=ctx.tenant_id,
                collection=collection,
                record_id=doc_id,
            )
            raise TenantIsolationError(collection, doc_id)
        raise FunctionError(f"{collection} not found: {doc_id}", error="not_found")

    async def _active_properties(self, ctx: FunctionContext) -> list[Property]:
        # Records written without an is_active flag count as active
        docs = await self.storage.query(ctx.tenant_id, PROPERTIES)
        properties = [Property.model_validate(doc) for doc in docs]
        return [p for p in properties if p.is_active]

    async def _resolve_property(self, ctx: FunctionContext, ref: PropertyRef) -> Property:
        if ref.property_id:
            return Property.model_validate(await self._load_owned(ctx, PROPERTIES, ref.property_id))

        match = find_by_name(await self._active_properties(ctx), ref.property_name or "")
        if match is None:
            raise FunctionError(f"Property not found: {ref.property_name}", error="not_found")
        return match

    async def _availability(
        self,
        ctx: FunctionContext,
        prop: Property,
        check_in: date,
        check_out: date,
    ) -> tuple[list[str], list[str]]:
        """Blocked nights and conflicting reservation IDs for a stay."""
        blocked_days = set(prop.unavailable_dates)
        blocked = [d.isoformat() for d in stay_dates(check_in, check_out) if d.isoformat() in blocked_days]

        docs = await self.storage.query(ctx.tenant_id, RESERVATIONS, [("property_id", "==", prop.id)])
        conflicts = []
        for doc in docs:
            reservation = Reservation.model_validate(doc)
            if reservation.status not in BLOCKING_STATUSES:
                continue
            if reservation.check_in < check_out and check_in < reservation.check_out:
                conflicts.append(reservation.id)
        return blocked, conflicts

    # ==================== Inventory ====================

    async def search_properties(self, ctx: FunctionContext, args: SearchPropertiesArgs) -> FunctionResult:
        properties = await self._active_properties(ctx)

        if args.location:
            location = args.location.casefold()
            properties = [
                p for p in properties
                if location in p.city.casefold()
                or location in p.neighborhood.casefold()
                or location in p.address.casefold()
            ]
        if args.max_guests:
            properties = [p for p in properties if p.max_guests >= args.max_guests]
        if args.bedrooms:
            properties = [p for p in properties if p.bedrooms >= args.bedrooms]
        if args.max_price:
            properties = [p for p in properties if p.base_price <= args.max_price]
        if args.property_type:
            wanted_type = args.property_type.casefold()
            properties = [p for p in properties if wanted_type in p.category.casefold()]
        if args.check_in and args.check_out:
            available = []
            for prop in properties:
                blocked, conflicts = await self._availability(ctx, prop, args.check_in, args.check_out)
                if not blocked and not conflicts:
                    available.append(prop)
            properties = available

        wanted_amenities = {a.casefold() for a in args.amenities}

        def _rank(prop: Property) -> tuple[int, float]:
            matches = len(wanted_amenities & {a.casefold() for a in prop.amenities})
            return (-matches, prop.base_price)

        properties.sort(key=_rank)
        filters = _compact(args.model_dump(mode="json", by_alias=True, exclude_none=True))

        logger.info(
            "Property search completed",
            tenant_id=ctx.tenant_id,
            filters=filters,
            found=len(properties),
        )

        message = (
            get_message("search_found", ctx.locale, count=len(properties))
            if properties
            else get_message("search_empty", ctx.locale)
        )
        return FunctionResult.ok(
            "search_properties",
            data={
                "properties": [p.summary() for p in properties[:MAX_SEARCH_RESULTS]],
                "totalFound": len(properties),
                "filters": filters,
            },
            message=message,
        )

    async def get_property_details(self, ctx: FunctionContext, args: GetPropertyDetailsArgs) -> FunctionResult:
        prop = await self._resolve_property(ctx, args)
        data = {
            **prop.summary(),
            "description": prop.description,
            "amenities": prop.amenities,
            "category": prop.category,
            "address": prop.address,
            "cleaningFee": prop.cleaning_fee,
            "minimumNights": prop.minimum_nights,
            "photoCount": len(prop.photos),
            "videoCount": len(prop.videos),
        }
        return FunctionResult.ok(
            "get_property_details",
            data=data,
            message=get_message("property_details", ctx.locale, name=prop.title),
        )

    async def calculate_price(self, ctx: FunctionContext, args: CalculatePriceArgs) -> FunctionResult:
        prop = await self._resolve_property(ctx, args)
        quote = calculate_quote(prop, args.check_in, args.check_out, args.guests, currency=ctx.currency)
        return FunctionResult.ok(
            "calculate_price",
            data=quote.model_dump(mode="json", by_alias=True),
            message=get_message("price_calculated", ctx.locale, nights=quote.nights, name=prop.title),
        )

    async def check_availability(self, ctx: FunctionContext, args: CheckAvailabilityArgs) -> FunctionResult:
        prop = await self._resolve_property(ctx, args)
        blocked, conflicts = await self._availability(ctx, prop, args.check_in, args.check_out)
        available = not blocked and not conflicts
        params = {
            "name": prop.title,
            "check_in": format_date(args.check_in, ctx.locale),
            "check_out": format_date(args.check_out, ctx.locale),
        }
        return FunctionResult.ok(
            "check_availability",
            data={
                "propertyId": prop.id,
                "propertyName": prop.title,
                "checkIn": args.check_in.isoformat(),
                "checkOut": args.check_out.isoformat(),
                "available": available,
                "unavailableDates": blocked,
            },
            message=get_message("availability_ok" if available else "availability_conflict", ctx.locale, **params),
        )

    async def send_property_media(self, ctx: FunctionContext, args: SendPropertyMediaArgs) -> FunctionResult:
        prop = await self._resolve_property(ctx, args)

        photos = sorted(prop.photos, key=lambda m: m.order)[:MAX_PHOTOS] if args.media_type != "videos" else []
        videos = sorted(prop.videos, key=lambda m: m.order)[:MAX_VIDEOS] if args.media_type != "photos" else []
        media = photos + videos

        if not media:
            return FunctionResult.ok(
                "send_property_media",
                data={"propertyId": prop.id, "sent": 0, "photos": 0, "videos": 0},
                message=get_message("media_empty", ctx.locale, name=prop.title),
            )
        if self.delivery is None:
            raise FunctionError("No outbound channel for media delivery", error="internal")

        sent = 0
        for item in media:
            delivered = await self.delivery.deliver(
                OutgoingMessage(
                    content=item.caption or prop.title,
                    recipient_id=ctx.channel_address,
                    media_url=item.url,
                )
            )
            sent += int(delivered)

        if sent == 0:
            raise FunctionError("Media delivery failed", error="internal")

        return FunctionResult.ok(
            "send_property_media",
            data={"propertyId": prop.id, "sent": sent, "photos": len(photos), "videos": len(videos)},
            message=get_message("media_sent", ctx.locale, count=sent, name=prop.title),
        )

    # ==================== Customers ====================

    async def register_client(self, ctx: FunctionContext, args: RegisterClientArgs) -> FunctionResult:
        fields = args.model_dump(exclude_none=True)
        fields["updated_at"] = utc_now()
        doc = await self.storage.update(ctx.tenant_id, CLIENTS, ctx.client_id, fields)
        if doc is None:
            raise FunctionError(f"Client not found: {ctx.client_id}", error="not_found")

        client = Client.model_validate(doc)
        return FunctionResult.ok(
            "register_client",
            data={"clientId": client.id, "name": client.name, "email": client.email, "phone": client.phone},
            message=get_message("client_registered", ctx.locale, name=client.name),
        )

    # ==================== Bookings and Payments ====================

    async def create_reservation(self, ctx: FunctionContext, args: CreateReservationArgs) -> FunctionResult:
        if args.check_in < utc_now().date():
            raise FunctionError("checkIn cannot be in the past", error="validation")

        prop = await self._resolve_property(ctx, args)
        quote = calculate_quote(prop, args.check_in, args.check_out, args.guests, currency=ctx.currency)

        blocked, conflicts = await self._availability(ctx, prop, args.check_in, args.check_out)
        if blocked or conflicts:
            raise FunctionError(f"{prop.title} is not available for the requested dates", error="conflict")

        reservation = Reservation(
            id=str(uuid4()),
            tenant_id=ctx.tenant_id,
            property_id=prop.id,
            client_id=ctx.client_id,
            conversation_id=ctx.conversation_id,
            code=uuid4().hex[:8].upper(),
            check_in=args.check_in,
            check_out=args.check_out,
            guests=args.guests,
            total_amount=quote.total,
        )
        await self.storage.create(ctx.tenant_id, RESERVATIONS, reservation.model_dump(), doc_id=reservation.id)

        logger.info(
            "Reservation created",
            tenant_id=ctx.tenant_id,
            reservation_id=reservation.id,
            property_id=prop.id,
            total=quote.total,
        )

        return FunctionResult.ok(
            "create_reservation",
            data={
                "reservationId": reservation.id,
                "code": reservation.code,
                "propertyId": prop.id,
                "propertyName": prop.title,
                "checkIn": args.check_in.isoformat(),
                "checkOut": args.check_out.isoformat(),
                "guests": args.guests,
                "totalAmount": quote.total,
                "status": reservation.status.value,
            },
            message=get_message("reservation_created", ctx.locale, code=reservation.code),
        )

    async def generate_pix_payment(self, ctx: FunctionContext, args: GeneratePixPaymentArgs) -> FunctionResult:
        if self.payments is None:
            raise PaymentProviderError("Payment provider is not configured")

        reservation_id = args.reservation_id or (
            ctx.pending_reservation.reservation_id if ctx.pending_reservation else None
        )
        reservation = None
        if reservation_id:
            reservation = Reservation.model_validate(await self._load_owned(ctx, RESERVATIONS, reservation_id))

        client_doc = await self.storage.get(ctx.tenant_id, CLIENTS, ctx.client_id)
        customer = None
        if client_doc:
            client = Client.model_validate(client_doc)
            customer = _compact({"name": client.name, "cellphone": client.phone, "email": client.email})

        charge = await self.payments.create_pix_qr_code(
            amount_cents=round(args.amount * 100),
            description=args.description,
            expires_in_minutes=args.expires_in_minutes,
            customer=customer,
            metadata={
                "tenantId": ctx.tenant_id,
                "externalId": ctx.idempotency_key or str(uuid4()),
                "conversationId": ctx.conversation_id,
            },
        )

        transaction = Transaction(
            id=str(uuid4()),
            tenant_id=ctx.tenant_id,
            amount=args.amount,
            description=args.description,
            status=map_provider_status(charge.status),
            reservation_id=reservation.id if reservation else None,
            property_id=reservation.property_id if reservation else None,
            client_id=ctx.client_id,
            conversation_id=ctx.conversation_id,
            provider="abacatepay",
            provider_payment_id=charge.id,
            provider_status=charge.status,
            br_code=charge.br_code,
            qr_code_image=charge.br_code_base64,
            expires_at=charge.expires_at,
        )
        await self.storage.create(ctx.tenant_id, TRANSACTIONS, transaction.model_dump(), doc_id=transaction.id)

        amount = format_currency(args.amount, ctx.currency, ctx.locale)
        return FunctionResult.ok(
            "generate_pix_payment",
            data={
                "transactionId": transaction.id,
                "providerPaymentId": charge.id,
                "amount": args.amount,
                "brCode": charge.br_code,
                "qrCodeImage": charge.br_code_base64,
                "expiresAt": charge.expires_at.isoformat() if charge.expires_at else None,
                "status": transaction.status.value,
            },
            message=get_message("pix_created", ctx.locale, amount=amount, br_code=charge.br_code),
        )

    async def create_transaction(self, ctx: FunctionContext, args: CreateTransactionArgs) -> FunctionResult:
        reservation_id = args.reservation_id or (
            ctx.pending_reservation.reservation_id if ctx.pending_reservation else None
        )
        if not reservation_id:
            raise FunctionError("No reservation to charge", error="validation")

        reservation = Reservation.model_validate(await self._load_owned(ctx, RESERVATIONS, reservation_id))
        property_doc = await self.storage.get(ctx.tenant_id, PROPERTIES, reservation.property_id)
        prop = Property.model_validate(property_doc) if property_doc else None

        percentage = (
            args.advance_payment_percentage
            or (prop.advance_payment_percentage if prop else None)
            or ctx.tenant_config.advance_payment_percentage
        )
        total = args.total_amount or reservation.total_amount
        amount = round(total * percentage / 100, 2)
        due = utc_now().date() + timedelta(days=ctx.tenant_config.payment_due_days)

        transaction = Transaction(
            id=str(uuid4()),
            tenant_id=ctx.tenant_id,
            amount=amount,
            description=f"Entrada {percentage:g}% - reserva {reservation.code}",
            category="reservation",
            payment_method=args.payment_method,
            reservation_id=reservation.id,
            client_id=reservation.client_id,
            property_id=reservation.property_id,
            conversation_id=ctx.conversation_id,
            due_date=due,
        )
        await self.storage.create(ctx.tenant_id, TRANSACTIONS, transaction.model_dump(), doc_id=transaction.id)
        await self.storage.update(
            ctx.tenant_id,
            RESERVATIONS,
            reservation.id,
            {"status": ReservationStatus.PARTIAL_PAYMENT_PENDING.value, "updated_at": utc_now()},
        )

        logger.info(
            "Advance payment transaction created",
            tenant_id=ctx.tenant_id,
            transaction_id=transaction.id,
            reservation_id=reservation.id,
            amount=amount,
        )

        return FunctionResult.ok(
            "create_transaction",
            data={
                "transactionId": transaction.id,
                "reservationId": reservation.id,
                "amount": amount,
                "percentage": percentage,
                "totalAmount": total,
                "dueDate": due.isoformat(),
                "paymentMethod": args.payment_method.value,
                "status": transaction.status.value,
            },
            message=get_message(
                "transaction_created",
                ctx.locale,
                amount=format_currency(amount, ctx.currency, ctx.locale),
                due_date=format_date(due, ctx.locale),
            ),
        )


def build_function_registry(
    storage: StorageBackend,
    delivery: DeliveryDispatcher | None = None,
    payments: PaymentProvider | None = None,
    rate_limiter: RateLimiter | None = None,
) -> FunctionRegistry:
    """Registry with every commerce function registered."""
    functions = CommerceFunctions(storage, delivery=delivery, payments=payments)
    registry = FunctionRegistry(storage, rate_limiter=rate_limiter)

    registry.register(FunctionSpec(
        name="search_properties",
        description="Search available properties with optional filters",
        args_model=SearchPropertiesArgs,
        handler=functions.search_properties,
        rate_limit_policy=SEARCH_POLICY,
    ))
    registry.register(FunctionSpec(
        name="get_property_details",
        description="Get full details of one property by ID or name",
        args_model=GetPropertyDetailsArgs,
        handler=functions.get_property_details,
    ))
    registry.register(FunctionSpec(
        name="calculate_price",
        description="Calculate the total price of a stay, including fees and surcharges",
        args_model=CalculatePriceArgs,
        handler=functions.calculate_price,
    ))
    registry.register(FunctionSpec(
        name="check_availability",
        description="Check whether a property is free for a date range",
        args_model=CheckAvailabilityArgs,
        handler=functions.check_availability,
    ))
    registry.register(FunctionSpec(
        name="send_property_media",
        description="Send photos and videos of a property to the customer",
        args_model=SendPropertyMediaArgs,
        handler=functions.send_property_media,
    ))
    registry.register(FunctionSpec(
        name="register_client",
        description="Register or update the customer's name, email and document",
        args_model=RegisterClientArgs,
        handler=functions.register_client,
    ))
    registry.register(FunctionSpec(
        name="create_reservation",
        description="Create a reservation once the customer confirms property, dates and guests",
        args_model=CreateReservationArgs,
        handler=functions.create_reservation,
        idempotent=True,
    ))
    registry.register(FunctionSpec(
        name="generate_pix_payment",
        description="Generate a PIX QR code payment request",
        args_model=GeneratePixPaymentArgs,
        handler=functions.generate_pix_payment,
        idempotent=True,
        key_scope=_pending_reservation_scope,
    ))
    registry.register(FunctionSpec(
        name="create_transaction",
        description="Create the advance-payment transaction for a reservation",
        args_model=CreateTransactionArgs,
        handler=functions.create_transaction,
        idempotent=True,
        key_scope=_pending_reservation_scope,
    ))

    return registry
