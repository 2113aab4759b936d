"""Context updater - folds a turn's function results into a context patch."""

from src.models import ConversationContext, ConversationPatch, FunctionResult, PendingReservation


def merge_context(context: ConversationContext, results: list[FunctionResult]) -> ConversationPatch | None:
    """Compute the context change caused by one turn.

    Pure function. Suppressed and failed results never touch the context.

    Args:
        context: Context as loaded at the start of the turn
        results: The turn's function results, in request order

    Returns:
        A partial patch, or None when no result is context-relevant
    """
    fields: dict = {}
    new_ids: list[str] = []

    for result in results:
        if result.suppressed or not result.success or not isinstance(result.data, dict):
            continue

        if result.function_name == "search_properties":
            fields["current_search_filters"] = dict(result.data.get("filters") or {})

        elif result.function_name == "get_property_details":
            property_id = result.data.get("id")
            if property_id and property_id not in context.interested_property_ids and property_id not in new_ids:
                new_ids.append(property_id)

        elif result.function_name == "create_reservation":
            data = result.data
            fields["pending_reservation"] = PendingReservation(
                reservation_id=data["reservationId"],
                property_id=data["propertyId"],
                property_name=data.get("propertyName"),
                check_in=data["checkIn"],
                check_out=data["checkOut"],
                guests=data["guests"],
                total_amount=data["totalAmount"],
                status=data.get("status", "pending"),
            )

    if new_ids:
        fields["add_interested_property_ids"] = new_ids

    if "current_search_filters" in fields and fields["current_search_filters"] == context.current_search_filters:
        del fields["current_search_filters"]
    if "pending_reservation" in fields and fields["pending_reservation"] == context.pending_reservation:
        del fields["pending_reservation"]

    if not fields:
        return None
    return ConversationPatch(**fields)
