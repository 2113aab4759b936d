"""Response composer - merges function results into the planner's draft reply."""

from typing import Any

from src.core.messages import format_currency, get_message
from src.models import FunctionResult

SEARCH_SUMMARY_LIMIT = 3
SUMMARY_AMENITIES = 3


def format_property_summary(prop: dict[str, Any], locale: str | None = None, currency: str = "BRL") -> str:
    """WhatsApp-formatted card for one search hit."""
    amenities = prop.get("amenities") or []
    lines = [f"🏠 *{prop.get('name', '')}*"]
    if prop.get("location"):
        lines.append(f"📍 {prop['location']}")
    lines.append(
        f"🛏️ {prop.get('bedrooms', 0)} {get_message('bedrooms', locale)}"
        f" | 👥 {prop.get('maxGuests', 0)} {get_message('guests', locale)}"
    )
    lines.append(
        f"💰 {format_currency(float(prop.get('pricePerNight') or 0), currency, locale)}"
        f"{get_message('per_night', locale)}"
    )
    if amenities:
        shown = ", ".join(amenities[:SUMMARY_AMENITIES])
        lines.append(f"⭐ {shown}{'...' if len(amenities) > SUMMARY_AMENITIES else ''}")
    return "\n".join(lines)


def format_search_summary(data: Any, locale: str | None = None, currency: str = "BRL") -> str | None:
    properties = data.get("properties") if isinstance(data, dict) else data
    if not properties:
        return None
    cards = [format_property_summary(p, locale, currency) for p in properties[:SEARCH_SUMMARY_LIMIT]]
    return "\n\n".join([get_message("search_header", locale), *cards])


def format_quote_breakdown(quote: dict[str, Any], locale: str | None = None) -> str:
    """Price breakdown with every amount formatted as currency."""
    currency = quote.get("currency", "BRL")

    def money(key: str) -> str:
        return format_currency(float(quote.get(key) or 0), currency, locale)

    lines = [
        get_message("quote_title", locale),
        get_message("quote_nights", locale, nights=quote.get("nights", 0), amount=money("subtotal")),
    ]
    if quote.get("extraGuestFee"):
        lines.append(get_message("quote_extra_guests", locale, amount=money("extraGuestFee")))
    if quote.get("cleaningFee"):
        lines.append(get_message("quote_cleaning", locale, amount=money("cleaningFee")))
    if quote.get("serviceFee"):
        lines.append(get_message("quote_service", locale, amount=money("serviceFee")))
    lines.append(get_message("quote_total", locale, amount=money("total")))
    return "\n".join(lines)


def compose_reply(
    draft: str,
    results: list[FunctionResult],
    locale: str | None = None,
    currency: str = "BRL",
) -> str:
    """Build the outbound reply for a turn. Never returns an empty string.

    Args:
        draft: The planner's draft reply, possibly empty
        results: One result per requested call, in request order
        locale: Customer-facing language
        currency: Currency for formatted amounts

    Returns:
        The draft followed by result messages and summaries. When every call
        was suppressed as a duplicate, a redirecting message replaces the
        draft. A sole failed call adds a localized failure message.
    """
    draft = (draft or "").strip()

    redirects: list[str] = []
    for result in results:
        if result.suppressed:
            text = get_message(f"already_handled.{result.function_name}", locale)
            if text not in redirects:
                redirects.append(text)

    if results and all(r.suppressed for r in results):
        return "\n\n".join(redirects)

    parts = [draft] if draft else []

    for result in results:
        if result.suppressed or not result.success:
            continue
        if result.message:
            parts.append(result.message)
        if result.function_name == "search_properties" and result.data:
            summary = format_search_summary(result.data, locale, currency)
            if summary:
                parts.append(summary)
        elif result.function_name == "calculate_price" and isinstance(result.data, dict):
            parts.append(format_quote_breakdown(result.data, locale))

    parts.extend(redirects)

    failed = [r for r in results if not r.success]
    if len(results) == 1 and failed and failed[0].error != "unknown_function":
        parts.append(get_message(f"function_failed.{failed[0].error}", locale))

    if not parts:
        return get_message("fallback_reply", locale)
    return "\n\n".join(parts)
