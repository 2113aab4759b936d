"""Nightly pricing rules and quote calculation."""

from datetime import date, timedelta

from src.core.exceptions import FunctionError
from src.models import NightlyRate, PriceQuote, Property

SERVICE_FEE_RATE = 0.10

# (month, day) -> (name, multiplier)
FIXED_HOLIDAYS: dict[tuple[int, int], tuple[str, float]] = {
    (1, 1): ("Ano Novo", 1.5),
    (4, 21): ("Tiradentes", 1.2),
    (5, 1): ("Dia do Trabalho", 1.2),
    (9, 7): ("Independência", 1.3),
    (10, 12): ("Nossa Senhora", 1.2),
    (11, 2): ("Finados", 1.1),
    (11, 15): ("Proclamação", 1.2),
    (12, 25): ("Natal", 1.8),
}


def holiday_for(day: date) -> tuple[str, float] | None:
    """Holiday name and price multiplier for a date, if any."""
    fixed = FIXED_HOLIDAYS.get((day.month, day.day))
    if fixed:
        return fixed
    if (day.month == 12 and day.day >= 20) or (day.month == 1 and day.day <= 6):
        return ("Réveillon", 2.0)
    if day.month == 2 and 10 <= day.day <= 17:
        return ("Carnaval", 1.8)
    if day.month == 7:
        return ("Férias de Julho", 1.4)
    return None


def nightly_rate(prop: Property, day: date) -> NightlyRate:
    """Price of one night.

    The first matching rule wins: custom date price, holiday, high season,
    December, weekend, base price.
    """
    base = prop.base_price
    key = day.isoformat()

    if key in prop.custom_pricing:
        return NightlyRate(date=key, price=round(prop.custom_pricing[key], 2), reason="custom")

    holiday = holiday_for(day)
    if holiday:
        name, multiplier = holiday
        return NightlyRate(date=key, price=round(base * multiplier, 2), reason=f"holiday:{name}")

    if day.month in prop.high_season_months and prop.high_season_surcharge:
        return NightlyRate(
            date=key,
            price=round(base * (1 + prop.high_season_surcharge / 100), 2),
            reason="high_season",
        )

    if day.month == 12 and prop.december_surcharge:
        return NightlyRate(
            date=key,
            price=round(base * (1 + prop.december_surcharge / 100), 2),
            reason="december",
        )

    # Saturday and Sunday nights
    if day.weekday() >= 5 and prop.weekend_surcharge:
        return NightlyRate(
            date=key,
            price=round(base * (1 + prop.weekend_surcharge / 100), 2),
            reason="weekend",
        )

    return NightlyRate(date=key, price=round(base, 2), reason="base")


def calculate_quote(
    prop: Property,
    check_in: date,
    check_out: date,
    guests: int,
    currency: str = "BRL",
) -> PriceQuote:
    """Price a stay.

    Raises:
        FunctionError: ``validation`` for bad dates or minimum-stay violations,
            ``capacity`` when guests exceed the property's maximum
    """
    nights = (check_out - check_in).days
    if nights <= 0:
        raise FunctionError("checkOut must be after checkIn", error="validation")
    if nights < prop.minimum_nights:
        raise FunctionError(
            f"Minimum stay is {prop.minimum_nights} nights",
            error="validation",
        )
    if guests > prop.max_guests:
        raise FunctionError(
            f"Maximum of {prop.max_guests} guests for this property",
            error="capacity",
        )

    rates = [nightly_rate(prop, check_in + timedelta(days=i)) for i in range(nights)]
    subtotal = round(sum(rate.price for rate in rates), 2)

    extra_guests = max(0, guests - prop.included_guests)
    extra_guest_fee = round(extra_guests * prop.price_per_extra_guest * nights, 2)
    service_fee = round((subtotal + extra_guest_fee) * SERVICE_FEE_RATE, 2)
    total = round(subtotal + extra_guest_fee + prop.cleaning_fee + service_fee, 2)

    return PriceQuote(
        property_id=prop.id,
        property_name=prop.title,
        check_in=check_in.isoformat(),
        check_out=check_out.isoformat(),
        nights=nights,
        guests=guests,
        base_price=prop.base_price,
        nightly_rates=rates,
        subtotal=subtotal,
        extra_guests=extra_guests,
        extra_guest_fee=extra_guest_fee,
        cleaning_fee=round(prop.cleaning_fee, 2),
        service_fee=service_fee,
        total=total,
        average_per_night=round(subtotal / nights, 2),
        currency=currency,
    )


def stay_dates(check_in: date, check_out: date) -> list[date]:
    """Nights of a stay (check-out day excluded)."""
    return [check_in + timedelta(days=i) for i in range((check_out - check_in).days)]
