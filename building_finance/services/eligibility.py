"""Eligibility rules deciding which flats are charged in a quarter."""

from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Iterable, NamedTuple

ZERO = Decimal("0")
CENT = Decimal("0.01")


def quantize_amount(amount: Decimal) -> Decimal:
    """Round a currency amount to cents."""
    return Decimal(amount).quantize(CENT, rounding=ROUND_HALF_UP)


def is_service_charge_eligible(unit: Any) -> bool:
    return unit.area_units is not None and unit.area_units > 0


def is_ground_rent_eligible(unit: Any) -> bool:
    return unit.ground_rent is not None and unit.ground_rent > 0


class EligibleUnit(NamedTuple):
    """A flat selected for billing with its computed charges."""

    unit: Any
    base_amount: Decimal
    ground_rent_amount: Decimal

    @property
    def total_amount(self) -> Decimal:
        return self.base_amount + self.ground_rent_amount


def select_eligible_units(
    units: Iterable[Any],
    include_ground_rent: bool,
    rate_per_area_unit: Decimal | None,
) -> list[EligibleUnit]:
    """Select flats to charge and compute their base and ground rent amounts.

    A flat is included when it has a billable area, or when ground rent is
    requested and the flat has a ground rent. Ground-rent-only flats get a base
    amount of zero.

    Args:
        units: Flats (anything with ``area_units`` and ``ground_rent``)
        include_ground_rent: Whether annual ground rent is billed this quarter
        rate_per_area_unit: Service charge rate; None is treated as zero

    Returns:
        EligibleUnit tuples in input order
    """
    rate = rate_per_area_unit if rate_per_area_unit is not None else ZERO
    selected = []
    for unit in units:
        service_charge = is_service_charge_eligible(unit)
        ground_rent = include_ground_rent and is_ground_rent_eligible(unit)
        if not (service_charge or ground_rent):
            continue

        base_amount = quantize_amount(unit.area_units * rate) if service_charge else ZERO
        ground_rent_amount = quantize_amount(unit.ground_rent) if ground_rent else ZERO
        selected.append(EligibleUnit(unit, base_amount, ground_rent_amount))
    return selected


def total_eligible_area(units: Iterable[Any]) -> Decimal:
    """Sum area over service-charge-eligible flats."""
    return sum(
        (Decimal(unit.area_units) for unit in units if is_service_charge_eligible(unit)),
        start=ZERO,
    )


__all__ = [
    "EligibleUnit",
    "select_eligible_units",
    "total_eligible_area",
    "is_service_charge_eligible",
    "is_ground_rent_eligible",
    "quantize_amount",
]
