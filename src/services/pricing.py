# -*- coding: utf-8 -*-
"""
Checkout arithmetic.

All money is Decimal with two places. For one cart line:

    item_price      = unit_price * quantity
    production_cost = unit_production_cost * quantity
    platform_fee    = (item_price - production_cost) * platform_fee_percent / 100
    creator_revenue = item_price - production_cost - platform_fee

platform_fee is rounded half-up to the cent and creator_revenue takes the
remainder, so the three parts always add back to item_price exactly.
"""
from dataclasses import dataclass
from decimal import Decimal, ROUND_HALF_UP
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence

CENT = Decimal('0.01')


def to_money(value: Any) -> Decimal:
    """Coerce a number or numeric string to a 2-place Decimal."""
    return Decimal(str(value)).quantize(CENT, rounding=ROUND_HALF_UP)


def to_minor_units(amount: Any) -> int:
    """Dollars to cents: round(total * 100)."""
    return int((to_money(amount) * 100).to_integral_value(rounding=ROUND_HALF_UP))


@dataclass(frozen=True)
class LineBreakdown:
    item_price: Decimal
    production_cost: Decimal
    platform_fee: Decimal
    creator_revenue: Decimal

    def to_dict(self) -> Dict[str, float]:
        return {
            'item_price': float(self.item_price),
            'production_cost': float(self.production_cost),
            'platform_fee': float(self.platform_fee),
            'creator_revenue': float(self.creator_revenue),
        }


def line_breakdown(
    unit_price: Any,
    unit_production_cost: Any,
    quantity: int,
    platform_fee_percent: Any,
) -> LineBreakdown:
    """Split one line's revenue between production, platform and creator."""
    item_price = to_money(unit_price) * quantity
    production_cost = to_money(unit_production_cost) * quantity
    margin = item_price - production_cost
    platform_fee = (margin * Decimal(str(platform_fee_percent)) / 100).quantize(CENT, rounding=ROUND_HALF_UP)
    creator_revenue = item_price - production_cost - platform_fee
    return LineBreakdown(
        item_price=item_price,
        production_cost=production_cost,
        platform_fee=platform_fee,
        creator_revenue=creator_revenue,
    )


def resolve_variant(
    variants: Sequence[Mapping[str, Any]],
    size: Optional[str] = None,
    color: Optional[str] = None,
) -> Optional[Mapping[str, Any]]:
    """
    Pick the fulfillment variant for a requested size/color.

    An absent requested attribute matches anything. With no match the first
    known variant is used; with no variants at all, None.
    """
    if not variants:
        return None
    for variant in variants:
        if (not size or variant.get('size') == size) and (not color or variant.get('color') == color):
            return variant
    return variants[0]


def select_shipping_rate(
    rates: Iterable[Mapping[str, Any]],
    requested_id: Optional[str],
    fallback_rate: Any,
) -> Dict[str, Any]:
    """
    Choose a shipping rate: the requested id when offered, else the first
    offered rate, else a fixed fallback rate.
    """
    rates = list(rates)
    if requested_id:
        for rate in rates:
            if rate.get('id') == requested_id:
                return dict(rate, rate=to_money(rate['rate']))
    if rates:
        return dict(rates[0], rate=to_money(rates[0]['rate']))
    return {'id': 'STANDARD', 'name': 'Standard shipping', 'rate': to_money(fallback_rate)}


def aggregate_by_creator(lines: Iterable[Mapping[str, Any]]) -> Dict[str, Decimal]:
    """Sum creator_revenue per creator_id, preserving first-seen order."""
    totals: Dict[str, Decimal] = {}
    for line in lines:
        creator_id = line['creator_id']
        totals[creator_id] = totals.get(creator_id, Decimal('0.00')) + line['creator_revenue']
    return totals


def rate_to_dict(rate: Mapping[str, Any]) -> Dict[str, Any]:
    data = dict(rate)
    data['rate'] = float(to_money(rate['rate']))
    return data


def rates_to_list(rates: Iterable[Mapping[str, Any]]) -> List[Dict[str, Any]]:
    return [rate_to_dict(r) for r in rates]
