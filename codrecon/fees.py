"""
fees.py — Fee Model Registry.

Every source's settlement schedule is a FeeSchedule row in FEE_SCHEDULES.
One pure costing function applies any row, so supporting a new courier is
a table entry (or a `fee_schedules` block in config.yaml), not new code.

Per-order rules:
    Delivered   net = gross - fee - tax - withholding_tax
    Returned    net = -fee            (return handling fee only)
    otherwise   net = 0               (contributes nothing until resolved)

Fees are proportional to gross: a zero or negative gross yields zero
fee, tax and withholding, flat amounts included.

Amounts are costed as Decimal rupees rounded to the paisa, so for a
Delivered order net + fee + tax + withholding_tax == gross holds exactly.
The costed frame carries them as floats.
"""

import logging
import math
from decimal import ROUND_HALF_UP, Decimal
from dataclasses import fields, replace
from functools import partial
from typing import Any, Callable, Mapping

import pandas as pd

from codrecon.models import COST_COLUMNS, FeeSchedule, OrderOutcome
from codrecon.normalizer import to_amount

logger = logging.getLogger(__name__)

FEE_SCHEDULES: dict[str, FeeSchedule] = {
    # Percentage fee + GST on the fee + income-tax withholding
    "postex": FeeSchedule(
        fee_rate=0.04,
        tax_rate=0.0064,
        withholding_rate=0.02,
        return_fee_rate=0.04,
    ),
    "tranzo": FeeSchedule(
        fee_rate=0.045,
        tax_rate=0.0072,
        return_fee_rate=0.045,
    ),
    # Flat delivery charge; commission is booked in the tax column
    "zoom": FeeSchedule(
        fee_flat=150.0,
        tax_rate=0.04,
        return_fee_flat=150.0,
    ),
    # Storefront feed: revenue only, nothing is settled against it
    "shopify": FeeSchedule(settles=False),
}

ZERO_SCHEDULE = FeeSchedule(settles=False)

CENT = Decimal("0.01")

CostFunction = Callable[[Mapping[str, Any]], dict[str, Decimal]]


def build_schedules(cfg: dict[str, Any] | None = None) -> dict[str, FeeSchedule]:
    """Return the built-in table with `fee_schedules` overrides applied.

    Unknown sources in the config become new table entries.
    """
    schedules = dict(FEE_SCHEDULES)
    overrides = (cfg or {}).get("fee_schedules") or {}
    known = {f.name for f in fields(FeeSchedule)}
    for source, values in overrides.items():
        values = {k: v for k, v in (values or {}).items() if k in known}
        base = schedules.get(source.lower(), FeeSchedule())
        schedules[source.lower()] = replace(base, **values)
        logger.debug("Fee schedule for %s overridden: %s", source, values)
    return schedules


def to_money(value: Any) -> Decimal:
    """Vendor amount as Decimal rupees, rounded half-up to the paisa."""
    return Decimal(repr(to_amount(value))).quantize(CENT, rounding=ROUND_HALF_UP)


def _rate(value: float) -> Decimal:
    return Decimal(repr(float(value)))


def _money(value: Decimal) -> Decimal:
    return value.quantize(CENT, rounding=ROUND_HALF_UP)


def cost_order(order: Mapping[str, Any], schedule: FeeSchedule) -> dict[str, Decimal]:
    """Compute fee, tax, withholding, upfront and net for one normalized order.

    Args:
        order: A normalized order row (mapping with outcome, gross_amount, ...).
        schedule: The source's fee schedule.

    Returns:
        Dict keyed by COST_COLUMNS, values as Decimal rupees.
    """
    outcome = order.get("outcome")
    gross = to_money(order.get("gross_amount"))
    upfront = to_money(order.get("upfront_payment"))
    zero = Decimal("0.00")
    fee = tax = withholding = zero

    if outcome == OrderOutcome.DELIVERED.value and gross > 0:
        fee = _money(gross * _rate(schedule.fee_rate) + _rate(schedule.fee_flat))
        tax = _money(gross * _rate(schedule.tax_rate))
        withholding = _money(gross * _rate(schedule.withholding_rate))
        net = gross - fee - tax - withholding
    elif outcome == OrderOutcome.DELIVERED.value:
        net = gross
    elif outcome == OrderOutcome.RETURNED.value:
        fee = _return_fee(order, gross, schedule)
        net = zero - fee
    else:
        net = zero

    return {
        "fee": fee,
        "tax": tax,
        "withholding_tax": withholding,
        "upfront_payment": upfront,
        "net_amount": net,
    }


def _return_fee(order: Mapping[str, Any], gross: Decimal, schedule: FeeSchedule) -> Decimal:
    if schedule.use_vendor_reversal:
        vendor_fee = order.get("vendor_reversal_fee")
        vendor_tax = order.get("vendor_reversal_tax")
        present = [
            v for v in (vendor_fee, vendor_tax)
            if v is not None and not (isinstance(v, float) and math.isnan(v))
        ]
        if present:
            return sum((to_money(v) for v in present), Decimal("0.00"))
    if gross <= 0:
        return Decimal("0.00")
    return _money(gross * _rate(schedule.return_fee_rate) + _rate(schedule.return_fee_flat))



def fee_function(source: str, schedules: Mapping[str, FeeSchedule] | None = None) -> CostFunction:
    """Look up the costing function registered for a source."""
    table = FEE_SCHEDULES if schedules is None else schedules
    schedule = table.get(source.lower())
    if schedule is None:
        logger.warning("No fee schedule for source %r; costing with zero fees", source)
        schedule = ZERO_SCHEDULE
    return partial(cost_order, schedule=schedule)


def apply_fee_model(
    orders: pd.DataFrame,
    schedules: Mapping[str, FeeSchedule] | None = None,
) -> pd.DataFrame:
    """Cost every normalized order with its source's schedule.

    Args:
        orders: Normalized order frame (see normalizer.normalize_orders).
        schedules: Fee table; defaults to the built-in FEE_SCHEDULES.

    Returns:
        Copy of `orders` with fee, tax, withholding_tax, upfront_payment
        and net_amount columns.
    """
    df = orders.copy()
    if df.empty:
        for col in COST_COLUMNS:
            df[col] = pd.Series(dtype=float)
        return df

    costs = []
    functions: dict[str, CostFunction] = {}
    for row in df.to_dict(orient="records"):
        source = str(row.get("source") or "")
        if source not in functions:
            functions[source] = fee_function(source, schedules)
        costs.append(functions[source](row))

    cost_df = pd.DataFrame(costs, index=df.index, columns=COST_COLUMNS)
    for col in COST_COLUMNS:
        df[col] = cost_df[col].astype(float)

    delivered = df["outcome"] == OrderOutcome.DELIVERED.value
    logger.info(
        "Costed %d orders | delivered gross %.2f | fees %.2f | net %.2f",
        len(df),
        df.loc[delivered, "gross_amount"].sum(),
        df["fee"].sum(),
        df["net_amount"].sum(),
    )
    return df
