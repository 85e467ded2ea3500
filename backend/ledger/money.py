# Overview: Currency rounding and receipt tax helpers.

from __future__ import annotations

import math

# Tolerance for "paid in full" comparisons on floating amounts
EPSILON = 1e-6

# Reported drift above this is treated as a stored/canonical mismatch
MISMATCH_TOLERANCE = 0.01


def round_currency(value: float) -> float:
    """Round to 2 decimals, half-up."""
    return math.floor(value * 100 + 0.5) / 100


def apply_receipt_tax(base: float, receipt_type: str, rate: float) -> float:
    if receipt_type == "TVA":
        return round_currency(base * (1 + rate))
    return base


def is_settled(paid: float, total: float) -> bool:
    """A receipt is paid when it has something to pay and paid covers it."""
    return total > EPSILON and paid >= total - EPSILON
