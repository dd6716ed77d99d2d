"""
Module: procurement_kernel.db.types
Responsibility: Decimal coercion, storage-scale checks, and the single
    sanctioned rounding function for monetary values.
Architecture position: Kernel > DB.  May be imported by models/, domain/,
    services/, and selectors/.  MUST NOT import from any of those layers.

Invariants enforced:
    - No floats: quantities, rates, percentages and amounts are Decimal.
    - Inputs carry at most STORAGE_DECIMAL_PLACES decimals, matching the
      Numeric(38, 9) columns, so nothing is rounded silently on write.
    - round_money() is the ONLY rounding applied to PO line totals, so a total
      re-derived from stored lines equals the stored total.
"""

from decimal import ROUND_HALF_UP, Decimal, InvalidOperation

MONEY_DECIMAL_PLACES = 2
STORAGE_DECIMAL_PLACES = 9
DEFAULT_ROUNDING = ROUND_HALF_UP

ZERO = Decimal("0")
HUNDRED = Decimal("100")


def to_decimal(value: Decimal | int | str, field: str = "value") -> Decimal:
    """
    Coerce an input number to Decimal without passing through float.

    Raises:
        ValueError: If value is a float or not numeric.
    """
    if isinstance(value, float):
        raise ValueError(f"{field} must not be a float: {value!r}")
    if isinstance(value, Decimal):
        result = value
    else:
        try:
            result = Decimal(str(value))
        except InvalidOperation as exc:
            raise ValueError(f"{field} is not numeric: {value!r}") from exc
    if not result.is_finite():
        raise ValueError(f"{field} must be finite: {value!r}")
    return result


def round_money(
    value: Decimal,
    decimal_places: int = MONEY_DECIMAL_PLACES,
    rounding: str = DEFAULT_ROUNDING,
) -> Decimal:
    """
    Round a monetary value to the given number of decimal places.

    This is the ONLY sanctioned rounding function for amounts.
    """
    quantize_str = "0." + "0" * decimal_places
    return value.quantize(Decimal(quantize_str), rounding=rounding)


def fits_storage_scale(value: Decimal) -> bool:
    """True when value has no more decimals than a Numeric(38, 9) column keeps."""
    exponent = value.normalize().as_tuple().exponent
    return not isinstance(exponent, int) or exponent >= -STORAGE_DECIMAL_PLACES
