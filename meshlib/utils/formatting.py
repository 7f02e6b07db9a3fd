import os
from typing import Optional

SMIDGE_PER_UNIT = 10 ** 9


def _format_number(value: float, decimals: int) -> str:
    fmt = f"{value:.{decimals}f}"
    if "." in fmt:
        fmt = fmt.rstrip("0").rstrip(".")
    return fmt


def format_amount(smidge: Optional[int], unit: Optional[str] = None) -> str:
    """Format an integer smidge amount, e.g. 1500000000 -> '1.5 SMH'."""
    if smidge is None:
        smidge = 0
    try:
        value = int(smidge)
    except (TypeError, ValueError):
        value = 0

    base_unit = unit or os.getenv("MESHLIB_CURRENCY_UNIT", "SMH")
    decimals = int(os.getenv("MESHLIB_AMOUNT_DECIMALS", "3"))
    if decimals < 0:
        decimals = 0

    if value == 0:
        return f"0 {base_unit}"
    # Sub-unit values read better in the raw denomination
    if abs(value) < SMIDGE_PER_UNIT // 1000:
        return f"{value} Smidge"

    units = value / SMIDGE_PER_UNIT
    abs_units = abs(units)
    large_units = [
        (1e9, f"G{base_unit}"),
        (1e6, f"M{base_unit}"),
        (1e3, f"k{base_unit}"),
    ]
    for scale, suffix in large_units:
        if abs_units >= scale:
            return f"{_format_number(units / scale, decimals)} {suffix}"
    return f"{_format_number(units, decimals)} {base_unit}"
