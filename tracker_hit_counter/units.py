import re

# dd4hep unit system: lengths are stored in cm
cm = 1.0
mm = 0.1 * cm
um = 1e-3 * mm
m = 100.0 * cm
cm2 = cm * cm
mm2 = mm * mm

UNIT_CONVERSIONS = {
    "um": um,
    "mm": mm,
    "cm": cm,
    "m": m,
}

_QUANTITY_RE = re.compile(
    r"^\s*([-+]?(?:\d+\.?\d*|\.\d+)(?:[eE][-+]?\d+)?)\s*(?:\*\s*([A-Za-z]+))?\s*$"
)


def parse_quantity(value) -> float:
    """Convert a number or a string like "63*mm" to base length units (cm).

    Plain numbers are taken to be in base units already.
    """
    if isinstance(value, bool):
        raise ValueError(f"not a length: {value!r}")
    if isinstance(value, (int, float)):
        return float(value)
    if not isinstance(value, str):
        raise ValueError(f"not a length: {value!r}")
    match = _QUANTITY_RE.match(value)
    if not match:
        raise ValueError(f"cannot parse length {value!r}")
    number, unit = match.groups()
    if unit is None:
        return float(number)
    if unit not in UNIT_CONVERSIONS:
        raise ValueError(f"unknown unit '{unit}' in {value!r}")
    return float(number) * UNIT_CONVERSIONS[unit]
