"""
Package volume derivation.

Volume in m3 is thickness x width x length (mm) x pieces / 1e9. It is derived
only when all four inputs are single positive numbers; ranges ("40-50") and
uncountable pieces ("-") switch the package to manual volume entry.
"""

from dataclasses import dataclass, replace
from decimal import Decimal, InvalidOperation
from typing import Optional

MM3_PER_M3 = Decimal("1000000000")
UNCOUNTABLE = "-"
DIMENSION_FIELDS = ("thickness", "width", "length", "pieces")


@dataclass(frozen=True)
class VolumeState:
    """Dimension inputs of one package row and its current volume"""
    thickness: Optional[str] = None
    width: Optional[str] = None
    length: Optional[str] = None
    pieces: Optional[str] = None
    volume_m3: Optional[Decimal] = None
    volume_is_calculated: bool = False


def is_range(value: Optional[str]) -> bool:
    """A value is a range when it contains '-' anywhere but the first position"""
    if not value:
        return False
    return value.find("-") > 0


def _parse_positive(value: str) -> Optional[Decimal]:
    try:
        number = Decimal(value.strip().replace(",", "."))
    except InvalidOperation:
        return None
    if not number.is_finite() or number <= 0:
        return None
    return number


def should_auto_calculate(
    thickness: Optional[str],
    width: Optional[str],
    length: Optional[str],
    pieces: Optional[str],
) -> bool:
    values = (thickness, width, length, pieces)
    if any(v is None or v.strip() == "" for v in values):
        return False
    if any(is_range(v) for v in values):
        return False
    return pieces.strip() != UNCOUNTABLE


def calculate_volume(
    thickness: Optional[str],
    width: Optional[str],
    length: Optional[str],
    pieces: Optional[str],
) -> Optional[Decimal]:
    """Exact volume in m3, or None when it cannot be derived"""
    if not should_auto_calculate(thickness, width, length, pieces):
        return None

    factors = [_parse_positive(v) for v in (thickness, width, length, pieces)]
    if any(f is None for f in factors):
        return None

    t, w, l, p = factors
    return t * w * l * p / MM3_PER_M3


def derive_volume(state: VolumeState) -> VolumeState:
    """Re-evaluate the volume of a row after any of its dimensions changed"""
    volume = calculate_volume(state.thickness, state.width, state.length, state.pieces)
    if volume is None:
        # Manual entry: keep whatever volume the row had
        return replace(state, volume_is_calculated=False)
    return replace(state, volume_m3=volume, volume_is_calculated=True)


def apply_dimension_edit(state: VolumeState, field: str, value: Optional[str]) -> VolumeState:
    """Set one dimension field and re-derive the volume"""
    if field not in DIMENSION_FIELDS:
        raise ValueError(f"Unknown dimension field: {field}")
    return derive_volume(replace(state, **{field: value}))


def apply_volume_edit(state: VolumeState, volume_m3: Optional[Decimal]) -> VolumeState:
    """Manual volume override; the row stops being auto-calculated"""
    return replace(state, volume_m3=volume_m3, volume_is_calculated=False)
