import re
from enum import Enum
from typing import NamedTuple, Optional

FUEL_CHANNEL_PATTERN = re.compile(r"^fuel_level_([1-4])$")
FUEL_CHANNEL_FLUX_REGEX = r"/^fuel_level_[1-4]$/"


class FieldKind(str, Enum):
    SPEED = "speed"
    VOLTAGE = "main_power_voltage"
    LATITUDE = "latitude"
    LONGITUDE = "longitude"
    FUEL_LEVEL = "fuel_level"


BASE_FIELDS = [
    FieldKind.SPEED.value,
    FieldKind.LATITUDE.value,
    FieldKind.LONGITUDE.value,
    FieldKind.VOLTAGE.value,
]


class FieldTag(NamedTuple):
    kind: FieldKind
    channel: Optional[int] = None


def classify_field(name: str) -> Optional[FieldTag]:
    """Map a raw field name onto the closed set of known kinds, or None."""
    if not name:
        return None

    match = FUEL_CHANNEL_PATTERN.match(name)
    if match:
        return FieldTag(FieldKind.FUEL_LEVEL, int(match.group(1)))

    try:
        kind = FieldKind(name)
    except ValueError:
        return None

    if kind == FieldKind.FUEL_LEVEL:
        return None
    return FieldTag(kind)


def is_fuel_channel(name: str) -> bool:
    return bool(FUEL_CHANNEL_PATTERN.match(name))
