import re
from typing import Union

Number = Union[int, float]

# Letters, digits, spaces and a little punctuation are allowed in display names
_INVALID_NAME_CHARS = re.compile(r"[^\w\s’.,-]|_")
_LEADING_JUNK = re.compile(r"^[\W_]+")
_TRAILING_JUNK = re.compile(r"[\W_]+$")


def scale_value(value: Number, source_min: Number, source_max: Number,
                target_min: Number, target_max: Number) -> float:
    """
    Map value from the source range onto the target range.

    The value is clamped to the source range first. A degenerate source
    range (source_max == source_min) maps everything to target_min.
    """
    if source_max == source_min:
        return target_min
    if value < source_min:
        value = source_min
    if value > source_max:
        value = source_max
    return (value - source_min) * (target_max - target_min) / (source_max - source_min) + target_min


def make_display_name(name):
    """ Strip characters not allowed in a presented device name """
    if not isinstance(name, str):
        return name
    name = _INVALID_NAME_CHARS.sub('', name)
    name = _LEADING_JUNK.sub('', name)
    return _TRAILING_JUNK.sub('', name)
