"""
Depth-bounded traversal over parsed JSON documents.

A parsed body is one of six shapes (null, bool, number, string, array,
object). ``walk`` visits every node of that tree in document order and
reports the key it sits under, so searches such as "string under an
address-like key" or "number under a min-amount key" are plain filters
over the walk instead of bespoke recursive functions.
"""

import json
import math
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Iterator, List, Optional, Sequence, Union

from .patterns import key_matches, normalize_decimal

JsonValue = Union[None, bool, int, float, str, List[Any], Dict[str, Any]]

DEFAULT_MAX_DEPTH = 10


class JsonKind(str, Enum):
    NULL = "null"
    BOOL = "bool"
    NUMBER = "number"
    STRING = "string"
    ARRAY = "array"
    OBJECT = "object"


def kind_of(value: JsonValue) -> JsonKind:
    if value is None:
        return JsonKind.NULL
    # bool is an int subclass, test it first
    if isinstance(value, bool):
        return JsonKind.BOOL
    if isinstance(value, (int, float)):
        return JsonKind.NUMBER
    if isinstance(value, str):
        return JsonKind.STRING
    if isinstance(value, (list, tuple)):
        return JsonKind.ARRAY
    if isinstance(value, dict):
        return JsonKind.OBJECT
    raise TypeError(f"not a JSON value: {type(value).__name__}")


def parse_json(text: str) -> JsonValue:
    """Parse a response body. Raises ValueError on malformed input."""
    return json.loads(text)


def looks_like_json(body: str) -> bool:
    stripped = (body or "").lstrip()
    return stripped.startswith("{") or stripped.startswith("[")


@dataclass(frozen=True)
class JsonEntry:
    """One visited node.

    ``key`` is the object key the node sits under; array items inherit the
    key of the array. ``parent`` is the nearest enclosing object, so the
    siblings of a leaf are always ``parent.items()``.
    """
    key: Optional[str]
    value: JsonValue
    parent: Optional[Dict[str, Any]]
    depth: int

    @property
    def kind(self) -> JsonKind:
        return kind_of(self.value)


def walk(value: JsonValue, max_depth: int = DEFAULT_MAX_DEPTH) -> Iterator[JsonEntry]:
    """Pre-order traversal; nodes deeper than ``max_depth`` are not visited."""
    stack = [JsonEntry(None, value, None, 0)]
    while stack:
        entry = stack.pop()
        if entry.depth > max_depth:
            continue
        yield entry
        node = entry.value
        children: List[JsonEntry] = []
        if isinstance(node, dict):
            children = [JsonEntry(str(k), v, node, entry.depth + 1) for k, v in node.items()]
        elif isinstance(node, (list, tuple)):
            children = [JsonEntry(entry.key, item, entry.parent, entry.depth + 1) for item in node]
        # reversed so the first child is popped first
        stack.extend(reversed(children))


def as_positive_number(value: JsonValue) -> Optional[float]:
    """Finite numbers and numeric strings above zero; booleans never count."""
    if isinstance(value, bool) or value is None:
        return None
    if not isinstance(value, (int, float, str)):
        return None
    try:
        number = float(normalize_decimal(value) if isinstance(value, str) else value)
    except (ValueError, OverflowError):
        return None
    if not math.isfinite(number) or number <= 0:
        return None
    return number


def find_min_amount(
    value: JsonValue,
    key_fragments: Sequence[str],
    max_depth: int = DEFAULT_MAX_DEPTH,
) -> Optional[float]:
    """First positive numeric leaf under a key matching ``key_fragments``."""
    for entry in walk(value, max_depth):
        if entry.parent is None or not key_matches(entry.key, key_fragments):
            continue
        number = as_positive_number(entry.value)
        if number is not None:
            return number
    return None
