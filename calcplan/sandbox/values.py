"""
JavaScript value model for the sandbox evaluator.

Mapping:
- undefined -> UNDEFINED, null -> None
- numbers -> float, strings -> str, booleans -> bool
- arrays -> list, plain objects -> dict
- functions -> JSFunction (module closures) / NativeFunction (host helpers)
- HostObject subclasses stand in for runtime objects with custom lookup
"""

from __future__ import annotations
import math
from typing import Any, Callable

from ..expr import format_number


class _Undefined:
    _instance = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "undefined"

    def __bool__(self) -> bool:
        return False


UNDEFINED = _Undefined()


class JSThrow(Exception):
    """An exception thrown while evaluating module code."""


class HostObject:
    """Object whose properties are computed by Python code."""

    def get(self, key: str) -> Any:
        return UNDEFINED

    def primitive(self) -> Any:
        """Value used for arithmetic / string coercion."""
        return math.nan

    def callable(self) -> bool:
        return False

    def call(self, args: list[Any]) -> Any:
        raise JSThrow("object is not a function")


class NativeFunction(HostObject):
    """Host function, optionally carrying properties (dmg.basic and friends)."""

    def __init__(self, name: str, fn: Callable[..., Any], props: dict[str, Any] | None = None):
        self.name = name
        self.fn = fn
        self.props = props or {}

    def get(self, key: str) -> Any:
        return self.props.get(key, UNDEFINED)

    def callable(self) -> bool:
        return True

    def call(self, args: list[Any]) -> Any:
        return self.fn(*args)

    def __repr__(self) -> str:
        return f"<native {self.name}>"


def is_number(value: Any) -> bool:
    return isinstance(value, float) or (isinstance(value, int) and not isinstance(value, bool))


def is_callable(value: Any) -> bool:
    return isinstance(value, HostObject) and value.callable()


def typeof(value: Any) -> str:
    if value is UNDEFINED:
        return "undefined"
    if isinstance(value, bool):
        return "boolean"
    if is_number(value):
        return "number"
    if isinstance(value, str):
        return "string"
    if is_callable(value):
        return "function"
    return "object"


def to_number(value: Any) -> float:
    if value is UNDEFINED:
        return math.nan
    if value is None:
        return 0.0
    if isinstance(value, bool):
        return 1.0 if value else 0.0
    if is_number(value):
        return float(value)
    if isinstance(value, str):
        text = value.strip()
        if not text:
            return 0.0
        if text in ("Infinity", "+Infinity"):
            return math.inf
        if text == "-Infinity":
            return -math.inf
        try:
            return float(text)
        except ValueError:
            return math.nan
    if isinstance(value, list):
        if not value:
            return 0.0
        if len(value) == 1:
            return to_number(to_string(value[0]))
        return math.nan
    if isinstance(value, HostObject):
        return to_number(value.primitive())
    return math.nan


def to_boolean(value: Any) -> bool:
    if value is UNDEFINED or value is None:
        return False
    if isinstance(value, bool):
        return value
    if is_number(value):
        return not (value == 0 or math.isnan(value))
    if isinstance(value, str):
        return value != ""
    return True


def to_string(value: Any) -> str:
    if value is UNDEFINED:
        return "undefined"
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "true" if value else "false"
    if is_number(value):
        return format_number(float(value))
    if isinstance(value, str):
        return value
    if isinstance(value, list):
        return ",".join("" if v is None or v is UNDEFINED else to_string(v) for v in value)
    if isinstance(value, HostObject):
        prim = value.primitive()
        return to_string(prim)
    return "[object Object]"


def to_primitive(value: Any) -> Any:
    if isinstance(value, list):
        return to_string(value)
    if isinstance(value, dict):
        return "[object Object]"
    if isinstance(value, HostObject):
        return value.primitive()
    return value


def property_key(value: Any) -> str:
    """Property key for computed access: numbers print the way JS does."""
    if isinstance(value, str):
        return value
    return to_string(value)


def strict_equals(a: Any, b: Any) -> bool:
    ta, tb = typeof(a), typeof(b)
    if a is None or b is None:
        return a is None and b is None
    if ta != tb:
        return False
    if ta == "number":
        return float(a) == float(b)
    if ta in ("string", "boolean", "undefined"):
        return a == b
    return a is b


def loose_equals(a: Any, b: Any) -> bool:
    if (a is None or a is UNDEFINED) and (b is None or b is UNDEFINED):
        return True
    if a is None or a is UNDEFINED or b is None or b is UNDEFINED:
        return False
    if typeof(a) == typeof(b) and typeof(a) != "object":
        return strict_equals(a, b)
    if typeof(a) == "object" and typeof(b) == "object":
        return a is b
    pa, pb = to_primitive(a), to_primitive(b)
    if isinstance(pa, str) and isinstance(pb, str):
        return pa == pb
    return to_number(pa) == to_number(pb)


def js_add(a: Any, b: Any) -> Any:
    pa, pb = to_primitive(a), to_primitive(b)
    if isinstance(pa, str) or isinstance(pb, str):
        return to_string(pa) + to_string(pb)
    return to_number(pa) + to_number(pb)


def js_divide(a: float, b: float) -> float:
    if b == 0:
        if a == 0 or math.isnan(a):
            return math.nan
        sign = math.copysign(1, a) * math.copysign(1, b)
        return math.inf if sign > 0 else -math.inf
    return a / b


def js_mod(a: float, b: float) -> float:
    if b == 0 or math.isinf(a) or math.isnan(a) or math.isnan(b):
        return math.nan
    if math.isinf(b):
        return a
    return math.fmod(a, b)


def js_pow(a: float, b: float) -> float:
    if math.isnan(b):
        return math.nan
    if b == 0:
        return 1.0
    try:
        return math.pow(a, b)
    except OverflowError:
        return math.inf
    except ValueError:
        return math.nan


def js_multiply(a: float, b: float) -> float:
    if (math.isinf(a) and b == 0) or (math.isinf(b) and a == 0):
        return math.nan
    return a * b


def compare(a: Any, b: Any, op: str) -> bool:
    pa, pb = to_primitive(a), to_primitive(b)
    if isinstance(pa, str) and isinstance(pb, str):
        x, y = pa, pb
    else:
        x, y = to_number(pa), to_number(pb)
        if math.isnan(x) or math.isnan(y):
            return False
    if op == "<":
        return x < y
    if op == ">":
        return x > y
    if op == "<=":
        return x <= y
    return x >= y
