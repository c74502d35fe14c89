"""
Tree-walking evaluator for rendered calc.js modules.

Runs the module AST produced by expr.parse_module with JavaScript value
semantics (see values.py). Only the constructs the renderer emits are
supported:
- const declarations (optionally exported)
- arrow functions with identifier / destructuring params
- blocks made of const, if and return statements
- the restricted expression language

Execution is bounded by a step budget and a wall-clock deadline; either one
running out raises SandboxTimeout.
"""

from __future__ import annotations
from dataclasses import dataclass, field
import math
import time
from typing import Any

from ..errors import SandboxTimeout
from ..expr import (
    Arrow, ArrayLit, Binary, Block, Bool, Call, Cond, ConstDecl, Ident, If, Index, Member,
    Module, Node, Null, Num, ObjectLit, ObjectPattern, Return, Str, Unary, callee_name, parse_module,
)
from .values import (
    UNDEFINED, HostObject, JSThrow, NativeFunction,
    compare, is_callable, js_add, js_divide, js_mod, js_multiply, js_pow, loose_equals,
    property_key, strict_equals, to_boolean, to_number, to_string, typeof,
)

DEFAULT_MAX_STEPS = 2_000_000
MAX_CALL_DEPTH = 64
_DEADLINE_EVERY = 256


class Scope:
    """Lexical scope: one per module, function call and block."""

    def __init__(self, parent: Scope | None = None, values: dict[str, Any] | None = None):
        self.parent = parent
        self.values: dict[str, Any] = dict(values or {})

    def lookup(self, name: str) -> Any:
        scope: Scope | None = self
        while scope is not None:
            if name in scope.values:
                return scope.values[name]
            scope = scope.parent
        raise JSThrow(f"{name} is not defined")

    def declare(self, name: str, value: Any):
        if name in self.values:
            raise JSThrow(f"Identifier '{name}' has already been declared")
        self.values[name] = value


class JSFunction(HostObject):
    """Closure created from an arrow function in the module."""

    def __init__(self, node: Arrow, scope: Scope, evaluator: ModuleEvaluator):
        self.node = node
        self.scope = scope
        self.evaluator = evaluator

    def callable(self) -> bool:
        return True

    def call(self, args: list[Any]) -> Any:
        return self.evaluator.call_function(self, args)

    def __repr__(self) -> str:
        return "<function>"


@dataclass
class EvalContext:
    """
    Execution budget shared by every call made while verifying one module.

    deadline is a time.monotonic() timestamp (None disables the clock).
    """
    max_steps: int = DEFAULT_MAX_STEPS
    deadline: float | None = None
    steps: int = 0
    depth: int = 0
    globals: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def with_timeout(cls, timeout_ms: int | None, max_steps: int = DEFAULT_MAX_STEPS) -> EvalContext:
        deadline = time.monotonic() + timeout_ms / 1000 if timeout_ms and timeout_ms > 0 else None
        return cls(max_steps=max_steps, deadline=deadline)

    def tick(self):
        self.steps += 1
        if self.steps > self.max_steps:
            raise SandboxTimeout(f"step budget exhausted after {self.max_steps} steps")
        if self.deadline is not None and self.steps % _DEADLINE_EVERY == 0 and time.monotonic() > self.deadline:
            raise SandboxTimeout("wall-clock budget exhausted")


class ModuleEvaluator:
    """
    Evaluates a parsed module and the closures it exports.

    Usage:
        evaluator = ModuleEvaluator(EvalContext.with_timeout(2000))
        exports = evaluator.run(parse_module(js))
        result = evaluator.call(exports["details"][0]["dmg"], [ctx, dmg_fn])
    """

    def __init__(self, context: EvalContext | None = None):
        self.context = context or EvalContext()
        self.root = Scope(values={**default_globals(), **self.context.globals})

    # -- module --------------------------------------------------------

    def run(self, module: Module) -> dict[str, Any]:
        """Execute top-level declarations and return the exported bindings."""
        scope = Scope(self.root)
        exports: dict[str, Any] = {}
        for stmt in module.body:
            if not isinstance(stmt, ConstDecl):
                raise JSThrow(f"unsupported top-level statement: {type(stmt).__name__}")
            value = self.evaluate(stmt.value, scope)
            scope.declare(stmt.name, value)
            if stmt.export:
                exports[stmt.name] = value
        return exports

    def call(self, fn: Any, args: list[Any]) -> Any:
        """Call a module or host function with already-converted arguments."""
        if not is_callable(fn):
            raise JSThrow(f"{typeof(fn)} is not a function")
        return fn.call(list(args))

    def call_function(self, fn: JSFunction, args: list[Any]) -> Any:
        ctx = self.context
        ctx.depth += 1
        if ctx.depth > MAX_CALL_DEPTH:
            ctx.depth -= 1
            raise JSThrow("Maximum call stack size exceeded")
        try:
            scope = Scope(fn.scope)
            for i, param in enumerate(fn.node.params):
                value = args[i] if i < len(args) else UNDEFINED
                self._bind(param, value, scope)
            body = fn.node.body
            if isinstance(body, Block):
                returned, value = self._run_block(body, scope)
                return value if returned else UNDEFINED
            return self.evaluate(body, scope)
        finally:
            ctx.depth -= 1

    def _bind(self, param: Node, value: Any, scope: Scope):
        if isinstance(param, Ident):
            scope.declare(param.name, value)
            return
        if isinstance(param, ObjectPattern):
            if value is UNDEFINED or value is None:
                raise JSThrow(f"Cannot destructure '{to_string(value)}' as it is {to_string(value)}.")
            for name in param.names:
                scope.declare(name, get_property(value, name))
            return
        raise JSThrow(f"unsupported parameter: {type(param).__name__}")

    # -- statements ----------------------------------------------------

    def _run_block(self, block: Block, parent: Scope) -> tuple[bool, Any]:
        scope = Scope(parent)
        for stmt in block.body:
            returned, value = self._execute(stmt, scope)
            if returned:
                return True, value
        return False, UNDEFINED

    def _execute(self, stmt: Node, scope: Scope) -> tuple[bool, Any]:
        self.context.tick()
        if isinstance(stmt, ConstDecl):
            scope.declare(stmt.name, self.evaluate(stmt.value, scope))
            return False, UNDEFINED
        if isinstance(stmt, Return):
            return True, UNDEFINED if stmt.value is None else self.evaluate(stmt.value, scope)
        if isinstance(stmt, If):
            if not to_boolean(self.evaluate(stmt.test, scope)):
                return False, UNDEFINED
            if isinstance(stmt.then, Block):
                return self._run_block(stmt.then, scope)
            return self._execute(stmt.then, scope)
        if isinstance(stmt, Block):
            return self._run_block(stmt, scope)
        self.evaluate(stmt, scope)
        return False, UNDEFINED

    # -- expressions ---------------------------------------------------

    def evaluate(self, node: Node, scope: Scope) -> Any:
        """Evaluate an expression node in scope."""
        self.context.tick()
        if isinstance(node, Num):
            return float(node.value)
        if isinstance(node, Str):
            return node.value
        if isinstance(node, Bool):
            return node.value
        if isinstance(node, Null):
            return None
        if isinstance(node, Ident):
            return scope.lookup(node.name)
        if isinstance(node, Member):
            obj = self.evaluate(node.obj, scope)
            return get_property(obj, node.prop)
        if isinstance(node, Index):
            obj = self.evaluate(node.obj, scope)
            key = self.evaluate(node.index, scope)
            return get_property(obj, property_key(key))
        if isinstance(node, Call):
            return self._evaluate_call(node, scope)
        if isinstance(node, Unary):
            return self._evaluate_unary(node, scope)
        if isinstance(node, Binary):
            return self._evaluate_binary(node, scope)
        if isinstance(node, Cond):
            branch = node.then if to_boolean(self.evaluate(node.test, scope)) else node.other
            return self.evaluate(branch, scope)
        if isinstance(node, ObjectLit):
            return {key: self.evaluate(value, scope) for key, value in node.props}
        if isinstance(node, ArrayLit):
            return [self.evaluate(item, scope) for item in node.items]
        if isinstance(node, Arrow):
            return JSFunction(node, scope, self)
        raise JSThrow(f"unsupported expression: {type(node).__name__}")

    def _evaluate_call(self, node: Call, scope: Scope) -> Any:
        fn = self.evaluate(node.callee, scope)
        args = [self.evaluate(arg, scope) for arg in node.args]
        if not is_callable(fn):
            name = callee_name(node.callee) or "expression"
            raise JSThrow(f"{name} is not a function")
        return fn.call(args)

    def _evaluate_unary(self, node: Unary, scope: Scope) -> Any:
        if node.op == "typeof" and isinstance(node.operand, Ident):
            try:
                return typeof(scope.lookup(node.operand.name))
            except JSThrow:
                return "undefined"
        value = self.evaluate(node.operand, scope)
        if node.op == "!":
            return not to_boolean(value)
        if node.op == "-":
            return -to_number(value)
        if node.op == "+":
            return to_number(value)
        if node.op == "typeof":
            return typeof(value)
        raise JSThrow(f"unsupported operator: {node.op}")

    def _evaluate_binary(self, node: Binary, scope: Scope) -> Any:
        op = node.op
        left = self.evaluate(node.left, scope)
        if op == "&&":
            return self.evaluate(node.right, scope) if to_boolean(left) else left
        if op == "||":
            return left if to_boolean(left) else self.evaluate(node.right, scope)
        if op == "??":
            return self.evaluate(node.right, scope) if left is None or left is UNDEFINED else left
        right = self.evaluate(node.right, scope)
        if op == "+":
            return js_add(left, right)
        if op == "-":
            return to_number(left) - to_number(right)
        if op == "*":
            return js_multiply(to_number(left), to_number(right))
        if op == "/":
            return js_divide(to_number(left), to_number(right))
        if op == "%":
            return js_mod(to_number(left), to_number(right))
        if op == "**":
            return js_pow(to_number(left), to_number(right))
        if op == "===":
            return strict_equals(left, right)
        if op == "!==":
            return not strict_equals(left, right)
        if op == "==":
            return loose_equals(left, right)
        if op == "!=":
            return not loose_equals(left, right)
        if op in ("<", ">", "<=", ">="):
            return compare(left, right, op)
        raise JSThrow(f"unsupported operator: {op}")


# -- property access -------------------------------------------------------

def _index(key: str) -> int | None:
    return int(key) if key.isdigit() else None


def get_property(obj: Any, key: str) -> Any:
    """obj[key] with JavaScript lookup rules for the supported value types."""
    if obj is UNDEFINED or obj is None:
        raise JSThrow(f"Cannot read properties of {to_string(obj)} (reading '{key}')")
    if isinstance(obj, dict):
        return obj.get(key, UNDEFINED)
    if isinstance(obj, list):
        if key == "length":
            return float(len(obj))
        idx = _index(key)
        if idx is not None:
            return obj[idx] if idx < len(obj) else UNDEFINED
        method = _ARRAY_METHODS.get(key)
        return NativeFunction(key, lambda *args: method(obj, *args)) if method else UNDEFINED
    if isinstance(obj, str):
        if key == "length":
            return float(len(obj))
        idx = _index(key)
        if idx is not None:
            return obj[idx] if idx < len(obj) else UNDEFINED
        method = _STRING_METHODS.get(key)
        return NativeFunction(key, lambda *args: method(obj, *args)) if method else UNDEFINED
    if isinstance(obj, HostObject):
        return obj.get(key)
    return UNDEFINED


def _callback(fn: Any) -> Any:
    if not is_callable(fn):
        raise JSThrow(f"{to_string(fn)} is not a function")
    return fn


def _arg(args: tuple, idx: int) -> Any:
    return args[idx] if idx < len(args) else UNDEFINED


def _reduce(items: list, *args) -> Any:
    fn = _callback(_arg(args, 0))
    values = list(items)
    if len(args) > 1:
        acc = args[1]
    elif values:
        acc = values.pop(0)
    else:
        raise JSThrow("Reduce of empty array with no initial value")
    offset = len(items) - len(values)
    for i, item in enumerate(values):
        acc = fn.call([acc, item, float(i + offset), items])
    return acc


def _index_of(items: list, *args) -> float:
    target = _arg(args, 0)
    for i, item in enumerate(items):
        if strict_equals(item, target):
            return float(i)
    return -1.0


def _includes(items: list, *args) -> bool:
    target = _arg(args, 0)
    for item in items:
        if strict_equals(item, target):
            return True
        if typeof(item) == "number" and typeof(target) == "number" and math.isnan(item) and math.isnan(target):
            return True
    return False


def _iterate(items: list, fn: Any):
    fn = _callback(fn)
    for i, item in enumerate(items):
        yield item, fn.call([item, float(i), items])


_ARRAY_METHODS = {
    "reduce": _reduce,
    "indexOf": _index_of,
    "includes": _includes,
    "some": lambda items, *a: any(to_boolean(r) for _, r in _iterate(items, _arg(a, 0))),
    "every": lambda items, *a: all(to_boolean(r) for _, r in _iterate(items, _arg(a, 0))),
    "map": lambda items, *a: [r for _, r in _iterate(items, _arg(a, 0))],
    "filter": lambda items, *a: [i for i, r in _iterate(items, _arg(a, 0)) if to_boolean(r)],
    "join": lambda items, *a: (to_string(a[0]) if a and a[0] is not UNDEFINED else ",").join(
        "" if v is None or v is UNDEFINED else to_string(v) for v in items
    ),
}

_STRING_METHODS = {
    "includes": lambda s, *a: to_string(_arg(a, 0)) in s,
    "startsWith": lambda s, *a: s.startswith(to_string(_arg(a, 0))),
    "endsWith": lambda s, *a: s.endswith(to_string(_arg(a, 0))),
    "indexOf": lambda s, *a: float(s.find(to_string(_arg(a, 0)))),
    "trim": lambda s, *a: s.strip(),
}


# -- globals ---------------------------------------------------------------

def _math_fn(name: str, fn) -> NativeFunction:
    def wrapper(*args):
        nums = [to_number(a) for a in args]
        try:
            return float(fn(*nums))
        except (ValueError, OverflowError, ZeroDivisionError):
            return math.nan
    return NativeFunction(f"Math.{name}", wrapper)


def _max(*nums: float) -> float:
    if any(math.isnan(n) for n in nums):
        return math.nan
    return max(nums) if nums else -math.inf


def _min(*nums: float) -> float:
    if any(math.isnan(n) for n in nums):
        return math.nan
    return min(nums) if nums else math.inf


def _round(n: float = math.nan) -> float:
    if math.isnan(n) or math.isinf(n):
        return n
    return float(math.floor(n + 0.5))


def _guard_finite(fn):
    def wrapper(n: float = math.nan, *rest):
        if math.isnan(n) or math.isinf(n):
            return n
        return fn(n, *rest)
    return wrapper


def _sign(n: float = math.nan) -> float:
    if math.isnan(n):
        return math.nan
    return float((n > 0) - (n < 0))


def _log(n: float = math.nan) -> float:
    if math.isnan(n) or n < 0:
        return math.nan
    if n == 0:
        return -math.inf
    return math.log(n)


def _sqrt(n: float = math.nan) -> float:
    if math.isnan(n) or n < 0:
        return math.nan
    return math.sqrt(n)


def _exp(n: float = math.nan) -> float:
    try:
        return math.exp(n)
    except OverflowError:
        return math.inf


def _is_finite_number(value: Any = UNDEFINED) -> bool:
    return typeof(value) == "number" and math.isfinite(value)


def _is_integer(value: Any = UNDEFINED) -> bool:
    return _is_finite_number(value) and float(value).is_integer()


def default_globals() -> dict[str, Any]:
    """Global bindings visible to module code."""
    math_obj = {
        "max": _math_fn("max", _max),
        "min": _math_fn("min", _min),
        "abs": _math_fn("abs", lambda n=math.nan: abs(n)),
        "floor": _math_fn("floor", _guard_finite(math.floor)),
        "ceil": _math_fn("ceil", _guard_finite(math.ceil)),
        "round": _math_fn("round", _round),
        "trunc": _math_fn("trunc", _guard_finite(math.trunc)),
        "sqrt": _math_fn("sqrt", _sqrt),
        "pow": _math_fn("pow", lambda a=math.nan, b=math.nan: js_pow(a, b)),
        "sign": _math_fn("sign", _sign),
        "log": _math_fn("log", _log),
        "exp": _math_fn("exp", _exp),
        "PI": math.pi,
        "E": math.e,
    }
    number = NativeFunction(
        "Number",
        lambda *args: to_number(args[0]) if args else 0.0,
        props={"isFinite": NativeFunction("Number.isFinite", _is_finite_number),
               "isInteger": NativeFunction("Number.isInteger", _is_integer)},
    )
    array = {"isArray": NativeFunction("Array.isArray", lambda *args: isinstance(_arg(args, 0), list))}
    return {
        "Math": math_obj,
        "Number": number,
        "Array": array,
        "String": NativeFunction("String", lambda *args: to_string(args[0]) if args else ""),
        "Boolean": NativeFunction("Boolean", lambda *args: to_boolean(_arg(args, 0))),
        "isFinite": NativeFunction("isFinite", lambda *args: math.isfinite(to_number(_arg(args, 0)))),
        "Infinity": math.inf,
        "NaN": math.nan,
        "undefined": UNDEFINED,
    }


# Convenience function
def load_module(js: str, context: EvalContext | None = None) -> tuple[ModuleEvaluator, dict[str, Any]]:
    """
    Parse and run a module.

    Returns:
        (evaluator, exports); keep the evaluator to call exported closures.
    """
    evaluator = ModuleEvaluator(context)
    exports = evaluator.run(parse_module(js))
    return evaluator, exports
