"""
Pluggable resolvers for the CUSTOM survivorship strategy.

A resolver receives the master and duplicate values for one field and returns
the surviving value, or ``USE_DEFAULT`` to fall back to the master value.

The built-in ``ExpressionResolver`` evaluates a small expression language
parsed with ``ast`` and checked against a whitelist before anything runs. Only
these constructs are accepted:

* names ``master``, ``duplicate``, ``field`` and ``default``
* string, number, boolean and ``None`` literals, tuple/list literals (as ``in`` operands,
  never as the result)
* ``and``, ``or``, ``not``, unary minus
* comparisons ``==``, ``!=``, ``<``, ``<=``, ``>``, ``>=``, ``in``, ``not in``
* conditional expressions (``a if cond else b``)
* calls to the helpers in ``HELPERS`` with positional arguments

Examples::

    longest(master, duplicate)
    duplicate if field == "email" and not is_empty(duplicate) else default
    coalesce(master, duplicate)
"""

from __future__ import annotations

import ast
import operator
from typing import Any, Callable, Mapping, Protocol

from mdm_app.mdm.normalize import is_empty

MAX_EXPRESSION_LENGTH = 1000
MAX_EXPRESSION_NODES = 200


class _UseDefault:
    _instance = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self):
        return "USE_DEFAULT"

    def __bool__(self):
        return False


USE_DEFAULT = _UseDefault()


class CustomLogicError(ValueError):
    """Raised when custom logic cannot be parsed or evaluated."""


class CustomResolver(Protocol):
    def resolve(self, master_value: Any, duplicate_value: Any, field_name: str | None = None) -> Any:
        ...


def _present(values: tuple[Any, ...]) -> list[Any]:
    return [value for value in values if not is_empty(value)]


def _coalesce(*values: Any) -> Any:
    present = _present(values)
    return present[0] if present else None


def _longest(*values: Any) -> Any:
    present = _present(values)
    if not present:
        return None
    best = present[0]
    for value in present[1:]:
        if len(str(value)) > len(str(best)):
            best = value
    return best


def _shortest(*values: Any) -> Any:
    present = _present(values)
    if not present:
        return None
    best = present[0]
    for value in present[1:]:
        if len(str(value)) < len(str(best)):
            best = value
    return best


def _length(value: Any) -> int:
    if value is None:
        return 0
    if isinstance(value, (str, list, tuple, dict)):
        return len(value)
    return len(str(value))


def _string_op(method: str) -> Callable[[Any], Any]:
    def _apply(value: Any) -> Any:
        if value is None:
            return None
        return getattr(str(value), method)()

    return _apply


HELPERS: Mapping[str, Callable[..., Any]] = {
    "coalesce": _coalesce,
    "longest": _longest,
    "shortest": _shortest,
    "len": _length,
    "lower": _string_op("lower"),
    "upper": _string_op("upper"),
    "strip": _string_op("strip"),
    "is_empty": is_empty,
}

VARIABLES: frozenset[str] = frozenset({"master", "duplicate", "field", "default"})

_ALLOWED_NODES: tuple[type, ...] = (
    ast.Expression,
    ast.Constant,
    ast.Name,
    ast.Load,
    ast.BoolOp,
    ast.And,
    ast.Or,
    ast.UnaryOp,
    ast.Not,
    ast.USub,
    ast.Compare,
    ast.Eq,
    ast.NotEq,
    ast.Lt,
    ast.LtE,
    ast.Gt,
    ast.GtE,
    ast.In,
    ast.NotIn,
    ast.IfExp,
    ast.Call,
    ast.Tuple,
    ast.List,
)


def parse_expression(expression: str) -> ast.Expression:
    """Parse and whitelist-check an expression, raising ``CustomLogicError`` on anything else."""

    if not isinstance(expression, str) or not expression.strip():
        raise CustomLogicError("Custom logic expression must be a non-empty string.")
    if len(expression) > MAX_EXPRESSION_LENGTH:
        raise CustomLogicError(f"Custom logic expression exceeds {MAX_EXPRESSION_LENGTH} characters.")
    try:
        tree = ast.parse(expression.strip(), mode="eval")
    except SyntaxError as exc:
        raise CustomLogicError(f"Custom logic is not a valid expression: {exc.msg}") from exc

    nodes = list(ast.walk(tree))
    if len(nodes) > MAX_EXPRESSION_NODES:
        raise CustomLogicError("Custom logic expression is too complex.")

    for node in nodes:
        if not isinstance(node, _ALLOWED_NODES):
            raise CustomLogicError(f"Unsupported syntax in custom logic: {type(node).__name__}.")
        if isinstance(node, ast.Constant) and not isinstance(node.value, (str, int, float, bool, type(None))):
            raise CustomLogicError("Only string, number, boolean and None literals are allowed.")
        if isinstance(node, ast.Call):
            if not isinstance(node.func, ast.Name) or node.func.id not in HELPERS:
                raise CustomLogicError("Only built-in helper functions may be called in custom logic.")
            if node.keywords:
                raise CustomLogicError("Helper calls accept positional arguments only.")
            if any(isinstance(arg, ast.Starred) for arg in node.args):
                raise CustomLogicError("Helper calls do not accept unpacked arguments.")
        if isinstance(node, ast.Name) and node.id not in VARIABLES and node.id not in HELPERS:
            raise CustomLogicError(f"Unknown name in custom logic: {node.id}.")

    # Helper names are only valid in call position.
    for node in nodes:
        children = node.args if isinstance(node, ast.Call) else list(ast.iter_child_nodes(node))
        for child in children:
            if isinstance(child, ast.Name) and child.id in HELPERS:
                raise CustomLogicError(f"Helper {child.id} must be called.")
    return tree


_COMPARATORS: Mapping[type, Callable[[Any, Any], bool]] = {
    ast.Eq: operator.eq,
    ast.NotEq: operator.ne,
    ast.Lt: operator.lt,
    ast.LtE: operator.le,
    ast.Gt: operator.gt,
    ast.GtE: operator.ge,
    ast.In: lambda left, right: left in right,
    ast.NotIn: lambda left, right: left not in right,
}


def _evaluate(node: ast.AST, env: Mapping[str, Any]) -> Any:
    if isinstance(node, ast.Expression):
        return _evaluate(node.body, env)
    if isinstance(node, ast.Constant):
        return node.value
    if isinstance(node, ast.Name):
        if node.id == "default":
            return USE_DEFAULT
        return env.get(node.id)
    if isinstance(node, ast.BoolOp):
        if isinstance(node.op, ast.And):
            result: Any = True
            for value in node.values:
                result = _evaluate(value, env)
                if not result:
                    return result
            return result
        result = False
        for value in node.values:
            result = _evaluate(value, env)
            if result:
                return result
        return result
    if isinstance(node, ast.UnaryOp):
        operand = _evaluate(node.operand, env)
        if isinstance(node.op, ast.Not):
            return not operand
        return -operand
    if isinstance(node, ast.Compare):
        left = _evaluate(node.left, env)
        for op, comparator in zip(node.ops, node.comparators):
            right = _evaluate(comparator, env)
            if not _COMPARATORS[type(op)](left, right):
                return False
            left = right
        return True
    if isinstance(node, ast.IfExp):
        if _evaluate(node.test, env):
            return _evaluate(node.body, env)
        return _evaluate(node.orelse, env)
    if isinstance(node, ast.Call):
        helper = HELPERS[node.func.id]  # type: ignore[attr-defined]
        return helper(*(_evaluate(arg, env) for arg in node.args))
    if isinstance(node, (ast.Tuple, ast.List)):
        return tuple(_evaluate(element, env) for element in node.elts)
    raise CustomLogicError(f"Unsupported syntax in custom logic: {type(node).__name__}.")


class ExpressionResolver:
    """Default ``CustomResolver`` backed by the restricted expression language."""

    def __init__(self, expression: str):
        self.expression = expression
        self._tree = parse_expression(expression)

    def resolve(self, master_value: Any, duplicate_value: Any, field_name: str | None = None) -> Any:
        env = {"master": master_value, "duplicate": duplicate_value, "field": field_name}
        try:
            result = _evaluate(self._tree, env)
        except CustomLogicError:
            raise
        except (TypeError, ValueError, AttributeError) as exc:
            raise CustomLogicError(f"Custom logic evaluation failed: {exc}") from exc
        if isinstance(result, tuple):
            raise CustomLogicError("Custom logic must resolve to a single value, not a tuple or list.")
        return result

    def __repr__(self):
        return f"<ExpressionResolver {self.expression!r}>"


def build_resolver(custom_logic: str | None) -> CustomResolver | None:
    """Return an ``ExpressionResolver`` for non-empty logic, else None."""

    if custom_logic is None or not str(custom_logic).strip():
        return None
    return ExpressionResolver(str(custom_logic))


__all__ = [
    "CustomLogicError",
    "CustomResolver",
    "ExpressionResolver",
    "HELPERS",
    "USE_DEFAULT",
    "build_resolver",
    "parse_expression",
]
