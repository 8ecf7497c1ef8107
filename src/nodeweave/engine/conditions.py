# src/nodeweave/engine/conditions.py
"""Sandboxed conditional evaluator for directive gating.

Uses Python's ast module to parse and evaluate conditionals in a restricted
subset of Python. This is NOT eval() - it's a whitelist-based evaluator.

The evaluator operates in two phases:
1. Parse-time validation: Reject forbidden constructs
2. Evaluation: Execute the validated AST against a node context

Context names (see build_context): ``hasErrors``, ``hasConnections``,
``isProcessing``, ``timestamp``, ``meta``, ``input``, ``output``, ``error``,
``nodeId``, ``nodeData``, ``sourceNode``, ``targetNode``.

Dotted attribute syntax on mappings is a key lookup (``output.meta.status``),
never a Python attribute access. Missing keys read as None.

Example:
    evaluator = ConditionalEvaluator()
    ctx = evaluator.build_context(source_data=node, target_data=None, node_id="a")
    evaluator.evaluate("not hasErrors and output.meta.status == 'success'", ctx)
"""

from __future__ import annotations

import ast
import operator
from collections.abc import Mapping
from typing import Any

import structlog

logger = structlog.get_logger(__name__)


class ExpressionSecurityError(Exception):
    """Raised when an expression contains forbidden constructs."""


class ExpressionSyntaxError(Exception):
    """Raised when an expression is not valid Python syntax."""


class ExpressionEvaluationError(Exception):
    """Raised when a valid expression fails at runtime.

    The original exception is chained via __cause__.
    """


# Pure helpers callable from conditionals
ALLOWED_FUNCTIONS: dict[str, Any] = {
    "len": len,
    "min": min,
    "max": max,
    "abs": abs,
    "round": round,
    "str": str,
    "int": int,
    "float": float,
    "bool": bool,
    "sum": sum,
    "any": any,
    "all": all,
    "sorted": sorted,
}

_COMPARISON_OPS: dict[type[ast.cmpop], Any] = {
    ast.Eq: operator.eq,
    ast.NotEq: operator.ne,
    ast.Lt: operator.lt,
    ast.LtE: operator.le,
    ast.Gt: operator.gt,
    ast.GtE: operator.ge,
    ast.Is: operator.is_,
    ast.IsNot: operator.is_not,
    ast.In: lambda a, b: a in b,
    ast.NotIn: lambda a, b: a not in b,
}

_BINARY_OPS: dict[type[ast.operator], Any] = {
    ast.Add: operator.add,
    ast.Sub: operator.sub,
    ast.Mult: operator.mul,
    ast.Div: operator.truediv,
    ast.FloorDiv: operator.floordiv,
    ast.Mod: operator.mod,
}

_UNARY_OPS: dict[type[ast.unaryop], Any] = {
    ast.Not: operator.not_,
    ast.USub: operator.neg,
    ast.UAdd: operator.pos,
}

_CACHE_LIMIT = 256


class _ExpressionValidator(ast.NodeVisitor):
    """Collects forbidden constructs into ``errors``."""

    def __init__(self) -> None:
        self.errors: list[str] = []

    def visit_Name(self, node: ast.Name) -> None:
        if node.id.startswith("_"):
            self.errors.append(f"Forbidden name: {node.id!r}")

    def visit_Attribute(self, node: ast.Attribute) -> None:
        if node.attr.startswith("_"):
            self.errors.append(f"Forbidden attribute access: {node.attr!r}")
        self.generic_visit(node)

    def visit_Subscript(self, node: ast.Subscript) -> None:
        if isinstance(node.slice, ast.Slice):
            self.errors.append("Slice syntax (e.g., [1:3]) is forbidden")
        self.generic_visit(node)

    def visit_Slice(self, node: ast.Slice) -> None:
        self.errors.append("Slice syntax (e.g., [1:3]) is forbidden")

    def visit_Call(self, node: ast.Call) -> None:
        if node.keywords:
            self.errors.append("Keyword arguments are forbidden")
        if isinstance(node.func, ast.Name):
            if node.func.id not in ALLOWED_FUNCTIONS:
                self.errors.append(f"Forbidden function call: {node.func.id!r}")
        elif isinstance(node.func, ast.Attribute) and node.func.attr == "get":
            if len(node.args) < 1 or len(node.args) > 2:
                self.errors.append(f".get() requires 1 or 2 arguments, got {len(node.args)}")
            self.visit(node.func.value)
            for arg in node.args:
                self.visit(arg)
            return
        else:
            self.errors.append(f"Forbidden function call: {ast.unparse(node.func)}")
        self.generic_visit(node)

    def visit_Compare(self, node: ast.Compare) -> None:
        for op in node.ops:
            if type(op) not in _COMPARISON_OPS:
                self.errors.append(f"Forbidden comparison operator: {type(op).__name__}")
        self.generic_visit(node)

    def visit_BinOp(self, node: ast.BinOp) -> None:
        if type(node.op) not in _BINARY_OPS:
            self.errors.append(f"Forbidden binary operator: {type(node.op).__name__}")
        self.generic_visit(node)

    def visit_UnaryOp(self, node: ast.UnaryOp) -> None:
        if type(node.op) not in _UNARY_OPS:
            self.errors.append(f"Forbidden unary operator: {type(node.op).__name__}")
        self.generic_visit(node)

    def visit_Constant(self, node: ast.Constant) -> None:
        if node.value is None or isinstance(node.value, str | int | float | bool):
            return
        self.errors.append(f"Forbidden constant type: {type(node.value).__name__}")

    def visit_Dict(self, node: ast.Dict) -> None:
        for key in node.keys:
            if key is None:
                self.errors.append("Dict spread (**) is forbidden")
        self.generic_visit(node)

    # Explicitly forbidden constructs

    def visit_Lambda(self, node: ast.Lambda) -> None:
        self.errors.append("Lambda expressions are forbidden")

    def visit_ListComp(self, node: ast.ListComp) -> None:
        self.errors.append("List comprehensions are forbidden")

    def visit_DictComp(self, node: ast.DictComp) -> None:
        self.errors.append("Dict comprehensions are forbidden")

    def visit_SetComp(self, node: ast.SetComp) -> None:
        self.errors.append("Set comprehensions are forbidden")

    def visit_GeneratorExp(self, node: ast.GeneratorExp) -> None:
        self.errors.append("Generator expressions are forbidden")

    def visit_Await(self, node: ast.Await) -> None:
        self.errors.append("Await expressions are forbidden")

    def visit_Yield(self, node: ast.Yield) -> None:
        self.errors.append("Yield expressions are forbidden")

    def visit_YieldFrom(self, node: ast.YieldFrom) -> None:
        self.errors.append("Yield from expressions are forbidden")

    def visit_NamedExpr(self, node: ast.NamedExpr) -> None:
        self.errors.append("Assignment expressions (:=) are forbidden")

    def visit_JoinedStr(self, node: ast.JoinedStr) -> None:
        self.errors.append("F-strings are forbidden")

    def visit_Starred(self, node: ast.Starred) -> None:
        self.errors.append("Starred expressions (*) are forbidden")


class _ExpressionEvaluator(ast.NodeVisitor):
    """Evaluates a validated expression against a context mapping."""

    def __init__(self, context: Mapping[str, Any]) -> None:
        self._context = context

    def visit_Expression(self, node: ast.Expression) -> Any:
        return self.visit(node.body)

    def visit_Name(self, node: ast.Name) -> Any:
        if node.id in self._context:
            return self._context[node.id]
        if node.id in ALLOWED_FUNCTIONS:
            return ALLOWED_FUNCTIONS[node.id]
        raise ExpressionEvaluationError(f"Unknown name: {node.id}")

    def visit_Constant(self, node: ast.Constant) -> Any:
        return node.value

    def visit_Attribute(self, node: ast.Attribute) -> Any:
        value = self.visit(node.value)
        if isinstance(value, Mapping):
            return value.get(node.attr)
        raise ExpressionEvaluationError(f"Cannot read {node.attr!r} from {type(value).__name__}")

    def visit_Subscript(self, node: ast.Subscript) -> Any:
        value = self.visit(node.value)
        key = self.visit(node.slice)
        try:
            return value[key]
        except (KeyError, IndexError, TypeError) as e:
            raise ExpressionEvaluationError(f"Cannot access {key!r} on {type(value).__name__}") from e

    def visit_Call(self, node: ast.Call) -> Any:
        args = [self.visit(arg) for arg in node.args]
        if isinstance(node.func, ast.Attribute):
            # Only mapping.get passes validation
            target = self.visit(node.func.value)
            if not isinstance(target, Mapping):
                raise ExpressionEvaluationError(f".get() called on {type(target).__name__}")
            func = target.get
        else:
            func = self.visit(node.func)
            if func not in ALLOWED_FUNCTIONS.values():
                raise ExpressionSecurityError(f"Forbidden function call: {ast.unparse(node.func)}")
        try:
            return func(*args)
        except (TypeError, ValueError, OverflowError) as e:
            raise ExpressionEvaluationError(f"Call to {ast.unparse(node.func)} failed: {e}") from e

    def visit_Compare(self, node: ast.Compare) -> Any:
        left = self.visit(node.left)
        for op, comparator in zip(node.ops, node.comparators, strict=True):
            right = self.visit(comparator)
            try:
                if not _COMPARISON_OPS[type(op)](left, right):
                    return False
            except TypeError as e:
                msg = f"cannot compare {type(left).__name__} and {type(right).__name__}"
                raise ExpressionEvaluationError(msg) from e
            left = right
        return True

    def visit_BoolOp(self, node: ast.BoolOp) -> Any:
        result: Any = None
        if isinstance(node.op, ast.And):
            for value in node.values:
                result = self.visit(value)
                if not result:
                    return result
            return result
        for value in node.values:
            result = self.visit(value)
            if result:
                return result
        return result

    def visit_BinOp(self, node: ast.BinOp) -> Any:
        left = self.visit(node.left)
        right = self.visit(node.right)
        try:
            return _BINARY_OPS[type(node.op)](left, right)
        except (ZeroDivisionError, TypeError, OverflowError, MemoryError) as e:
            raise ExpressionEvaluationError(f"{type(node.op).__name__} failed: {e}") from e

    def visit_UnaryOp(self, node: ast.UnaryOp) -> Any:
        operand = self.visit(node.operand)
        try:
            return _UNARY_OPS[type(node.op)](operand)
        except TypeError as e:
            raise ExpressionEvaluationError(f"unary {type(node.op).__name__} failed: {e}") from e

    def visit_List(self, node: ast.List) -> Any:
        return [self.visit(elt) for elt in node.elts]

    def visit_Tuple(self, node: ast.Tuple) -> Any:
        return tuple(self.visit(elt) for elt in node.elts)

    def visit_Set(self, node: ast.Set) -> Any:
        try:
            return {self.visit(elt) for elt in node.elts}
        except TypeError as e:
            raise ExpressionEvaluationError(f"cannot create set literal: {e}") from e

    def visit_Dict(self, node: ast.Dict) -> Any:
        try:
            return {self.visit(k): self.visit(v) for k, v in zip(node.keys, node.values, strict=True) if k is not None}
        except TypeError as e:
            raise ExpressionEvaluationError(f"cannot create dict literal: {e}") from e

    def visit_IfExp(self, node: ast.IfExp) -> Any:
        if self.visit(node.test):
            return self.visit(node.body)
        return self.visit(node.orelse)

    def generic_visit(self, node: ast.AST) -> Any:
        raise ExpressionSecurityError(f"Unsupported expression node: {type(node).__name__}")


class Condition:
    """A parsed and validated conditional.

    Raises at construction:
        ExpressionSyntaxError: If the expression is not valid syntax
        ExpressionSecurityError: If it contains forbidden constructs
    """

    def __init__(self, expression: str) -> None:
        self._expression = expression
        try:
            self._ast = ast.parse(expression.strip(), mode="eval")
        except SyntaxError as e:
            raise ExpressionSyntaxError(f"Invalid syntax: {e.msg}") from e

        validator = _ExpressionValidator()
        validator.visit(self._ast)
        if validator.errors:
            raise ExpressionSecurityError("; ".join(validator.errors))

    @property
    def expression(self) -> str:
        return self._expression

    def evaluate(self, context: Mapping[str, Any]) -> Any:
        return _ExpressionEvaluator(context).visit(self._ast)

    def __repr__(self) -> str:
        return f"Condition({self._expression!r})"


class ConditionalEvaluator:
    """Gate for ``processing.conditional``.

    ``evaluate`` never raises: over-long, unparsable, forbidden or failing
    expressions all evaluate to False, so the directive is skipped.
    """

    def __init__(self, max_expression_length: int = 500) -> None:
        self._max_length = max_expression_length
        self._cache: dict[str, Condition] = {}

    def compile(self, expression: str) -> Condition:
        """Parse and validate, with caching.

        Raises:
            ExpressionSecurityError: If too long or forbidden
            ExpressionSyntaxError: If not valid syntax
        """
        if len(expression) > self._max_length:
            raise ExpressionSecurityError(f"Expression exceeds {self._max_length} characters")
        cached = self._cache.get(expression)
        if cached is not None:
            return cached
        condition = Condition(expression)
        if len(self._cache) >= _CACHE_LIMIT:
            self._cache.clear()
        self._cache[expression] = condition
        return condition

    def evaluate(self, expression: str | None, context: Mapping[str, Any]) -> bool:
        """Evaluate to a bool. Empty expressions pass."""
        if expression is None or not expression.strip():
            return True
        try:
            return bool(self.compile(expression).evaluate(context))
        except (ExpressionSecurityError, ExpressionSyntaxError) as e:
            logger.warning("conditional_rejected", expression=expression[:80], reason=str(e))
            return False
        except ExpressionEvaluationError as e:
            logger.debug("conditional_failed", expression=expression[:80], reason=str(e))
            return False
        except RecursionError:
            logger.warning("conditional_rejected", expression=expression[:80], reason="expression too deeply nested")
            return False
        except Exception as e:
            logger.warning("conditional_failed", expression=expression[:80], reason=f"{type(e).__name__}: {e}")
            return False

    @staticmethod
    def build_context(
        source_data: Mapping[str, Any] | None,
        target_data: Mapping[str, Any] | None,
        node_id: str | None,
        timestamp: str | None = None,
    ) -> dict[str, Any]:
        """Build the evaluation context.

        Node-scoped names are read from the source node's data, falling back
        to the target's when the source is unknown.
        """
        node = source_data if source_data is not None else (target_data or {})
        input_section = node.get("input") or {}
        output = node.get("output") or {}
        error = node.get("error") or {}
        return {
            "nodeId": node_id,
            "nodeData": node,
            "sourceNode": source_data,
            "targetNode": target_data,
            "meta": node.get("meta") or {},
            "input": input_section,
            "output": output,
            "error": error,
            "hasErrors": bool(error.get("hasError")),
            "hasConnections": bool(input_section.get("connections")),
            "isProcessing": (output.get("meta") or {}).get("status") == "processing",
            "timestamp": timestamp,
        }
