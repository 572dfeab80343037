"""
Expression Evaluation Engine
============================

Safe evaluator for the per-period conditional-override language used by
scenario definitions, for example::

    if period > 36 and value > 5 then value = value * 0.9
    if period > 48 then value = Math.max(1, value)
    value = min(value, 12); if period < 6 then value = 0

Grammar
-------
A rule is one or more statements separated by ``;``. Each statement is
either ``value = <expr>`` or ``if <cond> then value = <expr>`` with an
optional ``else value = <expr>``. Expressions may use:

- the variables ``period`` (0-based) and ``value`` (current vector value)
- numeric literals, ``+ - * / %`` and parentheses
- comparisons ``< <= > >= == !=`` and ``and`` / ``or`` / ``not``
- the functions ``max``, ``min`` and ``abs`` (``Math.max`` etc. accepted)

Security Note
-------------
Expressions are parsed with :func:`ast.parse` and walked by a small
interpreter that only understands the node types listed above. Nothing is
compiled or executed, attribute access and subscripts are rejected, and any
name other than ``period``/``value`` or the three functions is an error.

Example
-------
>>> from cashflow_platform.engine.compute import ExpressionEngine
>>> rule = ExpressionEngine().parse_rule("if period > 36 and value > 5 then value = value * 0.9")
>>> rule.apply(period=40, value=10.0)
9.0
>>> rule.apply(period=10, value=10.0)
10.0
"""

from __future__ import annotations

import ast
import logging
import operator
import re
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Mapping, Optional

from .errors import EvaluationError

logger = logging.getLogger("CFP.Compute")

_BIN_OPS: Dict[type, Callable[[Any, Any], Any]] = {
    ast.Add: operator.add,
    ast.Sub: operator.sub,
    ast.Mult: operator.mul,
    ast.Div: operator.truediv,
    ast.Mod: operator.mod,
}

_CMP_OPS: Dict[type, Callable[[Any, Any], bool]] = {
    ast.Lt: operator.lt,
    ast.LtE: operator.le,
    ast.Gt: operator.gt,
    ast.GtE: operator.ge,
    ast.Eq: operator.eq,
    ast.NotEq: operator.ne,
}

_STATEMENT = re.compile(
    r"^if\s+(?P<cond>.+?)\s+then\s+(?P<body>.+?)(?:\s+else\s+(?P<alt>.+))?$",
    re.IGNORECASE | re.DOTALL,
)
_ASSIGNMENT = re.compile(r"^value\s*=(?!=)\s*(?P<expr>.+)$", re.DOTALL)


@dataclass(frozen=True)
class _Statement:
    condition: Optional[ast.expr]
    then_expr: ast.expr
    else_expr: Optional[ast.expr]


class ConditionalRule:
    """
    Parsed conditional-override rule.

    Instances are produced by :meth:`ExpressionEngine.parse_rule` and are
    immutable; :meth:`apply` may be called any number of times.
    """

    def __init__(self, source: str, statements: List[_Statement], engine: "ExpressionEngine") -> None:
        self.source = source
        self._statements = statements
        self._engine = engine

    def apply(self, period: int, value: float) -> float:
        """
        Run every statement in order and return the resulting value.

        Raises
        ------
        EvaluationError
            On arithmetic faults such as division by zero.
        """
        for statement in self._statements:
            names = {"period": period, "value": value}
            if statement.condition is None or self._engine._truthy(statement.condition, names):
                value = self._engine._number(statement.then_expr, names)
            elif statement.else_expr is not None:
                value = self._engine._number(statement.else_expr, names)
        return value


class ExpressionEngine:
    """
    Parse and evaluate conditional-override expressions without ``eval``.

    Attributes
    ----------
    variables : frozenset
        Names an expression may reference.
    functions : dict
        Callable names an expression may invoke.

    Notes
    -----
    **Thread Safety**: The engine holds no per-evaluation state and can be
    shared across scenario engines.
    """

    variables = frozenset({"period", "value"})

    def __init__(self) -> None:
        self.functions: Dict[str, Callable[..., float]] = {
            "max": max,
            "min": min,
            "abs": abs,
        }

    def _normalize_expression(self, expression: str) -> str:
        """
        Normalize JavaScript/SQL-flavoured syntax to the Python grammar.

        - ``Math.max`` → ``max`` (likewise ``min``/``abs``)
        - ``&&`` / ``||`` / ``!=`` kept, ``!`` → ``not``
        - ``AND`` / ``Or`` / ``NOT`` (any case) → lower case
        - ``<>`` → ``!=``
        """
        normalized = expression.strip()
        normalized = re.sub(r"\bMath\.(max|min|abs)\b", r"\1", normalized)
        normalized = normalized.replace("&&", " and ").replace("||", " or ")
        normalized = normalized.replace("<>", "!=")
        normalized = re.sub(r"!(?!=)", " not ", normalized)
        normalized = re.sub(
            r"\b(and|or|not)\b", lambda m: m.group(1).lower(), normalized, flags=re.IGNORECASE
        )
        return normalized

    # ------------------------------------------------------------------
    # Parsing
    # ------------------------------------------------------------------
    def parse_rule(self, text: str) -> ConditionalRule:
        """
        Parse a rule into a :class:`ConditionalRule`.

        Raises
        ------
        EvaluationError
            If the text does not match the grammar.
        """
        if not text or not text.strip():
            raise EvaluationError("Conditional logic is empty")
        statements: List[_Statement] = []
        for raw in self._normalize_expression(text).split(";"):
            raw = raw.strip()
            if raw:
                statements.append(self._parse_statement(raw, text))
        if not statements:
            raise EvaluationError(f"Conditional logic has no statements: {text!r}")
        logger.debug(f"Parsed conditional logic into {len(statements)} statement(s): {text!r}")
        return ConditionalRule(text, statements, self)

    def _parse_statement(self, raw: str, source: str) -> _Statement:
        match = _STATEMENT.match(raw)
        if match is None:
            return _Statement(None, self._parse_assignment(raw, source), None)
        alt = match.group("alt")
        return _Statement(
            condition=self.parse_expression(match.group("cond")),
            then_expr=self._parse_assignment(match.group("body"), source),
            else_expr=self._parse_assignment(alt, source) if alt else None,
        )

    def _parse_assignment(self, raw: str, source: str) -> ast.expr:
        match = _ASSIGNMENT.match(raw.strip())
        if match is None:
            raise EvaluationError(
                f"Expected 'value = <expression>' in {source!r}, got {raw.strip()!r}"
            )
        return self.parse_expression(match.group("expr"))

    def parse_expression(self, expression: str) -> ast.expr:
        """
        Parse a single expression and check it against the grammar.

        Raises
        ------
        EvaluationError
            On syntax errors or disallowed constructs.
        """
        try:
            tree = ast.parse(expression.strip(), mode="eval")
        except SyntaxError as exc:
            raise EvaluationError(f"Cannot parse expression {expression!r}: {exc.msg}") from exc
        self._check(tree.body, expression)
        return tree.body

    def _check(self, node: ast.AST, source: str) -> None:
        if isinstance(node, ast.Constant):
            if isinstance(node.value, bool) or not isinstance(node.value, (int, float)):
                raise EvaluationError(f"Only numeric literals are allowed in {source!r}")
        elif isinstance(node, ast.Name):
            if node.id not in self.variables:
                raise EvaluationError(f"Unknown name '{node.id}' in {source!r}")
        elif isinstance(node, ast.BinOp):
            if type(node.op) not in _BIN_OPS:
                raise EvaluationError(f"Operator not allowed in {source!r}")
            self._check(node.left, source)
            self._check(node.right, source)
        elif isinstance(node, ast.UnaryOp):
            if not isinstance(node.op, (ast.USub, ast.UAdd, ast.Not)):
                raise EvaluationError(f"Unary operator not allowed in {source!r}")
            self._check(node.operand, source)
        elif isinstance(node, ast.BoolOp):
            for item in node.values:
                self._check(item, source)
        elif isinstance(node, ast.Compare):
            if any(type(op) not in _CMP_OPS for op in node.ops):
                raise EvaluationError(f"Comparison not allowed in {source!r}")
            self._check(node.left, source)
            for item in node.comparators:
                self._check(item, source)
        elif isinstance(node, ast.Call):
            if not isinstance(node.func, ast.Name) or node.func.id not in self.functions:
                raise EvaluationError(f"Only max/min/abs calls are allowed in {source!r}")
            if node.keywords or not node.args:
                raise EvaluationError(f"Bad call to {node.func.id} in {source!r}")
            for item in node.args:
                self._check(item, source)
        else:
            raise EvaluationError(
                f"Construct '{type(node).__name__}' is not allowed in {source!r}"
            )

    # ------------------------------------------------------------------
    # Evaluation
    # ------------------------------------------------------------------
    def evaluate(self, expression: str, variables: Mapping[str, float]) -> Any:
        """
        Parse and evaluate one expression against ``variables``.

        Parameters
        ----------
        expression : str
            Expression in the rule grammar (no assignment).
        variables : mapping
            Values for ``period`` and ``value``.
        """
        return self._eval(self.parse_expression(self._normalize_expression(expression)), variables)

    def _number(self, node: ast.expr, names: Mapping[str, float]) -> float:
        result = self._eval(node, names)
        if isinstance(result, bool):
            raise EvaluationError("Assignment produced a boolean, expected a number")
        return float(result)

    def _truthy(self, node: ast.expr, names: Mapping[str, float]) -> bool:
        return bool(self._eval(node, names))

    def _eval(self, node: ast.AST, names: Mapping[str, float]) -> Any:
        if isinstance(node, ast.Constant):
            return node.value
        if isinstance(node, ast.Name):
            try:
                return names[node.id]
            except KeyError:
                raise EvaluationError(f"Variable '{node.id}' is not bound") from None
        if isinstance(node, ast.BinOp):
            left = self._eval(node.left, names)
            right = self._eval(node.right, names)
            try:
                return _BIN_OPS[type(node.op)](left, right)
            except ZeroDivisionError as exc:
                raise EvaluationError("Division by zero in conditional logic") from exc
        if isinstance(node, ast.UnaryOp):
            operand = self._eval(node.operand, names)
            if isinstance(node.op, ast.Not):
                return not operand
            return -operand if isinstance(node.op, ast.USub) else +operand
        if isinstance(node, ast.BoolOp):
            if isinstance(node.op, ast.And):
                return all(self._eval(item, names) for item in node.values)
            return any(self._eval(item, names) for item in node.values)
        if isinstance(node, ast.Compare):
            left = self._eval(node.left, names)
            for op, comparator in zip(node.ops, node.comparators):
                right = self._eval(comparator, names)
                if not _CMP_OPS[type(op)](left, right):
                    return False
                left = right
            return True
        if isinstance(node, ast.Call):
            args = [self._eval(arg, names) for arg in node.args]
            try:
                return self.functions[node.func.id](*args)
            except TypeError as exc:
                raise EvaluationError(f"Bad arguments to {node.func.id}: {exc}") from exc
        raise EvaluationError(f"Cannot evaluate '{type(node).__name__}'")
