"""
Restricted expression language for extra eligibility conditions.

Conditions are written in Python expression syntax and compiled into a small
tree of comparisons and boolean connectives over named fields:

    control.yob >= case.yob - 2 and control.yob <= case.yob + 2
    region in ["North", "South"] and not (case.site == control.site)
    control.deathdate is None or control.deathdate > case.indexdate

``case.<field>`` reads the current case, ``control.<field>`` (or a bare
``<field>``) reads the candidate controls. Evaluation is vectorised: case
fields are scalars, control fields are pandas Series, and the result is a
boolean mask aligned with the candidate table. Comparisons involving a
missing value are false.
"""

import ast
import operator
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, FrozenSet, List, Mapping, Tuple, Union

import numpy as np
import pandas as pd

from ..core.exceptions import ConfigurationError


CASE = "case"
CONTROL = "control"

ARITHMETIC: Dict[type, Callable[[Any, Any], Any]] = {
    ast.Add: operator.add,
    ast.Sub: operator.sub,
    ast.Mult: operator.mul,
    ast.Div: operator.truediv,
}

COMPARISONS: Dict[type, Tuple[str, Callable[[Any, Any], Any]]] = {
    ast.Eq: ("==", operator.eq),
    ast.NotEq: ("!=", operator.ne),
    ast.Lt: ("<", operator.lt),
    ast.LtE: ("<=", operator.le),
    ast.Gt: (">", operator.gt),
    ast.GtE: (">=", operator.ge),
}

LITERAL_TYPES = (int, float, str, bool, type(None))


# =============================================================================
# EXPRESSION TREE
# =============================================================================

@dataclass(frozen=True)
class FieldRef:
    """A column read from the case or from the candidate controls."""
    role: str
    name: str

    def evaluate(self, case: Mapping[str, Any], controls: pd.DataFrame) -> Any:
        if self.role == CASE:
            return case[self.name]
        return controls[self.name]


@dataclass(frozen=True)
class Literal:
    value: Any

    def evaluate(self, case: Mapping[str, Any], controls: pd.DataFrame) -> Any:
        return self.value


@dataclass(frozen=True)
class Arithmetic:
    op: type
    left: Any
    right: Any

    def evaluate(self, case: Mapping[str, Any], controls: pd.DataFrame) -> Any:
        return ARITHMETIC[self.op](
            self.left.evaluate(case, controls), self.right.evaluate(case, controls)
        )


@dataclass(frozen=True)
class Negative:
    operand: Any

    def evaluate(self, case: Mapping[str, Any], controls: pd.DataFrame) -> Any:
        return -self.operand.evaluate(case, controls)


@dataclass(frozen=True)
class Comparison:
    op: type
    left: Any
    right: Any

    def evaluate(self, case: Mapping[str, Any], controls: pd.DataFrame) -> Any:
        left = self.left.evaluate(case, controls)
        right = self.right.evaluate(case, controls)
        _, compare = COMPARISONS[self.op]
        if _is_missing_scalar(left) or _is_missing_scalar(right):
            return False
        result = compare(left, right)
        # Missing values never satisfy a comparison, including !=
        for side in (left, right):
            if isinstance(side, pd.Series):
                result = result & side.notna()
        return result


@dataclass(frozen=True)
class Membership:
    operand: Any
    values: Tuple[Any, ...]
    negate: bool = False

    def evaluate(self, case: Mapping[str, Any], controls: pd.DataFrame) -> Any:
        value = self.operand.evaluate(case, controls)
        if isinstance(value, pd.Series):
            found = value.isin(list(self.values))
            return (~found & value.notna()) if self.negate else found
        if _is_missing_scalar(value):
            return False
        found = value in self.values
        return not found if self.negate else found


@dataclass(frozen=True)
class MissingCheck:
    operand: Any
    negate: bool = False

    def evaluate(self, case: Mapping[str, Any], controls: pd.DataFrame) -> Any:
        value = self.operand.evaluate(case, controls)
        if isinstance(value, pd.Series):
            return value.notna() if self.negate else value.isna()
        missing = _is_missing_scalar(value)
        return not missing if self.negate else missing


@dataclass(frozen=True)
class Connective:
    kind: str  # "and" / "or"
    operands: Tuple[Any, ...]

    def evaluate(self, case: Mapping[str, Any], controls: pd.DataFrame) -> Any:
        masks = [_as_mask(node.evaluate(case, controls), controls.index) for node in self.operands]
        result = masks[0]
        for mask in masks[1:]:
            result = (result & mask) if self.kind == "and" else (result | mask)
        return result


@dataclass(frozen=True)
class Not:
    operand: Any

    def evaluate(self, case: Mapping[str, Any], controls: pd.DataFrame) -> Any:
        return ~_as_mask(self.operand.evaluate(case, controls), controls.index)


Node = Union[FieldRef, Literal, Arithmetic, Negative, Comparison, Membership,
             MissingCheck, Connective, Not]


def _is_missing_scalar(value: Any) -> bool:
    if isinstance(value, pd.Series):
        return False
    try:
        return bool(pd.isna(value))
    except (TypeError, ValueError):
        return False


def _as_mask(value: Any, index: pd.Index) -> pd.Series:
    """Broadcast a scalar or Series result to a boolean mask over ``index``."""
    if isinstance(value, pd.Series):
        return value.fillna(False).astype(bool)
    if isinstance(value, (bool, np.bool_)):
        return pd.Series(bool(value), index=index, dtype=bool)
    raise ConfigurationError(
        f"Extra condition produced a non-boolean value of type {type(value).__name__}"
    )


# =============================================================================
# COMPILER: PYTHON AST -> EXPRESSION TREE
# =============================================================================

class _Compiler:
    """Walks a parsed expression, accepting only whitelisted constructs."""

    def __init__(self, expression: str):
        self.expression = expression
        self.fields: Dict[str, set] = {CASE: set(), CONTROL: set()}

    def compile(self, node: ast.AST) -> Node:
        if isinstance(node, ast.BoolOp):
            kind = "and" if isinstance(node.op, ast.And) else "or"
            return Connective(kind, tuple(self.compile(value) for value in node.values))

        if isinstance(node, ast.UnaryOp):
            if isinstance(node.op, ast.Not):
                return Not(self.compile(node.operand))
            if isinstance(node.op, ast.USub):
                return Negative(self.compile(node.operand))
            if isinstance(node.op, ast.UAdd):
                return self.compile(node.operand)

        if isinstance(node, ast.BinOp) and type(node.op) in ARITHMETIC:
            return Arithmetic(type(node.op), self.compile(node.left), self.compile(node.right))

        if isinstance(node, ast.Compare):
            return self._compile_compare(node)

        if isinstance(node, ast.Constant) and isinstance(node.value, LITERAL_TYPES):
            return Literal(node.value)

        if isinstance(node, ast.Name):
            if node.id in (CASE, CONTROL):
                raise self._error(f"'{node.id}' must be followed by a field name")
            return self._field(CONTROL, node.id)

        if isinstance(node, ast.Attribute):
            if isinstance(node.value, ast.Name) and node.value.id in (CASE, CONTROL):
                return self._field(node.value.id, node.attr)
            raise self._error("field references must be case.<field> or control.<field>")

        raise self._error(f"unsupported element '{type(node).__name__}'")

    def _compile_compare(self, node: ast.Compare) -> Node:
        # a < b < c becomes (a < b) and (b < c)
        parts: List[Node] = []
        left = node.left
        for op, right in zip(node.ops, node.comparators):
            parts.append(self._compile_pair(left, op, right))
            left = right
        if len(parts) == 1:
            return parts[0]
        return Connective("and", tuple(parts))

    def _compile_pair(self, left: ast.AST, op: ast.cmpop, right: ast.AST) -> Node:
        if isinstance(op, (ast.In, ast.NotIn)):
            return Membership(
                self.compile(left), self._literal_collection(right), isinstance(op, ast.NotIn)
            )
        if isinstance(op, (ast.Is, ast.IsNot)):
            if not (isinstance(right, ast.Constant) and right.value is None):
                raise self._error("'is' / 'is not' may only be used with None")
            return MissingCheck(self.compile(left), isinstance(op, ast.IsNot))
        if type(op) in COMPARISONS:
            return Comparison(type(op), self.compile(left), self.compile(right))
        raise self._error(f"unsupported comparison '{type(op).__name__}'")

    def _literal_collection(self, node: ast.AST) -> Tuple[Any, ...]:
        if not isinstance(node, (ast.List, ast.Tuple, ast.Set)):
            raise self._error("the right side of 'in' must be a list of literals")
        values = []
        for element in node.elts:
            if isinstance(element, ast.UnaryOp) and isinstance(element.op, ast.USub) \
                    and isinstance(element.operand, ast.Constant):
                values.append(-element.operand.value)
            elif isinstance(element, ast.Constant) and isinstance(element.value, LITERAL_TYPES):
                values.append(element.value)
            else:
                raise self._error("the right side of 'in' must be a list of literals")
        return tuple(values)

    def _field(self, role: str, name: str) -> FieldRef:
        self.fields[role].add(name)
        return FieldRef(role, name)

    def _error(self, reason: str) -> ConfigurationError:
        return ConfigurationError(f"Invalid extra condition {self.expression!r}: {reason}")


@dataclass(frozen=True)
class Condition:
    """A compiled extra eligibility condition."""
    expression: str
    root: Any = field(repr=False)
    case_fields: FrozenSet[str] = frozenset()
    control_fields: FrozenSet[str] = frozenset()

    def evaluate(self, case: Mapping[str, Any], controls: pd.DataFrame) -> pd.Series:
        """Return the boolean mask of controls satisfying the condition for ``case``."""
        return _as_mask(self.root.evaluate(case, controls), controls.index)


def parse_condition(expression: str) -> Condition:
    """
    Compile a condition string.

    Raises:
        ConfigurationError: on syntax errors or constructs outside the
            supported language (calls, subscripts, lambdas, ...).
    """
    if not isinstance(expression, str) or not expression.strip():
        raise ConfigurationError("Extra condition must be a non-empty string")
    try:
        tree = ast.parse(expression.strip(), mode="eval")
    except SyntaxError as e:
        raise ConfigurationError(f"Invalid extra condition {expression!r}: {e.msg}") from e

    compiler = _Compiler(expression)
    root = compiler.compile(tree.body)
    return Condition(
        expression=expression,
        root=root,
        case_fields=frozenset(compiler.fields[CASE]),
        control_fields=frozenset(compiler.fields[CONTROL]),
    )
