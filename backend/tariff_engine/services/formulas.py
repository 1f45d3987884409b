"""
Per-client pricing formulas.

A client can replace the default ``Valor * Cantidad`` with its own expression
for one vehicle type, or for every type through a "General" formula, within a
validity window. Expressions are a restricted subset of Python syntax:

  - arithmetic: ``+ - * /``, parentheses and unary minus
  - comparisons, ``and``/``or`` and ``a if condition else b``
  - functions: ``min()``, ``max()``, ``abs()``, ``round(x, places)``
  - variables: see ``FORMULA_VARIABLES``

Anything else (attribute access, other names or calls, strings) is rejected
before evaluation. The toll is not a formula variable: it is added after the
rules, whatever the formula.
"""

from __future__ import annotations

import ast
import logging
import operator
from dataclasses import dataclass
from datetime import date
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Dict, List, Optional

from ..dataclasses import CalculationContext, TariffRecord
from ..exceptions import FormulaError
from .utils import d

logger = logging.getLogger(__name__)

STANDARD_FORMULA = "Valor * Cantidad"
GENERAL_VEHICLE_TYPE = "General"

FORMULA_VARIABLES = {
    "Valor": "unit value of the resolved tariff record",
    "Cantidad": "quantity the method bills: kilometers, pallets (after the minimum) or 1 for fixed prices",
    "Distancia": "route distance in km (per-kilometer tariffs only)",
    "Palets": "pallets billed (Pallet method) or requested",
    "Peso": "weight in kg",
    "Volumen": "volume in m3",
    "Bultos": "package count",
    "Vehiculos": "number of vehicles (1 when none are listed)",
}

_BINARY = {
    ast.Add: operator.add,
    ast.Sub: operator.sub,
    ast.Mult: operator.mul,
    ast.Div: operator.truediv,
}

_COMPARE = {
    ast.Lt: operator.lt,
    ast.LtE: operator.le,
    ast.Gt: operator.gt,
    ast.GtE: operator.ge,
    ast.Eq: operator.eq,
    ast.NotEq: operator.ne,
}


def _round(value, places=0):
    return d(value).quantize(Decimal(1).scaleb(-int(places)), rounding=ROUND_HALF_UP)


FORMULA_FUNCTIONS = {"min": min, "max": max, "abs": abs, "round": _round}


@dataclass(frozen=True)
class FormulaChoice:
    expression: str
    source: str  # "vehicle_type", "general" or "standard"
    formula_id: Optional[int] = None

    @property
    def is_standard(self) -> bool:
        return self.source == "standard"

    def to_dict(self) -> dict:
        return {"expression": self.expression, "source": self.source, "id": self.formula_id}


STANDARD_CHOICE = FormulaChoice(STANDARD_FORMULA, "standard")


def _parse(expression: str) -> ast.AST:
    try:
        return ast.parse(expression.strip(), mode="eval").body
    except SyntaxError as e:
        raise FormulaError(f"Syntax error in formula {expression!r}: {e.msg}", formula=expression)


def validate_formula(expression: str) -> List[str]:
    """Return the problems found in ``expression``; an empty list means it can be stored."""
    if not expression or not expression.strip():
        return ["Formula is empty"]
    try:
        tree = _parse(expression)
    except FormulaError as e:
        return [e.message]
    errors: List[str] = []
    _validate_node(tree, errors)
    return errors


def _validate_node(node: ast.AST, errors: List[str]) -> None:
    if isinstance(node, ast.BinOp):
        if type(node.op) not in _BINARY:
            errors.append(f"Disallowed operator: {type(node.op).__name__}")
        _validate_node(node.left, errors)
        _validate_node(node.right, errors)

    elif isinstance(node, ast.UnaryOp):
        if not isinstance(node.op, (ast.USub, ast.UAdd)):
            errors.append(f"Disallowed unary operator: {type(node.op).__name__}")
        _validate_node(node.operand, errors)

    elif isinstance(node, ast.Compare):
        for op in node.ops:
            if type(op) not in _COMPARE:
                errors.append(f"Disallowed comparison: {type(op).__name__}")
        for child in [node.left, *node.comparators]:
            _validate_node(child, errors)

    elif isinstance(node, ast.BoolOp):
        for value in node.values:
            _validate_node(value, errors)

    elif isinstance(node, ast.IfExp):
        _validate_node(node.test, errors)
        _validate_node(node.body, errors)
        _validate_node(node.orelse, errors)

    elif isinstance(node, ast.Call):
        if not (isinstance(node.func, ast.Name) and node.func.id in FORMULA_FUNCTIONS) or node.keywords:
            errors.append(f"Disallowed function call: {ast.unparse(node.func)}")
        for arg in node.args:
            _validate_node(arg, errors)

    elif isinstance(node, ast.Name):
        if node.id not in FORMULA_VARIABLES:
            errors.append(f"Unknown variable: {node.id}")

    elif isinstance(node, ast.Constant):
        if isinstance(node.value, bool) or not isinstance(node.value, (int, float)):
            errors.append(f"Disallowed constant: {node.value!r}")

    else:
        errors.append(f"Disallowed expression: {type(node).__name__}")


def evaluate_formula(expression: str, variables: Dict[str, Optional[Decimal]]) -> Decimal:
    """
    Evaluate a client formula with Decimal arithmetic.

    Raises:
        FormulaError: the expression is not allowed, uses a variable with no
            value for this calculation, divides by zero or is not an amount
    """
    errors = validate_formula(expression)
    if errors:
        raise FormulaError(f"Invalid formula {expression!r}: {'; '.join(errors)}", formula=expression)
    try:
        value = _eval(_parse(expression), variables)
    except (ZeroDivisionError, InvalidOperation):
        raise FormulaError(f"Formula {expression!r} divides by zero", formula=expression)
    except TypeError as e:
        raise FormulaError(f"Formula {expression!r} cannot be evaluated: {e}", formula=expression)
    if isinstance(value, bool):
        raise FormulaError(f"Formula {expression!r} is a condition, not an amount", formula=expression)
    return d(value)


def _eval(node: ast.AST, variables: Dict[str, Optional[Decimal]]):
    if isinstance(node, ast.Constant):
        return d(node.value)
    if isinstance(node, ast.Name):
        value = variables.get(node.id)
        if value is None:
            raise FormulaError(f"{node.id} has no value for this calculation", variable=node.id)
        return d(value)
    if isinstance(node, ast.BinOp):
        return _BINARY[type(node.op)](_eval(node.left, variables), _eval(node.right, variables))
    if isinstance(node, ast.UnaryOp):
        operand = _eval(node.operand, variables)
        return -operand if isinstance(node.op, ast.USub) else operand
    if isinstance(node, ast.Compare):
        left = _eval(node.left, variables)
        for op, comparator in zip(node.ops, node.comparators):
            right = _eval(comparator, variables)
            if not _COMPARE[type(op)](left, right):
                return False
            left = right
        return True
    if isinstance(node, ast.BoolOp):
        if isinstance(node.op, ast.And):
            return all(_eval(v, variables) for v in node.values)
        return any(_eval(v, variables) for v in node.values)
    if isinstance(node, ast.IfExp):
        return _eval(node.body, variables) if _eval(node.test, variables) else _eval(node.orelse, variables)
    # only whitelisted calls get past validate_formula
    return FORMULA_FUNCTIONS[node.func.id](*[_eval(arg, variables) for arg in node.args])


def formula_variables(
    record: TariffRecord,
    context: CalculationContext,
    quantity: Decimal,
    distance: Optional[Decimal] = None,
    pallets: Optional[Decimal] = None,
) -> Dict[str, Optional[Decimal]]:
    package_count = context.package_count
    return {
        "Valor": record.unit_value,
        "Cantidad": quantity,
        "Distancia": distance,
        "Palets": pallets if pallets is not None else context.pallets,
        "Peso": context.weight_kg,
        "Volumen": context.volume_m3,
        "Bultos": Decimal(package_count) if package_count is not None else None,
        "Vehiculos": Decimal(context.vehicle_count or 1),
    }


class FormulaResolver:
    """
    Picks the formula that prices a calculation.

    Order: the client's formula for the requested vehicle type, then its
    "General" formula, then ``STANDARD_FORMULA``. Within a level the formula
    with the latest ``valid_from`` wins (ties go to the highest id). Only
    formulas in force on the calculation date count.
    """

    def __init__(self, formulas=None):
        self.formulas = formulas

    def resolve(self, client: int, vehicle_type: str, on_date: date) -> FormulaChoice:
        if self.formulas is None:
            return STANDARD_CHOICE
        candidates = [
            f for f in self.formulas.formulas_for(client, on_date)
            if f.client == client and f.in_force(on_date)
        ]
        levels = (("vehicle_type", (vehicle_type or "").strip().lower()), ("general", GENERAL_VEHICLE_TYPE.lower()))
        for source, wanted in levels:
            if not wanted:
                continue
            matching = [f for f in candidates if (f.vehicle_type or "").strip().lower() == wanted]
            if matching:
                chosen = max(matching, key=lambda f: (f.valid_from or date.min, f.id or 0))
                logger.debug(f"Formula {chosen.id} ({chosen.vehicle_type}) prices client {client}: {chosen.expression}")
                return FormulaChoice(chosen.expression, source, chosen.id)
        return STANDARD_CHOICE
