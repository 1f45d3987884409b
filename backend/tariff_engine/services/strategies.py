from __future__ import annotations

import logging
from decimal import Decimal
from typing import Dict, Optional

from ..dataclasses import CalculationContext, MethodOutcome, TariffRecord
from ..exceptions import MissingDistanceError
from ..types import CalculationMethod
from .formulas import STANDARD_CHOICE, FormulaChoice, evaluate_formula, formula_variables
from .utils import ZERO, d, money

logger = logging.getLogger(__name__)


def _priced(
    record: TariffRecord,
    context: CalculationContext,
    formula: FormulaChoice,
    quantity: Decimal,
    description: str,
    details: Dict[str, str],
    warnings=None,
    distance: Optional[Decimal] = None,
    pallets: Optional[Decimal] = None,
) -> MethodOutcome:
    """Price ``quantity`` units through the client formula (``Valor * Cantidad`` by default)."""
    warnings = list(warnings or [])
    variables = formula_variables(record, context, quantity, distance=distance, pallets=pallets)
    base_value = money(evaluate_formula(formula.expression, variables))
    if not formula.is_standard:
        description = f"{formula.expression} (Valor={record.unit_value}, Cantidad={quantity})"
        if base_value < ZERO:
            warnings.append(f"Client formula produced a negative base value ({base_value})")
    return MethodOutcome(
        base_value=base_value,
        formula=description,
        warnings=warnings,
        details={**details, "formulaSource": formula.source},
    )


class KilometerStrategy:
    method = CalculationMethod.KILOMETER

    def __init__(self, distances):
        self.distances = distances

    def compute(self, record: TariffRecord, context: CalculationContext,
                formula: FormulaChoice = STANDARD_CHOICE) -> MethodOutcome:
        distance = self.distances.distance_for(record)
        if distance is None or d(distance) <= ZERO:
            logger.warning(f"Missing distance for tariff {record.id} (route {record.route_id})")
            raise MissingDistanceError(
                f"Route {record.origin}->{record.destination} has no distance; per-kilometer tariff {record.id} cannot be priced",
                record=record.id,
            )
        distance = d(distance)
        return _priced(
            record, context, formula, distance,
            f"{record.unit_value} x {distance} km",
            {"distanceKm": str(distance), "unitValue": str(record.unit_value)},
            distance=distance,
        )


class PalletStrategy:
    method = CalculationMethod.PALLET

    def __init__(self, minimum_pallets=1):
        self.minimum_pallets = d(minimum_pallets)

    def compute(self, record: TariffRecord, context: CalculationContext,
                formula: FormulaChoice = STANDARD_CHOICE) -> MethodOutcome:
        requested = context.pallets if context.pallets is not None else ZERO
        billed = max(d(requested), self.minimum_pallets)
        warnings = []
        if context.pallets is None:
            warnings.append(f"Billed the minimum of {self.minimum_pallets} pallet(s); none requested")
        elif billed != requested:
            warnings.append(f"Billed the minimum of {self.minimum_pallets} pallet(s); {requested} requested")
        return _priced(
            record, context, formula, billed,
            f"{record.unit_value} x {billed} pallets",
            {"palletsBilled": str(billed), "unitValue": str(record.unit_value)},
            warnings=warnings,
            pallets=billed,
        )


class FixedStrategy:
    method = CalculationMethod.FIXED

    def compute(self, record: TariffRecord, context: CalculationContext,
                formula: FormulaChoice = STANDARD_CHOICE) -> MethodOutcome:
        warnings = []
        if formula.is_standard and (context.pallets is not None or context.weight_kg is not None):
            warnings.append("quantities ignored for fixed-price method")
        return _priced(
            record, context, formula, Decimal("1"),
            f"fixed {record.unit_value}",
            {"unitValue": str(record.unit_value)},
            warnings=warnings,
        )


def build_strategy_table(distances, minimum_pallets=1) -> Dict[CalculationMethod, object]:
    """One strategy per calculation method, keyed by the method enum."""
    strategies = [KilometerStrategy(distances), PalletStrategy(minimum_pallets), FixedStrategy()]
    return {s.method: s for s in strategies}
