"""
Tests for client formulas: the restricted expression evaluator, the
vehicle type -> General -> standard lookup, and pricing through the engine.
"""

from datetime import date
from decimal import Decimal

import pytest

from tariff_engine.exceptions import FormulaError
from tariff_engine.services.formulas import (
    STANDARD_FORMULA,
    FormulaResolver,
    evaluate_formula,
    validate_formula,
)
from tariff_engine.types import CalculationMethod

from .fakes import CLIENT, InMemoryFormulaStore, client_formula, context, make_engine, record

JAN_1 = date(2025, 1, 1)
YEAR_END = date(2025, 12, 31)
PALLET = CalculationMethod.PALLET

VARIABLES = {"Valor": Decimal("30"), "Cantidad": Decimal("12"), "Palets": Decimal("12"), "Peso": None}


class TestEvaluation:
    def test_standard_formula(self):
        assert evaluate_formula(STANDARD_FORMULA, VARIABLES) == Decimal("360")

    def test_conditional_pricing(self):
        formula = "Valor * Cantidad * 0.9 if Palets >= 10 else Valor * Cantidad"
        assert evaluate_formula(formula, VARIABLES) == Decimal("324.0")
        assert evaluate_formula(formula, {**VARIABLES, "Palets": Decimal("4")}) == Decimal("360")

    def test_functions(self):
        assert evaluate_formula("max(Valor * Cantidad, 500)", VARIABLES) == Decimal("500")
        assert evaluate_formula("round(Valor / 7, 2)", VARIABLES) == Decimal("4.29")

    @pytest.mark.parametrize("expression", [
        "__import__('os').system('true')",
        "Valor.real",
        "Valor * Palets + Peaje",
        "Valor ** 2",
        "'30'",
        "",
    ])
    def test_disallowed_expressions_are_reported(self, expression):
        assert validate_formula(expression)
        with pytest.raises(FormulaError):
            evaluate_formula(expression, VARIABLES)

    def test_variable_without_value(self):
        with pytest.raises(FormulaError) as excinfo:
            evaluate_formula("Peso * 2", VARIABLES)
        assert excinfo.value.details == {"variable": "Peso"}
        assert excinfo.value.status_code == 422

    def test_division_by_zero(self):
        with pytest.raises(FormulaError, match="divides by zero"):
            evaluate_formula("Valor / (Cantidad - 12)", VARIABLES)

    def test_condition_is_not_an_amount(self):
        with pytest.raises(FormulaError, match="not an amount"):
            evaluate_formula("Palets > 10", VARIABLES)


class TestResolver:
    def resolve(self, formulas, vehicle_type="Semi", on_date=date(2025, 3, 10)):
        return FormulaResolver(InMemoryFormulaStore(formulas)).resolve(CLIENT, vehicle_type, on_date)

    def test_vehicle_type_beats_general(self):
        choice = self.resolve([client_formula(1, "Valor * Cantidad * 0.9"),
                               client_formula(2, "Valor * Cantidad + 50", vehicle_type="semi")])
        assert (choice.formula_id, choice.source) == (2, "vehicle_type")

    def test_general_fallback(self):
        choice = self.resolve([client_formula(1, "Valor * Cantidad * 0.9"),
                               client_formula(2, "Valor * Cantidad + 50", vehicle_type="Chasis")])
        assert (choice.formula_id, choice.source) == (1, "general")

    def test_standard_when_nothing_applies(self):
        choice = self.resolve([
            client_formula(1, "Valor * 2", valid_until=date(2025, 2, 28)),
            client_formula(2, "Valor * 3", client=99),
            client_formula(3, "Valor * 4", active=False),
        ])
        assert choice.is_standard
        assert choice.expression == STANDARD_FORMULA

    def test_latest_valid_from_wins(self):
        choice = self.resolve([client_formula(1, "Valor * 2"),
                               client_formula(2, "Valor * 3", valid_from=date(2025, 3, 1))])
        assert choice.formula_id == 2

    def test_no_store_means_standard(self):
        assert FormulaResolver().resolve(CLIENT, "Semi", JAN_1).is_standard


class TestPricingThroughFormulas:
    def engine(self):
        return make_engine(
            records=[record(1, 100, JAN_1, YEAR_END, method=PALLET, toll_value="40")],
            formulas=[client_formula(1, "Valor * Cantidad * 0.9"),
                      client_formula(2, "Valor * Cantidad + 50", vehicle_type="Semi")],
        )

    def test_vehicle_type_changes_the_price(self):
        engine = self.engine()

        semi = engine.calculate(context(vehicle_type="Semi", pallets=Decimal("10")))
        chasis = engine.calculate(context(vehicle_type="Chasis", pallets=Decimal("10")))

        assert semi.base_value == Decimal("1050.00")
        assert semi.formula_applied == "Valor * Cantidad + 50 (Valor=100, Cantidad=10)"
        assert semi.metadata["formula"] == {"expression": "Valor * Cantidad + 50", "source": "vehicle_type", "id": 2}
        assert chasis.cache_hit is False
        assert chasis.base_value == Decimal("900.00")
        assert chasis.metadata["formula"]["source"] == "general"

    def test_toll_stays_outside_the_formula(self):
        result = self.engine().calculate(context(vehicle_type="Chasis", pallets=Decimal("10")))
        assert result.toll_value == Decimal("40.00")
        assert result.total == Decimal("940.00")

    def test_standard_formula_keeps_the_method_description(self):
        engine = make_engine(records=[record(1, "30.50", JAN_1, YEAR_END, method=PALLET)])
        result = engine.calculate(context(pallets=Decimal("4")))
        assert result.formula_applied == "30.50 x 4 pallets"
        assert result.metadata["formula"]["source"] == "standard"

    def test_broken_stored_formula_fails_the_calculation(self):
        engine = make_engine(
            records=[record(1, 100, JAN_1, YEAR_END, method=PALLET)],
            formulas=[client_formula(1, "Valor * Peaje")],
        )
        with pytest.raises(FormulaError):
            engine.calculate(context(pallets=Decimal("2")))
        assert engine.audit.snapshot()[-1].errors
