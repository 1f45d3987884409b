"""
Batch "what if" runs over the engine.

Scenarios run one after the other in input order. A failing scenario never
stops the batch; it is reported under ``errores`` with its input index.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field, replace
from decimal import Decimal
from typing import Any, Dict, List, Optional

from ..dataclasses import CalculationContext, CalculationResult
from ..exceptions import TariffEngineError
from ..types import CalculationMethod
from .utils import money

logger = logging.getLogger(__name__)

COMPARED_METHODS = (CalculationMethod.KILOMETER, CalculationMethod.PALLET, CalculationMethod.FIXED)


@dataclass
class Scenario:
    name: str
    context: CalculationContext


@dataclass
class SimulationConfig:
    compare_methods: bool = False
    include_breakdown: bool = False
    apply_rules: bool = True
    use_cache: bool = False


@dataclass
class ScenarioResult:
    index: int
    name: str
    context: CalculationContext
    elapsed_ms: float
    results: Dict[str, CalculationResult] = field(default_factory=dict)
    method_errors: Dict[str, Dict[str, str]] = field(default_factory=dict)

    @property
    def totals(self) -> Dict[str, Decimal]:
        return {method: r.total for method, r in self.results.items()}

    def analysis(self) -> Optional[Dict[str, Any]]:
        totals = list(self.totals.values())
        if not totals:
            return None
        lowest, highest = min(totals), max(totals)
        return {
            "totalMinimo": str(lowest),
            "totalMaximo": str(highest),
            "totalPromedio": str(money(sum(totals) / len(totals))),
            "variacion": str(highest - lowest),
            "metodoMasEconomico": min(self.totals, key=self.totals.get),
            "metodosExitosos": len(totals),
            "metodosConError": len(self.method_errors),
        }


@dataclass
class ScenarioError:
    index: int
    name: str
    context: CalculationContext
    error: str
    error_type: str
    status_code: int
    method_errors: Dict[str, Dict[str, str]] = field(default_factory=dict)


@dataclass
class SimulationReport:
    config: SimulationConfig
    results: List[ScenarioResult]
    errors: List[ScenarioError]
    summary: Dict[str, Any]
    elapsed_ms: float


def _error_details(exc: TariffEngineError) -> Dict[str, Any]:
    return {"error": exc.message, "errorType": exc.error_code, "statusCode": exc.status_code}


class SimulationOrchestrator:
    def __init__(self, engine):
        self.engine = engine

    def run(self, scenarios: List[Scenario], config: Optional[SimulationConfig] = None) -> SimulationReport:
        config = config or SimulationConfig()
        started = time.perf_counter()
        results: List[ScenarioResult] = []
        errors: List[ScenarioError] = []

        logger.info(f"Running simulation of {len(scenarios)} scenario(s), compare_methods={config.compare_methods}")
        for index, scenario in enumerate(scenarios):
            context = replace(
                scenario.context,
                apply_rules=config.apply_rules,
                use_cache=config.use_cache,
                include_breakdown=config.include_breakdown,
            )
            # A scenario that names its own method is priced with that method only
            if config.compare_methods and context.calculation_method is None:
                outcome = self._run_compared(index, scenario.name, context)
            else:
                outcome = self._run_single(index, scenario.name, context)
            if isinstance(outcome, ScenarioError):
                errors.append(outcome)
            else:
                results.append(outcome)

        elapsed = (time.perf_counter() - started) * 1000
        summary = summarize(scenarios, results, errors, config, elapsed)
        logger.info(f"Simulation finished: {len(results)} ok, {len(errors)} failed in {elapsed:.0f} ms")
        return SimulationReport(config=config, results=results, errors=errors, summary=summary, elapsed_ms=elapsed)

    def _run_single(self, index: int, name: str, context: CalculationContext):
        started = time.perf_counter()
        try:
            result = self.engine.calculate(context)
        except TariffEngineError as e:
            logger.info(f"Scenario {index} ({name}) failed: {e}")
            details = _error_details(e)
            return ScenarioError(
                index=index,
                name=name,
                context=context,
                error=details["error"],
                error_type=details["errorType"],
                status_code=details["statusCode"],
            )
        return ScenarioResult(
            index=index,
            name=name,
            context=context,
            elapsed_ms=(time.perf_counter() - started) * 1000,
            results={result.method_used.value: result},
        )

    def _run_compared(self, index: int, name: str, context: CalculationContext):
        started = time.perf_counter()
        outcome = ScenarioResult(index=index, name=name, context=context, elapsed_ms=0.0)
        for method in COMPARED_METHODS:
            try:
                result = self.engine.calculate(replace(context, calculation_method=method))
            except TariffEngineError as e:
                outcome.method_errors[method.value] = _error_details(e)
                continue
            outcome.results[method.value] = result
        outcome.elapsed_ms = (time.perf_counter() - started) * 1000

        if not outcome.results:
            return ScenarioError(
                index=index,
                name=name,
                context=context,
                error="No calculation method could price this scenario",
                error_type="all_methods_failed",
                status_code=422,
                method_errors=outcome.method_errors,
            )
        return outcome


def summarize(
    scenarios: List[Scenario],
    results: List[ScenarioResult],
    errors: List[ScenarioError],
    config: SimulationConfig,
    elapsed_ms: float,
) -> Dict[str, Any]:
    """Counts, price extremes, per-scenario swings, method comparison and timings."""
    times = [r.elapsed_ms for r in results]
    # the cheapest successful method of each scenario represents it in the cross-scenario ranking
    best_totals = [(r, min(r.totals.values())) for r in results]

    summary: Dict[str, Any] = {
        "totalEscenarios": len(scenarios),
        "exitosos": len(results),
        "conErrores": len(errors),
        "tiempos": {
            "total": round(elapsed_ms, 2),
            "promedio": round(sum(times) / len(times), 2) if times else 0.0,
            "minimo": round(min(times), 2) if times else 0.0,
            "maximo": round(max(times), 2) if times else 0.0,
        },
        "precios": None,
        "variaciones": None,
    }

    if best_totals:
        cheapest = min(best_totals, key=lambda item: item[1])
        priciest = max(best_totals, key=lambda item: item[1])
        summary["precios"] = {
            "masEconomico": {"indice": cheapest[0].index, "nombre": cheapest[0].name, "total": str(cheapest[1])},
            "masCaro": {"indice": priciest[0].index, "nombre": priciest[0].name, "total": str(priciest[1])},
            "diferencia": str(priciest[1] - cheapest[1]),
        }

    swings = [(r, max(r.totals.values()) - min(r.totals.values())) for r in results]
    if swings:
        largest = max(swings, key=lambda item: item[1])
        smallest = min(swings, key=lambda item: item[1])
        summary["variaciones"] = {
            "mayor": {"indice": largest[0].index, "nombre": largest[0].name, "variacion": str(largest[1])},
            "menor": {"indice": smallest[0].index, "nombre": smallest[0].name, "variacion": str(smallest[1])},
        }

    if config.compare_methods:
        comparison = {}
        for method in COMPARED_METHODS:
            totals = [r.totals[method.value] for r in results if method.value in r.totals]
            failures = sum(1 for r in results if method.value in r.method_errors)
            failures += sum(1 for e in errors if method.value in e.method_errors)
            comparison[method.value] = {
                "cantidad": len(totals),
                "promedio": str(money(sum(totals) / len(totals))) if totals else None,
                "minimo": str(min(totals)) if totals else None,
                "maximo": str(max(totals)) if totals else None,
                "errores": failures,
            }
        summary["comparacionMetodos"] = comparison

    return summary
