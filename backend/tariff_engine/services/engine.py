"""
TariffEngine: the single entry point for tariff calculations.

One instance is built at startup (see ``TariffEngineConfig.ready()``) with its
collaborators injected, and shared by every request of the process. The cache
and the audit log it owns are the only mutable state, each behind its own lock.
"""

from __future__ import annotations

import logging
import time
from typing import List, Tuple

from django.apps import apps
from django.conf import settings
from django.utils import timezone

from ..dataclasses import AuditEntry, BreakdownLine, CalculationContext, CalculationResult
from ..exceptions import InternalError, NotFoundError, TariffEngineError
from .audit import AuditLog, AuditQuery, AuditReport
from .cache import ResultCache
from .formulas import FormulaResolver
from .rules import RuleEngine
from .strategies import build_strategy_table
from .utils import ZERO, money
from .vigency import VigencyResolver

logger = logging.getLogger(__name__)

DEFAULTS = {
    "CACHE_TTL_SECONDS": 300,
    "CACHE_CHECK_PERIOD_SECONDS": 60,
    "CACHE_MAX_ENTRIES": 10000,
    "AUDIT_MAX_ENTRIES": 1000,
    "AUDIT_DEFAULT_LIMIT": 100,
    "MINIMUM_PALLETS": 1,
    "SLOW_CALCULATION_MS": 1000,
}


def engine_settings() -> dict:
    return {**DEFAULTS, **getattr(settings, "TARIFF_ENGINE", {})}


def _elapsed_ms(started: float) -> float:
    return (time.perf_counter() - started) * 1000


class TariffEngine:
    def __init__(
        self,
        records,
        directory,
        distances,
        rules,
        extras=None,
        formulas=None,
        strategies=None,
        rule_engine=None,
        cache=None,
        audit=None,
        minimum_pallets=1,
        slow_calculation_ms=1000,
    ):
        self.records = records
        self.directory = directory
        self.extras = extras
        self.formula_resolver = FormulaResolver(formulas)
        self.resolver = VigencyResolver(records)
        self.strategies = strategies if strategies is not None else build_strategy_table(distances, minimum_pallets)
        self.rule_engine = rule_engine if rule_engine is not None else RuleEngine(rules)
        self.cache = cache if cache is not None else ResultCache()
        self.audit = audit if audit is not None else AuditLog()
        self.slow_calculation_ms = slow_calculation_ms

    def calculate(self, context: CalculationContext) -> CalculationResult:
        """
        Calculate the tariff for a context.

        Every call ends up in the audit log, including cache hits and failures.

        Raises:
            TariffEngineError: Any fatal outcome (not found, ambiguous, missing distance...);
                unexpected exceptions are wrapped in InternalError
        """
        started = time.perf_counter()
        fingerprint = context.fingerprint()
        logger.info(
            f"Calculating tariff for client {context.client} "
            f"{context.origin}->{context.destination} on {context.date.isoformat()}"
        )

        try:
            result = self.cache.get(fingerprint) if context.use_cache else None
            if result is not None:
                logger.debug(f"Cache hit for {fingerprint[:12]}")
            else:
                result = self._compute(context, fingerprint)
                if context.use_cache:
                    self.cache.put(fingerprint, result)
        except TariffEngineError as e:
            logger.error(f"Tariff calculation failed for client {context.client}: {e.message}")
            self._audit_failure(context, started, e.message)
            raise
        except Exception as e:
            logger.exception(f"Unexpected error calculating tariff for client {context.client}")
            self._audit_failure(context, started, str(e))
            raise InternalError(f"Unexpected error while calculating tariff: {e}") from e

        result.context_used = context
        if not context.include_breakdown:
            result.breakdown = None

        elapsed = _elapsed_ms(started)
        self.audit.record(
            AuditEntry(timestamp=self.audit.clock(), execution_time_ms=elapsed, context=context, result=result)
        )
        if elapsed > self.slow_calculation_ms:
            logger.warning(f"Slow tariff calculation: {elapsed:.0f} ms for client {context.client}")
        logger.info(
            f"Tariff for client {context.client}: {result.total} via {result.method_used.value} "
            f"({elapsed:.1f} ms{', cached' if result.cache_hit else ''})"
        )
        return result

    def clear_cache(self) -> dict:
        return self.cache.clear()

    def cache_stats(self) -> dict:
        return self.cache.stats()

    def query_audit(self, query: AuditQuery) -> AuditReport:
        return self.audit.query(query)

    def _audit_failure(self, context: CalculationContext, started: float, message: str) -> None:
        self.audit.record(
            AuditEntry(
                timestamp=self.audit.clock(),
                execution_time_ms=_elapsed_ms(started),
                context=context,
                result=None,
                errors=(message,),
            )
        )

    def _ensure_known(self, context: CalculationContext) -> None:
        if not self.directory.client_exists(context.client):
            raise NotFoundError(f"Client {context.client} not found", field="clienteId", id=context.client)
        if not self.directory.site_exists(context.origin):
            raise NotFoundError(f"Origin site {context.origin} not found", field="origenId", id=context.origin)
        if not self.directory.site_exists(context.destination):
            raise NotFoundError(
                f"Destination site {context.destination} not found", field="destinoId", id=context.destination
            )

    def _compute(self, context: CalculationContext, fingerprint: str) -> CalculationResult:
        started = time.perf_counter()
        self._ensure_known(context)

        resolution = self.resolver.resolve(
            context.client,
            context.origin,
            context.destination,
            context.date,
            context.route_kind_hint,
            context.calculation_method,
        )
        record = resolution.record
        strategy = self.strategies.get(record.calculation_method)
        if strategy is None:
            raise InternalError(f"No calculation strategy registered for {record.calculation_method.value}")
        formula = self.formula_resolver.resolve(context.client, context.vehicle_type, context.date)
        priced = strategy.compute(record, context, formula)

        if context.apply_rules:
            ruled = self.rule_engine.apply(priced.base_value, context, record.calculation_method)
        else:
            ruled = RuleEngine.skipped(priced.base_value)

        toll = money(record.toll_value)
        extras_value, extras_lines, extras_warnings = self._price_extras(context)
        total = money(ruled.total + toll + extras_value)

        breakdown = [BreakdownLine("base", priced.base_value, priced.formula)]
        breakdown.extend(BreakdownLine("rule", a.delta, f"{a.code} {a.name}") for a in ruled.applied)
        breakdown.append(BreakdownLine("toll", toll, "Toll (not affected by rules)"))
        breakdown.extend(extras_lines)
        breakdown.append(BreakdownLine("total", total, "Total"))

        return CalculationResult(
            base_value=priced.base_value,
            toll_value=toll,
            extras_value=extras_value,
            total=total,
            method_used=record.calculation_method,
            formula_applied=priced.formula,
            context_used=context,
            rules_applied=ruled.applied,
            breakdown=breakdown,
            warnings=resolution.warnings + priced.warnings + ruled.warnings + extras_warnings,
            rule_errors=ruled.errors,
            metadata={
                "fingerprint": fingerprint,
                "recordId": record.id,
                "routeKind": record.route_kind,
                "resolution": {
                    "candidates": resolution.candidate_count,
                    "decidedBy": resolution.decided_by.value,
                },
                "rulesStage": ruled.stage,
                "rulesEvaluated": ruled.evaluated,
                "formula": formula.to_dict(),
                "methodDetails": priced.details,
                "computedAt": timezone.now().isoformat(),
                "computeTimeMs": round(_elapsed_ms(started), 2),
            },
        )

    def _price_extras(self, context: CalculationContext) -> Tuple[object, List[BreakdownLine], List[str]]:
        total = ZERO
        lines: List[BreakdownLine] = []
        warnings: List[str] = []
        for requested in context.extras:
            charge = self.extras.get(context.client, requested.id, context.date) if self.extras else None
            if charge is None:
                warnings.append(f"Extra {requested.id} is not available for client {context.client}; ignored")
                continue
            value = money(charge.unit_value * requested.quantity)
            total += value
            lines.append(BreakdownLine("extra", value, f"{charge.code} {charge.name} x {requested.quantity}"))
        return money(total), lines, warnings


def build_default_engine() -> TariffEngine:
    """Wire the engine with the Django-backed collaborators and the TARIFF_ENGINE settings."""
    from .stores import (
        DjangoDirectory,
        DjangoDistanceLookup,
        DjangoExtrasCatalogue,
        DjangoFormulaStore,
        DjangoRuleStore,
        DjangoTariffRecordStore,
    )

    conf = engine_settings()
    return TariffEngine(
        records=DjangoTariffRecordStore(),
        directory=DjangoDirectory(),
        distances=DjangoDistanceLookup(),
        rules=DjangoRuleStore(),
        extras=DjangoExtrasCatalogue(),
        formulas=DjangoFormulaStore(),
        cache=ResultCache(
            ttl_seconds=conf["CACHE_TTL_SECONDS"],
            check_period=conf["CACHE_CHECK_PERIOD_SECONDS"],
            max_entries=conf["CACHE_MAX_ENTRIES"],
        ),
        audit=AuditLog(max_entries=conf["AUDIT_MAX_ENTRIES"]),
        minimum_pallets=conf["MINIMUM_PALLETS"],
        slow_calculation_ms=conf["SLOW_CALCULATION_MS"],
    )


def get_engine() -> TariffEngine:
    return apps.get_app_config("tariff_engine").engine
