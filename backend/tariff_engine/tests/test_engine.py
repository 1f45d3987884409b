"""
Tests for the TariffEngine façade over in-memory collaborators.

Covers resolution, pricing per method, rule ordering, caching, the audit trail
and the error taxonomy end to end.
"""

from dataclasses import replace
from datetime import date
from decimal import Decimal

import pytest

from tariff_engine.dataclasses import BusinessRule, ExtraRequest, VehicleRequest
from tariff_engine.exceptions import (
    AmbiguousTariffError,
    InternalError,
    MissingDistanceError,
    NotFoundError,
)
from tariff_engine.services.audit import AuditQuery
from tariff_engine.services.cache import ResultCache
from tariff_engine.types import CalculationMethod, ModificationKind, ResolutionRule, RouteKind, Urgency

from .fakes import CLIENT, DESTINATION, ORIGIN, context, extra_charge, make_engine, record

JAN_1, JAN_31 = date(2025, 1, 1), date(2025, 1, 31)
FEB_1, FEB_28 = date(2025, 2, 1), date(2025, 2, 28)
YEAR_END = date(2025, 12, 31)


def percent_rule(code, priority, magnitude, base_relative=False, **kw):
    return BusinessRule(code=code, name=code.title(), priority=priority,
                        modification_kind=ModificationKind.PERCENTAGE, magnitude=Decimal(str(magnitude)),
                        base_relative=base_relative, **kw)


def absolute_rule(code, priority, magnitude, **kw):
    return BusinessRule(code=code, name=code.title(), priority=priority,
                        modification_kind=ModificationKind.ABSOLUTE, magnitude=Decimal(str(magnitude)), **kw)


class TestDeterminism:
    """Same context, same state -> same result"""

    def test_repeated_calculation_is_identical(self):
        engine = make_engine(
            records=[record(1, 100, JAN_1, YEAR_END)],
            rules=[percent_rule("PCT", 1, 10), absolute_rule("ABS", 2, 50)],
        )
        ctx = context(use_cache=False, include_breakdown=True)

        first = engine.calculate(ctx).to_dict()
        second = engine.calculate(ctx).to_dict()

        for volatile in ("computedAt", "computeTimeMs"):
            first["metadata"].pop(volatile)
            second["metadata"].pop(volatile)
        assert first == second

    def test_fingerprint_ignores_breakdown_flag_and_vehicle_order(self):
        a = context(vehicles=(VehicleRequest("Semi", 1), VehicleRequest("Chasis", 2)))
        b = context(vehicles=(VehicleRequest("Chasis", 2), VehicleRequest("Semi", 1)), include_breakdown=True)
        assert a.fingerprint() == b.fingerprint()
        assert a.fingerprint() != context(pallets=Decimal("3")).fingerprint()

    def test_fingerprint_normalizes_decimal_spelling(self):
        assert context(pallets=Decimal("20")).fingerprint() == context(pallets=Decimal("20.00")).fingerprint()


class TestCaching:
    def test_miss_then_hit_then_clear(self):
        engine = make_engine(records=[record(1, 100, JAN_1, YEAR_END)])
        ctx = context()

        first = engine.calculate(ctx)
        assert first.cache_hit is False

        second = engine.calculate(ctx)
        assert second.cache_hit is True
        assert second.total == first.total
        assert second.rules_applied == first.rules_applied
        assert second.metadata == first.metadata

        cleared = engine.clear_cache()
        assert cleared["before"]["keys"] == 1
        assert cleared["after"]["keys"] == 0

        third = engine.calculate(ctx)
        assert third.cache_hit is False

    def test_use_cache_false_bypasses_read_and_write(self):
        engine = make_engine(records=[record(1, 100, JAN_1, YEAR_END)])

        engine.calculate(context(use_cache=False))
        assert engine.cache_stats()["keys"] == 0

        engine.calculate(context())
        result = engine.calculate(context(use_cache=False))
        assert result.cache_hit is False
        assert engine.cache_stats()["hits"] == 0

    def test_cached_result_is_isolated_from_caller_mutation(self):
        engine = make_engine(records=[record(1, 100, JAN_1, YEAR_END)])
        first = engine.calculate(context())
        first.warnings.append("tampered")
        first.total = Decimal("1")

        again = engine.calculate(context())
        assert again.total == Decimal("100.00")
        assert "tampered" not in again.warnings

    def test_ttl_expiry(self):
        now = [1000.0]
        cache = ResultCache(ttl_seconds=300, clock=lambda: now[0])
        engine = make_engine(records=[record(1, 100, JAN_1, YEAR_END)], cache=cache)

        engine.calculate(context())
        now[0] += 299
        assert engine.calculate(context()).cache_hit is True
        now[0] += 2
        assert engine.calculate(context()).cache_hit is False

    def test_expired_entries_are_purged_without_being_read(self):
        now = [1000.0]
        cache = ResultCache(ttl_seconds=300, clock=lambda: now[0], check_period=60)
        result = make_engine(records=[record(1, 100, JAN_1, YEAR_END)]).calculate(context())

        for i in range(1000):
            cache.put(f"fingerprint-{i}", result)
            now[0] += 10
            # live entries plus at most one check period of dead ones
            assert len(cache._entries) <= 36

        assert cache.stats()["keys"] == 29

    def test_max_entries_drops_the_oldest(self):
        cache = ResultCache(ttl_seconds=None, max_entries=2)
        result = make_engine(records=[record(1, 100, JAN_1, YEAR_END)]).calculate(context())

        for fingerprint in ("a", "b", "c"):
            cache.put(fingerprint, result)

        assert cache.stats()["keys"] == 2
        assert cache.get("a") is None
        assert cache.get("c").total == Decimal("100.00")

    def test_breakdown_flag_is_applied_on_hits(self):
        engine = make_engine(records=[record(1, 100, JAN_1, YEAR_END)])
        without = engine.calculate(context())
        assert without.breakdown is None

        with_breakdown = engine.calculate(context(include_breakdown=True))
        assert with_breakdown.cache_hit is True
        assert [line.stage for line in with_breakdown.breakdown] == ["base", "toll", "total"]


class TestVigencyResolution:
    def test_january_and_february_windows(self):
        engine = make_engine(records=[record(1, 100, JAN_1, JAN_31), record(2, 200, FEB_1, FEB_28)])

        jan = engine.calculate(context(date=date(2025, 1, 15)))
        feb = engine.calculate(context(date=date(2025, 2, 15)))

        assert jan.metadata["recordId"] == 1
        assert jan.total == Decimal("100.00")
        assert feb.metadata["recordId"] == 2
        assert feb.total == Decimal("200.00")

        with pytest.raises(NotFoundError):
            engine.calculate(context(date=date(2025, 3, 15)))

    def test_window_bounds_are_inclusive(self):
        engine = make_engine(records=[record(1, 100, JAN_1, JAN_31)])
        assert engine.calculate(context(date=JAN_1)).metadata["recordId"] == 1
        assert engine.calculate(context(date=JAN_31)).metadata["recordId"] == 1

    def test_inactive_records_are_ignored(self):
        engine = make_engine(records=[record(1, 100, JAN_1, YEAR_END, active=False)])
        with pytest.raises(NotFoundError):
            engine.calculate(context())

    def test_route_kind_hint_breaks_the_tie(self):
        engine = make_engine(records=[
            record(1, 100, JAN_1, YEAR_END, kind="TRMC"),
            record(2, 120, JAN_1, YEAR_END, kind="TRMI"),
        ])
        result = engine.calculate(context(route_kind_hint=RouteKind.TRMI))

        assert result.metadata["recordId"] == 2
        assert result.metadata["resolution"] == {"candidates": 2, "decidedBy": ResolutionRule.ROUTE_KIND.value}
        assert result.warnings == []

    def test_latest_valid_from_wins(self):
        engine = make_engine(records=[
            record(1, 100, JAN_1, YEAR_END),
            record(2, 110, date(2025, 1, 10), YEAR_END),
        ])
        result = engine.calculate(context(date=date(2025, 1, 20)))
        assert result.metadata["recordId"] == 2
        assert result.metadata["resolution"]["decidedBy"] == "latest_valid_from"

    def test_full_tie_is_ambiguous(self):
        engine = make_engine(records=[
            record(1, 100, JAN_1, YEAR_END),
            record(2, 105, JAN_1, date(2025, 6, 30)),
        ])
        with pytest.raises(AmbiguousTariffError) as excinfo:
            engine.calculate(context())
        assert excinfo.value.details["records"] == [1, 2]
        assert excinfo.value.status_code == 409

    def test_kind_mismatch_is_a_warning(self):
        engine = make_engine(records=[record(1, 100, JAN_1, YEAR_END, kind="TRMI")])
        result = engine.calculate(context(route_kind_hint=RouteKind.TRMC))
        assert result.metadata["recordId"] == 1
        assert any("TRMC" in w and "TRMI" in w for w in result.warnings)

    def test_explicit_method_restricts_candidates(self):
        engine = make_engine(records=[
            record(1, 100, JAN_1, YEAR_END, method=CalculationMethod.FIXED),
            record(2, 30, JAN_1, YEAR_END, method=CalculationMethod.PALLET),
        ])
        result = engine.calculate(context(calculation_method=CalculationMethod.PALLET, pallets=Decimal("2")))
        assert result.method_used == CalculationMethod.PALLET
        assert result.total == Decimal("60.00")


class TestCalculationMethods:
    def test_fixed_ignores_quantities_with_warning(self):
        engine = make_engine(records=[record(1, 500, JAN_1, YEAR_END, method=CalculationMethod.FIXED)])
        result = engine.calculate(context(pallets=Decimal("20")))

        assert result.base_value == Decimal("500.00")
        assert "quantities ignored for fixed-price method" in result.warnings

    def test_pallet_uses_minimum_of_one(self):
        engine = make_engine(records=[record(1, 30, JAN_1, YEAR_END, method=CalculationMethod.PALLET)])
        result = engine.calculate(context(pallets=Decimal("0")))
        assert result.base_value == Decimal("30.00")
        assert "Billed the minimum of 1 pallet(s); 0 requested" in result.warnings

    def test_pallet_without_quantity_says_none_requested(self):
        engine = make_engine(records=[record(1, 30, JAN_1, YEAR_END, method=CalculationMethod.PALLET)])
        result = engine.calculate(context())
        assert result.base_value == Decimal("30.00")
        assert "Billed the minimum of 1 pallet(s); none requested" in result.warnings

    def test_pallet_multiplies_quantity(self):
        engine = make_engine(records=[record(1, "30.50", JAN_1, YEAR_END, method=CalculationMethod.PALLET)])
        result = engine.calculate(context(pallets=Decimal("4")))
        assert result.base_value == Decimal("122.00")
        assert result.formula_applied == "30.50 x 4 pallets"

    def test_kilometer_uses_route_distance(self):
        rec = record(1, "2.40", JAN_1, YEAR_END, method=CalculationMethod.KILOMETER, toll_value="1500")
        engine = make_engine(records=[rec], distances={rec.route_id: Decimal("310")})
        result = engine.calculate(context())

        assert result.base_value == Decimal("744.00")
        assert result.toll_value == Decimal("1500.00")
        assert result.total == Decimal("2244.00")

    def test_kilometer_without_distance_fails(self):
        engine = make_engine(records=[record(1, "2.40", JAN_1, YEAR_END, method=CalculationMethod.KILOMETER)])
        with pytest.raises(MissingDistanceError):
            engine.calculate(context())

    def test_amounts_round_half_up(self):
        engine = make_engine(records=[record(1, "0.125", JAN_1, YEAR_END, method=CalculationMethod.PALLET)])
        result = engine.calculate(context(pallets=Decimal("1")))
        assert result.base_value == Decimal("0.13")


class TestRuleOrdering:
    def test_percentage_then_absolute(self):
        engine = make_engine(
            records=[record(1, 100, JAN_1, YEAR_END)],
            rules=[absolute_rule("PLUS50", 2, 50), percent_rule("PLUS10", 1, 10)],
        )
        result = engine.calculate(context())

        assert result.total == Decimal("160.00")
        assert [r.code for r in result.rules_applied] == ["PLUS10", "PLUS50"]
        assert [r.running_total for r in result.rules_applied] == [Decimal("110.00"), Decimal("160.00")]

    def test_swapped_priorities_running_total_basis(self):
        engine = make_engine(
            records=[record(1, 100, JAN_1, YEAR_END)],
            rules=[absolute_rule("PLUS50", 1, 50), percent_rule("PLUS10", 2, 10)],
        )
        result = engine.calculate(context())
        assert result.total == Decimal("165.00")
        assert result.rules_applied[1].basis == "running_total"
        assert result.rules_applied[1].basis_value == Decimal("150.00")

    def test_swapped_priorities_base_relative(self):
        engine = make_engine(
            records=[record(1, 100, JAN_1, YEAR_END)],
            rules=[absolute_rule("PLUS50", 1, 50), percent_rule("PLUS10", 2, 10, base_relative=True)],
        )
        result = engine.calculate(context())
        assert result.total == Decimal("160.00")
        assert result.rules_applied[1].basis == "base"

    def test_toll_and_extras_are_rule_exempt(self):
        engine = make_engine(
            records=[record(1, 100, JAN_1, YEAR_END, toll_value="40")],
            rules=[percent_rule("PLUS10", 1, 10)],
            extras={(CLIENT, 7): extra_charge(7, 80)},
        )
        result = engine.calculate(context(extras=(ExtraRequest(7, Decimal("2")),), include_breakdown=True))

        assert result.base_value == Decimal("100.00")
        assert result.extras_value == Decimal("160.00")
        assert result.total == Decimal("310.00")
        assert [line.stage for line in result.breakdown] == ["base", "rule", "toll", "extra", "total"]

    def test_unknown_extra_is_a_warning(self):
        engine = make_engine(records=[record(1, 100, JAN_1, YEAR_END)])
        result = engine.calculate(context(extras=(ExtraRequest(99),)))
        assert result.extras_value == Decimal("0.00")
        assert any("Extra 99" in w for w in result.warnings)

    def test_apply_rules_false_skips_stage(self):
        engine = make_engine(records=[record(1, 100, JAN_1, YEAR_END)], rules=[percent_rule("PLUS10", 1, 10)])

        skipped = engine.calculate(context(apply_rules=False))
        assert skipped.rules_applied == []
        assert skipped.metadata["rulesStage"] == "skipped"

        none_matched = make_engine(records=[record(1, 100, JAN_1, YEAR_END)]).calculate(context())
        assert none_matched.rules_applied == []
        assert none_matched.metadata["rulesStage"] == "evaluated"

    def test_broken_rule_is_reported_not_fatal(self):
        broken = absolute_rule("BROKEN", 1, 10, conditions=({"field": "pallets", "operator": "approx", "value": 1},))
        engine = make_engine(records=[record(1, 100, JAN_1, YEAR_END)],
                             rules=[broken, absolute_rule("PLUS5", 2, 5)])
        result = engine.calculate(context(pallets=Decimal("1")))

        assert result.total == Decimal("105.00")
        assert result.rule_errors[0]["code"] == "BROKEN"
        assert engine.audit.snapshot()[-1].errors == ()

    def test_urgency_rule(self):
        urgent = percent_rule("URGENTE", 1, 15,
                              conditions=({"field": "urgencia", "operator": "in", "value": ["Urgent", "Critical"]},))
        engine = make_engine(records=[record(1, 100, JAN_1, YEAR_END)], rules=[urgent])

        assert engine.calculate(context(urgency=Urgency.URGENT)).total == Decimal("115.00")
        assert engine.calculate(context(urgency=Urgency.NORMAL)).total == Decimal("100.00")


class TestAuditTrail:
    def test_every_calculation_is_audited(self):
        engine = make_engine(records=[record(1, 100, JAN_1, YEAR_END)])
        ctx = context()
        engine.calculate(ctx)

        report = engine.query_audit(AuditQuery())
        assert report.total_found == 1
        entry = report.entries[0]
        assert entry.context == ctx
        assert entry.result.total == Decimal("100.00")
        assert entry.errors == ()

    def test_cache_hits_are_audited(self):
        engine = make_engine(records=[record(1, 100, JAN_1, YEAR_END)])
        engine.calculate(context())
        engine.calculate(context())

        entries = engine.query_audit(AuditQuery()).entries
        assert len(entries) == 2
        assert entries[0].result.cache_hit is True
        assert entries[1].result.cache_hit is False

    def test_failures_are_audited_then_raised(self):
        engine = make_engine(records=[record(1, 100, JAN_1, YEAR_END)])
        with pytest.raises(NotFoundError):
            engine.calculate(context(client=99))

        failed = engine.query_audit(AuditQuery(only_errors=True)).entries
        assert len(failed) == 1
        assert failed[0].result is None
        assert "Client 99 not found" in failed[0].errors[0]

    def test_unexpected_errors_become_internal_error(self):
        class ExplodingRules:
            def rules_for(self, client, on_date):
                raise RuntimeError("rule store offline")

        engine = make_engine(records=[record(1, 100, JAN_1, YEAR_END)])
        engine.rule_engine.rules = ExplodingRules()

        with pytest.raises(InternalError):
            engine.calculate(context())
        assert engine.audit.snapshot()[-1].errors == ("rule store offline",)


class TestDirectoryChecks:
    @pytest.mark.parametrize("field,value", [("client", 2), ("origin", 99), ("destination", 98)])
    def test_unknown_ids_are_not_found(self, field, value):
        engine = make_engine(records=[record(1, 100, JAN_1, YEAR_END)])
        with pytest.raises(NotFoundError):
            engine.calculate(replace(context(), **{field: value}))

    def test_context_used_is_echoed(self):
        engine = make_engine(records=[record(1, 100, JAN_1, YEAR_END)])
        ctx = context(vehicle_type="Chasis")
        result = engine.calculate(ctx)
        assert result.context_used == ctx
        assert result.to_dict()["contextUsed"]["origenId"] == ORIGIN
        assert result.to_dict()["contextUsed"]["destinoId"] == DESTINATION
