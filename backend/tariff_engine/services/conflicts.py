"""
Diagnostics and bulk maintenance over tariff records.

``ConflictDetector.detect`` is read-only. The two bulk operations write record
by record: one bad id never blocks the others and nothing is rolled back.
"""

from __future__ import annotations

import logging
from collections import Counter, OrderedDict
from dataclasses import replace
from datetime import date
from itertools import combinations
from typing import Any, Dict, Iterable, List, Optional

from ..dataclasses import TariffRecord
from ..exceptions import NotFoundError, ValidationError
from ..types import CalculationMethod, RouteKind

logger = logging.getLogger(__name__)


def _kind_label(record: TariffRecord) -> str:
    kind = record.normalized_kind
    if kind is not None:
        return kind.value
    if record.route_kind is None or not str(record.route_kind).strip():
        return "null"
    return str(record.route_kind).strip()


class ConflictDetector:
    def __init__(self, records):
        self.records = records

    def detect(
        self,
        client: int,
        origin: Optional[int] = None,
        destination: Optional[int] = None,
        method: Optional[CalculationMethod] = None,
    ) -> Dict[str, Any]:
        """
        Report route-kind conflicts for a client's tariff records.

        A conflict is an (origin, destination, method) group holding records of
        more than one route kind.

        Returns:
            dict: totals, per-kind counts, unnormalized records and conflict groups
        """
        records = self.records.list_records(client, origin=origin, destination=destination, method=method)

        per_kind = Counter()
        unnormalized = []
        groups: Dict[tuple, List[TariffRecord]] = OrderedDict()
        for record in records:
            kind = record.normalized_kind
            if kind is not None:
                per_kind[kind.value] += 1
            elif record.route_kind is None or not str(record.route_kind).strip():
                per_kind["nulos"] += 1
            else:
                per_kind["otros"] += 1
            if kind is None or str(record.route_kind) != kind.value:
                unnormalized.append({
                    "id": record.id,
                    "tipo": record.route_kind,
                    "tipoNormalizado": kind.value if kind else None,
                    "origen": record.origin,
                    "destino": record.destination,
                    "metodoCalculo": record.calculation_method.value,
                })
            key = (record.origin, record.destination, record.calculation_method.value)
            groups.setdefault(key, []).append(record)

        conflicts = []
        for (group_origin, group_destination, group_method), members in groups.items():
            kinds = sorted({_kind_label(r) for r in members})
            if len(kinds) < 2:
                continue
            overlaps = [
                [a.id, b.id] for a, b in combinations(members, 2)
                if _kind_label(a) != _kind_label(b) and a.overlaps(b)
            ]
            conflicts.append({
                "clave": f"{group_origin}-{group_destination}-{group_method}",
                "origen": group_origin,
                "destino": group_destination,
                "metodoCalculo": group_method,
                "tipos": kinds,
                "tarifas": [r.to_dict() for r in members],
                "solapamientos": overlaps,
            })

        if conflicts:
            logger.warning(f"Client {client}: {len(conflicts)} route-kind conflict group(s)")
        return {
            "clienteId": client,
            "totalTramos": len({r.route_id or (r.origin, r.destination) for r in records}),
            "totalTarifas": len(records),
            "porTipo": {
                "TRMC": per_kind[RouteKind.TRMC.value],
                "TRMI": per_kind[RouteKind.TRMI.value],
                "otros": per_kind["otros"],
                "nulos": per_kind["nulos"],
            },
            "tramosSinTipoNormalizado": unnormalized,
            "posiblesConflictos": conflicts,
            "totalConflictos": len(conflicts),
        }

    def bulk_correct(self, record_ids: Iterable[int], target_kind) -> Dict[str, Any]:
        """
        Set the route kind of each record, one by one.

        Raises:
            ValidationError: If the target kind is not TRMC or TRMI
        """
        kind = RouteKind.normalize(target_kind)
        if kind is None:
            raise ValidationError(f"Target route kind must be TRMC or TRMI, got {target_kind!r}", field="tipo")

        results = []
        errors = []
        for record_id in record_ids:
            try:
                previous = self.records.set_route_kind(record_id, kind.value)
            except NotFoundError as e:
                errors.append({"id": record_id, "error": e.message})
                continue
            results.append({"id": record_id, "anterior": previous, "nuevo": kind.value})

        logger.info(f"Route kind correction to {kind.value}: {len(results)} updated, {len(errors)} failed")
        return {
            "procesados": len(results) + len(errors),
            "actualizados": len(results),
            "resultados": results,
            "errores": errors,
        }

    def bulk_update_validity(
        self,
        record_ids: Iterable[int],
        valid_from: date,
        valid_until: date,
        route_kind=None,
    ) -> Dict[str, Any]:
        """
        Move the validity window of several records.

        A record whose new window would overlap another active record on the
        same route, method and kind is left untouched and reported.

        Raises:
            ValidationError: If the window is empty or the kind filter is invalid
        """
        if valid_until <= valid_from:
            raise ValidationError("vigenciaHasta must be after vigenciaDesde", field="vigenciaHasta")
        kind_filter = None
        if route_kind:
            kind_filter = RouteKind.normalize(route_kind)
            if kind_filter is None:
                raise ValidationError(f"Route kind must be TRMC or TRMI, got {route_kind!r}", field="tipo")

        updated, conflicts, missing, skipped = [], [], [], []
        for record_id in record_ids:
            record = self.records.get(record_id)
            if record is None:
                missing.append(record_id)
                continue
            if kind_filter is not None and record.normalized_kind != kind_filter:
                skipped.append(record_id)
                continue

            proposed = replace(record, valid_from=valid_from, valid_until=valid_until)
            clashing = [
                other.id for other in self.records.siblings(record)
                if other.normalized_kind == record.normalized_kind and other.overlaps(proposed)
            ]
            if clashing:
                conflicts.append({"id": record_id, "conflictoCon": sorted(clashing)})
                continue

            try:
                self.records.set_validity(record_id, valid_from, valid_until)
            except NotFoundError:
                missing.append(record_id)
                continue
            updated.append(record_id)

        logger.info(
            f"Validity update {valid_from}..{valid_until}: {len(updated)} updated, "
            f"{len(conflicts)} conflicts, {len(missing)} not found"
        )
        return {
            "actualizados": updated,
            "conflictos": conflicts,
            "noEncontrados": missing,
            "omitidos": skipped,
            "mensaje": f"{len(updated)} tariff(s) updated, {len(conflicts)} in conflict, {len(missing)} not found",
        }
