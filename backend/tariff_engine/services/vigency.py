"""
Vigency resolution: pick the one tariff record that applies on a date.

Records for the same route can overlap in time (a renegotiated price starting
mid-window, a TRMI record next to a TRMC one). Resolution order:

1. keep active records whose inclusive window contains the date
   (and whose method matches, when the caller forced one);
2. if any candidate matches the requested route kind, drop the others;
3. keep the candidates with the latest ``valid_from``;
4. more than one left is an ambiguity the data owner has to fix.
"""

from __future__ import annotations

import logging
from datetime import date
from typing import List, Optional

from ..dataclasses import Resolution, TariffRecord
from ..exceptions import AmbiguousTariffError, NotFoundError
from ..types import CalculationMethod, ResolutionRule, RouteKind

logger = logging.getLogger(__name__)


class VigencyResolver:
    def __init__(self, records):
        self.records = records

    def resolve(
        self,
        client: int,
        origin: int,
        destination: int,
        on_date: date,
        route_kind_hint: RouteKind = RouteKind.TRMC,
        method: Optional[CalculationMethod] = None,
    ) -> Resolution:
        """
        Resolve the applicable record.

        Raises:
            NotFoundError: If no active record covers the date
            AmbiguousTariffError: If the tie-breaks leave more than one record
        """
        found = self.records.find_candidates(client, origin, destination, on_date, method)
        candidates = [
            r for r in found
            if r.active and r.covers(on_date) and (method is None or r.calculation_method == method)
        ]
        if not candidates:
            raise NotFoundError(
                f"No tariff in force for client {client} route {origin}->{destination} on {on_date.isoformat()}",
                client=client, origin=origin, destination=destination, date=on_date.isoformat(),
            )

        total = len(candidates)
        if total == 1:
            return self._resolution(candidates[0], total, ResolutionRule.SINGLE, route_kind_hint)

        matching_kind = [r for r in candidates if r.normalized_kind == route_kind_hint]
        if matching_kind:
            candidates = matching_kind
            if len(candidates) == 1:
                return self._resolution(candidates[0], total, ResolutionRule.ROUTE_KIND, route_kind_hint)

        latest = max(r.valid_from for r in candidates)
        newest = [r for r in candidates if r.valid_from == latest]
        if len(newest) == 1:
            return self._resolution(newest[0], total, ResolutionRule.LATEST_VALID_FROM, route_kind_hint)

        ids = sorted(r.id for r in newest)
        logger.warning(f"Ambiguous tariff for client {client} {origin}->{destination} on {on_date}: records {ids}")
        raise AmbiguousTariffError(
            f"{len(newest)} tariff records tie for client {client} route {origin}->{destination} on {on_date.isoformat()}",
            records=ids,
        )

    @staticmethod
    def _resolution(record: TariffRecord, total: int, rule: ResolutionRule, hint: RouteKind) -> Resolution:
        warnings: List[str] = []
        if record.normalized_kind != hint:
            warnings.append(f"Requested route kind {hint.value} but applied tariff {record.id} is {record.route_kind}")
        return Resolution(record=record, candidate_count=total, decided_by=rule, warnings=warnings)
