"""
Audit trail of every calculation the engine performed.

Entries are kept in memory, newest last, bounded by ``max_entries`` (the
oldest are dropped first). Failed calculations are recorded too, with a
``None`` result and the error messages.
"""

from __future__ import annotations

import copy
import logging
import threading
from collections import Counter, OrderedDict, deque
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Any, Callable, Dict, List, Optional

from django.utils import timezone

from ..dataclasses import AuditEntry
from .utils import ZERO, money

logger = logging.getLogger(__name__)

GROUPINGS = ("cliente", "metodo", "fecha", "hora")


@dataclass
class AuditQuery:
    since: Optional[datetime] = None
    until: Optional[datetime] = None
    client: Optional[int] = None
    only_errors: bool = False
    limit: int = 100
    include_context: bool = False
    group_by: Optional[str] = None


@dataclass
class AuditReport:
    query: AuditQuery
    entries: List[AuditEntry]
    total_found: int
    grouping: Optional[Dict[str, Dict[str, Any]]] = None
    statistics: Dict[str, Any] = field(default_factory=dict)


def performance_category(avg_ms: float) -> str:
    if avg_ms < 50:
        return "Excelente"
    if avg_ms < 100:
        return "Bueno"
    if avg_ms < 200:
        return "Regular"
    return "Necesita optimización"


def _method_of(entry: AuditEntry) -> str:
    return entry.result.method_used.value if entry.result else "error"


def _total_of(entry: AuditEntry) -> Decimal:
    return entry.result.total if entry.result else ZERO


def _avg(values) -> float:
    values = list(values)
    return round(sum(values) / len(values), 2) if values else 0.0


def entry_to_dict(entry: AuditEntry, include_context: bool = False) -> Dict[str, Any]:
    item: Dict[str, Any] = {
        "timestamp": entry.timestamp.isoformat(),
        "tiempoEjecucion": round(entry.execution_time_ms, 2),
        "clienteId": entry.context.client,
        "exitoso": not entry.failed,
    }
    if entry.result is not None:
        item["resultado"] = {
            "total": str(entry.result.total),
            "metodoUtilizado": entry.result.method_used.value,
            "formulaAplicada": entry.result.formula_applied,
            "reglasAplicadas": len(entry.result.rules_applied),
            "cacheUtilizado": entry.result.cache_hit,
            "advertencias": len(entry.result.warnings),
        }
    if entry.errors:
        item["errores"] = list(entry.errors)
    if include_context:
        item["contexto"] = entry.context.to_dict()
    return item


class AuditLog:
    def __init__(self, max_entries: Optional[int] = 1000, clock: Callable[[], datetime] = timezone.now):
        self.max_entries = max_entries
        self.clock = clock
        self._lock = threading.Lock()
        self._entries = deque(maxlen=max_entries)

    def __len__(self):
        with self._lock:
            return len(self._entries)

    def record(self, entry: AuditEntry) -> None:
        stored = copy.deepcopy(entry)
        with self._lock:
            self._entries.append(stored)
        if entry.failed:
            logger.debug(f"Audited failed calculation for client {entry.context.client}: {entry.errors[0]}")

    def snapshot(self) -> List[AuditEntry]:
        """All retained entries, oldest first."""
        with self._lock:
            return list(self._entries)

    def query(self, query: AuditQuery) -> AuditReport:
        matching = [e for e in reversed(self.snapshot()) if self._accepts(e, query)]
        limited = copy.deepcopy(matching[: query.limit])
        return AuditReport(
            query=query,
            entries=limited,
            total_found=len(matching),
            grouping=group_entries(limited, query.group_by) if query.group_by else None,
            statistics=compute_statistics(limited),
        )

    @staticmethod
    def _accepts(entry: AuditEntry, query: AuditQuery) -> bool:
        if query.since and entry.timestamp < query.since:
            return False
        if query.until and entry.timestamp > query.until:
            return False
        if query.client is not None and entry.context.client != query.client:
            return False
        if query.only_errors and not entry.failed:
            return False
        return True


def group_entries(entries: List[AuditEntry], group_by: str) -> Dict[str, Dict[str, Any]]:
    """Group entries by client, method, day or hour of day."""
    if group_by not in GROUPINGS:
        raise ValueError(f"Unknown grouping: {group_by!r}")

    buckets: Dict[str, List[AuditEntry]] = OrderedDict()
    for entry in entries:
        if group_by == "cliente":
            key = str(entry.context.client)
        elif group_by == "metodo":
            key = _method_of(entry)
        elif group_by == "fecha":
            key = timezone.localtime(entry.timestamp).date().isoformat()
        else:
            key = f"{timezone.localtime(entry.timestamp).hour:02d}:00"
        buckets.setdefault(key, []).append(entry)

    grouped = {}
    for key, items in buckets.items():
        errors = sum(1 for e in items if e.failed)
        if group_by == "cliente":
            grouped[key] = {
                "cantidad": len(items),
                "tiempoPromedio": _avg(e.execution_time_ms for e in items),
                "errores": errors,
                "totalCalculado": str(money(sum((_total_of(e) for e in items), ZERO))),
                "metodosUtilizados": sorted({_method_of(e) for e in items if e.result}),
            }
        elif group_by == "metodo":
            ok = [e for e in items if e.result]
            grouped[key] = {
                "cantidad": len(items),
                "tiempoPromedio": _avg(e.execution_time_ms for e in items),
                "totalPromedio": str(money(sum((_total_of(e) for e in ok), ZERO) / len(ok))) if ok else "0.00",
                "clientesUnicos": len({e.context.client for e in items}),
            }
        elif group_by == "fecha":
            grouped[key] = {
                "cantidad": len(items),
                "errores": errors,
                "tiempoTotal": round(sum(e.execution_time_ms for e in items), 2),
                "montoTotal": str(money(sum((_total_of(e) for e in items), ZERO))),
            }
        else:
            grouped[key] = {
                "cantidad": len(items),
                "errores": errors,
                "tiempoPromedio": _avg(e.execution_time_ms for e in items),
            }
    return grouped


def compute_statistics(entries: List[AuditEntry]) -> Dict[str, Any]:
    total = len(entries)
    failed = sum(1 for e in entries if e.failed)
    times = [e.execution_time_ms for e in entries]
    avg_ms = _avg(times)

    methods = Counter(_method_of(e) for e in entries if e.result)
    cache_hits = sum(1 for e in entries if e.result and e.result.cache_hit)
    hours = Counter(f"{timezone.localtime(e.timestamp).hour:02d}:00" for e in entries)

    return {
        "resumen": {
            "totalCalculos": total,
            "exitosos": total - failed,
            "conErrores": failed,
            "tasaExito": round((total - failed) * 100 / total, 2) if total else 0.0,
        },
        "rendimiento": {
            "tiempoPromedio": avg_ms,
            "tiempoMinimo": round(min(times), 2) if times else 0.0,
            "tiempoMaximo": round(max(times), 2) if times else 0.0,
            "categoria": performance_category(avg_ms),
        },
        "metodos": {
            "frecuencia": dict(methods),
            "masUtilizado": methods.most_common(1)[0][0] if methods else None,
        },
        "cache": {
            "utilizaciones": cache_hits,
            "tasaUso": round(cache_hits * 100 / total, 2) if total else 0.0,
        },
        "patrones": {
            "horasPico": [{"hora": h, "cantidad": c} for h, c in hours.most_common(3)],
            "clientesActivos": len({e.context.client for e in entries}),
        },
    }
