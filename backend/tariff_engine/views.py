from __future__ import annotations

import logging
import time
import traceback

from django.conf import settings
from django.utils.timezone import now
from rest_framework import status, views
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response

from accounts.permissions import CanManageTariffEngine

from .exceptions import InternalError, TariffEngineError
from .serializers import AuditQuerySerializer, CalculateRequestSerializer, SimulateRequestSerializer
from .services.audit import entry_to_dict
from .services.engine import get_engine
from .services.simulation import SimulationOrchestrator

logger = logging.getLogger(__name__)


def _received(request):
    data = request.data
    return data.dict() if hasattr(data, "dict") else data


def _invalid(errors, received):
    return Response(
        {"message": "Invalid request", "error": "validation_error", "errors": errors, "received": received},
        status=status.HTTP_400_BAD_REQUEST,
    )


def _engine_error(exc: TariffEngineError, received):
    payload = exc.to_dict()
    payload["received"] = received
    if settings.DEBUG and isinstance(exc, InternalError):
        payload["trace"] = traceback.format_exc()
    return Response(payload, status=exc.status_code)


def _elapsed_ms(started: float) -> float:
    return round((time.perf_counter() - started) * 1000, 2)


class TariffCalculateView(views.APIView):
    permission_classes = [IsAuthenticated]

    def post(self, request):
        started = time.perf_counter()
        received = _received(request)
        ser = CalculateRequestSerializer(data=request.data)
        if not ser.is_valid():
            return _invalid(ser.errors, received)

        try:
            context = ser.to_context()
            result = get_engine().calculate(context)
        except TariffEngineError as e:
            return _engine_error(e, received)

        body = result.to_dict()
        body["metadatos"] = {
            "solicitud": {
                "timestamp": now().isoformat(),
                "tiempoEjecucion": _elapsed_ms(started),
                "usuario": request.user.username,
            },
            "configuracion": {
                "aplicarReglas": context.apply_rules,
                "usarCache": context.use_cache,
                "incluirDesglose": context.include_breakdown,
            },
        }
        return Response(body, status=status.HTTP_200_OK)


class TariffSimulateView(views.APIView):
    permission_classes = [IsAuthenticated]

    def post(self, request):
        started = time.perf_counter()
        received = _received(request)
        ser = SimulateRequestSerializer(data=request.data)
        if not ser.is_valid():
            return _invalid(ser.errors, received)

        try:
            scenarios = ser.to_scenarios()
        except TariffEngineError as e:
            return _engine_error(e, received)
        config = ser.to_config()
        report = SimulationOrchestrator(get_engine()).run(scenarios, config)

        resultados = []
        for item in report.results:
            entry = {
                "indice": item.index,
                "nombre": item.name,
                "parametros": item.context.to_dict(),
                "resultados": {method: r.to_dict() for method, r in item.results.items()},
                "tiempoEjecucion": round(item.elapsed_ms, 2),
            }
            if item.method_errors:
                entry["erroresPorMetodo"] = item.method_errors
            if config.compare_methods:
                entry["analisis"] = item.analysis()
            resultados.append(entry)

        errores = []
        for err in report.errors:
            entry = {
                "indice": err.index,
                "nombre": err.name,
                "error": err.error,
                "tipoError": err.error_type,
                "statusCode": err.status_code,
                "parametros": err.context.to_dict(),
            }
            if err.method_errors:
                entry["erroresPorMetodo"] = err.method_errors
            errores.append(entry)

        return Response(
            {
                "simulacion": {
                    "totalEscenarios": len(scenarios),
                    "configuracion": {
                        "compararMetodos": config.compare_methods,
                        "incluirDesglose": config.include_breakdown,
                        "aplicarReglas": config.apply_rules,
                        "usarCache": config.use_cache,
                    },
                    "timestamp": now().isoformat(),
                },
                "resultados": resultados,
                "errores": errores,
                "resumen": report.summary,
                "metadatos": {
                    "tiempoEjecucion": _elapsed_ms(started),
                    "usuario": request.user.username,
                },
            },
            status=status.HTTP_200_OK,
        )


class TariffAuditView(views.APIView):
    permission_classes = [IsAuthenticated]

    def get(self, request):
        ser = AuditQuerySerializer(data=request.query_params)
        if not ser.is_valid():
            return _invalid(ser.errors, request.query_params.dict())

        query = ser.to_query()
        engine = get_engine()
        report = engine.query_audit(query)
        entries = report.entries

        return Response(
            {
                "consulta": {
                    "desde": query.since.isoformat() if query.since else None,
                    "hasta": query.until.isoformat() if query.until else None,
                    "clienteId": query.client,
                    "conErrores": query.only_errors,
                    "limite": query.limit,
                    "incluirContexto": query.include_context,
                    "agruparPor": query.group_by,
                },
                "auditorias": [entry_to_dict(e, query.include_context) for e in entries],
                "agrupacion": report.grouping,
                "estadisticas": report.statistics,
                "cache": engine.cache_stats(),
                "metadatos": {
                    "totalEncontradas": report.total_found,
                    "mostradas": len(entries),
                    "limitadaPor": query.limit if report.total_found > query.limit else None,
                    "rangoTiempo": {
                        "masAntigua": entries[-1].timestamp.isoformat() if entries else None,
                        "masReciente": entries[0].timestamp.isoformat() if entries else None,
                    },
                },
            },
            status=status.HTTP_200_OK,
        )


class TariffCacheClearView(views.APIView):
    permission_classes = [IsAuthenticated, CanManageTariffEngine]

    def post(self, request):
        stats = get_engine().clear_cache()
        before = stats["before"]
        lookups = before["hits"] + before["misses"]
        hit_rate = round(before["hits"] * 100 / lookups, 2) if lookups else 0.0
        logger.info(f"Tariff cache cleared by {request.user.username} ({before['keys']} entries)")

        recommendations = [
            "The cache is not invalidated when tariff records or business rules change; "
            "clear it after bulk edits, validity updates or rule changes."
        ]
        if before["keys"] == 0:
            recommendations.append("The cache was already empty; no cached results were discarded.")
        elif lookups and hit_rate < 20:
            recommendations.append(
                f"Hit rate was {hit_rate}%; most requests differ in their inputs, so clearing costs little."
            )

        return Response(
            {
                "operacion": "limpiar_cache",
                "timestamp": now().isoformat(),
                "usuario": {
                    "id": request.user.id,
                    "username": request.user.username,
                    "role": getattr(request.user, "role", None),
                },
                "estadisticas": {"antes": before, "despues": stats["after"]},
                "impacto": {
                    "entradasEliminadas": before["keys"],
                    "hitsPrevios": before["hits"],
                    "fallosPrevios": before["misses"],
                    "tasaAciertoPrevia": hit_rate,
                },
                "recomendaciones": recommendations,
            },
            status=status.HTTP_200_OK,
        )
