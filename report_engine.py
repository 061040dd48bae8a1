"""
MOTOR DE INFORMES CLÍNICOS — Orquestación del pipeline
=======================================================
Una invocación = un sujeto + un periodo. Sin estado compartido entre
invocaciones; se puede ejecutar en paralelo para sujetos distintos.

  1. Autorización (solicitante == sujeto, o rol con acceso global)
  2. Validación de fechas y tipo de informe
  3. Lecturas independientes EN PARALELO: sesiones, trails, perfil
  4. Sin sesiones → NoDataFound (nunca un informe vacío)
  5. Normalizador → {Agregador, Tendencia, Patrones} + resumen de riesgo
  6. Narrativa externa con timeout (fallo → informe 'partial' + warning)
  7. Ensamblado del ClinicalReport
  8. Persistencia: un único INSERT; si falla → PersistenceFault (fatal)

Nada se persiste antes del paso 8: cancelar la generación es
simplemente descartar el informe a medio construir.
"""

import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, Dict, List, Optional, Protocol, Sequence

from auth import UserSession, can_generate_report
from behavioral_patterns import analyze_behavioral_patterns
from config import AppConfig, get_config
from domain_scores import calculate_metrics, derive_trail_metadata
from errors import AuthorizationFault, InvalidReportRequest, NoDataFound
from models import NeurodiversityProfile, SessionRecord, TrailMetadata
from narrative_client import NarrativeClient, NarrativeRequest, request_narrative
from report_builder import ClinicalReport, build_report, parse_period_bound
from risk_heuristics import summarize_risk
from temporal_trends import analyze_temporal_evolution

logger = logging.getLogger(__name__)


class ReportStore(Protocol):
    def fetch_sessions(self, subject_id: str, start: str, end: str,
                       limit: int = 5000) -> List[SessionRecord]: ...

    def fetch_trails(self, subject_id: str) -> Dict[str, TrailMetadata]: ...

    def fetch_profile(self, subject_id: str) -> Optional[NeurodiversityProfile]: ...

    def save_report(self, report: ClinicalReport, status: str, generated_at: datetime,
                    requested_by: str = "", data_sources: Sequence[str] = ()) -> str: ...


@dataclass(frozen=True)
class ReportRequest:
    subject_id: str
    start_date: str
    end_date: str
    report_type: str = "comprehensive"

    def validate(self, report_types: Sequence[str]) -> None:
        if not self.subject_id:
            raise InvalidReportRequest("subject_id es obligatorio")
        try:
            # Mismo parser que total_days: lo que pasa aquí no falla al ensamblar
            start = parse_period_bound(self.start_date).date()
            end = parse_period_bound(self.end_date).date()
        except (TypeError, ValueError):
            raise InvalidReportRequest(
                "Fechas inválidas; formato esperado YYYY-MM-DD",
                details={"start_date": self.start_date, "end_date": self.end_date},
            )
        if end < start:
            raise InvalidReportRequest(
                "end_date no puede ser anterior a start_date",
                details={"start_date": self.start_date, "end_date": self.end_date},
            )
        if self.report_type not in report_types:
            raise InvalidReportRequest(
                f"Tipo de informe desconocido: {self.report_type}",
                details={"allowed": list(report_types)},
            )


@dataclass(frozen=True)
class ReportResult:
    """Sobre de respuesta: status success | partial."""
    status: str
    report: ClinicalReport
    report_id: str
    generated_at: datetime
    warning: Optional[str] = None

    def to_dict(self) -> dict:
        data = {
            "reportId": self.report_id,
            "status": self.status,
            "data": self.report.to_dict(),
            "generatedAt": self.generated_at.isoformat(),
        }
        if self.warning:
            data["warning"] = self.warning
        return data


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


DATA_SOURCES = ("learning_sessions", "screenings", "behavioral_metrics")


def data_sources(sessions: Sequence[SessionRecord]) -> List[str]:
    """Orígenes con al menos una sesión, en orden fijo."""
    present = set()
    for s in sessions:
        if s.source:
            present.add(s.source)
        elif "risk_indicators" in s.performance_data:
            present.add("behavioral_metrics")
        else:
            present.add("learning_sessions")
    return [source for source in DATA_SOURCES if source in present]


class ReportEngine:
    """Pipeline puro con colaboradores inyectados (almacén y narrativa)."""

    def __init__(
        self,
        store: ReportStore,
        narrative_client: Optional[NarrativeClient] = None,
        config: Optional[AppConfig] = None,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self.store = store
        self.narrative_client = narrative_client
        self.config = config or get_config()
        self.clock = clock

    def _fetch(self, request: ReportRequest):
        limit = self.config.report.max_sessions_per_report
        with ThreadPoolExecutor(max_workers=3, thread_name_prefix="report-io") as pool:
            sessions_f = pool.submit(
                self.store.fetch_sessions, request.subject_id,
                request.start_date, request.end_date, limit,
            )
            trails_f = pool.submit(self.store.fetch_trails, request.subject_id)
            profile_f = pool.submit(self.store.fetch_profile, request.subject_id)
            return sessions_f.result(), trails_f.result(), profile_f.result()

    def compose(
        self,
        request: ReportRequest,
        sessions: Sequence[SessionRecord],
        trails: Dict[str, TrailMetadata],
        profile: Optional[NeurodiversityProfile],
    ):
        """Cálculo + narrativa + ensamblado, sin E/S de almacén."""
        rc = self.config.report
        merged_trails = {**derive_trail_metadata(sessions), **trails}
        metrics = calculate_metrics(sessions, merged_trails, rc.quintile_fraction)
        temporal = analyze_temporal_evolution(sessions)
        behavioral = analyze_behavioral_patterns(sessions, rc.consistency_baseline)
        risk = summarize_risk(sessions)

        analysis, warning = request_narrative(
            self.narrative_client,
            NarrativeRequest(
                period_start=request.start_date,
                period_end=request.end_date,
                profile=profile,
                metrics=metrics,
                temporal=tuple(temporal),
                behavioral=behavioral,
            ),
            self.config.narrative.timeout_seconds,
        )

        report = build_report(
            user_id=request.subject_id,
            period_start=request.start_date,
            period_end=request.end_date,
            metrics=metrics,
            temporal_evolution=temporal,
            behavioral=behavioral,
            risk=risk,
            profile=profile,
            ai_analysis=analysis,
            report_type=request.report_type,
        )
        return report, warning

    def generate(self, caller: UserSession, request: ReportRequest) -> ReportResult:
        if not can_generate_report(caller, request.subject_id):
            logger.warning(
                f"Informe denegado — caller={caller.user_id} [{caller.role}] subject={request.subject_id}"
            )
            raise AuthorizationFault(
                "Unauthorized: el solicitante no puede generar informes de este sujeto",
                details={"subject_id": request.subject_id},
            )
        request.validate(self.config.report.report_types)

        logger.info(
            f"Generando informe {request.report_type} — subject={request.subject_id}, "
            f"{request.start_date}..{request.end_date}"
        )
        sessions, trails, profile = self._fetch(request)
        if not sessions:
            logger.info(f"Sin sesiones para {request.subject_id} en el periodo")
            raise NoDataFound(request.subject_id, request.start_date, request.end_date)

        report, warning = self.compose(request, sessions, trails, profile)
        status = "partial" if report.ai_analysis is None else "success"
        generated_at = self.clock()
        report_id = self.store.save_report(
            report, status, generated_at,
            requested_by=caller.user_id,
            data_sources=data_sources(sessions),
        )
        logger.info(
            f"Informe {report_id} generado — subject={request.subject_id}, "
            f"sesiones={len(sessions)}, status={status}"
        )
        return ReportResult(
            status=status,
            report=report,
            report_id=report_id,
            generated_at=generated_at,
            warning=warning if status == "partial" else None,
        )
