"""
CONSTRUCTOR DE INFORMES CLÍNICOS
=================================
Ensambla el ClinicalReport final a partir de lo ya calculado:

    GeneralMetrics + [TemporalPoint] + BehavioralPattern
    + RiskSummary por condición + (opcional) NarrativeAnalysis

No recalcula estadísticas. Solo añade:
  - contabilidad del periodo (días totales)
  - proyección de los dominios de juego sobre seis dominios estándar
    (attention, memory, language, logic, emotion, coordination)

El informe es inmutable y to_dict() es determinista: dos informes con
las mismas entradas serializan idénticos. La fecha de generación vive
en el sobre del resultado (ReportResult), no aquí.
"""

import math
from dataclasses import dataclass
from datetime import date, datetime
from typing import Dict, Mapping, Optional, Sequence, Tuple, Union

from behavioral_patterns import BehavioralPattern
from domain_scores import CognitiveDomainScore, GeneralMetrics
from narrative_client import NarrativeAnalysis
from models import NeurodiversityProfile
from risk_heuristics import RiskSummary
from temporal_trends import TemporalPoint

STANDARD_DOMAINS: Tuple[str, ...] = ("attention", "memory", "language", "logic", "emotion", "coordination")

# Primera coincidencia gana; sin coincidencia → logic
DOMAIN_KEYWORDS: Tuple[Tuple[str, Tuple[str, ...]], ...] = (
    ("attention", ("attention", "atenção", "atención", "foco", "focus")),
    ("memory", ("memory", "memória", "memoria")),
    ("language", ("language", "linguagem", "lenguaje", "dislexia", "dyslexia", "phonolog")),
    ("logic", ("logic", "lógica", "logica", "raciocínio", "executive")),
    ("emotion", ("emotion", "emoção", "emocao", "emoción", "autism", "tea")),
    ("coordination", ("coordination", "coordenação", "coordinación", "motor")),
    ("attention", ("tdah", "adhd")),
)

# Cribados: el dominio sale del tipo de test, no de las palabras clave
SCREENING_DOMAINS: Tuple[Tuple[str, Tuple[str, ...]], ...] = (
    ("emotion", ("tea", "autism", "asd")),
    ("attention", ("tdah", "adhd")),
    ("language", ("dislexia", "dyslexia")),
)


@dataclass(frozen=True)
class ClinicalReport:
    user_id: str
    period_start: str
    period_end: str
    total_days: int
    report_type: str
    metrics: GeneralMetrics
    mapped_domains: Mapping[str, float]
    temporal_evolution: Tuple[TemporalPoint, ...]
    behavioral: BehavioralPattern
    risk: Mapping[str, RiskSummary]
    neurodiversity_tags: Tuple[str, ...] = ()
    ai_analysis: Optional[NarrativeAnalysis] = None

    @property
    def cognitive_scores(self) -> Mapping[str, CognitiveDomainScore]:
        return self.metrics.cognitive_scores

    def to_dict(self) -> dict:
        general = self.metrics.to_dict()
        data = {
            "demographic": {
                "userId": self.user_id,
                "period": {"start": self.period_start, "end": self.period_end},
                "totalDays": self.total_days,
            },
            "reportType": self.report_type,
            "general": {
                "totalSessions": general["totalSessions"],
                "totalDurationMinutes": general["totalDurationMinutes"],
                "avgAccuracy": general["avgAccuracy"],
                "avgReactionTime": general["avgReactionTime"],
                "completionRate": general["completionRate"],
            },
            "cognitive": {d: self.mapped_domains.get(d, 0.0) for d in STANDARD_DOMAINS},
            "cognitiveScores": general["cognitiveScores"],
            "temporalEvolution": [p.to_dict() for p in self.temporal_evolution],
            "behavioral": self.behavioral.to_dict(),
            "riskIndicators": {c: self.risk[c].to_dict() for c in sorted(self.risk)},
        }
        if self.neurodiversity_tags:
            data["neurodiversityProfile"] = list(self.neurodiversity_tags)
        if self.ai_analysis is not None:
            data["aiAnalysis"] = self.ai_analysis.to_dict()
        return data


def parse_period_bound(value: Union[str, date, datetime]) -> datetime:
    if isinstance(value, datetime):
        return value
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day)
    return datetime.fromisoformat(str(value).replace("Z", "+00:00"))


def total_days(start: Union[str, date], end: Union[str, date]) -> int:
    """Días del periodo, redondeando hacia arriba los días parciales."""
    start_dt, end_dt = parse_period_bound(start), parse_period_bound(end)
    if (start_dt.tzinfo is None) != (end_dt.tzinfo is None):
        start_dt = start_dt.replace(tzinfo=None)
        end_dt = end_dt.replace(tzinfo=None)
    return math.ceil((end_dt - start_dt).total_seconds() / 86400)


def map_standard_domain(domain: str) -> str:
    lowered = domain.lower()
    if lowered.startswith("screening_"):
        screening_type = lowered[len("screening_"):]
        for standard, types in SCREENING_DOMAINS:
            if screening_type in types:
                return standard
    for standard, keywords in DOMAIN_KEYWORDS:
        if any(k in lowered for k in keywords):
            return standard
    return "logic"


def map_standard_domains(scores: Mapping[str, CognitiveDomainScore]) -> Dict[str, float]:
    """Máxima precisión media de los dominios de juego que caen en cada dominio estándar."""
    mapped = {d: 0.0 for d in STANDARD_DOMAINS}
    for name, score in scores.items():
        target = map_standard_domain(name)
        mapped[target] = max(mapped[target], score.avg_accuracy)
    return mapped


def build_report(
    user_id: str,
    period_start: str,
    period_end: str,
    metrics: GeneralMetrics,
    temporal_evolution: Sequence[TemporalPoint],
    behavioral: BehavioralPattern,
    risk: Optional[Mapping[str, RiskSummary]] = None,
    profile: Optional[NeurodiversityProfile] = None,
    ai_analysis: Optional[NarrativeAnalysis] = None,
    report_type: str = "comprehensive",
) -> ClinicalReport:
    return ClinicalReport(
        user_id=user_id,
        period_start=period_start,
        period_end=period_end,
        total_days=total_days(period_start, period_end),
        report_type=report_type,
        metrics=metrics,
        mapped_domains=map_standard_domains(metrics.cognitive_scores),
        temporal_evolution=tuple(temporal_evolution),
        behavioral=behavioral,
        risk=dict(risk or {}),
        neurodiversity_tags=tuple(profile.detected_conditions) if profile else (),
        ai_analysis=ai_analysis,
    )
