"""
AGREGADOR DE PUNTUACIONES POR DOMINIO COGNITIVO
================================================
Agrupa las sesiones normalizadas por dominio (atención, memoria,
lenguaje, lógica...) y calcula, por dominio:

  - nivel inicial / actual y XP acumulada (del trail del dominio)
  - sesiones completadas y precisión media
  - mejora porcentual: primer ⌈20%⌉ de sesiones frente al último ⌈20%⌉

Además calcula los totales generales del periodo: número de sesiones,
minutos jugados, precisión media, tiempo de reacción medio y tasa de
finalización. Sin sesiones → métricas a cero, nunca una excepción.

Todo se recalcula en cada informe; nada de esto se persiste suelto.
"""

import math
from collections import OrderedDict
from dataclasses import dataclass, field
from typing import Dict, List, Mapping, Optional, Sequence

from models import DEFAULT_TRAIL, SessionRecord, TrailMetadata
from session_normalizer import extract_accuracy, extract_reaction_time

QUINTILE_FRACTION = 0.2


@dataclass(frozen=True)
class CognitiveDomainScore:
    domain: str
    initial_level: int
    current_level: int
    total_xp: int
    sessions_completed: int
    avg_accuracy: float
    improvement: float

    def to_dict(self) -> dict:
        return {
            "domain": self.domain,
            "initialLevel": self.initial_level,
            "currentLevel": self.current_level,
            "totalXP": self.total_xp,
            "sessionsCompleted": self.sessions_completed,
            "avgAccuracy": self.avg_accuracy,
            "improvement": self.improvement,
        }


@dataclass(frozen=True)
class GeneralMetrics:
    total_sessions: int = 0
    total_duration_minutes: int = 0
    avg_accuracy: float = 0.0
    avg_reaction_time: int = 0
    completion_rate: float = 0.0
    cognitive_scores: Mapping[str, CognitiveDomainScore] = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {
            "totalSessions": self.total_sessions,
            "totalDurationMinutes": self.total_duration_minutes,
            "avgAccuracy": self.avg_accuracy,
            "avgReactionTime": self.avg_reaction_time,
            "completionRate": self.completion_rate,
            "cognitiveScores": {
                name: score.to_dict() for name, score in sorted(self.cognitive_scores.items())
            },
        }


def mean(values: Sequence[float]) -> Optional[float]:
    return sum(values) / len(values) if values else None


def order_sessions(sessions: Sequence[SessionRecord]) -> List[SessionRecord]:
    """Orden cronológico estable (empates: id, para que el resultado no dependa del orden de llegada)."""
    return sorted(sessions, key=lambda s: (s.instant, s.id))


def _accuracies(sessions: Sequence[SessionRecord]) -> List[float]:
    return [a for a in (extract_accuracy(s) for s in sessions) if a is not None]


def improvement_percent(
    ordered: Sequence[SessionRecord], fraction: float = QUINTILE_FRACTION
) -> float:
    """
    (actual − inicial) / inicial × 100 entre el primer y el último tramo.
    0 si algún tramo no tiene precisión utilizable o la inicial es 0.
    """
    if not ordered:
        return 0.0
    size = math.ceil(len(ordered) * fraction)
    initial = mean(_accuracies(ordered[:size]))
    current = mean(_accuracies(ordered[-size:]))
    if initial is None or current is None or initial == 0:
        return 0.0
    return round((current - initial) / initial * 100, 2)


def compute_domain_scores(
    sessions: Sequence[SessionRecord],
    trails: Mapping[str, TrailMetadata],
    fraction: float = QUINTILE_FRACTION,
) -> Dict[str, CognitiveDomainScore]:
    groups: Dict[str, List[SessionRecord]] = OrderedDict()
    for session in order_sessions(sessions):
        groups.setdefault(session.cognitive_domain, []).append(session)

    scores = {}
    for domain, domain_sessions in groups.items():
        trail = trails.get(domain, DEFAULT_TRAIL)
        avg = mean(_accuracies(domain_sessions))
        scores[domain] = CognitiveDomainScore(
            domain=domain,
            initial_level=trail.initial_level,
            current_level=trail.current_level,
            total_xp=trail.total_xp,
            sessions_completed=len(domain_sessions),
            avg_accuracy=round(avg, 2) if avg is not None else 0.0,
            improvement=improvement_percent(domain_sessions, fraction),
        )
    return scores


def calculate_metrics(
    sessions: Sequence[SessionRecord],
    trails: Optional[Mapping[str, TrailMetadata]] = None,
    fraction: float = QUINTILE_FRACTION,
) -> GeneralMetrics:
    """Totales del periodo + puntuación por dominio."""
    if not sessions:
        return GeneralMetrics()

    trails = trails or {}
    sessions = order_sessions(sessions)
    accuracies = _accuracies(sessions)
    reaction_times = [rt for rt in (extract_reaction_time(s) for s in sessions) if rt is not None]
    completed = [s for s in sessions if s.is_completed]
    total_ms = sum(s.duration_ms for s in completed)

    avg_accuracy = mean(accuracies)
    avg_rt = mean(reaction_times)
    return GeneralMetrics(
        total_sessions=len(sessions),
        total_duration_minutes=round(total_ms / 60000),
        avg_accuracy=round(avg_accuracy, 2) if avg_accuracy is not None else 0.0,
        avg_reaction_time=round(avg_rt) if avg_rt is not None else 0,
        completion_rate=round(len(completed) / len(sessions) * 100, 2),
        cognitive_scores=compute_domain_scores(sessions, trails, fraction),
    )


def derive_trail_metadata(sessions: Sequence[SessionRecord]) -> Dict[str, TrailMetadata]:
    """
    Trail sintético para dominios sin fila de progreso propia (sesiones
    que vienen de métricas conductuales). Nivel 1 inicial; el actual
    sube un nivel por cada 20 puntos de precisión media, con tope 10.
    """
    groups: Dict[str, List[SessionRecord]] = OrderedDict()
    for session in sessions:
        groups.setdefault(session.cognitive_domain, []).append(session)

    derived = {}
    for domain, domain_sessions in groups.items():
        # Las sesiones sin precisión cuentan como 0 para el nivel
        accuracies = [extract_accuracy(s) or 0.0 for s in domain_sessions]
        avg = sum(accuracies) / len(accuracies)
        xp = 0
        for s in domain_sessions:
            score = s.performance_data.get("score")
            if isinstance(score, (int, float)) and not isinstance(score, bool) and not math.isnan(score):
                xp += int(score)
        derived[domain] = TrailMetadata(
            initial_level=1,
            current_level=min(math.ceil(avg / 20) + 1, 10),
            total_xp=xp,
        )
    return derived
