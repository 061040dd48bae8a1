"""
ANALIZADOR DE TENDENCIA TEMPORAL
=================================
Agrupa las sesiones por fecha de calendario (la fecha que codifica el
propio timestamp de creación, sin conversión de zona horaria) y emite
un punto por fecha, ordenado ascendentemente:

    TemporalPoint(date, accuracy, session_count, avg_reaction_time)

session_count cuenta TODAS las sesiones del día, tengan o no precisión
resoluble. Las medias ignoran los None; si un día no tiene ningún valor
utilizable la media de ese día es None (no 0, que sería un dato falso).
"""

from collections import defaultdict
from dataclasses import dataclass
from datetime import date
from typing import Dict, List, Optional, Sequence

from models import SessionRecord
from session_normalizer import extract_accuracy, extract_reaction_time


@dataclass(frozen=True)
class TemporalPoint:
    date: date
    accuracy: Optional[float]
    session_count: int
    avg_reaction_time: Optional[float]

    def to_dict(self) -> dict:
        return {
            "date": self.date.isoformat(),
            "accuracy": self.accuracy,
            "sessionCount": self.session_count,
            "avgReactionTime": self.avg_reaction_time,
        }


def _rounded_mean(values: List[float]) -> Optional[float]:
    if not values:
        return None
    return round(sum(values) / len(values), 2)


def analyze_temporal_evolution(sessions: Sequence[SessionRecord]) -> List[TemporalPoint]:
    by_date: Dict[date, List[SessionRecord]] = defaultdict(list)
    for session in sessions:
        by_date[session.created_at.date()].append(session)

    points = []
    for day in sorted(by_date):
        day_sessions = by_date[day]
        accuracies = [a for a in (extract_accuracy(s) for s in day_sessions) if a is not None]
        reaction_times = [rt for rt in (extract_reaction_time(s) for s in day_sessions) if rt is not None]
        # Suma en orden de valor: la media no depende del orden de entrada
        points.append(TemporalPoint(
            date=day,
            accuracy=_rounded_mean(sorted(accuracies)),
            session_count=len(day_sessions),
            avg_reaction_time=_rounded_mean(sorted(reaction_times)),
        ))
    return points
