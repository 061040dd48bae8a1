"""
ANALIZADOR DE PATRONES CONDUCTUALES
====================================
Un único BehavioralPattern por informe:

  1. Taxonomía de errores: cada etiqueta de dificultad ("struggle") se
     pasa a minúsculas y se clasifica por subcadena en UNA categoría:
       impulsiva → atencional → cognitiva (todo lo demás)
     Los juegos emiten las etiquetas en portugués, español o inglés.

  2. Mejor franja horaria: hora del día (0-23) del timestamp de creación
     con mayor precisión media, solo sobre sesiones con precisión
     resoluble. Sin ninguna → "unknown" (no la hora 0).

  3. Consistencia 0-10: 10 − σ/10 sobre las precisiones (σ poblacional),
     recortada a [0, 10]. Con menos de 2 precisiones → línea base 5.

  4. Lista de dificultades sin duplicados, en orden de aparición.

Esto describe patrones de juego, no diagnostica.
"""

import statistics
from collections import defaultdict
from dataclasses import dataclass
from typing import Dict, List, Sequence, Tuple

from domain_scores import order_sessions
from models import SessionRecord
from session_normalizer import extract_accuracy

IMPULSIVE_KEYWORDS: Tuple[str, ...] = ("impuls", "rush", "rápid", "rapid", "precipit")
ATTENTION_KEYWORDS: Tuple[str, ...] = (
    "atenção", "atencion", "atención", "attention",
    "distra", "foco", "focus",
)

UNKNOWN_TIME = "unknown"
CONSISTENCY_BASELINE = 5.0


@dataclass(frozen=True)
class ErrorPatterns:
    impulsive: int = 0
    attention: int = 0
    cognitive: int = 0

    def to_dict(self) -> dict:
        return {"impulsive": self.impulsive, "attention": self.attention, "cognitive": self.cognitive}


@dataclass(frozen=True)
class BehavioralPattern:
    error_patterns: ErrorPatterns
    best_performance_time: str
    consistency_score: float
    struggles_detected: Tuple[str, ...]

    def to_dict(self) -> dict:
        return {
            "errorPatterns": self.error_patterns.to_dict(),
            "bestPerformanceTime": self.best_performance_time,
            "consistencyScore": self.consistency_score,
            "strugglesDetected": list(self.struggles_detected),
        }


def classify_struggle(tag: str) -> str:
    lowered = tag.lower()
    if any(k in lowered for k in IMPULSIVE_KEYWORDS):
        return "impulsive"
    if any(k in lowered for k in ATTENTION_KEYWORDS):
        return "attention"
    return "cognitive"


def classify_errors(tags: Sequence[str]) -> ErrorPatterns:
    counts = {"impulsive": 0, "attention": 0, "cognitive": 0}
    for tag in tags:
        counts[classify_struggle(tag)] += 1
    return ErrorPatterns(**counts)


def format_hour_window(hour: int) -> str:
    return f"{hour:02d}:00 - {hour + 1:02d}:00"


def best_performance_time(sessions: Sequence[SessionRecord]) -> str:
    by_hour: Dict[int, List[float]] = defaultdict(list)
    for session in sessions:
        accuracy = extract_accuracy(session)
        if accuracy is not None:
            by_hour[session.created_at.hour].append(accuracy)
    if not by_hour:
        return UNKNOWN_TIME

    # Empate → la hora más temprana
    best_hour = min(
        by_hour,
        key=lambda h: (-(sum(sorted(by_hour[h])) / len(by_hour[h])), h),
    )
    return format_hour_window(best_hour)


def consistency_score(accuracies: Sequence[float], baseline: float = CONSISTENCY_BASELINE) -> float:
    if len(accuracies) < 2:
        return baseline
    std_dev = statistics.pstdev(sorted(accuracies))
    return round(max(0.0, min(10.0, 10 - std_dev / 10)), 2)


def analyze_behavioral_patterns(
    sessions: Sequence[SessionRecord],
    baseline: float = CONSISTENCY_BASELINE,
) -> BehavioralPattern:
    ordered = order_sessions(sessions)
    all_tags = [tag for s in ordered for tag in s.struggles]
    accuracies = [a for a in (extract_accuracy(s) for s in ordered) if a is not None]
    return BehavioralPattern(
        error_patterns=classify_errors(all_tags),
        best_performance_time=best_performance_time(ordered),
        consistency_score=consistency_score(accuracies, baseline),
        struggles_detected=tuple(dict.fromkeys(all_tags)),
    )
