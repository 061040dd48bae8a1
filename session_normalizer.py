"""
NORMALIZADOR DE SESIONES
=========================
Extrae de cada SessionRecord un par canónico:

    (accuracy: float 0-100 | None, reaction_time_ms: float | None)

Los juegos guardan estas medidas con nombres, unidades y ubicaciones
distintas. En lugar de adivinar en cada llamada, se recorre una lista
ORDENADA de candidatos con nombre; gana el primer valor numérico presente.

Reglas de unidades:
  - precisión en [0, 1]  → ratio, se multiplica por 100
  - precisión fuera      → se recorta a [0, 100]
  - tiempo de reacción   → max(0, round(valor)) en milisegundos

Nunca lanza excepciones: un campo irresoluble devuelve None y la sesión
queda fuera de esa estadística concreta, no del informe.
"""

import logging
import math
from dataclasses import dataclass
from typing import Any, Optional, Tuple

from models import SessionRecord

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ExtractionCandidate:
    """Un nombre de campo y dónde buscarlo."""
    name: str
    source: str  # "payload" | "record"

    def lookup(self, session: SessionRecord) -> Any:
        if self.source == "payload":
            return session.performance_data.get(self.name)
        return getattr(session, self.name, None)


ACCURACY_CANDIDATES: Tuple[ExtractionCandidate, ...] = (
    ExtractionCandidate("accuracy", "payload"),
    ExtractionCandidate("accuracy_percentage", "payload"),
    ExtractionCandidate("accuracyPercentage", "payload"),
    ExtractionCandidate("accuracyPercent", "payload"),
    ExtractionCandidate("accuracy_percentage", "record"),
    ExtractionCandidate("accuracy", "record"),
)

REACTION_TIME_CANDIDATES: Tuple[ExtractionCandidate, ...] = (
    ExtractionCandidate("reaction_time", "payload"),
    ExtractionCandidate("reaction_time_ms", "payload"),
    ExtractionCandidate("avg_reaction_time_ms", "payload"),
    ExtractionCandidate("reactionTime", "payload"),
    ExtractionCandidate("avg_reaction_time_ms", "record"),
    ExtractionCandidate("reaction_time_ms", "record"),
)


def _as_number(value: Any) -> Optional[float]:
    # bool es subclase de int: True no es una precisión
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    if math.isnan(value) or math.isinf(value):
        return None
    return float(value)


def _first_numeric(session: SessionRecord, candidates) -> Optional[float]:
    for candidate in candidates:
        value = _as_number(candidate.lookup(session))
        if value is not None:
            return value
    return None


def normalize_accuracy(value: float) -> float:
    if 0 <= value <= 1:
        value = value * 100
    return round(min(100.0, max(0.0, value)), 2)


def normalize_reaction_time(value: float) -> float:
    return float(max(0, round(value)))


def extract_accuracy(session: SessionRecord) -> Optional[float]:
    """Precisión canónica 0-100 o None."""
    raw = _first_numeric(session, ACCURACY_CANDIDATES)
    if raw is None:
        logger.debug(f"Sesión {session.id}: sin campo de precisión resoluble")
        return None
    return normalize_accuracy(raw)


def extract_reaction_time(session: SessionRecord) -> Optional[float]:
    """Tiempo de reacción en ms o None."""
    raw = _first_numeric(session, REACTION_TIME_CANDIDATES)
    if raw is None:
        logger.debug(f"Sesión {session.id}: sin campo de tiempo de reacción resoluble")
        return None
    return normalize_reaction_time(raw)


def normalize_session(session: SessionRecord) -> Tuple[Optional[float], Optional[float]]:
    return extract_accuracy(session), extract_reaction_time(session)
