"""
MODELOS DE DATOS — Telemetría de juegos terapéuticos
=====================================================
Registros inmutables que el motor consume en modo solo-lectura:

  SessionRecord          → una sesión/ensayo de juego terminado o intentado
  TrailMetadata          → nivel inicial/actual y XP de un dominio cognitivo
  NeurodiversityProfile  → etiquetas de condiciones detectadas del sujeto

Los registros llegan de tablas distintas (sesiones genéricas, cribados y
métricas conductuales de cada juego) con formas heterogéneas; from_row()
acepta todas y nunca reinterpreta el payload de rendimiento, que se deja
tal cual para el normalizador.
"""

import json
from dataclasses import dataclass, field
from datetime import datetime, timezone
from types import MappingProxyType
from typing import Any, Mapping, Optional, Tuple


def parse_timestamp(value: Any) -> Optional[datetime]:
    """ISO-8601 (con o sin 'Z') → datetime. Conserva el offset tal como viene."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value
    text = str(value).strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    return datetime.fromisoformat(text)


def _load_json(value: Any, default):
    if value is None or value == "":
        return default
    if isinstance(value, (dict, list)):
        return value
    try:
        return json.loads(value)
    except (json.JSONDecodeError, TypeError):
        return default


def _freeze(payload: Mapping) -> Mapping:
    return MappingProxyType(dict(payload))


@dataclass(frozen=True)
class SessionRecord:
    """Hecho inmutable: una sesión de juego."""
    id: str
    user_id: str
    cognitive_domain: str
    created_at: datetime
    completed_at: Optional[datetime] = None
    performance_data: Mapping[str, Any] = field(default_factory=lambda: _freeze({}))
    struggles: Tuple[str, ...] = ()
    game_type: str = ""
    # Tabla de origen: learning_sessions | screenings | behavioral_metrics
    source: str = ""
    # Columnas de nivel sesión que algunas tablas guardan fuera del payload
    accuracy_percentage: Any = None
    accuracy: Any = None
    avg_reaction_time_ms: Any = None
    reaction_time_ms: Any = None

    @property
    def instant(self) -> datetime:
        """Instante absoluto para ordenar; sin offset se asume UTC."""
        if self.created_at.tzinfo is None:
            return self.created_at.replace(tzinfo=timezone.utc)
        return self.created_at

    @property
    def is_completed(self) -> bool:
        return self.completed_at is not None

    @property
    def duration_ms(self) -> float:
        if self.completed_at is None:
            return 0.0
        completed = self.completed_at
        if completed.tzinfo is None and self.created_at.tzinfo is not None:
            completed = completed.replace(tzinfo=self.created_at.tzinfo)
        elif completed.tzinfo is not None and self.created_at.tzinfo is None:
            completed = completed.replace(tzinfo=None)
        return (completed - self.created_at).total_seconds() * 1000

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "SessionRecord":
        """Construye desde una fila de BD (sqlite3.Row o dict)."""
        row = dict(row)
        performance = _load_json(row.get("performance_data"), {})
        if not isinstance(performance, dict):
            performance = {}
        struggles = _load_json(row.get("struggles"), [])
        if not isinstance(struggles, list):
            struggles = []
        return cls(
            id=str(row.get("id", "")),
            user_id=str(row.get("user_id", "")),
            cognitive_domain=row.get("cognitive_domain") or "general",
            created_at=parse_timestamp(row["created_at"]),
            completed_at=parse_timestamp(row.get("completed_at")),
            performance_data=_freeze(performance),
            struggles=tuple(str(s) for s in struggles if s is not None),
            game_type=row.get("game_type") or "",
            source=row.get("source") or "",
            accuracy_percentage=row.get("accuracy_percentage"),
            accuracy=row.get("accuracy"),
            avg_reaction_time_ms=row.get("avg_reaction_time_ms"),
            reaction_time_ms=row.get("reaction_time_ms"),
        )


@dataclass(frozen=True)
class TrailMetadata:
    """Progreso de un dominio: nivel inicial, nivel actual, XP acumulada."""
    initial_level: int = 1
    current_level: int = 1
    total_xp: int = 0

    def to_dict(self) -> dict:
        return {
            "initialLevel": self.initial_level,
            "currentLevel": self.current_level,
            "totalXP": self.total_xp,
        }


DEFAULT_TRAIL = TrailMetadata()


@dataclass(frozen=True)
class NeurodiversityProfile:
    user_id: str
    detected_conditions: Tuple[str, ...] = ()

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "NeurodiversityProfile":
        row = dict(row)
        conditions = _load_json(row.get("detected_conditions"), [])
        if not isinstance(conditions, list):
            conditions = []
        return cls(user_id=str(row["user_id"]), detected_conditions=tuple(str(c) for c in conditions))
