"""
HEURÍSTICAS DE RIESGO POR TAREA
================================
Cada juego terapéutico produce contadores a nivel de ensayo (falsas
alarmas, omisiones, errores perseverativos, coste de cambio, precisión
por sub-habilidad fonológica). Estos contadores se convierten en un
indicador de riesgo en [0, 1] por condición:

  adhd      → patrón de atención/impulsividad
  asd       → patrón de rigidez compatible con espectro autista
  dyslexia  → patrón de procesamiento fonológico

El riesgo es baseline + Σ pesos de las reglas que se cumplen, recortado
a 1.0. Las reglas NO están enterradas en cadenas de if: son tablas
declarativas (RiskTable → RiskRule → Threshold) que un único evaluador
genérico, apply_weighted_thresholds(), recorre. Ajustar un umbral es
editar una tabla, no tocar flujo de control.

Líneas base: solo hay baseline distinto de 0 donde la tabla lo declara
explícitamente (p. ej. dislexia en la tarea de atención sostenida).

Se ejecuta al CAPTURAR la sesión de juego; el resultado se persiste como
métrica conductual y después alimenta el informe igual que cualquier
otra sesión (capture_session / summarize_risk).

Son indicadores, no diagnósticos.
"""

import logging
import math
import operator
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Dict, List, Mapping, Optional, Sequence, Tuple

from models import SessionRecord

logger = logging.getLogger(__name__)

CONDITIONS: Tuple[str, ...] = ("adhd", "asd", "dyslexia")

SUSTAINED_ATTENTION = "sustained_attention"
COGNITIVE_FLEXIBILITY = "cognitive_flexibility"
PHONOLOGICAL_PROCESSING = "phonological_processing"

# Dominio cognitivo bajo el que se archiva cada tarea
TASK_DOMAINS: Dict[str, str] = {
    SUSTAINED_ATTENTION: "attention",
    COGNITIVE_FLEXIBILITY: "executive_function",
    PHONOLOGICAL_PROCESSING: "language",
}

# Duración nominal de un nivel de atención sostenida
SUSTAINED_ATTENTION_TRIAL_MS = 60000
SWITCH_COST_WINDOW = 5


# ═══════════════════════════════════════════════════════════════════════
# TABLAS DECLARATIVAS
# ═══════════════════════════════════════════════════════════════════════

_OPERATORS: Dict[str, Callable[[float, float], bool]] = {
    ">": operator.gt,
    ">=": operator.ge,
    "<": operator.lt,
    "<=": operator.le,
    "==": operator.eq,
}


@dataclass(frozen=True)
class Threshold:
    """Comparación simple: metrics[metric] <op> value."""
    metric: str
    op: str
    value: float

    def __post_init__(self):
        if self.op not in _OPERATORS:
            raise ValueError(f"Operador no soportado: {self.op}")

    def holds(self, metrics: Mapping[str, float]) -> bool:
        observed = metrics.get(self.metric)
        if observed is None:
            return False
        return _OPERATORS[self.op](observed, self.value)

    def describe(self) -> str:
        return f"{self.metric} {self.op} {self.value:g}"


@dataclass(frozen=True)
class RiskRule:
    """Suma `weight` cuando TODAS las condiciones se cumplen."""
    label: str
    weight: float
    conditions: Tuple[Threshold, ...]

    def fires(self, metrics: Mapping[str, float]) -> bool:
        return all(c.holds(metrics) for c in self.conditions)


@dataclass(frozen=True)
class RiskTable:
    condition: str
    rules: Tuple[RiskRule, ...] = ()
    baseline: float = 0.0


@dataclass(frozen=True)
class RiskAssessment:
    condition: str
    score: float
    baseline: float
    fired: Tuple[str, ...] = ()

    def to_dict(self) -> dict:
        return {
            "condition": self.condition,
            "score": self.score,
            "baseline": self.baseline,
            "fired": list(self.fired),
        }


def _rule(label: str, weight: float, *conditions: Tuple[str, str, float]) -> RiskRule:
    return RiskRule(label, weight, tuple(Threshold(*c) for c in conditions))


RISK_TABLES: Dict[str, Dict[str, RiskTable]] = {
    SUSTAINED_ATTENTION: {
        "adhd": RiskTable("adhd", (
            _rule("high_false_alarm_rate", 0.3, ("false_alarm_rate", ">", 0.3)),
            _rule("vigilance_decrement", 0.4, ("vigilance_decrement", ">", 20)),
            _rule("slow_reaction_time", 0.2, ("avg_reaction_time", ">", 800)),
            _rule("high_miss_rate", 0.3, ("miss_rate", ">", 0.4)),
        )),
        "asd": RiskTable("asd", (
            _rule("low_response_rate", 0.2, ("response_rate", "<", 0.3)),
            _rule("rigid_responding", 0.1,
                  ("false_alarms", "==", 0), ("correct_responses", ">", 10)),
        )),
        # Tarea no fonológica: riesgo de dislexia residual fijo
        "dyslexia": RiskTable("dyslexia", (), baseline=0.1),
    },
    COGNITIVE_FLEXIBILITY: {
        "asd": RiskTable("asd", (
            _rule("high_perseverative_rate", 0.4, ("perseverative_rate", ">", 0.3)),
            _rule("few_set_shifts", 0.3, ("set_shifts", "<", 3), ("total_trials", ">", 30)),
            _rule("overly_consistent", 0.2,
                  ("error_rate", "<", 0.1), ("total_trials", ">", 0), ("set_shifts", "<", 2)),
        )),
        "adhd": RiskTable("adhd", (
            _rule("high_error_rate", 0.3, ("error_rate", ">", 0.4)),
            _rule("high_switch_cost", 0.3, ("switch_cost", ">", 200)),
            _rule("perseverative_errors", 0.2, ("perseverative_rate", ">", 0.2)),
        )),
        "dyslexia": RiskTable("dyslexia", (
            _rule("slow_processing", 0.2, ("avg_reaction_time", ">", 1500)),
            _rule("very_high_switch_cost", 0.2, ("switch_cost", ">", 300)),
        )),
    },
    PHONOLOGICAL_PROCESSING: {
        "dyslexia": RiskTable("dyslexia", (
            _rule("low_phonological_score", 0.5, ("phonological_score", "<", 60)),
            _rule("weak_segmentation", 0.3, ("segmentation_accuracy", "<", 50)),
            _rule("weak_blending", 0.3, ("blending_accuracy", "<", 50)),
            _rule("weak_manipulation", 0.4, ("manipulation_accuracy", "<", 40)),
            _rule("slow_phonological_processing", 0.2, ("avg_reaction_time", ">", 3000)),
        )),
        "adhd": RiskTable("adhd", (
            _rule("high_error_rate", 0.2, ("error_rate", ">", 0.4)),
            _rule("very_slow_responses", 0.2, ("avg_reaction_time", ">", 4000)),
        )),
        "asd": RiskTable("asd", (), baseline=0.1),
    },
}


def apply_weighted_thresholds(metrics: Mapping[str, float], table: RiskTable) -> RiskAssessment:
    """Evaluador genérico: baseline + Σ pesos disparados, recortado a [0, 1]."""
    fired = [rule for rule in table.rules if rule.fires(metrics)]
    raw = table.baseline + sum(rule.weight for rule in fired)
    return RiskAssessment(
        condition=table.condition,
        score=round(min(1.0, max(0.0, raw)), 4),
        baseline=table.baseline,
        fired=tuple(rule.label for rule in fired),
    )


def assess(task_type: str, metrics: Mapping[str, float]) -> Dict[str, RiskAssessment]:
    if task_type not in RISK_TABLES:
        raise ValueError(f"Tarea sin tabla de riesgo: {task_type}")
    tables = RISK_TABLES[task_type]
    return {c: apply_weighted_thresholds(metrics, tables[c]) for c in CONDITIONS if c in tables}


# ═══════════════════════════════════════════════════════════════════════
# MEDIDAS A NIVEL DE ENSAYO
# ═══════════════════════════════════════════════════════════════════════

def _mean(values: Sequence[float]) -> float:
    return sum(values) / len(values) if values else 0.0


def vigilance_decrement(reaction_times: Sequence[float]) -> float:
    """
    Enlentecimiento relativo (%) de la segunda mitad frente a la primera.
    Menos de 4 muestras → 0. Nunca negativo.
    """
    if len(reaction_times) < 4:
        return 0.0
    half = len(reaction_times) // 2
    first = _mean(reaction_times[:half])
    second = _mean(reaction_times[half:])
    if first <= 0:
        return 0.0
    return max(0.0, (second - first) / first * 100)


@dataclass(frozen=True)
class FlexibilityTrial:
    """Un ensayo de clasificación de cartas."""
    reaction_time: float
    correct: bool
    is_switch: bool = False
    perseverative: bool = False


def switch_cost(trials: Sequence[FlexibilityTrial], index: int) -> Optional[float]:
    """
    RT del ensayo de cambio `index` menos la media de los 5 ensayos
    sin cambio que lo preceden. None si no hay 5 previos.
    """
    previous = [t.reaction_time for t in trials[:index] if not t.is_switch]
    if len(previous) < SWITCH_COST_WINDOW:
        return None
    window = previous[-SWITCH_COST_WINDOW:]
    return trials[index].reaction_time - _mean(window)


def max_switch_cost(trials: Sequence[FlexibilityTrial]) -> float:
    costs = [
        cost for i, t in enumerate(trials) if t.is_switch
        for cost in [switch_cost(trials, i)] if cost is not None
    ]
    return max([0.0] + costs)


# ═══════════════════════════════════════════════════════════════════════
# ESTADÍSTICAS POR TAREA
# ═══════════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class SustainedAttentionStats:
    total_trials: int
    correct_responses: int
    false_alarms: int
    missed_targets: int
    reaction_times: Tuple[float, ...] = ()
    session_duration_ms: float = 0.0

    @property
    def avg_reaction_time(self) -> float:
        return _mean(self.reaction_times)

    @property
    def accuracy(self) -> float:
        return self.correct_responses / self.total_trials if self.total_trials else 0.0

    def attention_span(self) -> int:
        time_factor = min(1.0, self.session_duration_ms / SUSTAINED_ATTENTION_TRIAL_MS)
        return round(self.accuracy * time_factor * 100)

    def metrics(self) -> Dict[str, float]:
        total = max(self.total_trials, 1)
        return {
            "total_trials": self.total_trials,
            "correct_responses": self.correct_responses,
            "false_alarms": self.false_alarms,
            "missed_targets": self.missed_targets,
            "false_alarm_rate": self.false_alarms / total,
            "miss_rate": self.missed_targets / total,
            "response_rate": (self.correct_responses + self.false_alarms) / total,
            "avg_reaction_time": self.avg_reaction_time,
            "vigilance_decrement": vigilance_decrement(self.reaction_times),
            "attention_span": self.attention_span(),
            "inhibitory_control": 1 - self.false_alarms / total,
        }


@dataclass(frozen=True)
class CognitiveFlexibilityStats:
    total_trials: int
    correct_responses: int
    errors: int
    set_shifts: int
    perseverative_errors: int
    switch_cost: float = 0.0
    reaction_times: Tuple[float, ...] = ()

    @classmethod
    def from_trials(cls, trials: Sequence[FlexibilityTrial]) -> "CognitiveFlexibilityStats":
        correct = sum(1 for t in trials if t.correct)
        return cls(
            total_trials=len(trials),
            correct_responses=correct,
            errors=len(trials) - correct,
            set_shifts=sum(1 for t in trials if t.is_switch),
            perseverative_errors=sum(1 for t in trials if t.perseverative and not t.correct),
            switch_cost=max_switch_cost(trials),
            reaction_times=tuple(t.reaction_time for t in trials),
        )

    @property
    def avg_reaction_time(self) -> float:
        return _mean(self.reaction_times)

    @property
    def accuracy(self) -> float:
        return self.correct_responses / max(self.total_trials, 1)

    def flexibility_score(self) -> int:
        adaptability = 1 - self.perseverative_errors / max(self.errors, 1)
        efficiency = self.set_shifts * 6 / self.total_trials if self.set_shifts and self.total_trials else 0.0
        return round((self.accuracy * 0.5 + adaptability * 0.3 + efficiency * 0.2) * 100)

    def metrics(self) -> Dict[str, float]:
        total = max(self.total_trials, 1)
        return {
            "total_trials": self.total_trials,
            "correct_responses": self.correct_responses,
            "errors": self.errors,
            "set_shifts": self.set_shifts,
            "perseverative_errors": self.perseverative_errors,
            "error_rate": self.errors / total,
            "perseverative_rate": self.perseverative_errors / total,
            "switch_cost": self.switch_cost,
            "avg_reaction_time": self.avg_reaction_time,
            "flexibility_score": self.flexibility_score(),
        }


@dataclass(frozen=True)
class PhonologicalStats:
    """Precisiones por sub-habilidad en 0-100."""
    total_tasks: int
    errors: int
    rhyme_accuracy: float
    segmentation_accuracy: float
    blending_accuracy: float
    manipulation_accuracy: float
    reaction_times: Tuple[float, ...] = ()

    @property
    def avg_reaction_time(self) -> float:
        return _mean(self.reaction_times)

    @property
    def accuracy(self) -> float:
        return (self.total_tasks - self.errors) / self.total_tasks if self.total_tasks else 0.0

    def phonological_score(self) -> int:
        # Más peso a las sub-habilidades más complejas
        return round(
            self.rhyme_accuracy * 0.15
            + self.segmentation_accuracy * 0.25
            + self.blending_accuracy * 0.3
            + self.manipulation_accuracy * 0.3
        )

    def metrics(self) -> Dict[str, float]:
        return {
            "total_tasks": self.total_tasks,
            "errors": self.errors,
            "error_rate": self.errors / max(self.total_tasks, 1),
            "rhyme_accuracy": self.rhyme_accuracy,
            "segmentation_accuracy": self.segmentation_accuracy,
            "blending_accuracy": self.blending_accuracy,
            "manipulation_accuracy": self.manipulation_accuracy,
            "phonological_score": self.phonological_score(),
            "avg_reaction_time": self.avg_reaction_time,
        }


def assess_sustained_attention(stats: SustainedAttentionStats) -> Dict[str, RiskAssessment]:
    return assess(SUSTAINED_ATTENTION, stats.metrics())


def assess_cognitive_flexibility(stats: CognitiveFlexibilityStats) -> Dict[str, RiskAssessment]:
    return assess(COGNITIVE_FLEXIBILITY, stats.metrics())


def assess_phonological_processing(stats: PhonologicalStats) -> Dict[str, RiskAssessment]:
    return assess(PHONOLOGICAL_PROCESSING, stats.metrics())


_TASK_STATS = {
    SUSTAINED_ATTENTION: SustainedAttentionStats,
    COGNITIVE_FLEXIBILITY: CognitiveFlexibilityStats,
    PHONOLOGICAL_PROCESSING: PhonologicalStats,
}


# ═══════════════════════════════════════════════════════════════════════
# CAPTURA Y AGREGACIÓN
# ═══════════════════════════════════════════════════════════════════════

def capture_session(
    user_id: str,
    task_type: str,
    stats,
    created_at: datetime,
    completed_at: Optional[datetime] = None,
    session_id: Optional[str] = None,
    low_accuracy_threshold: float = 60.0,
) -> dict:
    """
    Evalúa el riesgo de una sesión recién jugada y devuelve la fila de
    métrica conductual lista para persistir. La fila tiene forma de
    sesión: el informe la lee igual que una sesión genérica.
    """
    expected = _TASK_STATS.get(task_type)
    if expected is None or not isinstance(stats, expected):
        raise ValueError(f"Estadísticas incompatibles con la tarea {task_type}")

    metrics = stats.metrics()
    risks = assess(task_type, metrics)
    # Ratio 0-1; el normalizador lo convierte a porcentaje
    accuracy = round(stats.accuracy, 4)
    performance = {
        "accuracy": accuracy,
        "reaction_time": round(stats.avg_reaction_time),
        "score": _task_score(task_type, metrics),
        "metrics": metrics,
        "risk_indicators": {c: r.score for c, r in risks.items()},
        "risk_rules_fired": {c: list(r.fired) for c, r in risks.items()},
    }
    struggles = ["low_accuracy"] if accuracy * 100 < low_accuracy_threshold else []
    logger.info(
        f"Sesión {task_type} capturada — user={user_id}, "
        f"riesgos={performance['risk_indicators']}"
    )
    return {
        "id": session_id or f"{task_type}-{uuid.uuid4().hex[:12]}",
        "user_id": user_id,
        "game_type": task_type,
        "cognitive_domain": TASK_DOMAINS[task_type],
        "created_at": created_at.isoformat(),
        "completed_at": (completed_at or created_at).isoformat(),
        "performance_data": performance,
        "struggles": struggles,
    }


def _task_score(task_type: str, metrics: Mapping[str, float]) -> int:
    if task_type == SUSTAINED_ATTENTION:
        return int(metrics["attention_span"])
    if task_type == COGNITIVE_FLEXIBILITY:
        return int(metrics["flexibility_score"])
    return int(metrics["phonological_score"])


@dataclass(frozen=True)
class RiskSummary:
    """Indicadores persistidos de un periodo, por condición."""
    condition: str
    mean: float
    peak: float
    samples: int
    game_types: Tuple[str, ...] = field(default_factory=tuple)

    def to_dict(self) -> dict:
        return {
            "condition": self.condition,
            "mean": self.mean,
            "peak": self.peak,
            "samples": self.samples,
            "gameTypes": list(self.game_types),
        }


def summarize_risk(sessions: Sequence[SessionRecord]) -> Dict[str, RiskSummary]:
    """
    Agrega los indicadores guardados en captura. No los recalcula: el
    informe solo los expone. Condiciones sin muestras no aparecen.
    """
    scores: Dict[str, List[float]] = {c: [] for c in CONDITIONS}
    sources: Dict[str, List[str]] = {c: [] for c in CONDITIONS}
    for session in sorted(sessions, key=lambda s: (s.instant, s.id)):
        indicators = session.performance_data.get("risk_indicators")
        if not isinstance(indicators, Mapping):
            continue
        for condition in CONDITIONS:
            value = indicators.get(condition)
            if isinstance(value, bool) or not isinstance(value, (int, float)) or math.isnan(value):
                continue
            scores[condition].append(min(1.0, max(0.0, float(value))))
            if session.game_type and session.game_type not in sources[condition]:
                sources[condition].append(session.game_type)

    return {
        condition: RiskSummary(
            condition=condition,
            mean=round(sum(values) / len(values), 4),
            peak=max(values),
            samples=len(values),
            game_types=tuple(sources[condition]),
        )
        for condition, values in scores.items() if values
    }
