"""
Tests del agregador por dominio cognitivo.

Convención: test_[situación]_[espera_qué]
"""

import random
from datetime import datetime, timedelta

from domain_scores import (
    GeneralMetrics,
    calculate_metrics,
    derive_trail_metadata,
    improvement_percent,
    order_sessions,
)
from models import SessionRecord, TrailMetadata

BASE = datetime(2024, 3, 1, 9, 0)


def _session(i, accuracy, domain="memory", minutes=10, completed=True, **payload) -> SessionRecord:
    created = BASE + timedelta(hours=i)
    data = dict(payload)
    if accuracy is not None:
        data["accuracyPercentage"] = accuracy
    return SessionRecord(
        id=f"s{i:03d}",
        user_id="pac_01",
        cognitive_domain=domain,
        created_at=created,
        completed_at=created + timedelta(minutes=minutes) if completed else None,
        performance_data=data,
    )


class TestGeneralMetrics:

    def test_sin_sesiones_todo_a_cero(self):
        metrics = calculate_metrics([])
        assert metrics == GeneralMetrics()
        assert metrics.to_dict()["cognitiveScores"] == {}

    def test_totales_del_periodo(self):
        sessions = [
            _session(0, 60, reactionTime=500),
            _session(1, 80, reactionTime=701),
            _session(2, 70),
            _session(3, None, completed=False),
        ]
        metrics = calculate_metrics(sessions)
        assert metrics.total_sessions == 4
        assert metrics.total_duration_minutes == 30
        assert metrics.avg_accuracy == 70.0
        assert metrics.avg_reaction_time == 600
        assert metrics.completion_rate == 75.0

    def test_sin_precision_resoluble_media_cero(self):
        metrics = calculate_metrics([_session(0, None), _session(1, None)])
        assert metrics.avg_accuracy == 0.0
        assert metrics.cognitive_scores["memory"].avg_accuracy == 0.0

    def test_orden_de_entrada_no_cambia_el_resultado(self):
        sessions = [_session(i, 50 + i * 3, domain=["memory", "logic"][i % 2]) for i in range(12)]
        shuffled = list(sessions)
        random.Random(7).shuffle(shuffled)
        assert calculate_metrics(shuffled) == calculate_metrics(sessions)


class TestDomainScores:

    def test_trail_del_dominio(self):
        trails = {"memory": TrailMetadata(initial_level=2, current_level=5, total_xp=900)}
        metrics = calculate_metrics([_session(0, 80), _session(1, 90, domain="logic")], trails)
        memory = metrics.cognitive_scores["memory"]
        assert (memory.initial_level, memory.current_level, memory.total_xp) == (2, 5, 900)
        logic = metrics.cognitive_scores["logic"]
        assert (logic.initial_level, logic.current_level, logic.total_xp) == (1, 1, 0)

    def test_sesiones_por_dominio(self):
        sessions = [_session(i, 70, domain="memory" if i < 3 else "attention") for i in range(5)]
        scores = calculate_metrics(sessions).cognitive_scores
        assert scores["memory"].sessions_completed == 3
        assert scores["attention"].sessions_completed == 2

    def test_to_dict_ordena_los_dominios(self):
        sessions = [_session(0, 70, domain="memory"), _session(1, 70, domain="attention")]
        data = calculate_metrics(sessions).to_dict()
        assert list(data["cognitiveScores"]) == ["attention", "memory"]
        assert data["cognitiveScores"]["memory"]["totalXP"] == 0


class TestImprovement:

    def test_primer_y_ultimo_quintil(self):
        """10 sesiones → tramos de 2: 50 → 75 es +50 %."""
        accuracies = [50, 50, 60, 60, 60, 60, 60, 60, 75, 75]
        ordered = [_session(i, a) for i, a in enumerate(accuracies)]
        assert improvement_percent(ordered) == 50.0

    def test_tramo_minimo_de_una_sesion(self):
        ordered = [_session(0, 40), _session(1, 99), _session(2, 60)]
        assert improvement_percent(ordered) == 50.0

    def test_empeoramiento_es_negativo(self):
        ordered = [_session(0, 80), _session(1, 60)]
        assert improvement_percent(ordered) == -25.0

    def test_inicial_cero_no_divide(self):
        ordered = [_session(0, 0), _session(1, 80)]
        assert improvement_percent(ordered) == 0.0

    def test_tramo_sin_precision_es_cero(self):
        ordered = [_session(0, None), _session(1, 80)]
        assert improvement_percent(ordered) == 0.0

    def test_sesion_unica_es_cero(self):
        assert improvement_percent([_session(0, 80)]) == 0.0

    def test_orden_cronologico_con_empate_por_id(self):
        a = SessionRecord(id="b", user_id="u", cognitive_domain="m", created_at=BASE)
        b = SessionRecord(id="a", user_id="u", cognitive_domain="m", created_at=BASE)
        assert [s.id for s in order_sessions([a, b])] == ["a", "b"]


class TestDerivedTrails:

    def test_nivel_por_precision_media(self):
        trails = derive_trail_metadata([_session(0, 70, score=120), _session(1, 90, score=80)])
        assert trails["memory"] == TrailMetadata(initial_level=1, current_level=5, total_xp=200)

    def test_sesion_sin_precision_cuenta_como_cero(self):
        trails = derive_trail_metadata([_session(0, 100), _session(1, None)])
        assert trails["memory"].current_level == 4

    def test_score_no_numerico_no_suma_xp(self):
        trails = derive_trail_metadata([_session(0, 50, score="muchos"), _session(1, 50, score=True)])
        assert trails["memory"].total_xp == 0
