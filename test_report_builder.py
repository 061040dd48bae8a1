"""
Tests del constructor de informes.
"""

import json
from datetime import datetime

import pytest

from behavioral_patterns import analyze_behavioral_patterns
from domain_scores import calculate_metrics
from models import NeurodiversityProfile, SessionRecord
from narrative_client import NarrativeAnalysis
from report_builder import (
    STANDARD_DOMAINS,
    build_report,
    map_standard_domain,
    total_days,
)
from temporal_trends import analyze_temporal_evolution


def _sessions():
    rows = [("memory", 70), ("memory", 80), ("atenção", 90), ("raciocínio lógico", 60), ("motor_skills", 50)]
    return [
        SessionRecord(
            id=f"s{i}", user_id="pac_01", cognitive_domain=domain,
            created_at=datetime(2024, 3, 1 + i, 10),
            completed_at=datetime(2024, 3, 1 + i, 10, 10),
            performance_data={"accuracyPercentage": accuracy},
        )
        for i, (domain, accuracy) in enumerate(rows)
    ]


def _build(**overrides):
    sessions = _sessions()
    kwargs = dict(
        user_id="pac_01",
        period_start="2024-03-01",
        period_end="2024-03-31",
        metrics=calculate_metrics(sessions),
        temporal_evolution=analyze_temporal_evolution(sessions),
        behavioral=analyze_behavioral_patterns(sessions),
    )
    kwargs.update(overrides)
    return build_report(**kwargs)


class TestPeriod:

    def test_dias_del_periodo(self):
        assert total_days("2024-03-01", "2024-03-31") == 30

    def test_dia_parcial_redondea_hacia_arriba(self):
        assert total_days("2024-03-01T00:00:00", "2024-03-02T06:00:00") == 2

    def test_mismo_dia(self):
        assert total_days("2024-03-01", "2024-03-01") == 0


class TestStandardDomains:

    @pytest.mark.parametrize("domain, expected", [
        ("memory", "memory"),
        ("memória_visual", "memory"),
        ("atención sostenida", "attention"),
        ("phonological_processing", "language"),
        ("executive_function", "logic"),
        ("regulação da emoção", "emotion"),
        ("coordenação motora", "coordination"),
        ("tdah_training", "attention"),
        ("puzzle", "logic"),
    ])
    def test_mapeo_por_palabra_clave(self, domain, expected):
        assert map_standard_domain(domain) == expected

    @pytest.mark.parametrize("domain, expected", [
        ("screening_tea", "emotion"),
        ("screening_asd", "emotion"),
        ("screening_tdah", "attention"),
        ("screening_dislexia", "language"),
        ("screening_ansiedad", "logic"),
    ])
    def test_cribados_por_tipo(self, domain, expected):
        assert map_standard_domain(domain) == expected

    def test_maximo_por_dominio_estandar(self):
        report = _build()
        cognitive = report.to_dict()["cognitive"]
        assert list(cognitive) == list(STANDARD_DOMAINS)
        assert cognitive["memory"] == 75.0
        assert cognitive["attention"] == 90.0
        assert cognitive["logic"] == 60.0
        assert cognitive["coordination"] == 50.0
        assert cognitive["emotion"] == 0.0


class TestClinicalReport:

    def test_secciones_del_informe(self):
        data = _build().to_dict()
        assert data["demographic"] == {
            "userId": "pac_01",
            "period": {"start": "2024-03-01", "end": "2024-03-31"},
            "totalDays": 30,
        }
        assert data["general"]["totalSessions"] == 5
        assert data["reportType"] == "comprehensive"
        assert len(data["temporalEvolution"]) == 5
        assert data["riskIndicators"] == {}
        assert "aiAnalysis" not in data
        assert "neurodiversityProfile" not in data

    def test_perfil_y_narrativa_opcionales(self):
        analysis = NarrativeAnalysis(executive_summary="Progreso estable", strengths=("constancia",))
        data = _build(
            profile=NeurodiversityProfile("pac_01", ("adhd", "dyslexia")),
            ai_analysis=analysis,
        ).to_dict()
        assert data["neurodiversityProfile"] == ["adhd", "dyslexia"]
        assert data["aiAnalysis"]["executiveSummary"] == "Progreso estable"
        assert data["aiAnalysis"]["strengths"] == ["constancia"]

    def test_serializacion_determinista(self):
        """Mismas entradas → mismo JSON byte a byte."""
        first = json.dumps(_build().to_dict(), sort_keys=True)
        second = json.dumps(_build().to_dict(), sort_keys=True)
        assert first == second
