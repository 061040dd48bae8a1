"""
Tests del cliente de narrativa.

El proveedor externo puede tardar, fallar o devolver cualquier cosa.
Lo que se verifica es que el motor nunca se rompe por ello: o hay
análisis válido, o hay (None, warning).
"""

import time
from datetime import datetime

import pytest

from behavioral_patterns import analyze_behavioral_patterns
from config import NarrativeConfig, NarrativeProvider
from domain_scores import calculate_metrics
from errors import NarrativeUnavailable
from models import NeurodiversityProfile, SessionRecord
from narrative_client import (
    NARRATIVE_WARNING,
    MockNarrativeClient,
    NarrativeRequest,
    build_prompt,
    coerce_narrative,
    get_narrative_client,
    request_narrative,
)
from temporal_trends import analyze_temporal_evolution


@pytest.fixture
def narrative_request():
    sessions = [
        SessionRecord(
            id=f"s{i}", user_id="pac_01", cognitive_domain="memory",
            created_at=datetime(2024, 3, 1 + i, 10),
            completed_at=datetime(2024, 3, 1 + i, 10, 8),
            performance_data={"accuracyPercentage": 60 + i * 5, "reactionTime": 700},
            struggles=("distraccion",) if i == 0 else (),
        )
        for i in range(4)
    ]
    return NarrativeRequest(
        period_start="2024-03-01",
        period_end="2024-03-07",
        profile=NeurodiversityProfile("pac_01", ("adhd",)),
        metrics=calculate_metrics(sessions),
        temporal=tuple(analyze_temporal_evolution(sessions)),
        behavioral=analyze_behavioral_patterns(sessions),
    )


class _FailingClient:
    model_name = "failing"

    def generate(self, system_prompt, user_prompt):
        raise RuntimeError("503 Service Unavailable")


class _FixedClient:
    model_name = "fixed"

    def __init__(self, text):
        self.text = text

    def generate(self, system_prompt, user_prompt):
        return self.text


class TestPrompt:

    def test_prompt_incluye_metricas_y_perfil(self, narrative_request):
        system, user = build_prompt(narrative_request)
        assert "Nunca diagnostiques" in system
        assert "Condiciones detectadas: adhd" in user
        assert "Sesiones totales: 4" in user
        assert "2024-03-01 a 2024-03-07" in user
        assert "distraccion" in user

    def test_sin_perfil(self, narrative_request):
        from dataclasses import replace
        _, user = build_prompt(replace(narrative_request, profile=None))
        assert "Perfil de neurodiversidad no disponible" in user


class TestCoercion:

    def test_json_con_bloque_de_codigo(self):
        raw = '```json\n{"executiveSummary": " Resumen ", "strengths": ["constancia", 3, null]}\n```'
        analysis = coerce_narrative(raw)
        assert analysis.executive_summary == "Resumen"
        assert analysis.strengths == ("constancia", "3")
        assert analysis.recommendations == ()

    def test_texto_libre_pasa_a_resumen(self):
        analysis = coerce_narrative("El paciente muestra un progreso estable.")
        assert analysis.executive_summary == "El paciente muestra un progreso estable."
        assert analysis.to_dict()["domainAnalysis"] == {}

    def test_campos_con_tipo_inesperado_quedan_vacios(self):
        analysis = coerce_narrative({"executiveSummary": 42, "domainAnalysis": ["memoria"], "strengths": "mucho"})
        assert analysis.executive_summary == ""
        assert analysis.domain_analysis == {}
        assert analysis.strengths == ()

    @pytest.mark.parametrize("raw", ["", "   ", "```json\n```", "[1, 2]", None])
    def test_respuesta_inservible(self, raw):
        with pytest.raises(NarrativeUnavailable):
            coerce_narrative(raw)


class TestRequestNarrative:

    def test_mock_devuelve_analisis(self, narrative_request):
        analysis, warning = request_narrative(MockNarrativeClient(), narrative_request, timeout_seconds=5)
        assert warning is None
        assert "precisión media fue 67.5%" in analysis.executive_summary

    def test_sin_cliente_degrada(self, narrative_request):
        assert request_narrative(None, narrative_request, timeout_seconds=5) == (None, NARRATIVE_WARNING)

    def test_timeout_degrada_sin_esperar_al_proveedor(self, narrative_request):
        slow = MockNarrativeClient(delay_seconds=1.0)
        start = time.time()
        analysis, warning = request_narrative(slow, narrative_request, timeout_seconds=0.05)
        assert analysis is None
        assert warning == NARRATIVE_WARNING
        assert time.time() - start < 0.9

    def test_error_del_proveedor_degrada(self, narrative_request):
        assert request_narrative(_FailingClient(), narrative_request, 5) == (None, NARRATIVE_WARNING)

    def test_respuesta_vacia_degrada(self, narrative_request):
        assert request_narrative(_FixedClient(""), narrative_request, 5) == (None, NARRATIVE_WARNING)


class TestFactory:

    def test_sin_proveedor_no_hay_cliente(self):
        assert get_narrative_client(NarrativeConfig()) is None

    def test_mock_explicito(self):
        client = get_narrative_client(NarrativeConfig(provider=NarrativeProvider.MOCK, model_name="mock-demo"))
        assert isinstance(client, MockNarrativeClient)

    def test_proveedor_desde_entorno(self, monkeypatch):
        monkeypatch.delenv("ANTHROPIC_API_KEY", raising=False)
        monkeypatch.delenv("OPENAI_API_KEY", raising=False)
        monkeypatch.setenv("NARRATIVE_PROVIDER", "mock")
        monkeypatch.setenv("NARRATIVE_TIMEOUT_SECONDS", "2.5")
        config = NarrativeConfig.from_env()
        assert config.provider == NarrativeProvider.MOCK
        assert config.timeout_seconds == 2.5

    def test_sin_keys_ni_proveedor(self, monkeypatch):
        for key in ("NARRATIVE_PROVIDER", "ANTHROPIC_API_KEY", "OPENAI_API_KEY", "NARRATIVE_MODEL"):
            monkeypatch.delenv(key, raising=False)
        assert NarrativeConfig.from_env().provider == NarrativeProvider.NONE
