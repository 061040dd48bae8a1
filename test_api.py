"""
TEST DE LA API REST — FastAPI TestClient
=========================================
Verifica el contrato HTTP: códigos por tipo de error, sobre de
respuesta del informe y permisos por rol. La base de datos es temporal
y la narrativa es el cliente simulado.

Ejecutar: pytest test_api.py -v
"""

import os
import tempfile
from typing import Generator

import pytest
from fastapi.testclient import TestClient

import api
from auth import get_demo_sessions
from config import AppConfig
from database import Database
from narrative_client import MockNarrativeClient
from report_engine import ReportEngine

ATTENTION_GAME = {
    "game_type": "sustained_attention",
    "created_at": "2024-03-05T11:00:00Z",
    "stats": {
        "total_trials": 20,
        "correct_responses": 10,
        "false_alarms": 10,
        "missed_targets": 0,
        "reaction_times": [400, 400, 400, 400, 500, 500, 500, 500],
    },
}


@pytest.fixture
def temp_db() -> Generator[str, None, None]:
    fd, path = tempfile.mkstemp(suffix='.db')
    os.close(fd)
    yield path
    for suffix in ("", "-wal", "-shm"):
        if os.path.exists(path + suffix):
            os.unlink(path + suffix)


@pytest.fixture
def database(temp_db):
    db = Database(temp_db)
    for day, accuracy in [(1, 62), (4, 70), (9, 81)]:
        db.add_session({
            "user_id": "pac_01",
            "cognitive_domain": "memory",
            "created_at": f"2024-03-{day:02d}T17:30:00",
            "completed_at": f"2024-03-{day:02d}T17:40:00",
            "performance_data": {"accuracyPercentage": accuracy, "reactionTime": 820},
        })
    return db


@pytest.fixture
def client(database, monkeypatch):
    mock = MockNarrativeClient()
    monkeypatch.setattr(api, "_narrative", mock)
    monkeypatch.setattr(api, "_narrative_loaded", True)
    api.app.dependency_overrides[api.get_database] = lambda: database
    api.app.dependency_overrides[api.get_report_engine] = lambda: ReportEngine(database, mock, AppConfig())
    yield TestClient(api.app)
    api.app.dependency_overrides.clear()


@pytest.fixture
def headers():
    return {role: {"Authorization": f"Bearer {s.token}"} for role, s in get_demo_sessions().items()}


def _generate(client, headers, role="patient", **body):
    payload = {"user_id": "pac_01", "start_date": "2024-03-01", "end_date": "2024-03-31"}
    payload.update(body)
    return client.post("/api/reports/clinical", json=payload, headers=headers[role])


class TestPublicEndpoints:

    def test_health(self, client):
        response = client.get("/api/health")
        assert response.status_code == 200
        assert response.json()["schema_version"] == 4
        assert response.json()["narrative_model"] == "mock-demo"

    def test_login(self, client, database):
        response = client.post("/api/auth/login", json={"user_id": "ter_02", "role": "therapist"})
        assert response.status_code == 200
        assert response.json()["role"] == "therapist"
        assert database.get_user("ter_02")["role"] == "therapist"

    def test_login_rol_invalido(self, client):
        response = client.post("/api/auth/login", json={"user_id": "x", "role": "researcher"})
        assert response.status_code == 422


class TestClinicalReports:

    def test_sin_token(self, client):
        response = client.post("/api/reports/clinical", json={
            "user_id": "pac_01", "start_date": "2024-03-01", "end_date": "2024-03-31",
        })
        assert response.status_code == 401

    def test_paciente_genera_su_informe(self, client, headers):
        response = _generate(client, headers)
        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "success"
        assert body["data"]["general"]["totalSessions"] == 3
        assert body["data"]["behavioral"]["bestPerformanceTime"] == "17:00 - 18:00"
        assert "warning" not in body

    def test_sin_datos_es_404(self, client, headers):
        response = _generate(client, headers, start_date="2023-01-01", end_date="2023-01-31")
        assert response.status_code == 404
        body = response.json()
        assert body["status"] == "error"
        assert body["code"] == "NO_DATA"
        assert "suggestion" in body

    def test_sujeto_ajeno_es_403(self, client, headers):
        response = _generate(client, headers, user_id="pac_02")
        assert response.status_code == 403
        assert response.json()["code"] == "REPORT_FORBIDDEN"

    def test_fechas_invalidas_es_400(self, client, headers):
        response = _generate(client, headers, start_date="2024-03-31", end_date="2024-03-01")
        assert response.status_code == 400
        assert response.json()["code"] == "INVALID_REQUEST"

    def test_fecha_con_basura_es_400(self, client, headers):
        response = _generate(client, headers, start_date="2024-03-01xx")
        assert response.status_code == 400
        assert response.json()["code"] == "INVALID_REQUEST"

    def test_narrativa_caida_devuelve_parcial(self, client, headers, database):
        api.app.dependency_overrides[api.get_report_engine] = lambda: ReportEngine(database, None, AppConfig())
        body = _generate(client, headers).json()
        assert body["status"] == "partial"
        assert body["warning"] == "AI analysis unavailable"
        assert "aiAnalysis" not in body["data"]

    def test_informe_queda_auditado(self, client, headers, database):
        _generate(client, headers)
        events = database.get_events("clinical_report_generated")
        assert len(events) == 1


class TestStoredReports:

    def test_terapeuta_lee_y_exporta(self, client, headers):
        report_id = _generate(client, headers).json()["reportId"]

        response = client.get(f"/api/reports/{report_id}", headers=headers["therapist"])
        assert response.status_code == 200
        assert response.json()["status"] == "success"
        assert response.json()["reviewedByProfessional"] is False

        export = client.get(f"/api/reports/{report_id}/export/csv", headers=headers["therapist"])
        assert export.status_code == 200
        assert export.headers["content-type"].startswith("text/csv")
        assert export.text.startswith("section,")

    def test_paciente_no_exporta(self, client, headers):
        report_id = _generate(client, headers).json()["reportId"]
        response = client.get(f"/api/reports/{report_id}/export/csv", headers=headers["patient"])
        assert response.status_code == 403

    def test_informe_inexistente(self, client, headers):
        response = client.get("/api/reports/no-existe", headers=headers["therapist"])
        assert response.status_code == 404


class TestGameSessions:

    def test_captura_con_indicadores_de_riesgo(self, client, headers, database):
        response = client.post("/api/games/sessions", json=ATTENTION_GAME, headers=headers["patient"])
        assert response.status_code == 200
        body = response.json()
        assert body["cognitive_domain"] == "attention"
        assert body["risk_indicators"]["adhd"] == 0.7
        assert "high_false_alarm_rate" in body["risk_rules_fired"]["adhd"]

        sessions = database.fetch_sessions("pac_01", "2024-03-05", "2024-03-05")
        assert [s.game_type for s in sessions] == ["sustained_attention"]

    def test_flexibilidad_desde_ensayos(self, client, headers):
        trials = [{"reaction_time": 500, "correct": True}] * 5 + [
            {"reaction_time": 800, "correct": False, "is_switch": True, "perseverative": True},
        ]
        response = client.post("/api/games/sessions", json={
            "game_type": "cognitive_flexibility", "trials": trials,
        }, headers=headers["patient"])
        assert response.status_code == 200
        assert response.json()["cognitive_domain"] == "executive_function"

    def test_terapeuta_no_registra_sesiones(self, client, headers):
        response = client.post("/api/games/sessions", json=ATTENTION_GAME, headers=headers["therapist"])
        assert response.status_code == 403

    def test_estadisticas_incompletas(self, client, headers):
        response = client.post("/api/games/sessions", json={
            "game_type": "phonological_processing", "stats": {"total_tasks": 10},
        }, headers=headers["patient"])
        assert response.status_code == 400

    def test_juego_sin_heuristica(self, client, headers):
        response = client.post("/api/games/sessions", json={"game_type": "memory_match"}, headers=headers["patient"])
        assert response.status_code == 422

    @pytest.mark.parametrize("field, value", [
        ("total_trials", "cuarenta"),
        ("false_alarms", -3),
        ("reaction_times", [400, "lento"]),
        ("reaction_times", [400, -1]),
    ])
    def test_estadisticas_con_tipos_invalidos(self, client, headers, field, value):
        stats = dict(ATTENTION_GAME["stats"], **{field: value})
        response = client.post("/api/games/sessions", json=dict(ATTENTION_GAME, stats=stats),
                               headers=headers["patient"])
        assert response.status_code == 400
        assert response.json()["detail"]["errors"]

    def test_contador_numerico_en_texto_se_acepta(self, client, headers):
        stats = dict(ATTENTION_GAME["stats"], total_trials="20")
        response = client.post("/api/games/sessions", json=dict(ATTENTION_GAME, stats=stats),
                               headers=headers["patient"])
        assert response.status_code == 200

    def test_ensayo_con_tiempo_no_numerico(self, client, headers):
        response = client.post("/api/games/sessions", json={
            "game_type": "cognitive_flexibility",
            "trials": [{"reaction_time": "lento", "correct": True}],
        }, headers=headers["patient"])
        assert response.status_code == 422


class TestErrorEnvelope:

    def test_error_inesperado_con_el_mismo_sobre(self, client, headers):
        class BrokenEngine:
            def generate(self, caller, request):
                raise RuntimeError("fallo inesperado")

        api.app.dependency_overrides[api.get_report_engine] = lambda: BrokenEngine()
        response = _generate(client, headers)
        assert response.status_code == 500
        assert response.json() == {
            "status": "error", "code": "INTERNAL_ERROR", "message": "Error interno del servidor.",
        }
