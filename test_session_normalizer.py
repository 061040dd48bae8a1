"""
Tests del normalizador de sesiones.

Los juegos guardan la precisión y el tiempo de reacción con nombres y
unidades distintos. Cada test es un formato real de payload que el
normalizador debe resolver (o ignorar sin romper el informe).

Convención: test_[payload]_[espera_qué]
"""

import math
from datetime import datetime

import pytest

from models import SessionRecord
from session_normalizer import (
    extract_accuracy,
    extract_reaction_time,
    normalize_accuracy,
    normalize_reaction_time,
    normalize_session,
)


def _session(payload=None, **record_fields) -> SessionRecord:
    return SessionRecord(
        id="s1",
        user_id="pac_01",
        cognitive_domain="memory",
        created_at=datetime(2024, 3, 1, 10, 0),
        performance_data=payload or {},
        **record_fields,
    )


# ──────────────────────────────────────────────
# PRECISIÓN
# ──────────────────────────────────────────────

class TestAccuracy:

    def test_ratio_se_convierte_a_porcentaje(self):
        assert extract_accuracy(_session({"accuracy": 0.85})) == 85.0

    def test_porcentaje_se_mantiene(self):
        assert extract_accuracy(_session({"accuracyPercentage": 72.5})) == 72.5

    def test_valores_fuera_de_rango_se_recortan(self):
        assert extract_accuracy(_session({"accuracy": 150})) == 100.0
        assert extract_accuracy(_session({"accuracy": -5})) == 0.0

    def test_primer_candidato_gana(self):
        """El payload tiene prioridad sobre la columna de la sesión."""
        session = _session({"accuracy_percentage": 64}, accuracy_percentage=90)
        assert extract_accuracy(session) == 64.0

    def test_columna_de_sesion_como_ultimo_recurso(self):
        assert extract_accuracy(_session({}, accuracy_percentage=81.234)) == 81.23

    def test_columna_accuracy_de_la_fila(self):
        row = {
            "id": "r2", "user_id": "pac_01", "cognitive_domain": "memory",
            "created_at": "2024-03-01T10:00:00", "performance_data": "{}", "accuracy": 80,
        }
        assert extract_accuracy(SessionRecord.from_row(row)) == 80.0

    def test_columna_accuracy_va_despues_de_accuracy_percentage(self):
        assert extract_accuracy(_session({}, accuracy_percentage=64, accuracy=0.9)) == 64.0

    def test_booleanos_y_texto_no_son_precision(self):
        session = _session({"accuracy": True, "accuracy_percentage": "80", "accuracyPercent": 70})
        assert extract_accuracy(session) == 70.0

    def test_nan_se_salta(self):
        assert extract_accuracy(_session({"accuracy": math.nan, "accuracyPercentage": 55})) == 55.0

    def test_sin_campo_resoluble_devuelve_none(self):
        assert extract_accuracy(_session({"score": 300})) is None

    def test_uno_se_interpreta_como_ratio(self):
        """1 está en [0, 1]: es un 100 %, no un 1 %."""
        assert normalize_accuracy(1) == 100.0
        assert normalize_accuracy(0) == 0.0


# ──────────────────────────────────────────────
# TIEMPO DE REACCIÓN
# ──────────────────────────────────────────────

class TestReactionTime:

    def test_se_redondea_a_milisegundos(self):
        assert extract_reaction_time(_session({"reactionTime": 512.6})) == 513.0

    def test_negativo_se_recorta_a_cero(self):
        assert normalize_reaction_time(-20) == 0.0

    def test_prioridad_de_nombres(self):
        session = _session({"reaction_time_ms": 700, "reactionTime": 900})
        assert extract_reaction_time(session) == 700.0

    def test_columnas_de_sesion(self):
        assert extract_reaction_time(_session({}, avg_reaction_time_ms=430)) == 430.0
        assert extract_reaction_time(_session({}, reaction_time_ms=610)) == 610.0

    def test_sin_tiempo_devuelve_none(self):
        assert extract_reaction_time(_session({"accuracy": 80})) is None


class TestNormalizeSession:

    @pytest.mark.parametrize("payload, expected", [
        ({"accuracy": 0.5, "reaction_time": 800}, (50.0, 800.0)),
        ({"accuracyPercentage": 90}, (90.0, None)),
        ({}, (None, None)),
    ])
    def test_par_canonico(self, payload, expected):
        assert normalize_session(_session(payload)) == expected

    def test_payload_desde_fila_json(self):
        """Las filas de BD traen el payload como texto JSON."""
        row = {
            "id": "r1",
            "user_id": "pac_01",
            "cognitive_domain": "attention",
            "created_at": "2024-03-01T10:00:00Z",
            "performance_data": '{"accuracy": 0.7, "reactionTime": 640}',
            "struggles": "[]",
        }
        assert normalize_session(SessionRecord.from_row(row)) == (70.0, 640.0)
