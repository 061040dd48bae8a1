"""
DATOS DE DEMO — Paciente ficticio con tres semanas de juego
============================================================
Siembra una base de datos con un paciente de ejemplo para poder
enseñar un informe clínico sin telemetría real:

  - sesiones genéricas de memoria, atención y lógica (algunas sin
    terminar, algunas con la precisión como ratio 0-1)
  - sesiones capturadas de las tres tareas con heurísticas de riesgo
  - dos cribados de TDAH (inicio y final del periodo)
  - trails de progreso y perfil de neurodiversidad

La semilla es fija: dos siembras con la misma semilla producen las
mismas filas, y por tanto el mismo informe.

Uso:
  python demo_data.py                 → siembra y genera un informe (narrativa mock)
"""

import json
import logging
import random
from datetime import datetime, timedelta, timezone
from typing import List, Optional

from auth import get_demo_sessions
from config import get_config
from database import Database
from narrative_client import MockNarrativeClient
from report_engine import ReportEngine, ReportRequest
from risk_heuristics import (
    COGNITIVE_FLEXIBILITY, PHONOLOGICAL_PROCESSING, SUSTAINED_ATTENTION,
    CognitiveFlexibilityStats, FlexibilityTrial, PhonologicalStats,
    SustainedAttentionStats, capture_session,
)

logger = logging.getLogger(__name__)

DEMO_PATIENT = "pac_01"
DEMO_START = datetime(2024, 3, 4, tzinfo=timezone.utc)
DEMO_DAYS = 21

# Dificultades tal como las emiten los juegos (pt / es / en)
STRUGGLE_TAGS = [
    "resposta_impulsiva",
    "falta de atenção",
    "distraccion_visual",
    "rushed_answer",
    "secuencia_incorrecta",
    "confusão de regras",
]

GENERIC_GAMES = {
    "memory": "memory_match",
    "attention": "focus_tracker",
    "logic": "pattern_builder",
}


def _generic_session(rng: random.Random, day: int, domain: str, progress: float) -> dict:
    created = DEMO_START + timedelta(days=day, hours=rng.choice([9, 10, 16, 17, 18]),
                                     minutes=rng.randint(0, 59))
    accuracy = min(98.0, 55 + progress * 30 + rng.uniform(-8, 8))
    finished = rng.random() > 0.1
    payload = {"score": int(accuracy * 3), "level": 1 + int(progress * 4)}
    # Un tercio de los juegos antiguos guarda la precisión como ratio
    if rng.random() < 0.33:
        payload["accuracy"] = round(accuracy / 100, 3)
    else:
        payload["accuracyPercentage"] = round(accuracy, 1)
    payload["reactionTime"] = int(rng.gauss(900 - progress * 200, 80))

    struggles = []
    if accuracy < 65:
        struggles.append(rng.choice(STRUGGLE_TAGS))
    return {
        "user_id": DEMO_PATIENT,
        "cognitive_domain": domain,
        "game_type": GENERIC_GAMES[domain],
        "created_at": created.isoformat(),
        "completed_at": (created + timedelta(minutes=rng.randint(4, 12))).isoformat() if finished else None,
        "performance_data": payload,
        "struggles": struggles,
    }


def _sustained_attention(rng: random.Random, fatigue: float) -> SustainedAttentionStats:
    total = 40
    false_alarms = rng.randint(2, 9)
    missed = rng.randint(1, 8)
    base = rng.uniform(450, 650)
    reaction_times = tuple(
        round(base * (1 + fatigue * i / total) + rng.uniform(-40, 40), 1) for i in range(total)
    )
    return SustainedAttentionStats(
        total_trials=total,
        correct_responses=total - false_alarms - missed,
        false_alarms=false_alarms,
        missed_targets=missed,
        reaction_times=reaction_times,
        session_duration_ms=rng.uniform(45000, 75000),
    )


def _cognitive_flexibility(rng: random.Random) -> CognitiveFlexibilityStats:
    trials: List[FlexibilityTrial] = []
    for i in range(36):
        is_switch = i > 0 and i % 8 == 0
        correct = rng.random() > (0.35 if is_switch else 0.15)
        trials.append(FlexibilityTrial(
            reaction_time=round(rng.uniform(700, 1100) + (250 if is_switch else 0), 1),
            correct=correct,
            is_switch=is_switch,
            perseverative=not correct and rng.random() < 0.5,
        ))
    return CognitiveFlexibilityStats.from_trials(trials)


def _phonological(rng: random.Random) -> PhonologicalStats:
    total = 20
    return PhonologicalStats(
        total_tasks=total,
        errors=rng.randint(2, 9),
        rhyme_accuracy=rng.uniform(60, 95),
        segmentation_accuracy=rng.uniform(45, 85),
        blending_accuracy=rng.uniform(45, 85),
        manipulation_accuracy=rng.uniform(35, 75),
        reaction_times=tuple(round(rng.uniform(1500, 3500), 1) for _ in range(total)),
    )


def seed_demo_database(db: Database, seed: int = 42) -> int:
    """Siembra el paciente de demo. Devuelve el número de sesiones insertadas."""
    rng = random.Random(seed)
    for session in get_demo_sessions().values():
        db.ensure_user(session.user_id, session.role, session.display_name)

    inserted = 0
    for day in range(DEMO_DAYS):
        progress = day / (DEMO_DAYS - 1)
        for domain in GENERIC_GAMES:
            if rng.random() < 0.7:
                db.add_session(_generic_session(rng, day, domain, progress))
                inserted += 1

        # Tareas con heurística de riesgo, cada tres días
        if day % 3 == 0:
            created = DEMO_START + timedelta(days=day, hours=11)
            captured = [
                (SUSTAINED_ATTENTION, _sustained_attention(rng, fatigue=0.3 - progress * 0.2)),
                (COGNITIVE_FLEXIBILITY, _cognitive_flexibility(rng)),
                (PHONOLOGICAL_PROCESSING, _phonological(rng)),
            ]
            for offset, (task, stats) in enumerate(captured):
                started = created + timedelta(minutes=15 * offset)
                row = capture_session(
                    DEMO_PATIENT, task, stats,
                    created_at=started,
                    completed_at=started + timedelta(minutes=5),
                    session_id=f"demo-{task}-{day:02d}",
                )
                db.save_behavioral_metric(row)
                inserted += 1

    # Cribados al inicio y al final del periodo
    for day, score in ((0, rng.uniform(55, 70)), (DEMO_DAYS - 1, rng.uniform(40, 55))):
        db.add_screening({
            "id": f"demo-screening-tdah-{day:02d}",
            "user_id": DEMO_PATIENT,
            "type": "tdah",
            "score": round(score, 1),
            "risk_level": "moderate" if score >= 50 else "low",
            "created_at": (DEMO_START + timedelta(days=day, hours=9)).isoformat(),
        })
        inserted += 1

    db.upsert_trail(DEMO_PATIENT, "memory", initial_level=1, current_level=4, total_xp=1850)
    db.upsert_trail(DEMO_PATIENT, "attention", initial_level=2, current_level=3, total_xp=1200)
    db.set_profile(DEMO_PATIENT, ["adhd"])
    db.log_event("demo_seeded", "system", {"subject_id": DEMO_PATIENT, "sessions": inserted, "seed": seed})
    logger.info(f"Demo sembrada: {inserted} sesiones para {DEMO_PATIENT}")
    return inserted


def run_demo(db_path: Optional[str] = None) -> dict:
    """Siembra y genera el informe del periodo completo con narrativa simulada."""
    db = Database(db_path or get_config().system.database_path)
    seed_demo_database(db)
    engine = ReportEngine(db, MockNarrativeClient())
    patient = get_demo_sessions()["patient"]
    end = DEMO_START + timedelta(days=DEMO_DAYS - 1)
    result = engine.generate(patient, ReportRequest(
        subject_id=DEMO_PATIENT,
        start_date=DEMO_START.date().isoformat(),
        end_date=end.date().isoformat(),
    ))
    return result.to_dict()


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO, format=get_config().system.log_format)
    print(json.dumps(run_demo(), indent=2, ensure_ascii=False))
