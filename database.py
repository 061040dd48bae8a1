"""
NeuroPlay Reports — Capa de Persistencia
=========================================
SQLite para prototipo, migrable a PostgreSQL para producción.
Almacena: usuarios, trails de dominio, sesiones de juego, cribados, métricas
conductuales con indicadores de riesgo, perfiles de neurodiversidad,
informes clínicos y eventos del sistema.

Contrato con el motor de informes (ReportStore):
  fetch_sessions(subject, start, end) → [SessionRecord]   (tres tablas)
  fetch_trails(subject)               → {dominio: TrailMetadata}
  fetch_profile(subject)              → NeurodiversityProfile | None
  save_report(...)                    → report_id  (un único INSERT)

Cada lectura abre su propia conexión: el motor puede lanzarlas en
paralelo desde hilos distintos.

MIGRATIONS:
  Cada migración tiene un número de versión y un SQL de upgrade.
  La tabla _migrations registra qué migraciones se han aplicado.
"""

import json
import logging
import sqlite3
import uuid
from contextlib import contextmanager
from datetime import datetime
from typing import Dict, List, Optional, Sequence

from errors import PersistenceFault
from models import NeurodiversityProfile, SessionRecord, TrailMetadata

logger = logging.getLogger(__name__)


# ═══════════════════════════════════════════════════════════════════════
# MIGRATIONS
# ═══════════════════════════════════════════════════════════════════════

MIGRATIONS = [
    # V1: Schema inicial
    (1, """
        CREATE TABLE IF NOT EXISTS users (
            id TEXT PRIMARY KEY,
            role TEXT NOT NULL CHECK(role IN ('patient','therapist','admin')),
            display_name TEXT,
            created_at TEXT DEFAULT (datetime('now')),
            is_active INTEGER DEFAULT 1
        );

        -- Progreso por dominio cognitivo
        CREATE TABLE IF NOT EXISTS cognitive_trails (
            user_id TEXT NOT NULL,
            cognitive_domain TEXT NOT NULL,
            initial_level INTEGER DEFAULT 1,
            current_level INTEGER DEFAULT 1,
            total_xp INTEGER DEFAULT 0,
            updated_at TEXT DEFAULT (datetime('now')),
            PRIMARY KEY (user_id, cognitive_domain)
        );

        -- Sesiones genéricas de juego
        CREATE TABLE IF NOT EXISTS learning_sessions (
            id TEXT PRIMARY KEY,
            user_id TEXT NOT NULL,
            cognitive_domain TEXT NOT NULL,
            game_type TEXT DEFAULT '',
            created_at TEXT NOT NULL,
            completed_at TEXT,
            performance_data TEXT DEFAULT '{}',
            struggles TEXT DEFAULT '[]',
            accuracy_percentage REAL,
            avg_reaction_time_ms REAL
        );

        CREATE INDEX IF NOT EXISTS idx_sessions_user_created
            ON learning_sessions(user_id, created_at);

        -- Perfil de neurodiversidad (etiquetas, no diagnósticos)
        CREATE TABLE IF NOT EXISTS neurodiversity_profiles (
            user_id TEXT PRIMARY KEY,
            detected_conditions TEXT DEFAULT '[]',
            updated_at TEXT DEFAULT (datetime('now'))
        );

        -- Eventos del sistema (auditoría)
        CREATE TABLE IF NOT EXISTS system_events (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            timestamp TEXT DEFAULT (datetime('now')),
            event_type TEXT NOT NULL,
            actor_id TEXT,
            payload TEXT DEFAULT '{}',
            severity TEXT DEFAULT 'info'
        );

        CREATE INDEX IF NOT EXISTS idx_events_type
            ON system_events(event_type, timestamp);
    """),

    # V2: Métricas conductuales por tarea (capturadas con su riesgo)
    (2, """
        CREATE TABLE IF NOT EXISTS behavioral_metrics (
            id TEXT PRIMARY KEY,
            user_id TEXT NOT NULL,
            game_type TEXT NOT NULL,
            cognitive_domain TEXT NOT NULL,
            created_at TEXT NOT NULL,
            completed_at TEXT,
            performance_data TEXT DEFAULT '{}',
            struggles TEXT DEFAULT '[]'
        );

        CREATE INDEX IF NOT EXISTS idx_metrics_user_created
            ON behavioral_metrics(user_id, created_at);
    """),

    # V3: Informes clínicos
    (3, """
        CREATE TABLE IF NOT EXISTS clinical_reports (
            id TEXT PRIMARY KEY,
            user_id TEXT NOT NULL,
            requested_by TEXT,
            report_type TEXT NOT NULL,
            status TEXT NOT NULL CHECK(status IN ('success','partial')),
            generated_date TEXT NOT NULL,
            generated_at TEXT NOT NULL,
            report_period_start TEXT NOT NULL,
            report_period_end TEXT NOT NULL,
            summary_insights TEXT,
            detailed_analysis TEXT DEFAULT '{}',
            progress_indicators TEXT DEFAULT '{}',
            intervention_recommendations TEXT DEFAULT '[]',
            alert_flags TEXT DEFAULT '[]',
            report_json TEXT NOT NULL,
            generated_by_ai INTEGER DEFAULT 0,
            reviewed_by_professional INTEGER DEFAULT 0
        );

        CREATE INDEX IF NOT EXISTS idx_reports_user
            ON clinical_reports(user_id, generated_at);
    """),

    # V4: Cribados (TEA, TDAH, Dislexia); el informe los lee con forma de sesión
    (4, """
        CREATE TABLE IF NOT EXISTS screenings (
            id TEXT PRIMARY KEY,
            user_id TEXT NOT NULL,
            type TEXT NOT NULL,
            score REAL,
            risk_level TEXT,
            responses TEXT DEFAULT '{}',
            created_at TEXT NOT NULL,
            completed_at TEXT
        );

        CREATE INDEX IF NOT EXISTS idx_screenings_user_created
            ON screenings(user_id, created_at);
    """),
]

_SESSION_COLUMNS = (
    "id, user_id, cognitive_domain, game_type, created_at, completed_at, "
    "performance_data, struggles"
)

SCREENING_GAME_TYPE = "screening"


def screening_as_session(row) -> dict:
    """
    Fila de cribado → fila con forma de sesión. La puntuación (0-100) se
    guarda como ratio en 'accuracy'; riesgo alto → el tipo como dificultad.
    """
    row = dict(row)
    score = row.get("score") or 0
    return {
        "id": row["id"],
        "user_id": row["user_id"],
        "cognitive_domain": f"screening_{row['type']}",
        "game_type": SCREENING_GAME_TYPE,
        "created_at": row["created_at"],
        "completed_at": row.get("completed_at") or row["created_at"],
        "performance_data": {
            "accuracy": round(min(100.0, max(0.0, score)) / 100, 4),
            "score": score,
            "type": row["type"],
            "riskLevel": row.get("risk_level"),
            "responses": json.loads(row.get("responses") or "{}"),
        },
        "struggles": [row["type"]] if row.get("risk_level") == "high" else [],
        "source": "screenings",
    }


class Database:
    """Capa de persistencia SQLite con migrations."""

    def __init__(self, db_path: str = "neuroplay_reports.db"):
        self.db_path = db_path
        self._run_migrations()

    @contextmanager
    def _conn(self):
        conn = sqlite3.connect(self.db_path)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA journal_mode=WAL")
        conn.execute("PRAGMA foreign_keys=ON")
        try:
            yield conn
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    def _run_migrations(self):
        """Ejecuta migrations pendientes."""
        with self._conn() as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS _migrations (
                    version INTEGER PRIMARY KEY,
                    applied_at TEXT DEFAULT (datetime('now'))
                )
            """)

            row = conn.execute("SELECT MAX(version) as v FROM _migrations").fetchone()
            current_version = row["v"] or 0

            for version, sql in MIGRATIONS:
                if version > current_version:
                    logger.info(f"Applying migration v{version}...")
                    conn.executescript(sql)
                    conn.execute("INSERT INTO _migrations (version) VALUES (?)", (version,))
                    logger.info(f"Migration v{version} applied")

    def get_version(self) -> int:
        """Retorna la versión actual del schema."""
        with self._conn() as conn:
            row = conn.execute("SELECT MAX(version) as v FROM _migrations").fetchone()
            return row["v"] or 0

    # ═══════════════════════════════════════════════════════════════════
    # CRUD: Users
    # ═══════════════════════════════════════════════════════════════════

    def create_user(self, user_id: str, role: str, display_name: str = "") -> bool:
        """Crea un nuevo usuario."""
        try:
            with self._conn() as conn:
                conn.execute(
                    "INSERT INTO users (id, role, display_name) VALUES (?, ?, ?)",
                    (user_id, role, display_name),
                )
            return True
        except sqlite3.IntegrityError:
            return False

    def get_user(self, user_id: str) -> Optional[dict]:
        with self._conn() as conn:
            row = conn.execute("SELECT * FROM users WHERE id = ?", (user_id,)).fetchone()
            return dict(row) if row else None

    def ensure_user(self, user_id: str, role: str = "patient", name: str = ""):
        """Crea el usuario si no existe."""
        if not self.get_user(user_id):
            self.create_user(user_id, role, name)

    # ═══════════════════════════════════════════════════════════════════
    # Escritura de datos de juego
    # ═══════════════════════════════════════════════════════════════════

    def add_session(self, session: dict) -> str:
        """Inserta una sesión genérica (dict con forma de SessionRecord)."""
        session_id = session.get("id") or uuid.uuid4().hex
        with self._conn() as conn:
            conn.execute("""
                INSERT INTO learning_sessions
                    (id, user_id, cognitive_domain, game_type, created_at, completed_at,
                     performance_data, struggles, accuracy_percentage, avg_reaction_time_ms)
                VALUES (?,?,?,?,?,?,?,?,?,?)
            """, (
                session_id,
                session["user_id"],
                session.get("cognitive_domain", "general"),
                session.get("game_type", ""),
                session["created_at"],
                session.get("completed_at"),
                json.dumps(session.get("performance_data") or {}),
                json.dumps(session.get("struggles") or []),
                session.get("accuracy_percentage"),
                session.get("avg_reaction_time_ms"),
            ))
        return session_id

    def save_behavioral_metric(self, row: dict) -> str:
        """Persiste la fila producida por risk_heuristics.capture_session()."""
        with self._conn() as conn:
            conn.execute("""
                INSERT INTO behavioral_metrics
                    (id, user_id, game_type, cognitive_domain, created_at, completed_at,
                     performance_data, struggles)
                VALUES (?,?,?,?,?,?,?,?)
            """, (
                row["id"],
                row["user_id"],
                row["game_type"],
                row["cognitive_domain"],
                row["created_at"],
                row.get("completed_at"),
                json.dumps(row.get("performance_data") or {}),
                json.dumps(row.get("struggles") or []),
            ))
        return row["id"]

    def add_screening(self, screening: dict) -> str:
        """Inserta un cribado completado (type: tea | tdah | dislexia)."""
        screening_id = screening.get("id") or uuid.uuid4().hex
        with self._conn() as conn:
            conn.execute("""
                INSERT INTO screenings
                    (id, user_id, type, score, risk_level, responses, created_at, completed_at)
                VALUES (?,?,?,?,?,?,?,?)
            """, (
                screening_id,
                screening["user_id"],
                screening["type"],
                screening.get("score"),
                screening.get("risk_level"),
                json.dumps(screening.get("responses") or {}),
                screening["created_at"],
                screening.get("completed_at"),
            ))
        return screening_id

    def upsert_trail(self, user_id: str, domain: str, initial_level: int = 1,
                     current_level: int = 1, total_xp: int = 0) -> None:
        with self._conn() as conn:
            conn.execute("""
                INSERT INTO cognitive_trails (user_id, cognitive_domain, initial_level, current_level, total_xp)
                VALUES (?,?,?,?,?)
                ON CONFLICT(user_id, cognitive_domain) DO UPDATE SET
                    current_level = excluded.current_level,
                    total_xp = excluded.total_xp,
                    updated_at = datetime('now')
            """, (user_id, domain, initial_level, current_level, total_xp))

    def set_profile(self, user_id: str, conditions: Sequence[str]) -> None:
        with self._conn() as conn:
            conn.execute("""
                INSERT INTO neurodiversity_profiles (user_id, detected_conditions) VALUES (?, ?)
                ON CONFLICT(user_id) DO UPDATE SET
                    detected_conditions = excluded.detected_conditions,
                    updated_at = datetime('now')
            """, (user_id, json.dumps(list(conditions))))

    # ═══════════════════════════════════════════════════════════════════
    # ReportStore: lecturas del motor
    # ═══════════════════════════════════════════════════════════════════

    def fetch_sessions(self, subject_id: str, start: str, end: str,
                       limit: int = 5000) -> List[SessionRecord]:
        """
        Sesiones genéricas + cribados + métricas conductuales del periodo
        [start, end], ambos días incluidos. La fecha se compara tal como
        está escrita en el timestamp (sin convertir zona horaria).

        Con más de `limit` filas se conservan las MÁS RECIENTES: son las
        que alimentan el tramo final de la mejora y la tendencia.
        """
        period = (subject_id, start[:10], end[:10])
        query = f"""
            SELECT {_SESSION_COLUMNS}, accuracy_percentage, avg_reaction_time_ms,
                   'learning_sessions' AS source
            FROM learning_sessions
            WHERE user_id = ? AND substr(created_at, 1, 10) BETWEEN ? AND ?
            UNION ALL
            SELECT {_SESSION_COLUMNS}, NULL, NULL, 'behavioral_metrics'
            FROM behavioral_metrics
            WHERE user_id = ? AND substr(created_at, 1, 10) BETWEEN ? AND ?
            ORDER BY created_at DESC, id DESC
            LIMIT ?
        """
        with self._conn() as conn:
            rows = [dict(r) for r in conn.execute(query, period + period + (limit,)).fetchall()]
            screenings = conn.execute("""
                SELECT *, 'screenings' AS source FROM screenings
                WHERE user_id = ? AND substr(created_at, 1, 10) BETWEEN ? AND ?
                ORDER BY created_at DESC, id DESC
                LIMIT ?
            """, period + (limit,)).fetchall()

        sessions = []
        for row in rows + [dict(r) for r in screenings]:
            try:
                if row["source"] == "screenings":
                    row = screening_as_session(row)
                sessions.append(SessionRecord.from_row(row))
            except (ValueError, KeyError) as e:
                logger.warning(f"Fila de sesión ilegible {row['id']}: {e}")

        sessions.sort(key=lambda s: (s.instant, s.id), reverse=True)
        if len(sessions) > limit or len(rows) == limit or len(screenings) == limit:
            logger.warning(
                f"Tope de {limit} sesiones alcanzado para {subject_id} "
                f"({start[:10]}..{end[:10]}): se descartan las más antiguas"
            )
        return list(reversed(sessions[:limit]))

    def fetch_trails(self, subject_id: str) -> Dict[str, TrailMetadata]:
        with self._conn() as conn:
            rows = conn.execute(
                "SELECT * FROM cognitive_trails WHERE user_id = ?", (subject_id,)
            ).fetchall()
        return {
            r["cognitive_domain"]: TrailMetadata(
                initial_level=r["initial_level"],
                current_level=r["current_level"],
                total_xp=r["total_xp"],
            )
            for r in rows
        }

    def fetch_profile(self, subject_id: str) -> Optional[NeurodiversityProfile]:
        with self._conn() as conn:
            row = conn.execute(
                "SELECT * FROM neurodiversity_profiles WHERE user_id = ?", (subject_id,)
            ).fetchone()
        if row is None:
            logger.debug(f"Sin perfil de neurodiversidad para {subject_id}")
            return None
        return NeurodiversityProfile.from_row(row)

    # ═══════════════════════════════════════════════════════════════════
    # Informes clínicos
    # ═══════════════════════════════════════════════════════════════════

    def save_report(self, report, status: str, generated_at: datetime,
                    requested_by: str = "", data_sources: Sequence[str] = ()) -> str:
        """
        Un único INSERT en una transacción. Cualquier fallo → PersistenceFault:
        un informe sin guardar no es un resultado utilizable.
        """
        report_id = str(uuid.uuid4())
        data = report.to_dict()
        ai = data.get("aiAnalysis") or {}
        general = data["general"]
        summary = ai.get("executiveSummary") or (
            f"Informe generado con {general['totalSessions']} sesiones. "
            f"Precisión media: {general['avgAccuracy']:.1f}%."
        )
        detailed = {
            "dataSources": list(data_sources),
            "sessionsAnalyzed": general["totalSessions"],
            "avgAccuracy": general["avgAccuracy"],
            "avgReactionTime": general["avgReactionTime"],
            "cognitiveScores": data["cognitiveScores"],
            "behavioralPatterns": data["behavioral"],
            "temporalEvolution": data["temporalEvolution"],
            "riskIndicators": data["riskIndicators"],
            "aiAnalysis": ai or None,
        }
        progress = {
            "strengths": ai.get("strengths", []),
            "areasOfConcern": ai.get("areasOfConcern", []),
            "cognitiveImprovements": data["cognitiveScores"],
        }
        try:
            with self._conn() as conn:
                conn.execute("""
                    INSERT INTO clinical_reports
                        (id, user_id, requested_by, report_type, status, generated_date, generated_at,
                         report_period_start, report_period_end, summary_insights,
                         detailed_analysis, progress_indicators, intervention_recommendations,
                         alert_flags, report_json, generated_by_ai, reviewed_by_professional)
                    VALUES (?,?,?,?,?,?,?,?,?,?,?,?,?,?,?,?,0)
                """, (
                    report_id,
                    report.user_id,
                    requested_by,
                    report.report_type,
                    status,
                    generated_at.date().isoformat(),
                    generated_at.isoformat(),
                    report.period_start,
                    report.period_end,
                    summary,
                    json.dumps(detailed, ensure_ascii=False),
                    json.dumps(progress, ensure_ascii=False),
                    json.dumps(ai.get("recommendations", []), ensure_ascii=False),
                    json.dumps(ai.get("areasOfConcern", []), ensure_ascii=False),
                    json.dumps(data, ensure_ascii=False),
                    1 if report.ai_analysis is not None else 0,
                ))
        except sqlite3.Error as e:
            logger.error(f"No se pudo guardar el informe de {report.user_id}: {e}")
            raise PersistenceFault(
                "Failed to save report",
                details={"subject_id": report.user_id},
            ) from e
        return report_id

    def get_report(self, report_id: str) -> Optional[dict]:
        with self._conn() as conn:
            row = conn.execute(
                "SELECT * FROM clinical_reports WHERE id = ?", (report_id,)
            ).fetchone()
        if row is None:
            return None
        result = dict(row)
        for key in ("detailed_analysis", "progress_indicators", "intervention_recommendations",
                    "alert_flags", "report_json"):
            result[key] = json.loads(result[key]) if result[key] else None
        result["generated_by_ai"] = bool(result["generated_by_ai"])
        result["reviewed_by_professional"] = bool(result["reviewed_by_professional"])
        return result

    def count_reports(self, user_id: str) -> int:
        with self._conn() as conn:
            row = conn.execute(
                "SELECT COUNT(*) AS n FROM clinical_reports WHERE user_id = ?", (user_id,)
            ).fetchone()
            return row["n"]

    # ═══════════════════════════════════════════════════════════════════
    # System Events
    # ═══════════════════════════════════════════════════════════════════

    def log_event(self, event_type: str, actor_id: str = "",
                  payload: dict = None, severity: str = "info"):
        """Registra un evento del sistema."""
        with self._conn() as conn:
            conn.execute("""
                INSERT INTO system_events (event_type, actor_id, payload, severity)
                VALUES (?,?,?,?)
            """, (event_type, actor_id, json.dumps(payload or {}), severity))

    def get_events(self, event_type: str = None, limit: int = 100) -> List[dict]:
        """Obtiene eventos del sistema."""
        query = "SELECT * FROM system_events WHERE 1=1"
        params = []
        if event_type:
            query += " AND event_type = ?"
            params.append(event_type)
        query += " ORDER BY id DESC LIMIT ?"
        params.append(limit)

        with self._conn() as conn:
            rows = conn.execute(query, params).fetchall()
            return [dict(r) for r in rows]
