"""
NeuroPlay Reports — API REST (FastAPI)
=======================================
Expone el motor de informes clínicos y la captura de sesiones de juego.
Capas: Auth → Validation → Engine (normalizador, agregados, riesgo,
narrativa) → Persistencia → Response.

Endpoints:
  GET  /api/health                         → Health check
  POST /api/auth/login                     → Login (demo)
  POST /api/games/sessions                 → Captura de sesión + riesgo por tarea
  POST /api/reports/clinical               → Genera informe clínico
  GET  /api/reports/{report_id}            → Informe guardado
  GET  /api/reports/{report_id}/export/csv → Export tabular del informe

Errores del motor → JSON {"status": "error", "code", "message", ...}
con el código HTTP de cada tipo (400/403/404/500). "Sin datos" y
"sin permiso" nunca comparten código.
"""

import logging
import math
import os
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from dotenv import load_dotenv
from fastapi import Depends, FastAPI, Header, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, PlainTextResponse
from pydantic import BaseModel, Field, ValidationError, field_validator

load_dotenv()

from auth import (  # noqa: E402
    PERMISSIONS, UserSession, can_view_report, create_token, has_permission, verify_token,
)
from config import get_config  # noqa: E402
from database import Database  # noqa: E402
from errors import ReportError  # noqa: E402
from narrative_client import get_narrative_client  # noqa: E402
from report_engine import ReportEngine, ReportRequest  # noqa: E402
from report_export import report_to_csv  # noqa: E402
from risk_heuristics import (  # noqa: E402
    COGNITIVE_FLEXIBILITY, PHONOLOGICAL_PROCESSING, SUSTAINED_ATTENTION,
    CognitiveFlexibilityStats, FlexibilityTrial, PhonologicalStats,
    SustainedAttentionStats, capture_session,
)

# ──────────────────────────────────────────────
# LOGGING
# ──────────────────────────────────────────────

_system = get_config().system
logging.basicConfig(
    level=getattr(logging, _system.log_level.upper(), logging.INFO),
    format=_system.log_format,
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("neuroplay.api")

# ──────────────────────────────────────────────
# APP INIT
# ──────────────────────────────────────────────

app = FastAPI(
    title="NeuroPlay Clinical Reports API",
    description="Informes clínicos a partir de telemetría de juegos terapéuticos",
    version="0.3.0",
    docs_url="/docs",
)

allowed_origins = _system.cors_origins

app.add_middleware(
    CORSMiddleware,
    allow_origins=allowed_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

if allowed_origins == ["*"]:
    logger.warning("CORS abierto a todos los orígenes (ALLOWED_ORIGINS=*). "
                   "Configura ALLOWED_ORIGINS en .env para producción.")


@app.exception_handler(ReportError)
async def report_error_handler(request: Request, exc: ReportError):
    return JSONResponse(status_code=exc.http_status, content=exc.to_dict())


# ──────────────────────────────────────────────
# SERVICIOS (inyectables, sobreescribibles en tests)
# ──────────────────────────────────────────────

_db: Optional[Database] = None
_narrative = None
_narrative_loaded = False


def get_database() -> Database:
    global _db
    if _db is None:
        _db = Database(get_config().system.database_path)
        logger.info(f"Base de datos inicializada en {_db.db_path} (schema v{_db.get_version()})")
    return _db


def get_narrative():
    global _narrative, _narrative_loaded
    if not _narrative_loaded:
        _narrative = get_narrative_client(get_config().narrative)
        _narrative_loaded = True
        if _narrative is None:
            logger.warning("Sin proveedor de narrativa: los informes serán 'partial'")
    return _narrative


def get_report_engine(db: Database = Depends(get_database)) -> ReportEngine:
    return ReportEngine(db, get_narrative(), get_config())


# ──────────────────────────────────────────────
# AUTH DEPENDENCY
# ──────────────────────────────────────────────

async def get_current_user(authorization: Optional[str] = Header(None)) -> UserSession:
    """Extrae y verifica el token JWT. Sin token → 401."""
    if not authorization:
        raise HTTPException(status_code=401, detail="Falta el token de autorización.")
    token = authorization.replace("Bearer ", "").strip()
    session = verify_token(token)
    if not session:
        logger.warning("Token inválido o expirado recibido")
        raise HTTPException(status_code=401, detail="Token inválido o expirado.")
    return session

# ──────────────────────────────────────────────
# SCHEMAS CON VALIDACIÓN
# ──────────────────────────────────────────────


class LoginRequest(BaseModel):
    user_id: str
    role: str = "patient"
    display_name: str = ""

    @field_validator("role")
    @classmethod
    def role_must_be_valid(cls, v: str) -> str:
        if v not in PERMISSIONS:
            raise ValueError(f"Rol inválido '{v}'. Roles válidos: {sorted(PERMISSIONS)}")
        return v


class ClinicalReportRequest(BaseModel):
    user_id: str
    start_date: str
    end_date: str
    report_type: str = "comprehensive"


class _TaskStatsIn(BaseModel):
    reaction_times: List[float] = []

    @field_validator("reaction_times")
    @classmethod
    def reaction_times_must_be_valid(cls, v: List[float]) -> List[float]:
        if any(not math.isfinite(rt) or rt < 0 for rt in v):
            raise ValueError("Los tiempos de reacción deben ser ms finitos y no negativos")
        return v


class SustainedAttentionIn(_TaskStatsIn):
    total_trials: int = Field(ge=0)
    correct_responses: int = Field(ge=0)
    false_alarms: int = Field(ge=0)
    missed_targets: int = Field(ge=0)
    session_duration_ms: float = Field(default=0.0, ge=0)


class CognitiveFlexibilityIn(_TaskStatsIn):
    total_trials: int = Field(ge=0)
    correct_responses: int = Field(ge=0)
    errors: int = Field(ge=0)
    set_shifts: int = Field(ge=0)
    perseverative_errors: int = Field(ge=0)
    switch_cost: float = 0.0


class PhonologicalIn(_TaskStatsIn):
    total_tasks: int = Field(ge=0)
    errors: int = Field(ge=0)
    rhyme_accuracy: float = Field(ge=0, le=100)
    segmentation_accuracy: float = Field(ge=0, le=100)
    blending_accuracy: float = Field(ge=0, le=100)
    manipulation_accuracy: float = Field(ge=0, le=100)


class FlexibilityTrialIn(BaseModel):
    reaction_time: float = Field(ge=0)
    correct: bool
    is_switch: bool = False
    perseverative: bool = False


_TASK_SCHEMAS = {
    SUSTAINED_ATTENTION: (SustainedAttentionIn, SustainedAttentionStats),
    COGNITIVE_FLEXIBILITY: (CognitiveFlexibilityIn, CognitiveFlexibilityStats),
    PHONOLOGICAL_PROCESSING: (PhonologicalIn, PhonologicalStats),
}


class GameSessionRequest(BaseModel):
    game_type: str
    user_id: Optional[str] = None
    created_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    stats: Dict[str, Any] = {}
    trials: Optional[List[FlexibilityTrialIn]] = None

    @field_validator("game_type")
    @classmethod
    def game_type_must_be_known(cls, v: str) -> str:
        if v not in _TASK_SCHEMAS:
            raise ValueError(f"Juego sin heurística de riesgo '{v}'. Válidos: {sorted(_TASK_SCHEMAS)}")
        return v


def _build_stats(req: GameSessionRequest):
    """
    Valida el payload con el esquema de su tarea y lo convierte en las
    estadísticas que consume risk_heuristics. Payload inválido → ValidationError.
    """
    if req.game_type == COGNITIVE_FLEXIBILITY and req.trials is not None:
        return CognitiveFlexibilityStats.from_trials(
            [FlexibilityTrial(**t.model_dump()) for t in req.trials]
        )
    schema, stats_cls = _TASK_SCHEMAS[req.game_type]
    fields = schema.model_validate(req.stats).model_dump()
    fields["reaction_times"] = tuple(fields["reaction_times"])
    return stats_cls(**fields)

# ──────────────────────────────────────────────
# ENDPOINTS
# ──────────────────────────────────────────────


@app.get("/api/health")
async def health(db: Database = Depends(get_database)):
    """Health check — no requiere autenticación."""
    try:
        narrative = get_narrative()
        return {
            "status": "ok",
            "schema_version": db.get_version(),
            "narrative_model": narrative.model_name if narrative else None,
            "cors_origins": allowed_origins,
        }
    except Exception as e:
        logger.error(f"Health check fallido: {e}")
        raise HTTPException(status_code=503, detail="Servicio no disponible.")


@app.post("/api/auth/login")
async def login(req: LoginRequest, db: Database = Depends(get_database)):
    """Login simplificado para demo. En producción: proveedor de identidad externo."""
    try:
        token = create_token(req.user_id, req.role, req.display_name)
        db.ensure_user(req.user_id, req.role, req.display_name)
        logger.info(f"Login: {req.user_id} [{req.role}]")
        return {"token": token, "user_id": req.user_id, "role": req.role}
    except Exception as e:
        logger.error(f"Error en login para {req.user_id}: {e}")
        raise HTTPException(status_code=500, detail="Error procesando login.")


@app.post("/api/games/sessions")
async def record_game_session(
    req: GameSessionRequest,
    user: UserSession = Depends(get_current_user),
    db: Database = Depends(get_database),
):
    """Captura una sesión de juego, evalúa su riesgo por tarea y la persiste."""
    subject_id = req.user_id or user.user_id
    if not has_permission(user, "record_sessions") or (
        subject_id != user.user_id and user.role != "admin"
    ):
        logger.warning(f"Captura denegada — user={user.user_id} subject={subject_id}")
        raise HTTPException(status_code=403, detail="Sin permiso para registrar sesiones de este usuario.")

    try:
        stats = _build_stats(req)
    except ValidationError as e:
        raise HTTPException(
            status_code=400,
            detail={"message": f"Estadísticas inválidas para {req.game_type}",
                    "errors": [{"loc": list(err["loc"]), "msg": err["msg"]} for err in e.errors()]},
        )

    try:
        created_at = req.created_at or datetime.now(timezone.utc)
        row = capture_session(
            subject_id, req.game_type, stats,
            created_at=created_at,
            completed_at=req.completed_at,
            low_accuracy_threshold=get_config().report.low_accuracy_threshold,
        )
        db.save_behavioral_metric(row)
        db.log_event("game_session_captured", user.user_id, {
            "subject_id": subject_id,
            "game_type": req.game_type,
            "risk": row["performance_data"]["risk_indicators"],
        })
        return {
            "status": "ok",
            "session_id": row["id"],
            "cognitive_domain": row["cognitive_domain"],
            "risk_indicators": row["performance_data"]["risk_indicators"],
            "risk_rules_fired": row["performance_data"]["risk_rules_fired"],
        }
    except Exception as e:
        logger.error(f"Error capturando sesión {req.game_type} de {subject_id}: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Error registrando la sesión.")


@app.post("/api/reports/clinical")
def generate_clinical_report(
    req: ClinicalReportRequest,
    user: UserSession = Depends(get_current_user),
    engine: ReportEngine = Depends(get_report_engine),
    db: Database = Depends(get_database),
):
    """Genera, guarda y devuelve un informe clínico (success | partial)."""
    try:
        result = engine.generate(
            user,
            ReportRequest(
                subject_id=req.user_id,
                start_date=req.start_date,
                end_date=req.end_date,
                report_type=req.report_type,
            ),
        )
    except ReportError:
        raise
    except Exception as e:
        logger.error(f"Error inesperado generando informe de {req.user_id}: {e}", exc_info=True)
        return JSONResponse(
            status_code=500,
            content={"status": "error", "code": "INTERNAL_ERROR", "message": "Error interno del servidor."},
        )

    try:
        db.log_event("clinical_report_generated", user.user_id, {
            "report_id": result.report_id,
            "subject_id": req.user_id,
            "status": result.status,
        })
    except Exception as e:
        logger.warning(f"Log de evento falló (no crítico): {e}")
    return result.to_dict()


def _load_report(report_id: str, user: UserSession, db: Database) -> dict:
    stored = db.get_report(report_id)
    if stored is None:
        raise HTTPException(status_code=404, detail="Informe no encontrado.")
    if not can_view_report(user, stored["user_id"]):
        logger.warning(f"Acceso denegado al informe {report_id} — user={user.user_id}")
        raise HTTPException(status_code=403, detail="Sin permiso para ver este informe.")
    return stored


@app.get("/api/reports/{report_id}")
async def get_report(
    report_id: str,
    user: UserSession = Depends(get_current_user),
    db: Database = Depends(get_database),
):
    try:
        stored = _load_report(report_id, user, db)
        return {
            "reportId": stored["id"],
            "status": stored["status"],
            "generatedAt": stored["generated_at"],
            "summary": stored["summary_insights"],
            "reviewedByProfessional": stored["reviewed_by_professional"],
            "data": stored["report_json"],
        }
    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Error obteniendo informe {report_id}: {e}")
        raise HTTPException(status_code=500, detail="Error obteniendo el informe.")


@app.get("/api/reports/{report_id}/export/csv")
async def export_report_csv(
    report_id: str,
    user: UserSession = Depends(get_current_user),
    db: Database = Depends(get_database),
):
    """Export tabular del informe — terapeuta y admin."""
    if not has_permission(user, "export_reports"):
        raise HTTPException(status_code=403, detail="Sin permiso para exportar informes.")
    try:
        stored = _load_report(report_id, user, db)
        csv_data = report_to_csv(stored["report_json"])
        if not csv_data:
            return PlainTextResponse("No hay datos para exportar.", media_type="text/plain")
        logger.info(f"CSV del informe {report_id} exportado por {user.user_id} [{user.role}]")
        return PlainTextResponse(
            csv_data, media_type="text/csv",
            headers={"Content-Disposition": f"attachment; filename=report_{report_id}.csv"},
        )
    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Error exportando informe {report_id}: {e}")
        raise HTTPException(status_code=500, detail="Error generando el export.")


# ──────────────────────────────────────────────
# ENTRY POINT
# ──────────────────────────────────────────────

if __name__ == "__main__":
    import uvicorn
    port = int(os.environ.get("PORT", "8000"))
    reload = get_config().system.environment.value == "development"
    logger.info(f"Iniciando NeuroPlay Reports API en puerto {port} (reload={reload})")
    uvicorn.run("api:app", host="0.0.0.0", port=port, reload=reload)
