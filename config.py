"""
CONFIG.PY — Configuraciones del Motor de Informes Clínicos
===========================================================
Centraliza las configuraciones del sistema:
  - SystemConfig: parámetros técnicos (BD, logging, JWT, CORS)
  - NarrativeConfig: proveedor y parámetros del generador de narrativa
  - ReportConfig: umbrales del pipeline de informes

Las tablas de umbrales de riesgo viven en risk_heuristics.py porque
son configuración clínica inspeccionable, no parámetros de despliegue.
"""

import os
from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional

__all__ = [
    "Environment",
    "SystemConfig",
    "NarrativeProvider",
    "NarrativeConfig",
    "ReportConfig",
    "AppConfig",
    "get_config",
    "reset_config",
]


# ═══════════════════════════════════════════════════════════════════════
# SYSTEM CONFIG: Parámetros técnicos globales
# ═══════════════════════════════════════════════════════════════════════

class Environment(str, Enum):
    DEVELOPMENT = "development"
    STAGING = "staging"
    PRODUCTION = "production"


@dataclass
class SystemConfig:
    """Configuración técnica del sistema."""

    # Entorno
    environment: Environment = Environment.DEVELOPMENT

    # CORS
    cors_origins: List[str] = field(default_factory=lambda: ["*"])

    # Base de datos
    database_path: str = "neuroplay_reports.db"

    # Logging
    log_level: str = "INFO"
    log_format: str = "%(asctime)s [%(levelname)s] %(name)s — %(message)s"

    # Seguridad
    jwt_secret: str = "neuroplay-dev-key-change-in-production"
    jwt_expiration_hours: int = 24

    @classmethod
    def from_env(cls) -> "SystemConfig":
        """Carga configuración desde variables de entorno."""
        return cls(
            environment=Environment(os.getenv("ENVIRONMENT", "development")),
            cors_origins=[o.strip() for o in os.getenv("ALLOWED_ORIGINS", "*").split(",")],
            database_path=os.getenv("DATABASE_PATH", "neuroplay_reports.db"),
            log_level=os.getenv("LOG_LEVEL", "INFO"),
            jwt_secret=os.getenv("JWT_SECRET", "neuroplay-dev-key-change-in-production"),
            jwt_expiration_hours=int(os.getenv("JWT_EXPIRATION_HOURS", "24")),
        )


# ═══════════════════════════════════════════════════════════════════════
# NARRATIVE CONFIG: Generador externo de narrativa clínica
# ═══════════════════════════════════════════════════════════════════════

class NarrativeProvider(str, Enum):
    OPENAI = "openai"
    ANTHROPIC = "anthropic"
    MOCK = "mock"
    NONE = "none"


_DEFAULT_MODELS = {
    NarrativeProvider.OPENAI: "gpt-4o-mini",
    NarrativeProvider.ANTHROPIC: "claude-sonnet-4-20250514",
    NarrativeProvider.MOCK: "mock-demo",
    NarrativeProvider.NONE: "",
}


@dataclass
class NarrativeConfig:
    """Parámetros de la llamada al generador de narrativa."""

    provider: NarrativeProvider = NarrativeProvider.NONE
    model_name: str = ""

    # Parámetros de generación: baja temperatura, salida JSON estable
    temperature: float = 0.3
    max_tokens: int = 2000

    # Un solo intento, sin reintentos
    timeout_seconds: float = 30.0

    @classmethod
    def from_env(cls) -> "NarrativeConfig":
        """
        NARRATIVE_PROVIDER explícito gana; si no, se detecta por API key.
        Sin key ni provider → NONE (informe parcial, sin narrativa).
        """
        explicit = os.getenv("NARRATIVE_PROVIDER")
        if explicit:
            provider = NarrativeProvider(explicit.lower())
        elif os.getenv("ANTHROPIC_API_KEY"):
            provider = NarrativeProvider.ANTHROPIC
        elif os.getenv("OPENAI_API_KEY"):
            provider = NarrativeProvider.OPENAI
        else:
            provider = NarrativeProvider.NONE
        return cls(
            provider=provider,
            model_name=os.getenv("NARRATIVE_MODEL", _DEFAULT_MODELS[provider]),
            temperature=float(os.getenv("NARRATIVE_TEMPERATURE", "0.3")),
            max_tokens=int(os.getenv("NARRATIVE_MAX_TOKENS", "2000")),
            timeout_seconds=float(os.getenv("NARRATIVE_TIMEOUT_SECONDS", "30")),
        )


# ═══════════════════════════════════════════════════════════════════════
# REPORT CONFIG: Umbrales del pipeline
# ═══════════════════════════════════════════════════════════════════════

@dataclass
class ReportConfig:
    """Parámetros del cálculo de métricas e informes."""

    # Fracción de sesiones en el primer/último tramo para la mejora
    quintile_fraction: float = 0.2

    # Consistencia cuando hay menos de 2 precisiones utilizables
    consistency_baseline: float = 5.0

    # Precisión (%) por debajo de la cual se etiqueta 'low_accuracy'
    low_accuracy_threshold: float = 60.0

    # Tope de filas leídas por informe
    max_sessions_per_report: int = 5000

    report_types: List[str] = field(default_factory=lambda: ["comprehensive", "summary"])

    @classmethod
    def from_env(cls) -> "ReportConfig":
        return cls(
            low_accuracy_threshold=float(os.getenv("LOW_ACCURACY_THRESHOLD", "60")),
            max_sessions_per_report=int(os.getenv("MAX_SESSIONS_PER_REPORT", "5000")),
        )


# ═══════════════════════════════════════════════════════════════════════
# CONFIGURACIÓN GLOBAL
# ═══════════════════════════════════════════════════════════════════════

@dataclass
class AppConfig:
    """Configuración completa de la aplicación."""
    system: SystemConfig = field(default_factory=SystemConfig)
    narrative: NarrativeConfig = field(default_factory=NarrativeConfig)
    report: ReportConfig = field(default_factory=ReportConfig)

    @classmethod
    def from_env(cls) -> "AppConfig":
        """Carga toda la configuración desde el entorno."""
        return cls(
            system=SystemConfig.from_env(),
            narrative=NarrativeConfig.from_env(),
            report=ReportConfig.from_env(),
        )


# Singleton de configuración
_config: Optional[AppConfig] = None


def get_config() -> AppConfig:
    """Obtiene la configuración global (singleton)."""
    global _config
    if _config is None:
        _config = AppConfig.from_env()
    return _config


def reset_config() -> None:
    """Resetea la configuración (para tests)."""
    global _config
    _config = None
