"""
CLIENTE DEL GENERADOR DE NARRATIVA — Abstracción sobre proveedores LLM
=======================================================================
El motor NO genera prosa clínica: se la pide a un colaborador externo.
Este módulo define ese contrato:

  NarrativeRequest  → resumen estructurado (periodo, perfil, métricas,
                      dominios, serie temporal, patrón conductual)
  NarrativeAnalysis → executiveSummary, domainAnalysis, strengths,
                      areasOfConcern, recommendations, diagnosticIndicators

Proveedores:
  - OpenAI (gpt-4o-mini)
  - Anthropic (Claude Sonnet)
  - Mock (determinista, para demos y tests sin API key)

request_narrative() envuelve la llamada con un timeout duro y NUNCA
lanza: timeout, error del proveedor o respuesta ilegible devuelven
(None, warning) y el informe se degrada a 'partial'.
"""

import json
import logging
import time
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeout
from dataclasses import dataclass, field
from typing import Any, Mapping, Optional, Protocol, Tuple

from behavioral_patterns import BehavioralPattern
from config import NarrativeConfig, NarrativeProvider
from domain_scores import GeneralMetrics
from errors import NarrativeUnavailable
from models import NeurodiversityProfile
from temporal_trends import TemporalPoint

logger = logging.getLogger(__name__)

NARRATIVE_WARNING = "AI analysis unavailable"


# ═══════════════════════════════════════════════════════════════════════
# CONTRATO
# ═══════════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class NarrativeRequest:
    period_start: str
    period_end: str
    profile: Optional[NeurodiversityProfile]
    metrics: GeneralMetrics
    temporal: Tuple[TemporalPoint, ...]
    behavioral: BehavioralPattern


@dataclass(frozen=True)
class NarrativeAnalysis:
    executive_summary: str = ""
    domain_analysis: Mapping[str, str] = field(default_factory=dict)
    strengths: Tuple[str, ...] = ()
    areas_of_concern: Tuple[str, ...] = ()
    recommendations: Tuple[str, ...] = ()
    diagnostic_indicators: Tuple[str, ...] = ()

    def to_dict(self) -> dict:
        return {
            "executiveSummary": self.executive_summary,
            "domainAnalysis": dict(sorted(self.domain_analysis.items())),
            "strengths": list(self.strengths),
            "areasOfConcern": list(self.areas_of_concern),
            "recommendations": list(self.recommendations),
            "diagnosticIndicators": list(self.diagnostic_indicators),
        }


class NarrativeClient(Protocol):
    model_name: str

    def generate(self, system_prompt: str, user_prompt: str) -> str:
        ...


# ═══════════════════════════════════════════════════════════════════════
# PROMPT
# ═══════════════════════════════════════════════════════════════════════

SYSTEM_PROMPT = """Eres un psicólogo clínico especializado en evaluación neuropsicológica \
infantil y adolescente, con experiencia en TEA, TDAH, dislexia y perfiles cognitivos.

Analizas datos de desempeño recogidos con juegos terapéuticos y redactas \
observaciones clínicas para profesionales de salud mental.

PAUTAS:
1. Lenguaje técnico pero accesible
2. Conclusiones basadas solo en los datos aportados
3. Nunca diagnostiques: usa "patrones compatibles con" o "indicadores sugestivos de"
4. Recomendaciones prácticas basadas en evidencia
5. Señala fortalezas y áreas de dificultad
6. Ten en cuenta el perfil de neurodiversidad si se aporta

FORMATO DE RESPUESTA (solo JSON):
{
  "executiveSummary": "resumen ejecutivo en 3-4 párrafos",
  "domainAnalysis": {"<dominio>": "análisis del dominio"},
  "strengths": ["..."],
  "areasOfConcern": ["..."],
  "recommendations": ["..."],
  "diagnosticIndicators": ["..."]
}"""


def build_prompt(request: NarrativeRequest) -> Tuple[str, str]:
    """Devuelve (system, user)."""
    m = request.metrics
    b = request.behavioral

    if request.profile is None:
        profile_line = "Perfil de neurodiversidad no disponible"
    else:
        conditions = ", ".join(request.profile.detected_conditions) or "Ninguna"
        profile_line = f"Condiciones detectadas: {conditions}"

    domains = []
    for name, s in sorted(m.cognitive_scores.items()):
        sign = "+" if s.improvement > 0 else ""
        domains.append(
            f"{name}:\n"
            f"  - Nivel inicial: {s.initial_level}\n"
            f"  - Nivel actual: {s.current_level}\n"
            f"  - XP total: {s.total_xp}\n"
            f"  - Sesiones: {s.sessions_completed}\n"
            f"  - Precisión media: {s.avg_accuracy}%\n"
            f"  - Mejora: {sign}{s.improvement}%"
        )

    def _fmt(value, unit):
        return "s/d" if value is None else f"{value}{unit}"

    temporal = "\n".join(
        f"{p.date.isoformat()}: precisión {_fmt(p.accuracy, '%')} "
        f"({p.session_count} sesiones, tiempo medio {_fmt(p.avg_reaction_time, 'ms')})"
        for p in request.temporal
    )
    struggles = ", ".join(b.struggles_detected) or "Ninguna dificultad específica detectada"

    user_prompt = f"""DATOS DEL PACIENTE
==================
Periodo analizado: {request.period_start} a {request.period_end}
{profile_line}

MÉTRICAS GENERALES
==================
- Sesiones totales: {m.total_sessions}
- Duración total: {m.total_duration_minutes} minutos
- Precisión media: {m.avg_accuracy}%
- Tiempo de reacción medio: {m.avg_reaction_time}ms
- Tasa de finalización: {m.completion_rate}%

DESEMPEÑO POR DOMINIO COGNITIVO
===============================
{chr(10).join(domains) or "Sin datos por dominio"}

EVOLUCIÓN TEMPORAL
==================
{temporal or "Sin datos temporales"}

PATRONES CONDUCTUALES
=====================
- Errores por impulsividad: {b.error_patterns.impulsive}
- Errores por desatención: {b.error_patterns.attention}
- Errores cognitivos: {b.error_patterns.cognitive}
- Mejor franja horaria: {b.best_performance_time}
- Consistencia entre sesiones: {b.consistency_score}/10
- Dificultades detectadas: {struggles}

Devuelve el análisis clínico completo en el formato JSON indicado."""
    return SYSTEM_PROMPT, user_prompt


# ═══════════════════════════════════════════════════════════════════════
# COERCIÓN DE LA RESPUESTA
# ═══════════════════════════════════════════════════════════════════════

def _strip_fences(text: str) -> str:
    text = text.strip()
    if text.startswith("```"):
        text = text.split("\n", 1)[1] if "\n" in text else ""
        if text.rstrip().endswith("```"):
            text = text.rstrip()[:-3]
    return text.strip()


def _string_list(value: Any) -> Tuple[str, ...]:
    if not isinstance(value, list):
        return ()
    return tuple(str(v) for v in value if isinstance(v, (str, int, float)) and str(v).strip())


def coerce_narrative(raw: Any) -> NarrativeAnalysis:
    """
    Cualquier respuesta → NarrativeAnalysis con valores vacíos por defecto.
    Texto que no es JSON pasa a ser el resumen ejecutivo. Respuesta vacía
    o de tipo inesperado → NarrativeUnavailable.
    """
    if isinstance(raw, str):
        text = _strip_fences(raw)
        if not text:
            raise NarrativeUnavailable("Respuesta de narrativa vacía")
        try:
            raw = json.loads(text)
        except json.JSONDecodeError:
            return NarrativeAnalysis(executive_summary=text)

    if not isinstance(raw, Mapping):
        raise NarrativeUnavailable(f"Respuesta de narrativa con forma inesperada: {type(raw).__name__}")

    summary = raw.get("executiveSummary")
    domains = raw.get("domainAnalysis")
    return NarrativeAnalysis(
        executive_summary=summary.strip() if isinstance(summary, str) else "",
        domain_analysis={
            str(k): str(v) for k, v in domains.items() if isinstance(v, (str, int, float))
        } if isinstance(domains, Mapping) else {},
        strengths=_string_list(raw.get("strengths")),
        areas_of_concern=_string_list(raw.get("areasOfConcern")),
        recommendations=_string_list(raw.get("recommendations")),
        diagnostic_indicators=_string_list(raw.get("diagnosticIndicators")),
    )


# ═══════════════════════════════════════════════════════════════════════
# CLIENTES
# ═══════════════════════════════════════════════════════════════════════

class MockNarrativeClient:
    """
    Cliente simulado para demos SIN API key.
    Redacta una narrativa fija a partir de las cifras del prompt.
    """

    def __init__(self, model_name: str = "mock-demo", delay_seconds: float = 0.0):
        self.model_name = model_name
        self.delay_seconds = delay_seconds

    def generate(self, system_prompt: str, user_prompt: str) -> str:
        if self.delay_seconds:
            time.sleep(self.delay_seconds)
        precision = "s/d"
        for line in user_prompt.splitlines():
            if line.startswith("- Precisión media:"):
                precision = line.split(":", 1)[1].strip()
                break
        return json.dumps({
            "executiveSummary": (
                f"Durante el periodo la precisión media fue {precision}. "
                "Se observan patrones compatibles con un desempeño estable; "
                "los indicadores deben interpretarse junto a la valoración clínica."
            ),
            "domainAnalysis": {},
            "strengths": ["Participación regular en las sesiones"],
            "areasOfConcern": [],
            "recommendations": ["Mantener la frecuencia de juego y revisar en 4 semanas"],
            "diagnosticIndicators": [],
        }, ensure_ascii=False)


class OpenAINarrativeClient:
    """Cliente para API de OpenAI."""

    def __init__(self, config: NarrativeConfig):
        from openai import OpenAI
        self.client = OpenAI(timeout=config.timeout_seconds, max_retries=0)
        self.model_name = config.model_name or "gpt-4o-mini"
        self.temperature = config.temperature
        self.max_tokens = config.max_tokens

    def generate(self, system_prompt: str, user_prompt: str) -> str:
        response = self.client.chat.completions.create(
            model=self.model_name,
            messages=[
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": user_prompt},
            ],
            temperature=self.temperature,
            max_tokens=self.max_tokens,
        )
        return response.choices[0].message.content or ""


class AnthropicNarrativeClient:
    """Cliente para API de Anthropic."""

    def __init__(self, config: NarrativeConfig):
        import anthropic
        self.client = anthropic.Anthropic(timeout=config.timeout_seconds, max_retries=0)
        self.model_name = config.model_name or "claude-sonnet-4-20250514"
        self.temperature = config.temperature
        self.max_tokens = config.max_tokens

    def generate(self, system_prompt: str, user_prompt: str) -> str:
        response = self.client.messages.create(
            model=self.model_name,
            max_tokens=self.max_tokens,
            temperature=self.temperature,
            system=system_prompt,
            messages=[{"role": "user", "content": user_prompt}],
        )
        return "".join(block.text for block in response.content if getattr(block, "type", "") == "text")


def get_narrative_client(config: NarrativeConfig) -> Optional[NarrativeClient]:
    """
    Factory: devuelve el cliente configurado.
    NONE → None: el motor genera el informe sin narrativa (partial).
    """
    if config.provider == NarrativeProvider.ANTHROPIC:
        return AnthropicNarrativeClient(config)
    if config.provider == NarrativeProvider.OPENAI:
        return OpenAINarrativeClient(config)
    if config.provider == NarrativeProvider.MOCK:
        return MockNarrativeClient(config.model_name or "mock-demo")
    return None


# ═══════════════════════════════════════════════════════════════════════
# LLAMADA CON TIMEOUT
# ═══════════════════════════════════════════════════════════════════════

def request_narrative(
    client: Optional[NarrativeClient],
    request: NarrativeRequest,
    timeout_seconds: float,
) -> Tuple[Optional[NarrativeAnalysis], Optional[str]]:
    """Un único intento. Devuelve (análisis, None) o (None, warning)."""
    if client is None:
        return None, NARRATIVE_WARNING

    system_prompt, user_prompt = build_prompt(request)
    start = time.time()
    executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="narrative")
    try:
        future = executor.submit(client.generate, system_prompt, user_prompt)
        raw = future.result(timeout=timeout_seconds)
        analysis = coerce_narrative(raw)
    except FutureTimeout:
        logger.warning(f"Narrativa: timeout tras {timeout_seconds}s ({client.model_name})")
        return None, NARRATIVE_WARNING
    except NarrativeUnavailable as e:
        logger.warning(f"Narrativa descartada: {e.message}")
        return None, NARRATIVE_WARNING
    except Exception as e:
        logger.warning(f"Narrativa: fallo del proveedor {client.model_name}: {e}")
        return None, NARRATIVE_WARNING
    finally:
        # No esperar al hilo colgado: el informe sigue sin él
        executor.shutdown(wait=False, cancel_futures=True)

    elapsed_ms = int((time.time() - start) * 1000)
    logger.info(f"Narrativa generada por {client.model_name} en {elapsed_ms}ms")
    return analysis, None
