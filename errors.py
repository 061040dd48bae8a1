"""
ERRORES DEL MOTOR DE INFORMES CLÍNICOS
=======================================
Taxonomía de fallos del pipeline de generación de informes.

  NoDataFound          → 404, el sujeto no tiene sesiones en el periodo
  AuthorizationFault   → 403, el solicitante no puede ver al sujeto
  InvalidReportRequest → 400, fechas o tipo de informe inválidos
  PersistenceFault     → 500, el informe no se pudo guardar (fatal)
  NarrativeUnavailable → interno, degrada el informe a 'partial'

La resolución fallida de un campo (FieldResolutionMiss) NO es una
excepción: el normalizador devuelve None y el agregado lo ignora.
"""

from typing import Any, Dict, Optional


class ReportError(Exception):
    """Base de todos los errores tipados del motor."""

    code: str = "REPORT_ERROR"
    http_status: int = 500

    def __init__(
        self,
        message: str,
        details: Optional[Dict[str, Any]] = None,
        suggestion: Optional[str] = None,
    ):
        super().__init__(message)
        self.message = message
        self.details = details or {}
        self.suggestion = suggestion

    def to_dict(self) -> Dict[str, Any]:
        data = {
            "status": "error",
            "code": self.code,
            "message": self.message,
        }
        if self.suggestion:
            data["suggestion"] = self.suggestion
        if self.details:
            data["details"] = self.details
        return data

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(code={self.code!r}, message={self.message!r})"


class InvalidReportRequest(ReportError):
    code = "INVALID_REQUEST"
    http_status = 400


class AuthorizationFault(ReportError):
    """El solicitante no es el sujeto ni tiene rol con acceso global."""
    code = "REPORT_FORBIDDEN"
    http_status = 403


class NoDataFound(ReportError):
    code = "NO_DATA"
    http_status = 404

    def __init__(self, subject_id: str, start: str, end: str):
        super().__init__(
            f"No hay sesiones para {subject_id} entre {start} y {end}",
            details={"subject_id": subject_id, "period_start": start, "period_end": end},
            suggestion="Complete game sessions first, then request the report again.",
        )


class NarrativeUnavailable(ReportError):
    """Sin narrativa: timeout, proveedor caído o respuesta ilegible. Nunca llega al usuario."""
    code = "NARRATIVE_UNAVAILABLE"
    http_status = 502


class PersistenceFault(ReportError):
    code = "PERSISTENCE_FAILED"
    http_status = 500
