"""
NeuroPlay Reports — Autenticación y Autorización
=================================================
JWT (HMAC-SHA256) + RBAC. El proveedor de identidad real es externo:
aquí solo se emiten/verifican tokens locales y se decide quién puede
pedir, ver y exportar informes clínicos.

Roles:
  patient    → juega, genera y ve SUS informes
  therapist  → ve y exporta informes de sus pacientes
  admin      → genera informes de cualquier sujeto, ve eventos

Regla de informes: el solicitante debe ser el propio sujeto. Solo un
rol con 'generate_any_report' puede saltársela.
"""

import base64
import hashlib
import hmac
import json
import logging
import secrets
import time
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from config import get_config

logger = logging.getLogger(__name__)

# ═══════════════════════════════════════════════════════════════════════
# DATA STRUCTURES
# ═══════════════════════════════════════════════════════════════════════

@dataclass
class UserSession:
    user_id: str
    role: str  # patient | therapist | admin
    display_name: str = ""
    token: str = ""
    permissions: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "user_id": self.user_id,
            "role": self.role,
            "display_name": self.display_name,
            "permissions": self.permissions,
        }


# ═══════════════════════════════════════════════════════════════════════
# JWT UTILITIES
# ═══════════════════════════════════════════════════════════════════════

def _b64encode(data: bytes) -> str:
    return base64.urlsafe_b64encode(data).rstrip(b"=").decode()


def _b64decode(s: str) -> bytes:
    padding = 4 - len(s) % 4
    return base64.urlsafe_b64decode(s + "=" * padding)


def _sign(secret: str, signing_input: str) -> bytes:
    return hmac.new(secret.encode(), signing_input.encode(), hashlib.sha256).digest()


def create_token(
    user_id: str,
    role: str,
    display_name: str = "",
    expires_hours: Optional[int] = None,
    secret: str = None,
) -> str:
    """
    Crea un access token JWT (header.payload.signature). Clave y caducidad
    por defecto: SystemConfig (JWT_SECRET, JWT_EXPIRATION_HOURS).
    """
    system = get_config().system
    if expires_hours is None:
        expires_hours = system.jwt_expiration_hours
    now = int(time.time())
    header = _b64encode(json.dumps({"alg": "HS256", "typ": "JWT"}).encode())
    payload = _b64encode(json.dumps({
        "sub": user_id,
        "role": role,
        "name": display_name,
        "iat": now,
        "exp": now + expires_hours * 3600,
        "jti": secrets.token_hex(8),
    }).encode())
    signature = _sign(secret or system.jwt_secret, f"{header}.{payload}")
    return f"{header}.{payload}.{_b64encode(signature)}"


def verify_token(token: str, secret: str = None) -> Optional[UserSession]:
    """Verifica firma y expiración. Token inválido → None."""
    try:
        parts = token.split(".")
        if len(parts) != 3:
            return None
        header_b64, payload_b64, sig_b64 = parts

        expected = _sign(secret or get_config().system.jwt_secret, f"{header_b64}.{payload_b64}")
        if not hmac.compare_digest(expected, _b64decode(sig_b64)):
            logger.warning("JWT signature verification failed")
            return None

        payload = json.loads(_b64decode(payload_b64))
        if payload.get("exp", 0) < time.time():
            logger.debug("JWT expired")
            return None
        if payload.get("role") not in PERMISSIONS:
            logger.warning(f"JWT con rol desconocido: {payload.get('role')}")
            return None
    except (ValueError, TypeError, KeyError) as e:
        logger.warning(f"JWT verification error: {e}")
        return None

    return UserSession(
        user_id=payload["sub"],
        role=payload["role"],
        display_name=payload.get("name", ""),
        token=token,
        permissions=PERMISSIONS[payload["role"]],
    )


# ═══════════════════════════════════════════════════════════════════════
# RBAC PERMISSIONS
# ═══════════════════════════════════════════════════════════════════════

PERMISSIONS = {
    "patient": [
        "generate_own_report",
        "view_own_reports",
        "record_sessions",
    ],
    "therapist": [
        "view_reports",
        "export_reports",
    ],
    "admin": [
        "generate_own_report",
        "generate_any_report",
        "view_own_reports",
        "view_reports",
        "export_reports",
        "record_sessions",
        "view_system_events",
    ],
}


def has_permission(session: UserSession, permission: str) -> bool:
    """Verifica si un usuario tiene un permiso específico."""
    return permission in PERMISSIONS.get(session.role, [])


def can_generate_report(session: UserSession, subject_id: str) -> bool:
    if has_permission(session, "generate_any_report"):
        return True
    return session.user_id == subject_id and has_permission(session, "generate_own_report")


def can_view_report(session: UserSession, owner_id: str) -> bool:
    if has_permission(session, "view_reports"):
        return True
    return session.user_id == owner_id and has_permission(session, "view_own_reports")


# ═══════════════════════════════════════════════════════════════════════
# DEMO SESSIONS
# ═══════════════════════════════════════════════════════════════════════

def get_demo_sessions() -> Dict[str, UserSession]:
    """Sesiones de demo, una por rol."""
    people = {
        "patient": ("pac_01", "Lucía Romero"),
        "therapist": ("ter_01", "Dra. Navarro"),
        "admin": ("admin_01", "Administrador"),
    }
    sessions = {}
    for role, (user_id, name) in people.items():
        sessions[role] = UserSession(
            user_id=user_id,
            role=role,
            display_name=name,
            token=create_token(user_id, role, name),
            permissions=PERMISSIONS[role],
        )
    return sessions
