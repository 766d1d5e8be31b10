"""Taxonomia de errores del flujo de autenticacion.

Cada error lleva un ``kind`` estable, un status HTTP y un payload de contexto.
Los servicios los lanzan; ``app.main`` los traduce en un unico handler.
"""

from fastapi import status


class AuthFlowError(Exception):
    kind = "auth_error"
    status_code = status.HTTP_400_BAD_REQUEST
    default_message = "Error de autenticacion"

    def __init__(self, message: str | None = None, *, context: dict | None = None, status_code: int | None = None):
        self.message = message or self.default_message
        self.context = context or {}
        if status_code is not None:
            self.status_code = status_code
        super().__init__(self.message)

    def to_payload(self) -> dict:
        payload = {"ok": False, "error": self.kind, "message": self.message}
        if self.context:
            payload["data"] = self.context
        return payload


class NotFound(AuthFlowError):
    kind = "not_found"
    status_code = status.HTTP_404_NOT_FOUND
    default_message = "Recurso no encontrado"


class Conflict(AuthFlowError):
    kind = "conflict"
    status_code = status.HTTP_409_CONFLICT
    default_message = "La cuenta ya existe"


class Expired(AuthFlowError):
    kind = "expired"
    status_code = status.HTTP_400_BAD_REQUEST
    default_message = "Expirado"


class RateExceeded(AuthFlowError):
    kind = "rate_exceeded"
    status_code = status.HTTP_429_TOO_MANY_REQUESTS
    default_message = "Demasiados intentos, intenta mas tarde"


class InvalidCode(AuthFlowError):
    kind = "invalid_code"
    status_code = status.HTTP_400_BAD_REQUEST
    default_message = "Codigo invalido o expirado"


class InvalidToken(AuthFlowError):
    kind = "invalid_token"
    status_code = status.HTTP_401_UNAUTHORIZED
    default_message = "Token invalido"


class Revoked(AuthFlowError):
    kind = "revoked"
    status_code = status.HTTP_401_UNAUTHORIZED
    default_message = "Sesion revocada"


class Forbidden(AuthFlowError):
    kind = "forbidden"
    status_code = status.HTTP_403_FORBIDDEN
    default_message = "Usuario bloqueado"


class ProviderUnavailable(AuthFlowError):
    kind = "provider_unavailable"
    status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    default_message = "Proveedor de verificacion no disponible"
