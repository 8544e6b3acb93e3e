"""
Errores de dominio compartidos por todos los módulos.

Los servicios lanzan estas excepciones; main.py las convierte en respuestas
JSON {"detail": ..., "code": ...} con el status_code de cada clase.
"""
from fastapi import status


class DomainError(Exception):
    """Base de todos los errores de negocio."""

    status_code = status.HTTP_400_BAD_REQUEST
    code = "domain_error"
    default_message = "Error de negocio"

    def __init__(self, message: str = None):
        self.message = message or self.default_message
        super().__init__(self.message)

    def to_dict(self) -> dict:
        return {"detail": self.message, "code": self.code}


class PermissionDenied(DomainError):
    status_code = status.HTTP_403_FORBIDDEN
    code = "permission_denied"
    default_message = "Permisos insuficientes para esta acción"


class InvalidReference(DomainError):
    """Entidad inexistente o perteneciente a otro tenant."""
    status_code = status.HTTP_404_NOT_FOUND
    code = "invalid_reference"
    default_message = "Referencia inválida"


class NotFound(InvalidReference):
    code = "not_found"
    default_message = "Recurso no encontrado"


class PolicyViolation(DomainError):
    status_code = status.HTTP_422_UNPROCESSABLE_ENTITY
    code = "policy_violation"
    default_message = "La operación no está permitida"


class NoOpenCashSession(PolicyViolation):
    status_code = status.HTTP_409_CONFLICT
    code = "no_open_cash_session"
    default_message = "Debe abrir la caja para registrar ventas en efectivo."


class ConflictError(DomainError):
    status_code = status.HTTP_409_CONFLICT
    code = "conflict"
    default_message = "Conflicto con el estado actual"


class AlreadyOpen(ConflictError):
    code = "already_open"
    default_message = "Ya existe una caja abierta"


class AlreadyClosed(ConflictError):
    code = "already_closed"
    default_message = "La caja ya está cerrada"


class InsufficientStock(ConflictError):
    code = "insufficient_stock"
    default_message = "Stock insuficiente"


class TransactionAborted(DomainError):
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    code = "transaction_aborted"
    default_message = "Error crítico al procesar la operación."
