from __future__ import annotations

from typing import Any, Dict, Optional


class FiliacaoError(Exception):
    """Erro de domínio base da API de filiação."""


class NotFoundError(FiliacaoError, LookupError):
    """Proposta, rascunho, envelope ou documento inexistente."""


class InvalidOperationError(FiliacaoError, ValueError):
    """Pré-condição violada: status incorreto, dado malformado, papel insuficiente."""


class UnauthorizedError(FiliacaoError):
    """Token de rascunho, state OAuth ou assinatura de webhook inválidos."""


class ConflictError(FiliacaoError):
    """Dois escritores concorrentes na mesma proposta; o chamador pode repetir."""


class ConfigurationError(FiliacaoError, RuntimeError):
    pass


class ExternalServiceError(FiliacaoError, RuntimeError):
    """Falha ao chamar um provedor externo (OAuth, assinatura)."""

    def __init__(
        self,
        message: str,
        *,
        details: Optional[Dict[str, Any]] = None,
        status_code: int | None = None,
    ) -> None:
        super().__init__(message)
        self.details = details or {}
        self.status_code = status_code
