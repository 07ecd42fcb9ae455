"""
Taxonomia de erros do serviço.

Todo erro que chega à camada HTTP é uma subclasse de PodcastSearchError,
com código estável, mensagem e status HTTP sugerido.
"""
from typing import Any, Dict, Optional

from app.core.constants import (
    ERROR_INTERNAL,
    ERROR_ITUNES_API,
    ERROR_JOB_PROCESSING,
    ERROR_PODCAST_NOT_FOUND,
    ERROR_RATE_LIMIT_EXCEEDED,
)


class PodcastSearchError(Exception):
    """Erro base com código estável para a API."""

    code: str = ERROR_INTERNAL
    status_code: int = 500

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details

    def to_dict(self) -> Dict[str, Any]:
        error: Dict[str, Any] = {"code": self.code, "message": self.message}
        if self.details:
            error["details"] = self.details
        return error


class RateLimitedError(PodcastSearchError):
    """
    Upstream continuou limitando após todas as tentativas com backoff.

    `retry_after` é o próximo delay calculado (segundos), sugerido ao cliente.
    """

    code = ERROR_RATE_LIMIT_EXCEEDED
    status_code = 429

    def __init__(self, message: str, retry_after: float, attempts: int):
        super().__init__(message, details={"retry_after": retry_after, "attempts": attempts})
        self.retry_after = retry_after
        self.attempts = attempts


class UpstreamUnavailableError(PodcastSearchError):
    """Falhas de rede transitórias esgotaram as tentativas."""

    code = ERROR_ITUNES_API
    status_code = 502


class InternalSearchError(PodcastSearchError):
    """Falha não-retentável (status inesperado, corpo inválido, bug)."""

    code = ERROR_INTERNAL
    status_code = 500


class JobProcessingError(PodcastSearchError):
    """Falha de um único job. Fica registrada no job, nunca sai do ciclo do worker."""

    code = ERROR_JOB_PROCESSING
    status_code = 500


class NotFoundError(PodcastSearchError):
    code = ERROR_PODCAST_NOT_FOUND
    status_code = 404
