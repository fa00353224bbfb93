import base64
import binascii
from functools import lru_cache
from typing import List, Optional

from pydantic_settings import BaseSettings, SettingsConfigDict

from filiacao.core.errors import ConfigurationError


class Settings(BaseSettings):
    """
    Configurações globais da API de filiação.
    Lê automaticamente variáveis do arquivo .env e é imutável depois de criada:
    cada serviço recebe a instância no construtor.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        frozen=True,
    )

    # Projeto
    project_name: str = "Filiacao API"
    api_v1_str: str = "/api/v1"
    debug: bool = False
    log_level: str = "INFO"

    # Segurança / JWT (apenas verificação de tokens do painel)
    secret_key: str = "changeme"
    algorithm: str = "HS256"

    # Banco de dados / filas
    database_url: str = "sqlite:///./dev.db"
    redis_url: str = "redis://localhost:6379/0"
    celery_broker_url: Optional[str] = None
    job_attempts: int = 3
    job_backoff_seconds: int = 30

    # CORS
    allowed_origins: List[str] = [
        "http://localhost:3000",
        "http://127.0.0.1:3000",
    ]

    # Criptografia de PII (32 bytes em base64)
    data_encryption_key: Optional[str] = None

    # Clicksign
    clicksign_webhook_secret: Optional[str] = None

    # Links públicos
    public_tracking_base_url: Optional[str] = None

    # Rascunhos
    draft_ttl_days: int = 7

    # SLA / triagem
    sla_days: int = 7
    sla_due_soon_hours: int = 24
    auto_assign_analyst: bool = False
    triage_interval_seconds: int = 300

    # OAuth social
    social_oauth_state_secret: Optional[str] = None
    social_state_ttl_minutes: int = 20
    social_redirect_success_url: Optional[str] = None
    social_redirect_error_url: Optional[str] = None

    spotify_client_id: Optional[str] = None
    spotify_client_secret: Optional[str] = None
    spotify_redirect_uri: Optional[str] = None

    youtube_client_id: Optional[str] = None
    youtube_client_secret: Optional[str] = None
    youtube_redirect_uri: Optional[str] = None

    facebook_client_id: Optional[str] = None
    facebook_client_secret: Optional[str] = None
    facebook_redirect_uri: Optional[str] = None

    instagram_client_id: Optional[str] = None
    instagram_client_secret: Optional[str] = None
    instagram_redirect_uri: Optional[str] = None

    def resolved_broker_url(self) -> str:
        return (self.celery_broker_url or self.redis_url).strip()

    def encryption_key_bytes(self) -> bytes:
        """Decodifica a chave de criptografia, exigindo exatamente 32 bytes."""
        raw = (self.data_encryption_key or "").strip()
        if not raw:
            raise ConfigurationError("DATA_ENCRYPTION_KEY not set")
        try:
            key = base64.b64decode(raw, validate=True)
        except (binascii.Error, ValueError) as exc:
            raise ConfigurationError("DATA_ENCRYPTION_KEY must be base64") from exc
        if len(key) != 32:
            raise ConfigurationError("DATA_ENCRYPTION_KEY must be 32 bytes (base64)")
        return key

    def oauth_credentials(self, provider: str) -> tuple[str, str, str] | None:
        """Retorna (client_id, client_secret, redirect_uri) ou None quando o provedor não está configurado."""
        prefix = provider.strip().lower()
        client_id = getattr(self, f"{prefix}_client_id", None)
        client_secret = getattr(self, f"{prefix}_client_secret", None)
        redirect_uri = getattr(self, f"{prefix}_redirect_uri", None)
        if not client_id or not client_secret or not redirect_uri:
            return None
        return client_id, client_secret, redirect_uri


@lru_cache
def get_settings() -> Settings:
    """Retorna a instância de configurações globais (cacheada)."""
    return Settings()
