from functools import lru_cache
from typing import List, Optional

from pydantic_settings import BaseSettings, SettingsConfigDict

from app.core.errors import ConfigurationError


class Settings(BaseSettings):
    """
    Configurações globais da API do plano de saúde pet.
    Lê automaticamente variáveis do arquivo .env.
    """

    # Configuração base
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Projeto
    project_name: str = "UNIPET Plan API"
    api_v1_str: str = "/api"
    debug: bool = False
    environment: str = "development"

    # Segurança / JWT
    secret_key: str = "changeme"
    access_token_expire_minutes: int = 60
    algorithm: str = "HS256"

    # Banco de dados
    database_url: str = "sqlite:///./dev.db"

    # CORS
    allowed_origins: List[str] = [
        "http://localhost:5173",
        "http://127.0.0.1:5173",
        "http://localhost:3000",
        "http://127.0.0.1:3000",
    ]

    # Gateway de pagamento (Cielo)
    cielo_merchant_id: Optional[str] = None
    cielo_merchant_key: Optional[str] = None
    cielo_api_url: str = "https://apisandbox.cieloecommerce.cielo.com.br"
    cielo_query_url: str = "https://apiquerysandbox.cieloecommerce.cielo.com.br"
    cielo_timeout_seconds: float = 30.0
    cielo_webhook_secret: Optional[str] = None
    cielo_soft_descriptor: str = "UNIPET"

    # Checkout / PIX
    checkout_polling_header: str = "X-Checkout-Polling"
    pix_polling_window_minutes: int = 10
    pix_expiration_hours: int = 24
    max_card_installments: int = 12

    # Régua de cobrança
    suspension_days: int = 15
    cancellation_days: int = 60
    reminder_days_ahead: int = 3
    overdue_notice_days: List[int] = [1, 3, 7, 15, 30]

    # Armazenamento local
    receipts_dir: str = "_storage/receipts"

    def is_production(self) -> bool:
        return (self.environment or "").strip().lower() == "production"

    def gateway_configured(self) -> bool:
        return bool(self.cielo_merchant_id and self.cielo_merchant_key)


@lru_cache
def get_settings() -> Settings:
    """Retorna a instância de configurações globais (cacheada)."""
    return Settings()


def validate_runtime_settings(current: Settings) -> None:
    """Em produção, segredos ausentes impedem a subida da aplicação."""
    if not current.is_production():
        return
    missing: list[str] = []
    if not current.secret_key or current.secret_key == "changeme":
        missing.append("SECRET_KEY")
    if not current.cielo_merchant_id:
        missing.append("CIELO_MERCHANT_ID")
    if not current.cielo_merchant_key:
        missing.append("CIELO_MERCHANT_KEY")
    if missing:
        raise ConfigurationError(f"Missing required settings for production: {', '.join(missing)}")


settings = get_settings()
