from functools import lru_cache
from typing import List, Optional
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Configuración global de SAMAP Ventas.
    Lee automáticamente variables del archivo .env.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Proyecto
    project_name: str = "SAMAP Ventas API"
    api_v1_str: str = "/api/v1"
    debug: bool = False

    # Seguridad / JWT
    secret_key: str = "changeme"
    access_token_expire_minutes: int = 60
    algorithm: str = "HS256"

    # Base de datos
    database_url: str = "sqlite:///./samap.db"

    # CORS
    allowed_origins: List[str] = [
        "http://localhost:5173",
        "http://127.0.0.1:5173",
        "http://localhost:8000",
        "http://127.0.0.1:8000",
    ]

    # Logging
    log_level: str = "INFO"
    log_file: Optional[str] = None

    # E-mail (SMTP / SendGrid)
    email_backend: str = "smtp"
    smtp_host: Optional[str] = None
    smtp_port: int = 587
    smtp_username: Optional[str] = None
    smtp_password: Optional[str] = None
    smtp_sender: Optional[str] = None
    smtp_starttls: bool = True
    sendgrid_api_key: Optional[str] = None

    # Twilio (SMS / WhatsApp)
    twilio_account_sid: Optional[str] = None
    twilio_auth_token: Optional[str] = None
    twilio_from_number: Optional[str] = None
    twilio_messaging_service_sid: Optional[str] = None
    twilio_whatsapp_from: Optional[str] = None

    # Proveedor de firma electrónica (API compatible con SignWell)
    signwell_api_base: str = "https://www.signwell.com/api/v1"
    signwell_api_key: Optional[str] = None
    signwell_timeout_seconds: float = 30.0

    # URL pública (enlaces enviados a los clientes)
    public_app_url: str = "http://localhost:5173"

    # Enlaces de firma
    signature_link_expiration_days: int = 7
    reminder_window_hours: int = 24
    resend_grace_hours: int = 24

    # Automatización
    automation_enabled: bool = False
    automation_interval_seconds: int = 3600
    automation_max_workers: int = 4

    # Almacenamiento
    samap_storage: str = "_storage"
    s3_endpoint_url: Optional[str] = None
    s3_access_key: Optional[str] = None
    s3_secret_key: Optional[str] = None
    s3_bucket_documents: str = "samap-documents"

    def resolved_public_app_url(self) -> str:
        """URL base pública usada en los enlaces de firma y cuestionario."""
        return (self.public_app_url or "").strip().rstrip("/")


@lru_cache
def get_settings() -> Settings:
    """Devuelve la instancia global de configuración (cacheada)."""
    return Settings()


settings = get_settings()
