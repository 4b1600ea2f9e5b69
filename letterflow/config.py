"""
Letterflow - Configuration Management
"""
from pathlib import Path
from typing import List

from pydantic_settings import BaseSettings, SettingsConfigDict
from functools import lru_cache

from letterflow.errors import ConfigurationError


class Settings(BaseSettings):
    """Application settings"""

    # FastAPI
    fastapi_env: str = "development"
    fastapi_host: str = "0.0.0.0"
    fastapi_port: int = 8000
    run_background_workers: bool = True

    # Storage
    workflow_data_root: str = "/data/workflows"
    templates_dir: str = "/app/templates"
    letter_template: str = "letter_template.odt"

    # Watchers / trigger monitor
    watcher_poll_interval_seconds: float = 5.0
    trigger_poll_interval_seconds: float = 5.0
    stale_claim_seconds: int = 600

    # Queue health thresholds
    health_pending_threshold: int = 50
    health_failed_threshold: int = 10

    # Nango (OAuth broker for Zoho)
    nango_base_url: str = "https://api.nango.dev"
    nango_secret_key: str = ""
    nango_connection_id: str = ""
    nango_integration_id: str = "zoho-crm"
    nango_expiry_buffer_seconds: int = 60

    # Zoho CRM
    zoho_base_url: str = "https://www.zohoapis.eu"
    zoho_task_subject: str = "Connect on LinkedIn"
    zoho_task_status: str = "Nicht gestartet"
    zoho_task_owner_id: str = ""
    zoho_status_in_progress: str = "In Bearbeitung"
    zoho_status_error: str = "Warten auf Andere"
    zoho_status_completed: str = "Abgeschlossen"
    zoho_follow_up_subject: str = "Follow-up Brief"
    follow_up_days: int = 14

    # Baserow (LinkedIn profile store)
    baserow_base_url: str = "https://api.baserow.io"
    baserow_api_key: str = ""
    baserow_table_id: str = ""
    baserow_profile_id_field: int = 4866518

    # Generation / rendering services
    dossier_service_url: str = "http://localhost:8001"
    letter_service_url: str = "http://localhost:8002"
    pdf_service_url: str = "http://localhost:8003"
    pdf_page_limit_max_retries: int = 5

    # LetterExpress (physical mail)
    letterexpress_base_url: str = "https://api.letterxpress.de/v1"
    letterexpress_username: str = ""
    letterexpress_api_key: str = ""
    letterexpress_mode: str = "test"
    sender_name: str = ""
    sender_street: str = "Example Street 123"
    sender_city: str = "Example City"
    sender_state: str = "Example State"
    sender_postal_code: str = "12345"
    sender_country: str = "Germany"

    # Telegram (human approval channel)
    telegram_base_url: str = "https://api.telegram.org"
    telegram_bot_token: str = ""
    telegram_chat_id: str = ""

    # Logging
    log_level: str = "INFO"

    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=False
    )

    @property
    def data_root(self) -> Path:
        """Root directory of the approval queue"""
        return Path(self.workflow_data_root)

    @property
    def template_path(self) -> Path:
        """Full path to the letter template"""
        return Path(self.templates_dir) / self.letter_template

    def missing_credentials(self) -> List[str]:
        """Names of credentials required for live collaborators that are unset"""
        required = {
            "nango_secret_key": self.nango_secret_key,
            "nango_connection_id": self.nango_connection_id,
            "zoho_task_owner_id": self.zoho_task_owner_id,
            "baserow_api_key": self.baserow_api_key,
            "baserow_table_id": self.baserow_table_id,
            "telegram_bot_token": self.telegram_bot_token,
            "telegram_chat_id": self.telegram_chat_id,
        }
        return [name for name, value in required.items() if not value]

    def validate_required(self) -> None:
        """Raise ConfigurationError when live credentials are missing"""
        missing = self.missing_credentials()
        if missing:
            raise ConfigurationError(
                f"Missing required settings: {', '.join(sorted(missing))}"
            )


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance"""
    return Settings()
