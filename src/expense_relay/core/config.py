from __future__ import annotations

from pathlib import Path

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    environment: str = "dev"
    redis_url: str = "redis://localhost:6379/0"

    gemini_api_key: str | None = None
    gemini_model: str = "gemini-1.5-flash"
    gemini_base_url: str = "https://generativelanguage.googleapis.com/v1beta"
    gemini_timeout_seconds: float = 30.0
    gemini_temperature: float = 0.1

    default_currency: str = "USD"
    default_timezone: str = "UTC"

    google_sheets_id: str | None = None
    google_sheets_tab: str = "Expenses"
    google_service_account_json: str | None = None
    google_token_url: str = "https://oauth2.googleapis.com/token"

    local_csv_path: Path = Path("data/expenses.csv")

    # Comma-separated chat ids; empty means every chat is accepted.
    allowed_chat_ids: str = ""
    whatsapp_reply_enabled: bool = False
    whatsapp_self_messages_only: bool = True

    bridge_token: str | None = None
    bridge_reply_url: str | None = None
    bridge_timeout_seconds: float = 10.0


settings = Settings()
