"""
Configuration management for the Agent Server.
Supports environment variables and config files.
"""
import os
from typing import List, Optional
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings with environment variable support."""

    # Server settings
    host: str = "0.0.0.0"
    port: int = 8000
    reload: bool = True

    # Logging
    log_level: str = "INFO"
    log_file: Optional[str] = "agent_server.log"

    # Conversation model (Ollama chat model with tool calling)
    agent_name: str = os.getenv("AGENT_NAME", "Ava")
    agent_model: str = os.getenv("AGENT_MODEL", "qwen2.5:7b")
    ollama_base_url: Optional[str] = os.getenv("OLLAMA_BASE_URL", None)
    agent_temperature: float = float(os.getenv("AGENT_TEMPERATURE", 0.2))
    agent_max_tokens: int = int(os.getenv("AGENT_MAX_TOKENS", 2048))
    model_timeout_seconds: float = float(os.getenv("MODEL_TIMEOUT_SECONDS", 60))

    # Turn limits
    max_tool_rounds: int = int(os.getenv("MAX_TOOL_ROUNDS", 3))
    history_window: int = int(os.getenv("HISTORY_WINDOW", 10))
    max_knowledge_chunks: int = int(os.getenv("MAX_KNOWLEDGE_CHUNKS", 3))
    execution_log_window: int = int(os.getenv("EXECUTION_LOG_WINDOW", 5))

    # Storage (sessions, records, notes, plans, knowledge chunks)
    database_path: str = os.getenv("DATABASE_PATH", "agent_server.db")
    session_timeout_minutes: int = int(os.getenv("SESSION_TIMEOUT_MINUTES", 30))
    session_history_limit: int = int(os.getenv("SESSION_HISTORY_LIMIT", 50))

    # Google Sheets (bookings + reference sheets)
    sheets_api_url: str = os.getenv("SHEETS_API_URL", "https://sheets.googleapis.com")
    sheets_access_token: Optional[str] = os.getenv("SHEETS_ACCESS_TOKEN", None)
    sheets_timeout_seconds: float = float(os.getenv("SHEETS_TIMEOUT_SECONDS", 10))
    read_retry_delay_seconds: float = float(os.getenv("READ_RETRY_DELAY_SECONDS", 0.5))

    # Configured sheets: [{"spreadsheet_id": "...", "range": "Sheet1", "use_when": "bookings"}]
    google_sheets: List[dict] = []

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"


settings = Settings()
