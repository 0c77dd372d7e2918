from pathlib import Path

from pydantic_settings import BaseSettings

ZEN_PERSONA = """You are Zen, a cute and wholesome AI wellness companion. Your personality is:
- Warm, encouraging, and positive
- Supportive but not pushy
- Focused on mental health and daily wellness habits
- Uses gentle, caring language
- Celebrates small wins and progress
- Provides motivation for meditation, exercise, and self-care
- Offers gentle reminders about professional help when needed

Keep responses concise, friendly, and focused on wellness. Always radiate positivity and be genuinely supportive."""


class Settings(BaseSettings):
    app_name: str = "Zen Wellness Companion"
    debug: bool = False

    # LLM
    llm_provider: str = "gemini"  # gemini
    llm_model: str = "gemini-2.0-flash"
    gemini_api_key: str = ""
    system_prompt: str = ZEN_PERSONA

    # Relay
    max_duration: float = 30.0  # seconds, whole call

    # Server
    host: str = "0.0.0.0"
    port: int = 8000
    cors_origins: list[str] = ["*"]

    # Terminal client
    relay_url: str = "http://localhost:8000/api/chat"

    model_config = {
        "env_file": str(Path(__file__).resolve().parent.parent.parent / ".env"),
        "env_prefix": "ZEN_",
    }


settings = Settings()
