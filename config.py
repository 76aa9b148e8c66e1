from pydantic_settings import BaseSettings, SettingsConfigDict
from typing import Optional

class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env.local", env_file_encoding="utf-8", extra="ignore")

    # Firebase
    GOOGLE_APPLICATION_CREDENTIALS: Optional[str] = None
    FIREBASE_CREDENTIALS_JSON_STRING: Optional[str] = None

    # Model cascade (ordered, comma separated "<provider>/<model>"; bare names are openai)
    LLM_MODEL_CASCADE: str = "openai/gpt-4o-mini,gemini/gemini-2.0-flash,openai/gpt-4.1-mini"
    LLM_TIMEOUT_SECONDS: float = 20.0
    # jittered wait after a throttled (429 / quota) model before the next candidate
    LLM_BACKOFF_MIN_SECONDS: float = 0.5
    LLM_BACKOFF_MAX_SECONDS: float = 2.0

    # OpenAI
    OPENAI_API_KEY: Optional[str] = None
    OPENAI_BASE_URL: Optional[str] = None

    # Gemini
    GEMINI_API_KEY: Optional[str] = None

    # Matching
    MATCH_MAX_CANDIDATES: int = 30  # prompt size bound
    MATCH_FALLBACK_MIN_SCORE: int = 40  # local heuristic keeps scores strictly above this
    COMPARE_DUPLICATE_THRESHOLD: float = 0.9  # title & description jaccard for the pinned 99 result
    MATCH_CACHE_DIR: Optional[str] = "cache/matches"  # None -> in-memory only

    # Chat
    CHAT_MAX_MESSAGE_CHARS: int = 1000

    CORS_ALLOWED_ORIGINS: str = "http://localhost:3000,http://127.0.0.1:3000,https://localhost:3000"


settings = Settings()
