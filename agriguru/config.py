# agriguru/config.py
import os
from dotenv import load_dotenv
from pathlib import Path

from agriguru.errors import ConfigurationError

dotenv_path = Path(__file__).parents[1] / '.env'
load_dotenv(dotenv_path)


def _csv(name: str, default: str = "") -> list[str]:
    raw = os.getenv(name, default)
    return [part.strip() for part in raw.split(",") if part.strip()]


class Settings:
    # --- OpenAI ---
    OPENAI_API_KEY: str = os.getenv("OPENAI_API_KEY", "")
    OPENAI_MODEL: str   = os.getenv("OPENAI_MODEL", "gpt-4o-mini")
    LLM_TIMEOUT_SEC: float = float(os.getenv("LLM_TIMEOUT_SEC", "8"))

    # --- Data.gov.in (mandi) ---
    DATA_GOV_IN_API_KEY: str = os.getenv("DATA_GOV_IN_API_KEY", "")
    DATA_GOV_RESOURCE_ID: str = os.getenv("DATA_GOV_RESOURCE_ID", "9ef84268-d588-465a-a308-a864a43d0070")
    # "lower" -> filters[state], "title" -> filters[State]; the API has used both
    DATA_GOV_FIELD_STYLE: str = os.getenv("DATA_GOV_FIELD_STYLE", "lower")
    EXTERNAL_TIMEOUT_SEC: float = float(os.getenv("EXTERNAL_TIMEOUT_SEC", "15"))
    EXTERNAL_PAGE_SIZE: int = int(os.getenv("EXTERNAL_PAGE_SIZE", "500"))
    EXTERNAL_MAX_PAGES: int = int(os.getenv("EXTERNAL_MAX_PAGES", "4"))

    # --- Database ---
    DATABASE_URL: str = os.getenv("DATABASE_URL", "")
    DB_ECHO: bool = os.getenv("DB_ECHO", "0") == "1"

    # --- Pipeline knobs ---
    HISTORY_DAY_BUDGET: int = int(os.getenv("HISTORY_DAY_BUDGET", "14"))
    HISTORY_BATCH_SIZE: int = int(os.getenv("HISTORY_BATCH_SIZE", "7"))
    # 0 means unbounded backward scan in the cache tier
    CACHE_LOOKBACK_DAYS: int = int(os.getenv("CACHE_LOOKBACK_DAYS", "0"))
    RESOLVE_DEADLINE_SEC: float = float(os.getenv("RESOLVE_DEADLINE_SEC", "35"))
    TREND_DAYS: int = int(os.getenv("TREND_DAYS", "30"))

    # Fuzzy matching
    AUTO_ACCEPT_THRESHOLD: float = float(os.getenv("AUTO_ACCEPT_THRESHOLD", "0.75"))
    SUGGESTION_THRESHOLD: float  = float(os.getenv("SUGGESTION_THRESHOLD", "0.5"))

    # Nearby markets
    NEARBY_RADIUS_KM: float = float(os.getenv("NEARBY_RADIUS_KM", "100"))
    NEARBY_MAX_RESULTS: int = int(os.getenv("NEARBY_MAX_RESULTS", "10"))
    NEARBY_RESULT_CAP: int  = int(os.getenv("NEARBY_RESULT_CAP", "10"))
    NEARBY_MIN_COORD_HITS: int = int(os.getenv("NEARBY_MIN_COORD_HITS", "3"))
    GEOCODE_ENABLED: bool = os.getenv("GEOCODE_ENABLED", "1") == "1"

    # Ingestion
    RETENTION_DAYS: int = int(os.getenv("RETENTION_DAYS", "0"))
    INGEST_STATES: list[str] = _csv("INGEST_STATES", "Andhra Pradesh,Telangana,Karnataka,Tamil Nadu,Maharashtra")

    def require(self, *names: str) -> None:
        """Raise ConfigurationError naming every unset key in `names`."""
        missing = [n for n in names if not getattr(self, n, None)]
        if missing:
            raise ConfigurationError(f"{', '.join(missing)} not set in .env file")

settings = Settings()
