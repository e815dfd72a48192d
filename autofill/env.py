import os

from dotenv import load_dotenv

load_dotenv("dev.env")


def _flag(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


DB_NAME = os.getenv("DB_NAME")
DB_USER = os.getenv("DB_USER")
DB_PASSWORD = os.getenv("DB_PASSWORD")
DB_HOST = os.getenv("DB_HOST")
DB_PORT = os.getenv("DB_PORT")
OPENROUTER_API_KEY = os.getenv("OPENROUTER_API_KEY")
FALLBACK_MODEL = os.getenv("FALLBACK_MODEL", "openai/gpt-oss-120b")
MODEL = os.getenv("MODEL", "anthropic/claude-haiku-4.5")
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")

origins_str = os.getenv("ALLOWED_ORIGINS", "")
ALLOWED_ORIGINS = [
    origin.strip() for origin in origins_str.split(",") if origin.strip()
]

# Browser sessions
HEADLESS = _flag("HEADLESS", True)
VIEWPORT_WIDTH = int(os.getenv("VIEWPORT_WIDTH", "1400"))
VIEWPORT_HEIGHT = int(os.getenv("VIEWPORT_HEIGHT", "1400"))
SCREENSHOT_INTERVAL_SECONDS = float(os.getenv("SCREENSHOT_INTERVAL_SECONDS", "1.0"))

# Autofill
MAX_PAGE_FIELDS = int(os.getenv("MAX_PAGE_FIELDS", "300"))
AUTO_FILL_EEO = _flag("AUTO_FILL_EEO", False)
ALIASES_FILE = os.getenv("ALIASES_FILE")
