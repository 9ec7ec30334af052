import os
from dotenv import load_dotenv

# Load .env file if it exists
load_dotenv()


def env_int(name: str, default: int, allow_zero: bool = False) -> int:
    raw = os.getenv(name, "")
    try:
        value = int(str(raw).strip())
    except (TypeError, ValueError):
        return default
    if value < 0 or (value == 0 and not allow_zero):
        return default
    return value


def env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name, "").strip().lower()
    if raw == "":
        return default
    return raw in ("1", "true", "yes", "on")


def env_csv(name: str, default: list[str]) -> list[str]:
    raw = os.getenv(name, "")
    values = [v.strip().lower() for v in raw.split(",") if v.strip()]
    return values or list(default)


class Settings:
    # -------------------------------------------------------
    # Project
    # -------------------------------------------------------
    PROJECT_NAME: str = "Espai Genealogic API"
    ENV: str = os.getenv("ENV", "dev")
    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO").upper()

    # -------------------------------------------------------
    # Database
    # -------------------------------------------------------
    DATABASE_URL: str = os.getenv(
        "DATABASE_URL",
        "sqlite:///./espai.db"
    )

    # Hosted Postgres hands out postgres:// but SQLAlchemy needs postgresql://
    if DATABASE_URL.startswith("postgres://"):
        DATABASE_URL = DATABASE_URL.replace("postgres://", "postgresql://", 1)

    # -------------------------------------------------------
    # Authentication / JWT
    # -------------------------------------------------------
    SECRET_KEY: str = os.getenv(
        "SECRET_KEY",
        "supersecretlocalkey123"   # Only used for local dev
    )
    ALGORITHM: str = "HS256"

    # 1 day token expiry by default
    ACCESS_TOKEN_EXPIRE_MINUTES: int = env_int("ACCESS_TOKEN_EXPIRE_MINUTES", 60 * 24)

    # -------------------------------------------------------
    # Background loops
    # -------------------------------------------------------
    BACKGROUND_WORKERS_ENABLED: bool = env_bool("BACKGROUND_WORKERS_ENABLED", True)

    # -------------------------------------------------------
    # GEDCOM uploads
    # -------------------------------------------------------
    GEDCOM_ROOT: str = os.getenv("GEDCOM_ROOT", "").strip() or "./data/espai/gedcom"
    GEDCOM_MAX_UPLOAD_MB: int = env_int("GEDCOM_MAX_UPLOAD_MB", 50)

    # -------------------------------------------------------
    # Import worker
    # -------------------------------------------------------
    ESP_IMPORT_WORKER_POLL_SECONDS: int = env_int("ESP_IMPORT_WORKER_POLL_SECONDS", 5)
    ESP_IMPORT_WORKER_BATCH: int = env_int("ESP_IMPORT_WORKER_BATCH", 10)
    ESP_IMPORT_MAX_PER_OWNER: int = env_int("ESP_IMPORT_MAX_PER_OWNER", 1, allow_zero=True)  # 0 = unlimited

    # -------------------------------------------------------
    # Gramps integration
    # -------------------------------------------------------
    ESP_GRAMPS_SYNC_INTERVAL_MINUTES: int = env_int("ESP_GRAMPS_SYNC_INTERVAL_MINUTES", 60)
    ESP_GRAMPS_SYNC_BACKOFF_MINUTES: int = env_int("ESP_GRAMPS_SYNC_BACKOFF_MINUTES", 5)
    ESP_GRAMPS_HTTP_TIMEOUT_SECONDS: int = env_int("ESP_GRAMPS_HTTP_TIMEOUT_SECONDS", 20)
    ESP_GRAMPS_SECRET: str = os.getenv("ESP_GRAMPS_SECRET", "")

    # -------------------------------------------------------
    # Matching
    # -------------------------------------------------------
    ESP_MATCH_MAX_CANDIDATES: int = env_int("ESP_MATCH_MAX_CANDIDATES", 25)
    ESP_MATCH_MIN_SCORE: int = env_int("ESP_MATCH_MIN_SCORE", 60, allow_zero=True)
    ESP_MATCH_WEIGHT_NAME: int = env_int("ESP_MATCH_WEIGHT_NAME", 40, allow_zero=True)
    ESP_MATCH_WEIGHT_SURNAME: int = env_int("ESP_MATCH_WEIGHT_SURNAME", 30, allow_zero=True)
    ESP_MATCH_WEIGHT_DATE: int = env_int("ESP_MATCH_WEIGHT_DATE", 15, allow_zero=True)
    ESP_MATCH_WEIGHT_PLACE: int = env_int("ESP_MATCH_WEIGHT_PLACE", 10, allow_zero=True)
    ESP_MATCH_WEIGHT_RELATIONS: int = env_int("ESP_MATCH_WEIGHT_RELATIONS", 5, allow_zero=True)

    # -------------------------------------------------------
    # Media & credits
    # -------------------------------------------------------
    MEDIA_ROOT: str = os.getenv("MEDIA_ROOT", "").strip() or "./data/media"
    MEDIA_MAX_UPLOAD_MB: int = env_int("MEDIA_MAX_UPLOAD_MB", 200)
    MEDIA_ALLOWED_MIME: list[str] = env_csv(
        "MEDIA_ALLOWED_MIME",
        ["image/jpeg", "image/png", "image/tiff"],
    )
    MEDIA_GRANT_HOURS: int = env_int("MEDIA_GRANT_HOURS", 24)
    MEDIA_POINTS_BASE: int = env_int("MEDIA_POINTS_BASE", 10, allow_zero=True)
    MEDIA_POINTS_K: int = env_int("MEDIA_POINTS_K", 2, allow_zero=True)
    MEDIA_POINTS_PER_CREDIT: int = env_int("MEDIA_POINTS_PER_CREDIT", 10)

    # -------------------------------------------------------
    # Maintenance banner
    # -------------------------------------------------------
    MAINTENANCE_CACHE_SECONDS: int = env_int("MAINTENANCE_CACHE_SECONDS", 30)


# Single instance that is imported everywhere
settings = Settings()
