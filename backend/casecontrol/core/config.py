from pydantic_settings import BaseSettings, SettingsConfigDict
from typing import List, Optional
from pathlib import Path

# Find the backend directory (where .env is located)
BACKEND_DIR = Path(__file__).resolve().parent.parent.parent


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=str(BACKEND_DIR / ".env"),
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore"
    )

    # API Settings
    API_V1_STR: str = "/api/v1"
    PROJECT_NAME: str = "Case-Control Matcher"

    # Record conventions
    ID_FIELD: str = "id"

    # Engine defaults
    DEFAULT_CORES: int = 1
    RANDOM_SEED: Optional[int] = None

    # Columns treated as dates / integers by convert_dates() and compress()
    DATE_FIELDS: List[str] = [
        "eventdate", "sysdate", "lcd", "uts", "frd", "crd", "tod", "deathdate",
    ]
    INTEGER_FIELDS: List[str] = ["yob", "practid"]
    DATE_ORIGIN: str = "1970-01-01"


settings = Settings()
