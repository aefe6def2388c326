"""Application configuration loaded from environment variables."""
import os
from pathlib import Path
from dotenv import load_dotenv

load_dotenv()

BASE_DIR = Path(__file__).resolve().parent.parent.parent


class Settings:
    # SQLite DB URL
    DATABASE_URL: str = os.getenv(
        "DATABASE_URL", f"sqlite:///{BASE_DIR / 'gd_ledger.db'}"
    )

    # API server
    API_HOST: str = os.getenv("API_HOST", "0.0.0.0")
    API_PORT: int = int(os.getenv("API_PORT", "8000"))

    # Logging
    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO")
    LOG_FILE: str = os.getenv("LOG_FILE", "logs/app.log")

    # CORS
    CORS_ORIGINS: list[str] = [
        o.strip()
        for o in os.getenv(
            "CORS_ORIGINS", "http://localhost:5173,http://localhost:3000"
        ).split(",")
    ]

    # Costing defaults – callers may pass their own rate per request
    INCOME_TAX_RATE: float = float(os.getenv("INCOME_TAX_RATE", "0.35"))
    SALES_TAX_RATE: float = float(os.getenv("SALES_TAX_RATE", "0.18"))
    # Share of the nominal retail margin kept when the suggested price overshoots retail
    RETAIL_MARGIN_SHARE: float = float(os.getenv("RETAIL_MARGIN_SHARE", "0.9"))

    # Withholding defaults by customer filer status
    FILER_WITHHOLDING_RATE: float = float(os.getenv("FILER_WITHHOLDING_RATE", "0.005"))
    NON_FILER_WITHHOLDING_RATE: float = float(
        os.getenv("NON_FILER_WITHHOLDING_RATE", "0.01")
    )

    def __init__(self):
        # Ensure the log directory exists
        if self.LOG_FILE:
            Path(self.LOG_FILE).parent.mkdir(parents=True, exist_ok=True)


settings = Settings()
