# app/core/config.py
import os
from typing import List
from pydantic import BaseModel
from dotenv import load_dotenv
from urllib.parse import quote_plus

load_dotenv()


def _split_csv(value: str) -> List[str]:
    return [v.strip() for v in (value or "").split(",") if v.strip()]


def _flag(name: str, default: str = "false") -> bool:
    return os.getenv(name, default).lower() in {"1", "true", "yes"}


class Settings(BaseModel):
    PROJECT_NAME: str = os.getenv("PROJECT_NAME", "Site Sale & Inventory Ledger")
    API_V1_STR: str = os.getenv("API_V1_STR", "/api")
    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO")

    # CORS (env takes priority)
    BACKEND_CORS_ORIGINS: List[str] = _split_csv(
        os.getenv(
            "CORS_ORIGINS",
            "http://localhost:5173,http://127.0.0.1:5173",
        ))

    # ---------- MySQL ----------
    MYSQL_HOST: str = os.getenv("MYSQL_HOST", "localhost")
    MYSQL_PORT: int = int(os.getenv("MYSQL_PORT", "3306"))
    MYSQL_USER: str = os.getenv("MYSQL_USER", "ledger_user")
    MYSQL_PASSWORD: str = os.getenv("MYSQL_PASSWORD", "")
    MYSQL_DB: str = os.getenv("MYSQL_DB", "site_ledger")
    DB_DRIVER: str = os.getenv("DB_DRIVER", "pymysql")

    # DATABASE_URL wins over the MYSQL_* parts (tests point it at SQLite)
    DATABASE_URL: str = os.getenv(
        "DATABASE_URL",
        f"mysql+{DB_DRIVER}://{quote_plus(MYSQL_USER)}:{quote_plus(MYSQL_PASSWORD)}"
        f"@{MYSQL_HOST}:{MYSQL_PORT}/{MYSQL_DB}?charset=utf8mb4",
    )
    DB_POOL_SIZE: int = int(os.getenv("DB_POOL_SIZE", "10"))
    DB_MAX_OVERFLOW: int = int(os.getenv("DB_MAX_OVERFLOW", "20"))
    DB_POOL_RECYCLE: int = int(os.getenv("DB_POOL_RECYCLE", "280"))
    DB_ECHO: bool = _flag("DB_ECHO")

    # Upper bound for any row-lock wait inside a ledger transaction
    LEDGER_TX_TIMEOUT_SECONDS: int = int(
        os.getenv("LEDGER_TX_TIMEOUT_SECONDS", "15"))

    # ---------- Bill numbering ----------
    BILL_NO_PREFIX: str = os.getenv("BILL_NO_PREFIX", "SALE")
    BILL_NO_PADDING: int = int(os.getenv("BILL_NO_PADDING", "4"))
    # first attempt + one regeneration on a (site_id, bill_no) collision
    BILL_NO_MAX_ATTEMPTS: int = int(os.getenv("BILL_NO_MAX_ATTEMPTS", "2"))

    # ---------- Audit ----------
    AUDIT_SINK: str = os.getenv("AUDIT_SINK", "db")  # db | log

    # ---------- Security ----------
    JWT_SECRET: str = os.getenv("JWT_SECRET", "change-this")
    JWT_ALG: str = os.getenv("JWT_ALG", "HS256")


settings = Settings()
