# backend/stampshop/config.py
from __future__ import annotations
import os


def _env_list(name: str, default: str) -> list[str]:
    raw = os.environ.get(name, default)
    return [item.strip() for item in raw.split(",") if item.strip()]


class Config:
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # SQLite file next to the instance folder unless DATABASE_URL points elsewhere
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL",
        "sqlite:///stampshop.sqlite3",
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")

    CORS_ALLOWED_ORIGINS = _env_list(
        "CORS_ALLOWED_ORIGINS",
        "http://localhost:5173,http://127.0.0.1:5173,http://localhost:4173,http://127.0.0.1:4173",
    )

    # Bootstrap account created by `flask system init`
    DEFAULT_ADMIN_USERNAME = os.environ.get("DEFAULT_ADMIN_USERNAME", "admin")
    DEFAULT_ADMIN_PASSWORD = os.environ.get("DEFAULT_ADMIN_PASSWORD", "ChangeMe123!")

    DEFAULT_PAGE_SIZE = int(os.environ.get("DEFAULT_PAGE_SIZE", "10"))
    MAX_PAGE_SIZE = int(os.environ.get("MAX_PAGE_SIZE", "100"))

    # Reporting heuristics
    ESTIMATED_PROFIT_MARGIN = float(os.environ.get("ESTIMATED_PROFIT_MARGIN", "0.3"))
    INVOICE_VAT_RATE = float(os.environ.get("INVOICE_VAT_RATE", "10"))

    # Printed on invoices
    COMPANY_NAME = os.environ.get("COMPANY_NAME", "CÔNG TY KHẮC DẤU ABC")
    COMPANY_ADDRESS = os.environ.get("COMPANY_ADDRESS", "123 Đường ABC, Quận XYZ, TP.HCM")
    COMPANY_PHONE = os.environ.get("COMPANY_PHONE", "0123456789")
    COMPANY_EMAIL = os.environ.get("COMPANY_EMAIL", "contact@khacdau.com")
    COMPANY_TAX_CODE = os.environ.get("COMPANY_TAX_CODE", "0123456789")
