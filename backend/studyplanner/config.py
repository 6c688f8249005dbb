# backend/studyplanner/config.py
"""
Runtime configuration, read once from the environment.

Other modules import this module (not the names) and read ``config.NAME`` at call
time, so values can be patched in tests.
"""

import os

DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./studyplanner.db")

# JWT config: two independent secrets so one leaked key cannot forge the other token kind
ACCESS_TOKEN_SECRET = os.getenv("ACCESS_TOKEN_SECRET", "CHANGE_ME_ACCESS_SECRET")
REFRESH_TOKEN_SECRET = os.getenv("REFRESH_TOKEN_SECRET", "CHANGE_ME_REFRESH_SECRET")
JWT_ALGORITHM = "HS256"
ACCESS_TOKEN_EXPIRE_MINUTES = int(os.getenv("ACCESS_TOKEN_EXPIRE_MINUTES", "15"))
REFRESH_TOKEN_EXPIRE_DAYS = int(os.getenv("REFRESH_TOKEN_EXPIRE_DAYS", "30"))
PASSWORD_HASH_ROUNDS = int(os.getenv("PASSWORD_HASH_ROUNDS", "12"))

RESET_CODE_EXPIRE_MINUTES = 10

ENVIRONMENT = os.getenv("ENVIRONMENT", "development")
REFRESH_COOKIE_NAME = "refreshToken"

CORS_ORIGINS = [o.strip() for o in os.getenv("CORS_ORIGINS", "http://localhost:8081").split(",") if o.strip()]

SMTP_HOST = os.getenv("SMTP_HOST")
SMTP_PORT = int(os.getenv("SMTP_PORT", "587"))
SMTP_USER = os.getenv("SMTP_USER")
SMTP_PASS = os.getenv("SMTP_PASS")
SMTP_FROM = os.getenv("SMTP_FROM", SMTP_USER)

# Syllabus workflow (n8n). "sync" completes jobs from the webhook response,
# "callback" waits for POST /uploads/webhook.
N8N_WEBHOOK_URL = os.getenv("N8N_WEBHOOK_URL")
N8N_WEBHOOK_MODE = os.getenv("N8N_WEBHOOK_MODE", "sync").lower()
N8N_WEBHOOK_TIMEOUT = float(os.getenv("N8N_WEBHOOK_TIMEOUT", "120"))
SIMULATED_PROCESSING_SECONDS = float(os.getenv("SIMULATED_PROCESSING_SECONDS", "3"))
JOB_TTL_SECONDS = int(os.getenv("JOB_TTL_SECONDS", "0"))  # 0 disables

MAX_UPLOAD_FILES = 10
MAX_UPLOAD_FILE_BYTES = 20 * 1024 * 1024
ALLOWED_UPLOAD_TYPES = {
    "application/pdf",
    "application/vnd.openxmlformats-officedocument.wordprocessingml.document",
}

LOG_LEVEL = (os.getenv("LOG_LEVEL", "INFO") or "INFO").strip().upper()
