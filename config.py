import os
from dotenv import load_dotenv

load_dotenv()


def _env_flag(name: str, default: str = "false") -> bool:
    return os.getenv(name, default).strip().lower() in ("1", "true", "yes", "on")


# MongoDB
MONGODB_URL = os.getenv("MONGODB_URL", "mongodb://localhost:27017")
DATABASE_NAME = os.getenv("DATABASE_NAME", "kuji_board")
# Multi-document transactions need a replica set
MONGODB_TRANSACTIONS = _env_flag("MONGODB_TRANSACTIONS")
CHANGE_STREAMS_ENABLED = _env_flag("CHANGE_STREAMS_ENABLED")

# Security
SECRET_KEY = os.getenv("SECRET_KEY", "your-secret-key-here")
ALGORITHM = "HS256"
ACCESS_TOKEN_EXPIRE_MINUTES = int(os.getenv("ACCESS_TOKEN_EXPIRE_MINUTES", str(7 * 24 * 60)))

# Application
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
SITE_URL = os.getenv("SITE_URL", "")
CORS_ORIGINS = [origin.strip() for origin in os.getenv("CORS_ORIGINS", "*").split(",") if origin.strip()]
HOST = os.getenv("HOST", "0.0.0.0")
PORT = int(os.getenv("PORT", "8000"))

# Control room / overlay
DRAW_HISTORY_LIMIT = int(os.getenv("DRAW_HISTORY_LIMIT", "20"))
REVEAL_PRE_ROLL_SECONDS = float(os.getenv("REVEAL_PRE_ROLL_SECONDS", "0.5"))
