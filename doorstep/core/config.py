import os


def env_flag(name: str, default: str = "") -> bool:
    """Reads a boolean environment flag ("true", "1", "yes", "on")."""
    return os.getenv(name, default).strip().lower() in ("true", "1", "yes", "on")


def env_int(name: str, default: int, *fallbacks: str) -> int:
    """Reads an int from the first set variable among name and fallbacks."""
    for key in (name,) + fallbacks:
        raw = os.getenv(key, "").strip()
        if raw:
            try:
                return int(raw)
            except ValueError:
                continue
    return default


# Database Configuration
DB_URL = os.getenv("DATABASE_URL", "postgres://user:password@db:5432/doorstep_db")

# Shared key-value store for job locks and cross-instance realtime fan-out
REDIS_URL = os.getenv("REDIS_URL", "").strip() or None

# Application Metadata
PROJECT_NAME = "DoorStep Booking Core"
VERSION = "1.0.0"
APP_ENV = os.getenv("APP_ENV", "development").strip().lower()
IS_PRODUCTION = APP_ENV == "production"

# Scheduled jobs (standard 5-field crontab expressions)
CRON_TZ = os.getenv("CRON_TZ", "Asia/Kolkata")
BOOKING_EXPIRATION_CRON = os.getenv("BOOKING_EXPIRATION_CRON", "0 * * * *")  # hourly
PAYMENT_REMINDER_CRON = os.getenv("PAYMENT_REMINDER_CRON", "30 * * * *")  # hourly at :30
LOW_STOCK_DIGEST_CRON = os.getenv("LOW_STOCK_DIGEST_CRON", "0 8 * * *")  # 8 AM daily
DISABLE_SCHEDULER = env_flag("DISABLE_SCHEDULER")

# Job locks
JOB_LOCK_PREFIX = os.getenv("JOB_LOCK_PREFIX", "locks:jobs").strip()
JOB_LOCK_TTL_MS = env_int("JOB_LOCK_TTL_MS", 10 * 60 * 1000)
BOOKING_EXPIRATION_LOCK_TTL_MS = env_int("BOOKING_EXPIRATION_LOCK_TTL_MS", JOB_LOCK_TTL_MS)
PAYMENT_REMINDER_LOCK_TTL_MS = env_int("PAYMENT_REMINDER_LOCK_TTL_MS", JOB_LOCK_TTL_MS)
LOW_STOCK_DIGEST_LOCK_TTL_MS = env_int("LOW_STOCK_DIGEST_LOCK_TTL_MS", JOB_LOCK_TTL_MS)
DISABLE_JOB_LOCK = env_flag("DISABLE_JOB_LOCK")
# Outside production a missing lock store must not stop jobs from running
JOB_LOCK_FAIL_OPEN = env_flag("JOB_LOCK_FAIL_OPEN") or not IS_PRODUCTION

# Booking lifecycle thresholds
BOOKING_EXPIRATION_DAYS = env_int("BOOKING_EXPIRATION_DAYS", 7)
PAYMENT_REMINDER_DAYS = env_int("PAYMENT_REMINDER_DAYS", 3)
PAYMENT_DISPUTE_DAYS = env_int("PAYMENT_DISPUTE_DAYS", 7)

# Server-Sent Events
SSE_MAX_CONNECTIONS_PER_USER = env_int("SSE_MAX_CONNECTIONS_PER_USER", 5)
SSE_MAX_TOTAL_CONNECTIONS = env_int("SSE_MAX_TOTAL_CONNECTIONS", 10_000)
SSE_HEARTBEAT_SECONDS = env_int("SSE_HEARTBEAT_SECONDS", 30)
SSE_QUEUE_SIZE = env_int("SSE_QUEUE_SIZE", 100)
REALTIME_CHANNEL = os.getenv("REALTIME_CHANNEL", "realtime:events")
