import os


def _database_url():
    database_url = os.environ.get("DATABASE_URL", "sqlite:///taskkarwalo.db")

    # Fix for Heroku/Render postgres:// URLs (should be postgresql://)
    if database_url.startswith("postgres://"):
        database_url = database_url.replace("postgres://", "postgresql://", 1)
    return database_url


def _env_list(name, default):
    value = os.environ.get(name)
    if not value:
        return default
    return [item.strip() for item in value.split(",") if item.strip()]


def _env_bool(name, default):
    value = os.environ.get(name)
    if value is None:
        return default
    return value.lower() in ("1", "true", "yes", "on")


class Config:
    """Application settings, read from the environment once at import."""

    SECRET_KEY = os.environ.get("SESSION_SECRET", "taskkarwalo_secret_key")
    SQLALCHEMY_DATABASE_URI = _database_url()
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")
    TIMEZONE = os.environ.get("TIMEZONE", "Asia/Karachi")

    # Auth
    JWT_SECRET_KEY = os.environ.get("JWT_SECRET_KEY", "your-secret-key-here")
    JWT_ALGORITHM = "HS256"
    JWT_EXPIRES_DAYS = int(os.environ.get("JWT_EXPIRES_DAYS", 7))

    # Email
    SENDGRID_API_KEY = os.environ.get("SENDGRID_API_KEY")
    EMAIL_FROM = os.environ.get("EMAIL_FROM", "no-reply@taskkarwalo.com")
    FRONTEND_URL = os.environ.get("FRONTEND_URL", "http://localhost:5173")

    CORS_ORIGINS = _env_list("CORS_ORIGINS", [
        "http://localhost:5173",
        "http://localhost:8080",
        "http://127.0.0.1:5173",
    ])

    # Uploads
    UPLOAD_FOLDER = os.environ.get("UPLOAD_FOLDER", os.path.join(os.getcwd(), "uploads"))
    MAX_UPLOAD_BYTES = 2 * 1024 * 1024  # 2MB
    MAX_CONTENT_LENGTH = 32 * 1024 * 1024
    UPLOAD_MAX_RETRIES = 3
    UPLOAD_RETRY_BASE_DELAY = float(os.environ.get("UPLOAD_RETRY_BASE_DELAY", 1.0))
    IMAGE_MAX_DIMENSION = 1200
    IMAGE_QUALITY = 80

    # Commission
    COMMISSION_RATE = float(os.environ.get("COMMISSION_RATE", 0.05))
    COMMISSION_CYCLE_JOBS = int(os.environ.get("COMMISSION_CYCLE_JOBS", 5))

    # No-show strikes
    STRIKE_LIMIT = 3
    STRIKE_WINDOW_DAYS = 7
    SUSPENSION_HOURS = 48

    # Wrong guesses before an email or phone code is discarded
    MAX_CODE_ATTEMPTS = int(os.environ.get("MAX_CODE_ATTEMPTS", 5))

    # Customer location sharing
    LOCATION_ACCESS_HOURS = 2

    # Geocoding
    GEOCODER_URL = os.environ.get("GEOCODER_URL", "https://nominatim.openstreetmap.org")
    GEOCODER_USER_AGENT = os.environ.get("GEOCODER_USER_AGENT", "TaskKarwalo/1.0")
    GEOCODER_COUNTRY = os.environ.get("GEOCODER_COUNTRY", "pk")
    GEOCODER_TIMEOUT = 10

    # Notification stream
    NOTIFICATION_POLL_SECONDS = 2.0

    # Initial data
    SEED_INITIAL_DATA = _env_bool("SEED_INITIAL_DATA", True)
    ADMIN_EMAIL = os.environ.get("ADMIN_EMAIL", "admin@taskkarwalo.com")
    ADMIN_PASSWORD = os.environ.get("ADMIN_PASSWORD", "admin123")
