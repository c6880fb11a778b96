import os
from dotenv import load_dotenv

load_dotenv()

# Initialize Sentry early, before anything else imports
_sentry_dsn = os.getenv("SENTRY_DSN")
if _sentry_dsn:
    import sentry_sdk
    sentry_sdk.init(
        dsn=_sentry_dsn,
        traces_sample_rate=0.1,
        environment=os.getenv("FLASK_ENV", "production"),
    )


class Config:
    # Flask
    FLASK_SECRET_KEY = os.getenv("FLASK_SECRET_KEY", "aquamonitor-secret-key-change-in-production")
    DEBUG = os.getenv("FLASK_DEBUG", "False").lower() == "true"
    PORT = int(os.getenv("FLASK_PORT", "5001"))

    # Storage
    DATA_DIR = os.getenv("DATA_DIR", "data")
    DB_FILENAME = os.getenv("DB_FILENAME", "aquamonitor.db")

    # Listing
    DEFAULT_PAGE_SIZE = int(os.getenv("DEFAULT_PAGE_SIZE", "50"))
    MAX_PAGE_SIZE = int(os.getenv("MAX_PAGE_SIZE", "500"))

    # Amenity limits: fraction of a bound treated as the warning zone
    LIMIT_WARNING_MARGIN = float(os.getenv("LIMIT_WARNING_MARGIN", "0.025"))

    # Observability
    SENTRY_DSN = os.getenv("SENTRY_DSN")
    LOG_DIR = os.getenv("LOG_DIR", "logs")
    LOG_FORMAT = os.getenv("LOG_FORMAT", "text")  # "text" or "json"
