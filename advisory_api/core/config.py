# advisory_api/core/config.py
import os
from urllib.parse import quote_plus

from dotenv import load_dotenv


def str_to_bool(value: str | None, default: bool = False) -> bool:
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def parse_csv(value: str | None) -> list[str]:
    if not value:
        return []
    return [v.strip() for v in value.split(",") if v.strip()]


def merge_unique(items: list[str]) -> list[str]:
    seen: set[str] = set()
    out: list[str] = []
    for v in items:
        if v in seen:
            continue
        seen.add(v)
        out.append(v)
    return out


class Settings:
    def __init__(self) -> None:
        # Only load .env for local/dev. In prod, env vars come from the deployment.
        self.ENV = os.getenv("ENV", "dev").strip().lower()  # dev | prod
        if self.ENV != "prod":
            load_dotenv()

        self.PROJECT_NAME = os.getenv("PROJECT_NAME", "Advisory Platform API")

        # ----------------------------
        # Database
        # ----------------------------
        # DATABASE_URL wins when set (sqlite for local experiments, managed Postgres URLs, ...)
        self.DATABASE_URL = os.getenv("DATABASE_URL", "").strip()
        self.DB_HOST = os.getenv("DB_HOST", "")
        self.DB_PORT = os.getenv("DB_PORT", "5432")
        self.DB_NAME = os.getenv("DB_NAME", "")
        self.DB_USER = os.getenv("DB_USER", "")
        self.DB_PASSWORD = os.getenv("DB_PASSWORD", "")
        self.DB_SSLMODE = os.getenv("DB_SSLMODE", "prefer").strip().lower()

        # ----------------------------
        # CORS
        # ----------------------------
        dev_defaults = [
            "http://localhost:3000",
            "http://127.0.0.1:3000",
        ]

        cors_from_env = parse_csv(os.getenv("CORS_ORIGINS"))
        if self.ENV == "prod":
            self.CORS_ORIGINS = merge_unique(cors_from_env)
        else:
            self.CORS_ORIGINS = merge_unique(cors_from_env + dev_defaults)

        # ----------------------------
        # Auth / JWT
        # ----------------------------
        self.JWT_SECRET = os.getenv("JWT_SECRET", "")
        self.JWT_ALGORITHM = os.getenv("JWT_ALGORITHM", "HS256")
        self.ACCESS_TOKEN_EXPIRE_MINUTES = int(os.getenv("ACCESS_TOKEN_EXPIRE_MINUTES", "15"))
        self.PASSWORD_RESET_TOKEN_EXPIRE_MINUTES = int(os.getenv("PASSWORD_RESET_TOKEN_EXPIRE_MINUTES", "15"))

        # ----------------------------
        # Refresh sessions
        # ----------------------------
        self.REFRESH_SESSION_TTL_DAYS = int(os.getenv("REFRESH_SESSION_TTL_DAYS", "30"))
        # Turning this off means access tokens stay valid after logout until they expire.
        self.SESSION_VALIDATION_ENABLED = str_to_bool(os.getenv("SESSION_VALIDATION_ENABLED"), default=True)

        # ----------------------------
        # Hashing
        # ----------------------------
        self.BCRYPT_ROUNDS = int(os.getenv("BCRYPT_ROUNDS", "10"))
        self.OTP_HASH_SCHEME = os.getenv("OTP_HASH_SCHEME", "bcrypt").strip().lower()
        self.SESSION_HASH_SCHEME = os.getenv("SESSION_HASH_SCHEME", "bcrypt").strip().lower()

        # ----------------------------
        # OTP
        # ----------------------------
        self.OTP_LENGTH = int(os.getenv("OTP_LENGTH", "6"))
        self.OTP_TTL_MINUTES = int(os.getenv("OTP_TTL_MINUTES", "10"))
        self.OTP_RESET_TTL_MINUTES = int(os.getenv("OTP_RESET_TTL_MINUTES", "10"))
        self.OTP_MAX_ATTEMPTS = int(os.getenv("OTP_MAX_ATTEMPTS", "5"))

        # ----------------------------
        # OTP delivery queue
        # ----------------------------
        self.OTP_QUEUE_BROKER_URL = os.getenv("OTP_QUEUE_BROKER_URL", "").strip()
        self.OTP_QUEUE_RESULT_BACKEND = os.getenv("OTP_QUEUE_RESULT_BACKEND", "").strip()
        self.OTP_QUEUE_NAME = os.getenv("OTP_QUEUE_NAME", "otp").strip() or "otp"
        self.OTP_DELIVERY_MAX_ATTEMPTS = int(os.getenv("OTP_DELIVERY_MAX_ATTEMPTS", "3"))
        self.OTP_DELIVERY_BACKOFF_SECONDS = int(os.getenv("OTP_DELIVERY_BACKOFF_SECONDS", "2"))
        # Completed/failed job results are kept for a bounded time only.
        self.OTP_JOB_RESULT_EXPIRES_SECONDS = int(os.getenv("OTP_JOB_RESULT_EXPIRES_SECONDS", str(24 * 3600)))
        # ...and at most this many per final state (SUCCESS / FAILURE) when a Redis result backend is set.
        self.OTP_JOB_HISTORY_MAX = int(os.getenv("OTP_JOB_HISTORY_MAX", "1000"))

        # ----------------------------
        # Social login
        # ----------------------------
        self.GOOGLE_CLIENT_ID = os.getenv("GOOGLE_CLIENT_ID", "").strip()

        # ----------------------------
        # SMS delivery (Twilio)
        # ----------------------------
        self.TWILIO_ENABLED = str_to_bool(os.getenv("TWILIO_ENABLED"), default=False)
        self.TWILIO_ACCOUNT_SID = os.getenv("TWILIO_ACCOUNT_SID", "")
        self.TWILIO_AUTH_TOKEN = os.getenv("TWILIO_AUTH_TOKEN", "")
        self.TWILIO_PHONE_NUMBER = os.getenv("TWILIO_PHONE_NUMBER", "")
        self.TWILIO_TIMEOUT_SECONDS = float(os.getenv("TWILIO_TIMEOUT_SECONDS", "10"))

        # ----------------------------
        # Email delivery
        # ----------------------------
        self.EMAIL_PROVIDER = os.getenv("EMAIL_PROVIDER", "resend").strip().lower()
        self.EMAIL_ENABLED = str_to_bool(os.getenv("EMAIL_ENABLED"), default=False)

        self.FROM_EMAIL = os.getenv("FROM_EMAIL", "")
        self.RESEND_API_KEY = os.getenv("RESEND_API_KEY", "")
        self.AWS_REGION = os.getenv("AWS_REGION", "")

        # SMTP (only relevant if EMAIL_PROVIDER=gmail/smtp)
        self.SMTP_HOST = os.getenv("SMTP_HOST", "")
        self.SMTP_PORT = int(os.getenv("SMTP_PORT", "587"))
        self.SMTP_USERNAME = os.getenv("SMTP_USERNAME", "")
        self.SMTP_PASSWORD = os.getenv("SMTP_PASSWORD", "")
        self.SMTP_FROM_EMAIL = os.getenv("SMTP_FROM_EMAIL", "")
        self.SMTP_USE_TLS = str_to_bool(os.getenv("SMTP_USE_TLS", "true"), default=True)
        self.SMTP_USE_SSL = str_to_bool(os.getenv("SMTP_USE_SSL", "false"), default=False)

        # ----------------------------
        # Password policy
        # ----------------------------
        self.PASSWORD_MIN_LENGTH = int(os.getenv("PASSWORD_MIN_LENGTH", "6"))

        # ----------------------------
        # Rate limiting
        # ----------------------------
        self.ENABLE_RATE_LIMITING = str_to_bool(os.getenv("ENABLE_RATE_LIMITING", "false"))
        self.AUTH_RATE_LIMIT = os.getenv("AUTH_RATE_LIMIT", "5/minute")

        self._validate_prod()

    def _validate_prod(self) -> None:
        if self.ENV != "prod":
            return

        missing: list[str] = []

        if not self.JWT_SECRET:
            missing.append("JWT_SECRET")
        if not self.DATABASE_URL:
            if not self.DB_HOST:
                missing.append("DB_HOST")
            if not self.DB_NAME:
                missing.append("DB_NAME")
            if not self.DB_USER:
                missing.append("DB_USER")
            if not self.DB_PASSWORD:
                missing.append("DB_PASSWORD")
        if not self.OTP_QUEUE_BROKER_URL:
            missing.append("OTP_QUEUE_BROKER_URL")

        if not self.CORS_ORIGINS:
            missing.append("CORS_ORIGINS")

        cors_joined = ",".join(self.CORS_ORIGINS)
        if "localhost" in cors_joined or "127.0.0.1" in cors_joined:
            raise RuntimeError("CORS_ORIGINS contains localhost/dev origins in prod")

        if self.BCRYPT_ROUNDS < 10:
            raise RuntimeError("BCRYPT_ROUNDS must be at least 10 in prod")

        if missing:
            raise RuntimeError(f"Missing required prod env vars: {', '.join(missing)}")

    @property
    def is_prod(self) -> bool:
        return self.ENV == "prod"

    @property
    def database_url(self) -> str:
        if self.DATABASE_URL:
            return self.DATABASE_URL
        encoded_password = quote_plus(self.DB_PASSWORD)
        return (
            f"postgresql+psycopg2://{self.DB_USER}:{encoded_password}"
            f"@{self.DB_HOST}:{self.DB_PORT}/{self.DB_NAME}"
            f"?sslmode={self.DB_SSLMODE}"
        )


settings = Settings()


def require_jwt_secret() -> None:
    if not settings.JWT_SECRET:
        raise RuntimeError("JWT_SECRET must be set")
