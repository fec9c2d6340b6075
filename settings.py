import logging
import os
from dataclasses import dataclass, field
from typing import List

from dotenv import load_dotenv

load_dotenv()

DEV_JWT_SECRET = "dev-secret"
DEV_REFRESH_SECRET = "dev-refresh-secret"

REQUIRED_VARS = [
    "DATABASE_URL",
    "JWT_SECRET_KEY",
    "REFRESH_SECRET_KEY",
    "STRIPE_API_KEY",
    "CLOUDINARY_CLOUD_NAME",
    "CLOUDINARY_API_KEY",
    "CLOUDINARY_API_SECRET",
]


def _origins() -> List[str]:
    origins = [o.strip() for o in os.getenv("ALLOWED_ORIGINS", "").split(",") if o.strip()]
    frontend = os.getenv("FRONTEND_URL")
    if frontend:
        origins.append(frontend)
    return origins or ["http://localhost:5173", "http://localhost:5174"]


@dataclass
class Settings:
    app_env: str = "development"
    database_url: str = ""
    database_name: str = "hotel_booking"
    jwt_secret_key: str = DEV_JWT_SECRET
    refresh_secret_key: str = DEV_REFRESH_SECRET
    access_token_ttl_seconds: int = 15 * 60
    refresh_token_ttl_seconds: int = 7 * 24 * 60 * 60
    bcrypt_rounds: int = 12
    stripe_api_key: str = ""
    payment_currency: str = "gbp"
    cloudinary_cloud_name: str = ""
    cloudinary_api_key: str = ""
    cloudinary_api_secret: str = ""
    allowed_origins: List[str] = field(default_factory=list)
    outbound_timeout_seconds: float = 30.0
    log_level: str = "INFO"
    port: int = 7002

    @classmethod
    def from_env(cls) -> "Settings":
        return cls(
            app_env=os.getenv("APP_ENV", "development"),
            database_url=os.getenv("DATABASE_URL") or os.getenv("MONGODB_CONNECTION_STRING", ""),
            database_name=os.getenv("DATABASE_NAME", "hotel_booking"),
            jwt_secret_key=os.getenv("JWT_SECRET_KEY", DEV_JWT_SECRET),
            refresh_secret_key=os.getenv("REFRESH_SECRET_KEY", DEV_REFRESH_SECRET),
            access_token_ttl_seconds=int(os.getenv("ACCESS_TOKEN_TTL_SECONDS", 15 * 60)),
            refresh_token_ttl_seconds=int(os.getenv("REFRESH_TOKEN_TTL_SECONDS", 7 * 24 * 60 * 60)),
            bcrypt_rounds=int(os.getenv("BCRYPT_ROUNDS", 12)),
            stripe_api_key=os.getenv("STRIPE_API_KEY", ""),
            payment_currency=os.getenv("PAYMENT_CURRENCY", "gbp"),
            cloudinary_cloud_name=os.getenv("CLOUDINARY_CLOUD_NAME", ""),
            cloudinary_api_key=os.getenv("CLOUDINARY_API_KEY", ""),
            cloudinary_api_secret=os.getenv("CLOUDINARY_API_SECRET", ""),
            allowed_origins=_origins(),
            outbound_timeout_seconds=float(os.getenv("OUTBOUND_TIMEOUT_SECONDS", 30)),
            log_level=os.getenv("LOG_LEVEL", "INFO"),
            port=int(os.getenv("PORT", 7002)),
        )

    @property
    def is_production(self) -> bool:
        return self.app_env == "production"

    def missing_vars(self) -> List[str]:
        values = {
            "DATABASE_URL": self.database_url,
            "JWT_SECRET_KEY": self.jwt_secret_key != DEV_JWT_SECRET and self.jwt_secret_key,
            "REFRESH_SECRET_KEY": self.refresh_secret_key != DEV_REFRESH_SECRET and self.refresh_secret_key,
            "STRIPE_API_KEY": self.stripe_api_key,
            "CLOUDINARY_CLOUD_NAME": self.cloudinary_cloud_name,
            "CLOUDINARY_API_KEY": self.cloudinary_api_key,
            "CLOUDINARY_API_SECRET": self.cloudinary_api_secret,
        }
        return [name for name in REQUIRED_VARS if not values[name]]

    def validate(self) -> None:
        """Refuse to run in production without the required environment."""
        missing = self.missing_vars()
        if not missing:
            return
        if self.is_production:
            raise RuntimeError("Missing required environment variables: " + ", ".join(missing))
        logging.getLogger(__name__).warning(
            "Missing environment variables (development defaults in use): %s", ", ".join(missing)
        )


settings = Settings.from_env()


def configure_logging() -> None:
    logging.basicConfig(
        level=settings.log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
