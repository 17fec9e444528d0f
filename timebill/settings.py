import logging
import secrets

from pydantic_settings import BaseSettings, SettingsConfigDict

from timebill.identity import AuthConfig

logger = logging.getLogger(__name__)

_INSECURE_DEFAULT_KEY = "change-me-in-production"


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_prefix="TIMEBILL_", extra="ignore")

    db_url: str = "sqlite:///timebill.db"

    storage_backend: str = "local"
    storage_local_path: str = "./artifacts"
    storage_prefix: str = "timebill"

    s3_bucket: str = ""
    s3_region: str = ""
    s3_access_key_id: str = ""
    s3_secret_access_key: str = ""
    s3_endpoint_url: str = ""
    s3_presigned_expiry: int = 604800  # 7 days in seconds

    log_level: str = "INFO"
    log_json: bool = False

    timezone: str = "UTC"
    invoice_due_days: int = 30
    pay_period: str = "semimonthly"
    reject_overlapping_rates: bool = False
    outbox_max_attempts: int = 5

    environment: str = "production"
    secret_key: str = _INSECURE_DEFAULT_KEY
    dev_employee_id: int | None = None

    def get_secret_key(self) -> str:
        if self.secret_key == _INSECURE_DEFAULT_KEY:
            logger.warning(
                "TIMEBILL_SECRET_KEY is not set, using a random key. "
                "Identity tokens will not survive restarts. "
                "Set TIMEBILL_SECRET_KEY in your environment or .env file."
            )
            self.secret_key = secrets.token_urlsafe(32)
        return self.secret_key

    def auth_config(self) -> AuthConfig:
        return AuthConfig(
            signing_key=self.get_secret_key(),
            environment=self.environment,
            dev_employee_id=self.dev_employee_id,
        )


settings = Settings()
