"""
Configuration module - loads secrets from Google Secret Manager.
Falls back to environment variables for local development.
"""
import json
import logging
import os
from functools import lru_cache
from typing import Any, List, Optional

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings

logger = logging.getLogger(__name__)


def get_secret_from_gcp(secret_id: str, project_id: Optional[str] = None) -> Optional[str]:
    """
    Fetch secret from Google Secret Manager.
    Returns None if not available (fallback to env vars).
    """
    try:
        from google.cloud import secretmanager

        project = project_id or os.environ.get("GCP_PROJECT_ID") or os.environ.get("GOOGLE_CLOUD_PROJECT")
        if not project:
            return None

        client = secretmanager.SecretManagerServiceClient()
        name = f"projects/{project}/secrets/{secret_id}/versions/latest"
        response = client.access_secret_version(request={"name": name})
        return response.payload.data.decode("UTF-8")
    except Exception as e:
        logger.debug(f"Could not fetch secret {secret_id} from Secret Manager: {e}")
        return None


class Settings(BaseSettings):
    """Application settings with Secret Manager integration."""

    # GCP
    gcp_project_id: str = Field(default="", alias="GCP_PROJECT_ID")
    oauth_client_id: str = Field(default="", alias="OAUTH_CLIENT_ID")

    # Supabase (service key, ownership is enforced in the service layer)
    supabase_url: str = Field(default="", alias="SUPABASE_URL")
    supabase_service_key: str = Field(default="", alias="SUPABASE_SERVICE_KEY")

    # GCS
    gcs_bucket: str = Field(default="", alias="GCS_BUCKET")
    gcs_signed_url_expiration_minutes: int = Field(default=10, alias="GCS_SIGNED_URL_EXPIRATION_MINUTES")

    # Resend (Email)
    resend_api_key: str = Field(default="", alias="RESEND_API_KEY")
    resend_from_email: str = Field(default="sign@signflow.app", alias="RESEND_FROM_EMAIL")
    resend_from_name: str = Field(default="SignFlow", alias="RESEND_FROM_NAME")

    # App
    app_base_url: str = Field(default="http://localhost:8000", alias="APP_BASE_URL")
    sign_app_url: str = Field(default="", alias="SIGN_APP_URL")
    admin_api_secret: str = Field(default="", alias="ADMIN_API_SECRET")

    # Signing workflow
    recipient_token_ttl_days: int = Field(
        default=30,
        alias="RECIPIENT_TOKEN_TTL_DAYS",
        description="Fixed validity window of a recipient link from issuance or regeneration",
    )
    position_conflict_threshold: float = Field(
        default=0.20,
        alias="POSITION_CONFLICT_THRESHOLD",
        description="Relative overlap above which two fields on a page are reported as conflicting",
    )
    final_pdf_link_ttl_hours: int = Field(
        default=24,
        alias="FINAL_PDF_LINK_TTL_HOURS",
        description="Validity of download links in the final document email",
    )
    signing_view_link_ttl_minutes: int = Field(
        default=60,
        alias="SIGNING_VIEW_LINK_TTL_MINUTES",
        description="Validity of document links handed to a signer",
    )
    max_upload_bytes: int = Field(default=25 * 1024 * 1024, alias="MAX_UPLOAD_BYTES")

    # Environment
    environment: str = Field(default="development", alias="ENVIRONMENT")
    debug: bool = Field(default=False, alias="DEBUG")

    # CORS
    allowed_origins: List[str] = Field(default=[], alias="ALLOWED_ORIGINS")

    @field_validator("allowed_origins", mode="before")
    @classmethod
    def _parse_allowed_origins(cls, v: Any) -> List[str]:
        """Parse ALLOWED_ORIGINS from JSON list, CSV, semicolon-separated string, or list."""
        if v is None:
            return []
        if isinstance(v, list):
            return v
        if isinstance(v, str):
            s = v.strip()
            if not s:
                return []
            if s.startswith("["):
                try:
                    return json.loads(s)
                except json.JSONDecodeError:
                    pass
            # Semicolon is useful in Cloud Build where comma separates env vars
            parts = [p.strip() for p in s.replace(",", ";").split(";")]
            return [p for p in parts if p]
        return []

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        extra = "ignore"
        populate_by_name = True

    def __init__(self, **kwargs):
        super().__init__(**kwargs)
        self._load_secrets_from_gcp()

    def _load_secrets_from_gcp(self):
        """Override settings with values from Secret Manager if available."""
        if not (self.gcp_project_id or os.environ.get("GOOGLE_CLOUD_PROJECT")):
            return

        secret_mappings = {
            "supabase_url": "SUPABASE_URL",
            "supabase_service_key": "SUPABASE_SERVICE_KEY",
            "gcs_bucket": "GCS_BUCKET",
            "resend_api_key": "RESEND_API_KEY",
            "admin_api_secret": "ADMIN_API_SECRET",
            "oauth_client_id": "OAUTH_CLIENT_ID",
        }

        for attr, secret_id in secret_mappings.items():
            secret_value = get_secret_from_gcp(secret_id, self.gcp_project_id)
            if secret_value:
                setattr(self, attr, secret_value)
                logger.info(f"Loaded {secret_id} from Secret Manager")

    @model_validator(mode="after")
    def validate_urls(self) -> "Settings":
        """Validate URL configuration for the environment."""
        if self.environment == "production" and not self.app_base_url.startswith("https://"):
            logger.warning(
                f"Configuration Warning: APP_BASE_URL ('{self.app_base_url}') "
                f"does not start with 'https://' in a '{self.environment}' environment."
            )

        if self.environment == "production":
            if not self.sign_app_url:
                logger.error(
                    "CRITICAL: SIGN_APP_URL is not set in production! "
                    "Recipient links will use APP_BASE_URL which may be incorrect."
                )
            elif not self.sign_app_url.startswith("https://"):
                logger.error(
                    f"CRITICAL: SIGN_APP_URL ('{self.sign_app_url}') must use HTTPS in production!"
                )

        if not 0 < self.position_conflict_threshold <= 1:
            raise ValueError("POSITION_CONFLICT_THRESHOLD must be within (0, 1]")

        return self

    def get_sign_app_url(self) -> str:
        """
        Get the frontend signing app URL used in recipient emails.

        Falls back to app_base_url if SIGN_APP_URL not set (development only).
        """
        if self.sign_app_url:
            return self.sign_app_url.rstrip("/")

        if self.environment != "development":
            logger.warning(
                f"SIGN_APP_URL not set, falling back to APP_BASE_URL ({self.app_base_url}). "
                "This is likely incorrect for production!"
            )
        return self.app_base_url.rstrip("/")

    def build_signing_link(self, token: str) -> str:
        return f"{self.get_sign_app_url()}/sign/{token}"


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


# =============================================================================
# CORS Configuration
# =============================================================================

# Development origins (only in non-production)
DEV_CORS_ORIGINS = [
    "http://localhost:5173",
    "http://localhost:3000",
    "http://127.0.0.1:5173",
    "http://127.0.0.1:3000",
]


def get_cors_origins(settings: Optional[Settings] = None) -> List[str]:
    """
    Get list of allowed CORS origins.

    Combines origins from ALLOWED_ORIGINS and, outside production,
    the local development origins.
    """
    settings = settings or get_settings()
    origins = set(settings.allowed_origins)
    if settings.environment != "production":
        origins.update(DEV_CORS_ORIGINS)
    return sorted(origins)


def is_allowed_origin(origin: Optional[str], settings: Optional[Settings] = None) -> bool:
    """Check if an origin is allowed for CORS."""
    if not origin:
        return False

    settings = settings or get_settings()
    if origin in get_cors_origins(settings):
        return True

    if settings.environment != "production":
        if origin.startswith("http://localhost:") or origin.startswith("http://127.0.0.1:"):
            return True

    return False
