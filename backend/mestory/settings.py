from __future__ import annotations

from functools import lru_cache

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=None, extra="ignore")

    # Runtime
    environment: str = Field(default="development", validation_alias="NODE_ENV")
    port: int = Field(default=5000, validation_alias="PORT")

    # CORS / Frontend
    frontend_base_url: str = Field(
        default="http://localhost:5173", validation_alias="FRONTEND_BASE_URL"
    )
    frontend_url: str | None = Field(default=None, validation_alias="FRONTEND_URL")
    frontend_urls: str | None = Field(default=None, validation_alias="FRONTEND_URLS")

    # AWS / data
    aws_region: str = Field(default="us-east-1", validation_alias="AWS_REGION")
    ddb_table_name: str | None = Field(default=None, validation_alias="DDB_TABLE_NAME")
    assets_bucket_name: str | None = Field(
        default=None, validation_alias="ASSETS_BUCKET_NAME"
    )

    # Rate limiting (fixed window, per client ip)
    rate_limit_max_requests: int = Field(default=100, validation_alias="RATE_LIMIT_MAX_REQUESTS")
    rate_limit_window_seconds: int = Field(default=60, validation_alias="RATE_LIMIT_WINDOW_SECONDS")
    auth_rate_limit_max_requests: int = Field(default=5, validation_alias="AUTH_RATE_LIMIT_MAX_REQUESTS")
    auth_rate_limit_window_seconds: int = Field(
        default=900, validation_alias="AUTH_RATE_LIMIT_WINDOW_SECONDS"
    )
    ai_rate_limit_max_requests: int = Field(default=10, validation_alias="AI_RATE_LIMIT_MAX_REQUESTS")

    # Auth
    jwt_secret: str | None = Field(default=None, validation_alias="JWT_SECRET")
    jwt_expires_days: int = Field(default=60, validation_alias="JWT_EXPIRES_DAYS")
    jwt_issuer: str = Field(default="mestory-api", validation_alias="JWT_ISSUER")

    # Gemini (OpenAI-compatible endpoint)
    gemini_api_key: str | None = Field(default=None, validation_alias="GEMINI_API_KEY")
    gemini_base_url: str = Field(
        default="https://generativelanguage.googleapis.com/v1beta/openai/",
        validation_alias="GEMINI_BASE_URL",
    )
    gemini_model: str = Field(default="gemini-2.0-flash", validation_alias="GEMINI_MODEL")
    gemini_fallback_models: str | None = Field(
        default="gemini-1.5-flash", validation_alias="GEMINI_FALLBACK_MODELS"
    )
    gemini_model_quality: str | None = Field(default=None, validation_alias="GEMINI_MODEL_QUALITY")
    gemini_model_writing: str | None = Field(default=None, validation_alias="GEMINI_MODEL_WRITING")
    gemini_model_design: str | None = Field(default=None, validation_alias="GEMINI_MODEL_DESIGN")
    # Guardrail: clamp max output tokens.
    ai_max_output_tokens_cap: int = Field(default=4000, validation_alias="AI_MAX_OUTPUT_TOKENS_CAP")

    # Images / speech
    stability_api_key: str | None = Field(default=None, validation_alias="STABILITY_API_KEY")
    google_tts_api_key: str | None = Field(default=None, validation_alias="GOOGLE_TTS_API_KEY")
    elevenlabs_api_key: str | None = Field(default=None, validation_alias="ELEVENLABS_API_KEY")

    # Payments
    paypal_client_id: str | None = Field(default=None, validation_alias="PAYPAL_CLIENT_ID")
    paypal_client_secret: str | None = Field(default=None, validation_alias="PAYPAL_CLIENT_SECRET")
    paypal_mode: str = Field(default="sandbox", validation_alias="PAYPAL_MODE")
    paypal_mock: bool = Field(default=False, validation_alias="PAYPAL_MOCK")
    standard_plan_price: float = Field(default=25.0, validation_alias="STANDARD_PLAN_PRICE")
    premium_plan_price: float = Field(default=65.0, validation_alias="PREMIUM_PLAN_PRICE")
    standard_plan_credits: int = Field(default=500, validation_alias="STANDARD_PLAN_CREDITS")
    premium_plan_credits: int = Field(default=-1, validation_alias="PREMIUM_PLAN_CREDITS")

    # Email (SES)
    ses_from_email: str | None = Field(default=None, validation_alias="SES_FROM_EMAIL")

    # Observability
    otel_enabled: bool = Field(default=False, validation_alias="OTEL_ENABLED")
    otel_service_name: str = Field(default="mestory-backend", validation_alias="OTEL_SERVICE_NAME")
    otel_exporter_otlp_endpoint: str | None = Field(
        default=None, validation_alias="OTEL_EXPORTER_OTLP_ENDPOINT"
    )

    @property
    def normalized_environment(self) -> str:
        v = str(self.environment or "").strip().lower()
        if v in ("prod", "production"):
            return "production"
        if v in ("stage", "staging"):
            return "staging"
        if v in ("dev", "development", "local"):
            return "development"
        return v or "development"

    @property
    def is_production(self) -> bool:
        return self.normalized_environment == "production"

    @property
    def is_development(self) -> bool:
        return self.normalized_environment == "development"

    @property
    def paypal_mock_mode(self) -> bool:
        """Mock orders are used in development or when explicitly requested."""
        return bool(self.paypal_mock) or self.is_development

    @property
    def paypal_api_base(self) -> str:
        if str(self.paypal_mode or "").strip().lower() == "live":
            return "https://api-m.paypal.com"
        return "https://api-m.sandbox.paypal.com"

    def require_in_production(self) -> None:
        """
        Enforce required settings in production.

        Development/staging may run with partial config for local work.
        """
        if not self.is_production:
            return

        missing: list[str] = []

        if not self.jwt_secret:
            missing.append("JWT_SECRET")
        if not self.ddb_table_name:
            missing.append("DDB_TABLE_NAME")
        if not self.gemini_api_key:
            missing.append("GEMINI_API_KEY")
        if not self.paypal_mock and not (self.paypal_client_id and self.paypal_client_secret):
            missing.append("PAYPAL_CLIENT_ID / PAYPAL_CLIENT_SECRET (or PAYPAL_MOCK)")

        if missing:
            raise RuntimeError(
                "Missing required production environment variables: "
                + ", ".join(missing)
            )

    def to_log_safe_dict(self) -> dict[str, object]:
        """
        A redacted representation safe for structured logs / diagnostics.
        """
        def _has(v: object) -> bool:
            return v is not None and str(v).strip() != ""

        return {
            "environment": self.normalized_environment,
            "port": self.port,
            "frontend": {
                "frontend_base_url": self.frontend_base_url,
                "frontend_url": self.frontend_url,
                "frontend_urls": self.frontend_urls,
            },
            "aws": {
                "aws_region": self.aws_region,
                "ddb_table_name": self.ddb_table_name,
                "assets_bucket_name": self.assets_bucket_name,
            },
            "auth": {
                "jwt_secret_configured": _has(self.jwt_secret),
                "jwt_expires_days": self.jwt_expires_days,
            },
            "integrations": {
                "gemini_api_key_configured": _has(self.gemini_api_key),
                "gemini_model": self.gemini_model,
                "stability_configured": _has(self.stability_api_key),
                "google_tts_configured": _has(self.google_tts_api_key),
                "elevenlabs_configured": _has(self.elevenlabs_api_key),
                "paypal_mode": self.paypal_mode,
                "paypal_mock_mode": self.paypal_mock_mode,
                "paypal_configured": _has(self.paypal_client_id) and _has(self.paypal_client_secret),
                "ses_from_email": self.ses_from_email if _has(self.ses_from_email) else None,
            },
        }

    def gemini_model_for(self, purpose: str) -> str:
        # Allow per-purpose override, else fall back to GEMINI_MODEL.
        purpose = (purpose or "").strip().lower()
        override_map = {
            "quality_analysis": self.gemini_model_quality,
            "manuscript_analysis": self.gemini_model_quality,
            "writing_guidance": self.gemini_model_writing,
            "suggestions": self.gemini_model_writing,
            "enhance_text": self.gemini_model_writing,
            "synopsis": self.gemini_model_writing,
            "titles": self.gemini_model_writing,
            "typography": self.gemini_model_design,
            "layout": self.gemini_model_design,
            "cover_design": self.gemini_model_design,
            "image_placements": self.gemini_model_design,
            "image_prompt": self.gemini_model_design,
        }
        ov = override_map.get(purpose)
        if ov and str(ov).strip():
            return str(ov).strip()
        return str(self.gemini_model or "gemini-2.0-flash").strip() or "gemini-2.0-flash"


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    s = Settings()
    s.require_in_production()
    return s


settings = get_settings()
