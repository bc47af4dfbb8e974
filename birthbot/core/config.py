from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        extra="ignore",
        validate_assignment=True,
    )

    app_env: str = "dev"
    log_level: str = "INFO"

    whatsapp_verify_token: str
    whatsapp_access_token: str | None = None
    whatsapp_phone_number_id: str | None = None
    whatsapp_api_base_url: str = "https://graph.facebook.com"
    whatsapp_api_version: str = "v18.0"
    whatsapp_dry_run: bool = True  # Set to False in production to enable real sending

    admin_api_key: str | None = (
        None  # Optional - if not set, admin endpoints are unprotected (dev mode)
    )

    # Storage backend for sessions and application records ("memory" or "sql")
    store_backend: str = "memory"
    database_url: str = "sqlite:///:memory:"

    # Duplicate-suppression window for redelivered webhook messages
    dedup_window_seconds: int = 86400

    # Error classification
    error_frequency_threshold: int = 50  # Per-code count that triggers an operator warning
    user_retry_cap: int = 3  # Retryable classifications allowed per conversant and error code
    retry_counter_ttl_seconds: int = 600

    # Operator alerts (critical failures); logged only when unset
    operator_alert_webhook_url: str | None = None

    # OTP verification of the applicant's mobile number
    feature_otp_verification_enabled: bool = False
    otp_ttl_seconds: int = 300  # 5 minutes
    otp_max_attempts: int = 5  # Wrong codes before the outstanding one is discarded


# Settings will load from environment variables or .env file
# Required fields will raise ValidationError if missing (fail-fast)
settings = Settings()
