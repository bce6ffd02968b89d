"""Central environment-driven settings for the registration service.

The API process loads this once at startup. Behavior is controlled by
environment variables (see `.env.example`).
"""

from pydantic_settings import BaseSettings, SettingsConfigDict


class CommonSettings(BaseSettings):
    """Typed view of runtime configuration from environment variables."""

    service_name: str = "chipledger-api"
    log_level: str = "INFO"
    postgres_dsn: str
    db_statement_timeout_ms: int = 5000
    redis_url: str = "redis://redis:6379/0"
    kafka_bootstrap_servers: str = "kafka:9092"
    otel_exporter_otlp_endpoint: str | None = "http://otel-collector:4318/v1/traces"
    jwt_secret: str
    stripe_secret_key: str | None = None
    stripe_webhook_secret: str | None = None
    provider_timeout_seconds: float = 10.0
    frontend_url: str = "http://localhost:8080"
    currency: str = "gbp"
    registration_price_pence: int = 2499
    transfer_fee_pence: int | None = None
    rate_limit_per_minute: int = 10
    outbox_publisher_enabled: bool = True
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    @property
    def effective_transfer_fee_pence(self) -> int:
        # Transfers cost the same as a registration unless priced separately.
        if self.transfer_fee_pence is None:
            return self.registration_price_pence
        return self.transfer_fee_pence


settings = CommonSettings()
