# Complete settings for the signal relay
from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import BaseModel, Field, field_validator
from enum import Enum


class Environment(str, Enum):
    DEVELOPMENT = "development"
    PRODUCTION = "production"
    TESTING = "testing"


class LoggingSettings(BaseModel):
    # Core logging settings
    level: str = "INFO"
    json_format: bool = True

    # Console logging
    console_enabled: bool = True
    console_json_format: bool = False  # Plain text for console by default

    # File logging
    file_enabled: bool = False
    logs_dir: str = "logs"
    file_max_size: str = "50MB"
    file_backup_count: int = 5

    # Redaction
    redact_keys: list[str] = [
        "access_token", "access-token", "accesstoken", "authorization",
        "api_key", "api_secret", "password", "secret", "token",
    ]


class DhanSettings(BaseModel):
    """Dhan v2 REST endpoints and order defaults"""
    api_base_url: str = "https://api.dhan.co/v2"
    request_timeout_seconds: float = 10.0
    instrument_feed_url: str = "https://images.dhan.co/api-data/api-scrip-master-detailed.csv"
    exchange_segment: str = "NSE_EQ"
    product_type: str = "INTRADAY"
    order_type: str = "MARKET"


class InstrumentSettings(BaseModel):
    """Instrument catalog cache and resolution configuration"""
    cache_ttl_hours: float = 24.0
    exchange: str = "NSE"
    segment: str = "E"
    instrument_type: str = "EQUITY"
    resolve_attempts: int = 3
    retry_delay_seconds: float = 1.0


class DuplicateGuardSettings(BaseModel):
    retention_days: int = 30


class RebaseSettings(BaseModel):
    """Protective leg reconciliation timing"""
    initial_delay_seconds: float = 5.0
    retry_delay_seconds: float = 2.0
    inter_item_delay_seconds: float = 0.5
    inter_account_delay_seconds: float = 1.0
    max_attempts: int = 8
    completion_timeout_seconds: float = 30.0

    @field_validator("max_attempts")
    @classmethod
    def validate_max_attempts(cls, v):
        if v < 1:
            raise ValueError("max_attempts must be at least 1")
        return v


class PaperTradingSettings(BaseModel):
    slippage_percent: float = 0.05  # 0.05% adverse fill


class Settings(BaseSettings):
    """Main application settings, loaded from environment variables"""
    model_config = SettingsConfigDict(
        env_file=".env",
        env_nested_delimiter="__",
        case_sensitive=False,
        extra="ignore"
    )

    app_name: str = "Signal Relay"
    version: str = "1.0.0"
    environment: Environment = Environment.DEVELOPMENT

    # Broker used for order placement: "dhan" (live) or "paper" (simulated)
    active_broker: str = Field(
        default="paper",
        description="Brokerage gateway used by this deployment instance"
    )

    @field_validator("active_broker", mode="before")
    @classmethod
    def validate_active_broker(cls, v):
        """Validate that the broker is supported"""
        broker = str(v).strip().lower()
        if broker not in {"paper", "dhan"}:
            raise ValueError(f"Unsupported broker: {v}")
        return broker

    logging: LoggingSettings = LoggingSettings()
    dhan: DhanSettings = DhanSettings()
    instruments: InstrumentSettings = InstrumentSettings()
    duplicate_guard: DuplicateGuardSettings = DuplicateGuardSettings()
    rebase: RebaseSettings = RebaseSettings()
    paper_trading: PaperTradingSettings = PaperTradingSettings()

    @property
    def logs_dir(self) -> str:
        """Get logs directory"""
        return self.logging.logs_dir


# No global settings instance - use dependency injection instead
