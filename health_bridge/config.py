"""Application configuration loaded from environment variables."""

from functools import lru_cache

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """All configuration is loaded from environment variables (or .env file).

    Every variable is prefixed with ``HEALTH_BRIDGE_`` (e.g.
    ``HEALTH_BRIDGE_HUAWEI_CLIENT_ID``).
    """

    # --- App ---
    app_name: str = "Health Bridge"
    app_version: str = "0.1.0"
    debug: bool = False
    log_level: str = "INFO"
    environment: str = "development"  # development | staging | production

    # --- Queries ---
    query_timeout_seconds: float = 30.0
    default_query_limit: int = 1000
    permission_probe_days: int = 30  # read-permission probe window (apple_health)
    huawei_max_query_days: int = 30  # on-device windows longer than this are clamped
    huawei_clamp_days: int = 28

    # --- Writes ---
    write_source_name: str = "Health Bridge App"

    # --- Huawei OAuth ---
    huawei_client_id: str = ""
    huawei_redirect_uri: str = ""
    huawei_scopes: list[str] = [
        "openid",
        "https://www.huawei.com/healthkit/step.read",
        "https://www.huawei.com/healthkit/bloodglucose.read",
        "https://www.huawei.com/healthkit/bloodpressure.read",
    ]
    huawei_authorize_url: str = "https://oauth-login.cloud.huawei.com/oauth2/v3/authorize"
    huawei_token_url: str = "https://oauth-login.cloud.huawei.com/oauth2/v3/token"
    oauth_timeout_seconds: float = 30.0

    # --- Huawei Health cloud API ---
    huawei_cloud_base_url: str = "https://health-api.cloud.huawei.com/healthkit"
    huawei_cloud_time_zone: str = "+0800"
    huawei_consent_lang: str = "en-us"

    # --- CORS ---
    cors_origins: list[str] = ["http://localhost:3000"]

    model_config = {
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "env_prefix": "HEALTH_BRIDGE_",
    }


@lru_cache
def get_settings() -> Settings:
    return Settings()
