from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Tunables of the checkout core. Every field can be overridden with a SHOP_* env var."""

    model_config = SettingsConfigDict(env_prefix="SHOP_", env_file=".env", extra="ignore")

    message_limit: int = 20
    message_window_seconds: int = 60
    order_limit: int = 5
    error_cooldown_seconds: int = 60
    session_ttl_seconds: int = 1800

    promo_default_max_uses: int = 100
    promo_data_dir: str = "data"
