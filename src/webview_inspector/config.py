from typing import Optional

from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_PORT = 9999
DEFAULT_SCREENSHOT_PATH = "/tmp/webview-inspector-screenshot.png"


class Settings(BaseSettings):
    # Bridge Settings
    host: str = "127.0.0.1"
    port: int = DEFAULT_PORT
    app_name: str = "webview-app"

    # Relay Settings
    queue_capacity: int = 32
    # Seconds to wait for the UI executor; None waits forever.
    eval_timeout: Optional[float] = 30.0

    screenshot_path: str = DEFAULT_SCREENSHOT_PATH
    log_level: str = "INFO"

    model_config = SettingsConfigDict(
        env_prefix="WEBVIEW_INSPECTOR_", env_file=".env", extra="ignore"
    )


settings = Settings()
