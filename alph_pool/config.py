from dataclasses import dataclass
import os
from dotenv import load_dotenv

# Load .env file if it exists
load_dotenv()


@dataclass
class Settings:
    # Defaults are replaced from the environment in __post_init__
    lock_duration: float = 600.0  # seconds before a found block is checked
    scan_block_interval: float = 60.0
    store_path: str = "data/pool.db"
    node_host: str = "127.0.0.1"
    node_port: int = 12973
    node_api_key: str = ""
    rpc_timeout: float = 10.0
    failure_alert_threshold: int = 5
    log_level: str = "INFO"
    verbose: bool = False  # Deprecated: use log_level instead
    enable_dashboard: bool = False
    dashboard_port: int = 8080
    discord_webhook: str = ""
    telegram_bot_token: str = ""
    telegram_chat_id: str = ""

    def __post_init__(self):
        """Load settings from environment variables at instance creation time"""
        self.lock_duration = float(os.getenv("LOCK_DURATION", "600"))
        self.scan_block_interval = float(os.getenv("SCAN_BLOCK_INTERVAL", "60"))
        self.store_path = os.getenv("STORE_PATH", "data/pool.db")
        self.node_host = os.getenv("NODE_HOST", "127.0.0.1")
        self.node_port = int(os.getenv("NODE_PORT", "12973"))
        self.node_api_key = os.getenv("NODE_API_KEY", "")
        try:
            self.rpc_timeout = float(os.getenv("RPC_TIMEOUT", "10"))
        except ValueError:
            self.rpc_timeout = 10.0
        try:
            self.failure_alert_threshold = int(
                os.getenv("FAILURE_ALERT_THRESHOLD", "5")
            )
        except ValueError:
            self.failure_alert_threshold = 5

        # Log level configuration (LOG_LEVEL takes precedence over VERBOSE)
        log_level_env = os.getenv("LOG_LEVEL", "").upper()
        if log_level_env:
            self.log_level = log_level_env
        else:
            self.verbose = os.getenv("VERBOSE", "false").lower() == "true"
            self.log_level = "DEBUG" if self.verbose else "INFO"

        # Dashboard settings
        self.enable_dashboard = os.getenv("ENABLE_DASHBOARD", "false").lower() == "true"
        self.dashboard_port = int(os.getenv("DASHBOARD_PORT", "8080"))
        # Notification settings
        self.discord_webhook = os.getenv("DISCORD_WEBHOOK_URL", "")
        self.telegram_bot_token = os.getenv("TELEGRAM_BOT_TOKEN", "")
        self.telegram_chat_id = os.getenv("TELEGRAM_CHAT_ID", "")

    @property
    def node_url(self) -> str:
        return f"http://{self.node_host}:{self.node_port}"
