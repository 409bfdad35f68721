from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field
from pathlib import Path

# Get the absolute path to the project root
PROJECT_ROOT = Path(__file__).parent.parent.parent
DEFAULT_DB_PATH = str(PROJECT_ROOT / "databases" / "harvester.db")


class Settings(BaseSettings):
    """
    Centralized runtime configuration for the harvester services.
    All defaults are sensible for dev-mode; ops override via ENV.
    """
    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=True,
        populate_by_name=True,
        extra="ignore",
    )

    # --- Database ---
    harvester_db_path: str = Field(default=DEFAULT_DB_PATH, validation_alias="HARVESTER_DB_PATH")

    # --- RabbitMQ ---
    rabbitmq_host: str = Field(default="localhost", validation_alias="RABBITMQ_HOST")
    rabbitmq_port: int = Field(default=5672, validation_alias="RABBITMQ_PORT")
    rabbitmq_user: str = Field(default="guest", validation_alias="RABBITMQ_USER")
    rabbitmq_password: str = Field(default="guest", validation_alias="RABBITMQ_PASSWORD")
    rabbitmq_vhost: str = Field(default="/", validation_alias="RABBITMQ_VHOST")
    rabbitmq_queue: str = Field(default="scrape_jobs", validation_alias="RABBITMQ_QUEUE")

    # --- Queue signing keys (current/next pair for rotation) ---
    current_signing_key: str = Field(default="", validation_alias="CURRENT_SIGNING_KEY")
    next_signing_key: str = Field(default="", validation_alias="NEXT_SIGNING_KEY")

    # --- Job execution ---
    job_budget_seconds: float = Field(default=180.0, validation_alias="JOB_BUDGET_SECONDS")
    max_concurrent_jobs: int = Field(default=2, validation_alias="MAX_CONCURRENT_JOBS")

    # --- Browser ---
    browser_type: str = Field(default="chromium", validation_alias="BROWSER_TYPE")
    use_headless_browser: bool = Field(default=True, validation_alias="USE_HEADLESS_BROWSER")
    navigation_timeout_ms: int = Field(default=20000, validation_alias="NAVIGATION_TIMEOUT_MS")
    wait_after_submit_ms: int = Field(default=5000, validation_alias="WAIT_AFTER_SUBMIT_MS")

    # --- Program finder (scrape-one-URL endpoint) ---
    program_finder_url: str = Field(
        default="https://www.learntoskateusa.com/findaskatingprogram/#mapListings",
        validation_alias="PROGRAM_FINDER_URL",
    )
    program_finder_capture_pattern: str = Field(
        default="/umbraco/surface/Map/GetPointsFromSearch",
        validation_alias="PROGRAM_FINDER_CAPTURE_PATTERN",
    )


# Create a singleton instance
settings = Settings()
