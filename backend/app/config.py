from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    data_dir: Path = Path.home() / ".privtools"
    database_url: str | None = None
    base_url: str = "http://localhost:8000"
    api_prefix: str = "/api/v1"
    host: str = "127.0.0.1"
    port: int = 8000
    log_level: str = "INFO"

    # Abuse mitigation for link creation (sliding window).
    link_shortener_per_hour: int = Field(100, gt=0, le=10_000)
    link_shortener_global_per_hour: int = Field(10_000, gt=0, le=1_000_000)
    rate_limit_window_minutes: int = Field(60, gt=0, le=1440)

    # Code allocation guards.
    code_allocation_retries: int = Field(10, gt=0, le=100)
    max_concurrent_allocations: int = Field(50, gt=0, le=1000)
    lock_timeout_seconds: int = Field(10, gt=0, le=300)

    # Pruning of unused links.
    delete_unused_after_days: int = Field(90, gt=0, le=3650)
    prune_interval_seconds: int = Field(300, gt=0)
    prune_batch_size: int = Field(200, gt=0, le=10_000)

    max_url_length: int = Field(8192, gt=0)
    # Security: stored addresses are HMAC digests, never raw IPs.
    ip_hash_secret: str = "change-me"

    @property
    def db_path(self) -> Path:
        return self.data_dir / "privtools.db"

    @property
    def db_url(self) -> str:
        return self.database_url or f"sqlite:///{self.db_path}"

    model_config = {"env_prefix": "PRIVTOOLS_"}


settings = Settings()
