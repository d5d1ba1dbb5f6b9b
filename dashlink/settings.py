import os

from dotenv import load_dotenv
from pydantic import BaseModel, Field

load_dotenv()


# Cold-start budgets seen in the field: a short wake-up loop and a long
# free-tier spin-up of roughly 90 seconds.
COLD_START_PROFILES: dict[str, tuple[int, float]] = {
    "quick": (3, 5.0),
    "extended": (18, 5.0),
}


class Settings(BaseModel):
    # Backend Configuration
    api_base_url: str = Field(default="http://localhost:5000", alias="DASHLINK_API_URL")
    health_path: str = Field(default="/health", alias="DASHLINK_HEALTH_PATH")

    # Request Client Configuration
    cache_ttl_seconds: float = Field(default=300.0, alias="DASHLINK_CACHE_TTL")
    cache_max_size: int = Field(default=100, alias="DASHLINK_CACHE_MAX_SIZE")
    request_timeout_seconds: float = Field(
        default=30.0, alias="DASHLINK_REQUEST_TIMEOUT"
    )
    max_retries: int = Field(default=3, alias="DASHLINK_MAX_RETRIES")
    retry_base_delay_seconds: float = Field(
        default=1.0, alias="DASHLINK_RETRY_BASE_DELAY"
    )
    gate_on_availability: bool = Field(
        default=False, alias="DASHLINK_GATE_ON_AVAILABILITY"
    )

    # Availability Monitor Configuration
    probe_timeout_seconds: float = Field(default=10.0, alias="DASHLINK_PROBE_TIMEOUT")
    cold_start_profile: str = Field(default="quick", alias="DASHLINK_COLD_START_PROFILE")
    cold_start_max_attempts: int | None = Field(
        default=None, alias="DASHLINK_COLD_START_MAX_ATTEMPTS"
    )
    cold_start_interval_seconds: float | None = Field(
        default=None, alias="DASHLINK_COLD_START_INTERVAL"
    )
    healthy_poll_interval_seconds: float = Field(
        default=60.0, alias="DASHLINK_HEALTHY_POLL_INTERVAL"
    )

    debug: bool = Field(default=False, alias="DASHLINK_DEBUG")

    model_config = {"populate_by_name": True}

    def resolve_cold_start(self) -> tuple[int, float]:
        """Return (max_attempts, interval_seconds), explicit fields winning over the profile."""
        if self.cold_start_profile not in COLD_START_PROFILES:
            raise ValueError(
                f"Unknown cold start profile '{self.cold_start_profile}', "
                f"expected one of {sorted(COLD_START_PROFILES)}"
            )
        attempts, interval = COLD_START_PROFILES[self.cold_start_profile]
        if self.cold_start_max_attempts is not None:
            attempts = self.cold_start_max_attempts
        if self.cold_start_interval_seconds is not None:
            interval = self.cold_start_interval_seconds
        return attempts, interval


global_settings = Settings.model_validate(dict(os.environ))
