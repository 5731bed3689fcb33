from functools import lru_cache
from typing import Dict, Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from cache.models import ChainContext


class ProxySettings(BaseSettings):
    """Process-wide proxy configuration, loaded once at startup."""

    # Chains
    DEFAULT_CHAIN_ID: str = "1"
    DEFAULT_BLOCK_DISTANCE: int = Field(default=100, ge=0)
    CHAIN_BLOCK_DISTANCES: Dict[str, int] = Field(default_factory=dict)

    # Upstream
    UPSTREAM_RPC_URL: str = "http://localhost:8545"
    UPSTREAM_RPC_URLS: Dict[str, str] = Field(default_factory=dict)
    UPSTREAM_TIMEOUT_SECONDS: float = Field(default=10.0, gt=0)

    # Cache tiers
    REDIS_URL: Optional[str] = None
    EPHEMERAL_MAX_ENTRIES: int = Field(default=10000, gt=0)

    # Server
    API_HOST: str = "0.0.0.0"
    API_PORT: int = 8000

    # Monitoring
    ENABLE_METRICS: bool = True
    LOG_LEVEL: str = "INFO"

    model_config = SettingsConfigDict(env_file=".env")

    @field_validator("CHAIN_BLOCK_DISTANCES")
    @classmethod
    def _margins_not_negative(cls, value: Dict[str, int]) -> Dict[str, int]:
        for chain_id, distance in value.items():
            if distance < 0:
                raise ValueError(f"Block distance for chain {chain_id} must not be negative")
        return value

    def block_distance_for(self, chain_id: str) -> int:
        return self.CHAIN_BLOCK_DISTANCES.get(chain_id, self.DEFAULT_BLOCK_DISTANCE)

    def upstream_url_for(self, chain_id: str) -> str:
        return self.UPSTREAM_RPC_URLS.get(chain_id, self.UPSTREAM_RPC_URL)

    def context_for(self, chain_id: Optional[str] = None) -> ChainContext:
        """Build the immutable per-request chain context."""
        chain_id = chain_id or self.DEFAULT_CHAIN_ID
        return ChainContext(
            chain_id=chain_id,
            safety_margin=self.block_distance_for(chain_id),
            default_margin=self.DEFAULT_BLOCK_DISTANCE,
        )


@lru_cache()
def get_settings() -> ProxySettings:
    """Return the process-wide settings instance."""
    return ProxySettings()
