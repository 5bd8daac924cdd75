"""
Runtime configuration for the SwarmNode core.

Values come from explicit arguments first and fall back to environment
variables, the same way the Redis-backed components resolve ``REDIS_URL``.
"""

import os

from pydantic import BaseModel, Field


class SwarmConfig(BaseModel):
    """Fee parameters and service endpoints."""

    deployment_fee: int = Field(default=10, ge=0)
    min_reward: int = Field(default=1, ge=0)
    redis_url: str = "redis://localhost:6379"
    event_channel_prefix: str = "swarm:events"
    log_level: str = "INFO"

    @classmethod
    def from_env(cls, **overrides) -> "SwarmConfig":
        """
        Build a config from environment variables.

        Recognised variables:
            SWARM_DEPLOYMENT_FEE, SWARM_MIN_REWARD, REDIS_URL, SWARM_LOG_LEVEL
        """
        values = {}
        env_map = {
            "deployment_fee": "SWARM_DEPLOYMENT_FEE",
            "min_reward": "SWARM_MIN_REWARD",
            "redis_url": "REDIS_URL",
            "log_level": "SWARM_LOG_LEVEL",
        }
        for field, var in env_map.items():
            if var in os.environ:
                values[field] = os.environ[var]

        values.update(overrides)
        return cls.model_validate(values)
