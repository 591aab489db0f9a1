"""
Engine configuration loaded from environment variables
"""
import os
from dataclasses import dataclass
from typing import Optional


def _env_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).lower() in ("1", "true", "yes")


@dataclass
class EngineSettings:
    """Runtime settings of the engine and its HTTP surface"""
    worker_pool_size: int = 8
    default_node_timeout: float = 300.0   # seconds
    max_active_executions: int = 1000
    store_retry_attempts: int = 5
    store_retry_delay: float = 0.2        # seconds
    plan_cache_size: int = 128
    database_url: Optional[str] = None    # None -> in-memory stores
    api_host: str = "0.0.0.0"
    api_port: int = 5678
    api_reload: bool = False
    log_level: str = "INFO"

    @classmethod
    def from_env(cls) -> "EngineSettings":
        """Build settings from the process environment"""
        return cls(
            worker_pool_size=int(os.getenv("WORKER_POOL_SIZE", "8")),
            default_node_timeout=float(os.getenv("DEFAULT_NODE_TIMEOUT", "300")),
            max_active_executions=int(os.getenv("MAX_ACTIVE_EXECUTIONS", "1000")),
            store_retry_attempts=int(os.getenv("STORE_RETRY_ATTEMPTS", "5")),
            store_retry_delay=float(os.getenv("STORE_RETRY_DELAY", "0.2")),
            plan_cache_size=int(os.getenv("PLAN_CACHE_SIZE", "128")),
            database_url=os.getenv("DATABASE_URL") or None,
            api_host=os.getenv("API_HOST", "0.0.0.0"),
            api_port=int(os.getenv("API_PORT", "5678")),
            api_reload=_env_bool("API_RELOAD", "false"),
            log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
        )
