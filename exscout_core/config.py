#!/usr/bin/env python3
from dataclasses import dataclass
import os
from pathlib import Path
from dotenv import load_dotenv

load_dotenv()

_DATA_PATH = os.getenv("EXSCOUT_DATA_PATH", "./data")


@dataclass
class Config:
    """Application configuration"""
    data_path: Path = Path(_DATA_PATH)
    patterns_db: Path = Path(os.getenv("EXSCOUT_PATTERNS_DB", os.path.join(_DATA_PATH, "patterns.sqlite")))
    enable_debug: bool = os.getenv("EXSCOUT_DEBUG", "false").lower() in ["true", "1", "yes"]
    db_timeout: float = float(os.getenv("EXSCOUT_DB_TIMEOUT", "30"))

    # Minimum-amount detection
    amount_cache_ttl_hours: float = float(os.getenv("EXSCOUT_AMOUNT_CACHE_TTL_HOURS", "24"))
    api_probe_timeout_ms: int = int(os.getenv("EXSCOUT_API_PROBE_TIMEOUT_MS", "5000"))
    ladder_max_iterations: int = int(os.getenv("EXSCOUT_LADDER_MAX_ITERATIONS", "15"))
    ladder_step_delay_ms: int = int(os.getenv("EXSCOUT_LADDER_STEP_DELAY_MS", "800"))
    validation_settle_ms: int = int(os.getenv("EXSCOUT_VALIDATION_SETTLE_MS", "1500"))

    # Form filling
    fill_settle_ms: int = int(os.getenv("EXSCOUT_FILL_SETTLE_MS", "1000"))

    # Network interception
    address_poll_ms: int = int(os.getenv("EXSCOUT_ADDRESS_POLL_MS", "500"))
    json_max_depth: int = int(os.getenv("EXSCOUT_JSON_MAX_DEPTH", "10"))

    @property
    def amount_cache_ttl_seconds(self) -> float:
        return self.amount_cache_ttl_hours * 3600


config = Config()
