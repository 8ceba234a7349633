"""
Configuration for the comparables service and engine defaults.
"""

import os
from dataclasses import dataclass, field
from typing import Optional


@dataclass
class Config:
    """
    Service configuration.

    Every field defaults from an environment variable; engine defaults
    (page size, KNN, dedup buckets, price floor) are injected from here.
    """

    # Server
    host: str = field(default_factory=lambda: os.getenv("HOST", "127.0.0.1"))
    port: int = field(default_factory=lambda: int(os.getenv("PORT", "8000")))
    debug: bool = field(default_factory=lambda: os.getenv("DEBUG", "false").lower() == "true")
    log_level: str = field(default_factory=lambda: os.getenv("LOG_LEVEL", "INFO").upper())

    # Search
    page_size: int = field(default_factory=lambda: int(os.getenv("COMPS_PAGE_SIZE", "25")))

    # Scoring
    knn_k: int = field(default_factory=lambda: int(os.getenv("COMPS_KNN_K", "5")))
    knn_dist_cap_m: float = field(
        default_factory=lambda: float(os.getenv("COMPS_KNN_DIST_CAP_M", "2000"))
    )

    # Deduplication
    dedup_sqm_margin: int = field(
        default_factory=lambda: int(os.getenv("COMPS_DEDUP_SQM_MARGIN", "5"))
    )
    dedup_window_days: int = field(
        default_factory=lambda: int(os.getenv("COMPS_DEDUP_WINDOW_DAYS", "30"))
    )

    # Normalization
    price_floor: float = field(default_factory=lambda: float(os.getenv("COMPS_PRICE_FLOOR", "0")))

    # Data
    compsets_path: Optional[str] = field(default_factory=lambda: os.getenv("COMPSETS_PATH") or None)

    @classmethod
    def load(cls) -> "Config":
        """Read the current environment."""
        return cls()

    def to_dict(self) -> dict:
        """Convert config to dictionary."""
        return {
            "host": self.host,
            "port": self.port,
            "debug": self.debug,
            "log_level": self.log_level,
            "page_size": self.page_size,
            "knn_k": self.knn_k,
            "knn_dist_cap_m": self.knn_dist_cap_m,
            "dedup_sqm_margin": self.dedup_sqm_margin,
            "dedup_window_days": self.dedup_window_days,
            "price_floor": self.price_floor,
            "compsets_path": self.compsets_path,
        }
