"""
Flicker configuration
Everything is read once from the environment at import time
"""

import os
from dataclasses import dataclass
from typing import Optional

# Upstream generation API (Runway)
RUNWAYML_API_KEY = os.getenv("RUNWAYML_API_KEY", None)
RUNWAY_API_BASE = os.getenv("RUNWAY_API_BASE", "https://api.dev.runwayml.com/v1")
RUNWAY_API_VERSION = os.getenv("RUNWAY_API_VERSION", "2024-11-06")
RUNWAY_IMAGE_MODEL = os.getenv("RUNWAY_IMAGE_MODEL", "gen4_image")
RUNWAY_VIDEO_MODEL = os.getenv("RUNWAY_VIDEO_MODEL", "gen4_turbo")
UPSTREAM_TIMEOUT = float(os.getenv("UPSTREAM_TIMEOUT", 30))

# Job metadata store (optional, disabled when REDIS_HOST is unset)
REDIS_HOST = os.getenv("REDIS_HOST", None)
REDIS_PORT = int(os.getenv("REDIS_PORT", 6379))
REDIS_PASSWORD = os.getenv("REDIS_PASSWORD", None)
TASK_INFO_PREFIX = os.getenv("TASK_INFO_PREFIX", "task_info")
TASK_INFO_TTL = int(os.getenv("TASK_INFO_TTL", 86400))
REDIS_SOCKET_TIMEOUT = float(os.getenv("REDIS_SOCKET_TIMEOUT", 2.0))  # bounds every store call

# Client polling
POLL_INTERVAL = float(os.getenv("POLL_INTERVAL", 4.0))


@dataclass(frozen=True)
class GenerationDefaults:
    """Values used when a request leaves a generation parameter out"""
    ratio: str = "1280:720"
    duration: int = 5  # seconds, image-to-video only
    structure_strength: Optional[float] = None  # text-to-image only


DEFAULTS = GenerationDefaults()
