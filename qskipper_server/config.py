"""Runtime configuration read from the environment."""

import os
from pathlib import Path

from pydantic import BaseModel, Field

DEFAULT_BASE_URL = "https://qskipperbackend.onrender.com"

# Timeouts in seconds
DEFAULT_TIMEOUT = 30.0
JSON_UPLOAD_TIMEOUT = 60.0
MULTIPART_UPLOAD_TIMEOUT = 120.0

# GET /get_all_product responses are reused for this long
RESPONSE_CACHE_TTL = 30.0

# Image cache bounds
MAX_MEMORY_CACHE_BYTES = 32 * 1024 * 1024
MAX_DISK_CACHE_BYTES = 200 * 1024 * 1024


class Settings(BaseModel):
    """Settings shared by the MCP server, the HTTP server and the client core."""

    base_url: str = Field(default=DEFAULT_BASE_URL, description="Backend base URL")
    session_file: str = Field(
        default_factory=lambda: str(Path.home() / ".qskipper_session.json"),
        description="Key-value file holding the persisted session",
    )
    cache_dir: str = Field(
        default_factory=lambda: str(Path.home() / ".cache" / "qskipper" / "images"),
        description="Directory of the on-disk image cache",
    )
    timeout: float = DEFAULT_TIMEOUT
    json_upload_timeout: float = JSON_UPLOAD_TIMEOUT
    multipart_upload_timeout: float = MULTIPART_UPLOAD_TIMEOUT
    response_cache_ttl: float = RESPONSE_CACHE_TTL
    max_memory_cache_bytes: int = MAX_MEMORY_CACHE_BYTES
    max_disk_cache_bytes: int = MAX_DISK_CACHE_BYTES
    log_level: str = "INFO"

    @classmethod
    def from_env(cls) -> "Settings":
        """Build settings from QSKIPPER_* environment variables."""
        values: dict = {}
        if os.getenv("QSKIPPER_BASE_URL"):
            values["base_url"] = os.environ["QSKIPPER_BASE_URL"].rstrip("/")
        if os.getenv("QSKIPPER_SESSION_FILE"):
            values["session_file"] = os.environ["QSKIPPER_SESSION_FILE"]
        if os.getenv("QSKIPPER_CACHE_DIR"):
            values["cache_dir"] = os.environ["QSKIPPER_CACHE_DIR"]
        if os.getenv("QSKIPPER_TIMEOUT"):
            values["timeout"] = float(os.environ["QSKIPPER_TIMEOUT"])
        if os.getenv("QSKIPPER_UPLOAD_TIMEOUT"):
            values["multipart_upload_timeout"] = float(os.environ["QSKIPPER_UPLOAD_TIMEOUT"])
        if os.getenv("QSKIPPER_RESPONSE_CACHE_TTL"):
            values["response_cache_ttl"] = float(os.environ["QSKIPPER_RESPONSE_CACHE_TTL"])
        values["log_level"] = os.getenv("QSKIPPER_LOG_LEVEL", "INFO").upper()
        return cls(**values)
