"""
Pydantic model for application configuration.
Provides robust validation for all settings.
"""

from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field, field_validator

from cloudshelf.utils.formatting import parse_size

DEFAULT_MAX_CACHE_SIZE = 8 * 1024**3  # 8 GB, roughly an old iPod's worth
DEFAULT_CLOUD_STORAGE_DIR = str(Path("~/Library/CloudStorage").expanduser())


class CacheConfig(BaseModel):
    """A validated configuration model for the application."""

    model_config = ConfigDict(validate_assignment=True, str_strip_whitespace=True)

    # Cache budget & scheduling
    max_cache_size: int = DEFAULT_MAX_CACHE_SIZE
    eviction_interval: float = 300.0
    eviction_batch_size: int = 50

    # Download behaviour
    download_timeout: float = 60.0
    read_timeout: float = 30.0

    # Cloud provider layout
    cloud_storage_dir: str = DEFAULT_CLOUD_STORAGE_DIR
    provider_prefix: str = "ProtonDrive-"
    provider_suffix: str = "-folder"
    provider_name: str = "Proton Drive"

    # External eviction helper
    evict_helper: str = "fp-evict"
    helper_timeout: float = 120.0

    # Library database & audio server
    database_path: str = ""
    server_host: str = "127.0.0.1"
    server_port: int = 0

    # Internal fields not loaded from INI file
    config_path: str = Field(..., repr=False)

    @field_validator("max_cache_size", mode="before")
    @classmethod
    def validate_max_cache_size(cls, v: str | int) -> int:
        """Accepts raw byte counts as well as sizes like '8G' or '500MB'."""
        return parse_size(v)

    @field_validator("eviction_interval", "download_timeout", "read_timeout")
    @classmethod
    def validate_positive_seconds(cls, v: float) -> float:
        if v <= 0:
            raise ValueError("Intervals and timeouts must be greater than zero.")
        return v

    @field_validator("helper_timeout")
    @classmethod
    def validate_helper_timeout(cls, v: float) -> float:
        if v < 1:
            raise ValueError("Helper timeout must be at least 1 second.")
        return v

    @field_validator("eviction_batch_size")
    @classmethod
    def validate_batch_size(cls, v: int) -> int:
        """Keeps helper argument lists within sane limits."""
        if v < 1 or v > 500:
            raise ValueError("Eviction batch size must be between 1 and 500.")
        return v

    @field_validator("provider_prefix")
    @classmethod
    def validate_prefix(cls, v: str) -> str:
        if not v:
            raise ValueError("Provider prefix cannot be empty.")
        if "/" in v or "\\" in v:
            raise ValueError("Provider prefix must be a plain directory name prefix.")
        return v

    @field_validator("server_port")
    @classmethod
    def validate_port(cls, v: int) -> int:
        if v < 0 or v > 65535:
            raise ValueError("Server port must be between 0 and 65535.")
        return v

    @property
    def library_path(self) -> Path:
        """Location of the library database, defaulting to the config directory."""
        if self.database_path:
            return Path(self.database_path).expanduser()
        return Path(self.config_path) / "library.sqlite"

    @classmethod
    def get_ini_keys(cls) -> set[str]:
        """Returns a set of all keys that are expected in the INI file."""
        internal_fields = {"config_path"}
        return {key for key in cls.model_fields if key not in internal_fields}
