import os

import yaml
from pydantic import BaseModel
from pydantic_settings import BaseSettings


class FolderConfig(BaseModel):
    """Configuration for a single watched folder."""

    name: str
    path: str  # Local directory, e.g. /srv/handbook
    channel_id: str  # Channel the folder's documents are uploaded to
    include_patterns: list[str] = ["*"]
    exclude_patterns: list[str] = ["*.tmp", "~*", ".DS_Store", "Thumbs.db"]
    max_file_size_bytes: int = 52428800  # 50MB, the API's default limit


class UploaderSettings(BaseSettings):
    """Uploader configuration settings."""

    api_base_url: str = "http://localhost:8000"
    # Sent in the identity header; in production the auth proxy sets it instead
    identity: str = ""
    identity_header: str = "X-Auth-Request-Email"
    scan_interval_seconds: int = 600
    state_file: str = ".parley-uploader-state.json"
    register_retries: int = 3
    retry_backoff_seconds: float = 2.0
    request_timeout_seconds: float = 60.0

    # Folders are loaded from config file
    folders: list[FolderConfig] = []

    class Config:
        env_prefix = "PARLEY_UPLOADER_"
        env_file = ".env"

    @classmethod
    def from_yaml(cls, path: str) -> "UploaderSettings":
        """Load settings from a YAML config file."""
        with open(path) as f:
            data = yaml.safe_load(f) or {}

        # Convert folders to FolderConfig objects
        folders = [FolderConfig(**folder) for folder in data.get("folders", [])]

        def value(key: str, env: str | None = None):
            if env and env in os.environ:
                return os.environ[env]
            return data.get(key, cls.model_fields[key].default)

        return cls(
            api_base_url=value("api_base_url", "PARLEY_UPLOADER_API_BASE_URL"),
            identity=value("identity", "PARLEY_UPLOADER_IDENTITY"),
            identity_header=value("identity_header"),
            scan_interval_seconds=value("scan_interval_seconds"),
            state_file=value("state_file"),
            register_retries=value("register_retries"),
            retry_backoff_seconds=value("retry_backoff_seconds"),
            request_timeout_seconds=value("request_timeout_seconds"),
            folders=folders,
        )
