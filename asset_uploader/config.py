# config.py
import os
from typing import Dict, List, Optional

from dotenv import load_dotenv
from pydantic import BaseModel, Field, field_validator

DEFAULT_PROBE_USER_AGENT = (
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
)
DEFAULT_PROBE_ACCEPT = "image/webp,image/apng,image/*,*/*;q=0.8"


class PlatformConfig(BaseModel):
    graphql_url: str
    access_token: str = ""
    token_header: str = "X-Shopify-Access-Token"

    def auth_headers(self) -> Dict[str, str]:
        if not self.access_token:
            return {}
        return {self.token_header: self.access_token}


class TransportConfig(BaseModel):
    timeout_seconds: float = 30.0
    probe_timeout_seconds: float = 10.0
    default_headers: Dict[str, str] = Field(default_factory=dict)
    probe_headers: Dict[str, str] = Field(
        default_factory=lambda: {
            "User-Agent": DEFAULT_PROBE_USER_AGENT,
            "Accept": DEFAULT_PROBE_ACCEPT,
        }
    )
    transfer_method: str = "POST"
    batch_registration: bool = True

    @field_validator("transfer_method")
    @classmethod
    def _check_method(cls, value: str) -> str:
        method = value.upper()
        if method not in ("PUT", "POST"):
            raise ValueError("transfer_method must be PUT or POST")
        return method


class ResolutionConfig(BaseModel):
    max_retries: int = 3
    backoff_base: float = 2.0
    version_offset_seconds: int = 300
    alternate_extensions: List[str] = Field(
        default_factory=lambda: [".jpg", ".jpeg", ".png", ".webp"]
    )


class UploaderSettings(BaseModel):
    platform: PlatformConfig
    transport: TransportConfig = Field(default_factory=TransportConfig)
    resolution: ResolutionConfig = Field(default_factory=ResolutionConfig)
    cors_origins: List[str] = Field(default_factory=lambda: ["*"])

    @classmethod
    def from_env(cls, env_file: Optional[str] = None) -> "UploaderSettings":
        """Build settings from the environment, after loading a .env file if present"""
        load_dotenv(env_file)

        graphql_url = os.getenv("PLATFORM_GRAPHQL_URL")
        if not graphql_url:
            raise ValueError("PLATFORM_GRAPHQL_URL is not set")

        platform = PlatformConfig(
            graphql_url=graphql_url,
            access_token=os.getenv("PLATFORM_ACCESS_TOKEN", ""),
            token_header=os.getenv("PLATFORM_TOKEN_HEADER", "X-Shopify-Access-Token"),
        )

        probe_headers = {
            "User-Agent": os.getenv("PROBE_USER_AGENT") or DEFAULT_PROBE_USER_AGENT,
            "Accept": DEFAULT_PROBE_ACCEPT,
        }
        transport = TransportConfig(
            timeout_seconds=float(os.getenv("HTTP_TIMEOUT_SECONDS", "30")),
            probe_timeout_seconds=float(os.getenv("PROBE_TIMEOUT_SECONDS", "10")),
            probe_headers=probe_headers,
            transfer_method=os.getenv("TRANSFER_METHOD", "POST"),
            batch_registration=_env_flag("BATCH_REGISTRATION", True),
        )

        resolution = ResolutionConfig(
            max_retries=int(os.getenv("RESOLUTION_MAX_RETRIES", "3")),
        )

        return cls(
            platform=platform,
            transport=transport,
            resolution=resolution,
            cors_origins=cors_origins_from_env(),
        )


def cors_origins_from_env() -> List[str]:
    origins = os.getenv("CORS_ORIGINS", "*")
    return [o.strip() for o in origins.split(",") if o.strip()]


def _env_flag(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}
