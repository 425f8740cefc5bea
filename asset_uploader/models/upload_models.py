# models/upload_models.py
from pydantic import BaseModel, ConfigDict, Field
from typing import List, NamedTuple, Optional, Tuple
from enum import Enum


class ResourceClass(str, Enum):
    IMAGE = "image"
    VIDEO = "video"
    FILE = "file"

    @property
    def platform_name(self) -> str:
        return _PLATFORM_NAMES[self]

    @property
    def mime_prefix(self) -> Optional[str]:
        return _MIME_PREFIXES[self]

    @classmethod
    def from_mime_type(cls, mime_type: str) -> "ResourceClass":
        """Pick the resource class whose MIME prefix matches, FILE otherwise"""
        lowered = (mime_type or "").strip().lower()
        for resource_class, prefix in _MIME_PREFIXES.items():
            if prefix and lowered.startswith(prefix):
                return resource_class
        return cls.FILE


_PLATFORM_NAMES = {
    ResourceClass.IMAGE: "IMAGE",
    ResourceClass.VIDEO: "VIDEO",
    ResourceClass.FILE: "FILE",
}

_MIME_PREFIXES = {
    ResourceClass.IMAGE: "image/",
    ResourceClass.VIDEO: "video/",
    ResourceClass.FILE: None,
}


class ResourceStatus(str, Enum):
    UPLOADED = "uploaded"
    PROCESSING = "processing"
    READY = "ready"
    FAILED = "failed"

    @classmethod
    def from_platform(cls, value: Optional[str]) -> "ResourceStatus":
        try:
            return cls((value or "").lower())
        except ValueError:
            return cls.PROCESSING


class UploadPhase(str, Enum):
    VALIDATE = "validate"
    NEGOTIATE = "negotiate"
    TRANSFER = "transfer"
    REGISTER = "register"


class ResolutionOutcome(str, Enum):
    ACCESSIBLE = "accessible"
    UNREACHABLE = "unreachable"
    ERROR = "error"


class FileDescriptor(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str
    mime_type: str
    byte_length: int
    resource_class: ResourceClass


class StagedParameter(NamedTuple):
    name: str
    value: str


class StagedTarget(BaseModel):
    """One-time upload destination; parameters stay in the order the platform signed them"""

    model_config = ConfigDict(frozen=True)

    upload_url: str
    resource_url: str
    parameters: Tuple[StagedParameter, ...] = ()


class Attachment(BaseModel):
    model_config = ConfigDict(frozen=True)

    data: bytes
    filename: str
    mime_type: str


class CreatedResource(BaseModel):
    id: str
    status: ResourceStatus
    delivery_url: Optional[str] = None
    dimensions: Optional[Tuple[int, int]] = None
    alt: Optional[str] = None
    created_at: Optional[str] = None


class UploadRequest(BaseModel):
    data: bytes
    filename: str
    mime_type: str
    alt_text: Optional[str] = None


class BatchItemResult(BaseModel):
    model_config = ConfigDict(arbitrary_types_allowed=True)

    index: int
    filename: str
    resource: Optional[CreatedResource] = None
    failed_phase: Optional[UploadPhase] = None
    error: Optional[Exception] = Field(default=None, exclude=True)

    @property
    def succeeded(self) -> bool:
        return self.resource is not None and self.error is None

    @property
    def error_message(self) -> Optional[str]:
        return str(self.error) if self.error is not None else None


class ProbeResult(BaseModel):
    url: str
    reachable: bool
    status_code: Optional[int] = None
    timed_out: bool = False
    error: Optional[str] = None

    @property
    def outcome(self) -> ResolutionOutcome:
        if self.reachable:
            return ResolutionOutcome.ACCESSIBLE
        if self.status_code is None:
            return ResolutionOutcome.ERROR
        return ResolutionOutcome.UNREACHABLE


class ResolutionAttempt(BaseModel):
    candidate_url: str
    strategy_name: str
    outcome: ResolutionOutcome


class ResolutionResult(BaseModel):
    original_url: str
    resolved_url: str
    resolved: bool
    strategy: Optional[str] = None
    attempts: List[ResolutionAttempt] = []


class UploadFromUrlRequest(BaseModel):
    url: str
    filename: str
    mime_type: str
    alt_text: Optional[str] = None
    user_agent: Optional[str] = None


class ResolveRequest(BaseModel):
    url: str
    resource_id: Optional[str] = None
    max_retries: Optional[int] = None


class ResolveFallbackRequest(BaseModel):
    url: str
    fallback_url: str
    resource_id: Optional[str] = None


class ResolveBatchRequest(BaseModel):
    urls: List[str]
    resource_ids: Optional[List[Optional[str]]] = None
