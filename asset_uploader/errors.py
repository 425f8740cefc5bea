# errors.py
from typing import List, Optional


class AssetUploaderError(Exception):
    """Base class for every error raised by asset_uploader"""


class ValidationError(AssetUploaderError):
    """Malformed local input (empty attachment, missing policy parameters, ...)"""


class TransportError(AssetUploaderError):
    """The HTTP exchange itself failed (connection, TLS, timeout)"""

    def __init__(self, message: str, timed_out: bool = False):
        super().__init__(message)
        self.timed_out = timed_out


class PlatformError(AssetUploaderError):
    """The platform API answered, but not with usable data"""


class PlatformHTTPError(PlatformError):
    def __init__(self, message: str, status_code: int, response_body: Optional[str] = None):
        super().__init__(message)
        self.status_code = status_code
        self.response_body = response_body


class PlatformGraphQLError(PlatformError):
    """An `errors` array came back inside a successful HTTP response"""

    def __init__(self, messages: List[str]):
        super().__init__("GraphQL errors: " + "; ".join(messages))
        self.messages = messages


class NegotiationError(AssetUploaderError):
    """The platform refused to allocate a staged upload target"""

    def __init__(self, message: str, messages: Optional[List[str]] = None):
        super().__init__(message)
        self.messages = list(messages or [])


class TransferError(AssetUploaderError):
    """The storage endpoint rejected or failed the multipart upload"""

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        response_body: Optional[str] = None,
    ):
        super().__init__(message)
        self.status_code = status_code
        self.response_body = response_body


class RegistrationError(AssetUploaderError):
    """The platform rejected resource creation from the staged resource URL"""

    def __init__(self, message: str, messages: Optional[List[str]] = None):
        super().__init__(message)
        self.messages = list(messages or [])


class ResolutionExhausted(AssetUploaderError):
    """Every recovery strategy and retry failed to produce a reachable URL"""

    def __init__(self, url: str, attempts: Optional[list] = None):
        super().__init__(f"No reachable delivery URL found for {url}")
        self.url = url
        self.attempts = list(attempts or [])
