# services/transport.py
"""Single request/response exchanges over httpx.

Every network call in the package goes through `HttpTransport.send`, so
timeouts and the split between "the exchange failed" (TransportError) and
"the exchange succeeded with a non-2xx status" (a TransportResponse the
caller inspects) live in one place.
"""
import json
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Mapping, Optional, Union

import httpx

from asset_uploader.config import TransportConfig
from asset_uploader.errors import TransportError

logger = logging.getLogger(__name__)


@dataclass
class TransportResponse:
    status_code: int
    content: bytes = b""
    headers: Dict[str, str] = field(default_factory=dict)

    @property
    def is_success(self) -> bool:
        return 200 <= self.status_code < 300

    @property
    def text(self) -> str:
        return self.content.decode("utf-8", errors="replace")

    def json(self) -> Any:
        return json.loads(self.content)


class HttpTransport:
    def __init__(self, client: httpx.AsyncClient, config: Optional[TransportConfig] = None):
        self._client = client
        self.config = config or TransportConfig()

    async def send(
        self,
        method: str,
        url: str,
        headers: Optional[Mapping[str, str]] = None,
        body: Union[bytes, str, None] = None,
        timeout: Optional[float] = None,
    ) -> TransportResponse:
        """Run one exchange; raise TransportError only when no response arrived"""
        merged = dict(self.config.default_headers)
        merged.update(headers or {})
        if isinstance(body, str):
            body = body.encode("utf-8")

        effective_timeout = timeout if timeout is not None else self.config.timeout_seconds
        try:
            response = await self._client.request(
                method,
                url,
                headers=merged,
                content=body,
                timeout=effective_timeout,
            )
        except httpx.TimeoutException as exc:
            logger.debug("%s %s timed out after %ss", method, url, effective_timeout)
            raise TransportError(f"{method} {url} timed out", timed_out=True) from exc
        except httpx.HTTPError as exc:
            logger.debug("%s %s failed: %s", method, url, exc)
            raise TransportError(f"{method} {url} failed: {exc}") from exc
        except httpx.InvalidURL as exc:
            # not an HTTPError subclass
            logger.debug("%s %r rejected: %s", method, url, exc)
            raise TransportError(f"{method} {url!r} is not a valid URL: {exc}") from exc

        return TransportResponse(
            status_code=response.status_code,
            content=response.content,
            headers=dict(response.headers),
        )
