# client.py
from typing import Optional

import httpx

from asset_uploader.config import UploaderSettings
from asset_uploader.services.negotiation_service import NegotiationService
from asset_uploader.services.platform_client import PlatformClient
from asset_uploader.services.resolution_service import ResolutionService, UrlProber
from asset_uploader.services.transport import HttpTransport
from asset_uploader.services.upload_service import UploadService


class AssetUploaderClient:
    """Wires transport, platform client, upload and resolution services from one settings object.

    Use as an async context manager so the underlying httpx client is closed:

        async with AssetUploaderClient(UploaderSettings.from_env()) as client:
            resource = await client.uploads.upload(data, "a.jpg", "image/jpeg")
            url = await client.resolver.resolve_with_fallback(resource.delivery_url, fallback, resource.id)
    """

    def __init__(self, settings: UploaderSettings, http_client: Optional[httpx.AsyncClient] = None):
        self.settings = settings
        self._owns_http_client = http_client is None
        self.http_client = http_client or httpx.AsyncClient(follow_redirects=True)

        self.transport = HttpTransport(self.http_client, settings.transport)
        self.platform = PlatformClient(self.transport, settings.platform)
        self.negotiator = NegotiationService(self.platform, http_method=settings.transport.transfer_method)
        self.uploads = UploadService(
            self.negotiator,
            self.platform,
            self.transport,
            transfer_method=settings.transport.transfer_method,
            batch_registration=settings.transport.batch_registration,
        )
        self.resolver = ResolutionService(
            UrlProber(
                self.transport,
                timeout=settings.transport.probe_timeout_seconds,
                headers=settings.transport.probe_headers,
            ),
            platform=self.platform,
            config=settings.resolution,
        )

    async def aclose(self) -> None:
        if self._owns_http_client:
            await self.http_client.aclose()

    async def __aenter__(self) -> "AssetUploaderClient":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.aclose()
