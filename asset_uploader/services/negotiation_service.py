# services/negotiation_service.py
import logging

from asset_uploader.errors import NegotiationError, PlatformError, PlatformGraphQLError, TransportError
from asset_uploader.models.upload_models import FileDescriptor, StagedParameter, StagedTarget
from asset_uploader.services.platform_client import PlatformClient, format_user_errors

logger = logging.getLogger(__name__)


class NegotiationService:
    def __init__(self, platform: PlatformClient, http_method: str = "POST"):
        self.platform = platform
        self.http_method = http_method

    async def negotiate(self, descriptor: FileDescriptor) -> StagedTarget:
        """Allocate a fresh single-use upload target for the described file"""
        logger.info(
            "Negotiating staged upload for %s (%s, %s, %d bytes)",
            descriptor.name,
            descriptor.mime_type,
            descriptor.resource_class.platform_name,
            descriptor.byte_length,
        )
        try:
            result = await self.platform.create_staged_target(
                filename=descriptor.name,
                mime_type=descriptor.mime_type,
                resource=descriptor.resource_class.platform_name,
                file_size=descriptor.byte_length,
                http_method=self.http_method,
            )
        except PlatformGraphQLError as e:
            raise NegotiationError(str(e), e.messages) from e
        except (PlatformError, TransportError) as e:
            raise NegotiationError(f"Staged upload request failed: {e}", [str(e)]) from e

        user_errors = result.get("userErrors") or []
        if user_errors:
            messages = format_user_errors(user_errors)
            raise NegotiationError("User errors: " + "; ".join(messages), messages)

        targets = result.get("stagedTargets") or []
        if not targets:
            raise NegotiationError(f"No staged target returned for {descriptor.name}")

        raw = targets[0]
        if not isinstance(raw, dict) or not raw.get("url") or not raw.get("resourceUrl"):
            raise NegotiationError(f"Incomplete staged target returned for {descriptor.name}")

        parameters = []
        for p in raw.get("parameters") or []:
            if not isinstance(p, dict) or not p.get("name"):
                raise NegotiationError(f"Incomplete staged target returned for {descriptor.name}: bad parameter {p!r}")
            parameters.append(StagedParameter(p["name"], str(p.get("value") or "")))

        target = StagedTarget(
            upload_url=raw["url"],
            resource_url=raw["resourceUrl"],
            parameters=tuple(parameters),
        )
        logger.debug(
            "Staged target for %s: %s (%d parameters)",
            descriptor.name,
            target.upload_url,
            len(target.parameters),
        )
        return target
