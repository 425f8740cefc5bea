# services/upload_service.py
import inspect
import logging
from typing import Any, Dict, List, Optional, Sequence, Tuple, Union

from asset_uploader.errors import (
    NegotiationError,
    PlatformError,
    PlatformGraphQLError,
    RegistrationError,
    TransferError,
    TransportError,
    ValidationError,
)
from asset_uploader.models.upload_models import (
    Attachment,
    BatchItemResult,
    CreatedResource,
    FileDescriptor,
    ResourceClass,
    StagedTarget,
    UploadPhase,
    UploadRequest,
)
from asset_uploader.services.multipart import build_multipart_body, choose_boundary, multipart_content_type
from asset_uploader.services.negotiation_service import NegotiationService
from asset_uploader.services.platform_client import PlatformClient, format_user_errors, resource_from_node
from asset_uploader.services.transport import HttpTransport

logger = logging.getLogger(__name__)

BatchInput = Union[UploadRequest, Tuple[Any, ...]]


class UploadService:
    """Staged uploads: negotiate a signed target, push the bytes there, register by reference"""

    def __init__(
        self,
        negotiator: NegotiationService,
        platform: PlatformClient,
        transport: HttpTransport,
        transfer_method: str = "POST",
        batch_registration: bool = True,
    ):
        self.negotiator = negotiator
        self.platform = platform
        self.transport = transport
        self.transfer_method = transfer_method.upper()
        self.batch_registration = batch_registration

    async def upload(
        self,
        data: bytes,
        filename: str,
        mime_type: str,
        alt_text: Optional[str] = None,
    ) -> CreatedResource:
        """Upload one file; any phase failure propagates and nothing is retried"""
        attachment, descriptor = self._prepare(data, filename, mime_type)

        # Step 1: allocate a single-use target
        target = await self.negotiator.negotiate(descriptor)

        # Step 2: push the bytes straight to the storage endpoint
        await self._transfer(target, attachment)

        # Step 3: register the staged resource URL with the platform
        created = await self._register([(target, descriptor, alt_text)])
        resource = created[0]
        if resource is None:
            raise RegistrationError(f"Platform returned no resource for {filename}")

        logger.info("Uploaded %s as %s (%s)", filename, resource.id, resource.status.value)
        return resource

    async def upload_fileobj(
        self,
        fileobj: Any,
        filename: str,
        mime_type: str,
        alt_text: Optional[str] = None,
    ) -> CreatedResource:
        """Read a binary byte source (sync or async `read()`) and upload it"""
        data = fileobj.read()
        if inspect.isawaitable(data):
            data = await data
        return await self.upload(data, filename, mime_type, alt_text)

    async def upload_from_url(
        self,
        url: str,
        filename: str,
        mime_type: str,
        alt_text: Optional[str] = None,
        user_agent: Optional[str] = None,
    ) -> CreatedResource:
        """Download a remote file and re-upload it through the staged channel"""
        if not url:
            raise ValidationError("Source URL cannot be empty")

        headers = {"User-Agent": user_agent} if user_agent else {}
        try:
            response = await self.transport.send("GET", url, headers=headers)
        except TransportError as e:
            raise TransferError(f"Failed to download {url}: {e}") from e
        if not response.is_success:
            raise TransferError(
                f"Failed to download {url}: {response.status_code}",
                status_code=response.status_code,
                response_body=response.text,
            )

        return await self.upload(response.content, filename, mime_type, alt_text)

    async def upload_batch(self, files: Sequence[BatchInput]) -> List[BatchItemResult]:
        """Upload several files; each one succeeds or fails on its own"""
        if not files:
            raise ValidationError("Files list cannot be empty")

        results = [BatchItemResult(index=i, filename=self._filename_of(item)) for i, item in enumerate(files)]
        pending: List[Tuple[int, StagedTarget, FileDescriptor, Optional[str]]] = []

        for index, item in enumerate(files):
            phase = UploadPhase.VALIDATE
            try:
                request = self._as_request(item)
                attachment, descriptor = self._prepare(request.data, request.filename, request.mime_type)
                phase = UploadPhase.NEGOTIATE
                target = await self.negotiator.negotiate(descriptor)
                phase = UploadPhase.TRANSFER
                await self._transfer(target, attachment)
            except (ValidationError, NegotiationError, TransferError) as e:
                logger.error("Batch item %d (%s) failed during %s: %s", index, results[index].filename, phase.value, e)
                results[index].failed_phase = phase
                results[index].error = e
                continue
            pending.append((index, target, descriptor, request.alt_text))

        if not pending:
            return results

        if self.batch_registration:
            await self._register_pending(pending, results)
        else:
            for entry in pending:
                await self._register_pending([entry], results)

        succeeded = sum(1 for r in results if r.succeeded)
        logger.info("Batch upload finished: %d/%d files succeeded", succeeded, len(results))
        return results

    async def get_resource(self, resource_id: str) -> Optional[CreatedResource]:
        """Look up the current state of a previously registered resource"""
        return await self.platform.get_resource(resource_id)

    def _prepare(self, data: bytes, filename: str, mime_type: str) -> Tuple[Attachment, FileDescriptor]:
        if not data:
            raise ValidationError("File bytes cannot be empty")
        if not filename:
            raise ValidationError("Filename cannot be empty")
        if not mime_type:
            raise ValidationError("Content type cannot be empty")

        attachment = Attachment(data=bytes(data), filename=filename, mime_type=mime_type)
        descriptor = FileDescriptor(
            name=filename,
            mime_type=mime_type,
            byte_length=len(attachment.data),
            resource_class=ResourceClass.from_mime_type(mime_type),
        )
        return attachment, descriptor

    @staticmethod
    def _as_request(item: BatchInput) -> UploadRequest:
        if isinstance(item, UploadRequest):
            return item
        try:
            data, filename, mime_type, *rest = item
            return UploadRequest(
                data=data,
                filename=filename,
                mime_type=mime_type,
                alt_text=rest[0] if rest else None,
            )
        except (TypeError, ValueError) as e:
            raise ValidationError(f"Malformed batch entry: {e}") from e

    @staticmethod
    def _filename_of(item: BatchInput) -> str:
        if isinstance(item, UploadRequest):
            return item.filename
        if isinstance(item, (tuple, list)) and len(item) > 1 and isinstance(item[1], str):
            return item[1]
        return ""

    async def _transfer(self, target: StagedTarget, attachment: Attachment) -> None:
        boundary = choose_boundary(target.parameters, attachment)
        body = build_multipart_body(boundary, target.parameters, attachment)
        headers = {"Content-Type": multipart_content_type(boundary)}

        logger.info("Transferring %s (%d bytes) to %s", attachment.filename, len(body), target.upload_url)
        try:
            response = await self.transport.send(self.transfer_method, target.upload_url, headers=headers, body=body)
        except TransportError as e:
            raise TransferError(f"Upload to staged URL failed: {e}") from e

        if not response.is_success:
            raise TransferError(
                f"Failed to upload to staged URL: {response.status_code}",
                status_code=response.status_code,
                response_body=response.text,
            )

    async def _register(
        self, entries: List[Tuple[StagedTarget, FileDescriptor, Optional[str]]]
    ) -> List[Optional[CreatedResource]]:
        """fileCreate for every entry in one request; results follow input order"""
        inputs: List[Dict[str, Any]] = []
        for target, descriptor, alt_text in entries:
            file_input = {
                "originalSource": target.resource_url,
                "contentType": descriptor.resource_class.platform_name,
            }
            if alt_text is not None:
                file_input["alt"] = alt_text
            inputs.append(file_input)

        try:
            result = await self.platform.create_resources(inputs)
        except PlatformGraphQLError as e:
            raise RegistrationError(str(e), e.messages) from e
        except (PlatformError, TransportError) as e:
            raise RegistrationError(f"Resource creation failed: {e}", [str(e)]) from e

        user_errors = result.get("userErrors") or []
        if user_errors:
            messages = format_user_errors(user_errors)
            raise RegistrationError("User errors: " + "; ".join(messages), messages)

        nodes = result.get("files") or []
        created: List[Optional[CreatedResource]] = [
            resource_from_node(node) if node and node.get("id") else None for node in nodes
        ]
        created.extend([None] * (len(entries) - len(created)))
        return created[: len(entries)]

    async def _register_pending(
        self,
        pending: List[Tuple[int, StagedTarget, FileDescriptor, Optional[str]]],
        results: List[BatchItemResult],
    ) -> None:
        try:
            created = await self._register([(t, d, alt) for _, t, d, alt in pending])
        except RegistrationError as e:
            logger.error("Registration failed for %d file(s): %s", len(pending), e)
            for index, *_ in pending:
                results[index].failed_phase = UploadPhase.REGISTER
                results[index].error = e
            return

        for (index, *_), resource in zip(pending, created):
            if resource is None:
                results[index].failed_phase = UploadPhase.REGISTER
                results[index].error = RegistrationError(
                    f"Platform returned no resource for {results[index].filename}"
                )
            else:
                results[index].resource = resource
