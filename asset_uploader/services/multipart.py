# services/multipart.py
"""Byte-exact multipart/form-data bodies for signed staged uploads.

Signed upload policies validate the form fields in the order and encoding
they were issued, so the body is assembled by hand instead of through an
HTTP library's form encoder: parameters first, in order, then the file
part. Text is plain UTF-8 (no BOM), the attachment is written untouched.
"""
import logging
from typing import Iterable, Sequence, Tuple
from uuid import uuid4

from asset_uploader.errors import ValidationError
from asset_uploader.models.upload_models import Attachment

logger = logging.getLogger(__name__)

BOUNDARY_PREFIX = "----FormBoundary"
MAX_BOUNDARY_ATTEMPTS = 8
CRLF = b"\r\n"


def new_boundary() -> str:
    return f"{BOUNDARY_PREFIX}{uuid4().hex[:16]}"


def multipart_content_type(boundary: str) -> str:
    return f"multipart/form-data; boundary={boundary}"


def boundary_collides(
    boundary: str,
    parameters: Iterable[Tuple[str, str]],
    attachment: Attachment,
) -> bool:
    """True if the boundary shows up anywhere it could be mistaken for a delimiter"""
    for name, value in parameters:
        if boundary in name or boundary in value:
            return True
    if boundary in attachment.filename or boundary in attachment.mime_type:
        return True
    return boundary.encode("utf-8") in attachment.data


def choose_boundary(parameters: Sequence[Tuple[str, str]], attachment: Attachment) -> str:
    """Generate boundaries until one does not collide with the payload"""
    for _ in range(MAX_BOUNDARY_ATTEMPTS):
        boundary = new_boundary()
        if not boundary_collides(boundary, parameters, attachment):
            return boundary
        logger.debug("Boundary %s collides with payload, regenerating", boundary)
    raise ValidationError("Could not generate a multipart boundary absent from the payload")


def build_multipart_body(
    boundary: str,
    parameters: Sequence[Tuple[str, str]],
    attachment: Attachment,
    require_parameters: bool = True,
) -> bytes:
    if not boundary:
        raise ValidationError("Multipart boundary cannot be empty")
    if require_parameters and not parameters:
        raise ValidationError("At least one upload policy parameter is required")
    if not attachment.data:
        raise ValidationError("Attachment bytes cannot be empty")
    if boundary_collides(boundary, parameters, attachment):
        raise ValidationError("Multipart boundary occurs inside the payload")

    delimiter = f"--{boundary}".encode("utf-8")
    chunks = []

    for name, value in parameters:
        chunks.append(delimiter + CRLF)
        chunks.append(f'Content-Disposition: form-data; name="{name}"'.encode("utf-8") + CRLF)
        chunks.append(CRLF)
        chunks.append(value.encode("utf-8") + CRLF)

    chunks.append(delimiter + CRLF)
    chunks.append(
        f'Content-Disposition: form-data; name="file"; filename="{attachment.filename}"'.encode("utf-8")
        + CRLF
    )
    chunks.append(f"Content-Type: {attachment.mime_type}".encode("utf-8") + CRLF)
    chunks.append(CRLF)
    chunks.append(attachment.data)
    chunks.append(CRLF + delimiter + b"--" + CRLF)

    body = b"".join(chunks)
    logger.debug(
        "Built multipart body: boundary=%s fields=%s file=%s (%d bytes) total=%d bytes",
        boundary,
        [name for name, _ in parameters],
        attachment.filename,
        len(attachment.data),
        len(body),
    )
    return body
