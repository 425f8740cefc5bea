# services/platform_client.py
import json
import logging
from typing import Any, Dict, List, Optional

from asset_uploader.config import PlatformConfig
from asset_uploader.errors import PlatformError, PlatformGraphQLError, PlatformHTTPError
from asset_uploader.models.upload_models import CreatedResource, ResourceStatus
from asset_uploader.services.transport import HttpTransport

logger = logging.getLogger(__name__)

STAGED_UPLOADS_CREATE = """
mutation stagedUploadsCreate($input: [StagedUploadInput!]!) {
  stagedUploadsCreate(input: $input) {
    stagedTargets {
      url
      resourceUrl
      parameters {
        name
        value
      }
    }
    userErrors {
      field
      message
    }
  }
}
"""

FILE_FIELDS = """
  id
  fileStatus
  alt
  createdAt
  ... on MediaImage {
    image {
      width
      height
      url
      originalSrc
      transformedSrc
      src
    }
  }
  ... on GenericFile {
    url
  }
"""

FILE_CREATE = """
mutation fileCreate($files: [FileCreateInput!]!) {
  fileCreate(files: $files) {
    files {%s}
    userErrors {
      field
      message
    }
  }
}
""" % FILE_FIELDS

FILE_QUERY = """
query getFile($id: ID!) {
  node(id: $id) {%s}
}
""" % FILE_FIELDS

_IMAGE_URL_FIELDS = ("url", "src", "originalSrc", "transformedSrc")


def format_user_errors(user_errors: List[Dict[str, Any]]) -> List[str]:
    """Render platform userErrors as `field.path: message` strings"""
    messages = []
    for error in user_errors or []:
        path = ",".join(str(p) for p in (error.get("field") or []))
        message = error.get("message") or "unknown error"
        messages.append(f"{path}: {message}" if path else message)
    return messages


def delivery_url_from_node(node: Dict[str, Any]) -> Optional[str]:
    image = node.get("image")
    if isinstance(image, dict):
        for key in _IMAGE_URL_FIELDS:
            if image.get(key):
                return image[key]
    return node.get("url") or None


def resource_from_node(node: Dict[str, Any]) -> CreatedResource:
    dimensions = None
    image = node.get("image")
    if isinstance(image, dict) and image.get("width") and image.get("height"):
        dimensions = (int(image["width"]), int(image["height"]))

    return CreatedResource(
        id=node["id"],
        status=ResourceStatus.from_platform(node.get("fileStatus")),
        delivery_url=delivery_url_from_node(node),
        dimensions=dimensions,
        alt=node.get("alt"),
        created_at=node.get("createdAt"),
    )


class PlatformClient:
    """GraphQL adapter for the content platform's admin API"""

    def __init__(self, transport: HttpTransport, config: PlatformConfig):
        self.transport = transport
        self.config = config

    async def execute(self, query: str, variables: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        """Run a query or mutation and return its `data` object"""
        payload = json.dumps({"query": query, "variables": variables or {}})
        headers = {"Content-Type": "application/json", "Accept": "application/json"}
        headers.update(self.config.auth_headers())

        response = await self.transport.send("POST", self.config.graphql_url, headers=headers, body=payload)
        if not response.is_success:
            raise PlatformHTTPError(
                f"GraphQL HTTP error: {response.status_code}",
                status_code=response.status_code,
                response_body=response.text,
            )

        try:
            document = response.json()
        except ValueError as exc:
            raise PlatformError("GraphQL response is not valid JSON") from exc

        errors = document.get("errors") if isinstance(document, dict) else None
        if errors:
            raise PlatformGraphQLError([e.get("message", str(e)) for e in errors])

        data = document.get("data") if isinstance(document, dict) else None
        if not isinstance(data, dict):
            raise PlatformError("GraphQL response carried no data")
        return data

    async def create_staged_target(
        self,
        filename: str,
        mime_type: str,
        resource: str,
        file_size: int,
        http_method: str = "POST",
    ) -> Dict[str, Any]:
        variables = {
            "input": [
                {
                    "filename": filename,
                    "mimeType": mime_type,
                    "resource": resource,
                    "fileSize": str(file_size),
                    "httpMethod": http_method,
                }
            ]
        }
        data = await self.execute(STAGED_UPLOADS_CREATE, variables)
        return data.get("stagedUploadsCreate") or {}

    async def create_resources(self, files: List[Dict[str, Any]]) -> Dict[str, Any]:
        """fileCreate for one or more origin references; returns {files, userErrors}"""
        data = await self.execute(FILE_CREATE, {"files": files})
        return data.get("fileCreate") or {}

    async def get_resource(self, resource_id: str) -> Optional[CreatedResource]:
        data = await self.execute(FILE_QUERY, {"id": resource_id})
        node = data.get("node")
        if not node or not node.get("id"):
            return None
        return resource_from_node(node)
