import logging
from contextlib import asynccontextmanager
from typing import List, Optional

from dotenv import load_dotenv
from fastapi import Depends, FastAPI, File, Form, HTTPException, Request, UploadFile
from fastapi.middleware.cors import CORSMiddleware

from asset_uploader.client import AssetUploaderClient
from asset_uploader.config import UploaderSettings, cors_origins_from_env
from asset_uploader.errors import (
    AssetUploaderError,
    NegotiationError,
    RegistrationError,
    ResolutionExhausted,
    TransferError,
    ValidationError,
)
from asset_uploader.models.upload_models import (
    BatchItemResult,
    ResolveBatchRequest,
    ResolveFallbackRequest,
    ResolveRequest,
    UploadFromUrlRequest,
    UploadPhase,
    UploadRequest,
)

load_dotenv()

logger = logging.getLogger(__name__)

_PHASE_BY_ERROR = {
    NegotiationError: UploadPhase.NEGOTIATE,
    TransferError: UploadPhase.TRANSFER,
    RegistrationError: UploadPhase.REGISTER,
}


def create_app(settings: Optional[UploaderSettings] = None) -> FastAPI:
    @asynccontextmanager
    async def lifespan(app: FastAPI):
        # Startup
        client = AssetUploaderClient(settings or UploaderSettings.from_env())
        app.state.client = client

        yield

        # Shutdown
        await client.aclose()

    app = FastAPI(title="Staged Asset Upload Service", lifespan=lifespan)

    # CORS Configuration
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins if settings else cors_origins_from_env(),
        allow_methods=["*"],
        allow_headers=["*"],
    )

    _register_routes(app)
    return app


def get_client(request: Request) -> AssetUploaderClient:
    client = getattr(request.app.state, "client", None)
    if client is None:
        raise HTTPException(status_code=503, detail="Uploader client is not initialised")
    return client


def _to_http_error(e: AssetUploaderError) -> HTTPException:
    logger.warning("Request failed: %s", e)
    if isinstance(e, ValidationError):
        return HTTPException(status_code=400, detail=str(e))
    if isinstance(e, ResolutionExhausted):
        return HTTPException(status_code=404, detail=str(e))
    phase = next((p for cls, p in _PHASE_BY_ERROR.items() if isinstance(e, cls)), None)
    detail = {"message": str(e), "phase": phase.value if phase else None}
    messages = getattr(e, "messages", None)
    if messages:
        detail["messages"] = messages
    return HTTPException(status_code=502, detail=detail)


def _batch_item_payload(item: BatchItemResult) -> dict:
    return {
        "index": item.index,
        "filename": item.filename,
        "succeeded": item.succeeded,
        "resource": item.resource.model_dump(mode="json") if item.resource else None,
        "failed_phase": item.failed_phase.value if item.failed_phase else None,
        "error": item.error_message,
    }


def _register_routes(app: FastAPI) -> None:
    @app.post("/upload")
    async def upload_file(
        file: UploadFile = File(...),
        alt_text: Optional[str] = Form(None),
        mime_type: Optional[str] = Form(None),
        client: AssetUploaderClient = Depends(get_client),
    ):
        """Upload one file through the staged channel"""
        try:
            resource = await client.uploads.upload_fileobj(
                file,
                file.filename or "",
                mime_type or file.content_type or "",
                alt_text,
            )
        except AssetUploaderError as e:
            raise _to_http_error(e)
        return resource.model_dump(mode="json")

    @app.post("/upload/batch")
    async def upload_batch(
        files: List[UploadFile] = File(...),
        alt_texts: Optional[List[str]] = Form(None),
        client: AssetUploaderClient = Depends(get_client),
    ):
        """Upload several files; results are attributed per file"""
        requests = []
        for index, file in enumerate(files):
            alt_text = alt_texts[index] if alt_texts and index < len(alt_texts) else None
            requests.append(
                UploadRequest(
                    data=await file.read(),
                    filename=file.filename or "",
                    mime_type=file.content_type or "",
                    alt_text=alt_text or None,
                )
            )
        try:
            results = await client.uploads.upload_batch(requests)
        except AssetUploaderError as e:
            raise _to_http_error(e)
        return {"results": [_batch_item_payload(r) for r in results]}

    @app.post("/upload/from-url")
    async def upload_from_url(
        payload: UploadFromUrlRequest,
        client: AssetUploaderClient = Depends(get_client),
    ):
        """Download a remote file and re-upload it through the staged channel"""
        try:
            resource = await client.uploads.upload_from_url(
                payload.url,
                payload.filename,
                payload.mime_type,
                payload.alt_text,
                payload.user_agent,
            )
        except AssetUploaderError as e:
            raise _to_http_error(e)
        return resource.model_dump(mode="json")

    @app.get("/resources/{resource_id:path}")
    async def get_resource(resource_id: str, client: AssetUploaderClient = Depends(get_client)):
        """Get the current state of a registered resource"""
        try:
            resource = await client.uploads.get_resource(resource_id)
        except AssetUploaderError as e:
            raise _to_http_error(e)
        if resource is None:
            raise HTTPException(status_code=404, detail="Resource not found")
        return resource.model_dump(mode="json")

    @app.post("/resolve")
    async def resolve(payload: ResolveRequest, client: AssetUploaderClient = Depends(get_client)):
        """Find a reachable variant of a delivery URL"""
        result = await client.resolver.resolve(payload.url, payload.resource_id, payload.max_retries)
        return result.model_dump(mode="json")

    @app.post("/resolve/fallback")
    async def resolve_with_fallback(
        payload: ResolveFallbackRequest,
        client: AssetUploaderClient = Depends(get_client),
    ):
        """Resolve a delivery URL, answering with the fallback when nothing works"""
        url = await client.resolver.resolve_with_fallback(payload.url, payload.fallback_url, payload.resource_id)
        return {"url": url}

    @app.post("/resolve/batch")
    async def resolve_batch(payload: ResolveBatchRequest, client: AssetUploaderClient = Depends(get_client)):
        """Resolve several delivery URLs independently"""
        resolved = await client.resolver.resolve_many(payload.urls, payload.resource_ids)
        return {"resolved": resolved}


app = create_app()
