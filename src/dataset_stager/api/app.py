"""FastAPI application factory."""

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from uuid import UUID

from fastapi import FastAPI, File, HTTPException, Request, UploadFile, status
from fastapi.responses import JSONResponse, Response

from dataset_stager.api.models import (
    BatchMetadata,
    BatchView,
    CaptionOverride,
    CaptionOverrides,
    CaptionRunView,
    CaptionServiceRequest,
    CaptionsView,
    IngestView,
    SessionCreated,
)
from dataset_stager.app_logging import configure_logging
from dataset_stager.containers import AppContainer
from dataset_stager.domain.errors import (
    CaptioningError,
    CaptionRunInProgressError,
    SessionNotFoundError,
    StaleBatchError,
    StorageError,
)
from dataset_stager.domain.images import RawUpload
from dataset_stager.services.captions import CaptionRequest
from dataset_stager.services.normalizer import CANONICAL_MIME_TYPE
from dataset_stager.services.sessions import DatasetSession


def create_app(container: AppContainer) -> FastAPI:  # noqa: PLR0915
    """Create a FastAPI app configured with dependencies."""
    configure_logging(container.settings.log_level)
    logger = logging.getLogger(__name__)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        yield
        await app.state.container.close_resources()

    app = FastAPI(lifespan=lifespan)
    app.state.container = container

    @app.exception_handler(SessionNotFoundError)
    async def session_not_found(
        request: Request, exc: SessionNotFoundError
    ) -> JSONResponse:
        return JSONResponse(
            status_code=status.HTTP_404_NOT_FOUND, content={"detail": str(exc)}
        )

    @app.exception_handler(CaptionRunInProgressError)
    async def caption_run_in_progress(
        request: Request, exc: CaptionRunInProgressError
    ) -> JSONResponse:
        return JSONResponse(
            status_code=status.HTTP_409_CONFLICT, content={"detail": str(exc)}
        )

    @app.exception_handler(StaleBatchError)
    async def stale_batch(request: Request, exc: StaleBatchError) -> JSONResponse:
        return JSONResponse(
            status_code=status.HTTP_409_CONFLICT, content={"detail": str(exc)}
        )

    @app.exception_handler(StorageError)
    async def storage_unavailable(request: Request, exc: StorageError) -> JSONResponse:
        logger.error("Staging store failure: %s", exc)
        return JSONResponse(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            content={
                "detail": _error_detail(
                    request.app.state.container, exc, "Staging store unavailable"
                )
            },
        )

    @app.get("/health")
    async def health() -> dict[str, str]:
        """Simple health check endpoint."""
        return {"status": "ok"}

    @app.post("/sessions", status_code=status.HTTP_201_CREATED)
    async def open_session(request: Request) -> SessionCreated:
        """Open a new staging session."""
        session = _container(request).session_manager.open()
        return SessionCreated(session_id=session.id)

    @app.delete("/sessions/{session_id}", status_code=status.HTTP_204_NO_CONTENT)
    async def close_session(session_id: UUID, request: Request) -> Response:
        """Close a session and clear its staged data."""
        _container(request).session_manager.close(session_id)
        return Response(status_code=status.HTTP_204_NO_CONTENT)

    @app.get("/sessions/{session_id}/batch")
    async def get_batch(session_id: UUID, request: Request) -> BatchView:
        """Return the staged batch without image payloads."""
        session = _session(request, session_id)
        return BatchView.from_domain(session.staging.load_batch())

    @app.put("/sessions/{session_id}/metadata")
    async def update_metadata(
        session_id: UUID, metadata: BatchMetadata, request: Request
    ) -> BatchMetadata:
        """Set the product name and trigger word."""
        session = _session(request, session_id)
        session.ensure_no_caption_run()
        session.staging.update_metadata(metadata.product_name, metadata.trigger_word)
        return metadata

    @app.post("/sessions/{session_id}/images")
    async def upload_images(
        session_id: UUID,
        request: Request,
        files: list[UploadFile] = File(...),
    ) -> IngestView:
        """Normalize and stage uploaded images."""
        state_container = _container(request)
        session = _session(request, session_id)
        session.ensure_no_caption_run()
        uploads = [
            RawUpload(filename=upload.filename or "upload", content=await upload.read())
            for upload in files
        ]
        report = state_container.ingestion_service.ingest(session.staging, uploads)
        return IngestView.from_domain(report)

    @app.get("/sessions/{session_id}/images/{index}")
    async def get_image(session_id: UUID, index: int, request: Request) -> Response:
        """Return the canonical PNG for one staged image."""
        session = _session(request, session_id)
        batch = session.staging.load_batch()
        if not 0 <= index < batch.image_count:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND)
        return Response(
            content=batch.images[index].encoded_bytes, media_type=CANONICAL_MIME_TYPE
        )

    @app.delete("/sessions/{session_id}/images/{index}")
    async def delete_image(session_id: UUID, index: int, request: Request) -> BatchView:
        """Remove one image; later images move down one index."""
        session = _session(request, session_id)
        session.ensure_no_caption_run()
        try:
            batch = session.staging.remove_image(index)
        except IndexError as exc:
            raise HTTPException(
                status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)
            ) from exc
        return BatchView.from_domain(batch)

    @app.post("/sessions/{session_id}/captions")
    async def generate_captions(session_id: UUID, request: Request) -> CaptionRunView:
        """Caption every staged image and store the results."""
        session = _session(request, session_id)
        summary = await _container(request).caption_service.generate(session)
        return CaptionRunView.from_domain(summary)

    @app.get("/sessions/{session_id}/captions")
    async def get_captions(session_id: UUID, request: Request) -> CaptionsView:
        """Return the effective caption for every staged image."""
        session = _session(request, session_id)
        return CaptionsView.from_domain(
            session.caption_status.value,
            session.staging.load_batch(),
            session.staging.load_captions(),
        )

    @app.put("/sessions/{session_id}/captions/{image_id}")
    async def override_caption(
        session_id: UUID, image_id: UUID, payload: CaptionOverride, request: Request
    ) -> CaptionsView:
        """Store a manual caption edit for one image."""
        session = _session(request, session_id)
        batch = session.staging.load_batch()
        if batch.index_of(image_id) is None:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND)
        session.staging.save_override(image_id, payload.text)
        return CaptionsView.from_domain(
            session.caption_status.value, batch, session.staging.load_captions()
        )

    @app.put("/sessions/{session_id}/captions")
    async def replace_captions(
        session_id: UUID, payload: CaptionOverrides, request: Request
    ) -> CaptionsView:
        """Replace all manual caption edits at once."""
        session = _session(request, session_id)
        batch = session.staging.load_batch()
        unknown = [
            str(image_id)
            for image_id in payload.captions
            if batch.index_of(image_id) is None
        ]
        if unknown:
            raise HTTPException(
                status_code=status.HTTP_404_NOT_FOUND,
                detail=f"Unknown image ids: {', '.join(unknown)}",
            )
        session.staging.replace_overrides(payload.captions)
        return CaptionsView.from_domain(
            session.caption_status.value, batch, session.staging.load_captions()
        )

    @app.get("/sessions/{session_id}/export")
    async def export_dataset(
        session_id: UUID, request: Request, finish: bool = False
    ) -> Response:
        """Download the dataset archive; ``finish`` closes the session afterwards."""
        session = _session(request, session_id)
        archive = _container(request).export_service.export(session, finish=finish)
        return Response(
            content=archive.content,
            media_type="application/zip",
            headers={
                "Content-Disposition": f'attachment; filename="{archive.filename}"',
                "X-Skipped-Items": ",".join(item.base_name for item in archive.skipped),
            },
        )

    @app.post("/api/caption")
    async def caption_image(
        payload: CaptionServiceRequest, request: Request
    ) -> JSONResponse:
        """Caption one image: ``{result}`` on success, ``{error}`` with status 500."""
        state_container = _container(request)
        image_url = (
            payload.image
            if payload.image.startswith("data:")
            else f"data:{CANONICAL_MIME_TYPE};base64,{payload.image}"
        )
        prompt = payload.prompt or state_container.caption_service.policy.render(
            payload.product_name, payload.trigger_word
        )
        try:
            text = await state_container.caption_client.caption(
                CaptionRequest(
                    image_data_url=image_url,
                    product_name=payload.product_name,
                    trigger_word=payload.trigger_word,
                    prompt=prompt,
                )
            )
        except CaptioningError as exc:
            logger.exception("Caption request failed")
            return JSONResponse(
                status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
                content={"error": str(exc)},
            )
        return JSONResponse(content={"result": text})

    return app


def _container(request: Request) -> AppContainer:
    return request.app.state.container


def _session(request: Request, session_id: UUID) -> DatasetSession:
    return _container(request).session_manager.get(session_id)


def _error_detail(container: AppContainer, exc: Exception, fallback: str) -> str:
    """Return a user-facing error message with local debug info."""
    if container.settings.environment == "local":
        detail = f"{type(exc).__name__}: {exc}".strip()
        if detail:
            return f"{fallback} (debug: {detail})"
    return fallback
