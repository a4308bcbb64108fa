"""Dependency container wiring for the application."""

from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from uuid import UUID

from supabase import create_client

from dataset_stager.adapters.httpx_caption_client import HttpxCaptionClient
from dataset_stager.adapters.openai_caption_client import OpenAICaptionClient
from dataset_stager.adapters.supabase_staging_store import SupabaseStagingStore
from dataset_stager.config import Settings
from dataset_stager.domain.errors import CaptioningError
from dataset_stager.services.captions import (
    CaptionClient,
    CaptionOrchestrator,
    CaptionService,
    prompt_policy_for,
)
from dataset_stager.services.export import ExportPackager, ExportService
from dataset_stager.services.ingestion import IngestionService
from dataset_stager.services.normalizer import ImageNormalizer
from dataset_stager.services.retry import RetryPolicy
from dataset_stager.services.sessions import SessionManager, StoreFactory
from dataset_stager.services.staging import InMemoryStagingStore, StagingStore


@dataclass
class AppContainer:
    """Holds application-wide dependencies."""

    settings: Settings
    session_manager: SessionManager
    ingestion_service: IngestionService
    caption_client: CaptionClient
    caption_service: CaptionService
    export_service: ExportService
    close_resources: Callable[[], Awaitable[None]]


def build_container(settings: Settings | None = None) -> AppContainer:
    """Create the default dependency container."""
    resolved_settings = settings or Settings()
    session_manager = SessionManager(
        store_factory=_build_store_factory(resolved_settings),
        idle_timeout_seconds=resolved_settings.session_idle_seconds,
    )
    caption_client = _build_caption_client(resolved_settings)
    retry_policy = RetryPolicy(
        max_attempts=resolved_settings.caption_max_attempts,
        base_delay_seconds=resolved_settings.caption_base_delay_seconds,
        multiplier=resolved_settings.caption_backoff_multiplier,
        max_delay_seconds=resolved_settings.caption_max_backoff_seconds,
        max_elapsed_seconds=resolved_settings.caption_max_elapsed_seconds,
        retry_on=(CaptioningError,),
    )
    caption_service = CaptionService(
        orchestrator=CaptionOrchestrator(
            client=caption_client,
            retry_policy=retry_policy,
            request_delay_seconds=resolved_settings.caption_request_delay_seconds,
            sub_batch_size=resolved_settings.caption_sub_batch_size,
            sub_batch_delay_seconds=resolved_settings.caption_sub_batch_delay_seconds,
        ),
        policy=prompt_policy_for(resolved_settings.caption_prompt_strategy),
    )
    export_service = ExportService(
        packager=ExportPackager(suffix=resolved_settings.export_suffix),
        session_manager=session_manager,
    )
    ingestion_service = IngestionService(
        normalizer=ImageNormalizer(min_resolution=resolved_settings.min_resolution)
    )

    async def close_resources() -> None:
        session_manager.close_all()
        await caption_client.close()

    return AppContainer(
        settings=resolved_settings,
        session_manager=session_manager,
        ingestion_service=ingestion_service,
        caption_client=caption_client,
        caption_service=caption_service,
        export_service=export_service,
        close_resources=close_resources,
    )


def _build_store_factory(settings: Settings) -> StoreFactory:
    if settings.staging_backend == "supabase":
        if not settings.supabase_url or not settings.supabase_service_key:
            raise ValueError(
                "SUPABASE_URL and SUPABASE_SERVICE_KEY are required "
                "for the supabase staging backend"
            )
        supabase_client = create_client(
            settings.supabase_url, settings.supabase_service_key
        )

        def supabase_store(session_id: UUID) -> StagingStore:
            return SupabaseStagingStore(
                client=supabase_client,
                session_id=session_id,
                table=settings.staging_table,
            )

        return supabase_store

    def memory_store(_session_id: UUID) -> StagingStore:
        return InMemoryStagingStore()

    return memory_store


def _build_caption_client(
    settings: Settings,
) -> HttpxCaptionClient | OpenAICaptionClient:
    if settings.caption_service_url:
        return HttpxCaptionClient.create(
            settings.caption_service_url,
            timeout_seconds=settings.caption_request_timeout_seconds,
        )
    if settings.openai_api_key:
        return OpenAICaptionClient.create(
            settings.openai_api_key,
            model=settings.openai_model,
            max_tokens=settings.openai_max_tokens,
            image_detail=settings.openai_image_detail,
            timeout_seconds=settings.caption_request_timeout_seconds,
        )
    raise ValueError("Set OPENAI_API_KEY or CAPTION_SERVICE_URL to enable captioning")
