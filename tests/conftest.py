"""Shared test fixtures."""

import io
from dataclasses import dataclass, field

import pytest
from PIL import Image

from dataset_stager.config import Settings
from dataset_stager.containers import AppContainer
from dataset_stager.domain.errors import CaptioningError, StorageError
from dataset_stager.services.captions import (
    CaptionClient,
    CaptionOrchestrator,
    CaptionRequest,
    CaptionService,
    prompt_policy_for,
)
from dataset_stager.services.export import ExportPackager, ExportService
from dataset_stager.services.ingestion import IngestionService
from dataset_stager.services.normalizer import ImageNormalizer
from dataset_stager.services.retry import RetryPolicy
from dataset_stager.services.sessions import SessionManager
from dataset_stager.services.staging import InMemoryStagingStore, StagingStore


def make_image_bytes(
    width: int,
    height: int,
    image_format: str = "PNG",
    mode: str = "RGB",
    color: object = (200, 40, 40),
) -> bytes:
    """Return an encoded solid-color image."""
    buffer = io.BytesIO()
    Image.new(mode, (width, height), color).save(buffer, format=image_format)
    return buffer.getvalue()


@dataclass
class RecordingSleeper:
    """Async sleep replacement that records requested delays."""

    delays: list[float] = field(default_factory=list)

    async def __call__(self, seconds: float) -> None:
        self.delays.append(seconds)


@dataclass
class ScriptedCaptionClient(CaptionClient):
    """Caption client that replays scripted outcomes in call order.

    Each script entry is a caption string or an exception to raise. Once the
    script is exhausted every call succeeds with ``default``.
    """

    script: list[str | Exception] = field(default_factory=list)
    default: str = "a photo of TOK on a white table"
    requests: list[CaptionRequest] = field(default_factory=list)
    in_flight: int = 0
    max_in_flight: int = 0
    closed: bool = False

    async def caption(self, request: CaptionRequest) -> str:
        self.requests.append(request)
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            if self.script:
                outcome = self.script.pop(0)
                if isinstance(outcome, Exception):
                    raise outcome
                return outcome
            return self.default
        finally:
            self.in_flight -= 1

    async def close(self) -> None:
        self.closed = True


@dataclass
class RecordingStagingStore(InMemoryStagingStore):
    """In-memory store that logs every mutating call."""

    operations: list[tuple[str, str]] = field(default_factory=list)
    fail_on_get: set[str] = field(default_factory=set)
    fail_on_put: set[str] = field(default_factory=set)

    def __post_init__(self) -> None:
        super().__init__()

    def put(self, key: str, value: object) -> None:
        if key in self.fail_on_put:
            raise StorageError(f"put {key} failed")
        self.operations.append(("put", key))
        super().put(key, value)

    def get(self, key: str) -> object | None:
        if key in self.fail_on_get:
            raise StorageError(f"get {key} failed")
        return super().get(key)

    def delete(self, key: str) -> None:
        self.operations.append(("delete", key))
        super().delete(key)

    def clear(self) -> None:
        self.operations.append(("clear", "*"))
        super().clear()


def failing(times: int, message: str = "rate limited") -> list[str | Exception]:
    """Script entries for ``times`` consecutive retryable failures."""
    return [CaptioningError(message, status_code=429) for _ in range(times)]


@pytest.fixture
def settings() -> Settings:
    return Settings(
        openai_api_key="openai-key",
        caption_base_delay_seconds=1.0,
        caption_request_delay_seconds=1.0,
    )


@pytest.fixture
def sleeper() -> RecordingSleeper:
    return RecordingSleeper()


@pytest.fixture
def caption_client() -> ScriptedCaptionClient:
    return ScriptedCaptionClient()


@pytest.fixture
def retry_policy(sleeper: RecordingSleeper) -> RetryPolicy:
    return RetryPolicy(
        max_attempts=3,
        base_delay_seconds=1.0,
        multiplier=2.0,
        retry_on=(CaptioningError,),
        sleep=sleeper,
    )


@pytest.fixture
def orchestrator(
    caption_client: ScriptedCaptionClient,
    retry_policy: RetryPolicy,
    sleeper: RecordingSleeper,
) -> CaptionOrchestrator:
    return CaptionOrchestrator(
        client=caption_client,
        retry_policy=retry_policy,
        request_delay_seconds=1.0,
        sleep=sleeper,
    )


@pytest.fixture
def stores() -> list[StagingStore]:
    """Every store handed out by the session manager, in creation order."""
    return []


@pytest.fixture
def session_manager(stores: list[StagingStore]) -> SessionManager:
    def factory(_session_id) -> StagingStore:  # type: ignore[no-untyped-def]
        store = RecordingStagingStore()
        stores.append(store)
        return store

    return SessionManager(store_factory=factory, idle_timeout_seconds=60)


@pytest.fixture
def container(
    settings: Settings,
    session_manager: SessionManager,
    caption_client: ScriptedCaptionClient,
    orchestrator: CaptionOrchestrator,
) -> AppContainer:
    caption_service = CaptionService(
        orchestrator=orchestrator,
        policy=prompt_policy_for(settings.caption_prompt_strategy),
    )

    async def close_resources() -> None:
        session_manager.close_all()
        await caption_client.close()

    return AppContainer(
        settings=settings,
        session_manager=session_manager,
        ingestion_service=IngestionService(ImageNormalizer(settings.min_resolution)),
        caption_client=caption_client,
        caption_service=caption_service,
        export_service=ExportService(
            packager=ExportPackager(suffix=settings.export_suffix),
            session_manager=session_manager,
        ),
        close_resources=close_resources,
    )
