"""Caption prompts, the sequential orchestrator, and caption runs."""

import asyncio
import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Protocol
from uuid import UUID

from dataset_stager.domain.batch import Batch
from dataset_stager.domain.captions import (
    CaptionResult,
    CaptionRunStatus,
    CaptionRunSummary,
)
from dataset_stager.domain.errors import (
    SessionNotFoundError,
    StaleBatchError,
    StorageError,
)
from dataset_stager.services.normalizer import to_data_url
from dataset_stager.services.retry import RetryPolicy, Sleeper

if TYPE_CHECKING:
    from dataset_stager.services.sessions import DatasetSession

_logger = logging.getLogger(__name__)

PRODUCT_PROMPT = (
    "Please provide a detailed, clear description of this {product_name} image, "
    'yet only referring to the item as the trigger word "{trigger_word}". '
    "Describe the {product_name}'s appearance, focusing on its key features, "
    "colors, textures, and any notable visual elements. Keep the description "
    'concise but informative. Refer to the item only as "{trigger_word}".'
)

SCENE_PROMPT = (
    "Describe everything in this image except the {product_name} itself: the "
    "background, setting, surfaces, lighting, props, and composition. Do not "
    "describe the item's own appearance. When you need to mention the item, "
    'refer to it only as "{trigger_word}". Keep the description concise.'
)


@dataclass(frozen=True)
class PromptPolicy:
    """Caption prompt template with ``{product_name}`` and ``{trigger_word}`` slots."""

    name: str
    template: str

    def render(self, product_name: str, trigger_word: str) -> str:
        return self.template.format(
            product_name=product_name.strip() or "product",
            trigger_word=trigger_word.strip(),
        )


PROMPT_POLICIES: dict[str, PromptPolicy] = {
    "product": PromptPolicy(name="product", template=PRODUCT_PROMPT),
    "scene": PromptPolicy(name="scene", template=SCENE_PROMPT),
}


def prompt_policy_for(name: str) -> PromptPolicy:
    """Resolve a configured prompt strategy name."""
    try:
        return PROMPT_POLICIES[name]
    except KeyError:
        raise ValueError(f"Unknown caption prompt strategy: {name!r}") from None


@dataclass(frozen=True)
class CaptionRequest:
    """One captioning call: an image plus two free-text context fields."""

    image_data_url: str
    product_name: str
    trigger_word: str
    prompt: str


class CaptionClient(Protocol):
    """Interface for an external vision-language captioning service."""

    async def caption(self, request: CaptionRequest) -> str:
        """Return caption text or raise ``CaptioningError``."""

    async def close(self) -> None:
        """Release any underlying connections."""


@dataclass
class CaptionOrchestrator:
    """Captions a batch one image at a time.

    Requests are never issued in parallel; the external service enforces a
    request-rate policy. Each item is retried per ``retry_policy`` and degrades
    to a failure sentinel, so one failing image never aborts the batch.
    """

    client: CaptionClient
    retry_policy: RetryPolicy
    request_delay_seconds: float = 1.0
    sub_batch_size: int = 0
    sub_batch_delay_seconds: float = 5.0
    sleep: Sleeper = asyncio.sleep

    async def generate_captions(
        self, batch: Batch, policy: PromptPolicy
    ) -> list[CaptionResult]:
        """Return one result per image, in batch order."""
        prompt = policy.render(batch.product_name, batch.trigger_word)
        results: list[CaptionResult] = []
        for index, image in enumerate(batch.images):
            request = CaptionRequest(
                image_data_url=to_data_url(image.encoded_bytes),
                product_name=batch.product_name,
                trigger_word=batch.trigger_word,
                prompt=prompt,
            )
            results.append(await self._caption_one(index, image.id, request))
            if index < batch.image_count - 1:
                await self.sleep(self._delay_after(index))
        return results

    async def _caption_one(
        self, index: int, image_id: UUID, request: CaptionRequest
    ) -> CaptionResult:
        attempts = 0

        async def attempt() -> str:
            nonlocal attempts
            attempts += 1
            return await self.client.caption(request)

        try:
            text = await self.retry_policy.call(attempt)
        except Exception:
            _logger.warning(
                "Caption failed for image %s (index=%s) after %s attempts",
                image_id,
                index,
                attempts,
                exc_info=True,
            )
            return CaptionResult.failure(image_id, attempts=attempts)
        return CaptionResult.success(image_id, text.strip(), attempts=attempts)

    def _delay_after(self, index: int) -> float:
        if self.sub_batch_size and (index + 1) % self.sub_batch_size == 0:
            return max(self.sub_batch_delay_seconds, self.request_delay_seconds)
        return self.request_delay_seconds


@dataclass
class CaptionService:
    """Runs the orchestrator against a session's staged batch."""

    orchestrator: CaptionOrchestrator
    policy: PromptPolicy

    async def generate(self, session: "DatasetSession") -> CaptionRunSummary:
        """Caption the staged batch and write the results back in one replacement.

        A failure reading the snapshot aborts the run without writing anything.
        If the run is cancelled, nothing is written and the previous status is
        restored. Results are discarded when the session was closed or its
        image ids changed while the run was waiting on the caption service.
        """
        session.ensure_no_caption_run()
        previous_status = session.caption_status
        session.caption_status = CaptionRunStatus.RUNNING
        try:
            batch = session.staging.load_batch()
        except StorageError:
            session.caption_status = CaptionRunStatus.ABORTED
            _logger.exception("Caption run aborted for session %s", session.id)
            raise

        _logger.info(
            "Caption run started: session=%s images=%s policy=%s",
            session.id,
            batch.image_count,
            self.policy.name,
        )
        try:
            results = await self.orchestrator.generate_captions(batch, self.policy)
        except asyncio.CancelledError:
            session.caption_status = previous_status
            _logger.warning("Caption run cancelled for session %s", session.id)
            raise

        if session.closed:
            session.caption_status = CaptionRunStatus.ABORTED
            _logger.warning(
                "Session %s closed during caption run; results discarded", session.id
            )
            raise SessionNotFoundError(session.id)
        try:
            current = session.staging.load_batch()
            if current.image_ids != batch.image_ids:
                raise StaleBatchError(
                    f"Batch for session {session.id} changed during the caption run"
                )
            session.staging.save_generated_captions(results)
        except StaleBatchError:
            session.caption_status = CaptionRunStatus.ABORTED
            _logger.warning("Caption results discarded for session %s", session.id)
            raise
        except StorageError:
            session.caption_status = CaptionRunStatus.ABORTED
            _logger.exception("Could not store captions for session %s", session.id)
            raise
        session.caption_status = CaptionRunStatus.COMPLETE
        summary = CaptionRunSummary(status=CaptionRunStatus.COMPLETE, results=results)
        _logger.info("Caption run finished: session=%s %s", session.id, summary.message)
        return summary
