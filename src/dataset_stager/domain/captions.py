"""Domain models for caption generation."""

from dataclasses import dataclass, field
from enum import StrEnum
from uuid import UUID


class CaptionRunStatus(StrEnum):
    """Lifecycle of one caption run over a batch."""

    IDLE = "IDLE"
    RUNNING = "RUNNING"
    COMPLETE = "COMPLETE"
    ABORTED = "ABORTED"


@dataclass(frozen=True)
class CaptionResult:
    """Final outcome of captioning one image.

    ``failed`` marks the sentinel recorded after all retries were exhausted;
    it is distinct from an absent caption.
    """

    image_id: UUID
    text: str | None
    failed: bool = False
    attempts: int = 0

    @classmethod
    def success(cls, image_id: UUID, text: str, attempts: int) -> "CaptionResult":
        return cls(image_id=image_id, text=text, failed=False, attempts=attempts)

    @classmethod
    def failure(cls, image_id: UUID, attempts: int) -> "CaptionResult":
        return cls(image_id=image_id, text=None, failed=True, attempts=attempts)


@dataclass(frozen=True)
class CaptionSnapshot:
    """Generated captions aligned by index plus user overrides keyed by image id."""

    generated: tuple[CaptionResult | None, ...] = ()
    overrides: dict[UUID, str] = field(default_factory=dict)

    def generated_for(self, index: int, image_id: UUID) -> CaptionResult | None:
        """Return the generated result at ``index`` if it belongs to ``image_id``."""
        if not 0 <= index < len(self.generated):
            return None
        result = self.generated[index]
        if result is None or result.image_id != image_id:
            return None
        return result

    def caption_for(self, index: int, image_id: UUID) -> str | None:
        """Return the effective caption text, overrides first."""
        if image_id in self.overrides:
            return self.overrides[image_id] or None
        result = self.generated_for(index, image_id)
        if result is None or result.failed:
            return None
        return result.text or None


@dataclass(frozen=True)
class CaptionRunSummary:
    """Result of one caption run, reported to the caller as data."""

    status: CaptionRunStatus
    results: list[CaptionResult]

    @property
    def total(self) -> int:
        return len(self.results)

    @property
    def succeeded(self) -> int:
        return sum(1 for result in self.results if not result.failed)

    @property
    def failed(self) -> int:
        return self.total - self.succeeded

    @property
    def message(self) -> str:
        return f"{self.succeeded} of {self.total} images captioned successfully"
