"""Domain models for dataset export."""

from dataclasses import dataclass, field
from uuid import UUID

from dataset_stager.domain.batch import Batch
from dataset_stager.domain.images import SourceImage


@dataclass(frozen=True)
class ExportSnapshot:
    """Images read for export; ``None`` marks a slot that could not be read."""

    product_name: str
    slots: tuple[SourceImage | None, ...]

    @classmethod
    def from_batch(cls, batch: Batch) -> "ExportSnapshot":
        return cls(product_name=batch.product_name, slots=batch.images)


@dataclass(frozen=True)
class PackagedItem:
    """Per-index report entry for an export."""

    index: int
    base_name: str
    image_id: UUID | None
    image_entry: str | None
    caption_entry: str | None
    error: str | None = None

    @property
    def skipped(self) -> bool:
        return self.error is not None


@dataclass(frozen=True)
class ExportArchive:
    """A built ZIP archive with its report."""

    filename: str
    content: bytes = field(repr=False)
    items: list[PackagedItem]

    @property
    def image_entries(self) -> int:
        return sum(1 for item in self.items if item.image_entry)

    @property
    def caption_entries(self) -> int:
        return sum(1 for item in self.items if item.caption_entry)

    @property
    def skipped(self) -> list[PackagedItem]:
        return [item for item in self.items if item.skipped]
