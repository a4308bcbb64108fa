"""Domain models for ingested images."""

from dataclasses import dataclass, field
from uuid import UUID


@dataclass(frozen=True)
class SourceImage:
    """A decoded, re-encoded photo staged for captioning."""

    id: UUID
    original_name: str
    display_name: str
    pixel_width: int
    pixel_height: int
    encoded_bytes: bytes = field(repr=False)
    is_valid: bool


@dataclass(frozen=True)
class RawUpload:
    """Uploaded file as received from the caller."""

    filename: str
    content: bytes = field(repr=False)


@dataclass(frozen=True)
class ValidationWarning:
    """An image below the minimum resolution that was kept in the batch."""

    image_id: UUID
    original_name: str
    pixel_width: int
    pixel_height: int
    min_resolution: int

    @property
    def message(self) -> str:
        return (
            f"{self.original_name} is {self.pixel_width}x{self.pixel_height}; "
            f"images must be at least {self.min_resolution}px in both dimensions"
        )


@dataclass(frozen=True)
class IngestFailure:
    """An upload that was excluded because it could not be decoded."""

    original_name: str
    reason: str


@dataclass(frozen=True)
class IngestReport:
    """Outcome of ingesting one upload request."""

    added: list[SourceImage]
    warnings: list[ValidationWarning]
    failures: list[IngestFailure]
    image_count: int
