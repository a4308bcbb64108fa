"""Pydantic models for the HTTP API."""

from uuid import UUID

from pydantic import BaseModel, Field

from dataset_stager.domain.batch import Batch
from dataset_stager.domain.captions import CaptionRunSummary, CaptionSnapshot
from dataset_stager.domain.images import IngestReport, SourceImage


class SessionCreated(BaseModel):
    """Response for a newly opened session."""

    session_id: UUID


class BatchMetadata(BaseModel):
    """Product name and trigger word for a batch."""

    product_name: str = Field(default="", max_length=200)
    trigger_word: str = Field(default="", max_length=100)


class StagedImage(BaseModel):
    """Staged image summary without its payload."""

    index: int
    id: UUID
    name: str
    display_name: str
    width: int
    height: int
    is_valid: bool

    @classmethod
    def from_domain(cls, index: int, image: SourceImage) -> "StagedImage":
        return cls(
            index=index,
            id=image.id,
            name=image.original_name,
            display_name=image.display_name,
            width=image.pixel_width,
            height=image.pixel_height,
            is_valid=image.is_valid,
        )


class BatchView(BaseModel):
    """Current staged batch."""

    product_name: str
    trigger_word: str
    image_count: int
    images: list[StagedImage]

    @classmethod
    def from_domain(cls, batch: Batch) -> "BatchView":
        return cls(
            product_name=batch.product_name,
            trigger_word=batch.trigger_word,
            image_count=batch.image_count,
            images=[
                StagedImage.from_domain(index, image)
                for index, image in enumerate(batch.images)
            ],
        )


class UploadWarning(BaseModel):
    """Resolution warning for a staged image."""

    image_id: UUID
    name: str
    message: str


class UploadFailure(BaseModel):
    """Upload that could not be decoded."""

    name: str
    reason: str


class IngestView(BaseModel):
    """Result of an upload request."""

    added: list[StagedImage]
    warnings: list[UploadWarning]
    failures: list[UploadFailure]
    image_count: int

    @classmethod
    def from_domain(cls, report: IngestReport) -> "IngestView":
        first_index = report.image_count - len(report.added)
        return cls(
            added=[
                StagedImage.from_domain(first_index + offset, image)
                for offset, image in enumerate(report.added)
            ],
            warnings=[
                UploadWarning(
                    image_id=warning.image_id,
                    name=warning.original_name,
                    message=warning.message,
                )
                for warning in report.warnings
            ],
            failures=[
                UploadFailure(name=failure.original_name, reason=failure.reason)
                for failure in report.failures
            ],
            image_count=report.image_count,
        )


class CaptionItem(BaseModel):
    """Caption state for one index."""

    index: int
    image_id: UUID
    caption: str | None
    generated: str | None
    failed: bool
    overridden: bool


class CaptionRunView(BaseModel):
    """Summary of a caption run."""

    status: str
    total: int
    succeeded: int
    failed: int
    message: str
    captions: list[CaptionItem]

    @classmethod
    def from_domain(cls, summary: CaptionRunSummary) -> "CaptionRunView":
        return cls(
            status=summary.status.value,
            total=summary.total,
            succeeded=summary.succeeded,
            failed=summary.failed,
            message=summary.message,
            captions=[
                CaptionItem(
                    index=index,
                    image_id=result.image_id,
                    caption=result.text,
                    generated=result.text,
                    failed=result.failed,
                    overridden=False,
                )
                for index, result in enumerate(summary.results)
            ],
        )


class CaptionsView(BaseModel):
    """Effective captions for every staged image."""

    status: str
    captions: list[CaptionItem]

    @classmethod
    def from_domain(
        cls, status: str, batch: Batch, snapshot: CaptionSnapshot
    ) -> "CaptionsView":
        items = []
        for index, image in enumerate(batch.images):
            generated = snapshot.generated_for(index, image.id)
            items.append(
                CaptionItem(
                    index=index,
                    image_id=image.id,
                    caption=snapshot.caption_for(index, image.id),
                    generated=generated.text if generated else None,
                    failed=bool(generated and generated.failed),
                    overridden=image.id in snapshot.overrides,
                )
            )
        return cls(status=status, captions=items)


class CaptionOverride(BaseModel):
    """Manual caption edit for one image."""

    text: str


class CaptionOverrides(BaseModel):
    """Replacement map of manual caption edits keyed by image id."""

    captions: dict[UUID, str]


class CaptionServiceRequest(BaseModel):
    """Captioning service request: image payload plus two context fields."""

    image: str
    product_name: str = Field(default="", alias="productName")
    trigger_word: str = Field(default="", alias="triggerWord")
    prompt: str | None = None
