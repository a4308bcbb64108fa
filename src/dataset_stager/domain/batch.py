"""Domain model for the working batch."""

from dataclasses import dataclass, replace
from uuid import UUID

from dataset_stager.domain.images import SourceImage


@dataclass(frozen=True)
class Batch:
    """Ordered set of staged images plus dataset metadata.

    Position in ``images`` is the index used for archive filenames and for
    aligning generated captions, so the sequence never has gaps.
    """

    images: tuple[SourceImage, ...] = ()
    product_name: str = ""
    trigger_word: str = ""

    @property
    def image_count(self) -> int:
        return len(self.images)

    @property
    def image_ids(self) -> tuple[UUID, ...]:
        return tuple(image.id for image in self.images)

    def with_appended(self, images: list[SourceImage]) -> "Batch":
        """Return a copy with images appended after the current range."""
        return replace(self, images=self.images + tuple(images))

    def without(self, index: int) -> "Batch":
        """Return a copy with the image at ``index`` removed and the rest re-indexed."""
        if not 0 <= index < self.image_count:
            raise IndexError(f"Image index {index} out of range")
        return replace(self, images=self.images[:index] + self.images[index + 1 :])

    def with_metadata(self, product_name: str, trigger_word: str) -> "Batch":
        return replace(self, product_name=product_name, trigger_word=trigger_word)

    def index_of(self, image_id: UUID) -> int | None:
        for index, image in enumerate(self.images):
            if image.id == image_id:
                return index
        return None
