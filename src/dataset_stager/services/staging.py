"""Session-scoped staging store and its typed record layer."""

import base64
import binascii
import copy
import logging
from dataclasses import dataclass
from typing import Protocol
from uuid import UUID

from dataset_stager.domain.batch import Batch
from dataset_stager.domain.captions import CaptionResult, CaptionSnapshot
from dataset_stager.domain.errors import StorageError
from dataset_stager.domain.images import SourceImage

_logger = logging.getLogger(__name__)

KEY_IMAGE_COUNT = "imageCount"
KEY_PRODUCT_NAME = "productName"
KEY_TRIGGER_WORD = "triggerWord"
KEY_CAPTION_OVERRIDES = "captionOverrides"
KEY_GENERATED_CAPTIONS = "generatedCaptions"


def image_key(index: int) -> str:
    """Return the storage key of the image slot at ``index``."""
    return f"image_{index}"


class StagingStore(Protocol):
    """Key-value persistence for one session's working batch.

    Values are JSON-compatible. Failures raise ``StorageError``.
    """

    def put(self, key: str, value: object) -> None:
        """Store ``value`` under ``key``, replacing any previous value."""

    def get(self, key: str) -> object | None:
        """Return the value under ``key`` or ``None`` when absent."""

    def get_all(self) -> dict[str, object]:
        """Return every key and value in the store."""

    def keys(self) -> list[str]:
        """Return every key in the store without loading values."""

    def delete(self, key: str) -> None:
        """Remove ``key``; removing a missing key is not an error."""

    def clear(self) -> None:
        """Remove every key."""


class InMemoryStagingStore(StagingStore):
    """Dict-backed store; values are copied in and out."""

    def __init__(self) -> None:
        self._entries: dict[str, object] = {}

    def put(self, key: str, value: object) -> None:
        self._entries[key] = copy.deepcopy(value)

    def get(self, key: str) -> object | None:
        return copy.deepcopy(self._entries.get(key))

    def get_all(self) -> dict[str, object]:
        return copy.deepcopy(self._entries)

    def keys(self) -> list[str]:
        return list(self._entries)

    def delete(self, key: str) -> None:
        self._entries.pop(key, None)

    def clear(self) -> None:
        self._entries.clear()


@dataclass
class StagingService:
    """Typed access to the staging schema.

    Composite values (the batch range, the caption list, the override map) are
    only ever written as whole replacements.
    """

    store: StagingStore

    def load_batch(self) -> Batch:
        """Read the full batch; a missing or corrupt slot is a ``StorageError``."""
        count = self._image_count()
        images: list[SourceImage] = []
        for index in range(count):
            raw = self.store.get(image_key(index))
            if raw is None:
                raise StorageError(f"Missing {image_key(index)} (imageCount={count})")
            try:
                images.append(_image_from_record(raw))
            except (KeyError, TypeError, ValueError, binascii.Error) as exc:
                raise StorageError(f"Corrupt {image_key(index)}: {exc}") from exc
        return Batch(
            images=tuple(images),
            product_name=self._string(KEY_PRODUCT_NAME),
            trigger_word=self._string(KEY_TRIGGER_WORD),
        )

    def load_image_slots(self) -> tuple[list[SourceImage | None], str]:
        """Read every image slot, mapping unreadable slots to ``None``.

        Returns the slots and the product name.
        """
        count = self._image_count()
        slots: list[SourceImage | None] = []
        for index in range(count):
            raw = self.store.get(image_key(index))
            if raw is None:
                _logger.warning("Staged %s is missing", image_key(index))
                slots.append(None)
                continue
            try:
                slots.append(_image_from_record(raw))
            except (KeyError, TypeError, ValueError, binascii.Error) as exc:
                _logger.warning("Staged %s is unreadable: %s", image_key(index), exc)
                slots.append(None)
        return slots, self._string(KEY_PRODUCT_NAME)

    def replace_batch(self, batch: Batch) -> None:
        """Replace the staged batch as one logical transaction.

        Image slots are written first, stale trailing slots are deleted, and
        ``imageCount`` is written last so no reader sees a half-written range.
        """
        previous_count = self._image_count()
        for index, image in enumerate(batch.images):
            self.store.put(image_key(index), _image_to_record(image))
        stale = set(range(batch.image_count, previous_count))
        stale.update(
            index
            for index in _indexed_keys(self.store.keys())
            if index >= batch.image_count
        )
        for index in sorted(stale):
            self.store.delete(image_key(index))
        self.store.put(KEY_PRODUCT_NAME, batch.product_name)
        self.store.put(KEY_TRIGGER_WORD, batch.trigger_word)
        self.store.put(KEY_IMAGE_COUNT, batch.image_count)

    def append_images(self, images: list[SourceImage]) -> Batch:
        batch = self.load_batch().with_appended(images)
        self.replace_batch(batch)
        return batch

    def remove_image(self, index: int) -> Batch:
        """Remove one image and re-index the rest.

        The generated caption entry at ``index`` and the image's override are
        dropped so positional alignment is kept.
        """
        current = self.load_batch()
        removed = current.images[index] if 0 <= index < current.image_count else None
        batch = current.without(index)
        self.replace_batch(batch)

        captions = self.load_captions()
        if index < len(captions.generated):
            generated = list(captions.generated)
            del generated[index]
            self.store.put(KEY_GENERATED_CAPTIONS, _captions_to_records(generated))
        if removed is not None and removed.id in captions.overrides:
            overrides = dict(captions.overrides)
            del overrides[removed.id]
            self.replace_overrides(overrides)
        return batch

    def update_metadata(self, product_name: str, trigger_word: str) -> None:
        self.store.put(KEY_PRODUCT_NAME, product_name)
        self.store.put(KEY_TRIGGER_WORD, trigger_word)

    def load_captions(self) -> CaptionSnapshot:
        raw_generated = self.store.get(KEY_GENERATED_CAPTIONS) or []
        raw_overrides = self.store.get(KEY_CAPTION_OVERRIDES) or {}
        if not isinstance(raw_generated, list) or not isinstance(raw_overrides, dict):
            raise StorageError("Caption entries have an unexpected shape")
        try:
            generated = tuple(
                _caption_from_record(record) if record is not None else None
                for record in raw_generated
            )
            overrides = {UUID(key): str(value) for key, value in raw_overrides.items()}
        except (AttributeError, KeyError, TypeError, ValueError) as exc:
            raise StorageError(f"Corrupt caption entries: {exc}") from exc
        return CaptionSnapshot(generated=generated, overrides=overrides)

    def save_generated_captions(self, results: list[CaptionResult]) -> None:
        """Replace the generated caption list in a single write."""
        self.store.put(KEY_GENERATED_CAPTIONS, _captions_to_records(results))

    def save_override(self, image_id: UUID, text: str) -> None:
        overrides = dict(self.load_captions().overrides)
        overrides[image_id] = text
        self.replace_overrides(overrides)

    def replace_overrides(self, overrides: dict[UUID, str]) -> None:
        self.store.put(
            KEY_CAPTION_OVERRIDES,
            {str(image_id): text for image_id, text in overrides.items()},
        )

    def clear(self) -> None:
        self.store.clear()

    def _image_count(self) -> int:
        raw = self.store.get(KEY_IMAGE_COUNT)
        if raw is None:
            return 0
        if not isinstance(raw, int) or raw < 0:
            raise StorageError(f"Invalid imageCount: {raw!r}")
        return raw

    def _string(self, key: str) -> str:
        raw = self.store.get(key)
        return raw if isinstance(raw, str) else ""


def _indexed_keys(keys: list[str]) -> list[int]:
    indices = []
    for key in keys:
        prefix, _, suffix = key.partition("_")
        if prefix == "image" and suffix.isdigit():
            indices.append(int(suffix))
    return indices


def _image_to_record(image: SourceImage) -> dict[str, object]:
    return {
        "id": str(image.id),
        "originalName": image.original_name,
        "displayName": image.display_name,
        "pixelWidth": image.pixel_width,
        "pixelHeight": image.pixel_height,
        "isValid": image.is_valid,
        "data": base64.b64encode(image.encoded_bytes).decode("ascii"),
    }


def _image_from_record(record: object) -> SourceImage:
    if not isinstance(record, dict):
        raise TypeError(f"expected a mapping, got {type(record).__name__}")
    return SourceImage(
        id=UUID(record["id"]),
        original_name=record["originalName"],
        display_name=record["displayName"],
        pixel_width=int(record["pixelWidth"]),
        pixel_height=int(record["pixelHeight"]),
        encoded_bytes=base64.b64decode(record["data"], validate=True),
        is_valid=bool(record["isValid"]),
    )


def _captions_to_records(
    results: list[CaptionResult | None],
) -> list[dict[str, object] | None]:
    return [
        None
        if result is None
        else {
            "imageId": str(result.image_id),
            "text": result.text,
            "failed": result.failed,
            "attempts": result.attempts,
        }
        for result in results
    ]


def _caption_from_record(record: dict[str, object]) -> CaptionResult:
    text = record.get("text")
    return CaptionResult(
        image_id=UUID(str(record["imageId"])),
        text=str(text) if text is not None else None,
        failed=bool(record.get("failed", False)),
        attempts=int(record.get("attempts", 0)),
    )
