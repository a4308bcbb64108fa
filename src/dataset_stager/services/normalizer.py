"""Image decoding, resolution gating, and canonical re-encoding."""

import base64
import io
from dataclasses import dataclass
from uuid import uuid4

from PIL import Image, UnidentifiedImageError

from dataset_stager.domain.errors import DecodeError
from dataset_stager.domain.images import SourceImage, ValidationWarning

MIN_RESOLUTION = 900
CANONICAL_FORMAT = "PNG"
CANONICAL_MIME_TYPE = "image/png"

# Modes Pillow can write to PNG without conversion.
_PNG_MODES = {"1", "L", "LA", "I", "I;16", "P", "RGB", "RGBA"}


@dataclass
class ImageNormalizer:
    """Turns raw uploads into canonical ``SourceImage`` records."""

    min_resolution: int = MIN_RESOLUTION

    def normalize(
        self, raw: bytes, original_name: str, sequence_index: int
    ) -> SourceImage:
        """Decode ``raw``, measure it, and re-encode it as PNG.

        Images below the resolution threshold are returned with
        ``is_valid=False`` rather than rejected. Raises ``DecodeError`` when
        the bytes are not a decodable image.
        """
        try:
            with Image.open(io.BytesIO(raw)) as image:
                image.load()
                width, height = image.size
                encoded = encode_canonical(image)
        except (
            UnidentifiedImageError,
            Image.DecompressionBombError,
            OSError,
            ValueError,
            SyntaxError,
        ) as exc:
            raise DecodeError(original_name, str(exc)) from exc

        return SourceImage(
            id=uuid4(),
            original_name=original_name,
            display_name=f"Image {sequence_index + 1}",
            pixel_width=width,
            pixel_height=height,
            encoded_bytes=encoded,
            is_valid=self.is_valid_size(width, height),
        )

    def is_valid_size(self, width: int, height: int) -> bool:
        return width >= self.min_resolution and height >= self.min_resolution

    def warning_for(self, image: SourceImage) -> ValidationWarning | None:
        """Return a warning record for an image below the threshold."""
        if image.is_valid:
            return None
        return ValidationWarning(
            image_id=image.id,
            original_name=image.original_name,
            pixel_width=image.pixel_width,
            pixel_height=image.pixel_height,
            min_resolution=self.min_resolution,
        )


def encode_canonical(image: Image.Image) -> bytes:
    """Encode a decoded image as PNG bytes."""
    if image.mode not in _PNG_MODES:
        has_alpha = "A" in image.getbands()
        image = image.convert("RGBA" if has_alpha else "RGB")
    buffer = io.BytesIO()
    image.save(buffer, format=CANONICAL_FORMAT)
    return buffer.getvalue()


def to_data_url(encoded_bytes: bytes) -> str:
    """Convert canonical image bytes to a base64 data URL."""
    encoded = base64.b64encode(encoded_bytes).decode("utf-8")
    return f"data:{CANONICAL_MIME_TYPE};base64,{encoded}"
