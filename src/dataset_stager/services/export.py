"""Dataset archive packaging."""

import io
import logging
import re
import zipfile
from dataclasses import dataclass
from typing import TYPE_CHECKING

from PIL import Image, UnidentifiedImageError

from dataset_stager.domain.captions import CaptionSnapshot
from dataset_stager.domain.errors import PackagingError
from dataset_stager.domain.export import ExportArchive, ExportSnapshot, PackagedItem
from dataset_stager.domain.images import SourceImage
from dataset_stager.services.normalizer import CANONICAL_FORMAT, encode_canonical

if TYPE_CHECKING:
    from dataset_stager.services.sessions import DatasetSession, SessionManager

_logger = logging.getLogger(__name__)

DEFAULT_ARCHIVE_NAME = "untitled"
DEFAULT_ARCHIVE_SUFFIX = "_dataset.zip"

_UNSAFE_CHARS = re.compile(r"[^a-z0-9_]+")


def sanitize_product_name(product_name: str) -> str:
    """Lower-case ``product_name``; each run of other characters becomes ``_``."""
    cleaned = _UNSAFE_CHARS.sub("_", product_name.lower())
    return cleaned or DEFAULT_ARCHIVE_NAME


def entry_base_name(index: int) -> str:
    """Return the 1-based, zero-padded base name for a batch index."""
    return f"IMG_{index + 1:02d}"


@dataclass
class ExportPackager:
    """Builds a flat ZIP of ``IMG_NN.png`` / ``IMG_NN.txt`` pairs.

    Packaging is best-effort: an item whose image cannot be packaged is
    skipped and reported while the rest of the archive is still built.
    """

    suffix: str = DEFAULT_ARCHIVE_SUFFIX

    def archive_filename(self, product_name: str) -> str:
        return f"{sanitize_product_name(product_name)}{self.suffix}"

    def build_archive(
        self, snapshot: ExportSnapshot, captions: CaptionSnapshot
    ) -> ExportArchive:
        buffer = io.BytesIO()
        items: list[PackagedItem] = []
        with zipfile.ZipFile(buffer, "w", compression=zipfile.ZIP_DEFLATED) as archive:
            for index, image in enumerate(snapshot.slots):
                base_name = entry_base_name(index)
                try:
                    payload = self._image_payload(image)
                except PackagingError as exc:
                    _logger.warning("Skipping %s in export: %s", base_name, exc)
                    items.append(
                        PackagedItem(
                            index=index,
                            base_name=base_name,
                            image_id=image.id if image else None,
                            image_entry=None,
                            caption_entry=None,
                            error=str(exc),
                        )
                    )
                    continue

                image_entry = f"{base_name}.png"
                archive.writestr(image_entry, payload)
                caption_entry = None
                caption = captions.caption_for(index, image.id)
                if caption:
                    caption_entry = f"{base_name}.txt"
                    archive.writestr(caption_entry, caption)
                items.append(
                    PackagedItem(
                        index=index,
                        base_name=base_name,
                        image_id=image.id,
                        image_entry=image_entry,
                        caption_entry=caption_entry,
                    )
                )

        return ExportArchive(
            filename=self.archive_filename(snapshot.product_name),
            content=buffer.getvalue(),
            items=items,
        )

    def _image_payload(self, image: SourceImage | None) -> bytes:
        """Return PNG bytes for ``image`` after checking that they decode."""
        if image is None:
            raise PackagingError("image record is missing from the staging store")
        try:
            with Image.open(io.BytesIO(image.encoded_bytes)) as decoded:
                decoded.load()
                if decoded.format == CANONICAL_FORMAT:
                    return image.encoded_bytes
                return encode_canonical(decoded)
        except (UnidentifiedImageError, OSError, ValueError, SyntaxError) as exc:
            raise PackagingError(f"image payload could not be decoded: {exc}") from exc


@dataclass
class ExportService:
    """Reads a session snapshot and packages it."""

    packager: ExportPackager
    session_manager: "SessionManager"

    def export(self, session: "DatasetSession", finish: bool = False) -> ExportArchive:
        """Build the archive; with ``finish`` the session is closed afterwards."""
        slots, product_name = session.staging.load_image_slots()
        captions = session.staging.load_captions()
        archive = self.packager.build_archive(
            ExportSnapshot(product_name=product_name, slots=tuple(slots)), captions
        )
        _logger.info(
            "Export built: session=%s file=%s images=%s captions=%s skipped=%s",
            session.id,
            archive.filename,
            archive.image_entries,
            archive.caption_entries,
            len(archive.skipped),
        )
        if finish:
            self.session_manager.close(session.id)
        return archive
