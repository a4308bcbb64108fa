"""Upload ingestion into the staged batch."""

import logging
from collections.abc import Sequence
from dataclasses import dataclass

from dataset_stager.domain.errors import DecodeError
from dataset_stager.domain.images import (
    IngestFailure,
    IngestReport,
    RawUpload,
    SourceImage,
    ValidationWarning,
)
from dataset_stager.services.normalizer import ImageNormalizer
from dataset_stager.services.staging import StagingService

_logger = logging.getLogger(__name__)


@dataclass
class IngestionService:
    """Normalizes uploads and appends them to a session's batch."""

    normalizer: ImageNormalizer

    def ingest(
        self, staging: StagingService, uploads: Sequence[RawUpload]
    ) -> IngestReport:
        """Normalize ``uploads`` in order and stage the decodable ones.

        Undecodable files are reported and excluded; undersized images are
        staged with a warning. All new images are written in one batch
        replacement.
        """
        batch = staging.load_batch()
        added: list[SourceImage] = []
        warnings: list[ValidationWarning] = []
        failures: list[IngestFailure] = []

        for upload in uploads:
            sequence_index = batch.image_count + len(added)
            try:
                image = self.normalizer.normalize(
                    upload.content, upload.filename, sequence_index
                )
            except DecodeError as exc:
                _logger.warning("Skipping upload %s: %s", upload.filename, exc.reason)
                failures.append(
                    IngestFailure(original_name=upload.filename, reason=exc.reason)
                )
                continue
            warning = self.normalizer.warning_for(image)
            if warning is not None:
                _logger.warning("Low resolution upload: %s", warning.message)
                warnings.append(warning)
            added.append(image)

        if added:
            batch = batch.with_appended(added)
            staging.replace_batch(batch)

        return IngestReport(
            added=added,
            warnings=warnings,
            failures=failures,
            image_count=batch.image_count,
        )
