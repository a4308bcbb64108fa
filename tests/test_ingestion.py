"""Tests for upload ingestion."""

from dataset_stager.domain.images import RawUpload
from dataset_stager.services.ingestion import IngestionService
from dataset_stager.services.normalizer import ImageNormalizer
from dataset_stager.services.staging import InMemoryStagingStore, StagingService
from tests.conftest import RecordingStagingStore, make_image_bytes


def test_ingest_reports_warnings_and_failures() -> None:
    staging = StagingService(InMemoryStagingStore())
    service = IngestionService(ImageNormalizer(min_resolution=100))
    uploads = [
        RawUpload("large.png", make_image_bytes(120, 120)),
        RawUpload("broken.jpg", b"\xff\xd8 truncated"),
        RawUpload("small.png", make_image_bytes(40, 200)),
    ]

    report = service.ingest(staging, uploads)

    assert [image.original_name for image in report.added] == [
        "large.png",
        "small.png",
    ]
    assert [image.is_valid for image in report.added] == [True, False]
    assert [image.display_name for image in report.added] == ["Image 1", "Image 2"]
    assert [failure.original_name for failure in report.failures] == ["broken.jpg"]
    assert [warning.original_name for warning in report.warnings] == ["small.png"]
    assert report.image_count == 2
    assert staging.load_batch().image_count == 2


def test_ingest_appends_after_existing_images() -> None:
    staging = StagingService(InMemoryStagingStore())
    service = IngestionService(ImageNormalizer(min_resolution=10))
    service.ingest(staging, [RawUpload("one.png", make_image_bytes(20, 20))])

    report = service.ingest(staging, [RawUpload("two.png", make_image_bytes(20, 20))])

    batch = staging.load_batch()
    assert report.image_count == 2
    assert [image.original_name for image in batch.images] == ["one.png", "two.png"]
    assert batch.images[1].display_name == "Image 2"


def test_nothing_written_when_no_upload_decodes() -> None:
    store = RecordingStagingStore()
    service = IngestionService(ImageNormalizer())

    report = service.ingest(
        StagingService(store), [RawUpload("a.txt", b"hello"), RawUpload("b", b"")]
    )

    assert report.added == []
    assert len(report.failures) == 2
    assert report.image_count == 0
    assert store.operations == []


def test_same_bytes_twice_yield_distinct_images() -> None:
    staging = StagingService(InMemoryStagingStore())
    service = IngestionService(ImageNormalizer(min_resolution=10))
    content = make_image_bytes(20, 20)

    report = service.ingest(
        staging, [RawUpload("dup.png", content), RawUpload("dup.png", content)]
    )

    assert len(report.added) == 2
    assert report.added[0].id != report.added[1].id


def test_reingest_after_clear_gives_same_metadata_new_ids() -> None:
    staging = StagingService(InMemoryStagingStore())
    service = IngestionService(ImageNormalizer(min_resolution=50))
    uploads = [
        RawUpload("wide.png", make_image_bytes(80, 60)),
        RawUpload("tiny.jpg", make_image_bytes(30, 30, image_format="JPEG")),
        RawUpload("tall.png", make_image_bytes(60, 90)),
    ]

    service.ingest(staging, uploads)
    first = staging.load_batch()
    staging.clear()
    service.ingest(staging, uploads)
    second = staging.load_batch()

    def shape(batch):  # type: ignore[no-untyped-def]
        return [
            (image.pixel_width, image.pixel_height, image.is_valid)
            for image in batch.images
        ]

    assert shape(second) == shape(first) == [
        (80, 60, True),
        (30, 30, False),
        (60, 90, True),
    ]
    assert second.image_count == first.image_count == 3
    assert set(second.image_ids).isdisjoint(first.image_ids)
