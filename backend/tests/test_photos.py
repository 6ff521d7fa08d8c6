from botocore.exceptions import ClientError

from snowproblem.config import settings
from snowproblem.services import photos as photos_module
from snowproblem.services.photos import PhotoUpload, delete_photos, public_url, upload_photos

from conftest import DummyS3, image_bytes, photo


def test_upload_photos_stores_each_image(monkeypatch):
    s3 = DummyS3()
    monkeypatch.setattr(photos_module, "s3", s3)

    result = upload_photos("job-1", [photo("a.png"), photo("b.webp", data=image_bytes("WEBP"))], "before")

    assert len(result.succeeded) == 2
    assert result.failed == []
    assert [c["Bucket"] for c in s3.put_calls] == [settings.S3_BUCKET_NAME] * 2
    assert s3.put_calls[0]["Key"].startswith("job-1/before-")
    assert s3.put_calls[1]["Key"].endswith(".webp")
    assert all(url.startswith(settings.PHOTO_PUBLIC_BASE_URL) for url in result.succeeded)


def test_one_bad_photo_does_not_stop_the_batch(monkeypatch):
    s3 = DummyS3()
    monkeypatch.setattr(photos_module, "s3", s3)

    result = upload_photos(
        "job-1",
        [PhotoUpload("scan.pdf", "application/pdf", b"%PDF-1.4"), photo("ok.png")],
        "after",
    )

    assert len(result.succeeded) == 1
    assert result.failed_filenames == ["scan.pdf"]
    assert not result.all_failed


def test_storage_errors_are_reported_per_photo(monkeypatch):
    error = ClientError({"Error": {"Code": "InternalError", "Message": "boom"}}, "PutObject")
    s3 = DummyS3(put_error=error)
    monkeypatch.setattr(photos_module, "s3", s3)

    result = upload_photos("job-1", [photo("a.png"), photo("b.png")], "after")

    assert result.succeeded == []
    assert result.all_failed
    assert [f.reason for f in result.failed] == ["storage error", "storage error"]


def test_delete_photos_only_touches_our_bucket(monkeypatch):
    s3 = DummyS3()
    monkeypatch.setattr(photos_module, "s3", s3)

    delete_photos([public_url("job-1/after-abc.png"), "https://elsewhere.example.com/x.png"])

    assert s3.delete_calls == [{"Bucket": settings.S3_BUCKET_NAME, "Key": "job-1/after-abc.png"}]
