import cloudinary.uploader
import pytest
from cloudinary.exceptions import Error as CloudinaryError

from errors import ShopError, ValidationFailed
from media import upload_image

PIXEL = "data:image/png;base64,iVBORw0KGgoAAAANSUhEUgAAAAEAAAABCAYAAAAfFcSJAAAADUlEQVR42mP8z8BQDwAEhQGAhKmMIQAAAABJRU5ErkJggg=="


def test_upload_requires_image(settings):
    for image in ("", None):
        with pytest.raises(ValidationFailed, match="Image data is required"):
            upload_image(image, settings)


def test_upload_returns_secure_url(settings, monkeypatch):
    calls = []

    def fake_upload(file, **options):
        calls.append((file, options))
        return {"secure_url": "https://res.cloudinary.com/decor/image/upload/v1/lamp.png", "url": "http://x"}

    monkeypatch.setattr(cloudinary.uploader, "upload", fake_upload)

    assert upload_image(PIXEL, settings) == "https://res.cloudinary.com/decor/image/upload/v1/lamp.png"
    assert calls == [(PIXEL, {"resource_type": "auto"})]


def test_upload_failure_is_reported(settings, monkeypatch):
    def rejected(file, **options):
        raise CloudinaryError("Invalid image file")

    monkeypatch.setattr(cloudinary.uploader, "upload", rejected)

    with pytest.raises(ShopError, match="Image upload failed") as exc_info:
        upload_image(PIXEL, settings)
    assert exc_info.value.status_code == 500
