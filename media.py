import cloudinary
import cloudinary.uploader
from cloudinary.exceptions import Error as CloudinaryError
import structlog

from config import Settings
from errors import ShopError, ValidationFailed

log = structlog.get_logger(__name__)


def upload_image(image: str, settings: Settings) -> str:
    """Upload a base64 data URI to Cloudinary and return its public URL."""
    if not image:
        raise ValidationFailed("Image data is required")
    cloudinary.config(
        cloud_name=settings.cloudinary_cloud_name,
        api_key=settings.cloudinary_api_key,
        api_secret=settings.cloudinary_api_secret,
        secure=True,
    )
    try:
        result = cloudinary.uploader.upload(image, resource_type="auto")
    except CloudinaryError as e:
        log.error("image_upload_failed", error=str(e))
        raise ShopError("Image upload failed")
    return result["secure_url"]
