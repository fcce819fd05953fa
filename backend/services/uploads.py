import logging
import os

import cloudinary
import cloudinary.uploader
from cloudinary.exceptions import Error as CloudinaryError
from werkzeug.utils import secure_filename

from config import setting
from backend.errors import UploadError, ValidationError

logger = logging.getLogger(__name__)

# upload preset and folder per kind of asset
TARGETS = {
    'plants': ('git-plants(plants)', 'images/plants'),
    'backgrounds': ('git-plants(backgrounds)', 'items/backgrounds'),
    'pots': ('git-plants(pots)', 'items/pots'),
    'badges': ('git-plants(badges)', 'images/badges'),
    'update-notes': ('git-plants(update-notes)', 'images/updates'),
}

IMAGE_SIGNATURES = {
    b'\x89PNG\r\n\x1a\n': 'png',
    b'\xff\xd8\xff': 'jpg',
    b'GIF87a': 'gif',
    b'GIF89a': 'gif',
    b'RIFF': 'webp',
}

ALLOWED_EXTENSIONS = {'png', 'jpg', 'jpeg', 'gif', 'webp'}

_configured = False


def init_cloudinary():
    global _configured
    if not (setting('CLOUDINARY_CLOUD_NAME') and setting('CLOUDINARY_API_KEY') and setting('CLOUDINARY_API_SECRET')):
        return False
    cloudinary.config(
        cloud_name=setting('CLOUDINARY_CLOUD_NAME'),
        api_key=setting('CLOUDINARY_API_KEY'),
        api_secret=setting('CLOUDINARY_API_SECRET'),
        secure=True,
    )
    _configured = True
    return True


def validate_image(file_storage):
    """Check extension and magic bytes of an uploaded file."""
    if file_storage is None or not file_storage.filename:
        raise ValidationError('Image file is required')
    ext = file_storage.filename.rsplit('.', 1)[-1].lower() if '.' in file_storage.filename else ''
    if ext not in ALLOWED_EXTENSIONS:
        raise ValidationError(f"Unsupported image type: {file_storage.filename}")
    head = file_storage.stream.read(16)
    file_storage.stream.seek(0)
    if not any(head.startswith(sig) for sig in IMAGE_SIGNATURES):
        raise ValidationError(f"File is not a valid image: {file_storage.filename}")


def public_id_for(filename):
    base = os.path.splitext(secure_filename(filename or ''))[0]
    return base or None


def upload_image(file_storage, target, public_id=None):
    """Upload one image and return Cloudinary's response (``secure_url`` etc.)."""
    if target not in TARGETS:
        raise ValidationError(f"Unknown upload target: {target}")
    if not _configured and not init_cloudinary():
        raise UploadError('Image uploads are not configured', status_code=503)
    validate_image(file_storage)
    preset, folder = TARGETS[target]
    try:
        result = cloudinary.uploader.upload(
            file_storage.stream,
            upload_preset=preset,
            folder=folder,
            public_id=public_id or public_id_for(file_storage.filename),
        )
    except CloudinaryError as e:
        logger.error("Cloudinary upload to %s failed: %s", folder, e)
        raise UploadError('Image upload failed')
    logger.info("Uploaded %s to %s", result.get('public_id'), folder)
    return result
