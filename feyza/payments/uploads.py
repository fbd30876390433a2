import uuid
from io import BytesIO

from PIL import Image, UnidentifiedImageError
from werkzeug.utils import secure_filename

from feyza.errors import ApiError

ALLOWED_FORMATS = {"JPEG", "PNG", "WEBP"}


def compress_image(file_storage, max_size_kb=300):
    """Re-encode an uploaded image as JPEG, lowering quality until it fits ``max_size_kb``."""
    try:
        img = Image.open(file_storage)
        img.load()
    except (UnidentifiedImageError, OSError):
        raise ApiError("Uploaded file is not a valid image", 400)
    if img.format not in ALLOWED_FORMATS:
        raise ApiError("Only JPEG, PNG or WEBP images are accepted", 400)
    if img.mode not in ("RGB", "L"):
        img = img.convert("RGB")

    quality = 85
    buffer = BytesIO()
    img.save(buffer, format="JPEG", optimize=True, quality=quality)
    while buffer.tell() > max_size_kb * 1024 and quality > 10:
        quality -= 5
        buffer.seek(0)
        buffer.truncate()
        img.save(buffer, format="JPEG", optimize=True, quality=quality)
    buffer.seek(0)
    return buffer


def proof_object_path(loan_id, filename):
    stem = secure_filename(filename or "proof").rsplit(".", 1)[0] or "proof"
    return f"{loan_id}/{uuid.uuid4().hex}_{stem}.jpg"


def upload_proof(supabase, bucket_name, loan_id, file_storage):
    """Compress and store a payment proof; returns its public URL."""
    buffer = compress_image(file_storage)
    path = proof_object_path(loan_id, file_storage.filename)
    bucket = supabase.storage.from_(bucket_name)
    bucket.upload(path, buffer.read(), {"content-type": "image/jpeg"})
    return bucket.get_public_url(path)
