"""Image uploads stored on local disk under UPLOAD_DIR/<type>/ and served from /uploads."""
import io
import logging
import os
import re
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from PIL import Image, UnidentifiedImageError

import config
from errors import NotFound, ValidationError

logger = logging.getLogger("storefront")

ALLOWED_EXTENSIONS = {"jpeg", "jpg", "png", "gif", "webp"}
MAX_FILES = 10
DEFAULT_TYPE = "general"

_TYPE_PATTERN = re.compile(r"^[a-z0-9_-]+$")
_UNBOUNDED = 1 << 16


def upload_root() -> str:
    return os.path.abspath(config.UPLOAD_DIR)


def type_dir(upload_type: Optional[str]) -> str:
    upload_type = upload_type or DEFAULT_TYPE
    if not _TYPE_PATTERN.match(upload_type):
        raise ValidationError("Invalid upload type")
    return upload_type


def extension_of(filename: str) -> str:
    return os.path.splitext(filename or "")[1].lower().lstrip(".")


def check_image(filename: str, content_type: Optional[str], size: int):
    ext = extension_of(filename)
    subtype = (content_type or "").split("/")[-1].lower()
    if ext not in ALLOWED_EXTENSIONS or subtype not in ALLOWED_EXTENSIONS:
        raise ValidationError("Only image files are allowed (jpeg, jpg, png, gif, webp)")
    if size > config.MAX_FILE_SIZE:
        raise ValidationError(f"File too large, limit is {config.MAX_FILE_SIZE} bytes")


def optimize_image(data: bytes, ext: str, width: Optional[int] = None, height: Optional[int] = None) -> bytes:
    """Re-encode an image, shrinking it to fit inside width x height without enlarging it."""
    try:
        image = Image.open(io.BytesIO(data))
        image.load()
    except (UnidentifiedImageError, OSError):
        raise ValidationError("File is not a valid image")

    if width or height:
        image.thumbnail((width or _UNBOUNDED, height or _UNBOUNDED))

    out = io.BytesIO()
    if ext in ("jpg", "jpeg"):
        if image.mode not in ("RGB", "L"):
            image = image.convert("RGB")
        image.save(out, format="JPEG", quality=85, progressive=True, optimize=True)
    elif ext == "png":
        image.save(out, format="PNG", compress_level=9, optimize=True)
    elif ext == "webp":
        image.save(out, format="WEBP", quality=85)
    else:
        image.save(out, format=image.format or ext.upper())
    return out.getvalue()


def save_image(data: bytes, filename: str, content_type: Optional[str], upload_type: Optional[str] = None,
               optimize: bool = True, width: Optional[int] = None, height: Optional[int] = None) -> Dict[str, Any]:
    check_image(filename, content_type, len(data))
    subdir = type_dir(upload_type)
    ext = extension_of(filename)
    if optimize:
        data = optimize_image(data, ext, width, height)

    stored_name = f"{uuid.uuid4()}.{ext}"
    directory = os.path.join(upload_root(), subdir)
    os.makedirs(directory, exist_ok=True)
    path = os.path.join(directory, stored_name)
    with open(path, "wb") as fh:
        fh.write(data)
    logger.info("Stored upload %s/%s (%d bytes)", subdir, stored_name, len(data))

    return {
        "url": f"/uploads/{subdir}/{stored_name}",
        "filename": stored_name,
        "originalName": filename,
        "mimetype": content_type,
        "size": len(data),
    }


def resolve_upload_path(url: str) -> str:
    """Map an /uploads URL to a file path, refusing anything outside the upload root."""
    relative = url.split("/uploads/", 1)[-1].lstrip("/")
    root = upload_root()
    path = os.path.abspath(os.path.join(root, relative))
    if os.path.commonpath([root, path]) != root or path == root:
        raise ValidationError("Invalid image path")
    return path


def delete_image(url: str):
    if not url:
        raise ValidationError("Image URL is required")
    path = resolve_upload_path(url)
    if not os.path.isfile(path):
        raise NotFound("Image not found")
    os.remove(path)
    logger.info("Deleted upload %s", url)


def list_images(upload_type: Optional[str] = None) -> List[Dict[str, Any]]:
    subdir = type_dir(upload_type)
    directory = os.path.join(upload_root(), subdir)
    if not os.path.isdir(directory):
        return []
    images = []
    for name in os.listdir(directory):
        path = os.path.join(directory, name)
        if not os.path.isfile(path):
            continue
        stat = os.stat(path)
        images.append({
            "url": f"/uploads/{subdir}/{name}",
            "filename": name,
            "size": stat.st_size,
            "created": datetime.fromtimestamp(stat.st_mtime, tz=timezone.utc),
        })
    images.sort(key=lambda i: i["created"], reverse=True)
    return images
