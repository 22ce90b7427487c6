import os
import re
from typing import Iterable, Optional, Tuple
from urllib.parse import urlparse

import cloudinary
import cloudinary.api
import cloudinary.uploader
from flask import current_app

DEFAULT_FOLDER = "noble-mosaic"
ALLOWED_IMAGE_EXTENSIONS = {"png", "jpg", "jpeg", "gif", "webp", "svg"}

_version_segment = re.compile(r"^v\d+$")


def configure(config) -> bool:
    """Point the Cloudinary SDK at the configured account.

    Returns False when no credentials are present so callers can warn early.
    """
    if os.getenv("CLOUDINARY_URL"):
        cloudinary.config(secure=True)
        return True

    cloud_name = (config.get("CLOUDINARY_CLOUD_NAME") or "").strip()
    if not cloud_name:
        return False

    cloudinary.config(
        cloud_name=cloud_name,
        api_key=config.get("CLOUDINARY_API_KEY"),
        api_secret=config.get("CLOUDINARY_API_SECRET"),
        secure=True,
    )
    return True


def allowed_image_extension(filename: str) -> bool:
    extension = os.path.splitext(filename or "")[1].lower().lstrip(".")
    if not extension:
        return False
    return extension in ALLOWED_IMAGE_EXTENSIONS


def upload_image(image_file, folder: str = DEFAULT_FOLDER) -> Tuple[str, str]:
    """Send an uploaded file to Cloudinary and return ``(url, public_id)``.

    Errors from the SDK propagate; the route decides how to report them.
    """
    result = cloudinary.uploader.upload(
        image_file,
        folder=folder or DEFAULT_FOLDER,
        resource_type="image",
        overwrite=False,
        unique_filename=True,
    )
    url = result.get("secure_url") or result.get("url") or ""
    return url, result.get("public_id") or ""


def public_id_from_url(url: Optional[str]) -> Optional[str]:
    """Derive the Cloudinary public id from a delivery URL.

    ``https://res.cloudinary.com/demo/image/upload/v17/secrets/book/color/a.png``
    maps to ``secrets/book/color/a``. URLs that are not Cloudinary uploads
    give None.
    """
    if not url or not isinstance(url, str):
        return None

    segments = [segment for segment in urlparse(url.strip()).path.split("/") if segment]
    if "upload" not in segments:
        return None

    remainder = segments[segments.index("upload") + 1 :]
    if remainder and _version_segment.match(remainder[0]):
        remainder = remainder[1:]
    if not remainder:
        return None

    filename = os.path.splitext(remainder[-1])[0]
    if not filename:
        return None
    return "/".join(remainder[:-1] + [filename])


def delete_image(public_id: Optional[str]) -> bool:
    """Best-effort destroy; failures are logged and reported as False."""
    if not public_id:
        return False
    # Missing credentials surface as bare Exception/ValueError from the SDK.
    try:
        cloudinary.uploader.destroy(public_id)
    except Exception as exc:
        current_app.logger.warning("Unable to delete image %s: %s", public_id, exc)
        return False
    return True


def delete_image_urls(urls: Iterable[Optional[str]]) -> int:
    """Best-effort removal of every Cloudinary-hosted URL in ``urls``."""
    removed = 0
    seen = set()
    for url in urls or []:
        public_id = public_id_from_url(url)
        if not public_id or public_id in seen:
            continue
        seen.add(public_id)
        if delete_image(public_id):
            removed += 1
    return removed


def delete_folder(folder_path: str) -> bool:
    """Remove every resource under ``folder_path`` and then the folder itself."""
    if not folder_path:
        return False
    try:
        cloudinary.api.delete_resources_by_prefix(folder_path)
    except Exception as exc:
        current_app.logger.error("Error deleting folder %s: %s", folder_path, exc)
        return False

    # Cloudinary refuses to drop a folder that still has sub-folders.
    for path in (f"{folder_path}/color", f"{folder_path}/uncolor", folder_path):
        try:
            cloudinary.api.delete_folder(path)
        except Exception as exc:
            current_app.logger.debug("Folder %s not removed: %s", path, exc)
    return True


def count_resources(prefix: str, max_results: int = 500) -> int:
    response = cloudinary.api.resources(
        type="upload", prefix=prefix, max_results=max_results
    )
    return len(response.get("resources") or [])
