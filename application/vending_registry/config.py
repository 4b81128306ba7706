from __future__ import annotations
import os
import pathlib


CONFIG = {
    "MAX_IMAGE_BYTES": 10 * 1024 * 1024,
    "ALLOWED_IMAGE_TYPES": ("image/jpeg", "image/png", "image/gif", "image/webp"),
    "IMAGE_MAX_WIDTH": 1920,
    "IMAGE_MAX_HEIGHT": 1080,
    "IMAGE_QUALITY": 0.8,
    "THUMBNAIL_MAX_SIZE": 300,  # thumbnails are bounded to a square
    "THUMBNAIL_QUALITY": 0.7,
    "DESCRIPTION_MAX_LENGTH": 500,
    "NEARBY_LIMIT": 50,
    "STORAGE_PREFIX": "machines",  # blob paths: machines/<id>/<ts>_<name>
    "COLLECTION": "vending_machines",
    "SEARCH_PAGE_SIZE": 200,
}


DITTO_BASE_URL = os.getenv("DITTO_BASE_URL", "http://localhost:8080")
DITTO_USER = os.getenv("DITTO_USER", "ditto")
DITTO_PASS = os.getenv("DITTO_PASS", "ditto")
DITTO_NAMESPACE = os.getenv("DITTO_NAMESPACE", "vending")

APP_DATA_DIR = os.getenv("APP_DATA_DIR", str(pathlib.Path(__file__).parent.resolve()))
UPLOAD_DIR = pathlib.Path(APP_DATA_DIR) / "uploads"

STATIC_MOUNT = "/static"  # public URL prefix served by Flask
PUBLIC_BASE_URL = os.getenv("PUBLIC_BASE_URL", "http://localhost:8089")
