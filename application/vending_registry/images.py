"""Photo ingestion: validation, geotag extraction, derivatives, upload.

One run moves through validating -> uploading-original -> generating-thumbnail
-> uploading-thumbnail -> done, and to failed from any of them. Objects that
were already stored when a later step fails are left in place; whether to
retry is up to the caller.
"""
from __future__ import annotations

import io
import logging
import os
import re
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Optional, Tuple
from urllib.parse import unquote, urlparse

from PIL import Image, ImageOps, UnidentifiedImageError

from .config import CONFIG, STATIC_MOUNT
from .errors import (
    ImageDecodeError,
    ImageTransferError,
    ImageValidationError,
    InvalidStorageURL,
    WriteError,
)
from .models import Coordinates, Geotag, ImageFile, UploadResult
from .ports import BlobStorage, ImageCodec, PixelBuffer

log = logging.getLogger("vending-registry")

ProgressCallback = Callable[[int], None]

_GPS_IFD = 0x8825
_EXIF_IFD = 0x8769
_DATETIME_ORIGINAL = 0x9003
_DATETIME = 0x0132

_PIL_FORMATS = {
    "image/jpeg": "JPEG",
    "image/png": "PNG",
    "image/gif": "GIF",
    "image/webp": "WEBP",
}

# gs-style download URLs: /v0/b/<bucket>/o/<url-encoded path>
_BUCKET_URL_RE = re.compile(r"/v0/b/[^/]+/o/([^?]+)")


class Stage(Enum):
    VALIDATING = "validating"
    UPLOADING_ORIGINAL = "uploading-original"
    GENERATING_THUMBNAIL = "generating-thumbnail"
    UPLOADING_THUMBNAIL = "uploading-thumbnail"
    DONE = "done"
    FAILED = "failed"


@dataclass(frozen=True)
class CompressOptions:
    quality: float = 0.8
    max_width: int = 1920
    max_height: int = 1080


FULL_SIZE = CompressOptions(
    quality=CONFIG["IMAGE_QUALITY"],
    max_width=CONFIG["IMAGE_MAX_WIDTH"],
    max_height=CONFIG["IMAGE_MAX_HEIGHT"],
)
THUMBNAIL = CompressOptions(
    quality=CONFIG["THUMBNAIL_QUALITY"],
    max_width=CONFIG["THUMBNAIL_MAX_SIZE"],
    max_height=CONFIG["THUMBNAIL_MAX_SIZE"],
)


class PillowCodec:
    """ImageCodec on top of Pillow."""

    def decode(self, data: bytes) -> Image.Image:
        try:
            im = Image.open(io.BytesIO(data))
            im.load()
            return ImageOps.exif_transpose(im)
        except (UnidentifiedImageError, Image.DecompressionBombError, OSError, ValueError) as e:
            raise ImageDecodeError(f"cannot decode image: {e}") from e

    def encode(self, pixels: Image.Image, size: Tuple[int, int], quality: float, media_type: str) -> bytes:
        fmt = _PIL_FORMATS.get(media_type)
        if fmt is None:
            raise ImageDecodeError(f"cannot encode {media_type}")
        im = pixels if pixels.size == size else pixels.resize(size, Image.LANCZOS)
        params: dict = {}
        if fmt in ("JPEG", "WEBP"):
            params["quality"] = max(1, min(100, int(round(quality * 100))))
        if fmt == "JPEG" and im.mode not in ("RGB", "L"):
            im = im.convert("RGB")
        buf = io.BytesIO()
        try:
            im.save(buf, format=fmt, **params)
        except (OSError, ValueError) as e:
            raise ImageDecodeError(f"cannot encode image: {e}") from e
        return buf.getvalue()


def scaled_size(width: int, height: int, max_width: int, max_height: int) -> Tuple[int, int]:
    """Target size for a derivative.

    Untouched when both sides fit. Otherwise the longer side is set to its own
    maximum and the other follows the aspect ratio.
    """
    if width <= max_width and height <= max_height:
        return width, height
    aspect = width / height
    if width > height:
        w = max_width
        h = w / aspect
    else:
        h = max_height
        w = h * aspect
    return max(1, int(round(w))), max(1, int(round(h)))


def _ratio(v: Any) -> float:
    return float(v)


def _dms_to_degrees(dms: Any, ref: Any) -> float:
    d, m, s = (_ratio(x) for x in dms)
    deg = d + m / 60.0 + s / 3600.0
    if str(ref).strip().upper() in ("S", "W"):
        deg = -deg
    return deg


def _parse_exif_datetime(raw: Any) -> Optional[datetime]:
    if not raw:
        return None
    try:
        return datetime.strptime(str(raw).strip().rstrip("\x00"), "%Y:%m:%d %H:%M:%S")
    except ValueError:
        return None


def _gps_datetime(gps: dict) -> Optional[datetime]:
    date, hms = gps.get(29), gps.get(7)
    if not date or not hms:
        return None
    try:
        h, m, s = (_ratio(x) for x in hms)
        day = datetime.strptime(str(date).strip(), "%Y:%m:%d")
    except (ValueError, TypeError):
        return None
    return day.replace(hour=int(h), minute=int(m), second=int(s), tzinfo=timezone.utc)


def extract_geotag(file: ImageFile) -> Optional[Geotag]:
    """Coordinates embedded in the image's EXIF GPS block, if trustworthy.

    Returns None when there is no GPS block, when the coordinates are out of
    range, or when the metadata cannot be parsed at all.
    """
    try:
        with Image.open(io.BytesIO(file.data)) as im:
            exif = im.getexif()
        gps = exif.get_ifd(_GPS_IFD)
        if not gps or 2 not in gps or 4 not in gps:
            return None
        lat = _dms_to_degrees(gps[2], gps.get(1, "N"))
        lon = _dms_to_degrees(gps[4], gps.get(3, "E"))
        if not (-90 <= lat <= 90) or not (-180 <= lon <= 180):
            log.debug("discarding out-of-range geotag in %s: %s,%s", file.name, lat, lon)
            return None

        altitude = None
        if 6 in gps:
            altitude = _ratio(gps[6])
            if gps.get(5) in (1, b"\x01"):
                altitude = -altitude

        taken = _parse_exif_datetime(exif.get_ifd(_EXIF_IFD).get(_DATETIME_ORIGINAL))
        if taken is None:
            taken = _gps_datetime(gps) or _parse_exif_datetime(exif.get(_DATETIME))
    except Exception:  # best effort; never blocks the upload path
        log.debug("geotag extraction failed for %s", file.name, exc_info=True)
        return None
    return Geotag(coordinate=Coordinates(lat, lon), altitude=altitude, timestamp=taken)


@dataclass(frozen=True)
class Derivative:
    data: bytes
    media_type: str
    width: int
    height: int


class AttachStatus(Enum):
    ATTACHED = "attached"
    VALIDATION_FAILED = "validation_failed"
    UPLOAD_FAILED = "upload_failed"
    RECORD_UPDATE_FAILED = "record_update_failed"


@dataclass(frozen=True)
class AttachOutcome:
    """Result of attaching a photo to a record that already exists.

    The record itself is never rolled back; only ``image_attached`` says
    whether the photo made it.
    """
    record_id: str
    status: AttachStatus
    upload: Optional[UploadResult] = None
    error: Optional[Exception] = None

    @property
    def image_attached(self) -> bool:
        return self.status is AttachStatus.ATTACHED


class ImageIngestPipeline:
    def __init__(
        self,
        storage: BlobStorage,
        codec: Optional[ImageCodec] = None,
        max_bytes: Optional[int] = None,
        allowed_types: Optional[Tuple[str, ...]] = None,
        prefix: Optional[str] = None,
        clock: Callable[[], float] = time.time,
    ):
        self.storage = storage
        self.codec = codec or PillowCodec()
        self.max_bytes = CONFIG["MAX_IMAGE_BYTES"] if max_bytes is None else max_bytes
        self.allowed_types = tuple(allowed_types or CONFIG["ALLOWED_IMAGE_TYPES"])
        self.prefix = (prefix or CONFIG["STORAGE_PREFIX"]).strip("/")
        self.clock = clock

    # -- validation ------------------------------------------------------

    def is_valid_image_type(self, media_type: str) -> bool:
        return (media_type or "").lower() in self.allowed_types

    def validate(self, file: ImageFile) -> None:
        if file.size > self.max_bytes:
            raise ImageValidationError(
                f"File size exceeds {self.max_bytes // (1024 * 1024)}MB limit"
            )
        if not self.is_valid_image_type(file.media_type):
            raise ImageValidationError("Invalid file type. Only images are allowed")

    extract_geotag = staticmethod(extract_geotag)

    # -- derivatives -----------------------------------------------------

    def compress(self, file: ImageFile, options: CompressOptions = FULL_SIZE) -> Derivative:
        media_type = file.media_type.lower()
        pixels: PixelBuffer = self.codec.decode(file.data)
        size = scaled_size(pixels.width, pixels.height, options.max_width, options.max_height)
        data = self.codec.encode(pixels, size, options.quality, media_type)
        return Derivative(data=data, media_type=media_type, width=size[0], height=size[1])

    def generate_thumbnail(self, file: ImageFile) -> Derivative:
        return self.compress(file, THUMBNAIL)

    # -- storage ---------------------------------------------------------

    def _paths(self, machine_id: str, name: str) -> Tuple[str, str]:
        filename = f"{int(self.clock() * 1000)}_{os.path.basename(name) or 'image'}"
        base = f"{self.prefix}/{machine_id}"
        return f"{base}/{filename}", f"{base}/thumb_{filename}"

    def upload(
        self,
        machine_id: str,
        original: ImageFile,
        thumbnail: Optional[Derivative] = None,
        on_progress: Optional[ProgressCallback] = None,
    ) -> UploadResult:
        """Store ``original`` and its thumbnail; return both public URLs.

        When ``thumbnail`` is not supplied it is generated from ``original``
        after the original is stored.
        """
        def progress(pct: int) -> None:
            if on_progress is not None:
                on_progress(pct)

        stage = Stage.VALIDATING
        self.validate(original)
        original_path, thumb_path = self._paths(machine_id, original.name)
        log.info("uploading image for %s → %s", machine_id, original_path)
        try:
            stage = Stage.UPLOADING_ORIGINAL
            progress(0)
            original_ref = self.storage.put(original_path, original.data, original.media_type)
            progress(50)

            stage = Stage.GENERATING_THUMBNAIL
            if thumbnail is None:
                thumbnail = self.generate_thumbnail(original)

            stage = Stage.UPLOADING_THUMBNAIL
            thumb_ref = self.storage.put(thumb_path, thumbnail.data, thumbnail.media_type)
            progress(100)

            result = UploadResult(
                image_url=self.storage.public_url(original_ref),
                thumbnail_url=self.storage.public_url(thumb_ref),
            )
        except Exception as e:
            log.error("image pipeline for %s failed at %s: %s", machine_id, stage.value, e)
            raise ImageTransferError(f"Upload failed during {stage.value}: {e}", stage=stage.value) from e
        log.info("image upload for %s done", machine_id)
        return result

    def ingest(
        self,
        machine_id: str,
        file: ImageFile,
        on_progress: Optional[ProgressCallback] = None,
    ) -> UploadResult:
        """Validate, build the full-size derivative, then upload it with a thumbnail."""
        self.validate(file)
        full = self.compress(file, FULL_SIZE)
        derivative = ImageFile(name=file.name, data=full.data, media_type=full.media_type)
        return self.upload(machine_id, derivative, on_progress=on_progress)

    def attach(
        self,
        machine_id: str,
        file: ImageFile,
        gateway,
        on_progress: Optional[ProgressCallback] = None,
    ) -> AttachOutcome:
        """Upload ``file`` and point record ``machine_id`` at it.

        Failures are reported in the outcome, never by touching the record.
        """
        try:
            upload = self.ingest(machine_id, file, on_progress=on_progress)
        except (ImageValidationError, ImageDecodeError) as e:
            return AttachOutcome(machine_id, AttachStatus.VALIDATION_FAILED, error=e)
        except ImageTransferError as e:
            return AttachOutcome(machine_id, AttachStatus.UPLOAD_FAILED, error=e)
        try:
            gateway.attach_image(machine_id, upload)
        except WriteError as e:
            # uploaded objects stay in storage unattached
            return AttachOutcome(machine_id, AttachStatus.RECORD_UPDATE_FAILED, upload=upload, error=e)
        return AttachOutcome(machine_id, AttachStatus.ATTACHED, upload=upload)

    def storage_path(self, url: str) -> str:
        """Storage path for a public URL or a bare path."""
        if not url or not url.strip():
            raise InvalidStorageURL("Invalid storage URL")
        parsed = urlparse(url.strip())
        if parsed.scheme:
            if parsed.scheme not in ("http", "https") or not parsed.netloc:
                raise InvalidStorageURL("Invalid storage URL")
            m = _BUCKET_URL_RE.search(parsed.path)
            if m:
                path = unquote(m.group(1))
            else:
                mount = f"{STATIC_MOUNT.rstrip('/')}/"
                idx = parsed.path.find(mount)
                if idx < 0:
                    raise InvalidStorageURL("Invalid storage URL")
                path = unquote(parsed.path[idx + len(mount):])
        else:
            path = unquote(parsed.path)
        path = path.strip("/")
        if not path or any(p in (".", "..") for p in path.split("/")):
            raise InvalidStorageURL("Invalid storage URL")
        return path

    def delete_image(self, url: str) -> None:
        path = self.storage_path(url)
        try:
            self.storage.delete(path)
        except Exception as e:
            log.error("failed to delete %s: %s", path, e)
            raise ImageTransferError("Failed to delete image", stage="delete") from e
        log.info("deleted image %s", path)
