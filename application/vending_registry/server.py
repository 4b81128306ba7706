from __future__ import annotations
import logging
from typing import Any, Dict, Optional

from flask import Flask, request, jsonify
from flask_cors import CORS

from .blob_storage import LocalBlobStorage
from .config import CONFIG, STATIC_MOUNT
from .ditto_client import DittoClient
from .errors import (
    ImageTransferError,
    InvalidStorageURL,
    ValidationError,
    WriteError,
)
from .filters import derive_view
from .gateway import WriteGateway
from .geo import format_distance, nearby
from .images import AttachStatus, ImageIngestPipeline
from .models import (
    Category,
    Coordinates,
    FilterState,
    ImageFile,
    OperatingStatus,
    PaymentMethod,
    RecordCandidate,
    parse_enum,
    record_to_dict,
    view_to_dict,
)
from .ports import BlobStorage, RemoteStore
from .registry import RegistrySync, SyncState
from .validation import (
    sanitize_input,
    validate_description,
    validate_latitude,
    validate_longitude,
    validate_payment_methods,
)

log = logging.getLogger("vending-registry")
log.setLevel(logging.INFO)
handler = logging.StreamHandler()
handler.setFormatter(
    logging.Formatter("%(asctime)s %(levelname)s %(name)s %(message)s")
)
log.addHandler(handler)

_UPDATABLE = ("latitude", "longitude", "description", "category", "status", "payment_methods")


def _error(detail: str, status: int, **extra: Any):
    return jsonify({"detail": detail, **extra}), status


def _float_arg(name: str) -> Optional[float]:
    raw = request.args.get(name)
    if raw in (None, ""):
        return None
    try:
        return float(raw)
    except ValueError:
        raise ValueError(f"{name} must be a number")


def _uploaded_file() -> Optional[ImageFile]:
    file = request.files.get("file")
    if not file:
        return None
    return ImageFile(name=file.filename or "image", data=file.read(), media_type=file.mimetype or "")


def _candidate_from_request() -> RecordCandidate:
    if request.is_json:
        body = request.get_json(silent=True)
        if body is None:
            body = {}
        if not isinstance(body, dict):
            raise ValueError("JSON object body required")
        methods = body.get("payment_methods") or []
    else:
        body = request.form
        methods = request.form.getlist("payment_methods")

    def number(key: str):
        v = body.get(key)
        if isinstance(v, str):
            try:
                return float(v)
            except ValueError:
                return v
        return v

    return RecordCandidate(
        latitude=number("latitude"),
        longitude=number("longitude"),
        description=sanitize_input(body.get("description")),
        category=body.get("category"),
        status=body.get("status"),
        payment_methods=list(methods),
    )


def _update_fields(body: Dict[str, Any]) -> Dict[str, Any]:
    """Per-field checks for a PATCH body; unknown keys are rejected."""
    errors = []
    fields: Dict[str, Any] = {}
    for key, value in body.items():
        if key not in _UPDATABLE:
            errors.append(f"Field cannot be updated: {key}")
        elif key == "latitude" and not validate_latitude(value):
            errors.append("Invalid latitude: must be between -90 and 90")
        elif key == "longitude" and not validate_longitude(value):
            errors.append("Invalid longitude: must be between -180 and 180")
        elif key == "description":
            text = sanitize_input(value)
            if validate_description(text):
                fields[key] = text
            else:
                errors.append("Invalid description")
        elif key == "category" and parse_enum(Category, value) is None:
            errors.append("Invalid category")
        elif key == "status" and parse_enum(OperatingStatus, value) is None:
            errors.append("Invalid operating status")
        elif key == "payment_methods" and not validate_payment_methods(value):
            errors.append("Invalid payment methods")
        else:
            if key == "category":
                value = parse_enum(Category, value)
            elif key == "status":
                value = parse_enum(OperatingStatus, value)
            elif key == "payment_methods":
                value = [parse_enum(PaymentMethod, m) for m in value]
            fields[key] = value
    if errors:
        raise ValidationError(errors)
    return fields


def _outcome_payload(outcome) -> Dict[str, Any]:
    return {
        "record_id": outcome.record_id,
        "record_created": True,
        "image_attached": outcome.image_attached,
        "image_status": outcome.status.value,
        "image_url": outcome.upload.image_url if outcome.upload else None,
        "thumbnail_url": outcome.upload.thumbnail_url if outcome.upload else None,
        "image_error": str(outcome.error) if outcome.error else None,
    }


_OUTCOME_STATUS = {
    AttachStatus.ATTACHED: 200,
    AttachStatus.VALIDATION_FAILED: 422,
    AttachStatus.UPLOAD_FAILED: 502,
    AttachStatus.RECORD_UPDATE_FAILED: 502,
}


def create_app(
    store: Optional[RemoteStore] = None,
    storage: Optional[BlobStorage] = None,
) -> Flask:
    store = store if store is not None else DittoClient()
    storage = storage if storage is not None else LocalBlobStorage()
    if isinstance(storage, LocalBlobStorage):
        flask_app = Flask(
            __name__, static_url_path=STATIC_MOUNT, static_folder=str(storage.root)
        )
    else:
        flask_app = Flask(__name__, static_folder=None)
    CORS(flask_app)

    gateway = WriteGateway(store)
    registry = RegistrySync(store)
    pipeline = ImageIngestPipeline(storage)
    flask_app.extensions["vending_registry"] = {
        "registry": registry,
        "gateway": gateway,
        "pipeline": pipeline,
    }

    def _snapshot_or_error():
        registry.wait_ready(timeout=5)
        if registry.state is SyncState.ERROR:
            return None, _error(f"registry unavailable: {registry.error}", 503)
        return registry.snapshot, None

    @flask_app.route("/")
    def root_ok():
        return jsonify({"ok": True, "service": "Vending machine registry", "registry": registry.state.value})

    @flask_app.route("/machines", methods=["GET"])
    def list_machines():
        category = request.args.get("category") or None
        status = request.args.get("status") or None
        filters = FilterState(
            category=parse_enum(Category, category) if category else None,
            status=parse_enum(OperatingStatus, status) if status else None,
        )
        if category and filters.category is None:
            return _error(f"unknown category: {category}", 400)
        if status and filters.status is None:
            return _error(f"unknown status: {status}", 400)
        snapshot, err = _snapshot_or_error()
        if err:
            return err
        return jsonify(view_to_dict(derive_view(snapshot, filters)))

    @flask_app.route("/machines/nearby", methods=["GET"])
    def nearby_machines():
        try:
            lat = _float_arg("lat")
            lon = _float_arg("lon")
            radius = _float_arg("radius_km")
            limit = request.args.get("limit", type=int)
            if limit is None:
                limit = CONFIG["NEARBY_LIMIT"]
        except ValueError as e:
            return _error(str(e), 400)
        if not validate_latitude(lat) or not validate_longitude(lon):
            return _error("lat and lon are required and must be in range", 400)
        snapshot, err = _snapshot_or_error()
        if err:
            return err
        ranked = nearby(snapshot, Coordinates(lat, lon), radius_km=radius, limit=limit)
        return jsonify(
            [
                {
                    **record_to_dict(x.record),
                    "distance_km": x.distance_km,
                    "distance": format_distance(x.distance_km),
                }
                for x in ranked
            ]
        )

    @flask_app.route("/machines/<record_id>", methods=["GET"])
    def get_machine(record_id: str):
        try:
            rec = gateway.get(record_id)
        except WriteError as e:
            return _error(str(e), 502)
        if rec is None:
            return _error("not found", 404)
        return jsonify(record_to_dict(rec))

    @flask_app.route("/machines", methods=["POST"])
    def create_machine():
        """Create a record, then optionally attach the uploaded photo.

        The two steps are independent: a failed photo never undoes the
        record, and the response says which of them succeeded.
        """
        try:
            candidate = _candidate_from_request()
        except ValueError as e:
            return _error(str(e), 400)
        try:
            record_id = gateway.create(candidate)
        except ValidationError as e:
            return _error("validation failed", 422, errors=e.errors)
        except WriteError as e:
            log.exception("Create failed")
            return _error(str(e), 502, record_created=False)

        body: Dict[str, Any] = {"id": record_id, "record_created": True}
        file = _uploaded_file()
        if file is not None:
            outcome = pipeline.attach(record_id, file, gateway)
            body["image"] = _outcome_payload(outcome)
        return jsonify(body), 201

    @flask_app.route("/machines/<record_id>", methods=["PATCH"])
    def update_machine(record_id: str):
        body = request.get_json(silent=True)
        if not isinstance(body, dict) or not body:
            return _error("JSON object body required", 400)
        try:
            fields = _update_fields(body)
            gateway.update(record_id, fields)
        except ValidationError as e:
            return _error("validation failed", 422, errors=e.errors)
        except WriteError as e:
            log.exception("Update failed")
            return _error(str(e), 502)
        return jsonify({"id": record_id, "updated": sorted(fields)})

    @flask_app.route("/machines/<record_id>", methods=["DELETE"])
    def delete_machine(record_id: str):
        try:
            gateway.delete(record_id)
        except WriteError as e:
            log.exception("Delete failed")
            return _error(str(e), 502)
        return "", 204

    @flask_app.route("/machines/<record_id>/image", methods=["POST"])
    def upload_machine_image(record_id: str):
        file = _uploaded_file()
        if file is None:
            return _error("Missing file", 400)
        try:
            if gateway.get(record_id) is None:
                return _error("not found", 404)
        except WriteError as e:
            return _error(str(e), 502)
        outcome = pipeline.attach(record_id, file, gateway)
        return jsonify(_outcome_payload(outcome)), _OUTCOME_STATUS[outcome.status]

    @flask_app.route("/geotag", methods=["POST"])
    def read_geotag():
        file = _uploaded_file()
        if file is None:
            return _error("Missing file", 400)
        tag = pipeline.extract_geotag(file)
        if tag is None:
            return jsonify({"geotag": None})
        return jsonify(
            {
                "geotag": {
                    "latitude": tag.coordinate.latitude,
                    "longitude": tag.coordinate.longitude,
                    "altitude": tag.altitude,
                    "timestamp": tag.timestamp.isoformat() if tag.timestamp else None,
                }
            }
        )

    @flask_app.route("/images", methods=["DELETE"])
    def delete_image():
        url = request.args.get("url", "")
        try:
            pipeline.delete_image(url)
        except InvalidStorageURL as e:
            return _error(str(e), 400)
        except ImageTransferError as e:
            return _error(str(e), 502)
        return "", 204

    return flask_app
