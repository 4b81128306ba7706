from .config import CONFIG, DITTO_BASE_URL, DITTO_PASS, DITTO_USER, DITTO_NAMESPACE, APP_DATA_DIR, UPLOAD_DIR, STATIC_MOUNT, PUBLIC_BASE_URL
from .models import Category, OperatingStatus, PaymentMethod, Record, RecordCandidate, FilterState, DerivedView, Coordinates, Geotag, ImageFile, UploadResult
from .errors import RegistryError, ValidationError, SubscriptionError, WriteError, ImageValidationError, ImageDecodeError, ImageTransferError, InvalidStorageURL
from .geo import distance, format_distance, sort_by_distance, nearby
from .validation import validate, ValidationResult
from .gateway import WriteGateway
from .registry import RegistrySync, SyncState
from .filters import derive_view, FilterController
from .images import ImageIngestPipeline, PillowCodec, AttachOutcome, AttachStatus, extract_geotag
from .ditto_client import DittoClient
from .memory_store import InMemoryStore
from .blob_storage import LocalBlobStorage, InMemoryBlobStorage


__all__ = [
"CONFIG","DITTO_BASE_URL","DITTO_PASS","DITTO_USER","DITTO_NAMESPACE",
"APP_DATA_DIR","UPLOAD_DIR","STATIC_MOUNT","PUBLIC_BASE_URL",
"Category","OperatingStatus","PaymentMethod","Record","RecordCandidate",
"FilterState","DerivedView","Coordinates","Geotag","ImageFile","UploadResult",
"RegistryError","ValidationError","SubscriptionError","WriteError",
"ImageValidationError","ImageDecodeError","ImageTransferError","InvalidStorageURL",
"distance","format_distance","sort_by_distance","nearby",
"validate","ValidationResult","WriteGateway","RegistrySync","SyncState",
"derive_view","FilterController",
"ImageIngestPipeline","PillowCodec","AttachOutcome","AttachStatus","extract_geotag",
"DittoClient","InMemoryStore","LocalBlobStorage","InMemoryBlobStorage"
]
