"""Default configuration values and constants for dicom-share-loader."""

# Network defaults
DEFAULT_BASE_URL = "http://localhost:8080"
BASE_URL_ENV_VAR = "DICOM_SHARE_LOADER_BASE_URL"
SHARE_API_PREFIX = "/api/share"

# Media types
MULTIPART_DICOM = 'multipart/related; type="application/dicom"'
JSON_MEDIA_TYPE = "application/json"

# Cache defaults
CACHE_APP_NAME = "dicom-share-loader"
CACHE_DIR_ENV_VAR = "DICOM_SHARE_LOADER_CACHE_DIR"

# Performance defaults (None: tail fetches of a series are not capped)
DEFAULT_MAX_TAIL_FETCHES = None

# Status banner messages
STATUS_LOADING_SHARE = "Loading shared images..."
STATUS_LOADING_IMAGES = "Loading images..."
STATUS_ALL_LOADED = "All shared images loaded"
