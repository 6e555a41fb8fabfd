from __future__ import annotations

# ---------------------------------------------------------------------------
# Shared constants
# ---------------------------------------------------------------------------

# Default log file names (both append-only)
RUN_LOG_NAME = "artmerge_run.log"
ERROR_LOG_NAME = "artmerge_errors.log"

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"

# ---------------------------------------------------------------------------
# Merge defaults
# ---------------------------------------------------------------------------

DEFAULT_LAYOUT_NAME = "default.lay"
NESTED_ARCHIVE_EXT = ".zip"
PARTIAL_SUFFIX = ".partial"
SCRATCH_PREFIX = "artmerge_"

# sha1 is the default: this is a content-identity check, not a security one.
DIGEST_CHOICES = ("sha1", "sha256")
DEFAULT_DIGEST = "sha1"

COMPRESSION_CHOICES = ("deflated", "stored")
DEFAULT_COMPRESSION = "deflated"

# Image, audio and font families referenced from layout documents.
DEFAULT_ASSET_EXTENSIONS = (
    ".png",
    ".jpg",
    ".jpeg",
    ".bmp",
    ".gif",
    ".svg",
    ".wav",
    ".mp3",
    ".ogg",
    ".flac",
    ".ttf",
    ".otf",
)

# Layout attributes that name another definition in the same document.
IDENTIFIER_REF_ATTRS = ("element", "ref")
# Attributes that hold identifiers, never file paths.
IDENTIFIER_ATTRS = ("name",) + IDENTIFIER_REF_ATTRS

# Top-level definitions that get a per-pack identifier prefix.
PREFIXED_DEFINITION_TAGS = ("element", "group")
VIEW_TAG = "view"

# Separator between the pack label and the original identifier.
IDENTIFIER_SEPARATOR = "__"
VIEW_NAME_SEPARATOR = " - "

# Fixed timestamp for archive entries so output is byte-reproducible.
ZIP_FIXED_DATE_TIME = (1980, 1, 1, 0, 0, 0)
