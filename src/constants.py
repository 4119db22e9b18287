"""Constants used in the project."""

from enum import Enum


class ExitCodes(Enum):
    """Exit codes for the program.

    Args:
        Enum (int): Exit codes for the program.
    """

    SUCCESS = 0
    CONNECTION_ERROR = 2
    FILE_ERROR = 1
    EXIT_WARNINGS = 3
    CONFIGURATION_ERROR = 4
    RESOLUTION_ERROR = 5
    INTEGRITY_ERROR = 6
    FROZEN_MISMATCH = 7


class RefType(Enum):
    """Kinds of git refs a dependency may point at.

    Args:
        Enum (string): Ref kinds recorded in the lock file.
    """

    TAG = "tag"
    BRANCH = "branch"
    COMMIT = "commit"


class Constants:  # pylint: disable=too-few-public-methods
    """General constants used in the project.
    Data holder for configuration constants; not intended to provide behavior.
    """

    LOG_FORMAT = "[%(levelname)s] %(message)s"
    ENV_LOG_LEVEL = "DLPM_LOG_LEVEL"
    ENV_LOG_FORMAT = "DLPM_LOG_FMT"
    REQUEST_TIMEOUT = 30  # Timeout in seconds for all HTTP requests
    USER_AGENT = "dlpm/0.1"

    # Repository API constants
    GITHUB_HOST = "github.com"
    GITHUB_API_BASE = "https://api.github.com"
    GITHUB_API_VERSION = "2022-11-28"
    GITHUB_ACCEPT = "application/vnd.github+json"
    RATE_LIMIT_LOW_WATER = 10

    # Retries after the first attempt; delay doubles from the base up to the cap
    HTTP_RETRY_MAX = 3
    HTTP_RETRY_BASE_DELAY_SEC = 1.0
    HTTP_RETRY_MAX_DELAY_SEC = 30.0
    DOWNLOAD_CHUNK_SIZE = 64 * 1024

    # Workspace files
    MANIFEST_FILE = "model.yaml"
    LOCK_FILE = "model.lock"
    LOCK_FILE_VERSION = "1"
    CACHE_DIR = ".dlang"
    PACKAGES_DIR = "packages"
    METADATA_FILE = ".dlang-metadata.json"
    TEMP_PREFIX = ".tmp-"
    ENV_FROZEN = "DLANG_FROZEN"
