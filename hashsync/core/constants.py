"""
Shared constants for HashSync.
"""

# Subdirectory of the install dir holding the cache, lock and transient archives
METADATA_DIR = "launcher"

# Hash cache file name (inside METADATA_DIR)
CACHE_FILE = "cache.json"

# Lock file guarding a sync pass (inside METADATA_DIR)
LOCK_FILE = "sync.lock"

# Default download retry policy
MAX_DOWNLOAD_ATTEMPTS = 2
RETRY_DELAY_SECONDS = 5.0

# Streaming chunk size for downloads and hashing
CHUNK_SIZE = 32768
HASH_CHUNK_SIZE = 1024 * 1024

# HTTP timeouts (connect, read) in seconds
CONNECT_TIMEOUT = 10
READ_TIMEOUT = 120

# Query parameter appended on retries to get past intermediate caches
CACHE_BUST_PARAM = "_cb"
CACHE_BUST_LENGTH = 10

# Archive extensions the extractor understands
ARCHIVE_EXTENSIONS = {".zip"}

# HTTP statuses worth retrying even though they are client errors
RETRYABLE_CLIENT_STATUSES = {408, 429}

# Suffix of the sibling file a download is written to before it verifies
PARTIAL_SUFFIX = ".part"
