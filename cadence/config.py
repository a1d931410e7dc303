"""
Configuration constants for the secure file catalog service.
"""

import os

# --- Networking ---
DEFAULT_PORT = int(os.environ.get("CADENCE_PORT", 8080))  # Well-known service port
BACKLOG = 5                  # Pending connections queued at the listening socket
REQUEST_BUFFER_SIZE = 256    # Single read for the request line; longer lines are truncated
CHUNK_SIZE = 4096            # Chunk size (bytes) for file transfer
IO_TIMEOUT = None            # Seconds per blocking read/write; None means no deadline

# --- Server pool ---
# None reproduces the unbounded one-thread-per-connection behavior.
MAX_CONNECTIONS = None

# --- Catalog ---
REQUIRED_SUFFIX = ".mp3"     # Only filenames containing this are served
CATALOG_DIR = os.environ.get("CADENCE_CATALOG_DIR", "./sample-mp3s")

# --- Transport security ---
CERT_FILE = os.environ.get("CADENCE_CERT_FILE", "cert.pem")
KEY_FILE = os.environ.get("CADENCE_KEY_FILE", "key.pem")

# --- Integrity ---
DIGEST_SIZE = 32             # SHA-256 digest length appended to every download

# --- Client ---
MAX_DOWNLOAD_ATTEMPTS = 3    # DOWNLOAD retries from scratch, no backoff
PARTIAL_SUFFIX = ".part"     # Unverified downloads are written as <name>.part
DOWNLOADS_DIR = os.environ.get("CADENCE_DOWNLOADS_DIR", os.getcwd())

# --- Logging ---
LOG_LEVEL = os.environ.get("CADENCE_LOG_LEVEL", "INFO")
LOG_FILE = os.environ.get("CADENCE_LOG_FILE")
