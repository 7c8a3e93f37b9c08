"""
Example configuration file for the MovieBox relay
Copy this file to config.py and adjust the values
"""

# === Upstream Hosts ===
# Primary host; the MOVIEBOX_API_HOST environment variable overrides it
MOVIEBOX_API_HOST = 'https://h5.aoneroom.com'

# Mirrors tried in this order when the primary host fails
MIRROR_HOSTS = [
    'https://movieboxapp.in',
    'https://moviebox.pk',
    'https://moviebox.ph',
    'https://moviebox.id',
    'https://v.moviebox.ph',
    'https://netnaija.video',
]

# === Request Configuration ===
REQUEST_TIMEOUT = 30  # Seconds per metadata request attempt
REQUEST_MAX_RETRIES = 2  # Extra passes over the host pool after the first
RETRY_BACKOFF_SECONDS = 1  # Sleep unit * (attempt + 1) between passes
CLIENT_TIMEZONE = 'Africa/Nairobi'  # Sent in the X-client-info header

# === Media Streaming Configuration ===
MEDIA_TIMEOUT = 300  # Read timeout for media transfers (large files)
PROBE_TIMEOUT = 8  # Existence probe timeout
STREAM_CHUNK_SIZE = 65536  # Bytes per relayed chunk

# Download candidate policy
# False: a candidate with a URL is usable even if upstream flags it unavailable
# True: require both a URL and the availability flag
REQUIRE_AVAILABLE_FLAG = False

# === Logging Configuration ===
LOG_LEVEL = 'INFO'  # Options: DEBUG, INFO, WARNING, ERROR, CRITICAL
SERVER_LOG_FILE = 'logs/server.log'
