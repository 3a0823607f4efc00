"""
Centralized configuration defaults for the bucket sync.

Edit these constants to set project defaults. CLI flags and environment
variables will override these values at runtime.
"""

from typing import Optional, Tuple

# Env file read before resolving settings. Override via CLI `--env`.
DEFAULT_ENV_FILE: str = ".env"

# Optional S3-compatible endpoint URL (e.g., MinIO, Alibaba OSS, Cloudflare R2)
# Example: "https://oss-cn-hangzhou.aliyuncs.com"
DEFAULT_ENDPOINT_URL: Optional[str] = None

# Whether to use path-style addressing ("https://endpoint/bucket/key")
# Some S3-compatible services require this.
DEFAULT_USE_PATH_STYLE: bool = False

# (connect, read) timeout in seconds for manifest and artifact downloads.
DEFAULT_HTTP_TIMEOUT: Tuple[float, float] = (10.0, 300.0)

# User metadata key holding the manifest digest of an uploaded object.
SHA256_METADATA_KEY: str = "sha256"
