from typing import List

from botocore.exceptions import BotoCoreError, ClientError

from . import config as cfg
from .errors import MetadataQueryError
from .manifest import Dependency, resolve_object_key

_NOT_FOUND_CODES = {"404", "NoSuchKey", "NotFound"}


def is_not_found(err: ClientError) -> bool:
    code = str(err.response.get("Error", {}).get("Code", ""))
    status = err.response.get("ResponseMetadata", {}).get("HTTPStatusCode")
    return code in _NOT_FOUND_CODES or status == 404


def needs_transfer(s3, bucket: str, dep: Dependency) -> bool:
    """Probe the object's metadata and decide whether ``dep`` must be uploaded."""
    key = resolve_object_key(dep)
    try:
        head = s3.head_object(Bucket=bucket, Key=key)
    except ClientError as e:
        if is_not_found(e):
            return True
        raise MetadataQueryError(key, e) from e
    except BotoCoreError as e:
        raise MetadataQueryError(key, e) from e

    stored = (head.get("Metadata") or {}).get(cfg.SHA256_METADATA_KEY)
    return stored != dep.sha256


def filter_stale(s3, bucket: str, deps: List[Dependency]) -> List[Dependency]:
    # Keep manifest order
    return [dep for dep in deps if needs_transfer(s3, bucket, dep)]
