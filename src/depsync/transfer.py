import sys
import threading
import time
from typing import List, Optional

import requests
from boto3.exceptions import Boto3Error
from boto3.s3.transfer import TransferConfig
from botocore.exceptions import BotoCoreError, ClientError
from urllib3.exceptions import HTTPError as Urllib3HTTPError

from . import config as cfg
from .errors import TransferError
from .manifest import Dependency, auth_headers, resolve_object_key

# One network operation at a time: no s3transfer worker threads.
_TRANSFER_CONFIG = TransferConfig(use_threads=False)

_UPLOAD_ERRORS = (BotoCoreError, ClientError, Boto3Error, Urllib3HTTPError, requests.RequestException, OSError)


class TransferProgress:
    """Progress bar for the bytes of a single artifact.

    Writes a single updating line to stderr to avoid interfering with stdout.
    The total is optional; without it only bytes and rate are shown.
    """

    def __init__(self, total_bytes: Optional[int], label: str = "transferring", stream=None) -> None:
        self.total_bytes = max(0, int(total_bytes)) if total_bytes else None
        self.label = label
        self.stream = stream if stream is not None else sys.stderr
        self.transferred = 0
        self._start = time.perf_counter()
        self._last_render = 0.0
        self._lock = threading.Lock()
        self._render(force=True)

    def add_bytes(self, n: int) -> None:
        if n <= 0:
            return
        with self._lock:
            self.transferred += n
            self._render()

    def _format_bytes(self, b: float) -> str:
        for unit in ["B", "KB", "MB", "GB", "TB"]:
            if b < 1024 or unit == "TB":
                return f"{b:.0f}{unit}" if unit == "B" else f"{b:.1f}{unit}"
            b /= 1024
        return f"{b:.1f}TB"

    def _render(self, force: bool = False) -> None:
        now = time.perf_counter()
        if not force and (now - self._last_render) < 0.1:
            return
        self._last_render = now
        elapsed = max(1e-6, now - self._start)
        rate_mbps = (self.transferred / elapsed) * 8 / 1_000_000
        if self.total_bytes:
            done = min(self.transferred, self.total_bytes)
            pct = done / self.total_bytes
            bar_width = 30
            filled = int(pct * bar_width)
            bar = "#" * filled + "-" * (bar_width - filled)
            msg = (
                f"\r{self.label} [{bar}] {pct*100:6.2f}%  "
                f"{self._format_bytes(done)}/{self._format_bytes(self.total_bytes)}  "
                f"{rate_mbps:6.2f} Mb/s"
            )
        else:
            msg = f"\r{self.label} {self._format_bytes(self.transferred)}  {rate_mbps:6.2f} Mb/s"
        self.stream.write(msg)
        self.stream.flush()

    def finish(self) -> None:
        with self._lock:
            self._render(force=True)
            self.stream.write("\n")
            self.stream.flush()


def _content_length(resp) -> Optional[int]:
    value = resp.headers.get("Content-Length")
    try:
        return int(value) if value is not None else None
    except ValueError:
        return None


def transfer_one(
    s3,
    bucket: str,
    token: str,
    dep: Dependency,
    session: Optional[requests.Session] = None,
    timeout=cfg.DEFAULT_HTTP_TIMEOUT,
) -> str:
    """Stream ``dep.uri`` into the bucket and tag the object with the manifest digest.

    Returns the storage key written.
    """
    key = resolve_object_key(dep)
    if session is None:
        with requests.Session() as http:
            return transfer_one(s3, bucket, token, dep, session=http, timeout=timeout)

    print(f"Downloading {dep.uri!r}", flush=True)
    try:
        resp = session.get(dep.uri, headers=auth_headers(token), stream=True, timeout=timeout)
    except requests.RequestException as e:
        raise TransferError(dep.uri, e) from e

    with resp:
        try:
            resp.raise_for_status()
        except requests.RequestException as e:
            raise TransferError(dep.uri, e) from e

        print(f"Transferring {dep.uri!r} to {key!r}", flush=True)
        progress = TransferProgress(_content_length(resp), label=key)
        # Undo any Content-Encoding so the object holds the artifact bytes
        resp.raw.decode_content = True
        try:
            s3.upload_fileobj(
                resp.raw,
                bucket,
                key,
                ExtraArgs={"Metadata": {cfg.SHA256_METADATA_KEY: dep.sha256}},
                Callback=progress.add_bytes,
                Config=_TRANSFER_CONFIG,
            )
        except _UPLOAD_ERRORS as e:
            raise TransferError(dep.uri, e) from e
        finally:
            progress.finish()

    print(f"Successfully transferred {dep.uri!r}", flush=True)
    return key


def transfer_all(
    s3,
    bucket: str,
    token: str,
    deps: List[Dependency],
    session: Optional[requests.Session] = None,
    timeout=cfg.DEFAULT_HTTP_TIMEOUT,
) -> int:
    if session is None:
        with requests.Session() as http:
            return transfer_all(s3, bucket, token, deps, session=http, timeout=timeout)

    total = len(deps)
    for i, dep in enumerate(deps, start=1):
        print(f"[{i}/{total}] {dep.id or dep.uri} {dep.version}".rstrip(), flush=True)
        transfer_one(s3, bucket, token, dep, session=session, timeout=timeout)
    return total
