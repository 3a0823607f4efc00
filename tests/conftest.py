"""Shared fakes for the S3 client and the HTTP session."""

import io
from typing import Dict, List, Optional

import pytest
import requests
from botocore.exceptions import ClientError


def client_error(code: str, status: int, operation: str = "HeadObject") -> ClientError:
    return ClientError(
        {"Error": {"Code": code, "Message": code}, "ResponseMetadata": {"HTTPStatusCode": status}},
        operation,
    )


class FakeRaw(io.BytesIO):
    decode_content = False


class FakeResponse:
    def __init__(self, body: bytes = b"", status_code: int = 200, headers: Optional[Dict[str, str]] = None):
        self.content = body
        self.status_code = status_code
        self.headers = headers if headers is not None else {"Content-Length": str(len(body))}
        self.raw = FakeRaw(body)
        self.closed = False

    def raise_for_status(self) -> None:
        if self.status_code >= 400:
            raise requests.HTTPError(f"{self.status_code} Error", response=self)

    def close(self) -> None:
        self.closed = True
        self.raw.close()

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.close()


class FakeSession:
    """Serves canned responses by URL and records every request."""

    def __init__(self, routes: Optional[Dict[str, object]] = None):
        self.routes = dict(routes or {})
        self.requests: List[dict] = []
        self.responses: List[FakeResponse] = []

    def get(self, url, headers=None, stream=False, timeout=None):
        self.requests.append({"url": url, "headers": dict(headers or {}), "stream": stream, "timeout": timeout})
        route = self.routes.get(url)
        if route is None:
            raise requests.ConnectionError(f"no route to {url}")
        if isinstance(route, Exception):
            raise route
        if isinstance(route, bytes):
            route = FakeResponse(route)
        self.responses.append(route)
        return route

    @property
    def urls(self) -> List[str]:
        return [r["url"] for r in self.requests]


class ClosingSession(FakeSession):
    closed = False

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.closed = True


class FakeS3:
    """In-memory stand-in for the boto3 S3 client calls the sync uses."""

    def __init__(self):
        self.objects: Dict[str, dict] = {}
        self.head_errors: Dict[str, Exception] = {}
        self.upload_errors: Dict[str, Exception] = {}
        self.head_calls: List[str] = []
        self.uploads: List[str] = []

    def put(self, key: str, body: bytes = b"", metadata: Optional[Dict[str, str]] = None) -> None:
        self.objects[key] = {"Body": body, "Metadata": dict(metadata or {})}

    def head_object(self, Bucket, Key):
        self.head_calls.append(Key)
        if Key in self.head_errors:
            raise self.head_errors[Key]
        if Key not in self.objects:
            raise client_error("404", 404)
        obj = self.objects[Key]
        return {"ContentLength": len(obj["Body"]), "Metadata": dict(obj["Metadata"])}

    def upload_fileobj(self, Fileobj, Bucket, Key, ExtraArgs=None, Callback=None, Config=None):
        self.uploads.append(Key)
        if Key in self.upload_errors:
            raise self.upload_errors[Key]
        chunks = []
        while True:
            chunk = Fileobj.read(4)
            if not chunk:
                break
            chunks.append(chunk)
            if Callback:
                Callback(len(chunk))
        self.put(Key, b"".join(chunks), (ExtraArgs or {}).get("Metadata"))


MANIFEST = """
[buildpack]
id = "example/buildpack"

[[metadata.dependencies]]
id = "a"
sha256 = "abc123"
uri = "https://host/x%2By.bin"
version = "1.0.0"
stacks = ["*"]
"""


@pytest.fixture
def s3():
    return FakeS3()


@pytest.fixture
def manifest_text():
    return MANIFEST
