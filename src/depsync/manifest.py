"""
Manifest fetching and parsing.

A manifest is a TOML document (e.g. a buildpack.toml) whose
``metadata.dependencies`` array lists the artifacts to mirror.
"""

import re
import tomllib
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional
from urllib.parse import SplitResult, unquote_plus, urlsplit

import requests

from . import config as cfg
from .errors import FetchError, KeyResolutionError, ParseError

_BAD_ESCAPE = re.compile(r"%(?![0-9A-Fa-f]{2})")


def parse_source_url(uri: str) -> SplitResult:
    try:
        url = urlsplit(uri)
    except ValueError as e:
        raise KeyResolutionError(f"invalid uri {uri!r}: {e}") from e
    if not url.scheme or not url.netloc:
        raise KeyResolutionError(f"uri is not an absolute URL: {uri!r}")
    return url


@dataclass(frozen=True)
class Dependency:
    id: str
    sha256: str
    uri: str
    version: str = ""
    url: SplitResult = field(init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        object.__setattr__(self, "url", parse_source_url(self.uri))


def resolve_object_key(dep: Dependency) -> str:
    """Storage key for a dependency: its URL path, query-unescaped once (`+` becomes a space), without the leading slash."""
    path = dep.url.path
    if _BAD_ESCAPE.search(path):
        raise KeyResolutionError(f"invalid percent escape in path of {dep.uri!r}")
    try:
        key = unquote_plus(path, errors="strict")
    except UnicodeDecodeError as e:
        raise KeyResolutionError(f"path of {dep.uri!r} is not valid UTF-8") from e
    if key.startswith("/"):
        key = key[1:]
    if not key:
        raise KeyResolutionError(f"uri has no object path: {dep.uri!r}")
    return key


def auth_headers(token: str) -> Dict[str, str]:
    if token:
        return {"Authorization": f"Bearer {token}"}
    return {}


def _string_field(entry: Dict[str, Any], name: str, index: int, required: bool) -> str:
    value = entry.get(name)
    if value is None:
        if required:
            raise ParseError(f"dependency #{index} is missing {name!r}")
        return ""
    if not isinstance(value, str):
        raise ParseError(f"dependency #{index} field {name!r} must be a string, got {type(value).__name__}")
    return value


def parse_manifest(text: str) -> List[Dependency]:
    """Parse a manifest document into its ordered dependency list.

    Unknown keys are ignored. A document without ``metadata`` or without
    ``metadata.dependencies`` declares no dependencies.
    """
    try:
        doc = tomllib.loads(text)
    except tomllib.TOMLDecodeError as e:
        raise ParseError(f"failed to decode manifest: {e}") from e

    metadata = doc.get("metadata", {})
    if not isinstance(metadata, dict):
        raise ParseError("'metadata' must be a table")
    entries = metadata.get("dependencies", [])
    if not isinstance(entries, list):
        raise ParseError("'metadata.dependencies' must be an array")

    deps: List[Dependency] = []
    for i, entry in enumerate(entries):
        if not isinstance(entry, dict):
            raise ParseError(f"dependency #{i} must be a table")
        deps.append(
            Dependency(
                id=_string_field(entry, "id", i, required=False),
                sha256=_string_field(entry, "sha256", i, required=True),
                uri=_string_field(entry, "uri", i, required=True),
                version=_string_field(entry, "version", i, required=False),
            )
        )
    return deps


def fetch_manifest(
    url: str,
    token: str = "",
    session: Optional[requests.Session] = None,
    timeout=cfg.DEFAULT_HTTP_TIMEOUT,
) -> List[Dependency]:
    if session is None:
        with requests.Session() as http:
            return fetch_manifest(url, token, session=http, timeout=timeout)

    try:
        resp = session.get(url, headers=auth_headers(token), timeout=timeout)
        resp.raise_for_status()
    except requests.RequestException as e:
        raise FetchError(f"failed to fetch manifest {url!r}: {e}") from e

    try:
        text = resp.content.decode("utf-8")
    except UnicodeDecodeError as e:
        raise ParseError(f"manifest {url!r} is not valid UTF-8") from e
    return parse_manifest(text)
