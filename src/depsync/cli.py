import argparse
import os
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional, Tuple

import boto3
import requests
from botocore.config import Config as BotoConfig
from botocore.exceptions import BotoCoreError
from dotenv import dotenv_values
from dotenv.parser import parse_stream

from . import config as cfg
from .errors import ConfigError, SyncError
from .manifest import fetch_manifest
from .staleness import filter_stale
from .transfer import transfer_all


@dataclass
class Settings:
    url: str
    region: str
    bucket: str
    access_key_id: str
    access_key_secret: str
    token: str = ""
    endpoint_url: Optional[str] = None
    use_path_style: bool = False
    timeout: Tuple[float, float] = cfg.DEFAULT_HTTP_TIMEOUT


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    p = argparse.ArgumentParser(
        prog="depsync",
        description="Mirror the dependencies declared in a manifest (e.g. buildpack.toml) into an S3-compatible bucket, skipping objects whose sha256 metadata already matches.",
    )
    p.add_argument("--url", default=None, help="Manifest URL (or env URL)")
    p.add_argument("--token", default=None, help="Bearer token for manifest and artifact downloads (or env GITHUB_TOKEN)")
    p.add_argument("--region", default=None, help="Bucket region (or env REGION)")
    p.add_argument("--bucket", default=None, help="Target bucket name (or env BUCKET)")
    p.add_argument("--ak", dest="access_key_id", default=None, help="Access key id (or env ACCESS_KEY)")
    p.add_argument("--sk", dest="access_key_secret", default=None, help="Access key secret (or env ACCESS_KEY_SECRET)")
    p.add_argument(
        "--env",
        dest="env_file",
        type=Path,
        default=Path(cfg.DEFAULT_ENV_FILE),
        help="Env file loaded before resolving settings; existing environment variables win",
    )
    p.add_argument(
        "--endpoint-url",
        default=None,
        help="Custom S3-compatible endpoint URL (or env S3_ENDPOINT_URL)",
    )
    p.add_argument(
        "--path-style",
        action="store_true",
        help="Use path-style addressing (required by some S3-compatible services)",
    )
    p.add_argument(
        "--timeout",
        type=float,
        default=None,
        help="Read timeout in seconds for HTTP downloads",
    )
    return p.parse_args(argv)


def load_env_file(path: Path) -> bool:
    """Export KEY=VALUE pairs from ``path`` unless the variable is already set.

    Returns False when the file does not exist. Raises ConfigError when a
    line cannot be parsed.
    """
    if not path.is_file():
        print(f"skip loading env file: {path} not found", flush=True)
        return False
    with path.open(encoding="utf-8") as f:
        for binding in parse_stream(f):
            if binding.error:
                raise ConfigError(f"failed to load env file {path}: cannot parse {binding.original.string.strip()!r}")
    for key, value in dotenv_values(path).items():
        if value is not None and not os.getenv(key):
            os.environ[key] = value
    return True


def _required(flag_value: Optional[str], env_name: str) -> str:
    value = flag_value or os.getenv(env_name)
    if not value:
        raise ConfigError(f"{env_name} is required")
    return value


def resolve_endpoint(args: argparse.Namespace) -> Optional[str]:
    # Priority: --endpoint-url > env S3_ENDPOINT_URL > config.DEFAULT_ENDPOINT_URL
    return args.endpoint_url or os.getenv("S3_ENDPOINT_URL") or cfg.DEFAULT_ENDPOINT_URL


def resolve_settings(args: argparse.Namespace) -> Settings:
    # Priority: flag > environment > config default
    url = _required(args.url, "URL")
    region = _required(args.region, "REGION")
    bucket = _required(args.bucket, "BUCKET")
    access_key_id = _required(args.access_key_id, "ACCESS_KEY")
    access_key_secret = _required(args.access_key_secret, "ACCESS_KEY_SECRET")

    timeout = cfg.DEFAULT_HTTP_TIMEOUT
    if args.timeout is not None:
        if args.timeout <= 0:
            raise ConfigError("--timeout must be positive")
        timeout = (cfg.DEFAULT_HTTP_TIMEOUT[0], args.timeout)

    return Settings(
        url=url,
        region=region,
        bucket=bucket,
        access_key_id=access_key_id,
        access_key_secret=access_key_secret,
        token=args.token or os.getenv("GITHUB_TOKEN") or "",
        endpoint_url=resolve_endpoint(args),
        use_path_style=bool(args.path_style or cfg.DEFAULT_USE_PATH_STYLE),
        timeout=timeout,
    )


def make_s3_client(
    region: Optional[str],
    endpoint_url: Optional[str],
    use_path_style: bool,
    credentials: Optional[dict],
):
    session = boto3.session.Session()
    boto_cfg = BotoConfig(s3={"addressing_style": "path" if use_path_style else "virtual"})
    client_kwargs = {"region_name": region, "config": boto_cfg, "endpoint_url": endpoint_url}
    if credentials:
        client_kwargs.update(credentials)
    return session.client("s3", **{k: v for k, v in client_kwargs.items() if v is not None})


def _client_for(settings: Settings):
    try:
        return make_s3_client(
            region=settings.region,
            endpoint_url=settings.endpoint_url,
            use_path_style=settings.use_path_style,
            credentials={
                "aws_access_key_id": settings.access_key_id,
                "aws_secret_access_key": settings.access_key_secret,
            },
        )
    except (ValueError, BotoCoreError) as e:
        raise ConfigError(f"invalid storage client settings: {e}") from e


def make_http_session() -> requests.Session:
    return requests.Session()


def sync(
    s3,
    bucket: str,
    manifest_url: str,
    token: str = "",
    session: Optional[requests.Session] = None,
    timeout=cfg.DEFAULT_HTTP_TIMEOUT,
) -> int:
    """Run fetch, filter and transfer in order. Returns the number of files transferred."""
    if session is None:
        with make_http_session() as http:
            return sync(s3, bucket, manifest_url, token, session=http, timeout=timeout)

    print(f"Fetching manifest from {manifest_url}", flush=True)
    deps = fetch_manifest(manifest_url, token, session=session, timeout=timeout)
    print(f"Found {len(deps)} dependencies", flush=True)

    stale = filter_stale(s3, bucket, deps)
    if not stale:
        print("All files are up to date", flush=True)
        return 0
    print(f"{len(stale)} of {len(deps)} dependencies need transfer to s3://{bucket}", flush=True)

    count = transfer_all(s3, bucket, token, stale, session=session, timeout=timeout)
    print(f"Successfully transferred {count} files", flush=True)
    return count


def main(argv: Optional[List[str]] = None) -> int:
    args = parse_args(argv)
    try:
        load_env_file(args.env_file)
        settings = resolve_settings(args)
        s3 = _client_for(settings)
    except ConfigError as e:
        print(f"checking failed: {e}", file=sys.stderr)
        return 2

    print(
        f"Syncing {settings.url} to s3://{settings.bucket}"
        + (f" via {settings.endpoint_url}" if settings.endpoint_url else "")
        + (" (path-style)" if settings.use_path_style else ""),
        flush=True,
    )

    with make_http_session() as http:
        try:
            sync(s3, settings.bucket, settings.url, settings.token, session=http, timeout=settings.timeout)
        except SyncError as e:
            print(f"sync failed: {e}", file=sys.stderr)
            return 1
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
