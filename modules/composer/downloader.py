"""
Asset download logic for composer module.

Fetches remote clip and audio assets into the render work directory in
parallel. Local paths and file:// URLs are used in place.
"""
import asyncio
import hashlib
from pathlib import Path
from typing import Dict, Iterable, Optional
from urllib.parse import urlparse

import httpx

from shared.config import settings
from shared.errors import CompositionError
from shared.logging import get_logger
from shared.retry import RetryOptions, classify_http_error, execute

logger = get_logger("composer.downloader")


def is_remote(ref: str) -> bool:
    return urlparse(ref).scheme in ("http", "https")


def local_path(ref: str) -> Path:
    parsed = urlparse(ref)
    return Path(parsed.path) if parsed.scheme == "file" else Path(ref)


def asset_filename(url: str) -> str:
    """Stable file name for a remote asset, keeping its extension."""
    digest = hashlib.sha1(url.encode("utf-8")).hexdigest()[:16]
    return f"{digest}{Path(urlparse(url).path).suffix.lower()}"


async def download_asset(client: httpx.AsyncClient, url: str, dest_dir: Path) -> Path:
    """
    Download one asset, retrying transient failures.

    Raises:
        RetryExhaustedError: Transient failures persisted
        ValidationError: Asset rejected (4xx)
        CompositionError: Empty download
    """
    target = dest_dir / asset_filename(url)
    if target.exists() and target.stat().st_size > 0:
        return target

    async def fetch() -> Path:
        try:
            async with client.stream("GET", url) as response:
                if response.is_error:
                    # Error classification needs the body
                    await response.aread()
                response.raise_for_status()
                with open(target, "wb") as f:
                    async for chunk in response.aiter_bytes():
                        f.write(chunk)
        except httpx.HTTPError as e:
            raise classify_http_error(e) from e
        return target

    await execute(fetch, RetryOptions.from_settings(f"download {url}"))

    size = target.stat().st_size
    if size == 0:
        raise CompositionError(f"Downloaded asset is empty: {url}")
    logger.info(
        f"Downloaded {url} ({size / 1024 / 1024:.2f} MB)",
        extra={"url": url, "size_bytes": size}
    )
    return target


async def fetch_assets(
    refs: Iterable[str],
    dest_dir: Path,
    client: Optional[httpx.AsyncClient] = None,
) -> Dict[str, Path]:
    """
    Resolve every asset reference to a local file.

    Returns:
        Mapping from reference to local path
    """
    unique = list(dict.fromkeys(refs))
    resolved: Dict[str, Path] = {}
    remote = []
    for ref in unique:
        if is_remote(ref):
            remote.append(ref)
            continue
        path = local_path(ref)
        if not path.exists():
            raise CompositionError(f"Asset not found: {ref}")
        resolved[ref] = path

    if not remote:
        return resolved

    dest_dir.mkdir(parents=True, exist_ok=True)
    owns_client = client is None
    client = client or httpx.AsyncClient(timeout=settings.provider_request_timeout, follow_redirects=True)
    try:
        paths = await asyncio.gather(*(download_asset(client, url, dest_dir) for url in remote))
    finally:
        if owns_client:
            await client.aclose()

    resolved.update(zip(remote, paths))
    logger.info(f"Fetched {len(remote)} remote assets", extra={"count": len(remote)})
    return resolved
