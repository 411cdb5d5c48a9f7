"""
Manifest fetching and download URL resolution for HashSync.

Resolvers turn a manifest entry's locator into an absolute URL. Where the
base URL comes from (CDN rating, release metadata) is the caller's business.
"""

import logging
from pathlib import Path
from typing import Mapping, Optional, Protocol, Union
from urllib.parse import quote

import requests

from ..errors import HttpStatusError, ManifestParseError, NetworkError
from .manifest import Manifest

logger = logging.getLogger(__name__)


def is_url(source: Union[str, Path]) -> bool:
    return isinstance(source, str) and source.lower().startswith(("http://", "https://"))


def fetch_manifest(
    source: Union[str, Path],
    timeout: float = 10,
    user_agent: Optional[str] = None,
) -> Manifest:
    """
    Load a manifest from an http(s) URL or a local file.

    Raises:
        NetworkError: the request failed or returned a non-success status
        ManifestParseError: the descriptor is malformed
    """
    if not is_url(source):
        logger.info("Loading manifest from %s", source)
        manifest = Manifest.load(Path(source))
    else:
        logger.info("Fetching manifest from %s", source)
        headers = {"User-Agent": user_agent} if user_agent else {}
        try:
            response = requests.get(source, timeout=timeout, headers=headers)
        except requests.Timeout as e:
            raise NetworkError(source, "manifest fetch", "connection timed out") from e
        except requests.RequestException as e:
            raise NetworkError(source, "manifest fetch", str(e)) from e

        if not response.ok:
            raise HttpStatusError(source, response.status_code, operation="manifest fetch")

        try:
            data = response.json()
        except ValueError as e:
            raise ManifestParseError(f"manifest '{source}'", str(e)) from e
        manifest = Manifest.from_dict(data)

    logger.info(
        "Loaded manifest with %d files and %d archives",
        len(manifest.files),
        len(manifest.archives),
    )
    return manifest


class UrlResolver(Protocol):
    """Maps a manifest locator (asset name, relative path, URL) to a URL."""

    def resolve(self, locator: str) -> str:
        ...


class CdnResolver:
    """Resolves locators against a CDN base URL: <base>/<locator>."""

    def __init__(self, base_url: str):
        if not base_url:
            raise ValueError("CDN base URL must not be empty")
        self.base_url = base_url.rstrip("/")

    def resolve(self, locator: str) -> str:
        if is_url(locator):
            return locator
        return f"{self.base_url}/{quote(locator.lstrip('/'), safe='/')}"


class AssetResolver:
    """
    Resolves locators through a name → URL mapping, such as the asset list
    of a release. Unknown names fall back to an optional resolver.
    """

    def __init__(self, assets: Mapping[str, str], fallback: Optional[UrlResolver] = None):
        self.assets = dict(assets)
        self.fallback = fallback

    def resolve(self, locator: str) -> str:
        if is_url(locator):
            return locator
        if locator in self.assets:
            return self.assets[locator]
        if self.fallback is not None:
            return self.fallback.resolve(locator)
        raise ManifestParseError("asset list", f"no download URL for asset '{locator}'")
