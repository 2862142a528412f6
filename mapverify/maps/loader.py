"""Load generated artifacts together with their attached source maps."""

import asyncio
import logging
import os
from collections import OrderedDict
from typing import Optional
from urllib.parse import unquote

import httpx

from .decoder import decode, decode_data_url, find_source_mapping_url, is_data_url
from .document import MapDocument
from .errors import FormatError

logger = logging.getLogger(__name__)

EMBED_LINKED = "linked"
EMBED_BASE64 = "inline-base64"
EMBED_PERCENT = "inline-percent"
EMBED_REMOTE = "remote"


class GeneratedArtifact:
    """One build output: its path, text and attached map (if any)."""

    def __init__(self, path: str, text: str, doc: Optional[MapDocument] = None,
                 embedding: Optional[str] = None, map_text: Optional[str] = None,
                 map_path: Optional[str] = None):
        self.path = path
        self.text = text
        self.doc = doc
        self.embedding = embedding
        self.map_text = map_text
        self.map_path = map_path

    @property
    def has_map(self) -> bool:
        return self.doc is not None

    def __repr__(self) -> str:
        return f"GeneratedArtifact({self.path!r}, embedding={self.embedding!r})"


def _read_text(path: str) -> str:
    with open(path, "r", encoding="utf-8", newline="") as f:
        return f.read()


class ArtifactLoader:
    """Reads artifacts and decodes linked, inline or remote maps.

    Remote maps are fetched with httpx and kept in a small LRU cache keyed by
    URL; linked and inline maps are always decoded fresh.
    """

    def __init__(self, max_cache_size: int = 10, http_client: Optional[httpx.AsyncClient] = None,
                 timeout: float = 5.0):
        self.max_cache_size = max_cache_size
        self.source_map_cache: "OrderedDict[str, str]" = OrderedDict()
        self.http_client = http_client or httpx.AsyncClient(timeout=timeout)
        self.download_semaphore = asyncio.Semaphore(3)

    async def load(self, path: str) -> GeneratedArtifact:
        """Read a generated file from disk and attach its map."""
        try:
            text = await asyncio.to_thread(_read_text, path)
        except UnicodeDecodeError as e:
            raise FormatError(f"Generated file {path} is not valid UTF-8: {e}")
        return await self.attach(path, text)

    async def attach(self, path: str, text: str) -> GeneratedArtifact:
        """Attach the map referenced by the trailing comment of ``text``."""
        url = find_source_mapping_url(text)
        if url is None:
            return GeneratedArtifact(path, text)

        artifact_dir = os.path.dirname(os.path.abspath(path))

        if is_data_url(url):
            header = url.split(",", 1)[0].lower()
            embedding = EMBED_BASE64 if header.endswith(";base64") else EMBED_PERCENT
            map_text = decode_data_url(url)
            doc = decode(map_text, base_dir=artifact_dir)
            return GeneratedArtifact(path, text, doc, embedding, map_text)

        if url.startswith(("http://", "https://")):
            map_text = await self._fetch(url)
            doc = decode(map_text)
            return GeneratedArtifact(path, text, doc, EMBED_REMOTE, map_text, url)

        map_path = os.path.normpath(os.path.join(artifact_dir, unquote(url)))
        try:
            map_text = await asyncio.to_thread(_read_text, map_path)
        except (OSError, ValueError) as e:
            raise FormatError(f"Linked source map {map_path} cannot be read: {e}")
        doc = decode(map_text, base_dir=os.path.dirname(map_path))
        logger.debug(f"Loaded linked map {map_path} for {path}")
        return GeneratedArtifact(path, text, doc, EMBED_LINKED, map_text, map_path)

    async def _fetch(self, url: str) -> str:
        if url in self.source_map_cache:
            self.source_map_cache.move_to_end(url)
            return self.source_map_cache[url]

        async with self.download_semaphore:
            try:
                response = await self.http_client.get(url)
                response.raise_for_status()
            except httpx.HTTPError as e:
                raise FormatError(f"Remote source map {url} cannot be fetched: {e}")

        self._update_source_map_cache(url, response.text)
        return response.text

    def _update_source_map_cache(self, url: str, map_text: str) -> None:
        """Update the LRU cache of fetched map texts."""
        if url in self.source_map_cache:
            del self.source_map_cache[url]
        elif len(self.source_map_cache) >= self.max_cache_size:
            self.source_map_cache.popitem(last=False)
        self.source_map_cache[url] = map_text

    async def aclose(self) -> None:
        self.source_map_cache.clear()
        await self.http_client.aclose()
