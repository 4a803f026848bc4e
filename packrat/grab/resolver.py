"""Resolve a candidate to something a download client can take."""

from __future__ import annotations

import base64
import hashlib
import re
from typing import Callable, Optional
from urllib.parse import quote

import aiohttp

from packrat import logger
from packrat.errors import IndexNetworkError, PayloadResolutionError
from packrat.grab.nzb import is_nzb_content
from packrat.grab.types import ResolvedPayload
from packrat.indexers.requester import IndexRequester
from packrat.search.types import Protocol, RawResult

_BTIH = re.compile(r"xt=urn:btih:([A-Za-z0-9]{32,40})", re.IGNORECASE)


def info_hash_from_magnet(magnet: str) -> str:
    match = _BTIH.search(magnet or "")
    if not match:
        return ""
    value = match.group(1)
    if len(value) == 32:
        try:
            return base64.b32decode(value.upper()).hex()
        except ValueError:
            return ""
    return value.lower()


def build_magnet(info_hash: str, title: str = "") -> str:
    magnet = f"magnet:?xt=urn:btih:{info_hash.lower()}"
    if title:
        magnet += f"&dn={quote(title)}"
    return magnet


def _bdecode_end(data: bytes, pos: int) -> int:
    """Index just past the bencoded value starting at ``pos``."""
    token = data[pos:pos + 1]
    if token == b"i":
        return data.index(b"e", pos) + 1
    if token in (b"l", b"d"):
        pos += 1
        while data[pos:pos + 1] != b"e":
            pos = _bdecode_end(data, pos)
        return pos + 1
    if token.isdigit():
        colon = data.index(b":", pos)
        return colon + 1 + int(data[pos:colon])
    raise ValueError(f"invalid bencode at offset {pos}")


def info_hash_from_torrent(data: bytes) -> str:
    """SHA-1 of the bencoded ``info`` dictionary, or empty when ``data`` is not a torrent."""
    if not data.startswith(b"d"):
        return ""
    try:
        pos = 1
        while data[pos:pos + 1] != b"e":
            key_end = _bdecode_end(data, pos)
            key = data[data.index(b":", pos) + 1:key_end]
            value_end = _bdecode_end(data, key_end)
            if key == b"info":
                return hashlib.sha1(data[key_end:value_end]).hexdigest()
            pos = value_end
    except (ValueError, IndexError):
        return ""
    return ""


class DownloadResolver:
    """
    Fetch-through-index first, so private trackers see the user's session;
    then the magnet; then a magnet built from the info hash.
    """

    def __init__(self, requester_for: Callable[[str], Optional[IndexRequester]]):
        self.requester_for = requester_for

    async def resolve(self, raw: RawResult) -> ResolvedPayload:
        download_url = raw.download_url
        if download_url and not download_url.startswith("magnet:") and raw.index_id:
            fetched = await self._fetch_through_index(raw)
            if fetched is not None:
                return fetched

        if raw.magnet_url:
            return ResolvedPayload(
                magnet_url=raw.magnet_url,
                info_hash=info_hash_from_magnet(raw.magnet_url) or raw.info_hash.lower(),
            )

        if raw.info_hash:
            return ResolvedPayload(magnet_url=build_magnet(raw.info_hash, raw.title), info_hash=raw.info_hash.lower())

        if download_url.startswith("magnet:"):
            return ResolvedPayload(
                magnet_url=download_url,
                info_hash=info_hash_from_magnet(download_url),
                used_fallback=True,
            )
        if download_url:
            logger.get_logger().warning(f"[Resolver] No index session for {raw.title}, passing the link through")
            return ResolvedPayload(download_url=download_url, used_fallback=True)

        raise PayloadResolutionError("No download URL, magnet URL, or info hash provided")

    async def _fetch_through_index(self, raw: RawResult) -> Optional[ResolvedPayload]:
        requester = self.requester_for(raw.index_id)
        if requester is None:
            return None
        try:
            response = await requester.fetch(raw.download_url)
        except (IndexNetworkError, aiohttp.ClientError) as e:
            logger.get_logger().warning(f"[Resolver] Fetch through {raw.index_name} failed for {raw.title}: {e}")
            return None

        body = response.body
        if raw.protocol == Protocol.USENET:
            if not is_nzb_content(body):
                logger.get_logger().debug(f"[Resolver] {raw.index_name} body for {raw.title} does not look like an NZB")
            # Validation reports what the index actually sent.
            return ResolvedPayload(nzb_file=body) if body.strip() else None

        info_hash = info_hash_from_torrent(body)
        if info_hash:
            return ResolvedPayload(torrent_file=body, info_hash=info_hash)
        text = body[:4096].decode("utf-8", errors="replace").strip()
        if text.startswith("magnet:"):
            return ResolvedPayload(magnet_url=text, info_hash=info_hash_from_magnet(text))
        logger.get_logger().warning(f"[Resolver] {raw.index_name} did not return a torrent file for {raw.title}")
        return None
