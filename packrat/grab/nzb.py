"""Structural validation of NZB payloads before they reach a usenet client."""

from __future__ import annotations

import xml.etree.ElementTree as ET
from dataclasses import dataclass, field
from typing import Union

from packrat import logger
from packrat.errors import InvalidNzbError


@dataclass(frozen=True)
class NzbSummary:
    file_count: int
    total_size: int
    groups: tuple[str, ...] = field(default_factory=tuple)


def _local(tag: str) -> str:
    return tag.rsplit("}", 1)[-1].lower()


def _children(element: ET.Element, name: str) -> list[ET.Element]:
    return [child for child in element if _local(child.tag) == name]


def is_nzb_content(content: Union[bytes, str]) -> bool:
    text = content.decode("utf-8", errors="replace") if isinstance(content, bytes) else content
    lower = text.lower()
    return "<nzb" in lower and "<file" in lower


def validate_nzb(content: Union[bytes, str]) -> NzbSummary:
    """
    Check an NZB for a root ``<nzb>`` with at least one ``<file>``.

    Indexers sometimes answer a fetch with an ``<error code=".." description="..">``
    document instead; that is reported as the index's error.
    """
    text = content.decode("utf-8", errors="replace") if isinstance(content, bytes) else content
    if not text.strip():
        raise InvalidNzbError("NZB content is empty")

    try:
        root = ET.fromstring(text.strip())
    except ET.ParseError as e:
        raise InvalidNzbError(f"Failed to parse NZB: {e}") from e

    error = root if _local(root.tag) == "error" else next(
        (el for el in root.iter() if _local(el.tag) == "error"), None
    )
    if error is not None:
        code = error.attrib.get("code", "unknown")
        description = error.attrib.get("description") or (error.text or "").strip() or "Unknown error"
        logger.get_logger().warning(f"[NZB] Received error response instead of NZB: {code} {description}")
        raise InvalidNzbError(f"Indexer error {code}: {description}")

    if _local(root.tag) != "nzb":
        raise InvalidNzbError("Invalid NZB: No root <nzb> element found")

    files = _children(root, "file")
    if not files:
        raise InvalidNzbError("Invalid NZB: No <file> elements found")

    total_size = 0
    groups: dict[str, None] = {}
    for file_el in files:
        for container in _children(file_el, "groups"):
            for group in _children(container, "group"):
                name = (group.text or "").strip()
                if name:
                    groups[name] = None
        for container in _children(file_el, "segments"):
            for segment in _children(container, "segment"):
                try:
                    total_size += int(segment.attrib.get("bytes", "0"))
                except ValueError:
                    continue

    logger.get_logger().debug(f"[NZB] Validated {len(files)} files, {total_size} bytes, {len(groups)} groups")
    return NzbSummary(file_count=len(files), total_size=total_size, groups=tuple(groups))
