"""Source map decoder.

Parses version 3 source map JSON (plain or indexed with "sections") into a
MapDocument, and extracts maps embedded in generated artifacts through a
trailing ``sourceMappingURL`` comment.
"""

import base64
import binascii
import json
import logging
import re
from typing import Any, Dict, List, Optional, Tuple
from urllib.parse import unquote

from .document import MapDocument, SegmentTable, NO_VALUE
from .errors import EncodingError, FormatError
from .vlq import VLQ_MAX, decode_segment_fields

logger = logging.getLogger(__name__)

# Percent-escaped payloads may contain raw spaces, so the URL runs to the end
# of the line minus an optional closing "*/"
SOURCE_MAPPING_URL_RE = re.compile(
    r"^(?://|/\*)\s*[#@]\s*sourceMappingURL\s*=\s*(?P<url>.+?)\s*(?:\*/)?\s*$"
)
BAD_PERCENT_RE = re.compile(r"%(?![0-9A-Fa-f]{2})")

# How many trailing lines are searched for the sourceMappingURL comment
TRAILING_LINES = 5


def decode(raw_map_text: str, base_dir: Optional[str] = None) -> MapDocument:
    """Decode source map JSON text into a MapDocument."""
    try:
        raw = json.loads(raw_map_text)
    except (TypeError, ValueError) as e:
        raise FormatError(f"Invalid source map JSON: {e}")
    return decode_object(raw, base_dir=base_dir)


def decode_object(raw: Any, base_dir: Optional[str] = None) -> MapDocument:
    """Decode an already parsed source map object."""
    if not isinstance(raw, dict):
        raise FormatError("Source map must be a JSON object")
    _check_version(raw)

    if "sections" in raw:
        return _decode_sections(raw, base_dir)

    segments = SegmentTable()
    sources, sources_content, names = _read_tables(raw)
    _decode_mappings(raw.get("mappings", ""), segments, len(sources), len(names))
    return MapDocument(
        sources=sources,
        names=names,
        segments=segments.freeze(),
        sources_content=sources_content,
        file=raw.get("file") if isinstance(raw.get("file"), str) else None,
        base_dir=base_dir,
    )


def _check_version(raw: Dict[str, Any]) -> None:
    version = raw.get("version")
    if version != 3 or isinstance(version, bool):
        raise FormatError(f"Unsupported source map version: {version!r}")


def _read_tables(raw: Dict[str, Any]) -> Tuple[List[str], Optional[List[Optional[str]]], List[str]]:
    sources = raw.get("sources", [])
    names = raw.get("names", [])
    sources_content = raw.get("sourcesContent")

    if not isinstance(sources, list) or not isinstance(names, list):
        raise FormatError('"sources" and "names" must be arrays')
    if any(not isinstance(s, str) and s is not None for s in sources):
        raise FormatError('"sources" entries must be strings')

    source_root = raw.get("sourceRoot") or ""
    if not isinstance(source_root, str):
        raise FormatError('"sourceRoot" must be a string')
    if source_root and not source_root.endswith("/"):
        source_root += "/"
    sources = [source_root + (s or "") for s in sources]
    names = [n if isinstance(n, str) else "" for n in names]

    if sources_content is not None:
        if not isinstance(sources_content, list):
            raise FormatError('"sourcesContent" must be an array')
        if len(sources_content) != len(sources):
            raise FormatError(
                f'"sourcesContent" has {len(sources_content)} entries '
                f'but "sources" has {len(sources)}'
            )
        # Anything that is not text is the missing marker
        sources_content = [c if isinstance(c, str) else None for c in sources_content]

    return sources, sources_content, names


def _decode_mappings(mappings: str, segments: SegmentTable, source_count: int, name_count: int,
                     line_offset: int = 0, column_offset: int = 0,
                     source_offset: int = 0, name_offset: int = 0) -> int:
    """Decode a "mappings" string into ``segments``, return the line count."""
    if not isinstance(mappings, str):
        raise FormatError('"mappings" must be a string')

    source_index = 0
    original_line = 0
    original_column = 0
    name_index = 0

    lines = mappings.split(";")
    for line_number, line in enumerate(lines):
        generated_line = line_offset + line_number
        generated_column = column_offset if line_number == 0 else 0
        if not line:
            continue

        for raw_segment in line.split(","):
            if not raw_segment:
                raise FormatError(f"Empty segment on generated line {generated_line}")
            fields = decode_segment_fields(raw_segment)
            if len(fields) not in (1, 4, 5):
                raise FormatError(
                    f"Segment {raw_segment!r} on generated line {generated_line} "
                    f"has {len(fields)} fields"
                )

            generated_column += fields[0]
            if generated_column < 0:
                raise FormatError(f"Invalid generated column {generated_column} on line {generated_line}")

            if len(fields) == 1:
                segments.append(generated_line, generated_column)
                continue

            source_index += fields[1]
            original_line += fields[2]
            original_column += fields[3]
            if not 0 <= source_index < source_count:
                raise FormatError(f"Invalid source index {source_index}")
            if original_line < 0 or original_column < 0:
                raise FormatError(
                    f"Invalid original position {original_line}:{original_column} "
                    f"on generated line {generated_line}"
                )

            name = NO_VALUE
            if len(fields) == 5:
                name_index += fields[4]
                if not 0 <= name_index < name_count:
                    raise FormatError(f"Invalid name index {name_index}")
                name = name_offset + name_index

            segments.append(generated_line, generated_column, source_offset + source_index,
                            original_line, original_column, name)

    return len(lines)


def _offset_field(offset: Dict[str, Any], key: str) -> int:
    value = offset.get(key, 0)
    if isinstance(value, bool) or not isinstance(value, int) or not 0 <= value <= VLQ_MAX:
        raise FormatError(f"Invalid section offset {key}: {value!r}")
    return value


def _decode_sections(raw: Dict[str, Any], base_dir: Optional[str]) -> MapDocument:
    """Flatten an indexed source map into one document."""
    sections = raw.get("sections")
    if not isinstance(sections, list):
        raise FormatError('"sections" must be an array')

    sources: List[str] = []
    names: List[str] = []
    sources_content: List[Optional[str]] = []
    has_content = False
    parsed = []

    for section in sections:
        if not isinstance(section, dict):
            raise FormatError("Section must be an object")
        if "url" in section:
            raise FormatError("Sections referencing external maps are not supported")
        offset = section.get("offset", {})
        inner = section.get("map")
        if not isinstance(offset, dict) or not isinstance(inner, dict):
            raise FormatError('Section needs an "offset" object and a "map" object')
        _check_version(inner)
        parsed.append((_offset_field(offset, "line"), _offset_field(offset, "column"), inner))

    # Sections are applied in generated order
    parsed.sort(key=lambda item: (item[0], item[1]))

    segments = SegmentTable()
    for line_offset, column_offset, inner in parsed:
        inner_sources, inner_content, inner_names = _read_tables(inner)
        try:
            _decode_mappings(inner.get("mappings", ""), segments, len(inner_sources), len(inner_names),
                             line_offset=line_offset, column_offset=column_offset,
                             source_offset=len(sources), name_offset=len(names))
        except ValueError as e:
            raise FormatError(f"Overlapping source map sections: {e}")
        if inner_content is not None:
            has_content = True
            sources_content.extend(inner_content)
        else:
            sources_content.extend([None] * len(inner_sources))
        sources.extend(inner_sources)
        names.extend(inner_names)

    logger.debug(f"Flattened {len(parsed)} source map sections")
    return MapDocument(
        sources=sources,
        names=names,
        segments=segments.freeze(),
        sources_content=sources_content if has_content else None,
        file=raw.get("file") if isinstance(raw.get("file"), str) else None,
        base_dir=base_dir,
    )


def find_source_mapping_url(text: str) -> Optional[str]:
    """Return the URL of the trailing ``sourceMappingURL`` comment, if any."""
    lines = text.rstrip().splitlines()
    for line in reversed(lines[-TRAILING_LINES:]):
        match = SOURCE_MAPPING_URL_RE.search(line.strip())
        if match:
            return match.group("url")
    return None


def strip_source_mapping_url(text: str) -> str:
    """Remove the trailing ``sourceMappingURL`` comment from generated text."""
    lines = text.splitlines(keepends=True)
    for i in range(len(lines) - 1, max(len(lines) - 1 - TRAILING_LINES, -1), -1):
        if SOURCE_MAPPING_URL_RE.search(lines[i].strip()):
            return "".join(lines[:i] + lines[i + 1:])
    return text


def is_data_url(url: str) -> bool:
    return url.startswith("data:")


def decode_data_url(url: str) -> str:
    """Decode a ``data:`` URL payload (base64 or percent-escaped) to text."""
    if not is_data_url(url) or "," not in url:
        raise EncodingError(f"Not a data URL: {url[:40]!r}")

    header, data = url[len("data:"):].split(",", 1)
    try:
        if header.lower().endswith(";base64"):
            try:
                payload = base64.b64decode(data, validate=True)
            except (binascii.Error, ValueError) as e:
                raise EncodingError(f"Could not decode base64 data: {e}")
            return payload.decode("utf-8")

        if BAD_PERCENT_RE.search(data):
            raise EncodingError("Could not decode percent-escaped data: invalid escape")
        return unquote(data, encoding="utf-8", errors="strict")
    except UnicodeDecodeError as e:
        raise EncodingError(f"Data URL payload is not UTF-8: {e}")
