"""Serialize MapDocuments and embed them in generated artifacts."""

import base64
import json
from typing import Any, Dict

from .document import MapDocument, NO_VALUE, GEN_COLUMN, GEN_LINE, NAME, ORIG_COLUMN, ORIG_LINE, SOURCE
from .vlq import encode_vlq

HEX = "0123456789ABCDEF"


def encode_mappings(doc: MapDocument) -> str:
    """Encode the segment table back into a "mappings" string."""
    table = doc.segments.freeze()
    lines = []
    source = original_line = original_column = name = 0

    for line in range(table.line_count):
        start, end = table.line_range(line)
        column = 0
        parts = []
        for i in range(start, end):
            segment_column = table.field(i, GEN_COLUMN)
            text = encode_vlq(segment_column - column)
            column = segment_column

            if table.field(i, SOURCE) != NO_VALUE:
                text += encode_vlq(table.field(i, SOURCE) - source)
                text += encode_vlq(table.field(i, ORIG_LINE) - original_line)
                text += encode_vlq(table.field(i, ORIG_COLUMN) - original_column)
                source = table.field(i, SOURCE)
                original_line = table.field(i, ORIG_LINE)
                original_column = table.field(i, ORIG_COLUMN)

                if table.field(i, NAME) != NO_VALUE:
                    text += encode_vlq(table.field(i, NAME) - name)
                    name = table.field(i, NAME)
            parts.append(text)
        lines.append(",".join(parts))

    # Trailing empty lines carry no segments
    while lines and not lines[-1]:
        lines.pop()
    return ";".join(lines)


def to_dict(doc: MapDocument) -> Dict[str, Any]:
    data: Dict[str, Any] = {"version": 3}
    if doc.file is not None:
        data["file"] = doc.file
    data["sources"] = list(doc.sources)
    if doc.sources_content is not None:
        data["sourcesContent"] = list(doc.sources_content)
    data["names"] = list(doc.names)
    data["mappings"] = encode_mappings(doc)
    return data


def dumps(doc: MapDocument, indent=None) -> str:
    return json.dumps(to_dict(doc), indent=indent, ensure_ascii=False)


def base64_data_url(text: str, mime_type: str = "application/json") -> str:
    encoded = base64.b64encode(text.encode("utf-8")).decode("ascii")
    return f"data:{mime_type};base64,{encoded}"


def percent_data_url(text: str, mime_type: str = "application/json") -> str:
    """Percent-escape only what a trailing comment line cannot carry."""
    # Trailing control characters and spaces would be trimmed by readers
    trailing_start = len(text)
    while trailing_start > 0:
        c = text[trailing_start - 1]
        if ord(c) > 0x20 or c in "\t\n\r":
            break
        trailing_start -= 1

    out = []
    for i, c in enumerate(text):
        if c in "\t\n\r#%" or i >= trailing_start:
            out.append("%" + HEX[ord(c) >> 4] + HEX[ord(c) & 15])
        else:
            out.append(c)
    return f"data:{mime_type}," + "".join(out)


def embed_inline(text: str, map_text: str, encoding: str = "base64", css: bool = False) -> str:
    """Append a ``sourceMappingURL`` data URL comment to generated text."""
    if encoding == "base64":
        url = base64_data_url(map_text)
    elif encoding == "percent":
        url = percent_data_url(map_text)
    else:
        raise ValueError(f"Unknown inline map encoding: {encoding}")
    return _append_comment(text, url, css)


def embed_linked(text: str, map_name: str, css: bool = False) -> str:
    return _append_comment(text, map_name, css)


def _append_comment(text: str, url: str, css: bool) -> str:
    if text and not text.endswith("\n"):
        text += "\n"
    if css:
        return f"{text}/*# sourceMappingURL={url} */\n"
    return f"{text}//# sourceMappingURL={url}\n"
