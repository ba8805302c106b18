"""Splitting of ``multipart/related`` DICOM response bodies."""

import logging
from typing import Optional, Union

logger = logging.getLogger(__name__)

_CRLF = b"\r\n"
_HEADER_END = b"\r\n\r\n"


def parse_boundary(content_type: Optional[str]) -> Optional[bytes]:
    """
    Extract the boundary parameter from a multipart Content-Type value.

    Returns None if the media type is not multipart or carries no boundary.
    """
    if not content_type:
        return None

    media_type, *params = [item.strip() for item in content_type.split(";")]
    if not media_type.lower().startswith("multipart/"):
        return None

    for item in params:
        attr, _, value = item.partition("=")
        if attr.strip().lower() == "boundary":
            boundary = value.strip().strip('"')
            if boundary:
                return boundary.encode("utf-8")
    return None


def sniff_boundary(body: bytes) -> Optional[bytes]:
    """Read the boundary from the first delimiter line of a body, if it has one."""
    data = body.lstrip(_CRLF)
    if not data.startswith(b"--"):
        return None
    line_end = data.find(_CRLF)
    if line_end == -1:
        return None
    boundary = data[2:line_end].strip()
    return boundary or None


def _extract_part_content(part: bytes) -> Optional[bytes]:
    """Return the payload of one part, or None for an empty part."""
    if part in (b"", _CRLF):
        return None
    idx = part.find(_HEADER_END)
    if idx == -1:
        raise ValueError("Message part does not contain CRLF CRLF")
    return part[idx + len(_HEADER_END):]


def decode_multipart(body: Union[bytes, bytearray, memoryview], content_type: Optional[str] = None) -> list[bytes]:
    """
    Split a multipart body into per-part payloads.

    The boundary is taken from ``content_type`` when present, otherwise from
    the first line of the body. A body that is not multipart framed at all is
    returned as a single part, since some servers answer a single-instance
    request with bare ``application/dicom``.

    Args:
        body: Full response body
        content_type: Value of the response Content-Type header

    Returns:
        List of part payloads in body order

    Raises:
        ValueError: If a part is missing its header terminator
    """
    body = bytes(body)
    boundary = parse_boundary(content_type) or sniff_boundary(body)
    if boundary is None:
        if logger.isEnabledFor(logging.DEBUG):
            logger.debug(f"No multipart boundary, treating {len(body)} bytes as one part")
        return [body] if body else []

    marker = b"--" + boundary
    delimiter = _CRLF + marker

    # Normalize so the opening delimiter is preceded by CRLF like the others
    data = body.lstrip(_CRLF)
    if data.startswith(marker):
        data = _CRLF + data

    chunks = data.split(delimiter)
    parts = []
    # chunks[0] is the preamble
    for index, chunk in enumerate(chunks[1:], start=1):
        if chunk.startswith(b"--"):
            # Close delimiter, anything after it is epilogue
            break
        # Drop transport padding after the delimiter
        line_end = chunk.find(_CRLF)
        if line_end > 0 and not chunk[:line_end].strip(b" \t"):
            chunk = chunk[line_end:]
        content = _extract_part_content(chunk)
        if content is None:
            continue
        if logger.isEnabledFor(logging.DEBUG):
            logger.debug(f"Extracted {len(content)} bytes from part #{index}")
        parts.append(content)

    return parts
