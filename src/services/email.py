"""
Raw email codec for the forwarding pipeline.

This module splits a raw RFC 5322 message into logical headers and opaque
body lines, and joins rewritten headers and body back into wire format.
Bodies are never decoded or interpreted: multipart structure, transfer
encodings and attachments pass through untouched.
"""

import logging
import re
from typing import List, Optional

from domain.exceptions import MalformedMessage
from domain.models import Header, ParsedMessage

logger = logging.getLogger(__name__)

CRLF = '\r\n'
LF = '\n'

# Raw bytes round-trip through str unchanged, whatever the charset
RAW_ENCODING = 'utf-8'
RAW_ERRORS = 'surrogateescape'

# token ":" SP* value, where token is printable ASCII other than ':'
HEADER_LINE_RE = re.compile(r'^([\x21-\x39\x3b-\x7e]+):[ \t]*(.*)$')


def decode_raw(raw: bytes) -> str:
    """Decode raw message bytes losslessly."""
    return raw.decode(RAW_ENCODING, RAW_ERRORS)


def encode_raw(text: str) -> bytes:
    """Inverse of decode_raw."""
    return text.encode(RAW_ENCODING, RAW_ERRORS)


def detect_line_ending(text: str) -> str:
    """
    Return the message's line terminator.

    CRLF is the wire format; bare LF is accepted only for inputs that contain
    no CRLF at all (e.g. messages saved from a Unix mailbox).
    """
    if CRLF in text or LF not in text:
        return CRLF
    return LF


def _build_header(raw_lines: List[str]) -> Header:
    """
    Turn a buffered header (first line plus continuations) into a Header.

    Raises:
        MalformedMessage: If the first line is not 'name: value'
    """
    value_lines = [raw_lines[0]] + [line.strip() for line in raw_lines[1:]]
    logical = ' '.join(value_lines)
    match = HEADER_LINE_RE.match(logical)
    if not match:
        raise MalformedMessage(f"Invalid header line: {raw_lines[0][:80]!r}")
    return Header(name=match.group(1), value=match.group(2), raw_lines=list(raw_lines))


def parse_message(raw: bytes) -> ParsedMessage:
    """
    Split a raw message into headers and body lines.

    Args:
        raw: Raw message bytes as stored by SES

    Returns:
        ParsedMessage with headers in order and the body lines verbatim

    Raises:
        MalformedMessage: If a continuation line precedes any header, a header
            line is not of the form 'name: value', or no header was found

    Example:
        >>> parsed = parse_message(b"Subject: Hi\\r\\n\\r\\nHello\\r\\n")
        >>> parsed.headers[0].value
        'Hi'
        >>> parsed.body_lines
        ['Hello', '']
    """
    text = decode_raw(raw)
    line_ending = detect_line_ending(text)
    lines = text.split(line_ending)

    headers: List[Header] = []
    pending: Optional[List[str]] = None
    separator_found = False
    body_start = len(lines)

    for index, line in enumerate(lines):
        if line == '':
            separator_found = True
            body_start = index + 1
            break

        if line[0] in ' \t':
            if pending is None:
                raise MalformedMessage(
                    f"Continuation line before any header (line {index + 1})"
                )
            pending.append(line)
            continue

        if pending is not None:
            headers.append(_build_header(pending))
        pending = [line]

    if pending is not None:
        headers.append(_build_header(pending))

    if not headers:
        raise MalformedMessage("Message contains no headers")

    body_lines = lines[body_start:]
    logger.info(
        f"Parsed message: {len(headers)} header(s), {len(body_lines)} body line(s), "
        f"separator_found={separator_found}"
    )

    return ParsedMessage(
        headers=headers,
        body_lines=body_lines,
        separator_found=separator_found,
        line_ending=line_ending
    )


def reassemble_message(
    header_lines: List[str],
    body_lines: List[str],
    line_ending: str = CRLF
) -> bytes:
    """
    Join header lines and body lines back into a raw message.

    The header block is terminated by exactly one blank line.

    Args:
        header_lines: Physical header lines (continuations included)
        body_lines: Body lines as produced by parse_message
        line_ending: Terminator used by the original message

    Returns:
        bytes: Raw message ready for SendRawEmail
    """
    text = line_ending.join(header_lines) + line_ending + line_ending + line_ending.join(body_lines)
    return encode_raw(text)
