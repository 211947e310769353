"""
Header rewriting and body filtering for forwarded messages.

SES only sends raw messages whose From domain is verified and refuses
duplicate DKIM-Signature headers, so the original From is replaced by the
primary recipient and the true sender is preserved in Reply-To.
"""

import logging
from typing import List, Optional, Sequence

from .models import Matcher, ParsedMessage, RewrittenMessage

logger = logging.getLogger(__name__)

# Headers that are stale or unverifiable once From has been rewritten
EXCLUDED_HEADERS = frozenset(['return-path', 'sender', 'dkim-signature'])

# Headers that may legitimately appear more than once
REPEATABLE_HEADERS = frozenset(['received'])


def sanitize_display_name(value: str) -> str:
    """
    Make an original From value safe to use as a quoted display name.

    Double quotes are dropped and angle brackets become parentheses.

    Example:
        >>> sanitize_display_name('"A > B" <x@y>')
        'A ) B (x@y)'
    """
    return value.replace('"', '').replace('<', '(').replace('>', ')')


def rewrite_headers(parsed: ParsedMessage, primary_recipient: str) -> List[str]:
    """
    Filter and rewrite the header block for re-sending through SES.

    Args:
        parsed: Parsed original message
        primary_recipient: Verified address used as the new From

    Returns:
        List of physical header lines, in original order, with Reply-To
        appended at the end when it had to be synthesized
    """
    output: List[str] = []
    seen = set()
    orig_from: Optional[str] = None
    has_reply_to = False

    for header in parsed.headers:
        key = header.key

        if key in EXCLUDED_HEADERS:
            logger.info(f"Removing {header.name} header")
            continue

        if key == 'reply-to' and not header.value.strip():
            logger.info("Removing empty Reply-To header")
            continue

        if key in seen and key not in REPEATABLE_HEADERS:
            logger.info(f"Removing duplicate {header.name} header")
            continue

        seen.add(key)

        if key == 'from':
            orig_from = header.value
            output.append(f'From: "{sanitize_display_name(orig_from)}" <{primary_recipient}>')
            continue

        if key == 'reply-to':
            has_reply_to = True
            logger.info(f"Reply-To address already exists: {header.value}")

        output.extend(header.raw_lines)

    if not has_reply_to:
        if orig_from is not None and orig_from.strip():
            logger.info(f"Adding Reply-To address: {orig_from}")
            output.append(f'Reply-To: {orig_from}')
        elif orig_from is not None:
            logger.warning("Reply-To address not added because From address is empty")
        else:
            logger.warning("Reply-To address not added because From address was not found")

    return output


def filter_body(body_lines: List[str], reject: Sequence[Matcher]) -> Optional[List[str]]:
    """
    Veto a message whose body contains a rejected line.

    Args:
        body_lines: Body lines of the message
        reject: Global body reject matchers

    Returns:
        body_lines unchanged, or None when the message is vetoed
    """
    for line_number, line in enumerate(body_lines, start=1):
        for matcher in reject:
            if matcher.matches(line):
                logger.info(f"Body line {line_number} matched reject {matcher!r}, vetoing message")
                return None
    return body_lines


def rewrite_message(
    parsed: ParsedMessage,
    primary_recipient: str,
    body_reject: Sequence[Matcher] = ()
) -> RewrittenMessage:
    """
    Run the header rewrite and body filter over a parsed message.

    Returns:
        RewrittenMessage, with vetoed=True when the body filter fired
    """
    header_lines = rewrite_headers(parsed, primary_recipient)
    body_lines = filter_body(parsed.body_lines, body_reject)

    if body_lines is None:
        return RewrittenMessage(
            header_lines=header_lines,
            body_lines=[],
            line_ending=parsed.line_ending,
            vetoed=True
        )

    return RewrittenMessage(
        header_lines=header_lines,
        body_lines=body_lines,
        line_ending=parsed.line_ending
    )
