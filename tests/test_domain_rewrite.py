"""
Tests for header rewriting and body filtering.
"""

import pytest
import sys
import os

# Add src to path for imports
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '../src'))

from domain.models import LiteralMatcher, PatternMatcher
from domain.rewrite import filter_body, rewrite_headers, rewrite_message, sanitize_display_name
from services.email import parse_message, reassemble_message

PRIMARY = "info@yourdomain.com"


def headers_for(raw: bytes):
    return rewrite_headers(parse_message(raw), PRIMARY)


class TestSanitizeDisplayName:
    """Test From value sanitization."""

    def test_quotes_removed_and_brackets_replaced(self):
        assert sanitize_display_name('"A > B" <x@y>') == "A ) B (x@y)"

    def test_plain_address(self):
        assert sanitize_display_name("sender@example.com") == "sender@example.com"


class TestRewriteHeaders:
    """Test the per-header decision table."""

    def test_from_rewritten_to_primary_recipient(self):
        result = headers_for(b"From: Sender Name <sender@example.com>\r\nSubject: Hi\r\n\r\n")

        assert result[0] == 'From: "Sender Name (sender@example.com)" <info@yourdomain.com>'

    def test_from_display_name_is_sanitized(self):
        result = headers_for(b'From: "A > B" <x@y>\r\n\r\n')

        from_line = result[0]
        display = from_line[len('From: "'):from_line.rindex('"')]
        assert '"' not in display
        assert '<' not in display
        assert '>' not in display
        assert from_line.endswith(f"<{PRIMARY}>")

    def test_excluded_headers_removed(self):
        raw = (
            b"Return-Path: <bounce@example.com>\r\n"
            b"DKIM-Signature: v=1; a=rsa-sha256;\r\n"
            b"\tb=abcdef\r\n"
            b"Sender: list@example.com\r\n"
            b"dkim-signature: v=1; second\r\n"
            b"From: sender@example.com\r\n"
            b"Subject: Hi\r\n"
            b"\r\n"
        )

        result = headers_for(raw)

        assert result == [
            f'From: "sender@example.com" <{PRIMARY}>',
            "Subject: Hi",
            "Reply-To: sender@example.com",
        ]

    def test_duplicate_subject_keeps_first(self):
        result = headers_for(
            b"From: a@example.com\r\nSubject: First\r\nsubject: Second\r\n\r\n"
        )

        assert "Subject: First" in result
        assert not any("Second" in line for line in result)

    def test_duplicate_received_kept(self):
        result = headers_for(
            b"Received: from a\r\nReceived: from b\r\nFrom: a@example.com\r\n\r\n"
        )

        assert result[:2] == ["Received: from a", "Received: from b"]

    def test_duplicate_from_removed(self):
        result = headers_for(b"From: a@example.com\r\nFrom: b@example.com\r\n\r\n")

        from_lines = [line for line in result if line.startswith("From:")]
        assert len(from_lines) == 1
        assert "a@example.com" in from_lines[0]

    def test_existing_reply_to_kept_unchanged(self):
        result = headers_for(
            b"From: a@example.com\r\nReply-To: Team <team@example.com>\r\nSubject: Hi\r\n\r\n"
        )

        reply_to = [line for line in result if line.lower().startswith("reply-to:")]
        assert reply_to == ["Reply-To: Team <team@example.com>"]

    def test_reply_to_appended_with_original_from(self):
        result = headers_for(b'From: "Jane Doe" <jane@example.com>\r\nSubject: Hi\r\n\r\n')

        assert result[-1] == 'Reply-To: "Jane Doe" <jane@example.com>'
        assert sum(1 for line in result if line.startswith("Reply-To:")) == 1

    def test_empty_reply_to_replaced_by_from(self):
        result = headers_for(b"Reply-To:   \r\nFrom: jane@example.com\r\n\r\n")

        assert result == [
            f'From: "jane@example.com" <{PRIMARY}>',
            "Reply-To: jane@example.com",
        ]

    def test_no_from_no_reply_to(self):
        result = headers_for(b"Subject: Hi\r\nTo: a@b.c\r\n\r\n")

        assert result == ["Subject: Hi", "To: a@b.c"]

    def test_empty_from_adds_no_reply_to(self):
        result = headers_for(b"From:  \r\nSubject: Hi\r\n\r\n")

        assert result == [f'From: "" <{PRIMARY}>', "Subject: Hi"]

    def test_folded_header_emitted_with_original_lines(self):
        result = headers_for(
            b"From: a@example.com\r\nReply-To: x@example.com\r\nX-Long: part one\r\n  part two\r\n\r\n"
        )

        assert result[-2:] == ["X-Long: part one", "  part two"]

    def test_folded_from_value_used_for_reply_to(self):
        result = headers_for(b"From: Jane\r\n <jane@example.com>\r\n\r\n")

        assert result == [
            f'From: "Jane (jane@example.com)" <{PRIMARY}>',
            "Reply-To: Jane <jane@example.com>",
        ]


class TestRoundTrip:
    """Reassembled output is byte-identical apart from the From line."""

    def test_round_trip_except_from(self):
        raw = (
            b"Received: from mx1.example.com\r\n"
            b"From: sender@example.com\r\n"
            b"Reply-To: replies@example.com\r\n"
            b"Subject: Quarterly report\r\n"
            b"Content-Type: text/plain;\r\n"
            b"\tcharset=utf-8\r\n"
            b"\r\n"
            b"Line one\r\n"
            b"\r\n"
            b"Line three\r\n"
        )

        parsed = parse_message(raw)
        rewritten = rewrite_message(parsed, PRIMARY)
        data = reassemble_message(rewritten.header_lines, rewritten.body_lines, rewritten.line_ending)

        expected = raw.replace(
            b"From: sender@example.com\r\n",
            b'From: "sender@example.com" <info@yourdomain.com>\r\n'
        )
        assert data == expected


class TestFilterBody:
    """Test the body filter."""

    def test_body_passes_through(self):
        lines = ["Hello", "", "World"]

        assert filter_body(lines, [LiteralMatcher("casino")]) is lines

    def test_literal_match_vetoes(self):
        assert filter_body(["Hello", "Visit our casino today"], [LiteralMatcher("casino")]) is None

    def test_pattern_match_vetoes(self):
        matcher = PatternMatcher(r"bit\.ly/\w+", ignore_case=True)

        assert filter_body(["see BIT.LY/abc"], [matcher]) is None

    def test_no_patterns(self):
        assert filter_body(["anything"], []) == ["anything"]

    def test_short_circuits_on_first_match(self):
        class CountingMatcher:
            def __init__(self):
                self.calls = 0

            def matches(self, value):
                self.calls += 1
                return value == "bad"

        matcher = CountingMatcher()

        assert filter_body(["ok", "bad", "never", "checked"], [matcher]) is None
        assert matcher.calls == 2


class TestRewriteMessage:
    """Test rewrite_message combining both stages."""

    def test_vetoed_message(self):
        parsed = parse_message(b"From: a@example.com\r\n\r\nWIN BIG NOW\r\n")

        rewritten = rewrite_message(parsed, PRIMARY, [LiteralMatcher("WIN BIG")])

        assert rewritten.vetoed is True
        assert rewritten.body_lines == []

    def test_not_vetoed(self):
        parsed = parse_message(b"From: a@example.com\r\n\r\nHello\r\n")

        rewritten = rewrite_message(parsed, PRIMARY, [LiteralMatcher("WIN BIG")])

        assert rewritten.vetoed is False
        assert rewritten.body_lines == ["Hello", ""]


if __name__ == '__main__':
    pytest.main([__file__, '-v'])
