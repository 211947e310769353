"""
Data models for the forwarding domain.

These type-safe data structures define clear contracts between components:
rule configuration, resolution results, parsed and rewritten messages.
"""

import re
from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional, Dict, Any, Union

from .exceptions import ConfigurationError


class Disposition(Enum):
    """Receipt rule disposition returned to SES."""
    CONTINUE = 'CONTINUE'
    STOP_RULE = 'STOP_RULE'


# ============================================================================
# Matchers
# ============================================================================

@dataclass(frozen=True)
class LiteralMatcher:
    """Case-sensitive substring test."""
    text: str

    def matches(self, value: str) -> bool:
        return self.text in value


@dataclass(frozen=True)
class PatternMatcher:
    """
    Regular expression test (re.search semantics).

    Attributes:
        pattern: Source of the regular expression
        ignore_case: Compile with re.IGNORECASE
    """
    pattern: str
    ignore_case: bool = False
    _compiled: Any = field(init=False, repr=False, compare=False, default=None)

    def __post_init__(self):
        flags = re.IGNORECASE if self.ignore_case else 0
        try:
            compiled = re.compile(self.pattern, flags)
        except re.error as e:
            raise ConfigurationError(f"Invalid pattern {self.pattern!r}: {e}")
        object.__setattr__(self, '_compiled', compiled)

    def matches(self, value: str) -> bool:
        return self._compiled.search(value) is not None


Matcher = Union[LiteralMatcher, PatternMatcher]


def matcher_from_config(definition: Any, literal_strings: bool = True) -> Matcher:
    """
    Build a matcher from its JSON form.

    A plain string is a literal substring, unless literal_strings is False
    (pattern-typed fields), in which case it is compiled as a regex. An
    object {"pattern": "...", "ignoreCase": true} is always a regex.

    Raises:
        ConfigurationError: If the entry has an unsupported shape
    """
    if isinstance(definition, str):
        if literal_strings:
            return LiteralMatcher(definition)
        return PatternMatcher(definition)
    if (
        isinstance(definition, dict)
        and isinstance(definition.get('pattern'), str)
        and isinstance(definition.get('ignoreCase', False), bool)
    ):
        return PatternMatcher(definition['pattern'], definition.get('ignoreCase', False))
    raise ConfigurationError(f"Unsupported matcher definition: {definition!r}")


def _matcher_list(raw: Any, field_name: str) -> List[Matcher]:
    if raw is None:
        return []
    if not isinstance(raw, list):
        raise ConfigurationError(f"'{field_name}' must be a list")
    return [matcher_from_config(entry) for entry in raw]


# ============================================================================
# Rule configuration
# ============================================================================

@dataclass(frozen=True)
class Rule:
    """
    Forwarding rule.

    Exactly one of match_exact, match_host and match_pattern is set.

    Attributes:
        recipients: Target addresses the message is forwarded to
        match_exact: Address that must equal the recipient
        match_host: Domain compared with the part after '@'
        match_pattern: Regex tested against the whole address
        reject_users: Local parts (lowercase) that are rejected
        reject_pattern: Regex rejecting matching addresses
        reject_if_subject_contains: Subject matchers that reject the message
        allow_all: Skip every reject check, global ones included
    """
    recipients: List[str]
    match_exact: Optional[str] = None
    match_host: Optional[str] = None
    match_pattern: Optional[PatternMatcher] = None
    reject_users: List[str] = field(default_factory=list)
    reject_pattern: Optional[PatternMatcher] = None
    reject_if_subject_contains: List[Matcher] = field(default_factory=list)
    allow_all: bool = False

    def __post_init__(self):
        criteria = [self.match_exact, self.match_host, self.match_pattern]
        count = sum(1 for c in criteria if c is not None)
        if count != 1:
            raise ConfigurationError(
                f"Rule must define exactly one of matchExact, matchHost or "
                f"matchPattern (found {count})"
            )
        if not self.recipients:
            raise ConfigurationError("Rule must define at least one recipient")

    @property
    def description(self) -> str:
        """Short human-readable form used in log messages."""
        if self.match_exact is not None:
            return f"exact={self.match_exact}"
        if self.match_host is not None:
            return f"host={self.match_host}"
        return f"pattern={self.match_pattern.pattern}"

    def matches(self, address: str) -> bool:
        """Check whether this rule's match criterion applies to address."""
        if self.match_exact is not None:
            return address == self.match_exact
        if self.match_host is not None:
            _, at, host = address.rpartition('@')
            return bool(at) and host.lower() == self.match_host.lower()
        return self.match_pattern.matches(address)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Rule':
        """
        Build a rule from its JSON form.

        Raises:
            ConfigurationError: If the rule definition is invalid
        """
        if not isinstance(data, dict):
            raise ConfigurationError(f"Rule must be an object, got {type(data).__name__}")

        recipients = data.get('recipients')
        if not isinstance(recipients, list) or not all(isinstance(r, str) for r in recipients):
            raise ConfigurationError("Rule 'recipients' must be a list of addresses")

        reject_users = data.get('rejectUsers', [])
        if not isinstance(reject_users, list):
            raise ConfigurationError("Rule 'rejectUsers' must be a list")

        for name in ('matchExact', 'matchHost'):
            if data.get(name) is not None and not isinstance(data[name], str):
                raise ConfigurationError(f"Rule '{name}' must be a string")

        allow_all = data.get('allowAll', False)
        if not isinstance(allow_all, bool):
            raise ConfigurationError("Rule 'allowAll' must be true or false")

        match_pattern = data.get('matchPattern')
        reject_pattern = data.get('rejectPattern')

        return cls(
            recipients=list(recipients),
            match_exact=data.get('matchExact'),
            match_host=data.get('matchHost'),
            match_pattern=(
                matcher_from_config(match_pattern, literal_strings=False)
                if match_pattern is not None else None
            ),
            reject_users=[str(u).lower() for u in reject_users],
            reject_pattern=(
                matcher_from_config(reject_pattern, literal_strings=False)
                if reject_pattern is not None else None
            ),
            reject_if_subject_contains=_matcher_list(
                data.get('rejectIfSubjectContains'), 'rejectIfSubjectContains'
            ),
            allow_all=allow_all,
        )


@dataclass(frozen=True)
class GlobalRejectCriteria:
    """Reject conditions applied after every rule unless it allows all."""
    subject: List[Matcher] = field(default_factory=list)
    body: List[Matcher] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> 'GlobalRejectCriteria':
        if data is None:
            return cls()
        if not isinstance(data, dict):
            raise ConfigurationError("'globalRules' must be an object")
        return cls(
            subject=_matcher_list(data.get('rejectIfSubjectContains'), 'rejectIfSubjectContains'),
            body=_matcher_list(data.get('rejectIfBodyContains'), 'rejectIfBodyContains'),
        )


@dataclass(frozen=True)
class ForwardingConfig:
    """
    Complete forwarding configuration.

    Attributes:
        postmaster: Operator address notified on failures
        rules: Ordered forwarding rules
        global_rules: Global reject criteria
        notification_sender: Verified SES source for diagnostic mail
    """
    postmaster: str
    rules: List[Rule]
    global_rules: GlobalRejectCriteria = field(default_factory=GlobalRejectCriteria)
    notification_sender: Optional[str] = None

    @property
    def notification_source(self) -> str:
        return self.notification_sender or self.postmaster

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'ForwardingConfig':
        """
        Build and validate the configuration from its JSON form.

        Raises:
            ConfigurationError: If any part of the configuration is invalid
        """
        if not isinstance(data, dict):
            raise ConfigurationError("Configuration must be a JSON object")

        postmaster = data.get('postmaster')
        if not postmaster or not isinstance(postmaster, str):
            raise ConfigurationError("Configuration 'postmaster' address is required")

        notification_sender = data.get('notificationSender')
        if notification_sender is not None and not isinstance(notification_sender, str):
            raise ConfigurationError("Configuration 'notificationSender' must be a string")

        raw_rules = data.get('rules')
        if not isinstance(raw_rules, list) or not raw_rules:
            raise ConfigurationError("Configuration 'rules' must be a non-empty list")

        rules = []
        for index, raw_rule in enumerate(raw_rules):
            try:
                rules.append(Rule.from_dict(raw_rule))
            except ConfigurationError as e:
                raise ConfigurationError(f"Rule #{index}: {e}")

        return cls(
            postmaster=postmaster,
            rules=rules,
            global_rules=GlobalRejectCriteria.from_dict(data.get('globalRules')),
            notification_sender=notification_sender,
        )


# ============================================================================
# Processing results
# ============================================================================

@dataclass
class ResolutionResult:
    """
    Outcome of alias resolution for one inbound message.

    Attributes:
        targets: Deduplicated target addresses in first-seen order
        primary_recipient: First original recipient that resolved ('' if none)
        bypass_reject: allowAll flag of the rule that set primary_recipient
    """
    targets: List[str] = field(default_factory=list)
    primary_recipient: str = ''
    bypass_reject: bool = False

    @property
    def has_targets(self) -> bool:
        return bool(self.targets)


@dataclass
class InboundMail:
    """
    Validated view of an SES receipt record.

    Attributes:
        message_id: SES message id (also the S3 object name)
        recipients: Original envelope recipients, in SES order
        subject: Subject from commonHeaders ('' if absent)
        source: Envelope sender
        timestamp: ISO 8601 receipt timestamp
    """
    message_id: str
    recipients: List[str]
    subject: str = ''
    source: str = ''
    timestamp: str = ''


@dataclass(frozen=True)
class Header:
    """
    One logical header.

    Attributes:
        name: Header name as it appeared
        value: Value with folded lines joined by a single space
        raw_lines: Physical lines, continuations included
    """
    name: str
    value: str
    raw_lines: List[str]

    @property
    def key(self) -> str:
        """Lowercase name for case-insensitive comparisons."""
        return self.name.lower()


@dataclass
class ParsedMessage:
    """Header list plus opaque body lines of a raw message."""
    headers: List[Header]
    body_lines: List[str]
    separator_found: bool
    line_ending: str = '\r\n'


@dataclass
class RewrittenMessage:
    """
    Result of the rewrite pipeline.

    When vetoed, body_lines is empty and the message must not be sent.
    """
    header_lines: List[str]
    body_lines: List[str]
    line_ending: str = '\r\n'
    vetoed: bool = False

    def __repr__(self) -> str:
        if self.vetoed:
            return "RewrittenMessage(vetoed=True)"
        return (
            f"RewrittenMessage(headers={len(self.header_lines)}, "
            f"body_lines={len(self.body_lines)})"
        )


@dataclass
class ForwardingResult:
    """
    Result of processing one SES event.

    This explicit result type keeps failure handling out of the handler:
    errors after resolution are reported here, never raised.

    Attributes:
        disposition: Receipt rule disposition to return to SES
        message_id: SES message id
        targets: Forwarding targets (empty when nothing matched)
        forwarded_message_id: SES id of the forwarded copy, if sent
        vetoed: Whether the body filter suppressed the message
        error_message: Error description (if forwarding failed)
    """
    disposition: Disposition
    message_id: str
    targets: List[str] = field(default_factory=list)
    forwarded_message_id: Optional[str] = None
    vetoed: bool = False
    error_message: Optional[str] = None

    @property
    def success(self) -> bool:
        return self.error_message is None

    def to_response(self) -> Dict[str, str]:
        """Lambda response understood by the SES receipt rule."""
        return {'disposition': self.disposition.value}

    def __repr__(self) -> str:
        if self.success:
            return (
                f"ForwardingResult(disposition={self.disposition.value}, "
                f"message_id={self.message_id})"
            )
        return (
            f"ForwardingResult(disposition={self.disposition.value}, "
            f"message_id={self.message_id}, error={self.error_message})"
        )
