"""
Alias resolution: map original recipients to forwarding targets.

For each recipient the first rule whose match criterion applies decides the
outcome. A rule that matches and then rejects ends the search for that
recipient; later rules are never consulted.
"""

import logging
from typing import Optional, Sequence

from .models import ForwardingConfig, GlobalRejectCriteria, ResolutionResult, Rule

logger = logging.getLogger(__name__)


def find_rule(recipient: str, rules: Sequence[Rule]) -> Optional[Rule]:
    """Return the first rule matching recipient, or None."""
    for rule in rules:
        if rule.matches(recipient):
            return rule
    return None


def rejection_reason(
    rule: Rule,
    recipient: str,
    subject: str,
    global_rules: GlobalRejectCriteria
) -> Optional[str]:
    """
    Evaluate a matched rule's reject conditions, then the global ones.

    Args:
        rule: The rule that matched recipient
        recipient: Original recipient address
        subject: Message subject line
        global_rules: Global reject criteria

    Returns:
        Description of the first reject condition that fired, or None
    """
    if rule.allow_all:
        return None

    local_part, at, _ = recipient.rpartition('@')
    local_part = (local_part if at else recipient).lower()
    if local_part in rule.reject_users:
        return f"user '{local_part}' is rejected"

    if rule.reject_pattern is not None and rule.reject_pattern.matches(recipient):
        return f"reject pattern {rule.reject_pattern.pattern!r} matched"

    for matcher in rule.reject_if_subject_contains:
        if matcher.matches(subject):
            return f"subject matched rule reject {matcher!r}"

    for matcher in global_rules.subject:
        if matcher.matches(subject):
            return f"subject matched global reject {matcher!r}"

    return None


def resolve(
    recipients: Sequence[str],
    subject: str,
    config: ForwardingConfig
) -> ResolutionResult:
    """
    Resolve original recipients to deduplicated forwarding targets.

    Args:
        recipients: Original recipient addresses, in the order received
        subject: Subject line of the message
        config: Forwarding configuration

    Returns:
        ResolutionResult; empty targets means the message should bounce

    Example:
        >>> result = resolve(["bad@yourdomain.com", "ok@yourdomain.com"], "Hi", config)
        >>> result.primary_recipient
        'ok@yourdomain.com'
    """
    logger.info(f"Resolving aliases for original recipients: {list(recipients)}")
    result = ResolutionResult()

    for recipient in recipients:
        rule = find_rule(recipient, config.rules)
        if rule is None:
            logger.info(f"Recipient '{recipient}' matched no rule")
            continue

        reason = rejection_reason(rule, recipient, subject, config.global_rules)
        if reason:
            logger.info(f"Recipient '{recipient}' rejected by rule {rule.description}: {reason}")
            continue

        if not result.primary_recipient:
            result.primary_recipient = recipient
            result.bypass_reject = rule.allow_all

        for target in rule.recipients:
            if target not in result.targets:
                result.targets.append(target)

        logger.info(f"Recipient '{recipient}' matched rule {rule.description} -> {rule.recipients}")

    logger.info(
        f"Resolved {len(result.targets)} target(s), "
        f"primary recipient: '{result.primary_recipient}'"
    )
    return result
