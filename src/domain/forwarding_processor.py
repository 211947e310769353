"""
Forwarding pipeline - core business logic.

This module handles the end-to-end processing of an SES receipt event:
1. Validate the SES event and extract the inbound mail metadata
2. Resolve original recipients to forwarding targets
3. Fetch the raw message from S3
4. Parse, rewrite and filter the message
5. Send the rewritten message through SES
6. Notify the postmaster if anything after resolution failed

Envelope validation and configuration errors propagate to the caller. Every
other error is reported to the postmaster and turned into a STOP_RULE result.
"""

import logging
from typing import Any, Dict, Optional

from .exceptions import EnvelopeValidationError
from .models import Disposition, ForwardingConfig, ForwardingResult, InboundMail
from .resolution import resolve
from .rewrite import rewrite_message
from services import email as email_service
from services import rules_config
from services.s3 import S3MessageStore
from integrations.ses import PostmasterNotifier, SesTransport

logger = logging.getLogger(__name__)

EXPECTED_EVENT_SOURCE = 'aws:ses'
EXPECTED_EVENT_VERSION = '1.0'


def _require_object(value: Any, description: str) -> Dict[str, Any]:
    if value is None:
        raise EnvelopeValidationError(f"Missing {description}")
    if not isinstance(value, dict):
        raise EnvelopeValidationError(f"Non-object {description}")
    return value


def validate_ses_event(event: Any) -> InboundMail:
    """
    Validate a Lambda event and extract the SES receipt data.

    Args:
        event: Lambda event from an SES receipt rule

    Returns:
        InboundMail: Validated mail metadata

    Raises:
        EnvelopeValidationError: If the event does not look like an SES event
    """
    event = _require_object(event, 'event')

    records = event.get('Records')
    if records is None:
        raise EnvelopeValidationError("Event is missing Records array")
    if not isinstance(records, list):
        raise EnvelopeValidationError("Event has non-array Records field")
    if len(records) != 1:
        raise EnvelopeValidationError(
            f"Event Records array has length {len(records)}; expected 1"
        )

    record = _require_object(records[0], 'record')

    event_source = record.get('eventSource')
    if event_source != EXPECTED_EVENT_SOURCE:
        raise EnvelopeValidationError(
            f"Record has eventSource '{event_source}'; expected '{EXPECTED_EVENT_SOURCE}'"
        )

    event_version = record.get('eventVersion')
    if event_version != EXPECTED_EVENT_VERSION:
        raise EnvelopeValidationError(
            f"Record has eventVersion '{event_version}'; expected '{EXPECTED_EVENT_VERSION}'"
        )

    ses = _require_object(record.get('ses'), 'ses field')
    mail = _require_object(ses.get('mail'), 'ses mail field')
    receipt = _require_object(ses.get('receipt'), 'ses receipt field')

    message_id = mail.get('messageId')
    if not message_id or not isinstance(message_id, str):
        raise EnvelopeValidationError("Record ses mail is missing messageId")

    recipients = receipt.get('recipients')
    if not isinstance(recipients, list) or not recipients:
        raise EnvelopeValidationError("Record did not contain recipients")
    if not all(isinstance(r, str) for r in recipients):
        raise EnvelopeValidationError("Record recipients must be strings")

    common_headers = mail.get('commonHeaders')
    if not isinstance(common_headers, dict):
        common_headers = {}
    subject = common_headers.get('subject')

    return InboundMail(
        message_id=message_id,
        recipients=list(recipients),
        subject=subject if isinstance(subject, str) else '',
        source=mail.get('source', '') or '',
        timestamp=mail.get('timestamp', '') or ''
    )


class ForwardingProcessor:
    """
    Handles the end-to-end forwarding pipeline.

    Collaborators are injectable so tests can substitute in-memory fakes.

    Args:
        config: Forwarding configuration (default: loaded via rules_config)
        store: Object with fetch(message_id) -> bytes and location(message_id)
        transport: Object with send(targets, source, data) -> str
        notifier: Object with notify(error, location, original_message)
            (default: PostmasterNotifier for the configured postmaster)
    """

    def __init__(
        self,
        config: Optional[ForwardingConfig] = None,
        store=None,
        transport=None,
        notifier=None
    ):
        self._config = config
        self.store = store or S3MessageStore()
        self.transport = transport or SesTransport()
        self._notifier = notifier

    @property
    def config(self) -> ForwardingConfig:
        """Configuration in effect (reloaded through the TTL cache if not fixed)."""
        if self._config is not None:
            return self._config
        return rules_config.load_config()

    def notifier_for(self, config: ForwardingConfig):
        if self._notifier is not None:
            return self._notifier
        return PostmasterNotifier(config.postmaster, config.notification_source)

    def process_event(self, event: Any) -> ForwardingResult:
        """
        Process a single SES receipt event.

        Args:
            event: Lambda event from the SES receipt rule

        Returns:
            ForwardingResult carrying the disposition for SES

        Raises:
            EnvelopeValidationError: If the event is malformed
            ConfigurationError: If the rule configuration cannot be loaded
        """
        mail = validate_ses_event(event)
        logger.info(
            f"Processing SES message {mail.message_id}: "
            f"source={mail.source}, subject={mail.subject!r}"
        )

        config = self.config
        resolution = resolve(mail.recipients, mail.subject, config)

        if not resolution.has_targets:
            logger.info("No recipients after alias processing, let it bounce")
            return ForwardingResult(
                disposition=Disposition.CONTINUE,
                message_id=mail.message_id
            )

        location = None
        original_message = None

        try:
            location = self.store.location(mail.message_id)
            raw = self.store.fetch(mail.message_id)
            original_message = email_service.decode_raw(raw)
            logger.debug(f"Original message:\n{original_message}")

            parsed = email_service.parse_message(raw)
            body_reject = [] if resolution.bypass_reject else config.global_rules.body
            rewritten = rewrite_message(parsed, resolution.primary_recipient, body_reject)

            if rewritten.vetoed:
                logger.info("Message vetoed by body filter, let it bounce")
                return ForwardingResult(
                    disposition=Disposition.CONTINUE,
                    message_id=mail.message_id,
                    targets=resolution.targets,
                    vetoed=True
                )

            data = email_service.reassemble_message(
                rewritten.header_lines,
                rewritten.body_lines,
                rewritten.line_ending
            )

            forwarded_id = self.transport.send(
                resolution.targets,
                resolution.primary_recipient,
                data
            )

            return ForwardingResult(
                disposition=Disposition.STOP_RULE,
                message_id=mail.message_id,
                targets=resolution.targets,
                forwarded_message_id=forwarded_id
            )

        except Exception as e:
            logger.error(f"Failed to process message {mail.message_id}: {e}", exc_info=True)
            logger.error("Failed to process message, notifying postmaster")
            self.notifier_for(config).notify(e, location, original_message)

            return ForwardingResult(
                disposition=Disposition.STOP_RULE,
                message_id=mail.message_id,
                targets=resolution.targets,
                error_message=str(e)
            )
