"""
AWS Lambda handler for forwarding SES inbound mail.

Thin orchestration layer that delegates to ForwardingProcessor.
Policy: no retries. Once a message resolves to forwarding targets the
function owns its disposition (STOP_RULE) whether or not the send
succeeded; failures are reported to the postmaster and logged to CloudWatch.
"""

import json
import logging
from typing import Dict, Any

from domain.forwarding_processor import ForwardingProcessor

# Configure logging
logger = logging.getLogger()
logger.setLevel(logging.INFO)

# Add console handler for local testing (AWS Lambda provides handlers automatically)
if not logger.handlers:
    console_handler = logging.StreamHandler()
    console_handler.setLevel(logging.INFO)
    formatter = logging.Formatter('%(levelname)s - %(message)s')
    console_handler.setFormatter(formatter)
    logger.addHandler(console_handler)

# Initialize processor once at module level (reused across invocations)
forwarding_processor = ForwardingProcessor()


def lambda_handler(event: Dict[str, Any], context: Any) -> Dict[str, str]:
    """
    Forward a message received by an SES receipt rule.

    Args:
        event: Lambda event with exactly one SES record
        context: Lambda context

    Returns:
        Dict with the receipt rule disposition ('CONTINUE' or 'STOP_RULE')

    Raises:
        EnvelopeValidationError: If the event is not a valid SES event
    """
    logger.info("=" * 70)
    logger.info("SES Forwarder - Started")
    logger.info("=" * 70)
    logger.info(f"Event: {json.dumps(event, default=str)}")

    result = forwarding_processor.process_event(event)

    if result.vetoed:
        logger.info(f"Message {result.message_id} vetoed by body filter")
    elif not result.targets:
        logger.info(f"Message {result.message_id} has no forwarding targets")
    elif result.success:
        logger.info(
            f"✓ Forwarded message {result.message_id} to {len(result.targets)} target(s) "
            f"(SES MessageId={result.forwarded_message_id})"
        )
    else:
        logger.warning(
            f"⚠ Failed to forward message {result.message_id}: {result.error_message}"
        )

    logger.info("=" * 70)
    logger.info(f"Disposition: {result.disposition.value}")
    logger.info("=" * 70)

    return result.to_response()
