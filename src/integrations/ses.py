"""
Amazon SES integration for the forwarding Lambda.

Sends rewritten raw messages to their forwarding targets and diagnostic
messages to the postmaster. Nothing here retries: a failed send is reported
to the caller and the receipt rule's disposition decides what happens next.

Usage:
    from integrations.ses import SesTransport

    message_id = SesTransport().send(
        targets=["you@yourteam.awsapps.com"],
        source="info@yourdomain.com",
        data=raw_bytes
    )
"""

import logging
import os
from typing import List, Optional

import boto3
from botocore.config import Config
from botocore.exceptions import ClientError

from domain.exceptions import ForwardingError

logger = logging.getLogger(__name__)

# Largest excerpt of the original message included in a diagnostic mail
NOTIFICATION_MESSAGE_LIMIT = 64 * 1024


def _initialize_ses_client():
    """
    Initialize boto3 SES client with timeout configuration.

    Returns:
        boto3.client: Configured SES client
    """
    client_config = Config(
        retries={
            'max_attempts': 1,  # 1 attempt total (no retries)
            'mode': 'standard'
        },
        connect_timeout=10,
        read_timeout=30
    )

    region = os.environ.get('AWS_REGION', os.environ.get('AWS_DEFAULT_REGION', 'us-east-1'))

    client = boto3.client('ses', region_name=region, config=client_config)
    logger.info(f"SES client initialized: region={region}, max_attempts=1 (no retries)")
    return client


# Initialize at module import time (reused across invocations)
ses_client = _initialize_ses_client()


def _error_details(error: ClientError) -> str:
    code = error.response.get('Error', {}).get('Code', 'Unknown')
    message = error.response.get('Error', {}).get('Message', str(error))
    return f"{code}: {message}"


def _readable(text: str) -> str:
    """
    Make decoded message text safe for a UTF-8 SendEmail body.

    Bytes that were not valid UTF-8 are carried as lone surrogates after
    decoding; they are shown as \\xNN escapes instead.
    """
    return text.encode('utf-8', 'surrogateescape').decode('utf-8', 'backslashreplace')


class SesTransport:
    """Sends raw messages with SES SendRawEmail."""

    def __init__(self, client=None):
        self.client = client or ses_client

    def send(self, targets: List[str], source: str, data: bytes) -> str:
        """
        Send a raw message to the forwarding targets.

        Args:
            targets: Destination addresses
            source: Verified envelope sender (the primary recipient)
            data: Raw rewritten message

        Returns:
            str: SES message id of the forwarded message

        Raises:
            ForwardingError: If SES rejects the message
        """
        logger.info(f"Sending email via SES {source} -> [{', '.join(targets)}]")

        try:
            response = self.client.send_raw_email(
                Destinations=list(targets),
                Source=source,
                RawMessage={'Data': data}
            )
        except ClientError as e:
            details = _error_details(e)
            logger.error(f"SES rejected forwarded message: {details}")
            raise ForwardingError(f"Failed to forward email: {details}") from e

        message_id = response.get('MessageId', '')
        logger.info(f"Forwarded message accepted by SES: MessageId={message_id}")
        return message_id


class PostmasterNotifier:
    """
    Sends diagnostic messages about failed forwards to the postmaster.

    Args:
        postmaster: Destination address
        source: Verified sender address (defaults to postmaster)
        client: SES client (defaults to the module client)
    """

    def __init__(self, postmaster: str, source: Optional[str] = None, client=None):
        self.postmaster = postmaster
        self.source = source or postmaster
        self.client = client or ses_client

    def compose(
        self,
        error: BaseException,
        location: Optional[str],
        original_message: Optional[str]
    ) -> str:
        """Build the plain-text diagnostic body."""
        lines = [
            "The SES forwarder failed to process an inbound message.",
            "",
            f"Error: {error.__class__.__name__}: {error}",
            f"Stored message: {location or 'unknown'}",
            "",
        ]
        if original_message is None:
            lines.append("The original message could not be retrieved.")
        else:
            excerpt = _readable(original_message[:NOTIFICATION_MESSAGE_LIMIT])
            lines.append("Original message:")
            lines.append("")
            lines.append(excerpt)
            if len(original_message) > NOTIFICATION_MESSAGE_LIMIT:
                lines.append("")
                lines.append(f"[truncated, {len(original_message):,} characters total]")
        return "\n".join(lines)

    def notify(
        self,
        error: BaseException,
        location: Optional[str] = None,
        original_message: Optional[str] = None
    ) -> bool:
        """
        Notify the postmaster about a failure.

        Failures to notify are logged and swallowed so they never mask the
        original error.

        Returns:
            bool: True if SES accepted the notification
        """
        logger.info(f"Notifying postmaster {self.postmaster} about: {error}")

        try:
            self.client.send_email(
                Source=self.source,
                Destination={'ToAddresses': [self.postmaster]},
                Message={
                    'Subject': {
                        'Data': f"SES forwarder failure: {error.__class__.__name__}",
                        'Charset': 'UTF-8'
                    },
                    'Body': {
                        'Text': {
                            'Data': self.compose(error, location, original_message),
                            'Charset': 'UTF-8'
                        }
                    }
                }
            )
        except Exception as e:
            logger.error(f"Failed to notify postmaster {self.postmaster}: {e}", exc_info=True)
            return False

        logger.info("Postmaster notified")
        return True
