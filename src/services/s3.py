"""
S3 operations for the forwarding Lambda.

SES stores each inbound message in S3 under a fixed prefix followed by the
SES message id; this module fetches those raw messages.
"""

import logging
import os
from typing import Optional

import boto3
from botocore.config import Config
from botocore.exceptions import ClientError

from domain.exceptions import MessageRetrievalError

logger = logging.getLogger(__name__)

# Configure S3 client with timeouts to prevent infinite hangs
s3_config = Config(
    retries={
        'max_attempts': 1,  # 1 attempt total (no retries)
        'mode': 'standard'
    },
    connect_timeout=10,  # 10 seconds to establish connection
    read_timeout=60      # 60 seconds max for reading response
)

# Initialize S3 client at module level (thread-safe, reused across invocations)
s3_client = boto3.client('s3', config=s3_config)
logger.info("S3 client initialized with timeouts: connect=10s, read=60s, max_attempts=1")

# Where the SES receipt rule's S3 action stores messages
EMAIL_BUCKET = os.environ.get('S3_BUCKET_EMAIL', '')
EMAIL_PREFIX = os.environ.get('S3_PREFIX_EMAIL', '')


def fetch_email_from_s3(bucket: str, key: str) -> bytes:
    """
    Fetch raw email content from S3.

    Args:
        bucket: S3 bucket name
        key: S3 object key (path to the email file)

    Returns:
        bytes: The raw email content as bytes

    Raises:
        MessageRetrievalError: If the object is missing, empty or unreadable

    Example:
        >>> email_bytes = fetch_email_from_s3(
        ...     bucket="my-ses-bucket",
        ...     key="incoming/0o2k2kcn4ipbeqc0fm0ab3gjpcp7pbf8qk0ojqg1"
        ... )
        >>> print(len(email_bytes))
        12345
    """
    s3_url = f"s3://{bucket}/{key}"
    logger.info(f"Fetching mail content from {s3_url}")

    try:
        response = s3_client.get_object(Bucket=bucket, Key=key)
        body = response['Body'].read()
    except ClientError as e:
        error_code = e.response.get('Error', {}).get('Code', '')
        if error_code == 'NoSuchKey':
            logger.error(f"S3 object not found: {s3_url}")
            raise MessageRetrievalError(f"Email file not found in S3: {s3_url}") from e
        elif error_code == 'NoSuchBucket':
            logger.error(f"S3 bucket not found: {bucket}")
            raise MessageRetrievalError(f"S3 bucket not found: {bucket}") from e
        else:
            logger.error(f"Failed to fetch from S3 {s3_url}: {e}")
            raise MessageRetrievalError(
                f"Failed to get mail content from S3 <{s3_url}>: {e}"
            ) from e

    if not body:
        logger.error(f"S3 object is empty: {s3_url}")
        raise MessageRetrievalError(f"Received empty Body from S3 <{s3_url}>")

    logger.info(f"Fetched {len(body):,} bytes from {s3_url}")
    return body


class S3MessageStore:
    """
    Message store backed by the SES receipt bucket.

    Args:
        bucket: Bucket name (defaults to S3_BUCKET_EMAIL)
        prefix: Key prefix (defaults to S3_PREFIX_EMAIL)
    """

    def __init__(self, bucket: Optional[str] = None, prefix: Optional[str] = None):
        self.bucket = EMAIL_BUCKET if bucket is None else bucket
        self.prefix = EMAIL_PREFIX if prefix is None else prefix

    def key_for(self, message_id: str) -> str:
        return f"{self.prefix}{message_id}"

    def location(self, message_id: str) -> str:
        """S3 URL of the stored message, used in logs and notifications."""
        return f"s3://{self.bucket}/{self.key_for(message_id)}"

    def fetch(self, message_id: str) -> bytes:
        """
        Fetch the raw message stored for an SES message id.

        Raises:
            MessageRetrievalError: If the bucket is not configured or S3 fails
        """
        if not self.bucket:
            raise MessageRetrievalError("S3_BUCKET_EMAIL is not configured")
        return fetch_email_from_s3(self.bucket, self.key_for(message_id))
