"""
Forwarding rule configuration management.

This module loads the forwarding rules with the following priority:
1. S3 override (optional, for rule changes without redeploy)
2. Local filesystem (rules/ directory packaged with Lambda)

The parsed configuration is cached in memory for warm Lambda invocations
with TTL, and is read-only once loaded.
"""

import json
import logging
import os
import time
from pathlib import Path
from typing import Any, Dict, Tuple

import boto3
from botocore.config import Config
from botocore.exceptions import ClientError

from domain.exceptions import ConfigurationError
from domain.models import ForwardingConfig

logger = logging.getLogger(__name__)

# Cache TTL in seconds (default: 5 minutes)
CACHE_TTL_SECONDS = int(os.environ.get('RULES_CACHE_TTL', '300'))

# Module-level cache: {config_name: (config, timestamp)}
_config_cache: Dict[str, Tuple[ForwardingConfig, float]] = {}

s3_config = Config(
    retries={
        'max_attempts': 1,  # 1 attempt total (no retries)
        'mode': 'standard'
    },
    connect_timeout=10,
    read_timeout=30
)

s3_client = boto3.client('s3', config=s3_config)

# Configuration from environment variables
RULES_CONFIG_BUCKET = os.environ.get('RULES_CONFIG_BUCKET')
RULES_CONFIG_KEY_PREFIX = os.environ.get('RULES_CONFIG_KEY_PREFIX', 'rules/')
RULES_CONFIG_NAME = os.environ.get('RULES_CONFIG_NAME', 'forwarding.json')

# src/services/rules_config.py -> src/rules/
RULES_DIR = Path(__file__).parent.parent / 'rules'


def _load_from_filesystem(config_name: str) -> str:
    """
    Load rule file from the packaged rules/ directory.

    Raises:
        FileNotFoundError: If the file doesn't exist
    """
    config_path = RULES_DIR / config_name
    logger.info(f"Loading rules from filesystem: {config_path}")

    with open(config_path, 'r', encoding='utf-8') as f:
        return f.read()


def _load_from_s3(config_name: str) -> str:
    """
    Load rule file from S3 (optional override).

    Raises:
        ValueError: If RULES_CONFIG_BUCKET is not set
        ClientError: If the object cannot be read
    """
    if not RULES_CONFIG_BUCKET:
        raise ValueError("RULES_CONFIG_BUCKET environment variable not set")

    s3_key = f"{RULES_CONFIG_KEY_PREFIX}{config_name}"
    logger.info(f"Loading rules from S3: s3://{RULES_CONFIG_BUCKET}/{s3_key}")

    response = s3_client.get_object(Bucket=RULES_CONFIG_BUCKET, Key=s3_key)
    return response['Body'].read().decode('utf-8')


def parse_config(content: str) -> ForwardingConfig:
    """
    Parse and validate a JSON rule file.

    Raises:
        ConfigurationError: If the content is not valid JSON or fails validation
    """
    try:
        data: Any = json.loads(content)
    except json.JSONDecodeError as e:
        raise ConfigurationError(f"Rule configuration is not valid JSON: {e}")

    config = ForwardingConfig.from_dict(data)
    logger.info(f"Loaded {len(config.rules)} forwarding rule(s), postmaster={config.postmaster}")
    return config


def load_config(config_name: str = RULES_CONFIG_NAME, use_cache: bool = True) -> ForwardingConfig:
    """
    Load the forwarding configuration with caching and fallback.

    Priority: Cache -> S3 override -> Local filesystem

    Args:
        config_name: Rule file name (e.g., "forwarding.json")
        use_cache: Use cached version if available (default: True)

    Returns:
        ForwardingConfig: Validated configuration

    Raises:
        ConfigurationError: If no rule file is found or it is invalid
    """
    current_time = time.time()

    if use_cache and config_name in _config_cache:
        cached_config, cached_time = _config_cache[config_name]
        age_seconds = current_time - cached_time
        if age_seconds < CACHE_TTL_SECONDS:
            logger.info(
                f"Using cached rules: {config_name} "
                f"(age: {int(age_seconds)}s, TTL: {CACHE_TTL_SECONDS}s)"
            )
            return cached_config
        logger.info(f"Cache expired for rules: {config_name}, reloading...")

    content = None

    if RULES_CONFIG_BUCKET:
        try:
            content = _load_from_s3(config_name)
            logger.info(f"Using S3 override for rules: {config_name}")
        except (ClientError, ValueError) as e:
            logger.info(
                f"S3 override not available ({e.__class__.__name__}), "
                f"falling back to local filesystem"
            )

    if content is None:
        try:
            content = _load_from_filesystem(config_name)
        except FileNotFoundError:
            logger.error(
                f"Rules not found: {config_name}. "
                f"Expected location: {RULES_DIR / config_name}"
            )
            raise ConfigurationError(
                f"Rule configuration '{config_name}' not found in S3 or local filesystem"
            )

    config = parse_config(content)
    _config_cache[config_name] = (config, current_time)
    return config


def clear_cache() -> None:
    """Clear the configuration cache (forces a reload on next use)."""
    _config_cache.clear()
    logger.info("Rules cache cleared")
