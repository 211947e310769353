"""
Service functions for Lambda handler operations.

This package contains the raw email codec, S3 message retrieval and
forwarding rule configuration loading.
"""

__all__ = ['email', 's3', 'rules_config']
