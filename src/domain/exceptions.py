"""
Exception classes for the forwarding pipeline.

Only EnvelopeValidationError and ConfigurationError escape the Lambda
handler. Everything else raised after a successful resolution is caught by
the processor, reported to the postmaster and logged.
"""


class ForwarderError(Exception):
    """Base class for all forwarding errors."""
    pass


class ConfigurationError(ForwarderError):
    """Raised when the rule configuration is invalid or missing."""
    pass


class EnvelopeValidationError(ForwarderError):
    """Raised when the Lambda event does not look like an SES receipt event."""
    pass


class MessageRetrievalError(ForwarderError):
    """Raised when the raw message cannot be fetched from S3."""
    pass


class MalformedMessage(ForwarderError):
    """Raised when the raw message header block cannot be parsed."""
    pass


class ForwardingError(ForwarderError):
    """Raised when SES rejects the rewritten message."""
    pass
