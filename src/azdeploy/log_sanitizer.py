"""Log sanitization for storage keys and management certificates.

Storage account keys, connection strings and base64 certificate blobs are
critical secrets. They must never reach a log line or an error message
printed to the console.

Design Philosophy:
- Security first: err on side of over-redaction
- Pattern-based: not brittle keyword matching
"""

import re
from re import Pattern
from typing import Any


class LogSanitizer:
    """Sanitize sensitive data from logs and error messages.

    All methods are class methods and can be called without instantiation.
    """

    REDACTED = "[REDACTED]"

    # Order matters: more specific patterns should come first
    SECRET_PATTERNS: dict[str, Pattern] = {
        "connection_string_key": re.compile(r"(AccountKey=)([^;\s]+)", re.IGNORECASE),
        "storage_key_element": re.compile(
            r"(<(?:Primary|Secondary)>)([^<]+)(?=</(?:Primary|Secondary)>)"
        ),
        "key_assignment": re.compile(
            r'((?:primary|secondary|account)[_-]?key["\']?\s*[:=]\s*["\']?)([^\s"\'&,;\)]+)',
            re.IGNORECASE,
        ),
        "certificate_assignment": re.compile(
            r'(certificate["\']?\s*[:=]\s*["\']?)([A-Za-z0-9+/=]{40,})', re.IGNORECASE
        ),
        "password": re.compile(r'(password["\']?\s*[:=]\s*["\']?)([^\s"\'&,\)]+)', re.IGNORECASE),
    }

    # Long base64 runs are certificate material or keys
    BASE64_BLOB_PATTERN: Pattern = re.compile(r"(?<![A-Za-z0-9+/])[A-Za-z0-9+/]{200,}={0,2}")

    SENSITIVE_KEYS = {
        "certificate",
        "account_key",
        "primary",
        "secondary",
        "password",
        "connection_string",
    }

    @classmethod
    def sanitize(cls, message: str) -> str:
        """Sanitize message by redacting sensitive patterns.

        Examples:
            >>> LogSanitizer.sanitize("DefaultEndpointsProtocol=https;AccountName=a;AccountKey=abc==;")
            'DefaultEndpointsProtocol=https;AccountName=a;AccountKey=[REDACTED];'
        """
        if not isinstance(message, str):
            message = str(message)

        result = message
        for pattern in cls.SECRET_PATTERNS.values():
            result = pattern.sub(r"\1" + cls.REDACTED, result)

        return cls.BASE64_BLOB_PATTERN.sub(cls.REDACTED, result)

    @classmethod
    def create_safe_error_message(cls, error: Exception, context: str = "") -> str:
        """Create error message with secrets sanitized.

        Examples:
            >>> err = ValueError("bad AccountKey=abc123;")
            >>> LogSanitizer.create_safe_error_message(err, "Storage")
            'Storage: bad AccountKey=[REDACTED];'
        """
        sanitized_msg = cls.sanitize(str(error))

        if context:
            return f"{context}: {sanitized_msg}"
        return sanitized_msg

    @classmethod
    def sanitize_dict(cls, data: dict[str, Any]) -> dict[str, Any]:
        """Sanitize dictionary values recursively, redacting sensitive keys."""
        result: dict[str, Any] = {}
        for key, value in data.items():
            if any(word in key.lower() for word in cls.SENSITIVE_KEYS):
                result[key] = cls.REDACTED
            elif isinstance(value, dict):
                result[key] = cls.sanitize_dict(value)
            elif isinstance(value, str):
                result[key] = cls.sanitize(value)
            else:
                result[key] = value

        return result


__all__ = ["LogSanitizer"]
