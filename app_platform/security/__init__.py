"""Security utilities (secret encryption, input hygiene, hardened storage)."""

from .sanitizer import find_injection, sanitize_input, sanitize_string  # noqa: F401
from .secret_box import SecretBox  # noqa: F401
from .secure_store import SENSITIVE_FIELDS, SecureDataWrapper, redact  # noqa: F401

__all__ = [
    "SecretBox",
    "sanitize_string",
    "sanitize_input",
    "find_injection",
    "SecureDataWrapper",
    "SENSITIVE_FIELDS",
    "redact",
]
