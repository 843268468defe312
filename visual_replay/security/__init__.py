"""
Security module for log sanitization and input-field redaction.
"""

from visual_replay.security.field_classifier import (
    FieldDescriptor,
    FieldKind,
    FieldRule,
    classify_field,
    placeholder_for,
    redact_value,
)
from visual_replay.security.sanitizer import (
    DataSanitizer,
    RedactionMethod,
    SanitizationRule,
    SensitiveDataPattern,
    sanitize_dict,
    sanitize_string,
)

__all__ = [
    "DataSanitizer",
    "RedactionMethod",
    "SanitizationRule",
    "SensitiveDataPattern",
    "sanitize_dict",
    "sanitize_string",
    "FieldDescriptor",
    "FieldKind",
    "FieldRule",
    "classify_field",
    "placeholder_for",
    "redact_value",
]
