"""
Data sanitization for log output.

Recordings carry typed values, page URLs and inline screenshots. Anything
that reaches a log handler passes through these patterns first.
"""

import hashlib
import logging
import re
from copy import deepcopy
from dataclasses import dataclass, field
from enum import Enum, auto
from typing import Any, Dict, List, Optional, Pattern

logger = logging.getLogger(__name__)


class RedactionMethod(Enum):
    """Methods for redacting sensitive data."""
    MASK = auto()          # Replace with asterisks
    HASH = auto()          # Replace with hash
    REMOVE = auto()        # Remove entirely
    PARTIAL = auto()       # Show partial (first/last few chars)
    PLACEHOLDER = auto()   # Replace with placeholder text


@dataclass
class SensitiveDataPattern:
    """Pattern for identifying sensitive data."""

    name: str
    pattern: Pattern[str]
    redaction_method: RedactionMethod = RedactionMethod.MASK
    placeholder: str = "[REDACTED]"
    partial_chars: int = 4
    description: str = ""
    enabled: bool = True

    def matches(self, text: str) -> List[re.Match]:
        """Find all matches in text."""
        if not self.enabled:
            return []
        return list(self.pattern.finditer(text))


@dataclass
class SanitizationRule:
    """Rule binding patterns to dictionary keys."""

    name: str
    patterns: List[SensitiveDataPattern]
    apply_to_keys: List[str] = field(default_factory=list)
    apply_to_values: bool = True
    enabled: bool = True


class DataSanitizer:
    """Redacts credentials, personal data and image payloads."""

    def __init__(self):
        self.patterns: List[SensitiveDataPattern] = []
        self.rules: List[SanitizationRule] = []
        self._setup_default_patterns()
        self._setup_default_rules()

    def _setup_default_patterns(self) -> None:
        # Inline images would flood the log otherwise
        self.patterns.append(
            SensitiveDataPattern(
                name="image_data_url",
                pattern=re.compile(r"data:image/[\w+.-]+;base64,[A-Za-z0-9+/=]+"),
                redaction_method=RedactionMethod.PLACEHOLDER,
                placeholder="[IMAGE DATA]",
                description="Inline base64 images",
            )
        )

        self.patterns.extend([
            SensitiveDataPattern(
                name="api_key_prefix",
                pattern=re.compile(
                    r'(api[_-]?key|apikey|api_secret|access[_-]?token)\s*[:=]\s*["\']?([^"\'\s]+)["\']?',
                    re.IGNORECASE,
                ),
                description="API key with common prefixes",
            ),
            SensitiveDataPattern(
                name="bearer_token",
                pattern=re.compile(r"Bearer\s+[A-Za-z0-9\-._~+/]+=*", re.IGNORECASE),
                description="Bearer authentication tokens",
            ),
            SensitiveDataPattern(
                name="jwt_token",
                pattern=re.compile(r"eyJ[A-Za-z0-9_-]+\.eyJ[A-Za-z0-9_-]+\.[A-Za-z0-9_-]+"),
                redaction_method=RedactionMethod.HASH,
                description="JWT tokens",
            ),
            SensitiveDataPattern(
                name="password_field",
                pattern=re.compile(
                    r'(password|passwd|pwd)\s*[:=]\s*["\']?([^"\'\s]+)["\']?',
                    re.IGNORECASE,
                ),
                redaction_method=RedactionMethod.PLACEHOLDER,
                placeholder="[PASSWORD]",
                description="Password assignments",
            ),
        ])

        self.patterns.extend([
            SensitiveDataPattern(
                name="email",
                pattern=re.compile(r"\b[A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\.[A-Za-z]{2,}\b"),
                redaction_method=RedactionMethod.PARTIAL,
                partial_chars=3,
                description="Email addresses",
            ),
            SensitiveDataPattern(
                name="credit_card",
                pattern=re.compile(r"\b(?:\d{4}[\s-]?){3}\d{4}\b"),
                redaction_method=RedactionMethod.PARTIAL,
                description="16 digit card numbers",
            ),
        ])

    def _setup_default_rules(self) -> None:
        # Values under these keys are replaced wholesale
        self.rules.append(
            SanitizationRule(
                name="credential_keys",
                patterns=[],
                apply_to_keys=["password", "token", "secret", "authorization", "api_key"],
                apply_to_values=False,
            )
        )

        self.rules.append(
            SanitizationRule(
                name="all_values",
                patterns=list(self.patterns),
            )
        )

    def add_pattern(self, pattern: SensitiveDataPattern) -> None:
        """Add a custom pattern."""
        self.patterns.append(pattern)

    def sanitize_string(
        self,
        text: str,
        patterns: Optional[List[SensitiveDataPattern]] = None
    ) -> str:
        """
        Sanitize a string using specified patterns.

        Args:
            text: Text to sanitize
            patterns: Patterns to use (defaults to all enabled patterns)

        Returns:
            Sanitized text
        """
        if not text:
            return text

        patterns = patterns or [p for p in self.patterns if p.enabled]

        all_matches = []
        for pattern in patterns:
            for match in pattern.matches(text):
                all_matches.append((match, pattern))

        # Earliest, then longest, match wins an overlapping span
        all_matches.sort(key=lambda x: (x[0].start(), x[0].start() - x[0].end()))
        selected = []
        covered_until = -1
        for match, pattern in all_matches:
            if match.start() < covered_until:
                continue
            selected.append((match, pattern))
            covered_until = match.end()

        # Apply from the end so earlier spans keep their offsets
        result = text
        for match, pattern in reversed(selected):
            result = self._apply_redaction(result, match, pattern)

        return result

    def _apply_redaction(
        self,
        text: str,
        match: re.Match,
        pattern: SensitiveDataPattern
    ) -> str:
        start, end = match.span()
        matched_text = match.group()

        if pattern.redaction_method == RedactionMethod.MASK:
            replacement = "*" * len(matched_text)
        elif pattern.redaction_method == RedactionMethod.HASH:
            hash_val = hashlib.sha256(matched_text.encode()).hexdigest()[:8]
            replacement = f"[HASH:{hash_val}]"
        elif pattern.redaction_method == RedactionMethod.REMOVE:
            replacement = ""
        elif pattern.redaction_method == RedactionMethod.PARTIAL:
            if len(matched_text) > pattern.partial_chars * 2:
                replacement = (
                    matched_text[:pattern.partial_chars] +
                    "*" * (len(matched_text) - pattern.partial_chars * 2) +
                    matched_text[-pattern.partial_chars:]
                )
            else:
                replacement = "*" * len(matched_text)
        else:
            replacement = pattern.placeholder

        return text[:start] + replacement + text[end:]

    def sanitize_dict(
        self,
        data: Dict[str, Any],
        rules: Optional[List[SanitizationRule]] = None,
        max_depth: int = 10
    ) -> Dict[str, Any]:
        """
        Sanitize a dictionary recursively.

        Args:
            data: Dictionary to sanitize
            rules: Rules to apply (defaults to all enabled rules)
            max_depth: Maximum recursion depth

        Returns:
            Sanitized dictionary (copy)
        """
        if max_depth <= 0:
            logger.warning("Max recursion depth reached in sanitize_dict")
            return data

        rules = rules or [r for r in self.rules if r.enabled]
        result = deepcopy(data)

        def _sanitize_value(value: Any, key: Optional[str] = None) -> Any:
            if isinstance(value, str):
                key_lower = key.lower() if key else ""
                applicable: List[SensitiveDataPattern] = []
                for rule in rules:
                    key_matches = bool(key_lower) and any(
                        k in key_lower for k in rule.apply_to_keys
                    )
                    if key_matches and not rule.patterns:
                        return "[REDACTED]" if value else value
                    if key_matches or rule.apply_to_values:
                        applicable.extend(rule.patterns)
                if applicable:
                    value = self.sanitize_string(value, applicable)
            elif isinstance(value, dict):
                value = self.sanitize_dict(value, rules, max_depth - 1)
            elif isinstance(value, list):
                value = [_sanitize_value(item, key) for item in value]
            return value

        for key, value in result.items():
            result[key] = _sanitize_value(value, str(key))

        return result

    def sanitize_log_record(self, record: logging.LogRecord) -> logging.LogRecord:
        """
        Sanitize a log record in place.

        Args:
            record: Log record to sanitize

        Returns:
            Sanitized log record
        """
        if hasattr(record, "msg"):
            record.msg = self.sanitize_string(str(record.msg))

        if hasattr(record, "args") and record.args:
            if isinstance(record.args, dict):
                record.args = self.sanitize_dict(record.args)
            else:
                record.args = tuple(
                    self.sanitize_string(arg) if isinstance(arg, str) else arg
                    for arg in record.args
                )

        return record


_default_sanitizer = DataSanitizer()


def sanitize_string(text: str) -> str:
    """Sanitize a string using default patterns."""
    return _default_sanitizer.sanitize_string(text)


def sanitize_dict(data: Dict[str, Any]) -> Dict[str, Any]:
    """Sanitize a dictionary using default rules."""
    return _default_sanitizer.sanitize_dict(data)
