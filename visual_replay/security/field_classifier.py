"""
Heuristic classification of input fields holding credentials or free text.
"""

import re
from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional, Pattern

from pydantic import BaseModel


class FieldKind(str, Enum):
    """Kind of value an input field is likely to hold."""

    PASSWORD = "password"
    USERNAME = "username"
    EMAIL = "email"
    FREE_TEXT = "free_text"
    PLAIN = "plain"


PLACEHOLDER_TOKENS = {
    FieldKind.PASSWORD: "{{password}}",
    FieldKind.USERNAME: "{{username}}",
    FieldKind.EMAIL: "{{email}}",
    FieldKind.FREE_TEXT: "{{caption}}",
}


class FieldDescriptor(BaseModel):
    """Attributes of an input field as seen by the recorder."""

    tag: str = "input"
    input_type: Optional[str] = None
    name: Optional[str] = None
    element_id: Optional[str] = None
    placeholder: Optional[str] = None


@dataclass
class FieldRule:
    """Matches a field kind by input type and attribute patterns."""

    kind: FieldKind
    pattern: Optional[Pattern[str]] = None
    input_types: List[str] = field(default_factory=list)
    tags: List[str] = field(default_factory=list)
    attributes: List[str] = field(default_factory=lambda: ["name", "element_id"])

    def matches(self, descriptor: FieldDescriptor) -> bool:
        if descriptor.input_type and descriptor.input_type.lower() in self.input_types:
            return True
        if descriptor.tag and descriptor.tag.lower() in self.tags:
            return True
        if self.pattern is None:
            return False
        for attribute in self.attributes:
            value = getattr(descriptor, attribute)
            if value and self.pattern.search(value):
                return True
        return False


# Checked in order, first match wins
DEFAULT_RULES: List[FieldRule] = [
    FieldRule(
        kind=FieldKind.PASSWORD,
        pattern=re.compile(r"password", re.IGNORECASE),
        input_types=["password"],
    ),
    FieldRule(
        kind=FieldKind.USERNAME,
        pattern=re.compile(r"username|user|login", re.IGNORECASE),
        attributes=["name", "element_id", "placeholder"],
    ),
    FieldRule(
        kind=FieldKind.EMAIL,
        pattern=re.compile(r"email|e-mail", re.IGNORECASE),
        input_types=["email"],
        attributes=["name", "element_id", "placeholder"],
    ),
    FieldRule(
        kind=FieldKind.FREE_TEXT,
        pattern=re.compile(r"caption|post|content|message|text", re.IGNORECASE),
        tags=["textarea"],
        attributes=["name"],
    ),
]


def classify_field(
    descriptor: FieldDescriptor,
    rules: Optional[List[FieldRule]] = None,
) -> FieldKind:
    """Return the kind of the first rule matching the descriptor."""
    for rule in rules or DEFAULT_RULES:
        if rule.matches(descriptor):
            return rule.kind
    return FieldKind.PLAIN


def placeholder_for(kind: FieldKind) -> Optional[str]:
    """Template token replacing values of this kind, or None to keep the value."""
    return PLACEHOLDER_TOKENS.get(kind)


def redact_value(value: str, descriptor: FieldDescriptor) -> str:
    """
    Replace a typed value with its template token when the field is sensitive.

    Args:
        value: Value typed by the user
        descriptor: Attributes of the field it was typed into

    Returns:
        Template token, or the value itself for plain fields
    """
    if not value:
        return ""
    token = placeholder_for(classify_field(descriptor))
    return token if token is not None else value
