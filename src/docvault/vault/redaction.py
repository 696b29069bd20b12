"""Privacy redaction of personally identifiable information."""

import re

from .base import BaseRedactor
from .document import RedactionReport


# Replacement masks. None of them contains a digit, '@' or ':', so a mask can
# never be matched by any pattern below.
CARD_MASK = "[CARD_REDACTED]"
SSN_MASK = "[SSN_REDACTED]"
PHONE_MASK = "[PHONE_REDACTED]"
EMAIL_MASK = "[EMAIL_REDACTED]"
IP_MASK = "[IP_REDACTED]"
DOB_MASK = "[DOB_REDACTED]"

CARD_PATTERNS = [
    # 16 digit cards with spaces or dashes: 4111 1111 1111 1111
    re.compile(r"\b[0-9]{4}[\s-][0-9]{4}[\s-][0-9]{4}[\s-][0-9]{4}\b"),
    # 15 digit Amex grouped: 3782 822463 10005
    re.compile(r"\b[0-9]{4}[\s-][0-9]{6}[\s-][0-9]{5}\b"),
    # 16 digit Visa/MasterCard/Discover/JCB continuous
    re.compile(r"\b(?:4[0-9]{3}|5[1-5][0-9]{2}|6011|35[0-9]{2})[0-9]{12}\b"),
    # 15 digit Amex continuous
    re.compile(r"\b3[47][0-9]{13}\b"),
]

SSN_PATTERNS = [
    re.compile(r"\b[0-9]{3}-[0-9]{2}-[0-9]{4}\b"),
    re.compile(r"\b[0-9]{9}\b"),
]

PHONE_PATTERNS = [
    # US: 555-123-4567, (425) 555-0199, 123.456.7890, +1 555 123 4567
    re.compile(r"(?:\+?1[-.\s]?)?\(?[0-9]{3}\)?[-.\s]?[0-9]{3}[-.\s]?[0-9]{4}"),
    # International: +44 20 7123 4567
    re.compile(r"\+[0-9]{1,3}[-.\s]?\(?[0-9]{1,4}\)?[-.\s]?[0-9]{1,4}[-.\s]?[0-9]{1,9}"),
]

EMAIL_PATTERNS = [
    re.compile(r"[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+(?:\.[a-zA-Z]{2,})?"),
]

IP_PATTERNS = [
    re.compile(r"\b(?:[0-9]{1,3}\.){3}[0-9]{1,3}\b"),
    re.compile(r"\b(?:[0-9a-fA-F]{1,4}:){7}[0-9a-fA-F]{1,4}\b"),
]

DOB_PATTERNS = [
    # MM/DD/YYYY or DD/MM/YYYY
    re.compile(r"\b[0-9]{1,2}/[0-9]{1,2}/[0-9]{4}\b"),
    # YYYY-MM-DD
    re.compile(r"\b[0-9]{4}-[0-9]{2}-[0-9]{2}\b"),
    # January 15, 1990
    re.compile(
        r"\b(?:January|February|March|April|May|June|July|August|September|October"
        r"|November|December)\s+[0-9]{1,2},?\s+[0-9]{4}\b"
    ),
]

# Order matters: longer patterns first so a shorter pattern (phone) never
# partially matches inside a longer one (card number).
REDACTION_STAGES: list[tuple[str, list[re.Pattern], str]] = [
    ("credit_card", CARD_PATTERNS, CARD_MASK),
    ("ssn", SSN_PATTERNS, SSN_MASK),
    ("phone", PHONE_PATTERNS, PHONE_MASK),
    ("email", EMAIL_PATTERNS, EMAIL_MASK),
    ("ip_address", IP_PATTERNS, IP_MASK),
    ("date_of_birth", DOB_PATTERNS, DOB_MASK),
]


class RegexPrivacyRedactor(BaseRedactor):
    """Regex-based redactor that masks common PII patterns.

    Patterns are applied in strict precedence order: payment cards,
    government IDs, phone numbers, emails, IP addresses, dates of birth.
    The precedence pass repeats until the text no longer changes. Every
    replacement removes at least one digit, '@' or ':' and inserts none, so
    the loop terminates and the result is a fixed point: redacting it again
    returns it unchanged.
    """

    def redact(self, text: str) -> str:
        redacted, _ = self._redact(text)
        return redacted

    def redact_with_report(self, text: str) -> tuple[str, RedactionReport]:
        redacted, categories = self._redact(text)
        return redacted, RedactionReport(changed=redacted != text, categories=categories)

    def _redact(self, text: str) -> tuple[str, list[str]]:
        categories: list[str] = []
        current = text

        while True:
            updated = current
            for category, patterns, mask in REDACTION_STAGES:
                for pattern in patterns:
                    updated, count = pattern.subn(mask, updated)
                    if count and category not in categories:
                        categories.append(category)

            if updated == current:
                return current, categories
            current = updated

    def patterns_handled(self) -> list[str]:
        return [
            "Credit Card Numbers",
            "Social Security Numbers (SSN)",
            "Phone Numbers (US & International)",
            "Email Addresses",
            "IP Addresses (IPv4 & IPv6)",
            "Dates of Birth",
        ]

    def contains_sensitive_data(self, text: str) -> bool:
        return any(
            pattern.search(text)
            for _, patterns, _ in REDACTION_STAGES
            for pattern in patterns
        )


class NoOpRedactor(BaseRedactor):
    """Redactor that returns text unchanged.

    Useful for tests and benchmarks that need unredacted content.
    """

    def redact(self, text: str) -> str:
        return text

    def patterns_handled(self) -> list[str]:
        return []

    def contains_sensitive_data(self, text: str) -> bool:
        return False
