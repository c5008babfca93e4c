"""Validation code generation and matching.

Codes are six uppercase hex digits split ``XXX-XXX`` so they are easy to
read out and type. With ~16.7M combinations and a per-session attempt cap
they are a pairing aid, not a secret.
"""

from __future__ import annotations

import secrets

CODE_CHARSET = "0123456789ABCDEF"
CODE_HALF_LENGTH = 3
SEPARATOR = "-"


def generate_validation_code() -> str:
    """Generate a random ``XXX-XXX`` code."""
    halves = (
        "".join(secrets.choice(CODE_CHARSET) for _ in range(CODE_HALF_LENGTH))
        for _ in range(2)
    )
    return SEPARATOR.join(halves)


def strip_separator(code: str) -> str:
    return code.replace(SEPARATOR, "")


def codes_match(expected: str, submitted: str) -> bool:
    """True if ``submitted`` equals ``expected`` with or without the separator, either way round.

    Matching ignores case and surrounding whitespace in the submitted code.
    """
    submitted = submitted.strip().upper()
    return (
        expected == submitted
        or strip_separator(expected) == submitted
        or expected == strip_separator(submitted)
    )
