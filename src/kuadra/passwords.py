"""Random credential generation for IAM login profiles.

Uses the ``secrets`` CSPRNG. Generated values are never logged; callers
persist them to a Secret and read them back before use.
"""

from __future__ import annotations

import secrets
import string
from dataclasses import dataclass

MIN_PASSWORD_LENGTH = 20
MAX_PASSWORD_LENGTH = 128

# Characters easily confused when read or typed by hand
AMBIGUOUS_CHARACTERS = "Il1O0o"

# Shell- and quote-safe symbol set; IAM accepts any printable ASCII symbol
SAFE_SYMBOLS = "!@#$%^&*()_+-=[]{}|"


class PasswordPolicyError(ValueError):
    """Raised when a password policy cannot be satisfied."""

    pass


@dataclass(frozen=True)
class PasswordPolicy:
    """Composition rules for generated passwords."""

    length: int = MIN_PASSWORD_LENGTH
    digits: int = 3
    symbols: int = 3
    exclude_ambiguous: bool = True

    def __post_init__(self) -> None:
        errors: list[str] = []
        if not MIN_PASSWORD_LENGTH <= self.length <= MAX_PASSWORD_LENGTH:
            errors.append(
                f"length must be between {MIN_PASSWORD_LENGTH} and {MAX_PASSWORD_LENGTH}"
            )
        if self.digits < 1:
            errors.append("digits must be at least 1")
        if self.symbols < 0:
            errors.append("symbols must not be negative")
        # At least one upper and one lower case letter must fit
        if self.digits + self.symbols > self.length - 2:
            errors.append("digits + symbols leave no room for upper and lower case letters")
        if errors:
            raise PasswordPolicyError("; ".join(errors))

    def _alphabet(self, chars: str) -> str:
        if not self.exclude_ambiguous:
            return chars
        return "".join(c for c in chars if c not in AMBIGUOUS_CHARACTERS)

    @property
    def lowercase(self) -> str:
        return self._alphabet(string.ascii_lowercase)

    @property
    def uppercase(self) -> str:
        return self._alphabet(string.ascii_uppercase)

    @property
    def digit_chars(self) -> str:
        return self._alphabet(string.digits)

    @property
    def symbol_chars(self) -> str:
        return SAFE_SYMBOLS


def generate_password(policy: PasswordPolicy | None = None) -> str:
    """Generate a password satisfying ``policy``.

    The result has exactly ``policy.digits`` digits, exactly ``policy.symbols``
    symbols, and at least one upper and one lower case letter.
    """
    policy = policy or PasswordPolicy()
    rng = secrets.SystemRandom()

    letters = policy.lowercase + policy.uppercase
    chars = [secrets.choice(policy.uppercase), secrets.choice(policy.lowercase)]
    chars += [secrets.choice(policy.digit_chars) for _ in range(policy.digits)]
    chars += [secrets.choice(policy.symbol_chars) for _ in range(policy.symbols)]
    chars += [secrets.choice(letters) for _ in range(policy.length - len(chars))]

    rng.shuffle(chars)
    return "".join(chars)
