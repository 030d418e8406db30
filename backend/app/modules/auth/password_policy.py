"""
Password policy for registration and password changes.

validate_password() is the only gate; password_strength() and
password_suggestions() are informational and never reject anything.
"""

import re
from dataclasses import dataclass
from typing import FrozenSet, List, Optional, Pattern, Tuple

MIN_PASSWORD_LENGTH = 8
MAX_PASSWORD_LENGTH = 128  # bcrypt cost grows with input, cap it
MIN_CHARACTER_CLASSES = 3

# Top passwords from public breach corpora, compared case-insensitively
COMMON_PASSWORDS: FrozenSet[str] = frozenset(p.lower() for p in (
    '123456', 'password', '123456789', '12345678', '12345', '1234567',
    'password1', '123123', '1234567890', '1234', 'qwerty123', 'qwerty',
    '1q2w3e4r', 'qwerty1', '123321', 'password123', '1q2w3e4r5t',
    '1234qwer', 'qwertyuiop', '123qwe', 'admin', 'Password', '12345678910',
    'abc123', 'letmein', 'monkey', '1234567891', 'welcome', 'login',
    'dragon', 'passw0rd', 'master', 'hello', 'freedom', 'whatever',
    'qazwsx', 'trustno1', '654321', 'jordan23', 'harley', 'password!',
    'aa123456', 'qwerty12', '1qaz2wsx', 'baseball', 'password1!',
    'football', 'master123', 'sunshine', 'ashley', 'bailey', 'shadow',
    'superman', 'michael', 'computer', 'iloveyou', '111111', 'zaq1zaq1',
    'gwerty123', '1g2w3e4r', 'gwerty', 'gwerty1', 'zaq12wsx', '1qaz2wsx3edc',
    'starwars', 'klaster', 'photoshop', 'abc123456', 'asdf1234',
    'asdfghjkl', 'andrea', 'solo', 'pass1234', 'test123', 'killer',
    'charlie', 'foobar', 'buster', 'summer', 'purple', 'maggie', 'ginger',
    'princess', 'joshua', 'cheese', 'amanda', 'love', 'qwerty!', 'password!@#',
    'Admin123', 'Admin@123', 'Root123', 'User123', 'test1234', 'demo123',
    'example', 'sample', 'welcome123', 'pass@123', 'pass123', 'temp123',
))

_FLAGS = re.ASCII | re.IGNORECASE

WEAK_PATTERNS: Tuple[Pattern[str], ...] = (
    re.compile(r"\A(.)\1+\Z", re.DOTALL),       # one repeated character
    re.compile(r"\A(?:abc|qwe|zxc|asd){3,}\Z", _FLAGS),  # keyboard runs
    re.compile(r"\A[0-9]+\Z"),                   # digits only
    re.compile(r"\A[a-z]+\Z", _FLAGS),           # letters only
    re.compile(r"\A(?:password|admin|user|test|demo|guest|temp)", _FLAGS),
)

_CLASS_PATTERNS = (
    re.compile(r"[a-z]"),
    re.compile(r"[A-Z]"),
    re.compile(r"[0-9]"),
    re.compile(r"[^A-Za-z0-9]"),
)

TOO_SHORT = f"Password must be at least {MIN_PASSWORD_LENGTH} characters long"
TOO_LONG = f"Password is too long (maximum {MAX_PASSWORD_LENGTH} characters)"
TOO_COMMON = "This password is too common and insecure. Choose a more complex password"
WEAK_PATTERN = "Password contains a weak pattern. Use a combination of letters, digits and symbols"
TOO_FEW_CLASSES = (
    "Password must contain at least 3 of 4 character types: "
    "lowercase letters, uppercase letters, digits, special characters"
)


@dataclass(frozen=True)
class PasswordVerdict:
    valid: bool
    reason: Optional[str] = None


def count_character_classes(password: str) -> int:
    return sum(1 for pattern in _CLASS_PATTERNS if pattern.search(password))


def validate_password(password: str) -> PasswordVerdict:
    """Ordered checks, first failure wins"""
    if len(password) < MIN_PASSWORD_LENGTH:
        return PasswordVerdict(False, TOO_SHORT)
    if len(password) > MAX_PASSWORD_LENGTH:
        return PasswordVerdict(False, TOO_LONG)

    if password.lower() in COMMON_PASSWORDS:
        return PasswordVerdict(False, TOO_COMMON)

    for pattern in WEAK_PATTERNS:
        if pattern.search(password):
            return PasswordVerdict(False, WEAK_PATTERN)

    if count_character_classes(password) < MIN_CHARACTER_CLASSES:
        return PasswordVerdict(False, TOO_FEW_CLASSES)

    return PasswordVerdict(True)


def password_strength(password: str) -> int:
    """Score 0..100: length up to 50, 10 per character class, up to 10 for variety"""
    strength = min(50, len(password) * 2)
    strength += 10 * count_character_classes(password)
    strength += min(10, len(set(password)))
    return min(100, strength)


def password_suggestions(password: str) -> List[str]:
    suggestions = []
    if len(password) < 12:
        suggestions.append("Use 12 or more characters")
    if not _CLASS_PATTERNS[0].search(password):
        suggestions.append("Add lowercase letters (a-z)")
    if not _CLASS_PATTERNS[1].search(password):
        suggestions.append("Add uppercase letters (A-Z)")
    if not _CLASS_PATTERNS[2].search(password):
        suggestions.append("Add digits (0-9)")
    if not _CLASS_PATTERNS[3].search(password):
        suggestions.append("Add special characters (!@#$%^&*)")
    if re.search(r"(.)\1{2,}", password, re.DOTALL):
        suggestions.append("Avoid runs of the same character (aaa, 111)")
    return suggestions
