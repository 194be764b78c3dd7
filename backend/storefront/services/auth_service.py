# Overview: Password hashing and registration field rules.

"""
Account Credentials

WHY: The user directory lives on the device; storing raw passwords there
would expose them to anyone who can read app storage. Passwords are hashed
with bcrypt before they reach the directory and are never copied into the
session profile.

RULES (registration form):
- First and last name required, at most 25 characters each
- Email "local@domain.tld", compared trimmed and lower-cased
- Phone normalized to digits; exactly 11 digits
- Password at least 8 characters with a strength score of 2 or more
"""

import re

import bcrypt

from ..validation import ValidationError


MAX_NAME_LENGTH = 25
PHONE_DIGITS = 11
MIN_PASSWORD_LENGTH = 8
MIN_PASSWORD_SCORE = 2

EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")


class PasswordValidationError(ValidationError):
    """Raised when password doesn't meet strength requirements."""
    pass


def normalize_email(email) -> str:
    return str(email or "").strip().lower()


def normalize_spaces(value) -> str:
    return re.sub(r"\s+", " ", str(value or "")).strip()


def password_score(password: str) -> int:
    """
    One point each for: length >= 8, uppercase, lowercase, digit, symbol.
    Capped at 4.
    """
    score = 0
    if len(password) >= MIN_PASSWORD_LENGTH:
        score += 1
    if re.search(r"[A-ZÇĞİÖŞÜ]", password):
        score += 1
    if re.search(r"[a-zçğıöşü]", password):
        score += 1
    if re.search(r"\d", password):
        score += 1
    if re.search(r"[^A-Za-z0-9]", password):
        score += 1
    return min(score, 4)


def validate_password_strength(password: str) -> None:
    if not password or len(password) < MIN_PASSWORD_LENGTH:
        raise PasswordValidationError(f"Password must be at least {MIN_PASSWORD_LENGTH} characters long")
    if password_score(password) < MIN_PASSWORD_SCORE:
        raise PasswordValidationError("Password is too weak")


def hash_password(password: str) -> str:
    """
    Hash password using bcrypt with cost factor 12.

    Password is validated for strength before hashing.
    """
    validate_password_strength(password)
    salt = bcrypt.gensalt(rounds=12)
    hashed = bcrypt.hashpw(password.encode('utf-8'), salt)
    return hashed.decode('utf-8')


def verify_password(password: str, password_hash: str | None) -> bool:
    """Timing-safe bcrypt check; malformed or missing hashes never match."""
    if not password or not password_hash:
        return False
    try:
        return bcrypt.checkpw(password.encode('utf-8'), password_hash.encode('utf-8'))
    except ValueError:
        return False


def validate_registration(
    *,
    first_name: str,
    last_name: str,
    email: str,
    password: str,
    phone: str,
) -> dict:
    """
    Check the registration form and return the normalized fields.

    Raises ValidationError (or PasswordValidationError) with a message
    suitable for the form.
    """
    first = normalize_spaces(first_name)
    last = normalize_spaces(last_name)
    normalized_email = normalize_email(email)

    if not first or not last or not normalized_email or not password:
        raise ValidationError("First name, last name, email and password are required")
    if len(first) > MAX_NAME_LENGTH or len(last) > MAX_NAME_LENGTH:
        raise ValidationError(f"Names can be at most {MAX_NAME_LENGTH} characters")
    if not EMAIL_RE.match(normalized_email):
        raise ValidationError("Email address is invalid")

    phone_digits = re.sub(r"\D+", "", str(phone or ""))
    if len(phone_digits) != PHONE_DIGITS:
        raise ValidationError(f"Phone number must be {PHONE_DIGITS} digits")

    validate_password_strength(password)
    return {
        "firstName": first,
        "lastName": last,
        "email": normalized_email,
        "phone": phone_digits,
    }
