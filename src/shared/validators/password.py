"""Password validation functions."""

MIN_PASSWORD_LENGTH = 8
MAX_PASSWORD_LENGTH = 128


def validate_password_strength(password: str) -> str:
    """Validate password strength requirements.

    Requirements:
    - Between 8 and 128 characters
    - No leading or trailing whitespace
    - At least one uppercase letter, one lowercase letter and one digit

    Raises:
        ValueError: naming the first requirement that is not met

    Examples:
        >>> validate_password_strength("Delivery2024")
        'Delivery2024'
        >>> validate_password_strength("delivery2024")
        Traceback (most recent call last):
        ...
        ValueError: Password must contain at least one uppercase letter

    """
    if len(password) < MIN_PASSWORD_LENGTH:
        raise ValueError(f"Password must be at least {MIN_PASSWORD_LENGTH} characters")
    if len(password) > MAX_PASSWORD_LENGTH:
        raise ValueError(f"Password must be at most {MAX_PASSWORD_LENGTH} characters")
    if password != password.strip():
        raise ValueError("Password must not start or end with whitespace")
    if not any(c.isupper() for c in password):
        raise ValueError("Password must contain at least one uppercase letter")
    if not any(c.islower() for c in password):
        raise ValueError("Password must contain at least one lowercase letter")
    if not any(c.isdigit() for c in password):
        raise ValueError("Password must contain at least one digit")
    return password
