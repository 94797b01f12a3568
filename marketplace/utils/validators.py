"""
Input validation utilities

Field rules shared by registration, profile completion and listing creation.
"""

import re
from decimal import Decimal, InvalidOperation
from typing import Union
from urllib.parse import urlparse

from .exceptions import ValidationException

STUDENT_ID_PATTERN = re.compile(r'^\d{9}$')
CONTACT_NUMBER_PATTERN = re.compile(r'^(?:\+88|88)?(01[3-9]\d{8})$')
ALLOWED_IMAGE_FORMATS = ('jpg', 'jpeg', 'png', 'webp')
MAX_LISTING_IMAGES = 5
MAX_PRICE = Decimal('10000000')


def normalize_email(email: str) -> str:
    return (email or '').strip().lower()


def validate_institutional_email(email: str, domain: str) -> str:
    """
    Validate that an email belongs to the institution.

    Args:
        email: Raw email address
        domain: Institutional domain, e.g. ``iut-dhaka.edu``

    Returns:
        The normalized email

    Raises:
        ValidationException: If the address is outside the domain
    """
    normalized = normalize_email(email)
    pattern = re.compile(r'^[a-zA-Z0-9._%+-]+@' + re.escape(domain.lower()) + r'$')
    if not pattern.match(normalized):
        raise ValidationException(
            f'Registration restricted to @{domain} emails only',
            details={'field': 'email'},
        )
    return normalized


def validate_student_id(student_id: str) -> str:
    normalized = (student_id or '').strip()
    if not STUDENT_ID_PATTERN.match(normalized):
        raise ValidationException('Student ID must be exactly 9 digits', details={'field': 'student_id'})
    return normalized


def validate_contact_number(contact_number: str) -> str:
    normalized = (contact_number or '').strip()
    if not CONTACT_NUMBER_PATTERN.match(normalized):
        raise ValidationException('Invalid Bangladesh contact number', details={'field': 'contact_number'})
    return normalized


def validate_price(value: Union[str, int, float, Decimal], field: str = 'price') -> Decimal:
    """
    Convert a price to Decimal and check it is positive and bounded.

    Raises:
        ValidationException: If the value is not a usable price
    """
    try:
        price = value if isinstance(value, Decimal) else Decimal(str(value))
    except (InvalidOperation, ValueError, TypeError) as exc:
        raise ValidationException(f'Invalid {field}: {value}', details={'field': field}) from exc

    if not price.is_finite() or price <= 0:
        raise ValidationException(f'{field.replace("_", " ").capitalize()} must be positive', details={'field': field})
    if price > MAX_PRICE:
        raise ValidationException(
            f'{field.replace("_", " ").capitalize()} exceeds maximum allowed (10,000,000)',
            details={'field': field},
        )
    return price.quantize(Decimal('0.01'))


def validate_label(value: str, field: str) -> str:
    normalized = ' '.join((value or '').split())
    if not normalized:
        raise ValidationException(f'{field.capitalize()} is required.', details={'field': field})
    return normalized


def validate_image_url(url: str) -> str:
    """Accept an already-uploaded image URL if it points at an allowed format."""
    normalized = (url or '').strip()
    parsed = urlparse(normalized)
    if parsed.scheme not in {'http', 'https'} or not parsed.netloc:
        raise ValidationException(f'Invalid image URL: {url}', details={'field': 'images'})

    extension = parsed.path.rsplit('.', 1)[-1].lower() if '.' in parsed.path else ''
    if extension not in ALLOWED_IMAGE_FORMATS:
        raise ValidationException(
            f'Images must be one of: {", ".join(ALLOWED_IMAGE_FORMATS)}',
            details={'field': 'images', 'url': url},
        )
    return normalized


def validate_image_urls(urls: list[str]) -> list[str]:
    if len(urls) > MAX_LISTING_IMAGES:
        raise ValidationException(
            f'A listing can have at most {MAX_LISTING_IMAGES} images',
            details={'field': 'images'},
        )
    return [validate_image_url(url) for url in urls]
