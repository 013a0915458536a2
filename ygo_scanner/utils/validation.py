"""
Input validation utilities.

Configuration values raise ``ConfigurationError``; request data coming from a
caller raises an ``InvalidRequest`` subclass so that nothing is mutated.
"""

import re
from typing import Any, List, Optional, Type, Union

from .error_handler import CardScannerError, ConfigurationError, InvalidRequest


_URL_PATTERN = re.compile(
    r'^https?://'  # http:// or https://
    r'(?:(?:[A-Z0-9](?:[A-Z0-9-]{0,61}[A-Z0-9])?\.)+[A-Z]{2,6}\.?|'  # domain...
    r'localhost|'  # localhost...
    r'\d{1,3}\.\d{1,3}\.\d{1,3}\.\d{1,3})'  # ...or ip
    r'(?::(?:[1-9]\d{0,3}|[1-5]\d{4}|6[0-4]\d{3}|65[0-4]\d{2}|655[0-2]\d|6553[0-5]))?'  # valid port (1-65535)
    r'(?:/?|[/?]\S+)$', re.IGNORECASE)


def validate_url(url: str, allowed_schemes: Optional[List[str]] = None) -> str:
    """
    Validate a URL string.

    Args:
        url: URL string to validate
        allowed_schemes: List of allowed URL schemes (default: http, https)

    Returns:
        The URL without a trailing slash

    Raises:
        ConfigurationError: If URL is invalid
    """
    if allowed_schemes is None:
        allowed_schemes = ['http', 'https']

    if not isinstance(url, str) or not _URL_PATTERN.match(url):
        raise ConfigurationError(
            f"Invalid URL format: {url}",
            details={"url": url, "allowed_schemes": allowed_schemes}
        )

    scheme = url.split('://')[0].lower()
    if scheme not in allowed_schemes:
        raise ConfigurationError(
            f"URL scheme '{scheme}' not allowed. Allowed schemes: {allowed_schemes}",
            details={"url": url, "scheme": scheme, "allowed_schemes": allowed_schemes}
        )

    return url.rstrip('/')


def validate_numeric_range(
    value: Union[int, float],
    min_value: Optional[Union[int, float]] = None,
    max_value: Optional[Union[int, float]] = None,
    field_name: str = "value",
    error_cls: Type[CardScannerError] = ConfigurationError,
) -> Union[int, float]:
    """
    Validate a numeric value is within specified range (inclusive).

    Raises:
        error_cls: If value is outside the allowed range
    """
    details = {
        "field_name": field_name,
        "value": value,
        "min_value": min_value,
        "max_value": max_value
    }
    if min_value is not None and value < min_value:
        raise error_cls(f"{field_name} {value} is below minimum {min_value}", details=details)

    if max_value is not None and value > max_value:
        raise error_cls(f"{field_name} {value} is above maximum {max_value}", details=details)

    return value


def validate_string_length(
    value: str,
    min_length: Optional[int] = None,
    max_length: Optional[int] = None,
    field_name: str = "string",
    error_cls: Type[CardScannerError] = ConfigurationError,
) -> str:
    """
    Validate a string value length is within specified range (inclusive).

    Raises:
        error_cls: If value is not a string or its length is out of range
    """
    if not isinstance(value, str):
        raise error_cls(
            f"{field_name} must be a string, got {type(value).__name__}",
            details={"field_name": field_name, "value_type": type(value).__name__}
        )

    length = len(value)
    details = {
        "field_name": field_name,
        "length": length,
        "min_length": min_length,
        "max_length": max_length
    }

    if min_length is not None and length < min_length:
        raise error_cls(f"{field_name} length {length} is below minimum {min_length}", details=details)

    if max_length is not None and length > max_length:
        raise error_cls(f"{field_name} length {length} is above maximum {max_length}", details=details)

    return value


def validate_enum_value(
    value: Any,
    allowed_values: List[Any],
    field_name: str = "value",
    error_cls: Type[CardScannerError] = ConfigurationError,
) -> Any:
    """
    Validate a value is one of the allowed enum values.

    Raises:
        error_cls: If value is not in the allowed list
    """
    if value not in allowed_values:
        raise error_cls(
            f"{field_name} '{value}' is not allowed. Allowed values: {allowed_values}",
            details={
                "field_name": field_name,
                "value": value,
                "allowed_values": allowed_values
            }
        )

    return value


def validate_owner_id(owner_id: Any) -> str:
    """Require a non-blank owner identity on every scan operation."""
    if not isinstance(owner_id, str) or not owner_id.strip():
        raise InvalidRequest("Owner id is required", details={"owner_id": owner_id})
    return validate_string_length(
        owner_id.strip(), max_length=128, field_name="owner_id", error_cls=InvalidRequest
    )
