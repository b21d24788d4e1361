import re

from flask import request

from .errors import BadRequestError

EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
MIN_PASSWORD_LENGTH = 6

_MISSING = object()


def json_body():
    """Return the request body as a dict, rejecting anything else with 400."""
    data = request.get_json(silent=True)
    if data is None:
        data = {}
    if not isinstance(data, dict):
        raise BadRequestError("Request body must be a JSON object")
    return data


def string_field(data, field, required=True):
    value = data.get(field, _MISSING)
    if value is _MISSING or value is None:
        if required:
            raise BadRequestError(f"{field} is required")
        return None
    if not isinstance(value, str):
        raise BadRequestError(f"{field} must be a string")
    value = value.strip()
    if required and not value:
        raise BadRequestError(f"{field} should not be empty")
    return value


def int_field(data, field, minimum=None, required=True):
    value = data.get(field, _MISSING)
    if value is _MISSING or value is None:
        if required:
            raise BadRequestError(f"{field} is required")
        return None
    # bool is an int subclass; reject it explicitly
    if isinstance(value, bool) or not isinstance(value, int):
        raise BadRequestError(f"{field} must be an integer")
    if minimum is not None and value < minimum:
        raise BadRequestError(f"{field} must not be less than {minimum}")
    return value


def email_field(data, field="email"):
    value = string_field(data, field)
    if not EMAIL_RE.match(value):
        raise BadRequestError(f"{field} must be an email")
    return value.lower()


def password_field(data, field="password"):
    value = data.get(field)
    if not isinstance(value, str) or not value:
        raise BadRequestError(f"{field} is required")
    if len(value) < MIN_PASSWORD_LENGTH:
        raise BadRequestError(
            f"{field} must be longer than or equal to {MIN_PASSWORD_LENGTH} characters"
        )
    return value


def parse_bool_arg(raw):
    """``"true"``/``"false"`` to bool; anything else means no filter."""
    if raw == "true":
        return True
    if raw == "false":
        return False
    return None


def parse_positive_int_arg(raw, default, maximum=None):
    try:
        value = int(raw)
    except (TypeError, ValueError):
        return default
    if value <= 0:
        return default
    if maximum is not None:
        value = min(value, maximum)
    return value
