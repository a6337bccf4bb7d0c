import re

_WHITESPACE = re.compile(r'\s+')


def get_first_name(full_name) -> str:
    """
    Extract the lower-cased first name from a full name.

    Returns an empty string for empty or non-string input.
    """
    if not full_name or not isinstance(full_name, str):
        return ''
    parts = _WHITESPACE.split(full_name.strip())
    return parts[0].lower() if parts and parts[0] else ''

