"""Key-case helpers for moving between local columns and the LinkHub wire format."""
import re

_CAMEL_BOUNDARY = re.compile(r"(?<!^)(?=[A-Z])")


def camelize(name):
    """'team_external_id' -> 'teamExternalId'"""
    head, *rest = name.split("_")
    return head + "".join(part[:1].upper() + part[1:] for part in rest)


def snakeify(name):
    """'teamExternalId' -> 'team_external_id'"""
    return _CAMEL_BOUNDARY.sub("_", name).lower()


def snakeify_keys(data):
    """Shallow copy of ``data`` with camelCase keys converted to snake_case."""
    return {snakeify(key): value for key, value in (data or {}).items()}
