import re
from typing import Iterable, List

from .errors import InvalidIdentifier

IDENTIFIER_PATTERN = re.compile(r"[A-Za-z0-9_]+")
MAX_IDENTIFIER_LENGTH = 128


def validate_identifier(name: str, kind: str = "table") -> str:
    """Returns ``name`` unchanged if it is a safe identifier.

    Letters, digits and underscore only. Anything else, including quotes,
    whitespace and statement separators, is rejected before a query is built.

    Raises:
        InvalidIdentifier: If the name is empty, too long or has other characters.
    """
    if not isinstance(name, str) or not name:
        raise InvalidIdentifier(f"Invalid {kind} name")
    if len(name) > MAX_IDENTIFIER_LENGTH or not IDENTIFIER_PATTERN.fullmatch(name):
        raise InvalidIdentifier(f"Invalid {kind} name: {name!r}")
    return name


def validate_identifiers(names: Iterable[str], kind: str = "column") -> List[str]:
    return [validate_identifier(name, kind) for name in names]
