"""
Environment placeholder expansion for configuration text.

Expansion runs over the whole raw document before YAML parsing, so
placeholders may appear anywhere: map keys, list items or inside a larger
scalar value.

Supported forms:
- $NAME
- ${NAME}
- ${NAME:-default}   (default when NAME is unset or empty)
- ${NAME-default}    (default only when NAME is unset)

An unset NAME without a default expands to the empty string. Anything that
does not match one of the forms above is copied through unchanged.
"""

import os
import re
from typing import Mapping, Optional


ENV_PATTERN = re.compile(
    r'\$\{(?P<braced>[A-Za-z_][A-Za-z0-9_]*)(?:(?P<op>:?-)(?P<default>[^}]*))?\}'
    r'|\$(?P<bare>[A-Za-z_][A-Za-z0-9_]*)'
)


def expand_env(text: str, environ: Optional[Mapping[str, str]] = None) -> str:
    """
    Expand environment placeholders in text.

    Args:
        text: Raw document text
        environ: Mapping to resolve names against (default: os.environ)

    Returns:
        Text with every recognised placeholder substituted
    """
    if environ is None:
        environ = os.environ

    def _substitute(match: re.Match) -> str:
        name = match.group('braced') or match.group('bare')
        value = environ.get(name)
        op = match.group('op')

        if op == ':-':
            return match.group('default') if not value else value
        if op == '-':
            return match.group('default') if value is None else value

        return value if value is not None else ''

    return ENV_PATTERN.sub(_substitute, text)
