"""Field-name resolution shared by the tabular and record engines.

Column and field names coming from the model rarely match the data exactly
("View Count" vs ``view_count``). Resolution tries an exact match first,
then compares normalized names (lowercase, separators stripped).
"""

import re
from typing import Iterable, Optional

_SEPARATORS = re.compile(r"[\s_-]+")


def normalize_name(name: str) -> str:
    """Lowercase ``name`` and strip whitespace, underscores and hyphens."""
    return _SEPARATORS.sub("", str(name).lower())


def find_name(candidates: Iterable[str], name: Optional[str]) -> Optional[str]:
    """Return the candidate matching ``name``, or None when nothing matches."""
    if not name:
        return None
    candidates = list(candidates)
    if name in candidates:
        return name
    target = normalize_name(name)
    for candidate in candidates:
        if normalize_name(candidate) == target:
            return candidate
    return None


def resolve_name(candidates: Iterable[str], name: Optional[str]) -> Optional[str]:
    """Resolve ``name`` against ``candidates``.

    Unresolved names pass through unchanged so error messages can quote
    what the caller asked for.
    """
    found = find_name(candidates, name)
    return found if found is not None else name
