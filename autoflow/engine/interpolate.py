"""
``{{dot.path}}`` placeholder substitution for message text, tag names,
URLs, headers and request bodies.

Pure functions, no I/O.  Unresolvable tokens are left in place verbatim so
an operator can spot them in the delivered message instead of receiving a
silently blank field.
"""

from __future__ import annotations

import re
from typing import Any

_TEMPLATE_RE = re.compile(r"\{\{([^}]+)\}\}")

# Sentinel distinguishing "path missing" from a legitimately falsy value
_MISSING = object()


def lookup_path(path: str, context: Any) -> Any:
    """Navigate a dot-separated path through nested dicts / objects.

    Returns the ``_MISSING`` sentinel when any segment is absent.  Dict keys
    are tried first, then attributes (so pydantic models in the context work
    the same as their ``model_dump()``).
    """
    val: Any = context
    for part in path.split("."):
        if isinstance(val, dict):
            if part not in val:
                return _MISSING
            val = val[part]
        elif val is not None and not isinstance(val, (str, int, float, bool, list)) and hasattr(val, part):
            val = getattr(val, part)
        else:
            return _MISSING
    return val


def interpolate(template: str | None, context: dict[str, Any]) -> str:
    """Replace every ``{{path}}`` token in *template* with its value in *context*.

    Examples::

        interpolate("Hi {{contact.name}}", {"contact": {"name": "Ana"}})  # "Hi Ana"
        interpolate("{{a.b}}", {})                                         # "{{a.b}}"

    A token whose path is missing, or whose value is ``None``, stays
    unchanged.  Other values are passed through ``str()``.  Replacement text
    is never re-scanned, so resolved values containing braces are not
    expanded a second time.  Calling ``interpolate`` again on such output
    does expand them; the function is idempotent only when every resolved
    value is token-free.
    """
    if not template:
        return ""

    def _substitute(match: re.Match) -> str:  # type: ignore[type-arg]
        value = lookup_path(match.group(1).strip(), context)
        if value is _MISSING or value is None:
            return match.group(0)
        return str(value)

    return _TEMPLATE_RE.sub(_substitute, template)
