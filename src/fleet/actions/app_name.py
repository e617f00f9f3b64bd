"""App name resolution from epic titles.

Derives the short identifier used to pick an app's working directory
under the apps base path, distinct from the shared factory repository.

Supported conventions, in priority order:
- "LensCycle: Contact lens tracker" -> "LensCycle" (prefix before colon)
- "LensCycle" -> "LensCycle" (single identifier title)
- "LensCycle Pipeline v2 Rebuild" -> "LensCycle" (first PascalCase run)
- "habit tracker for cats" -> "habit" (first word longer than two chars)
- otherwise the epic id
"""

import re


_COLON_PREFIX = re.compile(r"^[\w-]+$")
_IDENTIFIER = re.compile(r"^[A-Za-z][A-Za-z0-9_-]*$")
# Two or more capitalised segments with no spaces, not glued to a
# preceding letter or digit ("LensCycle", "Patch2Cycle").
_PASCAL_RUN = re.compile(r"(?<![A-Za-z0-9])((?:[A-Z][a-z0-9]+){2,})")
_WORD = re.compile(r"[\w-]+")


def resolve_app_name(epic_title: str, epic_id: str) -> str:
    """Derive a per-app identifier from an epic title.

    Fallback words are reduced to word characters and hyphens so the
    result is always safe to use as a single directory name.

    Args:
        epic_title: Free-text epic title.
        epic_id: Epic identifier, used when nothing else matches.

    Returns:
        The app name; never empty when epic_id is non-empty.

    Example:
        >>> resolve_app_name("LensCycle: Contact lens tracker", "fac-1")
        'LensCycle'
        >>> resolve_app_name("an ok", "fac-1")
        'fac-1'
    """
    title = (epic_title or "").strip()

    colon_idx = title.find(":")
    if colon_idx > 0:
        prefix = title[:colon_idx].strip()
        if _COLON_PREFIX.match(prefix):
            return prefix

    if _IDENTIFIER.match(title):
        return title

    pascal = _PASCAL_RUN.search(title)
    if pascal:
        return pascal.group(1)

    for word in _WORD.findall(title):
        if len(word) > 2:
            return word

    return epic_id
