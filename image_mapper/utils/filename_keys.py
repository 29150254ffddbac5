"""Canonical lookup keys shared by image filenames and table cell values.

Three tiers are produced from the same input string:

* ``exact_key`` - the string unchanged
* ``normalized_key`` - lowercase, trimmed, without a trailing image extension
* ``fuzzy_key`` - the normalized key reduced to ``[a-z0-9]``

The same functions are applied to archive entries at index time and to cell
values at match time, so both sides always land in the same key space.
"""

import re

IMAGE_EXTENSIONS = {"jpg", "jpeg", "png", "gif", "webp"}

_IMAGE_EXTENSION_PATTERN = re.compile(
    r"\.(?:%s)$" % "|".join(sorted(IMAGE_EXTENSIONS))
)
_NON_ALNUM_PATTERN = re.compile(r"[^a-z0-9]")


def exact_key(name: str) -> str:
    """Return the name unchanged."""
    return name


def normalized_key(name: str) -> str:
    """Lowercase, trim and drop a trailing image extension.

    Only image extensions are removed, so ``shot.1.png`` becomes ``shot.1``
    and the ``.1`` is kept. Stacked extensions such as ``a.png.png`` are
    removed until none is left, which keeps the function idempotent.
    """
    current = name.lower().strip()
    while True:
        candidate = _IMAGE_EXTENSION_PATTERN.sub("", current).strip()
        if candidate == current:
            return candidate
        current = candidate


def fuzzy_key(name: str) -> str:
    """Normalized key with everything outside ``[a-z0-9]`` removed."""
    return _NON_ALNUM_PATTERN.sub("", normalized_key(name))
