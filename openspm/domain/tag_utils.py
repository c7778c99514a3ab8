from typing import Iterable, List, Set


def split_tags(tags: str) -> List[str]:
    """
    Split a semicolon-separated tag string into its tokens.

    Empty tokens (from leading, trailing or doubled separators) are dropped.
    """
    return [t.strip() for t in (tags or "").split(";") if t.strip()]


def missing_tags(supported: str, required: str) -> List[str]:
    """
    Return the required tags that are absent from the supported set, in the
    order they appear in ``required``.
    """
    supported_set: Set[str] = set(split_tags(supported))
    return [t for t in split_tags(required) if t not in supported_set]


def tags_compatible(supported: str, required: str) -> bool:
    """True iff every tag in ``required`` appears in ``supported``."""
    return not missing_tags(supported, required)


def join_tags(tags: Iterable[str]) -> str:
    """Join tokens back into a semicolon string, dropping duplicates."""
    seen: List[str] = []
    for tag in tags:
        tag = tag.strip()
        if tag and tag not in seen:
            seen.append(tag)
    return ";".join(seen)
