from __future__ import annotations

from .errors import MalformedKey


def norm_prefix(p: str) -> str:
    """Normalize an archive prefix to a canonical forward-slash form.

    Rules:
    - Convert backslashes to slashes
    - Strip leading/trailing slashes
    - Remove empty and '.' segments
    - Reject '..' segments
    """
    p = p.replace("\\", "/").strip("/")
    parts = [q for q in p.split("/") if q not in ("", ".")]
    for q in parts:
        if q == "..":
            raise ValueError("Prefix may not contain '..'")
    return "/".join(parts)


def _check_segment(seg: str, what: str) -> str:
    if seg in ("", ".", ".."):
        raise MalformedKey(f"{what} {seg!r} is not a usable path segment")
    if "/" in seg or "\\" in seg or "\x00" in seg:
        raise MalformedKey(f"{what} {seg!r} contains a path separator or NUL")
    return seg


def member_path(prefix: str, collection: str, rkey: str, ext: str) -> str:
    """Archive path ``<prefix>/<collection>/<rkey>.<ext>`` for one record."""
    parts = [_check_segment(collection, "collection"), _check_segment(rkey, "record key") + "." + ext]
    prefix = norm_prefix(prefix)
    if prefix:
        parts.insert(0, prefix)
    return "/".join(parts)
