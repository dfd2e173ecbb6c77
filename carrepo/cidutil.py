from __future__ import annotations

from typing import Any


def cid_text(cid: Any) -> str:
    """Canonical string form of a CID: base32 for v1, base58btc for v0."""
    if getattr(cid, "version", None) == 1:
        return cid.encode("base32")
    return str(cid)
