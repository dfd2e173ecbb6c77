from __future__ import annotations

from typing import Any, Optional

from .cidutil import cid_text


class CarRepoError(Exception):
    """Base class for carrepo errors.

    ``cid`` and ``offset`` carry the offending block identifier and the byte
    offset in the container when they are known.
    """

    def __init__(self, message: str, *, cid: Any = None, offset: Optional[int] = None):
        self.cid = cid
        self.offset = offset
        ctx = []
        if cid is not None:
            ctx.append(f"cid={cid_text(cid)}")
        if offset is not None:
            ctx.append(f"offset={offset}")
        if ctx:
            message = f"{message} ({', '.join(ctx)})"
        super().__init__(message)


# Container framing
class MalformedContainer(CarRepoError):
    pass


class UnexpectedRootCount(CarRepoError):
    pass


# Block integrity
class HashMismatch(CarRepoError):
    pass


class UnsupportedHash(CarRepoError):
    pass


class MissingBlock(CarRepoError):
    pass


# Decoded objects
class CorruptObject(CarRepoError):
    pass


class UnsupportedVersion(CarRepoError):
    pass


class MalformedKey(CarRepoError):
    pass
