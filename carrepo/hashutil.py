from __future__ import annotations

from typing import Dict, Optional

from Cryptodome.Hash import SHA256

from .constants import MH_SHA2_256


class Hasher:
    """A multihash function: ``name`` and ``code`` as registered in the
    multicodec table, plus ``digest`` returning the raw digest bytes."""

    name: str = ""
    code: int = -1

    def digest(self, data: bytes) -> bytes:
        raise NotImplementedError


class Sha256Hasher(Hasher):
    name = "sha2-256"
    code = MH_SHA2_256

    def digest(self, data: bytes) -> bytes:
        return SHA256.new(data).digest()


_HASHERS: Dict[int, Hasher] = {}


def register_hasher(hasher: Hasher) -> None:
    _HASHERS[hasher.code] = hasher


def get_hasher(code: int) -> Optional[Hasher]:
    return _HASHERS.get(code)


register_hasher(Sha256Hasher())
