from __future__ import annotations

import base64
import io
import json
import math
from typing import Any

from cbor2 import CBORDecoder, CBORError, CBORTag, dumps
from multiformats import CID

from .cidutil import cid_text
from .constants import CBOR_TAG_CID, CID_MULTIBASE_IDENTITY, DAG_CBOR_INT_MAX, DAG_CBOR_INT_MIN
from .errors import CorruptObject


def _tag_hook(decoder: CBORDecoder, tag: CBORTag) -> Any:
    if tag.tag != CBOR_TAG_CID:
        raise CorruptObject(f"unsupported CBOR tag {tag.tag}")
    raw = tag.value
    if not isinstance(raw, bytes) or not raw.startswith(CID_MULTIBASE_IDENTITY):
        raise CorruptObject("CID link must be a byte string with a 0x00 prefix")
    try:
        return CID.decode(raw[1:])
    except (ValueError, KeyError) as exc:
        raise CorruptObject(f"invalid CID link: {exc}") from exc


def _check_value(value: Any) -> None:
    # cbor2 decodes its own semantic tags (datetime, decimal, uuid, set, ...)
    # and simple values before tag_hook sees them; only the DAG-CBOR kinds pass.
    stack = [value]
    while stack:
        v = stack.pop()
        if v is None or isinstance(v, (bool, str, bytes, CID)):
            continue
        if type(v) is int:
            if not DAG_CBOR_INT_MIN <= v <= DAG_CBOR_INT_MAX:
                raise CorruptObject(f"integer {v} is outside the 64-bit range")
            continue
        if type(v) is float:
            if not math.isfinite(v):
                raise CorruptObject(f"non-finite float {v}")
            continue
        if type(v) is list:
            stack.extend(v)
            continue
        if type(v) is dict:
            for k, item in v.items():
                if type(k) is not str:
                    raise CorruptObject(f"map key must be a string, got {type(k).__name__}")
                stack.append(item)
            continue
        raise CorruptObject(f"{type(v).__name__} is not a DAG-CBOR value")


def decode_object(data: bytes) -> Any:
    """Decode one DAG-CBOR object.

    Maps come back as ``dict``, arrays as ``list`` and links as
    ``multiformats.CID``; everything else is the plain Python scalar.
    Raises CorruptObject on any decode failure, any value outside that set
    (other CBOR tags, undefined, simple values) or trailing bytes.
    """
    fp = io.BytesIO(data)
    try:
        value = CBORDecoder(fp, tag_hook=_tag_hook).decode()
    except CorruptObject:
        raise
    except (CBORError, ValueError, TypeError, EOFError, RecursionError) as exc:
        raise CorruptObject(f"DAG-CBOR decode failed: {exc}") from exc
    if fp.tell() != len(data):
        raise CorruptObject(f"{len(data) - fp.tell()} trailing byte(s) after DAG-CBOR object")
    _check_value(value)
    return value


def encode_object(value: Any) -> bytes:
    # canonical=True gives DAG-CBOR map key order (length first, then bytewise)
    return dumps(value, canonical=True, default=_default)


def _default(encoder, value: Any) -> None:
    if isinstance(value, CID):
        encoder.encode(CBORTag(CBOR_TAG_CID, CID_MULTIBASE_IDENTITY + bytes(value)))
        return
    raise TypeError(f"cannot encode {type(value).__name__} as DAG-CBOR")


def _json_default(value: Any) -> Any:
    if isinstance(value, CID):
        return {"$link": cid_text(value)}
    if isinstance(value, (bytes, bytearray, memoryview)):
        return {"$bytes": base64.b64encode(bytes(value)).decode("ascii").rstrip("=")}
    raise TypeError(f"cannot render {type(value).__name__} as JSON")


def to_json(value: Any) -> str:
    """Render a decoded record as tab-indented JSON ($link / $bytes for links and bytes)."""
    return json.dumps(value, indent="\t", ensure_ascii=False, default=_json_default)
