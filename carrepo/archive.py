from __future__ import annotations

import io
import os
import tarfile
import time
from typing import BinaryIO, Callable, Iterable, Optional

from .codec import to_json
from .constants import DEFAULT_EXT, DEFAULT_PREFIX
from .pathutil import member_path
from .repo import RepoRecord


def render_record(rec: RepoRecord) -> bytes:
    return to_json(rec.value).encode("utf-8")


def write_tar(
    records: Iterable[RepoRecord],
    sink: BinaryIO,
    *,
    prefix: str = DEFAULT_PREFIX,
    ext: str = DEFAULT_EXT,
    mtime: Optional[float] = None,
    progress: Optional[Callable[[int, str], None]] = None,
) -> int:
    """Stream records into an uncompressed tar written sequentially to ``sink``.

    Each record is rendered and written before the next one is pulled, so the
    producer never runs ahead of the sink. Sink errors propagate; whatever was
    written before the failure is left in place. The sink is not closed.

    Returns the number of records written.
    """
    stamp = int(time.time() if mtime is None else mtime)
    count = 0
    with tarfile.open(fileobj=sink, mode="w|", format=tarfile.PAX_FORMAT) as tar:
        for rec in records:
            name = member_path(prefix, rec.collection, rec.rkey, ext)
            payload = render_record(rec)
            info = tarfile.TarInfo(name)
            info.size = len(payload)
            info.mtime = stamp
            info.mode = 0o644
            tar.addfile(info, io.BytesIO(payload))
            count += 1
            if progress is not None:
                progress(count, name)
    return count


def write_tree(
    records: Iterable[RepoRecord],
    outdir: str,
    *,
    prefix: str = "",
    ext: str = DEFAULT_EXT,
    exists: str = "overwrite",
    progress: Optional[Callable[[int, str, str], None]] = None,
) -> int:
    """Write each record as ``<outdir>/<prefix>/<collection>/<rkey>.<ext>``.

    ``exists`` selects what happens when a destination file is already there:
    overwrite, skip (leave it and move on) or fail (raise FileExistsError).
    ``progress`` is called with (count, relative path, action).

    Returns the number of records written (skipped ones excluded).
    """
    if exists not in ("overwrite", "skip", "fail"):
        raise ValueError(f"unknown exists policy: {exists}")
    written = 0
    for rec in records:
        rel = member_path(prefix, rec.collection, rec.rkey, ext)
        dst = os.path.join(outdir, *rel.split("/"))
        if os.path.lexists(dst):
            if exists == "skip":
                if progress is not None:
                    progress(written, rel, "skip")
                continue
            if exists == "fail":
                raise FileExistsError(f"Destination exists: {dst}")
        os.makedirs(os.path.dirname(dst), exist_ok=True)
        with open(dst, "wb") as wf:
            wf.write(render_record(rec))
        written += 1
        if progress is not None:
            progress(written, rel, "write")
    return written
