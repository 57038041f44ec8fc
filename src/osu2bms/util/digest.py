from __future__ import annotations
import hashlib
from dataclasses import dataclass
from pathlib import Path
from typing import BinaryIO, Tuple

CHUNK = 64 * 1024

@dataclass
class Digests:
    md5: str
    sha256: str

def digest_stream(fp: BinaryIO) -> Tuple[bytes, Digests]:
    """Read fp once, feeding MD5 and SHA-256 from the same chunks. Returns (data, digests)."""
    md5 = hashlib.md5()
    sha = hashlib.sha256()
    chunks = []
    while True:
        buf = fp.read(CHUNK)
        if not buf:
            break
        md5.update(buf)
        sha.update(buf)
        chunks.append(buf)
    return b"".join(chunks), Digests(md5=md5.hexdigest(), sha256=sha.hexdigest())

def digest_file(path: Path) -> Tuple[bytes, Digests]:
    with open(path, "rb") as fp:
        return digest_stream(fp)
