# modman/core/hashing.py
from __future__ import annotations

import hashlib
import re
from pathlib import Path

__all__ = ["sha256Bytes", "sha256File", "isSha256Hex"]

_SHA256_HEX_RE = re.compile(r"^[0-9a-fA-F]{64}$")



def sha256Bytes(data: bytes) -> str:
    hsh = hashlib.sha256()
    hsh.update(data)
    return hsh.hexdigest()



def sha256File(path: str | Path) -> str:
    """Returns a lowercase SHA-256 hex digest of the file content."""
    sha = hashlib.sha256()
    with Path(path).open("rb") as file:
        for chunk in iter(lambda: file.read(8192), b""):
            sha.update(chunk)
    return sha.hexdigest()



def isSha256Hex(value: str) -> bool:
    return bool(_SHA256_HEX_RE.fullmatch(value or ""))
