"""
encoding.py

Repairs text whose UTF-8 bytes were decoded as a single-byte charset in
transit (multipart uploads store the original filename as latin-1).

    Buffer("测试文件.xlsx", utf-8) read as latin-1 -> "æµ\\x8b..." -> "测试文件.xlsx"
"""

from __future__ import annotations

import re
from typing import Optional

# latin-1 first (what the upload layer uses), cp1252 for Windows clients.
SINGLE_BYTE_CODECS = ("latin-1", "cp1252")

CJK_PATTERN = re.compile(r"[\u4e00-\u9fff]")
REPLACEMENT_CHAR = "\ufffd"


def _reinterpret(text: str, codec: str) -> Optional[str]:
    try:
        return text.encode(codec).decode("utf-8")
    except (UnicodeEncodeError, UnicodeDecodeError):
        return None


def repair_mojibake(text: object) -> object:
    """
    Undo a UTF-8 -> single-byte misdecode.

    The repaired string is accepted only if it contains at least one CJK
    ideograph and no replacement characters; anything else (already-correct
    text, plain ASCII, non-strings) comes back unchanged.
    """
    if not isinstance(text, str) or text == "":
        return text

    for codec in SINGLE_BYTE_CODECS:
        candidate = _reinterpret(text, codec)
        if candidate is None or candidate == text:
            continue
        if REPLACEMENT_CHAR in candidate:
            continue
        if CJK_PATTERN.search(candidate):
            return candidate

    return text


def repair_filename(name: Optional[str]) -> str:
    if not name:
        return ""
    return str(repair_mojibake(name))
