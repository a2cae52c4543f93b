from __future__ import annotations

import hashlib


def sha1_upper(text: str) -> str:
    """SHA-1 of *text* (UTF-8) as upper-case hex, the form the webservice expects for passwords."""
    if not isinstance(text, str):
        raise TypeError("sha1_upper: parâmetro deve ser str")
    return hashlib.sha1(text.encode("utf-8")).hexdigest().upper()
