import base64
import re

_HEX_ESCAPE = re.compile(r"\\x([0-9a-fA-F]{2})")


def decode_hex_escapes(s: str) -> str:
    return _HEX_ESCAPE.sub(lambda m: chr(int(m.group(1), 16)), s)


def strip_bom(s: str) -> str:
    return s.lstrip("\ufeff").strip()


def b64encode_password(password: str) -> str:
    return base64.b64encode(password.encode("utf-8")).decode("ascii")


def normalize_base_url(url: str) -> str:
    if not url.startswith(("http://", "https://")):
        url = f"http://{url}"
    return url.rstrip("/")
