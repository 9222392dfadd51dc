import base64, binascii
from typing import Optional

def basic_auth_header(credential: str) -> str:
    """'user:app password' -> 'Basic <base64>'."""
    return "Basic " + base64.b64encode(credential.encode("utf-8")).decode("ascii")

def parse_basic_credential(header: Optional[str]) -> Optional[tuple[str, str]]:
    if not header:
        return None
    scheme, _, token = header.partition(" ")
    if scheme.lower() != "basic" or not token:
        return None
    try:
        decoded = base64.b64decode(token.strip(), validate=True).decode("utf-8")
    except (binascii.Error, UnicodeDecodeError):
        return None
    username, sep, password = decoded.partition(":")
    if not sep or not username:
        return None
    return username, password
