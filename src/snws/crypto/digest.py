import base64
import hashlib
from typing import Dict

EMPTY_SHA256_HEX = hashlib.sha256(b"").hexdigest()


def sha256_hex(data: bytes) -> str:
    return hashlib.sha256(data).hexdigest()


def sha256_b64(data: bytes) -> str:
    return base64.b64encode(hashlib.sha256(data).digest()).decode()


def digest_header_for(data: bytes) -> str:
    """RFC 3230 Digest header value, e.g. 'sha-256=X48E9q...='."""
    return f"sha-256={sha256_b64(data)}"


def content_md5_header_for(data: bytes) -> str:
    return base64.b64encode(hashlib.md5(data).digest()).decode()


def parse_digest_header(value: str) -> Dict[str, bytes]:
    # expects: 'sha-256=<b64>[,md5=<b64>...]'; algorithm names are lowercased
    out: Dict[str, bytes] = {}
    for part in value.split(","):
        part = part.strip()
        if not part:
            continue
        if "=" not in part:
            raise ValueError("invalid Digest format")
        alg, b64 = part.split("=", 1)
        out[alg.strip().lower()] = base64.b64decode(b64.strip().encode(), validate=True)
    return out
