import hmac


def ct_eq(a, b) -> bool:
    """Constant-time equality for two byte or ASCII strings (length must match)."""
    if isinstance(a, str):
        a = a.encode()
    if isinstance(b, str):
        b = b.encode()
    if len(a) != len(b):
        return False
    return hmac.compare_digest(a, b)
