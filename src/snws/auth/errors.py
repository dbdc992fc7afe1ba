"""Error taxonomy for request authentication.

Syntax errors, unknown credentials and signature mismatches share the
"bad_credentials" reason so a caller cannot tell which stage rejected it.
Clock skew and missing signed headers are reported distinctly.
"""


class SnwsError(Exception):
    reason = "error"
    status_code = 500


class AuthenticationError(SnwsError):
    reason = "bad_credentials"
    status_code = 401

    def to_dict(self) -> dict:
        return {"error": self.reason}


class AuthSyntaxError(AuthenticationError):
    """Malformed Authorization header or unparseable component."""


class SignatureMismatchError(AuthenticationError):
    """Recomputed signature did not match any lookback candidate."""


class UnknownCredentialError(SignatureMismatchError):
    """Credential id not present in the directory."""


class ContentDigestMismatchError(SignatureMismatchError):
    """A signed Digest or Content-MD5 header disagrees with the body."""


class MissingRequiredHeaderError(AuthenticationError):
    reason = "missing_header"

    def __init__(self, header_name: str, message: str | None = None):
        self.header_name = header_name
        super().__init__(message or f"The '{header_name}' HTTP header must be included in SignedHeaders")

    def to_dict(self) -> dict:
        return {"error": self.reason, "header": self.header_name}


class ClockSkewExceededError(AuthenticationError):
    reason = "date_skew"

    def __init__(self, skew_ms: int, max_skew_ms: int):
        self.skew_ms = skew_ms
        self.max_skew_ms = max_skew_ms
        super().__init__(f"Request date skew too large: {skew_ms}ms > {max_skew_ms}ms")

    def to_dict(self) -> dict:
        return {"error": self.reason, "skew_ms": self.skew_ms}


class BodyTooLargeError(SnwsError):
    reason = "body_too_large"
    status_code = 413

    def __init__(self, limit: int):
        self.limit = limit
        super().__init__(f"Request body too large (limit {limit} bytes)")

    def to_dict(self) -> dict:
        return {"error": self.reason, "limit": self.limit}


class CryptoProviderError(SnwsError):
    """Required hash or MAC primitive is unavailable."""
    reason = "crypto_unavailable"
