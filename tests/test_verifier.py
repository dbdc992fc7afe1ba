import hashlib
from datetime import datetime, timedelta, timezone

import pytest

from snws.auth.builder import AuthorizationBuilder
from snws.auth.envelope import parse_authorization
from snws.auth.errors import (
    AuthSyntaxError,
    ClockSkewExceededError,
    ContentDigestMismatchError,
    MissingRequiredHeaderError,
    SignatureMismatchError,
    UnknownCredentialError,
)
from snws.auth.schemes import SNS
from snws.auth.verifier import RequestAuthorization, RequestView, verify_request
from snws.cache.content import ContentDigestCache
from snws.config import AuthConfig
from snws.crypto.digest import content_md5_header_for, digest_header_for

TOKEN_ID = "test-token-id"
TOKEN_SECRET = "test-token-secret"
TEST_DATE = datetime(2017, 4, 25, 14, 30, tzinfo=timezone.utc)
SECRETS = {TOKEN_ID: TOKEN_SECRET}


def view_from(builder, body=b"", content_type=None, **overrides):
    d = builder.descriptor
    kwargs = dict(
        method=d.verb,
        path=d.path,
        query_params=d.query_params,
        headers=dict(d.headers),
        content=ContentDigestCache(body, content_type=content_type, config=AuthConfig()),
    )
    kwargs.update(overrides)
    return RequestView(**kwargs)


def _builder():
    return AuthorizationBuilder(TOKEN_ID).date(TEST_DATE).host("localhost").path("/api/test")


def test_round_trip():
    b = _builder()
    header = b.build(TOKEN_SECRET)
    result = verify_request(header, view_from(b), SECRETS.get, now=TEST_DATE)
    assert result.verified
    assert result.credential_id == TOKEN_ID
    assert result.signed_headers == ["date", "host"]
    assert result.key_age_days == 0
    assert result.date_skew_ms == 0


def test_lookback_accepts_key_from_six_days_ago():
    b = _builder().save_signing_key(TOKEN_SECRET)
    later = TEST_DATE + timedelta(days=6)
    b.date(later)
    result = verify_request(b.build(), view_from(b), SECRETS.get, now=later)
    assert result.key_age_days == 6


def test_lookback_rejects_key_older_than_window():
    b = _builder().save_signing_key(TOKEN_SECRET)
    later = TEST_DATE + timedelta(days=8)
    b.date(later)
    with pytest.raises(SignatureMismatchError):
        verify_request(b.build(), view_from(b), SECRETS.get, now=later)


def test_clock_skew_rejected_after_signature_check():
    b = _builder()
    header = b.build(TOKEN_SECRET)
    now = TEST_DATE + timedelta(minutes=16)
    with pytest.raises(ClockSkewExceededError) as e:
        verify_request(header, view_from(b), SECRETS.get, now=now)
    assert e.value.skew_ms == 960000
    assert e.value.to_dict()["error"] == "date_skew"

    auth = RequestAuthorization(parse_authorization(header), view_from(b))
    assert auth.compute_signature_digest(TOKEN_SECRET) == auth.signature
    assert not auth.is_date_valid(now=now)
    assert auth.is_date_valid(now=TEST_DATE + timedelta(minutes=15))


def test_changed_path_breaks_signature():
    b = _builder()
    header = b.build(TOKEN_SECRET)
    with pytest.raises(SignatureMismatchError) as e:
        verify_request(header, view_from(b, path="/api/tesT"), SECRETS.get, now=TEST_DATE)
    assert e.value.to_dict() == {"error": "bad_credentials"}


def test_unsigned_vendor_header_rejected():
    b = _builder()
    header = b.build(TOKEN_SECRET)
    headers = dict(b.descriptor.headers)
    headers["x-sn-extra"] = ("1",)
    with pytest.raises(MissingRequiredHeaderError) as e:
        verify_request(header, view_from(b, headers=headers), SECRETS.get, now=TEST_DATE)
    assert e.value.header_name == "x-sn-extra"


def test_both_date_headers_signed_is_syntax_error():
    b = _builder()
    b.signed_http_headers(["x-sn-date"])
    header = b.build(TOKEN_SECRET)
    with pytest.raises(AuthSyntaxError):
        verify_request(header, view_from(b), SECRETS.get, now=TEST_DATE)


def test_unknown_credential():
    b = AuthorizationBuilder("nobody").date(TEST_DATE).host("localhost")
    with pytest.raises(UnknownCredentialError) as e:
        verify_request(b.build("x"), view_from(b), SECRETS.get, now=TEST_DATE)
    assert e.value.reason == "bad_credentials"


def test_wrong_secret():
    b = _builder()
    with pytest.raises(SignatureMismatchError):
        verify_request(b.build("not-the-secret"), view_from(b), SECRETS.get, now=TEST_DATE)


def test_scheme_mismatch_is_syntax_error():
    b = _builder()
    with pytest.raises(AuthSyntaxError):
        verify_request(b.build(TOKEN_SECRET), view_from(b), SECRETS.get, expected_scheme=SNS, now=TEST_DATE)


def test_post_with_matching_digest():
    body = b'{"hello":"world"}'
    b = _builder().method("POST").content_type("application/json").digest(digest_header_for(body))
    b.content_md5(content_md5_header_for(body)).content_sha256(hashlib.sha256(body).digest())
    view = view_from(b, body=body, content_type="application/json")
    result = verify_request(b.build(TOKEN_SECRET), view, SECRETS.get, now=TEST_DATE)
    assert result.signed_headers == ["content-md5", "content-type", "date", "digest", "host"]


def test_hex_content_md5_accepted():
    body = b"payload"
    b = _builder().method("PUT").content_md5(hashlib.md5(body).hexdigest())
    b.content_sha256(hashlib.sha256(body).digest())
    assert verify_request(b.build(TOKEN_SECRET), view_from(b, body=body), SECRETS.get, now=TEST_DATE).verified


def test_digest_header_mismatch():
    body = b'{"hello":"world"}'
    b = _builder().method("POST").content_type("application/json").digest(digest_header_for(b"other"))
    b.content_sha256(hashlib.sha256(body).digest())
    view = view_from(b, body=body, content_type="application/json")
    with pytest.raises(ContentDigestMismatchError) as e:
        verify_request(b.build(TOKEN_SECRET), view, SECRETS.get, now=TEST_DATE)
    assert e.value.to_dict() == {"error": "bad_credentials"}


def test_body_without_client_hash_fails():
    b = _builder().method("POST")
    with pytest.raises(SignatureMismatchError):
        verify_request(b.build(TOKEN_SECRET), view_from(b, body=b"abc"), SECRETS.get, now=TEST_DATE)


def test_host_synthesized_from_server_name():
    b = AuthorizationBuilder(TOKEN_ID).date(TEST_DATE).host("api.internal:8080").path("/x")
    headers = {k: v for k, v in b.descriptor.headers.items() if k != "host"}
    view = view_from(b, headers=headers, server_name="api.internal", server_port=8080)
    assert verify_request(b.build(TOKEN_SECRET), view, SECRETS.get, now=TEST_DATE).verified


def test_forwarded_https_appends_port():
    b = AuthorizationBuilder(TOKEN_ID).date(TEST_DATE).host("example.com:443").path("/x")
    headers = dict(b.descriptor.headers)
    headers["host"] = ("example.com",)
    headers["x-forwarded-proto"] = ("https",)
    view = view_from(b, headers=headers)
    assert verify_request(b.build(TOKEN_SECRET), view, SECRETS.get, now=TEST_DATE).verified


def test_explicit_host_overrides_request():
    b = AuthorizationBuilder(TOKEN_ID).date(TEST_DATE).host("public.example.com").path("/x")
    headers = dict(b.descriptor.headers)
    headers["host"] = ("10.0.0.7:8000",)
    view = view_from(b, headers=headers)
    header = b.build(TOKEN_SECRET)
    with pytest.raises(SignatureMismatchError):
        verify_request(header, view, SECRETS.get, now=TEST_DATE)
    result = verify_request(header, view, SECRETS.get, explicit_host="public.example.com", now=TEST_DATE)
    assert result.verified


def test_form_post_signs_params_not_body():
    body = b"b=2&a=1"
    form = (("b", "2"), ("a", "1"))
    b = _builder().method("POST").content_type("application/x-www-form-urlencoded")
    b.query_params([("q", "x")] + list(form))
    view = view_from(
        b,
        body=body,
        content_type="application/x-www-form-urlencoded",
        query_params=(("q", "x"),),
        form_params=form,
    )
    assert view.is_form_post
    assert verify_request(b.build(TOKEN_SECRET), view, SECRETS.get, now=TEST_DATE).verified


def test_sns_round_trip():
    b = AuthorizationBuilder("foo", scheme=SNS).date(TEST_DATE).verb("SEND").path("/")
    result = verify_request(b.build("bar"), view_from(b), {"foo": "bar"}.get, expected_scheme=SNS, now=TEST_DATE)
    assert result.scheme == "SNS"
    assert result.signed_headers == ["date"]


def test_lookback_days_must_be_positive():
    b = _builder()
    with pytest.raises(ValueError):
        RequestAuthorization(parse_authorization(b.build(TOKEN_SECRET)), view_from(b), lookback_days=0)


def test_form_post_with_no_fields_signs_no_body_hash():
    b = _builder().method("POST").content_type("application/x-www-form-urlencoded")
    view = view_from(b, body=b"&", content_type="application/x-www-form-urlencoded")
    assert view.form_params == ()
    assert verify_request(b.build(TOKEN_SECRET), view, SECRETS.get, now=TEST_DATE).verified


def test_changed_signed_header_breaks_signature():
    b = _builder().header("x-sn-foo", "bar")
    header = b.build(TOKEN_SECRET)
    assert b.header("x-sn-foo", "baz").build(TOKEN_SECRET) != header
    b.header("x-sn-foo", "bar")

    for name, value in (("x-sn-foo", "baz"), ("host", "localhost:8080")):
        headers = dict(b.descriptor.headers)
        headers[name] = (value,)
        with pytest.raises(SignatureMismatchError):
            verify_request(header, view_from(b, headers=headers), SECRETS.get, now=TEST_DATE)
    assert verify_request(header, view_from(b), SECRETS.get, now=TEST_DATE).verified
