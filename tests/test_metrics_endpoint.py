from starlette.testclient import TestClient

from snws.app import build_app
from snws.auth.credentials import InMemoryCredentialDirectory
from snws.config import AuthConfig


def test_metrics_endpoint_exposes_auth_counters():
    client = TestClient(build_app(InMemoryCredentialDirectory(), AuthConfig()))
    # generate a rejection so the counter has a sample
    assert client.get('/protected').status_code == 401
    r = client.get('/metrics')
    assert r.status_code == 200
    assert r.headers['content-type'].startswith('text/plain')
    text = r.text
    assert 'snws_auth_requests_total' in text
    assert 'reason="missing_authorization"' in text
    assert 'snws_body_cache_bytes' in text
