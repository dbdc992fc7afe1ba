import argparse
import hashlib
import json
from urllib.parse import parse_qsl, urlparse

import httpx

from snws.auth.builder import AuthorizationBuilder
from snws.auth.canonical import parse_http_date
from snws.auth.client import SignatureAuth
from snws.auth.schemes import scheme_for_name
from snws.crypto.digest import digest_header_for


def main():
    ap = argparse.ArgumentParser(description="Sign (and optionally send) a request with an SNWS Authorization header")
    ap.add_argument("--url", required=True)
    ap.add_argument("--method", default="GET")
    ap.add_argument("--token", required=True, help="credential identifier")
    ap.add_argument("--secret", required=True)
    ap.add_argument("--scheme", default="SNWS2", choices=["SNWS2", "SNS"])
    ap.add_argument("--body", help="request body (UTF-8)")
    ap.add_argument("--content-type", default="application/json; charset=UTF-8")
    ap.add_argument("--digest", action="store_true", help="add and sign a Digest header for the body")
    ap.add_argument("--date", help="HTTP date to sign with (defaults to now)")
    ap.add_argument("--sn-date", action="store_true", help="carry the date in X-SN-Date")
    ap.add_argument("--send", action="store_true", help="send the request and print the response")
    ap.add_argument("--insecure", action="store_true", help="Skip TLS verification (dev only)")
    args = ap.parse_args()

    scheme = scheme_for_name(args.scheme)
    body = args.body.encode("utf-8") if args.body is not None else b""
    headers = {}
    if body:
        headers["Content-Type"] = args.content_type
        if args.digest:
            headers["Digest"] = digest_header_for(body)

    if args.send:
        auth = SignatureAuth(args.token, args.secret, scheme=scheme, use_sn_date=args.sn_date)
        with httpx.Client(verify=not args.insecure, auth=auth) as c:
            r = c.request(args.method, args.url, content=body or None, headers=headers)
            print("Authorization:", r.request.headers.get("authorization"))
            print("Status:", r.status_code)
            try:
                print(json.dumps(r.json(), indent=2))
            except ValueError:
                print(r.text)
        return

    u = urlparse(args.url)
    b = AuthorizationBuilder(args.token, scheme=scheme).use_sn_date(args.sn_date)
    b.method(args.method.upper()).path(u.path or "/")
    if scheme.requires_host:
        b.host(u.netloc)
    b.date(parse_http_date(args.date) if args.date else None)
    b.query_params(parse_qsl(u.query, keep_blank_values=True))
    for k, v in headers.items():
        b.header(k, v)
    if body:
        b.content_sha256(hashlib.sha256(body).digest())
    canonical = b.compute_canonical_request_message()
    print("--- canonical request ---")
    print(canonical)
    print("--- signature data ---")
    print(b.compute_signature_data(canonical))
    print("--- headers ---")
    date_name = scheme.alt_date_header if args.sn_date else scheme.date_header
    print(f"{date_name}: {b.header_value(date_name)}")
    print("Authorization:", b.build(args.secret))


if __name__ == "__main__":
    main()
