"""Minimal local OAuth2 (3-legged) flow for Sage Business Cloud Accounting.

What this does:
- Starts a tiny local HTTP server on your redirect URI
- Opens the Sage consent page in your browser
- Captures the auth `code` on the callback
- Exchanges `code` for access/refresh tokens
- Saves tokens to `.env_sage_tokens.json` (keep it out of version control)

Prereqs (env vars):
- SAGE_CLIENT_ID
- SAGE_CLIENT_SECRET
- SAGE_REDIRECT_URI         (must exactly match what's registered in the Sage developer portal)

Optional:
- SAGE_LOCAL_REDIRECT_URI   Local listener URI for the callback server.
    Use this if SAGE_REDIRECT_URI is a public HTTPS URL (e.g., via ngrok) but you
    still want this script to listen on localhost.

Run:
  python scripts/sage_auth_local.py
"""

from __future__ import annotations

import asyncio
import json
import logging
import os
import secrets
import threading
import time
import webbrowser
from http.server import BaseHTTPRequestHandler, HTTPServer
from urllib.parse import parse_qs, urlparse

from dotenv import load_dotenv

from src.backend.integrations.sage_client import SageClient

load_dotenv()

logging.basicConfig(level=logging.INFO)

TOKENS_PATH = os.environ.get("SAGE_TOKENS_PATH", os.path.abspath(".env_sage_tokens.json"))


def _require_env(name: str) -> str:
    value = os.environ.get(name)
    if not value:
        raise SystemExit(f"Missing env var {name}. Put it in your .env and export it before running.")
    return value


class _CallbackState:
    def __init__(self) -> None:
        self.code: str | None = None
        self.state: str | None = None
        self.error: str | None = None


def main() -> None:
    _require_env("SAGE_CLIENT_ID")
    _require_env("SAGE_CLIENT_SECRET")
    redirect_uri = _require_env("SAGE_REDIRECT_URI")
    local_redirect_uri = os.environ.get("SAGE_LOCAL_REDIRECT_URI") or redirect_uri

    local_parsed = urlparse(local_redirect_uri)
    if local_parsed.scheme not in {"http", "https"}:
        raise SystemExit("SAGE_LOCAL_REDIRECT_URI must start with http:// or https://")
    if not local_parsed.hostname or not local_parsed.port:
        raise SystemExit(
            "SAGE_LOCAL_REDIRECT_URI must include hostname and port, e.g. http://localhost:8040/sage/callback"
        )

    callback = _CallbackState()

    class Handler(BaseHTTPRequestHandler):
        def do_GET(self):  # noqa: N802
            if urlparse(self.path).path != local_parsed.path:
                self.send_response(404)
                self.end_headers()
                self.wfile.write(b"Not found")
                return

            query = parse_qs(urlparse(self.path).query)
            if "error" in query:
                callback.error = query.get("error", [""])[0]
            callback.code = query.get("code", [None])[0]
            callback.state = query.get("state", [None])[0]

            self.send_response(200)
            self.send_header("Content-Type", "text/html")
            self.end_headers()
            self.wfile.write(
                b"<html><body><h3>Sage connected.</h3><p>You can close this tab and return to the terminal.</p></body></html>"
            )

        def log_message(self, *_args, **_kwargs):
            return

    server = HTTPServer((local_parsed.hostname, local_parsed.port), Handler)
    thread = threading.Thread(target=lambda: server.serve_forever(poll_interval=0.1), daemon=True)
    thread.start()

    client = SageClient.from_env()
    state = secrets.token_hex(16)
    consent_url = client.get_consent_url(state=state)

    print("\n1) Opening Sage consent page in your browser...")
    print("   If it doesn't open, copy/paste this URL:")
    print(consent_url)
    webbrowser.open(consent_url)

    print("\n2) Waiting for callback on:")
    print(f"   {local_redirect_uri}")

    timeout_s = int(os.environ.get("SAGE_AUTH_TIMEOUT_SECONDS", "180"))
    start = time.time()
    while time.time() - start < timeout_s:
        if callback.error or callback.code:
            break
        time.sleep(0.1)

    server.shutdown()

    if callback.error:
        raise SystemExit(f"OAuth error: {callback.error}")
    if not callback.code:
        raise SystemExit(
            "Timed out waiting for OAuth callback. Check that the redirect URI registered with Sage matches SAGE_REDIRECT_URI exactly."
        )
    if callback.state != state:
        raise SystemExit("OAuth state mismatch; refusing to exchange the code.")

    print("\n3) Exchanging auth code for tokens...")
    token = asyncio.run(client.process_callback(callback.code))

    with open(TOKENS_PATH, "w", encoding="utf-8") as f:
        json.dump(token.model_dump(), f, indent=2)

    print("\nSuccess. Tokens saved to:")
    print(f"   {TOKENS_PATH}")
    print("\nNext: run the smoke test:")
    print("  python scripts/sage_api_smoke_test.py")


if __name__ == "__main__":
    main()
