"""Obtain a Google OAuth refresh token for the business calendar.

Usage:
    python -m tutor_scheduler.print_refresh_token            # prints the consent URL
    python -m tutor_scheduler.print_refresh_token <code>     # exchanges the code
"""
import sys
from urllib.parse import urlencode

import httpx

from tutor_scheduler.auth.google_credentials import CALENDAR_SCOPE, GOOGLE_TOKEN_URL
from tutor_scheduler.core import config

GOOGLE_AUTH_URL = "https://accounts.google.com/o/oauth2/v2/auth"
SCOPES = [CALENDAR_SCOPE, "https://www.googleapis.com/auth/calendar.events"]


def build_consent_url() -> str:
    query = {
        "client_id": config.GOOGLE_CLIENT_ID,
        "redirect_uri": config.GOOGLE_REDIRECT_URI,
        "response_type": "code",
        "scope": " ".join(SCOPES),
        "access_type": "offline",
        "prompt": "consent",
    }
    return f"{GOOGLE_AUTH_URL}?{urlencode(query)}"


def exchange_code(code: str, client: httpx.Client | None = None) -> dict:
    data = {
        "code": code,
        "client_id": config.GOOGLE_CLIENT_ID,
        "client_secret": config.GOOGLE_CLIENT_SECRET,
        "redirect_uri": config.GOOGLE_REDIRECT_URI,
        "grant_type": "authorization_code",
    }
    if client is None:
        with httpx.Client(timeout=10.0) as default_client:
            response = default_client.post(GOOGLE_TOKEN_URL, data=data)
    else:
        response = client.post(GOOGLE_TOKEN_URL, data=data)
    response.raise_for_status()
    return response.json()


def main(argv: list[str] | None = None) -> None:
    argv = sys.argv[1:] if argv is None else argv
    if not config.GOOGLE_CLIENT_ID or not config.GOOGLE_CLIENT_SECRET:
        print("Set GOOGLE_CLIENT_ID and GOOGLE_CLIENT_SECRET in .env first.", file=sys.stderr)
        sys.exit(1)

    if not argv:
        print("Open this URL, approve access, then rerun with the returned code:")
        print(build_consent_url())
        return

    try:
        tokens = exchange_code(argv[0])
    except httpx.HTTPError as exc:
        print(f"Token exchange failed: {exc}", file=sys.stderr)
        sys.exit(1)

    refresh_token = tokens.get("refresh_token")
    if not refresh_token:
        print("No refresh token returned; revoke the app's access and try again.", file=sys.stderr)
        sys.exit(1)
    print(f"GOOGLE_REFRESH_TOKEN={refresh_token}")


if __name__ == "__main__":
    main()
