"""
PKCE (RFC 7636) and Dropbox authorize URL helpers.
S256 only; state ties the callback to the flow that stored the verifier.
"""
import hashlib
import secrets
from base64 import urlsafe_b64encode
from urllib.parse import urlencode


def generate_state() -> str:
    """Opaque value returned in the callback; keys the pending verifier."""
    return secrets.token_urlsafe(32)


def generate_pkce() -> tuple[str, str]:
    """
    Generate code_verifier and code_challenge (S256).
    Returns (code_verifier, code_challenge). Verifier is 86 chars, inside the 43-128 range.
    """
    code_verifier = secrets.token_urlsafe(64)
    return code_verifier, code_challenge_for(code_verifier)


def code_challenge_for(code_verifier: str) -> str:
    digest = hashlib.sha256(code_verifier.encode("ascii")).digest()
    return urlsafe_b64encode(digest).rstrip(b"=").decode("ascii")


def build_authorize_url(
    *,
    authorize_url: str,
    client_id: str,
    redirect_uri: str,
    state: str,
    code_challenge: str,
    offline: bool = True,
) -> str:
    """Build the Dropbox /oauth2/authorize URL. offline asks for a refresh token."""
    params = {
        "client_id": client_id,
        "response_type": "code",
        "redirect_uri": redirect_uri,
        "state": state,
        "code_challenge": code_challenge,
        "code_challenge_method": "S256",
    }
    if offline:
        params["token_access_type"] = "offline"
    return f"{authorize_url}?{urlencode(params)}"
