from __future__ import annotations

import os
from typing import Any

from ..security.secrets import decrypt_secret, encrypt_secret
from ..storage import delete_api_secret, get_api_secret, set_api_secret

TOKEN_ENV = "MV_WEBMENTION_IO_TOKEN"
UPSTREAM_TOKEN_NAME = "upstream.token"


def set_upstream_token(conn: Any, token: str) -> dict[str, Any]:
    token = (token or "").strip()
    if not token:
        raise ValueError("token is required")
    key_id, value_enc = encrypt_secret(token, _token_aad())
    set_api_secret(conn, UPSTREAM_TOKEN_NAME, key_id, value_enc)
    return {"name": UPSTREAM_TOKEN_NAME, "key_id": key_id, "stored": True}


def clear_upstream_token(conn: Any) -> None:
    delete_api_secret(conn, UPSTREAM_TOKEN_NAME)


def has_stored_token(conn: Any) -> bool:
    return get_api_secret(conn, UPSTREAM_TOKEN_NAME) is not None


def load_upstream_token(conn: Any) -> str | None:
    env_token = os.environ.get(TOKEN_ENV, "").strip()
    if env_token:
        return env_token
    stored = get_api_secret(conn, UPSTREAM_TOKEN_NAME)
    if not stored:
        return None
    key_id, value_enc = stored
    return decrypt_secret(value_enc, _token_aad(), key_id=key_id)


def _token_aad() -> bytes:
    return f"secret:{UPSTREAM_TOKEN_NAME}".encode("utf-8")
