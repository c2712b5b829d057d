from typing import Optional
from fastapi import Request


def get_api_key_from_request(req: Request) -> Optional[str]:
    # x-api-key: <key>
    h = req.headers.get("x-api-key")
    if h and h.strip():
        return h.strip()
    # Authorization: Bearer <key>
    h = req.headers.get("Authorization")
    if h and h.lower().startswith("bearer "):
        return h.split(" ", 1)[1].strip() or None
    # ?api_key=<key>
    return req.query_params.get("api_key") or None


def get_webhook_token(req: Request, body: dict) -> Optional[str]:
    h = req.headers.get("x-webhook-token")
    if h and h.strip():
        return h.strip()
    tok = body.get("token") if isinstance(body, dict) else None
    return str(tok) if tok else None
