"""API key authentication against the keys file"""
import json

from fastapi import HTTPException, Request

from . import config


def load_keys() -> dict:
    """Load keys data from file; no file means no keys."""
    if config.KEYS_FILE.exists():
        return json.loads(config.KEYS_FILE.read_text())
    return {"keys": {}}


def get_key_info(api_key: str) -> dict | None:
    return load_keys().get("keys", {}).get(api_key)


def extract_api_key(request: Request) -> str:
    """Extract API key from request headers (x-api-key or Authorization: Bearer)"""
    key = request.headers.get("x-api-key", "")
    if not key:
        auth = request.headers.get("authorization", "")
        if auth.startswith("Bearer "):
            key = auth[7:]
    return key.strip()


def require_api_key(request: Request) -> dict:
    """FastAPI dependency: require valid, enabled API key"""
    api_key = extract_api_key(request)
    if not api_key:
        raise HTTPException(status_code=401, detail="Missing API key")
    info = get_key_info(api_key)
    if info is None:
        raise HTTPException(status_code=401, detail="Invalid API key")
    if not info.get("enabled", True):
        raise HTTPException(status_code=403, detail="API key disabled")
    return {"key": api_key, **info}
