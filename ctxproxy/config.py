"""Configuration management for ctx-proxy"""
import logging
import os
from pathlib import Path

from .envfile import load_env_file, merge_env

# ── Env file (real environment wins) ──
ENV_FILE = os.environ.get("CTXPROXY_ENV_FILE", "")
_ENV = merge_env(load_env_file(ENV_FILE), os.environ) if ENV_FILE else dict(os.environ)


def _get(name: str, default: str = "") -> str:
    return _ENV.get(name, default)


# ── Logging ──
LOG_LEVEL = _get("LOG_LEVEL", "INFO").upper()
logging.basicConfig(level=getattr(logging, LOG_LEVEL, logging.INFO),
                    format="%(asctime)s [%(levelname)s] %(message)s")
log = logging.getLogger("ctx-proxy")

# ── Base directory ──
_BASE_DIR = _get("APP_BASE_DIR", str(Path(__file__).resolve().parent.parent))

# ── Core config ──
UPSTREAM = _get("UPSTREAM_URL", "http://localhost:8080")
UPSTREAM_API_KEY = _get("UPSTREAM_API_KEY")
LISTEN_PORT = int(_get("PROXY_PORT", "8180"))
KEYS_FILE = Path(_get("KEYS_FILE", os.path.join(_BASE_DIR, "keys.json")))

# ── Agent workspace ──
GLOBAL_CONFIG_DIR = Path(_get("CTXPROXY_HOME", str(Path.home() / ".ctxproxy")))
WORKSPACE_DIR = Path(_get("WORKSPACE_DIR", str(GLOBAL_CONFIG_DIR / "workspace")))
BUILTIN_SKILLS_DIR = Path(_get("BUILTIN_SKILLS_DIR", os.path.join(os.getcwd(), "skills")))

if not UPSTREAM_API_KEY:
    log.warning("UPSTREAM_API_KEY is not set. Forwarded chat completions may be rejected.")
