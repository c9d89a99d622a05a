"""Health check endpoint"""
from . import config


async def health():
    """Health check endpoint handler"""
    return {
        "status": "ok",
        "upstream": config.UPSTREAM,
        "workspace": str(config.WORKSPACE_DIR),
    }
