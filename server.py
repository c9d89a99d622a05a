#!/usr/bin/env python3
"""
ctx-proxy: sanitizes agent conversation history and assembles provider
requests in front of an OpenAI-compatible chat-completions upstream.
"""
from ctxproxy.app import app
from ctxproxy.config import LISTEN_PORT

if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=LISTEN_PORT)
