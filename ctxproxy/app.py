"""FastAPI application - history sanitizing, context building and upstream pass-through"""
import json
from contextlib import asynccontextmanager

import httpx
from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse, StreamingResponse

from . import config
from . import health as health_module
from .auth import require_api_key
from .config import log
from .context_builder import ContextBuilder
from .messages import MessageFormatError, messages_from_dicts, messages_to_dicts
from .sanitizer import has_tool_history, sanitize_history_with_report, sanitize_request

# ── Lifespan ──


@asynccontextmanager
async def lifespan(app: FastAPI):
    app.state.client = httpx.AsyncClient(
        base_url=config.UPSTREAM,
        timeout=httpx.Timeout(connect=30, read=300, write=30, pool=30)
    )
    log.info(f"Forwarding chat completions to {config.UPSTREAM}")
    yield
    await app.state.client.aclose()


# ── App ──

app = FastAPI(title="ctx-proxy", lifespan=lifespan)


def get_context_builder() -> ContextBuilder:
    """FastAPI dependency: context builder over the configured workspace"""
    return ContextBuilder(
        config.WORKSPACE_DIR,
        global_config_dir=config.GLOBAL_CONFIG_DIR,
        builtin_skills_dir=config.BUILTIN_SKILLS_DIR,
    )


async def _read_json(request: Request) -> dict:
    try:
        data = await request.json()
    except ValueError:
        raise HTTPException(status_code=400, detail="Request body must be JSON")
    if not isinstance(data, dict):
        raise HTTPException(status_code=400, detail="Request body must be a JSON object")
    return data


def _decode_messages(items) -> list:
    try:
        return messages_from_dicts(items)
    except MessageFormatError as e:
        raise HTTPException(status_code=400, detail=str(e))


# ── History routes ──


@app.post("/v1/history/sanitize")
async def sanitize(request: Request, key_info: dict = Depends(require_api_key)):
    body = await _read_json(request)
    if "messages" not in body:
        raise HTTPException(status_code=400, detail="Missing 'messages'")
    report = sanitize_history_with_report(_decode_messages(body["messages"]))
    return {
        "messages": messages_to_dicts(report.messages),
        "dropped": report.summary(),
        "events": [e.to_dict() for e in report.events],
    }


@app.post("/v1/context")
async def build_context(request: Request, key_info: dict = Depends(require_api_key),
                        builder: ContextBuilder = Depends(get_context_builder)):
    body = await _read_json(request)
    history = _decode_messages(body.get("history") or [])
    if body.get("tools"):
        builder.set_tools(body["tools"])
    messages = builder.build_messages(
        history,
        summary=body.get("summary") or "",
        current_message=body.get("message") or "",
        media=body.get("media") or None,
        channel=body.get("channel") or "",
        chat_id=body.get("chat_id") or "",
    )
    return {"messages": messages_to_dicts(messages)}


# ── Chat completions pass-through ──


@app.post("/v1/chat/completions")
async def chat_completions(request: Request, key_info: dict = Depends(require_api_key)):
    client: httpx.AsyncClient = request.app.state.client
    req_data = await _read_json(request)

    dropped = 0
    if has_tool_history(req_data):
        try:
            req_data, report = sanitize_request(req_data)
        except MessageFormatError as e:
            raise HTTPException(status_code=400, detail=str(e))
        dropped = report.dropped_count
        if dropped:
            log.info(f"Dropped {dropped} history messages for {key_info.get('name', 'unknown')} "
                     f"model={req_data.get('model', '')}")

    headers = {"Content-Type": "application/json"}
    if config.UPSTREAM_API_KEY:
        headers["Authorization"] = f"Bearer {config.UPSTREAM_API_KEY}"
    body = json.dumps(req_data).encode()
    extra_headers = {"x-history-dropped": str(dropped)}

    try:
        if req_data.get("stream"):
            return await _handle_stream(client, headers, body, extra_headers)
        return await _handle_non_stream(client, headers, body, extra_headers)
    except httpx.HTTPError as e:
        log.warning(f"Upstream request failed: {e}")
        return JSONResponse(
            content={"error": {"type": "upstream_error", "message": str(e) or type(e).__name__}},
            status_code=502,
            headers=extra_headers,
        )


async def _handle_stream(client, headers, body, extra_headers):
    upstream_req = client.build_request("POST", "/v1/chat/completions", headers=headers, content=body)
    upstream_resp = await client.send(upstream_req, stream=True)

    if upstream_resp.status_code != 200:
        error_body = await upstream_resp.aread()
        await upstream_resp.aclose()
        try:
            content = json.loads(error_body)
        except ValueError:
            content = {"error": error_body.decode("utf-8", errors="ignore")}
        return JSONResponse(content=content, status_code=upstream_resp.status_code, headers=extra_headers)

    async def relay():
        try:
            async for chunk in upstream_resp.aiter_bytes():
                yield chunk
        except httpx.HTTPError as e:
            log.warning(f"Stream error: {e}")
        finally:
            await upstream_resp.aclose()

    return StreamingResponse(
        relay(),
        status_code=200,
        media_type=upstream_resp.headers.get("content-type", "text/event-stream"),
        headers=extra_headers,
    )


async def _handle_non_stream(client, headers, body, extra_headers):
    resp = await client.post("/v1/chat/completions", headers=headers, content=body)
    return JSONResponse(
        content=resp.json() if resp.headers.get("content-type", "").startswith("application/json") else {"error": resp.text},
        status_code=resp.status_code,
        headers=extra_headers,
    )


# ── Health ──

app.get("/health")(health_module.health)
