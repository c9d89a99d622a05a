"""Mock chat-completions upstream for pass-through testing.

Behavior is controlled via the module-level `mock_state` dict:
  "behavior": "ok" | "400_tool_order" | "500_text"
Every request body the mock receives is appended to mock_state["requests"].
"""
import json

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse, PlainTextResponse, StreamingResponse

# ── Controllable state ──

mock_state = {
    "behavior": "ok",
    "requests": [],
}


def reset_mock_state():
    """Reset mock state to defaults (call between tests)"""
    mock_state["behavior"] = "ok"
    mock_state["requests"] = []


# ── Mock ASGI app ──

mock_app = FastAPI(title="Mock Upstream")


@mock_app.post("/v1/chat/completions")
async def chat_completions(request: Request):
    body = await request.json()
    mock_state["requests"].append({"body": body, "headers": dict(request.headers)})
    behavior = mock_state["behavior"]

    if behavior == "400_tool_order":
        return JSONResponse(
            status_code=400,
            content={"error": {"type": "invalid_request_error",
                               "message": "No tool output found for function call"}},
        )

    if behavior == "500_text":
        return PlainTextResponse("upstream exploded", status_code=500)

    model = body.get("model", "")
    if body.get("stream"):
        return _stream_response(model)
    return JSONResponse(content={
        "id": "chatcmpl-mock-001",
        "object": "chat.completion",
        "model": model,
        "choices": [{
            "index": 0,
            "message": {"role": "assistant", "content": f"Hello from {model}"},
            "finish_reason": "stop",
        }],
        "usage": {"prompt_tokens": 10, "completion_tokens": 5, "total_tokens": 15},
    })


def _stream_response(model: str) -> StreamingResponse:
    async def generate():
        for text in ("Hello", " from ", model):
            chunk = {"object": "chat.completion.chunk", "model": model,
                     "choices": [{"index": 0, "delta": {"content": text}}]}
            yield f"data: {json.dumps(chunk)}\n\n"
        yield "data: [DONE]\n\n"

    return StreamingResponse(generate(), status_code=200, media_type="text/event-stream")
