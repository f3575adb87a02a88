# whytree/api/server.py
"""
FastAPI server for the why-why analysis chat:

- /chat   : one chat exchange (counselor question, or cause tree)
- /health : basic health check

The server is stateless: the client sends the whole dialogue every time and
keeps its own history. Errors always come back as {"error", "code"}.
"""

import json
import time
import uuid
from typing import List, Literal, Optional

from fastapi import FastAPI, Request
from fastapi.concurrency import run_in_threadpool
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from whytree.clients.gemini_client import ModelGateway
from whytree.config.settings import load_settings
from whytree.core.errors import (
    API_KEY_MISSING,
    GEMINI_API_ERROR,
    INVALID_REQUEST,
    ConfigurationError,
    InputValidationError,
)
from whytree.core.exchange import build_chat_reply
from whytree.core.models import Message
from whytree.utils.logging import get_logger

logger = get_logger(__name__)

API_KEY_MISSING_MESSAGE = "The API key is not configured. Check your .env file."
INVALID_REQUEST_MESSAGE = "The request is not in the expected format."
GEMINI_API_ERROR_MESSAGE = "Failed to communicate with the AI. Please wait a moment and try again."


# ---------------------------------------------------------------------------
# Models
# ---------------------------------------------------------------------------

class MessageModel(BaseModel):
    id: str = Field(..., min_length=1)
    role: Literal["user", "assistant"]
    content: str
    timestamp: int

    def to_message(self) -> Message:
        return Message(id=self.id, role=self.role, content=self.content, timestamp=self.timestamp)

    @classmethod
    def from_message(cls, msg: Message) -> "MessageModel":
        return cls(id=msg.id, role=msg.role, content=msg.content, timestamp=msg.timestamp)


class ChatRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    messages: List[MessageModel] = Field(..., min_length=1, description="Dialogue so far, oldest first.")
    should_generate_tree: bool = Field(
        default=False,
        alias="shouldGenerateTree",
        description="Ask for the cause tree instead of the next question.",
    )


class ChatResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    message: MessageModel
    mermaid_code: Optional[str] = Field(default=None, alias="mermaidCode")


class ErrorResponse(BaseModel):
    error: str
    code: Literal["API_KEY_MISSING", "GEMINI_API_ERROR", "INVALID_REQUEST"]


def _error(status_code: int, message: str, code: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content=ErrorResponse(error=message, code=code).model_dump())


# ---------------------------------------------------------------------------
# App
# ---------------------------------------------------------------------------

def create_app(gateway: Optional[ModelGateway] = None) -> FastAPI:
    """
    Build the API around one gateway. Tests pass their own; by default it is
    configured from the environment.
    """
    gw = gateway or ModelGateway(load_settings())

    app = FastAPI(
        title="whytree API",
        description="Why-why analysis chat: counselor questions and cause-tree generation.",
        version="0.1.0",
    )
    app.state.gateway = gw

    @app.post(
        "/chat",
        response_model=ChatResponse,
        response_model_by_alias=True,
        response_model_exclude_none=True,
        responses={400: {"model": ErrorResponse}, 500: {"model": ErrorResponse}},
    )
    async def chat(request: Request):
        """
        Send the dialogue to the model and get the next assistant message,
        or the cause tree when shouldGenerateTree is true.
        """
        request_id = str(uuid.uuid4())
        start_time = time.monotonic()

        # 1. API key first, before the body is even looked at
        if not gw.settings.api_key_configured:
            logger.error("[chat] request_id=%s GEMINI_API_KEY is not set", request_id)
            return _error(400, API_KEY_MISSING_MESSAGE, API_KEY_MISSING)

        # 2. Parse + validate the body
        try:
            body = await request.json()
            req = ChatRequest.model_validate(body)
        except (json.JSONDecodeError, UnicodeDecodeError, ValidationError) as e:
            logger.warning("[chat] request_id=%s invalid request body: %s", request_id, e)
            return _error(400, INVALID_REQUEST_MESSAGE, INVALID_REQUEST)

        logger.info("[chat] request_id=%s messages=%d tree=%s",
                    request_id, len(req.messages), req.should_generate_tree)

        # 3. Model call (blocking SDK -> threadpool)
        try:
            reply = await run_in_threadpool(
                build_chat_reply,
                gw,
                [m.to_message() for m in req.messages],
                req.should_generate_tree,
            )
        except ConfigurationError as e:
            logger.error("[chat] request_id=%s configuration error: %s", request_id, e)
            return _error(400, API_KEY_MISSING_MESSAGE, API_KEY_MISSING)
        except InputValidationError as e:
            logger.warning("[chat] request_id=%s validation error: %s", request_id, e)
            return _error(400, INVALID_REQUEST_MESSAGE, INVALID_REQUEST)
        except Exception as e:
            logger.error("[chat] request_id=%s model error: %r", request_id, e)
            return _error(500, GEMINI_API_ERROR_MESSAGE, GEMINI_API_ERROR)

        latency_ms = int((time.monotonic() - start_time) * 1000)
        logger.info("[chat] request_id=%s OK latency_ms=%d tree=%s",
                    request_id, latency_ms, reply.tree_artifact is not None)

        return ChatResponse(
            message=MessageModel.from_message(reply.message),
            mermaid_code=reply.tree_artifact,
        )

    @app.get("/health")
    def health_check() -> dict:
        """
        Very simple health check endpoint.
        """
        return {
            "status": "ok",
            "model": gw.model_name,
            "api_key_configured": gw.settings.api_key_configured,
        }

    return app


app = create_app()
