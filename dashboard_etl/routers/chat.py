from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timedelta, timezone
from typing import Any, AsyncIterator, Dict, List

import orjson
from anthropic import AsyncAnthropic
from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import StreamingResponse
from starlette.concurrency import run_in_threadpool

from dashboard_etl.config import settings
from dashboard_etl.connectors.base import ConfigurationError
from dashboard_etl.connectors.registry import ConnectorRegistry
from dashboard_etl.db.base import session_scope
from dashboard_etl.db.repositories.chat_messages import ChatMessagesRepository
from dashboard_etl.db.repositories.records import RecordsRepository
from dashboard_etl.dependencies import get_registry
from dashboard_etl.schemas import ChatRequest

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/chat", tags=["chat"])

SYSTEM_PROMPT = """You are a helpful AI assistant for an operations team that manages inspections, sites, engineers, and work orders.
You have access to data about:
- Inspections and their statuses
- Call logs and SMS from the call center
- Marketing leads
- Inspection scheduling data

Provide concise, accurate answers based on the available data. When citing specific data, include relevant IDs or references."""

_LIVE_SOURCES = ("calls", "leads", "inspections")


def _sse(data: Any) -> bytes:
    return b"data: " + orjson.dumps(data) + b"\n\n"


def _anthropic_client(api_key: str) -> AsyncAnthropic:
    return AsyncAnthropic(api_key=api_key)


async def _live_context(registry: ConnectorRegistry) -> str:
    since = datetime.now(timezone.utc) - timedelta(hours=settings.CHAT_LIVE_WINDOW_HOURS)

    async def count(source: str) -> int:
        try:
            connector = registry.require(source)
        except ConfigurationError:
            return 0
        return len(await connector.list_records(since))

    counts = await asyncio.gather(*(count(source) for source in _LIVE_SOURCES), return_exceptions=True)
    lines = []
    for source, value in zip(_LIVE_SOURCES, counts):
        if isinstance(value, BaseException):
            logger.warning("chat.live_context_failed", extra={"source": source, "error": str(value)})
            value = 0
        lines.append(f"- {source.capitalize()}: {value} total")
    return f"\n\nRecent live data (last {settings.CHAT_LIVE_WINDOW_HOURS} hours):\n" + "\n".join(lines)


def _stored_context() -> str:
    with session_scope() as session:
        repo = RecordsRepository(session)
        recent = repo.recent_inspections(limit=5)
        activity = repo.activity_counts_for_last(hours=settings.CHAT_LIVE_WINDOW_HOURS)
    if not recent and not any(activity.values()):
        return ""
    return (
        f"\n\nRecent inspections in database: {len(recent)}"
        f"\nStored activity (last {settings.CHAT_LIVE_WINDOW_HOURS} hours): "
        f"{activity['calls']} calls, {activity['leads']} leads, {activity['inspections']} inspections"
    )


def _persist_exchange(session_id: str, user_message: str, assistant_message: str) -> None:
    with session_scope() as session:
        ChatMessagesRepository(session).record_exchange(
            session_id=session_id,
            user_message=user_message,
            assistant_message=assistant_message,
        )


@router.post("/stream")
async def stream_chat(
    payload: ChatRequest,
    request: Request,
    registry: ConnectorRegistry = Depends(get_registry),
) -> StreamingResponse:
    api_key = settings.ANTHROPIC_API_KEY
    if not api_key:
        raise HTTPException(status_code=500, detail="ANTHROPIC_API_KEY not configured")

    if payload.use_live_connectors:
        system_prompt = SYSTEM_PROMPT + await _live_context(registry)
    else:
        system_prompt = SYSTEM_PROMPT + await run_in_threadpool(_stored_context)

    messages: List[Dict[str, str]] = [{"role": msg.role, "content": msg.content} for msg in payload.messages]
    client = _anthropic_client(api_key)

    async def event_stream() -> AsyncIterator[bytes]:
        output_parts: List[str] = []
        try:
            async with client.messages.stream(
                model=settings.ANTHROPIC_MODEL,
                max_tokens=settings.CHAT_MAX_TOKENS,
                system=system_prompt,
                messages=messages,
            ) as stream:
                async for text in stream.text_stream:
                    if await request.is_disconnected():
                        logger.info("chat.client_disconnected", extra={"session_id": payload.session_id})
                        return
                    output_parts.append(text)
                    yield _sse({"text": text})

            if payload.session_id:
                await run_in_threadpool(
                    _persist_exchange,
                    payload.session_id,
                    payload.messages[-1].content,
                    "".join(output_parts),
                )
            yield b"data: [DONE]\n\n"
        except Exception as exc:  # noqa: BLE001
            logger.exception("chat.stream_failed", extra={"session_id": payload.session_id})
            yield _sse({"error": str(exc)})

    return StreamingResponse(
        event_stream(),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache", "Connection": "keep-alive"},
    )
