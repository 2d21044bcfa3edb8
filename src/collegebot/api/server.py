"""FastAPI application streaming conversation events over Server-Sent Events."""

from __future__ import annotations

import asyncio
import json
import logging
import uuid
from contextlib import asynccontextmanager
from dataclasses import dataclass, field, replace
from typing import Any, AsyncGenerator, AsyncIterator, Dict

from fastapi import APIRouter, Depends, FastAPI, Request
from sse_starlette.sse import EventSourceResponse

from ..ai.client import TokenSource
from ..ai.orchestration.event_emitter import EventEmitter, QueueChannel
from ..ai.orchestration.event_log import ChatEventLogger
from ..ai.orchestration.runtime_config import TurnConfig
from ..ai.orchestration.tool_dispatcher import DispatcherConfig, ToolDispatcher
from ..ai.orchestration.tools.registry import ProviderRegistry
from ..ai.orchestration.transcript import TranscriptSink
from ..ai.orchestration.turn_controller import TurnController
from .models import CancelResponse, ChatMessageRequest

__all__ = ["ChatServices", "create_app", "router"]

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/chat", tags=["chat"])


@dataclass
class ChatServices:
    """Collaborators shared by every conversation served by the app."""

    token_source: TokenSource
    registry: ProviderRegistry
    system_prompt: str
    turn_config: TurnConfig = field(default_factory=TurnConfig)
    dispatcher_config: DispatcherConfig = field(default_factory=DispatcherConfig)
    transcript_sink: TranscriptSink | None = None
    event_logger: ChatEventLogger = field(default_factory=lambda: ChatEventLogger(enabled=False))

    def build_controller(
        self, emitter: EventEmitter, *, conversation_id: str, request_title: bool
    ) -> TurnController:
        return TurnController(
            self.token_source,
            ToolDispatcher(self.registry, self.dispatcher_config),
            emitter,
            config=replace(self.turn_config, request_title=request_title),
            transcript_sink=self.transcript_sink,
            event_logger=self.event_logger,
            conversation_id=conversation_id,
        )

    async def aclose(self) -> None:
        """Release network resources held by the token source and providers."""

        closers = [getattr(self.token_source, "aclose", None)]
        for name in self.registry.list_names(include_disabled=True):
            registration = self.registry.get_registration(name)
            if registration is not None:
                closers.append(getattr(registration.provider, "aclose", None))
        for close in closers:
            if close is None:
                continue
            try:
                await close()
            except Exception:
                logger.debug("Resource shutdown failed", exc_info=True)


@dataclass
class _Session:
    controller: TurnController
    channel: QueueChannel
    task: asyncio.Task[Any]


def get_services(request: Request) -> ChatServices:
    return request.app.state.services


def get_sessions(request: Request) -> Dict[str, _Session]:
    return request.app.state.sessions


@router.post("/message")
async def send_message(
    request: ChatMessageRequest,
    services: ChatServices = Depends(get_services),
    sessions: Dict[str, _Session] = Depends(get_sessions),
):
    """
    Send a message and stream the assistant's work as Server-Sent Events.

    Each SSE ``data`` line is one JSON object with a ``type`` of
    ``thinking``, ``tool_call``, ``tool_result``, ``response``, ``title``,
    ``error`` or ``complete``. The stream ends after ``complete``.
    """
    conversation_id = request.conversation_id or uuid.uuid4().hex

    existing = sessions.get(conversation_id)
    if existing is not None:
        logger.info("Cancelling existing session for conversation %s", conversation_id)
        existing.controller.cancel()

    channel = QueueChannel()
    controller = services.build_controller(
        EventEmitter(channel),
        conversation_id=conversation_id,
        request_title=request.wants_title(),
    )
    task = asyncio.create_task(
        controller.run(request.to_history(), services.system_prompt),
        name=f"conversation:{conversation_id}",
    )
    session = _Session(controller=controller, channel=channel, task=task)
    sessions[conversation_id] = session

    def _release(_: asyncio.Task[Any]) -> None:
        if sessions.get(conversation_id) is session:
            del sessions[conversation_id]

    task.add_done_callback(_release)
    logger.info("Conversation %s started", conversation_id)

    async def event_generator() -> AsyncGenerator[str, None]:
        try:
            async for payload in channel:
                logger.debug("[SSE] conversation=%s type=%s", conversation_id, payload.get("type"))
                yield json.dumps(payload, ensure_ascii=False)
        finally:
            if not task.done():
                logger.info("Client left conversation %s before completion", conversation_id)
                channel.close()
                controller.cancel()

    return EventSourceResponse(event_generator(), headers={"X-Conversation-Id": conversation_id})


@router.post("/{conversation_id}/cancel", response_model=CancelResponse)
async def cancel_conversation(
    conversation_id: str,
    sessions: Dict[str, _Session] = Depends(get_sessions),
):
    """
    Cancel the active run for ``conversation_id``.

    The stream still receives ``complete`` if the client is connected.
    """
    session = sessions.get(conversation_id)
    if session is None:
        logger.debug("No active session to cancel for conversation %s", conversation_id)
        return CancelResponse(status="no_active_session", conversation_id=conversation_id)
    session.controller.cancel()
    logger.info("Cancelled conversation %s", conversation_id)
    return CancelResponse(status="cancelled", conversation_id=conversation_id)


def create_app(services: ChatServices) -> FastAPI:
    """Build the FastAPI application around ``services``."""

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        yield
        sessions: Dict[str, _Session] = app.state.sessions
        for session in list(sessions.values()):
            session.controller.cancel()
        pending = [session.task for session in sessions.values() if not session.task.done()]
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)
        await services.aclose()

    app = FastAPI(title="collegebot", lifespan=lifespan)
    app.state.services = services
    app.state.sessions = {}
    app.include_router(router)
    return app
