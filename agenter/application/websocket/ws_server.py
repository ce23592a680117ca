from fastapi import FastAPI, WebSocket, WebSocketDisconnect
from fastapi.middleware.cors import CORSMiddleware
from contextlib import asynccontextmanager
from typing import Awaitable, Callable, Dict, Optional
import asyncio
import json
import structlog
from pydantic import ValidationError

from agenter import __version__
from agenter.application.services import AgenterServices, build_services
from agenter.domain.models.facts import FactType, create_fact
from agenter.domain.streaming.streaming_handler import format_memory_text
from agenter.infrastructure.config.settings import Settings, get_settings
from .connection_manager import DEFAULT_TAB_ID, ConnectionContext, ConnectionManager
from .schema.events import ClientMessage, ClientMessageType, EventType, create_error, create_event

logger = structlog.get_logger(__name__)

Handler = Callable[[AgenterServices, ConnectionManager, ConnectionContext, ClientMessage], Awaitable[None]]


def _tab(msg: ClientMessage) -> int:
    return msg.tab_id if msg.tab_id is not None else DEFAULT_TAB_ID


async def handle_ping(services: AgenterServices, manager: ConnectionManager, context: ConnectionContext, msg: ClientMessage):
    await context.send(create_event(msg.id, EventType.PONG))


async def handle_recall(services: AgenterServices, manager: ConnectionManager, context: ConnectionContext, msg: ClientMessage):
    """Single-completion recall for the given message"""

    tab_id = _tab(msg)
    user_message = msg.message or ""

    await services.fact_store.append(create_fact(FactType.USER_MSG, user_message))
    result = await services.context_manager.recall_with_trace(user_message)
    context.set_state(tab_id, result.cognitive_state)

    await context.send(
        create_event(
            msg.id,
            EventType.RECALL_RESULT,
            tab_id=tab_id,
            memory_text=format_memory_text(result),
            cognitive_state=result.cognitive_state,
        )
    )


async def handle_respond(services: AgenterServices, manager: ConnectionManager, context: ConnectionContext, msg: ClientMessage):
    """Stream an answer from a supplied or previously recalled state"""

    tab_id = _tab(msg)
    cognitive_state = msg.cognitive_state or context.get_state(tab_id)
    if cognitive_state is None:
        await context.send(create_error(msg.id, "Missing cognitive state", tab_id))
        return

    await services.streaming.stream_response(context, msg.id, tab_id, cognitive_state, msg.message or "")


async def handle_reset(services: AgenterServices, manager: ConnectionManager, context: ConnectionContext, msg: ClientMessage):
    await services.fact_store.reset()
    manager.clear_cognitive_states()
    await context.send(create_event(msg.id, EventType.RESET_DONE))


async def handle_chat(services: AgenterServices, manager: ConnectionManager, context: ConnectionContext, msg: ClientMessage):
    """Streaming recall followed by a streamed answer"""

    tab_id = _tab(msg)
    user_message = msg.message or ""
    if not user_message.strip():
        await context.send(create_error(msg.id, "Empty message", tab_id))
        return

    await services.fact_store.append(create_fact(FactType.USER_MSG, user_message, {"kind": "chat"}))

    frames = services.orchestrator.recall_stream(user_message, cancel=context.cancel)
    cognitive_state, interrupt_reason = await services.streaming.stream_recall(context, msg.id, tab_id, frames)

    if cognitive_state is None:
        if context.cancel.is_set():
            return
        cognitive_state = await services.context_manager.derive()
        logger.warning("Recall interrupted, using derived state", reason=interrupt_reason)
        await context.send(
            create_event(
                msg.id,
                EventType.RECALL_FALLBACK,
                tab_id=tab_id,
                reason=interrupt_reason,
                cognitive_state=cognitive_state,
            )
        )

    context.set_state(tab_id, cognitive_state)
    await services.streaming.stream_response(context, msg.id, tab_id, cognitive_state, user_message)


async def handle_history_prev(services: AgenterServices, manager: ConnectionManager, context: ConnectionContext, msg: ClientMessage):
    text, has_more = context.history.prev(msg.current_draft or "")
    await context.send(create_event(msg.id, EventType.HISTORY_RESULT, tab_id=msg.tab_id, text=text, has_more=has_more))


async def handle_history_next(services: AgenterServices, manager: ConnectionManager, context: ConnectionContext, msg: ClientMessage):
    text, has_more = context.history.next()
    await context.send(create_event(msg.id, EventType.HISTORY_RESULT, tab_id=msg.tab_id, text=text, has_more=has_more))


HANDLERS: Dict[str, Handler] = {
    ClientMessageType.PING.value: handle_ping,
    ClientMessageType.RECALL.value: handle_recall,
    ClientMessageType.RESPOND.value: handle_respond,
    ClientMessageType.RESET.value: handle_reset,
    ClientMessageType.CHAT.value: handle_chat,
    ClientMessageType.HISTORY_PREV.value: handle_history_prev,
    ClientMessageType.HISTORY_NEXT.value: handle_history_next,
}


async def run_handler(
    handler: Handler,
    services: AgenterServices,
    manager: ConnectionManager,
    context: ConnectionContext,
    msg: ClientMessage
):
    """Run one handler; any failure becomes an error event for that request"""

    try:
        await handler(services, manager, context, msg)
    except Exception as e:
        logger.error("Error processing message", message_type=msg.type, error=str(e), error_type=type(e).__name__)
        await context.send(create_error(msg.id, str(e), msg.tab_id))


def dispatch(
    services: AgenterServices,
    manager: ConnectionManager,
    context: ConnectionContext,
    msg: ClientMessage
):
    """Route a message to its handler as a task owned by the connection"""

    handler = HANDLERS.get(msg.type)
    if handler is None:
        task = asyncio.create_task(context.send(create_error(msg.id, f"Unknown type: {msg.type}")))
    else:
        if msg.type == ClientMessageType.CHAT.value and msg.message:
            context.history.add(msg.message)
        task = asyncio.create_task(run_handler(handler, services, manager, context, msg))

    context.tasks.add(task)
    task.add_done_callback(context.tasks.discard)


def create_app(settings: Optional[Settings] = None, services: Optional[AgenterServices] = None) -> FastAPI:
    """Build the FastAPI application; services are created at startup unless given"""

    settings = settings or (services.settings if services else get_settings())

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        owns_services = services is None
        app.state.services = services or await build_services(settings)
        app.state.connection_manager = ConnectionManager()
        logger.info("WebSocket server started", provider=settings.provider)

        yield

        manager: ConnectionManager = app.state.connection_manager
        for context in list(manager.active_connections.values()):
            await manager.disconnect(context)
        if owns_services:
            await app.state.services.aclose()
        logger.info("WebSocket server shutdown")

    app = FastAPI(title="Agenter WebSocket Server", version=__version__, lifespan=lifespan)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.get("/health")
    async def health_check():
        """Health check endpoint"""
        return {
            "success": True,
            "data": {
                "status": "ok",
                "provider": settings.provider,
                "websocket": True,
            },
        }

    @app.websocket("/ws")
    async def agenter_websocket(websocket: WebSocket):
        """Main WebSocket endpoint"""

        manager: ConnectionManager = app.state.connection_manager
        app_services: AgenterServices = app.state.services

        context = await manager.connect(websocket, __version__)
        structlog.contextvars.bind_contextvars(connection_id=context.id)

        try:
            while True:
                text = await websocket.receive_text()

                try:
                    msg = ClientMessage.model_validate(json.loads(text))
                except (json.JSONDecodeError, ValidationError) as e:
                    await context.send(create_error(None, f"Invalid message: {e}"))
                    continue

                dispatch(app_services, manager, context, msg)

        except WebSocketDisconnect:
            logger.info("Client disconnected", connection_id=context.id)
        except Exception as e:
            logger.error("WebSocket error", error=str(e), connection_id=context.id)
        finally:
            await manager.disconnect(context)
            structlog.contextvars.unbind_contextvars("connection_id")

    return app
