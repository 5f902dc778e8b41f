"""
FastAPI Server Module

HTTP and WebSocket API for calcpad. Each client works against a
calculator session; every action returns the updated display.
"""

import asyncio
import json
import uuid
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, HTTPException, Request, WebSocket, WebSocketDisconnect
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .config import Config, load_config
from .keymap import BUTTONS
from .logging_config import correlation_scope, get_logger, set_correlation_id, setup_logging
from .messages import (
    ActionRequest,
    CreateSessionRequest,
    DisplayResponse,
    KeyRequest,
    KeypadResponse,
    WSActionMessage,
    WSDisplayMessage,
    WSErrorMessage,
    WSKeyMessage,
    WSPingMessage,
    WSPongMessage,
    WSStartMessage,
    parse_ws_message,
)
from .services import CalculatorService, SessionNotFound
from .session import CalculatorSession, DisplaySnapshot
from .sink import CalculationSink

logger = get_logger("server")

# Seconds between idle-session sweeps
CLEANUP_INTERVAL = 60.0


def _display(snapshot: DisplaySnapshot) -> DisplayResponse:
    return DisplayResponse(**snapshot.to_dict())


async def _cleanup_idle_sessions(service: CalculatorService) -> None:
    """Background task that periodically closes idle sessions."""
    while True:
        try:
            await asyncio.sleep(CLEANUP_INTERVAL)
            service.cleanup_idle_sessions(service.config.session_idle_timeout)
        except asyncio.CancelledError:
            break
        except Exception as e:
            logger.error(f"Error in cleanup task: {e}")


def create_app(config: Optional[Config] = None, sink: Optional[CalculationSink] = None) -> FastAPI:
    """
    Build the API application.

    Args:
        config: Configuration (loaded from the environment if omitted)
        sink: Calculation sink override (built from config if omitted)
    """
    config = config or load_config()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Start record delivery on startup, flush it on shutdown."""
        logger.info("Starting calcpad server...")
        service = CalculatorService(config, sink=sink)
        service.start()
        app.state.service = service
        cleanup_task = asyncio.create_task(_cleanup_idle_sessions(service))
        logger.info(f"calcpad server started (sink={service.sink.name})")

        try:
            yield
        finally:
            logger.info("Shutting down calcpad server...")
            cleanup_task.cancel()
            try:
                await cleanup_task
            except asyncio.CancelledError:
                pass
            service.stop()
            logger.info("Graceful shutdown complete")

    app = FastAPI(
        title="calcpad API",
        description="Left-to-right calculator sessions over HTTP and WebSocket",
        version="1.0.0",
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.middleware("http")
    async def correlation_id_middleware(request: Request, call_next):
        """Middleware to handle correlation IDs."""
        correlation_id = request.headers.get("X-Correlation-ID", f"req_{uuid.uuid4().hex[:8]}")
        with correlation_scope(correlation_id):
            response = await call_next(request)
        response.headers["X-Correlation-ID"] = correlation_id
        return response

    @app.exception_handler(SessionNotFound)
    async def session_not_found_handler(request: Request, exc: SessionNotFound):
        return JSONResponse(status_code=404, content={"detail": f"Session not found: {exc.args[0]}"})

    def get_service() -> CalculatorService:
        return app.state.service

    # ============================================
    # Endpoints
    # ============================================

    @app.get("/health")
    async def health_check():
        """Health check endpoint with session and sink stats."""
        return {"status": "healthy", **get_service().get_status()}

    @app.get("/api/keypad", response_model=KeypadResponse)
    async def keypad():
        """Keypad layout for clients that draw their own buttons."""
        return {"rows": [[button.to_dict() for button in row] for row in BUTTONS]}

    @app.post("/api/sessions", response_model=DisplayResponse, status_code=201)
    async def create_session(request: Optional[CreateSessionRequest] = None):
        session_id = request.session_id if request else None
        session, _ = get_service().get_or_create_session(session_id)
        return _display(session.snapshot())

    @app.get("/api/sessions/{session_id}", response_model=DisplayResponse)
    async def get_session(session_id: str):
        return _display(get_service().get_session(session_id).snapshot())

    @app.delete("/api/sessions/{session_id}")
    async def close_session(session_id: str):
        get_service().close_session(session_id)
        return {"status": "closed", "session_id": session_id}

    @app.post("/api/sessions/{session_id}/actions", response_model=DisplayResponse)
    async def apply_action(session_id: str, request: ActionRequest):
        session = get_service().get_session(session_id)
        try:
            action = request.to_action()
        except ValueError as e:
            raise HTTPException(status_code=422, detail=str(e))
        return _display(session.dispatch(action))

    @app.post("/api/sessions/{session_id}/keys", response_model=DisplayResponse)
    async def press_key(session_id: str, request: KeyRequest):
        session = get_service().get_session(session_id)
        return _display(session.press(request.key))

    @app.websocket("/ws")
    async def websocket_endpoint(websocket: WebSocket):
        """
        WebSocket endpoint for key-by-key use.

        The first "action" or "key" message without a prior "start"
        opens a fresh session.
        """
        service = get_service()
        await websocket.accept()
        session: Optional[CalculatorSession] = None

        async def send_display(snapshot: DisplaySnapshot, correlation_id: Optional[str], is_new: bool = False):
            await websocket.send_json(
                WSDisplayMessage(
                    correlation_id=correlation_id,
                    is_new=is_new,
                    state=_display(snapshot),
                ).model_dump()
            )

        try:
            while True:
                data = await websocket.receive_text()

                try:
                    raw_message = json.loads(data)
                except json.JSONDecodeError:
                    await websocket.send_json(WSErrorMessage(content="Invalid JSON").model_dump())
                    continue

                parsed_message = parse_ws_message(raw_message) if isinstance(raw_message, dict) else None

                if isinstance(parsed_message, WSStartMessage):
                    session, is_new = service.get_or_create_session(parsed_message.session_id)
                    set_correlation_id(session.session_id)
                    await send_display(session.snapshot(), parsed_message.correlation_id, is_new)

                elif isinstance(parsed_message, (WSActionMessage, WSKeyMessage)):
                    is_new = False
                    if session is None:
                        session, is_new = service.get_or_create_session()
                        set_correlation_id(session.session_id)
                    else:
                        service.touch(session.session_id)

                    if isinstance(parsed_message, WSKeyMessage):
                        snapshot = session.press(parsed_message.key)
                    else:
                        try:
                            snapshot = session.dispatch(parsed_message.action.to_action())
                        except ValueError as e:
                            await websocket.send_json(
                                WSErrorMessage(content=str(e), correlation_id=parsed_message.correlation_id).model_dump()
                            )
                            continue
                    await send_display(snapshot, parsed_message.correlation_id, is_new)

                elif isinstance(parsed_message, WSPingMessage):
                    await websocket.send_json(WSPongMessage(correlation_id=parsed_message.correlation_id).model_dump())

                else:
                    msg_type = raw_message.get("type") if isinstance(raw_message, dict) else None
                    await websocket.send_json(
                        WSErrorMessage(content=f"Invalid or unknown message: {msg_type}").model_dump()
                    )

        except WebSocketDisconnect:
            logger.info(f"WebSocket disconnected (session={session.session_id if session else None})")

    return app


def main() -> None:
    """Run the API server with uvicorn."""
    import uvicorn

    config = load_config()
    setup_logging(level=config.log_level, log_file=config.log_file, json_format=config.log_json)
    uvicorn.run(create_app(config), host=config.host, port=config.port, log_level="info")


if __name__ == "__main__":
    main()
