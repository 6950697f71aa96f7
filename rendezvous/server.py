import argparse
import logging
import os
import uuid
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, WebSocket, WebSocketDisconnect
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.staticfiles import StaticFiles

from .config import LOG_FORMAT, LOG_LEVELS, PRESENCE_MODES, Settings
from .dispatcher import RelayDispatcher
from .hub import Connection, ConnectionHub

logger = logging.getLogger(__name__)


def create_app(settings: Optional[Settings] = None, hub: Optional[ConnectionHub] = None) -> FastAPI:
    """Build the relay application around its own hub and registry."""

    settings = settings or Settings.from_env()
    hub = hub if hub is not None else ConnectionHub()

    # --------------------------------------------------------------------------
    # Startup
    # --------------------------------------------------------------------------
    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info(
            "Signaling relay ready on ws://%s:%s%s (presence mode: %s)",
            settings.host,
            settings.port,
            settings.ws_path,
            settings.presence_mode,
        )
        yield
        await hub.close_all()

    app = FastAPI(title="rendezvous relay", version="0.1.0", lifespan=lifespan)
    app.state.settings = settings
    app.state.hub = hub

    app.add_middleware(
        CORSMiddleware,
        allow_origins=list(settings.cors_origins),
        allow_methods=["GET"],
        allow_headers=["*"],
    )

    # --------------------------------------------------------------------------
    # WebSocket endpoint
    # --------------------------------------------------------------------------
    @app.websocket(settings.ws_path)
    async def relay_socket(ws: WebSocket):
        await ws.accept()
        connection = Connection(ws, uuid.uuid4().hex)
        dispatcher = RelayDispatcher(hub, connection, presence_mode=settings.presence_mode)
        try:
            await dispatcher.open()
            while True:
                message = await ws.receive()
                if message["type"] == "websocket.disconnect":
                    break
                raw = message.get("text")
                if raw is None:
                    raw = message.get("bytes")
                if raw is None:
                    continue
                await dispatcher.handle_frame(raw)
        except WebSocketDisconnect:
            pass
        except Exception:
            logger.exception("Connection %s failed", connection.connection_id)
        finally:
            await dispatcher.close()
            await connection.close()

    # --------------------------------------------------------------------------
    # Control endpoints
    # --------------------------------------------------------------------------
    @app.get("/presence")
    async def presence():
        return JSONResponse(
            {
                "participants": sorted(hub.registry.snapshot_ids()),
                "connections": len(hub),
                "presence_mode": settings.presence_mode,
            }
        )

    @app.get("/healthz")
    async def healthz():
        return {"ok": True}

    # Mounted last so the routes above take precedence over "/".
    if settings.static_dir and os.path.isdir(settings.static_dir):
        app.mount("/", StaticFiles(directory=settings.static_dir, html=True), name="static")
        logger.info("Serving static files from %s", os.path.abspath(settings.static_dir))

    return app


app = create_app()


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Run the rendezvous signaling relay.")
    parser.add_argument("--host", help="Bind address (RENDEZVOUS_HOST).")
    parser.add_argument("--port", type=int, help="Listening port (RENDEZVOUS_PORT or PORT).")
    parser.add_argument("--presence-mode", choices=PRESENCE_MODES, help="How announces are advertised.")
    parser.add_argument("--static-dir", help="Directory of client assets to serve at '/'.")
    parser.add_argument("--log-level", choices=LOG_LEVELS, help="Logging level.")
    return parser


def main(argv=None):
    import uvicorn

    args = build_parser().parse_args(argv)
    settings = Settings.from_env().override(
        host=args.host,
        port=args.port,
        presence_mode=args.presence_mode,
        static_dir=args.static_dir,
        log_level=args.log_level,
    )
    logging.basicConfig(level=settings.log_level.upper(), format=LOG_FORMAT)

    uvicorn.run(
        create_app(settings),
        host=settings.host,
        port=settings.port,
        log_level=settings.log_level,
        ws_max_size=settings.ws_max_size,
        loop="uvloop" if settings.uvloop else "auto",
    )


if __name__ == "__main__":
    main()
