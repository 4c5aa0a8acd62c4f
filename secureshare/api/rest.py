"""
REST API for a SecureShare Node

Design Decision: API Framework
==============================

Options Considered:
1. FastAPI - async, pydantic validation, auto-docs
2. Flask - sync-focused
3. aiohttp - async, fewer features

Decision: FastAPI
- Runs on the same event loop as the node
- Pydantic models for requests and responses

The API is a thin presentation layer: every response is built from the
session snapshot, and every action calls the node.
"""

import logging
from pathlib import Path
from typing import Optional, Dict, Any
from contextlib import asynccontextmanager

from fastapi import FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel

from .. import __version__
from ..errors import SecureShareError
from ..identity import is_valid_session_id

logger = logging.getLogger(__name__)

# Global reference to the node (set when app is created)
_node = None


# === Pydantic Models ===

class ConnectRequest(BaseModel):
    """Request to start the handshake with a peer."""
    peer_id: str


class SendRequest(BaseModel):
    """Request to send a file."""
    file_path: str


class SessionStatus(BaseModel):
    """Session snapshot response."""
    role: str
    session_id: str
    peer_id: Optional[str] = None
    state: str
    status: str
    error_kind: Optional[str] = None
    file_name: Optional[str] = None
    result_path: Optional[str] = None
    framing: Optional[str] = None
    registered: bool
    running: bool
    progress: Dict[str, Any]
    last_chunk: Optional[Dict[str, Any]] = None


# === API Creation ===

def create_app(node=None) -> FastAPI:
    """
    Create the FastAPI application.

    Args:
        node: SecureShareNode instance to control

    Returns:
        FastAPI application
    """
    global _node
    _node = node

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info("API server starting...")
        yield
        logger.info("API server stopping...")

    app = FastAPI(
        title="SecureShare API",
        description="REST API for end-to-end encrypted peer-to-peer file transfer",
        version=__version__,
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["http://localhost:3000", "http://127.0.0.1:3000"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    def require_node():
        if not _node:
            raise HTTPException(status_code=503, detail="Node not initialized")
        return _node

    # === Endpoints ===

    @app.get("/", tags=["General"])
    async def root():
        """API root - basic info."""
        return {
            "name": "SecureShare",
            "version": __version__,
            "status": "running" if _node and _node.is_running else "not running",
        }

    @app.get("/status", response_model=SessionStatus, tags=["Session"])
    async def get_status():
        """Get the session snapshot."""
        node = require_node()
        return SessionStatus(**node.get_status())

    @app.get("/progress", tags=["Session"])
    async def get_progress():
        """Get transfer progress."""
        node = require_node()
        snapshot = node.get_status()
        return {
            "state": snapshot['state'],
            "status": snapshot['status'],
            **snapshot['progress'],
        }

    @app.get("/chunk", tags=["Session"])
    async def get_last_chunk():
        """Get the most recently processed chunk."""
        node = require_node()
        chunk = node.get_status()['last_chunk']
        if chunk is None:
            raise HTTPException(status_code=404, detail="No chunk processed yet")
        return chunk

    # === Actions ===

    @app.post("/connect", tags=["Session"])
    async def connect(request: ConnectRequest):
        """Start the handshake with a peer."""
        node = require_node()
        peer_id = request.peer_id.strip().upper()
        if not is_valid_session_id(peer_id):
            raise HTTPException(status_code=400, detail=f"Invalid session id: {request.peer_id}")

        logger.info(f"Connect request for peer {peer_id}")
        try:
            await node.connect(peer_id)
        except SecureShareError as e:
            raise HTTPException(status_code=409, detail=str(e))
        return {"success": True, "peer_id": peer_id, "state": node.state.value}

    @app.post("/send", tags=["Session"])
    async def send_file(request: SendRequest):
        """Send a file to the connected peer."""
        node = require_node()
        file_path = Path(request.file_path)
        if not file_path.is_absolute():
            file_path = file_path.resolve()

        logger.info(f"Send request for: {file_path}")

        if not file_path.exists():
            raise HTTPException(status_code=404, detail=f"File not found: {file_path}")
        if not file_path.is_file():
            raise HTTPException(status_code=400, detail=f"Not a file: {file_path}")

        try:
            manifest = await node.send_file(file_path)
        except RuntimeError as e:
            raise HTTPException(status_code=400, detail=str(e))
        except SecureShareError as e:
            raise HTTPException(status_code=409, detail=str(e))

        return {
            "success": True,
            "file_name": manifest.file_name,
            "total_size": manifest.total_size,
            "state": node.state.value,
        }

    return app


async def run_api_server(node, host: str = "127.0.0.1", port: int = 8080):
    """
    Run the API server.

    Args:
        node: SecureShareNode instance
        host: Host to bind to
        port: Port to listen on
    """
    import uvicorn

    app = create_app(node)

    config = uvicorn.Config(
        app,
        host=host,
        port=port,
        log_level="info",
    )
    server = uvicorn.Server(config)
    await server.serve()
