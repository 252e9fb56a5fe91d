"""
Ride Dispatch Backend
=====================
Entry point. Run with: uvicorn main:app --reload

``app`` is the FastAPI application wrapped by the Socket.IO chat relay;
REST lives under ``/api/v1``, the relay under ``/socket.io``.
"""

import socketio
import uvicorn

from dispatch.api.app import create_app
from dispatch.api.realtime import sio

api = create_app()
app = socketio.ASGIApp(sio, other_asgi_app=api)

if __name__ == "__main__":
    uvicorn.run("main:app", host="0.0.0.0", port=8000, reload=True)
