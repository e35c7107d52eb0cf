import asyncio
from typing import Any, Dict, List, Optional, Tuple

from fastapi import FastAPI, WebSocket, WebSocketDisconnect
from fastapi.responses import JSONResponse
import uvicorn

from common import config, utils
from common.health_proto import HealthSample
from companion.receiver import HealthReceiver

logger = utils.get_logger("companion.api_server")

Subscriber = Tuple[asyncio.AbstractEventLoop, "asyncio.Queue[Dict[str, Any]]"]


def _sample_view(sample: HealthSample) -> Dict[str, Any]:
    view = sample.to_dict()
    view["time_iso"] = utils.epoch_to_iso(sample.timestamp)
    return view


def create_app(receiver: HealthReceiver) -> FastAPI:
    """Build the observation API around one receiver; the app holds no other state."""
    app = FastAPI(title="Vitals Relay Companion API", version="1.0")
    app.state.receiver = receiver
    subscribers: List[Subscriber] = []
    app.state.subscribers = subscribers

    def _broadcast(sample: HealthSample) -> None:
        view = _sample_view(sample)
        for loop, queue in list(subscribers):
            try:
                loop.call_soon_threadsafe(queue.put_nowait, view)
            except RuntimeError:
                # subscriber loop already closed
                logger.debug("Dropping update for closed subscriber loop")

    receiver.register_hook(_broadcast)

    @app.get("/health", response_class=JSONResponse)
    async def health_check():
        return {"status": "ok", "has_sample": receiver.has_sample}

    @app.get("/api/health/latest", response_class=JSONResponse)
    async def get_latest_sample():
        """Latest decoded sample, or a waiting status until the first valid payload arrives."""
        sample = receiver.latest_sample
        if sample is None:
            return {"status": "waiting", "sample": None}
        return {"status": "ok", "sample": _sample_view(sample)}

    @app.get("/api/metrics", response_class=JSONResponse)
    async def get_metrics():
        return receiver.channel.metrics.snapshot()

    @app.websocket("/ws/subscribe")
    async def subscribe(websocket: WebSocket):
        queue: "asyncio.Queue[Dict[str, Any]]" = asyncio.Queue()
        entry: Subscriber = (asyncio.get_running_loop(), queue)

        async def _until_disconnect() -> None:
            while True:
                await websocket.receive_text()

        watcher: Optional[asyncio.Future] = None
        try:
            subscribers.append(entry)
            await websocket.accept()
            logger.info("WebSocket subscriber connected (%d total)", len(subscribers))
            watcher = asyncio.ensure_future(_until_disconnect())
            sample: Optional[HealthSample] = receiver.latest_sample
            if sample is not None:
                await websocket.send_json(_sample_view(sample))
            while True:
                getter = asyncio.ensure_future(queue.get())
                done, _ = await asyncio.wait({getter, watcher}, return_when=asyncio.FIRST_COMPLETED)
                if watcher in done:
                    getter.cancel()
                    break
                await websocket.send_json(getter.result())
        except WebSocketDisconnect:
            pass
        finally:
            if watcher is not None:
                watcher.cancel()
                if watcher.done() and not watcher.cancelled():
                    # consume the disconnect so it is not reported as unretrieved
                    watcher.exception()
            if entry in subscribers:
                subscribers.remove(entry)
            logger.info("WebSocket subscriber disconnected (%d left)", len(subscribers))

    return app


def build_server(receiver: HealthReceiver, host: str = config.API_HOST, port: int = config.API_PORT) -> uvicorn.Server:
    """Uvicorn server to be awaited on the same event loop as the receiver's channel."""
    app = create_app(receiver)
    uv_config = uvicorn.Config(
        app,
        host=host,
        port=port,
        log_level=config.LOG_LEVEL.lower(),
        access_log=False,
    )
    logger.info("Observation API configured on http://%s:%d", host, port)
    return uvicorn.Server(uv_config)
