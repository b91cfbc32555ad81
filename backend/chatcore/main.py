import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from redis.asyncio import Redis

from chatcore.config import Settings, get_settings
from chatcore.container import Container
from chatcore.database.connection import MongoConnection
from chatcore.errors import ChatError, StoreUnavailableError
from chatcore.routers.conversations import router as conversations_router
from chatcore.routers.messages import router as messages_router
from chatcore.routers.presence import router as presence_router
from chatcore.routers.realtime import router as realtime_router

logger = logging.getLogger(__name__)


def create_app(settings: Optional[Settings] = None, container: Optional[Container] = None) -> FastAPI:
    settings = settings or (container.settings if container else get_settings())
    logging.basicConfig(
        level=settings.LOG_LEVEL,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if container is not None:
            app.state.container = container
            await container.start()
            try:
                yield
            finally:
                await container.stop()
            return

        mongo = MongoConnection(settings)
        db = await mongo.connect()
        redis = Redis.from_url(settings.REDIS_URL, decode_responses=True) if settings.REDIS_URL else None
        if redis is None:
            logger.info("REDIS_URL not set; message cache disabled, events stay on this worker")
        app.state.container = Container(settings, db, redis)
        await app.state.container.start()
        try:
            yield
        finally:
            await app.state.container.stop()
            if redis is not None:
                await redis.aclose()
            await mongo.close()

    app = FastAPI(title="Direct Messaging API", lifespan=lifespan)
    if container is not None:
        app.state.container = container

    @app.exception_handler(ChatError)
    async def chat_error_handler(request: Request, exc: ChatError):
        if isinstance(exc, StoreUnavailableError):
            logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
        return JSONResponse(status_code=exc.status_code, content={"success": False, "message": exc.message})

    app.include_router(conversations_router)
    app.include_router(messages_router)
    app.include_router(presence_router)
    app.include_router(realtime_router)

    @app.get("/")
    async def root():
        return {"message": "Direct messaging service is running"}

    return app


app = create_app()


def run() -> None:
    import uvicorn

    settings = get_settings()
    uvicorn.run("chatcore.main:app", host=settings.HOST, port=settings.PORT)


if __name__ == "__main__":
    run()
