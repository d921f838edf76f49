from __future__ import annotations

from contextlib import asynccontextmanager

from fastapi import FastAPI

from ldes_publisher.publisher import LDESPublisher
from ldes_publisher.router import router as ldes_router
from ldes_publisher.settings import settings
from ldes_publisher.utils import logger


@asynccontextmanager
async def lifespan(app: FastAPI):
    publisher = LDESPublisher(settings)
    app.state.publisher = publisher
    if await publisher.initialise():
        logger.info(f"Publishing to {publisher.lil_url}")
    else:
        logger.error("LDES publisher failed to initialise; /ldes/publish will answer 503")
    try:
        yield
    finally:
        await publisher.close()


app = FastAPI(title=settings.service_name, version=settings.service_version, lifespan=lifespan)
app.include_router(ldes_router)


@app.get("/health")
def health():
    publisher = getattr(app.state, "publisher", None)
    return {
        "ok": True,
        "service": settings.service_name,
        "version": settings.service_version,
        "lil_url": settings.lil_url,
        "initialised": bool(publisher and publisher.initialised),
        "pending_syncs": len(publisher.pending_syncs) if publisher else 0,
        "sync_failures": publisher.sync_failures if publisher else 0,
    }


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=settings.port)
