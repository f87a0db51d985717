"""
FastAPI application entry point
"""
from fastapi import FastAPI

from offline_mirror.api.routes import router
from offline_mirror.config import settings

app = FastAPI(
    title="Offline Image Mirror",
    description="Mirror pipeline container images to a controlled registry",
    version="1.0.0"
)

app.include_router(router, prefix="/api")


@app.get("/")
async def root():
    return {
        "name": "Offline Image Mirror API",
        "version": "1.0.0",
        "docs": "/docs"
    }


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "offline_mirror.main:app",
        host=settings.app_host,
        port=settings.app_port
    )
