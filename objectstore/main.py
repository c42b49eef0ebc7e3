from typing import Optional

import uvicorn
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from objectstore.config import Settings, get_settings
from objectstore.errors import ObjectStoreError
from objectstore.logging import get_logger, setup_logging
from objectstore.routes import router as s3_routes, status_for
from objectstore.service import ObjectStorageService

logger = get_logger("app")


def create_app(storage: Optional[ObjectStorageService] = None, settings: Optional[Settings] = None) -> FastAPI:
    settings = settings or (storage.settings if storage is not None else get_settings())
    # Buckets own the root namespace; generated docs move under /_api,
    # which no valid bucket name can collide with
    app = FastAPI(
        title="Python ObjectStorage S3",
        docs_url="/_api/docs",
        redoc_url=None,
        openapi_url="/_api/openapi.json",
    )
    app.state.storage = storage or ObjectStorageService(settings=settings)

    # Initialize DB on startup
    @app.on_event("startup")
    def on_startup():
        setup_logging(settings)
        app.state.storage.init_schema()
        logger.info("objectstore_started", database=app.state.storage.engine.dialect.name)

    @app.on_event("shutdown")
    def on_shutdown():
        app.state.storage.close()

    @app.exception_handler(ObjectStoreError)
    async def object_store_error_handler(request: Request, exc: ObjectStoreError):
        status_code = status_for(exc)
        if status_code >= 500:
            logger.error("request_failed", path=request.url.path, code=exc.code, error=exc.message)
        return JSONResponse(status_code=status_code, content={"detail": exc.code, "message": exc.message})

    # S3 buckets live at the root, so the router is mounted without a prefix
    app.include_router(s3_routes)
    return app


def run() -> None:
    settings = get_settings()
    uvicorn.run("objectstore.main:create_app", factory=True, host=settings.host, port=settings.port)


if __name__ == "__main__":
    run()
