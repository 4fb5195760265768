import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from pakete.api.packages import router as packages_router
from pakete.core import dependencies
from pakete.core.config import IndexerConfig

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)


app = FastAPI(
    title="pakete",
    version="0.1.0",
    description="Read-only search API over CRAN package metadata.",
)


@app.on_event("startup")
async def startup_event() -> None:
    """
    Open the database (creating the schema if needed) so the first request
    does not pay for it.
    """
    dependencies.get_db_manager()
    logger.info(f"Serving packages from {dependencies.get_config().database_path}")


@app.on_event("shutdown")
async def shutdown_event() -> None:
    dependencies.shutdown()


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    message = "Not Found" if exc.status_code == 404 else str(exc.detail)
    return JSONResponse(status_code=exc.status_code, content={"error": message})


@app.get("/health")
async def health() -> dict:
    """
    Lightweight health check endpoint.
    """
    return {"status": "ok"}


app.include_router(packages_router, prefix="/api", tags=["packages"])


def serve(config: IndexerConfig) -> None:
    """Start the uvicorn server for the given configuration."""
    import uvicorn

    dependencies.configure(config)
    logger.info(f"Server is running on {config.host}:{config.port}")
    uvicorn.run(app, host=config.host, port=config.port)


if __name__ == "__main__":
    serve(IndexerConfig.load())
