# main.py
import logging
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

import config
from db.connection import ConnectionManager
from errors import RecordError
from models.instructor import INSTRUCTOR
from models.student import STUDENT
from routes import instructors, students

logger = logging.getLogger(__name__)


async def record_error_handler(request: Request, exc: RecordError):
    if exc.status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc.reason}: {exc.message}")
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


async def request_validation_handler(request: Request, exc: RequestValidationError):
    logger.info(f"{request.method} {request.url.path} rejected malformed request: {exc.errors()}")
    return JSONResponse(
        status_code=400,
        content={"error": "ValidationError", "message": "Request body must be a JSON object"},
    )


async def unhandled_error_handler(request: Request, exc: Exception):
    logger.error(f"Unhandled error on {request.method} {request.url.path}", exc_info=exc)
    return JSONResponse(
        status_code=500,
        content={"error": "InternalError", "message": "Internal server error"},
    )


def create_app(connections: Optional[ConnectionManager] = None) -> FastAPI:
    app = FastAPI(title="Student Records API")

    app.add_middleware(
        CORSMiddleware,
        allow_origins=config.ALLOWED_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(students.router)
    app.include_router(instructors.router)

    app.add_exception_handler(RecordError, record_error_handler)
    app.add_exception_handler(RequestValidationError, request_validation_handler)
    app.add_exception_handler(Exception, unhandled_error_handler)

    @app.on_event("startup")
    async def startup_event():
        # Connection happens lazily on the first request; only the
        # configuration has to be present now.
        app.state.connections = connections or ConnectionManager(
            config.require_mongodb_uri(),
            config.MONGODB_DB,
            unique_email_collections=[STUDENT.collection, INSTRUCTOR.collection],
            server_selection_timeout_ms=config.MONGODB_SERVER_SELECTION_TIMEOUT_MS,
        )

    @app.on_event("shutdown")
    async def shutdown_event():
        await app.state.connections.close()

    return app


app = create_app()

if __name__ == "__main__":
    import uvicorn
    uvicorn.run("main:app", host=config.HOST, port=config.PORT, reload=True)
