"""
FastAPI entrypoint with a single analysis route.

- POST /api/mcp (alias /analyze): multipart upload, one spreadsheet under `file`
- GET /health: liveness probe

The app is built by create_app(settings, client) so tests can inject a
scripted model client; the module-level `app` reads its settings from the
environment (.env loaded via python-dotenv).
"""

import os
import logging
from dotenv import load_dotenv

# Load environment variables from .env file
load_dotenv()

# Configure logging
logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO").upper(),
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

from typing import Optional

from fastapi import FastAPI, File, Request, UploadFile
from fastapi.concurrency import run_in_threadpool
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from .config import Settings
from .errors import InputError, PipelineError
from .llm_client import ModelClient
from .pipeline import AnalysisPipeline
from .schemas import AnalysisResponse, ErrorResponse

ERROR_RESPONSES = {
    400: {"model": ErrorResponse},
    500: {"model": ErrorResponse},
    502: {"model": ErrorResponse},
}


def create_app(settings: Optional[Settings] = None, client: Optional[ModelClient] = None) -> FastAPI:
    settings = settings or Settings.from_env()
    pipeline = AnalysisPipeline(settings, client=client)

    app = FastAPI(title="Sales Insight Pipeline")
    app.state.pipeline = pipeline

    @app.exception_handler(PipelineError)
    async def pipeline_error_handler(request: Request, exc: PipelineError):
        if exc.stage:
            logger.error(
                f"Request failed at stage '{exc.stage}' after {len(exc.transcript)} completed stage(s): {exc.message}"
            )
        return JSONResponse(status_code=exc.status_code, content={"error": exc.message})

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(request: Request, exc: RequestValidationError):
        fields = [".".join(str(p) for p in err.get("loc", ())) for err in exc.errors()]
        logger.warning(f"Rejected malformed request: {exc.errors()}")
        error = InputError(f"Invalid request: expected a spreadsheet upload ({', '.join(fields)})")
        return JSONResponse(status_code=error.status_code, content={"error": error.message})

    @app.get("/health")
    async def health():
        return {"status": "ok"}

    @app.post("/api/mcp", response_model=AnalysisResponse, responses=ERROR_RESPONSES)
    @app.post("/analyze", response_model=AnalysisResponse, responses=ERROR_RESPONSES)
    async def analyze_endpoint(file: Optional[UploadFile] = File(None)):
        if file is None:
            raise InputError("No spreadsheet file provided")

        content = await file.read()
        try:
            return await run_in_threadpool(pipeline.analyze_upload, file.filename, content)
        except PipelineError:
            raise
        except Exception:
            logger.exception("Unexpected error while processing upload")
            raise PipelineError("Internal server error")

    return app


app = create_app()
