"""
AEO Schema Generator - FastAPI Application
Main entry point with REST API endpoints.
"""
from contextlib import asynccontextmanager
from typing import Any, Dict, List, Optional

from fastapi import FastAPI, HTTPException, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, Field

from aeo_schema.adapters.browser import BrowserManager
from aeo_schema.adapters.claude_client import ClaudeClient
from aeo_schema.adapters.crawler_access import CrawlerAccessChecker
from aeo_schema.adapters.page_scraper import PageScraper
from aeo_schema.config import config
from aeo_schema.errors import status_for_kind
from aeo_schema.layers.persistence import (
    InMemoryCreditLedger,
    InMemoryGenerationStore,
    InMemoryUrlLibrary,
    InMemoryUsageTracker,
)
from aeo_schema.layers.pipeline import SchemaPipeline
from aeo_schema.models.schema import (
    GenerationOptions,
    GenerationRequest,
    RefinementRequest,
    RefinementResult,
    SchemaGenerationResult,
)
from aeo_schema.utils.logger import get_logger, set_trace_id

logger = get_logger("main")

# Initialize components
browser_manager = BrowserManager()
crawler_checker = CrawlerAccessChecker(timeout=config.REQUEST_TIMEOUT)
pipeline = SchemaPipeline(
    scraper=PageScraper(browser_manager),
    ai_client=ClaudeClient(),
    store=InMemoryGenerationStore(),
    ledger=InMemoryCreditLedger(),
    usage=InMemoryUsageTracker(),
    url_library=InMemoryUrlLibrary(),
)


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("startup", host=config.HOST, port=config.PORT, anthropic_configured=config.is_anthropic_configured())
    yield
    # uvicorn turns SIGINT/SIGTERM into this shutdown phase
    logger.info("shutdown", active_pages=browser_manager.active_pages)
    await browser_manager.close()


# Initialize FastAPI app
app = FastAPI(
    title="AEO Schema Generator",
    description="Generates, validates and scores schema.org JSON-LD for web pages",
    version="1.0.0",
    lifespan=lifespan,
    debug=config.DEBUG,
)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# Request models
class GenerateRequest(BaseModel):
    """Request model for schema generation."""
    url: str
    user_id: str
    schema_type: Optional[str] = None
    requested_schema_types: List[str] = Field(default_factory=list)
    multi_attempt: bool = False

    def options(self) -> GenerationOptions:
        return GenerationOptions(
            schema_type=self.schema_type,
            requested_schema_types=self.requested_schema_types,
            multi_attempt=self.multi_attempt,
        )


class BatchGenerateRequest(BaseModel):
    """Request model for batch generation."""
    urls: List[str] = Field(min_length=1)
    user_id: str
    schema_type: Optional[str] = None
    requested_schema_types: List[str] = Field(default_factory=list)


class RefineRequest(BaseModel):
    """Request model for schema refinement."""
    url: str
    user_id: str
    schemas: List[Dict[str, Any]] = Field(min_length=1)
    generation_id: Optional[str] = None


class ValidateRequest(BaseModel):
    """Request model for schema validation."""
    schemas: List[Dict[str, Any]] = Field(min_length=1)


def _client_context(request: Request) -> Dict[str, Optional[str]]:
    return {
        "ip_address": request.client.host if request.client else None,
        "user_agent": request.headers.get("user-agent"),
    }


def _raise_for_failure(result: Any, trace_id: str) -> None:
    """Turn an unsuccessful pipeline result into an HTTP error carrying only the user message."""
    if result.success:
        return
    detail: Dict[str, Any] = {
        "message": result.error_message,
        "error_kind": result.error_kind,
        "generation_id": result.generation_id,
        "trace_id": trace_id,
    }
    if isinstance(result, SchemaGenerationResult):
        detail["retryable"] = result.retryable
        detail["failure_stage"] = result.failure_stage.value if result.failure_stage else None
        if result.schemas:
            detail["schemas"] = result.schemas
            detail["html_output"] = result.html_output
    raise HTTPException(status_code=status_for_kind(result.error_kind), detail=detail)


# API Routes
@app.get("/api/health")
async def health_check():
    """Health check endpoint."""
    return {
        "status": "healthy",
        "version": "1.0.0",
        "browser_running": browser_manager.is_running,
        "ai_available": pipeline.ai_client.is_available(),
    }


@app.post("/api/generate")
async def generate_schema(body: GenerateRequest, request: Request):
    """Scrape a URL and generate validated, scored JSON-LD for it."""
    trace_id = set_trace_id()
    logger.info("schema_generation_request", url=body.url, user_id=body.user_id, trace_id=trace_id)

    result = await pipeline.generate(
        GenerationRequest(url=body.url, user_id=body.user_id, options=body.options(), **_client_context(request))
    )
    _raise_for_failure(result, trace_id)
    return {**result.model_dump(mode="json", by_alias=True), "trace_id": trace_id}


@app.post("/api/generate/batch")
async def generate_batch(body: BatchGenerateRequest, request: Request):
    """Generate for several URLs, one after another. Each item reports its own outcome."""
    trace_id = set_trace_id()
    logger.info("batch_generation_request", url_count=len(body.urls), user_id=body.user_id, trace_id=trace_id)

    options = GenerationOptions(schema_type=body.schema_type, requested_schema_types=body.requested_schema_types)
    context = _client_context(request)
    results = await pipeline.generate_batch([
        GenerationRequest(url=url, user_id=body.user_id, options=options, **context) for url in body.urls
    ])
    return {
        "results": [r.model_dump(mode="json", by_alias=True) for r in results],
        "succeeded": sum(1 for r in results if r.success),
        "failed": sum(1 for r in results if not r.success),
        "trace_id": trace_id,
    }


@app.post("/api/refine")
async def refine_schema(body: RefineRequest):
    """Refine previously generated schemas. Does not consume credits."""
    trace_id = set_trace_id()
    logger.info("schema_refinement_request", url=body.url, generation_id=body.generation_id, trace_id=trace_id)

    result: RefinementResult = await pipeline.refine(
        RefinementRequest(url=body.url, user_id=body.user_id, schemas=body.schemas, generation_id=body.generation_id)
    )
    _raise_for_failure(result, trace_id)
    return {**result.model_dump(mode="json", by_alias=True), "trace_id": trace_id}


@app.post("/api/validate")
async def validate_schemas(body: ValidateRequest):
    """Sanitize, validate and score caller-supplied schemas."""
    trace_id = set_trace_id()
    evaluation = pipeline.evaluate(body.schemas)
    return {**evaluation.model_dump(mode="json", by_alias=True), "trace_id": trace_id}


@app.get("/api/check-url")
async def check_url(url: str = Query(..., description="URL to check for crawler restrictions")):
    """Report robots.txt, X-Robots-Tag and meta robots restrictions for a URL."""
    trace_id = set_trace_id()
    logger.info("crawler_access_request", url=url, trace_id=trace_id)

    result = await crawler_checker.check(url)
    return {"url": url, **result.to_dict(), "trace_id": trace_id}


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host=config.HOST, port=config.PORT)
