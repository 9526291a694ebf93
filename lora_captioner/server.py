"""
FastAPI application: upload, process, logs, models/providers, download, test and cleanup routes.
"""

import math
import time
import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import List, Optional

from fastapi import APIRouter, Depends, FastAPI, File, Form, Query, Request, Response, UploadFile
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, PlainTextResponse, StreamingResponse
from starlette.concurrency import run_in_threadpool

from . import __version__
from .archive import ARCHIVE_NAME, export_archive
from .caption_generator import CaptionGenerator
from .config import (
    CORS_ORIGINS, DEFAULT_GEMINI_MODEL, DEFAULT_PROVIDER, CLEANUP_RETENTION_DAYS,
    MODEL_LIST_TIMEOUT_SECONDS, REQUEST_DELAY_SECONDS, TEST_TIMEOUT_SECONDS,
    ConfigValidator, RateLimitPreset
)
from .errors import CaptionerError, ErrorCode, classify, create_error, invalid_input
from .file_manager import FileManager
from .image_processor import BatchProcessor
from .providers import available_providers, lookup
from .rate_limit import RateLimiter
from .validation import (
    UploadedFile, check_file_count, prepare_uploads, validate_model_name, validate_process_form
)

router = APIRouter(prefix="/api")


def get_store(request: Request) -> FileManager:
    return request.app.state.store


def get_generator(request: Request) -> CaptionGenerator:
    return request.app.state.generator


def get_processor(request: Request) -> BatchProcessor:
    return request.app.state.processor


def client_identifier(request: Request) -> str:
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()
    real_ip = request.headers.get("x-real-ip")
    if real_ip:
        return real_ip
    return request.client.host if request.client else "unknown"


def rate_limited(tier: str):
    """Dependency enforcing the per-client limit for `tier` (strict, moderate, relaxed)."""

    def dependency(request: Request, response: Response):
        limiter: RateLimiter = request.app.state.rate_limiters[tier]
        result = limiter.check(client_identifier(request))
        headers = {
            "X-RateLimit-Limit": str(limiter.max_calls),
            "X-RateLimit-Remaining": str(result.remaining),
            "X-RateLimit-Reset": datetime.fromtimestamp(result.reset_at, tz=timezone.utc).isoformat(),
        }
        if not result.allowed:
            retry_after = max(1, math.ceil(result.reset_at - time.time()))
            headers["Retry-After"] = str(retry_after)
            raise CaptionerError(create_error(
                ErrorCode.RATE_LIMIT_EXCEEDED,
                "Too many requests",
                "You have exceeded the rate limit. Please try again later.",
                f"Retry in {retry_after} seconds.",
                429,
            ), headers=headers)
        response.headers.update(headers)

    return dependency


def _gemini_model_listing(generator: CaptionGenerator) -> List[dict]:
    client = generator.client_for("gemini", timeout=MODEL_LIST_TIMEOUT_SECONDS)
    return client.list_models()


@router.post("/upload", dependencies=[Depends(rate_limited("moderate"))])
async def upload(files: Optional[List[UploadFile]] = File(None), store: FileManager = Depends(get_store)):
    files = files or []
    # Reject oversized batches before reading any content
    check_file_count(len(files))

    uploads = []
    for upload_file in files:
        data = await upload_file.read()
        uploads.append(UploadedFile(upload_file.filename, upload_file.content_type, data))

    images = prepare_uploads(uploads)

    try:
        await run_in_threadpool(store.set_uploaded_images, images)
    except Exception as e:
        app_error = classify(e, "File upload")
        logging.error(app_error.to_log("POST /api/upload"))
        raise CaptionerError(app_error) from e

    await run_in_threadpool(store.add_log, f"Uploaded {len(images)} images")
    return {"success": True, "count": len(images)}


@router.post("/process", dependencies=[Depends(rate_limited("strict"))])
def process(
    provider: str = Form(DEFAULT_PROVIDER),
    model_name: str = Form(DEFAULT_GEMINI_MODEL, alias="modelName"),
    prefix: str = Form(""),
    keyword: str = Form(""),
    checkpoint: str = Form(""),
    caption_guidance: str = Form("", alias="captionGuidance"),
    negative_hints: str = Form("", alias="negativeHints"),
    caption_length: str = Form("Medium", alias="captionLength"),
    strict_focus: str = Form("false", alias="strictFocus"),
    store: FileManager = Depends(get_store),
    processor: BatchProcessor = Depends(get_processor),
):
    prefix, options = validate_process_form(
        provider, prefix, keyword, checkpoint, caption_guidance,
        negative_hints, caption_length, strict_focus.lower() == "true",
    )
    validate_model_name(model_name)

    images = store.get_uploaded_images()
    if not images:
        raise invalid_input(
            "No images uploaded",
            "The image store is empty",
            "Please upload images first before processing.",
        )

    try:
        summary = processor.run(images, options, provider, model_name, prefix)
    except CaptionerError:
        raise
    except Exception as e:
        app_error = classify(e, "Image processing")
        logging.error(app_error.to_log("POST /api/process"))
        store.add_log(f"❌ Processing failed: {app_error.message}")
        if app_error.suggestion:
            store.add_log(f"💡 Suggestion: {app_error.suggestion}")
        raise CaptionerError(app_error) from e

    return {
        "status": "done",
        "count": len(summary.results),
        "successCount": summary.success_count,
        "errorCount": summary.error_count,
    }


@router.get("/logs", response_class=PlainTextResponse)
def get_logs(store: FileManager = Depends(get_store)):
    return PlainTextResponse(store.get_logs())


@router.delete("/logs")
def clear_logs(store: FileManager = Depends(get_store)):
    store.clear_logs()
    return {"success": True}


@router.get("/models", dependencies=[Depends(rate_limited("relaxed"))])
def models(generator: CaptionGenerator = Depends(get_generator)):
    if not ConfigValidator(generator.environment).is_usable("gemini"):
        return {"error": "Gemini API key is not configured", "models": []}

    try:
        listing = _gemini_model_listing(generator)
    except Exception as e:
        app_error = classify(e, "Gemini model listing")
        logging.error(app_error.to_log("GET /api/models"))
        return {"error": app_error.message, "models": []}

    return {"models": listing, "count": len(listing)}


@router.get("/providers", dependencies=[Depends(rate_limited("relaxed"))])
def providers(generator: CaptionGenerator = Depends(get_generator)):
    env = generator.environment
    gemini_models = None
    if ConfigValidator(env).is_usable("gemini"):
        try:
            gemini_models = [model["name"] for model in _gemini_model_listing(generator)]
        except Exception as e:
            logging.warning(f"Failed to fetch Gemini models, using static list: {e}")

    return {"providers": available_providers(env, gemini_models)}


@router.get("/status")
def status(generator: CaptionGenerator = Depends(get_generator)):
    return ConfigValidator(generator.environment).to_dict()


@router.get("/download")
def download(store: FileManager = Depends(get_store)):
    stream = export_archive(store.get_processed_results())
    return StreamingResponse(
        stream,
        media_type="application/zip",
        headers={"Content-Disposition": f"attachment; filename={ARCHIVE_NAME}"},
    )


@router.get("/test", dependencies=[Depends(rate_limited("strict"))])
def connection_test(
    provider: str = Query(DEFAULT_PROVIDER),
    model: Optional[str] = Query(None),
    generator: CaptionGenerator = Depends(get_generator),
):
    provider_config = lookup(provider)
    if model is None:
        model = DEFAULT_GEMINI_MODEL if provider == "gemini" else provider_config.known_models[0]
    validate_model_name(model)

    try:
        client = generator.client_for(provider, timeout=TEST_TIMEOUT_SECONDS)
        text = client.test_connection(model)
    except Exception as e:
        app_error = classify(e, f"{provider_config.display_name} API test")
        logging.error(app_error.to_log("GET /api/test"))
        return JSONResponse({
            "success": False,
            "error": app_error.message,
            "code": app_error.code.value,
            "suggestion": app_error.suggestion,
        }, status_code=app_error.status_code)

    return {
        "success": True,
        "message": f"API connection successful with {model}! Response: {text}",
    }


@router.post("/cleanup", dependencies=[Depends(rate_limited("moderate"))])
def cleanup_all(store: FileManager = Depends(get_store)):
    try:
        store.clear_all()
    except Exception as e:
        app_error = classify(e, "Cleanup all files")
        logging.error(app_error.to_log("POST /api/cleanup"))
        raise CaptionerError(app_error) from e
    return {"success": True, "message": "All files cleared successfully"}


@router.get("/cleanup", dependencies=[Depends(rate_limited("moderate"))])
def cleanup_old(store: FileManager = Depends(get_store)):
    try:
        removed = store.cleanup_old_files(CLEANUP_RETENTION_DAYS)
    except Exception as e:
        app_error = classify(e, "Cleanup old files")
        logging.error(app_error.to_log("GET /api/cleanup"))
        raise CaptionerError(app_error) from e
    return {"success": True, "message": "Old files cleaned up successfully", "removed": removed}


async def handle_captioner_error(request: Request, exc: CaptionerError):
    return JSONResponse(exc.error.to_response(), status_code=exc.error.status_code, headers=exc.headers)


def create_app(store: Optional[FileManager] = None, generator: Optional[CaptionGenerator] = None,
               request_delay: float = REQUEST_DELAY_SECONDS) -> FastAPI:
    """Build the API around an explicit store and caption generator."""
    store = store or FileManager()
    generator = generator or CaptionGenerator()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        ConfigValidator(generator.environment).log_status()
        logging.info("[captioner] Routes: /api/upload /api/process /api/logs /api/models "
                     "/api/providers /api/status /api/download /api/test /api/cleanup")
        yield

    app = FastAPI(title="LoRA Captioner", version=__version__, lifespan=lifespan)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.state.store = store
    app.state.generator = generator
    app.state.processor = BatchProcessor(store, generator, request_delay=request_delay)
    app.state.rate_limiters = {
        "strict": RateLimiter.from_preset(RateLimitPreset.STRICT),
        "moderate": RateLimiter.from_preset(RateLimitPreset.MODERATE),
        "relaxed": RateLimiter.from_preset(RateLimitPreset.RELAXED),
    }

    app.add_exception_handler(CaptionerError, handle_captioner_error)
    app.include_router(router)

    @app.get("/")
    async def root():
        return {"message": "LoRA Captioner API"}

    return app
