import logging
from typing import Any, Optional, Union

from fastapi import Depends, FastAPI
from fastapi.concurrency import run_in_threadpool
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from ai_decision import DecisionProducer
from decision import AUTO_LANGUAGE, DecisionOrchestrator
from errors import OcrFailure, RateLimited, SafePlateError
from localize import LabelCache
from ocr import OcrEngine, normalize_psm, parse_image_data_url
from providers import build_provider
from rate_limit import Cooldown
from settings import Settings

# =========================
# Env toggles + logging
# =========================
_SETTINGS: Optional[Settings] = None


def get_settings() -> Settings:
    global _SETTINGS
    if _SETTINGS is None:
        _SETTINGS = Settings.from_env()
    return _SETTINGS


logging.basicConfig(
    level=get_settings().log_level,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger("safeplate")

# =========================
# FastAPI setup + CORS
# =========================
app = FastAPI(title="SafePlate Decision Card Service", version="1.0")
app.add_middleware(
    CORSMiddleware,
    allow_origins=get_settings().cors_origin_list,
    allow_methods=["*"],
    allow_headers=["*"],
)

# =========================
# Lazy singletons (one per process)
# =========================
_ORCHESTRATOR: Optional[DecisionOrchestrator] = None
_OCR: Optional[OcrEngine] = None


def get_orchestrator() -> DecisionOrchestrator:
    global _ORCHESTRATOR
    if _ORCHESTRATOR is None:
        settings = get_settings()
        producer = DecisionProducer(build_provider(settings)) if settings.use_ai else None
        _ORCHESTRATOR = DecisionOrchestrator(settings, producer, Cooldown(), LabelCache())
    return _ORCHESTRATOR


def get_ocr() -> OcrEngine:
    global _OCR
    if _OCR is None:
        settings = get_settings()
        _OCR = OcrEngine(settings.ocr_model_id, enabled=settings.use_trocr)
    return _OCR


# =========================
# Request bodies
# =========================
class OcrOptions(BaseModel):
    psm: Optional[Union[int, str]] = None


class OcrRequest(BaseModel):
    imageDataUrl: Any = None
    options: OcrOptions = OcrOptions()


class DecisionRequest(BaseModel):
    scannedText: Optional[str] = ""
    language: Optional[str] = AUTO_LANGUAGE


def ai_error_response(e: SafePlateError) -> JSONResponse:
    if isinstance(e, RateLimited):
        seconds = e.retry_after_seconds or get_settings().ai_default_retry_after
        return JSONResponse(
            status_code=429,
            headers={"Retry-After": str(seconds)},
            content={
                "error": f"AI is busy right now. Try again in about {seconds} seconds.",
                "reason": e.reason,
                "retryAfterSeconds": seconds,
                "source": "ai",
            },
        )
    return JSONResponse(
        status_code=503,
        content={"error": "AI decision is not available right now.", "reason": e.reason, "source": "ai"},
    )


# =========================
# Health + debug
# =========================
@app.get("/health")
@app.get("/api/health")
def health():
    return {"ok": True, "service": "safeplate-server"}


@app.get("/api/debug/ai")
def debug_ai(orchestrator: DecisionOrchestrator = Depends(get_orchestrator)):
    return orchestrator.debug_info()


@app.post("/api/debug/ai-decision")
async def debug_ai_decision(body: DecisionRequest, orchestrator: DecisionOrchestrator = Depends(get_orchestrator)):
    if orchestrator.producer is None:
        return JSONResponse(status_code=503, content={"ok": False, "source": "ai", "reason": "AI disabled"})
    try:
        generated = await orchestrator.generate(body.scannedText or "")
    except SafePlateError as e:
        logger.warning("Debug AI decision failed: %s", e.reason)
        return JSONResponse(status_code=503, content={"ok": False, "source": "ai", "reason": e.reason})
    return {"ok": True, "source": "ai", "verdict": generated.card.verdict.value}


# =========================
# OCR
# =========================
@app.post("/api/ocr")
async def ocr(body: OcrRequest, engine: OcrEngine = Depends(get_ocr)):
    try:
        image_bytes = parse_image_data_url(body.imageDataUrl)
        text = await run_in_threadpool(engine.recognize, image_bytes, normalize_psm(body.options.psm))
    except OcrFailure as e:
        logger.warning("OCR request failed: %s", e.reason)
        return JSONResponse(status_code=e.status or 503, content={"error": e.reason})
    if not text:
        # never hand empty text on to the decision pipeline
        return JSONResponse(status_code=422, content={"error": "No readable text found", "retryable": True})
    return {"text": text}


# =========================
# Decision
# =========================
@app.post("/api/decision")
async def decision(body: DecisionRequest, orchestrator: DecisionOrchestrator = Depends(get_orchestrator)):
    try:
        result = await orchestrator.decide(body.scannedText or "", body.language)
    except SafePlateError as e:
        logger.warning("Decision failed: %s", e.reason)
        return ai_error_response(e)
    # IMPORTANT: never include ingredient lists or nutrition tables.
    return result.to_payload()


# =========================
# Optional warm-up (best-effort)
# =========================
@app.on_event("startup")
async def warmup():
    engine = get_ocr()
    if not engine.enabled:
        return
    try:
        await run_in_threadpool(engine.load)
    except Exception:
        logger.exception("OCR warm-up failed; model will load on first request")
