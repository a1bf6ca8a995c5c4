"""
HeartQueue analysis proxy API
"""

import json
import logging
from contextlib import asynccontextmanager
from typing import List, Optional

from dotenv import load_dotenv
from fastapi import FastAPI, HTTPException, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from heartqueue.config import Settings
from heartqueue.exceptions import SimilarityServiceError, WebhookSignatureError
from heartqueue.models import AnalysisStatus, AnalyzeResponse, AnalyzeStatus, ProxyHealth, TempoWindow

from .services.analysis_store import AnalysisStore
from .services.cyanite_service import ANALYSIS_COMPLETED_EVENT, CyaniteService, is_filter_error, verify_signature
from .services.genre_service import map_similarity_genres

load_dotenv()

settings = Settings.from_env()

logging.basicConfig(level=getattr(logging, settings.log_level, logging.INFO))
logger = logging.getLogger(__name__)

PROXY_VERSION = "2.3.0"
MISSING_WEBHOOK_SECRET = "Webhook signature verification is enabled but CYANITE_WEBHOOK_SECRET is not set."

# Initialize services
analysis_store = AnalysisStore(
    max_entries=settings.analysis_cache_size, ttl_seconds=settings.analysis_cache_ttl_seconds
)
similarity_service = CyaniteService(token=settings.cyanite_access_token, api_url=settings.cyanite_api_url)


@asynccontextmanager
async def lifespan(app_context: FastAPI):  # pylint: disable=unused-argument
    """Lifespan event handler for service cleanup"""
    if not settings.cyanite_access_token:
        logger.warning("CYANITE_ACCESS_TOKEN is not set, analyze requests will fail")
    if settings.verify_webhook_signatures and not settings.cyanite_webhook_secret:
        logger.error("VERIFY_WEBHOOK_SIGNATURES is on without CYANITE_WEBHOOK_SECRET, webhooks will be rejected")
    yield
    await similarity_service.aclose()


app = FastAPI(
    title="HeartQueue Analysis Proxy",
    description="Similar-track lookups for heart-rate driven queue curation",
    version=PROXY_VERSION,
    lifespan=lifespan,
)

# Configure CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


def _error(message: str, status_code: int = 500) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content=AnalyzeResponse(status=AnalyzeStatus.ERROR, error=message).model_dump(
            mode="json", by_alias=True, exclude_none=True
        ),
    )


def _success(track_ids: List[str]) -> dict:
    return AnalyzeResponse(status=AnalyzeStatus.SUCCESS, track_ids=track_ids).model_dump(
        mode="json", by_alias=True, exclude_none=True
    )


def _tempo_window(bpm_start: Optional[int], bpm_end: Optional[int]) -> Optional[TempoWindow]:
    if bpm_start is None or bpm_end is None:
        return None
    if bpm_start > bpm_end:
        bpm_start, bpm_end = bpm_end, bpm_start
    return TempoWindow(start=bpm_start, end=bpm_end)


async def _find_similar(track_id: str, tempo: Optional[TempoWindow], genres: List[str]) -> List[str]:
    """Filtered lookup, widened to an unfiltered one when the filters match nothing or are rejected"""
    filtered = tempo is not None or bool(genres)
    try:
        track_ids = await similarity_service.similar_tracks(track_id, tempo, genres)
    except SimilarityServiceError as e:
        if not filtered or not is_filter_error(e):
            raise
        logger.warning("Filter rejected for %s (%s), retrying without filters", track_id, str(e))
        return await similarity_service.similar_tracks(track_id)

    if not track_ids and filtered:
        logger.info("No filtered matches for %s, retrying without filters", track_id)
        track_ids = await similarity_service.similar_tracks(track_id)
    return track_ids


@app.get("/health")
async def health_check():
    """Health check endpoint"""
    return {"status": "healthy", "cache_size": len(analysis_store)}


@app.api_route("/api/analyze", methods=["GET", "POST"])
async def analyze(
    track_id: Optional[str] = Query(None, alias="trackId"),
    bpm_start: Optional[int] = Query(None, alias="bpmStart"),
    bpm_end: Optional[int] = Query(None, alias="bpmEnd"),
    genres: Optional[str] = Query(None),
):
    """Similar tracks for a seed, or 'analyzing' while the seed is still being analyzed"""
    if not track_id:
        return ProxyHealth(
            version=PROXY_VERSION, message="Analysis proxy is running. Pass trackId to get similar tracks."
        ).model_dump()

    if not settings.cyanite_access_token:
        logger.error("Analyze request for %s rejected: missing CYANITE_ACCESS_TOKEN", track_id)
        return _error("Missing CYANITE_ACCESS_TOKEN env variable.")

    record = analysis_store.get(track_id)
    if record is None:
        logger.info("Cache miss for %s", track_id)
        record = analysis_store.set_status(track_id, AnalysisStatus.PENDING)
    else:
        logger.info("Cache hit for %s (%s)", track_id, record.status.value)

    tempo = _tempo_window(bpm_start, bpm_end)
    mapped_genres = map_similarity_genres(genres.split(",")) if genres else []

    try:
        track_ids = await _find_similar(track_id, tempo, mapped_genres)
        if track_ids:
            analysis_store.mark_completed(track_id)
            return _success(track_ids)

        if record.status == AnalysisStatus.COMPLETED:
            logger.info("Track %s is analyzed but has no similar tracks", track_id)
            return _success([])

        if record.status == AnalysisStatus.PENDING:
            await similarity_service.enqueue_analysis(track_id)
            analysis_store.set_status(track_id, AnalysisStatus.ANALYZING)
    except SimilarityServiceError as e:
        logger.error("Similarity lookup for %s failed: %s", track_id, str(e))
        return _error(str(e))

    return AnalyzeResponse(status=AnalyzeStatus.ANALYZING).model_dump(mode="json", by_alias=True, exclude_none=True)


def _check_signature(body: bytes, signature: Optional[str]):
    if not settings.verify_webhook_signatures:
        return
    if not verify_signature(body, signature, settings.cyanite_webhook_secret):
        raise WebhookSignatureError("Invalid webhook signature")


@app.post("/api/notify")
async def notify(request: Request):
    """Record analysis completion events sent by the similarity provider"""
    if settings.verify_webhook_signatures and not settings.cyanite_webhook_secret:
        logger.error("Webhook signature verification enabled without CYANITE_WEBHOOK_SECRET, rejecting webhook")
        return _error(MISSING_WEBHOOK_SECRET)

    body = await request.body()
    try:
        _check_signature(body, request.headers.get("Signature"))
    except WebhookSignatureError as e:
        logger.warning("Rejected webhook: %s", str(e))
        raise HTTPException(status_code=401, detail=str(e)) from e

    try:
        event = json.loads(body or b"{}")
    except ValueError:
        return _error("Invalid JSON body", status_code=400)
    if not isinstance(event, dict):
        return _error("Invalid event payload", status_code=400)

    event_type = event.get("__typename") or event.get("type")
    logger.info("Webhook received: %s", event_type)

    if event_type == ANALYSIS_COMPLETED_EVENT:
        track_id = (event.get("spotifyTrack") or {}).get("id")
        if not track_id:
            return _error("Missing spotifyTrack.id", status_code=400)
        analysis_store.mark_completed(track_id)

    return {"status": "success"}
