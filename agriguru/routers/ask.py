"""
/ask and /resolve endpoints
"""
import asyncio
import logging
import time

from fastapi import APIRouter, Depends, Request

from agriguru.di import get_extractor, get_pipeline
from agriguru.models import QueryIntent, QueryType, ResolutionResult
from agriguru.schemas import AskRequest, AskResponse, ResolveRequest
from agriguru.services.pipeline import ResolutionPipeline
from agriguru.tools.intent import IntentExtractor
from agriguru.tools.lang import detect_lang, translate
from agriguru.utils.messages import format_result

log = logging.getLogger("agriguru.api")

router = APIRouter(tags=["prices"])

def t(): return time.perf_counter()


def apply_hints(intent: QueryIntent, req: AskRequest) -> QueryIntent:
    """Explicit request fields win over what the extractor inferred."""
    update = {}
    if req.crop:
        update["commodity"] = req.crop
        if intent.query_type == QueryType.MARKET_OVERVIEW:
            update["query_type"] = QueryType.PRICE_INQUIRY
    if req.market or req.district or req.state:
        loc = intent.location
        update["location"] = loc.model_copy(update={
            "market": req.market or loc.market,
            "district": req.district or loc.district,
            "state": req.state or loc.state,
        })
    if req.geo and req.geo.lat is not None and req.geo.lon is not None:
        update["latitude"] = req.geo.lat
        update["longitude"] = req.geo.lon
    return intent.model_copy(update=update) if update else intent


async def _watch_disconnect(request: Request, cancel: asyncio.Event, every: float = 0.5) -> None:
    while not cancel.is_set():
        if await request.is_disconnected():
            log.info("🔌 client disconnected; cancelling resolution")
            cancel.set()
            return
        await asyncio.sleep(every)


async def _resolve_cancellable(request: Request, pipeline: ResolutionPipeline,
                               intent: QueryIntent) -> ResolutionResult:
    cancel = asyncio.Event()
    watcher = asyncio.create_task(_watch_disconnect(request, cancel))
    try:
        return await pipeline.resolve(intent, cancel=cancel)
    finally:
        watcher.cancel()


@router.post("/ask", response_model=AskResponse)
async def ask(req: AskRequest, request: Request,
              extractor: IntentExtractor = Depends(get_extractor),
              pipeline: ResolutionPipeline = Depends(get_pipeline)):
    """
    Free text (any supported language) -> intent -> resolution -> answer in the
    user's language. The structured intent and result are returned alongside.
    """
    timings = {}
    start = t()
    lang = req.lang or detect_lang(req.text)

    t0 = t()
    intent = apply_hints(await extractor.extract(req.text, context=req.context, lang=lang), req)
    timings["intent"] = round((t() - t0) * 1000)

    t0 = t()
    result = await _resolve_cancellable(request, pipeline, intent)
    timings["resolve"] = round((t() - t0) * 1000)

    answer = format_result(intent, result)
    if lang != "en":
        t0 = t()
        answer = await asyncio.to_thread(translate, extractor.client, answer, lang, "en", extractor.model)
        timings["translate"] = round((t() - t0) * 1000)

    timings["total"] = round((t() - start) * 1000)
    log.info("⏱️  /ask timings: %s", timings)
    return AskResponse(answer=answer, lang=lang, intent=intent, result=result, timings_ms=timings)


@router.post("/resolve", response_model=ResolutionResult)
async def resolve(req: ResolveRequest, request: Request,
                  pipeline: ResolutionPipeline = Depends(get_pipeline)):
    """Run the resolution pipeline on an already-structured intent."""
    return await _resolve_cancellable(request, pipeline, req.intent)
