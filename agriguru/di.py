"""
Dependency injection container for the application.
Constructs the shared clients once and provides them to routes/handlers.
"""
import functools
import logging
from dataclasses import dataclass
from typing import Optional

import httpx
from fastapi import Request

from agriguru.config import Settings, settings as default_settings
from agriguru.http import build_http_client, close_http_client
from agriguru.services.geo import GeoResolver
from agriguru.services.matcher import FuzzyMarketMatcher
from agriguru.services.pipeline import ResolutionPipeline
from agriguru.services.store import PriceStore
from agriguru.tools.geocode import geocode_text
from agriguru.tools.intent import IntentExtractor
from agriguru.tools.mandi import ExternalPriceSource

log = logging.getLogger("agriguru.di")


@dataclass
class Container:
    store: PriceStore
    http: Optional[httpx.AsyncClient]
    source: ExternalPriceSource
    extractor: IntentExtractor
    matcher: FuzzyMarketMatcher
    geo: GeoResolver
    pipeline: ResolutionPipeline

    @classmethod
    def build(cls, cfg: Settings = None, store: PriceStore = None,
              http: httpx.AsyncClient = None, extractor: IntentExtractor = None) -> "Container":
        """Wire every component from settings; pass pieces in to override them."""
        cfg = cfg or default_settings
        store = store or PriceStore.from_url(cfg.DATABASE_URL, echo=cfg.DB_ECHO)
        http = http or build_http_client()
        source = ExternalPriceSource(http)
        extractor = extractor or IntentExtractor()
        matcher = FuzzyMarketMatcher(store)
        geocoder = functools.partial(geocode_text, http) if cfg.GEOCODE_ENABLED else None
        geo = GeoResolver(store, matcher, extractor=extractor, geocoder=geocoder)
        pipeline = ResolutionPipeline(store, source, matcher, geo)
        log.info("✅ container ready (llm=%s, geocoding=%s)", extractor.available, geocoder is not None)
        return cls(store=store, http=http, source=source, extractor=extractor,
                   matcher=matcher, geo=geo, pipeline=pipeline)

    async def aclose(self) -> None:
        await close_http_client(self.http)
        self.store.close()
        log.info("HTTP client and database engine closed")


def get_container(request: Request) -> Container:
    return request.app.state.container

def get_pipeline(request: Request) -> ResolutionPipeline:
    return get_container(request).pipeline

def get_extractor(request: Request) -> IntentExtractor:
    return get_container(request).extractor

def get_matcher(request: Request) -> FuzzyMarketMatcher:
    return get_container(request).matcher

def get_geo(request: Request) -> GeoResolver:
    return get_container(request).geo

def get_store(request: Request) -> PriceStore:
    return get_container(request).store
