"""
DetectionContext - the state a detection session carries between calls.

Holds the configuration, the learned pattern store and the minimum-amount
cache, and exposes the detection operations bound to them. Nothing here is
module-global: two contexts never share a cache or a store unless the caller
hands them the same objects.
"""

import logging
from dataclasses import dataclass
from typing import List, Optional

from .address_extractor import ExtractedAddress, extract_address
from .amount_detector import AmountCache, DetectionResult, detect_minimum_amount
from .config import Config, config as default_config
from .engine_detector import EngineSignature, classify_engine
from .field_classifier import DetectedField, FillResult, FormValues, analyze_form, click_submit, fill_form
from .learning import apply_learned_selectors, record_fill_outcome
from .network_interceptor import NetworkInterceptor
from .pattern_store import PatternStore
from .surface import ResponseSource, page_domain

logger = logging.getLogger(__name__)


@dataclass
class DetectionContext:
    config: Config
    store: PatternStore
    amount_cache: AmountCache

    @classmethod
    def from_config(cls, cfg: Optional[Config] = None) -> "DetectionContext":
        cfg = cfg or default_config
        logger.debug(f"Detection context with pattern store {cfg.patterns_db}")
        return cls(
            config=cfg,
            store=PatternStore(cfg.patterns_db, timeout=cfg.db_timeout),
            amount_cache=AmountCache(cfg.amount_cache_ttl_seconds),
        )

    async def classify_engine(self, page) -> EngineSignature:
        return await classify_engine(page)

    async def analyze_form(self, page, use_learned: bool = True) -> List[DetectedField]:
        """Classified fields, re-ranked with what worked on this domain before."""
        fields = await analyze_form(page)
        if use_learned:
            fields = apply_learned_selectors(fields, self.store, page_domain(page))
        return fields

    async def fill_form(self, page, fields: List[DetectedField], values: FormValues) -> FillResult:
        return await fill_form(page, fields, values, settle_ms=self.config.fill_settle_ms)

    async def click_submit(self, page, fields: List[DetectedField], result: Optional[FillResult] = None) -> bool:
        return await click_submit(page, fields, result)

    def record_outcome(
        self,
        page,
        engine_type: str,
        fields: List[DetectedField],
        result: FillResult,
        success: bool,
    ) -> int:
        return record_fill_outcome(self.store, page_domain(page), engine_type, fields, result, success)

    async def extract_address(self, page, interceptor: Optional[NetworkInterceptor] = None) -> ExtractedAddress:
        return await extract_address(page, interceptor)

    async def detect_minimum_amount(
        self,
        page,
        from_currency: str,
        to_currency: str,
        fallback_amount: float,
        responses: Optional[ResponseSource] = None,
    ) -> DetectionResult:
        return await detect_minimum_amount(
            page,
            from_currency,
            to_currency,
            fallback_amount,
            cache=self.amount_cache,
            settings=self.config,
            responses=responses,
        )

    def record_success(self, domain: str, engine_type: str, field_name: str, selector: str):
        self.store.record_success(domain, engine_type, field_name, selector)

    def record_failure(self, domain: str, engine_type: str, field_name: str, selector: str):
        self.store.record_failure(domain, engine_type, field_name, selector)

    def get_best_selectors(self, domain: str, field_name: str) -> List[str]:
        return self.store.get_best_selectors(domain, field_name)

    def new_interceptor(self, source) -> NetworkInterceptor:
        return NetworkInterceptor(
            source,
            max_depth=self.config.json_max_depth,
            poll_ms=self.config.address_poll_ms,
        )
