"""
exscout_core package: adaptive detection and extraction for exchanger sites

Usage:
    from exscout_core import DetectionContext, FormValues, configure_logging

    configure_logging()
    ctx = DetectionContext.from_config()
    signature = await ctx.classify_engine(page)
    fields = await ctx.analyze_form(page)
    result = await ctx.fill_form(page, fields, FormValues(amount=0.01, wallet="T..."))
    minimum = await ctx.detect_minimum_amount(page, "BTC", "USDT", 0.005)
    address = await ctx.extract_address(page, interceptor)
"""
import logging

from .config import Config, config
from .diagnostics import configure_logging
from .exceptions import ExscoutError, PatternStoreError, ProbeError
from .patterns import EngineType, FieldPurpose, detect_network, find_address
from .engine_detector import EngineSignature, classify_engine
from .field_classifier import (
    DetectedField,
    FillResult,
    FormValues,
    analyze_form,
    click_submit,
    fill_form,
    has_required_fields,
)
from .pattern_store import LearnedPattern, PatternStore
from .surface import PlaywrightResponseSource, ResponseRecord, ResponseSource
from .network_interceptor import InterceptedAddress, InterceptedMinAmount, NetworkInterceptor
from .address_extractor import ExtractedAddress, extract_address
from .amount_detector import (
    AmountCache,
    AmountDetector,
    DetectionMethod,
    DetectionResult,
    add_margin,
    detect_minimum_amount,
)
from .learning import apply_learned_selectors, record_fill_outcome
from .context import DetectionContext

# Silent unless the application configures logging
logging.getLogger(__name__).addHandler(logging.NullHandler())

__all__ = [
    # Core
    "Config",
    "config",
    "configure_logging",
    "DetectionContext",
    "ExscoutError",
    "PatternStoreError",
    "ProbeError",
    # Engine classification
    "EngineType",
    "EngineSignature",
    "classify_engine",
    # Form fields
    "FieldPurpose",
    "DetectedField",
    "FormValues",
    "FillResult",
    "analyze_form",
    "fill_form",
    "has_required_fields",
    "click_submit",
    # Learning
    "LearnedPattern",
    "PatternStore",
    "apply_learned_selectors",
    "record_fill_outcome",
    # Network
    "ResponseRecord",
    "ResponseSource",
    "PlaywrightResponseSource",
    "NetworkInterceptor",
    "InterceptedAddress",
    "InterceptedMinAmount",
    # Addresses
    "ExtractedAddress",
    "extract_address",
    "find_address",
    "detect_network",
    # Minimum amount
    "AmountCache",
    "AmountDetector",
    "DetectionMethod",
    "DetectionResult",
    "add_margin",
    "detect_minimum_amount",
]
