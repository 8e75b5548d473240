"""
Engine Detection - Which exchanger CMS/framework is this page?

One structural inspection of the page (a single ``page.evaluate``) plus the
raw HTML feed a fixed battery of weighted indicators from the pattern table.
Each indicator adds its weight to exactly one engine category; the highest
category wins if it reaches the threshold.

Scoring is a pure function of (html, structure), so fixtures can pin the
behaviour without a browser. Re-run after any navigation.
"""

import logging
from dataclasses import dataclass, field, fields
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple

from .patterns import (
    ENGINE_CATEGORIES,
    ENGINE_SCORE_THRESHOLD,
    GUARANTEED_SCORE,
    EngineCategory,
    EngineType,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class EngineSignature:
    """Best guess of a page's structural family."""
    type: EngineType
    confidence: float
    indicators: Tuple[str, ...] = ()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": self.type.value,
            "confidence": self.confidence,
            "indicators": list(self.indicators),
        }


@dataclass
class PageStructure:
    """Structural flags collected in-page by ``ANALYZE_PAGE_JS``."""
    has_vue_elements: bool = False
    has_css_modules: bool = False
    has_vue_requisites: bool = False
    has_data_v_attributes: bool = False
    has_exchange_urls: bool = False
    has_sum_fields: bool = False
    has_js_exchange_link: bool = False
    has_js_summ_classes: bool = False
    has_sum1_field: bool = False
    has_account2_field: bool = False
    has_nuxt_window: bool = False
    has_box_exchanger_meta: bool = False
    has_sanctum_auth: bool = False
    has_iex_patterns: bool = False
    has_exchanger_cms_auth: bool = False
    has_exchanger_cms_patterns: bool = False
    has_cloudflare: bool = False
    has_captcha: bool = False
    has_cloudflare_challenge: bool = False
    has_wallet_field: bool = False
    has_email_field: bool = False
    has_amount_field: bool = False
    requires_auth: bool = False
    scripts: List[str] = field(default_factory=list)
    links: List[str] = field(default_factory=list)
    form_count: int = 0

    @classmethod
    def from_analysis(cls, data: Optional[Mapping[str, Any]]) -> "PageStructure":
        data = data or {}
        kwargs: Dict[str, Any] = {}
        for f in fields(cls):
            if f.name not in data or data[f.name] is None:
                continue
            value = data[f.name]
            if f.name in ("scripts", "links"):
                kwargs[f.name] = [str(v) for v in value]
            elif f.name == "form_count":
                kwargs[f.name] = int(value)
            else:
                kwargs[f.name] = bool(value)
        return cls(**kwargs)

    def flags(self) -> Dict[str, bool]:
        return {f.name: getattr(self, f.name) for f in fields(self) if f.type in (bool, "bool")}


ANALYZE_PAGE_JS = """
() => {
    const anyAttrStartsWith = (prefix) => Array.from(document.querySelectorAll('*')).some(el =>
        Array.from(el.attributes).some(attr => attr.name.startsWith(prefix))
    );
    return {
        // Vue.js
        has_vue_elements: !!document.querySelector('[class*="v-"], [id*="v-radio"], [id*="v-checkbox"]'),
        has_css_modules: !!document.querySelector('[class*="_"][class*="_"]'),
        has_vue_requisites: !!document.querySelector('[name*="Requisites"]'),
        has_data_v_attributes: anyAttrStartsWith('data-v-'),

        // Multi-page
        has_exchange_urls: Array.from(document.querySelectorAll('a')).some(a => /exchange_\\w+_to_\\w+/.test(a.href)),
        has_sum_fields: !!document.querySelector('[name="sum1"], [name="summ1"], .js_summ1'),

        // PremiumExchanger
        has_js_exchange_link: !!document.querySelector('.js_exchange_link, .xtp_submit'),
        has_js_summ_classes: !!document.querySelector('.js_summ1, .js_summ2, .js_amount'),
        has_sum1_field: !!document.querySelector('input[name="sum1"]'),
        has_account2_field: !!document.querySelector('input[name="account2"]'),

        // BoxExchanger
        has_nuxt_window: typeof window.__NUXT__ !== 'undefined',
        has_box_exchanger_meta: !!document.querySelector('meta[name*="boxexchanger"], meta[content*="boxexchanger"]'),

        // iEXExchanger
        has_sanctum_auth: !!document.querySelector('meta[name="csrf-token"]'),
        has_iex_patterns: !!document.querySelector('.iex-exchange, .iex-calculator, [class*="iex-"]'),

        // Exchanger-CMS
        has_exchanger_cms_auth: !!document.querySelector('a[href*="/auth/login"], a[href*="/auth/register"]'),
        has_exchanger_cms_patterns: !!document.querySelector('.exchange-form, .exchanger-widget'),

        // Protection
        has_cloudflare: !!document.querySelector('[name*="cf-turnstile"], [id*="cf-chl-widget"]'),
        has_captcha: !!document.querySelector('[name*="captcha"], [class*="captcha"], .g-recaptcha'),
        has_cloudflare_challenge: document.title.includes('Just a moment') ||
            !!document.querySelector('#challenge-running, #challenge-form'),

        // Common exchange fields
        has_wallet_field: !!document.querySelector('[name*="wallet"], [placeholder*="кошел"], [placeholder*="wallet"]'),
        has_email_field: !!document.querySelector('[name="email"], [type="email"]'),
        has_amount_field: !!document.querySelector('[name*="sum"], [name*="amount"], [placeholder*="сумм"]'),
        requires_auth: !!document.querySelector('[href*="login"], [href*="register"], [href*="signin"]'),

        scripts: Array.from(document.querySelectorAll('script[src]')).map(s => s.src),
        links: Array.from(document.querySelectorAll('link[href]')).map(l => l.href),
        form_count: document.querySelectorAll('form').length
    };
}
"""


def _score_category(
    category: EngineCategory,
    html: str,
    flags: Mapping[str, bool],
    scripts: Sequence[str],
    indicators: List[str],
) -> Tuple[int, bool]:
    """Returns (score, guaranteed)."""
    for indicator in category.guaranteed:
        if indicator.matches(html, flags, scripts):
            indicators.append(indicator.name)
            return GUARANTEED_SCORE, True
    score = 0
    for indicator in category.indicators:
        if indicator.matches(html, flags, scripts):
            score += indicator.weight
            indicators.append(indicator.name)
    return score, False


def score_structure(html: str, structure: PageStructure) -> EngineSignature:
    """Score a page snapshot against every engine category."""
    html = html or ""
    flags = structure.flags()
    scripts = structure.scripts
    indicators: List[str] = []
    scores: Dict[EngineType, int] = {category.type: 0 for category in ENGINE_CATEGORIES}
    scores.setdefault(EngineType.UNKNOWN, 0)

    # Specific CMS categories are declared before the generic ones
    specific_cms_found = False
    for category in ENGINE_CATEGORIES:
        if category.generic and specific_cms_found:
            continue
        score, guaranteed = _score_category(category, html, flags, scripts, indicators)
        scores[category.type] = score
        if guaranteed and category.specific_cms:
            specific_cms_found = True

    # First category (declaration order) holding the max wins ties
    max_score = max(scores.values())
    detected = EngineType.UNKNOWN
    if max_score >= ENGINE_SCORE_THRESHOLD:
        for category in ENGINE_CATEGORIES:
            if scores[category.type] == max_score:
                detected = category.type
                break

    confidence = min(max_score / 100.0, 1.0) if max_score > 0 else 0.0
    return EngineSignature(type=detected, confidence=confidence, indicators=tuple(indicators))


async def inspect_page(page) -> Tuple[str, PageStructure]:
    html = await page.content()
    analysis = await page.evaluate(ANALYZE_PAGE_JS)
    return html or "", PageStructure.from_analysis(analysis)


async def classify_engine(page) -> EngineSignature:
    """
    Classify the currently loaded page.

    Args:
        page: Playwright page (or anything with async ``content``/``evaluate``)

    Returns:
        EngineSignature with type, confidence in [0, 1] and matched indicators
    """
    html, structure = await inspect_page(page)
    signature = score_structure(html, structure)
    logger.info(
        f"Detected engine: {signature.type.value} "
        f"(confidence: {signature.confidence * 100:.0f}%)"
    )
    if signature.indicators:
        logger.debug(f"Indicators: {', '.join(signature.indicators)}")
    return signature
