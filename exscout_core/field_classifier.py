"""
Field Purpose Classification - what is each form element for?

Element enumeration happens in-page (one ``page.evaluate`` returning plain
descriptors); classification is pure Python over ``FIELD_PURPOSE_RULES``,
independent of which engine was detected. The filler then writes one value
per purpose and fires the change notifications reactive frontends listen to.
"""

import logging
from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, List, Mapping, Optional, Tuple

from .config import config
from .diagnostics import mask_value
from .patterns import (
    CANONICAL_FIELD_NAMES,
    FIELD_PURPOSE_RULES,
    SUBMIT_FALLBACK_SELECTORS,
    FieldPurpose,
)

logger = logging.getLogger(__name__)

# Key under which each purpose is reported and learned
PURPOSE_KEYS: Dict[FieldPurpose, str] = {
    FieldPurpose.AMOUNT_FROM: "amount",
    FieldPurpose.CARD: "card",
    FieldPurpose.WALLET: "wallet",
    FieldPurpose.EMAIL: "email",
    FieldPurpose.NAME: "name",
    FieldPurpose.PHONE: "phone",
    FieldPurpose.SUBMIT: "submit",
}


@dataclass(frozen=True)
class ElementInfo:
    """Raw element descriptors as read from the page (original case)."""
    tag: str = ""
    type: str = ""
    name: str = ""
    id: str = ""
    placeholder: str = ""
    label: str = ""


@dataclass
class DetectedField:
    selector: str
    purpose: FieldPurpose
    confidence: float
    element: ElementInfo = field(default_factory=ElementInfo)
    rule: Optional[str] = None
    # selector has worked on this domain before
    learned: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "selector": self.selector,
            "purpose": self.purpose.value,
            "confidence": self.confidence,
            "element": self.element.__dict__.copy(),
            "rule": self.rule,
            "learned": self.learned,
        }


@dataclass
class FormValues:
    """Values to write, one per purpose."""
    amount: Optional[float] = None
    wallet: Optional[str] = None
    card: Optional[str] = None
    email: Optional[str] = None
    name: Optional[str] = None
    phone: Optional[str] = None


@dataclass
class FillResult:
    filled_fields: List[str] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)
    # purpose key -> selector actually written, for learning
    selectors: Dict[str, str] = field(default_factory=dict)
    # purpose key -> selector tried, written or not
    attempted: Dict[str, str] = field(default_factory=dict)

    @property
    def success(self) -> bool:
        return len(self.filled_fields) > 0


# JS to enumerate form-like elements with everything the rules look at
COLLECT_FIELDS_JS = """
() => {
    const fields = [];
    document.querySelectorAll('input, textarea, select, button').forEach((el, index) => {
        const tag = el.tagName.toLowerCase();
        const type = (el.type || '').toLowerCase();
        const rect = el.getBoundingClientRect();
        const style = getComputedStyle(el);
        const rendered = el.offsetParent !== null ||
            (rect.width > 0 && rect.height > 0 &&
             style.display !== 'none' && style.visibility !== 'hidden');

        // Associated label: explicit <label for>, else first label-ish node in the wrapper
        let label = '';
        if (el.id) {
            const labelEl = document.querySelector(`label[for="${CSS.escape(el.id)}"]`);
            if (labelEl) label = (labelEl.textContent || '').trim();
        }
        if (!label) {
            const parent = el.closest('.form-group, .field, .input-wrap, div');
            const labelInParent = parent ? parent.querySelector('label, .label, span') : null;
            if (labelInParent) label = (labelInParent.textContent || '').trim();
        }

        let selector = tag;
        if (el.id) {
            selector = `#${CSS.escape(el.id)}`;
        } else if (el.name) {
            selector = `${tag}[name="${el.name}"]`;
        } else if (index < 20) {
            selector = `${tag}:nth-of-type(${index + 1})`;
        }

        fields.push({
            tag: tag,
            type: type,
            name: el.name || '',
            id: el.id || '',
            placeholder: el.placeholder || '',
            label: label.slice(0, 200),
            class_name: (el.className || '').toString(),
            text: (el.textContent || el.value || '').trim().slice(0, 100),
            visible: rendered,
            selector: selector
        });
    });
    return fields;
}
"""

FILL_FIELD_JS = """
([sel, val]) => {
    const input = document.querySelector(sel);
    if (!input) return false;
    input.focus();
    // Native setter so framework-managed inputs see the change
    const proto = input.tagName === 'TEXTAREA' ? HTMLTextAreaElement.prototype : HTMLInputElement.prototype;
    const desc = Object.getOwnPropertyDescriptor(proto, 'value');
    if (input.tagName !== 'SELECT' && desc && desc.set) {
        desc.set.call(input, val);
    } else {
        input.value = val;
    }
    input.dispatchEvent(new Event('input', { bubbles: true }));
    input.dispatchEvent(new Event('change', { bubbles: true }));
    input.dispatchEvent(new Event('blur', { bubbles: true }));
    return true;
}
"""


def descriptor_for(raw: Mapping[str, Any]) -> Dict[str, str]:
    """Lowercased view of a raw element used by the rule clauses."""
    return {
        "tag": str(raw.get("tag") or "").lower(),
        "type": str(raw.get("type") or "").lower(),
        "name": str(raw.get("name") or "").lower(),
        "id": str(raw.get("id") or "").lower(),
        "placeholder": str(raw.get("placeholder") or "").lower(),
        "label": str(raw.get("label") or "").lower(),
        "class": str(raw.get("class_name") or "").lower(),
        "text": str(raw.get("text") or "").lower(),
    }


def classify_element(raw: Mapping[str, Any]) -> Tuple[FieldPurpose, float, Optional[str]]:
    """
    Run the ordered rule list against one element; first match wins.

    Returns:
        (purpose, confidence, rule name) - ``(UNKNOWN, 0.0, None)`` when no
        rule fires
    """
    descriptor = descriptor_for(raw)
    for rule in FIELD_PURPOSE_RULES:
        if rule.matches(descriptor):
            return rule.purpose, rule.confidence, rule.name
    return FieldPurpose.UNKNOWN, 0.0, None


def is_candidate(raw: Mapping[str, Any]) -> bool:
    """Rendered elements and submit controls; hidden inputs go through the
    rules only to be excluded as technical fields."""
    field_type = str(raw.get("type") or "").lower()
    return bool(raw.get("visible")) or field_type in ("submit", "hidden")


def build_fields(raw_fields: List[Mapping[str, Any]]) -> List[DetectedField]:
    """Classify raw descriptors and rank them by confidence (stable)."""
    detected: List[DetectedField] = []
    for raw in raw_fields or []:
        if not is_candidate(raw):
            continue
        purpose, confidence, rule = classify_element(raw)
        element = ElementInfo(
            tag=str(raw.get("tag") or ""),
            type=str(raw.get("type") or ""),
            name=str(raw.get("name") or ""),
            id=str(raw.get("id") or ""),
            placeholder=str(raw.get("placeholder") or ""),
            label=str(raw.get("label") or ""),
        )
        if purpose == FieldPurpose.UNKNOWN and element.type.lower() != "text":
            continue
        detected.append(DetectedField(
            selector=str(raw.get("selector") or element.tag),
            purpose=purpose,
            confidence=confidence,
            element=element,
            rule=rule,
        ))
    detected.sort(key=lambda f: f.confidence, reverse=True)
    return detected


async def analyze_form(page) -> List[DetectedField]:
    """Enumerate and classify all form-like elements on the page."""
    logger.info("Analyzing form fields...")
    raw_fields = await page.evaluate(COLLECT_FIELDS_JS) or []
    fields = build_fields(raw_fields)
    for f in fields:
        if f.purpose != FieldPurpose.UNKNOWN:
            logger.info(f"  Found {f.purpose.value}: {f.selector} ({f.confidence * 100:.0f}%)")
    return fields


def pick_field(fields: List[DetectedField], purpose: FieldPurpose) -> Optional[DetectedField]:
    """Best field for a purpose: learned selector, then canonical name, else
    highest confidence."""
    candidates = [f for f in fields if f.purpose == purpose]
    if not candidates:
        return None
    for f in candidates:
        if f.learned:
            return f
    canonical = CANONICAL_FIELD_NAMES.get(purpose, ())
    for f in candidates:
        if f.element.name.lower() in canonical:
            return f
    return max(candidates, key=lambda f: f.confidence)


def format_amount(amount: Any) -> str:
    """Plain decimal notation, never scientific (1e-05 breaks most inputs)."""
    try:
        text = format(Decimal(str(amount)), "f")
    except (InvalidOperation, ValueError):
        return str(amount)
    if "." in text:
        text = text.rstrip("0").rstrip(".")
    return text or "0"


async def fill_field(page, selector: str, value: str) -> bool:
    """Write a value and fire input/change/blur; Playwright fill as fallback."""
    try:
        filled = await page.evaluate(FILL_FIELD_JS, [selector, value])
        if filled:
            return True

        el = await page.query_selector(selector)
        if el:
            await el.scroll_into_view_if_needed()
            await el.fill(value)
            return True
        return False
    except Exception as e:
        logger.warning(f"Failed to fill {selector}: {e}")
        return False


async def _fill_purpose(
    page,
    result: FillResult,
    purpose_key: str,
    target: Optional[DetectedField],
    value: Optional[str],
) -> bool:
    if not target or not value:
        return False
    result.attempted[purpose_key] = target.selector
    if await fill_field(page, target.selector, value):
        result.filled_fields.append(purpose_key)
        result.selectors[purpose_key] = target.selector
        return True
    result.errors.append(f"Could not fill {purpose_key}")
    return False


async def fill_form(
    page,
    fields: List[DetectedField],
    values: FormValues,
    settle_ms: Optional[int] = None,
) -> FillResult:
    """
    Fill the analyzed form.

    Card and wallet are exclusive: a card/requisites field wins (crypto to
    fiat direction) and a generic wallet field is only filled when no card
    field exists.

    Args:
        page: Playwright page
        fields: Output of ``analyze_form``
        values: Values per purpose
        settle_ms: Pause after the amount so dependent fields can recalculate

    Returns:
        FillResult with the purposes filled, errors and selectors used
    """
    result = FillResult()
    settle_ms = config.fill_settle_ms if settle_ms is None else settle_ms

    amount_field = pick_field(fields, FieldPurpose.AMOUNT_FROM)
    if amount_field and values.amount:
        amount_text = format_amount(values.amount)
        if await _fill_purpose(page, result, PURPOSE_KEYS[FieldPurpose.AMOUNT_FROM], amount_field, amount_text):
            logger.info(f"Filled amount: {values.amount} (field: {amount_field.selector})")
        if settle_ms > 0:
            await page.wait_for_timeout(settle_ms)

    card_field = pick_field(fields, FieldPurpose.CARD)
    wallet_field = pick_field(fields, FieldPurpose.WALLET)
    card_value = values.card or values.wallet

    if card_field and card_value:
        if await _fill_purpose(page, result, PURPOSE_KEYS[FieldPurpose.CARD], card_field, card_value):
            logger.info(f"Filled card/bank details: {mask_value(card_value)}")
    elif wallet_field and values.wallet:
        if await _fill_purpose(page, result, PURPOSE_KEYS[FieldPurpose.WALLET], wallet_field, values.wallet):
            logger.info(f"Filled wallet: {mask_value(values.wallet)}")

    for purpose, value in (
        (FieldPurpose.EMAIL, values.email),
        (FieldPurpose.NAME, values.name),
        (FieldPurpose.PHONE, values.phone),
    ):
        if await _fill_purpose(page, result, PURPOSE_KEYS[purpose], pick_field(fields, purpose), value):
            logger.info(f"Filled {purpose.value}: {value}")

    return result


def has_required_fields(fields: List[DetectedField]) -> Tuple[bool, List[str]]:
    """An amount field plus somewhere to send the money (wallet or card)."""
    missing: List[str] = []
    if not any(f.purpose == FieldPurpose.AMOUNT_FROM for f in fields):
        missing.append(FieldPurpose.AMOUNT_FROM.value)
    if not any(f.purpose in (FieldPurpose.WALLET, FieldPurpose.CARD) for f in fields):
        missing.append("wallet/card")
    return len(missing) == 0, missing


async def click_submit(page, fields: List[DetectedField], result: Optional[FillResult] = None) -> bool:
    """
    Click the detected submit control, or the first visible fallback.

    When ``result`` is given, the selector tried and the one clicked are
    reported under the ``submit`` key so the outcome can be learned.
    """
    submit_key = PURPOSE_KEYS[FieldPurpose.SUBMIT]
    submit_field = pick_field(fields, FieldPurpose.SUBMIT)
    if submit_field:
        if result is not None:
            result.attempted[submit_key] = submit_field.selector
        try:
            btn = await page.query_selector(submit_field.selector)
            if btn:
                await btn.click()
                logger.info(f"Clicked submit: {submit_field.selector}")
                if result is not None:
                    result.selectors[submit_key] = submit_field.selector
                return True
        except Exception as e:
            logger.warning(f"Failed to click submit {submit_field.selector}: {e}")

    for selector in SUBMIT_FALLBACK_SELECTORS:
        try:
            btn = await page.query_selector(selector)
            if btn and await btn.is_visible():
                await btn.click()
                logger.info(f"Clicked submit via fallback: {selector}")
                if result is not None:
                    result.attempted[submit_key] = selector
                    result.selectors[submit_key] = selector
                return True
        except Exception as e:
            logger.debug(f"Submit fallback {selector} failed: {e}")
            continue
    return False
