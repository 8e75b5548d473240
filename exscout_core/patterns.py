"""
Pattern Table - Centralized rule and keyword definitions

Every heuristic the classifiers and extractors rely on lives here as data:
engine indicators, field purpose rules, address regexes, JSON key fragments,
selectors and multilingual phrases. Control flow elsewhere only walks these
tables, so a new exchanger quirk is a table edit rather than a code change.

Usage:
    from exscout_core.patterns import FIELD_PURPOSE_RULES, find_address

    address = find_address("Send to bc1q... now")
"""

import math
import re
from dataclasses import dataclass
from enum import Enum
from typing import Dict, Mapping, Optional, Pattern, Sequence, Tuple


class EngineType(str, Enum):
    """Structural families of exchanger pages, in tie-break order."""
    PREMIUM_EXCHANGER = "premium-exchanger"
    BOX_EXCHANGER = "box-exchanger"
    IEX_EXCHANGER = "iex-exchanger"
    EXCHANGER_CMS = "exchanger-cms"
    VUE_SPA = "vue-spa"
    MULTIPAGE = "multipage"
    CLOUDFLARE_PROTECTED = "cloudflare-protected"
    UNKNOWN = "unknown"


class FieldPurpose(str, Enum):
    """Semantic role of a form element."""
    AMOUNT_FROM = "amount_from"
    AMOUNT_TO = "amount_to"
    WALLET = "wallet"
    CARD = "card"
    EMAIL = "email"
    NAME = "name"
    PHONE = "phone"
    SUBMIT = "submit"
    UNKNOWN = "unknown"


# =============================================================================
# CRYPTO ADDRESSES
# =============================================================================

ADDRESS_PATTERNS: Tuple[Pattern, ...] = (
    re.compile(r"\b(bc1[a-zA-HJ-NP-Z0-9]{39,59})\b"),        # BTC bech32
    re.compile(r"\b([13][a-km-zA-HJ-NP-Z1-9]{25,34})\b"),    # BTC legacy
    re.compile(r"\b(0x[a-fA-F0-9]{40})\b"),                  # ERC20
    re.compile(r"\b(T[a-zA-Z0-9]{33})\b"),                   # TRC20
    re.compile(r"\b([LM][a-km-zA-HJ-NP-Z1-9]{26,33})\b"),    # LTC legacy
    re.compile(r"\b(ltc1[a-zA-HJ-NP-Z0-9]{39,59})\b"),       # LTC bech32
    re.compile(r"\b(r[0-9a-zA-Z]{24,34})\b"),                # XRP
)

# Checked top to bottom, first prefix wins
NETWORK_PREFIXES: Tuple[Tuple[Tuple[str, ...], str], ...] = (
    (("bc1", "1", "3"), "BTC"),
    (("T",), "TRC20"),
    (("0x",), "ERC20"),
    (("L", "M", "ltc1"), "LTC"),
    (("r",), "XRP"),
)


def find_address(text: Optional[str]) -> Optional[str]:
    """Return the first address found, trying patterns in priority order."""
    if not text:
        return None
    for pattern in ADDRESS_PATTERNS:
        match = pattern.search(text)
        if match:
            return match.group(1)
    return None


def find_all_addresses(text: Optional[str]) -> Tuple[str, ...]:
    """One match per pattern, in pattern order."""
    if not text:
        return ()
    found = []
    for pattern in ADDRESS_PATTERNS:
        match = pattern.search(text)
        if match and match.group(1) not in found:
            found.append(match.group(1))
    return tuple(found)


def detect_network(address: Optional[str]) -> Optional[str]:
    """Infer the chain from the literal address prefix."""
    if not address:
        return None
    for prefixes, network in NETWORK_PREFIXES:
        if address.startswith(prefixes):
            return network
    return None


# =============================================================================
# NETWORK TRAFFIC
# =============================================================================

INTERESTING_URL_PATTERNS: Tuple[Pattern, ...] = tuple(
    re.compile(p, re.I) for p in (
        r"/api/",
        r"/exchange/",
        r"/order",
        r"/ajax/",
        r"wallet",
        r"payout",
        r"address",
        r"deposit",
        r"invoice",
        r"payment",
        r"confirm",
        r"frontend/api",
    )
)

SKIP_EXTENSIONS = re.compile(r"\.(js|css|png|jpg|jpeg|gif|svg|woff|woff2|ttf|ico|map)(\?|$)", re.I)

ADDRESS_KEYS: Tuple[str, ...] = (
    "address", "wallet", "deposit_address", "crypto_address",
    "payout_address", "wallet_address", "addr", "requisite",
    "account", "destination", "to_address", "from_address",
    "payee_account", "payment_details", "deposit_wallet",
)

MEMO_KEYS: Tuple[str, ...] = ("memo", "tag", "destination_tag", "extra_id", "payment_id")

NETWORK_KEYS: Tuple[str, ...] = ("network", "chain", "blockchain", "protocol")

MIN_AMOUNT_KEYS: Tuple[str, ...] = (
    "min_amount", "minimum", "min_sum", "min", "minamount",
    "minimum_amount", "min_value", "from_min", "amount_min",
)

MAX_AMOUNT_KEYS: Tuple[str, ...] = (
    "max_amount", "maximum", "max_sum", "max", "maxamount",
    "maximum_amount", "max_value", "from_max", "amount_max",
)

RATE_KEYS: Tuple[str, ...] = ("rate", "course")


def key_matches(key: Optional[str], fragments: Sequence[str]) -> bool:
    """Case-insensitive substring match of a JSON key against fragments."""
    if not key:
        return False
    lowered = key.lower()
    return any(fragment in lowered for fragment in fragments)


def is_interesting_url(url: str) -> bool:
    return any(p.search(url) for p in INTERESTING_URL_PATTERNS)


# =============================================================================
# ENGINE INDICATORS
# =============================================================================

@dataclass(frozen=True)
class Indicator:
    """One weighted structural check.

    All configured conditions must hold: every structure flag in ``flags``,
    the ``html`` regex against page source, and the ``script`` regex against
    at least one script source URL.
    """
    name: str
    weight: int
    flags: Tuple[str, ...] = ()
    html: Optional[Pattern] = None
    script: Optional[Pattern] = None

    def matches(self, html: str, flags: Mapping[str, bool], scripts: Sequence[str]) -> bool:
        if not (self.flags or self.html or self.script):
            return False
        if any(not flags.get(flag, False) for flag in self.flags):
            return False
        if self.html is not None and not self.html.search(html):
            return False
        if self.script is not None and not any(self.script.search(s) for s in scripts):
            return False
        return True


@dataclass(frozen=True)
class EngineCategory:
    """Score accumulator definition for one engine type.

    A matching ``guaranteed`` indicator pins the score to 100 and skips the
    additive ones. ``specific_cms`` categories with a guaranteed hit suppress
    all ``generic`` categories.
    """
    type: EngineType
    indicators: Tuple[Indicator, ...]
    guaranteed: Tuple[Indicator, ...] = ()
    specific_cms: bool = False
    generic: bool = False


def _rx(pattern: str) -> Pattern:
    return re.compile(pattern, re.I)


GUARANTEED_SCORE = 100
ENGINE_SCORE_THRESHOLD = 30

# Declaration order is the tie-break order
ENGINE_CATEGORIES: Tuple[EngineCategory, ...] = (
    EngineCategory(
        type=EngineType.PREMIUM_EXCHANGER,
        specific_cms=True,
        guaranteed=(
            Indicator("premiumbox-plugin", GUARANTEED_SCORE, html=_rx(r"/wp-content/plugins/premiumbox/")),
            Indicator("pn-uploads", GUARANTEED_SCORE, html=_rx(r"/wp-content/pn_uploads/")),
            Indicator("premiumbox-path", GUARANTEED_SCORE, html=_rx(r"/premiumbox/")),
            Indicator("newexchanger-theme", GUARANTEED_SCORE, html=_rx(r"/wp-content/themes/newexchanger")),
            Indicator("flavor-theme", GUARANTEED_SCORE, html=_rx(r"/wp-content/themes/flavor/")),
        ),
        indicators=(
            Indicator("pe-js-exchange-link", 35, flags=("has_js_exchange_link",)),
            Indicator("pe-js-summ-classes", 40, flags=("has_js_summ_classes",)),
            Indicator("pe-sum1-field", 30, flags=("has_sum1_field",)),
            Indicator("pe-account2-field", 30, flags=("has_account2_field",)),
            Indicator("pe-premiumbox", 50, html=_rx(r"premiumbox|premiumjs")),
            Indicator("pe-wp-exchanger-theme", 30, html=_rx(r"wp-content/themes/exchanger")),
            Indicator("pe-exchange-urls", 20, flags=("has_exchange_urls",)),
        ),
    ),
    EngineCategory(
        type=EngineType.BOX_EXCHANGER,
        specific_cms=True,
        guaranteed=(
            Indicator("box-domain", GUARANTEED_SCORE, html=_rx(r"boxexchanger\.net")),
            Indicator("box-licence", GUARANTEED_SCORE, html=_rx(r"licence\.boxexchanger")),
            Indicator("box-name", GUARANTEED_SCORE, html=_rx(r"box-exchanger")),
        ),
        indicators=(
            Indicator("box-nuxt-window", 25, flags=("has_nuxt_window",)),
            Indicator("box-develop-exchange", 40, html=_rx(r"develop\.exchange")),
            Indicator("box-calculator-class", 30, flags=("has_nuxt_window",),
                      html=_rx(r'class="[^"]*exchange-calculator[^"]*"')),
            Indicator("box-amlbot", 15, html=_rx(r"amlbot")),
        ),
    ),
    EngineCategory(
        type=EngineType.IEX_EXCHANGER,
        specific_cms=True,
        guaranteed=(
            Indicator("iex-domain", GUARANTEED_SCORE, html=_rx(r"iexexchanger\.com")),
            Indicator("iex-name", GUARANTEED_SCORE, html=_rx(r"iexexchanger")),
        ),
        indicators=(
            Indicator("iex-vue-sanctum", 35, flags=("has_data_v_attributes", "has_sanctum_auth")),
            Indicator("iex-class-patterns", 40, flags=("has_iex_patterns",)),
            Indicator("iex-api-pattern", 45, html=_rx(r"/frontend/api/v1|sanctum/csrf-cookie")),
        ),
    ),
    EngineCategory(
        type=EngineType.EXCHANGER_CMS,
        specific_cms=True,
        guaranteed=(
            Indicator("ecms-domain", GUARANTEED_SCORE, html=_rx(r"exchanger-cms\.com")),
            Indicator("ecms-powered", GUARANTEED_SCORE, html=_rx(r"powered by exchanger-cms")),
        ),
        indicators=(
            Indicator("ecms-auth-links", 30, flags=("has_exchanger_cms_auth",)),
            Indicator("ecms-auth-routes", 35, html=_rx(r"/auth/login|/auth/register|/auth/forgot-password")),
            Indicator("ecms-widget-patterns", 25, flags=("has_exchanger_cms_patterns",)),
            Indicator("ecms-rate-export", 20, html=_rx(r"/export/rates|rates\.xml|rates\.json")),
        ),
    ),
    EngineCategory(
        type=EngineType.VUE_SPA,
        generic=True,
        indicators=(
            Indicator("vue-elements", 30, flags=("has_vue_elements",)),
            Indicator("vue-css-modules", 20, flags=("has_css_modules",)),
            Indicator("vue-requisites", 25, flags=("has_vue_requisites",)),
            Indicator("vue-data-v", 25, flags=("has_data_v_attributes",)),
            Indicator("vue-script", 15, script=_rx(r"vue|nuxt")),
        ),
    ),
    EngineCategory(
        type=EngineType.MULTIPAGE,
        generic=True,
        indicators=(
            Indicator("mp-exchange-urls", 40, flags=("has_exchange_urls",)),
            Indicator("mp-sum-fields", 20, flags=("has_sum_fields",)),
        ),
    ),
    EngineCategory(
        type=EngineType.CLOUDFLARE_PROTECTED,
        guaranteed=(
            Indicator("cf-challenge", GUARANTEED_SCORE, flags=("has_cloudflare_challenge",)),
        ),
        indicators=(
            Indicator("cf-turnstile", 50, flags=("has_cloudflare",)),
            Indicator("cf-captcha", 20, flags=("has_captcha",)),
        ),
    ),
)


# =============================================================================
# FIELD PURPOSE RULES
# =============================================================================

@dataclass(frozen=True)
class Clause:
    """Substring (or exact) test against one lowercased element descriptor."""
    attr: str
    needles: Tuple[str, ...]
    exact: bool = False
    unless: Tuple[str, ...] = ()

    def matches(self, descriptor: Mapping[str, str]) -> bool:
        value = descriptor.get(self.attr) or ""
        if not value:
            return False
        if any(veto in value for veto in self.unless):
            return False
        if self.exact:
            return value in self.needles
        return any(needle in value for needle in self.needles)


@dataclass(frozen=True)
class PurposeRule:
    """A rule fires when any of its clauses matches."""
    name: str
    purpose: FieldPurpose
    confidence: float
    clauses: Tuple[Clause, ...]

    def matches(self, descriptor: Mapping[str, str]) -> bool:
        return any(clause.matches(descriptor) for clause in self.clauses)


# Ordered, first match wins
FIELD_PURPOSE_RULES: Tuple[PurposeRule, ...] = (
    PurposeRule("technical", FieldPurpose.UNKNOWN, 0.0, (
        Clause("type", ("hidden",), exact=True),
        Clause("name", ("direction_id", "csrf", "token")),
    )),
    PurposeRule("amount-from", FieldPurpose.AMOUNT_FROM, 0.95, (
        Clause("name", ("sum1", "sum", "amount"), exact=True),
        Clause("name", ("sumfrom",)),
        Clause("placeholder", ("сумм",), unless=("получ",)),
        Clause("placeholder", ("amount",), unless=("receive",)),
        Clause("label", ("отдаёте", "отдаете", "you send", "you give")),
        Clause("class", ("summ1", "sum1")),
    )),
    PurposeRule("amount-to", FieldPurpose.AMOUNT_TO, 0.8, (
        Clause("name", ("sum2",), exact=True),
        Clause("name", ("sumto",)),
        Clause("placeholder", ("получ", "receive")),
        Clause("label", ("получаете", "получите", "you receive", "you get")),
        Clause("class", ("summ2", "sum2")),
    )),
    PurposeRule("card-requisites", FieldPurpose.CARD, 0.95, (
        Clause("name", ("account2",), exact=True),
        Clause("id", ("account2",), exact=True),
        Clause("placeholder", ("карт", "card", "реквизит", "номер счета")),
        Clause("label", ("карт", "реквизит")),
    )),
    # account1 is where the deposit address shows up, never an input for us
    PurposeRule("crypto-address-slot", FieldPurpose.UNKNOWN, 0.0, (
        Clause("name", ("account1",), exact=True),
        Clause("id", ("account1",), exact=True),
    )),
    PurposeRule("wallet", FieldPurpose.WALLET, 0.9, (
        Clause("name", ("wallet", "address", "requisite"), unless=("account1",)),
        Clause("placeholder", ("кошел", "wallet", "адрес", "address")),
        Clause("label", ("кошел", "адрес", "wallet")),
    )),
    PurposeRule("card-number", FieldPurpose.CARD, 0.9, (
        Clause("label", ("card number", "номер карты")),
    )),
    PurposeRule("email", FieldPurpose.EMAIL, 0.95, (
        Clause("type", ("email",), exact=True),
        Clause("name", ("email", "mail")),
        Clause("placeholder", ("email", "почт", "@")),
        Clause("label", ("email", "e-mail", "почт")),
    )),
    PurposeRule("name", FieldPurpose.NAME, 0.85, (
        Clause("name", ("fio", "name")),
        Clause("placeholder", ("фио", "имя", "name")),
        Clause("label", ("фио", "имя")),
    )),
    PurposeRule("phone", FieldPurpose.PHONE, 0.9, (
        Clause("type", ("tel",), exact=True),
        Clause("name", ("phone", "tel")),
        Clause("placeholder", ("телефон", "phone")),
        Clause("label", ("телефон", "phone")),
    )),
    PurposeRule("submit", FieldPurpose.SUBMIT, 0.8, (
        Clause("type", ("submit",), exact=True),
        Clause("tag", ("button",), exact=True),
        Clause("class", ("submit", "btn")),
        Clause("text", ("обменять", "создать", "exchange")),
    )),
)

# Exact names that beat confidence when picking the field to fill
CANONICAL_FIELD_NAMES: Dict[FieldPurpose, Tuple[str, ...]] = {
    FieldPurpose.AMOUNT_FROM: ("sum1", "sum", "amount"),
    FieldPurpose.AMOUNT_TO: ("sum2",),
    FieldPurpose.CARD: ("account2",),
    FieldPurpose.WALLET: ("wallet", "address"),
    FieldPurpose.EMAIL: ("email",),
    FieldPurpose.NAME: ("fio", "name"),
    FieldPurpose.PHONE: ("phone", "tel"),
}

SUBMIT_FALLBACK_SELECTORS: Tuple[str, ...] = (
    'button[type="submit"]',
    'input[type="submit"]',
    '.xchange_submit',
    '.exchange-btn',
    'button:has-text("Обменять")',
    'button:has-text("обменять")',
    'button:has-text("Создать")',
    '.submit-btn',
    'form button',
)


# =============================================================================
# ADDRESS EXTRACTION
# =============================================================================

ADDRESS_CONTAINER_SELECTORS: Tuple[str, ...] = (
    '[data-clipboard-text]',
    '[data-copy]',
    '.copy-address',
    '.wallet-address, .crypto-address, .deposit-address',
    '.address-text',
    'input[readonly]',
    '[class*="address"]',
    '[class*="wallet"]',
    '.monospace, .mono, code',
)

MEMO_SELECTORS: Tuple[str, ...] = ('[class*="memo"]', '[class*="tag"]', '[class*="destination"]')

MEMO_CONTEXT_PATTERN = re.compile(
    r"(?:memo|destination\s*tag|dest\.?\s*tag|extra\s*id|payment\s*id|tag|мемо|тег)\s*[:#№]?\s*(\d{1,20})\b",
    re.I,
)

# Characters either side of the address searched for a memo
MEMO_CONTEXT_WINDOW = 200

FRAME_URL_KEYWORDS: Tuple[str, ...] = (
    "checkout", "pay", "invoice", "gateway", "payment", "deposit", "wallet", "order", "crypto",
)

FRAME_CONTENT_KEYWORDS: Tuple[str, ...] = (
    "bitcoin", "ethereum", "tether", "usdt", "btc", "eth", "wallet", "address", "deposit",
    "кошелёк", "адрес",
)


# =============================================================================
# MINIMUM AMOUNT
# =============================================================================

AMOUNT_INPUT_SELECTORS: Tuple[str, ...] = (
    'input[name="sum1"]', 'input[name="sum"]', 'input[name="amount"]',
    'input.js_summ1', 'input[name="give_amount"]',
    '.give-amount input', '.amount-from input',
    'input[placeholder*="BTC"]', 'input[placeholder*="ETH"]',
    'input[placeholder*="USDT"]', 'input[placeholder*="сумм"]',
    'input[placeholder*="amount"]',
)

ERROR_HINT_SELECTORS: Tuple[str, ...] = (
    '.error', '.validation-error', '.field-error', '.input-error',
    '[class*="error"]', '[class*="warning"]', '[class*="alert"]',
    '.hint', '.help-text', '.min-amount-hint',
)

SUBMIT_PROBE_SELECTOR = 'button[type="submit"], .xchange_submit, .js_exchange_link, .exchange-btn'

PLACEHOLDER_RANGE_PATTERN = re.compile(r"([0-9][0-9.,]*)\s*[–—\-]\s*[0-9.,]*")

MIN_AMOUNT_PHRASES: Tuple[Pattern, ...] = (
    re.compile(r"(?:min(?:imum|imal)?(?:\s+amount)?(?:\s+is)?|минимум|минимальн\w*(?:\s+сумма)?|от)\s*[:=]?\s*([0-9][0-9.,]*)", re.I),
    re.compile(r"(?:не менее|не может быть менее|at least|no less than|not less than)\s*([0-9][0-9.,]*)", re.I),
    re.compile(r"([0-9][0-9.,]*)\s*(?:–|—|-)\s*[0-9.,]*\s*(?:BTC|ETH|USDT|LTC)", re.I),
)

# Value written by the validation probe to trigger a min-amount error
VALIDATION_PROBE_VALUE = "0.00000001"

LADDER_DEFAULT_SEED = 0.0001
LADDER_SEEDS: Dict[str, float] = {
    "USDT": 1.0,
    "USDC": 1.0,
    "DAI": 1.0,
    "BUSD": 1.0,
}

_LEADING_NUMBER = re.compile(r"\d+(?:\.\d+)?")
_NUMBER_TOKEN = re.compile(r"\d[\d.,]*")

# "1,500" or "12,000.50": a non-zero lead of 1-3 digits, then comma groups of three
_THOUSANDS_GROUPED = re.compile(r"[1-9]\d{0,2}(?:,\d{3})+(?:\.\d+)?")


def normalize_decimal(raw: str) -> str:
    """Drop thousands separators, otherwise read the first comma as a decimal point."""
    raw = raw.strip()
    if _THOUSANDS_GROUPED.fullmatch(raw):
        return raw.replace(",", "")
    return raw.replace(",", ".", 1)


def parse_amount_text(raw: Optional[str]) -> Optional[float]:
    """Parse "0,001" / "0.001" / "1,500" / "10.5 BTC" into a positive float."""
    if not raw:
        return None
    token = _NUMBER_TOKEN.search(raw)
    if not token:
        return None
    match = _LEADING_NUMBER.match(normalize_decimal(token.group(0).rstrip(".,")))
    if not match:
        return None
    value = float(match.group(0))
    return value if 0 < value and math.isfinite(value) else None


def find_min_amount_phrase(text: Optional[str]) -> Optional[float]:
    """Parse the first minimum-amount phrase in a validation/hint text."""
    if not text:
        return None
    for pattern in MIN_AMOUNT_PHRASES:
        match = pattern.search(text)
        if match:
            value = parse_amount_text(match.group(1))
            if value:
                return value
    return None


def ladder_seed(currency: str) -> float:
    code = (currency or "").upper()
    for token, seed in LADDER_SEEDS.items():
        if token in code:
            return seed
    return LADDER_DEFAULT_SEED
