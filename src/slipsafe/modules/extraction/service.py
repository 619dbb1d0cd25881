"""
Receipt field extraction.

Raw OCR text goes through ordered matchers for merchant, date and total. Each
matcher returns a ``FieldMatch`` tagged ``exact`` (found by the primary rule)
or ``fallback`` (found by a weaker heuristic), or ``None``. Confidence is graded
from the tags; a matcher that blows up is logged and treated as ``None``.
"""

from __future__ import annotations

import enum
import re
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import date, timedelta
from decimal import Decimal, InvalidOperation
from typing import Any

from slipsafe.core.config import settings
from slipsafe.core.currencies import SYMBOL_CURRENCIES, normalize_currency
from slipsafe.core.logging import get_logger, log_event, log_exception
from slipsafe.modules.receipts.models import Confidence, RefundType

logger = get_logger(__name__)


class MatchTag(str, enum.Enum):
    EXACT = "exact"
    FALLBACK = "fallback"


@dataclass(frozen=True)
class FieldMatch:
    value: Any
    tag: MatchTag


@dataclass(frozen=True)
class AmountMatch:
    amount: Decimal
    currency: str | None


@dataclass
class ExtractedReceipt:
    merchant: str | None
    date: date | None
    total: Decimal | None
    currency: str | None
    refund_type: RefundType
    confidence: Confidence
    raw_text: str
    tags: dict[str, str] = field(default_factory=dict)
    stated_policy: StatedPolicy = field(default_factory=lambda: StatedPolicy())


def extract_fields(text: str) -> ExtractedReceipt:
    text = (text or "").replace("\u202f", " ").replace("\xa0", " ")

    merchant = _guarded("merchant", match_merchant, text)
    purchase_date = _guarded("date", match_date, text)
    total = _guarded("total", match_total, text)
    refund_type = _guarded_refund_type(text)
    stated_policy = _guarded_stated_policy(text)

    matches = {"merchant": merchant, "date": purchase_date, "total": total}
    confidence = grade_confidence(matches.values())
    tags = {name: m.tag.value for name, m in matches.items() if m is not None}

    amount: AmountMatch | None = total.value if total else None
    result = ExtractedReceipt(
        merchant=merchant.value if merchant else None,
        date=purchase_date.value if purchase_date else None,
        total=amount.amount if amount else None,
        currency=amount.currency if amount else None,
        refund_type=refund_type,
        confidence=confidence,
        raw_text=text,
        tags=tags,
        stated_policy=stated_policy,
    )
    log_event(
        logger,
        "extraction.done",
        confidence=confidence.value,
        refund_type=refund_type.value,
        stated_policy=not stated_policy.is_empty,
        **{f"{name}_tag": tag for name, tag in tags.items()},
    )
    return result


def grade_confidence(matches) -> Confidence:
    matches = list(matches)
    if any(m is None for m in matches):
        return Confidence.LOW
    if all(m.tag == MatchTag.EXACT for m in matches):
        return Confidence.HIGH
    return Confidence.MEDIUM


def _guarded(name: str, matcher: Callable[[str], FieldMatch | None], text: str):
    try:
        return matcher(text)
    except Exception:  # noqa: BLE001
        log_exception(logger, "extraction.matcher.error", matcher=name)
        return None


def _guarded_refund_type(text: str) -> RefundType:
    try:
        return detect_refund_type(text)
    except Exception:  # noqa: BLE001
        log_exception(logger, "extraction.matcher.error", matcher="refund_type")
        return RefundType.NOT_SPECIFIED


def _guarded_stated_policy(text: str) -> StatedPolicy:
    try:
        return extract_stated_policy(text)
    except Exception:  # noqa: BLE001
        log_exception(logger, "extraction.matcher.error", matcher="stated_policy")
        return StatedPolicy()


# ---------------------------------------------------------------------------
# Total
# ---------------------------------------------------------------------------

_TOTAL_KEYWORD_RE = re.compile(
    r"\b("
    r"total|grand total|total due|total paid|amount due|balance due|amount paid|"
    r"amount charged|total amount|total price|you paid|net payable|to pay"
    r")\b",
    re.I,
)
_NOT_TOTAL_RE = re.compile(
    r"\b(sub[\s-]?total|total\s+(tax|vat|gst|savings|saved|discount|items?|qty|quantity))\b",
    re.I,
)

# 1,234.56 / 1.234,56 / 1 234,56 / 245.99 / 245
_NUMBER = r"\d{1,3}(?:[ ,.'\u202f\xa0]\d{3})+(?:[.,]\d{1,2})?|\d+(?:[.,]\d{1,2})?"
_SYMBOLS = "|".join(re.escape(s) for s in sorted([*SYMBOL_CURRENCIES, "$"], key=len, reverse=True))

_CODE_PREFIX_RE = re.compile(rf"\b([A-Z]{{3}})\s*(?:{_SYMBOLS})?\s*({_NUMBER})(?![\d])")
_SYMBOL_PREFIX_RE = re.compile(rf"({_SYMBOLS})\s*({_NUMBER})(?![\d])")
_CODE_SUFFIX_RE = re.compile(rf"(?<![\d.,])({_NUMBER})\s*([A-Z]{{3}})\b")
_BARE_DECIMAL_RE = re.compile(r"(?<![\d.,])(\d{1,3}(?:[ ,.']\d{3})+[.,]\d{2}|\d+[.,]\d{2})(?![\d])")


def match_total(text: str) -> FieldMatch | None:
    lines = [ln.strip() for ln in text.splitlines() if ln.strip()]

    keyword_candidates: list[AmountMatch] = []
    for i, ln in enumerate(lines):
        if not _TOTAL_KEYWORD_RE.search(ln) or _NOT_TOTAL_RE.search(ln):
            continue
        found = _amounts_in_line(ln, include_bare=True)
        if not found and i + 1 < len(lines):
            # "TOTAL" on its own line, amount right-aligned on the next.
            found = _amounts_in_line(lines[i + 1], include_bare=True)
        keyword_candidates.extend(found)

    if keyword_candidates:
        best = max(keyword_candidates, key=lambda c: c.amount)
        return FieldMatch(_with_document_currency(best, text), MatchTag.EXACT)

    marked: list[AmountMatch] = []
    for ln in lines:
        marked.extend(_amounts_in_line(ln, include_bare=False))
    marked = [c for c in marked if c.amount > 0]
    if not marked:
        return None
    best = max(marked, key=lambda c: c.amount)
    return FieldMatch(_with_document_currency(best, text), MatchTag.FALLBACK)


def _amounts_in_line(line: str, *, include_bare: bool) -> list[AmountMatch]:
    out: list[AmountMatch] = []
    taken: list[tuple[int, int]] = []

    def add(span: tuple[int, int], raw: str, currency: str | None) -> None:
        if any(span[0] < end and start < span[1] for start, end in taken):
            return
        amount = parse_decimal_amount(raw)
        if amount is None:
            return
        taken.append(span)
        out.append(AmountMatch(amount=amount, currency=currency))

    for m in _CODE_PREFIX_RE.finditer(line):
        code = normalize_currency(m.group(1))
        if code:
            add(m.span(), m.group(2), code)
    for m in _SYMBOL_PREFIX_RE.finditer(line):
        add(m.span(), m.group(2), SYMBOL_CURRENCIES.get(m.group(1)))
    for m in _CODE_SUFFIX_RE.finditer(line):
        code = normalize_currency(m.group(2))
        if code:
            add(m.span(), m.group(1), code)
    if include_bare:
        for m in _BARE_DECIMAL_RE.finditer(line):
            add(m.span(), m.group(1), None)
    return out


def _with_document_currency(candidate: AmountMatch, text: str) -> AmountMatch:
    if candidate.currency:
        return candidate
    # A plain "$" or bare amount: borrow the currency of another amount on the slip.
    for ln in text.splitlines():
        for other in _amounts_in_line(ln, include_bare=False):
            if other.currency:
                return AmountMatch(amount=candidate.amount, currency=other.currency)
    return candidate


def parse_decimal_amount(raw: str) -> Decimal | None:
    s = str(raw or "").strip()
    if not s:
        return None
    s = s.replace("\u202f", " ").replace("\xa0", " ")
    s = re.sub(r"[^0-9,.' ]", "", s)
    s = s.replace(" ", "").replace("'", "")
    if not s or not any(ch.isdigit() for ch in s):
        return None

    if "," in s and "." in s:
        decimal_sep = "," if s.rfind(",") > s.rfind(".") else "."
        thousands_sep = "." if decimal_sep == "," else ","
        normalized = s.replace(thousands_sep, "").replace(decimal_sep, ".")
    elif "," in s or "." in s:
        sep = "," if "," in s else "."
        if s.count(sep) > 1:
            normalized = s.replace(sep, "")
        else:
            idx = s.rfind(sep)
            digits_after = len(s) - idx - 1
            if digits_after == 3 and len(s[:idx]) <= 3:
                normalized = s.replace(sep, "")
            elif digits_after <= 2:
                normalized = s.replace(sep, ".")
            else:
                normalized = s.replace(sep, "")
    else:
        normalized = s

    try:
        return Decimal(normalized).quantize(Decimal("0.01"))
    except InvalidOperation:
        return None


# ---------------------------------------------------------------------------
# Date
# ---------------------------------------------------------------------------

_MONTHS = (
    "january",
    "february",
    "march",
    "april",
    "may",
    "june",
    "july",
    "august",
    "september",
    "october",
    "november",
    "december",
)

_DATE_KEYWORD_RE = re.compile(
    r"\b(date|dated|purchased?|purchase date|transaction|trans|issued|sale|sold)\b", re.I
)

_YMD_RE = re.compile(r"(?<!\d)(\d{4})([-/.])(\d{1,2})\2(\d{1,2})(?!\d)")
_NUMERIC_RE = re.compile(r"(?<!\d)(\d{1,2})([-/.])(\d{1,2})\2(\d{4}|\d{2})(?!\d)")
_DAY_MONTH_NAME_RE = re.compile(
    r"(?<!\d)(\d{1,2})(?:st|nd|rd|th)?[\s-]+([A-Za-z]{3,9})\.?,?[\s-]+(\d{4}|\d{2})(?!\d)"
)
_MONTH_NAME_DAY_RE = re.compile(
    r"\b([A-Za-z]{3,9})\.?\s+(\d{1,2})(?:st|nd|rd|th)?,?\s+(\d{4})(?!\d)"
)
_COMPACT_RE = re.compile(r"(?<![\dA-Za-z])(\d{2})([A-Za-z]{3})(\d{2})(?![\dA-Za-z])")


@dataclass(frozen=True)
class _DateCandidate:
    value: date
    tag: MatchTag
    near_keyword: bool
    position: int


def match_date(text: str) -> FieldMatch | None:
    candidates: list[_DateCandidate] = []
    offset = 0
    for line in text.splitlines(keepends=True):
        near_keyword = bool(_DATE_KEYWORD_RE.search(line))
        for value, tag, pos in _dates_in_line(line):
            if is_plausible_receipt_date(value):
                candidates.append(_DateCandidate(value, tag, near_keyword, offset + pos))
        offset += len(line)

    if not candidates:
        return None
    best = min(
        candidates,
        key=lambda c: (c.tag != MatchTag.EXACT, not c.near_keyword, c.position),
    )
    return FieldMatch(best.value, best.tag)


def _dates_in_line(line: str) -> list[tuple[date, MatchTag, int]]:
    out: list[tuple[date, MatchTag, int]] = []
    taken: list[tuple[int, int]] = []

    def add(m: re.Match, value: date | None, tag: MatchTag) -> None:
        span = m.span()
        if value is None or any(span[0] < end and start < span[1] for start, end in taken):
            return
        taken.append(span)
        out.append((value, tag, span[0]))

    for m in _YMD_RE.finditer(line):
        add(m, _safe_date(int(m.group(1)), int(m.group(3)), int(m.group(4))), MatchTag.EXACT)

    for m in _NUMERIC_RE.finditer(line):
        a, sep, b, raw_year = int(m.group(1)), m.group(2), int(m.group(3)), m.group(4)
        year = _expand_year(raw_year)
        tag = MatchTag.EXACT if len(raw_year) == 4 else MatchTag.FALLBACK
        if sep == ".":
            # Dotted numeric dates are day-first.
            add(m, _safe_date(year, b, a), tag)
        elif a > 12 and b <= 12:
            add(m, _safe_date(year, b, a), tag)
        elif b > 12 and a <= 12:
            add(m, _safe_date(year, a, b), tag)
        elif settings.receipt_date_order == "MDY":
            add(m, _safe_date(year, a, b), MatchTag.FALLBACK)
        else:
            add(m, _safe_date(year, b, a), MatchTag.FALLBACK)

    for m in _DAY_MONTH_NAME_RE.finditer(line):
        month = _month_number(m.group(2))
        raw_year = m.group(3)
        tag = MatchTag.EXACT if len(raw_year) == 4 else MatchTag.FALLBACK
        if month:
            add(m, _safe_date(_expand_year(raw_year), month, int(m.group(1))), tag)

    for m in _MONTH_NAME_DAY_RE.finditer(line):
        month = _month_number(m.group(1))
        if month:
            add(m, _safe_date(int(m.group(3)), month, int(m.group(2))), MatchTag.EXACT)

    for m in _COMPACT_RE.finditer(line):
        month = _month_number(m.group(2))
        if month:
            add(m, _safe_date(_expand_year(m.group(3)), month, int(m.group(1))), MatchTag.FALLBACK)

    return out


def _month_number(word: str) -> int | None:
    w = word.lower().rstrip(".")
    if len(w) < 3:
        return None
    if w == "sept":
        return 9
    for i, name in enumerate(_MONTHS, start=1):
        if name.startswith(w):
            return i
    return None


def _expand_year(raw: str) -> int:
    year = int(raw)
    if len(raw) == 4:
        return year
    pivot = (date.today().year + 2) % 100
    return 2000 + year if year <= pivot else 1900 + year


def _safe_date(year: int, month: int, day: int) -> date | None:
    try:
        return date(year, month, day)
    except ValueError:
        return None


def is_plausible_receipt_date(d: date) -> bool:
    today = date.today()
    if d < (today - timedelta(days=365 * 15)):
        return False
    if d > (today + timedelta(days=365 * 2)):
        return False
    return True


# ---------------------------------------------------------------------------
# Merchant
# ---------------------------------------------------------------------------

_MERCHANT_SCAN_LINES = 15

_MERCHANT_STOPLIST_RE = re.compile(
    r"\b("
    r"receipt|invoice|tax|vat|gst|date|time|total|subtotal|cashier|till|register|"
    r"terminal|store\s*#|tel|phone|fax|order|transaction|trans|ref|welcome|"
    r"street|st\.|road|rd\.?|avenue|ave\.?|suite|blvd|p\.?o\.?\s*box|"
    r"customer copy|merchant copy|duplicate|copy"
    r")\b",
    re.I,
)
_THANK_YOU_RE = re.compile(
    r"(?i)thank\s+you\s+for\s+(?:shopping|choosing|visiting|dining)\s+(?:at|with)\s+"
    r"([A-Za-z0-9&'.\- ]{2,60}?)\s*[!.]*\s*$",
    re.M,
)


def match_merchant(text: str) -> FieldMatch | None:
    lines = [ln.strip() for ln in text.splitlines() if ln.strip()]
    header = lines[:_MERCHANT_SCAN_LINES]

    if header and _is_merchant_line(header[0]):
        return FieldMatch(_clean_merchant(header[0]), MatchTag.EXACT)

    m = _THANK_YOU_RE.search(text)
    if m:
        name = _clean_merchant(m.group(1))
        if name:
            return FieldMatch(name, MatchTag.FALLBACK)

    for ln in header[1:]:
        if _is_merchant_line(ln):
            return FieldMatch(_clean_merchant(ln), MatchTag.FALLBACK)
    return None


def _is_merchant_line(line: str) -> bool:
    if len(line) < 2 or len(line) > 80:
        return False
    lower = line.lower()
    if "@" in line or "http" in lower or "www." in lower:
        return False
    if _MERCHANT_STOPLIST_RE.search(line):
        return False
    compact = re.sub(r"\s+", "", line)
    letters = sum(1 for ch in compact if ch.isalpha())
    if letters < 2:
        return False
    return letters / len(compact) >= 0.6


def _clean_merchant(value: str) -> str:
    value = re.sub(r"\s+", " ", value).strip(" -*=#:|.!")
    return value[:200]


# ---------------------------------------------------------------------------
# Refund type
# ---------------------------------------------------------------------------

# Checked in order; the first hit wins.
_REFUND_PATTERNS: tuple[tuple[re.Pattern, RefundType], ...] = (
    (re.compile(r"full\s+refund|money\s+back\s+guarantee|100%\s+refund", re.I), RefundType.FULL),
    (
        re.compile(r"store\s+credit|credit\s+only|in-?store\s+credit", re.I),
        RefundType.STORE_CREDIT,
    ),
    (re.compile(r"exchange\s+only|swap\s+only", re.I), RefundType.EXCHANGE_ONLY),
    (
        re.compile(r"partial\s+refund|restocking\s+fee|handling\s+charge", re.I),
        RefundType.PARTIAL,
    ),
    (re.compile(r"no\s+(?:cash\s+)?refunds?", re.I), RefundType.NONE),
    # "no returns after 14 days" states a window, not a ban.
    (re.compile(r"\bno\s+returns?\b(?!\s+(?:accepted\s+)?after\b)", re.I), RefundType.NONE),
    (re.compile(r"\bno\s+exchanges?\s+(?:or|and|/)\s+returns?", re.I), RefundType.NONE),
    (re.compile(r"final\s+sale|all\s+sales?\s+(?:are\s+)?final", re.I), RefundType.NONE),
    (re.compile(r"goods\s+once\s+sold|not\s+returnable|non-?refundable", re.I), RefundType.NONE),
)


def detect_refund_type(text: str) -> RefundType:
    for pattern, refund_type in _REFUND_PATTERNS:
        if pattern.search(text):
            return refund_type
    return RefundType.NOT_SPECIFIED


# ---------------------------------------------------------------------------
# Stated policy terms
# ---------------------------------------------------------------------------

_MAX_POLICY_DAYS = 365
_MAX_TERMS_LENGTH = 500

# Each pattern's first group, when present, is the number of days.
_RETURN_WINDOW_PATTERNS: tuple[re.Pattern, ...] = (
    re.compile(r"\b(\d{1,3})\s*-?\s*days?\s+(?:return|refund)(?:\s+(?:policy|period))?", re.I),
    re.compile(r"\breturns?\s+(?:accepted\s+)?within\s+(\d{1,3})\s*days?", re.I),
    re.compile(r"\b(?:return|refund)\s+period\s*:?\s*(\d{1,3})\s*days?", re.I),
    re.compile(r"\bno\s+returns?\s+(?:accepted\s+)?after\s+(\d{1,3})\s*days?", re.I),
    re.compile(r"\b(\d{1,3})\s*-?\s*days?\s+money\s+back", re.I),
)
_EXCHANGE_PATTERNS: tuple[re.Pattern, ...] = (
    re.compile(r"\b(\d{1,3})\s*-?\s*days?\s+(?:exchange|swap)(?:\s+(?:policy|period))?", re.I),
    re.compile(r"\bexchanges?\s+(?:(?:accepted|only)\s+)?within\s+(\d{1,3})\s*days?", re.I),
    re.compile(r"\bexchange\s+only", re.I),
    re.compile(
        r"\bno\s+exchanges?(?:\s*,?\s*(?:without|unless)\s+original\s+(?:invoice|receipt))?",
        re.I,
    ),
)
_HANDLING_CHARGE_RE = re.compile(
    r"(?:minimum\s+)?handling\s+charge\s+(?:of\s+)?(\d{1,2})\s*%", re.I
)
_INVOICE_REQUIRED_RE = re.compile(
    r"without\s+original\s+(?:invoice|receipt)|original\s+(?:invoice|receipt)\s+required", re.I
)


@dataclass(frozen=True)
class PolicyTerm:
    days: int | None
    terms: str


@dataclass(frozen=True)
class StatedPolicy:
    """Return and exchange terms printed on the slip itself."""

    return_days: int | None = None
    return_terms: str | None = None
    exchange_days: int | None = None
    exchange_terms: str | None = None

    @property
    def is_empty(self) -> bool:
        return self.return_terms is None and self.exchange_terms is None


def extract_stated_policy(text: str) -> StatedPolicy:
    return_term = _first_term(_RETURN_WINDOW_PATTERNS, text, require_days=True)
    exchange_term = _first_term(_EXCHANGE_PATTERNS, text, require_days=False)

    notes: list[str] = [return_term.terms] if return_term else []
    m = _HANDLING_CHARGE_RE.search(text)
    if m:
        notes.append(f"{int(m.group(1))}% handling charge on returns/exchanges")
    if _INVOICE_REQUIRED_RE.search(text):
        notes.append("Original invoice required")

    return StatedPolicy(
        return_days=return_term.days if return_term else None,
        return_terms=". ".join(notes)[:_MAX_TERMS_LENGTH] if notes else None,
        exchange_days=exchange_term.days if exchange_term else None,
        exchange_terms=exchange_term.terms if exchange_term else None,
    )


def _first_term(
    patterns: tuple[re.Pattern, ...], text: str, *, require_days: bool
) -> PolicyTerm | None:
    for pattern in patterns:
        for m in pattern.finditer(text):
            days = int(m.group(1)) if pattern.groups and m.group(1) else None
            if days is not None and not 0 < days <= _MAX_POLICY_DAYS:
                continue
            if days is None and require_days:
                continue
            terms = re.sub(r"\s+", " ", m.group(0)).strip()[:_MAX_TERMS_LENGTH]
            return PolicyTerm(days=days, terms=terms)
    return None
