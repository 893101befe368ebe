"""
Normalization of raw Gemini output into a RecommendationBundle

The model is asked for JSON but is not schema-bound, so its text is treated
as untrusted input: fences are stripped, the JSON span is located, parsed
(with light repairs), validated against the contract version it follows, and
every product is converted to KES, budget-filtered and link-enriched. When no
JSON can be read, a keyword-anchored extraction pass produces an explicitly
degraded result.
"""

import json
import re
from typing import Any, Dict, FrozenSet, Iterable, List, Optional, Set, Tuple

from config.settings import settings
from core.exceptions import IncompleteAnalysisException, NoStructuredDataException
from core.logging import logger, log_structured
from models.recommendation import (
    NOT_SPECIFIED,
    DegradedParse,
    FacialShape,
    FailedParse,
    ParseOutcome,
    Product,
    ProductPriority,
    RecommendationBundle,
    RoutineStep,
    SkincareRoutine,
    SkinProfile,
    StrictParse,
    Undertone,
)
from services.product_catalog import ProductCatalog, StaticProductCatalog
from utils.price_utils import format_kes, normalize_price_text, to_kes


# ========== Contract versions ==========
# v1: flat skinTone/facialShape with makeup and fashion sections
# v2: budget-aware contract with a nested skinAnalysis and a skincare routine
V1_REQUIRED_KEYS = ("skinTone", "facialShape", "makeupRecommendations")
V2_REQUIRED_KEYS = ("skinAnalysis", "skincareRoutine", "makeupRecommendations")

SKIN_FIELDS = ("skinTone", "undertone", "facialShape", "skinType", "concerns")

_EMPTY_MARKERS = {"", "null", "none", "n/a", "na", "unknown", "-", NOT_SPECIFIED.lower()}

_JSON_SYNTAX = ('":', "{", "[")

_FENCE_RE = re.compile(r"^\s*```[a-zA-Z]*\s*|\s*```\s*$")
_TRAILING_COMMA_RE = re.compile(r",\s*([}\]])")

_VALUE = r"\**[\"']?\s*(?:[:\-–]|\bis\b|\bappears to be\b)\s*\**\s*(?P<value>[^.!?\n;]+)"

FALLBACK_PATTERNS: Dict[str, re.Pattern] = {
    "skinTone": re.compile(r"\bskin[\s_-]*tone" + _VALUE, re.IGNORECASE),
    "undertone": re.compile(r"\bunder[\s_-]*tone" + _VALUE, re.IGNORECASE),
    "facialShape": re.compile(r"\b(?:facial|face)[\s_-]*shape" + _VALUE, re.IGNORECASE),
    "skinType": re.compile(r"\bskin[\s_-]*type" + _VALUE, re.IGNORECASE),
    "concerns": re.compile(r"\b(?:skin[\s_-]*)?concerns" + _VALUE, re.IGNORECASE),
    "makeupRecommendations.foundation": re.compile(r"\bfoundation(?:[\s_-]*shade)?" + _VALUE, re.IGNORECASE),
    "makeupRecommendations.lipColor": re.compile(r"\blip[\s_-]*(?:colou?r|stick)" + _VALUE, re.IGNORECASE),
    "makeupRecommendations.eyeMakeup": re.compile(r"\beye[\s_-]*make[\s_-]*up" + _VALUE, re.IGNORECASE),
    "fashionRecommendations.style": re.compile(r"(?<!hair )(?<!hair)\b(?:fashion[\s_-]*)?style" + _VALUE, re.IGNORECASE),
    "fashionRecommendations.colors": re.compile(r"\b(?:fashion[\s_-]*)?colou?rs" + _VALUE, re.IGNORECASE),
}

UNDERTONE_KEYWORDS = (
    ("neutral", Undertone.NEUTRAL),
    ("olive", Undertone.NEUTRAL),
    ("warm", Undertone.WARM),
    ("golden", Undertone.WARM),
    ("cool", Undertone.COOL),
    ("pink", Undertone.COOL),
)

SHAPE_KEYWORDS = (
    ("oval", FacialShape.OVAL),
    ("round", FacialShape.ROUND),
    ("square", FacialShape.SQUARE),
    ("heart", FacialShape.HEART),
    ("diamond", FacialShape.DIAMOND),
    ("oblong", FacialShape.OBLONG),
    ("rectang", FacialShape.OBLONG),
    ("long", FacialShape.OBLONG),
)


# ========== Text helpers ==========

def strip_code_fences(text: str) -> str:
    """Remove a surrounding ```json ... ``` fence"""
    return _FENCE_RE.sub("", text.strip())


def extract_json_span(text: str) -> Optional[str]:
    """First '{' to last '}', or None"""
    start = text.find("{")
    end = text.rfind("}")
    if start == -1 or end <= start:
        return None
    return text[start:end + 1]


def text_outside_json_span(text: str) -> str:
    """The prose around the JSON object, without the object itself"""
    start = text.find("{")
    end = text.rfind("}")
    if start == -1 or end <= start:
        return text
    return text[:start] + "\n" + text[end + 1:]


def repair_json(span: str) -> str:
    """Fix the mistakes models usually make: smart quotes and trailing commas"""
    repaired = (
        span.replace("“", '"').replace("”", '"')
        .replace("‘", "'").replace("’", "'")
    )
    return _TRAILING_COMMA_RE.sub(r"\1", repaired)


def _clean_text(value: Any) -> Optional[str]:
    if value is None or isinstance(value, (dict, list)):
        return None
    text = str(value).strip().strip("\"'*,{}[] ").strip()
    if text.lower() in _EMPTY_MARKERS:
        return None
    return text


def _match_keyword(value: Optional[str], table) -> Optional[Any]:
    if not value:
        return None
    lowered = value.lower()
    for keyword, member in table:
        if keyword in lowered:
            return member
    return None


def _as_concerns(value: Any) -> FrozenSet[str]:
    if isinstance(value, str):
        items: Iterable[Any] = re.split(r",|\band\b", value)
    elif isinstance(value, (list, tuple, set)):
        items = value
    else:
        return frozenset()
    return frozenset(c for c in (_clean_text(i) for i in items) if c)


def _first_present(data: Dict[str, Any], *keys: str) -> Any:
    for key in keys:
        if key in data and data[key] not in (None, ""):
            return data[key]
    return None


class AnalysisResponseNormalizer:
    """
    Converts raw model text into a tagged ParseOutcome

    Args:
        catalog: Buy-link lookup used for products without a purchase URL
        usd_rate: Fixed USD to KES conversion rate
        default_budget: Budget ceiling applied when the user supplied none
        affordable_threshold: Price under which a product counts as affordable
            when the model did not say
    """

    def __init__(
        self,
        catalog: Optional[ProductCatalog] = None,
        usd_rate: Optional[float] = None,
        default_budget: Optional[int] = None,
        affordable_threshold: Optional[int] = None
    ):
        self.catalog = catalog or StaticProductCatalog()
        self.usd_rate = usd_rate if usd_rate is not None else settings.USD_TO_KES_RATE
        self.default_budget = default_budget if default_budget is not None else settings.DEFAULT_BUDGET_KES
        self.affordable_threshold = (
            affordable_threshold if affordable_threshold is not None
            else settings.AFFORDABLE_THRESHOLD_KES
        )

    def active_budget(self, budget: Optional[int]) -> int:
        if budget is None or budget <= 0:
            return self.default_budget
        return budget

    # ========== Entry point ==========

    def normalize(self, raw_text: Optional[str], budget: Optional[int] = None) -> ParseOutcome:
        """
        Normalize one model response

        Args:
            raw_text: Text returned by the model
            budget: User budget in KES (default budget when None)

        Returns:
            StrictParse, DegradedParse or FailedParse
        """
        text = strip_code_fences(raw_text or "")
        active_budget = self.active_budget(budget)

        data = self._load_json(text)
        if data is None:
            outcome = self._fallback(text, active_budget)
        else:
            outcome = self._from_json(data, text, active_budget)

        log_structured("analysis_normalized", {
            "quality": outcome.quality.value,
            "budget": active_budget,
            "missing_fields": sorted(getattr(outcome, "missing_fields", ()) or ()),
            "products": len(outcome.bundle.product_suggestions) if hasattr(outcome, "bundle") else 0
        })
        return outcome

    def _load_json(self, text: str) -> Optional[Dict[str, Any]]:
        span = extract_json_span(text)
        if span is None:
            return None
        for candidate in (span, repair_json(span)):
            try:
                data = json.loads(candidate)
            except json.JSONDecodeError:
                continue
            if isinstance(data, dict):
                return data
        logger.warning("⚠️ Model response contains braces but no parseable JSON object")
        return None

    # ========== Strict path ==========

    def _from_json(self, data: Dict[str, Any], raw_text: str, budget: int) -> ParseOutcome:
        is_v2 = "skinAnalysis" in data
        required = V2_REQUIRED_KEYS if is_v2 else V1_REQUIRED_KEYS
        missing_keys = [key for key in required if not self._has_section(data, key)]
        if missing_keys:
            logger.warning(f"⚠️ Model response missing required keys: {missing_keys}")
            return FailedParse(
                reason=f"missing required keys: {', '.join(missing_keys)}",
                error=IncompleteAnalysisException(missing_keys=missing_keys),
            )

        skin_source = data["skinAnalysis"] if is_v2 else data
        profile, missing = self._build_skin_profile(skin_source, text_outside_json_span(raw_text))

        bundle = RecommendationBundle(
            skin_profile=profile,
            skincare_routine=self._build_routine(data.get("skincareRoutine") or data.get("routineSchedule")),
            makeup_recommendations=self._text_mapping(data.get("makeupRecommendations")),
            fashion_recommendations=self._fashion_mapping(data.get("fashionRecommendations")),
            product_suggestions=self._build_products(data.get("productSuggestions"), budget),
            current_look=_clean_text(data.get("currentLook")),
            tips=self._text_list(data.get("tips")),
            estimated_total_cost=normalize_price_text(data.get("estimatedTotalCost"), self.usd_rate)
            if data.get("estimatedTotalCost") not in (None, "") else None,
            budget_kes=budget,
        )

        if missing:
            return DegradedParse(bundle=bundle, missing_fields=frozenset(missing))
        return StrictParse(bundle=bundle)

    @staticmethod
    def _has_section(data: Dict[str, Any], key: str) -> bool:
        value = data.get(key)
        if isinstance(value, dict):
            return bool(value)
        if isinstance(value, list):
            return bool(value)
        return _clean_text(value) is not None

    def _build_skin_profile(self, source: Dict[str, Any], raw_text: str) -> Tuple[SkinProfile, Set[str]]:
        """Fields left empty by the JSON get one fallback extraction attempt"""
        values: Dict[str, Any] = {
            "skinTone": _clean_text(source.get("skinTone")),
            "undertone": _match_keyword(_clean_text(source.get("undertone")), UNDERTONE_KEYWORDS),
            "facialShape": _match_keyword(
                _clean_text(_first_present(source, "facialShape", "faceShape")), SHAPE_KEYWORDS
            ),
            "skinType": _clean_text(source.get("skinType")),
            "concerns": _as_concerns(source.get("concerns")) or None,
        }

        empty = [name for name in SKIN_FIELDS if not values[name]]
        if empty:
            extracted = self.extract_fallback_fields(raw_text, fields=empty)
            for name in empty:
                values[name] = self._coerce_skin_field(name, extracted.get(name))

        return self._skin_profile_from(values)

    @staticmethod
    def _coerce_skin_field(name: str, text: Optional[str]) -> Any:
        if text is None:
            return None
        if name == "undertone":
            return _match_keyword(text, UNDERTONE_KEYWORDS)
        if name == "facialShape":
            return _match_keyword(text, SHAPE_KEYWORDS)
        if name == "concerns":
            return _as_concerns(text) or None
        return text

    @staticmethod
    def _skin_profile_from(values: Dict[str, Any]) -> Tuple[SkinProfile, Set[str]]:
        missing = {f"skinAnalysis.{name}" for name in SKIN_FIELDS if not values.get(name)}
        profile = SkinProfile(
            skin_tone=values.get("skinTone") or NOT_SPECIFIED,
            undertone=values.get("undertone") or Undertone.NOT_SPECIFIED,
            facial_shape=values.get("facialShape") or FacialShape.NOT_SPECIFIED,
            skin_type=values.get("skinType") or NOT_SPECIFIED,
            concerns=values.get("concerns") or frozenset({NOT_SPECIFIED}),
        )
        return profile, missing

    @staticmethod
    def _text_list(value: Any) -> Tuple[str, ...]:
        if isinstance(value, str):
            value = [value]
        if not isinstance(value, (list, tuple)):
            return ()
        return tuple(t for t in (_clean_text(v) for v in value) if t)

    @staticmethod
    def _text_mapping(section: Any) -> Tuple[Tuple[str, str], ...]:
        if not isinstance(section, dict):
            return ()
        pairs = []
        for key, value in section.items():
            if isinstance(value, (list, tuple)):
                text = ", ".join(t for t in (_clean_text(v) for v in value) if t)
            else:
                text = _clean_text(value)
            if text:
                pairs.append((str(key), text))
        return tuple(pairs)

    @staticmethod
    def _fashion_mapping(section: Any) -> Tuple[Tuple[str, Any], ...]:
        if not isinstance(section, dict):
            return ()
        pairs = []
        for key, value in section.items():
            if isinstance(value, (list, tuple, set)):
                items = tuple(t for t in (_clean_text(v) for v in value) if t)
                if items:
                    pairs.append((str(key), items))
            else:
                text = _clean_text(value)
                if text:
                    pairs.append((str(key), text))
        return tuple(pairs)

    def _build_routine(self, section: Any) -> SkincareRoutine:
        if not isinstance(section, dict):
            return SkincareRoutine()
        return SkincareRoutine(
            morning=self._build_steps(section.get("morning")),
            evening=self._build_steps(section.get("evening")),
            weekly=self._build_steps(section.get("weekly")),
        )

    def _build_steps(self, entries: Any) -> Tuple[RoutineStep, ...]:
        if not isinstance(entries, list):
            return ()
        steps: List[RoutineStep] = []
        for entry in entries:
            if isinstance(entry, str):
                if _clean_text(entry):
                    steps.append(RoutineStep(step=_clean_text(entry)))
                continue
            if not isinstance(entry, dict):
                continue
            name = _clean_text(_first_present(entry, "step", "name", "title"))
            if not name:
                continue
            brand = _clean_text(entry.get("brand"))
            product = _clean_text(_first_present(entry, "product", "productName"))
            buy_url = _clean_text(_first_present(entry, "buyUrl", "buy_url", "link"))
            if not buy_url and brand and product:
                found = self.catalog.lookup(brand, product)
                buy_url = found.url if found else None
            price = entry.get("price")
            steps.append(RoutineStep(
                step=name,
                product=product,
                brand=brand,
                price=normalize_price_text(price, self.usd_rate) if price not in (None, "") else None,
                how_to_use=_clean_text(entry.get("howToUse")),
                why=_clean_text(entry.get("why")),
                time=_clean_text(entry.get("time")),
                duration=_clean_text(entry.get("duration")),
                frequency=_clean_text(entry.get("frequency")),
                buy_url=buy_url,
            ))
        return tuple(steps)

    # ========== Products ==========

    def _build_products(self, entries: Any, budget: int) -> Tuple[Product, ...]:
        """Convert to KES, drop anything over budget, then enrich links"""
        if not isinstance(entries, list):
            return ()

        kept: List[Product] = []
        dropped_over_budget = 0
        for entry in entries:
            if not isinstance(entry, dict):
                continue
            brand = _clean_text(entry.get("brand"))
            name = _clean_text(_first_present(entry, "product", "name", "productName"))
            if not brand or not name:
                continue

            price_kes = to_kes(entry.get("price"), self.usd_rate)
            if price_kes is None:
                logger.debug(f"Dropping product without a readable price: {brand} {name}")
                continue
            if price_kes > budget:
                dropped_over_budget += 1
                continue

            buy_url = _clean_text(_first_present(entry, "buyUrl", "buy_url", "link", "url"))
            image_url = _clean_text(_first_present(entry, "imageUrl", "image_url", "image"))
            if not buy_url or not image_url:
                found = self.catalog.lookup(brand, name)
                if found is not None:
                    buy_url = buy_url or found.url
                    image_url = image_url or found.image

            affordable = entry.get("isAffordable")
            if not isinstance(affordable, bool):
                affordable = price_kes <= self.affordable_threshold

            priority_text = (_clean_text(entry.get("priority")) or "").lower()
            priority = (
                ProductPriority.ESSENTIAL if priority_text == ProductPriority.ESSENTIAL.value
                else ProductPriority.RECOMMENDED
            )

            kept.append(Product(
                brand=brand,
                name=name,
                price_minor_units=price_kes,
                price_display=format_kes(price_kes),
                shade=_clean_text(entry.get("shade")),
                buy_url=buy_url,
                image_url=image_url,
                is_affordable=affordable,
                priority=priority,
            ))

        if dropped_over_budget:
            logger.info(f"💸 Dropped {dropped_over_budget} product(s) above budget Ksh {budget:,}")
        return tuple(kept)

    # ========== Fallback path ==========

    @staticmethod
    def extract_fallback_fields(text: str, fields: Optional[Iterable[str]] = None) -> Dict[str, str]:
        """
        Keyword-anchored extraction of "<keyword>: <clause>" pairs

        Args:
            text: Raw model text
            fields: Field names to look for (all when None)

        Returns:
            Mapping of field name to the extracted clause
        """
        found: Dict[str, str] = {}
        for name in (fields or FALLBACK_PATTERNS.keys()):
            pattern = FALLBACK_PATTERNS.get(name)
            if pattern is None:
                continue
            match = pattern.search(text or "")
            if not match:
                continue
            captured = match.group("value")
            # Captured JSON fragments are not field values
            if any(marker in captured for marker in _JSON_SYNTAX):
                continue
            value = _clean_text(captured)
            if value:
                found[name] = value
        return found

    def _fallback(self, text: str, budget: int) -> ParseOutcome:
        extracted = self.extract_fallback_fields(text)
        if not extracted:
            logger.warning("⚠️ Model response has no JSON and no recognizable fields")
            return FailedParse(
                reason="no structured data",
                error=NoStructuredDataException(),
            )

        values = {
            name: self._coerce_skin_field(name, extracted.get(name))
            for name in SKIN_FIELDS
        }
        profile, missing = self._skin_profile_from(values)

        makeup = []
        fashion = []
        for name in FALLBACK_PATTERNS:
            section, _, key = name.partition(".")
            if not key:
                continue
            value = extracted.get(name)
            if value is None:
                missing.add(name)
                value = NOT_SPECIFIED
            (makeup if section == "makeupRecommendations" else fashion).append((key, value))

        bundle = RecommendationBundle(
            skin_profile=profile,
            makeup_recommendations=tuple(makeup),
            fashion_recommendations=tuple(fashion),
            budget_kes=budget,
        )
        logger.warning(f"⚠️ Degraded analysis from text extraction; missing: {sorted(missing)}")
        return DegradedParse(bundle=bundle, missing_fields=frozenset(missing))
