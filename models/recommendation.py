"""Validated recommendation types produced by the analysis normalizer"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, FrozenSet, Optional, Tuple, Union

NOT_SPECIFIED = "Not specified"


class Undertone(str, Enum):
    WARM = "warm"
    COOL = "cool"
    NEUTRAL = "neutral"
    NOT_SPECIFIED = NOT_SPECIFIED


class FacialShape(str, Enum):
    OVAL = "oval"
    ROUND = "round"
    SQUARE = "square"
    HEART = "heart"
    DIAMOND = "diamond"
    OBLONG = "oblong"
    NOT_SPECIFIED = NOT_SPECIFIED


class ProductPriority(str, Enum):
    ESSENTIAL = "essential"
    RECOMMENDED = "recommended"


@dataclass(frozen=True)
class SkinProfile:
    """Skin analysis; every field is populated or carries NOT_SPECIFIED"""
    skin_tone: str
    undertone: Undertone
    facial_shape: FacialShape
    skin_type: str
    concerns: FrozenSet[str]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "skinTone": self.skin_tone,
            "undertone": self.undertone.value,
            "facialShape": self.facial_shape.value,
            "skinType": self.skin_type,
            "concerns": sorted(self.concerns),
        }


@dataclass(frozen=True)
class RoutineStep:
    step: str
    product: Optional[str] = None
    brand: Optional[str] = None
    price: Optional[str] = None
    how_to_use: Optional[str] = None
    why: Optional[str] = None
    time: Optional[str] = None
    duration: Optional[str] = None
    frequency: Optional[str] = None
    buy_url: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "step": self.step,
            "product": self.product,
            "brand": self.brand,
            "price": self.price,
            "howToUse": self.how_to_use,
            "why": self.why,
            "time": self.time,
            "duration": self.duration,
            "frequency": self.frequency,
            "buyUrl": self.buy_url,
        }


@dataclass(frozen=True)
class SkincareRoutine:
    morning: Tuple[RoutineStep, ...] = ()
    evening: Tuple[RoutineStep, ...] = ()
    weekly: Tuple[RoutineStep, ...] = ()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "morning": [s.to_dict() for s in self.morning],
            "evening": [s.to_dict() for s in self.evening],
            "weekly": [s.to_dict() for s in self.weekly],
        }


@dataclass(frozen=True)
class Product:
    """A purchasable suggestion, priced in whole Kenyan shillings"""
    brand: str
    name: str
    price_minor_units: int
    price_display: str
    shade: Optional[str] = None
    buy_url: Optional[str] = None
    image_url: Optional[str] = None
    is_affordable: bool = True
    priority: ProductPriority = ProductPriority.RECOMMENDED

    def to_dict(self) -> Dict[str, Any]:
        return {
            "brand": self.brand,
            "product": self.name,
            "shade": self.shade,
            "price": self.price_display,
            "priceKES": self.price_minor_units,
            "buyUrl": self.buy_url,
            "imageUrl": self.image_url,
            "isAffordable": self.is_affordable,
            "priority": self.priority.value,
        }


FashionValue = Union[str, Tuple[str, ...]]


@dataclass(frozen=True)
class RecommendationBundle:
    """One complete analysis result; replaced wholesale by the next analysis"""
    skin_profile: SkinProfile
    skincare_routine: SkincareRoutine = field(default_factory=SkincareRoutine)
    makeup_recommendations: Tuple[Tuple[str, str], ...] = ()
    fashion_recommendations: Tuple[Tuple[str, FashionValue], ...] = ()
    product_suggestions: Tuple[Product, ...] = ()
    current_look: Optional[str] = None
    tips: Tuple[str, ...] = ()
    estimated_total_cost: Optional[str] = None
    budget_kes: Optional[int] = None

    @property
    def makeup(self) -> Dict[str, str]:
        return dict(self.makeup_recommendations)

    @property
    def fashion(self) -> Dict[str, FashionValue]:
        return dict(self.fashion_recommendations)

    def to_dict(self) -> Dict[str, Any]:
        fashion = {
            key: list(value) if isinstance(value, tuple) else value
            for key, value in self.fashion_recommendations
        }
        return {
            "skinAnalysis": self.skin_profile.to_dict(),
            "skincareRoutine": self.skincare_routine.to_dict(),
            "makeupRecommendations": self.makeup,
            "fashionRecommendations": fashion,
            "productSuggestions": [p.to_dict() for p in self.product_suggestions],
            "currentLook": self.current_look,
            "tips": list(self.tips),
            "estimatedTotalCost": self.estimated_total_cost,
            "budget": self.budget_kes,
        }


# ========== Parse outcome ==========

class ParseQuality(str, Enum):
    STRICT = "strict"
    DEGRADED = "degraded"
    FAILED = "failed"


@dataclass(frozen=True)
class StrictParse:
    """Clean structured parse with every field populated"""
    bundle: RecommendationBundle
    quality = ParseQuality.STRICT

    @property
    def missing_fields(self) -> FrozenSet[str]:
        return frozenset()


@dataclass(frozen=True)
class DegradedParse:
    """Best-effort result; missing_fields carry NOT_SPECIFIED in the bundle"""
    bundle: RecommendationBundle
    missing_fields: FrozenSet[str]
    quality = ParseQuality.DEGRADED


@dataclass(frozen=True)
class FailedParse:
    """No usable result; error is the exception the caller should raise"""
    reason: str
    error: Exception
    quality = ParseQuality.FAILED


ParseOutcome = Union[StrictParse, DegradedParse, FailedParse]
