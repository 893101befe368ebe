"""
Face-Fit backend - domain types

Validated recommendation results and the upload value they are produced from.
"""

from .recommendation import (
    NOT_SPECIFIED,
    DegradedParse,
    FacialShape,
    FailedParse,
    ParseOutcome,
    ParseQuality,
    Product,
    ProductPriority,
    RecommendationBundle,
    RoutineStep,
    SkincareRoutine,
    SkinProfile,
    StrictParse,
    Undertone,
)
from .upload import CaptureSource, UploadAttempt

__all__ = [
    "NOT_SPECIFIED",
    "CaptureSource",
    "DegradedParse",
    "FacialShape",
    "FailedParse",
    "ParseOutcome",
    "ParseQuality",
    "Product",
    "ProductPriority",
    "RecommendationBundle",
    "RoutineStep",
    "SkincareRoutine",
    "SkinProfile",
    "StrictParse",
    "Undertone",
    "UploadAttempt",
]
