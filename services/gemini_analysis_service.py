"""Gemini AI analysis service for skin, face shape and style recommendations"""

import io
import time
from typing import Optional
from PIL import Image
import google.generativeai as genai
from pybreaker import CircuitBreakerError

from config.settings import settings
from core.exceptions import (
    CircuitBreakerOpenException,
    GeminiAPIException,
    GeminiAuthenticationException,
    GeminiRateLimitException,
    InvalidFileFormatException,
)
from core.logging import logger
from core.monitoring import track_gemini_api_call
from services.circuit_breaker import gemini_breaker


# ========== Gemini Prompts ==========
ANALYSIS_PROMPT = """You are Face-Fit AI, a smart beauty and fashion assistant tailored for African women.

Analyze this image and identify:
1. Skin tone (light, medium, dark, deep) and undertone (warm, cool, neutral)
2. Facial shape (oval, round, square, heart, diamond, oblong)
3. Skin type and visible skin concerns
4. Visible makeup preferences and hair style, if any

Then provide personalized recommendations:
- A morning, evening and weekly skincare routine with specific products
- A complete makeup look: foundation shade, lip color, eye makeup and accessories. Use locally available brands (Maybelline, Zaron, Fenty, Huddah, MAC)
- A fashion style that complements the skin tone and face shape, considering African trends (Ankara, streetwear, elegant, minimalist)
- Specific product suggestions with shades and prices in Kenyan shillings (Ksh)

Make recommendations culturally relevant, inclusive and empowering.

IMPORTANT: Only recommend products that are actually available in Kenya. {budget_line}
Mark products below Ksh {affordable:,} as affordable.

Respond with JSON only, in this structure:
{{
  "skinAnalysis": {{
    "skinTone": "...",
    "undertone": "warm|cool|neutral",
    "facialShape": "oval|round|square|heart|diamond|oblong",
    "skinType": "...",
    "concerns": ["..."]
  }},
  "currentLook": "...",
  "skincareRoutine": {{
    "morning": [{{"step": "...", "product": "...", "brand": "...", "price": "Ksh ...", "howToUse": "...", "why": "...", "time": "...", "duration": "..."}}],
    "evening": [{{"step": "...", "product": "...", "brand": "...", "price": "Ksh ...", "howToUse": "...", "why": "...", "time": "...", "duration": "..."}}],
    "weekly": [{{"step": "...", "product": "...", "brand": "...", "price": "Ksh ...", "howToUse": "...", "why": "...", "frequency": "..."}}]
  }},
  "makeupRecommendations": {{
    "foundation": "...",
    "lipColor": "...",
    "eyeMakeup": "...",
    "accessories": "..."
  }},
  "fashionRecommendations": {{
    "style": "...",
    "colors": ["..."],
    "patterns": "...",
    "occasion": "..."
  }},
  "productSuggestions": [
    {{"brand": "...", "product": "...", "shade": "...", "price": "Ksh ...", "isAffordable": true, "priority": "essential|recommended", "imageUrl": "https://..."}}
  ],
  "tips": ["..."],
  "estimatedTotalCost": "Ksh ..."
}}"""


def build_analysis_prompt(budget: Optional[int] = None) -> str:
    """
    Build the analysis prompt

    Args:
        budget: User budget in KES; the default budget applies when None

    Returns:
        Prompt string
    """
    if budget is not None and budget > 0:
        budget_line = f"The user's total budget is Ksh {budget:,}; every product must cost at most Ksh {budget:,}."
    else:
        budget_line = f"Keep every product at or below Ksh {settings.DEFAULT_BUDGET_KES:,}."
    return ANALYSIS_PROMPT.format(
        budget_line=budget_line,
        affordable=settings.AFFORDABLE_THRESHOLD_KES
    )


class GeminiAnalysisService:
    """
    Service for AI-powered face analysis using Gemini Vision API

    Returns the model's raw text; structure is recovered by the
    AnalysisResponseNormalizer. There is no automatic retry: a failed call is
    surfaced to the user, who may retry.
    """

    def __init__(self, model_name: Optional[str] = None):
        self.model_name = model_name or settings.MODEL_NAME

    def _analyze_with_gemini_internal(
        self,
        image_data: bytes,
        budget: Optional[int] = None
    ) -> str:
        """
        Internal method for Gemini API call (wrapped by circuit breaker)

        Raises:
            InvalidFileFormatException: If the image cannot be decoded
            GeminiAPIException: If the API call fails
        """
        try:
            image = Image.open(io.BytesIO(image_data))
        except (OSError, ValueError) as e:
            raise InvalidFileFormatException() from e

        prompt = build_analysis_prompt(budget)
        start = time.time()

        try:
            model = genai.GenerativeModel(self.model_name)

            generation_config = genai.types.GenerationConfig(
                temperature=0.4,
            )

            response = model.generate_content(
                [prompt, image],
                generation_config=generation_config
            )
            raw_text = response.text
        except Exception as e:
            track_gemini_api_call((time.time() - start) * 1000, success=False, budget=budget)
            raise self._classify_error(e) from e

        track_gemini_api_call((time.time() - start) * 1000, success=True, budget=budget)

        if not raw_text or not raw_text.strip():
            raise GeminiAPIException("The AI service returned an empty response. Please try again.")

        logger.info(f"✅ Gemini response received ({len(raw_text)} chars)")
        return raw_text

    @staticmethod
    def _classify_error(error: Exception) -> GeminiAPIException:
        text = str(error).lower()
        if "429" in text or "quota" in text or "rate limit" in text or "resource exhausted" in text:
            logger.error(f"❌ Gemini rate limit: {error}")
            return GeminiRateLimitException()
        if "api key" in text or "api_key" in text or "permission" in text or "401" in text or "403" in text:
            logger.error(f"❌ Gemini authentication failed: {error}")
            return GeminiAuthenticationException()
        logger.error(f"❌ Gemini analysis failed: {error}")
        return GeminiAPIException()

    def analyze_image(
        self,
        image_data: bytes,
        budget: Optional[int] = None
    ) -> str:
        """
        Analyze a face image with Gemini Vision API (with Circuit Breaker protection)

        Args:
            image_data: Image binary data
            budget: Optional budget in KES

        Returns:
            Raw model text

        Raises:
            CircuitBreakerOpenException: If the Gemini circuit is open
            GeminiAPIException: If the call fails
        """
        try:
            return gemini_breaker.call(
                self._analyze_with_gemini_internal,
                image_data,
                budget
            )

        except CircuitBreakerError as e:
            # Raised both when the circuit is already open and when this
            # call's failure trips it
            logger.error("[CIRCUIT BREAKER] Gemini API circuit is open")
            raise CircuitBreakerOpenException(service_name="Gemini AI") from e
