#!/usr/bin/env python3
"""
Goal Suggestions
Asks Gemini for realistic new goals given a description of the user's
current goals and past performance. One request, one plain-text answer.
"""

import logging

from google import genai

from config import GEMINI_API_KEY, GEMINI_MODEL
from errors import SuggestionFailed, ValidationError

logger = logging.getLogger(__name__)

MIN_INPUT_LENGTH = 10

PROMPT_TEMPLATE = """You are an AI assistant that provides suggestions for realistic and achievable goals based on the user's current goals and past performance.

Current Goals: {current_goals}
Past Performance: {past_performance}

Based on this information, provide a list of suggested new goals, and then explain your reasoning for each suggestion.
Make sure each suggestion is realistic and achievable for the user. Structure your response clearly with headings for "Suggested Goals" and "Reasoning".
"""


def validate_suggestion_input(current_goals: str, past_performance: str):
    if len(current_goals or "") < MIN_INPUT_LENGTH:
        raise ValidationError("currentGoals", "Please describe your current goals.")
    if len(past_performance or "") < MIN_INPUT_LENGTH:
        raise ValidationError("pastPerformance", "Please describe your past performance.")


class GoalSuggester:
    """Gemini-backed goal suggestion client"""

    def __init__(self, api_key: str = GEMINI_API_KEY, model: str = GEMINI_MODEL, client=None):
        self.api_key = api_key
        self.model = model
        self._client = client

    @property
    def is_configured(self) -> bool:
        return bool(self._client or self.api_key)

    def _get_client(self):
        if self._client is None:
            self._client = genai.Client(api_key=self.api_key)
        return self._client

    def suggest(self, current_goals: str, past_performance: str) -> str:
        """
        Return Gemini's advisory text verbatim.

        Raises ValidationError (before any request) for inputs under 10
        characters and SuggestionFailed for every backend failure.
        """
        validate_suggestion_input(current_goals, past_performance)
        prompt = PROMPT_TEMPLATE.format(current_goals=current_goals, past_performance=past_performance)
        try:
            if not self.is_configured:
                raise RuntimeError("GEMINI_API_KEY is not configured")
            logger.info(f"Requesting goal suggestions from Gemini ({self.model})")
            response = self._get_client().models.generate_content(model=self.model, contents=prompt)
            text = response.text
            if not text:
                raise ValueError("Gemini returned an empty response")
        except Exception as e:
            logger.exception(f"AI Suggestion Error: {e}")
            raise SuggestionFailed(str(e))
        return text
