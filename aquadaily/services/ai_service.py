from __future__ import annotations

import json
import logging
import os
from typing import Any, Callable, Dict, Iterable, List, Optional

from google import genai
from google.genai import types
from pydantic import ValidationError

from ..errors import ExternalServiceError, MissingCredentialError
from ..schemas import SmartInsight, WaterLog
from .storage_service import KeyValueStorage

logger = logging.getLogger(__name__)

QUOTES_PROMPT = (
    "Give me 3 short, punchy motivational quotes from famous athletes about discipline, "
    "water, health, or consistency. Return them as a JSON array of strings."
)

EMPTY_RESPONSE_QUOTES = [
    "Stay hydrated, stay winning.",
    "Water is life.",
    "Discipline equals freedom.",
]

FALLBACK_QUOTES = [
    "Hydration is the key to performance.",
    "Your body is your temple.",
    "Drink water, conquer the day.",
]

FALLBACK_INSIGHT = SmartInsight(
    patternAnalysis="Not enough data to analyze patterns yet.",
    hydrationScore=50,
    goalSuggestion="Keep at 2000ml",
    recommendation="Try to log water every time you finish a glass.",
)

_QUOTES_SCHEMA = {"type": "ARRAY", "items": {"type": "STRING"}}

_INSIGHT_SCHEMA = {
    "type": "OBJECT",
    "properties": {
        "patternAnalysis": {"type": "STRING"},
        "hydrationScore": {"type": "INTEGER"},
        "goalSuggestion": {"type": "STRING"},
        "recommendation": {"type": "STRING"},
    },
}


def build_insight_request(logs: Iterable[WaterLog], daily_goal: int) -> Dict[str, Any]:
    """Return the payload describing a user's logs to the insight model."""

    return {
        "dailyGoal": int(daily_goal),
        "logs": [
            {
                "time": entry.created_at.isoformat().replace("+00:00", "Z"),
                "amount": entry.amount_ml,
            }
            for entry in logs
        ],
    }


class InsightService:
    """Gemini-backed quotes and hydration insights with static fallbacks.

    The API key comes from the constructor, the environment, or a key the
    user entered at runtime (cached in the backing storage). Without a key no
    client is built and no request is made. Every failure is logged and
    replaced with fallback content, so callers never see an error.
    """

    MODEL_NAME = "gemini-2.5-flash"
    API_KEY_STORAGE_KEY = "GEMINI_API_KEY"

    _ENV_KEY_PRIORITY = (
        "GEMINI_API_KEY",
        "GOOGLE_API_KEY",
        "VITE_API_KEY",
    )

    def __init__(
        self,
        storage: KeyValueStorage,
        api_key: Optional[str] = None,
        client_factory: Callable[..., Any] = genai.Client,
    ) -> None:
        self._storage = storage
        self._explicit_key = api_key
        self._client_factory = client_factory
        self._client: Optional[Any] = None
        self._client_key: Optional[str] = None

    def has_api_key(self) -> bool:
        return bool(self._resolve_api_key())

    def set_api_key(self, key: str) -> None:
        key = (key or "").strip()
        if not key:
            raise ValueError("API key cannot be empty.")
        self._storage.write_json(self.API_KEY_STORAGE_KEY, key)
        logger.info("Gemini API key saved (len=%d, prefix=%s****)", len(key), key[:4])

    def get_motivational_quotes(self) -> List[str]:
        """Return up to three short quotes, or a fixed set when Gemini is unavailable."""

        try:
            text = self._generate(QUOTES_PROMPT, _QUOTES_SCHEMA)
            if not text:
                return list(EMPTY_RESPONSE_QUOTES)
            quotes = self._parse_json(text)
            if not isinstance(quotes, list) or not all(isinstance(item, str) for item in quotes):
                raise ExternalServiceError("Quote response was not a JSON array of strings")
            return quotes[:3]
        except Exception as exc:
            logger.warning("Gemini quote request failed: %s", exc)
            return list(FALLBACK_QUOTES)

    def get_smart_insights(self, logs: Iterable[WaterLog], daily_goal: int) -> SmartInsight:
        """Ask Gemini to analyse a user's logs against their daily goal."""

        try:
            request_payload = build_insight_request(logs, daily_goal)
            text = self._generate(self._build_insight_prompt(request_payload), _INSIGHT_SCHEMA)
            if not text:
                raise ExternalServiceError("No data returned")
            return self._parse_insight(text)
        except Exception as exc:
            logger.warning("Gemini insight request failed: %s", exc)
            return FALLBACK_INSIGHT.model_copy()

    def _resolve_api_key(self) -> Optional[str]:
        if self._explicit_key:
            return self._explicit_key
        for name in self._ENV_KEY_PRIORITY:
            value = os.getenv(name)
            if value:
                return value
        stored = self._storage.read_json(self.API_KEY_STORAGE_KEY)
        return stored if isinstance(stored, str) and stored else None

    def _get_client(self) -> Any:
        api_key = self._resolve_api_key()
        if not api_key:
            raise MissingCredentialError("API Key missing")
        if self._client is None or self._client_key != api_key:
            self._client = self._client_factory(api_key=api_key)
            self._client_key = api_key
            logger.info("Gemini client initialized")
        return self._client

    def _generate(self, prompt: str, schema: Dict[str, Any]) -> str:
        client = self._get_client()
        try:
            response = client.models.generate_content(
                model=self.MODEL_NAME,
                contents=prompt,
                config=types.GenerateContentConfig(
                    response_mime_type="application/json",
                    response_schema=schema,
                ),
            )
        except Exception as exc:
            raise ExternalServiceError(f"Gemini request failed: {exc}") from exc

        text = getattr(response, "text", None) if response else None
        return text.strip() if text else ""

    def _build_insight_prompt(self, request_payload: Dict[str, Any]) -> str:
        return (
            f"Analyze these water logs for a user with a daily goal of {request_payload['dailyGoal']}ml.\n"
            f"Logs: {json.dumps(request_payload['logs'])}\n\n"
            "Provide a smart analysis including:\n"
            "1. Pattern Analysis (when do they drink most?)\n"
            "2. A hydration score (0-100 based on consistency)\n"
            "3. A suggestion for their goal (keep, increase, or decrease)\n"
            "4. A brief specific recommendation."
        )

    def _parse_insight(self, text: str) -> SmartInsight:
        data = self._parse_json(text)
        if not isinstance(data, dict):
            raise ExternalServiceError("Insight response was not a JSON object")
        try:
            score = int(round(float(data.get("hydrationScore"))))
        except (TypeError, ValueError) as exc:
            raise ExternalServiceError("Insight response had no usable hydrationScore") from exc
        data["hydrationScore"] = max(0, min(100, score))
        try:
            return SmartInsight.model_validate(data)
        except ValidationError as exc:
            raise ExternalServiceError(f"Insight response did not match the schema: {exc}") from exc

    @staticmethod
    def _parse_json(text: str) -> Any:
        cleaned = text.strip()
        if cleaned.startswith("```") and cleaned.endswith("```"):
            lines = [line for line in cleaned.splitlines() if not line.strip().startswith("```")]
            cleaned = "\n".join(lines).strip()
        try:
            return json.loads(cleaned)
        except json.JSONDecodeError as exc:
            raise ExternalServiceError(f"Invalid JSON response from Gemini: {exc}") from exc
