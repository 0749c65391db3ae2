"""
Weather lookups for both call paths.

Weather data comes from the wttr.in JSON API (no API key required). Lookups are
sanitised, retried with linear backoff and cached per location; any failure is
reported as an unsuccessful ``WeatherReport`` rather than an exception, so a
caller always hears a sentence.
"""

import asyncio
import logging
import re
import time
from typing import Dict, Optional, Tuple

import httpx
from pydantic import BaseModel

from app.config.constants import LOGGER_NAME

logger = logging.getLogger(LOGGER_NAME)

WTTR_URL = "https://wttr.in/{location}"
USER_AGENT = "realtime-call-bridge/1.0"
MAX_RETRIES = 2
RETRY_DELAY = 1.0  # seconds, multiplied by the attempt number

WEATHER_KEYWORDS = (
    "weather", "temperature", "forecast", "rain", "sunny", "cloudy",
    "hot", "cold", "degrees", "climate", "humidity", "wind",
    "wetter", "temperatur", "vorhersage", "regen", "sonnig", "bewölkt",
    "warm", "kalt", "grad", "luftfeuchtigkeit",
)

LOCATION_PATTERNS = (
    re.compile(r"(?:weather|temperature|forecast|wetter|temperatur).*?(?:\bin|\bfor|\bat|\bfür)\s+([^\W\d_][\w\s,-]*?)(?:\s*[?.!]|$)", re.IGNORECASE),
    re.compile(r"(?:\bin|\bfor|\bat|\bfür)\s+([^\W\d_][\w\s,-]*?)\s+(?:weather|temperature|forecast|wetter|temperatur)", re.IGNORECASE),
)


class WeatherData(BaseModel):
    location: str
    temperature: int
    description: str
    humidity: Optional[int] = None
    wind_speed: Optional[int] = None


class WeatherReport(BaseModel):
    success: bool
    data: Optional[WeatherData] = None
    error: Optional[str] = None
    source: str = "api"  # api, cache or fallback


SPEECH_TEMPLATES = {
    "de": {
        "report": "In {location} sind es aktuell {temperature} Grad Celsius, {description}.",
        "humidity": " Die Luftfeuchtigkeit liegt bei {humidity} Prozent.",
        "failure": "Entschuldigung, ich konnte die Wetterinformationen gerade nicht abrufen. Bitte versuchen Sie es später erneut.",
    },
    "en": {
        "report": "The weather in {location} is currently {temperature} degrees Celsius with {description}.",
        "humidity": " The humidity is {humidity} percent.",
        "failure": "I'm sorry, I couldn't get the weather information right now. Please try again later.",
    },
}


class WeatherService:
    """Weather lookups with sanitising, retries and a TTL cache."""

    def __init__(
        self,
        enabled: bool = True,
        timeout: float = 5.0,
        cache_ttl: float = 300.0,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.enabled = enabled
        self.timeout = timeout
        self.cache_ttl = cache_ttl
        self._client = client
        self._cache: Dict[str, Tuple[float, WeatherReport]] = {}
        logger.info(
            f"WeatherService initialized - Enabled: {enabled}, Timeout: {timeout}s, Cache TTL: {cache_ttl}s"
        )

    async def get_weather(self, location: str) -> WeatherReport:
        """Get current weather for a location. Never raises."""
        if not self.enabled:
            return self._fallback(location, "Weather service is disabled")

        clean_location = self.sanitize_location(location)
        if not clean_location:
            return self._fallback(location, "Invalid location format")

        cached = self._get_cached(clean_location)
        if cached:
            logger.debug(f"Weather cache hit for {clean_location}")
            return cached

        report = await self._fetch_with_retry(clean_location)
        if report.success:
            self._store(clean_location, report)
        return report

    @staticmethod
    def sanitize_location(location: Optional[str]) -> Optional[str]:
        """Strip anything but letters, digits, spaces, commas and dashes."""
        if not location or not isinstance(location, str):
            return None
        cleaned = re.sub(r"[^\w\s,-]", "", location.strip(), flags=re.UNICODE)[:50].strip()
        return cleaned if len(cleaned) >= 2 else None

    def _get_cached(self, location: str) -> Optional[WeatherReport]:
        key = location.lower()
        entry = self._cache.get(key)
        if entry is None:
            return None
        stored_at, report = entry
        if time.monotonic() - stored_at < self.cache_ttl:
            return report.model_copy(update={"source": "cache"})
        del self._cache[key]
        return None

    def _store(self, location: str, report: WeatherReport) -> None:
        now = time.monotonic()
        expired = [key for key, (stored_at, _) in self._cache.items() if now - stored_at >= self.cache_ttl]
        for key in expired:
            del self._cache[key]
        self._cache[location.lower()] = (now, report)

    async def _fetch_with_retry(self, location: str) -> WeatherReport:
        last_error: Optional[Exception] = None
        for attempt in range(1, MAX_RETRIES + 1):
            try:
                logger.debug(f"Weather API attempt {attempt} for {location}")
                data = await self._fetch(location)
                return self.parse_wttr_response(data, location)
            except (httpx.HTTPError, ValueError) as e:
                last_error = e
                logger.warning(f"Weather API attempt {attempt} failed for {location}: {e}")
                if attempt < MAX_RETRIES:
                    await asyncio.sleep(RETRY_DELAY * attempt)
        logger.error(f"All weather API attempts failed for {location}: {last_error}")
        return self._fallback(location, "Weather data temporarily unavailable")

    async def _fetch(self, location: str) -> dict:
        url = WTTR_URL.format(location=location)
        params = {"format": "j1"}
        headers = {"User-Agent": USER_AGENT}
        if self._client is not None:
            response = await self._client.get(url, params=params, headers=headers, timeout=self.timeout)
        else:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                response = await client.get(url, params=params, headers=headers)
        response.raise_for_status()
        return response.json()

    @staticmethod
    def parse_wttr_response(data: dict, location: str) -> WeatherReport:
        """Map a wttr.in ``j1`` document onto a ``WeatherReport``."""
        current = (data.get("current_condition") or [None])[0]
        if not current:
            raise ValueError("Invalid weather API response format")
        area = (data.get("nearest_area") or [{}])[0]
        area_name = (area.get("areaName") or [{}])[0].get("value") or location

        def _int(value) -> Optional[int]:
            try:
                return int(value)
            except (TypeError, ValueError):
                return None

        return WeatherReport(
            success=True,
            data=WeatherData(
                location=area_name,
                temperature=_int(current.get("temp_C")) or 0,
                description=(current.get("weatherDesc") or [{}])[0].get("value", "Unknown"),
                humidity=_int(current.get("humidity")),
                wind_speed=_int(current.get("windspeedKmph")),
            ),
        )

    @staticmethod
    def _fallback(location: str, reason: str) -> WeatherReport:
        logger.info(f"Creating fallback weather response for {location}: {reason}")
        return WeatherReport(success=False, error=reason, source="fallback")

    @staticmethod
    def format_for_speech(report: WeatherReport, language: str = "de") -> str:
        """Render a report as one or two sentences suitable for text-to-speech."""
        templates = SPEECH_TEMPLATES.get(language, SPEECH_TEMPLATES["de"])
        if not report.success or report.data is None:
            return templates["failure"]
        data = report.data
        speech = templates["report"].format(
            location=data.location,
            temperature=data.temperature,
            description=data.description.lower(),
        )
        if data.humidity:
            speech += templates["humidity"].format(humidity=data.humidity)
        return speech

    @staticmethod
    def is_weather_query(text: str) -> bool:
        """Keyword check: does the utterance ask about the weather?"""
        lowered = text.lower()
        return any(re.search(rf"\b{re.escape(keyword)}\b", lowered) for keyword in WEATHER_KEYWORDS)

    @staticmethod
    def extract_location(text: str) -> Optional[str]:
        """
        Extract a location from an utterance.

        "weather in London" -> "London", "wie ist das Wetter in Berlin?" -> "Berlin"
        """
        for pattern in LOCATION_PATTERNS:
            match = pattern.search(text)
            if match and match[1].strip():
                return match[1].strip(" ,")

        # Otherwise take up to three words after a preposition
        words = text.split()
        for index, word in enumerate(words):
            if word.lower() in ("in", "for", "at", "für") and index < len(words) - 1:
                candidate = " ".join(words[index + 1:index + 4])
                candidate = re.sub(r"[^\w\s]", "", candidate).strip()
                return candidate or None
        return None
