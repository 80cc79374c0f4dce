"""Advisory signals from an OpenAI-compatible chat completion endpoint."""

import math
import os
import re
from typing import Any, Optional

import orjson
import structlog
from openai import APIConnectionError, APIError, APITimeoutError, OpenAI, RateLimitError

from ..config.defaults import SignalParams
from ..errors import AdvisoryUnavailableError, MalformedDataError
from ..models.signals import AdvisorySignal, PoolSnapshot, SignalAction, SignalUrgency
from .advisory import AdvisorySignalSource

logger = structlog.get_logger(__name__)

PROMPT_HISTORY_POINTS = 20
CLIENT_MAX_RETRIES = 1

_JSON_OBJECT = re.compile(r"\{[\s\S]*\}")

SYSTEM_PROMPT = """You are a DeFi liquidity strategy analyst for concentrated liquidity pools.
Analyse the pool data and give a prediction for the liquidity manager.
Combine time-series reasoning (trend, momentum, mean reversion) with feature
reasoning (volume/liquidity ratio, volatility, price velocity).

Output ONLY valid JSON with this exact structure:
{
  "confidence": 0-100,
  "action": "buy" | "sell" | "hold" | "rebalance",
  "predictedPrice": number,
  "predictedVolatility": number,
  "urgency": "low" | "medium" | "high" | "critical",
  "reasoning": "brief explanation"
}"""


def build_prompt(snapshot: PoolSnapshot) -> str:
    """User prompt describing the pool and its most recent prices."""
    recent = list(reversed(snapshot.price_history[:PROMPT_HISTORY_POINTS]))
    lines = "\n".join(f"{p.timestamp.isoformat()}: {p.price}" for p in recent)
    return (
        "Analyse this liquidity pool for a rebalancing decision:\n\n"
        f"Pool ID: {snapshot.pool_id}\n"
        f"Current Price: {snapshot.current_price}\n"
        f"24h Volume: {snapshot.volume_24h}\n"
        f"Total Liquidity: {snapshot.liquidity}\n"
        f"Price Change: {snapshot.price_change_pct:.2f}%\n\n"
        f"Recent Price History (last {len(recent)} data points):\n{lines}\n\n"
        "Consider the 69-bin precision curve, the up-only bias option, impermanent "
        "loss and execution costs. Only answer with high confidence."
    )


def parse_signal(text: str, model: Optional[str] = None) -> AdvisorySignal:
    """
    Extract and validate the JSON prediction in a model reply.

    Raises:
        MalformedDataError: no JSON object, or fields missing or out of range
    """
    match = _JSON_OBJECT.search(text or "")
    if not match:
        raise MalformedDataError("Model reply contains no JSON object",
                                 raw_data=(text or "")[:100], expected_format="json object")
    try:
        raw = orjson.loads(match.group(0))
    except orjson.JSONDecodeError as e:
        raise MalformedDataError(f"Model reply is not valid JSON: {e}",
                                 raw_data=match.group(0)[:100]) from e
    if not isinstance(raw, dict):
        raise MalformedDataError("Model reply JSON is not an object", raw_data=str(raw)[:100])

    confidence = _number(raw, "confidence")
    if not 0 <= confidence <= 100:
        raise MalformedDataError(f"Confidence out of range: {confidence}",
                                 raw_data=str(raw)[:100])
    predicted_price = _number(raw, "predictedPrice")
    if predicted_price <= 0:
        raise MalformedDataError(f"Predicted price must be positive: {predicted_price}",
                                 raw_data=str(raw)[:100])
    volatility = raw.get("predictedVolatility")

    try:
        action = SignalAction(str(raw.get("action", "")).lower())
        urgency = SignalUrgency(str(raw.get("urgency", "")).lower())
    except ValueError as e:
        raise MalformedDataError(f"Invalid signal field: {e}", raw_data=str(raw)[:100]) from e

    return AdvisorySignal(
        action=action,
        confidence=confidence,
        predicted_price=predicted_price,
        urgency=urgency,
        reasoning=str(raw.get("reasoning", "")),
        predicted_volatility=None if volatility is None else _number(raw, "predictedVolatility"),
        model=model,
    )


def _number(raw: dict[str, Any], key: str) -> float:
    value = raw.get(key)
    if isinstance(value, bool) or not isinstance(value, (int, float)) \
            or not math.isfinite(value):
        raise MalformedDataError(f"Field {key} must be a finite number",
                                 raw_data=str(raw)[:100], expected_format="number")
    return float(value)


class OpenAICompatibleSignalSource(AdvisorySignalSource):
    """
    Signal source backed by a chat completion model.

    The primary model is tried first; any transport, format or confidence
    failure falls through to the fallback model. The API key comes from the
    constructor, OPENROUTER_API_KEY or OPENAI_API_KEY.
    """

    def __init__(self, params: Optional[SignalParams] = None,
                 api_key: Optional[str] = None, client: Any = None) -> None:
        self.params = params or SignalParams()
        if client is None:
            api_key = api_key or os.getenv("OPENROUTER_API_KEY") or os.getenv("OPENAI_API_KEY")
            if not api_key:
                raise AdvisoryUnavailableError(
                    "No API key configured for the advisory model",
                    fallback_strategy="signals disabled",
                )
            client = OpenAI(
                api_key=api_key,
                base_url=self.params.base_url,
                timeout=self.params.timeout_seconds,
                max_retries=CLIENT_MAX_RETRIES,
            )
        self.client = client

    @property
    def models(self) -> list[str]:
        models = [self.params.primary_model]
        if self.params.fallback_model and self.params.fallback_model != self.params.primary_model:
            models.append(self.params.fallback_model)
        return models

    def generate_signal(self, snapshot: PoolSnapshot) -> AdvisorySignal:
        prompt = build_prompt(snapshot)
        errors = []
        for model in self.models:
            try:
                return self._call_model(model, prompt, snapshot.pool_id)
            except (AdvisoryUnavailableError, MalformedDataError) as e:
                logger.warning("Advisory model failed", model=model,
                               pool_id=snapshot.pool_id, error=str(e))
                errors.append(f"{model}: {e}")

        raise AdvisoryUnavailableError(
            "All advisory models failed: " + "; ".join(errors),
            pool_id=snapshot.pool_id,
        )

    def _call_model(self, model: str, prompt: str, pool_id: str) -> AdvisorySignal:
        try:
            response = self.client.chat.completions.create(
                model=model,
                temperature=self.params.temperature,
                max_tokens=self.params.max_tokens,
                messages=[
                    {"role": "system", "content": SYSTEM_PROMPT},
                    {"role": "user", "content": prompt},
                ],
            )
        except APITimeoutError as e:
            raise AdvisoryUnavailableError(f"Model {model} timed out", pool_id=pool_id) from e
        except APIConnectionError as e:
            raise AdvisoryUnavailableError(f"Failed to connect to model API: {e}",
                                           pool_id=pool_id) from e
        except RateLimitError as e:
            raise AdvisoryUnavailableError(f"Model API rate limit exceeded: {e}",
                                           pool_id=pool_id) from e
        except APIError as e:
            raise AdvisoryUnavailableError(f"Model API error: {e}", pool_id=pool_id) from e

        if not response.choices:
            raise AdvisoryUnavailableError(f"Model {model} returned no choices", pool_id=pool_id)
        signal = parse_signal(response.choices[0].message.content or "", model=model)

        if signal.confidence < self.params.confidence_floor:
            raise AdvisoryUnavailableError(
                f"Confidence {signal.confidence}% below floor {self.params.confidence_floor}%",
                pool_id=pool_id,
            )
        return signal
