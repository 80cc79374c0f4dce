"""Tests for the OpenAI-compatible advisory source."""

from datetime import datetime, timedelta, timezone
from types import SimpleNamespace
from unittest.mock import MagicMock

import httpx
import pytest
from openai import APITimeoutError

from lp_keeper.config.defaults import SignalParams
from lp_keeper.errors import AdvisoryUnavailableError, MalformedDataError
from lp_keeper.models.signals import PoolSnapshot, PricePoint, SignalAction, SignalUrgency
from lp_keeper.signals.openai_source import (
    OpenAICompatibleSignalSource,
    build_prompt,
    parse_signal,
)

GOOD_REPLY = """Here is my analysis:
{"confidence": 93, "action": "rebalance", "predictedPrice": 1.07,
 "predictedVolatility": 4.5, "urgency": "high", "reasoning": "breakout above range"}
"""


def _completion(text):
    return SimpleNamespace(choices=[SimpleNamespace(message=SimpleNamespace(content=text))])


@pytest.fixture
def snapshot():
    start = datetime(2024, 1, 1, tzinfo=timezone.utc)
    history = tuple(
        PricePoint(price=1.0 + i / 100, timestamp=start + timedelta(minutes=i))
        for i in reversed(range(30))
    )
    return PoolSnapshot(pool_id="pool-1", current_price=history[0].price, volume_24h=5000.0,
                        liquidity=90000.0, price_history=history)


class TestParseSignal:

    def test_extracts_json_from_prose(self):
        signal = parse_signal(GOOD_REPLY, model="m")

        assert signal.action == SignalAction.REBALANCE
        assert signal.urgency == SignalUrgency.HIGH
        assert signal.confidence == 93.0
        assert signal.predicted_price == 1.07
        assert signal.predicted_volatility == 4.5
        assert signal.model == "m"

    @pytest.mark.parametrize("text", [
        "no json here",
        '{"confidence": 95, "action": "moon", "predictedPrice": 1, "urgency": "low"}',
        '{"confidence": 150, "action": "hold", "predictedPrice": 1, "urgency": "low"}',
        '{"confidence": "high", "action": "hold", "predictedPrice": 1, "urgency": "low"}',
        '{"confidence": 95, "action": "hold", "predictedPrice": -1, "urgency": "low"}',
        '{"confidence": 95, "action": "hold", "predictedPrice": 1}',
        "{not valid json}",
    ])
    def test_rejects_bad_replies(self, text):
        with pytest.raises(MalformedDataError):
            parse_signal(text)


class TestBuildPrompt:

    def test_includes_recent_history_oldest_first(self, snapshot):
        prompt = build_prompt(snapshot)

        assert "Pool ID: pool-1" in prompt
        assert "last 20 data points" in prompt
        lines = [line for line in prompt.splitlines() if line.startswith("2024-")]
        assert len(lines) == 20
        assert lines[-1].endswith(str(snapshot.current_price))


class TestOpenAICompatibleSignalSource:

    def test_primary_model_used(self, snapshot):
        client = MagicMock()
        client.chat.completions.create.return_value = _completion(GOOD_REPLY)
        params = SignalParams()

        signal = OpenAICompatibleSignalSource(params, client=client).generate_signal(snapshot)

        assert signal.model == params.primary_model
        kwargs = client.chat.completions.create.call_args.kwargs
        assert kwargs["model"] == "minimax/minimax-m2.5"
        assert kwargs["temperature"] == 0.3
        assert kwargs["max_tokens"] == 1000

    def test_falls_back_on_api_error(self, snapshot):
        client = MagicMock()
        request = httpx.Request("POST", "https://openrouter.ai/api/v1/chat/completions")
        client.chat.completions.create.side_effect = [
            APITimeoutError(request=request),
            _completion(GOOD_REPLY),
        ]

        signal = OpenAICompatibleSignalSource(client=client).generate_signal(snapshot)

        assert signal.model == "deepseek/deepseek-chat-v3.1"

    def test_falls_back_on_low_confidence(self, snapshot):
        client = MagicMock()
        client.chat.completions.create.side_effect = [
            _completion(GOOD_REPLY.replace("93", "70")),
            _completion(GOOD_REPLY),
        ]

        signal = OpenAICompatibleSignalSource(client=client).generate_signal(snapshot)
        assert signal.confidence == 93.0

    def test_all_models_failing(self, snapshot):
        client = MagicMock()
        client.chat.completions.create.return_value = _completion("I cannot help with that")

        with pytest.raises(AdvisoryUnavailableError) as exc_info:
            OpenAICompatibleSignalSource(client=client).generate_signal(snapshot)
        assert exc_info.value.pool_id == "pool-1"
        assert client.chat.completions.create.call_count == 2

    def test_requires_api_key(self, monkeypatch):
        monkeypatch.delenv("OPENROUTER_API_KEY", raising=False)
        monkeypatch.delenv("OPENAI_API_KEY", raising=False)

        with pytest.raises(AdvisoryUnavailableError):
            OpenAICompatibleSignalSource()

    def test_builds_client_from_environment(self, monkeypatch):
        monkeypatch.setenv("OPENROUTER_API_KEY", "sk-or-test")
        source = OpenAICompatibleSignalSource(SignalParams(timeout_seconds=12.0))

        assert str(source.client.base_url).startswith("https://openrouter.ai/api/v1")
        assert source.client.api_key == "sk-or-test"
