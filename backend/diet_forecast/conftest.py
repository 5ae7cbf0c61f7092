import pytest

from diet_forecast.config import PipelineLimits, Settings
from diet_forecast.kv_store import MemoryKeyValueStore
from diet_forecast.party_names import PartyNameNormalizer
from diet_forecast.reference_data import load_reference_data


class FakeLLM:
    """Stands in for GenerationClient. Replies are picked by the first marker found in the prompt.

    A reply may be a string, an exception instance (raised), or a callable(prompt, temperature).
    """

    def __init__(self, replies=None, default="申し訳ありませんが回答できません"):
        self.replies = list(replies or [])
        self.default = default
        self.calls = []

    async def generate(self, prompt, temperature=0.7, max_tokens=4096, context_window=8192):
        self.calls.append({"prompt": prompt, "temperature": temperature, "max_tokens": max_tokens})
        reply = self.default
        for marker, candidate in self.replies:
            if marker in prompt:
                reply = candidate
                break
        if isinstance(reply, Exception):
            raise reply
        if callable(reply):
            return reply(prompt, temperature)
        return reply

    def calls_with(self, marker):
        return [c for c in self.calls if marker in c["prompt"]]


@pytest.fixture(scope="session")
def reference():
    return load_reference_data()


@pytest.fixture
def normalizer(reference):
    return PartyNameNormalizer(reference)


@pytest.fixture
def limits():
    return PipelineLimits()


@pytest.fixture
def store():
    return MemoryKeyValueStore()


@pytest.fixture
def settings():
    return Settings(perplexity_api_key="test-key", cache_backend="memory")


@pytest.fixture
def fake_llm():
    return FakeLLM
