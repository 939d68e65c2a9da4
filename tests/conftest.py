import pytest

from subsai.configuration import SubsAIConfig
from subsai.providers import EchoTranslationProvider
from subsai.structures import Segment
from subsai.tokens import CharacterEstimator


class ScriptedProvider(EchoTranslationProvider):
    """Answers completions from a script of strings, callables or exceptions."""

    def __init__(self, script):
        super().__init__()
        self.script = list(script)
        self.calls = []

    async def complete(self, body):
        text = body["messages"][-1]["content"]
        self.calls.append(text)
        step = self.script.pop(0) if len(self.script) > 1 else self.script[0]
        if isinstance(step, Exception):
            raise step
        if callable(step):
            return step(text)
        return step


class RecordingBatchProvider(EchoTranslationProvider):
    """Echo batches through a reply function, recording each submitted batch."""

    def __init__(self, answer=None):
        super().__init__()
        self.answer = answer or (lambda text: text)
        self.submitted = []

    def reply(self, text):
        return self.answer(text)

    async def create_batch(self, lines):
        self.submitted.append([line["body"]["messages"][-1]["content"] for line in lines])
        return await super().create_batch(lines)


def drop_last_line(text):
    return "\n".join(text.split("\n")[:-1])


@pytest.fixture
def make_settings(tmp_path):
    def factory(**overrides):
        values = {
            "_env_file": None,
            "TARGET_LANGUAGE": "Spanish",
            "TARGET_LANGUAGE_ALIAS": "es,spa",
            "LLM_PROVIDER": "echo",
            "AI_MODEL": "gpt-4o-mini",
            "CACHE_PATH": tmp_path / "cache.json",
            "ERROR_CORPUS_PATH": tmp_path / "most-errored.jsonl",
            "POLL_INTERVAL": 0.01,
        }
        values.update(overrides)
        return SubsAIConfig(**values)

    return factory


@pytest.fixture
def estimator():
    return CharacterEstimator(chars_per_token=1)


@pytest.fixture
def segments():
    return [
        Segment(header="1\n00:00:01,000 --> 00:00:02,000\n", content="Hello."),
        Segment(header="2\n00:00:03,000 --> 00:00:04,000\n", content="How are you?"),
        Segment(header="3\n00:00:05,000 --> 00:00:06,000\n", content="Goodbye."),
    ]
