"""Shared fixtures: a scripted upstream model and in-memory collaborators."""

from unittest.mock import Mock

import pytest

from crm_assistant.models.llm import ContentDelta, ToolCallDelta, UpstreamError, UpstreamEvent, UpstreamMessage
from crm_assistant.services.chat import ChatService
from crm_assistant.services.crm import InMemoryCrmBackend
from crm_assistant.services.message_store import InMemoryMessageStore
from crm_assistant.services.orchestrator import OrchestratorConfig, TurnOrchestrator
from crm_assistant.tools import ToolContext, ToolsRegistry
from crm_assistant.utils.tokens import TokenEstimator

WORKSPACE_ID = "ws_1"
USER_ID = "user_1"


def text_round(*chunks: str) -> list[UpstreamEvent]:
    """A round that streams plain assistant text."""
    return [ContentDelta(content=chunk) for chunk in chunks]


def tool_round(*calls: tuple[str, str, str], text: str = "") -> list[UpstreamEvent]:
    """A round that streams tool calls as (id, name, arguments), arguments split in two fragments."""
    events: list[UpstreamEvent] = [ContentDelta(content=text)] if text else []
    for index, (call_id, name, arguments) in enumerate(calls):
        half = len(arguments) // 2
        events.append(ToolCallDelta(index=index, id=call_id, name=name, arguments=arguments[:half]))
        events.append(ToolCallDelta(index=index, arguments=arguments[half:]))
    return events


def error_round(message: str = "OpenRouter error: 502") -> list[UpstreamEvent]:
    return [UpstreamError(message=message, status_code=502)]


class ScriptedUpstream:
    """Fake upstream client replaying one scripted list of events per round."""

    def __init__(self, rounds: list[list[UpstreamEvent]] | None = None, title: str = "Scripted title"):
        self.rounds = list(rounds or [])
        self.requests: list[list[UpstreamMessage]] = []
        self.models: list[str | None] = []
        self.title = title
        self.is_configured = True
        self.default_model = "test/model"

    def script(self, *rounds: list[UpstreamEvent]) -> None:
        self.rounds.extend(rounds)

    async def stream_chat(self, messages, tools, model=None, identifier="openrouter"):
        self.requests.append(list(messages))
        self.models.append(model)
        if not self.rounds:
            raise AssertionError("Upstream called more times than scripted")
        for event in self.rounds.pop(0):
            yield event

    async def generate_title(self, user_message: str, model: str | None = None) -> str:
        return self.title

    async def aclose(self) -> None:
        pass


async def collect(events) -> list:
    """Drain an async event iterator into a list."""
    return [event async for event in events]


@pytest.fixture
def ctx():
    return ToolContext(workspace_id=WORKSPACE_ID, user_id=USER_ID)


@pytest.fixture
def crm():
    return InMemoryCrmBackend()


@pytest.fixture
def store():
    return InMemoryMessageStore(default_model="test/model")


@pytest.fixture
def registry(crm):
    return ToolsRegistry(crm)


@pytest.fixture
def upstream():
    return ScriptedUpstream()


@pytest.fixture
def config():
    return OrchestratorConfig(max_tool_rounds=10, max_message_tokens=50)


@pytest.fixture
def orchestrator(store, registry, upstream, config):
    return TurnOrchestrator(store, registry, upstream, config)


@pytest.fixture
def token_estimator():
    tokenizer = Mock()
    tokenizer.encode.side_effect = lambda text: text.split()
    return TokenEstimator(tokenizer=tokenizer)


@pytest.fixture
def service(store, crm, registry, upstream, config, token_estimator):
    return ChatService(
        store=store, crm=crm, registry=registry, client=upstream, config=config, token_estimator=token_estimator
    )
