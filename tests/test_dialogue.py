import dataclasses
import json

import openai
import pytest

from conftest import CUSTOMER_ID, ORG_ID, ScriptedLLM, text_reply, tool_reply
from support_engine.context.aggregator import ContextAggregator
from support_engine.core.errors import UpstreamServiceError
from support_engine.dialogue.complexity import ModelTier
from support_engine.dialogue.llm import OpenAIChatClient
from support_engine.dialogue.orchestrator import EMPTY_REPLY_TEXT, DialogueOrchestrator
from support_engine.dialogue.prompts import PromptBuilder, detect_language
from support_engine.dialogue.providers import ProviderRegistry, ResponseParameterStore
from support_engine.sessions.schemas import MessageRole
from support_engine.tools import default_tool_executor


@pytest.fixture
def bundle(commerce, settings, session_store):
    aggregator = ContextAggregator(commerce, settings=settings)
    try:
        session = session_store.get_or_create_session("dialogue", ORG_ID, CUSTOMER_ID)
        return aggregator.build(session, ORG_ID)
    finally:
        aggregator.shutdown()


def _orchestrator(llm, commerce, settings):
    return DialogueOrchestrator(llm, default_tool_executor(), commerce, settings=settings)


def test_direct_answer_is_the_reply(commerce, settings, bundle):
    llm = ScriptedLLM(text_reply("We ship across the EU."))

    outcome = _orchestrator(llm, commerce, settings).run("Do you ship to Belgium?", bundle, [])

    assert outcome.reply == "We ship across the EU."
    assert outcome.tool is None
    assert outcome.model_tier == ModelTier.FAST
    call = llm.calls[0]
    assert call["model"] == settings.fast_model
    assert call["params"] == {"temperature": 0.4, "max_tokens": 400}
    assert [m["role"] for m in call["messages"]] == ["system", "user"]
    assert len(call["tools"]) == 5


def test_tool_result_is_folded_without_second_round_trip(commerce, settings, bundle):
    llm = ScriptedLLM(tool_reply("order_lookup", '{"orderNumber": "1001"}', "Let me check."))

    outcome = _orchestrator(llm, commerce, settings).run("Where is order 1001?", bundle, [])

    assert len(llm.calls) == 1
    assert outcome.reply.startswith("Let me check.\n\nI found your order #1001:")
    assert outcome.tool.name == "order_lookup"


def test_tool_fragment_alone_when_model_sends_no_text(commerce, settings, bundle):
    llm = ScriptedLLM(tool_reply("get_store_policies", '{"policyType": "shipping"}'))

    outcome = _orchestrator(llm, commerce, settings).run("Shipping times?", bundle, [])

    assert outcome.reply.startswith("Orders are processed within 1-2 business days.")


def test_higher_cap_feeds_tool_result_back(commerce, settings, bundle):
    settings = dataclasses.replace(settings, max_tool_calls=2)
    llm = ScriptedLLM(
        tool_reply("check_shipping_status", '{"orderNumber": "1001"}'),
        text_reply("It shipped on May 16th and is on its way to Amsterdam."),
    )

    outcome = _orchestrator(llm, commerce, settings).run("Status of 1001?", bundle, [])

    assert outcome.reply == "It shipped on May 16th and is on its way to Amsterdam."
    assert outcome.tool.name == "check_shipping_status"
    follow_up = llm.calls[1]["messages"]
    assert follow_up[-2]["tool_calls"][0]["function"]["name"] == "check_shipping_status"
    tool_message = follow_up[-1]
    assert tool_message["role"] == "tool"
    assert tool_message["tool_call_id"] == "call_check_shipping_status"
    assert json.loads(tool_message["content"])["status"] == "ok"


def test_cap_is_enforced_with_higher_limit(commerce, settings, bundle):
    settings = dataclasses.replace(settings, max_tool_calls=2)
    llm = ScriptedLLM(
        tool_reply("product_search", '{"query": "vase"}'),
        tool_reply("product_search", '{"query": "throw"}'),
    )

    outcome = _orchestrator(llm, commerce, settings).run("Vases or throws?", bundle, [])

    assert len(llm.calls) == 2
    assert len(outcome.tool_calls) == 2
    assert "Linen Throw" in outcome.reply


def test_escalation_tool_ends_the_loop(commerce, settings, bundle):
    settings = dataclasses.replace(settings, max_tool_calls=3)
    llm = ScriptedLLM(tool_reply("escalate_to_agent", '{"reason": "legal question"}'))

    outcome = _orchestrator(llm, commerce, settings).run("I need a lawyer", bundle, [])

    assert len(llm.calls) == 1
    assert "support specialists" in outcome.reply


def test_zero_cap_offers_no_tools(commerce, settings, bundle):
    settings = dataclasses.replace(settings, max_tool_calls=0)
    llm = ScriptedLLM(text_reply(""))

    outcome = _orchestrator(llm, commerce, settings).run("hello there", bundle, [])

    assert llm.calls[0]["tools"] is None
    assert outcome.reply == EMPTY_REPLY_TEXT


def test_transcript_roles_are_mapped(commerce, settings, bundle, session_store):
    session = session_store.get_or_create_session("roles", ORG_ID)
    session_store.append_message(session.id, MessageRole.CUSTOMER, "hi")
    session_store.append_message(session.id, MessageRole.ASSISTANT, "hello")
    session_store.append_message(session.id, MessageRole.HUMAN_AGENT, "agent here")
    session_store.append_message(session.id, MessageRole.SYSTEM, "internal note")
    llm = ScriptedLLM(text_reply("ok"))

    _orchestrator(llm, commerce, settings).run(
        "thanks", bundle, session_store.recent_messages(session.id)
    )

    messages = llm.calls[0]["messages"]
    assert [(m["role"], m["content"]) for m in messages[1:]] == [
        ("user", "hi"),
        ("assistant", "hello"),
        ("assistant", "agent here"),
        ("user", "thanks"),
    ]


def test_complex_message_uses_capable_model(commerce, settings, bundle):
    llm = ScriptedLLM(text_reply("I'm sorry to hear that.", model="gpt-4o-2024-08-06"))

    outcome = _orchestrator(llm, commerce, settings).run(
        "This is unacceptable, my parcel is damaged", bundle, []
    )

    assert llm.calls[0]["model"] == settings.capable_model
    assert outcome.model_tier == ModelTier.CAPABLE
    assert outcome.model == "gpt-4o-2024-08-06"


def test_llm_failure_propagates(commerce, settings, bundle):
    llm = ScriptedLLM(UpstreamServiceError("timeout"))

    with pytest.raises(UpstreamServiceError):
        _orchestrator(llm, commerce, settings).run("hello", bundle, [])


def test_system_prompt_covers_store_and_customer(bundle):
    prompt = PromptBuilder().system_prompt(bundle, "Where is my order?", "nl")

    assert "Lumen Living" in prompt
    assert "Sanne de Vries" in prompt
    assert "Ceramic Vase (EUR 39.50)" in prompt
    assert "Q: How long does delivery take?" in prompt
    assert "ISO code 'nl'" in prompt


def test_language_detection():
    assert detect_language("Waar is mijn bestelling? Ik wacht al een week op het pakket.") == "nl"
    assert detect_language("ok") is None
    assert detect_language("") is None


def test_provider_registry_and_parameters(monkeypatch):
    monkeypatch.setenv("OPENAI_API_KEY", "sk-test")
    monkeypatch.delenv("OPENROUTER_API_KEY", raising=False)
    registry = ProviderRegistry({"local": {"api_key": "x", "base_url": "http://llm:8000/v1"}})

    assert registry.get_credentials("openai").configured
    assert registry.get_credentials("local").base_url == "http://llm:8000/v1"
    assert registry.list_supported_providers()["openrouter"] is False
    with pytest.raises(KeyError):
        registry.get_credentials("unknown")

    store = ResponseParameterStore({"fast": {"max_tokens": 200}})
    assert store.for_tier("fast") == {"temperature": 0.4, "max_tokens": 200}
    assert store.for_tier("capable")["max_tokens"] == 700


def test_azure_provider_uses_azure_client(monkeypatch):
    monkeypatch.setenv("AZURE_OPENAI_API_KEY", "az-test")
    monkeypatch.setenv("AZURE_OPENAI_ENDPOINT", "https://lumen.openai.azure.com")
    monkeypatch.delenv("AZURE_OPENAI_API_VERSION", raising=False)

    credentials = ProviderRegistry().get_credentials("azure")
    client = OpenAIChatClient(credentials)

    assert credentials.api_version == "2024-06-01"
    assert isinstance(client._client, openai.AzureOpenAI)
    assert credentials.base_url in str(client._client.base_url)


def test_azure_without_endpoint_is_not_configured(monkeypatch):
    monkeypatch.setenv("AZURE_OPENAI_API_KEY", "az-test")
    monkeypatch.delenv("AZURE_OPENAI_ENDPOINT", raising=False)

    credentials = ProviderRegistry().get_credentials("azure")

    assert not credentials.configured
    with pytest.raises(UpstreamServiceError):
        OpenAIChatClient(credentials).complete(model="gpt-4o-mini", messages=[])
