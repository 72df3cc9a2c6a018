"""
AI 提供方测试：响应解析、OpenAI 兼容接口、阿里云 DashScope、工厂与提示词。
不发出真实网络请求。
"""
import json
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import httpx
import openai
import pytest

from autoquote.config.settings import Settings
from autoquote.domain.entities.nlu import IntentType, NLUContext, PartnerEntity, ProductEntity
from autoquote.infrastructure.llm.factory import AIProviderFactory
from autoquote.infrastructure.llm.prompts import build_system_prompt, build_user_prompt
from autoquote.infrastructure.llm.providers import (
    AIProviderError, AIRateLimitError, AIResponseFormatError, AITimeoutError,
    AliyunProvider, OpenAICompatibleProvider
)
from autoquote.infrastructure.llm.response_parser import parse_nlu_response


class TestResponseParser:

    def test_fenced_flat_json(self):
        content = '```json\n' + json.dumps({
            "intent": "retail_quote",
            "confidence": 0.9,
            "partner": {"name": "张三", "confidence": 0.9},
            "products": [{"name": "可乐", "quantity": 2, "unit": "瓶"}],
            "prices": [],
        }, ensure_ascii=False) + '\n```'

        result = parse_nlu_response(content, "张三两瓶可乐多少钱", "mock")

        assert result.intent.intent == IntentType.RETAIL_QUOTE
        assert result.confidence == 0.9
        assert result.partner.name == "张三"
        assert [(p.name, p.quantity, p.unit, p.confidence) for p in result.products] == [("可乐", 2, "瓶", 0.8)]
        assert result.source == "ai"
        assert result.metadata == {"provider": "mock"}
        assert result.raw_text == "张三两瓶可乐多少钱"

    def test_nested_intent(self):
        result = parse_nlu_response('{"intent": {"type": "confirm", "confidence": 0.95}}', "好的", "mock")
        assert result.intent.intent == IntentType.CONFIRM
        assert result.confidence == 0.95

    def test_loose_shapes(self):
        content = json.dumps({
            "intent": "retail_quote",
            "confidence": 1.5,
            "partner": "老王",
            "products": ["纸巾", {"name": "可乐", "quantity": "两"}, {"name": ""}],
            "prices": ["3块", 2.5, "贵"],
        }, ensure_ascii=False)

        result = parse_nlu_response(content, "x", "mock")

        assert result.confidence == 1.0
        assert result.partner.name == "老王"
        assert [(p.name, p.quantity) for p in result.products] == [("纸巾", 1), ("可乐", 2)]
        assert [p.value for p in result.prices] == [3.0, 2.5]

    def test_unknown_intent_has_zero_confidence(self):
        result = parse_nlu_response('{"intent": "chitchat", "confidence": 0.9}', "x", "mock")
        assert result.intent.intent == IntentType.UNKNOWN
        assert result.confidence == 0.0

    def test_json_inside_prose(self):
        result = parse_nlu_response('结果如下：{"intent": "deny", "confidence": 0.9} 以上', "x", "mock")
        assert result.intent.intent == IntentType.DENY

    @pytest.mark.parametrize("content", [
        "不是 JSON",
        "[1, 2]",
        '{"intent": ',
        '{"intent": "confirm", "confidence": "high"}',
    ])
    def test_invalid_responses(self, content):
        with pytest.raises(AIResponseFormatError):
            parse_nlu_response(content, "x", "mock")


def openai_response(content: str):
    return SimpleNamespace(choices=[SimpleNamespace(message=SimpleNamespace(content=content))])


@pytest.fixture
def openai_client():
    client = MagicMock()
    client.chat.completions.create = AsyncMock(
        return_value=openai_response('{"intent": "confirm", "confidence": 0.9}')
    )
    client.close = AsyncMock()
    return client


class TestOpenAICompatibleProvider:

    async def test_parse(self, openai_client):
        provider = OpenAICompatibleProvider({"api_key": "k", "model": "deepseek-chat"}, client=openai_client)

        context = NLUContext(current_partner=PartnerEntity(name="张三"))
        result = await provider.parse("好的", context)

        assert result.intent.intent == IntentType.CONFIRM
        assert result.metadata["provider"] == "openai"
        kwargs = openai_client.chat.completions.create.call_args.kwargs
        assert kwargs["model"] == "deepseek-chat"
        assert kwargs["response_format"] == {"type": "json_object"}
        assert "当前顾客：张三" in kwargs["messages"][1]["content"]

    async def test_rate_limit(self, openai_client):
        request = httpx.Request("POST", "https://api.openai.com/v1/chat/completions")
        openai_client.chat.completions.create.side_effect = openai.RateLimitError(
            "too many", response=httpx.Response(429, request=request), body=None
        )
        provider = OpenAICompatibleProvider({"api_key": "k"}, client=openai_client)

        with pytest.raises(AIRateLimitError):
            await provider.complete("s", "u")

    async def test_timeout(self, openai_client):
        request = httpx.Request("POST", "https://api.openai.com/v1/chat/completions")
        openai_client.chat.completions.create.side_effect = openai.APITimeoutError(request=request)
        provider = OpenAICompatibleProvider({"api_key": "k"}, client=openai_client)

        with pytest.raises(AITimeoutError):
            await provider.complete("s", "u")

    async def test_other_errors_wrapped(self, openai_client):
        openai_client.chat.completions.create.side_effect = RuntimeError("boom")
        provider = OpenAICompatibleProvider({"api_key": "k"}, client=openai_client)

        with pytest.raises(AIProviderError) as exc_info:
            await provider.parse("好的")

        assert isinstance(exc_info.value.original_error, RuntimeError)

    async def test_bad_json_raises_format_error(self, openai_client):
        openai_client.chat.completions.create.return_value = openai_response("抱歉，我不知道")
        provider = OpenAICompatibleProvider({"api_key": "k"}, client=openai_client)

        with pytest.raises(AIResponseFormatError):
            await provider.parse("好的")

    async def test_health_check(self, openai_client):
        provider = OpenAICompatibleProvider({"api_key": "k"}, client=openai_client)
        assert await provider.is_healthy() is True

        openai_client.chat.completions.create.side_effect = RuntimeError("down")
        assert await provider.is_healthy() is False

    async def test_close(self, openai_client):
        provider = OpenAICompatibleProvider({"api_key": "k"}, client=openai_client)
        await provider.close()
        openai_client.close.assert_awaited_once()

    def test_requires_api_key(self):
        with pytest.raises(ValueError):
            OpenAICompatibleProvider({})


def dashscope_client(responses):
    """按请求的模型名返回预设响应，并记录请求"""
    requests = []

    def handler(request: httpx.Request) -> httpx.Response:
        body = json.loads(request.content)
        requests.append(body)
        response = responses[body["model"]]
        if isinstance(response, Exception):
            raise response
        status, payload = response
        return httpx.Response(status, json=payload)

    return httpx.AsyncClient(transport=httpx.MockTransport(handler)), requests


def generation_output(content: str):
    return {"output": {"choices": [{"message": {"content": content}}]}}


ALIYUN_CONFIG = {"api_key": "k", "model": "qwen-flash", "intent_model": "tongyi-intent-detect-v3"}


class TestAliyunProvider:

    async def test_intent_model_slots(self):
        client, requests = dashscope_client({
            "tongyi-intent-detect-v3": (200, {"output": {
                "intent": "retail_quote",
                "confidence": 0.9,
                "slots": {"partner": "张三", "product": ["可乐", "纸巾"], "quantity": ["2", "三"], "unit": ["瓶", "包"]},
            }}),
        })
        provider = AliyunProvider(ALIYUN_CONFIG, client=client)

        result = await provider.parse("张三两瓶可乐三包纸巾多少钱")

        assert result.intent.intent == IntentType.RETAIL_QUOTE
        assert result.partner.name == "张三"
        assert [(p.name, p.quantity, p.unit) for p in result.products] == [("可乐", 2, "瓶"), ("纸巾", 3, "包")]
        assert len(requests) == 1
        assert requests[0]["input"]["prompt"] == "张三两瓶可乐三包纸巾多少钱"

    async def test_intent_model_failure_falls_back_to_general_model(self):
        client, requests = dashscope_client({
            "tongyi-intent-detect-v3": (500, {"message": "internal error"}),
            "qwen-flash": (200, generation_output('{"intent": "confirm", "confidence": 0.9}')),
        })
        provider = AliyunProvider(ALIYUN_CONFIG, client=client)

        result = await provider.parse("好的")

        assert result.intent.intent == IntentType.CONFIRM
        assert [r["model"] for r in requests] == ["tongyi-intent-detect-v3", "qwen-flash"]

    async def test_general_model_only(self):
        client, requests = dashscope_client({
            "qwen-flash": (200, generation_output('```json\n{"intent": "deny", "confidence": 0.8}\n```')),
        })
        provider = AliyunProvider({**ALIYUN_CONFIG, "use_intent_model": False}, client=client)

        result = await provider.parse("不对")

        assert result.intent.intent == IntentType.DENY
        assert requests[0]["input"]["messages"][0]["role"] == "system"

    async def test_http_error(self):
        client, _ = dashscope_client({"qwen-flash": (503, {"message": "unavailable"})})
        provider = AliyunProvider({**ALIYUN_CONFIG, "use_intent_model": False}, client=client)

        with pytest.raises(AIProviderError):
            await provider.parse("好的")

    async def test_rate_limit(self):
        client, _ = dashscope_client({"tongyi-intent-detect-v3": (429, {"message": "throttled"})})
        provider = AliyunProvider(ALIYUN_CONFIG, client=client)

        with pytest.raises(AIRateLimitError):
            await provider.parse("好的")

    async def test_timeout(self):
        client, _ = dashscope_client({"qwen-flash": httpx.ReadTimeout("timed out")})
        provider = AliyunProvider({**ALIYUN_CONFIG, "use_intent_model": False}, client=client)

        with pytest.raises(AITimeoutError):
            await provider.parse("好的")

    async def test_malformed_generation_response(self):
        client, _ = dashscope_client({"qwen-flash": (200, {"output": {}})})
        provider = AliyunProvider({**ALIYUN_CONFIG, "use_intent_model": False}, client=client)

        with pytest.raises(AIProviderError):
            await provider.complete("s", "u")

    async def test_close(self):
        client, _ = dashscope_client({})
        provider = AliyunProvider(ALIYUN_CONFIG, client=client)
        await provider.close()
        assert client.is_closed

    def test_requires_api_key(self):
        with pytest.raises(ValueError):
            AliyunProvider({})


@pytest.fixture
def ai_settings() -> Settings:
    config = Settings()
    config.ai_enabled = True
    config.ai_provider = "auto"
    config.openai_api_key = ""
    config.dashscope_api_key = ""
    return config


class TestAIProviderFactory:

    def test_disabled(self, ai_settings):
        ai_settings.ai_enabled = False
        ai_settings.openai_api_key = "k"
        assert AIProviderFactory(ai_settings).create_default_provider() is None

    def test_nothing_configured(self, ai_settings):
        assert AIProviderFactory(ai_settings).create_default_provider() is None

    def test_auto_prefers_openai(self, ai_settings):
        ai_settings.openai_api_key = "k1"
        ai_settings.dashscope_api_key = "k2"
        assert isinstance(AIProviderFactory(ai_settings).create_default_provider(), OpenAICompatibleProvider)

    def test_auto_falls_back_to_aliyun(self, ai_settings):
        ai_settings.dashscope_api_key = "k2"
        factory = AIProviderFactory(ai_settings)
        assert factory.available_providers() == ["aliyun"]
        assert isinstance(factory.create_default_provider(), AliyunProvider)

    def test_explicit_provider_without_key(self, ai_settings):
        ai_settings.ai_provider = "aliyun"
        assert AIProviderFactory(ai_settings).create_default_provider() is None

    def test_cached(self, ai_settings):
        ai_settings.dashscope_api_key = "k2"
        factory = AIProviderFactory(ai_settings)
        assert factory.create_provider("aliyun") is factory.create_provider("aliyun")

    def test_unsupported(self, ai_settings):
        with pytest.raises(AIProviderError):
            AIProviderFactory(ai_settings).create_provider("yandex")

    async def test_close_all(self, ai_settings):
        ai_settings.dashscope_api_key = "k2"
        factory = AIProviderFactory(ai_settings)
        provider = factory.create_provider("aliyun")
        provider.close = AsyncMock()

        await factory.close_all()

        provider.close.assert_awaited_once()
        assert factory.create_provider("aliyun") is not provider


class TestPrompts:

    def test_system_prompt_lists_intents_and_example(self):
        prompt = build_system_prompt()
        for intent in IntentType:
            assert intent.value in prompt
        assert '"intent": "retail_quote"' in prompt

    def test_user_prompt_with_context(self):
        context = NLUContext(
            current_partner=PartnerEntity(name="张三"),
            cart_items=[ProductEntity(name="可乐", quantity=2, unit="瓶")],
            last_intent=IntentType.RETAIL_QUOTE,
        )

        prompt = build_user_prompt("再来三包纸巾", context)

        assert '用户输入："再来三包纸巾"' in prompt
        assert "当前顾客：张三" in prompt
        assert "购物车：可乐2瓶" in prompt
        assert "上一轮意图：retail_quote" in prompt

    def test_user_prompt_keeps_braces(self):
        assert build_user_prompt("来{两}瓶") == '用户输入："来{两}瓶"'
