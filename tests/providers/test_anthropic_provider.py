import asyncio
import unittest
from types import SimpleNamespace

import anthropic
import httpx

from chat_relay.errors import InvalidMessageError, InvalidModelError, ProviderUnavailableError
from chat_relay.messages import Role, normalize
from chat_relay.models import ChatOverrides, GenerationParams
from chat_relay.providers.anthropic_provider import AnthropicProvider

_REQUEST = httpx.Request("POST", "https://api.anthropic.com/v1/messages")


def _status_error(cls, status: int, message: str):
    return cls(message, response=httpx.Response(status, request=_REQUEST), body=None)


def _response(text: str = "hello there", stop_reason: str | None = "end_turn"):
    content = [SimpleNamespace(type="text", text=text)] if text else []
    return SimpleNamespace(
        content=content,
        stop_reason=stop_reason,
        usage=SimpleNamespace(input_tokens=12, output_tokens=8),
    )


class _FakeMessages:
    def __init__(self, create_response=None, error: Exception | None = None, input_tokens: int = 17):
        self._create_response = create_response
        self._error = error
        self._input_tokens = input_tokens
        self.create_calls: list[dict] = []
        self.count_calls: list[dict] = []

    async def create(self, **kwargs):
        self.create_calls.append(kwargs)
        if self._error is not None:
            raise self._error
        return self._create_response

    async def count_tokens(self, **kwargs):
        self.count_calls.append(kwargs)
        return SimpleNamespace(input_tokens=self._input_tokens)


class _FakeClient:
    def __init__(self, **kwargs):
        self.messages = _FakeMessages(**kwargs)


class AnthropicProviderTests(unittest.TestCase):
    def setUp(self) -> None:
        self.params = GenerationParams(temperature=0.2, top_p=0.9, max_tokens=256)
        self.conversation = [
            normalize("Answer tersely.", role=Role.SYSTEM),
            normalize("What is the capital of France?"),
        ]

    def _provider(self, **kwargs) -> tuple[AnthropicProvider, _FakeClient]:
        client = _FakeClient(**kwargs)
        return AnthropicProvider("test-key", client=client), client

    def test_send_passes_params_and_lifts_system_prompt(self) -> None:
        provider, client = self._provider(create_response=_response("Paris"))

        reply = asyncio.run(provider.send("claude-test", self.conversation, self.params))

        call = client.messages.create_calls[0]
        self.assertEqual("claude-test", call["model"])
        self.assertEqual(256, call["max_tokens"])
        self.assertEqual(0.2, call["temperature"])
        self.assertNotIn("top_p", call)
        self.assertEqual("Answer tersely.", call["system"])
        self.assertEqual(["user"], [m["role"] for m in call["messages"]])
        self.assertEqual("Paris", reply.text)
        self.assertEqual(20, reply.token_count)
        self.assertEqual("end_turn", reply.finish_reason)

    def test_default_params_send_temperature_only(self) -> None:
        provider, client = self._provider(create_response=_response())

        asyncio.run(provider.send("claude-test", self.conversation, ChatOverrides().apply(GenerationParams())))

        call = client.messages.create_calls[0]
        self.assertEqual(["max_tokens", "messages", "model", "system", "temperature"], sorted(call))
        self.assertEqual(0.7, call["temperature"])

    def test_caller_top_p_replaces_temperature(self) -> None:
        provider, client = self._provider(create_response=_response())
        params = ChatOverrides(top_p=0.5).apply(GenerationParams())

        asyncio.run(provider.send("claude-test", self.conversation, params))

        call = client.messages.create_calls[0]
        self.assertEqual(0.5, call["top_p"])
        self.assertNotIn("temperature", call)

    def test_both_overridden_sends_temperature_only(self) -> None:
        provider, client = self._provider(create_response=_response())
        params = ChatOverrides(temperature=0.1, top_p=0.5).apply(GenerationParams())

        asyncio.run(provider.send("claude-test", self.conversation, params))

        call = client.messages.create_calls[0]
        self.assertEqual(0.1, call["temperature"])
        self.assertNotIn("top_p", call)

    def test_leading_assistant_message_is_skipped(self) -> None:
        provider, client = self._provider(create_response=_response())
        messages = [
            normalize("leftover answer", role=Role.MODEL),
            normalize("next question"),
        ]

        asyncio.run(provider.send("claude-test", messages, self.params))

        call = client.messages.create_calls[0]
        self.assertNotIn("system", call)
        self.assertEqual([{"role": "user", "content": [{"type": "text", "text": "next question"}]}], call["messages"])

    def test_count_tokens_uses_counting_endpoint(self) -> None:
        provider, client = self._provider(input_tokens=33)

        count = asyncio.run(provider.count_tokens("claude-test", self.conversation))

        self.assertEqual(33, count)
        self.assertEqual("Answer tersely.", client.messages.count_calls[0]["system"])

    def test_empty_reply_is_provider_unavailable(self) -> None:
        provider, _ = self._provider(create_response=_response(text="", stop_reason="max_tokens"))
        with self.assertRaises(ProviderUnavailableError) as ctx:
            asyncio.run(provider.send("claude-test", self.conversation, self.params))
        self.assertIn("max_tokens", str(ctx.exception))

    def test_unknown_model_maps_to_invalid_model(self) -> None:
        error = _status_error(anthropic.NotFoundError, 404, "model: claude-nope")
        provider, _ = self._provider(error=error)
        with self.assertRaises(InvalidModelError) as ctx:
            asyncio.run(provider.send("claude-nope", self.conversation, self.params))
        self.assertEqual("claude-nope", ctx.exception.extra["model"])
        self.assertIs(error, ctx.exception.__cause__)

    def test_bad_request_maps_to_invalid_message(self) -> None:
        error = _status_error(anthropic.BadRequestError, 400, "messages: text content blocks must be non-empty")
        provider, _ = self._provider(error=error)
        with self.assertRaises(InvalidMessageError):
            asyncio.run(provider.send("claude-test", self.conversation, self.params))

    def test_parameter_error_mentioning_model_is_invalid_message(self) -> None:
        error = anthropic.BadRequestError(
            "`temperature` and `top_p` cannot both be specified for this model",
            response=httpx.Response(400, request=_REQUEST),
            body={"type": "error", "error": {"type": "invalid_request_error", "message": "..."}},
        )
        provider, _ = self._provider(error=error)
        with self.assertRaises(InvalidMessageError):
            asyncio.run(provider.send("claude-test", self.conversation, self.params))


if __name__ == "__main__":
    unittest.main()
