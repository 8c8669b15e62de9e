import asyncio
import unittest
from types import SimpleNamespace

import httpx
import openai

from chat_relay.errors import InvalidModelError, ProviderUnavailableError
from chat_relay.messages import Role, normalize
from chat_relay.models import GenerationParams
from chat_relay.providers.openai_provider import OpenAIProvider

_REQUEST = httpx.Request("POST", "https://api.openai.com/v1/chat/completions")
_IMAGE = {"inline_data": {"mime_type": "image/png", "data": "AA=="}}


def _completion(text: str | None = "hi!", finish_reason: str | None = "stop", total_tokens: int = 57):
    message = SimpleNamespace(content=text)
    return SimpleNamespace(
        choices=[SimpleNamespace(message=message, finish_reason=finish_reason)],
        usage=SimpleNamespace(total_tokens=total_tokens),
    )


class _FakeCompletions:
    def __init__(self, response=None, error: Exception | None = None):
        self._response = response
        self._error = error
        self.calls: list[dict] = []

    async def create(self, **kwargs):
        self.calls.append(kwargs)
        if self._error is not None:
            raise self._error
        return self._response


class _FakeClient:
    def __init__(self, **kwargs):
        self.chat = SimpleNamespace(completions=_FakeCompletions(**kwargs))


class OpenAIProviderTests(unittest.TestCase):
    def setUp(self) -> None:
        self.params = GenerationParams()

    def _provider(self, **kwargs) -> tuple[OpenAIProvider, _FakeClient]:
        client = _FakeClient(**kwargs)
        return OpenAIProvider("test-key", client=client), client

    def test_send_uses_flat_wire_format(self) -> None:
        provider, client = self._provider(response=_completion("a chart"))
        messages = [
            normalize("Be brief.", role=Role.SYSTEM),
            normalize({"role": "user", "parts": ["describe", _IMAGE]}),
        ]

        reply = asyncio.run(provider.send("gpt-test", messages, self.params))

        call = client.chat.completions.calls[0]
        self.assertEqual("gpt-test", call["model"])
        self.assertEqual(800, call["max_tokens"])
        self.assertEqual(0.7, call["temperature"])
        self.assertEqual(0.95, call["top_p"])
        self.assertEqual(["system", "user"], [m["role"] for m in call["messages"]])
        self.assertTrue(call["messages"][1]["content"].startswith("describe {"))
        self.assertEqual("a chart", reply.text)
        self.assertEqual(57, reply.token_count)
        self.assertEqual("stop", reply.finish_reason)

    def test_model_role_is_sent_as_assistant(self) -> None:
        provider, client = self._provider(response=_completion())
        messages = [normalize("hi"), normalize("hello", role=Role.MODEL), normalize("bye")]

        asyncio.run(provider.send("gpt-test", messages, self.params))

        roles = [m["role"] for m in client.chat.completions.calls[0]["messages"]]
        self.assertEqual(["user", "assistant", "user"], roles)

    def test_count_tokens_estimates_locally(self) -> None:
        provider, _ = self._provider()
        count = asyncio.run(provider.count_tokens("gpt-test", [normalize("x" * 40), normalize("y" * 8)]))
        self.assertEqual((10 + 4) + (2 + 4), count)

    def test_missing_content_is_provider_unavailable(self) -> None:
        provider, _ = self._provider(response=_completion(text=None, finish_reason="content_filter"))
        with self.assertRaises(ProviderUnavailableError) as ctx:
            asyncio.run(provider.send("gpt-test", [normalize("hi")], self.params))
        self.assertIn("content_filter", str(ctx.exception))

    def test_no_choices_is_provider_unavailable(self) -> None:
        provider, _ = self._provider(response=SimpleNamespace(choices=[], usage=None))
        with self.assertRaises(ProviderUnavailableError):
            asyncio.run(provider.send("gpt-test", [normalize("hi")], self.params))

    def test_rejected_model_maps_to_invalid_model(self) -> None:
        error = openai.NotFoundError(
            "The model `gpt-nope` does not exist",
            response=httpx.Response(404, request=_REQUEST),
            body={"message": "The model `gpt-nope` does not exist", "type": "invalid_request_error", "code": "model_not_found"},
        )
        provider, _ = self._provider(error=error)
        with self.assertRaises(InvalidModelError):
            asyncio.run(provider.send("gpt-nope", [normalize("hi")], self.params))


if __name__ == "__main__":
    unittest.main()
