import asyncio
import unittest

from chat_relay.errors import InvalidModelError
from chat_relay.messages import normalize
from chat_relay.provider import ProviderClient, ProviderRegistry, create_provider
from chat_relay.providers.anthropic_provider import AnthropicProvider
from chat_relay.providers.openai_provider import OpenAIProvider
from tests.fakes import FakeProvider


class ProviderRegistryTests(unittest.TestCase):
    def setUp(self) -> None:
        self.registry = ProviderRegistry()
        self.client = FakeProvider(tokens_per_message=7)

    def test_fake_satisfies_client_protocol(self) -> None:
        self.assertIsInstance(self.client, ProviderClient)

    def test_resolve_returns_binding_with_budget(self) -> None:
        self.registry.register("m1", self.client, token_budget=500)
        binding = self.registry.resolve("m1")
        self.assertIs(self.client, binding.client)
        self.assertEqual(500, binding.token_budget)
        self.assertEqual("fake", binding.provider_name)

    def test_binding_counts_tokens_for_its_model(self) -> None:
        binding = self.registry.register("m1", self.client, token_budget=500)
        count = asyncio.run(binding.count_tokens([normalize("a"), normalize("b")]))
        self.assertEqual(14, count)
        self.assertEqual(1, self.client.count_calls)

    def test_unknown_model_raises_invalid_model(self) -> None:
        self.registry.register("m1", self.client, token_budget=500)
        with self.assertRaises(InvalidModelError) as ctx:
            self.registry.resolve("m2")
        self.assertIn("m1", str(ctx.exception))
        self.assertEqual("m2", ctx.exception.extra["model"])

    def test_non_positive_budget_is_rejected(self) -> None:
        with self.assertRaises(ValueError):
            self.registry.register("m1", self.client, token_budget=0)

    def test_models_are_sorted(self) -> None:
        self.registry.register("zeta", self.client, token_budget=1)
        self.registry.register("alpha", self.client, token_budget=1)
        self.assertEqual(["alpha", "zeta"], self.registry.models())


class CreateProviderTests(unittest.TestCase):
    def test_known_names_are_case_insensitive(self) -> None:
        self.assertIsInstance(create_provider(" Anthropic ", "key"), AnthropicProvider)
        self.assertIsInstance(create_provider("openai", "key"), OpenAIProvider)

    def test_unknown_provider_raises(self) -> None:
        with self.assertRaises(ValueError):
            create_provider("gemini", "key")


if __name__ == "__main__":
    unittest.main()
