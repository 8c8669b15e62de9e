import os
import unittest
from unittest.mock import patch

from chat_relay.app_config import (
    ModelConfig,
    RuntimeEnv,
    _to_bool,
    missing_api_key_vars,
    parse_app_config,
    resolve_runtime_env,
)


class ParseAppConfigTests(unittest.TestCase):
    def test_defaults(self) -> None:
        app = parse_app_config({})
        self.assertEqual("anthropic", app.provider_name)
        self.assertEqual(30_000, app.token_budget)
        self.assertEqual((0.7, 0.95, 800), (app.temperature, app.top_p, app.max_tokens))
        self.assertEqual(60, app.session_idle_minutes)
        self.assertEqual(30, app.sweep_interval_minutes)
        self.assertEqual("linear", app.trim_strategy)
        self.assertEqual("memory", app.session_store)
        self.assertTrue(app.serialize_sessions)
        self.assertIsNone(app.log_consumers)
        self.assertEqual({app.model: ModelConfig("anthropic", 30_000)}, app.models)

    def test_models_inherit_provider_and_budget(self) -> None:
        app = parse_app_config(
            {
                "Provider": "OpenAI",
                "Model": "gpt-4o-mini",
                "TokenBudget": 8000,
                "Models": {
                    "gpt-4o": {"TokenBudget": 64000},
                    "claude-haiku": {"Provider": "anthropic"},
                },
            }
        )
        self.assertEqual(ModelConfig("openai", 64000), app.models["gpt-4o"])
        self.assertEqual(ModelConfig("anthropic", 8000), app.models["claude-haiku"])
        self.assertEqual(ModelConfig("openai", 8000), app.models["gpt-4o-mini"])
        self.assertEqual({"openai", "anthropic"}, app.provider_names())

    def test_string_booleans_are_parsed(self) -> None:
        self.assertFalse(parse_app_config({"SerializeSessions": "off"}).serialize_sessions)
        self.assertTrue(_to_bool("Yes"))
        self.assertTrue(_to_bool(None, default=True))

    def test_invalid_choices_are_rejected(self) -> None:
        with self.assertRaises(ValueError):
            parse_app_config({"TrimStrategy": "random"})
        with self.assertRaises(ValueError):
            parse_app_config({"SessionStore": "redis"})


class RuntimeEnvTests(unittest.TestCase):
    @patch.dict(os.environ, {"ANTHROPIC_API_KEY": "sk-ant", "OPENAI_API_KEY": ""}, clear=False)
    def test_reports_missing_keys(self) -> None:
        env = resolve_runtime_env(["anthropic", "openai"])
        self.assertEqual("sk-ant", env.api_key_for("anthropic"))
        self.assertEqual(["OPENAI_API_KEY"], missing_api_key_vars(env))

    def test_unknown_provider_is_rejected(self) -> None:
        with self.assertRaises(ValueError):
            resolve_runtime_env(["gemini"])

    def test_api_key_for_unknown_provider_is_empty(self) -> None:
        self.assertEqual("", RuntimeEnv(api_keys={}).api_key_for("openai"))


if __name__ == "__main__":
    unittest.main()
