from __future__ import annotations

import json
import os
from collections.abc import Iterable
from dataclasses import dataclass, field
from pathlib import Path

_API_KEY_ENV_VARS = {
    "anthropic": "ANTHROPIC_API_KEY",
    "openai": "OPENAI_API_KEY",
}


@dataclass
class RuntimeEnv:
    api_keys: dict[str, str]

    def api_key_for(self, provider_name: str) -> str:
        return self.api_keys.get(provider_name, "")


@dataclass
class ModelConfig:
    provider_name: str
    token_budget: int


@dataclass
class AppConfig:
    provider_name: str
    model: str
    models: dict[str, ModelConfig]
    token_budget: int
    temperature: float
    top_p: float
    max_tokens: int
    session_idle_minutes: int
    sweep_interval_minutes: float
    trim_strategy: str
    session_store: str
    session_db_path: str
    serialize_sessions: bool
    request_timeout_seconds: float
    log_level: str
    log_consumers: list | None = field(default=None)

    def provider_names(self) -> set[str]:
        return {m.provider_name for m in self.models.values()}


def load_json_config() -> dict:
    config_path = Path.cwd() / "config.json"
    if config_path.exists():
        with open(config_path) as f:
            return json.load(f)
    return {}


def _to_bool(value: object, default: bool = False) -> bool:
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in {"1", "true", "yes", "on"}:
            return True
        if lowered in {"0", "false", "no", "off"}:
            return False
    return bool(value)


def _parse_models(raw: dict, provider_name: str, model: str, token_budget: int) -> dict[str, ModelConfig]:
    models: dict[str, ModelConfig] = {}
    for name, entry in (raw or {}).items():
        entry = entry or {}
        models[name] = ModelConfig(
            provider_name=str(entry.get("Provider", provider_name)).strip().lower(),
            token_budget=int(entry.get("TokenBudget", token_budget)),
        )
    models.setdefault(model, ModelConfig(provider_name=provider_name, token_budget=token_budget))
    return models


def parse_app_config(config: dict) -> AppConfig:
    provider_name = config.get("Provider", "anthropic").strip().lower()
    model = config.get("Model", "claude-sonnet-4-5-20250929")
    token_budget = int(config.get("TokenBudget", 30_000))
    trim_strategy = str(config.get("TrimStrategy", "linear")).strip().lower()
    if trim_strategy not in {"linear", "bisect"}:
        raise ValueError(f"Unknown TrimStrategy: {trim_strategy!r}. Supported: 'linear', 'bisect'")
    session_store = str(config.get("SessionStore", "memory")).strip().lower()
    if session_store not in {"memory", "sqlite"}:
        raise ValueError(f"Unknown SessionStore: {session_store!r}. Supported: 'memory', 'sqlite'")

    return AppConfig(
        provider_name=provider_name,
        model=model,
        models=_parse_models(config.get("Models", {}), provider_name, model, token_budget),
        token_budget=token_budget,
        temperature=float(config.get("Temperature", 0.7)),
        top_p=float(config.get("TopP", 0.95)),
        max_tokens=int(config.get("MaxTokens", 800)),
        session_idle_minutes=int(config.get("SessionIdleMinutes", 60)),
        sweep_interval_minutes=float(config.get("SweepIntervalMinutes", 30)),
        trim_strategy=trim_strategy,
        session_store=session_store,
        session_db_path=str(config.get("SessionDbPath", ".chat_relay/sessions.db")),
        serialize_sessions=_to_bool(config.get("SerializeSessions", True), default=True),
        request_timeout_seconds=float(config.get("RequestTimeoutSeconds", 60)),
        log_level=config.get("LogLevel", "INFO"),
        log_consumers=config.get("LogConsumers"),
    )


def resolve_runtime_env(provider_names: Iterable[str]) -> RuntimeEnv:
    api_keys: dict[str, str] = {}
    for name in provider_names:
        env_var = _API_KEY_ENV_VARS.get(name)
        if env_var is None:
            raise ValueError(f"Unknown provider: {name!r}. Supported: {', '.join(_API_KEY_ENV_VARS)}")
        api_keys[name] = os.environ.get(env_var, "")
    return RuntimeEnv(api_keys=api_keys)


def missing_api_key_vars(env: RuntimeEnv) -> list[str]:
    return [_API_KEY_ENV_VARS[name] for name, key in env.api_keys.items() if not key]
