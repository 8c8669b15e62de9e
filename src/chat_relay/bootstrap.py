from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from datetime import timedelta
from pathlib import Path

from chat_relay.app_config import AppConfig, RuntimeEnv
from chat_relay.logging_config import setup_logging
from chat_relay.models import GenerationParams
from chat_relay.provider import ProviderClient, ProviderRegistry, create_provider
from chat_relay.session_manager import SessionManager
from chat_relay.store import InMemorySessionStore, SessionStore, SqliteSessionStore
from chat_relay.sweeper import EvictionSweeper
from chat_relay.trimming import TRIMMERS

ProviderFactory = Callable[..., ProviderClient]


@dataclass
class AppRuntime:
    session_manager: SessionManager
    store: SessionStore
    registry: ProviderRegistry
    sweeper: EvictionSweeper
    log_descriptions: list[str]

    async def close(self) -> None:
        await self.sweeper.close()
        if isinstance(self.store, SqliteSessionStore):
            self.store.close()


def build_store(app: AppConfig) -> SessionStore:
    if app.session_store == "sqlite":
        db_path = Path(app.session_db_path)
        if not db_path.is_absolute():
            db_path = Path.cwd() / db_path
        return SqliteSessionStore(str(db_path))
    return InMemorySessionStore()


def build_registry(
    app: AppConfig,
    env: RuntimeEnv,
    provider_factory: ProviderFactory = create_provider,
) -> ProviderRegistry:
    registry = ProviderRegistry()
    clients: dict[str, ProviderClient] = {}
    for model, model_config in app.models.items():
        name = model_config.provider_name
        if name not in clients:
            clients[name] = provider_factory(
                name,
                env.api_key_for(name),
                timeout_seconds=app.request_timeout_seconds,
            )
        registry.register(model, clients[name], model_config.token_budget)
    return registry


async def bootstrap_runtime(
    app: AppConfig,
    env: RuntimeEnv,
    *,
    provider_factory: ProviderFactory = create_provider,
    start_sweeper: bool = True,
) -> AppRuntime:
    log_descriptions = setup_logging(level=app.log_level, consumers=app.log_consumers)

    store = build_store(app)
    registry = build_registry(app, env, provider_factory)
    session_manager = SessionManager(
        store,
        registry,
        default_model=app.model,
        defaults=GenerationParams(
            temperature=app.temperature,
            top_p=app.top_p,
            max_tokens=app.max_tokens,
        ),
        trimmer=TRIMMERS[app.trim_strategy],
        serialize_sessions=app.serialize_sessions,
    )
    sweeper = EvictionSweeper(
        store,
        idle_threshold=timedelta(minutes=app.session_idle_minutes),
        interval_seconds=app.sweep_interval_minutes * 60,
    )
    if start_sweeper:
        await sweeper.start()

    return AppRuntime(
        session_manager=session_manager,
        store=store,
        registry=registry,
        sweeper=sweeper,
        log_descriptions=log_descriptions,
    )
