import asyncio
import sys

from dotenv import load_dotenv
from loguru import logger

from chat_relay.app_config import (
    load_json_config,
    missing_api_key_vars,
    parse_app_config,
    resolve_runtime_env,
)
from chat_relay.bootstrap import bootstrap_runtime
from chat_relay.repl import ChatRepl


async def main() -> None:
    load_dotenv()

    app = parse_app_config(load_json_config())
    env = resolve_runtime_env(app.provider_names())
    missing = missing_api_key_vars(env)
    if missing:
        logger.error(f"Missing API key environment variables: {', '.join(missing)}")
        sys.exit(1)

    runtime = await bootstrap_runtime(app, env)
    repl = ChatRepl(runtime.session_manager)

    print("chat-relay (type 'exit' to quit, '/help' for commands)")
    print(f"Models: {', '.join(runtime.registry.models())} (default: {app.model})")
    print(f"Session store: {app.session_store}, trimming: {app.trim_strategy}")
    print(f"Session: {repl.session_id}")
    if runtime.log_descriptions:
        print(f"Logging: {', '.join(runtime.log_descriptions)}")
    print()

    try:
        while True:
            try:
                user_input = await asyncio.to_thread(input, "you> ")
            except (EOFError, KeyboardInterrupt):
                break

            trimmed = user_input.strip()
            if trimmed in ("exit", "quit"):
                break
            if not trimmed:
                continue

            try:
                await repl.handle(trimmed)
                print()
            except Exception as ex:
                logger.error(f"Unhandled error: {ex}")
    finally:
        await runtime.close()


def run() -> None:
    asyncio.run(main())


if __name__ == "__main__":
    run()
