import asyncio
import sys

from dotenv import load_dotenv
from loguru import logger

from squad_session.app_config import load_json_config, parse_app_config, resolve_runtime_env
from squad_session.bootstrap import bootstrap_runtime
from squad_session.chat_repl import ChatRepl
from squad_session.errors import AuthError


async def main() -> None:
    load_dotenv()

    app = parse_app_config(load_json_config())
    env = resolve_runtime_env()

    try:
        runtime = bootstrap_runtime(app, env)
    except ValueError as ex:
        logger.error(f"Invalid configuration: {ex}")
        sys.exit(1)

    repl = ChatRepl(runtime.client, runtime.auth, runtime.personalities, catalog=runtime.catalog)

    try:
        if env.email and env.password and not runtime.auth.is_authenticated():
            try:
                await runtime.auth.login(env.email, env.password)
            except AuthError as ex:
                logger.error(f"Login with SQUAD_EMAIL failed: {ex}")

        print("squad-session (type 'exit' to quit, '/help' for commands)")
        print(f"Mode: {runtime.client.mode.value} ({env.base_url_override or app.base_url})")
        if runtime.personalities.all():
            print(f"Personalities: {', '.join(p.id for p in runtime.personalities.all())}")
        if not runtime.auth.is_authenticated():
            print("Not logged in. Use /login <email> <password>.")
        if runtime.log_descriptions:
            print(f"Logging: {', '.join(runtime.log_descriptions)}")
        print()

        while True:
            try:
                user_input = input("you> ")
            except (EOFError, KeyboardInterrupt):
                break

            trimmed = user_input.strip()
            if trimmed in ("exit", "quit"):
                break
            if not trimmed:
                continue

            try:
                for line in await repl.handle(trimmed):
                    print(line)
                print()
            except Exception as ex:
                logger.error(f"Unhandled error: {ex}")
    finally:
        await runtime.close()


def run() -> None:
    asyncio.run(main())


if __name__ == "__main__":
    run()
