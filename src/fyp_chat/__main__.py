import asyncio
import os
import sys

from dotenv import load_dotenv
from loguru import logger

from fyp_chat.app_config import load_json_config, parse_app_config, resolve_runtime_env
from fyp_chat.bootstrap import bootstrap_runtime
from fyp_chat.console import ChatConsole
from fyp_chat.errors import ChatError
from fyp_chat.sound_device import play_wav


async def main() -> None:
    load_dotenv()

    app = parse_app_config(load_json_config(os.environ.get("FYP_CHAT_CONFIG")))
    env = resolve_runtime_env()
    missing = env.missing()
    if missing:
        logger.error(f"Missing environment variables: {', '.join(missing)}")
        sys.exit(1)

    console = ChatConsole(app, play=play_wav)
    try:
        runtime = await bootstrap_runtime(
            app,
            env,
            on_notice=console.on_notice,
            on_presence_change=console.on_presence_change,
            on_timeline_change=console.on_timeline_change,
        )
    except (ChatError, ValueError) as ex:
        logger.error(f"Could not start chat: {ex}")
        sys.exit(1)

    session = runtime.session
    console.attach(session)

    counterpart = session.participants.counterpart
    print(f"fyp-chat: chatting with {counterpart.name} (type 'exit' to quit, '/help' for commands)")
    if runtime.log_descriptions:
        print(f"Logging: {', '.join(runtime.log_descriptions)}")
    print()

    try:
        await session.start()
        while True:
            try:
                user_input = await asyncio.to_thread(input, "")
            except (EOFError, KeyboardInterrupt):
                break

            trimmed = user_input.strip()
            if trimmed in ("exit", "quit"):
                break
            if not trimmed:
                continue

            try:
                await console.handle(trimmed)
            except Exception as ex:
                logger.error(f"Unhandled error: {ex}")
    finally:
        await session.close()


def run() -> None:
    asyncio.run(main())


if __name__ == "__main__":
    run()
