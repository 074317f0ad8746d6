"""
Interactive console chat.

Wires the orchestrator to in-memory repositories and the HTTP AI service and
drives it from stdin. Useful to exercise a running AI service end to end without a
graphical front-end.

Commands:
    /new          start a new conversation with the next message
    /history      list conversations
    /open <n>     open the n-th conversation of the list
    /delete <n>   delete the n-th conversation (asks for confirmation)
    /agentic      toggle the reasoning + response reply mode
    /quit         exit

Usage:
    CHAT_USER must always be provided explicitly:
        CHAT_USER=alice python -m conversation_engine.console

    Engine settings are read from CONVERSATION_ENGINE_* variables:
        CONVERSATION_ENGINE_AI_BASE_URL=http://localhost:1204 \\
        CHAT_USER=alice python -m conversation_engine.console
"""

import asyncio
import os

from loguru import logger

from conversation_engine.ai_client.base import ReplyMode
from conversation_engine.ai_client.http import HttpAIClient
from conversation_engine.config import EngineSettings
from conversation_engine.conversation_database.data_models.message import Message, Sender
from conversation_engine.conversation_database.in_memory import (
    InMemoryConversationDatabase,
    InMemoryMessageDatabase,
    InMemorySummaryDatabase,
)
from conversation_engine.errors import ConversationEngineError
from conversation_engine.listener import ConversationListener, HistoryEntry
from conversation_engine.logging_cfg import setup_logging
from conversation_engine.orchestrator import ConversationOrchestrator

_PREFIXES = {Sender.USER: "you", Sender.BOT: "bot", Sender.REASONING: "thinking"}


class ConsoleListener(ConversationListener):
    """Prints the newest message of the active conversation and every list update."""

    def __init__(self) -> None:
        self.printed: dict[str, set[str]] = {}

    def on_messages_changed(self, conversation_id: str, messages: list[Message]) -> None:
        seen = self.printed.setdefault(conversation_id, set())
        for message in messages:
            if message.text is None:
                print("bot: ...")
            elif message.id not in seen:
                seen.add(message.id)
                print(f"{_PREFIXES[message.sender]}: {message.text}")

    def on_history_changed(self, entries: list[HistoryEntry]) -> None:
        for index, entry in enumerate(entries, start=1):
            print(f"  [{index}] {entry.label}")

    def on_topic_changed(self, conversation_id: str, topic: str) -> None:
        print(f"(title: {topic})")

    def on_delete_requested(self, conversation_id: str) -> None:
        print(f"Delete {conversation_id}? [y/N]")

    def on_error(self, context: str, message: str) -> None:
        print(f"! {context}: {message}")


def _pick(orchestrator: ConversationOrchestrator, argument: str) -> str | None:
    try:
        return orchestrator.history[int(argument) - 1].id
    except (ValueError, IndexError):
        print(f"No conversation number {argument!r}")
        return None


async def run_console(user_id: str, settings: EngineSettings) -> None:
    listener = ConsoleListener()
    ai_client = HttpAIClient(settings)
    orchestrator = ConversationOrchestrator(
        conversation_db=InMemoryConversationDatabase(),
        message_db=InMemoryMessageDatabase(),
        summary_db=InMemorySummaryDatabase(),
        ai_client=ai_client,
        listener=listener,
        settings=settings,
    )
    mode = settings.reply_mode
    await orchestrator.login(user_id)
    try:
        while True:
            line = (await asyncio.to_thread(input, "> ")).strip()
            command, _, argument = line.partition(" ")
            try:
                match command:
                    case "/quit":
                        break
                    case "/new":
                        orchestrator.new_chat()
                    case "/history":
                        await orchestrator.refresh_history()
                    case "/agentic":
                        mode = ReplyMode.PLAIN if mode == ReplyMode.AGENTIC else ReplyMode.AGENTIC
                        print(f"(reply mode: {mode})")
                    case "/open":
                        conversation_id = _pick(orchestrator, argument)
                        if conversation_id:
                            listener.printed.pop(conversation_id, None)
                            await orchestrator.open_conversation(conversation_id)
                    case "/delete":
                        conversation_id = _pick(orchestrator, argument)
                        if conversation_id and orchestrator.request_delete(conversation_id):
                            answer = (await asyncio.to_thread(input, "")).strip().lower()
                            if answer == "y":
                                await orchestrator.confirm_delete()
                            else:
                                orchestrator.cancel_delete()
                    case _:
                        await orchestrator.send(line, mode)
            except ConversationEngineError as exc:
                logger.debug(f"Console command {command!r} failed: {exc}")
    finally:
        await orchestrator.wait_for_background_tasks()
        await ai_client.aclose()


def main() -> None:
    user_id = os.getenv("CHAT_USER")
    if not user_id:
        raise SystemExit(
            "The CHAT_USER environment variable is not set.\n"
            "Example: CHAT_USER=alice python -m conversation_engine.console"
        )
    settings = EngineSettings.from_env()
    setup_logging(settings.log_level)
    try:
        asyncio.run(run_console(user_id, settings))
    except (EOFError, KeyboardInterrupt):
        logger.info("Console closed")


if __name__ == "__main__":
    main()
