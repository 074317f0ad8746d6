"""
Conversation orchestrator (Facade).

'ConversationOrchestrator' is the single entry point for a chat front-end. It owns
the session of one logged-in user and coordinates three pluggable repositories, an
'AIClient' and a 'MessageCache' to handle the full lifecycle of a conversation:

    login / logout               - reset every per-user cache, load the history.
    open_conversation / new_chat - pick the active conversation.
    send                         - run one AI turn (plain or agentic).
    request_delete / confirm_delete / cancel_delete
                                 - two-step deletion of one conversation.
    delete_all_conversations     - wipe every conversation of the user.

A turn persists the user message, shows a typing placeholder, awaits the reply and
persists the generated messages, strictly in that order. Once the turn is back to
idle, topic naming and periodic summarization run as background tasks, each
deduplicated per conversation through the cached 'ConversationSession'.

Everything runs on one event loop. Cache entries are keyed by conversation id, so
turns for different conversations can be in flight at the same time without
corrupting each other's message log.
"""

import asyncio
from collections.abc import Awaitable, Coroutine
from enum import StrEnum
from typing import Any, TypeVar

from loguru import logger

from conversation_engine.ai_client.base import AIClient, ReplyMode
from conversation_engine.cache import MessageCache, count_completed_pairs, is_typing_placeholder
from conversation_engine.config import EngineSettings, SendLockPolicy
from conversation_engine.conversation_database.data_models.conversation import Conversation, ConversationDatabase
from conversation_engine.conversation_database.data_models.message import Message, MessageDatabase, Sender
from conversation_engine.conversation_database.data_models.summary import Summary, SummaryDatabase
from conversation_engine.conversation_ids import next_conversation_id
from conversation_engine.errors import AIServiceError, ConversationEngineError, StoreError, ValidationError
from conversation_engine.listener import ConversationListener, HistoryEntry
from conversation_engine.utils.database import generate_uid
from conversation_engine.utils.time import get_current_timestamp

T = TypeVar("T")


class DeleteState(StrEnum):
    IDLE = "idle"
    PENDING_CONFIRM = "pending_confirm"
    DELETING = "deleting"


def format_snippet(text: str | None, fallback_index: int, max_length: int = 20) -> str:
    """Label for the conversation list: the text cut to 'max_length', or 'Chat <n>'."""
    if not text:
        return f"Chat {fallback_index}"
    return text if len(text) <= max_length else text[:max_length] + "…"


class ConversationOrchestrator:
    """
    Owns conversation state for one user at a time.

    Attributes:
        user_id: The logged-in user, None before 'login'.
        current_conversation_id: The conversation the caller is showing. None means
            the next 'send' starts a new conversation.
        known_conversation_ids: Ids from the last history fetch plus ids reserved for
            conversations that are being created. Source of truth for id assignment.
        history: The conversation list last pushed to the listener.
        delete_state: Position in the IDLE -> PENDING_CONFIRM -> DELETING flow.
    """

    def __init__(
        self,
        conversation_db: ConversationDatabase,
        message_db: MessageDatabase,
        summary_db: SummaryDatabase,
        ai_client: AIClient,
        listener: ConversationListener | None = None,
        settings: EngineSettings | None = None,
    ):
        self.conversation_db = conversation_db
        self.message_db = message_db
        self.summary_db = summary_db
        self.ai_client = ai_client
        self.listener = listener or ConversationListener()
        self.settings = settings or EngineSettings()

        self.cache = MessageCache()
        self.user_id: str | None = None
        self.username: str | None = None
        self.current_conversation_id: str | None = None
        self.known_conversation_ids: list[str] = []
        self.history: list[HistoryEntry] = []
        self.delete_state = DeleteState.IDLE
        self.pending_delete_id: str | None = None

        self._reserved_ids: set[str] = set()
        self._turns_in_flight: set[str] = set()
        self._deleting_all = False
        self._background_tasks: set[asyncio.Task[None]] = set()
        # Bumped on every user switch; work started for an older epoch must not touch the cache.
        self._epoch = 0

    # Session

    @property
    def is_awaiting_response(self) -> bool:
        return bool(self._turns_in_flight)

    async def login(self, user_id: str, username: str | None = None) -> list[HistoryEntry]:
        user_id = user_id.strip()
        if not user_id:
            raise ValidationError("A user id is required to log in")
        self._reset_session()
        self.user_id = user_id
        self.username = username or user_id
        logger.info(f"User {user_id!r} logged in")
        return await self.refresh_history()

    def logout(self) -> None:
        if self.user_id is not None:
            logger.info(f"User {self.user_id!r} logged out")
        self._reset_session()

    def _reset_session(self) -> None:
        self._epoch += 1
        self.cache.clear_all()
        self.user_id = None
        self.username = None
        self.current_conversation_id = None
        self.known_conversation_ids = []
        self.history = []
        self.delete_state = DeleteState.IDLE
        self.pending_delete_id = None
        self._reserved_ids.clear()
        self._turns_in_flight.clear()

    def _require_user(self) -> str:
        if self.user_id is None:
            raise ValidationError("No user is logged in")
        return self.user_id

    def _require_known(self, conversation_id: str) -> None:
        if conversation_id not in self.known_conversation_ids:
            raise ValidationError(f"Conversation {conversation_id!r} does not belong to user {self.user_id!r}")

    async def _store(self, action: str, call: Awaitable[T]) -> T:
        try:
            return await call
        except Exception as exc:
            logger.error(f"Store call failed ({action}): {exc!r}")
            raise StoreError(f"Could not {action}: {exc}") from exc

    def _notify_messages(self, conversation_id: str, epoch: int) -> None:
        if epoch == self._epoch and conversation_id == self.current_conversation_id:
            self.listener.on_messages_changed(conversation_id, self.cache.messages(conversation_id))

    # History

    async def refresh_history(self) -> list[HistoryEntry]:
        """Reload the conversation list from the store and push it to the listener."""
        user_id = self._require_user()
        epoch = self._epoch
        try:
            stored_ids = await self._store(
                "list conversations", self.conversation_db.get_conversation_ids_by_user_id(user_id)
            )
        except StoreError as exc:
            self.listener.on_error("history", str(exc))
            raise
        if epoch != self._epoch:
            return []

        # Conversations still being created are not listed by the store yet.
        reserved = [cid for cid in self.known_conversation_ids if cid in self._reserved_ids and cid not in stored_ids]
        conversation_ids = reserved + stored_ids
        entries = [
            HistoryEntry(id=cid, label=await self._history_label(cid, index))
            for index, cid in enumerate(conversation_ids, start=1)
        ]
        if epoch != self._epoch:
            return []
        self.known_conversation_ids = conversation_ids
        self.history = entries
        self.listener.on_history_changed(list(entries))
        return entries

    async def _history_label(self, conversation_id: str, index: int) -> str:
        max_length = self.settings.snippet_max_length
        try:
            title = await self.conversation_db.get_title(conversation_id)
            if title and title.strip():
                return title
            messages = self.cache.messages(conversation_id) or await self.message_db.get_messages_by_conversation_id(
                conversation_id
            )
        except Exception as exc:
            logger.warning(f"Could not resolve label for {conversation_id}: {exc!r}")
            return format_snippet(None, index, max_length)
        first_text = next((m.text for m in messages if m.text), None)
        return format_snippet(first_text, index, max_length)

    async def open_conversation(self, conversation_id: str) -> list[Message]:
        """
        Make 'conversation_id' the active conversation and load its messages from the store.

        The active conversation only changes once the fetch succeeded.
        """
        self._require_user()
        self._require_known(conversation_id)
        epoch = self._epoch
        try:
            messages = await self._store(
                "fetch messages", self.message_db.get_messages_by_conversation_id(conversation_id)
            )
            title = await self._store("fetch title", self.conversation_db.get_title(conversation_id))
        except StoreError as exc:
            self.listener.on_error("open", str(exc))
            raise
        if epoch != self._epoch:
            return []

        if conversation_id in self._turns_in_flight:
            # Keep messages the running turn appended after the fetch was issued.
            fetched_ids = {m.id for m in messages}
            newer = [
                m
                for m in self.cache.messages(conversation_id)
                if not is_typing_placeholder(m) and m.id not in fetched_ids
            ]
            messages = sorted([*messages, *newer], key=lambda m: m.sent_at)
        self.current_conversation_id = conversation_id
        self.cache.load(conversation_id, messages)
        session = self.cache.session(conversation_id)
        if title and title.strip():
            session.topic = title
        self._notify_messages(conversation_id, epoch)
        return self.cache.messages(conversation_id)

    def new_chat(self) -> None:
        """Detach from the active conversation; the next 'send' creates a new one."""
        self.current_conversation_id = None

    # Turns

    def _is_send_blocked(self, conversation_id: str | None) -> bool:
        if self._deleting_all:
            return True
        if self.delete_state == DeleteState.DELETING and conversation_id == self.pending_delete_id:
            return True
        if self.settings.send_lock == SendLockPolicy.GLOBAL:
            return bool(self._turns_in_flight)
        return conversation_id is not None and conversation_id in self._turns_in_flight

    async def send(self, text: str, mode: ReplyMode | None = None) -> list[Message] | None:
        """
        Run one AI turn in the active conversation, creating it first when there is none.

        Returns the messages the turn appended, in order: the user message, the
        reasoning message (agentic mode only) and the bot message. Returns None when
        'text' is blank or a turn is already outstanding, neither is an error.

        Raises:
            ValidationError: No user is logged in.
            StoreError: Creating the conversation or persisting a message failed.
            AIServiceError: The reply could not be generated.
        """
        text = (text or "").strip()
        if not text:
            logger.debug("Ignoring empty message")
            return None
        user_id = self._require_user()
        if self._is_send_blocked(self.current_conversation_id):
            logger.debug("A reply or deletion is still pending, ignoring send")
            return None
        mode = mode or self.settings.reply_mode
        username = self.username or user_id
        epoch = self._epoch

        conversation_id = self.current_conversation_id
        is_new = conversation_id is None
        if conversation_id is None:
            conversation_id = next_conversation_id(user_id, self.known_conversation_ids)
            self.known_conversation_ids.insert(0, conversation_id)
            self._reserved_ids.add(conversation_id)
            self.current_conversation_id = conversation_id
        self._turns_in_flight.add(conversation_id)
        try:
            if is_new:
                await self._create_conversation(conversation_id, user_id, text, epoch)
            return await self._run_turn(conversation_id, user_id, username, text, mode, epoch)
        except ConversationEngineError as exc:
            self.listener.on_error("reply" if isinstance(exc, AIServiceError) else "store", str(exc))
            raise
        finally:
            self._turns_in_flight.discard(conversation_id)

    async def _create_conversation(self, conversation_id: str, user_id: str, first_text: str, epoch: int) -> None:
        try:
            await self._store(
                "create conversation",
                self.conversation_db.create_conversation(
                    Conversation(id=conversation_id, user_id=user_id, started_at=get_current_timestamp())
                ),
            )
        except StoreError:
            self._reserved_ids.discard(conversation_id)
            if epoch == self._epoch:
                self.known_conversation_ids = [cid for cid in self.known_conversation_ids if cid != conversation_id]
                if self.current_conversation_id == conversation_id:
                    self.current_conversation_id = None
            raise
        self._reserved_ids.discard(conversation_id)
        logger.info(f"Created conversation {conversation_id}")
        if epoch == self._epoch:
            entry = HistoryEntry(
                id=conversation_id, label=format_snippet(first_text, 1, self.settings.snippet_max_length)
            )
            self.history = [entry, *[e for e in self.history if e.id != conversation_id]]
            self.listener.on_history_changed(list(self.history))

    async def _persist_message(self, conversation_id: str, sender: Sender, text: str, epoch: int) -> Message:
        last = self.cache.last_sent_at(conversation_id) if epoch == self._epoch else None
        sent_at = get_current_timestamp()
        if last is not None and sent_at <= last:
            sent_at = last + 1
        message = Message(id=generate_uid(), conversation_id=conversation_id, sender=sender, text=text, sent_at=sent_at)
        stored = await self._store(f"save {sender} message", self.message_db.create_message(message))
        if epoch == self._epoch:
            self.cache.append(conversation_id, stored)
        return stored

    async def _request_reply(self, mode: ReplyMode, user_id: str, username: str, text: str) -> list[tuple[Sender, str]]:
        try:
            if mode == ReplyMode.AGENTIC:
                result = await self.ai_client.reply_agentic(user_id, username, text)
                return [(Sender.REASONING, result.reasoning), (Sender.BOT, result.response)]
            return [(Sender.BOT, await self.ai_client.reply(username, text))]
        except AIServiceError:
            raise
        except Exception as exc:
            raise AIServiceError(f"Reply failed: {exc}") from exc

    async def _run_turn(
        self, conversation_id: str, user_id: str, username: str, text: str, mode: ReplyMode, epoch: int
    ) -> list[Message]:
        user_message = await self._persist_message(conversation_id, Sender.USER, text, epoch)
        if epoch == self._epoch:
            self.cache.insert_placeholder(conversation_id, user_message.sent_at + 1)
        self._notify_messages(conversation_id, epoch)

        try:
            outputs = await self._request_reply(mode, user_id, username, text)
        except AIServiceError as exc:
            logger.error(f"Reply for {conversation_id} failed: {exc}")
            if epoch == self._epoch:
                self.cache.remove_placeholder(conversation_id)
            self._notify_messages(conversation_id, epoch)
            raise

        if epoch == self._epoch:
            self.cache.remove_placeholder(conversation_id)
            if conversation_id not in self.known_conversation_ids:
                logger.warning(f"Conversation {conversation_id} was deleted while awaiting its reply, dropping it")
                self._notify_messages(conversation_id, epoch)
                return [user_message]
        produced = [user_message]
        try:
            for sender, body in outputs:
                produced.append(await self._persist_message(conversation_id, sender, body, epoch))
        finally:
            self._notify_messages(conversation_id, epoch)

        if epoch == self._epoch:
            self._schedule_topic(conversation_id, text, outputs[-1][1], epoch)
            self._schedule_summary(conversation_id, epoch)
        return produced

    # Background enrichment

    def _spawn(self, coro: Coroutine[Any, Any, None], name: str) -> None:
        task = asyncio.create_task(coro, name=name)
        self._background_tasks.add(task)
        task.add_done_callback(self._background_tasks.discard)

    async def wait_for_background_tasks(self) -> None:
        """Wait until every pending topic and summary task has finished."""
        while self._background_tasks:
            await asyncio.gather(*list(self._background_tasks), return_exceptions=True)

    def _schedule_topic(self, conversation_id: str, user_text: str, bot_text: str, epoch: int) -> None:
        self._spawn(self._generate_topic(conversation_id, user_text, bot_text, epoch), f"topic:{conversation_id}")

    async def _generate_topic(self, conversation_id: str, user_text: str, bot_text: str, epoch: int) -> None:
        try:
            stored_title = await self.conversation_db.get_title(conversation_id)
        except Exception as exc:
            logger.warning(f"Could not read title of {conversation_id}: {exc!r}")
            return
        if epoch != self._epoch or conversation_id not in self.known_conversation_ids:
            return

        session = self.cache.session(conversation_id)
        if stored_title and stored_title.strip():
            if session.topic != stored_title:
                session.topic = stored_title
                self.listener.on_topic_changed(conversation_id, stored_title)
            return
        if session.topic or session.topic_requested:
            logger.debug(f"Topic for {conversation_id} already known or requested")
            return

        session.topic_requested = True
        try:
            topic = await asyncio.wait_for(
                self.ai_client.topic(user_text, bot_text), timeout=self.settings.topic_timeout
            )
            await self.conversation_db.set_title(conversation_id, topic)
        except Exception as exc:
            logger.warning(f"Topic generation for {conversation_id} failed: {exc!r}")
            return
        finally:
            session.topic_requested = False

        logger.info(f"Conversation {conversation_id} titled {topic!r}")
        if epoch != self._epoch or conversation_id not in self.known_conversation_ids:
            return
        session.topic = topic
        self.listener.on_topic_changed(conversation_id, topic)
        if any(entry.id == conversation_id for entry in self.history):
            self.history = [
                HistoryEntry(id=entry.id, label=topic) if entry.id == conversation_id else entry
                for entry in self.history
            ]
            self.listener.on_history_changed(list(self.history))

    def _schedule_summary(self, conversation_id: str, epoch: int) -> None:
        session = self.cache.session(conversation_id)
        pairs = count_completed_pairs(session.messages)
        if pairs < 2 or pairs % 2:
            return
        if pairs <= session.last_summarized_pair_count:
            logger.debug(f"Summary for {conversation_id} at {pairs} pairs already requested")
            return
        # Advanced before the request and never rolled back: a failed threshold is skipped.
        session.last_summarized_pair_count = pairs
        self._spawn(self._generate_summary(conversation_id, pairs), f"summary:{conversation_id}")

    async def _generate_summary(self, conversation_id: str, pairs: int) -> None:
        try:
            text = await asyncio.wait_for(
                self.ai_client.summarize(conversation_id), timeout=self.settings.summary_timeout
            )
            await self.summary_db.create_summary(
                Summary(id=generate_uid(), conversation_id=conversation_id, text=text, created_at=get_current_timestamp())
            )
        except Exception as exc:
            logger.warning(f"Summary of {conversation_id} at {pairs} pairs failed: {exc!r}")
            return
        logger.info(f"Stored summary of {conversation_id} at {pairs} pairs")

    # Deletion

    def request_delete(self, conversation_id: str) -> bool:
        """
        Ask the caller to confirm deleting 'conversation_id'.

        Ignored while a deletion runs or while a reply for the conversation is pending.
        """
        self._require_user()
        self._require_known(conversation_id)
        if self.delete_state == DeleteState.DELETING:
            logger.debug("A deletion is already running, ignoring request")
            return False
        if conversation_id in self._turns_in_flight:
            logger.debug(f"A reply for {conversation_id} is still pending, ignoring delete request")
            return False
        self.pending_delete_id = conversation_id
        self.delete_state = DeleteState.PENDING_CONFIRM
        self.listener.on_delete_requested(conversation_id)
        return True

    def cancel_delete(self) -> None:
        self.delete_state = DeleteState.IDLE
        self.pending_delete_id = None

    def _drop_cached_log(self, conversation_id: str, epoch: int) -> None:
        # The store no longer holds what the cache shows.
        if epoch == self._epoch:
            self.cache.clear(conversation_id)
            self._notify_messages(conversation_id, epoch)

    async def confirm_delete(self) -> bool:
        """
        Delete the pending conversation: its messages, then its summaries, then the row itself.

        Each step runs only if the previous one succeeded, so a conversation is never
        removed while it still owns messages. Returns False when nothing was pending or
        the deletion was cancelled before the conversation row was removed.
        Once the messages are gone the cached log is dropped too, even when a later
        step fails or the deletion is cancelled.
        """
        conversation_id = self.pending_delete_id
        if self.delete_state != DeleteState.PENDING_CONFIRM or conversation_id is None:
            return False
        if conversation_id in self._turns_in_flight:
            logger.debug(f"A reply for {conversation_id} is still pending, deletion not started")
            self.cancel_delete()
            return False
        self.delete_state = DeleteState.DELETING
        epoch = self._epoch

        steps = (
            ("delete messages", lambda: self.message_db.delete_messages_by_conversation_id(conversation_id)),
            ("delete summaries", lambda: self.summary_db.delete_summaries_by_conversation_id(conversation_id)),
            ("delete conversation", lambda: self.conversation_db.delete_conversation(conversation_id)),
        )
        committed = False
        try:
            for action, step in steps:
                if self.delete_state != DeleteState.DELETING or self.pending_delete_id != conversation_id:
                    logger.info(f"Deletion of {conversation_id} cancelled before '{action}'")
                    if committed:
                        self._drop_cached_log(conversation_id, epoch)
                    return False
                await self._store(action, step())
                committed = True
        except StoreError as exc:
            if committed:
                self._drop_cached_log(conversation_id, epoch)
            self.listener.on_error("delete", str(exc))
            raise
        finally:
            if self.pending_delete_id == conversation_id:
                self.delete_state = DeleteState.IDLE
                self.pending_delete_id = None

        logger.info(f"Deleted conversation {conversation_id}")
        if epoch != self._epoch:
            return True
        self.known_conversation_ids = [cid for cid in self.known_conversation_ids if cid != conversation_id]
        self.cache.clear(conversation_id)
        if self.current_conversation_id == conversation_id:
            self.current_conversation_id = None
        await self.refresh_history()
        return True

    async def delete_all_conversations(self) -> int:
        """
        Delete every conversation of the user, clearing messages and summaries first.

        Returns the number of conversations removed. Does nothing and returns 0 while a
        reply is pending.
        """
        user_id = self._require_user()
        if self._turns_in_flight:
            logger.debug("A reply is still pending, ignoring delete all")
            return 0
        self._deleting_all = True
        try:
            conversation_ids = await self._store(
                "list conversations", self.conversation_db.get_conversation_ids_by_user_id(user_id)
            )
            for conversation_id in conversation_ids:
                await self._store("delete messages", self.message_db.delete_messages_by_conversation_id(conversation_id))
                await self._store(
                    "delete summaries", self.summary_db.delete_summaries_by_conversation_id(conversation_id)
                )
            removed = await self._store(
                "delete conversations", self.conversation_db.delete_conversations_by_user_id(user_id)
            )
        except StoreError as exc:
            self.listener.on_error("delete_all", str(exc))
            raise
        finally:
            self._deleting_all = False

        logger.info(f"Deleted {removed} conversations of user {user_id!r}")
        self.cache.clear_all()
        self.current_conversation_id = None
        self.known_conversation_ids = [cid for cid in self.known_conversation_ids if cid in self._reserved_ids]
        await self.refresh_history()
        return removed
