"""
Core agent logic - routes each chat turn and drives the model provider.

``ChatAgent.send`` runs one turn: it asks the routing policy for a mode,
builds the prompt, then either runs the tool-call loop (tabular / record
tools) or streams the provider's answer (search, code execution, Python
analysis). Progress comes back as a stream of immutable message snapshots.
"""

import itertools
import threading
from typing import Iterator, Optional

from config import Settings, load_settings
from data_ops.attachments import AttachmentState, RecordContext, load_attachment, load_attachment_file
from data_ops.image_tools import execute_image_tool
from data_ops.records import execute_record_tool
from data_ops.results import ToolResult
from data_ops.tabular import execute_tabular_tool

from .aggregator import ResponseAggregator
from .llm import LLMAdapter, ProviderError, UsageMetadata, create_adapter
from .logging import (
    get_logger, get_token_log_path, log_error, log_token_usage,
    log_turn_event, set_session_id, setup_logging,
)
from .messages import ChatMessage, ImageAttachment, MessageSnapshot, TurnStatus
from .model_fallback import ModelFallback, is_quota_error
from .prompts import build_turn_prompt, format_tool_result, get_system_prompt, stream_capability
from .routing import RoutingInputs, TurnMode, route
from .session import FileSessionStore, SessionStore
from .tool_loop import run_tool_loop
from .tool_schema import to_function_schemas
from .tools import RECORD_CATEGORIES, TABULAR_CATEGORIES, get_tool_schemas, tool_category


class ChatAgent:
    """One user's chat: attachment state, history and the turn pipeline."""

    # Class-level fallback so tests using __new__ don't crash on self.logger
    logger = get_logger()

    def __init__(
        self,
        settings: Settings,
        adapter: Optional[LLMAdapter] = None,
        store: Optional[SessionStore] = None,
        verbose: bool = False,
    ):
        """Initialize the agent.

        Args:
            settings: Process-wide settings from ``config.load_settings``.
            adapter: Provider adapter; built from ``settings`` when omitted.
            store: Session store; None disables persistence.
            verbose: If True, log tool results at DEBUG for the console.
        """
        self.settings = settings
        self.verbose = verbose
        self.adapter = adapter or create_adapter(settings)
        self.store = store
        self.user = settings.user_name or "default"
        self.attachments = AttachmentState()
        self.history: list[ChatMessage] = []

        self._cancel_event = threading.Event()
        self._system_prompt = get_system_prompt(settings.system_prompt)
        self._fallback = ModelFallback(settings.model, settings.fallback_model)
        self._session_id: Optional[str] = None
        self._pending_kind: Optional[str] = None
        self._pending_descriptor: Optional[dict] = None

        # Token usage tracking
        self._token_log_path = get_token_log_path()
        self._total_input_tokens = 0
        self._total_output_tokens = 0
        self._total_thinking_tokens = 0
        self._api_calls = 0
        self._current_mode = "idle"

        self.logger.info(f"Initializing ChatAgent ({settings.provider}/{settings.model})")

    # ---- Cancellation API ----

    def request_cancel(self):
        """Signal the agent to stop at the next round or chunk boundary."""
        self._cancel_event.set()
        self.logger.info("[Cancel] Cancellation requested")

    def clear_cancel(self):
        """Clear the cancellation flag (called at the start of every turn)."""
        self._cancel_event.clear()

    def is_cancelled(self) -> bool:
        return self._cancel_event.is_set()

    # ---- Attachments ----

    def attach(self, name: str, text: str) -> dict:
        """Load CSV/JSON text as the session's data context.

        Raises:
            ParseError: If the text is empty or unreadable; the previous
                context stays installed.
        """
        return self._install(load_attachment(name, text, slim_limit=self.settings.slim_csv_limit))

    def attach_file(self, path) -> dict:
        return self._install(load_attachment_file(path, slim_limit=self.settings.slim_csv_limit))

    def _install(self, attachment) -> dict:
        self.attachments.install(attachment)
        descriptor = attachment.descriptor()
        self._pending_kind = "json" if isinstance(attachment, RecordContext) else "csv"
        self._pending_descriptor = descriptor
        self.logger.info(f"[Attach] {descriptor['name']} ({descriptor['kind']}, {descriptor['size']})")
        return descriptor

    def detach(self) -> None:
        self.attachments.clear()
        self._pending_kind = None
        self._pending_descriptor = None

    # ---- Sessions ----

    @property
    def session_id(self) -> Optional[str]:
        return self._session_id

    def new_session(self) -> None:
        """Start a fresh chat; the store entry is created on the first message."""
        self._session_id = None
        self.history = []
        self.detach()
        set_session_id("")

    def open_session(self, session_id: str) -> list[ChatMessage]:
        """Load a stored session's messages as the current history.

        Raises:
            ValueError: If no session store is configured.
            FileNotFoundError: If the session does not exist.
        """
        if self.store is None:
            raise ValueError("No session store configured.")
        entries = self.store.load_messages(session_id)
        self.new_session()
        self._session_id = session_id
        set_session_id(session_id)
        self.history = [
            ChatMessage(
                role=entry["role"],
                content=entry.get("content", ""),
                images=[ImageAttachment(img["data"], img["mime_type"]) for img in entry.get("images", [])],
                attachment=entry.get("attachment"),
            )
            for entry in entries
        ]
        return self.history

    def list_sessions(self) -> list[dict]:
        return self.store.list_sessions(self.user) if self.store else []

    def delete_session(self, session_id: str) -> bool:
        if self.store is None:
            return False
        deleted = self.store.delete_session(session_id)
        if deleted and session_id == self._session_id:
            self.new_session()
        return deleted

    def _ensure_session(self, title: str) -> None:
        if self.store is None or self._session_id is not None:
            return
        self._session_id = self.store.create_session(self.user, "chat", title[:50])
        set_session_id(self._session_id)

    def _persist(self, message: ChatMessage) -> None:
        if self.store is None or self._session_id is None:
            return
        images = message.images if message.role == "user" else message.generated_images
        charts = [{"chart_type": c.chart_type, "payload": c.payload} for c in message.charts]
        charts += [{"display_type": "card", "payload": c.payload} for c in message.cards]
        self.store.append_message(
            self._session_id,
            message.role,
            message.plain_text(),
            images=images or None,
            charts=charts or None,
            tool_calls=[r.summary() for r in message.tool_calls] or None,
            grounding=message.grounding.to_dict() if message.grounding else None,
            attachment=message.attachment,
        )

    # ---- Token usage ----

    def _track_usage(self, usage: Optional[UsageMetadata], context: str = "send_turn"):
        """Accumulate token usage from one provider call."""
        usage = usage or UsageMetadata()
        self._total_input_tokens += usage.input_tokens
        self._total_output_tokens += usage.output_tokens
        self._total_thinking_tokens += usage.thinking_tokens
        self._api_calls += 1
        log_token_usage(
            agent_name=f"ChatAgent[{self._current_mode}]",
            input_tokens=usage.input_tokens,
            output_tokens=usage.output_tokens,
            thinking_tokens=usage.thinking_tokens,
            cumulative_input=self._total_input_tokens,
            cumulative_output=self._total_output_tokens,
            cumulative_thinking=self._total_thinking_tokens,
            api_calls=self._api_calls,
            tool_context=context,
            token_log_path=self._token_log_path,
        )

    def get_token_usage(self) -> dict:
        """Return cumulative token usage for this agent."""
        return {
            "input_tokens": self._total_input_tokens,
            "output_tokens": self._total_output_tokens,
            "thinking_tokens": self._total_thinking_tokens,
            "total_tokens": self._total_input_tokens + self._total_output_tokens + self._total_thinking_tokens,
            "api_calls": self._api_calls,
        }

    # ---- Provider calls ----

    @property
    def model(self) -> str:
        return self._fallback.model

    def _call_with_fallback(self, call):
        """Run ``call(model)``; on a quota error switch to the fallback once."""
        try:
            return call(self._fallback.model)
        except Exception as exc:
            if self._fallback.can_fall_back() and is_quota_error(exc, self.adapter):
                self._fallback.activate()
                return call(self._fallback.model)
            raise

    def _image_generator(self):
        model = self.settings.image_model

        def generate(prompt: str, data: bytes, mime_type: str):
            self.logger.debug(f"[Image] Generating with {model or '(no model)'}")
            return self.adapter.generate_image(model, prompt, data, mime_type)

        return generate

    def _tool_executor(self, mode: TurnMode, images: list):
        if mode is TurnMode.TABULAR_TOOLS:
            table = self.attachments.tabular.table

            def execute(name: str, args: dict) -> ToolResult:
                return execute_tabular_tool(name, args, table)

            return execute

        records = self.attachments.records.records
        anchor = images[0] if images else None
        generator = self._image_generator()

        def execute(name: str, args: dict) -> ToolResult:
            if tool_category(name) == "image":
                return execute_image_tool(name, args, anchor, generator)
            return execute_record_tool(name, args, records)

        return execute

    # ---- Turn pipeline ----

    def _run_tool_turn(self, agg, mode, prompt, history, images) -> Iterator[MessageSnapshot]:
        if mode is TurnMode.TABULAR_TOOLS:
            categories, max_rounds = TABULAR_CATEGORIES, self.settings.max_tool_rounds
        else:
            categories, max_rounds = RECORD_CATEGORIES, self.settings.max_record_tool_rounds
        schemas = to_function_schemas(get_tool_schemas(categories))

        def start(model: str):
            chat = self.adapter.create_chat(
                model=model, system_prompt=self._system_prompt, tools=schemas, history=history,
            )
            return chat, chat.send(prompt)

        chat, response = self._call_with_fallback(start)
        self._track_usage(response.usage, "initial_message")

        def on_record(record):
            self.logger.debug(f"[Tool] {format_tool_result(record)}")

        result = run_tool_loop(
            chat,
            response,
            self._tool_executor(mode, images),
            self.adapter,
            agent_name=f"ChatAgent[{mode.value}]",
            max_rounds=max_rounds,
            max_total_calls=self.settings.max_tool_calls,
            track_usage=lambda r, ctx: self._track_usage(r.usage, ctx),
            cancel_event=self._cancel_event,
            on_record=on_record,
            parallel=self.settings.parallel_tool_calls,
            max_workers=self.settings.parallel_max_workers,
        )
        if result.stop_reason:
            self.logger.info(f"[Turn] Tool loop ended early: {result.stop_reason}")
        yield agg.apply_turn_result(result)
        yield agg.finish(result.status)

    def _run_stream_turn(self, agg, mode, prompt, history, images) -> Iterator[MessageSnapshot]:
        capability = stream_capability(mode)

        def open_stream(model: str):
            stream = iter(self.adapter.stream_turn(
                model, self._system_prompt, history, prompt,
                images=images or None, capability=capability,
            ))
            # First chunk is pulled here so quota errors hit the fallback
            return stream, next(stream, None)

        stream, first = self._call_with_fallback(open_stream)
        chunks = itertools.chain([first], stream) if first is not None else stream
        usage = None
        status = TurnStatus.DONE
        try:
            for chunk in chunks:
                if self._cancel_event.is_set():
                    status = TurnStatus.CANCELLED
                    self.logger.info("[Turn] Stream interrupted by user")
                    break
                if chunk.usage is not None:
                    usage = chunk.usage
                yield agg.apply_chunk(chunk)
        finally:
            close = getattr(stream, "close", None)
            if close is not None:
                close()
        self._track_usage(usage, capability)
        yield agg.finish(status)

    def send(self, text: str = "", images: Optional[list] = None) -> Iterator[MessageSnapshot]:
        """Run one turn, yielding message snapshots.

        The user message is stored when the turn starts and the assistant
        message when it ends; the last snapshot is terminal. The generator
        should be drained.

        Args:
            text: What the user typed.
            images: ImageAttachment objects sent with this message.

        Raises:
            ValueError: If there is nothing to send.
        """
        self.clear_cancel()
        text = (text or "").strip()
        images = list(images or [])
        attached_kind = self._pending_kind
        attachment = self._pending_descriptor
        if not text and not images and attached_kind is None:
            raise ValueError("Nothing to send: type a message or attach a file or image.")
        self._pending_kind = None
        self._pending_descriptor = None

        decision = route(RoutingInputs.from_state(text, self.attachments))
        self._current_mode = decision.mode.value
        log_turn_event(
            "routed", decision.mode.value,
            f"matched={list(decision.matched)} encode={decision.encode_data}" if decision.matched else None,
        )
        turn_prompt = build_turn_prompt(
            text,
            self.attachments,
            decision,
            user_name=self.settings.user_name,
            has_images=bool(images),
            attached_kind=attached_kind,
            encoded_limit=self.settings.encoded_data_limit,
        )
        history = [m.history_turn() for m in self.history]

        user_msg = ChatMessage(role="user", content=turn_prompt.display, images=images, attachment=attachment)
        self.history.append(user_msg)
        self._ensure_session(turn_prompt.display)
        self._persist(user_msg)

        agg = ResponseAggregator(mode=decision.mode.value)
        yield agg.snapshot()

        run = self._run_tool_turn if decision.mode.uses_tools else self._run_stream_turn
        final: Optional[MessageSnapshot] = None
        try:
            for snapshot in run(agg, decision.mode, turn_prompt.prompt, history, images):
                if snapshot.is_final:
                    final = snapshot
                    break
                yield snapshot
        except Exception as e:
            error = e if isinstance(e, ProviderError) else ProviderError(str(e))
            log_error(
                f"Provider call failed in {decision.mode.value} turn",
                exc=e,
                context={"provider": self.settings.provider, "model": self.model},
            )
            final = agg.fail(error)

        self.attachments.mark_turn_consumed()
        self.history.append(agg.message)
        self._persist(agg.message)
        log_turn_event(final.status.value, decision.mode.value, f"{len(agg.message.tool_calls)} tool calls")
        yield final

    def process_message(self, text: str = "", images: Optional[list] = None) -> ChatMessage:
        """Run one turn to completion and return the assistant message."""
        for _ in self.send(text, images):
            pass
        return self.history[-1]


def create_agent(
    verbose: bool = False,
    provider: Optional[str] = None,
    model: Optional[str] = None,
    user_name: Optional[str] = None,
    store: Optional[SessionStore] = None,
) -> ChatAgent:
    """Factory function to create a new agent instance.

    Args:
        verbose: If True, show debug logging on the console.
        provider: Override the configured provider.
        model: Override the configured chat model.
        user_name: Display name (also the session-store user).
        store: Session store (default: FileSessionStore under the data dir).

    Returns:
        Configured ChatAgent instance.
    """
    setup_logging(verbose=verbose)
    settings = load_settings(provider=provider, model=model, user_name=user_name)
    return ChatAgent(settings, store=store or FileSessionStore(), verbose=verbose)
