from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Protocol

from .argument_validation import validate_arguments
from .config import Settings
from .errors import ClassificationServiceError, HandlerExecutionError, UnknownFunction
from .function_catalog import FUNCTION_DECLARATIONS, get_declaration
from .function_map import create_function_map, lookup
from .gemini_client import ModelTurn
from .handlers import HandlerResult, IntentHandlers, fail
from .prompt_loader import CLASSIFIER_SYSTEM_PROMPT, RESPONSE_SYNTHESIS_PROMPT, load_prompt, render_prompt
from .utils import to_jsonable

logger = logging.getLogger("commerce_chat.classifier")

MIN_RESPONSE_LENGTH = 10
DEFAULT_DONE_MESSAGE = "Đã thực hiện xong yêu cầu của bạn!"
UNKNOWN_FUNCTION_MESSAGE = "Function {name} không tồn tại"
EXECUTION_ERROR_MESSAGE = "Lỗi khi thực hiện: {error}"


class ModelClient(Protocol):
    def chat_with_tools(
        self,
        history: List[Dict[str, Any]],
        message: str,
        declarations: List[Dict[str, Any]],
        system_instruction: Optional[str] = None,
        temperature: float = 0.7,
        max_output_tokens: int = 1000,
    ) -> ModelTurn: ...

    def chat_text(
        self,
        history: List[Dict[str, Any]],
        message: str,
        temperature: float = 0.8,
        max_output_tokens: int = 500,
    ) -> str: ...


@dataclass
class ClassificationResult:
    """Tagged result of one classification: ``function_call`` or ``text``."""
    type: str
    function_name: Optional[str] = None
    arguments: Dict[str, Any] = field(default_factory=dict)
    content: str = ""

    @property
    def is_function_call(self) -> bool:
        return self.type == "function_call"


def trim_to_user_first(history: List[Dict[str, str]]) -> List[Dict[str, str]]:
    """Drop leading non-user turns; the model requires the first turn to be the user's."""
    start = 0
    while start < len(history) and history[start].get("role") != "user":
        start += 1
    return list(history[start:])


def to_model_history(history: List[Dict[str, str]]) -> List[Dict[str, Any]]:
    """Purpose: Convert stored {role, content} turns into Gemini chat history.
    Inputs/Outputs: Input is the annotated history; returns [{role, parts:[{text}]}].
    Side Effects / State: None.
    Dependencies: trim_to_user_first.
    Failure Modes: None; all-assistant histories become an empty list.
    If Removed: start_chat rejects histories that open with a model turn.
    Testing Notes: ["assistant", "user", "assistant"] -> ["user", "model"].
    """
    # assistant -> model, everything else -> user.
    return [
        {
            "role": "model" if message.get("role") == "assistant" else "user",
            "parts": [{"text": message.get("content", "")}],
        }
        for message in trim_to_user_first(history)
    ]


class IntentClassifier:
    """Maps user text to a catalog function, runs it, and phrases the result."""

    def __init__(self, model: ModelClient, handlers: IntentHandlers, settings: Settings) -> None:
        """Purpose: Wire the model client, handler set and prompt templates.
        Inputs/Outputs: Inputs are a ModelClient, IntentHandlers and Settings; no return value.
        Side Effects / State: Reads both prompt files once.
        Dependencies: load_prompt, Settings.prompts_dir.
        Failure Modes: Missing prompt files raise FileNotFoundError at construction.
        If Removed: The orchestrator cannot classify or synthesize replies.
        Testing Notes: Pass a scripted fake model and in-memory handlers.
        """
        # Prompts are static for the process lifetime.
        self._model = model
        self._handlers = handlers
        self._settings = settings
        self._system_prompt = load_prompt(settings.prompts_dir / CLASSIFIER_SYSTEM_PROMPT)
        self._synthesis_template = load_prompt(settings.prompts_dir / RESPONSE_SYNTHESIS_PROMPT)

    def classify(self, user_message: str, history: List[Dict[str, str]], user_id: str) -> ClassificationResult:
        """Purpose: Ask the model whether this turn is a function call or a direct reply.
        Inputs/Outputs: Inputs are user text, annotated history and user_id; returns a
            ClassificationResult.
        Side Effects / State: One model round trip.
        Dependencies: ModelClient.chat_with_tools, FUNCTION_DECLARATIONS, to_model_history.
        Failure Modes: ClassificationServiceError propagates to the orchestrator.
        If Removed: No turn can reach a handler.
        Testing Notes: Arguments come back exactly as the model produced them.
        """
        # Single round trip with the whole catalog attached.
        turn = self._model.chat_with_tools(
            to_model_history(history),
            user_message,
            FUNCTION_DECLARATIONS,
            system_instruction=self._system_prompt,
            temperature=self._settings.classify_temperature,
            max_output_tokens=self._settings.classify_max_tokens,
        )
        if turn.is_function_call:
            logger.info("user=%s classified function=%s", user_id, turn.function_name)
            return ClassificationResult(
                type="function_call", function_name=turn.function_name, arguments=dict(turn.arguments or {})
            )
        logger.info("user=%s classified as text reply", user_id)
        return ClassificationResult(type="text", content=turn.text or "")

    def execute_function(
        self,
        function_name: str,
        arguments: Optional[Dict[str, Any]],
        user_id: str,
        session_id: Optional[str] = None,
        ip_address: Optional[str] = None,
    ) -> HandlerResult:
        """Purpose: Validate arguments and dispatch to the bound handler.
        Inputs/Outputs: Inputs are function name, raw model arguments and caller identity;
            returns the handler envelope.
        Side Effects / State: Whatever the handler does.
        Dependencies: get_declaration, validate_arguments, create_function_map, lookup.
        Failure Modes: Unknown names and escaped exceptions become failure envelopes;
            this method never raises.
        If Removed: Function calls from the model are never executed.
        Testing Notes: Unknown name -> "Function x không tồn tại"; a raising handler ->
            "Lỗi khi thực hiện: ...".
        """
        # Unknown names and bad arguments stop before any handler runs.
        try:
            declaration = get_declaration(function_name)
            if declaration is None:
                raise UnknownFunction(function_name)
            outcome = validate_arguments(declaration, arguments, strict=self._settings.strict_arguments)
            if not outcome.ok:
                logger.info("function=%s rejected arguments: %s", function_name, outcome.problems)
                return fail(outcome.message)
            function_map = create_function_map(self._handlers, user_id, session_id=session_id, ip_address=ip_address)
            handler = lookup(function_map, function_name)
            try:
                return handler(outcome.arguments)
            except Exception as exc:
                raise HandlerExecutionError(function_name, exc) from exc
        except UnknownFunction as exc:
            logger.warning("model selected unknown function=%s", exc.name)
            return fail(UNKNOWN_FUNCTION_MESSAGE.format(name=exc.name))
        except HandlerExecutionError as exc:
            logger.exception("function=%s failed", exc.name)
            return fail(EXECUTION_ERROR_MESSAGE.format(error=exc), error=str(exc))

    def generate_response(
        self, user_message: str, function_result: HandlerResult, history: List[Dict[str, str]]
    ) -> str:
        """Purpose: Phrase a handler result as a short reply for the user.
        Inputs/Outputs: Inputs are user text, the handler result and history; returns text.
        Side Effects / State: One model round trip.
        Dependencies: ModelClient.chat_text, render_prompt.
        Failure Modes: Model errors or output shorter than MIN_RESPONSE_LENGTH fall back to
            the handler message, then DEFAULT_DONE_MESSAGE.
        If Removed: Successful function calls reply with terse handler messages only.
        Testing Notes: A model reply of "ok" must be replaced by the handler message.
        """
        # Degenerate output is never returned to the user.
        fallback = (function_result or {}).get("message") or DEFAULT_DONE_MESSAGE
        prompt = render_prompt(
            self._synthesis_template,
            {
                "user_message": user_message,
                "function_result": json.dumps(to_jsonable(function_result), ensure_ascii=False, indent=2),
            },
        )
        try:
            text = self._model.chat_text(
                to_model_history(history),
                prompt,
                temperature=self._settings.response_temperature,
                max_output_tokens=self._settings.response_max_tokens,
            )
        except ClassificationServiceError as exc:
            logger.warning("response synthesis failed, using handler message: %s", exc)
            return fallback
        if not text or len(text.strip()) < MIN_RESPONSE_LENGTH:
            logger.info("response synthesis too short (%d chars), using handler message", len((text or "").strip()))
            return fallback
        return text
