from __future__ import annotations

import logging
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

import google.generativeai as genai
from google.generativeai.types import HarmBlockThreshold, HarmCategory

from .config import Settings
from .errors import ClassificationServiceError

logger = logging.getLogger("commerce_chat.gemini")

DEFAULT_SAFETY_SETTINGS = [
    {
        "category": HarmCategory.HARM_CATEGORY_HARASSMENT,
        "threshold": HarmBlockThreshold.BLOCK_ONLY_HIGH,
    },
    {
        "category": HarmCategory.HARM_CATEGORY_HATE_SPEECH,
        "threshold": HarmBlockThreshold.BLOCK_ONLY_HIGH,
    },
    {
        "category": HarmCategory.HARM_CATEGORY_SEXUALLY_EXPLICIT,
        "threshold": HarmBlockThreshold.BLOCK_ONLY_HIGH,
    },
    {
        "category": HarmCategory.HARM_CATEGORY_DANGEROUS_CONTENT,
        "threshold": HarmBlockThreshold.BLOCK_ONLY_HIGH,
    },
]


@dataclass
class ModelTurn:
    """One model reply: either a function invocation or plain text."""
    function_name: Optional[str] = None
    arguments: Dict[str, Any] = field(default_factory=dict)
    text: str = ""

    @property
    def is_function_call(self) -> bool:
        return bool(self.function_name)


class GeminiClient:
    """Thin wrapper around the Gemini SDK with model caching, tools, and safety settings."""

    def __init__(self, settings: Settings) -> None:
        """Purpose: Configure the Gemini SDK and initialize the model cache.
        Inputs/Outputs: Input is Settings; no return value.
        Side Effects / State: Configures SDK global API key and caches model instances.
        Dependencies: Uses google.generativeai and Settings from config.
        Failure Modes: Raises ValueError if API key or model name is missing.
        If Removed: Intent classification and reply synthesis cannot execute.
        Testing Notes: Validate missing key raises ValueError and models are cached.
        """
        # Configure API key; models are built lazily because tools bind at construction.
        self._settings = settings
        if not settings.gemini_api_key:
            raise ValueError("GEMINI_API_KEY is required")
        genai.configure(api_key=settings.gemini_api_key)
        self._model_name = _normalize_model_name(settings.gemini_model)
        if not self._model_name:
            raise ValueError("Gemini model name is required")
        self._models: Dict[Tuple[str, bool, str], genai.GenerativeModel] = {}
        self._timeout = settings.model_timeout_sec

    def _model(
        self,
        declarations: Optional[List[Dict[str, Any]]] = None,
        system_instruction: Optional[str] = None,
    ) -> genai.GenerativeModel:
        key = (self._model_name, bool(declarations), system_instruction or "")
        if key not in self._models:
            kwargs: Dict[str, Any] = {}
            if declarations:
                kwargs["tools"] = [{"function_declarations": [to_tool_declaration(d) for d in declarations]}]
            if system_instruction:
                kwargs["system_instruction"] = system_instruction
            self._models[key] = genai.GenerativeModel(self._model_name, **kwargs)
        return self._models[key]

    def chat_with_tools(
        self,
        history: List[Dict[str, Any]],
        message: str,
        declarations: List[Dict[str, Any]],
        system_instruction: Optional[str] = None,
        temperature: float = 0.7,
        max_output_tokens: int = 1000,
    ) -> ModelTurn:
        """Purpose: Send one user turn with the function catalog attached.
        Inputs/Outputs: Inputs are Gemini-shaped history, the user text, declarations and
            generation config; returns a ModelTurn (function call or text).
        Side Effects / State: May add a model to the internal cache.
        Dependencies: genai.GenerativeModel.start_chat/send_message, _extract_turn.
        Failure Modes: Any SDK, network, or timeout failure raises ClassificationServiceError.
        If Removed: The classifier cannot map user text to catalog functions.
        Testing Notes: Mock the model and check function_call parts win over text.
        """
        # Start a chat over the given history and send the latest user text.
        model = self._model(declarations, system_instruction)
        try:
            chat = model.start_chat(history=history)
            response = chat.send_message(
                message,
                generation_config={"temperature": temperature, "max_output_tokens": max_output_tokens},
                safety_settings=DEFAULT_SAFETY_SETTINGS,
                request_options={"timeout": self._timeout},
            )
        except Exception as exc:
            logger.warning("gemini tool call failed: %s", exc)
            raise ClassificationServiceError(str(exc) or exc.__class__.__name__) from exc
        return _extract_turn(response)

    def chat_text(
        self,
        history: List[Dict[str, Any]],
        message: str,
        temperature: float = 0.8,
        max_output_tokens: int = 500,
    ) -> str:
        """Purpose: Send one turn without tools and return the text reply.
        Inputs/Outputs: Inputs are history, prompt text and generation config; returns text.
        Side Effects / State: May add a model to the internal cache.
        Dependencies: genai.GenerativeModel.start_chat/send_message.
        Failure Modes: SDK failures raise ClassificationServiceError; blocked output returns "".
        If Removed: Function results cannot be phrased as natural language.
        Testing Notes: A response whose .text raises ValueError yields an empty string.
        """
        # Plain chat; the caller decides what to do with short output.
        model = self._model()
        try:
            chat = model.start_chat(history=history)
            response = chat.send_message(
                message,
                generation_config={"temperature": temperature, "max_output_tokens": max_output_tokens},
                safety_settings=DEFAULT_SAFETY_SETTINGS,
                request_options={"timeout": self._timeout},
            )
        except Exception as exc:
            logger.warning("gemini text call failed: %s", exc)
            raise ClassificationServiceError(str(exc) or exc.__class__.__name__) from exc
        return _response_text(response)


def to_tool_declaration(declaration: Dict[str, Any]) -> Dict[str, Any]:
    """Purpose: Convert a catalog entry into the SDK's function declaration shape.
    Inputs/Outputs: Input is {name, description, parameters}; output is a new dict.
    Side Effects / State: None.
    Dependencies: _schema_for_sdk.
    Failure Modes: None; parameters with no properties are omitted entirely.
    If Removed: The SDK rejects lowercase schema types and empty object schemas.
    Testing Notes: browse_categories has no parameters key; search_products has OBJECT.
    """
    # Only name/description are always present.
    result: Dict[str, Any] = {"name": declaration["name"], "description": declaration.get("description", "")}
    parameters = declaration.get("parameters") or {}
    if parameters.get("properties"):
        result["parameters"] = _schema_for_sdk(parameters)
    return result


def _schema_for_sdk(schema: Dict[str, Any]) -> Dict[str, Any]:
    converted: Dict[str, Any] = {}
    for key, value in schema.items():
        if key == "type" and isinstance(value, str):
            converted[key] = value.upper()
        elif key == "properties" and isinstance(value, dict):
            converted[key] = {name: _schema_for_sdk(sub) for name, sub in value.items()}
        elif key == "items" and isinstance(value, dict):
            converted[key] = _schema_for_sdk(value)
        else:
            converted[key] = value
    return converted


def _extract_turn(response: Any) -> ModelTurn:
    """Purpose: Read the first function_call part, else the response text.
    Inputs/Outputs: Input is a GenerateContentResponse; returns a ModelTurn.
    Side Effects / State: None.
    Dependencies: _to_plain, _response_text.
    Failure Modes: Missing candidates/parts fall through to the text path.
    If Removed: Function invocations are never recognised.
    Testing Notes: Parts [text, function_call] must return the function call.
    """
    # A function_call part takes precedence over any text part.
    candidates = getattr(response, "candidates", None) or []
    if candidates:
        content = getattr(candidates[0], "content", None)
        for part in getattr(content, "parts", None) or []:
            function_call = getattr(part, "function_call", None)
            name = getattr(function_call, "name", "") if function_call is not None else ""
            if name:
                arguments = _to_plain(getattr(function_call, "args", None) or {})
                logger.debug("model selected function=%s", name)
                return ModelTurn(function_name=name, arguments=arguments if isinstance(arguments, dict) else {})
    return ModelTurn(text=_response_text(response))


def _response_text(response: Any) -> str:
    # response.text raises ValueError when there is no text part (blocked or tool-only).
    try:
        text: Optional[str] = getattr(response, "text", None)
    except ValueError:
        return ""
    return (text or "").strip()


def _to_plain(value: Any) -> Any:
    """Convert proto map/repeated composites into plain dicts and lists."""
    if isinstance(value, Mapping):
        return {str(key): _to_plain(item) for key, item in value.items()}
    if isinstance(value, (str, bytes)):
        return value
    if hasattr(value, "__iter__") and not isinstance(value, (int, float, bool)):
        return [_to_plain(item) for item in value]
    return value


def _normalize_model_name(name: Optional[str]) -> str:
    """Purpose: Normalize model names by stripping prefix and whitespace.
    Inputs/Outputs: Input is a model name string; output is normalized name.
    Side Effects / State: None.
    Dependencies: None; used by GeminiClient.
    Failure Modes: Returns empty string for falsy input.
    If Removed: Model caching may use prefixed names and fail.
    Testing Notes: Ensure "models/foo" becomes "foo" and whitespace is trimmed.
    """
    # Strip "models/" prefix and whitespace.
    if not name:
        return ""
    cleaned = name.strip()
    if cleaned.startswith("models/"):
        return cleaned.split("/", 1)[1]
    return cleaned
