from __future__ import annotations

from typing import Any, Callable, Dict, Mapping, Optional

from .errors import UnknownFunction
from .function_catalog import function_names
from .handlers import HandlerResult, IntentHandlers
from .handlers.payments import DEFAULT_CLIENT_IP
from .utils import camel_to_snake

# Only these receive the caller's IP address.
PAYMENT_FUNCTIONS = frozenset({"create_payment_link"})

BoundHandler = Callable[[Optional[Dict[str, Any]]], HandlerResult]


def _bind(
    name: str,
    method: Callable[..., HandlerResult],
    user_id: str,
    session_id: Optional[str],
    ip_address: Optional[str],
) -> BoundHandler:
    def call(arguments: Optional[Dict[str, Any]] = None) -> HandlerResult:
        # Caller identity always overrides anything the model put in the arguments.
        kwargs = {camel_to_snake(key): value for key, value in (arguments or {}).items()}
        kwargs["user_id"] = user_id
        kwargs["session_id"] = session_id
        if name in PAYMENT_FUNCTIONS:
            kwargs["ip_address"] = ip_address or DEFAULT_CLIENT_IP
        else:
            kwargs.pop("ip_address", None)
        return method(**kwargs)

    call.__name__ = name
    return call


def create_function_map(
    handlers: IntentHandlers,
    user_id: str,
    session_id: Optional[str] = None,
    ip_address: Optional[str] = None,
) -> Dict[str, BoundHandler]:
    """Purpose: Bind every catalog function to its handler for one request.
    Inputs/Outputs: Inputs are the handler set, caller user_id, session_id and IP;
        returns {function_name: callable(arguments) -> HandlerResult}.
    Side Effects / State: None; closures only capture the request identity.
    Dependencies: function_catalog.function_names, camel_to_snake.
    Failure Modes: AttributeError at build time if a catalog entry has no handler method.
    If Removed: The classifier has nothing to dispatch a function call to.
    Testing Notes: Every catalog name is present; only create_payment_link sees ip_address.
    """
    # One closure per catalog entry; rebuilt per request.
    return {
        name: _bind(name, getattr(handlers, name), user_id, session_id, ip_address)
        for name in function_names()
    }


def lookup(function_map: Mapping[str, BoundHandler], name: str) -> BoundHandler:
    handler = function_map.get(name)
    if handler is None:
        raise UnknownFunction(name)
    return handler
