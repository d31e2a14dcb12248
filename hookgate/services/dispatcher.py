"""
Dispatcher - routes a validated event to its handler by (provider, topic).

The registration table is populated at startup, either in code
(register / @registry.handler) or from HANDLER_ROUTES import paths.
A topic of "*" registers a provider-wide fallback.

An unknown (provider, topic) is not an error: route() returns UNHANDLED and
the gateway still acknowledges the delivery.
"""
import importlib
import logging
from typing import Any, Callable, Mapping, Optional

logger = logging.getLogger(__name__)

WILDCARD_TOPIC = "*"

Handler = Callable[[Any], Any]


class _Unhandled:
    _instance = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __bool__(self) -> bool:
        return False

    def __repr__(self) -> str:
        return "UNHANDLED"


UNHANDLED = _Unhandled()


def import_handler(path: str) -> Handler:
    """Resolve "package.module:callable" to the callable."""
    module_path, sep, attr = path.partition(":")
    if not sep or not module_path or not attr:
        raise ValueError(f"Handler path must look like 'module.path:callable', got '{path}'")
    module = importlib.import_module(module_path)
    target = module
    for part in attr.split("."):
        target = getattr(target, part)
    if not callable(target):
        raise TypeError(f"Handler '{path}' is not callable")
    return target


class HandlerRegistry:
    def __init__(self):
        self._routes: dict[tuple[str, str], Handler] = {}

    def register(self, provider: str, topic: str, handler: Handler) -> None:
        key = (provider, topic)
        if key in self._routes and self._routes[key] is not handler:
            raise ValueError(f"Handler already registered for {provider}/{topic}")
        self._routes[key] = handler
        logger.info(
            "Registered handler %s for %s/%s",
            getattr(handler, "__qualname__", repr(handler)), provider, topic,
        )

    def handler(self, provider: str, topic: str) -> Callable[[Handler], Handler]:
        """Decorator form of register()."""
        def decorator(func: Handler) -> Handler:
            self.register(provider, topic, func)
            return func
        return decorator

    def load_routes(self, routes: Mapping[str, str]) -> None:
        """
        Register handlers from {"provider:topic": "module.path:callable"}.
        Import failures abort startup.
        """
        for route_key, path in routes.items():
            provider, sep, topic = route_key.partition(":")
            if not sep or not provider or not topic:
                raise ValueError(f"Route key must look like 'provider:topic', got '{route_key}'")
            self.register(provider, topic, import_handler(path))

    def route(self, provider: str, topic: Optional[str]) -> Any:
        """Return the handler for (provider, topic) or UNHANDLED."""
        if topic is not None:
            handler = self._routes.get((provider, topic))
            if handler is not None:
                return handler
        return self._routes.get((provider, WILDCARD_TOPIC), UNHANDLED)

    def route_event(self, event) -> Any:
        return self.route(event.provider, event.topic)

    def routes(self) -> list[tuple[str, str]]:
        return sorted(self._routes)

    def __len__(self) -> int:
        return len(self._routes)
