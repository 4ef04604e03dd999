"""Registration and loading of request and response modifier plugins."""

from __future__ import annotations

from typing import Any, Callable, Iterable, Optional

from .register import Namespaced

NAMESPACE = "proxystack/proxy/plugin"
_REQUEST_NAMESPACE = NAMESPACE + "/request"
_RESPONSE_NAMESPACE = NAMESPACE + "/response"

Modifier = Callable[[Any], Any]
ModifierFactory = Callable[[dict], Modifier]
RegisterModifierFunc = Callable[[str, ModifierFactory, bool, bool], None]

_modifier_register = Namespaced()


class LoaderError(Exception):
    """One or more plugins could not be loaded."""

    def __init__(self, errors: list[str], loaded: int = 0) -> None:
        self.errors = list(errors)
        self.loaded = loaded
        super().__init__(
            f"plugin loader found {len(self.errors)} error(s): \n" + "\n".join(self.errors)
        )

    def __len__(self) -> int:
        return len(self.errors)


def register_modifier(
    name: str,
    factory: ModifierFactory,
    applies_to_request: bool,
    applies_to_response: bool,
) -> None:
    """Register a modifier factory for requests, responses or both."""
    if applies_to_request:
        _modifier_register.register(_REQUEST_NAMESPACE, name, factory)
    if applies_to_response:
        _modifier_register.register(_RESPONSE_NAMESPACE, name, factory)


def _get_modifier(namespace: str, name: str) -> Optional[ModifierFactory]:
    try:
        factory = _modifier_register.get(namespace).get(name)
    except KeyError:
        return None
    return factory if callable(factory) else None


def get_request_modifier(name: str) -> Optional[ModifierFactory]:
    """Return the request modifier factory registered as name, or None."""
    return _get_modifier(_REQUEST_NAMESPACE, name)


def get_response_modifier(name: str) -> Optional[ModifierFactory]:
    """Return the response modifier factory registered as name, or None."""
    return _get_modifier(_RESPONSE_NAMESPACE, name)


def _plugin_name(plugin: Any) -> str:
    name = getattr(plugin, "name", None)
    return name if isinstance(name, str) and name else type(plugin).__name__


def _open(plugin: Any, register_func: RegisterModifierFunc, logger: Any) -> None:
    register = getattr(plugin, "register_modifiers", None)
    if not callable(register):
        raise TypeError("modifier plugin loader: unknown type")
    if logger is not None:
        register_logger = getattr(plugin, "register_logger", None)
        if callable(register_logger):
            register_logger(logger)
    register(register_func)


def load(
    plugins: Iterable[Any],
    register_func: RegisterModifierFunc = register_modifier,
    logger: Any = None,
) -> int:
    """Let every plugin register its modifiers; return how many loaded.

    A plugin is an object with a ``register_modifiers(register_func)`` method
    and, optionally, a ``register_logger(logger)`` one. Raises LoaderError,
    carrying the number of loaded plugins, when any of them fails.
    """
    errors: list[str] = []
    loaded = 0
    for index, plugin in enumerate(plugins):
        try:
            _open(plugin, register_func, logger)
        except Exception as err:
            errors.append(f"plugin #{index} ({_plugin_name(plugin)}): {err}")
            continue
        loaded += 1
    if errors:
        raise LoaderError(errors, loaded)
    return loaded