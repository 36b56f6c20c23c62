"""
Callback contract for observers of nested executions.

Every hook is optional. A handler implements a hook by defining a method of
that name; hooks left as ``None`` are skipped by the dispatcher. Hooks may be
plain functions or coroutines, and all receive the ``run_id`` of the run the
event belongs to plus the ``parent_run_id`` of its enclosing run, if any.

Hook signatures:

- ``on_llm_start(serialized, prompts, *, run_id, parent_run_id=None, extra_params=None)``
- ``on_chat_model_start(serialized, messages, *, run_id, parent_run_id=None, extra_params=None)``
- ``on_llm_new_token(token, *, run_id, parent_run_id=None)``
- ``on_llm_error(error, *, run_id, parent_run_id=None)``
- ``on_llm_end(response, *, run_id, parent_run_id=None)``
- ``on_chain_start(serialized, inputs, *, run_id, parent_run_id=None)``
- ``on_chain_error(error, *, run_id, parent_run_id=None)``
- ``on_chain_end(outputs, *, run_id, parent_run_id=None)``
- ``on_tool_start(serialized, input_str, *, run_id, parent_run_id=None)``
- ``on_tool_error(error, *, run_id, parent_run_id=None)``
- ``on_tool_end(output, *, run_id, parent_run_id=None)``
- ``on_text(text, *, run_id, parent_run_id=None)``
- ``on_agent_action(action, *, run_id, parent_run_id=None)``
- ``on_agent_end(finish, *, run_id, parent_run_id=None)``

The ignore flags group hooks as follows: ``ignore_llm`` covers the LLM and chat
model hooks, ``ignore_agent`` the agent action and finish hooks, and
``ignore_chain`` everything else, tool hooks and ``on_text`` included.
"""

from typing import Any, Callable, Dict, Optional

from runtree.utils.uuid7 import generate_uuid7

LLM_HOOKS = (
    "on_llm_start",
    "on_chat_model_start",
    "on_llm_new_token",
    "on_llm_error",
    "on_llm_end",
)
CHAIN_HOOKS = (
    "on_chain_start",
    "on_chain_error",
    "on_chain_end",
    "on_tool_start",
    "on_tool_error",
    "on_tool_end",
    "on_text",
)
AGENT_HOOKS = ("on_agent_action", "on_agent_end")

HOOK_NAMES = LLM_HOOKS + CHAIN_HOOKS + AGENT_HOOKS

Hook = Optional[Callable[..., Any]]


class BaseCallbackHandler:
    """
    Base class for callback handlers.

    Args:
        ignore_llm: Skip all LLM and chat model hooks
        ignore_chain: Skip chain, tool and text hooks
        ignore_agent: Skip agent action and finish hooks
    """

    name: str = "base_callback_handler"

    on_llm_start: Hook = None
    on_chat_model_start: Hook = None
    on_llm_new_token: Hook = None
    on_llm_error: Hook = None
    on_llm_end: Hook = None

    on_chain_start: Hook = None
    on_chain_error: Hook = None
    on_chain_end: Hook = None

    on_tool_start: Hook = None
    on_tool_error: Hook = None
    on_tool_end: Hook = None

    on_text: Hook = None

    on_agent_action: Hook = None
    on_agent_end: Hook = None

    def __init__(
        self,
        ignore_llm: bool = False,
        ignore_chain: bool = False,
        ignore_agent: bool = False,
    ):
        self.ignore_llm = ignore_llm
        self.ignore_chain = ignore_chain
        self.ignore_agent = ignore_agent

    def implements(self, hook_name: str) -> bool:
        """Return True if this handler provides ``hook_name``."""
        if hook_name not in HOOK_NAMES:
            raise ValueError(f"Unknown callback hook: {hook_name}")
        return callable(getattr(self, hook_name, None))

    def _init_kwargs(self) -> Dict[str, Any]:
        """Constructor arguments that reproduce this handler's settings."""
        return {
            "ignore_llm": self.ignore_llm,
            "ignore_chain": self.ignore_chain,
            "ignore_agent": self.ignore_agent,
        }

    def copy(self) -> "BaseCallbackHandler":
        """New handler of the same class with the same settings and no shared state."""
        return type(self)(**self._init_kwargs())

    @classmethod
    def from_methods(
        cls,
        ignore_llm: bool = False,
        ignore_chain: bool = False,
        ignore_agent: bool = False,
        **hooks: Callable[..., Any],
    ) -> "BaseCallbackHandler":
        """
        Build a handler from plain functions.

        Args:
            **hooks: Functions keyed by hook name, e.g. ``on_llm_end=fn``

        Returns:
            Handler exposing exactly the given hooks
        """
        unknown = set(hooks) - set(HOOK_NAMES)
        if unknown:
            raise ValueError(f"Unknown callback hooks: {', '.join(sorted(unknown))}")

        attrs: Dict[str, Any] = {"name": generate_uuid7()}
        attrs.update({name: staticmethod(fn) for name, fn in hooks.items()})
        handler_cls = type("MethodsCallbackHandler", (cls,), attrs)
        return handler_cls(
            ignore_llm=ignore_llm,
            ignore_chain=ignore_chain,
            ignore_agent=ignore_agent,
        )

    def __repr__(self) -> str:
        return f"{type(self).__name__}(name={self.name!r})"
