"""
Callback dispatch for nested executions.

A ``CallbackManager`` opens runs and hands back a run-scoped manager that
emits the rest of that run's events. ``get_child()`` on a run manager
returns a ``CallbackManager`` whose runs are nested under that run.

Handler failures are logged and never reach the traced computation.
"""

import inspect
import logging
from typing import Any, Dict, List, Optional, Sequence

from runtree.callbacks.base import AGENT_HOOKS, LLM_HOOKS, BaseCallbackHandler
from runtree.utils.uuid7 import generate_uuid7

logger = logging.getLogger(__name__)


def _is_ignored(handler: BaseCallbackHandler, hook_name: str) -> bool:
    if hook_name in LLM_HOOKS:
        return getattr(handler, "ignore_llm", False)
    if hook_name in AGENT_HOOKS:
        return getattr(handler, "ignore_agent", False)
    return getattr(handler, "ignore_chain", False)


async def _dispatch(
    handlers: Sequence[BaseCallbackHandler],
    hook_name: str,
    *args: Any,
    **kwargs: Any,
) -> None:
    """Invoke ``hook_name`` on every handler that implements it."""
    for handler in handlers:
        if _is_ignored(handler, hook_name):
            continue
        hook = getattr(handler, hook_name, None)
        if hook is None:
            continue
        try:
            result = hook(*args, **kwargs)
            if inspect.isawaitable(result):
                await result
        except Exception as e:
            logger.error(
                f"Error in {type(handler).__name__}.{hook_name}: {e}", exc_info=True
            )


class BaseRunManager:
    """Events shared by every open run."""

    def __init__(
        self,
        run_id: str,
        handlers: List[BaseCallbackHandler],
        inheritable_handlers: List[BaseCallbackHandler],
        parent_run_id: Optional[str] = None,
    ):
        self.run_id = run_id
        self.handlers = handlers
        self.inheritable_handlers = inheritable_handlers
        self.parent_run_id = parent_run_id

    async def _emit(self, hook_name: str, *args: Any) -> None:
        await _dispatch(
            self.handlers,
            hook_name,
            *args,
            run_id=self.run_id,
            parent_run_id=self.parent_run_id,
        )

    async def handle_text(self, text: str) -> None:
        await self._emit("on_text", text)

    def get_child(self) -> "CallbackManager":
        """Manager for runs nested under this one."""
        manager = CallbackManager(parent_run_id=self.run_id)
        manager.set_handlers(self.inheritable_handlers)
        return manager


class LLMRunManager(BaseRunManager):
    """Run manager for LLM and chat model runs."""

    async def handle_llm_new_token(self, token: str) -> None:
        await self._emit("on_llm_new_token", token)

    async def handle_llm_error(self, error: BaseException) -> None:
        await self._emit("on_llm_error", error)

    async def handle_llm_end(self, response: Any) -> None:
        await self._emit("on_llm_end", response)


class ChainRunManager(BaseRunManager):
    """Run manager for chain and agent runs."""

    async def handle_chain_error(self, error: BaseException) -> None:
        await self._emit("on_chain_error", error)

    async def handle_chain_end(self, outputs: Dict[str, Any]) -> None:
        await self._emit("on_chain_end", outputs)

    async def handle_agent_action(self, action: Any) -> None:
        await self._emit("on_agent_action", action)

    async def handle_agent_end(self, finish: Any) -> None:
        await self._emit("on_agent_end", finish)


class ToolRunManager(BaseRunManager):
    """Run manager for tool runs."""

    async def handle_tool_error(self, error: BaseException) -> None:
        await self._emit("on_tool_error", error)

    async def handle_tool_end(self, output: str) -> None:
        await self._emit("on_tool_end", output)


class CallbackManager:
    """
    Dispatches execution events to a set of handlers.

    Args:
        handlers: Handlers receiving events for runs opened by this manager
        inheritable_handlers: Handlers also passed on to child managers
        parent_run_id: Run that runs opened by this manager are nested under
    """

    def __init__(
        self,
        handlers: Optional[List[BaseCallbackHandler]] = None,
        inheritable_handlers: Optional[List[BaseCallbackHandler]] = None,
        parent_run_id: Optional[str] = None,
    ):
        self.handlers: List[BaseCallbackHandler] = list(handlers or [])
        self.inheritable_handlers: List[BaseCallbackHandler] = list(
            inheritable_handlers or []
        )
        self.parent_run_id = parent_run_id

    def add_handler(self, handler: BaseCallbackHandler, inherit: bool = True) -> None:
        if handler not in self.handlers:
            self.handlers.append(handler)
        if inherit and handler not in self.inheritable_handlers:
            self.inheritable_handlers.append(handler)

    def remove_handler(self, handler: BaseCallbackHandler) -> None:
        if handler in self.handlers:
            self.handlers.remove(handler)
        if handler in self.inheritable_handlers:
            self.inheritable_handlers.remove(handler)

    def set_handlers(
        self, handlers: Sequence[BaseCallbackHandler], inherit: bool = True
    ) -> None:
        self.handlers = []
        self.inheritable_handlers = []
        for handler in handlers:
            self.add_handler(handler, inherit=inherit)

    def copy(self) -> "CallbackManager":
        return CallbackManager(
            handlers=self.handlers,
            inheritable_handlers=self.inheritable_handlers,
            parent_run_id=self.parent_run_id,
        )

    @classmethod
    def configure(
        cls,
        inheritable_callbacks: Optional[Sequence[BaseCallbackHandler]] = None,
        local_callbacks: Optional[Sequence[BaseCallbackHandler]] = None,
    ) -> "CallbackManager":
        """
        Build a manager from inherited and local handlers.

        Local handlers only see runs opened directly by this manager; inherited
        handlers are propagated to child managers as well.
        """
        manager = cls()
        for handler in inheritable_callbacks or []:
            manager.add_handler(handler, inherit=True)
        for handler in local_callbacks or []:
            manager.add_handler(handler, inherit=False)
        return manager

    def _run_manager_args(self, run_id: Optional[str]) -> Dict[str, Any]:
        return {
            "run_id": run_id or generate_uuid7(),
            "handlers": self.handlers,
            "inheritable_handlers": self.inheritable_handlers,
            "parent_run_id": self.parent_run_id,
        }

    async def handle_llm_start(
        self,
        serialized: Dict[str, Any],
        prompts: List[str],
        run_id: Optional[str] = None,
        extra_params: Optional[Dict[str, Any]] = None,
    ) -> LLMRunManager:
        run_manager = LLMRunManager(**self._run_manager_args(run_id))
        await _dispatch(
            self.handlers,
            "on_llm_start",
            serialized,
            prompts,
            run_id=run_manager.run_id,
            parent_run_id=self.parent_run_id,
            extra_params=extra_params,
        )
        return run_manager

    async def handle_chat_model_start(
        self,
        serialized: Dict[str, Any],
        messages: List[List[Any]],
        run_id: Optional[str] = None,
        extra_params: Optional[Dict[str, Any]] = None,
    ) -> LLMRunManager:
        run_manager = LLMRunManager(**self._run_manager_args(run_id))
        await _dispatch(
            self.handlers,
            "on_chat_model_start",
            serialized,
            messages,
            run_id=run_manager.run_id,
            parent_run_id=self.parent_run_id,
            extra_params=extra_params,
        )
        return run_manager

    async def handle_chain_start(
        self,
        serialized: Dict[str, Any],
        inputs: Dict[str, Any],
        run_id: Optional[str] = None,
    ) -> ChainRunManager:
        run_manager = ChainRunManager(**self._run_manager_args(run_id))
        await _dispatch(
            self.handlers,
            "on_chain_start",
            serialized,
            inputs,
            run_id=run_manager.run_id,
            parent_run_id=self.parent_run_id,
        )
        return run_manager

    async def handle_tool_start(
        self,
        serialized: Dict[str, Any],
        input_str: str,
        run_id: Optional[str] = None,
    ) -> ToolRunManager:
        run_manager = ToolRunManager(**self._run_manager_args(run_id))
        await _dispatch(
            self.handlers,
            "on_tool_start",
            serialized,
            input_str,
            run_id=run_manager.run_id,
            parent_run_id=self.parent_run_id,
        )
        return run_manager
