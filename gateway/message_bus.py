"""
Host Message Bus

Fire-and-forget events between the agent core and the UI host. The core
publishes approval requests here; the UI answers through
``tools.approval.handle_approval_response`` and the core echoes an
``approval:response`` event so other views can update.

Events:
  - approval:request   -- {requestId, toolName, toolInput, reason, sessionId, windowId}
  - approval:response  -- {requestId, approved}

Handlers may be registered in code (``subscribe``) or discovered from
$HIVE_HOME/hooks/<name>/ directories, each containing:
  - HOOK.yaml  (metadata: name, description, events list)
  - handler.py (Python handler with [async] def handle(event_type, payload))

Errors in handlers are caught and logged but never reach the publisher.
Payloads are plain dicts; no exception object crosses the bus.
"""

import asyncio
import importlib.util
import logging
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Set

import yaml

from hive_constants import HIVE_HOME

logger = logging.getLogger(__name__)

HOOKS_DIR = HIVE_HOME / "hooks"

Handler = Callable[[str, Dict[str, Any]], Any]


def _import_handle(hook_name: str, handler_file: Path) -> Optional[Handler]:
    """Import a hook's handler.py and return its ``handle`` callable, if any."""
    module_spec = importlib.util.spec_from_file_location(f"hive_hook_{hook_name}", handler_file)
    if module_spec is None or module_spec.loader is None:
        return None
    module = importlib.util.module_from_spec(module_spec)
    module_spec.loader.exec_module(module)
    handle = getattr(module, "handle", None)
    return handle if callable(handle) else None


class MessageBus:
    """
    Registers handlers and fires events to them.

    Usage:
        bus = MessageBus()
        bus.subscribe("approval:request", show_dialog)
        await bus.emit("approval:request", {"requestId": ...})
    """

    def __init__(self):
        # event_type -> [handler_fn, ...]
        self._handlers: Dict[str, List[Handler]] = {}
        self._loaded_hooks: List[dict] = []  # metadata for listing
        self._tasks: Set[asyncio.Task] = set()

    @property
    def loaded_hooks(self) -> List[dict]:
        """Return metadata about all hooks loaded from disk."""
        return list(self._loaded_hooks)

    def subscribe(self, event_type: str, handler: Handler) -> None:
        self._handlers.setdefault(event_type, []).append(handler)

    def unsubscribe(self, event_type: str, handler: Handler) -> bool:
        handlers = self._handlers.get(event_type, [])
        if handler in handlers:
            handlers.remove(handler)
            return True
        return False

    def discover_and_load(self) -> None:
        """Subscribe every valid hook found under ``HOOKS_DIR``.

        A hook is a directory holding ``HOOK.yaml`` (``name``, ``description``,
        ``events``) and ``handler.py`` defining ``handle(event_type, payload)``.
        Broken hooks are skipped with a warning.
        """
        if not HOOKS_DIR.is_dir():
            return

        for hook_dir in sorted(p for p in HOOKS_DIR.iterdir() if p.is_dir()):
            try:
                self._load_hook(hook_dir)
            except Exception as e:
                logger.error("Error loading hook %s: %s", hook_dir.name, e)

    def _load_hook(self, hook_dir: Path) -> bool:
        manifest_file = hook_dir / "HOOK.yaml"
        handler_file = hook_dir / "handler.py"
        if not (manifest_file.is_file() and handler_file.is_file()):
            return False

        manifest = yaml.safe_load(manifest_file.read_text(encoding="utf-8"))
        if not isinstance(manifest, dict):
            logger.warning("Skipping hook %s: HOOK.yaml is not a mapping", hook_dir.name)
            return False

        name = manifest.get("name") or hook_dir.name
        event_types = manifest.get("events") or []
        if not event_types:
            logger.warning("Skipping hook %s: no events declared", name)
            return False

        handle = _import_handle(name, handler_file)
        if handle is None:
            logger.warning("Skipping hook %s: handler.py has no handle()", name)
            return False

        for event_type in event_types:
            self.subscribe(event_type, handle)
        self._loaded_hooks.append({
            "name": name,
            "description": manifest.get("description", ""),
            "events": list(event_types),
            "path": str(hook_dir),
        })
        logger.info("Loaded hook '%s' for events: %s", name, event_types)
        return True

    def _handlers_for(self, event_type: str) -> List[Handler]:
        # Exact match + wildcard ("approval:*" matches "approval:request")
        handlers = list(self._handlers.get(event_type, []))
        if ":" in event_type:
            base = event_type.split(":")[0]
            handlers.extend(self._handlers.get(f"{base}:*", []))
        return handlers

    async def emit(self, event_type: str, payload: Optional[Dict[str, Any]] = None) -> None:
        """
        Fire all handlers registered for an event and wait for them.

        Handlers registered for a base type like "approval" won't fire for
        "approval:request" -- only exact matches and explicit wildcards.
        """
        if payload is None:
            payload = {}

        for fn in self._handlers_for(event_type):
            try:
                result = fn(event_type, payload)
                # Support both sync and async handlers
                if asyncio.iscoroutine(result):
                    await result
            except Exception as e:
                logger.error("Error in handler for '%s': %s", event_type, e)

    def publish(self, event_type: str, payload: Optional[Dict[str, Any]] = None) -> None:
        """Fire-and-forget ``emit`` for synchronous callers."""
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            loop = None

        if loop is None:
            asyncio.run(self.emit(event_type, payload))
            return

        task = loop.create_task(self.emit(event_type, payload))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
