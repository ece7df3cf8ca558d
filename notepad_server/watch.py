from __future__ import annotations

import asyncio
import logging
import time
from pathlib import Path
from typing import Awaitable, Callable, List, Optional

from watchfiles import awatch

from .store import NotepadStore

logger = logging.getLogger(__name__)

DEFAULT_POLL_INTERVAL = 0.5

PromptHandler = Callable[[List[str]], Awaitable[None]]


def drain(store: NotepadStore, path: Path | str) -> List[str]:
    """
    Collect new prompts and mark them processed before handing them out.

    Marking first means a consumer that dies while handling a prompt will not
    see it again after a restart.
    """
    prompts = store.pending(path)
    if prompts:
        store.mark_processed(path)
        logger.info("Consumed %d prompt(s) from %s", len(prompts), path)
    return prompts


async def watch_events(
    store: NotepadStore,
    path: Path | str,
    on_prompts: PromptHandler,
    stop_event: Optional[asyncio.Event] = None,
) -> None:
    """Drain the notepad on every filesystem change until cancelled."""
    target = Path(path).expanduser().resolve()

    # Watch the directory so editors that save by rename are still seen.
    def _only_notepad(_change, changed: str) -> bool:
        return Path(changed).resolve() == target

    async for _changes in awatch(
        target.parent,
        watch_filter=_only_notepad,
        stop_event=stop_event,
        recursive=False,
    ):
        prompts = drain(store, target)
        if prompts:
            await on_prompts(prompts)


async def watch_polling(
    store: NotepadStore,
    path: Path | str,
    on_prompts: PromptHandler,
    interval: float = DEFAULT_POLL_INTERVAL,
) -> None:
    """Same contract as ``watch_events`` on a fixed interval."""
    while True:
        prompts = drain(store, path)
        if prompts:
            await on_prompts(prompts)
        await asyncio.sleep(interval)


async def poll_for_prompts(
    store: NotepadStore,
    path: Path | str,
    timeout: Optional[float],
    interval: float = DEFAULT_POLL_INTERVAL,
) -> List[str]:
    """
    Wait until the notepad holds new prompts or the timeout passes.

    A timeout of 0 or None waits indefinitely. Returns an empty list when the
    deadline is reached.
    """
    deadline = time.monotonic() + timeout if timeout else None
    while True:
        prompts = drain(store, path)
        if prompts:
            return prompts
        if deadline is not None:
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                return []
            await asyncio.sleep(min(interval, remaining))
        else:
            await asyncio.sleep(interval)
