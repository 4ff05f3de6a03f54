"""
Callback transport for script-only fund data providers.

The providers never answer with plain JSON. They answer with scripts that
either assign a well-known global (``var apidata = {...}``) or call a global
function (``jsonpgz({...})``). ``ScriptEnvironment`` plays the part of the
browser window: it owns the global scope and the injected script elements,
and evaluates each downloaded script against that scope.

Two primitives sit on top of it:
- ``CallbackTransport.load_script``: inject a script, resolve on load,
  raise ``LoadFailureError`` on error. No timeout.
- ``CallbackTransport.load_jsonp``: register a transient global callback,
  inject a script that calls it, and race callback / load error / timeout.
"""
from __future__ import annotations

import asyncio
import itertools
import random
import string
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Protocol, Tuple
from urllib.parse import quote

import httpx

from fundhub.core.config import settings
from fundhub.core.exceptions import (
    CallbackTimeoutError,
    LoadFailureError,
    NoEnvironmentError,
)
from fundhub.core.logging_config import get_transport_logger

from .script import run_script

logger = get_transport_logger()

_MISSING = object()
_BASE36 = string.digits + string.ascii_lowercase
_element_ids = itertools.count(1)


class ScriptLoader(Protocol):
    """Fetches the text of a provider script."""

    async def __call__(self, url: str) -> str: ...

    async def aclose(self) -> None: ...


class HttpScriptLoader:
    """Downloads provider scripts with a browser-like httpx client."""

    def __init__(self, client: httpx.AsyncClient | None = None, referer: str | None = None):
        self._owns_client = client is None
        self.client = client or httpx.AsyncClient(
            headers={"User-Agent": settings.user_agent},
            timeout=settings.http_timeout_seconds,
            follow_redirects=True,
            proxy=settings.proxy_url or None,
        )
        self.referer = referer

    async def __call__(self, url: str) -> str:
        headers = {"Referer": self.referer} if self.referer else None
        try:
            response = await self.client.get(url, headers=headers)
            response.raise_for_status()
        except httpx.HTTPError as exc:
            raise LoadFailureError(f"Script load failed: {url} -> {exc}", url=url) from exc
        return decode_script(response)

    async def aclose(self) -> None:
        if self._owns_client:
            await self.client.aclose()


def decode_script(response: httpx.Response) -> str:
    """
    Script text of ``response``.

    A declared charset wins. Otherwise UTF-8 is tried first and GB18030
    (a superset of the GBK the quote provider uses) is the fallback.
    """
    if response.charset_encoding:
        return response.text
    data = response.content
    try:
        return data.decode("utf-8")
    except UnicodeDecodeError:
        return data.decode("gb18030", errors="replace")


@dataclass(eq=False)
class ScriptElement:
    """One injected script reference."""
    src: str
    id: int = field(default_factory=lambda: next(_element_ids))


class ScriptEnvironment:
    """
    Process-wide execution context for provider scripts.

    Holds the global scope that scripts write into, the list of injected
    script elements, and the loader used to fetch script text. A closed
    environment accepts no further injections.
    """

    def __init__(self, loader: ScriptLoader):
        self.loader = loader
        self.globals: Dict[str, Any] = {}
        self._scripts: list[ScriptElement] = []
        self._tasks: set[asyncio.Task] = set()
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def scripts(self) -> Tuple[ScriptElement, ...]:
        return tuple(self._scripts)

    def contains(self, element: ScriptElement) -> bool:
        return any(s is element for s in self._scripts)

    def remove(self, element: ScriptElement) -> None:
        if self.contains(element):
            self._scripts.remove(element)

    def inject(
        self,
        url: str,
        on_load: Callable[[], None],
        on_error: Callable[[BaseException], None],
    ) -> ScriptElement:
        """Append a script element and start loading it."""
        if self._closed:
            raise NoEnvironmentError("Script environment is closed")
        element = ScriptElement(src=url)
        self._scripts.append(element)
        task = asyncio.get_running_loop().create_task(self._execute(element, on_load, on_error))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return element

    async def _execute(
        self,
        element: ScriptElement,
        on_load: Callable[[], None],
        on_error: Callable[[BaseException], None],
    ) -> None:
        try:
            source = await self.loader(element.src)
        except asyncio.CancelledError:
            on_error(LoadFailureError(f"Script load cancelled: {element.src}", url=element.src))
            raise
        except Exception as exc:
            logger.debug(f"Script #{element.id} failed to load: {element.src} ({exc})")
            on_error(exc)
            return

        try:
            run_script(source, self.globals)
        except Exception as exc:
            logger.warning(f"Script #{element.id} raised during evaluation: {element.src} ({exc})")
            on_error(exc)
            return
        logger.debug(f"Script #{element.id} loaded: {element.src}")
        on_load()

    async def close(self) -> None:
        """Cancel in-flight loads and release the loader."""
        self._closed = True
        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self._scripts.clear()
        await self.loader.aclose()


def append_query_param(url: str, key: str, value: str) -> str:
    """Append ``key=value`` to a URL that may already carry a query string."""
    separator = "&" if "?" in url else "?"
    return f"{url}{separator}{quote(key, safe='')}={quote(value, safe='')}"


def make_callback_name(prefix: str) -> str:
    """Globally-unique callback identifier: prefix + epoch millis + random suffix."""
    suffix = "".join(random.choices(_BASE36, k=11))
    return f"{prefix}{int(time.time() * 1000)}_{suffix}"


def _as_load_failure(exc: BaseException, url: str) -> LoadFailureError:
    if isinstance(exc, LoadFailureError):
        return exc
    error = LoadFailureError(f"Script load failed: {url}", url=url)
    error.__cause__ = exc
    return error


class CallbackTransport:
    """Script and callback-parameter loads against one ``ScriptEnvironment``."""

    def __init__(self, environment: ScriptEnvironment | None):
        self.environment = environment

    @property
    def available(self) -> bool:
        return self.environment is not None and not self.environment.closed

    def _require_environment(self) -> ScriptEnvironment:
        if not self.available:
            raise NoEnvironmentError()
        return self.environment

    def pop_global(self, name: str, default: Any = None) -> Any:
        """Read and clear a global binding."""
        env = self._require_environment()
        return env.globals.pop(name, default)

    async def load_script(self, url: str) -> None:
        """Inject ``url`` and wait for it to load. Raises ``LoadFailureError``."""
        env = self._require_environment()
        future = asyncio.get_running_loop().create_future()
        element: ScriptElement | None = None

        def on_load() -> None:
            env.remove(element)
            if not future.done():
                future.set_result(None)

        def on_error(exc: BaseException) -> None:
            env.remove(element)
            if not future.done():
                future.set_exception(_as_load_failure(exc, url))

        element = env.inject(url, on_load, on_error)
        try:
            await future
        except asyncio.CancelledError:
            env.remove(element)
            raise

    async def load_jsonp(
        self,
        url: str,
        callback_param: str | None = "callback",
        prefix: str = "jsonp_",
        timeout_ms: int = 5000,
        callback_name: str | None = None,
    ) -> Any:
        """
        Load a callback-style endpoint and return the payload it delivers.

        The callback name is generated from ``prefix`` unless ``callback_name``
        fixes it; with ``callback_param=None`` the URL is left untouched and the
        provider is expected to call the fixed name. Whichever of callback,
        load error or timeout happens first settles the call; cleanup (timer,
        global binding, script element) runs exactly once. A binding that
        existed under a fixed name before the call is restored afterwards.
        """
        env = self._require_environment()
        loop = asyncio.get_running_loop()
        name = callback_name or make_callback_name(prefix)
        final_url = append_query_param(url, callback_param, name) if callback_param else url
        future = loop.create_future()
        previous = env.globals.get(name, _MISSING)
        timer: asyncio.TimerHandle | None = None
        element: ScriptElement | None = None
        settled = False

        def cleanup() -> None:
            if timer is not None:
                timer.cancel()
            if previous is _MISSING:
                env.globals.pop(name, None)
            else:
                env.globals[name] = previous
            if element is not None:
                env.remove(element)

        def done(handler: Callable[[Any], None]) -> Callable[..., None]:
            def settle(payload: Any = None) -> None:
                nonlocal settled
                if settled:
                    return
                settled = True
                cleanup()
                if not future.done():
                    handler(payload)
            return settle

        def resolve(payload: Any) -> None:
            future.set_result(payload)

        def reject_load(exc: BaseException) -> None:
            future.set_exception(_as_load_failure(exc, final_url))

        def reject_timeout(_: Any) -> None:
            future.set_exception(
                CallbackTimeoutError(f"Callback {name} not invoked within {timeout_ms}ms", timeout_ms=timeout_ms)
            )

        env.globals[name] = done(resolve)
        timer = loop.call_later(timeout_ms / 1000, done(reject_timeout))
        try:
            element = env.inject(final_url, on_load=lambda: None, on_error=done(reject_load))
        except NoEnvironmentError:
            done(lambda _: None)()
            raise

        try:
            return await future
        except asyncio.CancelledError:
            done(lambda _: None)()
            raise
