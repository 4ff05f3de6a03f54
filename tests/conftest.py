import asyncio
import inspect
import json
from typing import Any, Callable, List, Tuple, Union
from urllib.parse import parse_qs, urlsplit

import pytest

from fundhub.core.exceptions import LoadFailureError
from fundhub.services.fund_data import (
    CallbackTransport,
    FundDataService,
    ScriptEnvironment,
    SlotQueues,
)

Response = Union[str, BaseException, Callable[[str], Any]]


class FakeScriptLoader:
    """
    Serves canned provider scripts by URL fragment.

    A response is script text, an exception to raise, or a callable taking
    the URL (sync or async) that returns either. Routes added later win.
    """

    def __init__(self):
        self.routes: List[Tuple[str, Response]] = []
        self.requests: List[str] = []
        self.closed = False

    def route(self, fragment: str, response: Response) -> None:
        self.routes.insert(0, (fragment, response))

    def requests_for(self, fragment: str) -> List[str]:
        return [url for url in self.requests if fragment in url]

    async def __call__(self, url: str) -> str:
        self.requests.append(url)
        for fragment, response in self.routes:
            if fragment not in url:
                continue
            if callable(response) and not isinstance(response, BaseException):
                response = response(url)
                if inspect.isawaitable(response):
                    response = await response
            if isinstance(response, BaseException):
                raise response
            return response
        raise LoadFailureError(f"No route for {url}", url=url)

    async def aclose(self) -> None:
        self.closed = True


def callback_of(url: str, param: str = "callback") -> str:
    """Callback name a JSONP request asked for."""
    return parse_qs(urlsplit(url).query)[param][0]


def jsonp_reply(payload: Any) -> Callable[[str], str]:
    """Route response calling the requested callback with ``payload``."""
    def reply(url: str) -> str:
        return f"{callback_of(url)}({json.dumps(payload, ensure_ascii=False)});"
    return reply


def apidata_script(content: str, **extra: Any) -> str:
    fields = "".join(f",{k}:{json.dumps(v)}" for k, v in extra.items())
    return f"var apidata={{ content:{json.dumps(content, ensure_ascii=False)}{fields}}};"


def quote_fields(*fields: str) -> str:
    return "~".join(fields)


async def never() -> None:
    await asyncio.Event().wait()


@pytest.fixture
def loader() -> FakeScriptLoader:
    return FakeScriptLoader()


@pytest.fixture
async def environment(loader):
    env = ScriptEnvironment(loader)
    yield env
    await env.close()


@pytest.fixture
def transport(environment) -> CallbackTransport:
    return CallbackTransport(environment)


@pytest.fixture
def queues() -> SlotQueues:
    return SlotQueues()


@pytest.fixture
def service(transport, queues) -> FundDataService:
    return FundDataService(transport=transport, queues=queues)
