"""Shared pytest fixtures for switchboard tests."""

import asyncio
import json
import os
from typing import AsyncGenerator

import httpx
import pytest

# Ensure host machine credentials and settings do not affect test results.
# TELEGRAM_* are intentionally unprefixed and may exist in a developer/CI environment.
for k in list(os.environ):
    if k.startswith("SWITCHBOARD_") or k in ("TELEGRAM_BOT_TOKEN", "TELEGRAM_ALLOWED_CHAT_IDS"):
        os.environ.pop(k, None)
os.environ["SWITCHBOARD_AUTOSTART"] = "0"

from switchboard.bridges.telegram.api import TelegramClient
from switchboard.bridges.telegram.bot import TelegramBridge
from switchboard.bridges.telegram.state import MappingStore
from switchboard.bridges.telegram.types import TelegramUpdate
from switchboard.models import ProjectProfile, TelegramConfig
from switchboard.profiles import ProfileStore
from switchboard.runtime.base import LaunchOptions, LaunchResult, RuntimeState
from switchboard.runtime.hub import EventHub
from switchboard.store import SessionStore

CHAT_ID = 1001
GROUP_ID = -100200
FOREIGN_CHAT_ID = 666
BOT_USERNAME = "switch_bot"


class FakeRuntime:
    """In-memory runtime that records every call."""

    def __init__(self) -> None:
        self.hub = EventHub()
        self.launch_result = LaunchResult(ok=True)
        self.launch_gate: asyncio.Event | None = None
        self.launched: list[LaunchOptions] = []
        self.killed: list[str] = []
        self.messages: list[tuple[str, object]] = []
        self.interrupted: list[str] = []
        self.models: list[tuple[str, str]] = []
        self.alive: set[str] = set()

    async def launch(self, options: LaunchOptions) -> LaunchResult:
        self.launched.append(options)
        if self.launch_gate is not None:
            await self.launch_gate.wait()
        if self.launch_result.ok:
            self.alive.add(options.session_id)
        return self.launch_result

    async def kill(self, session_id: str) -> bool:
        self.killed.append(session_id)
        if session_id not in self.alive:
            return False
        self.alive.discard(session_id)
        return True

    def is_alive(self, session_id: str) -> bool:
        return session_id in self.alive

    async def send_user_message(self, session_id: str, content) -> bool:
        self.messages.append((session_id, content))
        return session_id in self.alive

    async def interrupt(self, session_id: str) -> bool:
        self.interrupted.append(session_id)
        return True

    async def set_model(self, session_id: str, model: str) -> bool:
        self.models.append((session_id, model))
        return True

    def session_state(self, session_id: str) -> RuntimeState | None:
        if session_id not in self.alive:
            return None
        return RuntimeState(session_id=session_id, cwd="/tmp", model="sonnet", total_cost_usd=0.25, num_turns=3)


class FakeTelegram:
    """Bot API stand-in served through ``httpx.MockTransport``.

    Every call is recorded as ``(method, payload)``. ``fail`` maps a method
    name to the number of upcoming calls that should return ``ok: false``.
    """

    def __init__(self) -> None:
        self.calls: list[tuple[str, dict]] = []
        self.fail: dict[str, int] = {}
        self.fail_html = 0
        self.updates: list[dict] = []
        self.file_bytes = b"\x89PNG fake"
        self._next_message_id = 500

    def methods(self) -> list[str]:
        return [m for m, _ in self.calls]

    def sent(self, method: str = "sendMessage") -> list[dict]:
        return [p for m, p in self.calls if m == method]

    def texts(self) -> list[str]:
        return [p["text"] for p in self.sent()]

    def _message(self, payload: dict) -> dict:
        self._next_message_id += 1
        msg = {
            "message_id": self._next_message_id,
            "chat": {"id": int(payload.get("chat_id", 0)), "type": "private"},
            "date": 0,
            "text": payload.get("text"),
        }
        return msg

    async def handler(self, request: httpx.Request) -> httpx.Response:
        path = request.url.path
        if "/file/bot" in path:
            self.calls.append(("downloadFile", {"path": path}))
            return httpx.Response(200, content=self.file_bytes)

        method = path.rsplit("/", 1)[-1]
        content_type = request.headers.get("content-type", "")
        payload = json.loads(request.content or b"{}") if "json" in content_type else {}
        self.calls.append((method, payload))

        if self.fail.get(method, 0) > 0:
            self.fail[method] -= 1
            return httpx.Response(400, json={"ok": False, "description": "Bad Request", "error_code": 400})
        if method == "sendMessage" and self.fail_html > 0 and payload.get("parse_mode") == "HTML":
            self.fail_html -= 1
            return httpx.Response(
                400,
                json={"ok": False, "description": "Bad Request: can't parse entities", "error_code": 400},
            )

        if method == "getMe":
            result = {"id": 42, "is_bot": True, "first_name": "Switchboard", "username": BOT_USERNAME}
        elif method == "getUpdates":
            await asyncio.sleep(0.01)
            result, self.updates = self.updates, []
        elif method in ("sendMessage", "sendDocument"):
            result = self._message(payload)
        elif method == "getFile":
            result = {"file_id": payload["file_id"], "file_path": "photos/file_1.png"}
        elif method == "createForumTopic":
            result = {"message_thread_id": 77, "name": payload["name"]}
        else:
            result = True
        return httpx.Response(200, json={"ok": True, "result": result})


def make_update(
    text: str | None = None,
    *,
    chat_id: int = CHAT_ID,
    chat_type: str = "private",
    topic_id: int = 0,
    message_id: int = 10,
    update_id: int = 1,
    photo: list[dict] | None = None,
    caption: str | None = None,
) -> TelegramUpdate:
    message: dict = {
        "message_id": message_id,
        "chat": {"id": chat_id, "type": chat_type},
        "date": 0,
    }
    if text is not None:
        message["text"] = text
    if photo is not None:
        message["photo"] = photo
    if caption is not None:
        message["caption"] = caption
    if topic_id:
        message["message_thread_id"] = topic_id
        message["is_topic_message"] = True
    return TelegramUpdate.model_validate({"update_id": update_id, "message": message})


def make_callback(
    data: str,
    *,
    chat_id: int = CHAT_ID,
    topic_id: int = 0,
    message_id: int = 20,
    update_id: int = 2,
) -> TelegramUpdate:
    message: dict = {
        "message_id": message_id,
        "chat": {"id": chat_id, "type": "private"},
        "date": 0,
    }
    if topic_id:
        message["message_thread_id"] = topic_id
        message["is_topic_message"] = True
    return TelegramUpdate.model_validate(
        {
            "update_id": update_id,
            "callback_query": {"id": "cbq-1", "data": data, "message": message},
        }
    )


@pytest.fixture(scope="session")
def anyio_backend() -> str:
    """Force the AnyIO pytest plugin to run tests under asyncio.

    The bridge is asyncio-native and tests use asyncio primitives directly
    (e.g. asyncio.create_task), which are incompatible with the trio backend.
    """
    return "asyncio"


@pytest.fixture
def data_dir(tmp_path, monkeypatch) -> str:
    """Create a temporary data directory for test isolation."""
    path = str(tmp_path / "data")
    os.makedirs(path, exist_ok=True)
    monkeypatch.setenv("SWITCHBOARD_DATA_DIR", path)
    return path


@pytest.fixture
def project_dir(tmp_path) -> str:
    path = tmp_path / "proj"
    path.mkdir()
    return str(path)


@pytest.fixture
def profiles(project_dir) -> ProfileStore:
    store = ProfileStore("/nonexistent/profiles.json")
    store.add(ProjectProfile(slug="api", name="API server", dir=project_dir))
    store.add(ProjectProfile(slug="web", name="Web app", dir=project_dir, default_model="opus"))
    return store


@pytest.fixture
def runtime() -> FakeRuntime:
    return FakeRuntime()


@pytest.fixture
def telegram() -> FakeTelegram:
    return FakeTelegram()


@pytest.fixture
async def bridge(data_dir, profiles, runtime, telegram) -> AsyncGenerator[TelegramBridge, None]:
    """A bridge wired to the fake runtime and the fake Bot API, not started."""
    http = httpx.AsyncClient(transport=httpx.MockTransport(telegram.handler))
    bridge = TelegramBridge(
        TelegramConfig(bot_token="123:abc", allowed_chat_ids=[CHAT_ID, GROUP_ID], enabled=True),
        runtime=runtime,
        profiles=profiles,
        sessions=SessionStore(os.path.join(data_dir, "sessions")),
        mappings=MappingStore(os.path.join(data_dir, "telegram-sessions.json")),
        client=TelegramClient("123:abc", client=http),
        poll_timeout=0,
        poll_backoff=0.01,
        chunk_delay=0,
    )
    yield bridge
    await bridge.stop()


async def settle(rounds: int = 5) -> None:
    """Let queued hub deliveries and spawned tasks run."""
    for _ in range(rounds):
        await asyncio.sleep(0)


class FakeClock:
    """Virtual time for timer tests: ``sleep`` waits until ``advance`` passes its deadline."""

    def __init__(self) -> None:
        self.now = 0.0
        self._waiters: list[tuple[float, asyncio.Future]] = []

    async def sleep(self, delay: float) -> None:
        fut = asyncio.get_running_loop().create_future()
        self._waiters.append((self.now + delay, fut))
        await fut

    async def advance(self, delta: float) -> None:
        target = self.now + delta
        while True:
            await settle()
            due = [(t, f) for t, f in self._waiters if t <= target and not f.done()]
            if not due:
                break
            deadline, fut = min(due, key=lambda w: w[0])
            self._waiters.remove((deadline, fut))
            self.now = deadline
            fut.set_result(None)
        self._waiters = [(t, f) for t, f in self._waiters if not f.done()]
        self.now = target
        await settle()


async def eventually(predicate, timeout: float = 2.0) -> None:
    """Wait until ``predicate()`` is true, failing after ``timeout`` seconds."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not met in time")
        await asyncio.sleep(0.005)
