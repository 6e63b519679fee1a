"""
Pytest configuration for gateway tests.

Provides a local aiohttp application standing in for the KIE gateway. It
records every hit in order and answers from a per-route script, so
candidate ordering and short-circuiting can be asserted on the wire.
"""

import asyncio
import json
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Tuple, Union

import pytest
import pytest_asyncio
from aiohttp import web
from aiohttp.test_utils import TestServer

from studio.kie.types import GatewayConfig, TaskStatus, VideoTask


@dataclass
class Reply:
    status: int = 200
    body: Any = None
    text: Optional[str] = None
    delay: float = 0.0


@dataclass
class Hit:
    method: str
    path: str
    query: Dict[str, str]
    headers: Dict[str, str]
    json: Any = None
    form: Dict[str, Any] = field(default_factory=dict)


Script = Union[Reply, List[Reply], Callable[["Hit"], Reply]]


class FakeGateway:
    """Scripted stand-in for the gateway; unknown routes answer 404."""

    def __init__(self):
        self.hits: List[Hit] = []
        self._routes: Dict[Tuple[str, str], Script] = {}
        self.origin = ""
        self.app = web.Application()
        self.app.router.add_route("*", "/{tail:.*}", self._handle)

    def on(self, method: str, path: str, script: Script) -> None:
        """Register a reply, a list of replies (last one repeats) or a callable."""
        if isinstance(script, list):
            script = list(script)
        self._routes[(method.upper(), path)] = script

    def paths(self) -> List[str]:
        return [hit.path for hit in self.hits]

    def _next_reply(self, hit: Hit) -> Reply:
        script = self._routes.get((hit.method, hit.path))
        if script is None:
            return Reply(status=404, body={"code": 404, "msg": "not found"})
        if isinstance(script, Reply):
            return script
        if isinstance(script, list):
            return script.pop(0) if len(script) > 1 else script[0]
        return script(hit)

    async def _handle(self, request: web.Request) -> web.StreamResponse:
        hit = Hit(
            method=request.method,
            path=request.path,
            query=dict(request.query),
            headers=dict(request.headers),
        )
        if request.content_type == "application/json":
            hit.json = await request.json()
        elif request.content_type == "multipart/form-data":
            form = await request.post()
            hit.form = {
                name: (value.filename, value.file.read()) if isinstance(value, web.FileField) else value
                for name, value in form.items()
            }
        self.hits.append(hit)

        reply = self._next_reply(hit)
        if reply.delay:
            await asyncio.sleep(reply.delay)
        if reply.text is not None:
            return web.Response(status=reply.status, text=reply.text, content_type="text/plain")
        return web.Response(
            status=reply.status,
            text=json.dumps(reply.body if reply.body is not None else {}),
            content_type="application/json",
        )


@pytest_asyncio.fixture
async def gateway():
    fake = FakeGateway()
    server = TestServer(fake.app)
    await server.start_server()
    fake.origin = str(server.make_url("/")).rstrip("/")
    try:
        yield fake
    finally:
        await server.close()


@pytest.fixture
def kie_config(gateway) -> GatewayConfig:
    return GatewayConfig(credential="test-key", origin=gateway.origin, request_timeout=5.0)


class InMemoryTaskStore:
    """Dict-backed task store matching the TaskStore protocol."""

    def __init__(self):
        self.tasks: Dict[str, VideoTask] = {}

    def create(self, task: VideoTask) -> VideoTask:
        self.tasks[task.id] = task
        return task

    def get(self, task_id: str) -> Optional[VideoTask]:
        return self.tasks.get(task_id)

    def update(self, task_id: str, fields: Dict[str, Any]) -> Optional[VideoTask]:
        task = self.tasks.get(task_id)
        if task is None:
            return None
        for name, value in fields.items():
            setattr(task, name, value)
        return task


@pytest.fixture
def task_store() -> InMemoryTaskStore:
    return InMemoryTaskStore()


@pytest.fixture
def processing_task() -> VideoTask:
    return VideoTask(
        id="task-1",
        model="sora2",
        prompt="a latte on a marble counter",
        provider_task_id="abc123",
        model_path="sora-2/text-to-video",
        status=TaskStatus.PROCESSING,
    )
