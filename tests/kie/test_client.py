"""
Gateway client operations against a scripted local gateway.

The fake gateway records every hit, so fallback order and short-circuiting
are asserted on the wire rather than through mocks.
"""

import math

import pytest

from studio.exceptions import (
    AllCandidatesFailed,
    GatewayUnavailable,
    GenerationTimeout,
    MalformedResponse,
    MissingCredential,
    UpstreamReportedFailure,
)
from studio.kie import client
from studio.kie.types import GatewayConfig, ImageTask

from conftest import Reply


# --- task creation -------------------------------------------------------


@pytest.mark.asyncio
async def test_create_generic_task_sends_model_and_input(gateway, kie_config):
    gateway.on("POST", "/api/v1/jobs/createTask", Reply(body={"code": 200, "data": {"taskId": "abc123"}}))

    task_id = await client.create_generic_task(
        kie_config, "sora-2/text-to-video", {"prompt": "p", "aspect_ratio": "9:16"}
    )

    assert task_id == "abc123"
    hit = gateway.hits[0]
    assert hit.json == {"model": "sora-2/text-to-video", "input": {"prompt": "p", "aspect_ratio": "9:16"}}
    assert hit.headers["Authorization"] == "Bearer test-key"


@pytest.mark.asyncio
async def test_create_generic_task_accepts_top_level_numeric_id(gateway, kie_config):
    gateway.on("POST", "/api/v1/jobs/createTask", Reply(body={"task_id": 991}))

    assert await client.create_generic_task(kie_config, "kling-2.6/text-to-video", {}) == "991"


@pytest.mark.asyncio
async def test_create_generic_task_without_id_is_malformed(gateway, kie_config):
    gateway.on("POST", "/api/v1/jobs/createTask", Reply(body={"code": 200, "data": {}}))

    with pytest.raises(MalformedResponse):
        await client.create_generic_task(kie_config, "sora-2/text-to-video", {"prompt": "p"})


@pytest.mark.asyncio
async def test_create_generic_task_error_status_exhausts_candidates(gateway, kie_config):
    gateway.on("POST", "/api/v1/jobs/createTask", Reply(status=402, body={"msg": "no credits"}))

    with pytest.raises(AllCandidatesFailed) as exc_info:
        await client.create_generic_task(kie_config, "sora-2/text-to-video", {"prompt": "p"})

    assert exc_info.value.failures[0].status_code == 402
    assert "no credits" in exc_info.value.failures[0].body_snippet


@pytest.mark.asyncio
async def test_create_veo_task_falls_back_and_tags_id(gateway, kie_config):
    gateway.on("POST", "/api/v1/veo/generate", Reply(status=404))
    gateway.on("POST", "/api/v1/veo/create", Reply(body={"data": {"taskId": "xyz"}}))

    task_id = await client.create_veo_task(kie_config, {"prompt": "p", "model": "veo3"})

    assert task_id == "veo_xyz"
    assert gateway.paths() == ["/api/v1/veo/generate", "/api/v1/veo/create"]
    assert gateway.hits[1].json == {"prompt": "p", "model": "veo3"}


@pytest.mark.asyncio
async def test_create_veo_task_does_not_double_tag(gateway, kie_config):
    gateway.on("POST", "/api/v1/veo/generate", Reply(body={"data": {"taskId": "veo_already"}}))

    assert await client.create_veo_task(kie_config, {"prompt": "p"}) == "veo_already"
    assert gateway.paths() == ["/api/v1/veo/generate"]


@pytest.mark.asyncio
async def test_missing_credential_never_touches_network(gateway):
    config = GatewayConfig(credential="", origin=gateway.origin)

    with pytest.raises(MissingCredential):
        await client.create_generic_task(config, "sora-2/text-to-video", {})
    with pytest.raises(MissingCredential):
        await client.poll_veo_task(config, "veo_abc")
    with pytest.raises(MissingCredential):
        await client.chat_completion(config, [{"role": "user", "content": "hi"}])

    assert gateway.hits == []


# --- polling -------------------------------------------------------------


@pytest.mark.asyncio
async def test_poll_generic_task_falls_back_to_dashed_route(gateway, kie_config):
    gateway.on("GET", "/api/v1/jobs/recordInfo", Reply(status=500))
    gateway.on("GET", "/api/v1/jobs/record-info", Reply(body={"data": {"state": "success"}}))

    payload = await client.poll_generic_task(kie_config, "abc123")

    assert payload == {"data": {"state": "success"}}
    assert gateway.paths() == ["/api/v1/jobs/recordInfo", "/api/v1/jobs/record-info"]
    assert all(hit.query == {"taskId": "abc123"} for hit in gateway.hits)


@pytest.mark.asyncio
async def test_poll_veo_task_strips_tag_and_tries_veo_routes_first(gateway, kie_config):
    gateway.on("GET", "/api/v1/jobs/recordInfo", Reply(body={"data": {"successFlag": 1}}))

    await client.poll_veo_task(kie_config, "veo_xyz")

    assert gateway.paths() == [
        "/api/v1/veo/record-info",
        "/api/v1/veo/recordInfo",
        "/api/v1/jobs/recordInfo",
    ]
    assert gateway.hits[0].query == {"taskId": "xyz"}


@pytest.mark.asyncio
async def test_poll_task_id_is_url_encoded(gateway, kie_config):
    gateway.on("GET", "/api/v1/jobs/recordInfo", Reply(body={"data": {}}))

    await client.poll_generic_task(kie_config, "a b&c")

    assert gateway.hits[0].query == {"taskId": "a b&c"}


# --- upload --------------------------------------------------------------


@pytest.mark.asyncio
async def test_upload_file_falls_back_and_sends_multipart(gateway, kie_config):
    gateway.on("POST", "/api/v1/file/upload", Reply(body={"data": {"fileUrl": "https://files/ref.png"}}))

    url = await client.upload_file(kie_config, b"\x89PNG", "ref.png")

    assert url == "https://files/ref.png"
    assert gateway.paths() == ["/api/v1/files/upload", "/api/v1/file/upload"]
    assert gateway.hits[1].form["file"] == ("ref.png", b"\x89PNG")


@pytest.mark.asyncio
async def test_upload_file_skips_success_without_url(gateway, kie_config):
    gateway.on("POST", "/api/v1/files/upload", Reply(body={"code": 200, "data": {}}))
    gateway.on("POST", "/api/v1/upload", Reply(body={"url": "https://files/top.png"}))

    url = await client.upload_file(kie_config, b"data", "a.png")

    assert url == "https://files/top.png"
    assert gateway.paths() == ["/api/v1/files/upload", "/api/v1/file/upload", "/api/v1/upload"]


@pytest.mark.asyncio
async def test_upload_file_all_routes_down(gateway, kie_config):
    with pytest.raises(AllCandidatesFailed) as exc_info:
        await client.upload_file(kie_config, b"data", "a.png")

    assert len(exc_info.value.attempted_urls) == 3


# --- chat ----------------------------------------------------------------


@pytest.mark.asyncio
async def test_chat_completion_returns_content(gateway, kie_config):
    gateway.on(
        "POST",
        "/v1/chat/completions",
        Reply(body={"choices": [{"message": {"role": "assistant", "content": "hello"}}]}),
    )
    messages = [{"role": "user", "content": "hi"}]

    assert await client.chat_completion(kie_config, messages) == "hello"
    assert gateway.hits[0].json == {"model": "gemini-2.5-flash", "messages": messages, "stream": False}


@pytest.mark.asyncio
async def test_chat_completion_model_override(gateway, kie_config):
    gateway.on("POST", "/v1/chat/completions", Reply(body={"choices": [{"message": {"content": "ok"}}]}))

    await client.chat_completion(kie_config, [{"role": "user", "content": "hi"}], model="gpt-4o")

    assert gateway.hits[0].json["model"] == "gpt-4o"


@pytest.mark.asyncio
async def test_chat_completion_error_status(gateway, kie_config):
    gateway.on("POST", "/v1/chat/completions", Reply(status=429, body={"error": "rate limited"}))

    with pytest.raises(UpstreamReportedFailure) as exc_info:
        await client.chat_completion(kie_config, [{"role": "user", "content": "hi"}])

    assert exc_info.value.status_code == 429
    assert exc_info.value.body == {"error": "rate limited"}
    assert len(gateway.hits) == 1


@pytest.mark.asyncio
async def test_chat_completion_unexpected_shape(gateway, kie_config):
    gateway.on("POST", "/v1/chat/completions", Reply(body={"choices": []}))

    with pytest.raises(MalformedResponse):
        await client.chat_completion(kie_config, [{"role": "user", "content": "hi"}])


@pytest.mark.asyncio
async def test_chat_completion_unreachable_gateway():
    config = GatewayConfig(credential="k", origin="http://127.0.0.1:1", request_timeout=2.0)

    with pytest.raises(GatewayUnavailable):
        await client.chat_completion(config, [{"role": "user", "content": "hi"}])


# --- images --------------------------------------------------------------


@pytest.mark.asyncio
async def test_generate_image_task_pairs_record_base_with_winning_route(gateway, kie_config):
    gateway.on("POST", "/api/v1/images/generate", Reply(body={"data": {"task_id": "img-7"}}))

    task = await client.generate_image_task(kie_config, {"prompt": "latte", "size": "1:1"})

    assert task == ImageTask(task_id="img-7", record_base="/api/v1/images")
    assert gateway.paths() == ["/api/v1/gpt-image/generate", "/api/v1/images/generate"]


@pytest.mark.asyncio
async def test_generate_image_task_skips_success_without_id(gateway, kie_config):
    gateway.on("POST", "/api/v1/gpt-image/generate", Reply(body={"code": 200, "data": {}}))
    gateway.on("POST", "/api/v1/jobs/createTask", Reply(body={"data": {"taskId": "job-1"}}))

    task = await client.generate_image_task(kie_config, {"prompt": "latte"})

    assert task.record_base == "/api/v1/jobs"
    assert task.task_id == "job-1"


@pytest.mark.asyncio
async def test_poll_image_task_deduplicates_generic_route(gateway, kie_config):
    with pytest.raises(AllCandidatesFailed):
        await client.poll_image_task(kie_config, "/api/v1/jobs", "job-1")

    assert gateway.paths() == ["/api/v1/jobs/recordInfo", "/api/v1/jobs/record-info"]


@pytest.mark.asyncio
async def test_wait_for_image_result_returns_all_urls(gateway, kie_config):
    gateway.on(
        "GET",
        "/api/v1/gpt-image/recordInfo",
        [
            Reply(body={"data": {"status": "GENERATING", "progress": 0.5}}),
            Reply(body={"data": {"successFlag": 1, "response": {"resultUrls": ["https://x/1.png", "https://x/2.png"]}}}),
        ],
    )

    urls = await client.wait_for_image_result(
        kie_config, "/api/v1/gpt-image", "img-1", max_wait=10, poll_interval=0.01
    )

    assert urls == ["https://x/1.png", "https://x/2.png"]
    assert gateway.paths() == ["/api/v1/gpt-image/recordInfo"] * 2


@pytest.mark.asyncio
async def test_wait_for_image_result_reports_failure(gateway, kie_config):
    gateway.on(
        "GET",
        "/api/v1/gpt-image/recordInfo",
        Reply(body={"data": {"successFlag": 2, "errorMessage": "content policy"}}),
    )

    with pytest.raises(UpstreamReportedFailure, match="content policy"):
        await client.wait_for_image_result(kie_config, "/api/v1/gpt-image", "img-1", max_wait=10)


@pytest.mark.asyncio
async def test_wait_for_image_result_completed_without_urls(gateway, kie_config):
    gateway.on("GET", "/api/v1/gpt-image/recordInfo", Reply(body={"data": {"state": "success"}}))

    with pytest.raises(MalformedResponse):
        await client.wait_for_image_result(kie_config, "/api/v1/gpt-image", "img-1", max_wait=10)


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "max_wait,poll_interval,expected_polls",
    [(5, 2, 3), (6, 2, 3), (1, 2, 1)],
)
async def test_wait_for_image_result_times_out_on_budget(
    monkeypatch, max_wait, poll_interval, expected_polls
):
    """Polls on a fixed interval until the wall-clock budget is spent."""
    clock = {"now": 1000.0}
    polls = []
    sleeps = []

    async def fake_poll(config, record_base, task_id):
        polls.append(task_id)
        return {"data": {"state": "generating"}}

    async def fake_sleep(seconds):
        sleeps.append(seconds)
        clock["now"] += seconds

    monkeypatch.setattr(client, "monotonic", lambda: clock["now"])
    monkeypatch.setattr(client, "poll_image_task", fake_poll)
    monkeypatch.setattr(client.asyncio, "sleep", fake_sleep)

    with pytest.raises(GenerationTimeout) as exc_info:
        await client.wait_for_image_result(
            GatewayConfig(credential="k"),
            "/api/v1/gpt-image",
            "img-1",
            max_wait=max_wait,
            poll_interval=poll_interval,
        )

    assert len(polls) == expected_polls
    assert len(polls) <= math.ceil(max_wait / poll_interval)
    assert sleeps == [poll_interval] * expected_polls
    assert exc_info.value.waited_seconds == max_wait


# --- balance -------------------------------------------------------------


@pytest.mark.asyncio
async def test_get_balance_falls_back_to_later_route(gateway, kie_config):
    gateway.on("GET", "/api/v1/account/balance", Reply(body={"code": 200, "data": {"credits": "42.5"}}))

    assert await client.get_balance(kie_config) == 42.5
    assert gateway.paths() == ["/api/v1/balance", "/api/v1/account/balance"]
    assert gateway.hits[0].headers["Authorization"] == "Bearer test-key"


@pytest.mark.asyncio
async def test_get_balance_skips_success_without_balance(gateway, kie_config):
    gateway.on("GET", "/api/v1/balance", Reply(body={"code": 200, "data": {}}))
    gateway.on("GET", "/api/v1/account/balance", Reply(status=500))
    gateway.on("GET", "/api/v1/user/balance", Reply(body={"balance": 7}))

    assert await client.get_balance(kie_config) == 7.0
    assert gateway.paths() == ["/api/v1/balance", "/api/v1/account/balance", "/api/v1/user/balance"]


@pytest.mark.asyncio
async def test_get_balance_unknown_when_every_route_fails(gateway, kie_config):
    gateway.on("GET", "/api/v1/balance", Reply(body={"balance": "n/a"}))

    assert await client.get_balance(kie_config) is None
    assert len(gateway.hits) == 3


@pytest.mark.asyncio
async def test_get_balance_requires_credential(gateway):
    with pytest.raises(MissingCredential):
        await client.get_balance(GatewayConfig(credential="", origin=gateway.origin))
    assert gateway.hits == []


@pytest.mark.parametrize(
    "payload,expected",
    [
        ({"balance": 12}, 12.0),
        ({"credits": 3.5, "data": {"balance": 99}}, 3.5),
        ({"data": {"balance": "8"}}, 8.0),
        ({"balance": None, "data": {"credits": 0}}, 0.0),
        ({"balance": True}, None),
        ({"data": {"credits": [1]}}, None),
        ("raw", None),
    ],
)
def test_extract_balance_shapes(payload, expected):
    assert client.extract_balance(payload) == expected
