import asyncio
import json

import httpx
import pytest

from auth.models import Credential
from auth.refresh import RefreshState
from auth.token_store import ACCESS_TOKEN_SLOT, REFRESH_TOKEN_SLOT, USER_RECORD_SLOT
from mobile_api.errors import AuthenticationFailedError, HttpStatusError, RequestTimeoutError
from tests.client_helpers import REFRESH_PATH, ExpiringTokenApi, build_client, seed_store


@pytest.mark.asyncio
async def test_concurrent_401s_share_one_refresh(memory_store) -> None:
    api = ExpiringTokenApi()
    await seed_store(memory_store)
    client = await build_client(api, store=memory_store)

    async with client:
        results = await asyncio.gather(client.get("/a"), client.get("/b"), client.get("/c"))

    assert api.refresh_calls == 1
    assert api.refresh_bodies == [{"refreshToken": "R1"}]
    assert [result.data for result in results] == [
        {"path": "/a", "token": "A2"},
        {"path": "/b", "token": "A2"},
        {"path": "/c", "token": "A2"},
    ]
    assert all(result.success for result in results)
    for path in ("/a", "/b", "/c"):
        headers = [request.headers["authorization"] for request in api.calls_to(path)]
        assert headers == ["Bearer A1", "Bearer A2"]
    assert await memory_store.get(ACCESS_TOKEN_SLOT) == "A2"
    assert await memory_store.get(REFRESH_TOKEN_SLOT) == "R2"
    assert client.access_token == "A2"


@pytest.mark.asyncio
async def test_single_refresh_regardless_of_request_count(memory_store) -> None:
    api = ExpiringTokenApi()
    client = await build_client(api, store=await seed_store(memory_store))

    async with client:
        results = await asyncio.gather(*(client.get(f"/items/{index}") for index in range(25)))

    assert api.refresh_calls == 1
    assert {result.data["token"] for result in results} == {"A2"}


@pytest.mark.asyncio
async def test_failed_refresh_rejects_every_caller_and_clears_credentials(memory_store) -> None:
    api = ExpiringTokenApi(refresh_status=400)
    await seed_store(memory_store, user={"id": 7})
    client = await build_client(api, store=memory_store)

    async with client:
        results = await asyncio.gather(
            client.get("/a"), client.get("/b"), client.get("/c"), return_exceptions=True
        )

        assert api.refresh_calls == 1
        assert all(isinstance(result, AuthenticationFailedError) for result in results)
        assert {result.status for result in results} == {401}
        for slot in (ACCESS_TOKEN_SLOT, REFRESH_TOKEN_SLOT, USER_RECORD_SLOT):
            assert await memory_store.get(slot) is None
        assert client.access_token is None
        assert "Authorization" not in client.headers

        with pytest.raises(AuthenticationFailedError):
            await client.get("/d")

    assert api.refresh_calls == 1
    follow_up = api.calls_to("/d")[0]
    assert "authorization" not in follow_up.headers


@pytest.mark.asyncio
async def test_second_401_after_retry_is_not_retried_again(memory_store) -> None:
    api = ExpiringTokenApi(stale_tokens={"A1", "A2"})
    client = await build_client(api, store=await seed_store(memory_store))

    async with client:
        with pytest.raises(HttpStatusError) as excinfo:
            await client.get("/profile")

    assert excinfo.value.status == 401
    assert excinfo.value.message == "Please authenticate"
    assert api.refresh_calls == 1
    assert len(api.calls_to("/profile")) == 2
    assert len(client.retry_tracker) == 0


@pytest.mark.asyncio
async def test_missing_refresh_token_fails_without_calling_refresh_endpoint(memory_store) -> None:
    await memory_store.set(ACCESS_TOKEN_SLOT, "A1")
    api = ExpiringTokenApi()
    client = await build_client(api, store=memory_store)
    client.set_header("Authorization", "Bearer A1")

    async with client:
        with pytest.raises(AuthenticationFailedError):
            await client.get("/a")

    assert api.refresh_calls == 0
    assert await memory_store.get(ACCESS_TOKEN_SLOT) is None


@pytest.mark.asyncio
async def test_refresh_endpoint_calls_are_not_intercepted(memory_store) -> None:
    api = ExpiringTokenApi(refresh_status=401)
    client = await build_client(api, store=await seed_store(memory_store))

    async with client:
        with pytest.raises(HttpStatusError) as excinfo:
            await client.post(REFRESH_PATH, {"refreshToken": "R1"})

    assert excinfo.value.status == 401
    assert api.refresh_calls == 1
    assert "authorization" not in api.calls_to(REFRESH_PATH)[0].headers
    assert await memory_store.get(ACCESS_TOKEN_SLOT) == "A1"


@pytest.mark.asyncio
async def test_retry_markers_cleared_on_every_exit_path(memory_store) -> None:
    api = ExpiringTokenApi()
    client = await build_client(api, store=await seed_store(memory_store))

    async with client:
        await asyncio.gather(client.get("/a"), client.get("/b"))
        assert len(client.retry_tracker) == 0

        api.stale_tokens.add("A2")
        api.refresh_status = 400
        await asyncio.gather(client.get("/c"), client.get("/d"), return_exceptions=True)
        assert len(client.retry_tracker) == 0
        assert client.coordinator.state is RefreshState.IDLE
        assert client.coordinator.pending_count == 0


@pytest.mark.asyncio
async def test_new_refresh_cycle_starts_after_previous_settles(memory_store) -> None:
    api = ExpiringTokenApi()
    client = await build_client(api, store=await seed_store(memory_store))

    async with client:
        await client.get("/a")
        api.stale_tokens.add("A2")
        api.refresh_payload = {"tokens": {"access": {"token": "A3"}, "refresh": {"token": "R3"}}}
        result = await client.get("/b")

    assert api.refresh_bodies == [{"refreshToken": "R1"}, {"refreshToken": "R2"}]
    assert result.data["token"] == "A3"


@pytest.mark.asyncio
async def test_timeout_is_reported_as_408_and_not_retried(memory_store) -> None:
    calls = {"count": 0, "cancelled": 0}

    async def handler(request: httpx.Request) -> httpx.Response:
        calls["count"] += 1
        try:
            await asyncio.sleep(5)
        except asyncio.CancelledError:
            calls["cancelled"] += 1
            raise
        return httpx.Response(200, json={})

    client = await build_client(handler, store=await seed_store(memory_store))

    async with client:
        with pytest.raises(RequestTimeoutError) as excinfo:
            await client.get("/slow", timeout=0.05)

    assert excinfo.value.status == 408
    assert calls == {"count": 1, "cancelled": 1}
    assert len(client.retry_tracker) == 0


@pytest.mark.asyncio
async def test_cancelled_caller_does_not_strand_other_waiters(memory_store) -> None:
    api = ExpiringTokenApi(refresh_delay=0.1)
    client = await build_client(api, store=await seed_store(memory_store))

    async with client:
        first = asyncio.ensure_future(client.get("/a"))
        second = asyncio.ensure_future(client.get("/b"))
        while client.coordinator.pending_count < 2:
            await asyncio.sleep(0.005)

        first.cancel()
        result = await second

        with pytest.raises(asyncio.CancelledError):
            await first

    assert result.data == {"path": "/b", "token": "A2"}
    assert api.refresh_calls == 1
    assert len(client.retry_tracker) == 0


@pytest.mark.asyncio
async def test_caller_options_are_not_mutated(memory_store) -> None:
    api = ExpiringTokenApi()
    client = await build_client(api, store=await seed_store(memory_store))
    headers = {"X-Trace": "abc"}
    params = {"page": 2, "filter": None}

    async with client:
        await client.get("/a", headers=headers, params=params)

    assert headers == {"X-Trace": "abc"}
    assert params == {"page": 2, "filter": None}
    replay = api.calls_to("/a")[-1]
    assert replay.headers["x-trace"] == "abc"
    assert replay.url.params["page"] == "2"
    assert "filter" not in replay.url.params


@pytest.mark.asyncio
async def test_refresh_keeps_stored_user_when_response_omits_it(memory_store) -> None:
    api = ExpiringTokenApi(
        refresh_payload={"access": {"token": "A2"}, "refresh": {"token": "R2"}}
    )
    await seed_store(memory_store, user={"id": 7})
    client = await build_client(api, store=memory_store)

    async with client:
        await client.get("/a")

    assert await client.vault.user() == {"id": 7}
    assert await memory_store.get(ACCESS_TOKEN_SLOT) == "A2"


@pytest.mark.asyncio
async def test_verbs_send_bodies_and_unwrap_data(memory_store) -> None:
    seen: list[tuple[str, bytes]] = []

    async def handler(request: httpx.Request) -> httpx.Response:
        seen.append((request.method, request.content))
        if request.method == "DELETE":
            return httpx.Response(204)
        return httpx.Response(201, json={"data": {"id": 1}, "message": "created"})

    client = await build_client(handler, store=await seed_store(memory_store, access_token="A9"))

    async with client:
        created = await client.post("/items", {"name": "tea"})
        updated = await client.put("/items/1", {"name": "coffee"})
        patched = await client.patch("/items/1", "raw-body")
        deleted = await client.delete("/items/1")

    assert created.data == {"id": 1}
    assert created.message == "created"
    assert updated.success and patched.success
    assert deleted.data == {}
    assert seen[0][0] == "POST"
    assert json.loads(seen[0][1]) == {"name": "tea"}
    assert seen[2] == ("PATCH", b"raw-body")
    assert seen[3] == ("DELETE", b"")


@pytest.mark.asyncio
async def test_error_body_is_preserved(memory_store) -> None:
    async def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(
            422,
            json={
                "message": "Validation failed",
                "code": "VALIDATION",
                "errors": {"email": ["is invalid"]},
            },
        )

    client = await build_client(handler, store=await seed_store(memory_store))

    async with client:
        with pytest.raises(HttpStatusError) as excinfo:
            await client.post("/users", {"email": "nope"})

    assert excinfo.value.to_dict() == {
        "message": "Validation failed",
        "status": 422,
        "code": "VALIDATION",
        "errors": {"email": ["is invalid"]},
    }


@pytest.mark.asyncio
async def test_unsupported_method_is_rejected(memory_store) -> None:
    client = await build_client(ExpiringTokenApi(), store=memory_store)

    async with client:
        with pytest.raises(ValueError, match="Unsupported HTTP method"):
            await client.request("TRACE", "/a")


@pytest.mark.asyncio
async def test_session_helpers(memory_store) -> None:
    api = ExpiringTokenApi()
    client = await build_client(api, store=memory_store)

    assert client.access_token is None

    async with client:
        await client.establish_session(Credential("A5", "R5", {"id": 1}))
        result = await client.get("/me")
        assert result.data["token"] == "A5"
        assert await memory_store.get(REFRESH_TOKEN_SLOT) == "R5"

        await client.clear_session()
        assert client.access_token is None
        assert await memory_store.get(ACCESS_TOKEN_SLOT) is None
