import asyncio

import httpx
import pytest

from main import keep_alive


def test_health(client):
    resp = client.get("/health")
    assert resp.status_code == 200
    body = resp.json()
    assert body["message"] == "Server is running"
    assert body["timestamp"].endswith("Z")


def test_root_greeting(client):
    resp = client.get("/")
    assert resp.status_code == 200
    assert "EduLearn" in resp.json()["message"]


def test_database_diagnostics(client, mongo):
    mongo["teacher"].insert_one({"name": "x"})
    body = client.get("/test").json()
    assert body["backend"] == "✅ Running"
    assert body["connection_status"] == "Connected"
    assert "teacher" in body["collections"]
    assert body["storage"] == "local"


def test_unknown_route(client):
    resp = client.get("/api/nothing-here")
    assert resp.status_code == 404
    assert resp.json() == {"message": "Route not found"}


def test_keep_alive_pings_until_cancelled():
    calls = []

    def handler(request):
        calls.append(str(request.url))
        return httpx.Response(200, json={"message": "Server is running"})

    async def run():
        client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        task = asyncio.create_task(keep_alive("http://service.local/health", 0.01, client))
        for _ in range(200):
            if len(calls) >= 2:
                break
            await asyncio.sleep(0.01)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task
        await client.aclose()

    asyncio.run(run())
    assert len(calls) >= 2
    assert all(url == "http://service.local/health" for url in calls)
