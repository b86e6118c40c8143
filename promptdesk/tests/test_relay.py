"""Tests for the streaming relay."""

import asyncio

import aiohttp
import pytest
from aiohttp import web
from aiohttp.test_utils import TestServer
from multidict import CIMultiDict
from yarl import URL

from promptdesk.server.models import ProxyIn
from promptdesk.server.relay import resolve_target, rewrite_headers


async def echo(request: web.Request) -> web.Response:
    return web.json_response({
        'method': request.method,
        'path': request.path,
        'query': request.query_string,
        'authorization': request.headers.get('Authorization'),
        'host': request.headers.get('Host'),
        'custom': request.headers.get('X-Custom'),
        'body': (await request.read()).decode(),
    })


async def fail(request: web.Request) -> web.Response:
    return web.Response(
        status=500,
        text='{"error":"bad"}',
        content_type='application/json',
        headers={'X-Upstream': 'yes'},
    )


async def stream(request: web.Request) -> web.StreamResponse:
    response = web.StreamResponse()
    response.content_type = 'text/event-stream'
    await response.prepare(request)
    await response.write(b"first")
    await request.app['release'].wait()
    await response.write(b"second")
    await response.write_eof()
    return response


async def broken(request: web.Request) -> web.StreamResponse:
    response = web.StreamResponse()
    response.content_length = 100
    await response.prepare(request)
    await response.write(b"partial")
    request.transport.close()
    return response


@pytest.fixture
async def upstream():
    """A real upstream API the relay forwards to."""
    app = web.Application()
    app['release'] = asyncio.Event()
    app.router.add_route('*', '/v1/echo', echo)
    app.router.add_get('/v1/fail', fail)
    app.router.add_get('/v1/stream', stream)
    app.router.add_get('/v1/broken', broken)

    async with TestServer(app) as server:
        yield server


async def add_upstream_proxy(desk, upstream, name="main", token="upstream-token"):
    return await desk.store.add_proxy(ProxyIn(
        name=name,
        base_url=str(upstream.make_url("/v1")),
        token=token,
    ))


class TestResolveTarget:

    def test_joins_remainder(self):
        assert resolve_target("/proxy/v1/models", "", "https://api.example.com/", "/proxy") == \
            "https://api.example.com/v1/models"

    def test_single_slash_at_join(self):
        assert resolve_target("/proxy//messages", "", "https://api.example.com/v1/", "/proxy") == \
            "https://api.example.com/v1/messages"

    def test_query_kept(self):
        assert resolve_target("/proxy/m", "a=1&b=%20", "https://h", "/proxy") == "https://h/m?a=1&b=%20"

    def test_bare_prefix(self):
        assert resolve_target("/proxy", "", "https://h/api", "/proxy") == "https://h/api/"


class TestRewriteHeaders:

    def test_rewrite(self):
        inbound = CIMultiDict({
            'Host': 'localhost:5010',
            'Authorization': 'Bearer client',
            'Connection': 'keep-alive',
            'Transfer-Encoding': 'chunked',
            'Content-Type': 'application/json',
            'X-Api-Version': '2023-06-01',
        })
        headers = rewrite_headers(inbound, URL("https://api.example.com:8443/v1"), "secret")

        assert headers['Host'] == 'api.example.com:8443'
        assert headers['Authorization'] == 'Bearer secret'
        assert headers['Content-Type'] == 'application/json'
        assert headers['X-Api-Version'] == '2023-06-01'
        assert 'Connection' not in headers
        assert 'Transfer-Encoding' not in headers
        assert len(headers.getall('Authorization')) == 1

    def test_default_port_omitted(self):
        headers = rewrite_headers({}, URL("https://api.example.com/v1"), "secret")
        assert headers['Host'] == 'api.example.com'


@pytest.mark.asyncio
async def test_forwards_request(desk, client, upstream):
    await add_upstream_proxy(desk, upstream)

    resp = await client.post(
        "/proxy/echo?x=1&y=2",
        data=b"hello upstream",
        headers={'Authorization': 'Bearer client-secret', 'X-Custom': 'kept'},
    )

    assert resp.status == 200
    data = await resp.json()
    assert data['method'] == 'POST'
    assert data['path'] == '/v1/echo'
    assert data['query'] == 'x=1&y=2'
    assert data['authorization'] == 'Bearer upstream-token'
    assert data['host'] == f"{upstream.host}:{upstream.port}"
    assert data['custom'] == 'kept'
    assert data['body'] == 'hello upstream'


@pytest.mark.asyncio
async def test_upstream_error_returned_intact(desk, client, upstream):
    await add_upstream_proxy(desk, upstream)

    resp = await client.get("/proxy/fail")

    assert resp.status == 500
    assert await resp.text() == '{"error":"bad"}'
    assert resp.headers['X-Upstream'] == 'yes'
    assert desk.metrics.counters['relay.upstream_error'] == 1


@pytest.mark.asyncio
async def test_success_is_streamed(desk, client, upstream):
    await add_upstream_proxy(desk, upstream)

    resp = await client.get("/proxy/stream")
    assert resp.status == 200

    # The upstream is still holding the rest of the body
    first = await asyncio.wait_for(resp.content.readexactly(5), timeout=5)
    assert first == b"first"

    upstream.app['release'].set()
    assert await resp.read() == b"second"


@pytest.mark.asyncio
async def test_no_active_proxy(client):
    resp = await client.get("/proxy/echo")

    assert resp.status == 503
    data = await resp.json()
    assert data['error']['code'] == 'unavailable'


@pytest.mark.asyncio
async def test_dangling_active_proxy(desk, client, upstream):
    await add_upstream_proxy(desk, upstream)
    desk.store.data.active_proxy_id = "gone"

    resp = await client.get("/proxy/echo")
    assert resp.status == 503


@pytest.mark.asyncio
async def test_active_proxy_read_per_request(desk, client, upstream):
    await add_upstream_proxy(desk, upstream, name="one", token="token-one")
    second = await add_upstream_proxy(desk, upstream, name="two", token="token-two")

    resp = await client.get("/proxy/echo")
    assert (await resp.json())['authorization'] == 'Bearer token-one'

    await desk.store.activate_proxy(second.id)

    resp = await client.get("/proxy/echo")
    assert (await resp.json())['authorization'] == 'Bearer token-two'


@pytest.mark.asyncio
async def test_unreachable_upstream(desk, client):
    await desk.store.add_proxy(ProxyIn(name="dead", base_url="http://127.0.0.1:1", token="t"))

    resp = await client.get("/proxy/anything")

    assert resp.status == 500
    data = await resp.json()
    assert data['error']['code'] == 'upstream_error'
    assert desk.metrics.counters['relay.failure'] == 1


@pytest.mark.asyncio
async def test_upstream_dies_after_headers(desk, client, upstream):
    await add_upstream_proxy(desk, upstream)

    resp = await client.get("/proxy/broken")
    assert resp.status == 200

    try:
        body = await resp.read()
    except aiohttp.ClientError:
        body = None
    assert body is None or len(body) < 100

    assert desk.metrics.counters['relay.failure'] == 1
    recorded = [event for event in desk.errors.recent() if event['service'] == 'relay']
    assert len(recorded) == 1
