"""Streaming relay from the local mount prefix to the active upstream proxy.

For every request under the mount prefix:

1. the remaining path is joined onto the proxy's base URL, query kept as is
2. inbound headers are copied, Host and Authorization rewritten
3. the request body is streamed upstream without being read into memory
4. successful responses (< 400) are streamed back chunk by chunk; error
   responses (>= 400) are read completely, logged and sent in one piece

Error bodies are buffered without a size limit.
"""

import asyncio
import time
from typing import Mapping, Optional

import aiohttp
from aiohttp import web
from loguru import logger
from multidict import CIMultiDict
from yarl import URL

from .errors import ErrorTracker, Unavailable, UpstreamFailure
from .metrics import MetricsCollector
from .models import ProxyConfig
from .store import JsonStore

HOP_BY_HOP_HEADERS = frozenset({
    "connection",
    "keep-alive",
    "proxy-authenticate",
    "proxy-authorization",
    "proxy-connection",
    "te",
    "trailer",
    "transfer-encoding",
    "upgrade",
})

# Headers rebuilt by aiohttp from the actual body
_BODY_FRAMING_HEADERS = frozenset({"content-length"})


def resolve_target(path: str, query_string: str, base_url: str, mount_prefix: str) -> str:
    """
    Map an inbound path onto the upstream base URL.

    >>> resolve_target("/proxy/v1/models", "", "https://api.example.com/", "/proxy")
    'https://api.example.com/v1/models'
    """
    remainder = path[len(mount_prefix):] if path.startswith(mount_prefix) else path
    target = base_url.rstrip("/") + "/" + remainder.lstrip("/")
    if query_string:
        target += "?" + query_string
    return target


def host_header(url: URL) -> str:
    host = url.raw_host or ""
    if url.port is not None and not url.is_default_port():
        host = f"{host}:{url.port}"
    return host


def rewrite_headers(headers: Mapping[str, str], target: URL, token: str) -> CIMultiDict:
    """Copy inbound headers for the upstream call with our own credential."""
    rewritten: CIMultiDict = CIMultiDict()
    for name, value in headers.items():
        lowered = name.lower()
        if lowered in HOP_BY_HOP_HEADERS or lowered in ("host", "authorization"):
            continue
        rewritten.add(name, value)

    rewritten["Host"] = host_header(target)
    rewritten["Authorization"] = f"Bearer {token}"
    return rewritten


def response_headers(headers: Mapping[str, str], buffered: bool) -> CIMultiDict:
    copied: CIMultiDict = CIMultiDict()
    for name, value in headers.items():
        lowered = name.lower()
        if lowered in HOP_BY_HOP_HEADERS:
            continue
        if buffered and lowered in _BODY_FRAMING_HEADERS:
            continue
        copied.add(name, value)
    return copied


def _describe_body(body: bytes, headers: Mapping[str, str]) -> str:
    encoding = headers.get("Content-Encoding")
    if encoding and encoding != "identity":
        return f"<{len(body)} bytes, {encoding}>"
    return body.decode("utf-8", errors="replace")


class ForwardingRelay:
    """Forwards requests to whichever proxy is active when they arrive."""

    def __init__(
        self,
        store: JsonStore,
        mount_prefix: str = "/proxy",
        chunk_size: int = 64 * 1024,
        metrics: Optional[MetricsCollector] = None,
        errors: Optional[ErrorTracker] = None
    ):
        self.store = store
        self.mount_prefix = mount_prefix
        self.chunk_size = chunk_size
        self.metrics = metrics or MetricsCollector()
        self.errors = errors or ErrorTracker()
        self.session: Optional[aiohttp.ClientSession] = None

    async def open(self) -> None:
        """Create the outbound client session."""
        if self.session is None or self.session.closed:
            self.session = aiohttp.ClientSession(
                auto_decompress=False,
                cookie_jar=aiohttp.DummyCookieJar(),
                timeout=aiohttp.ClientTimeout(total=None),
            )
            logger.debug("Relay client session opened")

    async def close(self) -> None:
        if self.session is not None and not self.session.closed:
            await self.session.close()
            logger.debug("Relay client session closed")
        self.session = None

    async def handle(self, request: web.Request) -> web.StreamResponse:
        """Route entry point: forward to the active proxy."""
        try:
            proxy = self.store.active_proxy()
        except Unavailable:
            self.metrics.increment_counter("relay.unavailable")
            raise
        return await self.forward(request, proxy)

    async def forward(self, request: web.Request, proxy: ProxyConfig) -> web.StreamResponse:
        if self.session is None or self.session.closed:
            await self.open()

        target = URL(
            resolve_target(
                request.rel_url.raw_path,
                request.rel_url.raw_query_string,
                proxy.base_url,
                self.mount_prefix,
            ),
            encoded=True,
        )
        headers = rewrite_headers(request.headers, target, proxy.token)
        data = request.content if request.body_exists else None

        started = time.perf_counter()
        response: Optional[web.StreamResponse] = None

        try:
            async with self.session.request(
                request.method,
                target,
                headers=headers,
                data=data,
                allow_redirects=False,
            ) as upstream:
                self.metrics.record_latency(
                    "relay.headers", (time.perf_counter() - started) * 1000
                )

                if upstream.status >= 400:
                    body = await upstream.read()
                    self.metrics.increment_counter("relay.upstream_error")
                    logger.warning(
                        f"Upstream {upstream.status} for {request.method} {target}: "
                        f"{_describe_body(body, upstream.headers)}"
                    )
                    return web.Response(
                        status=upstream.status,
                        reason=upstream.reason,
                        headers=response_headers(upstream.headers, buffered=True),
                        body=body,
                    )

                response = web.StreamResponse(
                    status=upstream.status,
                    reason=upstream.reason,
                    headers=response_headers(upstream.headers, buffered=False),
                )
                await response.prepare(request)

                async for chunk in upstream.content.iter_chunked(self.chunk_size):
                    await response.write(chunk)
                await response.write_eof()

                self.metrics.increment_counter("relay.success")
                logger.info(
                    f"{request.method} {target} -> {upstream.status} "
                    f"({(time.perf_counter() - started) * 1000:.0f}ms)"
                )
                return response

        except (aiohttp.ClientError, asyncio.TimeoutError, OSError) as e:
            self.metrics.increment_counter("relay.failure")

            if response is None or not response.prepared:
                logger.error(f"Relay to {target} failed: {e}")
                raise UpstreamFailure(f"upstream request failed: {e}") from e

            self.errors.record("relay", e, {"target": str(target)})
            # Status line is already out, the caller can only see a cut stream
            logger.error(f"Relay stream from {target} broke after headers were sent: {e}")
            if request.transport is not None:
                request.transport.close()
            return response
