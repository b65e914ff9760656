"""The object-store proxy engine and its FastAPI router.

Per request:

    resolve key ─┬─ listing ──> KeyLister ──> JSON array of relative keys
                 └─ object ───> ObjectFetcher ──> translate_headers
                                                   └─> TransformChain ──> body

Headers are computed in full before the StreamingResponse is returned, so
nothing about them can change once the first body byte is out. A failure
while streaming cannot change the status any more; the stream is aborted,
which closes the client connection without a terminating chunk.
"""

import logging
import urllib.parse
from collections.abc import AsyncIterator
from typing import Any

from fastapi import APIRouter, Request, Response
from fastapi.responses import JSONResponse, StreamingResponse

from s3bridge import metrics
from s3bridge.config import MountConfig, ProxyConfig
from s3bridge.errors import ProxyError
from s3bridge.fetcher import FetchedObject, ObjectFetcher
from s3bridge.headers import translate_headers
from s3bridge.keys import ResolvedKey, resolve_key
from s3bridge.lister import KeyLister
from s3bridge.transforms import TransformChain, TransformOutcome

logger = logging.getLogger(__name__)

_OUTCOMES = {
    "NotModified": "not_modified",
    "ObjectNotFound": "not_found",
    "UpstreamError": "upstream_error",
}


def accepts_base64(accept_encoding: str | None) -> bool:
    """Return True if Accept-Encoding lists ``base64`` with non-zero quality."""
    if not accept_encoding:
        return False
    for item in accept_encoding.split(","):
        name, _, params = item.partition(";")
        if name.strip().lower() != "base64":
            continue
        quality = 1.0
        for param in params.split(";"):
            field, _, value = param.partition("=")
            if field.strip().lower() == "q":
                try:
                    quality = float(value)
                except ValueError:
                    quality = 0.0
        return quality > 0
    return False


class ProxyEngine:
    """Serves one mount: a path prefix backed by one bucket.

    The engine holds only its immutable ProxyConfig; the store client is
    passed to each call so one client can serve every mount.

    Attributes:
        config: The mount's proxy configuration.
        mount_path: The path prefix the engine is mounted at.
    """

    def __init__(self, config: ProxyConfig, mount_path: str = "") -> None:
        self.config = config
        self.mount_path = mount_path.rstrip("/")

    def relative_url(self, request: Request) -> str:
        """Return the raw (still percent-encoded) URL beyond the mount point.

        Mirrors the original request line: the path is taken from
        ``raw_path`` so encoded characters are decoded exactly once, and the
        query string is re-attached.
        """
        raw_path = request.scope.get("raw_path")
        if raw_path:
            path = raw_path.decode("latin-1").split("?", 1)[0]
        else:
            path = urllib.parse.quote(request.url.path)

        prefix = request.scope.get("root_path", "") + self.mount_path
        if path.startswith(prefix):
            relative = path[len(prefix) :]
        else:
            relative = "/" + urllib.parse.quote(request.path_params.get("key", ""))

        query = request.scope.get("query_string", b"").decode("latin-1")
        if query:
            relative = f"{relative}?{query}"
        return relative

    async def handle(self, request: Request, client: Any) -> Response:
        """Serve a GET request from the store.

        Raises:
            ProxyError: Mapped store failures, carrying the diagnostic key
                header for the error response.
        """
        resolved = resolve_key(
            self.relative_url(request),
            self.config,
            if_none_match=request.headers.get("if-none-match"),
        )
        try:
            if resolved.listing:
                return await self._list(resolved, client)
            return await self._fetch(request, resolved, client)
        except ProxyError as exc:
            exc.headers[self.config.key_header] = resolved.object_key
            metrics.count_outcome(_OUTCOMES.get(exc.code, "error"))
            raise

    async def _list(self, resolved: ResolvedKey, client: Any) -> Response:
        keys = await KeyLister(client).list_keys(resolved)
        metrics.count_outcome("listing")
        return JSONResponse(
            content=keys,
            headers={self.config.key_header: resolved.object_key},
        )

    async def _fetch(self, request: Request, resolved: ResolvedKey, client: Any) -> Response:
        outcome = TransformOutcome(
            csv_to_json=self.config.csv_to_json,
            base64=self.config.base64_encode
            and accepts_base64(request.headers.get("accept-encoding")),
        )

        # The stored ETag does not describe base64 output, so the
        # conditional GET is skipped for encoded responses.
        fetched = await ObjectFetcher(client).fetch(resolved, conditional=not outcome.base64)
        headers = translate_headers(fetched.metadata, self.config, resolved.object_key, outcome)
        body = TransformChain.for_outcome(outcome).pipe(fetched.iter_chunks())

        metrics.count_outcome("object")
        return StreamingResponse(
            content=self._stream(body, fetched, outcome),
            status_code=200,
            headers=headers,
        )

    async def _stream(
        self,
        body: AsyncIterator[bytes],
        fetched: FetchedObject,
        outcome: TransformOutcome | None = None,
    ) -> AsyncIterator[bytes]:
        log_fields = {
            "mount": self.mount_path or "/",
            "bucket": self.config.bucket,
            "s3_key": fetched.key,
            "transforms": ",".join(outcome.applied) if outcome and outcome.applied else None,
        }
        sent = 0
        try:
            async for chunk in body:
                sent += len(chunk)
                yield chunk
        except Exception:
            logger.exception(
                "Aborting response for %s after %d bytes",
                fetched.key,
                sent,
                extra={**log_fields, "bytes_sent": sent},
            )
            if metrics.stream_aborts_total is not None:
                metrics.stream_aborts_total.inc()
            raise
        finally:
            await fetched.close()
            if metrics.bytes_sent_total is not None and sent:
                metrics.bytes_sent_total.inc(sent)

        logger.debug("Sent %s (%d bytes)", fetched.key, sent, extra={**log_fields, "bytes_sent": sent})


def create_proxy_router(mount: MountConfig) -> APIRouter:
    """Build the router serving one mount.

    Only GET is routed; other methods on the same paths fall through to
    whatever else the host application has registered.
    """
    engine = ProxyEngine(mount.proxy, mount.path)
    router = APIRouter()

    async def proxy_get(request: Request) -> Response:
        return await engine.handle(request, request.app.state.s3_client)

    if engine.mount_path:
        router.add_api_route(
            engine.mount_path, proxy_get, methods=["GET"], include_in_schema=False
        )
    router.add_api_route(
        engine.mount_path + "/{key:path}", proxy_get, methods=["GET"], include_in_schema=False
    )
    return router
