"""Integration tests for the proxy routes.

These exercise the full request path (router, engine, exception
handlers, middleware) via httpx AsyncClient against the in-memory store.
"""

import base64
import json
from unittest.mock import AsyncMock

import pytest
from prometheus_client import REGISTRY

from s3bridge.config import ProxyConfig
from s3bridge.errors import TransformError
from s3bridge.fetcher import FetchedObject, ObjectMetadata
from s3bridge.proxy import ProxyEngine, accepts_base64
from s3bridge.store.memory import MemoryStreamingBody
from s3bridge.transforms import TransformChain, TransformOutcome

JSON_FILE = [{"name": "joe", "age": 45}, {"name": "sam", "age": 61}]


def _aborts() -> float:
    return REGISTRY.get_sample_value("s3bridge_stream_aborts_total") or 0.0


class TestObjectFetch:
    """Tests for GET of single objects."""

    async def test_returns_existing_json_file(self, client, s3):
        result = await s3.put_object(
            Bucket="assets",
            Key="site/subfolder/data.json",
            Body=json.dumps(JSON_FILE).encode(),
            ContentType="application/json; charset=utf-8",
        )

        resp = await client.get("/s3-proxy/subfolder/data.json")

        assert resp.status_code == 200
        assert resp.headers["content-type"] == "application/json; charset=utf-8"
        assert resp.headers["etag"] == result["ETag"]
        assert resp.json() == JSON_FILE

    async def test_forwards_metadata_headers(self, client, s3):
        await s3.put_object(Bucket="assets", Key="site/a.txt", Body=b"hello", ContentType="text/plain")

        resp = await client.get("/s3-proxy/a.txt")

        assert resp.status_code == 200
        assert resp.content == b"hello"
        assert resp.headers["content-length"] == "5"
        assert resp.headers["last-modified"].endswith("GMT")
        assert resp.headers["x-s3bridge-s3-key"] == "site/a.txt"
        assert "x-request-id" in resp.headers

    async def test_octet_stream_csv_is_sniffed(self, client, s3):
        await s3.put_object(
            Bucket="assets",
            Key="site/report.csv",
            Body=b"a,b\n1,2\n",
            ContentType="application/octet-stream",
        )

        resp = await client.get("/s3-proxy/report.csv")

        assert resp.headers["content-type"].startswith("text/csv")

    async def test_cache_bust_segments_ignored(self, client, s3):
        await s3.put_object(Bucket="assets", Key="site/js/app.js", Body=b"x=1")

        resp = await client.get("/s3-proxy/--v42/js/--1700000000/app.js")

        assert resp.status_code == 200
        assert resp.content == b"x=1"
        assert resp.headers["x-s3bridge-s3-key"] == "site/js/app.js"

    async def test_query_string_not_part_of_key(self, client, s3):
        await s3.put_object(Bucket="assets", Key="site/app.js", Body=b"x=1")

        resp = await client.get("/s3-proxy/app.js", params={"v": "3"})

        assert resp.status_code == 200
        assert resp.headers["x-s3bridge-s3-key"] == "site/app.js"

    async def test_percent_encoded_key(self, client, s3):
        await s3.put_object(Bucket="assets", Key="site/Q1 summary.txt", Body=b"q1")

        resp = await client.get("/s3-proxy/Q1%20summary.txt")

        assert resp.status_code == 200
        assert resp.content == b"q1"

    async def test_default_key_served_at_mount_root(self, client, s3):
        await s3.put_object(Bucket="assets", Key="docs/index.html", Body=b"<h1>docs</h1>")

        for path in ("/docs", "/docs/"):
            resp = await client.get(path)
            assert resp.status_code == 200
            assert resp.content == b"<h1>docs</h1>"
            assert resp.headers["content-type"].startswith("text/html")

    async def test_non_get_not_handled(self, client):
        resp = await client.put("/s3-proxy/a.txt", content=b"x")
        assert resp.status_code == 405


class TestCacheControl:
    """Tests for Cache-Control policy on real responses."""

    async def test_default_applied_when_store_has_none(self, client, s3):
        await s3.put_object(Bucket="assets", Key="site/a.css", Body=b"")
        resp = await client.get("/s3-proxy/a.css")
        assert resp.headers["cache-control"] == "max-age=1000"

    async def test_store_value_beats_default(self, client, s3):
        await s3.put_object(
            Bucket="assets", Key="site/a.css", Body=b"", CacheControl="private, max-age=0"
        )
        resp = await client.get("/s3-proxy/a.css")
        assert resp.headers["cache-control"] == "private, max-age=0"

    async def test_override_beats_store_value(self, client, s3):
        await s3.put_object(
            Bucket="data", Key="datadumps/a.csv", Body=b"a\n1\n", CacheControl="no-cache"
        )
        resp = await client.get("/data/a.csv")
        assert resp.headers["cache-control"] == "max-age=10000"


class TestConditionalRequests:
    """Tests for If-None-Match handling."""

    async def test_matching_etag_returns_304(self, client, s3):
        result = await s3.put_object(Bucket="assets", Key="site/a.txt", Body=b"hello")

        resp = await client.get("/s3-proxy/a.txt", headers={"If-None-Match": result["ETag"]})

        assert resp.status_code == 304
        assert resp.content == b""
        assert "content-type" not in resp.headers
        assert "etag" not in resp.headers
        assert resp.headers["x-s3bridge-s3-key"] == "site/a.txt"

    async def test_stale_etag_returns_200(self, client, s3):
        await s3.put_object(Bucket="assets", Key="site/a.txt", Body=b"hello")

        resp = await client.get("/s3-proxy/a.txt", headers={"If-None-Match": '"stale"'})

        assert resp.status_code == 200
        assert resp.content == b"hello"

    async def test_base64_request_ignores_condition(self, client, s3):
        result = await s3.put_object(Bucket="assets", Key="site/a.txt", Body=b"hello")

        resp = await client.get(
            "/s3-proxy/a.txt",
            headers={"If-None-Match": result["ETag"], "Accept-Encoding": "base64"},
        )

        assert resp.status_code == 200


class TestErrors:
    """Tests for error responses produced before headers are sent."""

    async def test_missing_key_returns_404(self, client):
        resp = await client.get("/s3-proxy/some-missing-path.txt")

        assert resp.status_code == 404
        body = resp.json()
        assert body["code"] == "ObjectNotFound"
        assert body["key"] == "site/some-missing-path.txt"
        assert body["requestId"] == resp.headers["x-request-id"]
        assert resp.headers["x-s3bridge-s3-key"] == "site/some-missing-path.txt"

    async def test_mount_root_without_key_returns_404(self, client, s3):
        s3.get_object = AsyncMock(side_effect=AssertionError("store called"))

        resp = await client.get("/plain")

        assert resp.status_code == 404
        assert resp.json()["code"] == "ObjectNotFound"
        assert resp.headers["x-plain-s3-key"] == ""

    async def test_missing_bucket_returns_502(self, client):
        resp = await client.get("/broken/a.txt")

        assert resp.status_code == 502
        body = resp.json()
        assert body["code"] == "UpstreamError"
        assert body["bucket"] == "no-such-bucket"
        assert body["storeCode"] == "NoSuchBucket"

    async def test_listing_missing_bucket_returns_502(self, client):
        resp = await client.get("/broken/")

        assert resp.status_code == 502
        assert resp.json()["prefix"] == ""


class TestListing:
    """Tests for directory-style requests."""

    async def test_lists_keys_under_folder(self, client, s3):
        for key in ("site/images/", "site/images/a.png", "site/images/b/c.png", "site/x.txt"):
            await s3.put_object(Bucket="assets", Key=key, Body=b"")

        resp = await client.get("/s3-proxy/images/")

        assert resp.status_code == 200
        assert resp.headers["content-type"] == "application/json"
        assert resp.json() == ["a.png", "b/c.png"]
        assert resp.headers["x-s3bridge-s3-key"] == "site/images/"

    async def test_mount_root_lists_prefix(self, client, s3):
        await s3.put_object(Bucket="assets", Key="site/a.txt", Body=b"")
        await s3.put_object(Bucket="assets", Key="other/b.txt", Body=b"")

        resp = await client.get("/s3-proxy/")

        assert resp.json() == ["a.txt"]

    async def test_default_key_mount_does_not_list(self, client, s3):
        await s3.put_object(Bucket="assets", Key="docs/guides/a.html", Body=b"")

        resp = await client.get("/docs/guides/")

        assert resp.status_code == 404


class TestCsvToJson:
    """Tests for the CSV-to-JSON mount."""

    async def test_converts_csv(self, client, s3):
        await s3.put_object(
            Bucket="data", Key="datadumps/people.csv", Body=b"name,age\njoe,45\nsam,61\n"
        )

        resp = await client.get("/data/people.csv")

        assert resp.status_code == 200
        assert resp.headers["content-type"] == "application/json; charset=utf-8"
        assert "content-length" not in resp.headers
        assert resp.json() == JSON_FILE

    async def test_csv_then_base64(self, client, s3):
        await s3.put_object(Bucket="data", Key="datadumps/people.csv", Body=b"name,age\njoe,45\n")

        resp = await client.get("/data/people.csv", headers={"Accept-Encoding": "base64"})

        assert resp.headers["content-encoding"] == "base64"
        assert resp.headers["content-type"] == "application/json; charset=utf-8"
        assert json.loads(base64.b64decode(resp.content)) == [{"name": "joe", "age": 45}]


class TestBase64:
    """Tests for base64 encoding negotiation."""

    async def test_encodes_when_accepted(self, client, s3):
        data = bytes(range(256))
        result = await s3.put_object(Bucket="assets", Key="site/img.png", Body=data)

        resp = await client.get("/s3-proxy/img.png", headers={"Accept-Encoding": "base64"})

        assert resp.status_code == 200
        assert resp.headers["content-encoding"] == "base64"
        assert resp.headers["etag"] == '"' + result["ETag"].strip('"') + '-base64"'
        assert "content-length" not in resp.headers
        assert base64.b64decode(resp.content) == data

    async def test_not_encoded_when_disabled_for_mount(self, client, s3):
        await s3.put_object(Bucket="assets", Key="img.png", Body=b"raw")

        resp = await client.get("/plain/img.png", headers={"Accept-Encoding": "base64"})

        assert resp.content == b"raw"
        assert "content-encoding" not in resp.headers
        assert resp.headers["x-plain-s3-key"] == "img.png"

    def test_accept_encoding_negotiation(self):
        assert accepts_base64("base64")
        assert accepts_base64("gzip, base64;q=0.5")
        assert accepts_base64("BASE64")
        assert not accepts_base64("base64;q=0")
        assert not accepts_base64("gzip, deflate")
        assert not accepts_base64("base64;q=abc")
        assert not accepts_base64(None)


class TestStreamAbort:
    """Failures after headers are sent abort the stream."""

    async def test_malformed_csv_aborts_and_closes_body(self):
        body = MemoryStreamingBody(b"a,b\n1,2\n3\n")
        fetched = FetchedObject("datadumps/bad.csv", ObjectMetadata(), body)
        engine = ProxyEngine(ProxyConfig(bucket="data", csv_to_json=True))
        chain = TransformChain.for_outcome(TransformOutcome(csv_to_json=True))

        stream = engine._stream(chain.pipe(fetched.iter_chunks(chunk_size=8)), fetched)
        with pytest.raises(TransformError):
            async for _ in stream:
                pass

        assert body.closed

    async def test_abort_counted(self, app):
        before = _aborts()
        body = MemoryStreamingBody(b"a\n")
        fetched = FetchedObject("k", ObjectMetadata(), body)

        async def failing():
            yield b"partial"
            raise TransformError("CSV input ends inside a quoted field")

        engine = ProxyEngine(ProxyConfig(bucket="b"))
        received = []
        with pytest.raises(TransformError):
            async for chunk in engine._stream(failing(), fetched):
                received.append(chunk)

        assert received == [b"partial"]
        assert _aborts() == before + 1

    async def test_client_disconnect_stops_store_reads(self):
        reads = []

        class CountingBody(MemoryStreamingBody):
            async def read(self, amt=None):
                chunk = await super().read(amt)
                reads.append(len(chunk))
                return chunk

        body = CountingBody(b"x" * 12)
        fetched = FetchedObject("k", ObjectMetadata(), body)
        engine = ProxyEngine(ProxyConfig(bucket="b"))

        stream = engine._stream(fetched.iter_chunks(chunk_size=4), fetched)
        assert await stream.__anext__() == b"xxxx"
        await stream.aclose()

        assert body.closed
        assert reads == [4]

    async def test_stream_log_carries_key_and_byte_count(self, caplog):
        body = MemoryStreamingBody(b"a\n1\n")
        fetched = FetchedObject("dumps/a.csv", ObjectMetadata(), body)
        engine = ProxyEngine(ProxyConfig(bucket="data"), mount_path="/data")
        outcome = TransformOutcome(base64=True)

        with caplog.at_level("DEBUG", logger="s3bridge.proxy"):
            chunks = [c async for c in engine._stream(fetched.iter_chunks(), fetched, outcome)]

        record = next(r for r in caplog.records if r.name == "s3bridge.proxy")
        assert chunks == [b"a\n1\n"]
        assert record.mount == "/data"
        assert record.bucket == "data"
        assert record.s3_key == "dumps/a.csv"
        assert record.transforms == "base64"
        assert record.bytes_sent == 4
