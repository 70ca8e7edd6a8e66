"""Tests for the cache/fetch pipeline."""

import asyncio
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from pathlib import Path

import orjson
import pytest

from databridge import CacheWriteError, Databridge, Datasource, FetchResponse
from databridge.timestamps import parse_iso
from databridge.validation import iso8601

DUMMY_DATA = ["thingys", "whatsitis"]


class CountingFetcher:
    """Fetcher that records how often, and with what, it was called."""

    def __init__(self, result=DUMMY_DATA):
        self.result = result
        self.calls = []

    def __call__(self, *params):
        self.calls.append(params)
        return self.result


def hours_ago(hours: float) -> str:
    return (datetime.now(timezone.utc) - timedelta(hours=hours)).isoformat()


@pytest.fixture
def cache_dir(tmp_path):
    return tmp_path / "databridgeJsonCache"


@pytest.fixture
def bridge(cache_dir):
    return Databridge({"cache_dir": str(cache_dir), "default_cache_ttl": 3600})


@pytest.fixture
def fetcher():
    return CountingFetcher()


@pytest.fixture
def caching_bridge(bridge, fetcher):
    bridge.register(Datasource("testDS", fetcher))
    return bridge


def cache_files(cache_dir: Path) -> list:
    if not cache_dir.exists():
        return []
    return sorted(p.name for p in cache_dir.iterdir())


class TestCachingDisabled:
    """Fetches from a datasource with caching turned off."""

    @pytest.fixture(autouse=True)
    def _register(self, bridge, fetcher):
        bridge.register(Datasource("testDS", fetcher, {"enable_caching": False}))

    @pytest.mark.asyncio
    async def test_fetch_response(self, bridge, cache_dir):
        response = bridge.fetch_response("testDS", {}, [])

        assert isinstance(response, FetchResponse)
        assert asyncio.isfuture(response.data_promise)
        assert await response.data_promise == DUMMY_DATA
        assert response.meta("cache_write") is None
        assert response.meta("cache_read") is None
        assert cache_files(cache_dir) == []

    @pytest.mark.asyncio
    async def test_fetch_data_promise(self, bridge):
        data_promise = bridge.fetch_data_promise("testDS", {}, [])
        assert asyncio.isfuture(data_promise)
        assert await data_promise == DUMMY_DATA

    @pytest.mark.asyncio
    async def test_shortcut_method(self, bridge, fetcher):
        response = bridge.testDS({}, ["a"])
        assert await response.data_promise == DUMMY_DATA
        assert fetcher.calls == [("a",)]

    @pytest.mark.asyncio
    async def test_every_fetch_calls_fetcher(self, bridge, fetcher):
        await bridge.fetch_data_promise("testDS")
        await bridge.fetch_data_promise("testDS")
        assert len(fetcher.calls) == 2

    @pytest.mark.asyncio
    async def test_existing_cache_file_ignored(self, bridge, fetcher, cache_dir):
        path = bridge.cache_path("testDS", [])
        bridge.cache.write_entry(path, ["stale", "copy"])

        data = await bridge.fetch_data_promise("testDS", {}, [])

        assert data == DUMMY_DATA
        assert len(fetcher.calls) == 1
        assert bridge.cache.read_entry(path)["data"] == ["stale", "copy"]

    @pytest.mark.asyncio
    async def test_call_can_enable_caching(self, bridge, cache_dir):
        response = bridge.fetch_response("testDS", {"enable_caching": True}, [])
        await response.data_promise
        assert Path(response.meta("cache_write")["path"]).exists()


class TestCacheWriting:
    """Fetches that populate the cache."""

    @pytest.mark.asyncio
    async def test_cache_written(self, caching_bridge):
        response = caching_bridge.fetch_response("testDS", {}, [])

        assert await response.data_promise == DUMMY_DATA
        cache_write = response.meta("cache_write")
        assert isinstance(cache_write, dict)
        assert isinstance(cache_write["path"], str)
        assert Path(cache_write["path"]).exists()
        assert cache_write["timestamp"] and iso8601(cache_write["timestamp"]) is None

        on_disk = orjson.loads(Path(cache_write["path"]).read_bytes())
        assert on_disk["data"] == DUMMY_DATA
        assert on_disk["timestamp"] == cache_write["timestamp"]

    @pytest.mark.asyncio
    async def test_cache_written_at_derived_path(self, caching_bridge):
        response = caching_bridge.fetch_response("testDS", {}, [1, 2])
        await response.data_promise
        assert response.meta("cache_write")["path"] == str(
            caching_bridge.cache_path("testDS", [1, 2])
        )

    @pytest.mark.asyncio
    async def test_write_timestamp_not_before_request(self, caching_bridge):
        response = caching_bridge.fetch_response("testDS", {}, [])
        await response.data_promise
        assert parse_iso(response.meta("cache_write")["timestamp"]) >= parse_iso(
            response.request.timestamp
        )

    @pytest.mark.asyncio
    async def test_params_forwarded_and_keyed(self, caching_bridge, fetcher, cache_dir):
        await caching_bridge.fetch_data_promise("testDS", {}, ["a", 1])
        await caching_bridge.fetch_data_promise("testDS", {}, ["b", 2])
        await caching_bridge.fetch_data_promise("testDS", {}, [])

        assert fetcher.calls == [("a", 1), ("b", 2), ()]
        assert len(cache_files(cache_dir)) == 3

    @pytest.mark.asyncio
    async def test_async_fetcher(self, bridge):
        async def fetcher(city):
            await asyncio.sleep(0)
            return {"city": city, "temp": 21}

        bridge.register(Datasource("forecast", fetcher))
        response = bridge.forecast({}, ["Dublin"])

        assert await response.data_promise == {"city": "Dublin", "temp": 21}
        assert response.meta("cache_write") is not None


class TestCacheReading:
    """Fetches answered from the cache."""

    @pytest.mark.asyncio
    async def test_refetch_within_ttl_uses_cache(self, caching_bridge, fetcher):
        first = caching_bridge.fetch_response("testDS", {}, [])
        await first.data_promise

        second = caching_bridge.fetch_response("testDS", {}, [])

        assert await second.data_promise == DUMMY_DATA
        assert len(fetcher.calls) == 1
        cache_read = second.meta("cache_read")
        assert cache_read["path"] == first.meta("cache_write")["path"]
        assert cache_read["timestamp"] == first.meta("cache_write")["timestamp"]
        assert cache_read["age"] >= 0
        assert second.meta("cache_write") is None

    @pytest.mark.asyncio
    async def test_cached_data_comes_from_file(self, caching_bridge, fetcher):
        path = caching_bridge.cache_path("testDS", [])
        caching_bridge.cache.write_entry(path, {"from": "disk"})

        assert await caching_bridge.fetch_data_promise("testDS", {}, []) == {"from": "disk"}
        assert fetcher.calls == []

    @pytest.mark.asyncio
    async def test_refetch_after_ttl_calls_fetcher(self, caching_bridge, fetcher):
        path = caching_bridge.cache_path("testDS", [])
        old_timestamp = hours_ago(2)
        caching_bridge.cache.write_entry(path, ["old"], timestamp=old_timestamp)

        response = caching_bridge.fetch_response("testDS", {}, [])

        assert await response.data_promise == DUMMY_DATA
        assert len(fetcher.calls) == 1
        entry = caching_bridge.cache.read_entry(path)
        assert entry["data"] == DUMMY_DATA
        assert parse_iso(entry["timestamp"]) > parse_iso(old_timestamp)
        assert response.meta("cache_read") is None

    @pytest.mark.asyncio
    async def test_zero_ttl_never_reuses(self, caching_bridge, fetcher):
        await caching_bridge.fetch_data_promise("testDS", {"cache_ttl": 0}, [])
        await caching_bridge.fetch_data_promise("testDS", {"cache_ttl": 0}, [])
        assert len(fetcher.calls) == 2

    @pytest.mark.asyncio
    async def test_datasource_ttl_overrides_bridge_default(self, bridge, fetcher):
        bridge.register(Datasource("shortTTL", fetcher, {"cache_ttl": 60}))
        path = bridge.cache_path("shortTTL", [])
        bridge.cache.write_entry(path, ["old"], timestamp=hours_ago(0.1))

        assert await bridge.fetch_data_promise("shortTTL", {}, []) == DUMMY_DATA
        assert len(fetcher.calls) == 1

    @pytest.mark.asyncio
    async def test_call_ttl_overrides_datasource(self, bridge, fetcher):
        bridge.register(Datasource("shortTTL", fetcher, {"cache_ttl": 60}))
        path = bridge.cache_path("shortTTL", [])
        bridge.cache.write_entry(path, ["old"], timestamp=hours_ago(0.1))

        data = await bridge.fetch_data_promise("shortTTL", {"cache_ttl": 3600}, [])

        assert data == ["old"]
        assert fetcher.calls == []

    @pytest.mark.asyncio
    async def test_call_can_disable_caching(self, caching_bridge, fetcher):
        path = caching_bridge.cache_path("testDS", [])
        caching_bridge.cache.write_entry(path, ["cached"])

        response = caching_bridge.fetch_response("testDS", {"enable_caching": False}, [])

        assert await response.data_promise == DUMMY_DATA
        assert len(fetcher.calls) == 1
        assert response.meta("cache_write") is None
        assert caching_bridge.cache.read_entry(path)["data"] == ["cached"]

    @pytest.mark.asyncio
    async def test_malformed_cache_file_is_a_miss(self, caching_bridge, fetcher):
        path = caching_bridge.cache_path("testDS", [])
        path.parent.mkdir(parents=True)
        path.write_bytes(b"{not json")

        assert await caching_bridge.fetch_data_promise("testDS", {}, []) == DUMMY_DATA
        assert len(fetcher.calls) == 1
        assert caching_bridge.cache.read_entry(path)["data"] == DUMMY_DATA

    @pytest.mark.asyncio
    async def test_infinity_does_not_share_none_entry(self, bridge):
        bridge.register(Datasource("echo", lambda value: repr(value)))

        assert await bridge.fetch_data_promise("echo", {}, [None]) == "None"
        assert await bridge.fetch_data_promise("echo", {}, [float("inf")]) == "inf"

    @pytest.mark.asyncio
    async def test_object_does_not_share_its_repr_entry(self, bridge):
        fetcher = CountingFetcher()
        bridge.register(Datasource("testDS", fetcher))

        await bridge.fetch_data_promise("testDS", {}, ["Decimal('1')"])
        await bridge.fetch_data_promise("testDS", {}, [Decimal("1")])

        assert len(fetcher.calls) == 2

    @pytest.mark.asyncio
    async def test_large_int_params_are_cached(self, caching_bridge, fetcher, cache_dir):
        assert await caching_bridge.fetch_data_promise("testDS", {}, [2**70]) == DUMMY_DATA
        assert await caching_bridge.fetch_data_promise("testDS", {}, [2**70]) == DUMMY_DATA

        assert fetcher.calls == [(2**70,)]
        assert len(cache_files(cache_dir)) == 1


class TestEffectiveOptions:
    """The request records the resolved caching policy."""

    @pytest.mark.asyncio
    async def test_defaults_resolved(self, caching_bridge):
        response = caching_bridge.fetch_response("testDS")
        await response.data_promise
        assert dict(response.request.fetch_options) == {"enable_caching": True, "cache_ttl": 3600}
        assert response.request.fetcher_params == ()
        assert iso8601(response.request.timestamp) is None

    @pytest.mark.asyncio
    async def test_extra_call_options_kept(self, caching_bridge):
        response = caching_bridge.fetch_response("testDS", {"cache_ttl": 5, "tag": "x"})
        await response.data_promise
        assert dict(response.request.options) == {
            "enable_caching": True,
            "cache_ttl": 5,
            "tag": "x",
        }

    @pytest.mark.asyncio
    async def test_request_cannot_be_changed_before_pipeline_runs(
        self, caching_bridge, fetcher, cache_dir
    ):
        options = {"enable_caching": True}
        params = ["a"]
        response = caching_bridge.fetch_response("testDS", options, params)

        with pytest.raises(AttributeError):
            response.request.params.append("injected")
        with pytest.raises(TypeError):
            response.request.fetch_options["enable_caching"] = False
        options["enable_caching"] = False
        params.append("injected")

        assert await response.data_promise == DUMMY_DATA
        assert fetcher.calls == [("a",)]
        assert response.meta("cache_write")["path"] == str(
            caching_bridge.cache_path("testDS", ["a"])
        )


class TestFailures:
    """Failed fetches and failed cache writes."""

    @pytest.mark.asyncio
    async def test_fetch_failure_propagates(self, bridge, cache_dir):
        async def fetcher():
            raise ConnectionError("upstream down")

        bridge.register(Datasource("failing", fetcher))
        response = bridge.fetch_response("failing", {}, [])

        with pytest.raises(ConnectionError, match="upstream down"):
            await response.data_promise
        assert response.meta("cache_write") is None
        assert response.meta("cache_write_error") is None
        assert cache_files(cache_dir) == []

    @pytest.mark.asyncio
    async def test_synchronous_fetcher_error_propagates(self, bridge):
        def fetcher():
            raise ValueError("bad input")

        bridge.register(Datasource("failing", fetcher))
        with pytest.raises(ValueError, match="bad input"):
            await bridge.fetch_data_promise("failing")

    @pytest.mark.asyncio
    async def test_cache_write_failure_does_not_fail_fetch(self, tmp_path, fetcher):
        blocker = tmp_path / "not-a-dir"
        blocker.write_text("occupied")
        bridge = Databridge({"cache_dir": str(blocker)})
        bridge.register(Datasource("testDS", fetcher))

        response = bridge.fetch_response("testDS", {}, [])

        assert await response.data_promise == DUMMY_DATA
        error = response.meta("cache_write_error")
        assert isinstance(error, CacheWriteError)
        assert error.path == str(bridge.cache_path("testDS", []))
        assert response.meta("cache_write") is None

    @pytest.mark.asyncio
    async def test_unserializable_data_is_not_cached(self, bridge, cache_dir):
        payload = {"when": object()}
        bridge.register(Datasource("opaque", lambda: payload))

        response = bridge.fetch_response("opaque", {}, [])

        assert await response.data_promise is payload
        assert isinstance(response.meta("cache_write_error"), CacheWriteError)
        assert cache_files(cache_dir) == []


class TestConcurrency:
    """Interleaved fetches on one event loop."""

    @pytest.mark.asyncio
    async def test_response_returned_before_data_settles(self, bridge):
        gate = asyncio.get_running_loop().create_future()
        bridge.register(Datasource("slow", lambda: gate, {"enable_caching": False}))

        response = bridge.fetch_response("slow", {}, [])
        await asyncio.sleep(0)
        assert not response.data_promise.done()

        gate.set_result("finally")
        assert await response.data_promise == "finally"

    @pytest.mark.asyncio
    async def test_identical_fetches_are_not_deduplicated(self, bridge, cache_dir):
        calls = []
        both_fetching = asyncio.Event()

        async def fetcher(key):
            calls.append(key)
            if len(calls) == 2:
                both_fetching.set()
            # neither fetch may finish (and write) until both have missed
            await both_fetching.wait()
            return f"result {len(calls)}"

        bridge.register(Datasource("shared", fetcher))
        results = await asyncio.wait_for(
            asyncio.gather(
                bridge.fetch_data_promise("shared", {}, ["same"]),
                bridge.fetch_data_promise("shared", {}, ["same"]),
            ),
            timeout=5,
        )

        assert results == ["result 2", "result 2"]
        assert calls == ["same", "same"]
        assert len(cache_files(cache_dir)) == 1
        assert bridge.cache.read_entry(bridge.cache_path("shared", ["same"]))["data"] == "result 2"


class TestCacheInspection:
    """cache_status() and invalidate()."""

    @pytest.mark.asyncio
    async def test_status_and_invalidate(self, caching_bridge, fetcher):
        assert caching_bridge.cache_status("testDS", ["x"]) is None

        await caching_bridge.fetch_data_promise("testDS", {}, ["x"])
        status = caching_bridge.cache_status("testDS", ["x"])

        assert status["fresh"] is True
        assert status["ttl"] == 3600
        assert 0 < status["ttl_remaining"] <= 3600
        assert status["path"] == str(caching_bridge.cache_path("testDS", ["x"]))

        assert caching_bridge.invalidate("testDS", ["x"]) is True
        assert caching_bridge.invalidate("testDS", ["x"]) is False
        await caching_bridge.fetch_data_promise("testDS", {}, ["x"])
        assert len(fetcher.calls) == 2

    def test_stale_status(self, caching_bridge):
        path = caching_bridge.cache_path("testDS", [])
        caching_bridge.cache.write_entry(path, 1, timestamp=hours_ago(2))

        status = caching_bridge.cache_status("testDS", [])

        assert status["fresh"] is False
        assert status["ttl_remaining"] == 0
        assert status["age"] > 3600
