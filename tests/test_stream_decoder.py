"""Tests for the pull progress stream decoder."""

import asyncio
import json
import threading

import pytest

from imginspect.acquirers.stream import ChunkChannel, StreamErrorDecoder, decode_pull_stream
from imginspect.core.exceptions import DecodeError, StreamError


def _objects(*objs: dict) -> bytes:
    return b"".join(json.dumps(o).encode() for o in objs)


class TestStreamErrorDecoder:
    """Tests for StreamErrorDecoder."""

    def test_clean_stream_ends_without_error(self) -> None:
        decoder = StreamErrorDecoder()
        data = _objects(
            {"status": "Pulling from library/alpine", "id": "3.19"},
            {"status": "Pulling fs layer", "id": "a1"},
            {"status": "Download complete", "id": "a1"},
        )
        assert decoder.feed(data) is None
        assert not decoder.done
        assert decoder.close() is None
        assert decoder.done
        assert decoder.error is None

    def test_empty_stream(self) -> None:
        decoder = StreamErrorDecoder()
        assert decoder.close() is None
        assert decoder.done

    def test_error_object_is_reported_once(self) -> None:
        decoder = StreamErrorDecoder()
        data = _objects(
            {"status": "Pulling fs layer", "id": "a1"},
            {"errorDetail": {"message": "denied"}, "error": "pull access denied"},
            {"status": "Downloading", "id": "a1"},
            {"error": "second error"},
        )
        error = decoder.feed(data)
        assert isinstance(error, StreamError)
        assert str(error) == "pull access denied"
        assert decoder.feed(_objects({"error": "later"})) is None
        assert str(decoder.close()) == "pull access denied"

    def test_error_found_before_stream_closes(self) -> None:
        decoder = StreamErrorDecoder()
        decoder.feed(_objects({"status": "Waiting"}))
        error = decoder.feed(_objects({"error": "manifest unknown"}))
        assert str(error) == "manifest unknown"
        assert decoder.done

    def test_objects_split_across_chunks(self) -> None:
        decoder = StreamErrorDecoder()
        data = _objects({"status": "a {brace} \"quoted\""}, {"error": "boom"})
        errors = [decoder.feed(data[i : i + 1]) for i in range(len(data))]
        found = [e for e in errors if e is not None]
        assert len(found) == 1
        assert str(found[0]) == "boom"
        # revealed by the very last byte, the closing brace
        assert errors[-1] is found[0]

    def test_malformed_stream(self) -> None:
        decoder = StreamErrorDecoder()
        error = decoder.feed(b"{}{}what")
        assert isinstance(error, DecodeError)
        assert str(error).startswith("Error decoding json: ")
        assert str(error) == "Error decoding json: Expecting value: line 1 column 5 (char 4)"
        assert decoder.feed(_objects({"error": "unreachable"})) is None
        assert decoder.close() is error

    def test_truncated_object_fails_on_close(self) -> None:
        decoder = StreamErrorDecoder()
        assert decoder.feed(b'{"status": "Downlo') is None
        error = decoder.close()
        assert isinstance(error, DecodeError)

    def test_multibyte_character_split_between_chunks(self) -> None:
        decoder = StreamErrorDecoder()
        data = _objects({"error": "café"}).replace(b"\\u00e9", "é".encode())
        split = data.index(b"\xc3") + 1
        assert decoder.feed(data[:split]) is None
        assert str(decoder.feed(data[split:])) == "café"

    def test_falsy_error_field_is_not_an_error(self) -> None:
        decoder = StreamErrorDecoder()
        decoder.feed(_objects({"status": "ok", "error": ""}, {"error": None}))
        assert decoder.close() is None

    def test_whitespace_between_objects(self) -> None:
        decoder = StreamErrorDecoder()
        decoder.feed(b'{"status": "a"}\r\n  {"status": "b"}\n')
        assert decoder.close() is None

    def test_status_callback_receives_non_error_objects(self) -> None:
        seen: list[dict] = []
        decoder = StreamErrorDecoder(on_status=seen.append)
        decoder.feed(_objects({"status": "one"}, {"status": "two"}, {"error": "x"}))
        assert [s["status"] for s in seen] == ["one", "two"]

    def test_large_stream_is_compacted(self) -> None:
        decoder = StreamErrorDecoder()
        progress = _objects(*({"status": "Downloading", "progress": "x" * 100} for _ in range(2000)))
        for i in range(0, len(progress), 4096):
            assert decoder.feed(progress[i : i + 4096]) is None
        assert str(decoder.feed(_objects({"error": "disk full"}))) == "disk full"


class TestChunkChannel:
    """Tests for the thread to event loop channel."""

    @pytest.mark.asyncio
    async def test_put_and_iterate(self) -> None:
        channel = ChunkChannel(maxsize=4)
        await channel.put(b"a")
        await channel.put(b"b")
        await channel.close()
        assert [chunk async for chunk in channel] == [b"a", b"b"]

    @pytest.mark.asyncio
    async def test_shutdown_releases_blocked_writer(self) -> None:
        channel = ChunkChannel(maxsize=1)
        await channel.put(b"a")
        writer = asyncio.ensure_future(asyncio.to_thread(channel.put_threadsafe, b"b"))
        await asyncio.sleep(0.05)

        channel.shutdown()
        await asyncio.wait_for(writer, timeout=5)
        assert channel.closed


class TestDecodePullStream:
    """Tests for decode_pull_stream."""

    @pytest.mark.asyncio
    async def test_clean_pull(self) -> None:
        stream = [_objects({"status": f"layer {i}"}) for i in range(200)]
        assert await decode_pull_stream(stream, channel_size=2) is None

    @pytest.mark.asyncio
    async def test_error_in_pull(self) -> None:
        stream = [
            _objects({"status": "Pulling fs layer"}),
            b'{"error": "unauthorized: ',
            b'authentication required"}',
            _objects({"status": "trailing"}),
        ]
        error = await decode_pull_stream(stream)
        assert str(error) == "unauthorized: authentication required"

    @pytest.mark.asyncio
    async def test_producer_runs_in_worker_thread(self) -> None:
        threads: list[str] = []

        def stream():
            threads.append(threading.current_thread().name)
            yield _objects({"status": "one"})

        assert await decode_pull_stream(stream()) is None
        assert threads and threads[0] != threading.main_thread().name

    @pytest.mark.asyncio
    async def test_producer_failure_propagates(self) -> None:
        def stream():
            yield _objects({"status": "one"})
            raise ConnectionError("connection reset")

        with pytest.raises(ConnectionError):
            await decode_pull_stream(stream())

    @pytest.mark.asyncio
    async def test_status_callback(self) -> None:
        seen: list[dict] = []
        await decode_pull_stream([_objects({"status": "a"}, {"status": "b"})], on_status=seen.append)
        assert [s["status"] for s in seen] == ["a", "b"]

    @pytest.mark.asyncio
    async def test_failing_status_callback_does_not_stall_pull(self) -> None:
        def explode(status: dict) -> None:
            raise RuntimeError("handler broken")

        stream = [_objects({"status": "x"})] * 500
        error = await asyncio.wait_for(
            decode_pull_stream(stream, on_status=explode, channel_size=4), timeout=10
        )
        assert error is None
