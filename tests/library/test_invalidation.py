"""Tests for library-change notifications."""

from __future__ import annotations

import threading

from shelfrag.library.invalidation import (
    CacheInvalidationSink,
    CallbackInvalidationSink,
    NullInvalidationSink,
)


class TestCallbackSink:
    def test_given_change_then_callback_runs_off_thread(self) -> None:
        # Given
        threads: list[str] = []
        sink = CallbackInvalidationSink(lambda: threads.append(threading.current_thread().name))

        # When
        sink.on_library_changed()
        sink.join(timeout=5)

        # Then
        assert threads == ["library-invalidation"]

    def test_given_slow_receiver_then_caller_not_blocked(self) -> None:
        release = threading.Event()
        done = threading.Event()

        def slow() -> None:
            release.wait(timeout=5)
            done.set()

        sink = CallbackInvalidationSink(slow)

        sink.on_library_changed()
        assert not done.is_set()

        release.set()
        sink.join(timeout=5)
        assert done.is_set()

    def test_given_failing_receiver_then_error_contained(self) -> None:
        calls: list[int] = []

        def boom() -> None:
            calls.append(1)
            raise RuntimeError("consumer broke")

        sink = CallbackInvalidationSink(boom)

        sink.on_library_changed()
        sink.on_library_changed()
        sink.join(timeout=5)

        assert calls == [1, 1]


class TestNullSink:
    def test_satisfies_protocol(self) -> None:
        sink = NullInvalidationSink()

        sink.on_library_changed()

        assert isinstance(sink, CacheInvalidationSink)
        assert isinstance(CallbackInvalidationSink(lambda: None), CacheInvalidationSink)
