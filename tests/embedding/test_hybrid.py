"""Tests for cloud-first embedding with local fallback."""

from __future__ import annotations

import socket

import pytest
from conftest import FakeProvider

from shelfrag.core.errors import EmbeddingError, ErrorCode
from shelfrag.embedding.hybrid import HybridEmbeddingProvider, NetworkProbe


class StaticProbe(NetworkProbe):
    def __init__(self, reachable: bool) -> None:
        super().__init__("example.invalid")
        self.reachable = reachable

    def is_reachable(self) -> bool:
        return self.reachable


@pytest.fixture
def cloud() -> FakeProvider:
    return FakeProvider("gemini", 8)


@pytest.fixture
def local() -> FakeProvider:
    return FakeProvider("local", 4)


class TestRouting:
    def test_given_cloud_available_then_cloud_used(
        self, cloud: FakeProvider, local: FakeProvider
    ) -> None:
        hybrid = HybridEmbeddingProvider(cloud, local, network_probe=StaticProbe(True))

        result = hybrid.embed_with_metadata("dragons")

        assert result is not None
        assert result.source == "gemini"
        assert result.dimension == 8
        assert hybrid.last_source == "gemini"
        assert hybrid.source_id == "gemini"
        assert local.calls == []

    def test_given_cloud_unconfigured_then_local_used(
        self, cloud: FakeProvider, local: FakeProvider
    ) -> None:
        cloud.configured = False
        hybrid = HybridEmbeddingProvider(cloud, local)

        result = hybrid.embed_with_metadata("dragons")

        assert result is not None
        assert result.source == "local"
        assert hybrid.embedding_dimension == 4
        assert cloud.calls == []

    def test_given_network_unreachable_then_local_used(
        self, cloud: FakeProvider, local: FakeProvider
    ) -> None:
        hybrid = HybridEmbeddingProvider(cloud, local, network_probe=StaticProbe(False))

        result = hybrid.embed_with_metadata("dragons")

        assert result is not None
        assert result.source == "local"
        assert not hybrid.is_cloud_available()

    def test_given_cloud_transient_failure_then_falls_back(
        self, cloud: FakeProvider, local: FakeProvider
    ) -> None:
        cloud.fail_when = lambda _t: EmbeddingError.transient("gemini", "boom")
        hybrid = HybridEmbeddingProvider(cloud, local)

        result = hybrid.embed_with_metadata("dragons")

        assert result is not None
        assert result.source == "local"
        assert len(cloud.calls) == 1

    def test_given_source_switches_then_last_source_follows(
        self, cloud: FakeProvider, local: FakeProvider
    ) -> None:
        probe = StaticProbe(True)
        hybrid = HybridEmbeddingProvider(cloud, local, network_probe=probe)
        hybrid.embed("first")
        assert hybrid.last_source == "gemini"

        probe.reachable = False
        hybrid.embed("second")

        assert hybrid.last_source == "local"


class TestRateLimits:
    def test_given_cloud_cooling_down_then_local_used_without_cloud_call(
        self, cloud: FakeProvider, local: FakeProvider
    ) -> None:
        # Given
        cloud.cooldown = 30
        hybrid = HybridEmbeddingProvider(cloud, local)

        # When
        result = hybrid.embed_with_metadata("dragons")

        # Then
        assert result is not None
        assert result.source == "local"
        assert cloud.calls == []
        assert not hybrid.is_rate_limited()
        assert hybrid.remaining_cooldown_seconds() == 0

    def test_given_cooldown_and_no_local_then_rate_limited_error(
        self, cloud: FakeProvider, local: FakeProvider
    ) -> None:
        cloud.cooldown = 30
        local.configured = False
        hybrid = HybridEmbeddingProvider(cloud, local)

        assert hybrid.embed("dragons") is None
        error = hybrid.last_error
        assert error is not None
        assert error.is_rate_limited
        assert error.cooldown_seconds == 30
        assert hybrid.is_rate_limited()
        assert hybrid.remaining_cooldown_seconds() == 30

    def test_given_nothing_configured_then_not_configured(
        self, cloud: FakeProvider, local: FakeProvider
    ) -> None:
        cloud.configured = False
        local.configured = False
        hybrid = HybridEmbeddingProvider(cloud, local)

        assert not hybrid.is_configured()
        assert hybrid.embed("dragons") is None
        assert hybrid.last_error is not None
        assert hybrid.last_error.code == ErrorCode.EMBEDDING_NOT_CONFIGURED

    def test_given_cloud_error_and_no_local_then_cloud_error_surfaces(
        self, cloud: FakeProvider, local: FakeProvider
    ) -> None:
        cloud.fail_when = lambda _t: EmbeddingError.rejected("gemini", 400)
        local.configured = False
        hybrid = HybridEmbeddingProvider(cloud, local)

        assert hybrid.embed("dragons") is None
        assert hybrid.last_error is not None
        assert hybrid.last_error.code == ErrorCode.EMBEDDING_REJECTED


class TestNetworkProbe:
    def test_given_probe_when_checked_twice_then_cached(self) -> None:
        calls: list[tuple[str, int]] = []
        now = [0.0]

        def connect(address: tuple[str, int], timeout: float) -> socket.socket:
            calls.append(address)
            raise OSError("unreachable")

        probe = NetworkProbe("api.example", ttl_sec=30.0, clock=lambda: now[0], connect=connect)

        assert probe.is_reachable() is False
        assert probe.is_reachable() is False
        assert calls == [("api.example", 443)]

        now[0] = 31.0
        probe.is_reachable()
        assert len(calls) == 2

        probe.reset()
        probe.is_reachable()
        assert len(calls) == 3

    def test_given_connect_succeeds_then_reachable(self) -> None:
        class _Conn:
            closed = False

            def close(self) -> None:
                self.closed = True

        conn = _Conn()
        probe = NetworkProbe("api.example", connect=lambda address, timeout: conn)

        assert probe.is_reachable() is True
        assert conn.closed


class QueryTrackingProvider(FakeProvider):
    def __init__(self, *args, **kwargs) -> None:
        super().__init__(*args, **kwargs)
        self.queries: list[str] = []

    def query_or_raise(self, text: str):
        self.queries.append(text)
        return super().query_or_raise(text)


class TestQueryEmbedding:
    def test_given_query_then_backend_query_path_used(self, local: FakeProvider) -> None:
        cloud = QueryTrackingProvider("gemini", 8)
        hybrid = HybridEmbeddingProvider(cloud, local)

        result = hybrid.embed_query("dragons")

        assert result is not None
        assert result.source == "gemini"
        assert cloud.queries == ["dragons"]

    def test_given_cloud_failure_on_query_then_local_query_path_used(self) -> None:
        cloud = FakeProvider(
            "gemini", 8, fail_when=lambda _t: EmbeddingError.rate_limited("gemini", 40)
        )
        local = QueryTrackingProvider("local", 4)
        hybrid = HybridEmbeddingProvider(cloud, local)

        result = hybrid.embed_query("dragons")

        assert result is not None
        assert result.source == "local"
        assert local.queries == ["dragons"]

    def test_given_cooldown_and_no_local_then_query_skips_cloud(
        self, cloud: FakeProvider, local: FakeProvider
    ) -> None:
        cloud.cooldown = 30
        local.configured = False
        hybrid = HybridEmbeddingProvider(cloud, local)

        assert hybrid.embed_query("dragons") is None
        assert cloud.calls == []
        error = hybrid.last_error
        assert error is not None
        assert error.cooldown_seconds == 30
