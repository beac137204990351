"""Tests for the on-device provider with an injected model."""

from __future__ import annotations

import sys
import types
from collections.abc import Iterable, Iterator
from pathlib import Path

import numpy as np
import pytest

from shelfrag.config.models import LocalEmbeddingConfig
from shelfrag.core.errors import ErrorCode
from shelfrag.embedding.local import LocalEmbeddingProvider


class FakeModel:
    def __init__(self, dimension: int = 4, fail: bool = False) -> None:
        self.dimension = dimension
        self.fail = fail
        self.inputs: list[str] = []

    def embed(self, documents: Iterable[str]) -> Iterator[np.ndarray]:
        for doc in documents:
            if self.fail:
                raise RuntimeError("onnx session crashed")
            self.inputs.append(doc)
            yield np.full(self.dimension, 0.25, dtype=np.float32)


class TestConfigured:
    def test_given_injected_model_then_configured(self) -> None:
        provider = LocalEmbeddingProvider(LocalEmbeddingConfig(dimension=4), model=FakeModel())

        assert provider.is_configured()
        assert provider.embedding_dimension == 4

    def test_given_disabled_then_not_configured(self) -> None:
        provider = LocalEmbeddingProvider(
            LocalEmbeddingConfig(enabled=False, dimension=4), model=FakeModel()
        )

        assert not provider.is_configured()
        assert provider.embed("text") is None
        assert provider.last_error is not None
        assert provider.last_error.code == ErrorCode.EMBEDDING_NOT_CONFIGURED

    def test_given_no_model_files_and_no_download_then_not_configured(
        self, tmp_path: Path
    ) -> None:
        provider = LocalEmbeddingProvider(LocalEmbeddingConfig(), cache_dir=tmp_path / "empty")

        assert not provider.is_configured()

    def test_given_model_files_present_then_configured(self, tmp_path: Path) -> None:
        cache_dir = tmp_path / "models"
        cache_dir.mkdir()
        (cache_dir / "model.onnx").write_bytes(b"\x00")

        provider = LocalEmbeddingProvider(LocalEmbeddingConfig(), cache_dir=cache_dir)

        assert provider.is_configured()


class TestEmbedding:
    def test_given_text_then_vector_from_model(self) -> None:
        model = FakeModel()
        provider = LocalEmbeddingProvider(LocalEmbeddingConfig(dimension=4), model=model)

        result = provider.embed_with_metadata("a story about dragons")

        assert result is not None
        assert result.source == "local"
        assert result.dimension == 4
        assert model.inputs == ["a story about dragons"]

    def test_given_long_text_then_truncated_to_context(self) -> None:
        model = FakeModel()
        provider = LocalEmbeddingProvider(LocalEmbeddingConfig(dimension=4), model=model)

        provider.embed("x" * 5000)

        assert len(model.inputs[0]) == 1800

    def test_given_wrong_dimension_then_invalid_response(self) -> None:
        provider = LocalEmbeddingProvider(
            LocalEmbeddingConfig(dimension=384), model=FakeModel(dimension=4)
        )

        assert provider.embed("text") is None
        assert provider.last_error is not None
        assert provider.last_error.code == ErrorCode.EMBEDDING_INVALID_RESPONSE

    def test_given_inference_crash_then_transient(self) -> None:
        provider = LocalEmbeddingProvider(
            LocalEmbeddingConfig(dimension=4), model=FakeModel(fail=True)
        )

        assert provider.embed("text") is None
        assert provider.last_error is not None
        assert provider.last_error.code == ErrorCode.EMBEDDING_TRANSIENT

    def test_given_blank_text_then_rejected(self) -> None:
        provider = LocalEmbeddingProvider(LocalEmbeddingConfig(dimension=4), model=FakeModel())

        assert provider.embed("   ") is None


class TestModelLoading:
    def test_given_load_failure_then_disabled_until_invalidated(
        self, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        # Given
        attempts: list[dict[str, object]] = []

        def _broken(**kwargs: object) -> None:
            attempts.append(kwargs)
            raise ValueError("model not found locally")

        monkeypatch.setitem(sys.modules, "fastembed", types.SimpleNamespace(TextEmbedding=_broken))
        provider = LocalEmbeddingProvider(
            LocalEmbeddingConfig(allow_download=True, threads=1, dimension=4)
        )
        assert provider.is_configured()

        # When
        assert provider.embed("text") is None
        assert provider.embed("again") is None

        # Then
        assert len(attempts) == 1
        assert attempts[0]["local_files_only"] is False
        assert not provider.is_configured()
        assert provider.last_error is not None
        assert provider.last_error.code == ErrorCode.EMBEDDING_NOT_CONFIGURED

        provider.invalidate_model()
        assert provider.is_configured()
