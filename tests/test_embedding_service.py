"""Tests for the embedding providers."""

import os
from unittest.mock import patch

import numpy as np
import pytest
from openai import OpenAIError

from conftest import TestConstants, create_mock_embedding_response
from localrag import (
    EmbeddingError,
    OpenAIEmbeddingProvider,
    ResourceMissingError,
    UnavailableEmbeddingProvider,
    load_embedding_provider,
)
from localrag.config import config


@pytest.fixture
def provider():
    provider = OpenAIEmbeddingProvider(
        api_key=TestConstants.TEST_API_KEY,
        model=TestConstants.TEST_EMBEDDING_MODEL,
        base_url=TestConstants.TEST_BASE_URL,
    )
    yield provider
    provider.close()


def test_init_with_api_key(provider) -> None:
    assert provider.model == TestConstants.TEST_EMBEDDING_MODEL
    assert provider.client.api_key == TestConstants.TEST_API_KEY
    assert provider.available


def test_init_with_env_api_key() -> None:
    with patch.dict(os.environ, {"OPENAI_API_KEY": "env-key"}):
        provider = OpenAIEmbeddingProvider()
        assert provider.model == config.EMBEDDING_MODEL
        assert provider.client.api_key == "env-key"
        provider.close()


def test_init_without_api_key_raises() -> None:
    with (
        patch.dict(os.environ, {}, clear=True),
        pytest.raises(ResourceMissingError, match="OPENAI_API_KEY"),
    ):
        OpenAIEmbeddingProvider()


def test_embed_success(openai_embeddings_api_mock, provider) -> None:
    openai_embeddings_api_mock.return_value = create_mock_embedding_response(
        [[0.1, 0.2, 0.3]]
    )

    result = provider.embed("test text", max_input_length=100)

    openai_embeddings_api_mock.assert_called_once_with(
        model=TestConstants.TEST_EMBEDDING_MODEL,
        input="test text",
    )
    assert result.dtype == np.float32
    np.testing.assert_allclose(result, [0.1, 0.2, 0.3], rtol=1e-6)


def test_embed_truncates_long_input(openai_embeddings_api_mock, provider) -> None:
    openai_embeddings_api_mock.return_value = create_mock_embedding_response(
        [[1.0, 0.0]]
    )

    provider.embed("abcdefghij", max_input_length=4)

    assert openai_embeddings_api_mock.call_args.kwargs["input"] == "abcd"


def test_embed_api_error(openai_embeddings_api_mock, provider) -> None:
    openai_embeddings_api_mock.side_effect = OpenAIError("API Error")

    with pytest.raises(EmbeddingError, match="API Error"):
        provider.embed("test text", max_input_length=100)


def test_embed_empty_response(openai_embeddings_api_mock, provider) -> None:
    openai_embeddings_api_mock.return_value = create_mock_embedding_response([])

    with pytest.raises(EmbeddingError, match="no vectors"):
        provider.embed("test text", max_input_length=100)


def test_unavailable_provider_refuses() -> None:
    provider = UnavailableEmbeddingProvider("no model")

    assert not provider.available
    with pytest.raises(EmbeddingError, match="no model"):
        provider.embed("text", max_input_length=10)
    provider.close()


def test_load_embedding_provider_success(openai_embeddings_api_mock) -> None:
    openai_embeddings_api_mock.return_value = create_mock_embedding_response(
        [[0.5, 0.5]]
    )

    provider = load_embedding_provider(
        model=TestConstants.TEST_EMBEDDING_MODEL,
        api_key=TestConstants.TEST_API_KEY,
        base_url=TestConstants.TEST_BASE_URL,
    )

    assert isinstance(provider, OpenAIEmbeddingProvider)
    assert openai_embeddings_api_mock.call_args.kwargs["input"] == "ping"
    provider.close()


def test_load_embedding_provider_probe_failure(openai_embeddings_api_mock) -> None:
    openai_embeddings_api_mock.side_effect = OpenAIError("model not loaded")

    provider = load_embedding_provider(
        api_key=TestConstants.TEST_API_KEY, base_url=TestConstants.TEST_BASE_URL
    )

    assert isinstance(provider, UnavailableEmbeddingProvider)
    assert "model not loaded" in provider.reason


def test_load_embedding_provider_without_key() -> None:
    with patch.dict(os.environ, {}, clear=True):
        provider = load_embedding_provider()

    assert not provider.available
