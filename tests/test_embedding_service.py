"""Unit tests for the Gemini embedder and provider-output validation."""
import math
from unittest.mock import MagicMock, patch

import pytest
from tenacity import wait_none

from lensmatch.exceptions import EmbeddingError
from lensmatch.services.embedding_service import (
    GeminiEmbedder,
    _is_retryable_api_error,
    validate_vector,
)


@pytest.fixture
def mock_genai():
    """Patch the Gemini SDK and settings for the duration of a test."""
    with patch("lensmatch.services.embedding_service.get_settings") as mock_settings:
        settings = MagicMock()
        settings.GEMINI_API_KEY = "test-key"
        settings.EMBEDDING_MODEL = "models/text-embedding-004"
        settings.EMBEDDING_DIMENSION = 3
        settings.EMBEDDING_CALL_RETRIES = 3
        mock_settings.return_value = settings
        with patch("lensmatch.services.embedding_service.genai") as genai, patch(
            "lensmatch.services.embedding_service.wait_exponential", return_value=wait_none()
        ):
            yield genai


class TestValidateVector:

    def test_coerces_ints(self):
        assert validate_vector([1, 2.5, 0]) == [1.0, 2.5, 0.0]

    @pytest.mark.parametrize(
        "raw",
        [None, [], "0.1,0.2", [0.1, "x"], [0.1, True], [0.1, math.nan], [math.inf]],
    )
    def test_rejects_malformed(self, raw):
        with pytest.raises(EmbeddingError):
            validate_vector(raw)

    def test_wrong_dimension(self):
        with pytest.raises(EmbeddingError, match="expected 3"):
            validate_vector([0.1, 0.2], expected_dimension=3)


class TestRetryClassification:

    @pytest.mark.parametrize(
        "exc, retryable",
        [
            (Exception("429 Resource has been exhausted"), True),
            (Exception("503 Service Unavailable"), True),
            (Exception("400 invalid argument"), False),
            (EmbeddingError("500 looking but not retried"), False),
        ],
    )
    def test_classification(self, exc, retryable):
        assert _is_retryable_api_error(exc) is retryable


class TestGeminiEmbedder:

    @pytest.mark.asyncio
    async def test_embed_returns_vector(self, mock_genai):
        mock_genai.embed_content.return_value = {"embedding": [0.1, 0.2, 0.3]}
        vector = await GeminiEmbedder().embed("warm film tones")
        assert vector == [0.1, 0.2, 0.3]
        kwargs = mock_genai.embed_content.call_args.kwargs
        assert kwargs["model"] == "models/text-embedding-004"
        assert kwargs["content"] == "warm film tones"

    @pytest.mark.asyncio
    async def test_blank_text_never_calls_provider(self, mock_genai):
        with pytest.raises(EmbeddingError):
            await GeminiEmbedder().embed("   ")
        mock_genai.embed_content.assert_not_called()

    @pytest.mark.asyncio
    async def test_rate_limit_retried_in_place(self, mock_genai):
        mock_genai.embed_content.side_effect = [
            Exception("429 resource_exhausted"),
            {"embedding": [1.0, 0.0, 0.0]},
        ]
        assert await GeminiEmbedder().embed("text") == [1.0, 0.0, 0.0]
        assert mock_genai.embed_content.call_count == 2

    @pytest.mark.asyncio
    async def test_persistent_rate_limit_becomes_embedding_error(self, mock_genai):
        mock_genai.embed_content.side_effect = Exception("429 resource_exhausted")
        with pytest.raises(EmbeddingError):
            await GeminiEmbedder().embed("text")
        assert mock_genai.embed_content.call_count == 3

    @pytest.mark.asyncio
    async def test_client_error_not_retried(self, mock_genai):
        mock_genai.embed_content.side_effect = ValueError("400 invalid argument")
        with pytest.raises(EmbeddingError, match="invalid argument"):
            await GeminiEmbedder().embed("text")
        assert mock_genai.embed_content.call_count == 1

    @pytest.mark.asyncio
    async def test_malformed_response(self, mock_genai):
        mock_genai.embed_content.return_value = {"embedding": [0.1, 0.2]}
        with pytest.raises(EmbeddingError, match="dimensions"):
            await GeminiEmbedder().embed("text")
