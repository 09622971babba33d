from types import SimpleNamespace
from unittest.mock import Mock

import httpx
import pytest
from openai import APIConnectionError, OpenAIError

from statute.core.embeddings import OpenAIEmbeddingService
from statute.core.exceptions import EmbeddingError


def embedding_response(vectors, reverse: bool = False):
    items = [SimpleNamespace(index=i, embedding=v) for i, v in enumerate(vectors)]
    if reverse:
        items.reverse()
    return SimpleNamespace(data=items)


def make_service(client, **kwargs):
    sleeps = []
    service = OpenAIEmbeddingService(
        client=client,
        model="text-embedding-3-large",
        dimensions=3,
        sleep=sleeps.append,
        **kwargs,
    )
    return service, sleeps


def connection_error() -> APIConnectionError:
    return APIConnectionError(request=httpx.Request("POST", "https://api.openai.com/v1/embeddings"))


class TestOpenAIEmbeddingService:
    def test_empty_input(self):
        """Embedding nothing makes no request."""
        client = Mock()
        service, _ = make_service(client)

        assert service.embed([]) == []
        client.embeddings.create.assert_not_called()

    def test_preserves_input_order(self):
        """Vectors come back in input order even if the API reorders them."""
        client = Mock()
        client.embeddings.create.return_value = embedding_response([[1.0], [2.0], [3.0]], reverse=True)
        service, _ = make_service(client)

        assert service.embed(["a", "b", "c"]) == [[1.0], [2.0], [3.0]]
        kwargs = client.embeddings.create.call_args.kwargs
        assert kwargs["input"] == ["a", "b", "c"]
        assert kwargs["dimensions"] == 3

    def test_batches_requests(self):
        """Texts are sent in batches and vectors come back in order."""
        client = Mock()
        client.embeddings.create.side_effect = [
            embedding_response([[1.0], [2.0]]),
            embedding_response([[3.0]]),
        ]
        service, sleeps = make_service(client, batch_size=2, batch_delay=0.1)

        assert service.embed(["a", "b", "c"]) == [[1.0], [2.0], [3.0]]
        assert client.embeddings.create.call_count == 2
        assert sleeps == [0.1]

    def test_token_limit_fails_before_any_request(self):
        """An over-long text fails the whole call before the API is contacted."""
        client = Mock()
        service, _ = make_service(client, max_tokens=5)

        with pytest.raises(EmbeddingError) as exc_info:
            service.embed(["short", "this text is comfortably longer than five tokens in total"])

        assert exc_info.value.code == EmbeddingError.TOKEN_LIMIT
        assert exc_info.value.details["index"] == 1
        client.embeddings.create.assert_not_called()

    def test_retries_transient_errors(self):
        """Connection errors are retried."""
        client = Mock()
        client.embeddings.create.side_effect = [connection_error(), embedding_response([[1.0]])]
        service, sleeps = make_service(client)

        assert service.embed(["a"]) == [[1.0]]
        assert len(sleeps) == 1

    def test_exhausted_retries_raise_rate_limit(self):
        """Running out of retries raises a rate-limit embedding error."""
        client = Mock()
        client.embeddings.create.side_effect = [connection_error() for _ in range(4)]
        service, _ = make_service(client, max_retries=4)

        with pytest.raises(EmbeddingError) as exc_info:
            service.embed(["a"])

        assert exc_info.value.code == EmbeddingError.RATE_LIMIT
        assert client.embeddings.create.call_count == 4

    def test_other_api_errors_are_not_retried(self):
        """Client errors fail on the first attempt."""
        client = Mock()
        client.embeddings.create.side_effect = OpenAIError("invalid model")
        service, _ = make_service(client)

        with pytest.raises(EmbeddingError) as exc_info:
            service.embed(["a"])

        assert exc_info.value.code == EmbeddingError.API_ERROR
        assert client.embeddings.create.call_count == 1

    def test_count_mismatch_is_an_error(self):
        """A response with the wrong number of vectors is rejected."""
        client = Mock()
        client.embeddings.create.return_value = embedding_response([[1.0]])
        service, _ = make_service(client)

        with pytest.raises(EmbeddingError):
            service.embed(["a", "b"])
