"""
Unit tests for the search, extraction and embedding client adapters.

SDK clients are replaced with mocks; only the translation to and from the
pipeline's own types is tested.
"""

from types import SimpleNamespace
from unittest.mock import MagicMock, patch

import pytest

from grantscout.errors import EmbeddingFailure, EmptyEmbeddingText, UpstreamUnavailable
from grantscout.services.embeddings import OpenAIEmbeddingClient
from grantscout.services.extract_client import FirecrawlExtractClient
from grantscout.services.search_client import ExaSearchClient, FirecrawlSearchClient, SearchResult


class TestExaSearchClient:
    """Tests for ExaSearchClient"""

    def test_results_parsed_and_urlless_skipped(self):
        sdk = MagicMock()
        sdk.search_and_contents.return_value = SimpleNamespace(results=[
            SimpleNamespace(url=' https://example.org/fund ', title='Fund', text='Snippet'),
            SimpleNamespace(url='', title='No URL', text=''),
        ])

        results = ExaSearchClient(client=sdk).search('scholarships', 10)

        assert results == [SearchResult(url='https://example.org/fund', title='Fund', snippet='Snippet')]
        assert sdk.search_and_contents.call_args.kwargs['num_results'] == 10

    def test_rate_limit_retried(self):
        sdk = MagicMock()
        sdk.search_and_contents.side_effect = [
            Exception('429 Too Many Requests'),
            SimpleNamespace(results=[SimpleNamespace(url='https://example.org/a', title='', text='')]),
        ]

        with patch('grantscout.services.search_client.time.sleep') as mock_sleep:
            results = ExaSearchClient(client=sdk).search('q', 5)

        assert len(results) == 1
        mock_sleep.assert_called_once_with(2.0)

    def test_other_errors_surface_as_upstream_unavailable(self):
        sdk = MagicMock()
        sdk.search_and_contents.side_effect = Exception('invalid api key')

        with pytest.raises(UpstreamUnavailable, match='exa unavailable'):
            ExaSearchClient(client=sdk).search('q', 5)
        assert sdk.search_and_contents.call_count == 1

    def test_missing_api_key(self, monkeypatch):
        monkeypatch.delenv('EXA_API_KEY', raising=False)
        with pytest.raises(ValueError):
            ExaSearchClient()


class TestFirecrawlSearchClient:
    """Tests for FirecrawlSearchClient"""

    def test_sdk_response(self):
        sdk = MagicMock()
        sdk.search.return_value = SimpleNamespace(web=[
            SimpleNamespace(url='https://example.org/b', title='B', description='Desc'),
        ])
        results = FirecrawlSearchClient(client=sdk).search('q', 5)
        assert results == [SearchResult(url='https://example.org/b', title='B', snippet='Desc')]

    def test_raw_dict_response(self):
        sdk = MagicMock()
        sdk.search.return_value = {'data': {'web': [{'url': 'https://example.org/c', 'title': 'C'}, {'url': ''}]}}
        results = FirecrawlSearchClient(client=sdk).search('q', 5)
        assert [r.url for r in results] == ['https://example.org/c']


class TestFirecrawlExtractClient:
    """Tests for FirecrawlExtractClient"""

    def test_submit_returns_job_id(self):
        sdk = MagicMock()
        sdk.start_extract.return_value = SimpleNamespace(id='extract-123')

        job_id = FirecrawlExtractClient(client=sdk).submit(['https://example.org/a'], 'prompt', {'type': 'object'})

        assert job_id == 'extract-123'
        sdk.start_extract.assert_called_once_with(
            urls=['https://example.org/a'], prompt='prompt', schema={'type': 'object'}
        )

    def test_submit_without_job_id(self):
        sdk = MagicMock()
        sdk.start_extract.return_value = {'success': True}
        with pytest.raises(UpstreamUnavailable):
            FirecrawlExtractClient(client=sdk).submit(['https://example.org/a'], 'prompt', {})

    def test_submit_error(self):
        sdk = MagicMock()
        sdk.start_extract.side_effect = Exception('402 payment required')
        with pytest.raises(UpstreamUnavailable, match='firecrawl-extract'):
            FirecrawlExtractClient(client=sdk).submit(['https://example.org/a'], 'prompt', {})

    def test_status_normalized(self):
        sdk = MagicMock()
        sdk.get_extract_status.return_value = {'status': 'COMPLETED', 'data': {'opportunities': []}}

        status = FirecrawlExtractClient(client=sdk).get_status('extract-123')

        assert status.status == 'completed'
        assert status.data == {'opportunities': []}
        assert status.error is None


class TestOpenAIEmbeddingClient:
    """Tests for OpenAIEmbeddingClient"""

    def _sdk(self, vector):
        sdk = MagicMock()
        sdk.embeddings.create.return_value = SimpleNamespace(data=[SimpleNamespace(embedding=vector)])
        return sdk

    def test_embed(self):
        sdk = self._sdk([0.1] * 1536)
        client = OpenAIEmbeddingClient(client=sdk, model='text-embedding-3-small', dimensions=1536)

        vector = client.embed('Masters scholarship in biology')

        assert len(vector) == 1536
        sdk.embeddings.create.assert_called_once_with(
            model='text-embedding-3-small', input='Masters scholarship in biology'
        )

    @pytest.mark.parametrize("text", ["", "   "])
    def test_empty_text_rejected_without_api_call(self, text):
        sdk = self._sdk([0.1] * 1536)
        with pytest.raises(EmptyEmbeddingText):
            OpenAIEmbeddingClient(client=sdk, dimensions=1536).embed(text)
        sdk.embeddings.create.assert_not_called()

    def test_wrong_dimensions(self):
        sdk = self._sdk([0.1] * 10)
        with pytest.raises(EmbeddingFailure, match='Expected 1536 dimensions, got 10'):
            OpenAIEmbeddingClient(client=sdk, dimensions=1536).embed('text')

    def test_api_error(self):
        sdk = MagicMock()
        sdk.embeddings.create.side_effect = Exception('timeout')
        with pytest.raises(UpstreamUnavailable, match='openai-embeddings'):
            OpenAIEmbeddingClient(client=sdk, dimensions=1536).embed('text')
