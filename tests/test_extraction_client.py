"""Tests for the page extraction client."""

import json
from unittest.mock import Mock

import httpx
import openai
import pytest

from eobflow.errors import ExtractionError, MalformedResponseError, UpstreamError
from eobflow.extraction import ExtractionClient

REQUEST = httpx.Request("POST", "https://extract.example.com/v1/chat/completions")


def status_error(status: int, headers: dict = None) -> openai.APIStatusError:
    response = httpx.Response(status, headers=headers or {}, request=REQUEST)
    return openai.APIStatusError(f"HTTP {status}", response=response, body=None)


def completion(content):
    result = Mock()
    result.model_dump.return_value = {"id": "resp-1", "choices": [{"message": {"content": content}}]}
    if content is None:
        result.choices = []
    else:
        result.choices = [Mock(message=Mock(content=content))]
    return result


@pytest.fixture
def openai_client() -> Mock:
    return Mock()


@pytest.fixture
def sleeps() -> list:
    return []


@pytest.fixture
def client(openai_client, sleeps) -> ExtractionClient:
    return ExtractionClient(
        api_url="https://extract.example.com/v1",
        api_key="test-key",
        max_retries=2,
        retry_base_sec=10.0,
        retry_multiplier=1.5,
        sleep=sleeps.append,
        client=openai_client,
    )


class TestExtractPage:

    def test_items_found(self, client, openai_client):
        payload = {"items": [{"cpt_code": "99213"}, {"cpt_code": "99214"}]}
        openai_client.chat.completions.create.return_value = completion(json.dumps(payload))

        response = client.extract_page(b"%PDF-page", page_number=1)

        assert response.response_type == "items_found"
        assert [item["cpt_code"] for item in response.items] == ["99213", "99214"]
        assert response.raw["id"] == "resp-1"

    def test_line_items_key_and_bare_list_accepted(self, client, openai_client):
        openai_client.chat.completions.create.side_effect = [
            completion(json.dumps({"line_items": [{"cpt_code": "99213"}]})),
            completion(json.dumps([{"cpt_code": "99214"}])),
        ]

        assert client.extract_page(b"pdf", 1).items == [{"cpt_code": "99213"}]
        assert client.extract_page(b"pdf", 2).items == [{"cpt_code": "99214"}]

    def test_fenced_json_is_unwrapped(self, client, openai_client):
        content = 'Here you go:\n```json\n{"items": [{"cpt_code": "99213"}]}\n```'
        openai_client.chat.completions.create.return_value = completion(content)

        assert client.extract_page(b"pdf", 1).items == [{"cpt_code": "99213"}]

    def test_empty_items_array(self, client, openai_client):
        openai_client.chat.completions.create.return_value = completion('{"items": []}')

        response = client.extract_page(b"pdf", 1)

        assert response.items == []
        assert response.response_type == "empty_items_array"

    @pytest.mark.parametrize("content", [None, "", "   "])
    def test_no_content_is_no_candidates(self, client, openai_client, content):
        openai_client.chat.completions.create.return_value = completion(content)

        response = client.extract_page(b"pdf", 1)

        assert response.items == []
        assert response.response_type == "no_candidates"

    def test_unparseable_content_is_malformed(self, client, openai_client):
        openai_client.chat.completions.create.return_value = completion("{not json")

        with pytest.raises(MalformedResponseError):
            client.extract_page(b"pdf", 1)

    def test_non_list_items_is_malformed(self, client, openai_client):
        openai_client.chat.completions.create.return_value = completion('{"items": {"cpt_code": "99213"}}')

        with pytest.raises(MalformedResponseError):
            client.extract_page(b"pdf", 1)

    def test_page_is_sent_as_base64_pdf(self, client, openai_client):
        openai_client.chat.completions.create.return_value = completion('{"items": []}')

        client.extract_page(b"%PDF", page_number=7)

        kwargs = openai_client.chat.completions.create.call_args.kwargs
        file_part = kwargs["messages"][0]["content"][1]["file"]
        assert file_part["filename"] == "page-007.pdf"
        assert file_part["file_data"] == "data:application/pdf;base64,JVBERg=="
        assert kwargs["response_format"] == {"type": "json_object"}


class TestRetries:

    @pytest.mark.parametrize("status", [429, 503])
    def test_retries_then_succeeds(self, client, openai_client, sleeps, status):
        openai_client.chat.completions.create.side_effect = [
            status_error(status),
            status_error(status),
            completion('{"items": [{"cpt_code": "99213"}]}'),
        ]

        response = client.extract_page(b"pdf", 1)

        assert len(response.items) == 1
        assert sleeps == [10.0, 15.0]

    def test_exhausted_retries_are_retryable(self, client, openai_client, sleeps):
        openai_client.chat.completions.create.side_effect = [status_error(429)] * 3

        with pytest.raises(UpstreamError) as exc_info:
            client.extract_page(b"pdf", 1)

        assert exc_info.value.retryable is True
        assert exc_info.value.status_code == 429
        assert openai_client.chat.completions.create.call_count == 3
        assert len(sleeps) == 2

    @pytest.mark.parametrize("status", [400, 401, 500])
    def test_other_status_is_permanent(self, client, openai_client, sleeps, status):
        openai_client.chat.completions.create.side_effect = status_error(status)

        with pytest.raises(UpstreamError) as exc_info:
            client.extract_page(b"pdf", 1)

        assert exc_info.value.retryable is False
        assert exc_info.value.status_code == status
        assert sleeps == []

    def test_retry_after_header_extends_delay(self, client, openai_client, sleeps):
        openai_client.chat.completions.create.side_effect = [
            status_error(429, headers={"retry-after": "30"}),
            completion('{"items": []}'),
        ]

        client.extract_page(b"pdf", 1)

        assert sleeps == [30.0]

    def test_connection_failure_is_retryable_extraction_error(self, client, openai_client):
        openai_client.chat.completions.create.side_effect = openai.APIConnectionError(request=REQUEST)

        with pytest.raises(ExtractionError) as exc_info:
            client.extract_page(b"pdf", 1)

        assert not isinstance(exc_info.value, UpstreamError)
        assert exc_info.value.retryable is True

    def test_backoff_delay(self, client):
        assert [client.backoff_delay(n) for n in range(3)] == [10.0, 15.0, 22.5]
