"""
Tests for the managed retrieval (Vertex AI RAG Engine) client.
"""

from unittest.mock import AsyncMock, MagicMock

import httpx
import pytest

from umoyo.exceptions import CorpusUnavailableError, TransientExternalError
from umoyo.rag.gcp_auth import CLOUD_PLATFORM_SCOPE, GoogleTokenProvider
from umoyo.rag.managed import (
    NEUTRAL_CONFIDENCE,
    ManagedRetrievalClient,
    calculate_confidence,
    extract_sources,
)

CORPUS = "projects/umoyo/locations/us-central1/ragCorpora/123"

GROUNDED_RESPONSE = {
    "candidates": [
        {
            "content": {
                "parts": [
                    {"text": "Malaria is caused by Plasmodium parasites. "},
                    {"text": "It is spread by Anopheles mosquitoes."},
                ]
            },
            "groundingMetadata": {
                "groundingChunks": [
                    {
                        "retrievedContext": {
                            "title": "WHO Malaria Fact Sheet",
                            "text": "Malaria is a life-threatening disease...",
                            "uri": "gs://umoyo-health-pdfs/who/malaria.pdf",
                        }
                    },
                    {"web": {"uri": "https://example.org"}},
                    {"retrievedContext": {"text": "Untitled excerpt"}},
                ],
                "groundingSupports": [
                    {"confidenceScores": [0.9, 0.7]},
                    {"confidenceScores": [0.8]},
                ],
            },
        }
    ]
}


def _response(payload: dict, status_code: int = 200) -> MagicMock:
    response = MagicMock()
    response.status_code = status_code
    response.json.return_value = payload
    if status_code >= 400:
        request = httpx.Request("POST", "https://example.test")
        response.raise_for_status.side_effect = httpx.HTTPStatusError(
            "error", request=request, response=httpx.Response(status_code, request=request)
        )
    else:
        response.raise_for_status = MagicMock()
    return response


@pytest.fixture
def managed():
    return ManagedRetrievalClient(
        corpus_id=CORPUS,
        project_id="umoyo",
        token_provider=AsyncMock(return_value="tok"),
        max_retries=2,
    )


@pytest.fixture
def no_sleep(mocker):
    return mocker.patch("umoyo.rag.managed.asyncio.sleep", new_callable=AsyncMock)


# ============================================
# Grounding helpers
# ============================================


@pytest.mark.unit
def test_extract_sources_keeps_response_order():
    grounding = GROUNDED_RESPONSE["candidates"][0]["groundingMetadata"]
    sources = extract_sources(grounding)

    assert [s.title for s in sources] == ["WHO Malaria Fact Sheet", "Unknown source"]
    assert sources[0].uri == "gs://umoyo-health-pdfs/who/malaria.pdf"
    assert sources[1].snippet == "Untitled excerpt"


@pytest.mark.unit
def test_extract_sources_without_grounding():
    assert extract_sources(None) == []
    assert extract_sources({}) == []


@pytest.mark.unit
def test_confidence_is_mean_of_support_scores():
    grounding = GROUNDED_RESPONSE["candidates"][0]["groundingMetadata"]
    assert calculate_confidence(grounding) == pytest.approx(0.8)


@pytest.mark.unit
def test_confidence_defaults_to_neutral():
    assert calculate_confidence(None) == NEUTRAL_CONFIDENCE
    assert calculate_confidence({"groundingSupports": []}) == NEUTRAL_CONFIDENCE


@pytest.mark.unit
def test_confidence_is_clamped():
    assert calculate_confidence({"groundingSupports": [{"confidenceScores": [1.7]}]}) == 1.0


# ============================================
# Query
# ============================================


@pytest.mark.unit
@pytest.mark.asyncio
async def test_query_returns_grounded_answer(managed, mocker):
    post = mocker.patch.object(
        httpx.AsyncClient,
        "post",
        new_callable=AsyncMock,
        return_value=_response(GROUNDED_RESPONSE),
    )

    answer = await managed.query("What causes malaria?", top_k=3)

    assert answer.answer == (
        "Malaria is caused by Plasmodium parasites. It is spread by Anopheles mosquitoes."
    )
    assert len(answer.sources) == 2
    assert answer.confidence == pytest.approx(0.8)

    url = post.await_args.args[0]
    assert url.endswith("publishers/google/models/gemini-1.5-pro:generateContent")
    body = post.await_args.kwargs["json"]
    store = body["tools"][0]["retrieval"]["vertexRagStore"]
    assert store["ragResources"] == [{"ragCorpus": CORPUS}]
    assert store["similarityTopK"] == 3
    assert body["contents"][0]["parts"][0]["text"] == "What causes malaria?"


@pytest.mark.unit
@pytest.mark.asyncio
async def test_query_empty_answer_is_transient_error(managed, mocker):
    mocker.patch.object(
        httpx.AsyncClient,
        "post",
        new_callable=AsyncMock,
        return_value=_response({"candidates": [{"content": {"parts": []}}]}),
    )

    with pytest.raises(TransientExternalError):
        await managed.query("What causes malaria?")


@pytest.mark.unit
@pytest.mark.asyncio
async def test_query_without_corpus_raises():
    client = ManagedRetrievalClient(corpus_id="", token_provider=AsyncMock())

    with pytest.raises(CorpusUnavailableError):
        await client.query("What causes malaria?")


@pytest.mark.unit
@pytest.mark.asyncio
async def test_query_retries_then_succeeds(managed, mocker, no_sleep):
    post = mocker.patch.object(
        httpx.AsyncClient,
        "post",
        new_callable=AsyncMock,
        side_effect=[httpx.ReadTimeout("slow"), _response(GROUNDED_RESPONSE)],
    )

    answer = await managed.query("What causes malaria?")

    assert answer.answer.startswith("Malaria")
    assert post.await_count == 2
    no_sleep.assert_awaited_once()


@pytest.mark.unit
@pytest.mark.asyncio
async def test_query_gives_up_after_max_retries(managed, mocker, no_sleep):
    post = mocker.patch.object(
        httpx.AsyncClient,
        "post",
        new_callable=AsyncMock,
        return_value=_response({}, status_code=503),
    )

    with pytest.raises(TransientExternalError) as exc_info:
        await managed.query("What causes malaria?")

    assert exc_info.value.service == "managed"
    assert exc_info.value.attempts == 2
    assert post.await_count == 2


# ============================================
# Corpus management
# ============================================


@pytest.mark.unit
@pytest.mark.asyncio
async def test_import_documents_payload(managed, mocker):
    post = mocker.patch.object(
        httpx.AsyncClient, "post", new_callable=AsyncMock, return_value=_response({})
    )

    await managed.import_documents(["gs://bucket/a.pdf", "gs://bucket/b.pdf"])

    assert post.await_args.args[0].endswith(f"{CORPUS}/ragFiles:import")
    config = post.await_args.kwargs["json"]["importRagFilesConfig"]
    assert config["gcsSource"]["uris"] == ["gs://bucket/a.pdf", "gs://bucket/b.pdf"]
    assert config["ragFileChunkingConfig"] == {"chunkSize": 1024, "chunkOverlap": 200}


@pytest.mark.unit
@pytest.mark.asyncio
async def test_create_corpus_adopts_new_name(mocker):
    client = ManagedRetrievalClient(
        corpus_id="", project_id="umoyo", token_provider=AsyncMock(return_value="tok")
    )
    mocker.patch.object(
        httpx.AsyncClient,
        "post",
        new_callable=AsyncMock,
        return_value=_response({"name": f"{CORPUS}/operations/987"}),
    )

    name = await client.create_corpus()

    assert name == CORPUS
    assert client.corpus_id == CORPUS


@pytest.mark.unit
@pytest.mark.asyncio
async def test_check_status_ready(managed, mocker):
    mocker.patch.object(
        httpx.AsyncClient,
        "get",
        new_callable=AsyncMock,
        return_value=_response({"state": "READY", "ragFileCount": "42"}),
    )

    status = await managed.check_status()

    assert status.exists is True
    assert status.ready is True
    assert status.file_count == 42


@pytest.mark.unit
@pytest.mark.asyncio
async def test_check_status_never_raises(managed, mocker):
    mocker.patch.object(
        httpx.AsyncClient,
        "get",
        new_callable=AsyncMock,
        side_effect=httpx.ConnectError("unreachable"),
    )

    status = await managed.check_status()

    assert status.exists is False
    assert status.ready is False


@pytest.mark.unit
@pytest.mark.asyncio
async def test_check_status_without_corpus():
    status = await ManagedRetrievalClient(corpus_id="", token_provider=AsyncMock()).check_status()
    assert status.exists is False


# ============================================
# Access tokens
# ============================================


@pytest.mark.unit
@pytest.mark.asyncio
async def test_token_provider_caches_valid_credentials(mocker):
    credentials = MagicMock()
    credentials.token = "ya29.token"
    credentials.valid = True
    default = mocker.patch("google.auth.default", return_value=(credentials, "umoyo"))

    provider = GoogleTokenProvider()

    assert await provider() == "ya29.token"
    assert await provider() == "ya29.token"
    default.assert_called_once_with(scopes=[CLOUD_PLATFORM_SCOPE])
    credentials.refresh.assert_called_once()


@pytest.mark.unit
@pytest.mark.asyncio
async def test_token_provider_refreshes_expired_credentials(mocker):
    credentials = MagicMock()
    credentials.token = "ya29.token"
    credentials.valid = False
    default = mocker.patch("google.auth.default", return_value=(credentials, "umoyo"))

    provider = GoogleTokenProvider()
    await provider()
    await provider()

    assert default.call_count == 2
