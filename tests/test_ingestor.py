import asyncio

import pytest

from app.modules.docchat.services.errors import InvalidInput, NoContent, UpstreamUnavailable
from app.modules.docchat.services.ingestion.ingestor import Ingestor, is_https_url
from conftest import HashingEmbedder, StaticFetcher, make_index

URL = "https://docs.example.com/photosynthesis"


@pytest.mark.parametrize(
    "value,expected",
    [
        (URL, True),
        ("  https://example.com/a?b=c  ", True),
        ("http://example.com", False),
        ("https://", False),
        ("example.com/page", False),
        ("https://exa mple.com", False),
        ("", False),
        (None, False),
    ],
)
def test_https_url_check(value, expected):
    assert is_https_url(value) is expected


def test_invalid_url_is_rejected_before_fetching():
    fetcher = StaticFetcher()
    ingestor = Ingestor(fetcher, HashingEmbedder(), make_index())
    with pytest.raises(InvalidInput):
        asyncio.run(ingestor.ingest("conv-a", "ftp://example.com/doc"))
    assert fetcher.calls == []


def test_empty_page_is_no_content():
    ingestor = Ingestor(StaticFetcher({URL: "   \n  "}), HashingEmbedder(), make_index())
    with pytest.raises(NoContent):
        asyncio.run(ingestor.ingest("conv-a", URL))


def test_every_chunk_is_indexed_in_scope():
    text = "Chloroplasts capture light energy. " * 40  # 1400 chars

    async def _run():
        index, embedder = make_index(), HashingEmbedder()
        ingestor = Ingestor(StaticFetcher({URL: text}), embedder, index, chunk_size=500, chunk_overlap=50)
        returned = await ingestor.ingest("conv-a", URL)
        hits = await index.search(await embedder.embed("chloroplasts light"), top_k=10, scope_id="conv-a")
        return returned, hits, await index.count("conv-a"), await index.count("conv-b")

    returned, hits, count_a, count_b = asyncio.run(_run())
    assert returned == text
    assert count_a == 3
    assert count_b == 0
    assert sorted(h.payload["chunk_index"] for h in hits) == [0, 1, 2]
    assert all(h.payload["kind"] == "document_chunk" for h in hits)
    assert all(h.payload["source_url"] == URL for h in hits)


def test_embedding_failure_is_upstream_unavailable():
    ingestor = Ingestor(StaticFetcher({URL: "some text"}), HashingEmbedder(fail=True), make_index())
    with pytest.raises(UpstreamUnavailable):
        asyncio.run(ingestor.ingest("conv-a", URL))
