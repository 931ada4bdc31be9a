import asyncio

import pytest

from conftest import DIM, FakeProvider
from giftvec.domain.models.batch import BatchOptions
from giftvec.domain.services.batch_embedding_svc import BatchEmbeddingPipeline, estimate_remaining_ms
from giftvec.domain.services.embedding_svc import EmbeddingClient, build_product_text


def make_pipeline(catalog, provider=None, **client_kw):
    provider = provider or FakeProvider()
    client = EmbeddingClient(provider, dimensions=DIM, retry_base_delay_s=0, **client_kw)
    return BatchEmbeddingPipeline(client, catalog), provider


def opts(**kw):
    kw.setdefault("batch_delay_s", 0)
    return BatchOptions(**kw)


def test_one_storage_failure_does_not_affect_the_rest(catalog):
    for pid in ("p1", "p2", "p3"):
        catalog.add(pid, description=f"desc {pid}")
    catalog.fail_writes.add("p2")
    pipeline, _ = make_pipeline(catalog)
    seen_errors = []

    result = asyncio.run(pipeline.process_all(opts(batch_size=10, on_error=seen_errors.append)))

    assert result.successful_items == 2
    assert result.failed_items == 1
    assert len(result.errors) == 1
    assert result.errors[0].item_id == "p2"
    assert result.errors[0].batch_number == 1
    assert set(catalog.vectors) == {"p1", "p3"}
    assert seen_errors == result.errors


def test_concurrency_bounds_batches_in_flight(catalog):
    for i in range(10):
        catalog.add(f"p{i}")
    provider = FakeProvider(delay=0.01)
    pipeline, _ = make_pipeline(catalog, provider)

    result = asyncio.run(pipeline.process_all(opts(batch_size=1, concurrency=2)))

    assert result.successful_items == 10
    assert len(provider.calls) == 10
    assert provider.max_in_flight == 2


def test_failed_embedding_call_fails_only_its_batch(catalog):
    for i in range(4):
        catalog.add(f"p{i}")
    # first call fails with a non-retryable error; the second batch goes through
    provider = FakeProvider(failures=[400])
    pipeline, _ = make_pipeline(catalog, provider)

    result = asyncio.run(pipeline.process_all(opts(batch_size=2, concurrency=1)))

    assert result.failed_items == 2
    assert result.successful_items == 2
    assert [e.item_id for e in result.errors] == ["p0", "p1"]
    assert {e.batch_number for e in result.errors} == {1}


def test_invalid_embedding_is_not_stored(catalog):
    catalog.add("ok", title="fine")
    catalog.add("bad", title="broken")
    text = build_product_text(catalog.products["bad"])
    pipeline, _ = make_pipeline(catalog, FakeProvider(vectors={text: [0.1, float("inf"), 0.0, 0.0]}))

    result = asyncio.run(pipeline.process_all(opts()))

    assert result.successful_items == 1
    assert [e.item_id for e in result.errors] == ["bad"]
    assert "bad" not in catalog.vectors


def test_progress_reports_cumulative_counts(catalog):
    for i in range(5):
        catalog.add(f"p{i}")
    pipeline, _ = make_pipeline(catalog)
    progress = []

    result = asyncio.run(pipeline.process_all(opts(batch_size=2, concurrency=1, on_progress=progress.append)))

    assert [p.processed_items for p in progress] == [2, 4, 5]
    assert progress[-1].percent_complete == pytest.approx(100.0)
    assert progress[-1].total_batches == 3
    assert progress[-1].estimated_remaining_ms == 0
    assert result.tokens_used == 25
    assert result.estimated_cost == pytest.approx(25 / 1_000_000 * 0.02)


def test_estimate_remaining_without_throughput_is_zero():
    assert estimate_remaining_ms(0, 10, 0) == 0
    assert estimate_remaining_ms(0, 10, 100) == 0
    assert estimate_remaining_ms(5, 10, 100) == pytest.approx(100)


def test_process_by_ids_counts_missing_ids_as_failures(catalog):
    catalog.add("p1")
    pipeline, _ = make_pipeline(catalog)

    result = asyncio.run(pipeline.process_by_ids(["p1", "ghost", "p1"], opts()))

    assert result.total_items == 2
    assert result.successful_items == 1
    assert [e.item_id for e in result.errors] == ["ghost"]


def test_missing_id_and_failed_embedding_call_are_each_reported_once(catalog):
    catalog.add("p1")
    provider = FakeProvider(failures=[400])
    pipeline, _ = make_pipeline(catalog, provider)
    percents = []

    result = asyncio.run(
        pipeline.process_by_ids(["p1", "ghost"], opts(on_progress=lambda p: percents.append(p.percent_complete)))
    )

    assert result.total_items == 2
    assert result.failed_items == 2
    assert result.successful_items == 0
    assert sorted(e.item_id for e in result.errors) == ["ghost", "p1"]
    assert next(e.error for e in result.errors if e.item_id == "ghost") == "Product not found"
    assert percents == [100.0]


def test_raising_error_callback_does_not_recount_items(catalog):
    catalog.add("p1")
    catalog.add("p2")
    catalog.fail_writes.add("p1")
    pipeline, _ = make_pipeline(catalog)

    def on_error(err):
        raise RuntimeError("callback broke")

    result = asyncio.run(pipeline.process_by_ids(["p1", "p2"], opts(on_error=on_error)))

    assert result.failed_items == 1
    assert result.successful_items == 1
    assert [e.item_id for e in result.errors] == ["p1"]
    assert "p2" in catalog.vectors


def test_process_all_with_nothing_to_do(catalog):
    catalog.add("done", [1.0, 0.0, 0.0, 0.0])
    pipeline, provider = make_pipeline(catalog)
    result = asyncio.run(pipeline.process_all(opts()))
    assert result.total_items == 0
    assert provider.calls == []


def test_cancellation_stops_claiming_new_batches(catalog):
    for i in range(6):
        catalog.add(f"p{i}")
    cancel = asyncio.Event()
    pipeline, provider = make_pipeline(catalog)

    def stop_after_first(_progress):
        cancel.set()

    result = asyncio.run(
        pipeline.process_all(opts(batch_size=2, concurrency=1, on_progress=stop_after_first, cancel_event=cancel))
    )

    assert result.cancelled
    assert result.successful_items == 2
    assert len(provider.calls) == 1


def test_estimate_cost_never_calls_provider(catalog):
    catalog.add("p1", title="abcd")          # 1 token
    catalog.add("p2", title="abcdefghi")     # 3 tokens
    pipeline, provider = make_pipeline(catalog)

    est = asyncio.run(pipeline.estimate_cost(["p1", "p2", "p3", "p4"]))

    assert est.estimated_tokens == 8
    assert est.estimated_duration_ms == 200
    assert est.estimated_cost == pytest.approx(8 / 1_000_000 * 0.02)
    assert provider.calls == []


def test_estimate_cost_empty():
    pipeline, _ = make_pipeline(None)
    est = asyncio.run(pipeline.estimate_cost([]))
    assert est.estimated_tokens == 0
