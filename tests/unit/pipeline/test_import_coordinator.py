"""
Unit tests for ImportCoordinator.
"""

import threading
import time

import pytest

from conftest import RecordingSink, make_docs
from mongo_import.errors import ConfigError, SinkError
from mongo_import.pipeline import (
    CollectionScanner,
    FileCheckpointStore,
    ImportCoordinator,
    MessageQueue,
    Namespace,
    RetryPolicy,
)

pytestmark = pytest.mark.timeout(20)


def make_coordinator(mongo, databases, sink, **kwargs):
    kwargs.setdefault("retry_policy", RetryPolicy(initial_backoff_ms=0))
    return ImportCoordinator(
        "mongodb://fake",
        databases,
        "t",
        sink,
        client_factory=mongo.client,
        **kwargs,
    )


def test_bulk_size_one_scenario(mongo, sink):
    docs = make_docs(2)
    mongo.collection("a.x").insert_many(docs)
    mongo.collection("a.y")

    report = make_coordinator(mongo, "a.x,a.y", sink, bulk_size=1).run()

    assert report.ok
    assert report.published == 2
    assert report.results["a.x"].pages == 3
    assert report.results["a.y"].pages == 1
    assert [m.topic for m in sink.messages] == ["t_a_x", "t_a_x"]
    assert sink.ids_for("t_a_x") == [str(d["_id"]) for d in docs]
    assert sink.closed
    assert all(c.closed for c in mongo.clients)


def test_completeness_and_per_collection_order(mongo):
    sizes = {"db.alpha": 1234, "db.beta": 777, "other.gamma": 0, "other.delta.sub": 55}
    expected = {}
    for ns, n in sizes.items():
        docs = make_docs(n)
        mongo.collection(ns).insert_many(docs)
        expected[Namespace.parse(ns).topic("t")] = [str(d["_id"]) for d in docs]

    sink = RecordingSink()
    report = make_coordinator(
        mongo, ",".join(sizes), sink, bulk_size=100, high_water_mark=300
    ).run()

    assert report.ok
    assert report.scanned == report.published == sum(sizes.values())
    assert len(sink.messages) == sum(sizes.values())
    for topic, ids in expected.items():
        assert sink.ids_for(topic) == ids
    pairs = {(m.topic, m.document_id) for m in sink.messages}
    assert len(pairs) == len(sink.messages)


def test_slow_sink_applies_backpressure_and_finishes(mongo):
    mongo.collection("a.x").insert_many(make_docs(300))
    mongo.collection("a.y").insert_many(make_docs(300))

    sink = RecordingSink(delay=0.0005)
    report = make_coordinator(mongo, "a.x,a.y", sink, bulk_size=20, high_water_mark=40).run()

    assert report.published == 600
    assert sink.ids_for("t_a_x") == sorted(sink.ids_for("t_a_x"))


def test_schema_stable_per_topic(mongo, sink):
    coll = mongo.collection("a.x")
    coll.insert_many([{**d, "extra": i} if i % 2 else d for i, d in enumerate(make_docs(10))])

    make_coordinator(mongo, "a.x", sink, bulk_size=3).run()

    schemas = {repr(m.value["schema"]) for m in sink.messages}
    assert len(schemas) == 1


def test_failing_page_retried_until_complete(mongo, sink):
    coll = mongo.collection("a.x")
    coll.insert_many(make_docs(10))
    coll.fail_on = {2}

    report = make_coordinator(mongo, "a.x", sink, bulk_size=3).run()

    assert report.ok
    assert report.results["a.x"].errors == 1
    assert report.published == 10


def test_aborted_scanner_does_not_block_others(mongo, sink):
    mongo.collection("a.x").insert_many(make_docs(5))
    bad = mongo.collection("a.bad")
    bad.insert_many(make_docs(5))
    bad.fail_on = set(range(1, 100))

    report = make_coordinator(
        mongo,
        "a.x,a.bad",
        sink,
        retry_policy=RetryPolicy(max_attempts=2, initial_backoff_ms=0),
    ).run()

    assert not report.ok
    assert report.results["a.x"].ok
    assert not report.results["a.bad"].ok
    assert report.published == 5


def test_terminates_promptly_when_all_empty(mongo, sink):
    mongo.collection("a.x")
    t0 = time.monotonic()
    report = make_coordinator(mongo, "a.x", sink, poll_interval=5.0).run()
    # completion callback wakes the loop; the long poll interval is never waited out
    assert time.monotonic() - t0 < 2.0
    assert report.published == 0


def test_runs_are_isolated(mongo):
    mongo.collection("a.x").insert_many(make_docs(20))
    sinks = [RecordingSink(), RecordingSink()]
    reports = []

    def run(s):
        reports.append(make_coordinator(mongo, "a.x", s, bulk_size=7).run())

    threads = [threading.Thread(target=run, args=(s,)) for s in sinks]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert [len(s.messages) for s in sinks] == [20, 20]
    assert all(r.ok for r in reports)


def test_second_run_on_same_coordinator_is_refused(mongo, sink):
    mongo.collection("a.x").insert_many(make_docs(4))
    coord = make_coordinator(mongo, "a.x", sink)
    assert coord.run().ok
    assert sink.closed

    with pytest.raises(SinkError):
        coord.run()
    assert len(sink.messages) == 4


def test_separate_runs_rescan_from_start(mongo):
    mongo.collection("a.x").insert_many(make_docs(4))
    first, second = RecordingSink(), RecordingSink()
    make_coordinator(mongo, "a.x", first).run()
    make_coordinator(mongo, "a.x", second).run()
    assert first.ids_for("t_a_x") == second.ids_for("t_a_x")
    assert len(second.messages) == 4


def test_failed_sends_fail_the_report(mongo):
    class RejectingSink(RecordingSink):
        def send(self, message):
            raise RuntimeError("sink is closed")

    mongo.collection("a.x").insert_many(make_docs(3))
    report = make_coordinator(mongo, "a.x", RejectingSink()).run()

    assert report.results["a.x"].ok
    assert report.scanned == 3
    assert report.published == 0
    assert report.failed == 3
    assert not report.ok
    assert report.as_dict()["failed"] == 3


def test_delivery_errors_fail_the_report(mongo):
    class NackingSink(RecordingSink):
        @property
        def delivery_errors(self):
            return 1

    mongo.collection("a.x").insert_many(make_docs(2))
    report = make_coordinator(mongo, "a.x", NackingSink()).run()

    assert report.published == 2
    assert report.failed == 1
    assert not report.ok


def test_unpublished_backlog_is_emitted_after_restart(mongo, tmp_path):
    docs = make_docs(5)
    mongo.collection("a.x").insert_many(docs)
    path = tmp_path / "cursors.json"

    # the scan completes but the process stops before anything is published
    scanner = CollectionScanner(
        Namespace.parse("a.x"),
        "t",
        MessageQueue(),
        mongo.client(),
        bulk_size=2,
        checkpoints=FileCheckpointStore(path),
    )
    assert scanner.run().count == 5

    sink = RecordingSink()
    report = make_coordinator(mongo, "a.x", sink, checkpoints=FileCheckpointStore(path)).run()

    assert report.published == 5
    assert sink.ids_for("t_a_x") == [str(d["_id"]) for d in docs]


def test_resume_after_failed_send_restarts_at_the_gap(mongo, tmp_path):
    class ThirdSendFails(RecordingSink):
        calls = 0

        def send(self, message):
            self.calls += 1
            if self.calls == 3:
                raise RuntimeError("broker down")
            super().send(message)

    docs = make_docs(5)
    mongo.collection("a.x").insert_many(docs)
    path = tmp_path / "cursors.json"

    first = make_coordinator(
        mongo, "a.x", ThirdSendFails(), checkpoints=FileCheckpointStore(path), bulk_size=2
    ).run()
    assert not first.ok
    assert first.failed == 1

    sink = RecordingSink()
    second = make_coordinator(
        mongo, "a.x", sink, checkpoints=FileCheckpointStore(path), bulk_size=2
    ).run()

    assert second.ok
    assert sink.ids_for("t_a_x") == [str(d["_id"]) for d in docs[2:]]


def test_file_checkpoints_resume_next_run(mongo, tmp_path):
    coll = mongo.collection("a.x")
    coll.insert_many(make_docs(5))
    store = FileCheckpointStore(tmp_path / "cursors.json")

    first = RecordingSink()
    make_coordinator(mongo, "a.x", first, checkpoints=store, bulk_size=2).run()
    new_docs = make_docs(3)
    coll.insert_many(new_docs)

    second = RecordingSink()
    report = make_coordinator(mongo, "a.x", second, checkpoints=store, bulk_size=2).run()

    assert len(first.messages) == 5
    assert second.ids_for("t_a_x") == [str(d["_id"]) for d in new_docs]
    assert report.results["a.x"].count == 3


def test_report_as_dict(mongo, sink):
    mongo.collection("a.x").insert_many(make_docs(2))
    d = make_coordinator(mongo, "a.x", sink).run().as_dict()
    assert d["ok"] is True
    assert d["published"] == 2
    assert d["collections"]["a.x"]["topic"] == "t_a_x"
    assert d["finished_at"] is not None


def test_topics_property(mongo, sink):
    coord = make_coordinator(mongo, "a.x, b.y.z", sink)
    assert coord.topics == ["t_a_x", "t_b_y_z"]


def test_no_collections(mongo, sink):
    with pytest.raises(ConfigError):
        make_coordinator(mongo, "", sink)
    with pytest.raises(ConfigError):
        make_coordinator(mongo, [], sink)


def test_client_factory_failure_closes_sink_and_clients(mongo, sink):
    calls = {"n": 0}

    def factory(uri):
        calls["n"] += 1
        if calls["n"] == 2:
            raise RuntimeError("cannot create client")
        return mongo.client(uri)

    coord = ImportCoordinator("mongodb://fake", "a.x,a.y", "t", sink, client_factory=factory)
    with pytest.raises(RuntimeError):
        coord.run()
    assert sink.closed
    assert all(c.closed for c in mongo.clients)


def test_invalid_uri_is_config_error(sink):
    coord = ImportCoordinator("not-a-uri://", "a.x", "t", sink)
    with pytest.raises(ConfigError):
        coord.run()
    assert sink.closed
