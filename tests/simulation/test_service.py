"""Unit tests for ServiceNode processing and per-kind resolution."""

from __future__ import annotations

import pytest

from cloudsim.simulation.catalog import DisruptionKind, NodeKind, TrafficType
from cloudsim.simulation.context import SimulationContext
from cloudsim.simulation.economy import Outcome
from cloudsim.simulation.request import FailureReason, RequestEntity, RequestState
from cloudsim.simulation.service import ServiceNode

pytestmark = pytest.mark.unit


def _place(ctx: SimulationContext, kind: NodeKind, x: float, y: float = 0.0) -> ServiceNode:
    result = ctx.topology.add_node(kind, (x, y))
    assert result.ok
    return ctx.topology.nodes[result.node_id]


def _request(ctx: SimulationContext, traffic_type: TrafficType) -> RequestEntity:
    req = RequestEntity(
        request_id=ctx.next_request_id(), traffic_type=traffic_type, origin=(0.0, 0.0),
    )
    ctx.requests[req.request_id] = req
    return req


def _outcomes(ctx: SimulationContext) -> list[Outcome]:
    return [e.outcome for e in ctx.pending_outcomes]


class TestProcessing:
    def test_admission_respects_capacity(self, ctx):
        app = _place(ctx, NodeKind.COMPUTE, 0)
        for _ in range(7):
            app.enqueue(_request(ctx, TrafficType.WRITE))
        app.tick(0.01, ctx)
        assert len(app.slots) == 5
        assert len(app.queue) == 2

    def test_queue_is_fifo(self, ctx):
        app = _place(ctx, NodeKind.COMPUTE, 0)
        reqs = [_request(ctx, TrafficType.WRITE) for _ in range(6)]
        for r in reqs:
            app.enqueue(r)
        app.tick(0.01, ctx)
        assert [s.request_id for s in app.slots] == [r.request_id for r in reqs[:5]]
        assert list(app.queue) == [reqs[5].request_id]

    def test_admitted_request_is_processing(self, ctx):
        db = _place(ctx, NodeKind.DATABASE, 0)
        req = _request(ctx, TrafficType.WRITE)
        db.enqueue(req)
        assert req.state == RequestState.QUEUED
        db.tick(0.01, ctx)
        assert req.state == RequestState.PROCESSING

    def test_completes_after_processing_time(self, ctx):
        db = _place(ctx, NodeKind.DATABASE, 0)
        req = _request(ctx, TrafficType.WRITE)
        db.enqueue(req)
        db.tick(0.2, ctx)
        assert not req.is_terminal
        db.tick(0.11, ctx)
        assert req.state == RequestState.COMPLETED
        assert _outcomes(ctx) == [Outcome.COMPLETED]
        assert db.slots == []

    def test_capacity_factor_halves_admission(self, ctx):
        db = _place(ctx, NodeKind.DATABASE, 0)
        assert db.effective_capacity(0.5) == 5
        assert db.effective_capacity(0.01) == 1

    def test_disabled_node_does_nothing(self, ctx):
        db = _place(ctx, NodeKind.DATABASE, 0)
        db.disabled_until = 10.0
        db.enqueue(_request(ctx, TrafficType.WRITE))
        db.tick(1.0, ctx)
        assert len(db.queue) == 1
        assert db.slots == []

    def test_zero_health_node_is_not_operational(self, ctx):
        db = _place(ctx, NodeKind.DATABASE, 0)
        db.health = 0.0
        assert not db.is_operational(ctx.now)

    def test_load_band(self, ctx):
        app = _place(ctx, NodeKind.COMPUTE, 0)
        assert app.to_dict()["load_band"] == "healthy"
        for _ in range(10):
            app.enqueue(_request(ctx, TrafficType.WRITE))
        d = app.to_dict()
        assert d["load"] == pytest.approx(1.0)
        assert d["load_band"] == "critical"


class TestCapacityDrop:
    def _busy_database(self, ctx, queued: int = 0):
        db = _place(ctx, NodeKind.DATABASE, 0)
        reqs = [_request(ctx, TrafficType.WRITE) for _ in range(10 + queued)]
        for req in reqs:
            db.enqueue(req)
        db.tick(0.01, ctx)
        assert len(db.slots) == 10
        assert ctx.difficulty.start_event(DisruptionKind.CAPACITY_DROP, ctx)
        return db, reqs

    def test_surplus_slots_return_to_queue_head(self, ctx):
        db, reqs = self._busy_database(ctx)
        db.tick(0.01, ctx)
        assert len(db.slots) == db.effective_capacity(ctx.capacity_factor) == 5
        assert [s.request_id for s in db.slots] == [r.request_id for r in reqs[:5]]
        assert list(db.queue) == [r.request_id for r in reqs[5:]]
        assert all(r.state == RequestState.QUEUED for r in reqs[5:])
        assert ctx.pending_outcomes == []

    def test_slots_never_exceed_capacity_while_draining(self, ctx):
        db, _ = self._busy_database(ctx)
        for _ in range(40):
            db.tick(0.05, ctx)
            assert len(db.slots) <= db.effective_capacity(ctx.capacity_factor)

    def test_full_queue_overflows_newest(self, ctx):
        db, reqs = self._busy_database(ctx, queued=20)
        db.tick(0.01, ctx)
        assert len(db.slots) == 5
        assert len(db.queue) == 20
        assert list(db.queue)[:5] == [r.request_id for r in reqs[5:10]]
        for req in reqs[25:]:
            assert req.state == RequestState.FAILED
            assert req.failure_reason == FailureReason.QUEUE_OVERFLOW
        assert _outcomes(ctx) == [Outcome.FAILED] * 5


class TestSinks:
    def test_wrong_sink(self, ctx):
        db = _place(ctx, NodeKind.DATABASE, 0)
        req = _request(ctx, TrafficType.STATIC)
        db.enqueue(req)
        db.tick(0.5, ctx)
        assert req.state == RequestState.FAILED
        assert req.failure_reason == FailureReason.WRONG_SINK

    def test_object_store_accepts_upload(self, ctx):
        s3 = _place(ctx, NodeKind.OBJECT_STORE, 0)
        req = _request(ctx, TrafficType.UPLOAD)
        s3.enqueue(req)
        s3.tick(0.5, ctx)
        assert req.state == RequestState.COMPLETED


class TestCompute:
    def test_malicious_at_compute_passes(self, ctx):
        app = _place(ctx, NodeKind.COMPUTE, 0)
        req = _request(ctx, TrafficType.MALICIOUS)
        app.enqueue(req)
        app.tick(1.0, ctx)
        assert req.failure_reason == FailureReason.BYPASSED_FIREWALL
        assert _outcomes(ctx) == [Outcome.MALICIOUS_PASSED]

    def test_cacheable_prefers_cache(self, ctx):
        app = _place(ctx, NodeKind.COMPUTE, 0)
        db = _place(ctx, NodeKind.DATABASE, 4)
        cache = _place(ctx, NodeKind.CACHE, 8)
        ctx.topology.add_connection(app.node_id, db.node_id)
        ctx.topology.add_connection(app.node_id, cache.node_id)
        read = _request(ctx, TrafficType.READ)
        write = _request(ctx, TrafficType.WRITE)
        app.enqueue(read)
        app.enqueue(write)
        app.tick(1.0, ctx)
        assert read.target_id == cache.node_id
        assert write.target_id == db.node_id
        assert read.state == RequestState.IN_TRANSIT

    def test_no_sink_connection(self, ctx):
        app = _place(ctx, NodeKind.COMPUTE, 0)
        req = _request(ctx, TrafficType.UPLOAD)
        app.enqueue(req)
        app.tick(1.0, ctx)
        assert req.failure_reason == FailureReason.UNREACHABLE_SINK


class TestCache:
    def _cache_with_db(self, hit_rate: float) -> tuple[SimulationContext, ServiceNode, ServiceNode]:
        ctx = SimulationContext(seed=3, degradation=False, cache_hit_rate=hit_rate)
        cache = _place(ctx, NodeKind.CACHE, 0)
        db = _place(ctx, NodeKind.DATABASE, 4)
        ctx.topology.add_connection(cache.node_id, db.node_id)
        return ctx, cache, db

    def test_hit_completes_cached(self):
        ctx, cache, _ = self._cache_with_db(1.0)
        req = _request(ctx, TrafficType.READ)
        cache.enqueue(req)
        cache.tick(0.1, ctx)
        assert req.state == RequestState.COMPLETED
        assert req.cached
        assert ctx.pending_outcomes[0].cached

    def test_miss_forwards_to_database(self):
        ctx, cache, db = self._cache_with_db(0.0)
        req = _request(ctx, TrafficType.READ)
        cache.enqueue(req)
        cache.tick(0.1, ctx)
        assert req.target_id == db.node_id
        assert not req.cached

    def test_write_is_never_cached(self):
        ctx, cache, db = self._cache_with_db(1.0)
        req = _request(ctx, TrafficType.WRITE)
        cache.enqueue(req)
        cache.tick(0.1, ctx)
        assert req.target_id == db.node_id


class TestCdn:
    def test_static_served_at_edge(self, ctx):
        cdn = _place(ctx, NodeKind.CDN, 0)
        req = _request(ctx, TrafficType.STATIC)
        cdn.enqueue(req)
        cdn.tick(0.1, ctx)
        assert req.state == RequestState.COMPLETED

    def test_upload_forwarded_to_origin(self, ctx):
        cdn = _place(ctx, NodeKind.CDN, 0)
        s3 = _place(ctx, NodeKind.OBJECT_STORE, 4)
        ctx.topology.add_connection(cdn.node_id, s3.node_id)
        req = _request(ctx, TrafficType.UPLOAD)
        cdn.enqueue(req)
        cdn.tick(0.1, ctx)
        assert req.target_id == s3.node_id

    def test_database_traffic_is_wrong_sink(self, ctx):
        cdn = _place(ctx, NodeKind.CDN, 0)
        req = _request(ctx, TrafficType.READ)
        cdn.enqueue(req)
        cdn.tick(0.1, ctx)
        assert req.failure_reason == FailureReason.WRONG_SINK


class TestFirewall:
    def test_blocks_malicious_on_admission(self, ctx):
        fw = _place(ctx, NodeKind.FIREWALL, 0)
        req = _request(ctx, TrafficType.MALICIOUS)
        fw.enqueue(req)
        fw.tick(0.01, ctx)
        assert req.blocked
        assert req.state == RequestState.COMPLETED
        assert fw.slots == []
        assert _outcomes(ctx) == [Outcome.MALICIOUS_BLOCKED]

    def test_forwards_clean_traffic(self, ctx):
        fw = _place(ctx, NodeKind.FIREWALL, 0)
        lb = _place(ctx, NodeKind.LOAD_BALANCER, 4)
        ctx.topology.add_connection(fw.node_id, lb.node_id)
        req = _request(ctx, TrafficType.READ)
        fw.enqueue(req)
        fw.tick(0.05, ctx)
        assert req.target_id == lb.node_id

    def test_dead_end_fails_no_connection(self, ctx):
        lb = _place(ctx, NodeKind.LOAD_BALANCER, 0)
        req = _request(ctx, TrafficType.READ)
        lb.enqueue(req)
        lb.tick(0.1, ctx)
        assert req.failure_reason == FailureReason.NO_CONNECTION
