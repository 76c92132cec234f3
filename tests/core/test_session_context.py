"""Tests for session context storage and findings extraction."""

from types import SimpleNamespace

import pytest

from monitor_agent.agents.context import (
    MAX_ANOMALIES,
    InMemorySessionContextStore,
    extract_anomalies,
    extract_metrics,
    extract_server_names,
    save_agent_findings,
)


class FakeClock:
    def __init__(self):
        self.now = 0.0

    def __call__(self):
        return self.now


class TestExtraction:
    def test_server_names_are_deduplicated_and_lowercased(self):
        names = extract_server_names("서버: Web-Server-01 이상, db-master-02 정상, web-server-01 재확인")

        assert names == ["web-server-01", "db-master-02"]

    def test_anomaly_from_indicator_line(self):
        anomalies = extract_anomalies("web-server-01 CPU 사용률 95% 심각\n나머지는 정상입니다")

        assert len(anomalies) == 1
        anomaly = anomalies[0]
        assert anomaly["server_id"] == "web-server-01"
        assert anomaly["metric"] == "cpu"
        assert anomaly["value"] == 95.0
        assert anomaly["threshold"] == 80
        assert anomaly["severity"] == "critical"

    def test_anomaly_without_server_uses_unknown(self):
        anomalies = extract_anomalies("메모리 부족 경고 75%")

        assert anomalies[0]["server_id"] == "unknown"
        assert anomalies[0]["metric"] == "memory"
        assert anomalies[0]["threshold"] == 85
        assert anomalies[0]["severity"] == "warning"

    def test_metric_snapshot_status(self):
        metrics = extract_metrics("api-server-01 CPU: 75% 메모리: 60%")

        assert len(metrics) == 1
        assert metrics[0]["cpu"] == 75.0
        assert metrics[0]["memory"] == 60.0
        assert metrics[0]["disk"] == 0.0
        assert metrics[0]["status"] == "warning"

    def test_no_metrics_without_values(self):
        assert extract_metrics("모든 서버 정상") == []


class TestInMemoryStore:
    @pytest.mark.asyncio
    async def test_affected_servers_are_unique(self):
        store = InMemorySessionContextStore()

        await store.append_affected_servers("s1", ["a", "b", "a"])
        await store.append_affected_servers("s1", ["b", "c"])

        context = await store.get_session_context("s1")
        assert context.affected_servers == ["a", "b", "c"]

    @pytest.mark.asyncio
    async def test_anomalies_are_capped(self):
        store = InMemorySessionContextStore()
        anomalies = [{"server_id": f"srv-{i}", "metric": "cpu"} for i in range(MAX_ANOMALIES + 10)]

        await store.append_anomalies("s1", anomalies)

        context = await store.get_session_context("s1")
        assert len(context.anomalies) == MAX_ANOMALIES
        assert context.anomalies[-1]["server_id"] == f"srv-{MAX_ANOMALIES + 9}"

    @pytest.mark.asyncio
    async def test_metrics_are_keyed_by_server(self):
        store = InMemorySessionContextStore()

        await store.append_metrics("s1", [{"server_id": "a", "cpu": 10}])
        await store.append_metrics("s1", [{"server_id": "a", "cpu": 90}])

        context = await store.get_session_context("s1")
        assert context.metrics == [{"server_id": "a", "cpu": 90}]

    @pytest.mark.asyncio
    async def test_entries_expire_after_ttl(self):
        clock = FakeClock()
        store = InMemorySessionContextStore(ttl_seconds=10, clock=clock)
        await store.update_session_context("s1", {"last_agent": "NLQ Agent"})

        clock.now = 5
        assert (await store.get_session_context("s1")).last_agent == "NLQ Agent"

        clock.now = 20
        assert await store.get_session_context("s1") is None

    @pytest.mark.asyncio
    async def test_record_handoff_updates_last_agent(self):
        store = InMemorySessionContextStore()

        await store.record_handoff("s1", "Orchestrator", "Analyst Agent", "subtask 1/2")

        context = await store.get_session_context("s1")
        assert context.last_agent == "Analyst Agent"
        assert context.handoffs[0]["reason"] == "subtask 1/2"


class TestSaveAgentFindings:
    @pytest.mark.asyncio
    async def test_nlq_findings(self):
        store = InMemorySessionContextStore()

        await save_agent_findings(store, "s1", "NLQ Agent", "web-server-03 CPU 91%")

        assert (await store.get_session_context("s1")).affected_servers == ["web-server-03"]

    @pytest.mark.asyncio
    async def test_reporter_findings(self):
        store = InMemorySessionContextStore()

        await save_agent_findings(store, "s1", "Reporter Agent", "cache-01 디스크: 95%")

        metrics = (await store.get_session_context("s1")).metrics
        assert metrics[0]["server_id"] == "cache-01"
        assert metrics[0]["status"] == "critical"

    @pytest.mark.asyncio
    async def test_advisor_updates_last_agent(self):
        store = InMemorySessionContextStore()

        await save_agent_findings(store, "s1", "Advisor Agent", "`top` 명령어로 확인하세요")

        assert (await store.get_session_context("s1")).last_agent == "Advisor Agent"

    @pytest.mark.asyncio
    async def test_store_failures_are_swallowed(self):
        async def broken(*args, **kwargs):
            raise RuntimeError("redis down")

        store = SimpleNamespace(append_affected_servers=broken)

        await save_agent_findings(store, "s1", "NLQ Agent", "web-server-01 CPU 95%")
