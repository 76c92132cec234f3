"""Session context: findings shared between agents within one session.

The orchestrator only writes here. ``InMemorySessionContextStore`` is the
process-local store; anything implementing ``SessionContextStore`` can be
passed in instead.
"""

from __future__ import annotations

import logging
import re
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Mapping, Optional, Protocol, Sequence

logger = logging.getLogger(__name__)

MAX_HANDOFFS = 20
MAX_ANOMALIES = 50
MAX_METRICS = 100
DEFAULT_TTL_SECONDS = 1800

SERVER_NAME_PATTERNS = [
    re.compile(r"(?:서버|server)[:\s]+([a-zA-Z0-9_-]+(?:-\d+)?)", re.I),
    re.compile(r"\b(web-server-\d+)\b", re.I),
    re.compile(r"\b(api-server-\d+)\b", re.I),
    re.compile(r"\b(db-(?:master|slave)-\d+)\b", re.I),
    re.compile(r"\b(cache-\d+)\b", re.I),
    re.compile(r"\b([a-z]+-[a-z]+-\d{2})\b", re.I),
]

ANOMALY_INDICATORS = [
    "높은 CPU", "CPU 사용률", "CPU 과부하", "CPU 급등",
    "메모리 부족", "메모리 사용률", "OOM", "OutOfMemory",
    "디스크 부족", "디스크 사용률", "스토리지",
    "네트워크 지연", "레이턴시", "latency",
    "장애", "에러", "오류", "error", "failure",
    "임계값 초과", "threshold", "알림", "alert",
]  # fmt: skip

_PERCENT = re.compile(r"(\d+(?:\.\d+)?)\s*%")
_CRITICAL_WORDS = re.compile(r"critical|심각|긴급", re.I)
_CPU_VALUE = re.compile(r"CPU[:\s]+(\d+(?:\.\d+)?)\s*%", re.I)
_MEMORY_VALUE = re.compile(r"(?:메모리|Memory)[:\s]+(\d+(?:\.\d+)?)\s*%", re.I)
_DISK_VALUE = re.compile(r"(?:디스크|Disk)[:\s]+(\d+(?:\.\d+)?)\s*%", re.I)


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


@dataclass
class SessionContext:
    session_id: str
    query: str = ""
    last_agent: str = "Orchestrator"
    handoffs: List[Dict[str, Any]] = field(default_factory=list)
    anomalies: List[Dict[str, Any]] = field(default_factory=list)
    root_cause: Optional[Dict[str, Any]] = None
    affected_servers: List[str] = field(default_factory=list)
    metrics: List[Dict[str, Any]] = field(default_factory=list)
    knowledge_results: List[str] = field(default_factory=list)
    recommended_commands: List[str] = field(default_factory=list)
    created_at: str = field(default_factory=_now_iso)
    updated_at: str = field(default_factory=_now_iso)

    def touch(self) -> None:
        self.updated_at = _now_iso()


class SessionContextStore(Protocol):
    async def append_affected_servers(self, session_id: str, server_ids: Sequence[str]) -> None: ...

    async def append_anomalies(self, session_id: str, anomalies: Sequence[Dict[str, Any]]) -> None: ...

    async def append_metrics(self, session_id: str, metrics: Sequence[Dict[str, Any]]) -> None: ...

    async def record_handoff(self, session_id: str, from_agent: str, to_agent: str, reason: Optional[str] = None) -> None: ...

    async def update_session_context(self, session_id: str, update: Mapping[str, Any]) -> SessionContext: ...

    async def get_session_context(self, session_id: str) -> Optional[SessionContext]: ...


class InMemorySessionContextStore:
    """Process-local context store with per-session expiry."""

    def __init__(self, ttl_seconds: int = DEFAULT_TTL_SECONDS, clock: Callable[[], float] = time.monotonic):
        self.ttl_seconds = ttl_seconds if ttl_seconds > 0 else DEFAULT_TTL_SECONDS
        self._clock = clock
        self._entries: Dict[str, tuple] = {}

    def _purge_expired(self) -> None:
        now = self._clock()
        for key in [k for k, (_, expires_at) in self._entries.items() if expires_at < now]:
            del self._entries[key]

    def _save(self, context: SessionContext) -> None:
        context.touch()
        self._entries[context.session_id] = (context, self._clock() + self.ttl_seconds)

    async def get_session_context(self, session_id: str) -> Optional[SessionContext]:
        self._purge_expired()
        entry = self._entries.get(session_id)
        return entry[0] if entry else None

    async def get_or_create(self, session_id: str, query: str = "") -> SessionContext:
        context = await self.get_session_context(session_id)
        if context is None:
            context = SessionContext(session_id=session_id, query=query)
            self._save(context)
        elif query and query != context.query:
            context.query = query
            self._save(context)
        return context

    async def update_session_context(self, session_id: str, update: Mapping[str, Any]) -> SessionContext:
        context = await self.get_or_create(session_id)
        if update.get("last_agent"):
            context.last_agent = update["last_agent"]
        if update.get("query"):
            context.query = update["query"]
        if update.get("root_cause"):
            context.root_cause = dict(update["root_cause"])
        if update.get("handoffs"):
            context.handoffs = [*context.handoffs, *update["handoffs"]][-MAX_HANDOFFS:]
        self._save(context)
        return context

    async def record_handoff(
        self, session_id: str, from_agent: str, to_agent: str, reason: Optional[str] = None
    ) -> None:
        context = await self.get_or_create(session_id)
        entry = {"from": from_agent, "to": to_agent, "reason": reason, "timestamp": _now_iso()}
        context.handoffs = [*context.handoffs, entry][-MAX_HANDOFFS:]
        context.last_agent = to_agent
        self._save(context)
        logger.info(f"[ContextStore] Handoff: {from_agent} -> {to_agent} ({reason or 'no reason'})")

    async def append_affected_servers(self, session_id: str, server_ids: Sequence[str]) -> None:
        if not server_ids:
            return
        context = await self.get_or_create(session_id)
        new_servers = [s for s in dict.fromkeys(server_ids) if s not in context.affected_servers]
        context.affected_servers.extend(new_servers)
        self._save(context)
        logger.info(
            f"[ContextStore] Added {len(new_servers)} affected servers (total: {len(context.affected_servers)})"
        )

    async def append_anomalies(self, session_id: str, anomalies: Sequence[Dict[str, Any]]) -> None:
        if not anomalies:
            return
        context = await self.get_or_create(session_id)
        seen = {(a["server_id"], a["metric"]) for a in context.anomalies}
        added = []
        for anomaly in anomalies:
            key = (anomaly["server_id"], anomaly["metric"])
            if key not in seen:
                seen.add(key)
                added.append(dict(anomaly))
        context.anomalies = [*context.anomalies, *added][-MAX_ANOMALIES:]
        self._save(context)
        logger.info(f"[ContextStore] Added {len(added)} anomalies (total: {len(context.anomalies)})")

    async def append_metrics(self, session_id: str, metrics: Sequence[Dict[str, Any]]) -> None:
        if not metrics:
            return
        context = await self.get_or_create(session_id)
        by_server = {m["server_id"]: m for m in context.metrics}
        for metric in metrics:
            by_server[metric["server_id"]] = dict(metric)
        context.metrics = list(by_server.values())[-MAX_METRICS:]
        self._save(context)
        logger.info(f"[ContextStore] Updated metrics for {len(metrics)} servers (total: {len(context.metrics)})")

    async def delete_session_context(self, session_id: str) -> None:
        self._entries.pop(session_id, None)

    def __len__(self) -> int:
        self._purge_expired()
        return len(self._entries)


def extract_server_names(text: str) -> List[str]:
    servers: Dict[str, None] = {}
    for pattern in SERVER_NAME_PATTERNS:
        for match in pattern.finditer(text):
            if match.group(1):
                servers[match.group(1).lower()] = None
    return list(servers)


def extract_anomalies(text: str, limit: int = 10) -> List[Dict[str, Any]]:
    """One anomaly per (server, indicator line), at most three servers per line."""
    servers = extract_server_names(text) or ["unknown"]
    detected_at = _now_iso()
    anomalies: List[Dict[str, Any]] = []

    for line in text.split("\n"):
        lowered = line.lower()
        if not any(indicator.lower() in lowered for indicator in ANOMALY_INDICATORS):
            continue
        percent = _PERCENT.search(line)
        value = float(percent.group(1)) if percent else 0.0

        if re.search(r"cpu", line, re.I):
            metric = "cpu"
        elif re.search(r"메모리|memory|mem", line, re.I):
            metric = "memory"
        elif re.search(r"디스크|disk|storage", line, re.I):
            metric = "disk"
        elif re.search(r"네트워크|network|latency", line, re.I):
            metric = "network"
        else:
            metric = "cpu"

        severity = "critical" if value >= 90 or _CRITICAL_WORDS.search(line) else "warning"
        for server_id in servers[:3]:
            anomalies.append(
                {
                    "server_id": server_id,
                    "server_name": server_id,
                    "metric": metric,
                    "value": value,
                    "threshold": 80 if metric == "cpu" else 85,
                    "severity": severity,
                    "detected_at": detected_at,
                }
            )
    return anomalies[:limit]


def extract_metrics(text: str) -> List[Dict[str, Any]]:
    def _value(pattern: re.Pattern) -> float:
        match = pattern.search(text)
        return float(match.group(1)) if match else 0.0

    cpu, memory, disk = _value(_CPU_VALUE), _value(_MEMORY_VALUE), _value(_DISK_VALUE)
    if not (cpu > 0 or memory > 0 or disk > 0):
        return []

    peak = max(cpu, memory, disk)
    status = "critical" if peak >= 90 else "warning" if peak >= 70 else "normal"
    timestamp = _now_iso()
    servers = extract_server_names(text) or ["unknown"]
    return [
        {
            "server_id": server_id,
            "server_name": server_id,
            "cpu": cpu,
            "memory": memory,
            "disk": disk,
            "status": status,
            "timestamp": timestamp,
        }
        for server_id in servers[:5]
    ]


async def save_agent_findings(store: SessionContextStore, session_id: str, agent: str, response: str) -> None:
    """Parse ``response`` and store what ``agent`` found. Never raises."""
    normalized = agent.lower()
    try:
        if "nlq" in normalized:
            servers = extract_server_names(response)
            if servers:
                await store.append_affected_servers(session_id, servers)
                logger.info(f"[Context] {agent} saved {len(servers)} servers")
        elif "analyst" in normalized:
            anomalies = extract_anomalies(response)
            if anomalies:
                await store.append_anomalies(session_id, anomalies)
                logger.info(f"[Context] {agent} saved {len(anomalies)} anomalies")
        elif "reporter" in normalized:
            metrics = extract_metrics(response)
            if metrics:
                await store.append_metrics(session_id, metrics)
                logger.info(f"[Context] {agent} saved {len(metrics)} metrics")
        elif "advisor" in normalized:
            await store.update_session_context(session_id, {"last_agent": agent})
            logger.info(f"[Context] {agent} updated last_agent")
    except Exception as e:
        logger.warning(f"[Context] Failed to save findings for {agent}: {e}")
