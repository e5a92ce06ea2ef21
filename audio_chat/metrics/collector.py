"""
In-memory performance metrics for a conversation session.
"""

import time
from dataclasses import dataclass, asdict, field
from datetime import datetime
from typing import Dict, List, Optional, Any
import structlog

logger = structlog.get_logger()


@dataclass
class LatencyMetrics:
    """Latency metrics for a specific component."""
    min: float
    max: float
    avg: float
    p50: float
    p95: float
    p99: float
    samples: int


@dataclass
class SessionMetrics:
    """Metrics for a single conversation session."""
    session_id: str
    start_time: datetime
    end_time: Optional[datetime] = None
    total_interactions: int = 0
    silences: int = 0
    interruptions: int = 0
    transcription_latencies: List[float] = field(default_factory=list)
    query_latencies: List[float] = field(default_factory=list)
    errors: List[Dict[str, Any]] = field(default_factory=list)


class MetricsCollector:
    """
    Collects latencies, errors and turn counts for the current session.
    Nothing is written to disk; the summary is printed when the session ends.
    """

    def __init__(self):
        self.current_session: Optional[SessionMetrics] = None
        self.session_start_time: Optional[float] = None

    def start_session(self, session_id: str) -> None:
        """Start a new metrics collection session."""
        logger.debug("Starting metrics collection", session_id=session_id)
        self.current_session = SessionMetrics(session_id=session_id, start_time=datetime.now())
        self.session_start_time = time.time()

    def end_session(self) -> None:
        """End the current metrics collection session."""
        if not self.current_session:
            logger.warning("No active session to end")
            return

        self.current_session.end_time = datetime.now()
        logger.debug("Ending metrics collection",
                     session_id=self.current_session.session_id,
                     interactions=self.current_session.total_interactions)

    def record_transcription_latency(self, latency_ms: float) -> None:
        if self.current_session:
            self.current_session.transcription_latencies.append(latency_ms)

    def record_query_latency(self, latency_ms: float) -> None:
        if self.current_session:
            self.current_session.query_latencies.append(latency_ms)

    def record_interaction(self) -> None:
        """Record a completed question/answer turn."""
        if self.current_session:
            self.current_session.total_interactions += 1

    def record_silence(self) -> None:
        if self.current_session:
            self.current_session.silences += 1

    def record_interruption(self) -> None:
        """Record a key press that cut speech short."""
        if self.current_session:
            self.current_session.interruptions += 1

    def record_error(self, component: str, error: str, metadata: Optional[Dict] = None) -> None:
        """Record an error occurrence."""
        if self.current_session:
            self.current_session.errors.append({
                "timestamp": datetime.now().isoformat(),
                "component": component,
                "error": error,
                "metadata": metadata or {},
            })

    def _calculate_latency_stats(self, latencies: List[float]) -> LatencyMetrics:
        """Calculate statistical metrics for a list of latencies."""
        if not latencies:
            return LatencyMetrics(0, 0, 0, 0, 0, 0, 0)

        sorted_latencies = sorted(latencies)
        count = len(sorted_latencies)

        def percentile(p: float) -> float:
            index = int(p * count)
            if index >= count:
                index = count - 1
            return sorted_latencies[index]

        return LatencyMetrics(
            min=sorted_latencies[0],
            max=sorted_latencies[-1],
            avg=sum(latencies) / count,
            p50=percentile(0.5),
            p95=percentile(0.95),
            p99=percentile(0.99),
            samples=count,
        )

    def get_summary(self) -> Dict[str, Any]:
        """Get a summary of current session metrics."""
        if not self.current_session:
            return {"error": "No active session"}

        session_duration = 0.0
        if self.session_start_time:
            session_duration = time.time() - self.session_start_time

        session = self.current_session
        return {
            "session_id": session.session_id,
            "session_duration_seconds": session_duration,
            "total_interactions": session.total_interactions,
            "silences": session.silences,
            "interruptions": session.interruptions,
            "transcription_latency_ms": asdict(
                self._calculate_latency_stats(session.transcription_latencies)
            ),
            "query_latency_ms": asdict(self._calculate_latency_stats(session.query_latencies)),
            "total_errors": len(session.errors),
            "error_rate": len(session.errors) / max(1, session.total_interactions),
        }
