"""
Search Audit Log
Records failed media searches for failure-rate analysis
"""

import json
import threading
from collections import Counter
from dataclasses import asdict, dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional

from ..config import get_settings
from ..utils.logger import get_logger

logger = get_logger()


@dataclass
class SearchFailure:
    query: str
    source: str
    search_type: str
    reason: str
    attempt_number: int = 1
    orientation: Optional[str] = None
    target_aspect_ratio: Optional[float] = None
    job_id: Optional[str] = None
    timestamp: str = field(default_factory=lambda: datetime.utcnow().isoformat())


class SearchAuditLog:
    """Append-only JSON-lines log. Recording never raises."""

    def __init__(self, path: str):
        self.path = Path(path)
        self._lock = threading.Lock()

    def record(self, failure: SearchFailure):
        logger.info(
            f"Search failure [{failure.source}/{failure.search_type}] "
            f"'{failure.query}' attempt {failure.attempt_number}: {failure.reason}"
        )
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with self._lock, open(self.path, "a", encoding="utf-8") as handle:
                handle.write(json.dumps(asdict(failure), ensure_ascii=False) + "\n")
        except OSError as exc:
            logger.warning(f"Could not write search audit entry: {exc}")

    def entries(self) -> List[SearchFailure]:
        if not self.path.exists():
            return []
        failures = []
        with self._lock, open(self.path, encoding="utf-8") as handle:
            for line in handle:
                line = line.strip()
                if not line:
                    continue
                try:
                    failures.append(SearchFailure(**json.loads(line)))
                except (ValueError, TypeError) as exc:
                    logger.debug(f"Skipping malformed audit line: {exc}")
        return failures

    def stats(self, recent: int = 10) -> Dict[str, Any]:
        """Failure totals grouped by source, type and reason"""
        failures = self.entries()
        return {
            "total_failures": len(failures),
            "by_source": dict(Counter(f.source for f in failures)),
            "by_search_type": dict(Counter(f.search_type for f in failures)),
            "common_reasons": [
                {"reason": reason, "count": count}
                for reason, count in Counter(f.reason for f in failures).most_common(10)
            ],
            "recent_failures": [asdict(f) for f in failures[-recent:]],
        }

    def clear(self):
        with self._lock:
            self.path.unlink(missing_ok=True)


_audit_log: Optional[SearchAuditLog] = None


def get_search_audit() -> SearchAuditLog:
    global _audit_log
    if _audit_log is None:
        _audit_log = SearchAuditLog(str(Path(get_settings().data_dir) / "search_failures.jsonl"))
    return _audit_log
