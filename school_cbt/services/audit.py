"""
services/audit.py

시험 세션 감사 로그.
답안 변경 여부는 기록하지만 답안 내용은 기록하지 않는다.
디렉토리가 설정되면 일자별 JSONL 파일에도 추가 기록한다.
메모리 버퍼는 최근 AUDIT_BUFFER_SIZE 건으로 제한된다.
"""

import json
import logging
import threading
from collections import deque
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Deque, Dict, List, Optional

from config import AUDIT_BUFFER_SIZE

logger = logging.getLogger(__name__)


class AuditLog:

    def __init__(self, log_dir: Optional[str] = None, max_entries: int = AUDIT_BUFFER_SIZE):
        self._lock = threading.Lock()
        # 메모리에는 최근 max_entries 건만 유지 (전체 이력은 파일)
        self._entries: Deque[Dict[str, Any]] = deque(maxlen=max_entries)
        self._log_dir = Path(log_dir) if log_dir else None

    def record(self, event: str, **fields: Any) -> Dict[str, Any]:
        entry = {"timestamp": datetime.now(timezone.utc).isoformat(), "event": event, **fields}
        with self._lock:
            self._entries.append(entry)
        if self._log_dir is not None:
            self._append_file(entry)
        return entry

    def entries(self, event: Optional[str] = None, attempt_id: Optional[str] = None) -> List[Dict[str, Any]]:
        with self._lock:
            items = list(self._entries)
        if event is not None:
            items = [e for e in items if e["event"] == event]
        if attempt_id is not None:
            items = [e for e in items if e.get("attempt_id") == attempt_id]
        return items

    def _append_file(self, entry: Dict[str, Any]) -> None:
        try:
            self._log_dir.mkdir(parents=True, exist_ok=True)
            audit_file = self._log_dir / f"{datetime.now(timezone.utc).strftime('%Y-%m-%d')}.jsonl"
            with self._lock, open(audit_file, "a", encoding="utf-8") as f:
                f.write(json.dumps(entry, ensure_ascii=False) + "\n")
        except OSError as e:
            # 파일 기록 실패가 시험 진행을 막아서는 안 됨 (메모리 기록은 유지)
            logger.error(f"감사 로그 파일 기록 실패: {e}")
