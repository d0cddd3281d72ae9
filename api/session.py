"""
api/session.py — 브라우저별 인메모리 세션 (쿠키 기반)

쿠키 1개 = BrowserSession 1개. 로그인 응시자와 이 브라우저에서 진행 중인 ExamSession을 보관한다.
마지막 접근 후 SESSION_TTL(기본 1시간)이 지나면 만료.
응시 자체는 AttemptRegistry(api/attempts.py)에 남으므로 세션이 만료되어도 답안은 유실되지 않는다.
"""

import threading
import time
import uuid
from typing import Optional

from pydantic import BaseModel, Field

import api.config as api_config
from school_cbt.services.collaborators import Candidate
from school_cbt.services.exam_session import ExamSession


class BrowserSession(BaseModel):
    """
    브라우저 1개의 세션 상태.

    Attributes:
        candidate:    로그인한 응시자 (미로그인 시 None).
        exam_session: 이 브라우저에서 시작한 응시 (없으면 None).
        touched_at:   마지막 접근 시각 (time.time() 기준).
    """

    candidate: Optional[Candidate] = None
    exam_session: Optional[ExamSession] = None
    touched_at: float = Field(default_factory=time.time)

    model_config = {"arbitrary_types_allowed": True}


_lock = threading.Lock()
_sessions: dict[str, BrowserSession] = {}


def _is_expired(browser: BrowserSession, now: float) -> bool:
    return now - browser.touched_at > api_config.SESSION_TTL


def create_session() -> str:
    """새 세션을 생성하고 세션 ID를 반환."""
    sid = uuid.uuid4().hex
    with _lock:
        _sessions[sid] = BrowserSession()
    return sid


def get_session(sid: str) -> Optional[BrowserSession]:
    """세션 ID로 세션을 가져옴. 만료되었거나 없으면 None. 접근 시 만료 시각 갱신."""
    now = time.time()
    with _lock:
        browser = _sessions.get(sid)
        if browser is None:
            return None
        if _is_expired(browser, now):
            del _sessions[sid]
            return None
        browser.touched_at = now
        return browser


def get_candidate(sid: str) -> Optional[Candidate]:
    browser = get_session(sid)
    return browser.candidate if browser else None


def set_candidate(sid: str, candidate: Optional[Candidate]) -> None:
    browser = get_session(sid)
    if browser is not None:
        browser.candidate = candidate


def get_exam_session(sid: str) -> Optional[ExamSession]:
    browser = get_session(sid)
    return browser.exam_session if browser else None


def set_exam_session(sid: str, exam_session: Optional[ExamSession]) -> None:
    browser = get_session(sid)
    if browser is not None:
        browser.exam_session = exam_session


def reset(sid: str, keep_candidate: bool = True) -> Optional[Candidate]:
    """
    세션 초기화 (기본적으로 로그인 정보는 유지).

    Returns:
        초기화 직전의 로그인 응시자.
    """
    with _lock:
        browser = _sessions.get(sid)
        if browser is None:
            return None
        previous = browser.candidate
        _sessions[sid] = BrowserSession(candidate=previous if keep_candidate else None)
        return previous


def is_signed_in(candidate_id: str) -> bool:
    """만료되지 않은 세션 중 해당 응시자로 로그인된 세션이 있는지."""
    now = time.time()
    with _lock:
        return any(
            b.candidate is not None and b.candidate.candidate_id == candidate_id and not _is_expired(b, now)
            for b in _sessions.values()
        )


def cleanup_expired() -> list[BrowserSession]:
    """만료된 세션을 정리하고 제거된 세션 목록을 반환."""
    now = time.time()
    with _lock:
        expired = [sid for sid, b in _sessions.items() if _is_expired(b, now)]
        return [_sessions.pop(sid) for sid in expired]


class SessionIdentityProvider:
    """쿠키 세션에 저장된 로그인 응시자를 IdentityProvider로 노출."""

    def __init__(self, sid: str):
        self._sid = sid

    def current_candidate(self) -> Optional[Candidate]:
        return get_candidate(self._sid)
