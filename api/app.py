"""
api/app.py — FastAPI 앱 인스턴스 + 세션 미들웨어 + 협력자(카탈로그/제출 서비스) 주입

백그라운드 작업:
  - 카운트다운 루프 (asyncio) : TICK_INTERVAL 마다 진행 중인 모든 응시를 tick → 요청이 없어도 시간 종료 시 강제 제출
  - 세션 정리 스레드          : CLEANUP_INTERVAL 마다 만료된 브라우저 세션과 해당 응시자의 알림 큐 정리
"""

import asyncio
import logging
import threading
import time
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, Response
from fastapi.middleware.cors import CORSMiddleware

from api.attempts import AttemptRegistry
from api.config import ALLOW_ORIGINS, CLEANUP_INTERVAL, SESSION_COOKIE, SESSION_TTL
from api.routes import router
from api.sample_exams import SAMPLE_EXAMS
import api.session as session
from config import AUDIT_LOG_DIR, TICK_INTERVAL
from school_cbt.services.audit import AuditLog
from school_cbt.services.collaborators import (
    InMemoryExamCatalog,
    InMemoryNotificationSink,
    InMemorySubmissionService,
    SystemClock,
)

logger = logging.getLogger(__name__)


def expire_sessions(app: FastAPI) -> int:
    """
    만료된 브라우저 세션을 정리한다. 제거된 수 반환.

    응시는 AttemptRegistry에 남아 카운트다운 루프가 계속 진행시키므로 답안은 유실되지 않는다.
    해당 응시자가 다른 브라우저에도 로그인되어 있지 않으면 알림 큐도 비운다.
    """
    removed = session.cleanup_expired()
    for browser in removed:
        if browser.candidate is None:
            continue
        candidate_id = browser.candidate.candidate_id
        if not session.is_signed_in(candidate_id):
            app.state.notifier.discard(candidate_id)
    if removed:
        logger.info(f"만료 세션 {len(removed)}개 정리")
    return len(removed)


async def _countdown_loop(app: FastAPI, interval: float) -> None:
    while True:
        await asyncio.sleep(interval)
        await app.state.attempts.tick_active()


def create_app(catalog=None, submissions=None, clock=None, sleep=None, tick_interval: float = TICK_INTERVAL) -> FastAPI:

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        task = asyncio.create_task(_countdown_loop(app, tick_interval))
        app.state.countdown_task = task
        logger.info(f"카운트다운 루프 시작 ({tick_interval}초 간격)")
        try:
            yield
        finally:
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                logger.info("카운트다운 루프 종료")

    app = FastAPI(title="School Portal CBT", docs_url=None, redoc_url=None, lifespan=lifespan)

    # 협력자: 지정하지 않으면 인메모리 구현 + 샘플 시험지 사용
    app.state.catalog = catalog if catalog is not None else InMemoryExamCatalog(SAMPLE_EXAMS)
    app.state.submissions = submissions if submissions is not None else InMemorySubmissionService()
    app.state.clock = clock if clock is not None else SystemClock()
    app.state.sleep = sleep
    app.state.notifier = InMemoryNotificationSink()
    app.state.audit = AuditLog(AUDIT_LOG_DIR or None)
    app.state.attempts = AttemptRegistry()

    app.add_middleware(
        CORSMiddleware,
        allow_origins=ALLOW_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # 세션 미들웨어: 쿠키에서 세션 ID를 읽고, 없으면 새로 발급
    @app.middleware("http")
    async def session_middleware(request: Request, call_next):
        sid = request.cookies.get(SESSION_COOKIE)
        if not sid or session.get_session(sid) is None:
            sid = session.create_session()

        request.state.session_id = sid
        response: Response = await call_next(request)
        response.set_cookie(
            key=SESSION_COOKIE,
            value=sid,
            httponly=True,
            samesite="lax",
            max_age=SESSION_TTL,
        )
        return response

    app.include_router(router)

    @app.get("/")
    async def index():
        return {"app": "School Portal CBT", "ok": True}

    # 만료 세션 주기적 정리
    def _cleanup_loop():
        while True:
            time.sleep(CLEANUP_INTERVAL)
            expire_sessions(app)

    t = threading.Thread(target=_cleanup_loop, daemon=True)
    t.start()

    return app
