import os

# 기본 디렉토리 설정
BASE_DIR = os.path.dirname(os.path.abspath(__file__))

# 경로 설정
LOG_FILE = os.getenv("CBT_LOG_FILE", os.path.join(BASE_DIR, "launch.log"))
AUDIT_LOG_DIR = os.getenv("CBT_AUDIT_LOG_DIR", "")   # 비어 있으면 메모리에만 기록

# 서버 설정
DEFAULT_HOST = os.getenv("HOST", "127.0.0.1")
DEFAULT_PORT = int(os.getenv("PORT", "8000"))

# 타이머 설정
TICK_INTERVAL = float(os.getenv("CBT_TICK_INTERVAL", "1.0"))   # 초
TIME_WARNING_SECONDS = 300                                     # 5분 미만이면 경고 표시

# 제출 설정
SUBMIT_MAX_ATTEMPTS = int(os.getenv("CBT_SUBMIT_MAX_ATTEMPTS", "2"))       # 최초 1회 + 재시도 1회
SUBMIT_BACKOFF_BASE = float(os.getenv("CBT_SUBMIT_BACKOFF_BASE", "1.0"))
MAX_FORCED_TIMEOUT_ATTEMPTS = 2    # 시간 종료 후 강제 제출 시도 횟수

# 감사 로그 설정
AUDIT_BUFFER_SIZE = int(os.getenv("CBT_AUDIT_BUFFER_SIZE", "10000"))   # 메모리에 보관할 최근 이벤트 수
