import os

# 세션 설정
SESSION_COOKIE = "cbt_session"
SESSION_TTL = int(os.getenv("CBT_SESSION_TTL", "3600"))        # 1시간
CLEANUP_INTERVAL = int(os.getenv("CBT_CLEANUP_INTERVAL", "300"))  # 5분

# CORS
ALLOW_ORIGINS = [o.strip() for o in os.getenv("CBT_ALLOW_ORIGINS", "*").split(",") if o.strip()]
