import threading
import time
from collections import defaultdict, deque
from datetime import timedelta
from typing import Deque, Dict, Optional

import jwt
from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from passlib.context import CryptContext
from pymongo.database import Database

from app_logger import get_logger
from config import settings
from database import get_db, parse_object_id, utcnow

log = get_logger("security")

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")
bearer = HTTPBearer(auto_error=False)

# At least one lowercase, one uppercase, one digit and one of @$!%*?&
PASSWORD_PATTERN = r"^(?=.*[a-z])(?=.*[A-Z])(?=.*\d)(?=.*[@$!%*?&]).{8,}$"


# -------------------- Passwords --------------------
def hash_password(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(password: str, hashed: str) -> bool:
    if not hashed:
        return False
    return pwd_context.verify(password, hashed)


# -------------------- Tokens --------------------
def create_access_token(teacher_id: str, expires_delta: Optional[timedelta] = None) -> str:
    expire = utcnow() + (expires_delta or timedelta(days=settings.JWT_EXPIRES_DAYS))
    payload = {"sub": str(teacher_id), "exp": expire}
    return jwt.encode(payload, settings.JWT_SECRET, algorithm=settings.JWT_ALGORITHM)


def decode_access_token(token: str) -> str:
    try:
        payload = jwt.decode(token, settings.JWT_SECRET, algorithms=[settings.JWT_ALGORITHM])
    except jwt.ExpiredSignatureError:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Token expired")
    except jwt.InvalidTokenError:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token")
    teacher_id = payload.get("sub")
    if not teacher_id:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token")
    return teacher_id


def get_current_teacher(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer),
    database: Database = Depends(get_db),
) -> dict:
    """Resolve the bearer token to an active teacher document."""
    if credentials is None or not credentials.credentials:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="No token provided, authorization denied",
        )
    teacher_id = decode_access_token(credentials.credentials)
    try:
        oid = parse_object_id(teacher_id)
    except HTTPException:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token")
    teacher = database["teacher"].find_one({"_id": oid})
    if not teacher or not teacher.get("is_active", True):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Token is not valid or user is inactive",
        )
    return teacher


def require_admin(teacher: dict = Depends(get_current_teacher)) -> dict:
    if teacher.get("role") != "admin":
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Admin access required")
    return teacher


# -------------------- Rate limiting --------------------
class RateLimiter:
    """
    Per-client sliding window limiter, used as a router dependency.

    Keeps the timestamps of recent requests for each client address and
    answers 429 once ``max_requests`` fall inside the last ``window_seconds``.
    State is in-process, so each worker counts on its own.
    """

    def __init__(self, max_requests: int, window_seconds: float, clock=time.monotonic):
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self._clock = clock
        self._hits: Dict[str, Deque[float]] = defaultdict(deque)
        self._lock = threading.Lock()
        self._last_sweep = clock()

    def hit(self, key: str) -> bool:
        now = self._clock()
        with self._lock:
            if now - self._last_sweep >= self.window_seconds:
                self._sweep(now)
            hits = self._hits[key]
            while hits and now - hits[0] >= self.window_seconds:
                hits.popleft()
            if len(hits) >= self.max_requests:
                return False
            hits.append(now)
            return True

    def _sweep(self, now: float) -> None:
        """Forget clients whose newest hit has left the window."""
        stale = [k for k, hits in self._hits.items() if not hits or now - hits[-1] >= self.window_seconds]
        for k in stale:
            del self._hits[k]
        self._last_sweep = now

    def client_count(self) -> int:
        with self._lock:
            return len(self._hits)

    def reset(self) -> None:
        with self._lock:
            self._hits.clear()

    def __call__(self, request: Request) -> None:
        key = request.client.host if request.client else "unknown"
        if not self.hit(key):
            log.warning("Rate limit exceeded", extra={"client": key, "path": request.url.path})
            raise HTTPException(
                status_code=status.HTTP_429_TOO_MANY_REQUESTS,
                detail="Too many requests from this IP, please try again later.",
            )


auth_rate_limiter = RateLimiter(
    max_requests=settings.AUTH_RATE_LIMIT_MAX_REQUESTS,
    window_seconds=settings.AUTH_RATE_LIMIT_WINDOW_SECONDS,
)
