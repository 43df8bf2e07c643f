"""
In-memory viewer sessions.
Each session binds an opaque cookie token to NVR connection credentials.
Sessions are lost on restart.
"""
import secrets
import threading
import time
from dataclasses import dataclass, field
from typing import Optional

from flask_login import UserMixin


@dataclass(eq=False)
class ViewerSession(UserMixin):
    """Credentials for one browser, looked up from the bp_sess cookie"""
    id: str
    base_url: str
    username: Optional[str] = None
    password: Optional[str] = field(default=None, repr=False)
    access_key: Optional[str] = field(default=None, repr=False)
    allow_self_signed: bool = False
    created_at: float = 0.0

    @property
    def short_id(self) -> str:
        return f'{self.id[:8]}...'

    @property
    def has_login_credentials(self) -> bool:
        return bool(self.username and self.password)


class SessionStore:
    """Thread-safe session map with lazy expiry"""

    def __init__(self, max_age: float = 3600, clock=time.time):
        self.max_age = max_age
        self._clock = clock
        self._sessions = {}
        self._lock = threading.Lock()

    def create(self, base_url: str, username: str = None, password: str = None,
               access_key: str = None, allow_self_signed: bool = False) -> ViewerSession:
        session = ViewerSession(
            id=secrets.token_hex(16),
            base_url=base_url,
            username=username or None,
            password=password or None,
            access_key=access_key or None,
            allow_self_signed=bool(allow_self_signed),
            created_at=self._clock(),
        )
        with self._lock:
            self._sessions[session.id] = session
        print(f'[Session] Created session {session.short_id}')
        return session

    def get(self, session_id: Optional[str]) -> Optional[ViewerSession]:
        if not session_id:
            return None
        with self._lock:
            session = self._sessions.get(session_id)
            if session is None:
                return None
            if self._clock() - session.created_at > self.max_age:
                del self._sessions[session_id]
                print(f'[Session] Expired session {session.short_id}')
                return None
            return session

    def delete(self, session_id: Optional[str]) -> bool:
        if not session_id:
            return False
        with self._lock:
            return self._sessions.pop(session_id, None) is not None

    def __len__(self):
        with self._lock:
            return len(self._sessions)
