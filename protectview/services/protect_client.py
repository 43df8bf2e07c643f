"""
Thin adapter over the uiprotect API client.

Everything that touches the vendor library lives here so the caches only see
a small surface: login, fetch_bootstrap, is_authenticated, stream_url, close.
"""
from urllib.parse import urlparse

from uiprotect import ProtectApiClient

from ..errors import CameraNotFound, StreamError


def split_base_url(base_url: str) -> tuple[str, int]:
    """Turn 'https://10.0.0.1[:port]' (scheme optional) into (host, port)"""
    value = str(base_url).strip()
    if '://' not in value:
        value = f'https://{value}'
    parsed = urlparse(value)
    if not parsed.hostname:
        raise ValueError(f'Invalid NVR address: {base_url!r}')
    return parsed.hostname, parsed.port or 443


class ProtectClient:
    """One authenticated uiprotect client, scoped to a single (NVR, user) pair"""

    def __init__(self, base_url: str, username: str, password: str, allow_self_signed: bool = False):
        host, port = split_base_url(base_url)
        self.base_url = base_url
        self.username = username
        # TLS trust is decided per client, never for the whole process
        self.verify_ssl = not allow_self_signed
        self._api = ProtectApiClient(
            host=host,
            port=port,
            username=username,
            password=password,
            verify_ssl=self.verify_ssl,
        )

    def login_signal(self):
        """uiprotect reports login outcome through its return path only"""
        return None

    async def login(self) -> bool:
        await self._api.authenticate()
        return self._api.is_authenticated()

    def is_authenticated(self) -> bool:
        return self._api.is_authenticated()

    async def fetch_bootstrap(self) -> dict:
        """Refresh the bootstrap and return it in the NVR's own JSON shape"""
        await self._api.update()
        return self._api.bootstrap.unifi_dict()

    def stream_url(self, camera_id: str, channel: int = 0) -> str:
        """RTSPS URL for a camera channel, falling back to any enabled channel"""
        camera = self._api.bootstrap.cameras.get(camera_id)
        if camera is None:
            raise CameraNotFound()

        enabled = [c for c in camera.channels if c.is_rtsp_enabled]
        if not enabled:
            raise StreamError(f'RTSP is disabled on every channel of {camera.name}')

        selected = next((c for c in enabled if c.id == channel), enabled[0])
        return selected.rtsps_url

    async def close(self) -> None:
        await self._api.close_session()
