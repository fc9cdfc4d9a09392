import logging

import requests

from enigma.errors import ERRORS_BY_CODE, TransientError

logger = logging.getLogger(__name__)


class GameApiClient:
    """Thin wrapper over the ``/api/game`` surface.

    Error responses are raised as the matching :mod:`enigma.errors` class, so
    callers branch on ``NoActiveSession``/``AlreadyCompleted`` rather than on
    status codes. Network failures and unmapped errors raise
    :class:`TransientError`.
    """

    def __init__(self, base_url='', token=None, session=None, timeout=10):
        self.base_url = base_url.rstrip('/')
        self.token = token
        self.session = session or requests.Session()
        self.timeout = timeout

    def _request(self, method, path, json=None, params=None, auth=True):
        headers = {}
        if auth and self.token:
            headers['Authorization'] = f"Bearer {self.token}"
        try:
            resp = self.session.request(
                method, f"{self.base_url}{path}",
                json=json, params=params, headers=headers, timeout=self.timeout,
            )
        except requests.RequestException as exc:
            logger.warning("%s %s failed: %s", method, path, exc)
            raise TransientError(str(exc)) from exc

        try:
            body = resp.json()
        except ValueError:
            body = None
        if resp.status_code >= 400:
            body = body if isinstance(body, dict) else {}
            error_cls = ERRORS_BY_CODE.get(body.get('code'), TransientError)
            extra = {k: v for k, v in body.items() if k not in ('error', 'code')}
            raise error_cls(body.get('error'), **extra)
        return body

    def start_session(self) -> dict:
        return self._request('POST', '/api/game/session/start')['session']

    def push_update(self, session_id, delta, action=None) -> dict:
        payload = dict(delta, session_id=session_id)
        if action:
            payload['action'] = action
        return self._request('POST', '/api/game/session/update', json=payload)['session']

    def get_active(self):
        return self._request('GET', '/api/game/session/active')['session']

    def complete(self, final_score, final_portals, final_time_survived) -> dict:
        return self._request('POST', '/api/game/complete', json={
            'final_score': final_score,
            'final_portals': final_portals,
            'final_time_survived': final_time_survived,
        })['completion']

    def status(self) -> dict:
        return self._request('GET', '/api/game/status')

    def leaderboard(self, limit=None) -> list:
        params = {'limit': limit} if limit else None
        return self._request('GET', '/api/game/leaderboard', params=params, auth=False)['leaderboard']

    def my_rank(self):
        return self._request('GET', '/api/game/leaderboard/me')['entry']

    def history(self) -> list:
        return self._request('GET', '/api/game/sessions')['sessions']

    def session_detail(self, session_id) -> dict:
        return self._request('GET', f"/api/game/sessions/{session_id}")['session']
