"""HTTP clients for the session, persisted-game and roster services."""

import logging
import time
from typing import Optional

import requests

from .aggregate import Player
from .errors import RemoteStoreError
from .settings import TrackerSettings

logger = logging.getLogger(__name__)


class _HttpStore:
    """
    Shared request loop with retry, in the shape of the stats fetchers.

    Any ``requests`` failure that survives the retries is raised as
    RemoteStoreError so callers only ever handle the tracker's own errors.

    Args:
        base_url: Service root, e.g. ``https://stats.example.org/api``
        session: requests.Session to reuse (a new one is created if omitted)
        settings: Supplies timeout, retry count and retry delay
    """

    def __init__(
        self,
        base_url: str,
        session: Optional[requests.Session] = None,
        settings: Optional[TrackerSettings] = None,
    ):
        settings = settings or TrackerSettings()
        self.base_url = base_url.rstrip("/")
        self.session = session or requests.Session()
        self.timeout = settings.remote_timeout
        self.max_retries = settings.remote_retries
        self.retry_delay = settings.remote_retry_delay

    def _request(self, method: str, path: str, passthrough: tuple = (), **kwargs):
        url = f"{self.base_url}{path}"
        for attempt in range(self.max_retries + 1):
            try:
                response = self.session.request(method, url, timeout=self.timeout, **kwargs)
                if response.status_code in passthrough:
                    return response
                response.raise_for_status()
                return response
            except requests.exceptions.HTTPError as e:
                # Client errors will not succeed on retry
                if e.response is not None and e.response.status_code < 500:
                    raise RemoteStoreError(f"{method} {url} rejected: {e}") from e
                error = e
            except requests.exceptions.RequestException as e:
                error = e

            logger.warning("%s %s failed (attempt %d): %s", method, url, attempt + 1, error)
            if attempt < self.max_retries:
                time.sleep(self.retry_delay)
        raise RemoteStoreError(f"{method} {url} failed: {error}") from error


class HttpSessionStore(_HttpStore):
    def create_session(self, event_id) -> str:
        response = self._request("POST", "/sessions", json={"eventId": event_id})
        return response.json()["sessionKey"]

    def find_session(self, event_id) -> Optional[dict]:
        response = self._request("GET", "/sessions", params={"eventId": event_id})
        sessions = response.json()
        if not sessions:
            return None
        return max(sessions, key=lambda s: (s.get("createdAt") or 0, s["sessionId"]))

    def fetch_session(self, session_key: str) -> dict:
        response = self._request("GET", f"/sessions/{session_key}")
        return response.json()

    def append_event(self, session_id: int, event: dict) -> bool:
        """Returns False when the service already had this event id (HTTP 409)."""
        response = self._request(
            "POST", f"/sessions/{session_id}/events", passthrough=(409,), json=event
        )
        return response.status_code != 409

    def update_session(self, session_id: int, partial_state: dict) -> None:
        self._request("PATCH", f"/sessions/{session_id}", json=partial_state)

    def set_session_active(self, session_id: int, active: bool) -> None:
        self._request("PUT", f"/sessions/{session_id}/active", json={"isActive": bool(active)})

    def delete_sessions(self, event_id) -> int:
        response = self._request("DELETE", "/sessions", params={"eventId": event_id})
        return int(response.json().get("deleted", 0))


class HttpGameStore(_HttpStore):
    def create_game_record(self, event_id, opponent_name: str) -> int:
        response = self._request(
            "POST", "/games", json={"eventId": event_id, "opponentName": opponent_name}
        )
        return response.json()["id"]

    def upsert_player_game_stats(self, game_id: int, player_id: int, stats: dict) -> None:
        self._request("PUT", f"/games/{game_id}/players/{player_id}", json=stats)

    def update_game_score(self, game_id: int, home_score: int, away_score: int, result: str) -> None:
        self._request(
            "PUT",
            f"/games/{game_id}/score",
            json={"homeScore": home_score, "awayScore": away_score, "result": result},
        )

    def find_game(self, event_id) -> Optional[dict]:
        response = self._request("GET", "/games", params={"eventId": event_id})
        games = response.json()
        return games[0] if games else None

    def get_game(self, game_id: int) -> Optional[dict]:
        response = self._request("GET", f"/games/{game_id}", passthrough=(404,))
        if response.status_code == 404:
            return None
        return response.json()


class HttpRosterStore(_HttpStore):
    def list_players(self) -> list[Player]:
        response = self._request("GET", "/players")
        return [Player.from_dict(item) for item in response.json()]

    def get_event_metadata(self, event_id) -> dict:
        response = self._request("GET", f"/events/{event_id}")
        data = response.json()
        return {
            "name": data.get("name", ""),
            "opponentName": data.get("opponentName", ""),
        }
