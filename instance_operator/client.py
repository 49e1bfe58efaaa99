"""Thin HTTP client for the instance gateway, used by CTFd-side integrations."""

import json
import os
from typing import Any, Dict, List, Optional

import requests

DEFAULT_TIMEOUT = 15


class InstanceClient:
    """Calls the gateway API; HTTP errors surface as ``requests.HTTPError``."""

    def __init__(self, base: str, token: str = "", timeout: int = DEFAULT_TIMEOUT):
        if not base:
            raise ValueError("Missing gateway API base URL")
        self.base = base.rstrip("/")
        self.token = token
        self.timeout = timeout

    @classmethod
    def from_env(cls, prefix: str = "INSTANCE") -> "InstanceClient":
        return cls(os.getenv(f"{prefix}_API_BASE", ""), os.getenv(f"{prefix}_API_TOKEN", ""))

    def _request(self, method: str, path: str, payload: Optional[Dict[str, Any]] = None,
                 params: Optional[Dict[str, str]] = None) -> requests.Response:
        url = f"{self.base}/{path.lstrip('/')}"
        headers = {"Content-Type": "application/json"}
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"

        response = requests.request(
            method=method, url=url, json=payload, params=params, headers=headers, timeout=self.timeout,
        )
        response.raise_for_status()
        return response

    @staticmethod
    def _results(response: requests.Response) -> List[Dict[str, Any]]:
        items = []
        for line in response.text.splitlines():
            if line.strip():
                items.append(json.loads(line)["result"])
        return items

    def health(self) -> bool:
        return self._request("GET", "health").json().get("status") == "ok"

    def create_instance(self, challenge_id: str, source_id: str,
                        additional: Optional[Dict[str, str]] = None) -> Dict[str, Any]:
        payload = {"challenge_id": challenge_id, "source_id": source_id}
        if additional:
            payload["additional"] = additional
        return self._request("POST", "api/v1/instance", payload).json()

    def get_instance(self, challenge_id: str, source_id: str) -> Optional[Dict[str, Any]]:
        try:
            return self._request("GET", f"api/v1/instance/{challenge_id}/{source_id}").json()
        except requests.HTTPError as exc:
            if exc.response is not None and exc.response.status_code == 404:
                return None
            raise

    def list_instances(self, source_id: Optional[str] = None) -> List[Dict[str, Any]]:
        params = {"source_id": source_id} if source_id else None
        return self._results(self._request("GET", "api/v1/instance", params=params))

    def delete_instance(self, challenge_id: str, source_id: str) -> Dict[str, Any]:
        return self._request("DELETE", f"api/v1/instance/{challenge_id}/{source_id}").json()

    def validate_flag(self, challenge_id: str, source_id: str, flag: str) -> bool:
        """True for a correct flag; a wrong one is answered with 403 and returns False."""
        try:
            self._request("POST", f"api/v1/instance/{challenge_id}/{source_id}/validate", {"flag": flag})
        except requests.HTTPError as exc:
            if exc.response is not None and exc.response.status_code == 403:
                return False
            raise
        return True

    def renew_instance(self, challenge_id: str, source_id: str) -> Dict[str, Any]:
        return self._request("POST", f"api/v1/instance/{challenge_id}/{source_id}/renew").json()

    def list_challenges(self) -> List[Dict[str, Any]]:
        return self._results(self._request("GET", "api/v1/challenge"))

    def get_challenge(self, challenge_id: str) -> Dict[str, Any]:
        return self._request("GET", f"api/v1/challenge/{challenge_id}").json()
