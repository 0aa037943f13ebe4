"""
contractor_scheduling/services/sync/hubspot.py

HubSpot CRM client (CRM v3 objects API).

Implements the three calls the reconciler needs:
- find_record_by_key - search by the local_record_key property
- create_record
- update_record

Every failure (network, timeout, 4xx/5xx) becomes SyncError. Synchronous on
purpose: the worker calls it through asyncio.to_thread.
"""

import logging
from typing import Optional, Protocol

import httpx

from ...errors import SyncError

logger = logging.getLogger(__name__)

KEY_PROPERTY = "local_record_key"


class CrmClient(Protocol):
    def find_record_by_key(self, object_type: str, key: str) -> Optional[str]: ...

    def create_record(self, object_type: str, fields: dict) -> str: ...

    def update_record(self, object_type: str, remote_id: str, fields: dict) -> None: ...


class HubSpotClient:
    """Synchronous client for HubSpot CRM objects."""

    def __init__(
        self,
        access_token: str,
        base_url: str = "https://api.hubapi.com",
        timeout: float = 10.0,
        transport: httpx.BaseTransport | None = None,
    ):
        self.base_url = base_url.rstrip("/")
        self._client = httpx.Client(
            base_url=self.base_url,
            timeout=timeout,
            headers={
                "Authorization": f"Bearer {access_token}",
                "Content-Type": "application/json",
            },
            transport=transport,
        )

    def close(self) -> None:
        self._client.close()

    def _request(self, method: str, path: str, **kwargs) -> dict:
        try:
            resp = self._client.request(method, path, **kwargs)
        except httpx.HTTPError as e:
            logger.warning(f"HubSpot request failed: {method} {path} -> {e}")
            raise SyncError("crm_unreachable", f"HubSpot request failed: {e}") from e

        if resp.status_code >= 400:
            logger.warning(f"HubSpot error: {method} {path} -> {resp.status_code}")
            raise SyncError(
                "crm_rejected",
                f"HubSpot returned {resp.status_code}: {resp.text[:200]}",
            )

        if resp.status_code == 204 or not resp.content:
            return {}
        try:
            data = resp.json()
        except ValueError:
            logger.warning(f"HubSpot returned non-JSON body: {method} {path} -> {resp.status_code}")
            raise SyncError(
                "crm_bad_response",
                f"HubSpot returned a non-JSON body ({resp.headers.get('content-type', 'unknown')})",
            ) from None
        if not isinstance(data, dict):
            raise SyncError("crm_bad_response", "HubSpot returned an unexpected JSON payload")
        return data

    # ------------------------------------------------------------------
    # Objects
    # ------------------------------------------------------------------

    def find_record_by_key(self, object_type: str, key: str) -> Optional[str]:
        """POST /crm/v3/objects/{type}/search - id of the record carrying key."""
        data = self._request(
            "POST",
            f"/crm/v3/objects/{object_type}/search",
            json={
                "filterGroups": [{
                    "filters": [{
                        "propertyName": KEY_PROPERTY,
                        "operator": "EQ",
                        "value": key,
                    }],
                }],
                "properties": [KEY_PROPERTY],
                "limit": 1,
            },
        )
        results = data.get("results") or []
        if not results:
            return None
        try:
            return str(results[0]["id"])
        except (KeyError, TypeError):
            raise SyncError("crm_bad_response", "HubSpot search result has no id") from None

    def create_record(self, object_type: str, fields: dict) -> str:
        """POST /crm/v3/objects/{type}"""
        data = self._request(
            "POST",
            f"/crm/v3/objects/{object_type}",
            json={"properties": fields},
        )
        if "id" not in data:
            raise SyncError("crm_bad_response", "HubSpot create response has no id")
        return str(data["id"])

    def update_record(self, object_type: str, remote_id: str, fields: dict) -> None:
        """PATCH /crm/v3/objects/{type}/{id}"""
        self._request(
            "PATCH",
            f"/crm/v3/objects/{object_type}/{remote_id}",
            json={"properties": fields},
        )
