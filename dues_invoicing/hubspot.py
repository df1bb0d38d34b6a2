from __future__ import annotations

import http.client
import json
import logging
import urllib.error
import urllib.parse
import urllib.request
from typing import Any

from .config import HubSpotSettings
from .errors import CrmLookupError

_LOG = logging.getLogger(__name__)

SEARCH_PAGE_SIZE = 100


class HubSpotError(CrmLookupError):
    def __init__(self, message: str, *, status: int | None = None) -> None:
        super().__init__(message)
        self.status = status


def _json_request(
    method: str,
    url: str,
    *,
    headers: dict[str, str] | None = None,
    body: bytes | None = None,
    timeout: float = 30.0,
) -> dict[str, Any]:
    request = urllib.request.Request(url=url, method=method, headers=headers or {}, data=body)
    try:
        with urllib.request.urlopen(request, timeout=timeout) as response:
            payload = response.read().decode("utf-8")
    except urllib.error.HTTPError as exc:
        details = exc.read().decode("utf-8", errors="replace")
        raise HubSpotError(f"HubSpot request failed ({exc.code}): {details}", status=exc.code) from exc
    except urllib.error.URLError as exc:
        raise HubSpotError(f"HubSpot request error: {exc.reason}") from exc
    except (OSError, http.client.HTTPException) as exc:
        raise HubSpotError(f"Unexpected HubSpot request error: {exc}") from exc
    except UnicodeDecodeError as exc:
        raise HubSpotError("HubSpot response was not valid UTF-8.") from exc

    if not payload.strip():
        return {}
    try:
        parsed = json.loads(payload)
    except json.JSONDecodeError as exc:
        raise HubSpotError("HubSpot response was not valid JSON.") from exc
    return parsed if isinstance(parsed, dict) else {"results": parsed}


class HubSpotClient:
    """Thin CRM v3/v4 wrapper; one instance per run."""

    def __init__(self, settings: HubSpotSettings) -> None:
        self._base_url = settings.base_url.rstrip("/")
        self._token = settings.access_token
        self._timeout = settings.timeout_seconds

    def _request(self, method: str, path: str, payload: dict[str, Any] | list[Any] | None = None) -> dict[str, Any]:
        headers = {
            "Authorization": f"Bearer {self._token}",
            "Accept": "application/json",
        }
        body = None
        if payload is not None:
            headers["Content-Type"] = "application/json"
            body = json.dumps(payload).encode("utf-8")
        return _json_request(method, f"{self._base_url}{path}", headers=headers, body=body, timeout=self._timeout)

    def search(
        self,
        object_type: str,
        filters: list[dict[str, Any]],
        properties: list[str],
        *,
        sorts: list[dict[str, str]] | None = None,
        limit: int | None = None,
    ) -> list[dict[str, Any]]:
        """Run a CRM search and follow paging until exhausted or ``limit`` rows are collected."""
        results: list[dict[str, Any]] = []
        after: str | None = None
        while True:
            request: dict[str, Any] = {
                "filterGroups": [{"filters": filters}],
                "properties": properties,
                "sorts": sorts or [{"propertyName": "hs_object_id", "direction": "ASCENDING"}],
                "limit": min(limit, SEARCH_PAGE_SIZE) if limit else SEARCH_PAGE_SIZE,
            }
            if after:
                request["after"] = after
            payload = self._request("POST", f"/crm/v3/objects/{object_type}/search", request)
            rows = payload.get("results")
            if isinstance(rows, list):
                results.extend(row for row in rows if isinstance(row, dict))
            if limit and len(results) >= limit:
                return results[:limit]
            after = ((payload.get("paging") or {}).get("next") or {}).get("after")
            if not after:
                return results

    def get_by_id(self, object_type: str, object_id: str, properties: list[str]) -> dict[str, Any]:
        query = urllib.parse.urlencode({"properties": ",".join(properties)})
        return self._request("GET", f"/crm/v3/objects/{object_type}/{urllib.parse.quote(str(object_id))}?{query}")

    def create(
        self,
        object_type: str,
        properties: dict[str, Any],
        associations: list[dict[str, Any]] | None = None,
    ) -> dict[str, Any]:
        payload: dict[str, Any] = {"properties": properties}
        if associations:
            payload["associations"] = associations
        created = self._request("POST", f"/crm/v3/objects/{object_type}", payload)
        if not created.get("id"):
            raise HubSpotError(f"HubSpot did not return an id for the new {object_type} record.")
        return created

    def update(self, object_type: str, object_id: str, properties: dict[str, Any]) -> dict[str, Any]:
        return self._request(
            "PATCH",
            f"/crm/v3/objects/{object_type}/{urllib.parse.quote(str(object_id))}",
            {"properties": properties},
        )

    def create_association(
        self,
        from_type: str,
        from_id: str,
        to_type: str,
        to_id: str,
        association_type_id: int,
    ) -> None:
        _LOG.debug("Associating %s:%s -> %s:%s (type %s)", from_type, from_id, to_type, to_id, association_type_id)
        self._request(
            "PUT",
            f"/crm/v4/objects/{from_type}/{from_id}/associations/{to_type}/{to_id}",
            [{"associationCategory": "HUBSPOT_DEFINED", "associationTypeId": int(association_type_id)}],
        )

    def get_associations(self, from_type: str, from_id: str, to_type: str, *, limit: int = 100) -> list[dict[str, Any]]:
        rows: list[dict[str, Any]] = []
        after: str | None = None
        while True:
            query: dict[str, Any] = {"limit": limit}
            if after:
                query["after"] = after
            payload = self._request(
                "GET",
                f"/crm/v4/objects/{from_type}/{from_id}/associations/{to_type}?{urllib.parse.urlencode(query)}",
            )
            values = payload.get("results")
            if isinstance(values, list):
                rows.extend(item for item in values if isinstance(item, dict))
            after = ((payload.get("paging") or {}).get("next") or {}).get("after")
            if not after:
                return rows
