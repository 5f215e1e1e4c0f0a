"""Ticket-tracker (Jira Cloud REST v3) read client."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any

import httpx

from dev_toolbox.http.client import JsonHttpClient

logger = logging.getLogger(__name__)

_ISSUE_FIELDS = "summary,status,issuetype,description,fixVersions"


@dataclass(slots=True)
class TicketDetails:
    """Ticket fields used by reports."""

    key: str
    summary: str
    status: str = ""
    issue_type: str = ""
    description: str = ""
    fix_versions: list[str] = field(default_factory=list)
    url: str = ""


class JiraClient:
    """Fetch ticket details from a Jira instance."""

    def __init__(
        self,
        *,
        base_url: str,
        email: str,
        api_token: str,
        http: JsonHttpClient | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self._http = http or JsonHttpClient(
            base_url=self.base_url,
            auth=httpx.BasicAuth(email, api_token),
        )

    async def fetch_ticket(self, key: str) -> TicketDetails:
        payload = await self._http.get_json(
            f"/rest/api/3/issue/{key}",
            params={"fields": _ISSUE_FIELDS},
        )
        ticket = parse_ticket(payload, base_url=self.base_url)
        logger.debug("Fetched ticket %s (%s)", ticket.key, ticket.status)
        return ticket

    async def aclose(self) -> None:
        await self._http.aclose()

    async def __aenter__(self) -> JiraClient:
        return self

    async def __aexit__(self, *_: object) -> None:
        await self.aclose()


def parse_ticket(payload: dict[str, Any], *, base_url: str) -> TicketDetails:
    """Map a Jira issue payload onto :class:`TicketDetails`."""

    key = str(payload.get("key", ""))
    fields = payload.get("fields") or {}
    return TicketDetails(
        key=key,
        summary=str(fields.get("summary") or ""),
        status=str((fields.get("status") or {}).get("name", "")),
        issue_type=str((fields.get("issuetype") or {}).get("name", "")),
        description=description_text(fields.get("description")),
        fix_versions=[
            str(version.get("name", ""))
            for version in fields.get("fixVersions") or []
            if isinstance(version, dict)
        ],
        url=f"{base_url}/browse/{key}" if key else "",
    )


def description_text(value: Any) -> str:
    """Flatten a description that is either plain text or an ADF document."""

    if value is None:
        return ""
    if isinstance(value, str):
        return value.strip()
    parts: list[str] = []
    _collect_adf_text(value, parts)
    return "\n".join(part for part in parts if part).strip()


def _collect_adf_text(node: Any, parts: list[str]) -> None:
    if isinstance(node, list):
        for child in node:
            _collect_adf_text(child, parts)
        return
    if not isinstance(node, dict):
        return
    if node.get("type") == "text":
        parts.append(str(node.get("text", "")))
        return
    children = node.get("content")
    if children is None:
        return
    if node.get("type") in {"paragraph", "heading", "listItem"}:
        inline: list[str] = []
        _collect_adf_text(children, inline)
        parts.append("".join(inline))
        return
    _collect_adf_text(children, parts)
