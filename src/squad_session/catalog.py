from __future__ import annotations

from typing import Any

from loguru import logger

from squad_session.endpoints import ApiPaths
from squad_session.errors import ApiError, DecodeError
from squad_session.models import Personality
from squad_session.personalities import PersonalityRegistry
from squad_session.request_builder import parse_error_body
from squad_session.session_client import SessionClient
from squad_session.transport import HttpResponse


def _decode(response: HttpResponse, what: str) -> Any:
    if not 200 <= response.status_code < 300:
        detail = parse_error_body(response.body) or f"HTTP {response.status_code}"
        raise ApiError(f"Fetching {what} failed: {detail}", response.status_code)
    try:
        return response.json()
    except ValueError as ex:
        raise DecodeError(f"{what} response is not valid JSON: {ex}") from ex


def _list_of_objects(data: Any, key: str) -> list[dict[str, Any]]:
    if isinstance(data, dict) and isinstance(data.get(key), list):
        data = data[key]
    if not isinstance(data, list) or not all(isinstance(item, dict) for item in data):
        raise DecodeError(f"Expected a list of {key}")
    return data


def _identifier(entry: dict[str, Any]) -> str:
    value = entry.get("id")
    if isinstance(value, bool) or not isinstance(value, (str, int)) or value == "":
        raise DecodeError(f"Catalog entry has no usable id: {entry!r}")
    return str(value)


def personality_from_json(entry: dict[str, Any]) -> Personality:
    """Map a backend AI object onto a single (non-squad) ``Personality``."""
    personality_id = _identifier(entry)
    name = entry.get("name")
    if not isinstance(name, str) or not name:
        raise DecodeError(f"AI {personality_id} has no name")
    tone = entry.get("tone") or entry.get("category")
    return Personality(
        id=personality_id,
        name=name,
        description=str(entry.get("description") or ""),
        tone=tone if isinstance(tone, str) else None,
        backend_id=personality_id,
    )


def _squad_members(entry: dict[str, Any]) -> list[dict[str, Any]]:
    members = entry.get("members")
    if members is None:
        members = entry.get("squadMembers")
    if not isinstance(members, list):
        return []
    return [m for m in members if isinstance(m, dict)]


class CatalogClient:
    """Authenticated reads of the backend's AI and squad catalog.

    Every call goes through ``SessionClient.authorized_request`` and so
    shares its token refresh behaviour.
    """

    def __init__(self, client: SessionClient, paths: ApiPaths):
        self._client = client
        self._paths = paths

    async def fetch_personalities(self) -> list[dict[str, Any]]:
        response = await self._client.authorized_request("GET", self._paths.personalities)
        return _list_of_objects(_decode(response, "personalities"), "personalities")

    async def fetch_squads(self) -> list[dict[str, Any]]:
        response = await self._client.authorized_request("GET", self._paths.squads)
        return _list_of_objects(_decode(response, "squads"), "squads")

    async def fetch_current_user(self) -> dict[str, Any]:
        response = await self._client.authorized_request("GET", self._paths.current_user)
        data = _decode(response, "current user")
        if isinstance(data, dict) and isinstance(data.get("user"), dict):
            data = data["user"]
        if not isinstance(data, dict):
            raise DecodeError("Current user response is not a JSON object")
        return data

    async def create_squad(
        self,
        name: str,
        description: str | None = None,
        max_members: int | None = None,
    ) -> dict[str, Any]:
        if not name or not name.strip():
            raise ValueError("Squad name must not be empty")
        body: dict[str, Any] = {"name": name}
        if description is not None:
            body["description"] = description
        if max_members is not None:
            body["maxMembers"] = max_members
        response = await self._client.authorized_request("POST", self._paths.squads, json_body=body)
        data = _decode(response, "created squad")
        if not isinstance(data, dict):
            raise DecodeError("Created squad response is not a JSON object")
        return data

    async def sync_registry(self, registry: PersonalityRegistry) -> list[Personality]:
        """Register the backend's AIs and squads; returns what was added or replaced.

        Squads go through ``PersonalityRegistry.create_squad`` so the usual
        membership rules apply; a squad that breaks them is skipped.
        """
        ais = await self.fetch_personalities()
        squads = await self.fetch_squads()

        synced: list[Personality] = []
        squad_entries: list[dict[str, Any]] = []
        for entry in ais:
            if entry.get("isSquad"):
                squad_entries.append(entry)
                continue
            personality = personality_from_json(entry)
            registry.register(personality)
            synced.append(personality)
        squad_entries.extend(squads)

        for entry in squad_entries:
            squad_id = _identifier(entry)
            member_ids = []
            for member in _squad_members(entry):
                personality = personality_from_json(member)
                if personality.id not in registry:
                    registry.register(personality)
                    synced.append(personality)
                member_ids.append(personality.id)
            try:
                squad = registry.create_squad(squad_id, str(entry.get("name") or squad_id), member_ids)
            except ValueError as ex:
                logger.warning(f"Skipping squad {squad_id}: {ex}")
                continue
            synced.append(squad)

        logger.info(f"Synced {len(synced)} personalities and squads from the backend")
        return synced
