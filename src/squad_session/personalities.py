from __future__ import annotations

from typing import Any

from squad_session.models import Personality

_MIN_SQUAD_SIZE = 2
_MAX_SQUAD_SIZE = 3


class PersonalityRegistry:
    def __init__(self, personalities: list[Personality] | None = None):
        self._by_id: dict[str, Personality] = {}
        for p in personalities or []:
            self.register(p)

    def register(self, personality: Personality) -> None:
        self._by_id[personality.id] = personality

    def get(self, personality_id: str) -> Personality | None:
        return self._by_id.get(personality_id)

    def require(self, personality_id: str) -> Personality:
        personality = self._by_id.get(personality_id)
        if personality is None:
            raise KeyError(f"Unknown personality: {personality_id!r}")
        return personality

    def all(self) -> list[Personality]:
        return list(self._by_id.values())

    def __contains__(self, personality_id: object) -> bool:
        return personality_id in self._by_id

    def __len__(self) -> int:
        return len(self._by_id)

    def create_squad(self, squad_id: str, name: str, member_ids: list[str]) -> Personality:
        if len(set(member_ids)) != len(member_ids):
            raise ValueError("Squad members must be distinct")
        if not _MIN_SQUAD_SIZE <= len(member_ids) <= _MAX_SQUAD_SIZE:
            raise ValueError(
                f"A squad needs {_MIN_SQUAD_SIZE}-{_MAX_SQUAD_SIZE} members, got {len(member_ids)}"
            )
        members = []
        for member_id in member_ids:
            member = self.get(member_id)
            if member is None:
                raise ValueError(f"Unknown squad member: {member_id!r}")
            if member.is_squad:
                raise ValueError(f"Squads cannot contain other squads: {member_id!r}")
            members.append(member)

        squad = Personality(
            id=squad_id,
            name=name,
            description=f"A squad of {len(members)} AIs",
            members=tuple(members),
        )
        self.register(squad)
        return squad

    def system_prompt_for(self, personality_id: str) -> str:
        return build_system_prompt(self.require(personality_id))


def build_system_prompt(personality: Personality) -> str:
    if personality.is_squad:
        names = ", ".join(m.name for m in personality.members)
        lines = [
            f"You are the {personality.display_name}, a group of AI personalities ({names}) "
            "sharing one conversation.",
            personality.combined_description(),
        ]
        for member in personality.members:
            member_line = f"- {member.name}: {member.description}"
            if member.tone:
                member_line += f" Tone: {member.tone}."
            lines.append(member_line)
        return "\n".join(lines)

    lines = [f"You are {personality.name}. {personality.description}"]
    if personality.tone:
        lines.append(f"Speak in a {personality.tone} tone.")
    return "\n".join(lines)


def load_personalities(entries: list[dict[str, Any]]) -> PersonalityRegistry:
    """Build a registry from config entries; squads may reference earlier entries."""
    registry = PersonalityRegistry()
    squads: list[dict[str, Any]] = []
    for entry in entries:
        if entry.get("Members"):
            squads.append(entry)
            continue
        registry.register(
            Personality(
                id=str(entry["Id"]),
                name=str(entry.get("Name", entry["Id"])),
                description=str(entry.get("Description", "")),
                tone=entry.get("Tone"),
                backend_id=entry.get("BackendId"),
            )
        )
    for entry in squads:
        registry.create_squad(
            str(entry["Id"]),
            str(entry.get("Name", entry["Id"])),
            [str(m) for m in entry["Members"]],
        )
    return registry
