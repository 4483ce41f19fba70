from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class ApiPaths:
    login: str
    register: str
    refresh_token: str
    generate: str
    personalities: str = "/api/v1/ai/personalities"
    squads: str = "/api/v1/squads"
    current_user: str = "/api/v1/users/me"
    chat_completions: str = "/v1/chat/completions"

    @classmethod
    def for_version(cls, api_version: str = "v1") -> ApiPaths:
        prefix = f"/api/{api_version}"
        return cls(
            login=f"{prefix}/auth/login",
            register=f"{prefix}/auth/register",
            refresh_token=f"{prefix}/auth/refresh-token",
            generate=f"{prefix}/ai/generate",
            personalities=f"{prefix}/ai/personalities",
            squads=f"{prefix}/squads",
            current_user=f"{prefix}/users/me",
        )
