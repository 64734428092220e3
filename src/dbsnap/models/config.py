from __future__ import annotations

import pydantic


class ServiceConfig(pydantic.BaseModel):
    image: str
    ports: list[str] = pydantic.Field(default_factory=list)
    env: dict[str, str] = pydantic.Field(default_factory=dict)
    volume: str | None = None
    command: list[str] = pydantic.Field(default_factory=list)


class ProjectConfig(pydantic.BaseModel):
    profile: str = "dev"
    services: dict[str, ServiceConfig] = pydantic.Field(default_factory=dict)

    def get_service(self, name: str) -> ServiceConfig | None:
        return self.services.get(name)
