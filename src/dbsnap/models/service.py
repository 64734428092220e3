from __future__ import annotations

import pydantic


class ServiceInfo(pydantic.BaseModel):
    """
    Connection facts for a configured database service.
    """

    name: str
    engine: str
    host: str = "localhost"
    port: int = 0
    user: str = ""
    password: str = ""
    database: str = ""
    container: str
    image: str = ""
