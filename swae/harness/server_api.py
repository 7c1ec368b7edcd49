from __future__ import annotations

from typing import Any, Protocol


class TestServerApi(Protocol):
    """What a fixture server must offer a TestSession.

    `close()` and `reset()` may be sync or async; `reset()` runs after every test.
    """

    root_url: str

    def close(self) -> Any: ...

    def reset(self) -> Any: ...
