"""Process-wide active flag shared by the accept loop and every relay."""

import threading


class ServerState:
    """Active/inactive flag backed by a ``threading.Event``.

    The flag goes from inactive to active when the listener is bound and
    flips back exactly once, on shutdown or on a fatal accept error.
    """

    def __init__(self) -> None:
        self._active = threading.Event()

    def __bool__(self) -> bool:
        return self._active.is_set()

    @property
    def is_active(self) -> bool:
        return self._active.is_set()

    def activate(self) -> None:
        self._active.set()

    def deactivate(self) -> None:
        self._active.clear()
