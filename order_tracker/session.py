"""Current session user, persisted on the device between restarts."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Sequence

from pydantic import ValidationError

from .schemas import Role, User

logger = logging.getLogger("order-tracker.session")

SESSION_SLOT = "current_user.json"

DEFAULT_USERS: tuple[User, ...] = (
    User(id="riki-1", name="Riki", role=Role.COORDINATOR),
    User(id="camilo-1", name="Camilo", role=Role.OPERATOR),
    User(id="jesus-1", name="Jesus", role=Role.OPERATOR),
    User(id="eze-1", name="Eze", role=Role.OPERATOR),
    User(id="chino-1", name="chino", role=Role.OPERATOR),
)


class SessionStore:
    def __init__(self, data_dir: Path | str) -> None:
        self.path = Path(data_dir) / SESSION_SLOT

    def save(self, user: User) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.write_text(user.model_dump_json(), encoding="utf-8")

    def load(self) -> User | None:
        try:
            raw = self.path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return None
        try:
            return User.model_validate_json(raw)
        except ValidationError:
            logger.warning("Corrupt session slot at %s, clearing it", self.path)
            self.clear()
            return None

    def clear(self) -> None:
        self.path.unlink(missing_ok=True)


def resolve_session_user(users: Sequence[User], store: SessionStore) -> User | None:
    """Keep the saved user while it is still listed, else default to a coordinator."""

    saved = store.load()
    if saved is not None and any(user.id == saved.id for user in users):
        return saved
    default = next((user for user in users if user.role is Role.COORDINATOR), None)
    if default is None and users:
        default = users[0]
    if default is not None:
        store.save(default)
    return default
