from dataclasses import dataclass
from typing import Optional


@dataclass(frozen=True)
class Principal:
    """Who a data-access call runs as.

    A user principal only ever sees rows it owns. The system principal is the
    explicit capability the scheduled sweep holds to read every user's budgets.
    """

    user_id: Optional[int] = None
    is_system: bool = False

    @classmethod
    def user(cls, user_id: int) -> "Principal":
        return cls(user_id=user_id, is_system=False)

    @classmethod
    def system(cls) -> "Principal":
        return cls(user_id=None, is_system=True)

    def owns(self, user_id: int) -> bool:
        return self.is_system or self.user_id == user_id

    def scope(self, stmt, column):
        if self.is_system:
            return stmt
        return stmt.where(column == self.user_id)


def get_current_user_id() -> int:
    return 1


def current_principal() -> Principal:
    return Principal.user(get_current_user_id())
