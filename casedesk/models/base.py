"""
RowMixin: column snapshot helpers shared by every CaseDesk model.

The in-memory store keeps plain column dicts and materialises fresh model
instances on every read, so models need a cheap, ORM-state-free way to
round-trip their columns:
  - column_names() classmethod
  - to_row() column snapshot
  - from_row(row) classmethod building a transient instance
"""


class RowMixin:
    """Column snapshot helpers for declarative models."""

    @classmethod
    def column_names(cls) -> list[str]:
        return [c.key for c in cls.__table__.columns]

    @classmethod
    def from_row(cls, row: dict):
        """Build a transient (session-less) instance from a column dict."""
        return cls(**{k: v for k, v in row.items() if k in cls.column_names()})

    def to_row(self) -> dict:
        return {name: getattr(self, name) for name in self.column_names()}
