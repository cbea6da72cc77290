from typing import Any, Dict, Optional


class Account:
    """Represents the account a session acts for."""

    def __init__(self, account_id: str):
        self.account_id = account_id

    def to_dict(self) -> Dict[str, str]:
        return {"accountID": self.account_id}

    def __eq__(self, other: object) -> bool:
        return isinstance(other, Account) and other.account_id == self.account_id

    def __hash__(self) -> int:
        return hash(self.account_id)

    def __repr__(self) -> str:
        return f"Account({self.account_id!r})"


class Session:
    """Per-request session; ``account`` is None for anonymous visitors."""

    def __init__(self, account: Optional[Account] = None):
        self.account = account

    def __repr__(self) -> str:
        return f"Session(account={self.account!r})"


class Note:
    """Represents a single note item."""

    def __init__(self, account_id: str, note_id: str, title: str, body: str, updated: Optional[str] = None):
        self.account_id = account_id
        self.note_id = note_id
        self.title = title
        self.body = body
        self.updated = updated

    @classmethod
    def from_item(cls, item: Dict[str, Any]) -> "Note":
        return cls(
            item["accountID"],
            item["noteID"],
            item.get("title", ""),
            item.get("body", ""),
            item.get("updated"),
        )

    def to_item(self) -> Dict[str, Any]:
        """Storage form, keyed by accountID/noteID."""
        item = {
            "accountID": self.account_id,
            "noteID": self.note_id,
            "title": self.title,
            "body": self.body,
        }
        if self.updated is not None:
            item["updated"] = self.updated
        return item

    def to_dict(self) -> Dict[str, str]:
        """Public form; the owning account is not echoed back."""
        data = {"noteID": self.note_id, "title": self.title, "body": self.body}
        if self.updated is not None:
            data["updated"] = self.updated
        return data

    def __eq__(self, other: object) -> bool:
        return isinstance(other, Note) and other.to_item() == self.to_item()

    def __repr__(self) -> str:
        return f"Note({self.account_id!r}, {self.note_id!r}, title={self.title!r})"


class NotesError(Exception):
    """Base class for errors surfaced by the notes core."""

    status_code = 500

    def __init__(self, message: str = ""):
        super().__init__(message)
        self.message = message


class NotFound(NotesError):
    """No item matches the full primary key."""

    status_code = 404


class ValidationError(NotesError):
    """Malformed key, item, patch, token or name."""

    status_code = 400


class ConflictError(NotesError):
    """A conditional write found an existing item."""

    status_code = 409


class TransientIOError(NotesError):
    """The storage backend failed in a way that may succeed on retry."""

    status_code = 503


class Unauthorized(NotesError):
    """The session guard denied the request."""

    status_code = 401

    def __init__(self, message: str = "Authentication required", location: str = "/"):
        super().__init__(message)
        self.location = location


class UnhandledRequest(NotesError):
    """A pipeline ran out of stages without a terminal response."""

    status_code = 500
