import threading
from typing import Callable, Dict, List, Optional, Tuple

from .config import StoreConfig
from .domain import Account, Note, Session, ValidationError
from .guard import require_account
from .keys import KeyCondition, KeySchema
from .logs import get_logger
from .models import MessageResponse, NoteResponse, NotesListResponse
from .pipeline import RequestContext, Response, Terminal
from .store import ResourceStore
from .utils import make_id, new_key, time_now

logger = get_logger(__name__)

NOTES_SCHEMA = KeySchema(partition="accountID", sort="noteID")


def notes_store(config: StoreConfig) -> ResourceStore:
    return ResourceStore(config, "notes", NOTES_SCHEMA)


class SessionRegistry:
    """Maps bearer tokens to the account they were opened for."""

    def __init__(self):
        self.active: Dict[str, Account] = {}
        self.lock = threading.Lock()

    @staticmethod
    def _strip(token: Optional[str]) -> str:
        token = (token or "").strip()
        if token.startswith("Bearer "):
            token = token[7:].strip()
        return token

    def open(self, account_id: str) -> str:
        if not isinstance(account_id, str) or not account_id.strip():
            raise ValidationError("accountID is required")
        token = make_id("sess")
        with self.lock:
            self.active[token] = Account(account_id.strip())
        logger.info("session_opened", account=account_id.strip())
        return token

    def lookup(self, token: Optional[str]) -> Session:
        """Session for ``token``; unknown or missing tokens give an anonymous session."""
        return Session(self.active.get(self._strip(token)))

    def close(self, token: Optional[str]) -> bool:
        with self.lock:
            return self.active.pop(self._strip(token), None) is not None


class NotesService:
    """The guide's note-taking example: CRUD over the notes table for one account at a time."""

    def __init__(self, store: ResourceStore, home: str = "/", clock: Optional[Callable[[], float]] = None):
        self.store = store
        self.home = home
        self.clock = clock

    @staticmethod
    def _key(account: Account, note_id: str) -> Dict[str, str]:
        return {"accountID": account.account_id, "noteID": note_id}

    async def write(
        self,
        account: Account,
        title: str,
        body: str = "",
        note_id: Optional[str] = None,
        if_absent: bool = False,
    ) -> Note:
        """Save a note owned by ``account``. Passing the same ``note_id`` again overwrites it."""
        if not isinstance(title, str) or not title.strip():
            raise ValidationError("Note title cannot be empty")
        if body is not None and not isinstance(body, str):
            raise ValidationError("Note body must be a string")
        note = Note(
            account.account_id,
            note_id or new_key(self.clock),
            title.strip(),
            (body or "").strip(),
            time_now(),
        )
        await self.store.put(note.to_item(), if_absent=if_absent)
        logger.info("note_saved", account=account.account_id, note=note.note_id)
        return note

    async def read(self, account: Account, note_id: str) -> Note:
        return Note.from_item(await self.store.get(self._key(account, note_id)))

    async def list(
        self, account: Account, start_token: Optional[str] = None, limit: Optional[int] = None
    ) -> Tuple[List[Note], Optional[str]]:
        """One page of the account's notes, newest key first, and the token for the next page."""
        pager = self.store.query(KeyCondition(account.account_id, descending=True), start_token, limit)
        page = await pager.next_page()
        return [Note.from_item(item) for item in page.items], page.next_token

    async def list_all(self, account: Account) -> List[Note]:
        pager = self.store.query(KeyCondition(account.account_id, descending=True))
        return [Note.from_item(item) for item in await pager.all()]

    async def update(
        self, account: Account, note_id: str, title: Optional[str] = None, body: Optional[str] = None
    ) -> Note:
        patch = {}
        if title is not None:
            if not isinstance(title, str) or not title.strip():
                raise ValidationError("Note title cannot be empty")
            patch["title"] = title.strip()
        if body is not None:
            if not isinstance(body, str):
                raise ValidationError("Note body must be a string")
            patch["body"] = body.strip()
        if not patch:
            raise ValidationError("Nothing to update")
        patch["updated"] = time_now()
        result = await self.store.update(self._key(account, note_id), patch)
        return Note.from_item(result.item)

    async def remove(self, account: Account, note_id: str) -> None:
        await self.store.delete(self._key(account, note_id))
        logger.info("note_deleted", account=account.account_id, note=note_id)

    # Pipeline stages. Each runs after the session guard and ends the request.

    def _account(self, context: RequestContext) -> Account:
        return context.account or require_account(context.session, self.home)

    async def create_stage(self, context: RequestContext) -> Terminal:
        account = self._account(context)
        note = await self.write(
            account,
            context.body.get("title", ""),
            context.body.get("body", ""),
            note_id=context.body.get("noteID"),
        )
        payload = NoteResponse(success=True, note=note.to_dict(), message="Note created successfully")
        return Terminal(Response(status=201, json=payload.model_dump()))

    async def list_stage(self, context: RequestContext) -> Terminal:
        account = self._account(context)
        notes, next_token = await self.list(account, context.params.get("next"), context.params.get("limit"))
        payload = NotesListResponse(
            success=True, notes=[n.to_dict() for n in notes], count=len(notes), next=next_token
        )
        return Terminal(Response(json=payload.model_dump()))

    async def read_stage(self, context: RequestContext) -> Terminal:
        note = await self.read(self._account(context), context.params["noteID"])
        payload = NoteResponse(success=True, note=note.to_dict(), message="Note retrieved successfully")
        return Terminal(Response(json=payload.model_dump()))

    async def update_stage(self, context: RequestContext) -> Terminal:
        note = await self.update(
            self._account(context),
            context.params["noteID"],
            context.body.get("title"),
            context.body.get("body"),
        )
        payload = NoteResponse(success=True, note=note.to_dict(), message="Note updated successfully")
        return Terminal(Response(json=payload.model_dump()))

    async def delete_stage(self, context: RequestContext) -> Terminal:
        await self.remove(self._account(context), context.params["noteID"])
        payload = MessageResponse(success=True, message="Note deleted successfully")
        return Terminal(Response(json=payload.model_dump()))
