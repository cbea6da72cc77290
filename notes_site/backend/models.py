from typing import Dict, List, Optional

from pydantic import BaseModel, Field


class LoginRequest(BaseModel):
    account_id: str = Field(..., alias="accountID", min_length=1)


class NoteData(BaseModel):
    title: str
    body: str = ""
    note_id: Optional[str] = Field(default=None, alias="noteID")


class NoteUpdate(BaseModel):
    title: Optional[str] = None
    body: Optional[str] = None


class LoginResponse(BaseModel):
    success: bool
    token: str
    message: str = "Login successful"


class NoteResponse(BaseModel):
    success: bool
    note: Dict[str, str]
    message: str = "Note operation successful"


class NotesListResponse(BaseModel):
    success: bool
    notes: List[Dict[str, str]]
    count: int
    next: Optional[str] = None


class MessageResponse(BaseModel):
    success: bool
    message: str
