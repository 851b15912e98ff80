"""
Pydantic schemas for the Qrono API.

None of the user schemas carry the password digest.
"""

from __future__ import annotations

from typing import Optional

from pydantic import BaseModel, Field


class RegisterPayload(BaseModel):
    username: Optional[str] = Field(default=None, max_length=64)
    password: Optional[str] = None


class RegisterResponse(BaseModel):
    msg: str
    user_id: int


class LoginPayload(BaseModel):
    username: Optional[str] = None
    password: Optional[str] = None


class TokenResponse(BaseModel):
    token: str


class MeResponse(BaseModel):
    id: int
    username: str
    created_at: float


class VerifyPasswordPayload(BaseModel):
    password: Optional[str] = None


class MessageResponse(BaseModel):
    msg: str


class AlbumResponse(BaseModel):
    id: int
    user_id: int
    title: str
    description: Optional[str] = None
    visible: bool
    cover_image: Optional[str] = None
    cover_image_url: Optional[str] = None
    created_at: float


class MemorySummaryResponse(BaseModel):
    id: int
    album_id: int
    title: str
    diary_entry: Optional[str] = None
    created_at: float
    cover_image: Optional[str] = None
    cover_image_url: Optional[str] = None


class PhotoResponse(BaseModel):
    id: int
    memory_id: int
    image: str
    image_url: str
    created_at: float


class MemoryResponse(BaseModel):
    id: int
    album_id: int
    title: str
    diary_entry: Optional[str] = None
    created_at: float
    photos: list[PhotoResponse]


class MemoryCreatedResponse(BaseModel):
    msg: str
    memory_id: int


class HealthResponse(BaseModel):
    ok: bool
