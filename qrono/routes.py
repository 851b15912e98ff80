"""
HTTP routes for the Qrono API.
"""

from __future__ import annotations

import json
from typing import Optional

from fastapi import APIRouter, Depends, File, Form, Request, UploadFile

from qrono.auth import AuthService
from qrono.db import AlbumRecord, MemoryRecord, MemorySummary
from qrono.dependencies import (
    current_user_id,
    get_auth_service,
    get_resource_service,
    get_storage_client,
)
from qrono.errors import InvalidInput
from qrono.schemas import (
    AlbumResponse,
    LoginPayload,
    MeResponse,
    MemoryCreatedResponse,
    MemoryResponse,
    MemorySummaryResponse,
    MessageResponse,
    PhotoResponse,
    RegisterPayload,
    RegisterResponse,
    TokenResponse,
    VerifyPasswordPayload,
)
from qrono.services import ImageUpload, ResourceService
from qrono.storage import StorageClient


router = APIRouter()

TRUE_STRINGS = {"true", "1", "on", "yes"}


def _parse_visible(value: Optional[str]) -> Optional[bool]:
    if value is None:
        return None
    return value.strip().lower() in TRUE_STRINGS


def _parse_photo_ids(raw: Optional[str]) -> list[int]:
    if not raw:
        return []
    try:
        ids = json.loads(raw)
    except ValueError:
        raise InvalidInput("photosToDelete must be a JSON array of photo ids")
    if not isinstance(ids, list) or not all(
        isinstance(i, int) and not isinstance(i, bool) for i in ids
    ):
        raise InvalidInput("photosToDelete must be a JSON array of photo ids")
    return ids


async def _supplied_text(request: Request, name: str, value: Optional[str]) -> Optional[str]:
    """
    FastAPI hands back the default for an empty form value; tell "sent empty"
    apart from "not sent" so a partial update can clear a field.
    """
    if value is not None:
        return value
    form = await request.form()
    return "" if name in form else None


async def _read_uploads(files: Optional[list[UploadFile]]) -> list[ImageUpload]:
    uploads = []
    for file in files or []:
        # Browsers send an empty part when no file was picked.
        if not file.filename:
            continue
        uploads.append(
            ImageUpload(
                filename=file.filename,
                data=await file.read(),
                content_type=file.content_type,
            )
        )
    return uploads


def _url(storage: StorageClient, locator: Optional[str]) -> Optional[str]:
    return storage.url_for(locator) if locator else None


def _album_response(album: AlbumRecord, storage: StorageClient) -> AlbumResponse:
    return AlbumResponse(
        id=album.id,
        user_id=album.user_id,
        title=album.title,
        description=album.description,
        visible=album.visible,
        cover_image=album.cover_image,
        cover_image_url=_url(storage, album.cover_image),
        created_at=album.created_at,
    )


def _summary_response(
    memory: MemorySummary, storage: StorageClient
) -> MemorySummaryResponse:
    return MemorySummaryResponse(
        id=memory.id,
        album_id=memory.album_id,
        title=memory.title,
        diary_entry=memory.diary_entry,
        created_at=memory.created_at,
        cover_image=memory.cover_image,
        cover_image_url=_url(storage, memory.cover_image),
    )


def _memory_response(memory: MemoryRecord, storage: StorageClient) -> MemoryResponse:
    return MemoryResponse(
        id=memory.id,
        album_id=memory.album_id,
        title=memory.title,
        diary_entry=memory.diary_entry,
        created_at=memory.created_at,
        photos=[
            PhotoResponse(
                id=photo.id,
                memory_id=photo.memory_id,
                image=photo.image,
                image_url=storage.url_for(photo.image),
                created_at=photo.created_at,
            )
            for photo in memory.photos
        ],
    )


# Auth


@router.post("/auth/register", response_model=RegisterResponse, status_code=201)
def register(
    payload: RegisterPayload, auth: AuthService = Depends(get_auth_service)
):
    user = auth.register(payload.username or "", payload.password or "")
    return RegisterResponse(msg="User registered successfully", user_id=user.id)


@router.post("/auth/login", response_model=TokenResponse)
def login(payload: LoginPayload, auth: AuthService = Depends(get_auth_service)):
    token = auth.login(payload.username or "", payload.password or "")
    return TokenResponse(token=token)


@router.get("/auth/me", response_model=MeResponse)
def me(
    user_id: int = Depends(current_user_id),
    auth: AuthService = Depends(get_auth_service),
):
    user = auth.current_user(user_id)
    return MeResponse(id=user.id, username=user.username, created_at=user.created_at)


@router.post("/auth/verify-password", response_model=MessageResponse)
def verify_password(
    payload: VerifyPasswordPayload,
    user_id: int = Depends(current_user_id),
    auth: AuthService = Depends(get_auth_service),
):
    auth.verify_password(user_id, payload.password or "")
    return MessageResponse(msg="Password verified successfully.")


# Albums


@router.post("/albums", response_model=AlbumResponse, status_code=201)
async def create_album(
    title: str | None = Form(None),
    description: str | None = Form(None),
    visible: str | None = Form(None),
    cover_image: UploadFile | None = File(None),
    user_id: int = Depends(current_user_id),
    service: ResourceService = Depends(get_resource_service),
    storage: StorageClient = Depends(get_storage_client),
):
    uploads = await _read_uploads([cover_image] if cover_image else [])
    album = service.create_album(
        user_id,
        title,
        description,
        bool(_parse_visible(visible)),
        uploads[0] if uploads else None,
    )
    return _album_response(album, storage)


@router.get("/albums", response_model=list[AlbumResponse])
def list_albums(
    user_id: int = Depends(current_user_id),
    service: ResourceService = Depends(get_resource_service),
    storage: StorageClient = Depends(get_storage_client),
):
    return [_album_response(a, storage) for a in service.list_albums(user_id)]


@router.get("/albums/{album_id}", response_model=AlbumResponse)
def get_album(
    album_id: int,
    user_id: int = Depends(current_user_id),
    service: ResourceService = Depends(get_resource_service),
    storage: StorageClient = Depends(get_storage_client),
):
    return _album_response(service.get_album(user_id, album_id), storage)


@router.get("/albums/{album_id}/memories", response_model=list[MemorySummaryResponse])
def list_album_memories(
    album_id: int,
    user_id: int = Depends(current_user_id),
    service: ResourceService = Depends(get_resource_service),
    storage: StorageClient = Depends(get_storage_client),
):
    return [
        _summary_response(m, storage)
        for m in service.list_memories(user_id, album_id)
    ]


@router.put("/albums/{album_id}", response_model=AlbumResponse)
async def update_album(
    request: Request,
    album_id: int,
    title: str | None = Form(None),
    description: str | None = Form(None),
    visible: str | None = Form(None),
    cover_image: UploadFile | None = File(None),
    user_id: int = Depends(current_user_id),
    service: ResourceService = Depends(get_resource_service),
    storage: StorageClient = Depends(get_storage_client),
):
    uploads = await _read_uploads([cover_image] if cover_image else [])
    album = service.update_album(
        user_id,
        album_id,
        title=await _supplied_text(request, "title", title),
        description=await _supplied_text(request, "description", description),
        visible=_parse_visible(visible),
        cover_image=uploads[0] if uploads else None,
    )
    return _album_response(album, storage)


@router.delete("/albums/{album_id}", response_model=MessageResponse)
def delete_album(
    album_id: int,
    user_id: int = Depends(current_user_id),
    service: ResourceService = Depends(get_resource_service),
):
    service.delete_album(user_id, album_id)
    return MessageResponse(msg="Album and all associated content deleted successfully")


# Memories


@router.post("/memories", response_model=MemoryCreatedResponse, status_code=201)
async def create_memory(
    title: str | None = Form(None),
    diary_entry: str | None = Form(None),
    album_id: int | None = Form(None),
    photos: list[UploadFile] | None = File(None),
    user_id: int = Depends(current_user_id),
    service: ResourceService = Depends(get_resource_service),
):
    uploads = await _read_uploads(photos)
    memory = service.create_memory(user_id, album_id, title, diary_entry, uploads)
    return MemoryCreatedResponse(msg="Memory created successfully", memory_id=memory.id)


@router.get("/memories/{memory_id}", response_model=MemoryResponse)
def get_memory(
    memory_id: int,
    user_id: int = Depends(current_user_id),
    service: ResourceService = Depends(get_resource_service),
    storage: StorageClient = Depends(get_storage_client),
):
    return _memory_response(service.get_memory(user_id, memory_id), storage)


@router.put("/memories/{memory_id}", response_model=MemoryResponse)
async def update_memory(
    memory_id: int,
    title: str | None = Form(None),
    diary_entry: str | None = Form(None),
    photos_to_delete: str | None = Form(None, alias="photosToDelete"),
    photos: list[UploadFile] | None = File(None),
    user_id: int = Depends(current_user_id),
    service: ResourceService = Depends(get_resource_service),
    storage: StorageClient = Depends(get_storage_client),
):
    photo_ids = _parse_photo_ids(photos_to_delete)
    uploads = await _read_uploads(photos)
    memory = service.update_memory(
        user_id,
        memory_id,
        title=title,
        diary_entry=diary_entry,
        photo_ids_to_delete=photo_ids,
        new_photos=uploads,
    )
    return _memory_response(memory, storage)


@router.delete("/memories/{memory_id}", response_model=MessageResponse)
def delete_memory(
    memory_id: int,
    user_id: int = Depends(current_user_id),
    service: ResourceService = Depends(get_resource_service),
):
    service.delete_memory(user_id, memory_id)
    return MessageResponse(msg="Memory deleted successfully")
