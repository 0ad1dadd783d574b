from __future__ import annotations

from fastapi import APIRouter, File, Form, Request, Response, UploadFile, status

from app.api import deps
from app.api.cookies import clear_token_cookies, set_token_cookies
from app.api.uploads import read_upload
from app.schemas.auth import LoginRequest, PasswordChangeRequest, RegisterRequest
from app.schemas.common import ApiResponse, ok
from app.schemas.user import UserEnvelopeData, UserResponse
from app.services import sessions as session_service
from app.services import users as user_service

router = APIRouter(prefix="/auth", tags=["auth"])


def _user_data(user) -> UserEnvelopeData:
    return UserEnvelopeData(user=UserResponse.from_user(user))


@router.post("/register", response_model=ApiResponse, status_code=status.HTTP_201_CREATED)
async def register_user(payload: RegisterRequest, response: Response, db: deps.DatabaseSessionDep) -> ApiResponse:
    user = await user_service.register_user(db, payload.username, payload.email, payload.password)
    tokens = await session_service.issue_tokens(db, user.id)
    set_token_cookies(response, tokens)
    return ok(_user_data(user), "Account created successfully")


@router.post("/login", response_model=ApiResponse)
async def login(payload: LoginRequest, response: Response, db: deps.DatabaseSessionDep) -> ApiResponse:
    user = await user_service.verify_credentials(db, payload.email, payload.password)
    tokens = await session_service.issue_tokens(db, user.id)
    set_token_cookies(response, tokens)
    return ok(_user_data(user), "Logged in successfully")


@router.post("/logout", response_model=ApiResponse)
async def logout(
    request: Request,
    response: Response,
    db: deps.DatabaseSessionDep,
    current_user: deps.CurrentUserDep,
) -> ApiResponse:
    refresh_token = getattr(request.state, "refresh_token", None)
    if refresh_token:
        await session_service.revoke_sessions(db, current_user.id, refresh_token)
    request.state.rotated_tokens = None
    clear_token_cookies(response)
    return ok(message="Logged out successfully")


@router.get("/me", response_model=ApiResponse)
async def read_current_user(current_user: deps.CurrentUserDep) -> ApiResponse:
    return ok(_user_data(current_user), "User fetched")


@router.put("/update-profile", response_model=ApiResponse)
async def update_profile(
    db: deps.DatabaseSessionDep,
    store: deps.ObjectStoreDep,
    current_user: deps.CurrentUserDep,
    username: str | None = Form(default=None),
    avatar: UploadFile | None = File(default=None),
) -> ApiResponse:
    incoming = await read_upload(avatar, "avatar") if avatar is not None else None
    user = await user_service.update_profile(db, store, current_user, username=username, avatar=incoming)
    return ok(_user_data(user), "Profile updated")


@router.put("/change-password", response_model=ApiResponse)
async def change_password(
    payload: PasswordChangeRequest,
    request: Request,
    response: Response,
    db: deps.DatabaseSessionDep,
    current_user: deps.CurrentUserDep,
) -> ApiResponse:
    await user_service.change_password(db, current_user, payload.current_password, payload.new_password)
    request.state.rotated_tokens = None
    clear_token_cookies(response)
    return ok(message="Password changed. Please log in again.")


@router.delete("/delete-account", response_model=ApiResponse)
async def delete_account(
    request: Request,
    response: Response,
    db: deps.DatabaseSessionDep,
    store: deps.ObjectStoreDep,
    current_user: deps.CurrentUserDep,
) -> ApiResponse:
    await user_service.delete_account(db, store, current_user)
    request.state.rotated_tokens = None
    clear_token_cookies(response)
    return ok(message="Account deleted successfully")
