"""
Bridgekeeper - REST API Routes
================================
HTTP endpoints for login, session refresh, the setup wizard, user
management and two-factor enrollment.

Route groups:
    /api/auth/*          - Login, no-auth tokens, status, token check/refresh
    /api/setup-wizard/*  - First-run bootstrap (only while no admin exists)
    /api/users           - User administration (admin tokens only)
    /api/users/*         - Self-service password change and 2FA

Handlers raise the errors from bridgekeeper.errors; the application turns
them into JSON responses with the matching status code (see main.py).
"""

from fastapi import APIRouter, Depends
from pydantic import BaseModel, ConfigDict, Field

from bridgekeeper.auth import (
    AuthCoordinator,
    require_admin,
    require_auth,
    require_setup_wizard,
)
from bridgekeeper.config import ConfigManager


# =============================================================================
# Request/Response Models (Pydantic)
# =============================================================================

class LoginRequest(BaseModel):
    """Username/password login, with the 2FA code when enabled."""
    username: str = Field(..., min_length=1)
    password: str = Field(..., min_length=1)
    otp: str | None = Field(None, description="Current authenticator code")

class TokenResponse(BaseModel):
    access_token: str
    token_type: str = "Bearer"
    expires_in: int

class StatusResponse(BaseModel):
    """Tells the frontend whether to show the setup wizard or the login page."""
    setupWizardComplete: bool
    authMode: str

class UserCreateRequest(BaseModel):
    name: str = Field(..., min_length=1)
    username: str = Field(..., min_length=1)
    admin: bool = False
    password: str | None = None

class UserUpdateRequest(BaseModel):
    """Partial update; omitted fields are left unchanged."""
    name: str | None = None
    username: str | None = None
    admin: bool | None = None
    password: str | None = None

class PasswordChangeRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    current_password: str = Field(..., min_length=1, alias="currentPassword")
    new_password: str = Field(..., min_length=1, alias="newPassword")

class OtpActivateRequest(BaseModel):
    code: str = Field(..., min_length=1)

class OtpDeactivateRequest(BaseModel):
    password: str = Field(..., min_length=1)

class UserProfile(BaseModel):
    id: int
    name: str | None = None
    username: str
    admin: bool
    otpActive: bool = False
    otpLegacySecret: bool = False


# =============================================================================
# Router Factory
# =============================================================================

def create_router(auth: AuthCoordinator, config: ConfigManager) -> APIRouter:
    """
    Create and configure the API router with all endpoints.

    Args:
        auth:   The coordinator every handler delegates to.
        config: Read for the auth mode reported by /auth/status.

    Returns:
        Configured APIRouter with all endpoints registered.
    """
    router = APIRouter(prefix="/api")

    user_required = Depends(require_auth(auth))
    admin_required = Depends(require_admin(auth))
    setup_token_required = Depends(require_setup_wizard(auth))

    # =========================================================================
    # AUTH ROUTES
    # =========================================================================

    @router.get("/auth/status", response_model=StatusResponse)
    async def auth_status():
        return StatusResponse(
            setupWizardComplete=config.setup_wizard_complete,
            authMode=config.auth_mode,
        )

    @router.post("/auth/login", response_model=TokenResponse)
    async def login(req: LoginRequest):
        """Exchange credentials (and a 2FA code if enabled) for a token."""
        return auth.sign_in(req.username, req.password, req.otp)

    @router.post("/auth/noauth", response_model=TokenResponse)
    async def no_auth_token():
        """Only answers when authentication is disabled in config.yaml."""
        return auth.generate_no_auth_token()

    @router.get("/auth/check")
    async def check(user: dict = user_required):
        return {"status": "OK"}

    @router.post("/auth/refresh", response_model=TokenResponse)
    async def refresh(user: dict = user_required):
        return auth.refresh_token(user)

    # =========================================================================
    # SETUP WIZARD ROUTES
    # =========================================================================

    @router.get("/setup-wizard/get-setup-wizard-token", response_model=TokenResponse)
    async def setup_wizard_token():
        return auth.generate_setup_wizard_token()

    @router.post("/setup-wizard/create-first-user", response_model=UserProfile)
    async def create_first_user(req: UserCreateRequest, user: dict = setup_token_required):
        """The wizard's account becomes an admin whatever the request says."""
        return auth.setup_first_user(req.model_dump())

    # =========================================================================
    # USER ROUTES
    # =========================================================================

    @router.get("/users", response_model=list[UserProfile])
    async def list_users(user: dict = admin_required):
        return auth.get_users(strip=True)

    @router.post("/users", response_model=UserProfile)
    async def add_user(req: UserCreateRequest, user: dict = admin_required):
        return auth.add_user(req.model_dump())

    @router.patch("/users/{user_id}", response_model=UserProfile)
    async def update_user(user_id: int, req: UserUpdateRequest, user: dict = admin_required):
        return auth.update_user(user_id, req.model_dump())

    @router.delete("/users/{user_id}")
    async def delete_user(user_id: int, user: dict = admin_required):
        auth.delete_user(user_id)
        return {"message": "User deleted"}

    @router.post("/users/change-password", response_model=UserProfile)
    async def change_password(req: PasswordChangeRequest, user: dict = user_required):
        """Requires the current password, so a stolen token alone cannot reset it."""
        return auth.update_own_password(user["username"], req.current_password, req.new_password)

    @router.post("/users/otp/setup")
    async def otp_setup(user: dict = user_required):
        return auth.setup_otp(user["username"])

    @router.post("/users/otp/activate", response_model=UserProfile)
    async def otp_activate(req: OtpActivateRequest, user: dict = user_required):
        return auth.activate_otp(user["username"], req.code)

    @router.post("/users/otp/deactivate", response_model=UserProfile)
    async def otp_deactivate(req: OtpDeactivateRequest, user: dict = user_required):
        return auth.deactivate_otp(user["username"], req.password)

    return router
