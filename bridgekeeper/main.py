"""
Bridgekeeper - FastAPI Application
====================================
Creates the web application that fronts the credential subsystem.

Responsibilities:
    - Build every component once, in dependency order, and keep them on
      app.state for the lifetime of the process
    - Register the API router
    - Translate AuthError exceptions into JSON error responses

Component graph:
    ConfigManager --------------------------------+
    PasswordHasher -> CredentialStore --+-> SessionIssuer
    OtpEngine, OtpReplayGuard ----------+-> AuthCoordinator
"""

import logging
import os

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from bridgekeeper.auth import AuthCoordinator
from bridgekeeper.config import ConfigManager
from bridgekeeper.errors import AuthError
from bridgekeeper.otp import OtpEngine
from bridgekeeper.passwords import PasswordHasher
from bridgekeeper.replay import OtpReplayGuard
from bridgekeeper.routes import create_router
from bridgekeeper.sessions import SessionIssuer
from bridgekeeper.store import CredentialStore

logger = logging.getLogger("bridgekeeper")


def build_auth(config: ConfigManager) -> AuthCoordinator:
    """Wire up the credential subsystem for one configuration."""
    hasher = PasswordHasher()
    store = CredentialStore(config.auth_path, hasher)
    sessions = SessionIssuer(config, store)
    return AuthCoordinator(
        config=config,
        store=store,
        hasher=hasher,
        otp=OtpEngine(),
        replay_guard=OtpReplayGuard(),
        sessions=sessions,
    )


def create_app(project_dir: str | None = None) -> FastAPI:
    """
    Application factory: create and configure the FastAPI instance.

    Args:
        project_dir: Root directory of the Bridgekeeper project.
                     If None, auto-detected from this file's location.

    Returns:
        Configured FastAPI application ready to run with uvicorn.
    """
    if project_dir is None:
        project_dir = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))

    config = ConfigManager(project_dir)
    if "_config_error" in config.settings:
        logger.error("config.yaml could not be read, using defaults: %s", config.settings["_config_error"])

    auth = build_auth(config)
    if not config.setup_wizard_complete:
        logger.warning("No admin account found in %s, the setup wizard is open.", config.auth_path)

    app = FastAPI(
        title="Bridgekeeper",
        description="Credential and session service for the bridge management console",
        version="1.0.0",
        docs_url="/docs",
        redoc_url=None,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.state.config_manager = config
    app.state.auth = auth

    @app.exception_handler(AuthError)
    async def auth_error_handler(request: Request, exc: AuthError):
        return JSONResponse(status_code=exc.status_code, content={"detail": exc.message})

    app.include_router(create_router(auth=auth, config=config))

    return app
