"""
Bridgekeeper - Credential and Session Service
===============================================
The login, user and session backend of the bridge management console.

This package provides:
- Salted password digests and constant-time comparison
- TOTP two-factor authentication, including legacy 16-character secrets
- Replay protection for one-time codes
- A JSON-file user store that always keeps at least one admin
- JWT session tokens bound to the running instance
- A FastAPI router exposing all of the above

Architecture:
    passwords.py -> PasswordHasher
    otp.py       -> OtpEngine and its guardrail profiles
    replay.py    -> OtpReplayGuard
    store.py     -> CredentialStore (auth.json, compare-and-swap writes)
    sessions.py  -> SessionIssuer
    auth.py      -> AuthCoordinator, bearer-token dependencies
    config.py    -> config.yaml / .env loading
    errors.py    -> Error taxonomy
    routes.py    -> REST API endpoint handlers
    main.py      -> FastAPI app creation
"""
