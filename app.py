#!/usr/bin/env python3
"""
Bridgekeeper - Launcher
=========================
Starts the credential service under uvicorn.

    bridgekeeper                      # listen where config.yaml says
    bridgekeeper --host 127.0.0.1     # override the bind address
    bridgekeeper --log-level debug

Start-up order:
    1. config.yaml is created from config.yaml.example if it is missing
    2. .env is loaded into the process environment (signing secret)
    3. logging is configured for the chosen level
    4. uvicorn runs bridgekeeper.main:create_app as an app factory

A fresh install has no data/auth.json; the service then opens the setup
wizard so the first admin account can be created from the browser.
"""

import argparse
import logging
import os
import shutil

import uvicorn
from dotenv import load_dotenv

from bridgekeeper.config import DEFAULTS, ConfigManager

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
LOG_LEVELS = ("debug", "info", "warning", "error")

PROJECT_DIR = os.path.dirname(os.path.abspath(__file__))

log = logging.getLogger("bridgekeeper")


def _parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="bridgekeeper",
        description="Credential and session service for the bridge console",
    )
    parser.add_argument("--host", help="bind address (default: web.host in config.yaml)")
    parser.add_argument("--port", type=int, help="listen port (default: web.port in config.yaml)")
    parser.add_argument("--log-level", default="info", choices=LOG_LEVELS)
    return parser.parse_args(argv)


def _prepare_project(project_dir: str) -> None:
    """Create config.yaml on first start and export .env into the environment."""
    template = os.path.join(project_dir, "config.yaml.example")
    target = os.path.join(project_dir, "config.yaml")
    if os.path.exists(template) and not os.path.exists(target):
        shutil.copy2(template, target)
        log.info("config.yaml created from config.yaml.example")

    dotenv_file = os.path.join(project_dir, ".env")
    if os.path.exists(dotenv_file):
        load_dotenv(dotenv_file)


def main(argv: list[str] | None = None) -> None:
    args = _parse_args(argv)
    logging.basicConfig(level=args.log_level.upper(), format=LOG_FORMAT)

    _prepare_project(PROJECT_DIR)

    web = ConfigManager(PROJECT_DIR).settings.get("web") or {}
    host = args.host or web.get("host") or DEFAULTS["web"]["host"]
    port = args.port or web.get("port") or DEFAULTS["web"]["port"]
    log.info("Listening on http://%s:%s", host, port)

    uvicorn.run(
        "bridgekeeper.main:create_app",
        factory=True,
        host=host,
        port=int(port),
        log_level=args.log_level,
    )


if __name__ == "__main__":
    main()
