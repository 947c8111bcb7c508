"""
FastAPI dependencies for the process-scoped connect components.

``create_app`` builds one state store, token vault and connector per process
and parks them on ``app.state``; routes receive them through these functions,
so tests can build an app around in-memory fakes.
"""

from __future__ import annotations

from fastapi import Request

from connectors.base import BaseConnector
from connectors.state import OAuthStateStore
from connectors.token_manager import TokenVault


def get_state_store(request: Request) -> OAuthStateStore:
    return request.app.state.state_store


def get_token_vault(request: Request) -> TokenVault:
    return request.app.state.token_vault


def get_connector(request: Request) -> BaseConnector:
    return request.app.state.connector
