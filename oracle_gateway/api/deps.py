# oracle_gateway/api/deps.py
"""FastAPI dependencies resolving the components created in main.create_app()."""
from fastapi import Request

from oracle_gateway.services.fetcher import FailoverFetcher
from oracle_gateway.x402.gate import AccessGate


def get_fetcher(request: Request) -> FailoverFetcher:
    return request.app.state.fetcher


def get_gate(request: Request) -> AccessGate:
    return request.app.state.gate
