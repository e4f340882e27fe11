"""FastAPI dependencies resolving the per-process stores built at startup."""
from fastapi import Request

from tunesync.clients.redis_client import MembershipStore
from tunesync.likes import LikeCoordinator
from tunesync.stores.records import DurableRecordStore


def get_membership(request: Request) -> MembershipStore:
    return request.app.state.membership


def get_records(request: Request) -> DurableRecordStore:
    return request.app.state.records


def get_coordinator(request: Request) -> LikeCoordinator:
    return request.app.state.coordinator
