"""
Request-time like / unlike coordination.

Likes are never written to the database on the request path. The only
durable read is the existence check (and, when the entity has no LikeSet in
Redis yet, the one-off read of its LikeRecord to hydrate the set). From then
on the Redis set is the source of truth until the sync worker flushes it.
"""
import logging
from functools import partial

from opentelemetry import trace

from tunesync.clients.redis_client import MembershipStore
from tunesync.errors import InvalidLikeRequest, NotFoundError
from tunesync.keys import HYDRATED_MARKER, EntityKind, like_set_key
from tunesync.schemas import LikeResult, UnlikeResult
from tunesync.stores.records import DurableRecordStore
from tunesync.telemetry import LIKE_MUTATIONS_TOTAL

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)


class LikeCoordinator:
    def __init__(self, membership: MembershipStore, records: DurableRecordStore):
        self.membership = membership
        self.records = records

    async def like(self, kind: EntityKind, entity_id: str, user_id: str) -> LikeResult:
        changed = await self._apply(kind, entity_id, user_id, add=True)
        return LikeResult(already_liked=not changed)

    async def unlike(self, kind: EntityKind, entity_id: str, user_id: str) -> UnlikeResult:
        changed = await self._apply(kind, entity_id, user_id, add=False)
        return UnlikeResult(already_unliked=not changed)

    async def _apply(self, kind: EntityKind, entity_id: str, user_id: str, add: bool) -> bool:
        action = "like" if add else "unlike"
        with tracer.start_as_current_span(f"{action}_{kind.value}") as span:
            span.set_attribute("entity.kind", kind.value)
            span.set_attribute("entity.id", entity_id)
            span.set_attribute("user.id", user_id)

            if user_id == HYDRATED_MARKER:
                raise InvalidLikeRequest(f"Reserved user id: {user_id!r}")
            if await self.records.find_entity_by_id(kind, entity_id) is None:
                raise NotFoundError(kind.value, entity_id)

            key = like_set_key(kind, entity_id)
            changed = await self.membership.mutate_member(
                key,
                user_id,
                add=add,
                seed_loader=partial(self.records.get_like_user_ids, kind, entity_id),
            )

            span.set_attribute("like.changed", changed)
            LIKE_MUTATIONS_TOTAL.labels(
                kind=kind.value, action=action, changed=str(changed).lower()
            ).inc()
            logger.debug(
                "%s %s %s by %s (changed=%s)", action, kind.value, entity_id, user_id, changed
            )
            return changed
