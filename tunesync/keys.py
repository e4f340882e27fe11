"""
Entity kinds and the Redis key convention for LikeSets.

  song:{song_id}:likedBy        — SET of user_ids who liked the song
  comment:{comment_id}:likedBy  — SET of user_ids who liked the comment

The flush job discovers pending work by scanning for `{kind}:*:likedBy`.
"""
from enum import Enum

from tunesync.errors import InvalidLikeRequest

LIKED_BY_SUFFIX = "likedBy"

# Written into every LikeSet when it is hydrated so the set survives the
# removal of its last real member (Redis drops empty sets). Never reported
# as a liker.
HYDRATED_MARKER = "__hydrated__"


class EntityKind(str, Enum):
    SONG = "song"
    COMMENT = "comment"


def like_set_key(kind: EntityKind, entity_id: str) -> str:
    if not entity_id or ":" in entity_id:
        raise InvalidLikeRequest(f"Invalid entity id: {entity_id!r}")
    return f"{kind.value}:{entity_id}:{LIKED_BY_SUFFIX}"


def like_set_pattern(kind: EntityKind) -> str:
    return f"{kind.value}:*:{LIKED_BY_SUFFIX}"


def parse_like_set_key(key: str) -> tuple[EntityKind, str]:
    """Split a LikeSet key back into (kind, entity_id).

    Raises ValueError for anything that does not follow the convention.
    """
    parts = key.split(":")
    if len(parts) != 3 or parts[2] != LIKED_BY_SUFFIX or not parts[1]:
        raise ValueError(f"Malformed like-set key: {key!r}")
    try:
        kind = EntityKind(parts[0])
    except ValueError:
        raise ValueError(f"Unknown entity kind in key: {key!r}") from None
    return kind, parts[1]