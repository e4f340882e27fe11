import pytest
from pydantic import ValidationError

from tunesync.errors import NotFoundError
from tunesync.keys import EntityKind
from tunesync.schemas import CommentUpdate, SongUpdate


async def test_find_entity_by_id(records, make_song):
    song = await make_song("S1")

    found = await records.find_entity_by_id(EntityKind.SONG, "S1")

    assert found.song_id == song.song_id
    assert await records.find_entity_by_id(EntityKind.SONG, "missing") is None
    assert await records.find_entity_by_id(EntityKind.COMMENT, "S1") is None


async def test_upsert_like_record_replaces_user_ids(records, make_song):
    await make_song("S1")

    await records.upsert_like_record(EntityKind.SONG, "S1", ["U2", "U1"])
    assert await records.get_like_user_ids(EntityKind.SONG, "S1") == ["U1", "U2"]

    await records.upsert_like_record(EntityKind.SONG, "S1", ["U3"])
    assert await records.get_like_user_ids(EntityKind.SONG, "S1") == ["U3"]


async def test_upsert_like_record_is_idempotent(records, make_song, make_comment):
    await make_song("S1")
    await make_comment("S1", comment_id="C1")

    for _ in range(3):
        await records.upsert_like_record(EntityKind.COMMENT, "C1", ["U1", "U1", "U2"])

    assert await records.get_like_user_ids(EntityKind.COMMENT, "C1") == ["U1", "U2"]


async def test_get_like_user_ids_without_record(records):
    assert await records.get_like_user_ids(EntityKind.SONG, "nothing") == []


async def test_set_aggregate_field(records, make_song):
    await make_song("S1")

    assert await records.set_aggregate_field(EntityKind.SONG, "S1", "like_count", 4) is True
    song = await records.find_entity_by_id(EntityKind.SONG, "S1")
    assert song.like_count == 4

    assert await records.set_aggregate_field(EntityKind.SONG, "gone", "like_count", 1) is False


@pytest.mark.parametrize(
    "kind, field",
    [(EntityKind.SONG, "title"), (EntityKind.COMMENT, "comment_count"), (EntityKind.SONG, "views")],
)
async def test_set_aggregate_field_rejects_non_counters(records, kind, field):
    with pytest.raises(ValueError):
        await records.set_aggregate_field(kind, "S1", field, 1)


async def test_set_aggregate_field_rejects_negative(records):
    with pytest.raises(ValueError):
        await records.set_aggregate_field(EntityKind.SONG, "S1", "like_count", -1)


async def test_count_child_documents(records, make_song, make_comment):
    await make_song("S1")
    await make_song("S2")
    await make_comment("S1", comment_id="C1")
    await make_comment("S1", comment_id="C2", parent_comment_id="C1")
    await make_comment("S2", comment_id="C3")

    assert await records.count_child_documents(EntityKind.SONG, "S1") == 2
    assert await records.count_child_documents(EntityKind.COMMENT, "C1") == 1


async def test_create_comment_recomputes_comment_count(records, make_song):
    await make_song("S1")

    first = await records.create_comment("S1", "U1", "love it")
    await records.create_comment("S1", "U2", "same", parent_comment_id=first.comment_id)

    song = await records.find_entity_by_id(EntityKind.SONG, "S1")
    assert song.comment_count == 2


async def test_create_comment_requires_song_and_parent_on_same_song(records, make_song, make_comment):
    await make_song("S1")
    await make_song("S2")
    await make_comment("S2", comment_id="C9")

    with pytest.raises(NotFoundError):
        await records.create_comment("missing", "U1", "hello")
    with pytest.raises(NotFoundError):
        await records.create_comment("S1", "U1", "reply", parent_comment_id="C9")


async def test_delete_comment_tree_removes_deep_reply_chain(records, make_song, make_comment):
    await make_song("S1")
    await make_comment("S1", comment_id="root")
    parent = "root"
    for depth in range(60):
        await make_comment("S1", comment_id=f"r{depth}", parent_comment_id=parent)
        parent = f"r{depth}"
    await make_comment("S1", comment_id="root-sibling-reply", parent_comment_id="root")
    await make_comment("S1", comment_id="unrelated")
    await records.upsert_like_record(EntityKind.COMMENT, "r10", ["U1"])

    deleted = await records.delete_comment_tree("root")

    assert deleted[0] == "root"
    assert len(deleted) == 62
    assert await records.find_entity_by_id(EntityKind.COMMENT, "r59") is None
    assert await records.get_like_user_ids(EntityKind.COMMENT, "r10") == []
    song = await records.find_entity_by_id(EntityKind.SONG, "S1")
    assert song.comment_count == 1


async def test_delete_comment_tree_missing_comment(records):
    with pytest.raises(NotFoundError):
        await records.delete_comment_tree("missing")


async def test_update_song_applies_only_listed_fields(records, make_song):
    await make_song("S1", title="Old")

    song = await records.update_song("S1", SongUpdate(title="New"))

    assert song.title == "New"
    assert song.like_count == 0


def test_update_schemas_forbid_unlisted_fields():
    with pytest.raises(ValidationError):
        SongUpdate(title="x", like_count=999)
    with pytest.raises(ValidationError):
        CommentUpdate(song_id="S2")


async def test_update_comment_flags(records, make_song, make_comment):
    await make_song("S1")
    await make_comment("S1", comment_id="C1")

    comment = await records.update_comment("C1", CommentUpdate(is_flagged=True))

    assert comment.is_flagged is True
    assert comment.content == "great track"


async def test_update_missing_entity(records):
    with pytest.raises(NotFoundError):
        await records.update_song("missing", SongUpdate(title="x"))
