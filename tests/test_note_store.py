"""Tests for the note aggregate store."""

from unittest.mock import patch

import pytest
from sqlalchemy import delete, func, select
from sqlalchemy.dialects import mysql, postgresql, sqlite
from sqlalchemy.exc import OperationalError

from tagnotes.exceptions import (
    AttachmentNotFoundError,
    ErrorCode,
    NoteNotFoundError,
    StorageError,
)
from tagnotes.models.db_models import DBAttachment, DBHashtag, DBNote, DBUser
from tagnotes.models.schema import NoteKind
from tagnotes.storage.note_store import NoteAggregateStore


def _count(store, model, **filters):
    with store.transaction("test_count") as session:
        query = select(func.count()).select_from(model)
        for column, value in filters.items():
            query = query.where(getattr(model, column) == value)
        return session.scalar(query)


def _add_attachment(store, note_id, user_id, key="k_file.txt"):
    return store.add_attachment(
        note_id, user_id, blob_key=key, original_name="file.txt",
        mime_type="text/plain", size=4,
    )


class TestCreateNote:
    """Tests for atomic note creation."""

    def test_create_persists_note_and_hashtags(self, note_store, user_id):
        note = note_store.create_note(user_id, "buy milk", NoteKind.TEXT, ["home", "todo"])

        assert note.id is not None
        assert note.kind == NoteKind.TEXT
        assert note.hashtags == ["home", "todo"]
        assert note.timestamp.tzinfo is not None

        stored = note_store.get_note(note.id, user_id)
        assert stored.content == "buy milk"
        assert sorted(stored.hashtags) == ["home", "todo"]

    def test_kind_accepts_plain_string(self, note_store, user_id):
        note = note_store.create_note(user_id, "print(1)", "code", [])
        assert note.kind == NoteKind.CODE

    def test_new_notes_go_to_the_front(self, note_store, user_id):
        first = note_store.create_note(user_id, "first", NoteKind.TEXT, [])
        second = note_store.create_note(user_id, "second", NoteKind.TEXT, [])

        assert first.position == 0
        assert second.position == -1
        notes, _ = note_store.list_notes(user_id)
        assert [n.id for n in notes] == [second.id, first.id]

    def test_positions_are_per_user(self, note_store, user_id, other_user_id):
        note_store.create_note(user_id, "a", NoteKind.TEXT, [])
        note_store.create_note(user_id, "b", NoteKind.TEXT, [])
        other = note_store.create_note(other_user_id, "c", NoteKind.TEXT, [])
        assert other.position == 0

    def test_failed_hashtag_insert_rolls_back_note(self, note_store, user_id):
        with patch.object(
            note_store, "_insert_hashtags",
            side_effect=OperationalError("INSERT", {}, Exception("disk I/O error")),
        ):
            with pytest.raises(StorageError):
                note_store.create_note(user_id, "doomed", NoteKind.TEXT, ["x"])

        assert _count(note_store, DBNote, user_id=user_id) == 0
        assert _count(note_store, DBHashtag) == 0

    def test_unknown_user_is_storage_error(self, note_store):
        with pytest.raises(StorageError):
            note_store.create_note(999_999, "orphan", NoteKind.TEXT, [])


class TestListNotes:
    """Tests for the paged listing query."""

    def test_empty_listing(self, note_store, user_id):
        notes, has_more = note_store.list_notes(user_id)
        assert notes == []
        assert has_more is False

    def test_note_without_hashtags_gets_empty_list(self, note_store, user_id):
        note_store.create_note(user_id, "plain", NoteKind.TEXT, [])
        notes, _ = note_store.list_notes(user_id)
        assert notes[0].hashtags == []

    def test_listing_is_scoped_to_user(self, note_store, user_id, other_user_id):
        note_store.create_note(user_id, "mine", NoteKind.TEXT, ["a"])
        note_store.create_note(other_user_id, "theirs", NoteKind.TEXT, ["b"])

        notes, _ = note_store.list_notes(user_id)
        assert [n.content for n in notes] == ["mine"]

    def test_has_more_and_offset(self, note_store, user_id):
        created = [
            note_store.create_note(user_id, f"n{i}", NoteKind.TEXT, [])
            for i in range(5)
        ]

        page1, more1 = note_store.list_notes(user_id, offset=0, limit=2)
        page3, more3 = note_store.list_notes(user_id, offset=4, limit=2)

        assert more1 is True
        assert [n.id for n in page1] == [created[4].id, created[3].id]
        assert more3 is False
        assert [n.id for n in page3] == [created[0].id]

    def test_equal_positions_order_newest_first(self, note_store, user_id):
        a = note_store.create_note(user_id, "a", NoteKind.TEXT, [])
        b = note_store.create_note(user_id, "b", NoteKind.TEXT, [])
        note_store.sequencer.reorder(user_id, [b.id])
        # b -> 0, a was already 0
        notes, _ = note_store.list_notes(user_id)
        assert {n.position for n in notes} == {0}
        assert [n.id for n in notes] == [b.id, a.id]

    @pytest.mark.parametrize("dialect, function", [
        (sqlite.dialect(), "group_concat(hashtags.tag"),
        (mysql.dialect(), "group_concat(hashtags.tag"),
        (postgresql.dialect(), "string_agg(hashtags.tag"),
    ])
    def test_listing_query_aggregates_tags_per_dialect(self, dialect, function):
        query = NoteAggregateStore.listing_query(user_id=1, offset=0, limit=20)
        assert function in str(query.compile(dialect=dialect))

    def test_count_notes(self, note_store, user_id):
        assert note_store.count_notes(user_id) == 0
        note_store.create_note(user_id, "a", NoteKind.TEXT, [])
        assert note_store.count_notes(user_id) == 1


class TestUpdateNote:
    """Tests for ownership-scoped updates."""

    def test_update_replaces_hashtags_entirely(self, note_store, user_id):
        note = note_store.create_note(user_id, "v1", NoteKind.TEXT, ["a", "b"])

        updated = note_store.update_note(note.id, user_id, "v2", NoteKind.CODE, ["c"])

        assert updated.content == "v2"
        assert updated.kind == NoteKind.CODE
        assert updated.position == note.position
        stored = note_store.get_note(note.id, user_id)
        assert stored.hashtags == ["c"]
        assert _count(note_store, DBHashtag, note_id=note.id) == 1

    def test_update_to_no_hashtags(self, note_store, user_id):
        note = note_store.create_note(user_id, "v1", NoteKind.TEXT, ["a"])
        note_store.update_note(note.id, user_id, "v1", NoteKind.TEXT, [])
        assert note_store.get_note(note.id, user_id).hashtags == []

    def test_update_foreign_note_is_not_found(self, note_store, user_id, other_user_id):
        note = note_store.create_note(user_id, "mine", NoteKind.TEXT, ["keep"])

        with pytest.raises(NoteNotFoundError):
            note_store.update_note(note.id, other_user_id, "hijack", NoteKind.TEXT, [])

        stored = note_store.get_note(note.id, user_id)
        assert stored.content == "mine"
        assert stored.hashtags == ["keep"]

    def test_update_missing_note(self, note_store, user_id):
        with pytest.raises(NoteNotFoundError) as exc_info:
            note_store.update_note(12345, user_id, "x", NoteKind.TEXT, [])
        assert exc_info.value.code == ErrorCode.NOTE_NOT_FOUND


class TestDeleteNote:
    """Tests for aggregate deletion."""

    def test_delete_removes_all_rows_and_returns_keys(self, note_store, user_id):
        note = note_store.create_note(user_id, "bye", NoteKind.TEXT, ["x", "y"])
        _add_attachment(note_store, note.id, user_id, key="k1_a.txt")
        _add_attachment(note_store, note.id, user_id, key="k2_b.txt")

        keys = note_store.delete_note(note.id, user_id)

        assert sorted(keys) == ["k1_a.txt", "k2_b.txt"]
        assert _count(note_store, DBNote, id=note.id) == 0
        assert _count(note_store, DBHashtag, note_id=note.id) == 0
        assert _count(note_store, DBAttachment, note_id=note.id) == 0

    def test_delete_foreign_note_is_not_found(self, note_store, user_id, other_user_id):
        note = note_store.create_note(user_id, "mine", NoteKind.TEXT, [])
        with pytest.raises(NoteNotFoundError):
            note_store.delete_note(note.id, other_user_id)
        assert note_store.note_belongs_to(note.id, user_id)

    def test_second_delete_is_not_found(self, note_store, user_id):
        note = note_store.create_note(user_id, "once", NoteKind.TEXT, [])
        assert note_store.delete_note(note.id, user_id) == []
        with pytest.raises(NoteNotFoundError):
            note_store.delete_note(note.id, user_id)


class TestAttachmentRows:
    """Tests for attachment row operations."""

    def test_add_requires_ownership(self, note_store, user_id, other_user_id):
        note = note_store.create_note(user_id, "n", NoteKind.TEXT, [])
        with pytest.raises(NoteNotFoundError):
            _add_attachment(note_store, note.id, other_user_id)
        assert _count(note_store, DBAttachment) == 0

    def test_get_attachments_grouped_by_note(self, note_store, user_id):
        n1 = note_store.create_note(user_id, "1", NoteKind.TEXT, [])
        n2 = note_store.create_note(user_id, "2", NoteKind.TEXT, [])
        n3 = note_store.create_note(user_id, "3", NoteKind.TEXT, [])
        _add_attachment(note_store, n1.id, user_id, key="k1_a.txt")
        _add_attachment(note_store, n1.id, user_id, key="k2_b.txt")
        _add_attachment(note_store, n3.id, user_id, key="k3_c.txt")

        grouped = note_store.get_attachments_for_notes(user_id, [n1.id, n2.id])

        assert set(grouped) == {n1.id}
        assert [a.blob_key for a in grouped[n1.id]] == ["k1_a.txt", "k2_b.txt"]

    def test_get_attachments_ignores_foreign_notes(self, note_store, user_id, other_user_id):
        note = note_store.create_note(user_id, "n", NoteKind.TEXT, [])
        _add_attachment(note_store, note.id, user_id)
        assert note_store.get_attachments_for_notes(other_user_id, [note.id]) == {}

    def test_get_attachments_for_no_ids(self, note_store, user_id):
        assert note_store.get_attachments_for_notes(user_id, []) == {}

    def test_delete_attachment_returns_row(self, note_store, user_id):
        note = note_store.create_note(user_id, "n", NoteKind.TEXT, [])
        added = _add_attachment(note_store, note.id, user_id)

        removed = note_store.delete_attachment(added.id, note.id, user_id)

        assert removed.blob_key == added.blob_key
        assert _count(note_store, DBAttachment) == 0

    def test_delete_attachment_wrong_note_or_owner(self, note_store, user_id, other_user_id):
        n1 = note_store.create_note(user_id, "1", NoteKind.TEXT, [])
        n2 = note_store.create_note(user_id, "2", NoteKind.TEXT, [])
        added = _add_attachment(note_store, n1.id, user_id)

        with pytest.raises(AttachmentNotFoundError):
            note_store.delete_attachment(added.id, n2.id, user_id)
        with pytest.raises(AttachmentNotFoundError):
            note_store.delete_attachment(added.id, n1.id, other_user_id)
        assert _count(note_store, DBAttachment) == 1


class TestUserCascade:
    """Tests for ON DELETE CASCADE from a user down through the aggregate."""

    def test_deleting_user_removes_owned_rows(self, note_store, user_id, other_user_id):
        first = note_store.create_note(user_id, "one", NoteKind.TEXT, ["a", "b"])
        second = note_store.create_note(user_id, "two", NoteKind.CODE, ["c"])
        _add_attachment(note_store, first.id, user_id, key="k_one.txt")
        _add_attachment(note_store, second.id, user_id, key="k_two.txt")
        kept = note_store.create_note(other_user_id, "theirs", NoteKind.TEXT, ["d"])
        _add_attachment(note_store, kept.id, other_user_id, key="k_theirs.txt")

        with note_store.transaction("delete_user") as session:
            session.execute(delete(DBUser).where(DBUser.id == user_id))

        assert _count(note_store, DBNote, user_id=user_id) == 0
        for note in (first, second):
            assert _count(note_store, DBHashtag, note_id=note.id) == 0
            assert _count(note_store, DBAttachment, note_id=note.id) == 0
        assert note_store.count_notes(other_user_id) == 1
        assert _count(note_store, DBHashtag, note_id=kept.id) == 1
        assert _count(note_store, DBAttachment, note_id=kept.id) == 1
