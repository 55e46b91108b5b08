"""Tests for completion-tag bookkeeping."""

import os
import sys
from datetime import datetime, timezone

import pytest

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from core.starr_api import StarrApiError
from core.tagging import IdempotencyTagger
from conftest import FakeLibraryClient, make_item


@pytest.fixture
def tagger(store):
    return IdempotencyTagger(store, clock=lambda: datetime(2024, 1, 1, tzinfo=timezone.utc))


@pytest.fixture
def client():
    return FakeLibraryClient(
        items=[make_item(i, tags=[1] if i <= 2 else []) for i in range(1, 6)],
        tags={1: "done"},
    )


class TestResolveTag:
    def test_existing_tag(self, tagger, client):
        assert tagger.resolve_tag_id(client, "done") == 1

    def test_creates_missing_tag(self, tagger, client):
        tag_id = tagger.resolve_tag_id(client, "searched")
        assert client.tags[tag_id] == "searched"

    def test_no_tag_name(self, tagger, client):
        assert tagger.resolve_tag_id(client, "") is None


class TestMarkDone:
    def test_tags_remote_then_records(self, tagger, client, instance):
        tagger.mark_done(instance, client, [3, 4], 1)
        assert client.tagged_ids(1) == {1, 2, 3, 4}
        assert tagger.previously_marked_ids(instance, 1) == {3, 4}

    def test_remote_failure_records_nothing(self, tagger, client, instance):
        client.fail_on = {"add_tag"}
        with pytest.raises(StarrApiError):
            tagger.mark_done(instance, client, [3], 1)
        assert tagger.previously_marked_ids(instance, 1) == set()

    def test_empty_ids_is_noop(self, tagger, client, instance):
        tagger.mark_done(instance, client, [], 1)
        assert client.added == []

    def test_clear_marks(self, tagger, client, instance):
        tagger.mark_done(instance, client, [3, 4], 1)
        tagger.clear_marks(instance, client, 1, [3])
        assert client.tagged_ids(1) == {1, 2, 4}
        assert tagger.previously_marked_ids(instance, 1) == {4}


class TestResetCompleted:
    def test_missing_tag_is_noop(self, tagger, client, make_instance):
        instance = make_instance(tag_name="never-created")
        assert tagger.reset_completed(instance, client, client.get_media()) == (None, [])
        assert client.removed == []

    def test_clears_every_tagged_monitored_item(self, tagger, client, instance):
        tagger.mark_done(instance, client, [3, 4], 1)
        tag_id, cleared = tagger.reset_completed(instance, client, client.get_media())

        assert tag_id == 1
        assert cleared == [1, 2, 3, 4]
        assert client.tagged_ids(1) == set()
        assert tagger.previously_marked_ids(instance, 1) == set()

    def test_clears_without_local_records(self, tagger, client, instance):
        # tags applied before records existed, or after the records were wiped
        _, cleared = tagger.reset_completed(instance, client, client.get_media())
        assert cleared == [1, 2]
        assert client.tagged_ids(1) == set()

    def test_skips_unmonitored(self, tagger, client, instance):
        client.items[2] = make_item(2, monitored=False, tags=[1])
        _, cleared = tagger.reset_completed(instance, client, client.get_media())
        assert cleared == [1]
        assert client.tagged_ids(1) == {2}

    def test_follows_unmonitored_filter(self, tagger, client, make_instance):
        instance = make_instance(monitored=False)
        client.items[2] = make_item(2, monitored=False, tags=[1])
        _, cleared = tagger.reset_completed(instance, client, client.get_media())
        assert cleared == [2]


class TestClearTracked:
    def test_only_clears_items_it_tagged(self, tagger, client, instance):
        tagger.mark_done(instance, client, [3, 4], 1)
        tag_id, cleared = tagger.clear_tracked(instance, client)

        assert (tag_id, cleared) == (1, [3, 4])
        # items 1 and 2 were tagged by something else
        assert client.tagged_ids(1) == {1, 2}
        assert tagger.previously_marked_ids(instance, 1) == set()

    def test_records_are_per_instance(self, tagger, client, instance, make_instance):
        other = make_instance(id="second")
        tagger.mark_done(other, client, [3], 1)
        assert tagger.clear_tracked(instance, client) == (1, [])
        assert client.removed == []

    def test_missing_tag(self, tagger, client, make_instance):
        instance = make_instance(tag_name="never-created")
        assert tagger.clear_tracked(instance, client) == (None, [])

    def test_remote_failure_keeps_records(self, tagger, client, instance):
        tagger.mark_done(instance, client, [3], 1)
        client.fail_on = {"remove_tag"}
        with pytest.raises(StarrApiError):
            tagger.clear_tracked(instance, client)
        assert tagger.previously_marked_ids(instance, 1) == {3}
