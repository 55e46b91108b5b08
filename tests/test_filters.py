"""Tests for the filter pipeline."""

import os
import sys
from unittest.mock import MagicMock

import pytest

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from core.filters import FilterConfig, FilterEngine
from core.library_cache import CachedResolver
from conftest import make_item


TAGS = {1: "done", 2: "ignore"}
PROFILES = {1: "HD-1080p", 2: "Ultra-HD"}


@pytest.fixture
def engine():
    return FilterEngine()


@pytest.fixture
def resolver():
    return CachedResolver(TAGS, PROFILES)


@pytest.fixture
def library():
    return [
        make_item(1, monitored=True),
        make_item(2, monitored=False),
        make_item(3, monitored=True, tags=[1]),
        make_item(4, monitored=True, tags=[2]),
        make_item(5, monitored=True, profile_id=2),
        make_item(6, monitored=True, status="announced"),
    ]


def ids(items):
    return [item.id for item in items]


class TestStages:
    def test_no_filters_returns_everything(self, engine, resolver, library):
        assert ids(engine.filter(library, FilterConfig(), resolver)) == [1, 2, 3, 4, 5, 6]

    def test_monitored(self, engine, resolver, library):
        assert ids(engine.filter(library, FilterConfig(monitored=True), resolver)) == [1, 3, 4, 5, 6]
        assert ids(engine.filter(library, FilterConfig(monitored=False), resolver)) == [2]

    def test_completion_tag_excludes_tagged(self, engine, resolver, library):
        assert 3 not in ids(engine.filter(library, FilterConfig(tag_name="done"), resolver))

    def test_ignore_tag_excludes_tagged(self, engine, resolver, library):
        assert 4 not in ids(engine.filter(library, FilterConfig(ignore_tag="ignore"), resolver))

    def test_quality_profile(self, engine, resolver, library):
        assert ids(engine.filter(library, FilterConfig(quality_profile_name="Ultra-HD"), resolver)) == [5]

    def test_status(self, engine, resolver, library):
        assert ids(engine.filter(library, FilterConfig(status="announced"), resolver)) == [6]

    @pytest.mark.parametrize("status", ["", "any", "Any"])
    def test_status_any_is_disabled(self, engine, resolver, library, status):
        assert len(engine.filter(library, FilterConfig(status=status), resolver)) == 6

    def test_all_stages_combined(self, engine, resolver, library):
        config = FilterConfig(
            monitored=True, tag_name="done", ignore_tag="ignore",
            quality_profile_name="HD-1080p", status="released",
        )
        assert ids(engine.filter(library, config, resolver)) == [1]


class TestUnresolvedNames:
    def test_missing_tag_skips_stage(self, engine, library):
        resolver = CachedResolver({}, PROFILES)
        result = engine.filter(library, FilterConfig(tag_name="done"), resolver)
        assert len(result) == len(library)

    def test_missing_profile_skips_stage(self, engine, resolver, library):
        result = engine.filter(library, FilterConfig(quality_profile_name="Nope"), resolver)
        assert len(result) == len(library)


class TestPurity:
    def test_lookups_memoized_per_call(self, engine, library):
        resolver = MagicMock()
        resolver.find_tag_id.return_value = 1
        resolver.find_quality_profile_id.return_value = None
        config = FilterConfig(tag_name="done", ignore_tag="done", quality_profile_name="HD-1080p")

        engine.filter(library, config, resolver)
        assert resolver.find_tag_id.call_count == 1
        assert resolver.find_quality_profile_id.call_count == 1

        engine.filter(library, config, resolver)
        assert resolver.find_tag_id.call_count == 2

    def test_empty_input_makes_no_lookups(self, engine):
        resolver = MagicMock()
        assert engine.filter([], FilterConfig(tag_name="done"), resolver) == []
        resolver.find_tag_id.assert_not_called()

    def test_stops_when_nothing_left(self, engine):
        resolver = MagicMock()
        unmonitored = [make_item(1, monitored=False), make_item(2, monitored=False)]
        result = engine.filter(unmonitored, FilterConfig(monitored=True, tag_name="done"), resolver)
        assert result == []
        resolver.find_tag_id.assert_not_called()

    @pytest.mark.parametrize("config", [
        FilterConfig(monitored=True),
        FilterConfig(tag_name="done", ignore_tag="ignore"),
        FilterConfig(monitored=True, quality_profile_name="HD-1080p", status="released"),
    ])
    def test_idempotent(self, engine, resolver, library, config):
        once = engine.filter(library, config, resolver)
        assert engine.filter(once, config, resolver) == once

    def test_does_not_mutate_input(self, engine, resolver, library):
        before = list(library)
        engine.filter(library, FilterConfig(monitored=True, tag_name="done"), resolver)
        assert library == before
