"""
Unit tests for search query construction from user profiles.
"""

from datetime import datetime
from types import SimpleNamespace

from grantscout.services.query_builder import (
    BASE_TERMS,
    SITE_FILTERS,
    build_profile_query,
    combine_query_with_profile,
    general_search_query,
)


def make_user(**overrides):
    fields = {
        'intended_education_level': None,
        'current_education_level': None,
        'education_level': None,
        'discipline': None,
        'subject': None,
        'academic_interests': [],
        'nationality': None,
    }
    fields.update(overrides)
    return SimpleNamespace(**fields)


class TestBuildProfileQuery:
    """Tests for build_profile_query function."""

    def test_full_profile_term_order(self):
        """Levels, discipline, subject, interests and nationality appear in that order."""
        user = make_user(
            intended_education_level='masters',
            current_education_level='undergraduate',
            discipline='Biology',
            subject='Genomics',
            academic_interests=['genetics', 'ecology', 'evolution', 'botany'],
            nationality='Kenya',
        )

        query = build_profile_query(user)

        assert query == (
            f"{BASE_TERMS} masters OR graduate OR postgraduate undergraduate OR bachelors "
            f"Biology Genomics genetics OR ecology OR evolution Kenya {SITE_FILTERS}"
        )

    def test_interests_capped_at_three(self):
        user = make_user(academic_interests=['a1', 'b2', 'c3', 'd4'])
        query = build_profile_query(user)
        assert 'a1 OR b2 OR c3' in query
        assert 'd4' not in query

    def test_same_current_and_intended_level_listed_once(self):
        user = make_user(intended_education_level='phd', current_education_level='phd')
        query = build_profile_query(user)
        assert query.count('PhD OR doctoral OR doctorate') == 1

    def test_highschool_searches_undergraduate(self):
        """Highschool students are looking for undergraduate funding."""
        user = make_user(current_education_level='highschool')
        assert 'undergraduate OR bachelors' in build_profile_query(user)

    def test_deprecated_level_used_as_fallback(self):
        user = make_user(education_level='phd')
        assert 'PhD OR doctoral OR doctorate' in build_profile_query(user)

    def test_deprecated_level_ignored_when_current_set(self):
        user = make_user(current_education_level='masters', education_level='phd')
        query = build_profile_query(user)
        assert 'masters OR graduate' in query
        assert 'PhD' not in query

    def test_empty_profile_gives_base_query(self):
        assert build_profile_query(make_user()) == f"{BASE_TERMS} {SITE_FILTERS}"


class TestCombinedQueries:
    """Tests for free-text and scheduled queries."""

    def test_free_text_comes_first(self):
        user = make_user(discipline='Biology')
        query = combine_query_with_profile('  marine research  ', user)
        assert query.startswith(f"marine research {BASE_TERMS}")
        assert 'Biology' in query

    def test_general_query_carries_year_and_all_levels(self):
        query = general_search_query(datetime(2027, 2, 1))
        assert query.startswith('2027 ')
        assert 'bachelors' in query
        assert 'postgraduate' in query
        assert 'doctoral' in query
        assert query.endswith(SITE_FILTERS)
