"""
Integration tests for per-user match persistence and the legacy tag path.
"""

import pytest

from grantscout.models import MatchKind, Opportunity, UserOpportunityMatch
from grantscout.services.match_store import (
    FOR_YOU_TAG,
    DualMatchWriter,
    LegacyTagWriter,
    UserMatchWriter,
    get_match_writer,
    get_user_matches,
    save_user_opportunity_matches,
)
from grantscout.services.matching import MatchCandidate
from tests.fixtures.sample_data import create_match, create_opportunity, persist


@pytest.fixture
def opportunity(db_session):
    return persist(db_session, create_opportunity())


def candidate(opportunity, score, reasoning='Hybrid match'):
    return MatchCandidate(opportunity_id=opportunity.id, score=score, reasoning=reasoning,
                          eligibility_factors=['Discipline: Biology'])


def stored_match(db_session, user, opportunity):
    db_session.expire_all()
    return db_session.query(UserOpportunityMatch).filter_by(
        user_id=user.id, opportunity_id=opportunity.id
    ).one()


class TestSaveMatches:
    """Tests for save_user_opportunity_matches"""

    def test_insert_above_threshold_only(self, db_session, user):
        high, low = persist(db_session, create_opportunity(), create_opportunity())

        result = save_user_opportunity_matches(
            user.id, [candidate(high, 45.5), candidate(low, 29.99)], MatchKind.DAILY_AUTOMATED
        )

        assert result == {'inserted': 1, 'updated': 0, 'skipped': 0, 'saved': 1}
        row = stored_match(db_session, user, high)
        assert row.match_score == 45.5
        assert row.match_type == MatchKind.DAILY_AUTOMATED
        assert row.eligibility_factors == ['Discipline: Biology']
        assert db_session.query(UserOpportunityMatch).count() == 1

    def test_daily_overwrites_manual_even_when_lower(self, db_session, user, opportunity):
        persist(db_session, create_match(user.id, opportunity.id, 40.0, MatchKind.MANUAL))

        result = save_user_opportunity_matches(user.id, [candidate(opportunity, 35.0)], MatchKind.DAILY_AUTOMATED)

        assert result['updated'] == 1
        row = stored_match(db_session, user, opportunity)
        assert row.match_score == 35.0
        assert row.match_type == MatchKind.DAILY_AUTOMATED

    def test_lower_manual_keeps_daily(self, db_session, user, opportunity):
        persist(db_session, create_match(user.id, opportunity.id, 40.0, MatchKind.DAILY_AUTOMATED))

        result = save_user_opportunity_matches(user.id, [candidate(opportunity, 30.0)], MatchKind.MANUAL)

        assert result['skipped'] == 1
        row = stored_match(db_session, user, opportunity)
        assert row.match_score == 40.0
        assert row.match_type == MatchKind.DAILY_AUTOMATED

    def test_user_search_overwrites_other_kinds(self, db_session, user, opportunity):
        persist(db_session, create_match(user.id, opportunity.id, 80.0, MatchKind.DAILY_AUTOMATED))

        save_user_opportunity_matches(user.id, [candidate(opportunity, 31.0)], MatchKind.USER_SEARCH)

        row = stored_match(db_session, user, opportunity)
        assert row.match_type == MatchKind.USER_SEARCH
        assert row.match_score == 31.0

    def test_higher_score_overwrites(self, db_session, user, opportunity):
        save_user_opportunity_matches(user.id, [candidate(opportunity, 35.0)], MatchKind.DAILY_AUTOMATED)
        save_user_opportunity_matches(user.id, [candidate(opportunity, 60.0, 'Better')], MatchKind.DAILY_AUTOMATED)

        row = stored_match(db_session, user, opportunity)
        assert row.match_score == 60.0
        assert row.reasoning == 'Better'

    def test_one_row_per_pair_and_none_deleted(self, db_session, user, opportunity):
        other = persist(db_session, create_opportunity())
        save_user_opportunity_matches(user.id, [candidate(opportunity, 50.0), candidate(other, 50.0)],
                                      MatchKind.DAILY_AUTOMATED)

        # A later pass that no longer matches `other` leaves its row in place
        save_user_opportunity_matches(user.id, [candidate(opportunity, 55.0)], MatchKind.DAILY_AUTOMATED)
        save_user_opportunity_matches(user.id, [candidate(opportunity, 20.0)], MatchKind.DAILY_AUTOMATED)

        rows = db_session.query(UserOpportunityMatch).filter_by(user_id=user.id).all()
        assert len(rows) == 2
        assert {row.opportunity_id for row in rows} == {opportunity.id, other.id}

    def test_nothing_eligible(self, user, opportunity):
        result = save_user_opportunity_matches(user.id, [candidate(opportunity, 10.0)], MatchKind.DAILY_AUTOMATED)
        assert result['saved'] == 0


class TestWriters:
    """Tests for the match writer variants"""

    def test_legacy_tag_added_once(self, db_session, user, opportunity):
        writer = LegacyTagWriter()
        writer.write(user.id, [candidate(opportunity, 50.0)], MatchKind.DAILY_AUTOMATED)
        writer.write(user.id, [candidate(opportunity, 50.0)], MatchKind.DAILY_AUTOMATED)

        db_session.expire_all()
        assert db_session.get(Opportunity, opportunity.id).tags.count(FOR_YOU_TAG) == 1

    def test_dual_writer_writes_both(self, db_session, user, opportunity):
        saved = DualMatchWriter(UserMatchWriter(), [LegacyTagWriter()]).write(
            user.id, [candidate(opportunity, 50.0)], MatchKind.DAILY_AUTOMATED
        )

        assert saved == 1
        assert stored_match(db_session, user, opportunity).match_score == 50.0
        assert FOR_YOU_TAG in db_session.get(Opportunity, opportunity.id).tags

    def test_dual_writer_survives_secondary_failure(self, db_session, user, opportunity):
        class BrokenWriter:
            def write(self, user_id, matches, match_type):
                raise RuntimeError("tag store offline")

        saved = DualMatchWriter(UserMatchWriter(), [BrokenWriter()]).write(
            user.id, [candidate(opportunity, 50.0)], MatchKind.DAILY_AUTOMATED
        )

        assert saved == 1
        assert stored_match(db_session, user, opportunity) is not None

    def test_get_match_writer(self):
        assert isinstance(get_match_writer(legacy_enabled=True), DualMatchWriter)
        assert isinstance(get_match_writer(legacy_enabled=False), UserMatchWriter)


class TestGetUserMatches:
    """Tests for get_user_matches"""

    def test_sorted_by_score(self, db_session, user):
        first, second, third = persist(
            db_session,
            create_opportunity(title='Low'), create_opportunity(title='High'), create_opportunity(title='Mid'),
        )
        save_user_opportunity_matches(
            user.id,
            [candidate(first, 31.0), candidate(second, 90.0), candidate(third, 55.0)],
            MatchKind.USER_SEARCH,
        )

        matches = get_user_matches(user.id)

        assert [m['title'] for m in matches] == ['High', 'Mid', 'Low']
        assert matches[0]['match_type'] == 'user_search'
        assert matches[0]['opportunity_id'] == str(second.id)
        assert get_user_matches(user.id, limit=1)[0]['title'] == 'High'

    def test_no_matches(self, user):
        assert get_user_matches(user.id) == []
