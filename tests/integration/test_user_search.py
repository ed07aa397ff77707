"""
Integration tests for user-initiated search.

The catalogue is searched first; live discovery runs only when it holds
fewer than the requested number of matches.
"""

from uuid import uuid4

import pytest

from grantscout.errors import NotFound
from grantscout.models import MatchKind, UserOpportunityMatch
from grantscout.services.discovery import search_opportunities
from grantscout.services.embeddings import generate_opportunity_embedding
from grantscout.services.extract_client import BATCH_EXTRACTION_PROMPT
from grantscout.services.persistence import tag_opportunity
from tests.fixtures.fakes import FakeExtractClient, FakeSearchClient, opportunity_payload, scholarship_urls
from tests.fixtures.sample_data import create_opportunity, persist

RESEARCH_DESCRIPTION = 'Funding for genetics and ecology research by biology masters students.'


def research_items(urls, prompt):
    """Extracted pages describing research the seeded user is interested in."""
    if prompt == BATCH_EXTRACTION_PROMPT:
        return {'opportunities': [opportunity_payload(url, description=RESEARCH_DESCRIPTION) for url in urls]}
    return opportunity_payload(urls[0], description=RESEARCH_DESCRIPTION)


@pytest.fixture
def discovery_options(search_client, extractor_options):
    return {
        'search_client': search_client,
        'extract_client': FakeExtractClient(responder=research_items),
        **extractor_options,
    }


def seed_catalogue(db_session, count):
    opportunities = [
        create_opportunity(title=f'Research Award {i}', description=RESEARCH_DESCRIPTION)
        for i in range(count)
    ]
    for opportunity in opportunities:
        persist(db_session, opportunity)
        generate_opportunity_embedding(opportunity.id)
    return opportunities


class TestDatabaseFirst:
    """Enough catalogue matches: no discovery runs"""

    def test_database_results_returned(self, db_session, user, discovery_options):
        seed_catalogue(db_session, 5)

        result = search_opportunities(user.id, 'genetics research', **discovery_options)

        assert result['source'] == 'database'
        assert result['job_id'] is None
        assert result['total_found'] == 5
        assert all(o['match_score'] >= 30 for o in result['opportunities'])
        assert result['opportunities'][0]['match_reasoning'].startswith('Semantic similarity: ')
        assert discovery_options['search_client'].queries == []

    def test_min_matches_controls_threshold(self, db_session, user, discovery_options):
        seed_catalogue(db_session, 2)

        result = search_opportunities(user.id, 'genetics research', min_matches=2, **discovery_options)

        assert result['source'] == 'database'
        assert result['total_found'] == 2


class TestLiveDiscovery:
    """Too few catalogue matches: discover, match and store"""

    def test_discovery_results_matched_and_saved(self, db_session, user, discovery_options):
        result = search_opportunities(user.id, 'genetics research', **discovery_options)

        assert result['source'] == 'search'
        assert result['job_id'] is not None
        assert result['total_found'] == 5
        scores = [o['match_score'] for o in result['opportunities']]
        assert scores == sorted(scores, reverse=True)
        assert all(score >= 30 for score in scores)

        rows = db_session.query(UserOpportunityMatch).filter_by(user_id=user.id).all()
        assert len(rows) == 5
        assert {row.match_type for row in rows} == {MatchKind.USER_SEARCH}

    def test_only_opportunities_from_this_run_are_matched(self, db_session, user, discovery_options):
        """A catalogue row refreshed while discovery runs is not treated as discovered."""
        existing = seed_catalogue(db_session, 1)[0]

        class TaggingSearchClient(FakeSearchClient):
            def search(self, query, limit):
                tag_opportunity(existing.id, ['STEM'])
                return super().search(query, limit)

        discovery_options['search_client'] = TaggingSearchClient(scholarship_urls(5))

        result = search_opportunities(user.id, 'genetics research', **discovery_options)

        assert result['source'] == 'search'
        rows = db_session.query(UserOpportunityMatch).filter_by(
            user_id=user.id, match_type=MatchKind.USER_SEARCH,
        ).all()
        assert len(rows) == 5
        assert existing.id not in {row.opportunity_id for row in rows}

    def test_discovery_query_includes_profile(self, user, discovery_options):
        search_opportunities(user.id, 'genetics research', **discovery_options)

        query, _ = discovery_options['search_client'].queries[0]
        assert query.startswith('genetics research')
        assert 'Biology' in query

    def test_failed_discovery_returns_database_results(self, user, discovery_options):
        discovery_options['search_client'] = FakeSearchClient([])

        result = search_opportunities(user.id, 'genetics research', **discovery_options)

        assert result['source'] == 'database'
        assert result['opportunities'] == []
        assert result['job_id'] is not None


class TestValidation:

    @pytest.mark.parametrize("query", ['', '   '])
    def test_blank_query(self, user, query):
        with pytest.raises(ValueError):
            search_opportunities(user.id, query)

    def test_unknown_user(self):
        with pytest.raises(NotFound):
            search_opportunities(uuid4(), 'genetics research')
