"""
Unit tests for claim resolution.
"""

import pytest

from shared.test_helpers import TestDataFactory
from service_licensing.app.claims import ClaimMatch, ClaimOutcome, evaluate_claim
from service_licensing.app.models import Organization


def org(org_id, **kwargs):
    return Organization.model_validate(TestDataFactory.create_organization(org_id, **kwargs))


class TestEvaluateClaim:
    """Test cases for evaluate_claim."""

    @pytest.fixture
    def organizations(self):
        return [
            org("org-1", publishers=["Fabrikam"], domains=["fabrikam.com"]),
            org("org-2", publishers=["Contoso"], users=["john.doe@fabrikam.com"]),
        ]

    def test_no_organization_lists_publisher(self, organizations):
        evaluation = evaluate_claim("Northwind", "john.doe@fabrikam.com", organizations)

        assert evaluation.publisher_matched is False
        assert evaluation.candidates == []
        assert evaluation.outcome is ClaimOutcome.NO_PUBLISHER
        assert not evaluation.is_issue
        assert evaluation.winner is None

    def test_single_domain_match_claims(self, organizations):
        evaluation = evaluate_claim(" FABRIKAM ", "Jane@Fabrikam.com", organizations)

        assert evaluation.outcome is ClaimOutcome.CLAIM
        assert evaluation.winner.id == "org-1"
        assert evaluation.candidates[0].match is ClaimMatch.DOMAIN

    def test_publisher_listed_but_caller_unknown_is_unresolved(self, organizations):
        evaluation = evaluate_claim("Fabrikam", "someone@outside.com", organizations)

        assert evaluation.publisher_matched is True
        assert evaluation.outcome is ClaimOutcome.UNRESOLVED
        assert evaluation.is_issue

    def test_two_eligible_organizations_conflict(self):
        organizations = [
            org("org-1", publishers=["Fabrikam"], domains=["fabrikam.com"]),
            org("org-2", publishers=["fabrikam"], users=["john.doe@fabrikam.com"]),
        ]

        evaluation = evaluate_claim("Fabrikam", "john.doe@fabrikam.com", organizations)

        assert evaluation.outcome is ClaimOutcome.CONFLICT
        assert evaluation.is_issue
        assert evaluation.winner is None
        assert [c.organization.id for c in evaluation.candidates] == ["org-1", "org-2"]

    def test_user_match_takes_precedence_within_one_organization(self):
        organizations = [
            org("org-1", publishers=["Fabrikam"], users=["John.Doe@fabrikam.com"],
                domains=["fabrikam.com"]),
        ]

        evaluation = evaluate_claim("Fabrikam", "john.doe@fabrikam.com", organizations)

        assert len(evaluation.candidates) == 1
        assert evaluation.candidates[0].match is ClaimMatch.USER

    def test_evaluation_is_deterministic(self, organizations):
        first = evaluate_claim("Fabrikam", "jane@fabrikam.com", organizations)
        second = evaluate_claim("Fabrikam", "jane@fabrikam.com", organizations)

        assert first == second

    def test_missing_email_yields_no_candidates(self, organizations):
        evaluation = evaluate_claim("Fabrikam", None, organizations)

        assert evaluation.publisher_matched is True
        assert evaluation.candidates == []
