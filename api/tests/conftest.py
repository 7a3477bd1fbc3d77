# -*- coding: utf-8 -*-
# SPDX-License-Identifier: Apache-2.0

"""
Pytest configuration and fixtures.

Services run against an in-memory mongomock database with the production
indexes, so the unique (voteId, membershipId) and agenda numbering
constraints are enforced in tests too.
"""

import os
from datetime import datetime, timedelta
from types import SimpleNamespace
from typing import List, Optional
from unittest.mock import Mock

import mongomock
import pytest

# Set test environment before the application modules read it
os.environ['ENVIRONMENT'] = 'test'
os.environ['OTEL_ENABLED'] = 'false'
os.environ['AMQP_ENABLED'] = 'false'
os.environ['EVENT_DISPATCH_WORKERS'] = '0'
os.environ['MONGODB_DATABASE'] = 'bendrija_test'

from domain.membership import classify_position_title
from models.entities import (
    CommunityApplication,
    MemberConsent,
    Membership,
    Organization,
    Position,
    UserContext
)
from models.enums import (
    ApplicationStatus,
    ConsentType,
    MembershipRole,
    MemberStatus,
    OrganizationStatus
)
from services.amqp import EventDispatcher, PublishResult
from services.audit import AuditService
from services.auth import AuthService
from services.membership import MembershipService
from services.mongodb import MongoDBService
from services.procedural import ProceduralGateService
from services.resolutions import ResolutionService
from services.voting import VotingService
from services.meetings import MeetingService
from services.activation import ActivationService

TEST_JWT_SECRET = "test-secret"
SEED_USER = "seed"


def make_user(user_id: str, permissions: Optional[List[str]] = None) -> UserContext:
    """Caller identity as the auth layer would produce it."""
    return UserContext(user_id=user_id, permissions=permissions or [])


class GovernanceSeed:
    """Writes fixture documents straight into the database."""

    def __init__(self, mongo_service: MongoDBService):
        self.mongo_service = mongo_service

    def organization(self, name: str = "Oak Street Co-op", slug: str = "oak-street",
                     status: OrganizationStatus = OrganizationStatus.ACTIVE,
                     metadata: Optional[dict] = None) -> str:
        organization = Organization(
            name=name,
            slug=slug,
            status=status,
            metadata=metadata or {},
            created_by=SEED_USER,
            updated_by=SEED_USER
        )
        return self.mongo_service.create("organizations", organization.to_document(), SEED_USER)

    def submitted_organization(self, name: str = "Maple Court Residents", slug: str = "maple-court",
                               proposed: Optional[dict] = None, email: Optional[str] = None) -> str:
        """Provisional organization awaiting review with proposed governance answers."""
        fact = {"pre_org": True}
        if email:
            fact["email"] = email
        return self.organization(
            name=name,
            slug=slug,
            status=OrganizationStatus.SUBMITTED_FOR_REVIEW,
            metadata={
                "fact": fact,
                "governance": {
                    "proposed": proposed if proposed is not None else {
                        "early_voting_days": 3,
                        "board_member_count": 0,
                    }
                }
            }
        )

    def member(self, org_id: str, user_id: str, role: MembershipRole = MembershipRole.MEMBER,
               status: MemberStatus = MemberStatus.ACTIVE) -> str:
        membership = Membership(
            organization_id=org_id,
            user_id=user_id,
            role=role,
            member_status=status,
            created_by=SEED_USER,
            updated_by=SEED_USER
        )
        return self.mongo_service.create("memberships", membership.to_document(), SEED_USER)

    def position(self, org_id: str, user_id: str, title: str, is_active: bool = True) -> str:
        position = Position(
            organization_id=org_id,
            user_id=user_id,
            title=title,
            category=classify_position_title(title),
            is_active=is_active,
            created_by=SEED_USER,
            updated_by=SEED_USER
        )
        return self.mongo_service.create("positions", position.to_document(), SEED_USER)

    def consent(self, org_id: str, user_id: str, consent_type: ConsentType) -> str:
        consent = MemberConsent(
            organization_id=org_id,
            user_id=user_id,
            consent_type=consent_type,
            created_by=user_id,
            updated_by=user_id
        )
        return self.mongo_service.create("member_consents", consent.to_document(), user_id)

    def all_consents(self, org_id: str, user_id: str) -> None:
        for consent_type in ConsentType:
            self.consent(org_id, user_id, consent_type)

    def application(self, organization_name: str, email: str,
                    status: ApplicationStatus = ApplicationStatus.PENDING) -> str:
        application = CommunityApplication(organization_name=organization_name, email=email, status=status)
        document = application.model_dump(by_alias=True, exclude={"id"})
        return self.mongo_service.create("community_applications", document, SEED_USER)


def build_services(mongo_service: MongoDBService, event_publisher) -> SimpleNamespace:
    """Wire the governance services the same way the application factory does."""
    audit = AuditService(mongo_service)
    dispatcher = EventDispatcher(event_publisher)
    membership = MembershipService(mongo_service, audit)
    procedural = ProceduralGateService(mongo_service, audit)
    resolutions = ResolutionService(mongo_service, membership, procedural, audit, dispatcher)
    voting = VotingService(mongo_service, membership, resolutions, procedural, audit, dispatcher)
    meetings = MeetingService(mongo_service, membership, procedural, voting, audit)
    activation = ActivationService(mongo_service, membership, audit, dispatcher)

    return SimpleNamespace(
        mongo=mongo_service,
        audit=audit,
        dispatcher=dispatcher,
        membership=membership,
        procedural=procedural,
        resolutions=resolutions,
        voting=voting,
        meetings=meetings,
        activation=activation
    )


@pytest.fixture
def mongo_service():
    """MongoDB service backed by mongomock with indexes created."""
    service = MongoDBService(database_name='bendrija_test', client=mongomock.MongoClient())
    service.create_indexes()
    return service


@pytest.fixture
def event_publisher():
    """Publisher double recording every published event."""
    publisher = Mock()
    publisher.publish_event.return_value = PublishResult(
        success=True,
        correlation_id="test-correlation",
        exchange="governance.events",
        routing_key="org.test"
    )
    return publisher


@pytest.fixture
def seed(mongo_service):
    return GovernanceSeed(mongo_service)


@pytest.fixture
def governance(mongo_service, event_publisher):
    return build_services(mongo_service, event_publisher)


@pytest.fixture
def org(seed):
    """
    Active organization with an owner, a chairman, a board member and three
    ordinary members.
    """
    org_id = seed.organization()

    owner_membership = seed.member(org_id, "owner-1", MembershipRole.OWNER)
    chair_membership = seed.member(org_id, "chair-1")
    seed.position(org_id, "chair-1", "Valdybos pirmininkas")
    board_membership = seed.member(org_id, "board-1")
    seed.position(org_id, "board-1", "Valdybos narys")

    members = []
    for n in range(1, 4):
        user_id = f"member-{n}"
        members.append(SimpleNamespace(
            user=make_user(user_id),
            membership_id=seed.member(org_id, user_id)
        ))

    return SimpleNamespace(
        id=org_id,
        owner=make_user("owner-1"),
        owner_membership_id=owner_membership,
        chair=make_user("chair-1"),
        chair_membership_id=chair_membership,
        board=make_user("board-1"),
        board_membership_id=board_membership,
        members=members,
        outsider=make_user("outsider-1")
    )


def future(days: int = 7) -> datetime:
    return datetime.utcnow() + timedelta(days=days)


class GovernanceWorkflow:
    """Multi-step setup shared by service tests."""

    def __init__(self, governance: SimpleNamespace):
        self.governance = governance

    def create_ga_meeting(self, org_id: str, user: UserContext,
                          title: str = "Visuotinis narių susirinkimas", scheduled_at: Optional[datetime] = None):
        """Create a GA meeting; returns (meeting, agenda)."""
        result = self.governance.meetings.create_meeting(org_id, title, scheduled_at or future(), user)
        assert result.success, result.error_message
        return result.data["meeting"], result.data["agenda"]

    def approve_procedural_items(self, meeting_id: str, approver: UserContext) -> None:
        for item in self.governance.procedural.get_agenda_items(meeting_id):
            if item["itemNo"] <= 3:
                result = self.governance.resolutions.approve_resolution(item["resolutionId"], approver)
                assert result.success, result.error_message

    def add_proposed_item(self, meeting_id: str, user: UserContext, title: str = "Stogo remontas") -> str:
        """Add a substantive agenda item and propose it; returns the resolution id."""
        added = self.governance.meetings.add_agenda_item(meeting_id, title, user, content="Remontuoti namo stogą.")
        assert added.success, added.error_message
        resolution_id = added.data["resolution_id"]

        proposed = self.governance.resolutions.propose_resolution(resolution_id, user)
        assert proposed.success, proposed.error_message
        return resolution_id

    def register_remote(self, meeting_id: str, users: List[UserContext]) -> None:
        for user in users:
            result = self.governance.meetings.register_attendance(meeting_id, "REMOTE", user)
            assert result.success, result.error_message

    def open_vote(self, resolution_id: str, user: UserContext, kind: str = "GA") -> str:
        result = self.governance.voting.create_vote(resolution_id, user, kind=kind)
        assert result.success, result.error_message
        return result.data["id"]

    def ready_substantive_vote(self, org, title: str = "Stogo remontas"):
        """
        GA meeting with items 1-3 approved and an open vote on item 4.

        Returns:
            (meeting id, resolution id, vote id)
        """
        meeting, _ = self.create_ga_meeting(org.id, org.chair)
        self.approve_procedural_items(meeting["id"], org.chair)
        resolution_id = self.add_proposed_item(meeting["id"], org.chair, title)
        vote_id = self.open_vote(resolution_id, org.chair)
        return meeting["id"], resolution_id, vote_id


@pytest.fixture
def workflow(governance):
    return GovernanceWorkflow(governance)


@pytest.fixture
def user_factory():
    return make_user


@pytest.fixture
def auth_service():
    return AuthService(secret=TEST_JWT_SECRET)


@pytest.fixture
def app(mongo_service, event_publisher, auth_service):
    """Flask application wired to the in-memory database."""
    from app import create_app

    application = create_app(
        mongodb_service=mongo_service,
        event_publisher=event_publisher,
        auth_service=auth_service
    )
    application.config['TESTING'] = True
    return application


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def auth_headers(auth_service):
    """Build bearer headers for a user id."""
    def _headers(user_id: str, permissions: Optional[List[str]] = None):
        token = auth_service.issue_token(user_id, permissions=permissions)
        return {"Authorization": f"Bearer {token}"}
    return _headers
