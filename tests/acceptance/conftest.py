# -*- coding: utf-8 -*-
# SPDX-License-Identifier: Apache-2.0

"""
Fixtures for acceptance tests.

The application runs against an in-memory mongomock database; events are
recorded by a publisher double instead of reaching a broker.
"""

import os
from unittest.mock import Mock

import mongomock
import pytest

os.environ['ENVIRONMENT'] = 'test'
os.environ['OTEL_ENABLED'] = 'false'
os.environ['AMQP_ENABLED'] = 'false'
os.environ['EVENT_DISPATCH_WORKERS'] = '0'

from domain.membership import classify_position_title
from models.entities import Membership, Organization, Position
from models.enums import MembershipRole, MemberStatus, OrganizationStatus
from services.amqp import PublishResult
from services.auth import AuthService
from services.mongodb import MongoDBService

ACCEPTANCE_SECRET = "acceptance-secret"


@pytest.fixture
def test_db():
    service = MongoDBService(database_name='bendrija_acceptance', client=mongomock.MongoClient())
    service.create_indexes()
    return service


@pytest.fixture
def published_events():
    publisher = Mock()
    publisher.publish_event.return_value = PublishResult(
        success=True, correlation_id="acceptance", exchange="governance.events", routing_key="org.acceptance"
    )
    return publisher


@pytest.fixture
def test_client(test_db, published_events):
    from app import create_app

    app = create_app(
        mongodb_service=test_db,
        event_publisher=published_events,
        auth_service=AuthService(secret=ACCEPTANCE_SECRET)
    )
    app.config['TESTING'] = True
    return app.test_client()


@pytest.fixture
def bearer():
    """Authorization headers for a user id."""
    auth_service = AuthService(secret=ACCEPTANCE_SECRET)

    def _bearer(user_id, permissions=None):
        return {"Authorization": f"Bearer {auth_service.issue_token(user_id, permissions=permissions)}"}
    return _bearer


@pytest.fixture
def oak_street(test_db):
    """
    "Oak Street Co-op" with ten active members: an owner, a chairman, a
    board member and seven residents.
    """
    organization = Organization(
        name="Oak Street Co-op",
        slug="oak-street",
        status=OrganizationStatus.ACTIVE,
        created_by="seed",
        updated_by="seed"
    )
    org_id = test_db.create("organizations", organization.to_document(), "seed")

    users = ["owner-1", "chair-1", "board-1"] + [f"resident-{n}" for n in range(1, 8)]
    for user_id in users:
        membership = Membership(
            organization_id=org_id,
            user_id=user_id,
            role=MembershipRole.OWNER if user_id == "owner-1" else MembershipRole.MEMBER,
            member_status=MemberStatus.ACTIVE,
            created_by="seed",
            updated_by="seed"
        )
        test_db.create("memberships", membership.to_document(), "seed")

    for user_id, title in (("chair-1", "Valdybos pirmininkas"), ("board-1", "Valdybos narys")):
        position = Position(
            organization_id=org_id,
            user_id=user_id,
            title=title,
            category=classify_position_title(title),
            created_by="seed",
            updated_by="seed"
        )
        test_db.create("positions", position.to_document(), "seed")

    return org_id
