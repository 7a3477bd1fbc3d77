# -*- coding: utf-8 -*-
# SPDX-License-Identifier: Apache-2.0

"""
Services package - persistence, events and the governance services.
"""

from .mongodb import MongoDBService, get_mongodb_service, close_mongodb_connection
from .amqp import EventPublisher, NullEventPublisher, EventDispatcher, AMQPConfig, PublishResult, create_event_publisher
from .audit import AuditService
from .auth import AuthService, TokenValidationError
from .membership import MembershipService
from .procedural import ProceduralGateService
from .resolutions import ResolutionService
from .voting import VotingService
from .meetings import MeetingService
from .activation import ActivationService

__all__ = [
    "MongoDBService",
    "get_mongodb_service",
    "close_mongodb_connection",
    "EventPublisher",
    "NullEventPublisher",
    "EventDispatcher",
    "AMQPConfig",
    "PublishResult",
    "create_event_publisher",
    "AuditService",
    "AuthService",
    "TokenValidationError",
    "MembershipService",
    "ProceduralGateService",
    "ResolutionService",
    "VotingService",
    "MeetingService",
    "ActivationService",
]
