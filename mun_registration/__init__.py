"""
MUN Registration Package

Administrative web front-end for a Model UN conference's registration
system built with Flask. Committees and their seat inventories live in a
remote document database; the package lets staff browse committees,
toggle and bulk-update seats, assign seats to a recipient (PDF receipt,
upload and email included) and administer user accounts.

Main Components:
- models: Committees, seats, registrations, user profiles, request logs
- repositories: Document store access (Firestore and in-memory)
- telemetry / data_service: Request logging around every remote call
- services: Committee, settings, receipt and user services
- assignments: The seat assignment workflow
- receipts: Receipt pricing, layout and PDF rendering
- auth, storage, email_service: Auth provider, object storage, email
- exceptions: Custom exception classes for error handling
- app: Main Flask application class

Usage:
    from mun_registration import create_development_app

    app = create_development_app()
    app.run()
"""

__version__ = "1.0.0"

# Import main components for easy access
from .app import create_app, create_development_app, create_production_app
from .models import Committee, Seat, SeatStats, Registration, UserProfile, UserRole
from .services import CommitteeService, RegistrationSettingsService, ReceiptService, UserService
from .assignments import SeatAssignmentWorkflow
from .repositories import RepositoryFactory
from .exceptions import (
    MUNRegistrationException,
    CommitteeNotFoundException,
    UserNotFoundException,
    AuthenticationFailedException,
    DataValidationException,
    DataAccessException,
    ExternalServiceException,
    SeatSelectionException,
    ConfirmationRequired,
    StaleCommitteeException,
    AssignmentFailedException
)

__all__ = [
    # App factory functions
    'create_app',
    'create_development_app',
    'create_production_app',

    # Data models
    'Committee',
    'Seat',
    'SeatStats',
    'Registration',
    'UserProfile',
    'UserRole',

    # Services
    'CommitteeService',
    'RegistrationSettingsService',
    'ReceiptService',
    'UserService',
    'SeatAssignmentWorkflow',

    # Repository factory
    'RepositoryFactory',

    # Exceptions
    'MUNRegistrationException',
    'CommitteeNotFoundException',
    'UserNotFoundException',
    'AuthenticationFailedException',
    'DataValidationException',
    'DataAccessException',
    'ExternalServiceException',
    'SeatSelectionException',
    'ConfirmationRequired',
    'StaleCommitteeException',
    'AssignmentFailedException'
]
