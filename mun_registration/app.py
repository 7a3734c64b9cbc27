"""
Main Application Module for MUN Registration

This module contains the main Flask application class that wires the
remote services together and handles HTTP requests: public committee
browsing, account pages and the administrator screens for seats and users.
"""

import logging
from typing import List, Optional

from flask import Flask, flash, redirect, render_template, request, session, url_for

from .assignments import SeatAssignmentWorkflow
from .auth import AuthBackend, AuthService, IdentityToolkitAuthBackend
from .cache import CacheFactory, SnapshotCache
from .config import load_config, service_account_info
from .data_service import DataService
from .email_service import DisabledEmailSender, EmailSender, EmailService, SendGridEmailSender
from .exceptions import (
    AssignmentFailedException,
    AuthenticationFailedException,
    CommitteeNotFoundException,
    ConfirmationRequired,
    DataValidationException,
    MUNRegistrationException,
    UserNotFoundException,
)
from .logging_config import configure_logging
from .models import UserRole
from .receipts import ReceiptOptions
from .repositories import DocumentStore, RepositoryFactory
from .services import (
    SORT_OPTIONS,
    CommitteeService,
    ReceiptService,
    RegistrationSettingsService,
    UserService,
)
from .storage import DisabledObjectStorage, ObjectStorage, SupabaseObjectStorage
from .telemetry import PublicIpResolver, RequestTracker, get_ip_resolver

logger = logging.getLogger(__name__)


class MUNRegistrationApp:
    """
    Main Flask application class for MUN Registration

    Remote collaborators can be injected; anything not injected is built
    from the configuration.
    """

    def __init__(
        self,
        config: Optional[dict] = None,
        store: Optional[DocumentStore] = None,
        cache: Optional[SnapshotCache] = None,
        storage: Optional[ObjectStorage] = None,
        email_sender: Optional[EmailSender] = None,
        auth_backend: Optional[AuthBackend] = None,
        ip_resolver: Optional[PublicIpResolver] = None,
    ):
        """
        Initialize the MUN Registration application

        Args:
            config: Optional configuration overrides
            store: Document store, built from DATA_BACKEND when omitted
            cache: Committee snapshot cache, built from CACHE_BACKEND when omitted
            storage: Object storage for receipts
            email_sender: Outbound email delivery
            auth_backend: Auth provider
            ip_resolver: Public IP resolver used by telemetry
        """
        self.config = load_config(config)
        configure_logging(self.config['LOG_LEVEL'])

        # Initialize Flask app
        self.app = Flask(__name__)
        self._configure_app()

        # Initialize remote services
        self.store = store or self._create_store()
        self.cache = cache or CacheFactory.create_cache(
            self.config['CACHE_BACKEND'],
            host=self.config['REDIS_HOST'],
            port=self.config['REDIS_PORT']
        )
        self.storage = storage or self._create_storage()
        self.email_sender = email_sender or self._create_email_sender()
        self.tracker = RequestTracker(
            self.store,
            ip_resolver or get_ip_resolver(self.config['IP_LOOKUP_TIMEOUT'])
        )
        self.data_service = DataService(self.store, self.tracker)

        # Initialize services
        options = ReceiptOptions(
            conference_name=self.config['CONFERENCE_NAME'],
            contact_email=self.config['CONTACT_EMAIL']
        )
        self.auth_service = AuthService(
            auth_backend or IdentityToolkitAuthBackend(self.config['FIREBASE_API_KEY'] or ""),
            self.tracker,
            session
        )
        self.committee_service = CommitteeService(
            self.data_service, self.cache, self.config['SEAT_REVISION_CHECK']
        )
        self.settings_service = RegistrationSettingsService(
            self.data_service, self.config['DEFAULT_EXCHANGE_RATE']
        )
        self.receipt_service = ReceiptService(
            self.committee_service, self.settings_service, self.storage, options
        )
        self.user_service = UserService(self.data_service)
        self.assignment_workflow = SeatAssignmentWorkflow(
            self.committee_service,
            self.settings_service,
            self.storage,
            EmailService(self.email_sender, self.config['CONFERENCE_NAME']),
            options
        )

        # Register routes
        self._register_routes()

        # Register error handlers
        self._register_error_handlers()

    def _configure_app(self) -> None:
        """Apply Flask settings from the configuration"""
        self.app.secret_key = self.config['SECRET_KEY']
        self.app.permanent_session_lifetime = self.config['PERMANENT_SESSION_LIFETIME']
        self.app.config['DEBUG'] = self.config['DEBUG']
        self.app.config['CONFERENCE_NAME'] = self.config['CONFERENCE_NAME']

        @self.app.context_processor
        def inject_conference():
            return {"conference_name": self.config['CONFERENCE_NAME']}

    def _create_store(self) -> DocumentStore:
        backend = self.config['DATA_BACKEND']
        if backend == 'firestore':
            return RepositoryFactory.create_store(
                backend,
                service_account_info=service_account_info(self.config),
                project_id=self.config['FIREBASE_PROJECT_ID']
            )
        return RepositoryFactory.create_store(backend)

    def _create_storage(self) -> ObjectStorage:
        if self.config['SUPABASE_URL'] and self.config['SUPABASE_KEY']:
            return SupabaseObjectStorage.from_settings(
                self.config['SUPABASE_URL'],
                self.config['SUPABASE_KEY'],
                self.config['SUPABASE_BUCKET']
            )
        logger.warning("SUPABASE_URL/SUPABASE_KEY not set; receipt uploads are disabled")
        return DisabledObjectStorage()

    def _create_email_sender(self) -> EmailSender:
        if self.config['SENDGRID_API_KEY'] and self.config['SENDGRID_FROM_EMAIL']:
            return SendGridEmailSender(self.config['SENDGRID_API_KEY'], self.config['SENDGRID_FROM_EMAIL'])
        logger.warning("SENDGRID_API_KEY/SENDGRID_FROM_EMAIL not set; email delivery is disabled")
        return DisabledEmailSender()

    def _register_routes(self) -> None:
        """Register all Flask routes"""
        self.app.add_url_rule("/", "home", self.home)
        self.app.add_url_rule("/login", "login", self.login, methods=["GET", "POST"])
        self.app.add_url_rule("/logout", "logout", self.logout)
        self.app.add_url_rule("/register", "register", self.register, methods=["GET", "POST"])
        self.app.add_url_rule("/reset-password", "reset_password", self.reset_password, methods=["GET", "POST"])

        # Public committee pages
        self.app.add_url_rule("/committees", "committees", self.committees)
        self.app.add_url_rule("/committees/<committee_id>", "committee_detail", self.committee_detail)

        # Admin screens
        self.app.add_url_rule("/admin", "admin_index", self.admin_index)
        self.app.add_url_rule("/admin/seats", "seat_management", self.seat_management)
        self.app.add_url_rule("/admin/seats/<committee_id>", "seat_detail", self.seat_detail)
        self.app.add_url_rule(
            "/admin/seats/<committee_id>/toggle/<int:seat_index>", "toggle_seat",
            self.toggle_seat, methods=["POST"]
        )
        self.app.add_url_rule("/admin/seats/<committee_id>/bulk", "bulk_seats", self.bulk_seats, methods=["POST"])
        self.app.add_url_rule("/admin/seats/<committee_id>/assign", "assign_seats", self.assign_seats, methods=["POST"])
        self.app.add_url_rule("/admin/users", "users_management", self.users_management)
        self.app.add_url_rule("/admin/users/<user_id>", "user_detail", self.user_detail)
        self.app.add_url_rule("/admin/users/<user_id>/delete", "delete_user", self.delete_user, methods=["POST"])

    def _register_error_handlers(self) -> None:
        """Register error handlers for custom exceptions"""

        @self.app.errorhandler(CommitteeNotFoundException)
        def handle_committee_not_found(e):
            return render_template('error.html',
                                   error_title="Committee Not Found",
                                   error_message=str(e)), 404

        @self.app.errorhandler(UserNotFoundException)
        def handle_user_not_found(e):
            return render_template('error.html',
                                   error_title="User Not Found",
                                   error_message=str(e)), 404

        @self.app.errorhandler(AuthenticationFailedException)
        def handle_auth_failed(e):
            return render_template('login.html',
                                   error="Authentication failed. Please check your credentials."), 401

        @self.app.errorhandler(MUNRegistrationException)
        def handle_registration_exception(e):
            logger.error("Unhandled application error: %s", e)
            return render_template('error.html',
                                   error_title="Application Error",
                                   error_message=str(e)), 500

    # ----------------------------
    # Account pages
    # ----------------------------

    def home(self):
        return redirect(url_for("committees"))

    def login(self):
        """
        Login route

        Returns:
            Rendered login template or redirect to the admin panel on success
        """
        error = None

        if request.method == "POST":
            email = request.form.get("email", "").strip()
            password = request.form.get("password", "")

            try:
                self.auth_service.login(email, password)
                session.permanent = True
                return redirect(url_for("admin_index"))
            except AuthenticationFailedException:
                error = "Invalid credentials. Please try again."
            except MUNRegistrationException as e:
                logger.exception("Login error")
                error = f"An error occurred during login: {e.message}"

        return render_template("login.html", error=error)

    def logout(self):
        self.auth_service.logout()
        return redirect(url_for("login"))

    def register(self):
        """Create an account and its user profile"""
        error = None

        if request.method == "POST":
            form = request.form
            email = form.get("email", "").strip()
            first_name = form.get("first_name", "").strip()
            last_name = form.get("last_name", "").strip()

            try:
                account = self.auth_service.register(
                    email,
                    form.get("password", ""),
                    f"{first_name} {last_name}".strip() or None
                )
                self.user_service.create_profile(account, first_name, last_name, form.get("institution", "").strip())
                session.permanent = True
                flash("Account created.", "success")
                return redirect(url_for("committees"))
            except AuthenticationFailedException as e:
                error = f"Could not create the account ({e.provider_code or 'invalid data'})."
            except MUNRegistrationException as e:
                logger.exception("Registration error")
                error = e.message

        return render_template("register.html", error=error)

    def reset_password(self):
        if request.method == "POST":
            email = request.form.get("email", "").strip()
            try:
                self.auth_service.reset_password(email)
                flash(f"Password reset email sent to {email}.", "success")
                return redirect(url_for("login"))
            except MUNRegistrationException as e:
                logger.exception("Password reset error")
                flash(e.message, "error")

        return render_template("reset_password.html")

    # ----------------------------
    # Public committee pages
    # ----------------------------

    def committees(self):
        cursor = request.args.get("after") or None
        page = self.committee_service.list_page(page_size=9, cursor=cursor)
        return render_template("committees.html", page=page)

    def committee_detail(self, committee_id: str):
        committee = self.committee_service.get_committee(committee_id)
        return render_template("committee_detail.html", committee=committee)

    # ----------------------------
    # Admin screens
    # ----------------------------

    def _is_admin(self) -> bool:
        """
        Check if the current session belongs to an administrator

        Returns:
            True if the signed-in account's profile has the admin flag
        """
        account = self.auth_service.get_current_account()
        if account is None:
            return False
        return self.user_service.is_admin(account.uid)

    def admin_index(self):
        if not self._is_admin():
            return redirect(url_for("login"))

        committees = self.committee_service.load_committees()
        users = self.user_service.list_users()
        return render_template(
            "admin_index.html",
            seat_stats=self.committee_service.aggregate_stats(committees),
            user_stats=self.user_service.stats(users)
        )

    def seat_management(self):
        if not self._is_admin():
            return redirect(url_for("login"))

        search = request.args.get("q", "")
        committees = self.committee_service.load_committees(refresh=bool(request.args.get("refresh")))
        return render_template(
            "seats.html",
            committees=[committee for committee in committees if committee.matches(search)],
            stats=self.committee_service.aggregate_stats(committees),
            search=search
        )

    def seat_detail(self, committee_id: str):
        if not self._is_admin():
            return redirect(url_for("login"))

        committee = self.committee_service.get_committee(committee_id)
        if request.args.get("select") == "all":
            selected = committee.available_indices()
        else:
            try:
                selected = self._selected_seats(request.args.getlist("seats"))
            except DataValidationException as e:
                flash(e.message, "error")
                selected = []
        return render_template("seat_detail.html", committee=committee, stats=committee.stats(), selected=selected)

    def toggle_seat(self, committee_id: str, seat_index: int):
        if not self._is_admin():
            return redirect(url_for("login"))

        try:
            self.committee_service.toggle_seat(committee_id, seat_index)
        except CommitteeNotFoundException:
            raise
        except MUNRegistrationException as e:
            logger.exception("Error updating seat %s of %s", seat_index, committee_id)
            flash(f"Error updating the seat: {e.message}", "error")
        return redirect(url_for("seat_detail", committee_id=committee_id))

    def bulk_seats(self, committee_id: str):
        if not self._is_admin():
            return redirect(url_for("login"))

        available = request.form.get("available") == "1"
        try:
            self.committee_service.set_all_seats(committee_id, available, self._confirmed())
            flash(f"All seats marked {'available' if available else 'occupied'}.", "success")
        except ConfirmationRequired as e:
            return self._confirm(e.prompt, url_for("bulk_seats", committee_id=committee_id))
        except CommitteeNotFoundException:
            raise
        except MUNRegistrationException as e:
            logger.exception("Error updating seats of %s", committee_id)
            flash(f"Error updating the seats: {e.message}", "error")
        return redirect(url_for("seat_detail", committee_id=committee_id))

    def assign_seats(self, committee_id: str):
        if not self._is_admin():
            return redirect(url_for("login"))

        committee = self.committee_service.get_committee(committee_id)
        form = request.form
        try:
            result = self.assignment_workflow.assign(
                committee,
                self._selected_seats(form.getlist("seats")),
                form.get("recipient_name", ""),
                form.get("recipient_email", ""),
                form.get("notes", ""),
                self._confirmed()
            )
        except ConfirmationRequired as e:
            return self._confirm(e.prompt, url_for("assign_seats", committee_id=committee_id))
        except AssignmentFailedException as e:
            flash(f"Error processing the assignment: {e.message}", "error")
            if e.receipt_url:
                flash(f"The receipt was already uploaded: {e.receipt_url}", "error")
            return redirect(url_for("seat_detail", committee_id=committee_id))
        except MUNRegistrationException as e:
            flash(e.message, "error")
            return redirect(url_for("seat_detail", committee_id=committee_id))

        flash(
            f"Assignment completed: {len(result.seat_labels)} seat(s) assigned, "
            f"receipt sent to {result.record.email}",
            "success"
        )
        return redirect(url_for("seat_detail", committee_id=committee_id))

    def users_management(self):
        if not self._is_admin():
            return redirect(url_for("login"))

        args = request.args
        try:
            role = UserRole(args.get("role", "all"))
        except ValueError:
            role = UserRole.ALL
        sort = args.get("sort", "newest")
        if sort not in SORT_OPTIONS:
            sort = "newest"

        users = self.user_service.list_users()
        filtered = self.user_service.filter_users(users, args.get("q", ""), role, args.get("institution", "all"))
        return render_template(
            "users.html",
            users=self.user_service.sort_users(filtered, sort),
            stats=self.user_service.stats(users),
            institutions=self.user_service.institutions(users),
            roles=list(UserRole),
            sort_options=SORT_OPTIONS,
            filters={"q": args.get("q", ""), "role": role.value,
                     "institution": args.get("institution", "all"), "sort": sort}
        )

    def user_detail(self, user_id: str):
        if not self._is_admin():
            return redirect(url_for("login"))

        return render_template("user_detail.html", user=self.user_service.get_user(user_id))

    def delete_user(self, user_id: str):
        if not self._is_admin():
            return redirect(url_for("login"))

        try:
            user = self.user_service.delete_user(user_id, self._confirmed())
            flash(f"User {user.email} deleted.", "success")
        except ConfirmationRequired as e:
            return self._confirm(e.prompt, url_for("delete_user", user_id=user_id))
        except UserNotFoundException:
            raise
        except MUNRegistrationException as e:
            logger.exception("Error deleting user %s", user_id)
            flash(f"Error deleting the user: {e.message}", "error")
            return redirect(url_for("user_detail", user_id=user_id))
        return redirect(url_for("users_management"))

    # ----------------------------
    # Helpers
    # ----------------------------

    @staticmethod
    def _confirmed() -> bool:
        return request.form.get("confirmed") == "1"

    @staticmethod
    def _selected_seats(values: List[str]) -> List[int]:
        try:
            return [int(value) for value in values]
        except ValueError:
            raise DataValidationException("seats", "seat positions must be integers")

    @staticmethod
    def _confirm(prompt: str, action: str):
        """Render the confirmation page re-posting the current form"""
        fields = [(key, value) for key, values in request.form.lists() for value in values if key != "confirmed"]
        return render_template("confirm.html", prompt=prompt, action=action, fields=fields)

    def run(self, host: str = '127.0.0.1', port: int = 5000, debug: bool = None) -> None:
        """
        Run the Flask application

        Args:
            host: Host address to bind to
            port: Port number to listen on
            debug: Debug mode (overrides config if provided)
        """
        if debug is not None:
            self.app.config['DEBUG'] = debug

        self.app.run(host=host, port=port, debug=self.app.config['DEBUG'])


def create_app(config: Optional[dict] = None, **services) -> MUNRegistrationApp:
    """
    Factory function to create and configure the application

    Args:
        config: Optional configuration overrides
        **services: Remote collaborators to inject (see MUNRegistrationApp)

    Returns:
        Configured MUNRegistrationApp instance
    """
    return MUNRegistrationApp(config, **services)


def create_development_app(**services) -> MUNRegistrationApp:
    """
    Create application configured for development

    Uses the in-memory store and cache.
    """
    dev_config = {
        'DEBUG': True,
        'DATA_BACKEND': 'memory',
        'CACHE_BACKEND': 'memory',
    }
    return create_app(dev_config, **services)


def create_production_app() -> MUNRegistrationApp:
    """
    Create application configured for production

    Raises:
        ValueError: If the secret key or Firebase credentials are missing
    """
    config = load_config({'DEBUG': False})
    if config['SECRET_KEY'] == load_config(environ={})['SECRET_KEY']:
        raise ValueError("SECRET_KEY (or FLASK_SECRET_KEY) must be set in production")
    if not config['FIREBASE_SERVICE_ACCOUNT_JSON'] or not config['FIREBASE_API_KEY']:
        raise ValueError("FIREBASE_SERVICE_ACCOUNT_JSON and FIREBASE_API_KEY must be set in production")

    prod_config = {
        'DEBUG': False,
        'DATA_BACKEND': 'firestore',
        'CACHE_BACKEND': 'redis',
    }
    return create_app(prod_config)


def main() -> None:
    app = create_development_app()
    app.run(debug=True)


if __name__ == "__main__":
    main()
