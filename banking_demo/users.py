"""
User Signup and Login

Registers users after running every field validator, and authenticates them
into a fresh single session. Passwords and SSNs are stored only as scrypt
hashes, and the hashes never leave this module: callers get a UserProfile.
"""

import re
import uuid
from dataclasses import dataclass
from datetime import date, datetime, timezone
from typing import Dict, Optional

from .config import get_config
from .errors import AuthenticationError, ConflictError, NotFoundError, ValidationError
from .hashing import CredentialHasher
from .logging_config import get_logger, log_action
from .sessions import Session, SessionManager
from .storage import DuplicateKeyError, StorageInterface, StorageRecord
from .validators import (
    ValidationResult, collect_errors, validate_date_of_birth, validate_email,
    validate_password, validate_phone, validate_ssn, validate_state
)


@dataclass(frozen=True)
class UserProfile:
    """What callers may see of a user"""
    id: str
    email: str
    first_name: str
    last_name: str
    phone: str
    date_of_birth: date
    address: str
    city: str
    state: str
    zip_code: str
    created_at: datetime


@dataclass
class User(StorageRecord):
    """Stored user, including credential hashes"""
    email: str
    first_name: str
    last_name: str
    phone: str
    date_of_birth: date
    address: str
    city: str
    state: str
    zip_code: str
    password_hash: str
    ssn_hash: str

    def __repr__(self) -> str:
        return f"User(id={self.id!r}, email={self.email!r})"

    def to_profile(self) -> UserProfile:
        return UserProfile(
            id=self.id,
            email=self.email,
            first_name=self.first_name,
            last_name=self.last_name,
            phone=self.phone,
            date_of_birth=self.date_of_birth,
            address=self.address,
            city=self.city,
            state=self.state,
            zip_code=self.zip_code,
            created_at=self.created_at,
        )

    def to_dict(self) -> Dict:
        result = super().to_dict()
        result['date_of_birth'] = self.date_of_birth.isoformat()
        return result

    @classmethod
    def from_dict(cls, data: Dict) -> 'User':
        return cls(
            id=data['id'],
            created_at=datetime.fromisoformat(data['created_at']),
            updated_at=datetime.fromisoformat(data['updated_at']),
            email=data['email'],
            first_name=data['first_name'],
            last_name=data['last_name'],
            phone=data['phone'],
            date_of_birth=date.fromisoformat(data['date_of_birth']),
            address=data['address'],
            city=data['city'],
            state=data['state'],
            zip_code=data['zip_code'],
            password_hash=data['password_hash'],
            ssn_hash=data['ssn_hash'],
        )


@dataclass(frozen=True)
class AuthResult:
    """Signed-in user and the session that now represents them"""
    user: UserProfile
    session: Session


def _required(field_name: str, value: Optional[str], label: str) -> ValidationResult:
    if value and value.strip():
        return ValidationResult(field=field_name, is_valid=True, value=value.strip())
    return ValidationResult(field=field_name, is_valid=False, errors=(f"{label} is required",))


def _validate_zip_code(value: Optional[str]) -> ValidationResult:
    if value and re.fullmatch(r'[0-9]{5}', value.strip()):
        return ValidationResult(field="zip_code", is_valid=True, value=value.strip())
    return ValidationResult(field="zip_code", is_valid=False, errors=("ZIP code must be 5 digits",))


class UserManager:
    """Signup, login and logout"""

    def __init__(self, storage: StorageInterface, session_manager: SessionManager,
                 hasher: Optional[CredentialHasher] = None):
        self.storage = storage
        self.session_manager = session_manager
        self.hasher = hasher or CredentialHasher()
        self.users_table = "users"
        self.logger = get_logger("banking_demo.users")

    def register_user(
        self,
        email: str,
        password: str,
        first_name: str,
        last_name: str,
        phone: str,
        date_of_birth: str,
        ssn: str,
        address: str,
        city: str,
        state: str,
        zip_code: str,
        today: Optional[date] = None
    ) -> AuthResult:
        """
        Create a user and sign them in.

        Raises:
            ValidationError: With a message list for every failing field
            ConflictError: If the normalized email is already registered
        """
        config = get_config()
        results = {
            result.field: result for result in (
                validate_email(email),
                validate_password(password, min_length=config.password_min_length),
                _required("first_name", first_name, "First name"),
                _required("last_name", last_name, "Last name"),
                validate_phone(phone),
                validate_date_of_birth(
                    date_of_birth, today=today,
                    min_age=config.min_customer_age, max_age=config.max_customer_age
                ),
                validate_ssn(ssn),
                _required("address", address, "Address"),
                _required("city", city, "City"),
                validate_state(state),
                _validate_zip_code(zip_code),
            )
        }
        errors = collect_errors(results.values())
        if errors:
            raise ValidationError(errors)

        now = datetime.now(timezone.utc)
        user = User(
            id=str(uuid.uuid4()),
            created_at=now,
            updated_at=now,
            email=results["email"].value,
            first_name=results["first_name"].value,
            last_name=results["last_name"].value,
            phone=results["phone"].value,
            date_of_birth=results["date_of_birth"].value,
            address=results["address"].value,
            city=results["city"].value,
            state=results["state"].value,
            zip_code=results["zip_code"].value,
            password_hash=self.hasher.hash(results["password"].value),
            ssn_hash=self.hasher.hash(results["ssn"].value),
        )

        try:
            self.storage.insert(self.users_table, user.id, user.to_dict(), unique_fields=("email",))
        except DuplicateKeyError:
            raise ConflictError("User already exists")

        log_action(
            self.logger, "info", "User registered",
            user_id=user.id, action="register_user", resource=f"user:{user.id}",
            extra={"email_normalized": results["email"].normalized}
        )

        session = self.session_manager.start_session(user.id)
        return AuthResult(user=user.to_profile(), session=session)

    def authenticate(self, email: str, password: str) -> AuthResult:
        """
        Verify credentials and start a session, ending any earlier one.

        Raises:
            AuthenticationError: For an unknown email or a wrong password alike
        """
        user = self._find_by_email((email or "").strip().lower())

        if not user or not self.hasher.verify(password or "", user.password_hash):
            log_action(self.logger, "warning", "Login failed", action="authenticate")
            raise AuthenticationError("Invalid credentials")

        session = self.session_manager.start_session(user.id)
        log_action(
            self.logger, "info", "Login succeeded",
            user_id=user.id, action="authenticate", resource=f"user:{user.id}"
        )
        return AuthResult(user=user.to_profile(), session=session)

    def logout(self, token: str) -> bool:
        """End the session for token; False when there was no session"""
        return self.session_manager.end_session(token)

    def get_user(self, user_id: str) -> UserProfile:
        data = self.storage.load(self.users_table, user_id)
        if not data:
            raise NotFoundError("User not found")
        return User.from_dict(data).to_profile()

    def get_user_for_session(self, token: str) -> UserProfile:
        """
        Resolve the user behind a session token.

        Raises:
            AuthenticationError: If the session is missing or expired
        """
        session = self.session_manager.get_valid_session(token)
        if not session:
            raise AuthenticationError("Session expired or invalid")
        return self.get_user(session.user_id)

    def _find_by_email(self, email: str) -> Optional[User]:
        data = self.storage.find_one(self.users_table, {"email": email})
        if data:
            return User.from_dict(data)
        return None
