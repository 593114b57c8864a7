"""Account persistence: registration, profile edits, credentials and lockout."""

from datetime import datetime, timedelta
from typing import Callable, Iterable, Optional, Union

from pydantic import ValidationError as PydanticValidationError

from libs.auth.passwords import MAX_PASSWORD_BYTES, hash_password, verify_password
from libs.common.config import Settings
from libs.common.datetime_utils import to_iso, utc_now
from libs.common.logging import get_logger
from libs.db.base import Collection
from libs.db.concurrency import run_with_retry
from libs.db.errors import ConstraintViolation, RecordNotFound
from services.store_service.errors import (
    AccountLocked,
    Forbidden,
    InvalidCredentials,
    NotFound,
    ValidationError,
)
from services.store_service.models import Account, AccountRole, CartEntry
from services.store_service.schemas import (
    AccountDraft,
    AccountPatch,
    AdminAccountPatch,
)

logger = get_logger(__name__)

DUPLICATE_EMAIL = "email: An account with this email already exists"


def _parse(schema, data):
    if isinstance(data, schema):
        return data
    try:
        return schema.model_validate(data)
    except PydanticValidationError as exc:
        raise ValidationError.from_pydantic(exc) from exc


def _check_new_password(password: str) -> None:
    if len(password) < 6:
        raise ValidationError(["newPassword: must be at least 6 characters"])
    if len(password.encode("utf-8")) > MAX_PASSWORD_BYTES:
        raise ValidationError(["newPassword: must be at most 72 bytes"])


class AccountRepository:
    """
    Accounts and the cart embedded in them.

    Read-modify-write paths (lockout bookkeeping, cart saves) use the record
    ``version`` as an optimistic lock and are retried on conflict.
    """

    def __init__(
        self,
        gateway,
        settings: Settings,
        clock: Callable[[], datetime] = utc_now,
    ):
        self._gateway = gateway
        self._settings = settings
        self._clock = clock

    async def _retry(self, func):
        return await run_with_retry(
            func, attempts=self._settings.CONFLICT_RETRY_ATTEMPTS
        )

    # ------------------------------------------------------------------
    # Lookup
    # ------------------------------------------------------------------

    async def find_by_email(self, email: str) -> Optional[Account]:
        if not email:
            return None
        record = await self._gateway.find_one_by(
            Collection.ACCOUNTS, "email", email.strip().lower()
        )
        return Account.from_record(record) if record else None

    async def find_by_id(self, account_id: str) -> Account:
        record = await self._gateway.get(Collection.ACCOUNTS, account_id)
        if record is None:
            raise NotFound(f"Account {account_id} not found")
        return Account.from_record(record)

    # ------------------------------------------------------------------
    # Create / update / delete
    # ------------------------------------------------------------------

    async def create(
        self,
        draft: Union[AccountDraft, dict],
        role: AccountRole = AccountRole.CUSTOMER,
    ) -> Account:
        """Register an account. The role is never taken from the draft."""
        draft = _parse(AccountDraft, draft)
        email = draft.email.lower()

        if await self.find_by_email(email) is not None:
            raise ValidationError([DUPLICATE_EMAIL])

        account = Account(
            first_name=draft.first_name,
            last_name=draft.last_name,
            email=email,
            password_hash=await hash_password(
                draft.password, self._settings.BCRYPT_ROUNDS
            ),
            phone=draft.phone,
            role=role,
            address=draft.address,
        )
        try:
            record = await self._gateway.insert(
                Collection.ACCOUNTS, account.to_record()
            )
        except ConstraintViolation as exc:
            # Lost a registration race on the same email
            raise ValidationError([DUPLICATE_EMAIL]) from exc

        logger.info("Created account %s (%s)", account.id, account.role.value)
        return Account.from_record(record)

    async def update(
        self,
        account_id: str,
        patch: Union[AccountPatch, dict],
        expected_version: Optional[int] = None,
    ) -> Account:
        """Profile edit by the account owner. Role and active flag are ignored."""
        if isinstance(patch, AdminAccountPatch):
            patch = patch.model_dump(exclude={"role", "is_active"}, exclude_unset=True)
        return await self._apply_patch(
            account_id, _parse(AccountPatch, patch), expected_version
        )

    async def admin_update(
        self,
        account_id: str,
        patch: Union[AdminAccountPatch, dict],
        expected_version: Optional[int] = None,
    ) -> Account:
        """Edit by an admin, who may also change the role and active flag."""
        return await self._apply_patch(
            account_id, _parse(AdminAccountPatch, patch), expected_version
        )

    async def _apply_patch(
        self,
        account_id: str,
        patch: AccountPatch,
        expected_version: Optional[int],
    ) -> Account:
        changes = patch.model_dump(
            mode="json", by_alias=True, exclude_unset=True, exclude_none=True
        )
        if "email" in changes:
            changes["email"] = changes["email"].lower()
        changes["updatedAt"] = to_iso(self._clock())

        try:
            record = await self._gateway.update(
                Collection.ACCOUNTS,
                account_id,
                changes,
                expected_version=expected_version,
            )
        except RecordNotFound as exc:
            raise NotFound(f"Account {account_id} not found") from exc
        except ConstraintViolation as exc:
            raise ValidationError([DUPLICATE_EMAIL]) from exc

        return Account.from_record(record)

    async def delete(self, account_id: str) -> Account:
        account = await self.find_by_id(account_id)
        if account.is_admin:
            raise Forbidden("Admin accounts cannot be deleted")
        try:
            record = await self._gateway.delete(Collection.ACCOUNTS, account_id)
        except RecordNotFound as exc:
            raise NotFound(f"Account {account_id} not found") from exc
        logger.info("Deleted account %s", account_id)
        return Account.from_record(record)

    # ------------------------------------------------------------------
    # Credentials
    # ------------------------------------------------------------------

    async def verify_credentials(self, email: str, password: str) -> Account:
        """
        Check a login attempt and do the lockout bookkeeping.

        - a locked account is rejected with AccountLocked, whatever the password
        - a failure after an expired lock starts counting again at 1
        - the Nth consecutive failure (MAX_LOGIN_ATTEMPTS) sets lockUntil
        - a success clears both counters and stamps lastLoginAt
        """

        async def attempt() -> Account:
            account = await self.find_by_email(email)
            if account is None:
                raise InvalidCredentials()

            now = self._clock()
            if account.is_locked(now):
                logger.info("Login rejected for locked account %s", account.id)
                raise AccountLocked(account.lock_until, now)

            if await verify_password(password, account.password_hash):
                if not account.is_active:
                    raise Forbidden("Account is deactivated")
                record = await self._gateway.update(
                    Collection.ACCOUNTS,
                    account.id,
                    {"lastLoginAt": to_iso(now), "updatedAt": to_iso(now)},
                    unset=("loginAttempts", "lockUntil"),
                    expected_version=account.version,
                )
                return Account.from_record(record)

            await self._record_failure(account, now)
            raise InvalidCredentials()

        return await self._retry(attempt)

    async def _record_failure(self, account: Account, now: datetime) -> None:
        unset: tuple[str, ...] = ()
        if account.lock_until is not None:
            # Lock has expired: start a fresh window
            changes = {"loginAttempts": 1}
            unset = ("lockUntil",)
        else:
            attempts = (account.login_attempts or 0) + 1
            changes = {"loginAttempts": attempts}
            if attempts >= self._settings.MAX_LOGIN_ATTEMPTS:
                lock_until = now + timedelta(minutes=self._settings.LOCKOUT_MINUTES)
                changes["lockUntil"] = to_iso(lock_until)
                logger.warning(
                    "Account %s locked until %s after %d failed logins",
                    account.id,
                    changes["lockUntil"],
                    attempts,
                )

        await self._gateway.update(
            Collection.ACCOUNTS,
            account.id,
            changes,
            unset=unset,
            expected_version=account.version,
        )

    async def change_password(
        self, account_id: str, current_password: str, new_password: str
    ) -> Account:
        account = await self.find_by_id(account_id)
        if not await verify_password(current_password, account.password_hash):
            raise InvalidCredentials("Current password is incorrect")
        _check_new_password(new_password)

        new_hash = await hash_password(new_password, self._settings.BCRYPT_ROUNDS)
        record = await self._gateway.update(
            Collection.ACCOUNTS,
            account_id,
            {"passwordHash": new_hash, "updatedAt": to_iso(self._clock())},
            expected_version=account.version,
        )
        logger.info("Password changed for account %s", account_id)
        return Account.from_record(record)

    # ------------------------------------------------------------------
    # Embedded cart
    # ------------------------------------------------------------------

    async def save_cart(
        self,
        account: Account,
        entries: list[CartEntry],
        merged_keys: Optional[Iterable[str]] = None,
    ) -> Account:
        """Write the cart back, conditional on the version it was read at."""
        changes = {
            "cart": [entry.to_record() for entry in entries],
            "updatedAt": to_iso(self._clock()),
        }
        if merged_keys is not None:
            changes["mergedGuestEntries"] = list(merged_keys)
        record = await self._gateway.update(
            Collection.ACCOUNTS,
            account.id,
            changes,
            expected_version=account.version,
        )
        return Account.from_record(record)
