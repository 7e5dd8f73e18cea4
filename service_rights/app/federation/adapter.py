"""
Identity federation adapter.

Maps local sessions and provider-issued tokens onto accounts, and
auto-provisions an account, an identity and a placeholder right the
first time a provider subject reaches an application.
"""

from typing import AsyncIterator, Iterable, Optional

from shared.logging import get_logger, set_caller_context
from shared.metrics import MetricsCollector
from shared.errors import AuthenticationError
from ..directory.base import Directory
from ..directory.models import Account, AccountType, UserIdentity
from ..errors import ApplicationNotFound, DuplicatePair, RightNotFound
from ..rights.lifecycle import RightsLifecycleEngine
from ..rights.models import Right
from ..verification.models import ApplicationAccess, Verdict, VerdictReason
from ..verification.service import AccessVerificationService
from .credentials import (
    AuthScheme,
    Credential,
    ExternalProfile,
    FederatedToken,
    LocalSession,
    ProvisionResult,
    ResolvedCaller,
)
from .jwks import JWKSClient
from .sessions import SessionTokenVerifier


class IdentityFederationAdapter:
    """Resolves callers and provisions first-contact access for provider subjects."""

    def __init__(
        self,
        jwks_client: JWKSClient,
        sessions: SessionTokenVerifier,
        directory: Directory,
        engine: RightsLifecycleEngine,
        verification: AccessVerificationService,
        metrics: Optional[MetricsCollector] = None,
    ):
        self.jwks_client = jwks_client
        self.sessions = sessions
        self.directory = directory
        self.engine = engine
        self.verification = verification
        self.metrics = metrics
        self.logger = get_logger("rights.federation")

    async def resolve(self, credential: Credential) -> ResolvedCaller:
        """Normalize either credential kind into a ResolvedCaller. Never provisions."""
        if isinstance(credential, LocalSession):
            caller = await self._resolve_local(credential.token)
        elif isinstance(credential, FederatedToken):
            profile = await self._verify(credential.token)
            caller = self._caller(await self._find_identity(profile), profile)
        else:
            raise TypeError(f"Unsupported credential: {type(credential).__name__}")

        set_caller_context(account_id=caller.account_id)
        return caller

    async def check_and_create(self, token: str, application_id: str) -> ProvisionResult:
        """Ensure the token's subject has an account and a right for the application.

        Idempotent: repeated calls for the same subject and application
        return the same right and create nothing new.
        """
        profile = await self._verify(token)

        if await self.directory.find_application(application_id) is None:
            raise ApplicationNotFound(details={"application_id": application_id})

        identity = await self._find_identity(profile)
        if identity is None:
            identity = await self._provision_identity(profile)
        elif identity.external_subject_id is None:
            identity = await self.directory.link_external_subject(identity.identity_id, profile.subject)
            self.logger.info("External subject linked", identity_id=identity.identity_id, subject=profile.subject)
        elif identity.external_subject_id != profile.subject:
            self.logger.warning(
                "Identity matched by profile is linked to another subject",
                identity_id=identity.identity_id,
                subject=profile.subject,
            )

        account_id = identity.account_id
        set_caller_context(account_id=account_id, application_id=application_id)

        created = False
        right = await self.engine.find(application_id, account_id)
        if right is None:
            try:
                right = await self.engine.provision(application_id, account_id)
                created = True
            except DuplicatePair:
                # A concurrent first contact won the insert; use its right.
                right = await self.engine.find(application_id, account_id)
                if right is None:
                    raise

        if created and self.metrics:
            self.metrics.record_business_event("rights_auto_provisioned", "rights")
        self.logger.info(
            "Federated rights checked",
            account_id=account_id,
            application_id=application_id,
            subject=profile.subject,
            created=created,
        )
        return ProvisionResult(
            right=right,
            created=created,
            account_id=account_id,
            external_subject_id=profile.subject,
        )

    async def check_permissions(self, token: str, application_id: str) -> Verdict:
        """Verify access for the token's subject without provisioning anything."""
        caller = await self.resolve(FederatedToken(token))
        if caller.account_id is None:
            return Verdict(
                allowed=False,
                reason=VerdictReason.NO_RIGHTS_FOUND.value,
                message="Identity is not linked to an account",
                account_id="",
                application_id=application_id,
            )
        return await self.verification.verify(caller.account_id, application_id, [])

    async def update_permissions(self, token: str, application_id: str, permissions: Iterable) -> Right:
        """Replace the permissions of the token subject's right for an application.

        Never provisions: an unmapped subject or a missing right is RightNotFound.
        """
        caller = await self.resolve(FederatedToken(token))
        right = None
        if caller.account_id is not None:
            right = await self.engine.find(application_id, caller.account_id)
        if right is None:
            raise RightNotFound(
                "Rights not found for this user and application",
                {"application_id": application_id, "subject": caller.external_subject_id},
            )

        updated = await self.engine.amend(right.right_id, permissions=permissions)
        self.logger.info(
            "Federated permissions updated",
            right_id=updated.right_id,
            application_id=application_id,
            subject=caller.external_subject_id,
        )
        return updated

    async def applications_for(self, credential: Credential) -> AsyncIterator[ApplicationAccess]:
        """Applications the caller can currently reach; empty for unmapped subjects."""
        caller = await self.resolve(credential)
        if caller.account_id is None:
            return
        async for access in self.verification.list_applications_for(caller.account_id):
            yield access

    async def _verify(self, token: str) -> ExternalProfile:
        claims = await self.jwks_client.verify_token(token)
        return ExternalProfile.from_claims(claims)

    async def _resolve_local(self, token: str) -> ResolvedCaller:
        claims = self.sessions.verify(token)
        identity = await self.directory.find_identity(claims["sub"])
        if identity is None:
            raise AuthenticationError("Session identity not found", details={"identity_id": claims["sub"]})
        return ResolvedCaller(
            account_id=identity.account_id,
            auth_scheme=AuthScheme.LOCAL,
            identity_id=identity.identity_id,
            username=identity.username,
            email=identity.email,
            external_subject_id=identity.external_subject_id,
            role=identity.role,
        )

    async def _find_identity(self, profile: ExternalProfile) -> Optional[UserIdentity]:
        identity = await self.directory.find_identity_by_subject(profile.subject)
        if identity is None and profile.email:
            identity = await self.directory.find_identity_by_email(profile.email)
        if identity is None and profile.username:
            identity = await self.directory.find_identity_by_username(profile.username)
        return identity

    async def _provision_identity(self, profile: ExternalProfile) -> UserIdentity:
        account = await self.directory.find_account_by_email(profile.email) if profile.email else None
        if account is None:
            account = await self.directory.get_or_create_account(Account(
                external_account_id=f"external-{profile.subject}",
                name=profile.display_name,
                email=profile.email,
                account_type=AccountType.PERSONAL,
                description="Auto-created from external identity provider",
            ))
            self.logger.info("Account auto-created", account_id=account.account_id, subject=profile.subject)

        identity = await self.directory.get_or_create_identity(UserIdentity(
            username=profile.username or profile.subject,
            email=profile.email,
            account_id=account.account_id,
            external_subject_id=profile.subject,
        ))
        self.logger.info("Identity auto-created", identity_id=identity.identity_id, subject=profile.subject)
        return identity

    @staticmethod
    def _caller(identity: Optional[UserIdentity], profile: ExternalProfile) -> ResolvedCaller:
        return ResolvedCaller(
            account_id=identity.account_id if identity else None,
            auth_scheme=AuthScheme.FEDERATED,
            identity_id=identity.identity_id if identity else None,
            username=profile.username,
            email=profile.email,
            external_subject_id=profile.subject,
            role=identity.role if identity else None,
        )
