"""
Rights service.

Grants, amends and revokes per-(application, account) rights, mints the
matching entitlement tokens, answers access checks and maps external
identity-provider subjects onto accounts.
"""

from dataclasses import asdict
from datetime import timedelta
from typing import Callable, Dict, List, Optional

from fastapi import Header, Query, Response

from shared.base_service import BaseService
from shared.errors import AuthorizationError, ExternalServiceError
from shared.observability import get_observability_manager

from .config import RightsConfig, get_rights_config
from .directory.base import Directory
from .directory.memory import InMemoryDirectory
from .directory.models import (
    Account,
    AccountCreateRequest,
    AccountResponse,
    Application,
    ApplicationCreateRequest,
    ApplicationResponse,
    ApplicationStatusRequest,
)
from .directory.postgres import PostgreSQLDirectory
from .errors import AccountNotFound, ApplicationNotFound
from .federation.adapter import IdentityFederationAdapter
from .federation.credentials import (
    CallerResponse,
    FederatedApplicationRequest,
    FederatedPermissionsRequest,
    FederatedToken,
    ProvisionResponse,
    ResolvedCaller,
    bearer_token,
    credential_from_authorization,
)
from .federation.jwks import JWKSClient
from .federation.sessions import SessionTokenVerifier
from .persistence.base import RightsStore
from .persistence.memory import InMemoryRightsStore
from .persistence.postgres import PostgreSQLRightsStore
from .rights.lifecycle import UNSET, RightsLifecycleEngine
from .rights.models import (
    AmendRequest,
    GrantRequest,
    RightListResponse,
    RightResponse,
    utcnow,
)
from .tokens.codec import EntitlementTokenCodec
from .tokens.models import TokenDecodeRequest, TokenDecodeResponse
from .verification.models import (
    ApplicationAccess,
    BulkVerdict,
    BulkVerifyRequest,
    Verdict,
    VerifyRequest,
)
from .verification.service import AccessVerificationService


class RightsService(BaseService):
    """Rights service implementation."""

    def __init__(
        self,
        config: Optional[RightsConfig] = None,
        store: Optional[RightsStore] = None,
        directory: Optional[Directory] = None,
        jwks_client: Optional[JWKSClient] = None,
        clock: Callable = utcnow,
    ):
        config = config or get_rights_config()
        super().__init__("rights", config.port, config)

        self.observability = get_observability_manager("rights", self.metrics)

        if store is None or directory is None:
            store, directory = self._build_storage(store, directory)
        self.store = store
        self.directory = directory

        self.codec = EntitlementTokenCodec(
            config.token_signing_key,
            issuer=config.token_issuer,
            default_validity=timedelta(days=config.token_default_validity_days),
        )
        self.engine = RightsLifecycleEngine(
            self.store,
            self.directory,
            self.codec,
            expiring_soon_window=timedelta(days=config.expiring_soon_days),
            clock=clock,
            metrics=self.metrics,
        )
        self.verification = AccessVerificationService(
            self.engine,
            self.directory,
            bulk_concurrency=config.bulk_verify_concurrency,
            metrics=self.metrics,
        )
        self.jwks_client = jwks_client or JWKSClient(
            config.jwks_url,
            issuer=config.idp_issuer,
            audience=config.idp_audience,
            cache_ttl=config.jwks_cache_ttl_seconds,
            max_entries=config.jwks_cache_max_entries,
            http_timeout=config.jwks_http_timeout,
            metrics=self.metrics,
        )
        self.sessions = SessionTokenVerifier(config.session_signing_key, issuer=config.token_issuer)
        self.federation = IdentityFederationAdapter(
            self.jwks_client,
            self.sessions,
            self.directory,
            self.engine,
            self.verification,
            metrics=self.metrics,
        )

        self._setup_rights_routes()
        self._setup_directory_routes()
        self._setup_federation_routes()

    def _build_storage(self, store: Optional[RightsStore], directory: Optional[Directory]):
        backend = self.config.storage_backend.lower()
        if backend == "postgres":
            return (
                store or PostgreSQLRightsStore(dsn=self.config.postgres_dsn),
                directory or PostgreSQLDirectory(),
            )
        if backend == "memory":
            return store or InMemoryRightsStore(), directory or InMemoryDirectory()
        raise ValueError(f"Unknown storage backend: {self.config.storage_backend}")

    def _right_response(self, right) -> RightResponse:
        return RightResponse.from_right(right, expiring_soon=self.engine.is_expiring_soon(right))

    async def _require_admin(self, authorization: Optional[str]) -> ResolvedCaller:
        """Resolve the caller and insist on an admin identity."""
        caller = await self.federation.resolve(credential_from_authorization(authorization))
        if not caller.is_admin:
            raise AuthorizationError("Admin access required", details={"identity_id": caller.identity_id})
        return caller

    def _setup_rights_routes(self):
        """Set up rights lifecycle and verification routes."""

        @self.app.get("/")
        async def root():
            """Root endpoint."""
            return {
                "service": "rights",
                "message": "Rights Service",
                "version": "1.0.0",
                "capabilities": ["rights_lifecycle", "entitlement_tokens", "access_verification", "identity_federation"],
            }

        @self.app.post("/rights", response_model=RightResponse, status_code=201)
        async def grant_rights(request: GrantRequest, authorization: Optional[str] = Header(None)):
            """Grant rights for an (application, account) pair."""
            await self._require_admin(authorization)
            self.observability.trace_request(account_id=request.account_id, application_id=request.application_id)
            right = await self.engine.grant(
                request.application_id,
                request.account_id,
                request.permissions,
                request.expires_at,
            )
            self.observability.log_business_event("rights_granted", right_id=right.right_id)
            return self._right_response(right)

        @self.app.get("/rights", response_model=RightListResponse)
        async def list_rights(
            application_id: Optional[str] = Query(None, description="Filter by application"),
            account_id: Optional[str] = Query(None, description="Filter by account"),
            page: int = Query(1, ge=1, description="Page number"),
            limit: int = Query(10, ge=1, le=100, description="Items per page"),
        ):
            """List rights, newest first."""
            rights = await self.engine.list(application_id=application_id, account_id=account_id)
            start = (page - 1) * limit
            return RightListResponse(
                rights=[self._right_response(right) for right in rights[start:start + limit]],
                total=len(rights),
                page=page,
                limit=limit,
            )

        @self.app.get("/rights/expiring", response_model=List[RightResponse])
        async def list_expiring_rights(
            days: Optional[int] = Query(None, ge=0, description="Window in days; defaults to the expiring-soon window"),
        ):
            """Rights that are still live but expire within the window."""
            window = timedelta(days=days) if days is not None else None
            return [self._right_response(right) for right in await self.engine.list_expiring(window)]

        @self.app.get("/rights/stats")
        async def rights_stats():
            """Counts by status and by application."""
            return asdict(await self.engine.stats())

        @self.app.get("/rights/{right_id}", response_model=RightResponse)
        async def get_rights(right_id: str):
            return self._right_response(await self.engine.get(right_id))

        @self.app.patch("/rights/{right_id}", response_model=RightResponse)
        async def amend_rights(right_id: str, request: AmendRequest, authorization: Optional[str] = Header(None)):
            """Amend rights. Send expires_at: null to clear the expiry."""
            await self._require_admin(authorization)
            expires_at = request.expires_at if "expires_at" in request.model_fields_set else UNSET
            right = await self.engine.amend(
                right_id,
                permissions=request.permissions,
                expires_at=expires_at,
                status=request.status,
            )
            self.observability.log_business_event("rights_amended", right_id=right_id)
            return self._right_response(right)

        @self.app.delete("/rights/{right_id}")
        async def revoke_rights(right_id: str, authorization: Optional[str] = Header(None)):
            await self._require_admin(authorization)
            await self.engine.revoke(right_id)
            self.observability.log_business_event("rights_revoked", right_id=right_id)
            return {"message": "Rights deleted successfully", "id": right_id}

        @self.app.post("/rights/verify", response_model=Verdict)
        async def verify_rights(request: VerifyRequest):
            """Check whether an account holds the required permissions on an application."""
            self.observability.trace_request(account_id=request.account_id, application_id=request.application_id)
            return await self.verification.verify(
                request.account_id,
                request.application_id,
                request.required_permissions,
            )

        @self.app.post("/rights/bulk-verify", response_model=BulkVerdict)
        async def bulk_verify_rights(request: BulkVerifyRequest):
            self.observability.trace_request(account_id=request.account_id)
            return await self.verification.bulk_verify(request.account_id, request.items)

        @self.app.get("/accounts/{account_id}/applications", response_model=List[ApplicationAccess])
        async def account_applications(account_id: str):
            """Applications the account can currently reach."""
            if await self.directory.find_account(account_id) is None:
                raise AccountNotFound(details={"account_id": account_id})
            return [access async for access in self.verification.list_applications_for(account_id)]

        @self.app.post("/tokens/decode", response_model=TokenDecodeResponse)
        async def decode_token(request: TokenDecodeRequest):
            """Verify an entitlement token and return what it vouches for."""
            return TokenDecodeResponse.from_payload(self.codec.decode(request.token))

    def _setup_directory_routes(self):
        """Set up account and application registry routes."""

        @self.app.post("/accounts", response_model=AccountResponse, status_code=201)
        async def create_account(
            request: AccountCreateRequest,
            response: Response,
            authorization: Optional[str] = Header(None),
        ):
            """Create an account, or return the one already registered under the slug."""
            await self._require_admin(authorization)
            candidate = Account(
                external_account_id=request.external_account_id,
                name=request.name,
                email=request.email,
                account_type=request.account_type,
                description=request.description,
            )
            account = await self.directory.get_or_create_account(candidate)
            if account.account_id != candidate.account_id:
                response.status_code = 200
            return AccountResponse.from_account(account)

        @self.app.delete("/accounts/{account_id}")
        async def delete_account(account_id: str, authorization: Optional[str] = Header(None)):
            await self._require_admin(authorization)
            if await self.directory.find_account(account_id) is None:
                raise AccountNotFound(details={"account_id": account_id})
            await self.engine.ensure_account_removable(account_id)
            await self.directory.delete_account(account_id)
            self.logger.info("Account deleted", account_id=account_id)
            return {"message": "Account deleted successfully", "id": account_id}

        @self.app.post("/applications", response_model=ApplicationResponse, status_code=201)
        async def create_application(request: ApplicationCreateRequest, authorization: Optional[str] = Header(None)):
            await self._require_admin(authorization)
            application = await self.directory.create_application(Application(
                external_application_id=request.external_application_id,
                name=request.name,
                description=request.description,
            ))
            return ApplicationResponse.from_application(application)

        @self.app.patch("/applications/{application_id}", response_model=ApplicationResponse)
        async def set_application_status(
            application_id: str,
            request: ApplicationStatusRequest,
            authorization: Optional[str] = Header(None),
        ):
            await self._require_admin(authorization)
            application = await self.directory.set_application_status(application_id, request.status)
            if application is None:
                raise ApplicationNotFound(details={"application_id": application_id})
            self.logger.info("Application status changed", application_id=application_id, status=request.status.value)
            return ApplicationResponse.from_application(application)

        @self.app.delete("/applications/{application_id}")
        async def delete_application(application_id: str, authorization: Optional[str] = Header(None)):
            await self._require_admin(authorization)
            if await self.directory.find_application(application_id) is None:
                raise ApplicationNotFound(details={"application_id": application_id})
            await self.engine.ensure_application_removable(application_id)
            await self.directory.delete_application(application_id)
            self.logger.info("Application deleted", application_id=application_id)
            return {"message": "Application deleted successfully", "id": application_id}

    def _setup_federation_routes(self):
        """Set up routes authenticated by local sessions or provider tokens."""

        @self.app.post("/federated/check-and-create", response_model=ProvisionResponse)
        async def federated_check_and_create(
            request: FederatedApplicationRequest,
            authorization: Optional[str] = Header(None),
        ):
            """Find or auto-provision the caller's account and rights for an application."""
            result = await self.federation.check_and_create(bearer_token(authorization), request.application_id)
            if result.created:
                self.observability.log_business_event(
                    "rights_provisioned",
                    account_id=result.account_id,
                    application_id=request.application_id,
                )
            return ProvisionResponse(
                right=self._right_response(result.right),
                created=result.created,
                account_id=result.account_id,
                external_subject_id=result.external_subject_id,
            )

        @self.app.post("/federated/check-permissions", response_model=Verdict)
        async def federated_check_permissions(
            request: FederatedApplicationRequest,
            authorization: Optional[str] = Header(None),
        ):
            return await self.federation.check_permissions(bearer_token(authorization), request.application_id)

        @self.app.put("/federated/permissions", response_model=RightResponse)
        async def federated_update_permissions(
            request: FederatedPermissionsRequest,
            authorization: Optional[str] = Header(None),
        ):
            """Replace the permissions the caller holds on an application."""
            right = await self.federation.update_permissions(
                bearer_token(authorization),
                request.application_id,
                request.permissions,
            )
            self.observability.log_business_event("rights_amended", right_id=right.right_id)
            return self._right_response(right)

        @self.app.get("/federated/applications", response_model=List[ApplicationAccess])
        async def federated_applications(authorization: Optional[str] = Header(None)):
            credential = FederatedToken(bearer_token(authorization))
            return [access async for access in self.federation.applications_for(credential)]

        @self.app.get("/me")
        async def whoami(authorization: Optional[str] = Header(None)):
            caller = await self.federation.resolve(credential_from_authorization(authorization))
            return CallerResponse.from_caller(caller)

        @self.app.get("/me/applications", response_model=List[ApplicationAccess])
        async def my_applications(authorization: Optional[str] = Header(None)):
            """Applications reachable by the caller, whichever way they signed in."""
            credential = credential_from_authorization(authorization)
            return [access async for access in self.federation.applications_for(credential)]

    async def _check_dependencies(self) -> Dict[str, str]:
        """Check rights service dependencies."""
        if not await self.store.health_check():
            raise ExternalServiceError("storage", "Rights store is unavailable")
        return {
            "storage": "ok",
            "identity_provider": await self.jwks_client.check_health(),
        }

    async def start(self):
        """Start rights service components."""
        await self.store.start()
        if isinstance(self.directory, PostgreSQLDirectory) and self.directory.pool is None:
            self.directory.pool = getattr(self.store, "pool", None)
        await self.directory.start()
        self.logger.info("Rights service started", storage_backend=self.config.storage_backend)

    async def stop(self):
        """Stop rights service components."""
        await self.jwks_client.close()
        await self.directory.stop()
        await self.store.stop()
        self.logger.info("Rights service stopped")


def create_app():
    """Create rights service application."""
    service = RightsService()
    return service.app


if __name__ == "__main__":
    service = RightsService()
    service.run()
