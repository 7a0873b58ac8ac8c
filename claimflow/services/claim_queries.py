"""Read-only claim views: single claim, own claims and the two review queues."""

from typing import List, Optional

from sqlalchemy.exc import DBAPIError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from claimflow.business.errors import ClaimForbiddenError, StorageUnavailableError
from claimflow.business.identity import Identity, Role
from claimflow.business.permissions import can_read
from claimflow.observability.logging import get_logger
from claimflow.observability.metrics import engine_duration_seconds
from claimflow.observability.tracing import get_tracer
from claimflow.schemas.claim import ClaimView
from claimflow.storage.claims import (
    IdentityDirectory,
    claims_owned_by,
    claims_pending_finance,
    claims_pending_manager,
    load_claim,
)
from claimflow.storage.db import get_session_factory


tracer = get_tracer(__name__)
logger = get_logger(__name__)


class ClaimQueries:
    """
    Query views over committed claim state.

    Views never mutate claims; each call reads one consistent snapshot and
    renders the matching claims with their full history.
    """

    def __init__(
        self,
        session_factory: Optional[async_sessionmaker[AsyncSession]] = None,
        directory: Optional[IdentityDirectory] = None
    ):
        self._session_factory = session_factory
        self.directory = directory or IdentityDirectory()

    @property
    def session_factory(self) -> async_sessionmaker[AsyncSession]:
        return self._session_factory or get_session_factory()

    async def get_by_id(self, claim_id: int, requester: Identity) -> ClaimView:
        """
        Return one claim if ``requester`` may read it.

        Args:
            claim_id: Claim identifier
            requester: Identity asking for the claim

        Returns:
            ClaimView: The claim with its audit history

        Raises:
            ClaimNotFoundError: If the claim does not exist
            ClaimForbiddenError: If the requester is not the owner, the
                owner's manager, or a finance/admin identity
        """
        with tracer.start_as_current_span("claim_get") as span, \
                engine_duration_seconds.labels(operation="get").time():
            span.set_attribute("claim_id", claim_id)
            span.set_attribute("actor_id", requester.id)
            try:
                async with self.session_factory() as db:
                    claim = await load_claim(db, claim_id)
                    owner_manager_id = await self.directory.manager_of(db, claim.owner_id)
                    if not can_read(requester, claim.owner_id, owner_manager_id):
                        raise ClaimForbiddenError(
                            f"Identity {requester.id} may not read claim {claim_id}",
                            claim_id=claim_id
                        )
                    return ClaimView.from_record(claim)
            except DBAPIError as e:
                raise self._storage_fault("get", e) from e

    async def list_mine(self, requester: Identity) -> List[ClaimView]:
        """All claims owned by ``requester``, newest first."""
        with tracer.start_as_current_span("claims_list_mine") as span, \
                engine_duration_seconds.labels(operation="list_mine").time():
            span.set_attribute("actor_id", requester.id)
            try:
                async with self.session_factory() as db:
                    claims = await claims_owned_by(db, requester.id)
                    return [ClaimView.from_record(claim) for claim in claims]
            except DBAPIError as e:
                raise self._storage_fault("list_mine", e) from e

    async def list_team_pending(self, manager: Identity) -> List[ClaimView]:
        """
        Claims awaiting ``manager``'s decision, oldest first.

        Identities without the MANAGER role have no team queue and get an
        empty list.
        """
        if manager.role is not Role.MANAGER:
            return []
        with engine_duration_seconds.labels(operation="list_team_pending").time():
            try:
                async with self.session_factory() as db:
                    claims = await claims_pending_manager(db, manager.id)
                    return [ClaimView.from_record(claim) for claim in claims]
            except DBAPIError as e:
                raise self._storage_fault("list_team_pending", e) from e

    async def list_finance_pending(self, requester: Identity) -> List[ClaimView]:
        """Claims awaiting finance, most recently updated first; finance/admin only."""
        if not requester.can_read_any_claim:
            return []
        with tracer.start_as_current_span("claims_list_finance_pending"), \
                engine_duration_seconds.labels(operation="list_finance_pending").time():
            try:
                async with self.session_factory() as db:
                    claims = await claims_pending_finance(db)
                    return [ClaimView.from_record(claim) for claim in claims]
            except DBAPIError as e:
                raise self._storage_fault("list_finance_pending", e) from e

    def _storage_fault(self, operation: str, error: DBAPIError) -> StorageUnavailableError:
        logger.error(f"Storage fault during claim query {operation}: {error}", operation=operation)
        return StorageUnavailableError(f"Storage unavailable during {operation}")


def get_claim_queries() -> ClaimQueries:
    """FastAPI dependency returning query views bound to the configured database."""
    return ClaimQueries()
