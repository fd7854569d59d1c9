"""
In-memory credit ledger with atomic package mutations.
"""

from __future__ import annotations

import asyncio
import copy
import logging
from typing import Callable, Dict, Iterable, List, Optional

import pendulum
from pendulum import DateTime

from ..domain.exceptions import NoActivePackage, NoAvailableCredit, NotFound
from ..domain.models import ClientPackage, PackageStatus

logger = logging.getLogger(__name__)


class InMemoryCreditLedger:
    """
    ``CreditLedger`` over a dict of packages.

    Both mutations run under one lock, so a decrement only happens while
    credit remains even with concurrent callers.
    """

    def __init__(
        self,
        packages: Iterable[ClientPackage] = (),
        clock: Optional[Callable[[], DateTime]] = None,
    ) -> None:
        self.packages: Dict[str, ClientPackage] = {p.id: p for p in packages}
        self._clock = clock or (lambda: pendulum.now("UTC"))
        self._lock = asyncio.Lock()

    def _client_packages(self, client_id: str, tenant_id: str) -> List[ClientPackage]:
        owned = [
            package for package in self.packages.values()
            if package.tenant_id == tenant_id and package.client_id == client_id
        ]
        return sorted(owned, key=lambda p: p.expiry_date)

    def _stored(self, package_id: str, tenant_id: str) -> ClientPackage:
        package = self.packages.get(package_id)
        if package is None or package.tenant_id != tenant_id:
            raise NotFound(f"Client package {package_id} not found")
        return package

    async def get_client_packages(self, client_id: str, tenant_id: str) -> List[ClientPackage]:
        return copy.deepcopy(self._client_packages(client_id, tenant_id))

    async def get_active_package_for_client(
        self, client_id: str, tenant_id: str
    ) -> Optional[ClientPackage]:
        for package in self._client_packages(client_id, tenant_id):
            if package.status == PackageStatus.active:
                return copy.deepcopy(package)
        return None

    async def find_best_package_for_session(
        self, client_id: str, tenant_id: str
    ) -> Optional[ClientPackage]:
        now = self._clock()
        for package in self._client_packages(client_id, tenant_id):
            if (
                package.status == PackageStatus.active
                and package.sessions_remaining > 0
                and package.expiry_date > now
            ):
                return copy.deepcopy(package)
        return None

    async def use_session(self, package_id: str, tenant_id: str) -> ClientPackage:
        """
        Take one credit from the package.

        Raises:
            NotFound: If the package does not exist for the tenant
            NoActivePackage: If the package is not active
            NoAvailableCredit: If no credit remains
        """
        async with self._lock:
            package = self._stored(package_id, tenant_id)
            if package.status != PackageStatus.active:
                raise NoActivePackage(f"Package {package_id} is not active")
            if package.sessions_remaining <= 0:
                raise NoAvailableCredit(f"Package {package_id} has no sessions remaining")

            package.sessions_remaining -= 1
            package.sessions_used += 1
            if package.sessions_remaining == 0:
                package.status = PackageStatus.depleted
            logger.debug("Package %s: %d remaining", package_id, package.sessions_remaining)
            return copy.deepcopy(package)

    async def return_session(self, package_id: str, tenant_id: str) -> ClientPackage:
        """
        Give one credit back, reviving a depleted package.

        Raises:
            NotFound: If the package does not exist for the tenant
        """
        async with self._lock:
            package = self._stored(package_id, tenant_id)
            if package.status == PackageStatus.depleted:
                package.status = PackageStatus.active
            package.sessions_used = max(0, package.sessions_used - 1)
            package.sessions_remaining += 1
            logger.debug("Package %s: %d remaining", package_id, package.sessions_remaining)
            return copy.deepcopy(package)
