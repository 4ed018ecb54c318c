"""Identity resolver: select exactly one signing identity by name suffix."""

from __future__ import annotations

import logging

from passkit.certs import ChainBuildError, build_chain
from passkit.clock import Clock, SystemClock
from passkit.concurrency import call_with_timeout
from passkit.errors import AmbiguousIdentityError, IdentityNotFoundError, IncompleteChainError
from passkit.identity.base import Identity, IdentityStore

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 30.0


class IdentityResolver:
    """Resolves a selection hint against an identity store.

    The store is queried fresh on every call and never mutated. The
    returned identity belongs to the caller for one signing operation and
    should be closed afterwards (use it as a context manager).
    """

    def __init__(
        self,
        store: IdentityStore,
        timeout: float = DEFAULT_TIMEOUT,
        clock: Clock | None = None,
    ) -> None:
        self.store = store
        self.timeout = timeout
        self.clock = clock or SystemClock()

    def resolve(self, hint: str) -> Identity:
        """Find the single identity whose common name ends with ``hint``.

        Args:
            hint: Case-sensitive common-name suffix

        Returns:
            Identity whose chain runs from the leaf to a trusted root

        Raises:
            IdentityNotFoundError: No common name ends with ``hint``
            AmbiguousIdentityError: Several common names end with ``hint``
            IncompleteChainError: The match does not chain to a trusted root
                through CA certificates valid now
            IOTimeoutError: The store did not answer in time
        """
        identities = call_with_timeout(
            self.store.list_identities, self.timeout, "Listing signing identities"
        )
        matches = [identity for identity in identities if identity.common_name.endswith(hint)]

        if not matches:
            raise IdentityNotFoundError(hint)
        if len(matches) > 1:
            raise AmbiguousIdentityError(hint, sorted(m.common_name for m in matches))

        identity = matches[0]
        intermediates = call_with_timeout(
            self.store.intermediate_certificates, self.timeout, "Listing intermediate certificates"
        )
        roots = call_with_timeout(
            self.store.trusted_roots, self.timeout, "Listing trusted roots"
        )

        try:
            chain = build_chain(
                identity.certificate,
                [*identity.intermediates, *intermediates],
                roots,
                at=self.clock.now(),
            )
        except ChainBuildError as e:
            raise IncompleteChainError(
                f"Identity '{identity.common_name}' has an incomplete certificate chain: {e}",
                details={"hint": hint, "common_name": identity.common_name},
            ) from e

        logger.info(f"Resolved signing identity '{identity.common_name}' (chain length {len(chain)})")
        return identity.with_chain(chain)
