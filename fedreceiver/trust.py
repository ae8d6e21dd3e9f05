import dataclasses
from dataclasses import dataclass

from loguru import logger

from fedreceiver import activitypub as ap
from fedreceiver import jsonld
from fedreceiver import ldsig
from fedreceiver.httpsig import HTTPSigInfo


@dataclass(frozen=True)
class TrustContext:
    """Trust verdict of a delivery along with the URLs that signed it."""

    trusted: bool = False
    signers: tuple[str, ...] = ()

    def upgrade(self) -> "TrustContext":
        return dataclasses.replace(self, trusted=True)

    def downgrade(self) -> "TrustContext":
        return dataclasses.replace(self, trusted=False)

    def with_signer(self, signer: str) -> "TrustContext":
        if signer in self.signers:
            return self
        return dataclasses.replace(self, signers=self.signers + (signer,))

    def is_signed_by(self, url: str) -> bool:
        return url in self.signers


async def evaluate(
    raw_activity: ap.RawObject,
    activity: ap.RawObject,
    httpsig_info: HTTPSigInfo,
) -> TrustContext | None:
    """Combines the transport and the embedded signatures.

    Returns `None` when the delivery must be discarded.
    """
    if httpsig_info.is_ap_actor_gone:
        logger.info("Signer is a tombstone, the message will be discarded")
        return None

    http_signer = httpsig_info.signed_by_ap_actor_id
    if not httpsig_info.has_valid_signature or not http_signer:
        logger.warning(f"Invalid HTTP signature, message discarded {httpsig_info=}")
        return None

    logger.info(f"Valid HTTP signature from {http_signer}")
    trust = TrustContext(signers=(http_signer,))
    actor = jsonld.fetch_element(activity, "as:actor", "@id")

    if not ldsig.is_signed(raw_activity):
        if actor == http_signer:
            logger.info("No LD signature, the actor matches the HTTP signer")
            return trust.upgrade()

        logger.info(f"No LD signature, the actor {actor} is not the HTTP signer")
        return trust

    ld_signer = await ldsig.get_signer(raw_activity)
    if ld_signer:
        logger.info(f"LD signature is signed by {ld_signer}")
        return trust.with_signer(ld_signer).upgrade()

    if actor == http_signer:
        logger.info("Bad LD signature, but the HTTP signer matches the actor")
        return trust.upgrade()

    logger.info("Invalid LD signature and the HTTP signer is different")
    return trust


def check_signers(
    trust: TrustContext,
    actor: str,
    attributed_to: str | None = None,
) -> TrustContext:
    """Only keeps a trusted context if the claimed authors signed it."""
    if not trust.trusted:
        return trust

    if not trust.is_signed_by(actor):
        logger.info(f"{actor} is not in the signers {trust.signers}")
        return trust.downgrade()

    if attributed_to and not trust.is_signed_by(attributed_to):
        logger.info(f"{attributed_to} is not in the signers {trust.signers}")
        return trust.downgrade()

    return trust
