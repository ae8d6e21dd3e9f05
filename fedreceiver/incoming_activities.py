import asyncio

from loguru import logger

from fedreceiver.boxes import process_inbox
from fedreceiver.config import INBOX_PROCESSING_TIMEOUT
from fedreceiver.services import ContactUpgrade
from fedreceiver.services import Delivery
from fedreceiver.services import Services
from fedreceiver.utils.workers import Worker


async def process_next_delivery(services: Services, delivery: Delivery) -> None:
    logger.info(f"Processing delivery for {delivery.uid=} on {delivery.path}")
    try:
        await asyncio.wait_for(
            process_inbox(
                services,
                delivery.body,
                delivery.headers,
                delivery.uid,
                delivery.method,
                delivery.path,
            ),
            timeout=INBOX_PROCESSING_TIMEOUT,
        )
    except asyncio.TimeoutError:
        logger.error("Delivery took too long to process")
    except Exception:
        logger.exception("Failed")
    else:
        logger.info("Success")


class InboxWorker(Worker[Delivery]):
    def __init__(self, services: Services) -> None:
        super().__init__(services.deliveries)
        self._services = services

    async def process_message(self, delivery: Delivery) -> None:
        await process_next_delivery(self._services, delivery)


class ContactUpgradeWorker(Worker[ContactUpgrade]):
    def __init__(self, services: Services) -> None:
        super().__init__(services.contact_upgrades)
        self._services = services

    async def process_message(self, upgrade: ContactUpgrade) -> None:
        logger.info(f"Upgrading contact {upgrade.contact_id} of {upgrade.uid=}")
        try:
            await self._services.handlers.upgrade_contact(
                upgrade.contact_id, upgrade.uid, upgrade.url
            )
        except Exception:
            logger.exception(f"Failed to upgrade contact {upgrade.contact_id}")
