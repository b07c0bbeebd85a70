# File: parkgarage/infrastructure/factories.py
"""
Factory Pattern Implementation for the Parking Garage

Centralizes wiring of a GarageService from settings:
- tariff and initial spot inventory
- clock and id generator
- optional message bus for outbound events
- optional demo data (a small inventory and one vehicle already inside)
"""

from datetime import timedelta
from typing import Optional
import logging

from ..application.commands import CommandProcessor
from ..application.parking_service import GarageService
from ..domain.models import SpotType
from ..domain.strategies import CompatibilityPolicy, GracePeriodTariff
from .config import GarageSettings
from .messaging import MessageBrokerFactory, MessageBus
from .providers import Clock, IdGenerator, SystemClock, UuidIdGenerator


logger = logging.getLogger(__name__)


DEMO_SPOTS = (
    SpotType.COMPACT,
    SpotType.REGULAR,
    SpotType.REGULAR,
    SpotType.MOTORBIKE,
    SpotType.LARGE,
)
DEMO_PLATE = "DL-01-AAA"
DEMO_STAY_MINUTES = 90


class GarageServiceFactory:
    """Builds ready-to-use garage services"""

    @staticmethod
    def create_message_bus(settings: GarageSettings) -> Optional[MessageBus]:
        if settings.messaging.broker == "none":
            return None
        return MessageBrokerFactory.create_message_bus(
            broker_type=settings.messaging.broker,
            url=settings.messaging.url,
            topic=settings.messaging.topic
        )

    @staticmethod
    def create_service(
        settings: Optional[GarageSettings] = None,
        clock: Optional[Clock] = None,
        id_generator: Optional[IdGenerator] = None,
        message_bus: Optional[MessageBus] = None,
        policy: Optional[CompatibilityPolicy] = None
    ) -> GarageService:
        settings = settings or GarageSettings()
        if message_bus is None:
            message_bus = GarageServiceFactory.create_message_bus(settings)

        service = GarageService(
            tariff=GracePeriodTariff(settings.tariff.rate_per_hour, settings.tariff.grace_minutes),
            policy=policy,
            clock=clock or SystemClock(),
            id_generator=id_generator or UuidIdGenerator(),
            message_bus=message_bus,
            max_id_attempts=settings.max_id_attempts
        )

        if settings.spots:
            result = service.add_spot_batch([(spot.type, spot.count) for spot in settings.spots])
            logger.info(f"Configured {len(result.created_spot_ids)} spot(s) from settings")

        if settings.seed_demo:
            GarageServiceFactory.seed_demo(service)

        return service

    @staticmethod
    def create_command_processor(service: GarageService) -> CommandProcessor:
        return CommandProcessor(service)

    @staticmethod
    def seed_demo(service: GarageService) -> None:
        """
        Add a demo inventory and park one car that arrived 90 minutes ago
        The ticket goes through the normal entry workflow with a backdated
        entry time; the service clock is never touched.
        """
        service.add_spot_batch([(spot_type, 1) for spot_type in DEMO_SPOTS])

        entry_time = service.clock.now() - timedelta(minutes=DEMO_STAY_MINUTES)
        ticket = service.enter_vehicle(DEMO_PLATE, "CAR", entry_time=entry_time)

        logger.info(f"Demo ticket {ticket.ticket_id} seeded for {DEMO_PLATE}")
