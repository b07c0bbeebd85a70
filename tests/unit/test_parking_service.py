"""
Garage Service Unit Tests

Tests for the application service: configuration, entry, exit, queries,
error translation and event publication. A manual clock and sequential
ids keep every scenario reproducible.
"""

import unittest
from unittest.mock import Mock, patch
import sys
from datetime import timedelta
from decimal import Decimal
from pathlib import Path

sys.path.append(str(Path(__file__).parent.parent.parent))

from parkgarage.application.dtos import TicketDTO
from parkgarage.application.parking_service import (
    AllocationConflictError, GarageService, InsufficientPaymentError,
    InvalidInputError, InvalidTicketError, NoAvailableSpotError,
    ParkingServiceError
)
from parkgarage.domain.aggregates import DuplicateTicketError
from parkgarage.domain.models import SpotType
from parkgarage.domain.strategies import GracePeriodTariff
from parkgarage.infrastructure.providers import (
    IdGenerator, ManualClock, SequentialIdGenerator
)


class FixedIdGenerator(IdGenerator):
    """Returns the queued ids in order, repeating the last one"""

    def __init__(self, ticket_ids, payment_ids=("P-1",)):
        self.ticket_ids = list(ticket_ids)
        self.payment_ids = list(payment_ids)

    def next_ticket_id(self):
        return self.ticket_ids.pop(0) if len(self.ticket_ids) > 1 else self.ticket_ids[0]

    def next_payment_id(self):
        return self.payment_ids.pop(0) if len(self.payment_ids) > 1 else self.payment_ids[0]


class ServiceTestCase(unittest.TestCase):

    def setUp(self):
        self.clock = ManualClock()
        self.bus = Mock()
        self.service = GarageService(
            tariff=GracePeriodTariff(Decimal('40.00'), 10),
            clock=self.clock,
            id_generator=SequentialIdGenerator(),
            message_bus=self.bus
        )


class TestConfiguration(ServiceTestCase):

    def test_default_tariff(self):
        service = GarageService()
        tariff = service.get_tariff()
        self.assertEqual(tariff.rate_per_hour, Decimal('40.00'))
        self.assertEqual(tariff.grace_minutes, 10)

    def test_configure_tariff(self):
        tariff = self.service.configure_tariff("20.50", 5)
        self.assertEqual(tariff.rate_per_hour, Decimal('20.50'))
        self.assertEqual(self.service.get_tariff().grace_minutes, 5)

    def test_invalid_tariff_leaves_previous_one(self):
        for rate, grace in [(-1, 10), ("abc", 10), (40, -5), (40, "ten")]:
            with self.subTest(rate=rate, grace=grace):
                with self.assertRaises(InvalidInputError):
                    self.service.configure_tariff(rate, grace)
        self.assertEqual(self.service.get_tariff().rate_per_hour, Decimal('40.00'))

    def test_add_spots(self):
        self.assertEqual(self.service.add_spots("regular", 2), [1, 2])
        self.assertEqual(self.service.add_spots(SpotType.COMPACT, "3"), [3, 4, 5])

    def test_add_spots_rejects_invalid_entries(self):
        for spot_type, count in [("BUS", 1), ("REGULAR", 0), ("REGULAR", -2), ("REGULAR", "x"), ("REGULAR", True)]:
            with self.subTest(spot_type=spot_type, count=count):
                with self.assertRaises(InvalidInputError):
                    self.service.add_spots(spot_type, count)
        self.assertEqual(self.service.occupancy_snapshot().total, 0)

    def test_batch_is_partially_applied(self):
        result = self.service.add_spot_batch([("REGULAR", 2), ("BUS", 4), ("COMPACT", 0), ("LARGE", 1)])
        self.assertEqual(result.created_spot_ids, [1, 2, 3])
        self.assertTrue(result.has_rejections)
        self.assertEqual([r.spot_type for r in result.rejected], ["BUS", "COMPACT"])

    def test_malformed_batch_entry_is_rejected_and_rest_applied(self):
        result = self.service.add_spot_batch([("REGULAR", 2), ("COMPACT",), ("LARGE", 1)])

        self.assertEqual(result.created_spot_ids, [1, 2, 3])
        self.assertEqual(len(result.rejected), 1)
        self.assertIn("Malformed", result.rejected[0].reason)
        self.bus.publish_events.assert_called_once()
        self.assertEqual(len(self.bus.publish_events.call_args.args[0]), 2)

        self.service.add_spots("MOTORBIKE", 1)
        self.assertEqual(len(self.bus.publish_events.call_args.args[0]), 1)


class TestEntry(ServiceTestCase):

    def test_entry_issues_ticket_for_first_compatible_spot(self):
        self.service.add_spots("REGULAR", 1)
        ticket = self.service.enter_vehicle("AB-123", "CAR")

        self.assertEqual(ticket.ticket_id, "T-0001")
        self.assertEqual(ticket.spot_id, 1)
        self.assertEqual(ticket.plate, "AB-123")
        self.assertEqual(ticket.entry_time, self.clock.now())
        self.assertTrue(ticket.is_open)
        self.assertEqual(self.service.occupancy_snapshot().occupied, 1)

    def test_invalid_input_changes_nothing(self):
        self.service.add_spots("REGULAR", 1)
        for plate, category in [("", "CAR"), ("   ", "CAR"), (None, "CAR"), ("AB-1", "BUS"), ("AB-1", "")]:
            with self.subTest(plate=plate, category=category):
                with self.assertRaises(InvalidInputError):
                    self.service.enter_vehicle(plate, category)
        self.assertEqual(self.service.occupancy_snapshot().occupied, 0)
        self.assertEqual(self.service.list_tickets().active, [])

    def test_no_available_spot(self):
        self.service.add_spots("REGULAR", 1)
        self.service.enter_vehicle("AB-123", "CAR")
        with self.assertRaises(NoAvailableSpotError):
            self.service.enter_vehicle("XY-999", "CAR")
        self.assertEqual(len(self.service.list_tickets().active), 1)

    def test_empty_garage_has_no_spot(self):
        with self.assertRaises(NoAvailableSpotError):
            self.service.enter_vehicle("AB-123", "CAR")

    def test_truck_rejected_without_large_or_handicapped(self):
        self.service.add_spots("REGULAR", 3)
        with self.assertRaises(NoAvailableSpotError):
            self.service.enter_vehicle("TR-1", "TRUCK")

    def test_handicapped_fallback(self):
        self.service.add_spots("HANDICAPPED", 1)
        ticket = self.service.enter_vehicle("VAN-1", "van")
        self.assertEqual(ticket.spot_id, 1)

    def test_colliding_ticket_id_is_regenerated(self):
        self.service.id_generator = FixedIdGenerator(["DUP", "DUP", "NEW"])
        self.service.add_spots("REGULAR", 2)
        self.assertEqual(self.service.enter_vehicle("A-1", "CAR").ticket_id, "DUP")
        self.assertEqual(self.service.enter_vehicle("A-2", "CAR").ticket_id, "NEW")

    def test_exhausted_id_attempts_raise_allocation_conflict(self):
        self.service.id_generator = FixedIdGenerator(["DUP"])
        self.service.add_spots("REGULAR", 2)
        self.service.enter_vehicle("A-1", "CAR")

        with self.assertRaises(AllocationConflictError):
            self.service.enter_vehicle("A-2", "CAR")
        snapshot = self.service.occupancy_snapshot()
        self.assertEqual(snapshot.occupied, 1)

    def test_entry_time_can_be_given_explicitly(self):
        self.service.add_spots("REGULAR", 1)
        arrived = self.clock.now() - timedelta(minutes=70)

        ticket = self.service.enter_vehicle("AB-123", "CAR", entry_time=arrived)

        self.assertEqual(ticket.entry_time, arrived)
        self.assertEqual(self.service.quote_fee(ticket.ticket_id).amount_due, Decimal('46.67'))

    def test_spot_taken_between_search_and_assign(self):
        self.service.add_spots("REGULAR", 1)
        spot = self.service.state.inventory.get(1)
        self.service.state.inventory.assign(spot, "GHOST")
        self.bus.reset_mock()

        with patch.object(self.service.state.inventory, 'find_allocatable', return_value=spot):
            with self.assertRaises(AllocationConflictError):
                self.service.enter_vehicle("AB-123", "CAR")

        self.assertEqual(spot.occupied_by, "GHOST")
        self.assertEqual(self.service.list_tickets().active, [])
        self.bus.publish_events.assert_not_called()

    def test_ticket_open_failure_releases_spot(self):
        self.service.add_spots("REGULAR", 1)
        self.bus.reset_mock()

        with patch.object(self.service.state.ledger, 'open_ticket',
                          side_effect=DuplicateTicketError("Ticket T-0001 already exists")):
            with self.assertRaises(AllocationConflictError):
                self.service.enter_vehicle("AB-123", "CAR")

        self.assertTrue(self.service.state.inventory.get(1).is_available)
        self.assertEqual(self.service.occupancy_snapshot().occupied, 0)
        self.assertEqual(self.service.list_tickets().active, [])
        self.bus.publish_events.assert_not_called()

        ticket = self.service.enter_vehicle("AB-123", "CAR")
        self.assertEqual(ticket.spot_id, 1)


class TestExit(ServiceTestCase):

    def setUp(self):
        super().setUp()
        self.service.add_spots("REGULAR", 1)
        self.ticket = self.service.enter_vehicle("AB-123", "CAR")

    def test_quote_fee_changes_nothing(self):
        self.clock.advance(minutes=70)
        quote = self.service.quote_fee(self.ticket.ticket_id)
        self.assertEqual(quote.amount_due, Decimal('46.67'))
        self.assertEqual(quote.duration_minutes, 70)
        self.assertEqual(len(self.service.list_tickets().active), 1)

    def test_insufficient_payment_keeps_ticket_open(self):
        self.clock.advance(minutes=70)
        with self.assertRaises(InsufficientPaymentError) as ctx:
            self.service.exit_vehicle(self.ticket.ticket_id, 40)

        self.assertEqual(ctx.exception.required, Decimal('46.67'))
        self.assertEqual(ctx.exception.provided, Decimal('40'))
        self.assertIn("Required: 46.67, Provided: 40.00", str(ctx.exception))
        self.assertEqual(len(self.service.list_tickets().active), 1)
        self.assertEqual(self.service.occupancy_snapshot().occupied, 1)
        self.assertEqual(self.service.list_payments(), [])

    def test_one_cent_short_is_rejected(self):
        self.clock.advance(minutes=70)
        with self.assertRaises(InsufficientPaymentError):
            self.service.exit_vehicle(self.ticket.ticket_id, "46.66")

    def test_insufficient_payment_message_never_rounds_up_provided(self):
        self.clock.advance(minutes=70)
        with self.assertRaises(InsufficientPaymentError) as ctx:
            self.service.exit_vehicle(self.ticket.ticket_id, "46.666")

        self.assertEqual(ctx.exception.provided, Decimal('46.666'))
        self.assertIn("Required: 46.67, Provided: 46.66", str(ctx.exception))

    def test_exact_payment_closes_ticket(self):
        self.clock.advance(minutes=70)
        receipt = self.service.exit_vehicle(self.ticket.ticket_id, 46.67, "card")

        self.assertEqual(receipt.amount_due, Decimal('46.67'))
        self.assertEqual(receipt.change, Decimal('0.00'))
        self.assertEqual(receipt.ticket.fee, Decimal('46.67'))
        self.assertEqual(receipt.ticket.exit_time, self.clock.now())
        self.assertEqual(receipt.payment.payment_id, "P-0001")
        self.assertEqual(receipt.payment.method, "CARD")
        self.assertEqual(self.service.occupancy_snapshot().free, 1)

        listing = self.service.list_tickets()
        self.assertEqual(listing.active, [])
        self.assertEqual([t.ticket_id for t in listing.archived], ["T-0001"])

        restored = TicketDTO.from_json(receipt.ticket.to_json())
        self.assertEqual(restored, receipt.ticket)
        self.assertFalse(restored.is_open)
        self.assertEqual(receipt.to_dict()["payment"]["ticket_id"], "T-0001")

    def test_overpayment_reports_change_and_stores_fee(self):
        self.clock.advance(minutes=90)
        receipt = self.service.exit_vehicle(self.ticket.ticket_id, 100)

        self.assertEqual(receipt.change, Decimal('40.00'))
        self.assertEqual(receipt.amount_paid, Decimal('100'))
        self.assertEqual(self.service.list_payments()[0].amount, Decimal('60.00'))

    def test_exit_within_grace_is_free(self):
        self.clock.advance(minutes=10, seconds=59)
        receipt = self.service.exit_vehicle(self.ticket.ticket_id, 0)
        self.assertEqual(receipt.duration_minutes, 10)
        self.assertEqual(receipt.amount_due, Decimal('0.00'))

    def test_second_exit_is_invalid_ticket(self):
        self.service.exit_vehicle(self.ticket.ticket_id, 0)
        with self.assertRaises(InvalidTicketError):
            self.service.exit_vehicle(self.ticket.ticket_id, 100)
        self.assertEqual(len(self.service.list_payments()), 1)

    def test_unknown_ticket(self):
        for ticket_id in ["NOPE", "", None]:
            with self.subTest(ticket_id=ticket_id):
                with self.assertRaises(InvalidTicketError):
                    self.service.exit_vehicle(ticket_id, 10)

    def test_invalid_payment_input(self):
        for amount, method in [(-1, "CASH"), ("abc", "CASH"), (10, ""), (10, "   ")]:
            with self.subTest(amount=amount, method=method):
                with self.assertRaises(InvalidInputError):
                    self.service.exit_vehicle(self.ticket.ticket_id, amount, method)
        self.assertEqual(len(self.service.list_tickets().active), 1)

    def test_clock_before_entry_is_invalid_input(self):
        self.clock.advance(minutes=-5)
        with self.assertRaises(InvalidInputError):
            self.service.exit_vehicle(self.ticket.ticket_id, 100)
        self.assertEqual(len(self.service.list_tickets().active), 1)

    def test_tariff_at_exit_applies(self):
        self.clock.advance(minutes=60)
        self.service.configure_tariff(60, 0)
        receipt = self.service.exit_vehicle(self.ticket.ticket_id, 60)
        self.assertEqual(receipt.amount_due, Decimal('60.00'))

    def test_spot_is_reusable_after_exit(self):
        self.service.exit_vehicle(self.ticket.ticket_id, 0)
        again = self.service.enter_vehicle("XY-999", "CAR")
        self.assertEqual(again.spot_id, 1)
        self.assertEqual(again.ticket_id, "T-0002")


class TestQueriesAndEvents(ServiceTestCase):

    def test_occupancy_snapshot_names_the_parked_vehicle(self):
        self.service.add_spots("COMPACT", 1)
        self.service.add_spots("REGULAR", 1)
        self.service.enter_vehicle("AB-123", "CAR")

        snapshot = self.service.occupancy_snapshot()
        self.assertEqual((snapshot.total, snapshot.occupied, snapshot.free), (2, 1, 1))
        self.assertEqual(snapshot.spots[0].plate, "AB-123")
        self.assertEqual(snapshot.spots[0].ticket_id, "T-0001")
        self.assertIsNone(snapshot.spots[1].plate)

    def test_events_are_published_per_operation(self):
        self.service.add_spots("REGULAR", 1)
        self.service.enter_vehicle("AB-123", "CAR")
        self.service.exit_vehicle("T-0001", 0)

        published = [
            [e.event_type for e in call.args[0]]
            for call in self.bus.publish_events.call_args_list
        ]
        self.assertEqual(published, [
            ["spots_added"],
            ["vehicle_entered"],
            ["vehicle_exited", "payment_recorded"],
        ])

    def test_failed_operations_publish_nothing(self):
        with self.assertRaises(NoAvailableSpotError):
            self.service.enter_vehicle("AB-123", "CAR")
        self.bus.publish_events.assert_not_called()

    def test_publish_failure_does_not_break_operation(self):
        self.bus.publish_events.side_effect = RuntimeError("broker down")
        self.assertEqual(self.service.add_spots("REGULAR", 1), [1])

    def test_errors_share_a_base_class(self):
        for error in [InvalidInputError, NoAvailableSpotError, AllocationConflictError,
                      InvalidTicketError, InsufficientPaymentError]:
            self.assertTrue(issubclass(error, ParkingServiceError))


if __name__ == '__main__':
    unittest.main()
