"""
Domain Model Unit Tests

Tests for the enums, the Vehicle value object and the Spot, Ticket and
Payment entities.
"""

import unittest
import sys
from datetime import datetime, timedelta
from decimal import Decimal
from pathlib import Path

sys.path.append(str(Path(__file__).parent.parent.parent))

from parkgarage.domain.models import (
    Payment, Spot, SpotType, Ticket, Vehicle, VehicleCategory,
    VehicleEnteredEvent, VehicleExitedEvent
)


ENTRY = datetime(2024, 1, 1, 8, 0, 0)


class TestEnums(unittest.TestCase):
    """Parsing of category and spot type names"""

    def test_parse_accepts_names_and_values_case_insensitively(self):
        self.assertEqual(VehicleCategory.parse("CAR"), VehicleCategory.CAR)
        self.assertEqual(VehicleCategory.parse(" motorbike "), VehicleCategory.MOTORBIKE)
        self.assertEqual(SpotType.parse("Handicapped"), SpotType.HANDICAPPED)
        self.assertEqual(SpotType.parse(SpotType.LARGE), SpotType.LARGE)

    def test_parse_rejects_unknown_values(self):
        for raw in ["BUS", "", "   ", None, 3]:
            with self.subTest(raw=raw):
                with self.assertRaises(ValueError):
                    VehicleCategory.parse(raw)

    def test_enum_sets_are_fixed(self):
        self.assertEqual([c.name for c in VehicleCategory], ["CAR", "TRUCK", "MOTORBIKE", "VAN"])
        self.assertEqual(
            [t.name for t in SpotType],
            ["COMPACT", "REGULAR", "LARGE", "MOTORBIKE", "HANDICAPPED"]
        )


class TestVehicle(unittest.TestCase):

    def test_plate_is_trimmed(self):
        vehicle = Vehicle("  AB-123 ", VehicleCategory.CAR)
        self.assertEqual(vehicle.plate, "AB-123")
        self.assertEqual(str(vehicle), "AB-123 (CAR)")

    def test_empty_plate_is_rejected(self):
        with self.assertRaises(ValueError):
            Vehicle("   ", VehicleCategory.CAR)

    def test_category_must_be_enum_member(self):
        with self.assertRaises(ValueError):
            Vehicle("AB-123", "CAR")

    def test_vehicle_is_immutable(self):
        vehicle = Vehicle("AB-123", VehicleCategory.VAN)
        with self.assertRaises(AttributeError):
            vehicle.plate = "XY-999"


class TestSpot(unittest.TestCase):

    def test_assign_only_when_free(self):
        spot = Spot(1, SpotType.REGULAR)
        self.assertTrue(spot.is_available)

        self.assertTrue(spot.assign("T-1"))
        self.assertFalse(spot.is_available)
        self.assertEqual(spot.occupied_by, "T-1")

        self.assertFalse(spot.assign("T-2"))
        self.assertEqual(spot.occupied_by, "T-1")

    def test_release_is_idempotent(self):
        spot = Spot(1, SpotType.COMPACT)
        spot.assign("T-1")
        spot.release()
        spot.release()
        self.assertTrue(spot.is_available)
        self.assertIsNone(spot.occupied_by)

    def test_spot_id_must_be_positive(self):
        with self.assertRaises(ValueError):
            Spot(0, SpotType.REGULAR)

    def test_string_form(self):
        spot = Spot(3, SpotType.LARGE)
        self.assertEqual(str(spot), "Spot[3:LARGE] (FREE)")
        spot.assign("T-9")
        self.assertEqual(str(spot), "Spot[3:LARGE] (OCCUPIED)")


class TestTicket(unittest.TestCase):

    def setUp(self):
        self.ticket = Ticket("T-1", Vehicle("AB-123", VehicleCategory.CAR), 1, ENTRY)

    def test_new_ticket_is_open(self):
        self.assertTrue(self.ticket.is_open)
        self.assertIsNone(self.ticket.exit_time)
        self.assertIsNone(self.ticket.fee)

    def test_elapsed_minutes_truncates(self):
        self.assertEqual(self.ticket.elapsed_minutes(ENTRY + timedelta(minutes=89, seconds=59)), 89)
        self.assertEqual(self.ticket.elapsed_minutes(ENTRY), 0)
        self.assertLess(self.ticket.elapsed_minutes(ENTRY - timedelta(seconds=1)), 0)

    def test_close_sets_exit_time_and_fee_together(self):
        exit_time = ENTRY + timedelta(minutes=70)
        self.ticket.close(exit_time, Decimal('46.67'))

        self.assertFalse(self.ticket.is_open)
        self.assertEqual(self.ticket.exit_time, exit_time)
        self.assertEqual(self.ticket.fee, Decimal('46.67'))
        self.assertEqual(self.ticket.to_dict()["fee"], "46.67")
        self.assertEqual(self.ticket.to_dict()["vehicle"], {"plate": "AB-123", "category": "CAR"})

    def test_closed_ticket_cannot_be_closed_again(self):
        self.ticket.close(ENTRY + timedelta(minutes=5), Decimal('0.00'))
        with self.assertRaises(ValueError):
            self.ticket.close(ENTRY + timedelta(minutes=50), Decimal('30.00'))
        self.assertEqual(self.ticket.fee, Decimal('0.00'))

    def test_close_rejects_negative_fee_and_early_exit(self):
        with self.assertRaises(ValueError):
            self.ticket.close(ENTRY + timedelta(minutes=5), Decimal('-1'))
        with self.assertRaises(ValueError):
            self.ticket.close(ENTRY - timedelta(minutes=5), Decimal('0'))
        self.assertTrue(self.ticket.is_open)


class TestPaymentAndEvents(unittest.TestCase):

    def test_payment_rejects_negative_amount(self):
        with self.assertRaises(ValueError):
            Payment("P-1", "T-1", Decimal('-0.01'), ENTRY, "CASH")

    def test_payment_to_dict(self):
        payment = Payment("P-1", "T-1", Decimal('46.67'), ENTRY, "CARD")
        self.assertEqual(payment.to_dict()["amount"], "46.67")
        self.assertEqual(payment.to_dict()["method"], "CARD")

    def test_events_carry_ticket_data(self):
        ticket = Ticket("T-1", Vehicle("AB-123", VehicleCategory.CAR), 4, ENTRY)
        entered = VehicleEnteredEvent(ticket).to_dict()
        self.assertEqual(entered["event_type"], "vehicle_entered")
        self.assertEqual(entered["data"]["spot_id"], 4)
        self.assertEqual(entered["timestamp"], ENTRY.isoformat())

        ticket.close(ENTRY + timedelta(minutes=70), Decimal('46.67'))
        exited = VehicleExitedEvent(ticket, 70).to_dict()
        self.assertEqual(exited["data"]["fee"], "46.67")
        self.assertEqual(exited["data"]["duration_minutes"], 70)


if __name__ == '__main__':
    unittest.main()
