# File: parkgarage/presentation/console.py
"""
Interactive console for the Parking Garage

Thin menu loop over the command processor and the service queries. It
parses what the operator types, hands already-validated values to the
core, and renders the results as text. No garage rules live here.
"""

from typing import Any, List, Optional, TextIO, Tuple
import sys

from ..application.commands import (
    AddSpotsCommand, CommandProcessor, ConfigureTariffCommand,
    EnterVehicleCommand, ExitVehicleCommand
)
from ..application.dtos import ExitReceiptDTO, TicketDTO
from ..application.parking_service import GarageService, ParkingServiceError


DATE_FORMAT = "%Y-%m-%d %H:%M"

MENU = """
=== Parking Garage Manager ===
1. Configure Tariff
2. Configure/Add Spots
3. Vehicle Entry (Issue Ticket)
4. Vehicle Exit (Calculate Fee & Pay)
5. Display Occupancy Snapshot
6. Display Tickets (active & archived)
0. Exit"""


def parse_spot_entries(text: str) -> Tuple[List[Tuple[str, Any]], List[str]]:
    """
    Parse 'REGULAR:10,COMPACT:5' into (type, count) pairs
    Returns: (entries, malformed parts); counts stay as typed so the
    service can reject them with a reason
    """
    entries: List[Tuple[str, Any]] = []
    malformed: List[str] = []
    for part in text.split(","):
        part = part.strip()
        if not part:
            continue
        pair = part.split(":")
        if len(pair) != 2:
            malformed.append(part)
            continue
        entries.append((pair[0].strip(), pair[1].strip()))
    return entries, malformed


def format_ticket(ticket: TicketDTO) -> str:
    exit_str = ticket.exit_time.strftime(DATE_FORMAT) if ticket.exit_time else "OPEN"
    fee = f"{ticket.fee:.2f}" if ticket.fee is not None else "-"
    return (
        f"Ticket[{ticket.ticket_id}] {ticket.plate} ({ticket.category}) -> Spot:{ticket.spot_id} "
        f"In:{ticket.entry_time.strftime(DATE_FORMAT)} Out:{exit_str} Fee:{fee}"
    )


class ConsoleShell:
    """Menu driven operator console"""

    def __init__(
        self,
        service: GarageService,
        processor: Optional[CommandProcessor] = None,
        stdin: Optional[TextIO] = None,
        stdout: Optional[TextIO] = None
    ):
        self.service = service
        self.processor = processor or CommandProcessor(service)
        self.stdin = stdin or sys.stdin
        self.stdout = stdout or sys.stdout

    # ========================================================================
    # I/O HELPERS
    # ========================================================================

    def _print(self, text: str = "") -> None:
        self.stdout.write(text + "\n")

    def _ask(self, prompt: str) -> Optional[str]:
        self.stdout.write(prompt)
        self.stdout.flush()
        line = self.stdin.readline()
        if not line:
            return None
        return line.strip()

    def _report_failure(self, result: dict) -> None:
        self._print(f"Error: {result.get('error')}")

    # ========================================================================
    # MAIN LOOP
    # ========================================================================

    def run(self) -> None:
        actions = {
            "1": self.configure_tariff,
            "2": self.configure_spots,
            "3": self.vehicle_entry,
            "4": self.vehicle_exit,
            "5": self.display_occupancy,
            "6": self.display_tickets,
        }
        while True:
            self._print(MENU)
            choice = self._ask("Choose: ")
            if choice is None or choice == "0":
                self._print("Exiting...")
                return
            action = actions.get(choice)
            if action is None:
                self._print("Invalid choice.")
                continue
            try:
                action()
            except ParkingServiceError as e:
                self._print(f"Error: {e}")

    # ========================================================================
    # MENU ACTIONS
    # ========================================================================

    def configure_tariff(self) -> None:
        tariff = self.service.get_tariff()
        self._print(f"Current: Tariff: {tariff.rate_per_hour:.2f} per hour, {tariff.grace_minutes} min grace")
        rate = self._ask("Enter new rate per hour (or blank to keep): ")
        if not rate:
            self._print("Tariff unchanged.")
            return
        grace = self._ask("Enter grace minutes (int): ") or ""
        try:
            grace_minutes = int(grace)
        except ValueError:
            self._print("Invalid input.")
            return

        result = self.processor.execute(ConfigureTariffCommand(rate, grace_minutes))
        if result["success"]:
            self._print(result["message"])
        else:
            self._report_failure(result)

    def configure_spots(self) -> None:
        self._print("Add spots by type. Example input: REGULAR:10,COMPACT:5,MOTORBIKE:3")
        text = self._ask("Enter spots (or 'list' to view): ")
        if not text:
            self._print("No input.")
            return
        if text.lower() == "list":
            self.display_spots()
            return

        entries, malformed = parse_spot_entries(text)
        for part in malformed:
            self._print(f"Skipping invalid entry: {part}")
        if not entries:
            return

        result = self.processor.execute(AddSpotsCommand(entries))
        batch = result.get("result")
        if batch is not None:
            for rejected in batch.rejected:
                self._print(f"Skipping invalid entry: {rejected.spot_type}:{rejected.count} ({rejected.reason})")
        if result["success"]:
            self._print(result["message"])
        else:
            self._report_failure(result)
        self.display_spots()

    def display_spots(self) -> None:
        snapshot = self.service.occupancy_snapshot()
        if not snapshot.spots:
            self._print("No spots configured.")
            return
        self._print("Spots:")
        for spot in snapshot.spots:
            status = "(OCCUPIED)" if spot.occupied else "(FREE)"
            self._print(f"  Spot[{spot.spot_id}:{spot.spot_type}] {status}")

    def vehicle_entry(self) -> None:
        if self.service.occupancy_snapshot().total == 0:
            self._print("No spots configured. Add spots first.")
            return
        plate = self._ask("Enter plate number: ")
        if not plate:
            self._print("Plate required.")
            return
        category = self._ask("Vehicle type (CAR, TRUCK, MOTORBIKE, VAN): ") or ""

        result = self.processor.execute(EnterVehicleCommand(plate, category.upper()))
        if not result["success"]:
            self._report_failure(result)
            return

        ticket = result["ticket"]
        self._print("\n--- Ticket Issued ---")
        self._print(f"Ticket ID: {ticket.ticket_id}")
        self._print(f"Vehicle  : {ticket.plate} ({ticket.category})")
        self._print(f"Spot     : {ticket.spot_id}")
        self._print(f"Entry at : {ticket.entry_time.strftime(DATE_FORMAT)}")
        self._print("---------------------")

    def vehicle_exit(self) -> None:
        active = self.service.list_tickets().active
        if not active:
            self._print("No active tickets (no vehicles to exit).")
            return
        self._print("Active Tickets:")
        for ticket in active:
            self._print(
                f"  {ticket.ticket_id}  (Spot {ticket.spot_id}) Entered: {ticket.entry_time.strftime(DATE_FORMAT)}"
            )

        ticket_id = (self._ask("Enter Ticket ID to process exit: ") or "").upper()
        quote = self.service.quote_fee(ticket_id)

        self._print("\n--- Fee Breakdown ---")
        self._print(f"Ticket : {quote.ticket.ticket_id}")
        self._print(f"Vehicle: {quote.ticket.plate} ({quote.ticket.category})")
        self._print(f"Entry  : {quote.ticket.entry_time.strftime(DATE_FORMAT)}")
        self._print(f"Exit   : {quote.quoted_at.strftime(DATE_FORMAT)}")
        self._print(f"Duration (minutes): {quote.duration_minutes}")
        self._print(f"Tariff: {quote.tariff.rate_per_hour:.2f} per hour, {quote.tariff.grace_minutes} min grace")
        self._print(f"Amount due: {quote.amount_due:.2f}")
        self._print("---------------------")

        paid = self._ask("Enter payment amount: ") or ""
        method = self._ask("Payment method (CASH/CARD/UPI): ") or ""

        result = self.processor.execute(ExitVehicleCommand(ticket_id, paid, method.upper()))
        if not result["success"]:
            self._report_failure(result)
            self._print("Exit denied. Payment failed or insufficient.")
            return
        self._print_receipt(result["receipt"])

    def _print_receipt(self, receipt: ExitReceiptDTO) -> None:
        payment = receipt.payment
        self._print("\n--- Payment Receipt ---")
        self._print(
            f"Payment[{payment.payment_id}] Ticket:{payment.ticket_id} Amount:{payment.amount:.2f} "
            f"At:{payment.paid_at.strftime(DATE_FORMAT)} Method:{payment.method}"
        )
        self._print(f"Amount due : {receipt.amount_due:.2f}")
        self._print(f"Amount paid: {receipt.amount_paid:.2f}")
        self._print(f"Change     : {receipt.change:.2f}")
        self._print("Ticket closed and spot released. Thank you!")
        self._print("------------------------")

    def display_occupancy(self) -> None:
        self._print("\n=== Occupancy Snapshot ===")
        snapshot = self.service.occupancy_snapshot()
        if snapshot.total == 0:
            self._print("No spots configured.")
            return
        self._print(f"Total spots: {snapshot.total}  Occupied: {snapshot.occupied}  Free: {snapshot.free}")
        for spot in snapshot.spots:
            status = "(OCCUPIED)" if spot.occupied else "(FREE)"
            line = f"  Spot[{spot.spot_id}:{spot.spot_type}] {status}"
            if spot.occupied and spot.plate:
                line += f" -> {spot.plate} ({spot.category}) (Ticket {spot.ticket_id})"
            self._print(line)

    def display_tickets(self) -> None:
        listing = self.service.list_tickets()
        self._print("\n--- Active Tickets ---")
        if not listing.active:
            self._print("  (none)")
        for ticket in listing.active:
            self._print(f"  {format_ticket(ticket)}")

        self._print("\n--- Archived Tickets ---")
        if not listing.archived:
            self._print("  (none)")
        for ticket in listing.archived:
            self._print(f"  {format_ticket(ticket)}")

        payments = self.service.list_payments()
        self._print("\n--- Payments ---")
        if not payments:
            self._print("  (none)")
        for payment in payments:
            self._print(
                f"  Payment[{payment.payment_id}] Ticket:{payment.ticket_id} Amount:{payment.amount:.2f} "
                f"At:{payment.paid_at.strftime(DATE_FORMAT)} Method:{payment.method}"
            )
