# File: parkgarage/application/commands.py
"""
Command Pattern Implementation for the Parking Garage

Each mutating garage operation is wrapped as a command object that can be
validated, executed against a GarageService, and recorded in an audit
history. Commands never raise service errors to their caller: the
CommandProcessor turns them into result dictionaries the shell can render.

Command Types:
1. ConfigureTariffCommand - replace the tariff (undoable)
2. AddSpotsCommand - batch spot configuration with partial success
3. EnterVehicleCommand - issue a ticket
4. ExitVehicleCommand - settle a ticket and release its spot
"""

from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence, Tuple
import logging
import uuid

from pydantic import ValidationError

from .dtos import EntryRequestDTO, ExitRequestDTO
from .parking_service import (
    GarageService, InsufficientPaymentError, ParkingServiceError
)


# ============================================================================
# COMMAND BASE CLASS
# ============================================================================

class Command(ABC):
    """
    Abstract base class for all commands

    A command represents an intent to change the garage state.
    """

    def __init__(self, command_id: Optional[str] = None):
        self.command_id = command_id or str(uuid.uuid4())
        self.executed_at: Optional[datetime] = None
        self.logger = logging.getLogger(self.__class__.__name__)

    @abstractmethod
    def execute(self, service: GarageService) -> Dict[str, Any]:
        """
        Execute the command using the provided service
        Returns: result dictionary with at least a 'success' key
        Raises: ParkingServiceError subclasses, handled by the processor
        """

    @abstractmethod
    def validate(self) -> Tuple[bool, List[str]]:
        """
        Validate command parameters before execution
        Returns: (is_valid, error_messages)
        """

    def can_undo(self) -> bool:
        return False

    def undo(self, service: GarageService) -> Dict[str, Any]:
        return {
            "success": False,
            "error": f"{self.__class__.__name__} does not support undo"
        }

    def get_description(self) -> str:
        return self.__class__.__name__.replace("Command", "")

    def to_dict(self) -> Dict[str, Any]:
        return {
            "command_id": self.command_id,
            "command_type": self.__class__.__name__,
            "executed_at": self.executed_at.isoformat() if self.executed_at else None
        }


def _validation_messages(error: ValidationError) -> List[str]:
    return [f"{'.'.join(str(p) for p in e['loc'])}: {e['msg']}" for e in error.errors()]


# ============================================================================
# CONFIGURATION COMMANDS
# ============================================================================

class ConfigureTariffCommand(Command):
    """Replace the active tariff; undo restores the previous one"""

    def __init__(self, rate_per_hour: Any, grace_minutes: Any, command_id: Optional[str] = None):
        super().__init__(command_id)
        self.rate_per_hour = rate_per_hour
        self.grace_minutes = grace_minutes
        self._previous: Optional[Tuple[Any, int]] = None

    def validate(self) -> Tuple[bool, List[str]]:
        errors = []
        if self.rate_per_hour is None:
            errors.append("Rate per hour is required")
        if self.grace_minutes is None:
            errors.append("Grace minutes are required")
        return len(errors) == 0, errors

    def execute(self, service: GarageService) -> Dict[str, Any]:
        previous = service.get_tariff()
        tariff = service.configure_tariff(self.rate_per_hour, self.grace_minutes)
        self._previous = (previous.rate_per_hour, previous.grace_minutes)
        return {
            "success": True,
            "message": f"Tariff updated: {tariff.rate_per_hour:.2f} per hour, {tariff.grace_minutes} min grace",
            "tariff": tariff
        }

    def can_undo(self) -> bool:
        return self._previous is not None

    def undo(self, service: GarageService) -> Dict[str, Any]:
        if not self.can_undo():
            return super().undo(service)
        rate, grace = self._previous
        tariff = service.configure_tariff(rate, grace)
        self._previous = None
        return {"success": True, "message": "Previous tariff restored", "tariff": tariff}


class AddSpotsCommand(Command):
    """Add spots from (type, count) entries; invalid entries are skipped"""

    def __init__(self, entries: Sequence[Tuple[Any, Any]], command_id: Optional[str] = None):
        super().__init__(command_id)
        self.entries = list(entries)

    def validate(self) -> Tuple[bool, List[str]]:
        if not self.entries:
            return False, ["At least one spot entry is required"]
        return True, []

    def execute(self, service: GarageService) -> Dict[str, Any]:
        result = service.add_spot_batch(self.entries)
        created = len(result.created_spot_ids)
        message = f"{created} spot(s) added"
        if result.has_rejections:
            message += f", {len(result.rejected)} entr{'y' if len(result.rejected) == 1 else 'ies'} skipped"
        return {
            "success": created > 0 or not result.has_rejections,
            "message": message,
            "result": result
        }


# ============================================================================
# PARKING COMMANDS
# ============================================================================

class EnterVehicleCommand(Command):
    """Issue a ticket for an arriving vehicle"""

    def __init__(self, plate: str, category: Any, command_id: Optional[str] = None):
        super().__init__(command_id)
        self.plate = plate
        self.category = category

    def validate(self) -> Tuple[bool, List[str]]:
        try:
            EntryRequestDTO(plate=self.plate, category=self.category)
        except ValidationError as e:
            return False, _validation_messages(e)
        return True, []

    def execute(self, service: GarageService) -> Dict[str, Any]:
        ticket = service.enter_vehicle(self.plate, self.category)
        return {
            "success": True,
            "message": f"Ticket {ticket.ticket_id} issued for spot {ticket.spot_id}",
            "ticket": ticket
        }


class ExitVehicleCommand(Command):
    """Settle a ticket with the tendered amount"""

    def __init__(self, ticket_id: str, paid_amount: Any, method: str = "CASH", command_id: Optional[str] = None):
        super().__init__(command_id)
        self.ticket_id = ticket_id
        self.paid_amount = paid_amount
        self.method = method

    def validate(self) -> Tuple[bool, List[str]]:
        try:
            ExitRequestDTO(ticket_id=self.ticket_id, paid_amount=self.paid_amount, method=self.method)
        except ValidationError as e:
            return False, _validation_messages(e)
        return True, []

    def execute(self, service: GarageService) -> Dict[str, Any]:
        receipt = service.exit_vehicle(self.ticket_id, self.paid_amount, self.method)
        return {
            "success": True,
            "message": f"Ticket {receipt.ticket.ticket_id} closed and spot {receipt.ticket.spot_id} released",
            "receipt": receipt
        }


# ============================================================================
# COMMAND PROCESSOR
# ============================================================================

class CommandProcessor:
    """
    Validates and executes commands, keeping an audit history

    Service errors become failed results carrying the error type name, so
    the caller can show them and let the user retry.
    """

    def __init__(self, service: GarageService, max_history: int = 1000):
        self.service = service
        self.max_history = max_history
        self._history: List[Dict[str, Any]] = []
        self._undo_stack: List[Command] = []
        self.logger = logging.getLogger(self.__class__.__name__)

    def execute(self, command: Command) -> Dict[str, Any]:
        self.logger.debug(f"Executing {command.get_description()} ({command.command_id})")

        is_valid, errors = command.validate()
        if not is_valid:
            result = {
                "success": False,
                "error": "; ".join(errors),
                "error_type": "InvalidInputError"
            }
            self._record(command, result)
            return result

        try:
            result = command.execute(self.service)
        except InsufficientPaymentError as e:
            result = {
                "success": False,
                "error": str(e),
                "error_type": e.__class__.__name__,
                "required": e.required,
                "provided": e.provided
            }
        except ParkingServiceError as e:
            result = {"success": False, "error": str(e), "error_type": e.__class__.__name__}

        if result.get("success"):
            command.executed_at = datetime.now()
            if command.can_undo():
                self._undo_stack.append(command)

        self._record(command, result)
        return result

    def undo_last(self) -> Dict[str, Any]:
        if not self._undo_stack:
            return {"success": False, "error": "Nothing to undo"}
        command = self._undo_stack.pop()
        try:
            result = command.undo(self.service)
        except ParkingServiceError as e:
            result = {"success": False, "error": str(e), "error_type": e.__class__.__name__}
        self._record(command, result, undo=True)
        return result

    def _record(self, command: Command, result: Dict[str, Any], undo: bool = False) -> None:
        entry = command.to_dict()
        entry.update({
            "undo": undo,
            "success": bool(result.get("success")),
            "error": result.get("error"),
            "recorded_at": datetime.now().isoformat()
        })
        self._history.append(entry)
        if len(self._history) > self.max_history:
            self._history.pop(0)

        if not entry["success"]:
            self.logger.warning(f"{command.get_description()} failed: {entry['error']}")

    def get_history(self, limit: Optional[int] = None) -> List[Dict[str, Any]]:
        history = list(self._history)
        return history[-limit:] if limit else history
