"""Error kinds raised by the booking, waitlist and slot services.

Each kind maps to one HTTP status so the client can tell "someone else booked
this" apart from "you already have something at this time" or "this slot is gone".
"""


class OfficeHoursError(Exception):
    kind = 'error'
    status_code = 400
    default_message = 'Request could not be completed.'

    def __init__(self, message: str | None = None):
        self.message = message or self.default_message
        super().__init__(self.message)


class NotFound(OfficeHoursError):
    kind = 'not_found'
    status_code = 404
    default_message = 'Resource not found.'


class SlotInPast(OfficeHoursError):
    kind = 'slot_in_past'
    default_message = 'This slot has already started.'


class SlotAlreadyBooked(OfficeHoursError):
    kind = 'slot_already_booked'
    status_code = 409
    default_message = 'This slot is already booked.'


class ConflictingAppointment(OfficeHoursError):
    kind = 'conflicting_appointment'
    status_code = 409
    default_message = 'You already have an appointment that overlaps this time.'


class MeetingTypeMismatch(OfficeHoursError):
    kind = 'meeting_type_mismatch'
    default_message = 'This slot does not allow the requested meeting type.'


class Forbidden(OfficeHoursError):
    kind = 'forbidden'
    status_code = 403
    default_message = 'You are not allowed to perform this action.'


class InvalidStatus(OfficeHoursError):
    kind = 'invalid_status'
    default_message = 'Status must be completed or no-show.'


class AlreadyTerminal(OfficeHoursError):
    kind = 'already_terminal'
    status_code = 409
    default_message = 'This appointment is no longer scheduled.'


class AlreadyCancelled(AlreadyTerminal):
    kind = 'already_cancelled'
    default_message = 'This appointment has already been cancelled.'


class AppointmentInPast(OfficeHoursError):
    kind = 'appointment_in_past'
    default_message = 'Past appointments cannot be cancelled.'


class SlotNotBooked(OfficeHoursError):
    kind = 'slot_not_booked'
    default_message = 'This slot is available. Book it directly instead.'


class SlotOverlap(OfficeHoursError):
    kind = 'slot_overlap'
    status_code = 409
    default_message = 'This time slot overlaps with an existing slot.'


class SlotHasActiveAppointment(OfficeHoursError):
    kind = 'slot_has_active_appointment'
    status_code = 409
    default_message = 'This slot is booked. Cancel the appointment first.'


class InvalidSlot(OfficeHoursError):
    kind = 'invalid_slot'
    default_message = 'Invalid slot.'


class NothingToUpdate(OfficeHoursError):
    kind = 'nothing_to_update'
    default_message = 'No fields to update.'
