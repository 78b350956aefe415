"""HTTP API for the appointment ledger.

Flask server exposing:
- Provider listing and daily availability
- Provider-blocked slots
- Appointment scheduling, rescheduling, cancellation and provider response
- Consultation outcomes and prescription status

Run with: clinic-ledger-api  (or python -m clinic_ledger)
"""
from datetime import datetime
from typing import Optional

from flask import Flask, jsonify, request
from flask_cors import CORS
from pydantic import ValidationError

from clinic_ledger.api.models import (
    AvailabilityQuery,
    ErrorResponse,
    PrescriptionStatusRequest,
    ProviderResponseRequest,
    RescheduleRequest,
    ScheduleRequest,
    SlotRequest,
)
from clinic_ledger.config import LedgerSettings
from clinic_ledger.directory import ProviderDirectory, ProviderNotFoundError
from clinic_ledger.errors import (
    InvalidTransition,
    NotFound,
    OperationResult,
    OutOfPolicy,
    SlotConflict,
    StoreIOFailure,
)
from clinic_ledger.ledger import AppointmentLedger
from clinic_ledger.logging_config import RequestIDMiddleware, get_logger, setup_structured_logging
from clinic_ledger.record import AppointmentOutcome

logger = get_logger(__name__)

HTTP_STATUS_BY_CODE = {
    OutOfPolicy.code: 400,
    InvalidTransition.code: 400,
    NotFound.code: 404,
    SlotConflict.code: 409,
    StoreIOFailure.code: 503,
}


def _error(message: str, status: int, code: Optional[str] = None):
    body = ErrorResponse(error=message, code=code)
    return jsonify(body.model_dump(exclude_none=True)), status


def _failure(result: OperationResult):
    return _error(result.reason, HTTP_STATUS_BY_CODE.get(result.code, 500), result.code)


def _json_body() -> dict:
    return request.get_json(silent=True) or {}


def _validation_message(exc: ValidationError) -> str:
    parts = []
    for err in exc.errors():
        location = ".".join(str(p) for p in err["loc"]) or "body"
        parts.append(f"{location}: {err['msg']}")
    return "; ".join(parts)


def create_app(ledger: AppointmentLedger, directory: Optional[ProviderDirectory] = None) -> Flask:
    """
    Build the Flask application around a ledger.

    Args:
        ledger: Ledger every request operates on
        directory: Provider directory (ledger's own, or built-in defaults, if None)

    Returns:
        Configured Flask app
    """
    if directory is None:
        directory = ledger.directory if ledger.directory is not None else ProviderDirectory.from_config()

    app = Flask(__name__)
    CORS(app)
    app.wsgi_app = RequestIDMiddleware(app.wsgi_app)
    app.config["LEDGER"] = ledger
    app.config["DIRECTORY"] = directory

    @app.errorhandler(ValidationError)
    def handle_validation_error(exc):
        return _error(_validation_message(exc), 400, "VALIDATION_ERROR")

    @app.errorhandler(ProviderNotFoundError)
    def handle_provider_not_found(exc):
        return _error(str(exc), 404, NotFound.code)

    def appointment_response(result: OperationResult, message: str, status: int = 200):
        if not result.success:
            return _failure(result)
        return jsonify({
            "success": True,
            "appointment": result.record.to_dict(),
            "message": message
        }), status

    @app.route('/health', methods=['GET'])
    def health_check():
        """GET /health - Health check endpoint."""
        store_ok = ledger.reload()
        return jsonify({
            "success": store_ok,
            "status": "healthy" if store_ok else "degraded",
            "total_appointments": len(ledger.records),
            "timestamp": datetime.now().isoformat()
        }), 200 if store_ok else 503

    @app.route('/providers', methods=['GET'])
    def list_providers():
        """GET /providers - List providers."""
        providers = [p.model_dump() for p in directory.list_providers()]
        return jsonify({
            "success": True,
            "providers": providers,
            "total": len(providers)
        })

    @app.route('/providers/<provider_id>/availability', methods=['GET'])
    def get_availability(provider_id):
        """GET /providers/D001/availability?date=2025-01-15[&time_of_day=morning][&available_only=true]

        Daily grid for a provider, with booked and blocked slots marked.
        """
        provider = directory.get_provider(provider_id)
        query = AvailabilityQuery.model_validate(request.args.to_dict())

        if query.available_only:
            slots = ledger.list_available(provider_id, query.date)
        else:
            slots = ledger.daily_schedule(provider_id, query.date)
        slots = ledger.calendar.filter_by_time_of_day(slots, query.time_of_day)

        return jsonify({
            "success": True,
            "provider": provider.model_dump(),
            "date": query.date.isoformat(),
            "slots": [slot.to_dict() for slot in slots],
            "total_slots": len(slots)
        })

    @app.route('/providers/<provider_id>/blocked-slots', methods=['POST'])
    def block_slot(provider_id):
        """POST /providers/D001/blocked-slots - Mark a slot unavailable.

        Request body:
        {
            "date": "2025-01-15",
            "start_time": "10:00"
        }
        """
        directory.get_provider(provider_id)
        slot = SlotRequest.model_validate(_json_body())
        result = ledger.block_slot(provider_id, slot.date, slot.start_time)
        if not result.success:
            return _failure(result)
        return jsonify({
            "success": True,
            "message": f"Slot {slot.date.isoformat()} {slot.start_time.strftime('%H:%M')} blocked"
        }), 201

    @app.route('/providers/<provider_id>/blocked-slots', methods=['DELETE'])
    def release_slot(provider_id):
        """DELETE /providers/D001/blocked-slots - Reopen a blocked slot."""
        directory.get_provider(provider_id)
        slot = SlotRequest.model_validate(_json_body())
        result = ledger.release_slot(provider_id, slot.date, slot.start_time)
        if not result.success:
            return _failure(result)
        return jsonify({
            "success": True,
            "message": f"Slot {slot.date.isoformat()} {slot.start_time.strftime('%H:%M')} released"
        })

    @app.route('/providers/<provider_id>/appointments', methods=['GET'])
    def list_provider_appointments(provider_id):
        """GET /providers/D001/appointments[?upcoming=true]"""
        directory.get_provider(provider_id)
        if request.args.get('upcoming', '').lower() == 'true':
            records = ledger.list_upcoming_by_provider(provider_id)
        else:
            records = ledger.list_by_provider(provider_id)
        return jsonify({
            "success": True,
            "appointments": [r.to_dict() for r in records],
            "total": len(records)
        })

    @app.route('/patients/<int:patient_id>/appointments', methods=['GET'])
    def list_patient_appointments(patient_id):
        """GET /patients/1001/appointments[?completed=true]"""
        if request.args.get('completed', '').lower() == 'true':
            records = ledger.list_completed_by_patient(patient_id)
        else:
            records = ledger.list_by_patient(patient_id)
        return jsonify({
            "success": True,
            "appointments": [r.to_dict() for r in records],
            "total": len(records)
        })

    @app.route('/appointments', methods=['POST'])
    def create_appointment():
        """POST /appointments - Schedule a new appointment.

        Expected JSON body:
        {
            "patient_id": 1001,
            "provider_id": "D001",
            "date": "2025-01-15",
            "start_time": "10:00"
        }
        """
        data = ScheduleRequest.model_validate(_json_body())
        directory.get_provider(data.provider_id)
        result = ledger.schedule(data.patient_id, data.provider_id, data.date, data.start_time)
        if not result.success:
            return _failure(result)
        return appointment_response(
            result,
            f"Appointment scheduled! ID: {result.record.appointment_id}",
            status=201
        )

    @app.route('/appointments/<appointment_id>', methods=['GET'])
    def get_appointment(appointment_id):
        """GET /appointments/APT-... - Get appointment by ID."""
        record = ledger.get(appointment_id)
        if record is None:
            return _error(f"Appointment '{appointment_id}' not found", 404, NotFound.code)
        return jsonify({
            "success": True,
            "appointment": record.to_dict(),
            "outcome_summary": record.outcome_summary()
        })

    @app.route('/appointments/<appointment_id>/reschedule', methods=['PUT'])
    def reschedule_appointment(appointment_id):
        """PUT /appointments/APT-.../reschedule - Move to a new date/time.

        The appointment goes back to Scheduled and needs a new provider response.

        Request body:
        {
            "date": "2025-01-20",
            "start_time": "14:00"
        }
        """
        data = RescheduleRequest.model_validate(_json_body())
        result = ledger.reschedule(appointment_id, data.date, data.start_time)
        return appointment_response(result, f"Appointment {appointment_id} has been rescheduled")

    @app.route('/appointments/<appointment_id>', methods=['PATCH'])
    def cancel_appointment(appointment_id):
        """PATCH /appointments/APT-... - Cancel appointment (change status, don't delete)."""
        result = ledger.cancel(appointment_id)
        return appointment_response(result, f"Appointment {appointment_id} has been cancelled")

    @app.route('/appointments/<appointment_id>/response', methods=['POST'])
    def respond_to_appointment(appointment_id):
        """POST /appointments/APT-.../response - Provider confirms or rejects.

        Request body: {"accept": true}
        """
        data = ProviderResponseRequest.model_validate(_json_body())
        result = ledger.respond_to_request(appointment_id, data.accept)
        verb = "confirmed" if data.accept else "rejected"
        return appointment_response(result, f"Appointment {appointment_id} has been {verb}")

    @app.route('/appointments/<appointment_id>/outcome', methods=['PUT'])
    def record_outcome(appointment_id):
        """PUT /appointments/APT-.../outcome - Record the consultation outcome.

        Request body:
        {
            "service_type": "Consultation",
            "consultation_notes": "Mild fever",
            "medicines": [{"name": "Paracetamol", "quantity": 10}]
        }
        """
        outcome = AppointmentOutcome.model_validate(_json_body())
        result = ledger.record_outcome(appointment_id, outcome)
        return appointment_response(result, f"Outcome recorded for appointment {appointment_id}")

    @app.route('/appointments/<appointment_id>/prescription', methods=['PATCH'])
    def update_prescription(appointment_id):
        """PATCH /appointments/APT-.../prescription - Update prescription status."""
        data = PrescriptionStatusRequest.model_validate(_json_body())
        result = ledger.update_prescription_status(appointment_id, data.prescription_status)
        return appointment_response(
            result,
            f"Prescription for appointment {appointment_id} is now {data.prescription_status}"
        )

    @app.route('/appointments/<appointment_id>', methods=['DELETE'])
    def remove_appointment(appointment_id):
        """DELETE /appointments/APT-... - Remove the record entirely."""
        result = ledger.remove_record(appointment_id)
        return appointment_response(result, f"Appointment {appointment_id} has been removed")

    return app


def print_startup_info(settings: LedgerSettings, directory: ProviderDirectory):
    """Print server startup information."""
    hours = settings.operating_hours
    print("=" * 70)
    print("CLINIC LEDGER API")
    print("=" * 70)
    print(f"\nServer: http://localhost:{settings.api_port}")
    print(f"Records: {settings.record_path}")
    print(f"Blocked slots: {settings.blocked_slots_path}")
    print(f"\nProviders: {len(directory)}")
    for provider in directory.list_providers():
        print(f"   - {provider.provider_id}: {provider.name} ({provider.specialization})")
    print("\nOperating Hours:")
    print(f"   Time: {hours.open.strftime('%H:%M')} - {hours.close.strftime('%H:%M')}")
    print(f"   Break: {hours.break_start.strftime('%H:%M')} - {hours.break_end.strftime('%H:%M')}")
    print(f"   Slots: {hours.slot_duration_minutes} minutes each")

    print("\nEndpoints:")
    print("   GET    /providers/<id>/availability?date=  - Daily schedule")
    print("   POST   /appointments                       - Schedule")
    print("   PUT    /appointments/<id>/reschedule       - Reschedule")
    print("   PATCH  /appointments/<id>                  - Cancel")
    print("   POST   /appointments/<id>/response         - Confirm or reject")
    print("   PUT    /appointments/<id>/outcome          - Record outcome")
    print("   GET    /health                             - Health check")
    print("=" * 70)


def main():
    settings = LedgerSettings.from_env()
    setup_structured_logging(settings.log_level)

    if settings.providers_path is not None:
        directory = ProviderDirectory.from_file(settings.providers_path)
    else:
        directory = ProviderDirectory.from_config()

    ledger = AppointmentLedger.from_settings(settings, directory=directory)
    app = create_app(ledger, directory)

    print_startup_info(settings, directory)
    logger.info("api_starting", host=settings.api_host, port=settings.api_port)
    app.run(host=settings.api_host, port=settings.api_port)


if __name__ == '__main__':
    main()
