from dataclasses import asdict
from typing import Any

from fastapi import Depends, FastAPI, HTTPException

from app.db.session import create_db_engine, create_session_factory, init_db
from caretrack import CareTrackFlow
from shared.contracts.models import (
    CustomTimesRequest,
    EnableRemindersRequest,
    MessageIn,
    ReplyRequest,
    WakeSleepRequest,
)
from shared.errors import ConcurrentModificationError, MedicationNotFound, PatientNotFound
from shared.settings import EngineSettings

app = FastAPI(title="orchestrator")
_flow: CareTrackFlow | None = None


def get_flow() -> CareTrackFlow:
    global _flow
    if _flow is None:
        settings = EngineSettings.from_env()
        engine = create_db_engine(settings.database_url)
        init_db(engine)
        _flow = CareTrackFlow(create_session_factory(engine))
    return _flow


def _run(call, *args: Any) -> Any:
    try:
        return call(*args)
    except PatientNotFound as exc:
        raise HTTPException(status_code=404, detail="patient not found") from exc
    except MedicationNotFound as exc:
        raise HTTPException(status_code=404, detail="medication not found") from exc
    except ConcurrentModificationError as exc:
        raise HTTPException(status_code=409, detail=str(exc)) from exc
    except ValueError as exc:
        raise HTTPException(status_code=422, detail=str(exc)) from exc


def _reply_result(outcome) -> dict[str, Any]:
    if outcome is None:
        return {"recognized": False}
    return {"recognized": True, **asdict(outcome)}


@app.get("/health")
def health() -> dict[str, str]:
    return {"status": "ok"}


@app.post("/replies")
def inbound_reply(message: MessageIn, flow: CareTrackFlow = Depends(get_flow)) -> dict[str, Any]:
    patient_id = _run(flow.patient_id_for_phone, message.phone)
    outcome = _run(flow.handle_reply, patient_id, message.text, message.received_at)
    return _reply_result(outcome)


@app.post("/patients/{patient_id}/replies")
def patient_reply(patient_id: int, payload: ReplyRequest, flow: CareTrackFlow = Depends(get_flow)) -> dict[str, Any]:
    return _reply_result(_run(flow.handle_reply, patient_id, payload.text))


@app.post("/patients/{patient_id}/medications/{medication_name}/reminders")
def enable_reminders(
    patient_id: int,
    medication_name: str,
    payload: EnableRemindersRequest,
    flow: CareTrackFlow = Depends(get_flow),
) -> dict[str, Any]:
    return asdict(_run(flow.enable_reminders, patient_id, medication_name, payload.enabled))


@app.put("/patients/{patient_id}/wake-sleep")
def set_wake_sleep(patient_id: int, payload: WakeSleepRequest, flow: CareTrackFlow = Depends(get_flow)) -> dict[str, Any]:
    return asdict(_run(flow.set_wake_sleep_times, patient_id, payload.wake_time, payload.sleep_time))


@app.put("/patients/{patient_id}/medications/{medication_name}/times")
def set_custom_times(
    patient_id: int,
    medication_name: str,
    payload: CustomTimesRequest,
    flow: CareTrackFlow = Depends(get_flow),
) -> dict[str, Any]:
    return asdict(_run(flow.set_custom_times, patient_id, medication_name, payload.times))


@app.post("/patients/{patient_id}/activate")
def activate(patient_id: int, flow: CareTrackFlow = Depends(get_flow)) -> dict[str, Any]:
    return asdict(_run(flow.activate, patient_id))


@app.post("/patients/{patient_id}/pause")
def pause(patient_id: int, flow: CareTrackFlow = Depends(get_flow)) -> dict[str, Any]:
    return asdict(_run(flow.pause, patient_id))


@app.post("/patients/{patient_id}/resume")
def resume(patient_id: int, flow: CareTrackFlow = Depends(get_flow)) -> dict[str, Any]:
    return asdict(_run(flow.resume, patient_id))
