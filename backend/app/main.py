import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from app.core.settings import configure_logging, settings, validate_settings
from app.db.session import SessionLocal, engine
from app.models import Base
from app.routers.audit import router as audit_router
from app.routers.auth import router as auth_router
from app.routers.expenses import router as expenses_router, patient_router as patient_expenses_router
from app.routers.me import router as me_router
from app.routers.patients import router as patients_router
from app.routers.permissions import router as permissions_router
from app.routers.reports import router as reports_router
from app.routers.trials import router as trials_router
from app.routers.users import router as users_router
from app.routers.visits import router as visits_router
from app.services.users import seed_initial_admin

app = FastAPI(title="Trial Expenses API", version="0.1.0")
logger = logging.getLogger("trial_expenses.startup")


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception):
    request_id = request.headers.get("x-request-id")
    logger.exception("Unhandled server error", extra={"request_id": request_id})
    payload = {"detail": "Internal server error"}
    if request_id:
        payload["request_id"] = request_id
    return JSONResponse(status_code=500, content=payload)


@app.on_event("startup")
def startup():
    configure_logging(settings)
    validate_settings(settings)
    Base.metadata.create_all(bind=engine)

    admin_email = str(settings.admin_email)
    admin_password = settings.admin_password.strip()
    db: Session = SessionLocal()
    try:
        created = seed_initial_admin(db, email=admin_email, password=admin_password)
        if created:
            logger.info("Initial admin created for %s (must change password on first login).", admin_email)
        else:
            logger.info("Initial admin not created (users already exist).")
    finally:
        db.close()
    logger.info("Visit sequencing mode: %s", settings.visit_sequencing)


@app.get("/health")
def health():
    return {"status": "ok"}


app.include_router(auth_router)
app.include_router(me_router)
app.include_router(users_router)
app.include_router(permissions_router)
app.include_router(patients_router)
app.include_router(patient_expenses_router)
app.include_router(visits_router)
app.include_router(trials_router)
app.include_router(expenses_router)
app.include_router(reports_router)
app.include_router(audit_router)
