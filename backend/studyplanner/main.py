# backend/studyplanner/main.py
import logging
import secrets
import smtplib
from datetime import timedelta
from typing import List, Optional

from fastapi import FastAPI, Depends, HTTPException, Request, Response, UploadFile, File, BackgroundTasks
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.security import OAuth2PasswordBearer
from jose import JWTError
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from . import auth, config, jobs, models, schemas, studyplans, utils
from .database import SessionLocal, engine
from .delivery import TokenDelivery, get_delivery
from .jobs import JobStore, JobStateError, get_job_store
from .mailer import get_mailer

logging.basicConfig(
    level=getattr(logging, config.LOG_LEVEL, logging.INFO),
    format="%(asctime)s %(levelname)s %(name)s %(message)s",
)
logger = logging.getLogger("studyplanner")

models.Base.metadata.create_all(bind=engine)

app = FastAPI(title="Study Planner API")

app.add_middleware(
    CORSMiddleware,
    allow_origins=config.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

oauth2_scheme = OAuth2PasswordBearer(tokenUrl="auth/login")
optional_oauth2_scheme = OAuth2PasswordBearer(tokenUrl="auth/login", auto_error=False)

INVALID_RESET_CODE = "Invalid or expired code"


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


# ---------- Error mapping ----------

@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    logger.info("Rejected malformed request to %s: %s", request.url.path, exc.errors())
    return JSONResponse(status_code=400, content={"detail": "Invalid request"})


@app.exception_handler(SQLAlchemyError)
async def database_exception_handler(request: Request, exc: SQLAlchemyError):
    logger.error("Database error on %s %s", request.method, request.url.path, exc_info=exc)
    return JSONResponse(status_code=500, content={"detail": "Server error"})


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception):
    logger.error("Unhandled error on %s %s", request.method, request.url.path, exc_info=exc)
    return JSONResponse(status_code=500, content={"detail": "Server error"})


# ---------- Auth dependencies ----------

def get_current_user_id(token: str = Depends(oauth2_scheme)) -> int:
    try:
        claims = auth.verify_token(token, auth.ACCESS)
    except JWTError as e:
        logger.info("Access token rejected: %s", e)
        raise HTTPException(status_code=401, detail="Invalid token")
    user_id = auth.user_id_from_claims(claims)
    if user_id is None:
        raise HTTPException(status_code=401, detail="Invalid token")
    return user_id


def get_current_user(user_id: int = Depends(get_current_user_id), db: Session = Depends(get_db)):
    user = db.get(models.User, user_id)
    if user is None:
        raise HTTPException(status_code=401, detail="User not found")
    return user


def get_optional_user_id(token: Optional[str] = Depends(optional_oauth2_scheme)) -> Optional[int]:
    if not token:
        return None
    try:
        return auth.user_id_from_claims(auth.verify_token(token, auth.ACCESS))
    except JWTError:
        return None


@app.get("/")
def read_root():
    return {"status": "ok", "service": "studyplanner"}


# ---------- Accounts & sessions ----------

@app.post("/auth/signup", status_code=201, response_model=schemas.Message)
def signup(payload: schemas.Credentials, db: Session = Depends(get_db)):
    if not utils.is_email_valid(payload.email):
        raise HTTPException(status_code=400, detail="Invalid email")
    if auth.get_user_by_email(db, payload.email):
        raise HTTPException(status_code=409, detail="Email already taken")
    if not utils.is_password_valid(payload.password):
        raise HTTPException(status_code=400, detail="Password is required")

    user = models.User(email=payload.email, hashed_password=auth.get_password_hash(payload.password))
    db.add(user)
    try:
        db.commit()
    except IntegrityError:
        # lost a race with a concurrent signup for the same email
        db.rollback()
        raise HTTPException(status_code=409, detail="Email already taken")
    logger.info("Created user %s", user.id)
    return {"message": "User created"}


@app.post("/auth/login")
def login(
    payload: schemas.Credentials,
    response: Response,
    db: Session = Depends(get_db),
    delivery: TokenDelivery = Depends(get_delivery),
):
    user = auth.authenticate_user(db, payload.email, payload.password)
    if not user:
        raise HTTPException(status_code=401, detail="Invalid credentials")
    access_token, refresh_token = auth.issue_token_pair(db, user.id)
    body = delivery.deliver(response, access_token, refresh_token)
    body["user"] = schemas.UserOut.model_validate(user).model_dump()
    return body


@app.post("/auth/refresh")
def refresh_tokens(
    request: Request,
    response: Response,
    payload: Optional[schemas.RefreshRequest] = None,
    db: Session = Depends(get_db),
    delivery: TokenDelivery = Depends(get_delivery),
):
    token = delivery.read_refresh_token(request, payload.refreshToken if payload else None)
    if not token:
        raise HTTPException(status_code=401, detail="No refresh token provided")
    try:
        access_token, refresh_token = auth.rotate_refresh_token(db, token)
    except auth.TokenRejected as e:
        logger.info("Refresh rejected: %s", e)
        raise HTTPException(status_code=403, detail="Forbidden")
    return delivery.deliver(response, access_token, refresh_token)


@app.get("/auth/userdata")
def read_user_data(current_user: models.User = Depends(get_current_user)):
    return {"user": schemas.UserOut.model_validate(current_user)}


@app.post("/auth/logout", status_code=204)
def logout(
    request: Request,
    payload: Optional[schemas.RefreshRequest] = None,
    db: Session = Depends(get_db),
    delivery: TokenDelivery = Depends(get_delivery),
):
    token = delivery.read_refresh_token(request, payload.refreshToken if payload else None)
    auth.revoke_refresh_token(db, token)
    response = Response(status_code=204)
    delivery.clear(response)
    return response


@app.post("/auth/change-password", response_model=schemas.Message)
def change_password(
    payload: schemas.ChangePasswordRequest,
    user_id: int = Depends(get_current_user_id),
    db: Session = Depends(get_db),
):
    user = db.get(models.User, user_id)
    if not user:
        raise HTTPException(status_code=404, detail="User not found")
    if not auth.verify_password(payload.currentPassword, user.hashed_password):
        raise HTTPException(status_code=401, detail="Current password is incorrect")
    if not utils.is_password_valid(payload.newPassword):
        raise HTTPException(status_code=400, detail="New password is required")
    user.hashed_password = auth.get_password_hash(payload.newPassword)
    db.commit()
    return {"message": "Password changed successfully"}


# ---------- Password reset ----------

def _live_reset_code(db: Session, email: Optional[str], code: Optional[str]):
    if not email or not code:
        return None
    record = db.query(models.ResetCode).filter(models.ResetCode.email == email).first()
    if record is None or not record.is_valid(code, utils.utcnow()):
        return None
    return record


@app.post("/auth/send-reset-code", response_model=schemas.Message)
def send_reset_code(payload: schemas.ResetCodeRequest, db: Session = Depends(get_db), mailer=Depends(get_mailer)):
    email = payload.email
    if not utils.is_email_valid(email):
        raise HTTPException(status_code=400, detail="Invalid email")
    if not auth.get_user_by_email(db, email):
        raise HTTPException(status_code=409, detail="No account uses this email")

    code = f"{secrets.randbelow(1_000_000):06d}"
    db.query(models.ResetCode).filter(models.ResetCode.email == email).delete(synchronize_session=False)
    db.add(
        models.ResetCode(
            email=email,
            code=code,
            expires_at=utils.utcnow() + timedelta(minutes=config.RESET_CODE_EXPIRE_MINUTES),
        )
    )
    db.commit()

    try:
        mailer(email, code)
    except (smtplib.SMTPException, OSError):
        logger.exception("Error sending reset code email")
        raise HTTPException(status_code=500, detail="Could not send reset code")
    return {"message": "Reset code sent"}


@app.post("/auth/check-reset-code", response_model=schemas.Message)
def check_reset_code(payload: schemas.CheckResetCodeRequest, db: Session = Depends(get_db)):
    if _live_reset_code(db, payload.email, payload.code) is None:
        raise HTTPException(status_code=400, detail=INVALID_RESET_CODE)
    return {"message": "Code is valid"}


@app.post("/auth/reset-password", response_model=schemas.Message)
def reset_password(payload: schemas.ResetPasswordRequest, db: Session = Depends(get_db)):
    record = _live_reset_code(db, payload.email, payload.code)
    if record is None:
        raise HTTPException(status_code=400, detail=INVALID_RESET_CODE)
    if not utils.is_password_valid(payload.password):
        raise HTTPException(status_code=400, detail="Password is required")
    user = auth.get_user_by_email(db, payload.email)
    if not user:
        raise HTTPException(status_code=400, detail=INVALID_RESET_CODE)

    db.delete(record)
    user.hashed_password = auth.get_password_hash(payload.password)
    db.commit()
    return {"message": "Password updated successfully"}


# ---------- Syllabus uploads ----------

@app.post("/uploads", response_model=schemas.UploadAccepted)
async def upload_files(
    background_tasks: BackgroundTasks,
    files: List[UploadFile] = File(...),
    user_id: Optional[int] = Depends(get_optional_user_id),
    store: JobStore = Depends(get_job_store),
):
    """
    Accepts up to MAX_UPLOAD_FILES PDF/DOCX files, returns an upload id straight away
    and hands the files to the syllabus workflow in the background.
    """
    if len(files) > config.MAX_UPLOAD_FILES:
        raise HTTPException(status_code=400, detail=f"At most {config.MAX_UPLOAD_FILES} files per upload")

    received = []
    for upload in files:
        if upload.content_type not in config.ALLOWED_UPLOAD_TYPES:
            logger.warning("Dropping upload %r: content type %s not allowed", upload.filename, upload.content_type)
            continue
        # one byte past the ceiling is enough for filter_uploads to reject it
        content = await upload.read(config.MAX_UPLOAD_FILE_BYTES + 1)
        received.append(
            jobs.AcceptedFile(
                filename=upload.filename or "upload",
                content_type=upload.content_type or "",
                size=len(content),
                content=content,
            )
        )
    accepted = jobs.filter_uploads(received)
    if not accepted:
        raise HTTPException(status_code=400, detail="No valid files uploaded (PDF or DOCX, up to 20MB each)")

    job = store.create([f.metadata() for f in accepted])
    background_tasks.add_task(jobs.dispatch_upload, store, job.id, accepted, user_id)
    return {"uploadId": job.id}


@app.post("/uploads/webhook")
def upload_webhook(payload: schemas.UploadWebhook, store: JobStore = Depends(get_job_store)):
    if not payload.uploadId or store.get(payload.uploadId) is None:
        raise HTTPException(status_code=400, detail="Unknown upload id")
    try:
        store.complete(payload.uploadId, payload.result)
    except JobStateError:
        raise HTTPException(status_code=409, detail="Upload already finished")
    return {"ok": True}


@app.get("/uploads/{upload_id}")
def upload_status(upload_id: str, store: JobStore = Depends(get_job_store)):
    job = store.get(upload_id)
    if job is None:
        raise HTTPException(status_code=404, detail="Upload not found")
    return job.snapshot()


# ---------- Study plans ----------

@app.get("/studyplans/latest", response_model=schemas.StudyPlanEnvelope)
def latest_study_plan(current_user: models.User = Depends(get_current_user), db: Session = Depends(get_db)):
    plan = studyplans.latest_plan(db, current_user.id)
    if plan is None:
        raise HTTPException(status_code=404, detail="No study plan found for this user")
    return {"studyPlan": schemas.StudyPlanOut.from_model(plan)}


@app.get("/studyplans/history", response_model=schemas.StudyPlanHistory)
def study_plan_history(
    limit: Optional[str] = None,
    current_user: models.User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    plans = studyplans.plan_history(db, current_user.id, limit)
    return {"studyPlans": [schemas.StudyPlanOut.from_model(p) for p in plans], "count": len(plans)}


@app.get("/studyplans/calendar", response_model=schemas.CalendarOut)
def study_plan_calendar(current_user: models.User = Depends(get_current_user), db: Session = Depends(get_db)):
    plan = studyplans.latest_plan(db, current_user.id)
    if plan is None:
        raise HTTPException(status_code=404, detail="No study plan found")
    entries = studyplans.calendar_entries(plan.courses)
    return {"entries": entries, "count": len(entries), "studyPlanId": plan.id, "savedAt": plan.saved_at}


@app.get("/studyplans/{plan_id}", response_model=schemas.StudyPlanEnvelope)
def study_plan_by_id(
    plan_id: int,
    current_user: models.User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    try:
        plan = studyplans.plan_by_id(db, current_user.id, plan_id)
    except studyplans.PlanAccessDenied:
        raise HTTPException(status_code=403, detail="Access denied")
    if plan is None:
        raise HTTPException(status_code=404, detail="Study plan not found")
    return {"studyPlan": schemas.StudyPlanOut.from_model(plan)}


if __name__ == "__main__":
    import os

    import uvicorn

    port = int(os.getenv("PORT", 3000))
    uvicorn.run(app, host="0.0.0.0", port=port)
