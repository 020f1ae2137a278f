"""Student account upgrades.

A user requests the upgrade with a student card number and photos of both
sides of the ID card; an admin then approves or rejects it and manages the
student's account balance.

Endpoints:
- POST /api/students/upgrade - Request the upgrade for the calling user
- GET /api/students/status/{user_id} - Upgrade state of a user (self or admin)
- GET /api/students - All student records (admin)
- PATCH /api/students/{id}/process - Set pending / approved / rejected (admin)
- PATCH /api/students/{id}/balance - Add to or charge the balance (admin)
"""

import logging

from fastapi import APIRouter, Depends, File, Form, HTTPException, UploadFile
from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, joinedload

from ..db import get_db
from ..deps import get_admin_user, get_current_user
from ..models import Student, User
from ..schemas import StudentBalanceUpdate, StudentOut, StudentProcessUpdate
from ..services.errors import RecipeStorageError, UploadRejectedError
from ..services.recipe_upsert import run_cleanup
from ..services.storage import STUDENT_FOLDER, UploadStorage, get_storage

router = APIRouter()
logger = logging.getLogger("recipeshare.students")

CARD_NUMBER_MAX = 40
ALREADY_REQUESTED = "Student upgrade already requested"


def _student_for_user(db: Session, user_id: str):
    return db.execute(
        select(Student).options(joinedload(Student.user)).where(Student.user_id == user_id)
    ).scalar_one_or_none()


def _get_student(db: Session, student_id: str) -> Student:
    student = db.get(Student, student_id)
    if student is None:
        raise HTTPException(status_code=404, detail="Student not found")
    return student


@router.post("/students/upgrade", response_model=StudentOut, status_code=201)
async def request_upgrade(
    card_number: str = Form(...),
    id_front: UploadFile = File(...),
    id_back: UploadFile = File(...),
    db: Session = Depends(get_db),
    storage: UploadStorage = Depends(get_storage),
    user: User = Depends(get_current_user),
):
    card_number = card_number.strip()
    if not card_number or len(card_number) > CARD_NUMBER_MAX:
        raise HTTPException(
            status_code=422,
            detail=f"card_number must be 1 to {CARD_NUMBER_MAX} characters",
        )
    if _student_for_user(db, user.id) is not None:
        raise HTTPException(status_code=409, detail=ALREADY_REQUESTED)

    stored = []
    try:
        for upload in (id_front, id_back):
            stored.append(storage.save(STUDENT_FOLDER, upload.filename, await upload.read()))
    except UploadRejectedError as e:
        run_cleanup(storage, [f.key for f in stored], "upload rejected")
        raise HTTPException(
            status_code=400,
            detail={"error": "upload_rejected", "file": e.filename, "message": e.reason},
        )
    except (RecipeStorageError, OSError) as e:
        run_cleanup(storage, [f.key for f in stored], "upload failed")
        logger.error(f"Student upgrade upload failed for user {user.id}: {e}")
        raise HTTPException(
            status_code=500,
            detail={"error": "storage_error", "message": "ID photos could not be saved"},
        )

    front, back = stored
    student = Student(
        user_id=user.id,
        card_number=card_number,
        id_front_key=front.key,
        id_front_url=front.url,
        id_back_key=back.key,
        id_back_url=back.url,
    )
    db.add(student)
    try:
        db.commit()
    except IntegrityError:
        # Same user requesting twice concurrently
        db.rollback()
        run_cleanup(storage, [front.key, back.key], "duplicate upgrade request")
        raise HTTPException(status_code=409, detail=ALREADY_REQUESTED)

    logger.info(f"User {user.id} requested a student upgrade ({student.id})")
    return _student_for_user(db, user.id)


@router.get("/students/status/{user_id}", response_model=StudentOut)
def upgrade_status(
    user_id: str,
    db: Session = Depends(get_db),
    caller: User = Depends(get_current_user),
):
    if caller.id != user_id and not caller.is_admin:
        raise HTTPException(status_code=403, detail="Not allowed to view this student")
    student = _student_for_user(db, user_id)
    if student is None:
        raise HTTPException(status_code=404, detail="Student not found")
    return student


@router.get("/students", response_model=list[StudentOut])
def list_students(db: Session = Depends(get_db), admin: User = Depends(get_admin_user)):
    return (
        db.query(Student)
        .options(joinedload(Student.user))
        .order_by(Student.created_at.desc())
        .all()
    )


@router.patch("/students/{student_id}/process", response_model=StudentOut)
def update_process(
    student_id: str,
    payload: StudentProcessUpdate,
    db: Session = Depends(get_db),
    admin: User = Depends(get_admin_user),
):
    student = _get_student(db, student_id)
    student.process = payload.process.value
    db.commit()
    db.refresh(student)

    logger.info(f"Admin {admin.id} set student {student_id} to {payload.process.value}")
    return student


@router.patch("/students/{student_id}/balance", response_model=StudentOut)
def update_balance(
    student_id: str,
    payload: StudentBalanceUpdate,
    db: Session = Depends(get_db),
    admin: User = Depends(get_admin_user),
):
    """Add `amount` to the balance in one statement; it may not go below zero."""
    student = _get_student(db, student_id)

    result = db.execute(
        update(Student)
        .where(Student.id == student_id, Student.account_balance + payload.amount >= 0)
        .values(account_balance=Student.account_balance + payload.amount)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 0:
        db.rollback()
        raise HTTPException(status_code=400, detail="Insufficient balance")
    db.commit()
    db.refresh(student)

    logger.info(f"Admin {admin.id} changed balance of student {student_id} by {payload.amount}")
    return student
