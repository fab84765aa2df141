"""
HTTP routes for the Mess Connect API, one router per resource.
"""

from fastapi import APIRouter

from messconnect.routes import auth, broadcast, feedback, menu, notes, payments, settings, students

router = APIRouter()
router.include_router(auth.router)
router.include_router(menu.router)
router.include_router(feedback.router)
router.include_router(students.router)
router.include_router(payments.router)
router.include_router(notes.router)
router.include_router(settings.router)
router.include_router(broadcast.router)


@router.get("/health")
def health():
    return {"success": True, "data": {"status": "ok"}}
