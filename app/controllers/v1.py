from fastapi import APIRouter

from . import admin, ai, credits, payments, users

router = APIRouter(prefix="/v1")
router.include_router(credits.router)
router.include_router(users.router)
router.include_router(ai.router)
# payments router also serves the Razorpay webhook
router.include_router(payments.router)
router.include_router(admin.router)
