from fastapi import APIRouter
from .user.user_routes import auth_router
from .user.user_routes import router as user_router
from .patient.patient_routes import router as patient_router
from .payments.payment_routes import router as payment_router
from .care.assignment_routes import router as assignment_router
from .care.dossier_routes import router as dossier_router
from .care.consultation_routes import router as consultation_router
from .care.prescription_routes import router as prescription_router
from .ancillary.lab_routes import request_router as lab_request_router
from .ancillary.lab_routes import router as lab_result_router
from .ancillary.imaging_routes import request_router as imaging_request_router
from .ancillary.imaging_routes import router as imaging_result_router
from .ancillary.result_routes import router as doctor_result_router
from .pricing.pricing_routes import router as pricing_router
from .pharmacy.pharmacy_routes import router as pharmacy_router

router = APIRouter()


router.include_router(auth_router)
router.include_router(user_router)
router.include_router(patient_router)
router.include_router(payment_router)
router.include_router(assignment_router)
router.include_router(dossier_router)
router.include_router(consultation_router)
router.include_router(prescription_router)
router.include_router(lab_request_router)
router.include_router(lab_result_router)
router.include_router(imaging_request_router)
router.include_router(imaging_result_router)
router.include_router(doctor_result_router)
router.include_router(pricing_router)
router.include_router(pharmacy_router)
