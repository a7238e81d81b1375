from .rbac import (
    Role,
    Permission,
    user_roles,
    role_permissions
)
from .user_model import User
from .patient_model import Patient, Bed
from .payment_model import Payment, PaymentItem
from .care_model import (
    DoctorAssignment,
    ConsultationDossier,
    Consultation,
    Prescription,
    PrescriptionItem
)
from .ancillary_model import (
    LabExam,
    ImagingExam,
    LabRequest,
    LabRequestExam,
    ImagingRequest,
    ImagingRequestExam,
    LabResult
)
from .pricing_model import ConsultationPrice
from .pharmacy_model import PharmacyProduct
