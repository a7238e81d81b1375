import traceback

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.dependencies import get_db
from app.core.exceptions import AppError
from app.core.permission_checker import require_pharmacy_or_admin
from app.core.utils import logger
from app.models.user_model import User
from app.schemas.payment_schemas import PharmacySaleResponseSchema, PharmacySaleSchema
from app.services.pharmacy_service import PharmacyService


router = APIRouter(prefix="/pharmacy", tags=["pharmacy"])


@router.post(
    "/sales",
    response_model=PharmacySaleResponseSchema,
    status_code=status.HTTP_201_CREATED,
)
async def sell_products(
    sale_data: PharmacySaleSchema,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require_pharmacy_or_admin()),
):
    """
    Sell pharmacy products to a patient.

    Args:
        sale_data: Patient, product lines and payment method
        db: Database session
        current_user: Authenticated pharmacy or admin user

    Returns:
        PharmacySaleResponseSchema: The paid pharmacy payment with its lines

    Raises:
        400: Inactive product or insufficient stock
        404: Unknown patient or product
        500: Internal server error
    """
    service = PharmacyService(db)
    user_id = str(current_user.id)

    try:
        payment = await service.sell(sale_data, current_user)
        return PharmacySaleResponseSchema.model_validate(payment, from_attributes=True)

    except (HTTPException, AppError):
        raise

    except ValueError as e:
        logger.log_warning(
            {
                "event": "pharmacy_sale_failed",
                "reason": "validation_error",
                "error": str(e),
                "patient_id": str(sale_data.patient_id),
            }
        )
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))

    except Exception as e:
        logger.log_error(
            {
                "event": "pharmacy_sale_error",
                "error": str(e),
                "error_type": type(e).__name__,
                "traceback": traceback.format_exc(),
                "patient_id": str(sale_data.patient_id),
                "sold_by": user_id,
            }
        )
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="An unexpected error occurred while recording the sale",
        )
