"""Plan catalog route (public)."""
from typing import List

from fastapi import APIRouter
from pydantic import BaseModel

from backend.features.plans.service import list_plans


router = APIRouter(prefix="/plans", tags=["plans"])


class PlanResponse(BaseModel):
    plan_type: str
    name: str
    description: str
    price: int
    price_per_key: int
    key_count: int
    features: List[str]


@router.get("", response_model=List[PlanResponse])
def get_plans():
    return [
        {
            "plan_type": plan.plan_type.value,
            "name": plan.name,
            "description": plan.description,
            "price": plan.price,
            "price_per_key": plan.price_per_key,
            "key_count": plan.key_count,
            "features": list(plan.features),
        }
        for plan in list_plans()
    ]
