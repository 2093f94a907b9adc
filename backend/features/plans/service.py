"""
backend/features/plans/service.py

Static plan catalog.

Prices are whole BRL units for display; the checkout charges cents.
"""

from typing import Dict, List, Union

from backend.core.errors import ValidationError
from backend.models.plan import Plan, PlanType


PLANS: Dict[PlanType, Plan] = {
    PlanType.SINGLE: Plan(
        plan_type=PlanType.SINGLE,
        name="1 Chave Pix",
        description="Perfeito para uso pessoal",
        price=49,
        key_count=1,
        product_name="1 Chave Pix Personalizada",
        product_description="Domínio chavepix.club - 1 chave Pix personalizada",
        features=(
            "1 chave Pix personalizada",
            "Domínio chavepix.club",
            "Suporte por email",
            "Configuração gratuita",
        ),
    ),
    PlanType.FIVE_PACK: Plan(
        plan_type=PlanType.FIVE_PACK,
        name="5 Chaves Pix",
        description="Ideal para pequenos negócios",
        price=99,
        key_count=5,
        product_name="5 Chaves Pix Personalizadas",
        product_description="Domínio chavepix.club - 5 chaves Pix personalizadas",
        features=(
            "5 chaves Pix personalizadas",
            "Domínio chavepix.club",
            "Suporte prioritário",
            "Configuração gratuita",
            "Painel de gerenciamento",
        ),
    ),
}


def list_plans() -> List[Plan]:
    return list(PLANS.values())


def get_plan(plan_type: Union[str, PlanType, None]) -> Plan:
    """
    Resolve a plan by type.

    Raises:
        ValidationError: If plan_type is not in the catalog
    """
    try:
        return PLANS[PlanType(plan_type)]
    except (ValueError, KeyError):
        raise ValidationError(f"Invalid plan type: {plan_type}")


def key_count_for(plan_type: Union[str, PlanType]) -> int:
    return get_plan(plan_type).key_count
