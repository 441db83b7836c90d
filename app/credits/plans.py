"""订阅计划 → 额度映射表（两家支付渠道）。"""

from dataclasses import dataclass


@dataclass(frozen=True)
class Plan:
    name: str
    credits: int


_MONTHLY = {
    "BASIC": Plan("Básico", 20),
    "ADVANCED": Plan("Avanzado", 50),
    "PRO": Plan("Profesional", 150),
    "EXPERT": Plan("Experto", 500),
}

# 年付 = 月付额度 × 12
_YEARLY = {
    tier: Plan(f"{plan.name} Anual", plan.credits * 12) for tier, plan in _MONTHLY.items()
}

PLANS: dict[str, dict[str, Plan]] = {
    "dlocal": {
        **{f"plan_{tier.lower()}_monthly": plan for tier, plan in _MONTHLY.items()},
        **{f"plan_{tier.lower()}_yearly": plan for tier, plan in _YEARLY.items()},
    },
    "paypal": {
        **{f"P-123ABC456DEF_M_{tier}": plan for tier, plan in _MONTHLY.items()},
        **{f"P-789GHI012JKL_Y_{tier}": plan for tier, plan in _YEARLY.items()},
    },
}


def resolve_plan(provider: str, plan_id: str) -> Plan | None:
    """按支付渠道和计划 id 查找计划，未知时返回 None。"""
    return PLANS.get(provider, {}).get(plan_id)
