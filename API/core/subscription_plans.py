"""
Subscription Plans — default catalogue.

Seeded into subscription_plans on first run. Catalog management owns the
rows afterwards; the billing loop only reads name and price from the table.

Usage:
    from core.subscription_plans import PLANS, iter_plans
"""

from decimal import Decimal
from typing import Dict


def _features(**enabled) -> Dict[str, bool]:
    flags = {
        "pos_system": False,
        "basic_accounting": False,
        "advanced_accounting": False,
        "advanced_dashboard": False,
        "product_management": True,
        "coupon_management": True,
        "order_management": True,
        "review_management": False,
        "shop_design": False,
        "data_export": False,
        "expo_app": False,
        "push_notifications": False,
        "employee_management": False,
        "api_access": False,
        "marketing_tools": False,
    }
    flags.update(enabled)
    return flags


# ==================== PLAN DEFINITIONS ====================

PLANS: Dict[str, dict] = {
    "trial": {
        "display_name": {"en": "Trial", "th": "ทดลองใช้", "zh": "试用"},
        "price": Decimal("0"),
        "product_limit": 20,
        "coupon_type_limit": 3,
        "features": _features(pos_system=True, basic_accounting=True),
        "sort_order": 1,
    },
    "basic": {
        "display_name": {"en": "Basic", "th": "พื้นฐาน", "zh": "基础版"},
        "price": Decimal("299"),
        "product_limit": 50,
        "coupon_type_limit": 5,
        "features": _features(pos_system=True, basic_accounting=True),
        "sort_order": 2,
    },
    "standard": {
        "display_name": {"en": "Standard", "th": "มาตรฐาน", "zh": "标准版"},
        "price": Decimal("599"),
        "product_limit": 200,
        "coupon_type_limit": 20,
        "features": _features(
            pos_system=True, basic_accounting=True, review_management=True,
            shop_design=True, data_export=True,
        ),
        "sort_order": 3,
    },
    "professional": {
        "display_name": {"en": "Professional", "th": "มืออาชีพ", "zh": "专业版"},
        "price": Decimal("999"),
        "product_limit": 1000,
        "coupon_type_limit": 0,  # 0 = unlimited
        "features": _features(
            pos_system=True, basic_accounting=True, advanced_accounting=True,
            advanced_dashboard=True, review_management=True, shop_design=True,
            data_export=True, expo_app=True, push_notifications=True,
            employee_management=True,
        ),
        "sort_order": 4,
    },
    "enterprise": {
        "display_name": {"en": "Enterprise", "th": "องค์กร", "zh": "企业版"},
        "price": Decimal("2499"),
        "product_limit": 0,
        "coupon_type_limit": 0,
        "features": _features(
            pos_system=True, basic_accounting=True, advanced_accounting=True,
            advanced_dashboard=True, review_management=True, shop_design=True,
            data_export=True, expo_app=True, push_notifications=True,
            employee_management=True, api_access=True, marketing_tools=True,
        ),
        "sort_order": 5,
    },
}


def iter_plans():
    """Yield (key, definition) in display order."""
    return sorted(PLANS.items(), key=lambda item: item[1]["sort_order"])
