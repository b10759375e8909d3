"""
Fee calculation for crafted-item sales and material costs.

Marketplace deductions are expressed in percent, as entered by the user.
"""

from typing import Dict, Any
from dataclasses import dataclass


@dataclass
class FeeCalculation:
    """Result of fee calculation."""
    gross_amount: float
    fees: float
    net_amount: float
    fee_breakdown: Dict[str, float]


class FeeCalculator:
    """Calculates sale deductions and return-rate adjusted material costs."""

    def __init__(self, sale_tax_pct: float = 4.0, listing_pct: float = 2.5):
        self.sale_tax_pct = float(sale_tax_pct)
        self.listing_pct = float(listing_pct)

    def calculate_sell_order_revenue(self, order_price: float) -> FeeCalculation:
        """
        Calculate revenue for placing a sell order.

        Sell order: pay sales tax AND the listing fee; net revenue never
        drops below zero.
        """
        sales_tax_amount = order_price * (self.sale_tax_pct / 100)
        listing_fee_amount = order_price * (self.listing_pct / 100)

        total_fees = sales_tax_amount + listing_fee_amount
        net_revenue = max(0.0, order_price - total_fees)

        return FeeCalculation(
            gross_amount=order_price,
            fees=total_fees,
            net_amount=net_revenue,
            fee_breakdown={
                'sales_tax': sales_tax_amount,
                'listing_fee': listing_fee_amount
            }
        )

    def calculate_crafting_costs(self, resource_cost: float,
                                 artefact_cost: float = 0,
                                 tome_cost: float = 0,
                                 return_rate_pct: float = 0) -> Dict[str, Any]:
        """
        Calculate raw and effective material costs.

        Only resource costs are reduced by the return rate; artefacts and
        tomes are consumed in full.
        """
        effective_resource_cost = resource_cost * (1 - return_rate_pct / 100)
        material_cost = resource_cost + artefact_cost + tome_cost

        return {
            'resource_cost': resource_cost,
            'effective_resource_cost': effective_resource_cost,
            'resource_return_savings': resource_cost - effective_resource_cost,
            'artefact_cost': artefact_cost,
            'tome_cost': tome_cost,
            'material_cost': material_cost,
            'effective_material_cost': effective_resource_cost + artefact_cost + tome_cost,
            'return_rate_pct': return_rate_pct
        }
