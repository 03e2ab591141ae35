"""Content catalog for ClearPath recommendations.

Education items are matched to a user's persona; partner offers carry the
eligibility criteria checked by the eligibility guardrail.
"""

from typing import Dict, List, Any, Optional

EDUCATION_CONTENT: List[Dict[str, Any]] = [
    # high_utilization
    {
        "content_id": "edu_utilization_basics",
        "title": "How Credit Utilization Affects Your Score",
        "category": "credit",
        "personas": ["high_utilization"],
        "summary": "What the balance-to-limit ratio measures and why lenders look at it.",
        "url": "/learn/credit-utilization",
        "rationale_template": "Your cards are at {utilization} of their combined limit. Moving below 30% is one of the fastest ways to lift a credit score.",
    },
    {
        "content_id": "edu_interest_costs",
        "title": "What Carrying a Balance Really Costs",
        "category": "credit",
        "personas": ["high_utilization"],
        "summary": "A walkthrough of how interest compounds when only part of a balance is repaid.",
        "url": "/learn/interest-costs",
        "rationale_template": "You paid {interest_charged} in card interest last month. Small extra payments shorten payoff time noticeably.",
    },
    {
        "content_id": "edu_payoff_methods",
        "title": "Avalanche or Snowball: Picking a Payoff Method",
        "category": "credit",
        "personas": ["high_utilization"],
        "summary": "Two structured ways to pay down several balances, and who each one suits.",
        "url": "/learn/payoff-methods",
        "rationale_template": "With {total_balance} spread across your cards, a payoff plan can keep progress steady.",
    },
    {
        "content_id": "edu_autopay",
        "title": "Setting Up Autopay So Due Dates Take Care of Themselves",
        "category": "credit",
        "personas": ["high_utilization"],
        "summary": "Automating at least the minimum payment protects your history from missed dates.",
        "url": "/learn/autopay",
        "rationale_template": "Automatic payments help every card stay current without having to track due dates.",
    },
    # variable_income
    {
        "content_id": "edu_irregular_budget",
        "title": "Budgeting When Paychecks Vary",
        "category": "budgeting",
        "personas": ["variable_income"],
        "summary": "Plan around your lowest typical month and treat the rest as a bonus.",
        "url": "/learn/irregular-income",
        "rationale_template": "Your paychecks arrive about every {median_pay_gap} days on average. A baseline budget smooths the gaps.",
    },
    {
        "content_id": "edu_cash_buffer",
        "title": "Building a One-Month Cash Buffer",
        "category": "savings",
        "personas": ["variable_income"],
        "summary": "Holding a month of expenses in checking turns uneven income into a steady paycheck.",
        "url": "/learn/cash-buffer",
        "rationale_template": "Your balance currently covers about {cash_flow_buffer} months of expenses. Growing it toward one month adds breathing room.",
    },
    {
        "content_id": "edu_tax_set_aside",
        "title": "Setting Aside Taxes on Freelance Income",
        "category": "planning",
        "personas": ["variable_income"],
        "summary": "A simple percentage rule for keeping quarterly tax payments from becoming a surprise.",
        "url": "/learn/tax-set-aside",
        "rationale_template": "Income that arrives on an irregular schedule is easier to plan for when taxes are set aside as it lands.",
    },
    # subscription_heavy
    {
        "content_id": "edu_subscription_review",
        "title": "A Fifteen-Minute Subscription Review",
        "category": "spending",
        "personas": ["subscription_heavy"],
        "summary": "List every recurring charge, then keep only the ones you used this month.",
        "url": "/learn/subscription-review",
        "rationale_template": "You have {subscription_count} recurring charges totalling {monthly_recurring} a month. A quick review often frees up money.",
    },
    {
        "content_id": "edu_bill_negotiation",
        "title": "Asking Providers for a Better Rate",
        "category": "spending",
        "personas": ["subscription_heavy"],
        "summary": "Scripts for phone, internet and insurance renewals that often lower the bill.",
        "url": "/learn/negotiate-bills",
        "rationale_template": "Recurring bills of {monthly_recurring} a month are a good place to look for lower rates.",
    },
    {
        "content_id": "edu_renewal_alerts",
        "title": "Renewal Alerts for Annual Plans",
        "category": "spending",
        "personas": ["subscription_heavy"],
        "summary": "Calendar reminders a week before renewals give you time to decide.",
        "url": "/learn/renewal-alerts",
        "rationale_template": "With {subscription_count} active subscriptions, reminders before each renewal keep you in control.",
    },
    # savings_builder
    {
        "content_id": "edu_high_yield",
        "title": "How High-Yield Savings Accounts Work",
        "category": "savings",
        "personas": ["savings_builder"],
        "summary": "Why online banks pay more interest, and what to check before moving money.",
        "url": "/learn/high-yield-savings",
        "rationale_template": "Your {total_savings} in savings could earn noticeably more in a high-yield account.",
    },
    {
        "content_id": "edu_goal_setting",
        "title": "Turning Savings Into Specific Goals",
        "category": "planning",
        "personas": ["savings_builder"],
        "summary": "Naming a target amount and date makes automatic transfers easier to size.",
        "url": "/learn/savings-goals",
        "rationale_template": "Your savings grew {growth_rate} recently. Giving that growth a named goal helps keep it going.",
    },
    {
        "content_id": "edu_first_investments",
        "title": "From Saving to Investing",
        "category": "investing",
        "personas": ["savings_builder"],
        "summary": "When an emergency fund is in place, low-cost index funds are a common next step.",
        "url": "/learn/first-investments",
        "rationale_template": "With {total_savings} set aside, you may be ready to explore long-term investing.",
    },
    # general_wellness
    {
        "content_id": "edu_budget_basics",
        "title": "Budgeting Basics",
        "category": "budgeting",
        "personas": ["general_wellness"],
        "summary": "Needs, wants and savings: a starting split you can adjust.",
        "url": "/learn/budget-basics",
        "rationale_template": "A simple budget gives every dollar a job and makes progress easy to see.",
    },
    {
        "content_id": "edu_emergency_fund",
        "title": "Why an Emergency Fund Comes First",
        "category": "savings",
        "personas": ["general_wellness"],
        "summary": "Three to six months of expenses keeps surprises from turning into debt.",
        "url": "/learn/emergency-fund",
        "rationale_template": "An emergency fund protects the rest of your plan when unexpected costs come up.",
    },
    {
        "content_id": "edu_monthly_checkin",
        "title": "A Monthly Money Check-In",
        "category": "planning",
        "personas": ["general_wellness"],
        "summary": "A short checklist for reviewing balances, bills and goals once a month.",
        "url": "/learn/monthly-checkin",
        "rationale_template": "A regular check-in keeps small issues small and goals on track.",
    },
]

PARTNER_OFFERS: List[Dict[str, Any]] = [
    {
        "offer_id": "offer_balance_transfer",
        "title": "0% Intro APR Balance Transfer Card",
        "category": "credit",
        "product_type": "credit card",
        "personas": ["high_utilization"],
        "summary": "Move existing balances and pay no interest on them for 18 months.",
        "url": "/offers/balance-transfer",
        "eligibility_criteria": {
            "credit_utilization": {"min": 0.3, "max": 0.9},
            "is_overdue": {"equals": False},
        },
        "rationale_template": "You're paying {interest_charged} a month in interest. A 0% transfer could put that toward the balance instead.",
    },
    {
        "offer_id": "offer_consolidation_loan",
        "title": "Fixed-Rate Debt Consolidation Loan",
        "category": "credit",
        "product_type": "personal loan",
        "personas": ["high_utilization"],
        "summary": "Combine card balances into one fixed monthly payment.",
        "url": "/offers/consolidation",
        "eligibility_criteria": {
            "credit_utilization": {"min": 0.4},
            "is_overdue": {"equals": False},
        },
        "rationale_template": "Combining {total_balance} of card balances into one loan could simplify payments and lower your rate.",
    },
    {
        "offer_id": "offer_quick_cash",
        "title": "Same-Day Payday Loan",
        "category": "credit",
        "product_type": "payday loan",
        "personas": ["high_utilization", "variable_income"],
        "summary": "Cash before your next paycheck.",
        "url": "/offers/quick-cash",
        "eligibility_criteria": {},
        "rationale_template": "Cash available before your next paycheck.",
    },
    {
        "offer_id": "offer_income_smoothing",
        "title": "Income Smoothing Account",
        "category": "banking",
        "product_type": "deposit account",
        "personas": ["variable_income"],
        "summary": "Deposits land in a holding account and pay you a steady amount each week.",
        "url": "/offers/income-smoothing",
        "eligibility_criteria": {},
        "rationale_template": "Turning uneven deposits into a steady weekly amount can make budgeting easier.",
    },
    {
        "offer_id": "offer_subscription_tracker",
        "title": "Subscription Tracker App",
        "category": "spending",
        "product_type": "app",
        "personas": ["subscription_heavy"],
        "summary": "Finds recurring charges and cancels the ones you pick.",
        "url": "/offers/subscription-tracker",
        "eligibility_criteria": {"subscription_count": {"min": 3}},
        "rationale_template": "With {subscription_count} active subscriptions, a tracker can surface the ones you no longer use.",
    },
    {
        "offer_id": "offer_bill_negotiator",
        "title": "Bill Negotiation Service",
        "category": "spending",
        "product_type": "service",
        "personas": ["subscription_heavy"],
        "summary": "Negotiators work with your providers to lower recurring bills.",
        "url": "/offers/bill-negotiator",
        "eligibility_criteria": {"monthly_recurring": {"min": 50}},
        "rationale_template": "Your recurring bills total {monthly_recurring} a month, which a negotiator may be able to reduce.",
    },
    {
        "offer_id": "offer_hysa",
        "title": "High-Yield Savings Account",
        "category": "savings",
        "product_type": "deposit account",
        "personas": ["savings_builder", "general_wellness"],
        "summary": "Competitive interest on every dollar with no monthly fee.",
        "url": "/offers/high-yield-savings",
        "eligibility_criteria": {"savings_balance": {"min": 100}},
        "rationale_template": "Your {total_savings} could grow faster in an account that pays a higher rate.",
    },
    {
        "offer_id": "offer_robo_advisor",
        "title": "Automated Investing Account",
        "category": "investing",
        "product_type": "brokerage account",
        "personas": ["savings_builder"],
        "summary": "Diversified portfolios with low fees, starting from small amounts.",
        "url": "/offers/robo-advisor",
        "eligibility_criteria": {"savings_balance": {"min": 1000}},
        "rationale_template": "With {total_savings} saved, automated investing is an easy way to start building long-term wealth.",
    },
    {
        "offer_id": "offer_credit_monitoring",
        "title": "Free Credit Monitoring",
        "category": "credit",
        "product_type": "service",
        "personas": ["general_wellness", "high_utilization"],
        "summary": "Alerts for score changes and new accounts opened in your name.",
        "url": "/offers/credit-monitoring",
        "eligibility_criteria": {},
        "rationale_template": "Monitoring your credit lets you see the effect of each step you take.",
    },
]


def get_education_content() -> List[Dict[str, Any]]:
    return EDUCATION_CONTENT.copy()


def get_partner_offers() -> List[Dict[str, Any]]:
    return PARTNER_OFFERS.copy()


def get_content_by_id(content_id: str) -> Optional[Dict[str, Any]]:
    """Get content item by ID.

    Args:
        content_id: Education content_id or partner offer_id

    Returns:
        Content dictionary or None if not found
    """
    for item in EDUCATION_CONTENT + PARTNER_OFFERS:
        if item.get("content_id") == content_id or item.get("offer_id") == content_id:
            return item
    return None


def get_content_by_persona(persona: str) -> List[Dict[str, Any]]:
    return [item for item in EDUCATION_CONTENT if persona in item.get("personas", [])]


def get_offers_by_persona(persona: str) -> List[Dict[str, Any]]:
    return [offer for offer in PARTNER_OFFERS if persona in offer.get("personas", [])]
