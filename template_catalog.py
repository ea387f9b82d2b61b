"""Static catalog of banking object templates used to seed custom objects."""

from __future__ import annotations

from typing import Dict, List, Tuple

from schema_types import FieldBlueprint, FieldType, Template


def _bp(template_id: str, name: str, ftype: FieldType, label: str, *, required: bool = False, options: Tuple[str, ...] = (), description: str = "") -> FieldBlueprint:
    return FieldBlueprint(
        id=f"{template_id}.{name}",
        name=name,
        type=ftype,
        required=required,
        options=options,
        label=label,
        description=description,
    )


_T = FieldType

TEMPLATES: Tuple[Template, ...] = (
    Template(
        id="tpl_loan_application",
        name="loan_application",
        label="Loan Application",
        description="Consumer or commercial loan application moving through underwriting",
        icon="FileText",
        category="lending",
        tags=("loan", "mortgage", "credit", "underwriting"),
        fields=(
            _bp("tpl_loan_application", "application_number", _T.TEXT, "Application Number", required=True),
            _bp("tpl_loan_application", "loan_type", _T.ENUM, "Loan Type", required=True, options=("mortgage", "auto", "personal", "heloc", "business")),
            _bp("tpl_loan_application", "requested_amount", _T.NUMBER, "Requested Amount", required=True),
            _bp("tpl_loan_application", "status", _T.ENUM, "Status", options=("draft", "submitted", "in_review", "approved", "declined", "funded")),
            _bp("tpl_loan_application", "submitted_date", _T.DATE, "Submitted Date"),
            _bp("tpl_loan_application", "pre_approved", _T.BOOLEAN, "Pre-approved"),
            _bp("tpl_loan_application", "applicant", _T.REFERENCE, "Applicant", description="Contact applying for the loan"),
        ),
    ),
    Template(
        id="tpl_deposit_account",
        name="deposit_account",
        label="Deposit Account",
        description="Checking, savings or certificate account held by a customer",
        icon="Landmark",
        category="core",
        tags=("account", "checking", "savings", "cd"),
        fields=(
            _bp("tpl_deposit_account", "account_number", _T.TEXT, "Account Number", required=True),
            _bp("tpl_deposit_account", "account_type", _T.ENUM, "Account Type", required=True, options=("checking", "savings", "money_market", "certificate")),
            _bp("tpl_deposit_account", "current_balance", _T.NUMBER, "Current Balance"),
            _bp("tpl_deposit_account", "open_date", _T.DATE, "Open Date"),
            _bp("tpl_deposit_account", "is_primary", _T.BOOLEAN, "Primary Account"),
        ),
    ),
    Template(
        id="tpl_branch",
        name="branch",
        label="Branch",
        description="Physical branch location servicing customers",
        icon="Building",
        category="core",
        tags=("location", "branch", "office"),
        fields=(
            _bp("tpl_branch", "branch_code", _T.TEXT, "Branch Code", required=True),
            _bp("tpl_branch", "region", _T.TEXT, "Region"),
            _bp("tpl_branch", "opened_on", _T.DATE, "Opened On"),
            _bp("tpl_branch", "drive_through", _T.BOOLEAN, "Drive-through"),
        ),
    ),
    Template(
        id="tpl_financial_product",
        name="financial_product",
        label="Financial Product",
        description="Product offered by the institution, used for cross-sell journeys",
        icon="Package",
        category="marketing",
        tags=("product", "offer", "cross-sell"),
        fields=(
            _bp("tpl_financial_product", "product_code", _T.TEXT, "Product Code", required=True),
            _bp("tpl_financial_product", "product_family", _T.ENUM, "Product Family", options=("deposit", "lending", "card", "wealth", "insurance")),
            _bp("tpl_financial_product", "interest_rate", _T.NUMBER, "Interest Rate"),
            _bp("tpl_financial_product", "active", _T.BOOLEAN, "Active", required=True),
        ),
    ),
    Template(
        id="tpl_credit_card",
        name="credit_card",
        label="Credit Card",
        description="Card account with limit and utilization tracking",
        icon="CreditCard",
        category="lending",
        tags=("card", "credit", "rewards"),
        fields=(
            _bp("tpl_credit_card", "card_last_four", _T.TEXT, "Card Last Four", required=True),
            _bp("tpl_credit_card", "credit_limit", _T.NUMBER, "Credit Limit"),
            _bp("tpl_credit_card", "rewards_tier", _T.ENUM, "Rewards Tier", options=("standard", "gold", "platinum")),
            _bp("tpl_credit_card", "activation_date", _T.DATE, "Activation Date"),
            _bp("tpl_credit_card", "autopay_enabled", _T.BOOLEAN, "Autopay Enabled"),
        ),
    ),
)


def list_templates() -> Tuple[Template, ...]:
    return TEMPLATES


def get_template(template_id: str) -> Template | None:
    for template in TEMPLATES:
        if template.id == template_id:
            return template
    return None


def search_templates(query: str) -> List[Template]:
    needle = (query or "").strip().lower()
    if not needle:
        return list(TEMPLATES)
    matches = []
    for template in TEMPLATES:
        haystack = [template.name, template.label, template.description, template.category, *template.tags]
        if any(needle in text.lower() for text in haystack):
            matches.append(template)
    return matches


def templates_by_category() -> Dict[str, List[Template]]:
    grouped: Dict[str, List[Template]] = {}
    for template in TEMPLATES:
        grouped.setdefault(template.category, []).append(template)
    return grouped
