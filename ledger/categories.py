from enum import Enum
from typing import NamedTuple, Tuple, Type, Union


class ExpenseCategory(str, Enum):
    FOOD_AND_DINING = "Food & Dining"
    TRANSPORT = "Transport"
    UTILITIES = "Utilities"
    ENTERTAINMENT = "Entertainment"
    SHOPPING = "Shopping"
    HEALTHCARE = "Healthcare"
    EDUCATION = "Education"
    OTHER = "Other"


class IncomeCategory(str, Enum):
    SALARY = "Salary"
    FREELANCE = "Freelance"
    INVESTMENTS = "Investments"
    ALLOWANCE = "Allowance"
    GIFT = "Gift"
    REFUND = "Refund"
    BONUS = "Bonus"
    INTEREST = "Interest"
    RENTAL_INCOME = "Rental Income"
    SIDE_HUSTLE = "Side Hustle"
    OTHER_INCOME = "Other Income"


class CategoryStyle(NamedTuple):
    icon: str
    color: str


DEFAULT_STYLE = CategoryStyle("wallet-outline", "#607D8B")

_STYLES = {
    ExpenseCategory.FOOD_AND_DINING: CategoryStyle("restaurant-outline", "#4CAF50"),
    ExpenseCategory.TRANSPORT: CategoryStyle("car-outline", "#2196F3"),
    ExpenseCategory.UTILITIES: CategoryStyle("flash-outline", "#FF9800"),
    ExpenseCategory.ENTERTAINMENT: CategoryStyle("film-outline", "#9C27B0"),
    ExpenseCategory.SHOPPING: CategoryStyle("cart-outline", "#E91E63"),
    ExpenseCategory.HEALTHCARE: CategoryStyle("medical-outline", "#00BCD4"),
    ExpenseCategory.EDUCATION: CategoryStyle("school-outline", "#3F51B5"),
    ExpenseCategory.OTHER: DEFAULT_STYLE,
    IncomeCategory.SALARY: CategoryStyle("cash-outline", "#4CAF50"),
    IncomeCategory.FREELANCE: CategoryStyle("laptop-outline", "#2196F3"),
    IncomeCategory.INVESTMENTS: CategoryStyle("trending-up-outline", "#673AB7"),
    IncomeCategory.ALLOWANCE: CategoryStyle("wallet-outline", "#8BC34A"),
    IncomeCategory.GIFT: CategoryStyle("gift-outline", "#E91E63"),
    IncomeCategory.REFUND: CategoryStyle("return-down-back-outline", "#FF9800"),
    IncomeCategory.BONUS: CategoryStyle("gift-outline", "#FFC107"),
    IncomeCategory.INTEREST: CategoryStyle("analytics-outline", "#7E57C2"),
    IncomeCategory.RENTAL_INCOME: CategoryStyle("home-outline", "#FF5722"),
    IncomeCategory.SIDE_HUSTLE: CategoryStyle("briefcase-outline", "#00BCD4"),
    IncomeCategory.OTHER_INCOME: DEFAULT_STYLE,
}


def vocabulary(transaction_type) -> Type[Enum]:
    """Return the category enumeration valid for an income/expense type."""
    value = getattr(transaction_type, "value", transaction_type)
    if value == "income":
        return IncomeCategory
    if value == "expense":
        return ExpenseCategory
    raise ValueError(f"Unknown transaction type: {transaction_type!r}")


def parse_category(transaction_type, name) -> Union[ExpenseCategory, IncomeCategory]:
    """Validate a raw category name against the vocabulary for a type.

    Raises ValueError for names outside the vocabulary, so a typo can never
    become an orphan category.
    """
    enum_cls = vocabulary(transaction_type)
    if isinstance(name, enum_cls):
        return name
    return enum_cls(str(getattr(name, "value", name)).strip())


def budget_categories() -> Tuple[ExpenseCategory, ...]:
    return tuple(ExpenseCategory)


def category_style(category) -> CategoryStyle:
    return _STYLES.get(category, DEFAULT_STYLE)
