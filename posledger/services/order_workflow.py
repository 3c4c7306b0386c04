"""
Status vocabularies for shipping orders, expressed as data.

Each workflow lists the statuses an order may move to from each status, the
statuses in which the order's stock deduction is held in the ledger, and the
terminal statuses. Ledger effects are derived from those sets rather than
from the status names:

* moving from a non-holding status into a holding one commits stock,
* moving from a holding status into a non-holding one releases it,
* re-entering the status an order is already in replays the commit effect,
  which is harmless because ledger writes are idempotent per order/product.
"""
from dataclasses import dataclass

from posledger.core.errors import InvalidOrderData, InvalidStatusTransition, OrderLocked

EFFECT_COMMIT_STOCK = "commit_stock"
EFFECT_RELEASE_STOCK = "release_stock"


@dataclass(frozen=True)
class Workflow:
    name: str
    initial_status: str
    transitions: dict[str, frozenset[str]]
    stock_holding_statuses: frozenset[str]
    terminal_statuses: frozenset[str]

    @property
    def statuses(self) -> frozenset[str]:
        return frozenset(self.transitions)

    def normalize(self, status: str) -> str:
        normalized = status.strip().lower()
        if normalized not in self.transitions:
            allowed = ", ".join(sorted(self.transitions))
            raise InvalidOrderData(f"Invalid order status '{status}'. Allowed: {allowed}")
        return normalized

    def holds_stock(self, status: str) -> bool:
        return status in self.stock_holding_statuses

    def is_terminal(self, status: str) -> bool:
        return status in self.terminal_statuses

    def items_editable(self, status: str) -> bool:
        return not self.holds_stock(status) and not self.is_terminal(status)

    def ensure_mutable(self, order_id: str, status: str) -> None:
        if self.is_terminal(status):
            raise OrderLocked(order_id, status)

    def plan(self, current_status: str, next_status: str) -> list[str]:
        """Validate a transition and return the ledger effects it requires."""
        if current_status == next_status:
            return [EFFECT_COMMIT_STOCK] if self.holds_stock(current_status) else []
        if next_status not in self.transitions.get(current_status, frozenset()):
            raise InvalidStatusTransition(current_status, next_status)

        was_holding = self.holds_stock(current_status)
        will_hold = self.holds_stock(next_status)
        if not was_holding and will_hold:
            return [EFFECT_COMMIT_STOCK]
        if was_holding and not will_hold:
            return [EFFECT_RELEASE_STOCK]
        return []


STANDARD_WORKFLOW = Workflow(
    name="standard",
    initial_status="pending",
    transitions={
        "pending": frozenset({"processing", "fulfilled", "cancelled"}),
        "processing": frozenset({"pending", "fulfilled", "cancelled"}),
        "fulfilled": frozenset({"pending", "processing", "delivered", "cancelled"}),
        "delivered": frozenset(),
        "cancelled": frozenset({"pending"}),
    },
    stock_holding_statuses=frozenset({"fulfilled", "delivered"}),
    terminal_statuses=frozenset({"delivered"}),
)

SIMPLE_WORKFLOW = Workflow(
    name="simple",
    initial_status="pending",
    transitions={
        "pending": frozenset({"completed", "cancelled"}),
        "completed": frozenset({"pending", "cancelled"}),
        "cancelled": frozenset({"pending"}),
    },
    stock_holding_statuses=frozenset({"completed"}),
    terminal_statuses=frozenset(),
)

WORKFLOWS: dict[str, Workflow] = {
    STANDARD_WORKFLOW.name: STANDARD_WORKFLOW,
    SIMPLE_WORKFLOW.name: SIMPLE_WORKFLOW,
}


def get_workflow(name: str | None) -> Workflow:
    key = (name or STANDARD_WORKFLOW.name).strip().lower()
    workflow = WORKFLOWS.get(key)
    if workflow is None:
        allowed = ", ".join(sorted(WORKFLOWS))
        raise InvalidOrderData(f"Unknown workflow '{name}'. Allowed: {allowed}")
    return workflow
