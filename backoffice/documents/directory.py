"""Upstream directories consumed by the document service.

The customer directory supplies the name, contact details and addresses
copied onto new documents. The team directory validates the member ids a
work order is assigned to.
"""

from collections.abc import Iterable
from typing import Protocol

from backoffice.documents.schema import CustomerRecord


class CustomerDirectory(Protocol):
    def get_customer(self, customer_id: str) -> CustomerRecord | None:
        """Return the customer or None when unknown."""
        ...


class TeamDirectory(Protocol):
    def is_member(self, member_id: str) -> bool:
        """Whether ``member_id`` names an active team member."""
        ...


class InMemoryCustomerDirectory:
    def __init__(self, customers: Iterable[CustomerRecord] = ()) -> None:
        self._customers = {customer.id: customer for customer in customers}

    def add(self, customer: CustomerRecord) -> None:
        self._customers[customer.id] = customer

    def get_customer(self, customer_id: str) -> CustomerRecord | None:
        return self._customers.get(customer_id)


class InMemoryTeamDirectory:
    def __init__(self, member_ids: Iterable[str] = ()) -> None:
        self._members = set(member_ids)

    def add(self, member_id: str) -> None:
        self._members.add(member_id)

    def is_member(self, member_id: str) -> bool:
        return member_id in self._members
