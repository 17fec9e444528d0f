from datetime import date

from timebill.models.billing_code import BillingCode
from timebill.models.project import Account, Employee, Project


class TestAccountAndProjectRepos:
    def test_account_round_trip(self, store):
        account = store.accounts.create(Account(name="Contoso", projects_single_invoice=True))
        fetched = store.accounts.get_by_id(account.id)
        assert fetched.name == "Contoso"
        assert fetched.projects_single_invoice is True

    def test_project_lists_its_codes(self, store, catalog):
        project = store.projects.get_by_id(catalog.project.id)
        assert [c.code for c in project.billing_codes] == ["DEV"]

    def test_list_by_account(self, store):
        account = store.accounts.create(Account(name="Contoso"))
        store.projects.create(Project(account_id=account.id, name="Portal"))
        store.projects.create(Project(account_id=account.id, name="Data"))
        assert [p.name for p in store.projects.list_by_account(account.id)] == ["Data", "Portal"]

    def test_missing(self, store):
        assert store.accounts.get_by_id(1) is None
        assert store.projects.get_by_id(1) is None
        assert store.employees.get_by_id(1) is None


class TestEmployeeRepo:
    def test_create_and_list(self, store):
        store.employees.create(Employee(first_name="Grace", last_name="Hopper"))
        store.employees.create(Employee(first_name="Ada", last_name="Lovelace", user_id=3))
        employees = store.employees.list_all()
        assert [e.last_name for e in employees] == ["Hopper", "Lovelace"]
        assert employees[1].user_id == 3


class TestBillingCodeRepo:
    def test_list_active(self, store, catalog):
        assert [c.id for c in store.billing_codes.list_active(date(2024, 5, 1))] == [catalog.code.id]
        assert store.billing_codes.list_active(date(2025, 1, 1)) == []

    def test_update(self, store, catalog):
        updated = store.billing_codes.update(catalog.code.model_copy(update={"rounded_to": 30, "name": "Dev"}))
        assert updated.rounded_to == 30
        assert updated.name == "Dev"

    def test_create_and_list_by_project(self, store, catalog):
        store.billing_codes.create(
            BillingCode(
                project_id=catalog.project.id,
                code="ADM",
                rate_id=catalog.external_rate.id,
                internal_rate_id=catalog.internal_rate.id,
                active_start=date(2024, 1, 1),
                active_end=date(2024, 3, 31),
            )
        )
        assert [c.code for c in store.billing_codes.list_by_project(catalog.project.id)] == ["ADM", "DEV"]
        assert len(store.billing_codes.list_all()) == 2
