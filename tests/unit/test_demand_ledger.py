"""Unit tests for the demand ledger: issue snapshot, payments, penalties, cancellation."""

from datetime import date, datetime, timezone
from decimal import Decimal

import pytest
from sqlalchemy import select

from building_finance.models import (
    AuditLog,
    Base,
    Building,
    DemandStatus,
    Flat,
    PaymentMethod,
    PenaltyType,
)
from building_finance.services import create_engine_for, create_session_factory
from building_finance.services.building_service import NO_PENALTY, FinancialSettings, PenaltyPolicy
from building_finance.services.demand_ledger import (
    DemandFilter,
    DemandLedger,
    PaymentInput,
    calculate_penalty,
    recompute_status,
)
from building_finance.services.eligibility import select_eligible_units
from building_finance.services.errors import (
    ConcurrentUpdate,
    DemandNotFound,
    InvalidDemandState,
    InvalidPayment,
    SettingsIncomplete,
)
from building_finance.services.fiscal_calendar import DEFAULT_ANCHOR, quarter_for

AS_OF = date(2024, 5, 15)
Q1 = quarter_for(DEFAULT_ANCHOR, 2024, 1, AS_OF)
Q2 = quarter_for(DEFAULT_ANCHOR, 2024, 2, AS_OF)


async def issue(session, building, settings, flats, quarter=Q1):
    """Persist one issued demand per eligible flat and return them by flat number."""
    ledger = DemandLedger(session)
    demands = {}
    for unit in select_eligible_units(
        flats.values(), quarter.is_first_quarter, settings.rate_per_area_unit
    ):
        demand = ledger.build_demand(building.id, unit, quarter, settings, issued_by="manager")
        session.add(demand)
        demands[unit.unit.flat_number] = demand
    await session.commit()
    return demands


def payment(amount, **kwargs):
    return PaymentInput(
        amount=Decimal(amount),
        payment_date=date(2024, 4, 2),
        recorded_by="manager",
        **kwargs,
    )


class TestBuildDemand:
    """Test demand creation snapshots."""

    async def test_first_quarter_demand_amounts(
        self, async_db_session, building, financial_settings, flats
    ):
        """Area 1000 at 2.50 with ground rent 300 gives 2800 due 2024-03-18."""
        demands = await issue(async_db_session, building, financial_settings, flats)
        demand = demands["1A"]

        assert demand.id is not None
        assert demand.quarter_key == "2024-Q1"
        assert demand.quarter_display_string == "Q1 FY24/25"
        assert demand.base_amount == Decimal("2500.00")
        assert demand.ground_rent_amount == Decimal("300.00")
        assert demand.total_due == Decimal("2800.00")
        assert demand.outstanding == Decimal("2800.00")
        assert demand.due_date == date(2024, 3, 18)
        assert demand.version == 1
        assert recompute_status(demand, date(2024, 3, 1)) == DemandStatus.ISSUED

    async def test_snapshot_survives_settings_change(
        self, async_db_session, building, financial_settings, flats
    ):
        demands = await issue(async_db_session, building, financial_settings, flats)
        flats["1A"].area_units = Decimal("2000")
        await async_db_session.commit()

        demand = await DemandLedger(async_db_session).get_demand(demands["1A"].id)

        assert demand.area_at_issue == Decimal("1000")
        assert demand.rate_at_issue == Decimal("2.50")
        assert demand.base_amount == Decimal("2500.00")

    async def test_ground_rent_only_flat_has_zero_base(
        self, async_db_session, building, financial_settings, flats
    ):
        demands = await issue(async_db_session, building, financial_settings, flats)

        assert demands["G1"].base_amount == Decimal("0")
        assert demands["G1"].area_at_issue == Decimal("0")
        assert demands["G1"].total_due == Decimal("150.00")
        assert "S1" not in demands

    async def test_later_quarters_carry_no_ground_rent(
        self, async_db_session, building, financial_settings, flats
    ):
        demands = await issue(async_db_session, building, financial_settings, flats, quarter=Q2)

        assert set(demands) == {"1A", "1B"}
        assert all(d.ground_rent_amount == Decimal("0") for d in demands.values())
        assert demands["1A"].due_date == date(2024, 6, 17)

    async def test_incomplete_settings_rejected(self, flats):
        unit = select_eligible_units(flats.values(), True, Decimal("2.50"))[0]

        with pytest.raises(SettingsIncomplete):
            DemandLedger(None).build_demand(1, unit, Q1, FinancialSettings(due_lead_days=14))


class TestApplyPayment:
    """Test payment application."""

    async def test_partial_then_full_payment(
        self, async_db_session, building, financial_settings, flats
    ):
        demands = await issue(async_db_session, building, financial_settings, flats)
        ledger = DemandLedger(async_db_session)
        demand_id = demands["1A"].id

        demand = await ledger.apply_payment(demand_id, payment("1000", method="Bank Transfer"))

        assert demand.amount_paid == Decimal("1000.00")
        assert demand.outstanding == Decimal("1800.00")
        assert recompute_status(demand, AS_OF) == DemandStatus.PARTIALLY_PAID
        assert demand.payment_history[0].method == PaymentMethod.BANK_TRANSFER

        demand = await ledger.apply_payment(demand_id, payment("1800"))

        assert demand.amount_paid == Decimal("2800.00")
        assert demand.outstanding == Decimal("0.00")
        assert recompute_status(demand, AS_OF) == DemandStatus.PAID
        assert [p.amount for p in demand.payment_history] == [Decimal("1000.00"), Decimal("1800.00")]

    async def test_payment_is_audited(self, async_db_session, building, financial_settings, flats):
        demands = await issue(async_db_session, building, financial_settings, flats)

        await DemandLedger(async_db_session).apply_payment(demands["1B"].id, payment("500"))

        result = await async_db_session.execute(
            select(AuditLog).where(AuditLog.entity_type == "demand", AuditLog.action == "payment")
        )
        audit = result.scalar_one()
        assert audit.entity_id == demands["1B"].id
        assert audit.actor == "manager"
        assert audit.changes["outstanding"] == "1500.00"

    @pytest.mark.parametrize("amount", ["0", "-10"])
    async def test_non_positive_payment_rejected(
        self, async_db_session, building, financial_settings, flats, amount
    ):
        demands = await issue(async_db_session, building, financial_settings, flats)

        with pytest.raises(InvalidPayment):
            await DemandLedger(async_db_session).apply_payment(demands["1A"].id, payment(amount))

    @pytest.mark.parametrize("amount", ["NaN", "sNaN", "Infinity", "1E+40"])
    async def test_non_finite_payment_rejected(
        self, async_db_session, building, financial_settings, flats, amount
    ):
        """Amounts that cannot be compared or quantized fail as invalid payments."""
        demands = await issue(async_db_session, building, financial_settings, flats)
        ledger = DemandLedger(async_db_session)

        with pytest.raises(InvalidPayment, match="not a valid amount"):
            await ledger.apply_payment(demands["1A"].id, payment(amount))

        demand = await ledger.get_demand(demands["1A"].id)
        assert demand.outstanding == Decimal("2800.00")

    async def test_overpayment_rejected(self, async_db_session, building, financial_settings, flats):
        """Outstanding is never negative: paying more than owed fails and changes nothing."""
        demands = await issue(async_db_session, building, financial_settings, flats)
        ledger = DemandLedger(async_db_session)

        with pytest.raises(InvalidPayment):
            await ledger.apply_payment(demands["1A"].id, payment("2800.01"))

        demand = await ledger.get_demand(demands["1A"].id)
        assert demand.outstanding == Decimal("2800.00")
        assert demand.payment_history == []

    async def test_unknown_method_rejected(
        self, async_db_session, building, financial_settings, flats
    ):
        demands = await issue(async_db_session, building, financial_settings, flats)

        with pytest.raises(InvalidPayment):
            await DemandLedger(async_db_session).apply_payment(
                demands["1A"].id, payment("10", method="Bitcoin")
            )

    async def test_missing_demand(self, async_db_session):
        with pytest.raises(DemandNotFound):
            await DemandLedger(async_db_session).apply_payment(999, payment("10"))

    async def test_payment_on_cancelled_demand_rejected(
        self, async_db_session, building, financial_settings, flats
    ):
        demands = await issue(async_db_session, building, financial_settings, flats)
        ledger = DemandLedger(async_db_session)
        await ledger.cancel_demand(demands["1A"].id, "manager")

        with pytest.raises(InvalidDemandState):
            await ledger.apply_payment(demands["1A"].id, payment("10"))


class TestApplyPenalty:
    """Test late payment penalties."""

    async def test_penalty_increases_total_and_outstanding(
        self, async_db_session, building, financial_settings, flats
    ):
        demands = await issue(async_db_session, building, financial_settings, flats)
        ledger = DemandLedger(async_db_session)

        demand = await ledger.apply_penalty(demands["1A"].id, Decimal("50"), "manager")

        assert demand.penalty_amount == Decimal("50.00")
        assert demand.total_due == Decimal("2850.00")
        assert demand.outstanding == Decimal("2850.00")
        assert demand.penalty_applied_at is not None
        assert demand.base_amount + demand.ground_rent_amount + demand.penalty_amount == demand.total_due

    async def test_penalties_accumulate(self, async_db_session, building, financial_settings, flats):
        demands = await issue(async_db_session, building, financial_settings, flats)
        ledger = DemandLedger(async_db_session)
        await ledger.apply_penalty(demands["1A"].id, Decimal("50"), "manager")

        demand = await ledger.apply_penalty(demands["1A"].id, Decimal("25.50"), "manager")

        assert demand.penalty_amount == Decimal("75.50")
        assert demand.total_due == Decimal("2875.50")
        assert demand.outstanding == Decimal("2875.50")
        assert demand.penalty_applied_at is not None

        audit = await async_db_session.execute(
            select(AuditLog)
            .where(AuditLog.entity_id == demand.id, AuditLog.action == "penalty")
            .order_by(AuditLog.id)
        )
        assert [entry.changes["penalty_amount"] for entry in audit.scalars()] == ["50.00", "25.50"]

    async def test_no_penalty_on_paid_demand(
        self, async_db_session, building, financial_settings, flats
    ):
        demands = await issue(async_db_session, building, financial_settings, flats)
        ledger = DemandLedger(async_db_session)
        await ledger.apply_payment(demands["1B"].id, payment("2000"))

        with pytest.raises(InvalidDemandState):
            await ledger.apply_penalty(demands["1B"].id, Decimal("25"), "manager")

    async def test_non_positive_penalty_rejected(
        self, async_db_session, building, financial_settings, flats
    ):
        demands = await issue(async_db_session, building, financial_settings, flats)

        with pytest.raises(InvalidPayment):
            await DemandLedger(async_db_session).apply_penalty(demands["1A"].id, Decimal("0"), "m")

    @pytest.mark.parametrize("amount", [Decimal("NaN"), "Infinity", "ten"])
    async def test_non_numeric_penalty_rejected(
        self, async_db_session, building, financial_settings, flats, amount
    ):
        demands = await issue(async_db_session, building, financial_settings, flats)
        ledger = DemandLedger(async_db_session)

        with pytest.raises(InvalidPayment, match="not a valid amount"):
            await ledger.apply_penalty(demands["1A"].id, amount, "manager")

        demand = await ledger.get_demand(demands["1A"].id)
        assert demand.penalty_amount == Decimal("0.00")
        assert demand.penalty_applied_at is None


class TestCalculatePenalty:
    """Test the penalty a policy charges on an overdue balance."""

    @pytest.mark.parametrize(
        "policy,expected",
        [
            (PenaltyPolicy(PenaltyType.FLAT, flat_amount=Decimal("25")), Decimal("25.00")),
            (PenaltyPolicy(PenaltyType.PERCENTAGE, percentage=Decimal("1.5")), Decimal("30.00")),
            (
                PenaltyPolicy(
                    PenaltyType.BOTH, flat_amount=Decimal("25"), percentage=Decimal("1.5")
                ),
                Decimal("55.00"),
            ),
            (
                PenaltyPolicy(
                    PenaltyType.PERCENTAGE, percentage=Decimal("10"), max_amount=Decimal("120")
                ),
                Decimal("120.00"),
            ),
            (NO_PENALTY, Decimal("0")),
        ],
    )
    def test_penalty_types(self, policy, expected):
        assert calculate_penalty(Decimal("2000"), policy, overdue_days=30) == expected

    def test_percentage_rounds_half_up(self):
        policy = PenaltyPolicy(PenaltyType.PERCENTAGE, percentage=Decimal("1"))

        assert calculate_penalty(Decimal("100.50"), policy, overdue_days=1) == Decimal("1.01")

    def test_nothing_within_grace_period(self):
        policy = PenaltyPolicy(PenaltyType.FLAT, flat_amount=Decimal("25"), grace_days=7)

        assert calculate_penalty(Decimal("2000"), policy, overdue_days=7) == Decimal("0")
        assert calculate_penalty(Decimal("2000"), policy, overdue_days=8) == Decimal("25.00")

    def test_nothing_on_settled_balance(self):
        policy = PenaltyPolicy(PenaltyType.FLAT, flat_amount=Decimal("25"))

        assert calculate_penalty(Decimal("0"), policy, overdue_days=30) == Decimal("0")


class TestApplyOverduePenalties:
    """Test running the penalty policy over a building's overdue demands."""

    POLICY = PenaltyPolicy(PenaltyType.BOTH, flat_amount=Decimal("20"), percentage=Decimal("1"))

    async def test_charges_overdue_unpaid_demands(
        self, async_db_session, building, financial_settings, flats
    ):
        """Q1 fell due 2024-03-18; Q2 falls due 2024-06-17 and is not yet overdue."""
        q1 = await issue(async_db_session, building, financial_settings, flats)
        await issue(async_db_session, building, financial_settings, flats, quarter=Q2)
        ledger = DemandLedger(async_db_session)
        await ledger.apply_payment(q1["1B"].id, payment("2000"))

        charged = await ledger.apply_overdue_penalties(building.id, self.POLICY, AS_OF, "system")

        penalties = {demand.flat_number: penalty for demand, penalty in charged}
        assert penalties == {"1A": Decimal("48.00"), "G1": Decimal("21.50")}
        assert all(demand.quarter_key == "2024-Q1" for demand, _ in charged)
        demand = await ledger.get_demand(q1["1A"].id)
        assert demand.penalty_amount == Decimal("48.00")
        assert demand.outstanding == Decimal("2848.00")
        assert demand.penalty_applied_at.date() == AS_OF

    async def test_same_day_rerun_charges_nothing(
        self, async_db_session, building, financial_settings, flats
    ):
        await issue(async_db_session, building, financial_settings, flats)
        ledger = DemandLedger(async_db_session)
        await ledger.apply_overdue_penalties(building.id, self.POLICY, AS_OF, "system")

        assert await ledger.apply_overdue_penalties(building.id, self.POLICY, AS_OF, "system") == []

    async def test_later_run_accumulates(
        self, async_db_session, building, financial_settings, flats
    ):
        demands = await issue(async_db_session, building, financial_settings, flats)
        ledger = DemandLedger(async_db_session)
        await ledger.apply_overdue_penalties(building.id, self.POLICY, AS_OF, "system")

        charged = await ledger.apply_overdue_penalties(
            building.id, self.POLICY, date(2024, 6, 15), "system"
        )

        penalty = {d.flat_number: p for d, p in charged}["1A"]
        assert penalty == Decimal("48.48")
        demand = await ledger.get_demand(demands["1A"].id)
        assert demand.penalty_amount == Decimal("96.48")

    async def test_grace_period_and_cancelled_demands_skipped(
        self, async_db_session, building, financial_settings, flats
    ):
        demands = await issue(async_db_session, building, financial_settings, flats)
        ledger = DemandLedger(async_db_session)
        await ledger.cancel_demand(demands["G1"].id, "manager")
        policy = PenaltyPolicy(PenaltyType.FLAT, flat_amount=Decimal("20"), grace_days=30)

        assert await ledger.apply_overdue_penalties(
            building.id, policy, date(2024, 4, 17), "system"
        ) == []

        charged = await ledger.apply_overdue_penalties(
            building.id, policy, date(2024, 4, 18), "system"
        )
        assert sorted(d.flat_number for d, _ in charged) == ["1A", "1B"]

    @pytest.mark.parametrize(
        "policy",
        [NO_PENALTY, PenaltyPolicy(PenaltyType.PERCENTAGE), PenaltyPolicy(PenaltyType.FLAT)],
    )
    async def test_unusable_policy_rejected(self, async_db_session, building, policy):
        with pytest.raises(SettingsIncomplete):
            await DemandLedger(async_db_session).apply_overdue_penalties(
                building.id, policy, AS_OF, "system"
            )


class TestCancelDemand:
    """Test cancellation."""

    async def test_cancel_unpaid_demand(self, async_db_session, building, financial_settings, flats):
        demands = await issue(async_db_session, building, financial_settings, flats)

        demand = await DemandLedger(async_db_session).cancel_demand(
            demands["1A"].id, "manager", "Issued in error"
        )

        assert demand.cancelled_at is not None
        assert demand.notes == "Issued in error"
        assert recompute_status(demand, AS_OF) == DemandStatus.CANCELLED

    async def test_cancel_twice_rejected(self, async_db_session, building, financial_settings, flats):
        demands = await issue(async_db_session, building, financial_settings, flats)
        ledger = DemandLedger(async_db_session)
        await ledger.cancel_demand(demands["1A"].id, "manager")

        with pytest.raises(InvalidDemandState):
            await ledger.cancel_demand(demands["1A"].id, "manager")

    async def test_cancel_with_payments_rejected(
        self, async_db_session, building, financial_settings, flats
    ):
        demands = await issue(async_db_session, building, financial_settings, flats)
        ledger = DemandLedger(async_db_session)
        await ledger.apply_payment(demands["1A"].id, payment("100"))

        with pytest.raises(InvalidDemandState):
            await ledger.cancel_demand(demands["1A"].id, "manager")

    async def test_cancelled_demand_no_longer_billable(
        self, async_db_session, building, financial_settings, flats
    ):
        demands = await issue(async_db_session, building, financial_settings, flats)
        ledger = DemandLedger(async_db_session)
        await ledger.cancel_demand(demands["1A"].id, "manager")

        billable = await ledger.find_billable_demands(building.id, "2024-Q1")
        issued = await ledger.issued_flat_ids(building.id, "2024-Q1")

        assert {d.flat_number for d in billable} == {"1B"}
        assert flats["1A"].id not in issued


class TestQueries:
    """Test demand listing and filters."""

    async def test_billable_demands_exclude_ground_rent_only(
        self, async_db_session, building, financial_settings, flats
    ):
        await issue(async_db_session, building, financial_settings, flats)

        billable = await DemandLedger(async_db_session).find_billable_demands(building.id, "2024-Q1")

        assert {d.flat_number for d in billable} == {"1A", "1B"}

    async def test_list_order_and_filters(
        self, async_db_session, building, financial_settings, flats
    ):
        q1 = await issue(async_db_session, building, financial_settings, flats)
        await issue(async_db_session, building, financial_settings, flats, quarter=Q2)
        ledger = DemandLedger(async_db_session)
        await ledger.apply_payment(q1["1B"].id, payment("2000"))

        everything = await ledger.list_demands(building.id)
        assert [(d.quarter_key, d.flat_number) for d in everything] == [
            ("2024-Q2", "1A"),
            ("2024-Q2", "1B"),
            ("2024-Q1", "1A"),
            ("2024-Q1", "1B"),
            ("2024-Q1", "G1"),
        ]

        q1_outstanding = await ledger.list_demands(
            building.id, DemandFilter(quarter_key="2024-Q1", outstanding_only=True)
        )
        assert [d.flat_number for d in q1_outstanding] == ["1A", "G1"]

        paid = await ledger.list_demands(
            building.id, DemandFilter(status=DemandStatus.PAID), as_of=AS_OF
        )
        assert [d.id for d in paid] == [q1["1B"].id]

        flat_only = await ledger.list_demands(building.id, DemandFilter(flat_id=flats["1A"].id))
        assert len(flat_only) == 2

    async def test_mark_reminder_sent(self, async_db_session, building, financial_settings, flats):
        demands = await issue(async_db_session, building, financial_settings, flats)
        ledger = DemandLedger(async_db_session)
        sent_at = datetime(2024, 3, 10, tzinfo=timezone.utc)

        ledger.mark_reminder_sent([demands["1A"]], sent_at)
        await async_db_session.commit()

        assert recompute_status(demands["1A"], date(2024, 3, 11)) == DemandStatus.REMINDER_SENT
        assert demands["1A"].reminders_sent == 1

        ledger.mark_reminder_sent([demands["1A"]], sent_at)
        await async_db_session.commit()

        assert demands["1A"].reminders_sent == 2
        assert demands["1B"].reminders_sent == 0


class TestConcurrentUpdate:
    """Test optimistic concurrency on the version column."""

    async def test_stale_write_raises_concurrent_update(self, tmp_path):
        engine = create_engine_for(f"sqlite+aiosqlite:///{tmp_path / 'ledger.db'}")
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        session_factory = create_session_factory(engine)

        try:
            async with session_factory() as setup:
                building = Building(name="Race House")
                setup.add(building)
                await setup.flush()
                flat = Flat(building_id=building.id, flat_number="1A", area_units=Decimal("100"))
                setup.add(flat)
                await setup.commit()
                settings = FinancialSettings(rate_per_area_unit=Decimal("2"), due_lead_days=7)
                demands = await issue(setup, building, settings, {"1A": flat})
                demand_id = demands["1A"].id

            async with session_factory() as first, session_factory() as second:
                first_ledger = DemandLedger(first)
                stale = await first_ledger.get_demand(demand_id)
                await first.commit()

                await DemandLedger(second).apply_payment(demand_id, payment("50"))

                stale.notes = "edited from a stale copy"
                with pytest.raises(ConcurrentUpdate):
                    await first_ledger._commit_demand_update(demand_id)

                fresh = await first_ledger.get_demand(demand_id)
                assert fresh.amount_paid == Decimal("50.00")
                assert fresh.version == 2
        finally:
            await engine.dispose()
