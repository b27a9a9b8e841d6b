"""
Streamlit Operator Console for the Finance Reconciler

A thin operator view over the engine:
1. Notification centre (list, include read, mark read)
2. Transaction logging through the same recorder the service uses
3. Budget and goal setup
4. Manual reconciliation run
5. Connection status

Streamlit reruns the script on every interaction, so the console keeps
one event loop for the whole session. Hook tasks started by a recorded
transaction are awaited before the page renders again.
"""

import asyncio
from datetime import date, datetime, time, timedelta
from decimal import Decimal

import streamlit as st

from reconciler.config import get_settings, validate_all_settings
from reconciler.models.finance import (
    Budget,
    BudgetPeriod,
    Goal,
    RecurrencePattern,
    Transaction,
    TransactionType,
)
from reconciler.orchestrator import AppComponents, create_app_components
from reconciler.services.storage import DuplicateError, NotFoundError


# Page configuration
st.set_page_config(
    page_title="Finance Reconciler",
    page_icon="💰",
    layout="wide",
    initial_sidebar_state="expanded",
)


@st.cache_resource
def get_event_loop() -> asyncio.AbstractEventLoop:
    """One loop per server process; locks and tasks stay bound to it."""
    return asyncio.new_event_loop()


def run_async(coro):
    """Helper to run async functions in Streamlit."""
    loop = get_event_loop()
    asyncio.set_event_loop(loop)
    return loop.run_until_complete(coro)


@st.cache_resource
def get_components() -> AppComponents:
    """Get or create application components (cached)."""
    try:
        return create_app_components(use_storage=True)
    except Exception as e:
        st.error(f"Failed to initialize: {e}")
        return create_app_components(use_storage=False)


async def record_and_settle(components: AppComponents, transaction: Transaction) -> Transaction:
    saved = await components.recorder.record_transaction(transaction)
    await components.dispatcher.join()
    return saved


def main():
    """Main application entry point."""
    components = get_components()

    st.sidebar.title("💰 Finance Reconciler")
    st.sidebar.markdown("---")

    owner_id = st.sidebar.text_input("Owner ID", value="demo-user").strip()

    page = st.sidebar.radio(
        "Navigate to:",
        ["🔔 Notifications", "🧾 Log Transaction", "📋 Budgets & Goals", "🔄 Reconcile", "⚙️ Settings"],
        index=0,
    )

    st.sidebar.markdown("---")
    if components.sheets_client is None:
        st.sidebar.warning("Running with in-memory storage")

    if not owner_id and page != "⚙️ Settings":
        st.warning("Enter an owner ID to continue.")
        return

    if page == "🔔 Notifications":
        render_notifications_page(components, owner_id)
    elif page == "🧾 Log Transaction":
        render_transaction_page(components, owner_id)
    elif page == "📋 Budgets & Goals":
        render_budgets_goals_page(components, owner_id)
    elif page == "🔄 Reconcile":
        render_reconcile_page(components)
    else:
        render_settings_page(components)


def render_notifications_page(components: AppComponents, owner_id: str):
    """Render the notification centre."""
    st.title("🔔 Notifications")

    include_read = st.checkbox("Show read notifications", value=False)
    notifications = run_async(
        components.engine.list_notifications(owner_id, include_read=include_read)
    )

    if not notifications:
        st.info("No notifications.")
        return

    for notification in notifications:
        col1, col2 = st.columns([5, 1])
        with col1:
            marker = "" if notification.is_read else "🆕 "
            st.markdown(
                f"{marker}**{notification.type.value.replace('_', ' ').title()}** "
                f"· {notification.created_at:%Y-%m-%d %H:%M}  \n{notification.message}"
            )
        with col2:
            if not notification.is_read and st.button("Mark read", key=f"read-{notification.id}"):
                try:
                    run_async(components.engine.mark_read(notification.id, owner_id))
                    st.rerun()
                except NotFoundError as e:
                    st.error(str(e))


def render_transaction_page(components: AppComponents, owner_id: str):
    """Render the transaction logging form."""
    st.title("🧾 Log Transaction")

    with st.form("transaction_form"):
        col1, col2 = st.columns(2)
        with col1:
            transaction_type = st.selectbox(
                "Type",
                options=[TransactionType.EXPENSE, TransactionType.INCOME],
                format_func=lambda t: t.value.title(),
            )
            amount = st.number_input("Amount", min_value=0.0, step=1.0, format="%.2f")
            currency = st.text_input("Currency", value=get_settings().currency.base_currency)
            category = st.text_input("Category", value="Groceries")
        with col2:
            transaction_date = st.date_input("Date", value=date.today())
            description = st.text_input("Description", value="")
            recurring = st.checkbox("Recurring")
            pattern = st.selectbox(
                "Recurrence",
                options=list(RecurrencePattern),
                format_func=lambda p: p.value.title(),
            )
            end_date = st.date_input("Recurrence end (optional)", value=None)

        submitted = st.form_submit_button("💾 Save Transaction", type="primary")

    if submitted:
        try:
            transaction = Transaction(
                owner_id=owner_id,
                amount=Decimal(str(amount)),
                currency=currency.upper(),
                type=transaction_type,
                category=category,
                description=description or None,
                transaction_date=datetime.combine(transaction_date, time(12, 0)),
                recurring=recurring,
                recurrence_pattern=pattern.value if recurring else None,
                recurrence_end_date=(
                    datetime.combine(end_date, time.max) if recurring and end_date else None
                ),
            )
            saved = run_async(record_and_settle(components, transaction))
            st.success(
                f"✅ Saved {saved.type.value} of {saved.effective_amount} "
                f"(rate {saved.exchange_rate})"
            )
        except Exception as e:
            run_async(components.audit_logger.log_error(
                error_type="transaction_form",
                error_message=str(e),
                details={"owner_id": owner_id},
            ))
            st.error(f"Error: {str(e)}")


def render_budgets_goals_page(components: AppComponents, owner_id: str):
    """Render budget and goal setup."""
    st.title("📋 Budgets & Goals")

    col1, col2 = st.columns(2)

    with col1:
        st.markdown("### New Budget")
        with st.form("budget_form"):
            category = st.text_input("Category (blank for General)", value="")
            amount = st.number_input("Amount", min_value=0.01, value=100.0, step=10.0)
            period = st.selectbox(
                "Period",
                options=list(BudgetPeriod),
                index=2,
                format_func=lambda p: p.value.title(),
            )
            start = st.date_input("Start date", value=date.today())
            budget_submitted = st.form_submit_button("Create Budget")

        if budget_submitted:
            try:
                budget = Budget(
                    owner_id=owner_id,
                    category=category or None,
                    amount=Decimal(str(amount)),
                    period=period,
                    start_date=datetime.combine(start, time.min),
                )
                run_async(components.budgets.insert_budget(budget))
                st.success(f"✅ {budget.display_category} budget created until {budget.end_date:%Y-%m-%d}")
            except DuplicateError as e:
                st.error(str(e))
            except Exception as e:
                st.error(f"Error: {str(e)}")

    with col2:
        st.markdown("### New Savings Goal")
        with st.form("goal_form"):
            name = st.text_input("Name", value="Emergency fund")
            target = st.number_input("Target amount", min_value=0.01, value=1000.0, step=50.0)
            deadline = st.date_input("Deadline", value=date.today() + timedelta(days=365))
            auto_allocation = st.checkbox("Auto-allocate from income", value=True)
            percentage = st.number_input("Allocation %", min_value=0.0, max_value=100.0, value=10.0)
            fixed = st.number_input("Fixed allocation", min_value=0.0, value=0.0)
            goal_submitted = st.form_submit_button("Create Goal")

        if goal_submitted:
            try:
                goal = Goal(
                    owner_id=owner_id,
                    name=name,
                    target_amount=Decimal(str(target)),
                    deadline=datetime.combine(deadline, time.min),
                    auto_allocation=auto_allocation,
                    allocation_percentage=Decimal(str(percentage)),
                    allocation_amount=Decimal(str(fixed)),
                )
                run_async(components.goals.insert_goal(goal))
                st.success(f"✅ Goal '{goal.name}' created")
            except Exception as e:
                st.error(f"Error: {str(e)}")


def render_reconcile_page(components: AppComponents):
    """Render the manual reconciliation page."""
    st.title("🔄 Reconcile")
    st.markdown(
        "Runs the same sweep as the scheduler: prune, recurring transactions, "
        "then every active budget."
    )

    if st.button("▶️ Run Reconciliation Now", type="primary"):
        with st.spinner("Reconciling..."):
            try:
                ran = run_async(components.scheduler.tick())
            except Exception as e:
                st.error(f"Error: {str(e)}")
                return
        if ran:
            st.success("✅ Reconciliation finished")
        else:
            st.warning("A reconciliation run is already in progress; skipped.")

    st.markdown("---")
    col1, col2, col3 = st.columns(3)
    col1.metric("Completed runs", components.scheduler.completed)
    col2.metric("Skipped runs", components.scheduler.skipped)
    col3.metric("Failed runs", components.scheduler.failed)


def render_settings_page(components: AppComponents):
    """Render the settings page."""
    st.title("⚙️ Settings")

    st.markdown("### Connection Status")

    status = validate_all_settings()

    sections = [
        ("Google Sheets (Storage)", "google_sheets"),
        ("Currency Conversion", "currency"),
        ("Reconciliation", "reconciliation"),
        ("Application", "app"),
    ]

    for name, key in sections:
        if status.get(key, False):
            st.success(f"✅ {name} - Configured")
        else:
            error = status.get(f"{key}_error", "Not configured")
            st.error(f"❌ {name} - {error}")

    if components.sheets_client is None:
        st.info("Google Sheets is not connected; data lives in memory until restart.")

    st.markdown("---")
    st.markdown("### Configuration")
    st.markdown(
        "Configure the application through environment variables or a `.env` file "
        "(`GOOGLE_SHEETS_*`, `CURRENCY_*`, `RECONCILER_*`)."
    )


if __name__ == "__main__":
    main()
