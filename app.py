"""
app.py
Streamlit Gym Management System (staff console + member portal).
Run: streamlit run app.py
"""

from __future__ import annotations

import base64
import json
from dataclasses import replace
from datetime import date, datetime, timedelta

import pandas as pd
import streamlit as st

import audit
import auth
import billing
import db
import queries
import tasks
import utils
from config import configure_logging, get_settings
from models import (
    PAYMENT_METHODS,
    Announcement,
    AnnouncementType,
    BillingRulerSettings,
    Expense,
    ExpenseCategory,
    ExpenseStatus,
    LogActionType,
    Member,
    MemberStatus,
    Payment,
    PaymentStatus,
    Permission,
    Plan,
    ReminderRule,
    User,
)
from reminders import NotificationInbox

st.set_page_config(page_title="Gym Management System", layout="wide")


def init_once():
    # Initialize DB + default admin if needed
    configure_logging()
    default_hash = auth.hash_password(get_settings().default_admin_password)
    db.init_db(default_hash)


def require_login():
    for key, default in (("user_id", None), ("member_id", None), ("session_started", False)):
        if key not in st.session_state:
            st.session_state[key] = default
    if "inbox" not in st.session_state:
        st.session_state.inbox = NotificationInbox()


def current_user() -> User | None:
    uid = st.session_state.get("user_id")
    return db.get_user(uid) if uid else None


def can(permission: Permission) -> bool:
    return auth.has_permission(current_user(), permission, db.get_roles())


def money(amount: float) -> str:
    return utils.format_currency(amount, get_settings().currency_symbol)


def logout():
    user = current_user()
    if user:
        audit.record(user, LogActionType.USER_LOGOUT, "Logged out.")
    st.session_state.user_id = None
    st.session_state.member_id = None
    st.session_state.session_started = False
    st.session_state.inbox = NotificationInbox()
    st.success("Logged out.")


def login_screen():
    st.title("🔐 Gym Login")

    tab_staff, tab_member = st.tabs(["Staff", "Member portal"])
    with tab_staff:
        col1, col2 = st.columns([1, 1])
        with col1:
            email = st.text_input("Email", value=get_settings().default_admin_email)
            password = st.text_input("Password", type="password")
            if st.button("Login", type="primary"):
                user = auth.login(email.strip(), password)
                if user:
                    st.session_state.user_id = user.id
                    audit.record(user, LogActionType.USER_LOGIN, "Logged in.")
                    st.rerun()
                else:
                    st.error("Invalid email or password.")
        with col2:
            st.info(
                "First run creates a default admin:\n\n"
                f"- email: **{get_settings().default_admin_email}**\n"
                f"- password: **{get_settings().default_admin_password}**\n\n"
                "You will be forced to change it on first login."
            )

    with tab_member:
        m_email = st.text_input("Member email", key="member_email")
        m_password = st.text_input("Member password", type="password", key="member_password")
        if st.button("Enter portal"):
            member = auth.member_login(m_email.strip(), m_password)
            if member:
                st.session_state.member_id = member.id
                st.rerun()
            else:
                st.error("Invalid email or password.")


def force_change_password_screen():
    st.title("⚠️ Change Password (Required)")

    st.warning("You must change the default password before using the app.")
    new1 = st.text_input("New password", type="password")
    new2 = st.text_input("Confirm new password", type="password")

    if st.button("Update password", type="primary"):
        errors = auth.validate_new_password(new1, new2)
        for e in errors:
            st.error(e)
        if not errors:
            auth.change_password(st.session_state.user_id, new1)
            st.success("Password updated. You can continue.")
            st.rerun()


def start_session():
    """Billing cycle + reminders once per session."""
    if st.session_state.session_started:
        return
    result, notes = tasks.startup()
    summary = billing.cycle_summary(result)
    if summary:
        st.toast(summary)
    st.session_state.inbox.extend(notes)
    st.session_state.session_started = True


# ---------- Pages ----------

def dashboard_page():
    st.header("📊 Dashboard")

    today = date.today()
    period = st.radio("Period", ["This month", "Last 30 days", "This year", "All time"], horizontal=True)
    start, end = None, None
    if period == "This month":
        start, end = utils.month_bounds(today)
    elif period == "Last 30 days":
        start, end = today - timedelta(days=30), today
    elif period == "This year":
        start, end = today.replace(month=1, day=1), today

    members, payments, expenses = db.get_members(), db.get_payments(), db.get_expenses()
    summary = queries.dashboard_summary(members, payments, expenses, start, end)

    c1, c2, c3, c4 = st.columns(4)
    c1.metric("Revenue", money(summary["revenue"]))
    c2.metric("Expenses", money(summary["expenses"]))
    c3.metric("New members", summary["new_members"])
    c4.metric("Overdue payments", summary["overdue"])

    st.divider()

    st.subheader("Revenue vs expenses (last 12 months)")
    chart = utils.monthly_financials(payments, expenses, today)
    st.bar_chart(chart.set_index("month")[["revenue", "expenses"]])

    st.subheader("Recent payments")
    names = {m.id: m.name for m in members}
    recent = summary["recent_payments"]
    if recent:
        st.dataframe(pd.DataFrame([
            {"member": names.get(p.member_id, "N/A"), "amount": p.amount, "due": p.date, "status": p.status.value}
            for p in recent
        ]), use_container_width=True, hide_index=True)
    else:
        st.caption("No payments in this period.")


def member_form(plans: list[Plan], existing: Member | None = None):
    if existing:
        st.subheader(f"✏️ Edit Member ({existing.name})")
    else:
        st.subheader("➕ Add Member")

    plan_ids = [p.id for p in plans]
    statuses = list(MemberStatus)
    col1, col2, col3 = st.columns(3)
    with col1:
        name = st.text_input("Full name", value=(existing.name if existing else ""))
        email = st.text_input("Email", value=(existing.email if existing else ""))
    with col2:
        phone = st.text_input("Phone (optional)", value=(existing.phone or "" if existing else ""))
        join_date = st.date_input("Join date", value=(existing.join_date if existing else date.today()))
    with col3:
        plan_id = st.selectbox(
            "Plan", options=plan_ids, format_func=lambda pid: next(p.name for p in plans if p.id == pid),
            index=(plan_ids.index(existing.plan_id) if existing and existing.plan_id in plan_ids else 0),
        )
        status = st.selectbox(
            "Status", options=statuses, format_func=lambda s: s.value,
            index=(statuses.index(existing.status) if existing else 0),
        )
        portal_pw = st.text_input("Portal password (optional)", type="password")

    errors = utils.validate_member_inputs(name, email, plan_id, join_date)
    for e in errors:
        st.error(e)

    if st.button("Save", type="primary", disabled=bool(errors)):
        member = Member(
            id=existing.id if existing else utils.new_id("mem"),
            name=name.strip(), email=email.strip(), join_date=join_date, plan_id=plan_id,
            status=status, phone=utils.phone_mask(phone) or None,
            password_hash=auth.hash_password(portal_pw) if portal_pw else (existing.password_hash if existing else None),
        )
        db.save_member(member)
        action = LogActionType.UPDATE_MEMBER if existing else LogActionType.CREATE_MEMBER
        audit.record(current_user(), action, f'Saved member "{member.name}".')
        st.session_state.edit_member_id = None
        st.success("Member saved.")
        st.rerun()


def members_page():
    st.header("👥 Members")

    plans = db.get_plans()
    plan_names = {p.id: p.name for p in plans}
    with st.sidebar:
        st.subheader("Search & Filters")
        search = st.text_input("Search (name/email/phone)")
        status = st.selectbox("Status", ["All"] + [s.value for s in MemberStatus])
        plan_filter = st.selectbox("Plan", ["All"] + list(plan_names), format_func=lambda x: plan_names.get(x, x))

    members = queries.filter_members(
        db.get_members(), search,
        status=None if status == "All" else MemberStatus(status),
        plan_id=None if plan_filter == "All" else plan_filter,
    )
    page_no = st.number_input("Page", min_value=1, value=1, step=1)
    page = queries.paginate(members, int(page_no), get_settings().items_per_page)
    df = pd.DataFrame([
        {"id": m.id, "name": m.name, "email": m.email, "phone": m.phone, "join_date": m.join_date,
         "plan": plan_names.get(m.plan_id, "N/A"), "status": m.status.value}
        for m in page.items
    ])
    st.dataframe(df, use_container_width=True, hide_index=True)
    st.caption(f"Page {page.page} of {page.total_pages} ({page.total_items} members)")

    st.divider()

    selected_id = st.selectbox("Member", options=["(none)"] + [m.id for m in members])
    if selected_id != "(none)":
        c1, c2, c3 = st.columns(3)
        with c1:
            if can(Permission.UPDATE_MEMBERS) and st.button("Edit"):
                st.session_state.edit_member_id = selected_id
                st.rerun()
        with c2:
            payments = db.get_payments(selected_id)
            st.caption(f"{len(payments)} payment(s) on record")
        with c3:
            delete_confirm = st.checkbox("Confirm delete", value=False, key="del_confirm")
            if can(Permission.DELETE_MEMBERS) and st.button("Delete", disabled=not delete_confirm):
                member = db.get_member(selected_id)
                db.delete_member(selected_id)
                audit.record(current_user(), LogActionType.DELETE_MEMBER, f'Deleted member "{member.name}".')
                st.success("Member deleted.")
                st.rerun()

    st.divider()

    if not plans:
        st.info("Create a plan first.")
        return
    if st.session_state.get("edit_member_id"):
        existing = db.get_member(st.session_state.edit_member_id)
        if existing:
            member_form(plans, existing=existing)
        if st.button("Cancel edit"):
            st.session_state.edit_member_id = None
            st.rerun()
    elif can(Permission.CREATE_MEMBERS):
        member_form(plans)


def plans_page():
    st.header("📋 Plans")

    plans = db.get_plans()
    st.dataframe(pd.DataFrame([
        {"id": p.id, "name": p.name, "price": p.price, "months": p.duration_in_months,
         "due day": p.due_day_of_month} for p in plans
    ]), use_container_width=True, hide_index=True)

    if not can(Permission.CREATE_PLANS):
        return

    st.subheader("Add / edit plan")
    options = ["(new)"] + [p.id for p in plans]
    chosen = st.selectbox("Plan", options)
    existing = db.get_plan(chosen) if chosen != "(new)" else None
    c1, c2, c3, c4 = st.columns(4)
    with c1:
        name = st.text_input("Name", value=existing.name if existing else "")
    with c2:
        price = st.text_input("Price", value=str(existing.price) if existing else "100")
    with c3:
        months = st.number_input("Duration (months)", min_value=1, value=existing.duration_in_months if existing else 1)
    with c4:
        due_day = st.number_input("Due day (0 = none)", min_value=0, max_value=31,
                                  value=(existing.due_day_of_month or 0) if existing else 0)

    errors = utils.validate_plan_inputs(name, price, months, due_day or None)
    for e in errors:
        st.error(e)
    if st.button("Save plan", type="primary", disabled=bool(errors)):
        plan = Plan(existing.id if existing else utils.new_id("plan"), name.strip(), float(price),
                    int(months), int(due_day) or None)
        db.save_plan(plan)
        action = LogActionType.UPDATE_PLAN if existing else LogActionType.CREATE_PLAN
        audit.record(current_user(), action, f'Saved plan "{plan.name}".')
        st.success("Plan saved.")
        st.rerun()

    if existing and can(Permission.DELETE_PLANS) and st.button("Delete plan"):
        db.delete_plan(existing.id)
        audit.record(current_user(), LogActionType.DELETE_PLAN, f'Deleted plan "{existing.name}".')
        st.success("Plan deleted. Existing payments are kept.")
        st.rerun()


def payments_page():
    st.header("💳 Payments")

    members, plans = db.get_members(), db.get_plans()
    names = {m.id: m.name for m in members}
    plan_names = {p.id: p.name for p in plans}

    if can(Permission.UPDATE_PAYMENTS) and st.button("🔁 Run billing cycle"):
        result = tasks.run_billing_tick(actor=current_user())
        st.toast(billing.cycle_summary(result) or "No new charges or status changes needed.")

    with st.sidebar:
        st.subheader("Filters")
        search = st.text_input("Search (member/description)")
        status = st.selectbox("Status", ["All"] + [s.value for s in PaymentStatus])
        start = st.date_input("From", value=None)
        end = st.date_input("To", value=None)
        sort_key = st.selectbox("Sort by", ["date", "amount", "member_name", "plan_name", "status"])
        descending = st.checkbox("Descending", value=True)

    filtered = queries.filter_payments(
        db.get_payments(), members, search,
        status=None if status == "All" else PaymentStatus(status), start=start, end=end,
    )
    filtered = queries.sort_payments(filtered, sort_key, descending, members, plans)

    kpis = queries.payment_kpis(filtered)
    c1, c2, c3 = st.columns(3)
    c1.metric("Paid", money(kpis["paid"]["total"]), f"{kpis['paid']['count']} payment(s)", delta_color="off")
    c2.metric("Pending", money(kpis["pending"]["total"]), f"{kpis['pending']['count']} payment(s)", delta_color="off")
    c3.metric("Overdue", money(kpis["overdue"]["total"]), f"{kpis['overdue']['count']} payment(s)", delta_color="off")

    page_no = st.number_input("Page", min_value=1, value=1, step=1)
    page = queries.paginate(filtered, int(page_no), get_settings().items_per_page)
    st.dataframe(pd.DataFrame([
        {"id": p.id, "member": names.get(p.member_id, "N/A"), "plan": plan_names.get(p.plan_id, "N/A"),
         "description": p.description, "amount": p.amount, "due": p.date, "paid": p.paid_date,
         "status": p.status.value, "method": p.method}
        for p in page.items
    ]), use_container_width=True, hide_index=True)
    st.caption(f"Page {page.page} of {page.total_pages}")

    st.divider()

    open_payments = [p for p in filtered if p.status != PaymentStatus.PAID]
    if open_payments and can(Permission.UPDATE_PAYMENTS):
        st.subheader("Confirm payment")
        by_id = {p.id: p for p in open_payments}
        chosen = st.selectbox(
            "Open payment", list(by_id),
            format_func=lambda i: f"{names.get(by_id[i].member_id, 'N/A')} - "
                                  f"{utils.format_ddmmyyyy(by_id[i].date)} - {money(by_id[i].amount)}",
        )
        method = st.selectbox("Method", PAYMENT_METHODS)
        if st.button("Mark as paid"):
            tasks.confirm_payment(by_id[chosen], method=method, actor=current_user())
            st.success("Payment confirmed.")
            st.rerun()

    if can(Permission.CREATE_PAYMENTS) and members:
        st.subheader("Register payment")
        c1, c2, c3, c4 = st.columns(4)
        with c1:
            member_id = st.selectbox("Member", [m.id for m in members], format_func=lambda x: names[x])
        with c2:
            amount = st.text_input("Amount", value="100")
        with c3:
            due = st.date_input("Due date", value=date.today())
        with c4:
            new_status = st.selectbox("Status", list(PaymentStatus), format_func=lambda s: s.value)
        description = st.text_input("Description", value="")

        if st.button("Record payment", type="primary"):
            errors = utils.validate_amount(amount)
            for e in errors:
                st.error(e)
            if not errors:
                member = db.get_member(member_id)
                payment = Payment(
                    id=utils.new_id("pay"), member_id=member_id, plan_id=member.plan_id, amount=float(amount),
                    date=due, status=new_status, description=description.strip() or None,
                    paid_date=date.today() if new_status == PaymentStatus.PAID else None,
                )
                db.add_payment(payment)
                audit.record(current_user(), LogActionType.CREATE_PAYMENT,
                             f'Registered payment of {money(payment.amount)} for "{member.name}".')
                st.success("Payment recorded.")
                st.rerun()

    if can(Permission.UPDATE_PAYMENTS) and filtered:
        with st.expander("Edit payment"):
            target = st.selectbox("Payment id", [p.id for p in filtered], key="pay_edit")
            p = next(x for x in filtered if x.id == target)
            statuses = list(PaymentStatus)
            e1, e2, e3 = st.columns(3)
            with e1:
                new_amount = st.text_input("Amount", value=f"{p.amount:.2f}", key=f"pe_amount_{p.id}")
                new_due = st.date_input("Due date", value=p.date, key=f"pe_due_{p.id}")
            with e2:
                edit_status = st.selectbox("Status", statuses, index=statuses.index(p.status),
                                           format_func=lambda s: s.value, key=f"pe_status_{p.id}")
                methods = list(PAYMENT_METHODS)
                edit_method = st.selectbox("Method", methods,
                                           index=methods.index(p.method) if p.method in methods else 0,
                                           key=f"pe_method_{p.id}")
            with e3:
                new_desc = st.text_input("Description", value=p.description or "", key=f"pe_desc_{p.id}")
            if st.button("Save changes", key="pe_save"):
                errors = utils.validate_amount(new_amount)
                for e in errors:
                    st.error(e)
                if not errors:
                    db.save_payment(billing.edit_payment(p, float(new_amount), new_due, edit_status,
                                                         new_desc.strip() or None, edit_method))
                    audit.record(current_user(), LogActionType.UPDATE_PAYMENT,
                                 f'Edited payment {p.id} of "{names.get(p.member_id, "N/A")}".')
                    st.rerun()

    if can(Permission.DELETE_PAYMENTS) and filtered:
        with st.expander("Delete payment"):
            pid = st.selectbox("Payment id", [p.id for p in filtered])
            if st.button("Delete"):
                db.delete_payment(pid)
                audit.record(current_user(), LogActionType.DELETE_PAYMENT, f"Deleted payment {pid}.")
                st.rerun()


def expenses_page():
    st.header("🧾 Expenses")

    c1, c2, c3 = st.columns(3)
    with c1:
        search = st.text_input("Search (description/category)")
    with c2:
        start = st.date_input("From", value=None, key="exp_from")
    with c3:
        end = st.date_input("To", value=None, key="exp_to")

    filtered = queries.filter_expenses(db.get_expenses(), search, start, end)
    summary = queries.expense_summary(filtered)
    m1, m2, m3 = st.columns(3)
    m1.metric("Total", money(summary["total"]))
    m2.metric("Paid", money(summary["paid"]))
    m3.metric("Pending", money(summary["pending"]))
    st.dataframe(pd.DataFrame([
        {"date": e.date, "description": e.description, "category": e.category.value,
         "amount": e.amount, "status": e.status.value} for e in filtered
    ]), use_container_width=True, hide_index=True)

    if can(Permission.DELETE_EXPENSES) and filtered:
        labels = {e.id: f"{utils.format_ddmmyyyy(e.date)} | {e.description} | {money(e.amount)}" for e in filtered}
        exp_id = st.selectbox("Expense", list(labels), format_func=lambda i: labels[i], key="exp_del")
        if st.button("Delete expense"):
            db.delete_expense(exp_id)
            audit.record(current_user(), LogActionType.DELETE_EXPENSE, f'Deleted expense "{labels[exp_id]}".')
            st.rerun()

    if can(Permission.UPDATE_EXPENSES) and filtered:
        with st.expander("Edit expense"):
            edit_labels = {e.id: f"{utils.format_ddmmyyyy(e.date)} | {e.description}" for e in filtered}
            target = st.selectbox("Expense", list(edit_labels), format_func=lambda i: edit_labels[i], key="exp_edit")
            exp = next(e for e in filtered if e.id == target)
            categories, statuses = list(ExpenseCategory), list(ExpenseStatus)
            a, b, c, d = st.columns(4)
            with a:
                new_desc = st.text_input("Description", value=exp.description, key=f"ee_desc_{exp.id}")
            with b:
                new_amount = st.text_input("Amount", value=f"{exp.amount:.2f}", key=f"ee_amount_{exp.id}")
            with c:
                new_cat = st.selectbox("Category", categories, index=categories.index(exp.category),
                                       format_func=lambda x: x.value, key=f"ee_cat_{exp.id}")
            with d:
                new_status = st.selectbox("Status", statuses, index=statuses.index(exp.status),
                                          format_func=lambda x: x.value, key=f"ee_status_{exp.id}")
            new_date = st.date_input("Date", value=exp.date, key=f"ee_date_{exp.id}")
            if st.button("Save expense changes"):
                errors = utils.validate_amount(new_amount) + ([] if new_desc.strip() else ["Description is required."])
                for e in errors:
                    st.error(e)
                if not errors:
                    db.save_expense(replace(exp, description=new_desc.strip(), amount=float(new_amount),
                                            date=new_date, category=new_cat, status=new_status))
                    audit.record(current_user(), LogActionType.UPDATE_EXPENSE,
                                 f'Updated expense "{new_desc.strip()}".')
                    st.rerun()

    if not can(Permission.CREATE_EXPENSES):
        return
    st.subheader("Add expense")
    a, b, c, d = st.columns(4)
    with a:
        description = st.text_input("Description")
    with b:
        amount = st.text_input("Amount", value="0", key="exp_amount")
    with c:
        category = st.selectbox("Category", list(ExpenseCategory), format_func=lambda x: x.value)
    with d:
        status = st.selectbox("Status", list(ExpenseStatus), format_func=lambda x: x.value, key="exp_status")
    exp_date = st.date_input("Date", value=date.today(), key="exp_date")
    if st.button("Save expense", type="primary"):
        errors = utils.validate_amount(amount) + ([] if description.strip() else ["Description is required."])
        for e in errors:
            st.error(e)
        if not errors:
            expense = Expense(utils.new_id("exp"), description.strip(), float(amount), exp_date, category, status)
            db.save_expense(expense)
            audit.record(current_user(), LogActionType.CREATE_EXPENSE, f'Added expense "{expense.description}".')
            st.rerun()


def reports_page():
    st.header("📈 Reports")

    members, payments, expenses = db.get_members(), db.get_payments(), db.get_expenses()

    st.subheader("Exports")
    c1, c2, c3 = st.columns(3)
    c1.download_button("Download members.csv", data=utils.members_to_csv_bytes(members),
                       file_name="members.csv", mime="text/csv", disabled=not members)
    c2.download_button("Download payments.csv", data=utils.payments_to_csv_bytes(payments, members),
                       file_name="payments.csv", mime="text/csv", disabled=not payments)
    c3.download_button("Download expenses.csv", data=utils.expenses_to_csv_bytes(expenses),
                       file_name="expenses.csv", mime="text/csv", disabled=not expenses)

    st.divider()

    st.subheader("Revenue summary by month")
    st.dataframe(utils.revenue_summary_by_month(payments), use_container_width=True, hide_index=True)

    st.subheader("Monthly financials")
    st.dataframe(utils.monthly_financials(payments, expenses, date.today()), use_container_width=True, hide_index=True)


def notifications_page():
    st.header("🔔 Notifications")

    inbox: NotificationInbox = st.session_state.inbox
    if st.button("Re-check billing reminders"):
        added = inbox.extend(tasks.collect_reminders())
        st.toast(f"{added} new reminder(s).")
    if inbox.items and st.button("Mark all as read"):
        inbox.mark_all_read()
        st.rerun()

    if not inbox.items:
        st.caption("No notifications.")
    for n in inbox.items:
        icon = "🔵" if not n.read else "⚪"
        st.markdown(f"{icon} **{n.title}**  \n{n.message}")
        if not n.read and st.button("Mark as read", key=f"note_{n.id}"):
            inbox.mark_as_read(n.id)
            st.rerun()


def audit_page():
    st.header("🕵️ Audit Log")
    logs = audit.recent(200)
    if logs:
        st.dataframe(pd.DataFrame([
            {"when": log.timestamp, "user": log.user_name, "action": log.action.value, "details": log.details}
            for log in logs
        ]), use_container_width=True, hide_index=True)
    else:
        st.caption("No entries yet.")


def announcements_page():
    st.header("📣 Announcements")
    for a in db.get_announcements():
        st.markdown(f"**{a.title}** ({a.type.value}, {a.created_at:%d/%m/%Y})\n\n{a.content}")
        st.caption(f"Read by {len(a.read_by_member_ids)} member(s)")
        if can(Permission.CREATE_ANNOUNCEMENTS) and st.button("Delete", key=f"ann_del_{a.id}"):
            db.delete_announcement(a.id)
            audit.record(current_user(), LogActionType.DELETE_ANNOUNCEMENT, f'Deleted "{a.title}".')
            st.rerun()
        st.divider()

    if not can(Permission.CREATE_ANNOUNCEMENTS):
        return
    title = st.text_input("Title")
    content = st.text_area("Content (markdown)")
    kind = st.selectbox("Type", list(AnnouncementType), format_func=lambda x: x.value)
    if st.button("Publish", disabled=not (title.strip() and content.strip())):
        user = current_user()
        db.save_announcement(Announcement(utils.new_id("ann"), title.strip(), content.strip(), kind,
                                          datetime.now(), user.id if user else None))
        audit.record(user, LogActionType.CREATE_ANNOUNCEMENT, f'Published "{title.strip()}".')
        st.rerun()


def settings_page():
    st.header("⚙️ Settings")
    user = current_user()

    st.subheader("Change password")
    p1 = st.text_input("New password", type="password")
    p2 = st.text_input("Confirm new password", type="password")
    if st.button("Update password", type="primary"):
        errors = auth.validate_new_password(p1, p2)
        for e in errors:
            st.error(e)
        if not errors:
            auth.change_password(user.id, p1)
            st.success("Password updated.")

    if not can(Permission.MANAGE_SETTINGS):
        return

    st.divider()

    st.subheader("Billing reminders")
    current = db.get_billing_ruler_settings()
    c1, c2, c3 = st.columns(3)
    with c1:
        before_on = st.toggle("Before due date", value=current.before_due.enabled)
        before_days = st.number_input("Days before", min_value=1, value=current.before_due.days)
    with c2:
        on_due = st.toggle("On due date", value=current.on_due.enabled)
    with c3:
        after_on = st.toggle("After due date", value=current.after_due.enabled)
        after_days = st.number_input("Days after", min_value=1, value=current.after_due.days)
    if st.button("Save reminder settings"):
        db.set_billing_ruler_settings(BillingRulerSettings(
            ReminderRule(before_on, int(before_days)), ReminderRule(on_due), ReminderRule(after_on, int(after_days)),
        ))
        audit.record(user, LogActionType.UPDATE_SETTINGS, "Updated billing reminder settings.")
        st.success("Saved.")

    st.subheader("Branding")
    color = st.color_picker("Primary color", value=db.get_primary_color())
    if st.button("Save color") and color != db.get_primary_color():
        db.set_primary_color(color)
        audit.record(user, LogActionType.UPDATE_SETTINGS, f"Changed primary color to {color}.")

    logo = st.file_uploader("Logo", type=["png", "jpg", "jpeg", "svg"])
    l1, l2 = st.columns(2)
    if logo is not None and l1.button("Save logo"):
        db.set_logo(f"data:{logo.type};base64,{base64.b64encode(logo.getvalue()).decode('ascii')}")
        audit.record(user, LogActionType.UPDATE_SETTINGS, "Updated logo.")
        st.rerun()
    if db.get_logo() and l2.button("Remove logo"):
        db.set_logo(None)
        audit.record(user, LogActionType.UPDATE_SETTINGS, "Removed logo.")
        st.rerun()

    st.divider()

    st.subheader("Data")
    st.caption("Insert the demo plans, members, payments and expenses.")
    if st.button("Insert sample data"):
        tasks.seed_sample_data(actor=user)
        st.success("Sample data inserted.")
        st.rerun()

    upload = st.file_uploader("Import JSON backup", type=["json"])
    if upload is not None and st.button("Import"):
        try:
            counts = db.import_data(json.load(upload))
        except ValueError as e:
            st.error(f"Import failed: {e}")
        else:
            audit.record(user, LogActionType.IMPORT_DATA, f"Imported {counts}.")
            st.success("Data imported.")


def users_page():
    st.header("🛡️ Users & Roles")
    roles = db.get_roles()
    role_names = {r.id: r.name for r in roles}
    st.dataframe(pd.DataFrame([
        {"name": u.name, "email": u.email, "role": role_names.get(u.role_id, "N/A")} for u in db.get_users()
    ]), use_container_width=True, hide_index=True)

    st.subheader("Add user")
    name = st.text_input("Name", key="u_name")
    email = st.text_input("Email", key="u_email")
    password = st.text_input("Password", type="password", key="u_pw")
    role_id = st.selectbox("Role", list(role_names), format_func=lambda r: role_names[r])
    if st.button("Create user"):
        errors = auth.validate_new_password(password, password)
        if not utils.validate_email(email):
            errors.append("A valid email is required.")
        elif db.get_user_by_email(email):
            errors.append("Email already in use.")
        for e in errors:
            st.error(e)
        if not errors:
            db.save_user(User(utils.new_id("user"), name.strip(), email.strip(), auth.hash_password(password), role_id))
            audit.record(current_user(), LogActionType.CREATE_USER, f'Created user "{email.strip()}".')
            st.rerun()

    users = db.get_users()
    st.subheader("Edit user")
    target = st.selectbox("User", users, format_func=lambda u: f"{u.name} ({u.email})", key="u_edit")
    eu1, eu2, eu3 = st.columns(3)
    new_name = eu1.text_input("Name", value=target.name, key=f"ue_name_{target.id}")
    new_email = eu2.text_input("Email", value=target.email, key=f"ue_email_{target.id}")
    new_role = eu3.selectbox("Role", list(role_names), format_func=lambda r: role_names[r],
                             index=list(role_names).index(target.role_id) if target.role_id in role_names else 0,
                             key=f"ue_role_{target.id}")
    if st.button("Save user"):
        if not new_name.strip() or not utils.validate_email(new_email):
            st.error("Name and a valid email are required.")
        else:
            try:
                auth.update_user(target.id, new_name, new_email, new_role)
            except ValueError as e:
                st.error(str(e))
            else:
                audit.record(current_user(), LogActionType.UPDATE_USER, f'Updated user "{new_email.strip()}".')
                st.rerun()

    others = [u for u in db.get_users() if u.id != st.session_state.user_id]
    if others:
        st.subheader("Remove user")
        victim = st.selectbox("User", others, format_func=lambda u: f"{u.name} ({u.email})", key="u_del")
        if st.button("Delete user"):
            db.delete_user(victim.id)
            audit.record(current_user(), LogActionType.DELETE_USER, f'Deleted user "{victim.email}".')
            st.rerun()

    st.subheader("Roles")
    for role in roles:
        with st.expander(role.name + ("" if role.is_editable else " (locked)")):
            st.caption(role.description)
            perms = st.multiselect("Permissions", list(Permission), default=sorted(role.permissions),
                                   format_func=lambda p: p.value, key=f"perm_{role.id}",
                                   disabled=not role.is_editable)
            if role.is_editable and st.button("Save role", key=f"save_{role.id}"):
                try:
                    auth.update_role(replace(role, permissions=frozenset(perms)))
                except PermissionError as e:
                    st.error(str(e))
                else:
                    audit.record(current_user(), LogActionType.UPDATE_ROLE, f'Updated role "{role.name}".')
                    st.rerun()
            in_use = any(u.role_id == role.id for u in db.get_users())
            if role.is_editable and st.button("Delete role", key=f"del_{role.id}", disabled=in_use):
                auth.delete_role(role.id)
                audit.record(current_user(), LogActionType.DELETE_ROLE, f'Deleted role "{role.name}".')
                st.rerun()

    st.subheader("New role")
    r_name = st.text_input("Role name", key="r_name")
    r_desc = st.text_input("Description", key="r_desc")
    r_perms = st.multiselect("Permissions", list(Permission), format_func=lambda p: p.value, key="r_perms")
    if st.button("Create role"):
        try:
            role = auth.create_role(r_name, r_desc, r_perms)
        except ValueError as e:
            st.error(str(e))
        else:
            audit.record(current_user(), LogActionType.CREATE_ROLE, f'Created role "{role.name}".')
            st.rerun()


# ---------- Member portal ----------

def member_portal():
    member = db.get_member(st.session_state.member_id)
    if member is None:
        st.session_state.member_id = None
        st.rerun()
        return

    st.sidebar.title(f"👋 {member.name}")
    if st.sidebar.button("Logout"):
        logout()
        st.rerun()

    plan = db.get_plan(member.plan_id)
    payments = db.get_payments(member.id)
    tab_plan, tab_payments, tab_news = st.tabs(["My plan", "Payments", "Announcements"])

    with tab_plan:
        if plan:
            c1, c2, c3 = st.columns(3)
            c1.metric("Plan", plan.name)
            c2.metric("Price", money(plan.price))
            c3.metric("Status", member.status.value)
            expiry = queries.plan_expiry(member, plan, payments)
            if expiry:
                st.info(f"Current period ends on **{utils.format_ddmmyyyy(expiry)}**.")
        else:
            st.caption("You have no active plan.")

    with tab_payments:
        for p in payments:
            c1, c2, c3 = st.columns([2, 1, 1])
            c1.write(f"{utils.format_ddmmyyyy(p.date)} - {p.description or 'Payment'} - {money(p.amount)}")
            c2.write(p.status.value)
            if p.status != PaymentStatus.PAID:
                method = c3.selectbox("Method", PAYMENT_METHODS, key=f"m_{p.id}", label_visibility="collapsed")
                if c3.button("Pay now", key=f"pay_{p.id}"):
                    tasks.confirm_payment(p, method=method)
                    st.success("Payment confirmed. Thank you!")
                    st.rerun()

    with tab_news:
        for a in db.get_announcements():
            unread = member.id not in a.read_by_member_ids
            st.markdown(f"{'🆕 ' if unread else ''}**{a.title}**\n\n{a.content}")
            if unread and st.button("Mark as read", key=f"read_{a.id}"):
                db.mark_announcement_read(a.id, member.id)
                st.rerun()
            st.divider()


PAGES = {
    "Dashboard": (dashboard_page, Permission.VIEW_DASHBOARD),
    "Members": (members_page, Permission.VIEW_MEMBERS),
    "Plans": (plans_page, Permission.VIEW_PLANS),
    "Payments": (payments_page, Permission.VIEW_PAYMENTS),
    "Expenses": (expenses_page, Permission.VIEW_EXPENSES),
    "Reports": (reports_page, Permission.VIEW_REPORTS),
    "Announcements": (announcements_page, Permission.VIEW_ANNOUNCEMENTS),
    "Notifications": (notifications_page, None),
    "Audit Log": (audit_page, Permission.VIEW_AUDIT_LOG),
    "Users & Roles": (users_page, Permission.MANAGE_ROLES),
    "Settings": (settings_page, None),
}


def main_app():
    user = current_user()
    start_session()

    logo = db.get_logo()
    if logo:
        st.sidebar.image(logo, width=120)
    st.sidebar.title("🏋️ Gym System")
    st.sidebar.caption(f"Logged in as: {user.name} ({user.email})")

    pages = [name for name, (_, perm) in PAGES.items() if perm is None or can(perm)]
    unread = st.session_state.inbox.unread_count
    if "page" not in st.session_state or st.session_state.page not in pages:
        st.session_state.page = pages[0]
    st.session_state.page = st.sidebar.radio(
        "Navigate", pages, index=pages.index(st.session_state.page),
        format_func=lambda p: f"{p} ({unread})" if p == "Notifications" and unread else p,
    )

    if st.sidebar.button("Logout"):
        logout()
        st.rerun()

    PAGES[st.session_state.page][0]()


# --------- App entry ---------

def run():
    init_once()
    require_login()

    if st.session_state.member_id:
        member_portal()
        return

    if not st.session_state.user_id or current_user() is None:
        login_screen()
        return

    # Force password change on first login after DB creation
    if db.is_force_password_change():
        force_change_password_screen()
        return

    main_app()


if __name__ == "__main__":
    run()
