"""
app.py
Streamlit front-end for trainers: clients, memberships, renewals, license gate.
Run: streamlit run app.py
"""

from __future__ import annotations

import logging
import os
from datetime import date
from urllib.parse import quote

import pandas as pd
import streamlit as st

import auth
import db
import licensing
import utils
from clients import ClientRepository
from errors import GymCoachError, LicenseError, StoreError, ValidationError
from models import DOCUMENT_TYPES, DURATION_OPTIONS, ROLES

SUPPORT_WHATSAPP = os.environ.get("GYM_COACH_SUPPORT_WHATSAPP", "+584121234567")
SUPPORT_EMAIL = os.environ.get("GYM_COACH_SUPPORT_EMAIL", "support@gymcoach.app")

STATUS_LABELS = {"active": "🟢 Active", "expiring": "🟡 Expiring", "expired": "🔴 Expired"}

logging.basicConfig(
    level=os.environ.get("GYM_COACH_LOG_LEVEL", "INFO"),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)

st.set_page_config(page_title="Gym Coach", layout="centered")


def init_once():
    # Initialize DB + default superuser if needed
    if "db_ready" not in st.session_state:
        db.init_db(auth.hash_password("admin123"))
        st.session_state.db_ready = True


def require_login():
    if "user" not in st.session_state:
        st.session_state.user = None


def repo() -> ClientRepository:
    user = st.session_state.user
    current = st.session_state.get("repo")
    if current is None or current.trainer_id != user.id:
        current = ClientRepository(user.id)
        current.fetch_clients()
        st.session_state.repo = current
    return current


def logout():
    if st.session_state.get("repo"):
        st.session_state.repo.clear_state()
    st.session_state.user = None
    st.session_state.repo = None


def login_screen():
    st.title("🔐 Trainer Login")
    username = st.text_input("Username")
    password = st.text_input("Password", type="password")
    if st.button("Login", type="primary"):
        user = auth.login(username.strip(), password)
        if user:
            st.session_state.user = user
            st.rerun()
        else:
            st.error("Invalid username or password.")


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
            auth.change_password(st.session_state.user.username, new1)
            st.success("Password updated. You can continue.")
            st.rerun()


def redeem_form(key_prefix: str):
    key = st.text_input("License key", key=f"{key_prefix}_license_key")
    if st.button("Activate license", key=f"{key_prefix}_activate"):
        try:
            licensing.redeem_license(key, st.session_state.user.id)
            st.success("License activated.")
            st.rerun()
        except LicenseError as e:
            st.error(str(e))


def license_expired_screen():
    st.title("⛔ License expired")
    st.write("Your license is missing or has expired. Contact us to renew it.")

    user = st.session_state.user
    msg = f"Hello, I'm {user.full_name or user.username} and I want to renew my Gym Coach license."
    st.link_button("WhatsApp", utils.whatsapp_link(SUPPORT_WHATSAPP, msg))
    st.link_button(
        "Email",
        f"mailto:{SUPPORT_EMAIL}?subject={quote('License renewal')}&body={quote(msg)}",
    )

    st.divider()
    redeem_form("gate")

    if st.button("Sign out"):
        logout()
        st.rerun()


# ---------- Pages ----------

def dashboard_page():
    st.header("📊 Dashboard")
    r = repo()
    today = r.today()

    stats = r.stats()
    c1, c2, c3, c4 = st.columns(4)
    c1.metric("Clients", stats["total"])
    c2.metric("Active", stats["active"])
    c3.metric("Expiring", stats["expiring"])
    c4.metric("Expired", stats["expired"])

    search = st.text_input("Search (name / ID / phone)")
    status_filter = st.selectbox("Status", ["all", "active", "expiring", "expired"])
    rows = r.search(search, status_filter)
    if not rows:
        st.caption("No clients found." if search or status_filter != "all" else "No clients yet.")
        return

    df = pd.DataFrame([c.as_row(today) for c in rows])
    df["status"] = df["status"].map(STATUS_LABELS)
    st.dataframe(df, use_container_width=True, hide_index=True)

    pending = [c for c in rows if c.status(today) != "active"]
    if pending:
        st.subheader("Send reminders")
        for c in pending:
            st.link_button(
                f"WhatsApp {c.full_name} ({STATUS_LABELS[c.status(today)]})",
                utils.whatsapp_link(c.phone, utils.reminder_message(c, today)),
            )


def client_form(existing=None):
    r = repo()
    st.subheader(f"✏️ Edit {existing.full_name}" if existing else "➕ Add Client")

    col1, col2 = st.columns(2)
    with col1:
        types = list(DOCUMENT_TYPES.keys())
        document_type = st.selectbox(
            "Document type", types,
            index=types.index(existing.document_type) if existing else 0,
            format_func=lambda t: f"{t} - {DOCUMENT_TYPES[t]}",
        )
        cedula = st.text_input("ID number", value=existing.cedula if existing else "")
        full_name = st.text_input("Full name", value=existing.full_name if existing else "")
        phone = st.text_input("Phone", value=existing.phone if existing else "")
    with col2:
        start_date = st.date_input("Start date", value=existing.start_date if existing else r.today())
        duration = st.selectbox(
            "Duration (months)", DURATION_OPTIONS,
            index=DURATION_OPTIONS.index(existing.duration_months)
            if existing and existing.duration_months in DURATION_OPTIONS else 0,
        )
        st.info(f"End date: **{utils.calc_end_date(utils.format_iso(start_date), duration)}**")

    if st.button("Save", type="primary"):
        fields = dict(
            document_type=document_type, cedula=cedula, full_name=full_name, phone=phone,
            start_date=utils.format_iso(start_date), duration_months=duration,
        )
        try:
            if existing:
                r.update_client(existing.id, **fields)
                st.session_state.edit_client_id = None
                st.success("Client updated.")
            else:
                r.create_client(**fields)
                st.success("Client added.")
            st.rerun()
        except ValidationError as e:
            for m in e.messages:
                st.error(m)
        except GymCoachError as e:
            st.error(f"Could not save client: {e}")


def clients_page():
    st.header("👥 Clients")
    r = repo()
    if r.error:
        st.error(r.error)

    options = {f"{c.full_name} ({c.identity})": c.id for c in r.clients}
    chosen = st.selectbox("Client", ["(none)"] + list(options.keys()))
    if chosen != "(none)":
        client_id = options[chosen]
        c1, c2 = st.columns(2)
        with c1:
            if st.button("Edit"):
                st.session_state.edit_client_id = client_id
                st.rerun()
        with c2:
            confirm = st.checkbox("Confirm delete", value=False, key="del_confirm")
            if st.button("Delete", disabled=not confirm):
                try:
                    r.delete_client(client_id)
                    st.success("Client deleted.")
                    st.rerun()
                except GymCoachError as e:
                    st.error(f"Could not delete client: {e}")

    st.divider()

    editing = r.get(st.session_state.get("edit_client_id"))
    if editing:
        client_form(existing=editing)
        if st.button("Cancel edit"):
            st.session_state.edit_client_id = None
            st.rerun()
    else:
        client_form()


def renewals_page():
    st.header("🔁 Renew membership")
    r = repo()
    if not r.clients:
        st.info("No clients yet.")
        return

    today = r.today()
    options = {f"{c.full_name} ({c.identity})": c for c in r.clients}
    client = options[st.selectbox("Client", list(options.keys()))]
    st.write(
        f"Current end: **{client.end_date.strftime('%d/%m/%Y')}** | "
        f"Status: **{STATUS_LABELS[client.status(today)]}**"
    )

    duration = st.selectbox("New duration (months)", DURATION_OPTIONS)
    start_date = st.date_input("Start date", value=today)
    _, new_end = utils.renewal_dates(duration, start_date, today)
    st.info(f"New end date: **{new_end}**")

    if st.button("Renew", type="primary"):
        try:
            r.renew_client(client.id, duration, utils.format_iso(start_date))
            st.success("Membership renewed.")
            st.rerun()
        except GymCoachError as e:
            st.error(f"Could not renew: {e}")


def reports_page():
    st.header("🧾 Reports")
    r = repo()
    if r.clients:
        st.download_button(
            "Download clients.csv",
            data=utils.clients_to_csv_bytes(r.clients, r.today()),
            file_name=f"clients_{utils.today_iso(r.today())}.csv",
            mime="text/csv",
        )
    else:
        st.caption("No clients to export.")


def settings_page():
    st.header("⚙️ Settings")
    user = st.session_state.user

    st.subheader("Change password")
    p1 = st.text_input("New password", type="password")
    p2 = st.text_input("Confirm new password", type="password")
    if st.button("Update password", type="primary"):
        errors = auth.validate_new_password(p1, p2)
        for e in errors:
            st.error(e)
        if not errors:
            auth.change_password(user.username, p1)
            st.success("Password updated.")

    if not user.is_superuser:
        st.divider()
        st.subheader("License")
        lic = licensing.fetch_license(user.id)
        if lic:
            st.write(
                f"Key: `{lic.license_key}` | {licensing.license_display_status(lic)} | "
                f"Expires: **{lic.expiry_date.strftime('%d/%m/%Y')}** "
                f"({licensing.days_remaining(lic, date.today())} days left)"
            )
        redeem_form("settings")

    if user.is_superuser:
        st.divider()
        st.subheader("Users")
        st.dataframe(
            pd.DataFrame([{"username": u.username, "name": u.full_name, "role": u.role} for u in auth.list_users()]),
            use_container_width=True, hide_index=True,
        )
        username = st.text_input("Username", key="new_username")
        full_name = st.text_input("Full name", key="new_full_name")
        password = st.text_input("Password", type="password", key="new_password")
        role = st.selectbox("Role", ROLES)
        if st.button("Create user"):
            try:
                auth.create_user(username, password, full_name, role)
                st.success("User created.")
                st.rerun()
            except ValidationError as e:
                st.error(str(e))

    st.divider()
    st.subheader("Sample data")
    st.caption("Insert 3 sample clients (active, expiring, expired).")
    if st.button("Insert sample data"):
        try:
            utils.insert_sample_data(user.id)
            st.session_state.repo = None
            st.success("Sample data inserted.")
            st.rerun()
        except GymCoachError as e:
            st.error(f"Could not insert sample data: {e}")


def main_app():
    user = st.session_state.user
    st.sidebar.title("🏋️ Gym Coach")
    st.sidebar.caption(f"Logged in as: {user.username} ({user.role})")

    pages = ["Dashboard", "Clients", "Renewals", "Reports", "Settings"]
    if "page" not in st.session_state:
        st.session_state.page = "Dashboard"
    st.session_state.page = st.sidebar.radio("Navigate", pages, index=pages.index(st.session_state.page))

    if st.sidebar.button("Logout"):
        logout()
        st.rerun()

    if st.session_state.page == "Dashboard":
        dashboard_page()
    elif st.session_state.page == "Clients":
        clients_page()
    elif st.session_state.page == "Renewals":
        renewals_page()
    elif st.session_state.page == "Reports":
        reports_page()
    elif st.session_state.page == "Settings":
        settings_page()


# --------- App entry ---------

def run():
    init_once()
    require_login()

    user = st.session_state.user
    if user is not None and db.is_force_password_change() and user.is_superuser:
        force_change_password_screen()
        return

    try:
        lic = licensing.fetch_license(user.id) if user and not user.is_superuser else None
    except StoreError as e:
        st.error(f"Could not load your license: {e}")
        return

    state = licensing.evaluate_access(user, lic, date.today())
    if state == licensing.LOGIN_REQUIRED:
        login_screen()
    elif state == licensing.LICENSE_EXPIRED:
        license_expired_screen()
    else:
        main_app()


if __name__ == "__main__":
    run()
