import logging
from datetime import datetime

import pytest
from fastapi.testclient import TestClient

import analytics
from analytics import build_dashboard, month_label, months_back
from conftest import create_hotel, create_user, login
from database import to_document
from main import app
from schemas import Booking

NOW = datetime(2030, 6, 15, 12, 0)


def add_booking(db, hotel_id, user_id, total_cost, created_at, check_out, status="confirmed", payment_status="paid"):
    doc = to_document(
        Booking(
            user_id=user_id,
            hotel_id=hotel_id,
            first_name="Guest",
            last_name="Person",
            email="guest@example.com",
            check_in=datetime(check_out.year, check_out.month, 1),
            check_out=check_out,
            total_cost=total_cost,
            status=status,
            payment_status=payment_status,
        )
    )
    doc.update(createdAt=created_at, updatedAt=created_at)
    db["bookings"].insert_one(doc)


@pytest.fixture
def activity(db):
    owner_id = create_user(db, "owner@example.com", role="hotel_owner")
    guest_id = create_user(db, "guest@example.com")
    first = create_hotel(db, owner_id, name="First", city="Leeds", average_rating=4)
    second = create_hotel(db, owner_id, name="Second", city="York", average_rating=3)
    create_hotel(db, owner_id, name="Unrated")

    add_booking(db, first, guest_id, 300, datetime(2030, 5, 10), datetime(2030, 7, 1))
    add_booking(db, first, guest_id, 200, datetime(2030, 6, 1), datetime(2030, 6, 3), status="completed")
    add_booking(db, second, guest_id, 150, datetime(2030, 6, 2), datetime(2030, 6, 20),
                status="pending", payment_status="pending")
    add_booking(db, second, guest_id, 1000, datetime(2029, 1, 1), datetime(2029, 1, 5))
    db["favorites"].insert_one({"userId": guest_id, "hotelId": first})
    return {"first": first, "second": second}


def test_months_back():
    assert months_back(datetime(2030, 6, 15)) == datetime(2029, 7, 1)
    assert months_back(datetime(2030, 1, 31)) == datetime(2029, 2, 1)
    assert months_back(datetime(2030, 3, 1), count=3) == datetime(2030, 1, 1)
    assert month_label(2030, 4) == "2030-04"


def test_kpis(db, activity):
    kpis = build_dashboard(db, now=NOW)["kpis"]

    assert kpis == {
        "totalUsers": 2,
        "totalHotels": 3,
        "activeBookings": 2,
        "totalRevenue": 1500,
        "avgHotelRating": 3.5,
        "totalFavorites": 1,
    }


def test_monthly_charts_cover_last_twelve_months(db, activity):
    charts = build_dashboard(db, now=NOW)["charts"]

    assert charts["bookingsByMonth"] == [{"month": "2030-05", "value": 1}, {"month": "2030-06", "value": 2}]
    assert charts["revenueByMonth"] == [{"month": "2030-05", "value": 300}, {"month": "2030-06", "value": 200}]


def test_top_hotels(db, activity):
    charts = build_dashboard(db, now=NOW)["charts"]

    by_revenue = charts["topHotelsByRevenue"]
    assert [(h["name"], h["revenue"]) for h in by_revenue] == [("Second", 1000), ("First", 500)]
    assert by_revenue[1]["city"] == "Leeds"
    assert {h["hotelId"]: h["bookings"] for h in charts["topHotelsByBookings"]} == {
        activity["first"]: 2,
        activity["second"]: 2,
    }


def test_empty_dashboard(db):
    body = build_dashboard(db, now=NOW)
    assert body["kpis"]["totalRevenue"] == 0
    assert body["kpis"]["avgHotelRating"] == 0
    assert body["charts"]["bookingsByMonth"] == []
    assert body["timestamp"] == "2030-06-15T12:00:00Z"


def test_dashboard_endpoint_is_admin_only(activity, login_as):
    admin, _ = login_as("admin")
    owner, _ = login_as("hotel_owner")

    response = admin.get("/api/admin/dashboard")

    assert response.status_code == 200
    assert response.json()["kpis"]["totalHotels"] == 3
    assert owner.get("/api/admin/dashboard").status_code == 403


def test_dashboard_crash_is_logged_as_500(db, monkeypatch, caplog):
    def broken_dashboard(db):
        raise RuntimeError("aggregation failed")

    monkeypatch.setattr(analytics, "build_dashboard", broken_dashboard)
    create_user(db, "admin@example.com", role="admin")

    admin = TestClient(app, raise_server_exceptions=False)
    login(admin, "admin@example.com")
    with caplog.at_level(logging.INFO, logger="main"):
        response = admin.get("/api/admin/dashboard")
    admin.close()

    assert response.status_code == 500
    assert response.json()["message"] == "Internal Server Error"
    assert "GET /api/admin/dashboard 500" in caplog.text
