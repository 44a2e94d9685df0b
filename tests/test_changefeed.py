"""Tests for the in-process change feed and its SQLAlchemy capture."""

from app.db import models
from app.db.changefeed import DELETE, INSERT, UPDATE, ChangeEvent, ChangeFeed
from app.db.session import SessionLocal, change_feed


def collect(feed, table, **kwargs):
    received = []
    subscription = feed.subscribe(table, received.append, **kwargs)
    return received, subscription


# ── Matching ──────────────────────────────────────────────────────


class TestChangeEvent:
    def test_empty_filter_matches_everything(self):
        assert ChangeEvent("tasks", INSERT, {"id": "t1"}).matches({})

    def test_filter_on_new_row(self):
        change = ChangeEvent("tasks", INSERT, {"id": "t1", "user_id": "u1"})
        assert change.matches({"user_id": "u1"})
        assert not change.matches({"user_id": "u2"})

    def test_filter_on_old_row(self):
        change = ChangeEvent("profiles", UPDATE, {"organization_id": None}, {"organization_id": "org-1"})
        assert change.matches({"organization_id": "org-1"})


class TestChangeFeed:
    def test_publish_to_matching_subscribers(self):
        feed = ChangeFeed()
        mine, _ = collect(feed, "tasks", filters={"user_id": "u1"})
        everything, _ = collect(feed, "tasks")
        other_table, _ = collect(feed, "daily_logs")

        delivered = feed.publish(ChangeEvent("tasks", INSERT, {"id": "t1", "user_id": "u1"}))
        feed.publish(ChangeEvent("tasks", INSERT, {"id": "t2", "user_id": "u2"}))

        assert delivered == 2
        assert [c.record["id"] for c in mine] == ["t1"]
        assert [c.record["id"] for c in everything] == ["t1", "t2"]
        assert other_table == []

    def test_event_type_filter(self):
        feed = ChangeFeed()
        deletes, _ = collect(feed, "tasks", events=(DELETE,))
        feed.publish(ChangeEvent("tasks", INSERT, {"id": "t1"}))
        feed.publish(ChangeEvent("tasks", DELETE, {"id": "t1"}, {"id": "t1"}))
        assert [c.event_type for c in deletes] == [DELETE]

    def test_unsubscribe(self):
        feed = ChangeFeed()
        received, subscription = collect(feed, "tasks")
        subscription.unsubscribe()
        assert feed.publish(ChangeEvent("tasks", INSERT, {"id": "t1"})) == 0
        assert received == []
        assert feed.subscription_count == 0


# ── Session capture ───────────────────────────────────────────────


class TestSessionCapture:
    def test_commit_publishes_insert(self):
        received, subscription = collect(change_feed, "organizations")
        try:
            with SessionLocal() as db:
                db.add(models.Organization(name="Acme"))
                db.commit()
        finally:
            subscription.unsubscribe()
        assert len(received) == 1
        assert received[0].event_type == INSERT
        assert received[0].record["name"] == "Acme"

    def test_rollback_publishes_nothing(self):
        received, subscription = collect(change_feed, "organizations")
        try:
            with SessionLocal() as db:
                db.add(models.Organization(name="Acme"))
                db.flush()
                db.rollback()
        finally:
            subscription.unsubscribe()
        assert received == []

    def test_update_carries_old_row(self):
        with SessionLocal() as db:
            db.add(models.AuthUser(id="u1", email="u1@example.com", hashed_password="x"))
            db.add(models.Profile(id="u1", email="u1@example.com", organization_id="org-1"))
            db.commit()

        received, subscription = collect(change_feed, "profiles", filters={"organization_id": "org-1"})
        try:
            with SessionLocal() as db:
                profile = db.get(models.Profile, "u1")
                profile.organization_id = None
                db.commit()
        finally:
            subscription.unsubscribe()

        assert len(received) == 1
        assert received[0].event_type == UPDATE
        assert received[0].record["organization_id"] is None
        assert received[0].old_record["organization_id"] == "org-1"
