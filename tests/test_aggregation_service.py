"""
tests/test_aggregation_service.py — Trending Tags, Stats & Contributors
========================================================================
"""

from __future__ import annotations

from datetime import UTC, datetime, timedelta
from unittest.mock import patch

from sqlalchemy import update
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session

from shamba.database.models import Post, PostTag, Question
from shamba.services.aggregation_service import AggregationService, decorate_events
from shamba.services.result import ErrorKind


class TestTrendingTags:
    def test_window_ranks_recent_associations(self, aggregation, content, make_tags):
        maize, beans = make_tags("Maize", "Beans")
        content.create_post("f", {"title": "1", "content": "c"}, [maize, beans])
        content.create_post("f", {"title": "2", "content": "c"}, [beans])
        content.create_question("f", {"title": "3", "content": "c"}, [beans])

        result = aggregation.get_trending_tags(days=7)

        assert result.data["source"] == "window"
        assert [(t["name"], t["recent_uses"]) for t in result.data["tags"]] == [
            ("Beans", 3), ("Maize", 1),
        ]

    def test_old_associations_fall_back_to_usage_count(
        self, aggregation, content, make_tags, db_engine
    ):
        (maize,) = make_tags("Maize")
        content.create_post("f", {"title": "1", "content": "c"}, [maize])
        with Session(db_engine) as session:
            session.execute(
                update(PostTag).values(created_at=datetime.now(UTC) - timedelta(days=60))
            )
            session.commit()

        result = aggregation.get_trending_tags(days=7)

        assert result.data["source"] == "usage_count"
        assert [t["name"] for t in result.data["tags"]] == ["Maize"]
        assert result.data["tags"][0]["recent_uses"] is None

    def test_failing_window_query_falls_back(self, aggregation, content, make_tags):
        (maize,) = make_tags("Maize")
        content.create_post("f", {"title": "1", "content": "c"}, [maize])

        boom = OperationalError("SELECT", {}, Exception("window unavailable"))
        with patch.object(AggregationService, "_trending_window", side_effect=boom):
            result = aggregation.get_trending_tags()

        assert result.ok
        assert result.data["source"] == "usage_count"

    def test_empty_community(self, aggregation):
        result = aggregation.get_trending_tags()
        assert result.data["tags"] == []
        assert result.data["window_days"] == 7


class TestCommunityStats:
    def test_counts(self, aggregation, content, events, make_event):
        content.create_post("a", {"title": "T", "content": "C"})
        content.create_post("a", {"title": "D", "content": "C", "status": "draft"})
        q = content.create_question("b", {"title": "Q", "content": "c"}).data
        answer = content.add_answer(q["id"], "c", "A").data
        content.accept_answer(q["id"], answer["id"], "b")
        eid = make_event()
        events.register_for_event(eid, "d")

        stats = aggregation.get_community_stats().data

        assert stats["total_posts"] == 1
        assert stats["total_questions"] == 1
        assert stats["answered_questions"] == 1
        assert stats["total_answers"] == 1
        assert stats["upcoming_events"] == 1
        assert stats["total_registrations"] == 1
        assert stats["active_members_30d"] == 3


class TestTopContributors:
    def test_ranked_by_points(self, aggregation, content, config):
        q = content.create_question("asker", {"title": "Q", "content": "c"}).data
        best = content.add_answer(q["id"], "expert", "A").data
        content.add_answer(q["id"], "helper", "B")
        content.accept_answer(q["id"], best["id"], "asker")

        ranked = aggregation.get_top_contributors().data

        assert [r["user_id"] for r in ranked] == ["expert", "helper"]
        assert ranked[0]["points"] == (
            config.reputation.answer_posted + config.reputation.answer_accepted
        )
        assert ranked[0]["answers_count"] == 1
        assert ranked[0]["answers_accepted"] == 1


class TestUserStats:
    def test_counts_for_one_member(self, aggregation, content, engagement, config):
        content.create_post("farmer", {"title": "Out", "content": "c"})
        content.create_post("farmer", {"title": "Draft", "content": "c", "status": "draft"})
        content.create_post("neighbour", {"title": "Theirs", "content": "c"})
        mine = content.create_question("farmer", {"title": "Q", "content": "c"}).data
        content.add_answer(mine["id"], "expert", "Spray copper.")
        content.add_answer(mine["id"], "neighbour", "Prune early.")
        theirs = content.create_question("expert", {"title": "Q2", "content": "c"}).data
        content.add_answer(theirs["id"], "farmer", "Mulch.")

        stats = aggregation.get_user_stats("farmer").data

        assert stats == {
            "user_id": "farmer",
            "posts_count": 1,
            "questions_count": 1,
            "answers_count": 1,
            "reputation_points": config.reputation.answer_posted,
            "answers_accepted": 0,
            "unread_notifications": 2,
        }

        engagement.mark_all_read("farmer")
        assert aggregation.get_user_stats("farmer").data["unread_notifications"] == 0

    def test_unknown_member_is_all_zero(self, aggregation):
        stats = aggregation.get_user_stats("newcomer").data
        assert stats["posts_count"] == 0
        assert stats["reputation_points"] == 0
        assert stats["unread_notifications"] == 0

    def test_requires_login(self, aggregation):
        assert aggregation.get_user_stats(None).error.kind == ErrorKind.UNAUTHORIZED


class TestRecentActivity:
    def test_merged_newest_first_with_counts(self, aggregation, content, db_engine):
        old_post = content.create_post("a", {"title": "Old post", "content": "c"}).data
        content.create_post("a", {"title": "Hidden", "content": "c", "status": "draft"})
        question = content.create_question("b", {"title": "Question", "content": "c"}).data
        new_post = content.create_post("c", {"title": "New post", "content": "c"}).data
        content.add_comment(new_post["id"], "b", "Nice")
        content.add_answer(question["id"], "a", "Try this")

        now = datetime.now(UTC)
        with Session(db_engine) as session:
            for model, ident, age in (
                (Post, old_post["id"], 3),
                (Question, question["id"], 2),
                (Post, new_post["id"], 1),
            ):
                session.execute(
                    update(model).where(model.id == ident)
                    .values(created_at=now - timedelta(hours=age))
                )
            session.commit()

        feed = aggregation.get_recent_activity().data

        assert [(i["type"], i["title"]) for i in feed] == [
            ("post", "New post"), ("question", "Question"), ("post", "Old post"),
        ]
        assert feed[0]["comments_count"] == 1
        assert feed[1]["answers_count"] == 1
        assert feed[1]["status"] == "open"
        assert feed[2]["comments_count"] == 0

    def test_limit_applies_to_the_merged_feed(self, aggregation, content):
        for i in range(3):
            content.create_post("a", {"title": f"P{i}", "content": "c"})
            content.create_question("a", {"title": f"Q{i}", "content": "c"})

        assert len(aggregation.get_recent_activity(limit=4).data) == 4

    def test_empty(self, aggregation):
        assert aggregation.get_recent_activity().data == []


class TestDecorateEvents:
    def test_capacity_fields(self, db_engine, events, make_event):
        limited = make_event(max_participants=2)
        open_ended = make_event()
        events.register_for_event(limited, "a")
        events.register_for_event(limited, "b")

        with Session(db_engine) as session:
            decorated = decorate_events(session, [
                {"id": limited, "max_participants": 2},
                {"id": open_ended, "max_participants": None},
            ])

        assert decorated[0] == {
            "id": limited, "max_participants": 2,
            "participants_count": 2, "spots_left": 0, "capacity_state": "full",
        }
        assert decorated[1]["capacity_state"] == "open"
        assert decorated[1]["spots_left"] is None
