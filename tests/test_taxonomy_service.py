"""
tests/test_taxonomy_service.py — Categories, Tags & Tag-Set Replacement
=========================================================================
Service-level tests for TaxonomyService against in-memory SQLite.
"""

from __future__ import annotations

import pytest
from sqlalchemy import event, select
from sqlalchemy.orm import Session

from shamba.database.models import Post, PostTag, Tag
from shamba.database.seed import DEFAULT_CATEGORIES, DEFAULT_TAGS, seed_taxonomy
from shamba.services.result import ErrorKind
from shamba.services.taxonomy_service import normalize_tag_ids


@pytest.fixture
def post_id(db_engine) -> int:
    with Session(db_engine) as session:
        post = Post(user_id="author", title="Coffee wilt", content="Leaves are yellowing.")
        session.add(post)
        session.commit()
        return post.id


def _linked_tag_ids(engine, post_id: int) -> set[int]:
    with Session(engine) as session:
        return set(session.scalars(select(PostTag.tag_id).where(PostTag.post_id == post_id)))


def _usage(engine, tag_id: int) -> int:
    with Session(engine) as session:
        return session.get(Tag, tag_id).usage_count


# ===========================================================================
# ensure_tag_set
# ===========================================================================
class TestEnsureTagSet:
    def test_replacement_is_exact(self, taxonomy, db_engine, post_id, make_tags):
        """{A,B} then {B,C} leaves exactly {B,C}, not {A,B,C}."""
        a, b, c = make_tags("A", "B", "C")
        assert taxonomy.ensure_tag_set(post_id, "post", [a, b]).ok
        result = taxonomy.ensure_tag_set(post_id, "post", [b, c])

        assert result.ok
        assert _linked_tag_ids(db_engine, post_id) == {b, c}
        assert {t["id"] for t in result.data} == {b, c}

    def test_usage_counts_follow_the_diff(self, taxonomy, db_engine, post_id, make_tags):
        a, b, c = make_tags("A", "B", "C")
        taxonomy.ensure_tag_set(post_id, "post", [a, b])
        taxonomy.ensure_tag_set(post_id, "post", [b, c])

        assert _usage(db_engine, a) == 0
        assert _usage(db_engine, b) == 1
        assert _usage(db_engine, c) == 1

    def test_repeating_the_same_set_is_a_no_op(self, taxonomy, db_engine, post_id, make_tags):
        a, b = make_tags("A", "B")
        taxonomy.ensure_tag_set(post_id, "post", [a, b])
        result = taxonomy.ensure_tag_set(post_id, "post", [b, a, a])

        assert result.ok
        assert _linked_tag_ids(db_engine, post_id) == {a, b}
        assert _usage(db_engine, a) == 1

    def test_empty_set_clears_all_tags(self, taxonomy, db_engine, post_id, make_tags):
        a, b = make_tags("A", "B")
        taxonomy.ensure_tag_set(post_id, "post", [a, b])
        result = taxonomy.ensure_tag_set(post_id, "post", [])

        assert result.ok
        assert result.data == []
        assert _linked_tag_ids(db_engine, post_id) == set()
        assert _usage(db_engine, a) == 0

    def test_unknown_tag_aborts_without_writing(self, taxonomy, db_engine, post_id, make_tags):
        """An unknown id is reported per tag and nothing changes."""
        a, b = make_tags("A", "B")
        taxonomy.ensure_tag_set(post_id, "post", [a])
        result = taxonomy.ensure_tag_set(post_id, "post", [b, 9999])

        assert not result.ok
        assert result.error.kind == ErrorKind.NOT_FOUND
        assert result.error.details == {"per_tag": {"9999": "not_found"}}
        assert _linked_tag_ids(db_engine, post_id) == {a}
        assert _usage(db_engine, b) == 0

    def test_concurrent_duplicate_link_is_a_conflict(
        self, taxonomy, db_engine, post_id, make_tags
    ):
        """A link inserted by another request mid-update yields ``duplicate``."""
        coffee, mbale = make_tags("Coffee", "Mbale")
        fired = []

        def _insert_competing_link(conn, cursor, statement, parameters, context, executemany):
            if fired or not statement.startswith("INSERT INTO post_tags"):
                return
            fired.append(True)
            raw = conn.connection.dbapi_connection.cursor()
            raw.execute(
                "INSERT INTO post_tags (post_id, tag_id, created_at) "
                "VALUES (?, ?, CURRENT_TIMESTAMP)",
                (post_id, coffee),
            )
            raw.close()

        event.listen(db_engine, "before_cursor_execute", _insert_competing_link)
        try:
            result = taxonomy.ensure_tag_set(post_id, "post", [coffee, mbale])
        finally:
            event.remove(db_engine, "before_cursor_execute", _insert_competing_link)

        assert fired
        assert result.error.kind == ErrorKind.CONFLICT
        assert result.error.code == "duplicate"
        assert _linked_tag_ids(db_engine, post_id) == set()
        assert _usage(db_engine, coffee) == 0

    def test_malformed_id_is_a_validation_error(self, taxonomy, post_id):
        result = taxonomy.ensure_tag_set(post_id, "post", ["abc"])
        assert result.error.kind == ErrorKind.VALIDATION
        assert result.error.details["invalid"] == ["abc"]

    def test_missing_subject(self, taxonomy, make_tags):
        (a,) = make_tags("A")
        result = taxonomy.ensure_tag_set(12345, "post", [a])
        assert result.error.kind == ErrorKind.NOT_FOUND

    def test_unsupported_subject_type(self, taxonomy, post_id):
        result = taxonomy.ensure_tag_set(post_id, "event", [])
        assert result.error.kind == ErrorKind.VALIDATION


class TestNormalizeTagIds:
    def test_splits_valid_and_malformed(self):
        valid, malformed = normalize_tag_ids([1, "2", 2, "x", 0, True, None])
        assert valid == [1, 2]
        assert malformed == ["x", 0, True, None]

    def test_none_is_empty(self):
        assert normalize_tag_ids(None) == ([], [])


# ===========================================================================
# Tags & categories
# ===========================================================================
class TestResolveTags:
    def test_creates_missing_and_reuses_existing(self, taxonomy, make_tags):
        (coffee,) = make_tags("Coffee")
        result = taxonomy.resolve_tags(["coffee", "Mbale", "  ", "mbale"])

        assert result.ok
        assert [t["slug"] for t in result.data] == ["coffee", "mbale"]
        assert result.data[0]["id"] == coffee

    def test_rejects_overlong_names(self, taxonomy):
        result = taxonomy.resolve_tags(["x" * 51])
        assert result.error.kind == ErrorKind.VALIDATION

    def test_rejects_too_many_tags(self, taxonomy):
        result = taxonomy.resolve_tags([f"tag {i}" for i in range(11)])
        assert result.error.kind == ErrorKind.VALIDATION


class TestCategories:
    def test_create_and_list(self, taxonomy):
        created = taxonomy.create_category("Eastern Region", color="#123abc")
        assert created.ok
        assert created.data["slug"] == "eastern-region"

        listed = taxonomy.get_forum_categories()
        assert [c["name"] for c in listed.data] == ["Eastern Region"]
        assert listed.data[0]["posts_count"] == 0

    def test_duplicate_name_is_a_conflict(self, taxonomy):
        taxonomy.create_category("Livestock")
        result = taxonomy.create_category("Livestock")
        assert result.error.kind == ErrorKind.CONFLICT
        assert result.error.code == "duplicate"

    def test_bad_color_rejected(self, taxonomy):
        result = taxonomy.create_category("Dairy", color="green")
        assert result.error.kind == ErrorKind.VALIDATION

    def test_post_counts(self, taxonomy, content, category_id):
        content.create_post("farmer", {"title": "T", "content": "C", "category_id": category_id})
        content.create_post("farmer", {"title": "D", "content": "C", "status": "draft",
                                       "category_id": category_id})
        listed = taxonomy.get_forum_categories()
        assert listed.data[0]["posts_count"] == 1


class TestPopularTags:
    def test_ordered_by_usage(self, taxonomy, content, make_tags):
        a, b = make_tags("Maize", "Beans")
        content.create_post("farmer", {"title": "1", "content": "c"}, [a, b])
        content.create_post("farmer", {"title": "2", "content": "c"}, [b])

        result = taxonomy.get_popular_tags(limit=2)
        assert [t["name"] for t in result.data] == ["Beans", "Maize"]


class TestSeed:
    def test_seed_is_idempotent(self, db_engine):
        first = seed_taxonomy(db_engine)
        second = seed_taxonomy(db_engine)
        assert first == len(DEFAULT_CATEGORIES) + len(DEFAULT_TAGS)
        assert second == 0
