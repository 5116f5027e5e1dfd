"""
Unit tests for QueryBuilder chaining and to_sql().
"""

import pytest

from pgchain.config.options import SafetyOptions
from pgchain.errors import DbError, ErrorCode
from pgchain.query.builder import QueryBuilder
from pgchain.query.execution import ExecutionContext

pytestmark = pytest.mark.unit


@pytest.fixture
def context(source):
    return ExecutionContext(source=source)


@pytest.fixture
def users(context):
    return QueryBuilder("users", "public", context)


class TestChaining:
    """Builder methods return the builder and accumulate state."""

    def test_methods_return_self(self, users):
        """Every chain method returns the same builder."""
        assert users.select("id").eq("id", 1).order("id").limit(1) is users

    def test_end_to_end_single(self, users):
        """The canonical single-row lookup."""
        compiled = users.select().eq("id", 1).single().to_sql()
        assert compiled.text == 'SELECT * FROM "public"."users" WHERE "id" = $1 LIMIT $2'
        assert compiled.values == (1, 1)

    def test_all_filters(self, users):
        """Each filter method appends one clause in call order."""
        (
            users.select()
            .eq("a", 1)
            .neq("b", 2)
            .gt("c", 3)
            .gte("d", 4)
            .lt("e", 5)
            .lte("f", 6)
            .like("g", "x%")
            .ilike("h", "y%")
            .is_("i", None)
            .in_("j", [1, 2])
            .not_in("k", {3})
            .is_distinct("l", 7)
            .contains("m", ["t"])
            .contained_by("n", ["u"])
            .overlaps("o", ["v"])
            .not_("p", "eq", 8)
            .text_search("q", "cats", search_type="phrase")
            .match({"r": 9})
            .or_([("s", "eq", 10), {"column": "t", "op": "lt", "value": 11}])
        )
        text = users.to_sql().text
        assert len(users.state.filters) == 19
        assert '"a" = $1 AND "b" <> $2' in text
        assert '"j" IN ($10, $11)' in text
        assert '"k" NOT IN ($12)' in text
        assert "phraseto_tsquery" in text
        assert '("s" = $21 OR "t" < $22)' in text

    def test_select_after_write_sets_returning(self, users):
        """select() after insert() becomes RETURNING."""
        compiled = users.insert({"name": "Ada"}).select("id, name").to_sql()
        assert compiled.text == (
            'INSERT INTO "public"."users" ("name") VALUES ($1) RETURNING "id", "name"'
        )

    def test_returning(self, users):
        """returning() works for deletes."""
        compiled = users.delete().eq("id", 1).returning().to_sql()
        assert compiled.text.endswith("RETURNING *")

    def test_upsert_with_string_conflict_target(self, users):
        """on_conflict accepts a comma-separated string."""
        compiled = users.upsert({"a": 1, "b": 2, "c": 3}, on_conflict="a, b").to_sql()
        assert 'ON CONFLICT ("a", "b") DO UPDATE SET "c" = EXCLUDED."c"' in compiled.text

    def test_upsert_ignore_duplicates(self, users):
        """ignore_duplicates=True gives DO NOTHING."""
        compiled = users.upsert({"a": 1, "b": 2}, ["a"], ignore_duplicates=True).to_sql()
        assert compiled.text.endswith('ON CONFLICT ("a") DO NOTHING')

    def test_update(self, users):
        """update() with filters."""
        compiled = users.update({"name": "Ada"}).eq("id", 1).to_sql()
        assert compiled.values == ("Ada", 1)

    def test_rpc_select_columns(self, context):
        """select() after rpc() picks result columns."""
        builder = QueryBuilder("get_users", "public", context).rpc("get_users", [5])
        compiled = builder.select("id").to_sql()
        assert compiled.text == 'SELECT "id" FROM "public"."get_users"($1)'

    def test_range_and_order(self, users):
        """range() and order() compose."""
        compiled = users.select().order("name", ascending=False).range(0, 9).to_sql()
        assert compiled.text.endswith('ORDER BY "name" DESC LIMIT $1 OFFSET $2')
        assert compiled.values == (10, 0)

    def test_safety_options_are_applied(self, source):
        """to_sql() uses the context's safety limits."""
        context = ExecutionContext(source=source, safety=SafetyOptions(max_in_elements=2))
        builder = QueryBuilder("users", "public", context).select().in_("id", [1, 2, 3])
        with pytest.raises(DbError, match="max_in_elements"):
            builder.to_sql()


class TestDeferredValidation:
    """Bad input is recorded, never raised by the chain itself."""

    def test_bad_column_recorded(self, users):
        """An invalid filter column does not raise until compile."""
        users.select().eq("id; DROP TABLE users", 1)
        assert users.state.filters == []
        assert users.state.pending_error.code == ErrorCode.VALIDATION
        with pytest.raises(DbError):
            users.to_sql()

    def test_bad_limit_recorded(self, users):
        """limit(-1) is recorded."""
        users.select().limit(-1)
        assert users.state.limit_count is None
        assert "Invalid limit" in users.state.pending_error.message

    def test_bad_range_recorded(self, users):
        """range(5, 1) is recorded."""
        users.select().range(5, 1)
        assert users.state.range_start is None
        assert users.state.pending_error is not None

    def test_bad_count_mode(self, users):
        """Unknown count modes are recorded."""
        users.select(count="approximate")
        assert "count mode" in users.state.pending_error.message

    def test_bad_in_values(self, users):
        """in_() requires a list-like, not a string."""
        users.select().in_("id", "123")
        assert "in() values" in users.state.pending_error.message

    def test_bad_or_entry(self, users):
        """Malformed or_() entries are recorded."""
        users.select().or_([("a", "eq")])
        assert users.state.pending_error is not None

    def test_bad_rpc_args(self, context):
        """rpc args must be positional."""
        builder = QueryBuilder("fn", "public", context).rpc("fn", {"a": 1})
        assert "rpc args" in builder.state.pending_error.message

    def test_first_error_wins(self, users):
        """Later errors do not replace the first."""
        users.select().eq("bad col", 1).limit(-1)
        assert "Invalid column" in users.state.pending_error.message
