"""
Query language: tokenizing, parsing, date resolution and conversion to filters.
"""

from datetime import date, datetime

import pytest

from taskflow.exceptions import ValidationError
from taskflow.schemas import NO_DUE_DATE, TaskFilter
from taskflow.services import peripheral
from taskflow.services.query_language import (
    TokenType,
    compile_query,
    is_query_language,
    parse_date,
    parse_date_range,
    parse_query,
    search_tasks,
    tokenize,
)


NOW = datetime(2026, 3, 15, 10, 30)


def token_types(source):
    return [token.type for token in tokenize(source)]


class TestTokenize:

    def test_field_term(self):
        assert token_types("status:pending") == [
            TokenType.FIELD, TokenType.COLON, TokenType.VALUE, TokenType.EOF,
        ]

    def test_negation_and_mentions(self):
        assert token_types("-tag:x @~back") == [
            TokenType.MINUS, TokenType.FIELD, TokenType.COLON, TokenType.VALUE,
            TokenType.AT, TokenType.TILDE, TokenType.VALUE, TokenType.EOF,
        ]

    def test_negative_offset_is_a_value(self):
        tokens = tokenize("due:-1w")
        assert (tokens[2].type, tokens[2].value) == (TokenType.VALUE, "-1w")

    def test_comparison_operators(self):
        tokens = tokenize("due:<=today")
        assert (tokens[2].type, tokens[2].value) == (TokenType.OPERATOR, "<=")

    def test_quoted_value(self):
        tokens = tokenize('@"Backend API" tag:\'on call\'')
        assert tokens[1].value == "Backend API"
        assert tokens[4].value == "on call"

    def test_unterminated_quote(self):
        with pytest.raises(ValidationError) as exc_info:
            tokenize('@"Backend')
        assert exc_info.value.error_code == "query_syntax"


class TestParse:

    def test_terms_and_free_text(self):
        parsed = parse_query("status:pending fix @backend login -tag:wontfix")

        assert [str(term) for term in parsed.terms] == ["status:pending", "@backend", "-tag:wontfix"]
        assert parsed.text == "fix login"

    def test_fuzzy_mention(self):
        term = parse_query("@~back").terms[0]
        assert (term.field, term.value, term.fuzzy, term.mention) == ("project", "back", True, True)

    def test_operator_is_kept(self):
        term = parse_query("due:>2026-01-01").terms[0]
        assert (term.field, term.operator, term.value) == ("due", ">", "2026-01-01")

    def test_field_word_without_colon_is_text(self):
        parsed = parse_query("update the project plan")
        assert parsed.terms == []
        assert parsed.text == "update the project plan"

    def test_and_is_implicit(self):
        parsed = parse_query("status:pending AND priority:high")
        assert [term.field for term in parsed.terms] == ["status", "priority"]

    def test_every_syntax_error_reported(self):
        with pytest.raises(ValidationError) as exc_info:
            parse_query("status: @ OR tag:x OR priority:")
        messages = [detail["msg"] for detail in exc_info.value.details]
        assert len(messages) == 4
        assert "expected a value for status" in messages
        assert "expected a project name after @" in messages

    def test_query_type(self):
        assert parse_query("login").query_type == "simple"
        assert parse_query("@backend login").query_type == "project_mention"
        assert parse_query("@backend tag:x").query_type == "query_language"

    @pytest.mark.parametrize("source, expected", [
        ("status:pending", True),
        ("fix PRIORITY:high", True),
        ("@backend", True),
        ("-tag:x", True),
        ("meeting at 10:30", False),
        ("email me@example.com", False),
    ])
    def test_detection(self, source, expected):
        assert is_query_language(source) is expected


class TestParseDate:

    @pytest.mark.parametrize("value", [
        "2026-01-15", "2026/01/15", "15-01-2026", "15/01/2026",
    ])
    def test_layouts(self, value):
        assert parse_date(value, NOW) == datetime(2026, 1, 15)

    def test_timestamp_keeps_time(self):
        assert parse_date("2026-01-15T08:45:00", NOW) == datetime(2026, 1, 15, 8, 45)

    @pytest.mark.parametrize("value, expected", [
        ("today", datetime(2026, 3, 15)),
        ("TOMORROW", datetime(2026, 3, 16)),
        ("yesterday", datetime(2026, 3, 14)),
        ("+7d", datetime(2026, 3, 22)),
        ("7d", datetime(2026, 3, 22)),
        ("-1w", datetime(2026, 3, 8)),
        ("+2M", datetime(2026, 5, 15)),
        ("1y", datetime(2027, 3, 15)),
        ("+20h", datetime(2026, 3, 16)),
        ("-90m", datetime(2026, 3, 15)),
    ])
    def test_relative(self, value, expected):
        assert parse_date(value, NOW) == expected

    def test_month_offset_clamps_day(self):
        assert parse_date("+1M", datetime(2026, 1, 31)) == datetime(2026, 2, 28)

    def test_none(self):
        assert parse_date("None", NOW) is None

    @pytest.mark.parametrize("value", ["invalid-date", "2026-13-01", "+3q", ""])
    def test_invalid(self, value):
        with pytest.raises(ValidationError):
            parse_date(value, NOW)


class TestParseDateRange:

    def test_plain_date_covers_the_day(self):
        span = parse_date_range("2026-01-15", now=NOW)
        assert span.start == datetime(2026, 1, 15)
        assert span.end.date() == date(2026, 1, 15)
        assert span.end.hour == 23

    def test_strict_bounds_exclude_the_day(self):
        assert parse_date_range("2026-01-15", "<", NOW).end.date() == date(2026, 1, 14)
        assert parse_date_range("2026-01-15", ">", NOW).start == datetime(2026, 1, 16)

    def test_inclusive_bounds(self):
        assert parse_date_range("2026-01-15", "<=", NOW).end.date() == date(2026, 1, 15)
        assert parse_date_range("2026-01-15", ">=", NOW).start == datetime(2026, 1, 15)

    def test_range(self):
        span = parse_date_range("2026-01-01..2026-01-31", now=NOW)
        assert (span.start.date(), span.end.date()) == (date(2026, 1, 1), date(2026, 1, 31))

    def test_relative_range(self):
        span = parse_date_range("today..+3d", now=NOW)
        assert (span.start.date(), span.end.date()) == (date(2026, 3, 15), date(2026, 3, 18))

    def test_none_is_unset(self):
        assert parse_date_range("none", now=NOW).unset is True

    @pytest.mark.parametrize("value, operator", [
        ("none", "<"),
        ("2026-02-01..2026-01-01", ":"),
        ("2026-01-01..", ":"),
        ("today", "!="),
    ])
    def test_rejected(self, value, operator):
        with pytest.raises(ValidationError):
            parse_date_range(value, operator, NOW)


class TestCompileQuery:

    @pytest.fixture
    def backend(self, make_project):
        make_project("Frontend")
        return make_project("Backend", aliases=["be"])

    def test_status_priority_and_tags(self, session):
        task_filter = compile_query(session, "status:in_progress priority:HIGH tag:bug tag:api -tag:wontfix")

        assert task_filter.status == "in_progress"
        assert task_filter.priority == "high"
        assert task_filter.tags == ["bug", "api"]
        assert task_filter.exclude_tags == ["wontfix"]

    @pytest.mark.parametrize("mention", ["@Backend", "@be", "project:be", "@~back"])
    def test_project_resolution(self, session, backend, mention):
        assert compile_query(session, mention).project_id == backend.id

    def test_project_by_id(self, session, backend):
        assert compile_query(session, f"@{backend.id}").project_id == backend.id

    def test_dates(self, session):
        task_filter = compile_query(session, "due:<+7d created:>=2026-03-01", now=NOW)
        assert task_filter.due_date_to == date(2026, 3, 21)
        assert task_filter.due_date_from is None
        assert task_filter.created_from == datetime(2026, 3, 1)

    def test_due_none(self, session):
        assert compile_query(session, "due:none").due_date_from == NO_DUE_DATE

    def test_base_settings_carry_over(self, session):
        base = TaskFilter(sort_by="priority", limit=5, tags=["team"])
        task_filter = compile_query(session, "tag:bug login", base=base)

        assert (task_filter.sort_by, task_filter.limit) == ("priority", 5)
        assert task_filter.tags == ["team", "bug"]
        assert task_filter.search_query == "login"

    def test_every_bad_term_reported(self, session, backend):
        with pytest.raises(ValidationError) as exc_info:
            compile_query(session, "status:done @nowhere -status:pending created:none tag:ok")

        details = exc_info.value.details
        assert exc_info.value.error_code == "invalid_query"
        assert len(details) == 4
        assert {detail["type"] for detail in details} >= {"validation_error", "not_found"}

    def test_fuzzy_mention_without_match(self, session, backend):
        with pytest.raises(ValidationError):
            compile_query(session, "@~zzzz")


class TestSearchTasks:

    def test_runs_and_records(self, session, make_project, make_task):
        backend = make_project("Backend")
        make_task("Fix login", project=backend, tags=["bug"], priority="high")
        make_task("Fix logout", project=backend, tags=["bug", "wontfix"])
        make_task("Fix signup", tags=["bug"])

        found = search_tasks(session, "@Backend tag:bug -tag:wontfix fix")

        assert [t.title for t in found] == ["Fix login"]
        entry = peripheral.list_search_history(session)[0]
        assert entry.query_type == "query_language"
        assert entry.project_filter == "Backend"
        assert entry.result_count == 1

    def test_result_count_ignores_pagination(self, session, make_task):
        for title in ("one", "two", "three"):
            make_task(title, status="completed")

        found = search_tasks(session, "status:completed", base=TaskFilter(limit=1))

        assert len(found) == 1
        assert peripheral.list_search_history(session)[0].result_count == 3

    def test_relative_due_dates(self, session, make_task):
        make_task("soon", due_date=date(2026, 3, 17))
        make_task("later", due_date=date(2026, 4, 30))
        make_task("undated")

        assert [t.title for t in search_tasks(session, "due:today..+1w", now=NOW)] == ["soon"]
        assert [t.title for t in search_tasks(session, "due:none", now=NOW)] == ["undated"]
