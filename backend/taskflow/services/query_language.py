"""
Query language for task filters.

A query is a whitespace separated list of terms, combined with AND:

    status:pending priority:high @backend tag:bug -tag:wontfix due:<+7d login

- field:value for status, priority, project, tag, due, created and updated
- field:<value, field:<=value, field:>value and field:>=value for dates
- field:start..end for an inclusive date range
- -tag:value excludes a tag
- @name selects a project by id, name or alias; @~name takes the closest
  fuzzy match among project names and aliases
- any other word is free text, searched as a case-insensitive substring

Dates accept YYYY-MM-DD and a few other layouts, today, tomorrow and
yesterday, offsets such as +3d, -1w or 2M, and "none" for an unset due date.
Quote values that contain spaces: @"Backend API".
"""

import calendar
import re
from dataclasses import dataclass, field
from datetime import datetime, time, timedelta
from enum import Enum

from sqlalchemy.orm import Session
from sqlmodel import select

from taskflow.config import get_settings
from taskflow.exceptions import NotFoundError, ValidationError, validate_model
from taskflow.logging_config import get_logger
from taskflow.models import PRIORITIES, TASK_STATUSES, Project
from taskflow.schemas import NO_DUE_DATE, SearchHistoryData, TaskFilter, TaskRead
from taskflow.schemas._fields import check_tags
from taskflow.services import fuzzy, hierarchy, peripheral
from taskflow.services.query import count_tasks, list_tasks

logger = get_logger(__name__)

FIELDS = ("status", "priority", "project", "tag", "due", "created", "updated")
OPERATORS = ("<=", ">=", "!=", "<", ">", "=")
KEYWORDS = ("AND", "OR", "NOT")

DATE_FORMATS = (
    "%Y-%m-%d",
    "%Y/%m/%d",
    "%d-%m-%Y",
    "%d/%m/%Y",
    "%Y-%m-%dT%H:%M:%S",
    "%Y-%m-%d %H:%M:%S",
)
RELATIVE_DAYS = {"today": 0, "tomorrow": 1, "yesterday": -1}
OFFSET_PATTERN = re.compile(r"^([+-]?)(\d+)([mhdwMy])$")
OFFSET_UNITS = {"m": "minutes", "h": "hours", "d": "days", "w": "weeks"}
RANGE_SEPARATOR = ".."

# Filter field prefixes for each date term
DATE_FIELDS = {"due": "due_date", "created": "created", "updated": "updated"}

QUERY_HINT = re.compile(
    r"(?:^|\s)(?:@|-?(?:%s):)" % "|".join(FIELDS),
    re.IGNORECASE,
)


def is_query_language(source: str) -> bool:
    """True when the input uses a field term or a project mention."""
    return bool(QUERY_HINT.search(source.strip()))


# =============================================================================
# Tokens
# =============================================================================

class TokenType(Enum):
    FIELD = "field"
    VALUE = "value"
    COLON = "colon"
    AT = "at"
    TILDE = "tilde"
    MINUS = "minus"
    OPERATOR = "operator"
    KEYWORD = "keyword"
    EOF = "eof"


@dataclass(frozen=True)
class Token:
    type: TokenType
    value: str
    pos: int


def _syntax_detail(pos: int, message: str) -> dict:
    return {"loc": ["query", str(pos)], "msg": message, "type": "query_syntax"}


def _is_word_char(ch: str) -> bool:
    return ch.isalnum() or ch in "_-.+"


def _operator_at(source: str, pos: int) -> str | None:
    for operator in OPERATORS:
        if source.startswith(operator, pos):
            return operator
    return None


def _read_quoted(source: str, start: int) -> tuple[str, int]:
    quote = source[start]
    chars = []
    pos = start + 1
    while pos < len(source):
        ch = source[pos]
        if ch == "\\" and source[pos + 1:pos + 2] == quote:
            chars.append(quote)
            pos += 2
            continue
        if ch == quote:
            return "".join(chars), pos + 1
        chars.append(ch)
        pos += 1
    raise ValidationError(
        f"Unterminated quoted string at position {start}",
        details=[_syntax_detail(start, "unterminated quoted string")],
        error_code="query_syntax",
    )


def _word_token(word: str, pos: int) -> Token:
    if word in KEYWORDS:
        return Token(TokenType.KEYWORD, word, pos)
    if word.lower() in FIELDS:
        return Token(TokenType.FIELD, word.lower(), pos)
    return Token(TokenType.VALUE, word, pos)


def tokenize(source: str) -> list[Token]:
    """Split a query into tokens, ending with an EOF token."""
    tokens: list[Token] = []
    pos = 0
    length = len(source)

    while pos < length:
        ch = source[pos]
        if ch.isspace():
            pos += 1
            continue

        if ch == ":":
            tokens.append(Token(TokenType.COLON, ch, pos))
            pos += 1
        elif ch == "@":
            tokens.append(Token(TokenType.AT, ch, pos))
            pos += 1
        elif ch == "~":
            tokens.append(Token(TokenType.TILDE, ch, pos))
            pos += 1
        elif ch == "-" and source[pos + 1:pos + 2].isalpha():
            tokens.append(Token(TokenType.MINUS, ch, pos))
            pos += 1
        elif ch in "\"'":
            value, end = _read_quoted(source, pos)
            tokens.append(Token(TokenType.VALUE, value, pos))
            pos = end
        elif _operator_at(source, pos):
            operator = _operator_at(source, pos)
            tokens.append(Token(TokenType.OPERATOR, operator, pos))
            pos += len(operator)
        elif ch.isalnum() or ch == "+":
            end = pos
            while end < length and _is_word_char(source[end]):
                end += 1
            tokens.append(_word_token(source[pos:end], pos))
            pos = end
        else:
            # Anything else runs to the next separator as a bare value
            end = pos
            while end < length and not source[end].isspace() and source[end] not in ":@":
                end += 1
            tokens.append(Token(TokenType.VALUE, source[pos:end], pos))
            pos = end

    tokens.append(Token(TokenType.EOF, "", length))
    return tokens


# =============================================================================
# Parsing
# =============================================================================

@dataclass(frozen=True)
class QueryTerm:
    field: str
    value: str
    operator: str = ":"
    negated: bool = False
    fuzzy: bool = False
    mention: bool = False  # written as @name
    pos: int = 0

    def __str__(self) -> str:
        if self.mention:
            return ("@~" if self.fuzzy else "@") + self.value
        operator = self.operator if self.operator == ":" else ":" + self.operator
        return f"{'-' if self.negated else ''}{self.field}{operator}{self.value}"


@dataclass
class ParsedQuery:
    terms: list[QueryTerm] = field(default_factory=list)
    words: list[str] = field(default_factory=list)

    @property
    def text(self) -> str:
        return " ".join(self.words)

    @property
    def project_mentions(self) -> list[QueryTerm]:
        return [term for term in self.terms if term.mention]

    def terms_for(self, name: str) -> list[QueryTerm]:
        return [term for term in self.terms if term.field == name]

    @property
    def query_type(self) -> str:
        """How the query is recorded in search history."""
        if any(not term.mention for term in self.terms):
            return "query_language"
        if self.terms:
            return "project_mention"
        return "simple"


class _ParseFailure(Exception):
    def __init__(self, message: str, pos: int):
        super().__init__(message)
        self.message = message
        self.pos = pos


class _Parser:
    """Recursive descent over the token list. Collects every syntax error."""

    def __init__(self, tokens: list[Token]):
        self.tokens = tokens
        self.pos = 0
        self.errors: list[dict] = []

    def current(self) -> Token:
        return self.tokens[self.pos]

    def peek(self) -> Token:
        return self.tokens[min(self.pos + 1, len(self.tokens) - 1)]

    def advance(self) -> Token:
        token = self.tokens[self.pos]
        if token.type is not TokenType.EOF:
            self.pos += 1
        return token

    def parse(self) -> ParsedQuery:
        parsed = ParsedQuery()
        while self.current().type is not TokenType.EOF:
            try:
                self.parse_term(parsed)
            except _ParseFailure as exc:
                self.errors.append(_syntax_detail(exc.pos, exc.message))
                self.skip_to_next_term()
        return parsed

    def parse_term(self, parsed: ParsedQuery) -> None:
        token = self.current()

        if token.type is TokenType.AT:
            parsed.terms.append(self.parse_mention())
        elif token.type is TokenType.MINUS:
            parsed.terms.append(self.parse_negated())
        elif token.type is TokenType.FIELD and self.peek().type in (TokenType.COLON, TokenType.OPERATOR):
            parsed.terms.append(self.parse_field())
        elif token.type is TokenType.KEYWORD:
            self.advance()
            if token.value != "AND":
                raise _ParseFailure(
                    f"{token.value} is not supported; terms are always combined with AND", token.pos
                )
        else:
            parsed.words.append(self.advance().value)

    def parse_mention(self) -> QueryTerm:
        at = self.advance()
        fuzzy_match = False
        if self.current().type is TokenType.TILDE:
            self.advance()
            fuzzy_match = True

        token = self.current()
        if token.type not in (TokenType.VALUE, TokenType.FIELD):
            raise _ParseFailure("expected a project name after @", token.pos)
        self.advance()
        return QueryTerm("project", token.value, fuzzy=fuzzy_match, mention=True, pos=at.pos)

    def parse_negated(self) -> QueryTerm:
        minus = self.advance()
        token = self.current()
        if token.type is not TokenType.FIELD:
            raise _ParseFailure("expected a field name after -", token.pos)
        self.advance()
        if self.current().type is not TokenType.COLON:
            raise _ParseFailure(f"expected ':' after {token.value}", self.current().pos)
        self.advance()
        return QueryTerm(token.value, self.parse_value(token.value), negated=True, pos=minus.pos)

    def parse_field(self) -> QueryTerm:
        name = self.advance()
        if self.current().type is TokenType.COLON:
            self.advance()
        operator = ":"
        if self.current().type is TokenType.OPERATOR:
            operator = self.advance().value
        return QueryTerm(name.value, self.parse_value(name.value), operator=operator, pos=name.pos)

    def parse_value(self, field_name: str) -> str:
        token = self.current()
        if token.type in (TokenType.VALUE, TokenType.FIELD):
            self.advance()
            return token.value
        raise _ParseFailure(f"expected a value for {field_name}", token.pos)

    def skip_to_next_term(self) -> None:
        boundaries = (TokenType.AT, TokenType.MINUS, TokenType.FIELD, TokenType.EOF)
        while self.current().type not in boundaries:
            self.advance()


def parse_query(source: str) -> ParsedQuery:
    """
    Parse a query into terms and free-text words.

    Raises ValidationError (error_code "query_syntax") listing every syntax
    error with its position.
    """
    parser = _Parser(tokenize(source.strip()))
    parsed = parser.parse()
    if parser.errors:
        raise ValidationError(
            f"Invalid query: {parser.errors[0]['msg']}",
            details=parser.errors,
            error_code="query_syntax",
        )
    return parsed


# =============================================================================
# Dates
# =============================================================================

@dataclass(frozen=True)
class DateRange:
    start: datetime | None = None
    end: datetime | None = None
    unset: bool = False  # "none": the date is not set


def _start_of_day(moment: datetime) -> datetime:
    return datetime.combine(moment.date(), time.min)


def _end_of_day(moment: datetime) -> datetime:
    return datetime.combine(moment.date(), time.max)


def _add_months(moment: datetime, months: int) -> datetime:
    """Shift by calendar months, clamping the day to the target month's length."""
    index = moment.month - 1 + months
    year, month = moment.year + index // 12, index % 12 + 1
    day = min(moment.day, calendar.monthrange(year, month)[1])
    return moment.replace(year=year, month=month, day=day)


def _apply_offset(now: datetime, amount: int, unit: str) -> datetime:
    if unit in OFFSET_UNITS:
        return now + timedelta(**{OFFSET_UNITS[unit]: amount})
    if unit == "M":
        return _add_months(now, amount)
    return _add_months(now, amount * 12)


def parse_date(value: str, now: datetime | None = None) -> datetime | None:
    """
    Parse an absolute or relative date.

    Returns None for "none". Keywords and offsets resolve against now (UTC
    by default, like stored timestamps) and land on the start of that day.
    """
    value = value.strip()
    lowered = value.lower()
    now = now or datetime.utcnow()

    if lowered == NO_DUE_DATE:
        return None
    if lowered in RELATIVE_DAYS:
        return _start_of_day(now + timedelta(days=RELATIVE_DAYS[lowered]))

    match = OFFSET_PATTERN.match(value)
    if match:
        sign, amount, unit = match.groups()
        amount = -int(amount) if sign == "-" else int(amount)
        return _start_of_day(_apply_offset(now, amount, unit))

    for layout in DATE_FORMATS:
        try:
            return datetime.strptime(value, layout)
        except ValueError:
            continue

    raise ValidationError(
        f"Unable to parse date '{value}': expected YYYY-MM-DD, "
        "today/tomorrow/yesterday or an offset such as +3d",
        error_code="invalid_date",
    )


def _parse_bound(value: str, now: datetime | None) -> datetime:
    moment = parse_date(value, now)
    if moment is None:
        raise ValidationError(
            "'none' cannot be combined with a comparison or a range",
            error_code="invalid_date",
        )
    return moment


def parse_date_range(value: str, operator: str = ":", now: datetime | None = None) -> DateRange:
    """
    Resolve a date term into inclusive bounds.

    A plain date covers that whole day; < and > exclude the named day,
    <= and >= include it; start..end covers both ends.
    """
    if operator == "<":
        return DateRange(end=_start_of_day(_parse_bound(value, now)) - timedelta(microseconds=1))
    if operator == "<=":
        return DateRange(end=_end_of_day(_parse_bound(value, now)))
    if operator == ">":
        return DateRange(start=_end_of_day(_parse_bound(value, now)) + timedelta(microseconds=1))
    if operator == ">=":
        return DateRange(start=_parse_bound(value, now))
    if operator not in (":", "="):
        raise ValidationError(f"Operator '{operator}' is not supported for dates", error_code="invalid_date")

    if RANGE_SEPARATOR in value:
        parts = value.split(RANGE_SEPARATOR)
        if len(parts) != 2 or not all(part.strip() for part in parts):
            raise ValidationError(f"Invalid date range '{value}'", error_code="invalid_date")
        start, end = (_parse_bound(part, now) for part in parts)
        if start > end:
            raise ValidationError(f"Date range '{value}' ends before it starts", error_code="invalid_date")
        return DateRange(start=start, end=_end_of_day(end))

    moment = parse_date(value, now)
    if moment is None:
        return DateRange(unset=True)
    return DateRange(start=moment, end=_end_of_day(moment))


# =============================================================================
# Conversion
# =============================================================================

def _require_plain(term: QueryTerm) -> None:
    if term.negated:
        raise ValidationError(f"Negated {term.field} terms are not supported")
    if term.operator not in (":", "="):
        raise ValidationError(f"{term.field} only supports exact matches, got '{term.operator}'")


def _closest_project(session: Session, value: str) -> Project:
    """Best fuzzy match among project names and aliases."""
    threshold = get_settings().fuzzy_threshold
    best, best_score = None, -1
    for project in session.execute(select(Project).order_by(Project.name)).scalars():
        candidates = [project.name, *(project.aliases or [])]
        value_score = max(fuzzy.score(value, text) for text in candidates)
        if value_score >= threshold and value_score > best_score:
            best, best_score = project, value_score
    if best is None:
        raise NotFoundError("Project", f"~{value}")
    logger.debug(f"@~{value} matched project '{best.name}' ({best_score})")
    return best


def _apply_term(session: Session, term: QueryTerm, updates: dict, now: datetime | None) -> None:
    if term.field in ("status", "priority"):
        _require_plain(term)
        allowed = TASK_STATUSES if term.field == "status" else PRIORITIES
        value = term.value.lower()
        if value not in allowed:
            raise ValidationError(
                f"Invalid {term.field} '{term.value}'; expected one of {', '.join(allowed)}"
            )
        updates[term.field] = value

    elif term.field == "project":
        _require_plain(term)
        if term.fuzzy:
            project = _closest_project(session, term.value)
        else:
            project = hierarchy.resolve_project(session, term.value)
        updates["project_id"] = project.id

    elif term.field == "tag":
        if term.operator not in (":", "="):
            raise ValidationError(f"tag only supports exact matches, got '{term.operator}'")
        try:
            tag = check_tags([term.value])[0]
        except ValueError as exc:
            raise ValidationError(str(exc)) from exc
        updates["exclude_tags" if term.negated else "tags"].append(tag)

    else:
        if term.negated:
            raise ValidationError(f"Negated {term.field} terms are not supported")
        prefix = DATE_FIELDS[term.field]
        span = parse_date_range(term.value, term.operator, now)
        if span.unset:
            if term.field != "due":
                raise ValidationError(f"'{term.value}' only applies to due dates")
            updates["due_date_from"] = NO_DUE_DATE
            updates["due_date_to"] = None
            return
        start, end = span.start, span.end
        if term.field == "due":
            start = start.date() if start else None
            end = end.date() if end else None
        if start is not None:
            updates[f"{prefix}_from"] = start
        if end is not None:
            updates[f"{prefix}_to"] = end


def to_task_filter(
    session: Session,
    parsed: ParsedQuery,
    base: TaskFilter | None = None,
    now: datetime | None = None,
) -> TaskFilter:
    """
    Turn a parsed query into a TaskFilter.

    Terms override the matching fields of base, whose sort, pagination and
    search mode carry over. Free text replaces base's search query. Every
    term is checked; the raised ValidationError lists each bad term.
    """
    base = base or TaskFilter()
    updates: dict = {"tags": list(base.tags), "exclude_tags": list(base.exclude_tags)}
    problems = []

    for term in parsed.terms:
        try:
            _apply_term(session, term, updates, now)
        except (ValidationError, NotFoundError) as exc:
            problems.append({"loc": ["query", str(term.pos)], "msg": exc.message, "type": exc.error_code})

    if problems:
        raise ValidationError(
            f"Invalid query: {problems[0]['msg']}",
            details=problems,
            error_code="invalid_query",
        )

    if parsed.words:
        updates["search_query"] = parsed.text
    return validate_model(TaskFilter, {**base.model_dump(), **updates})


def compile_query(
    session: Session,
    source: str,
    base: TaskFilter | None = None,
    now: datetime | None = None,
) -> TaskFilter:
    """Parse and convert a query in one step."""
    task_filter = to_task_filter(session, parse_query(source), base, now)
    logger.debug(f"Compiled query '{source}' into {task_filter.model_dump(exclude_defaults=True)}")
    return task_filter


def search_tasks(
    session: Session,
    source: str,
    base: TaskFilter | None = None,
    now: datetime | None = None,
) -> list[TaskRead]:
    """Run a query and record it in the search history."""
    parsed = parse_query(source)
    task_filter = to_task_filter(session, parsed, base, now)
    results = list_tasks(session, task_filter)

    if source.strip():
        peripheral.record_search(session, SearchHistoryData(
            query_text=source.strip(),
            search_mode=task_filter.search_mode,
            fuzzy_threshold=task_filter.fuzzy_threshold,
            query_type=parsed.query_type,
            project_filter=",".join(term.value for term in parsed.project_mentions),
            result_count=count_tasks(session, task_filter),
        ))

    logger.info(f"Query '{source}' matched {len(results)} tasks")
    return results
