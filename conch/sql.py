"""SQLite statement commands.

Each SQL verb is its own command (``select * from t;``). A statement without
a terminating semicolon keeps reading lines until one ends with ``;``.
"""

import sqlite3

from .commands import CommandSpec, Param, TableProvider
from .context import (
    CommandResult,
    Continuation,
    ContinuationResult,
    ExecutionContext,
    StateKey,
)
from .parser import ParsedCommand
from .render import TableValue

CONNECTION = StateKey("sql.connection", sqlite3.Connection)

VERBS = ("select", "values", "with", "insert", "update", "delete", "create", "alter", "drop")
RAW = "sql"
_OBJECT_KINDS = ["table", "view", "index", "trigger"]


def ends_with_semicolon(sql: str) -> bool:
    return sql.rstrip().endswith(";")


def strip_terminal_semicolon(sql: str) -> str:
    stripped = sql.rstrip()
    while stripped.endswith(";"):
        stripped = stripped[:-1].rstrip()
    return stripped.strip()


class SqlProvider(TableProvider):
    def __init__(self):
        specs = [
            CommandSpec(
                "connect",
                self._connect,
                (Param("database", optional=True),),
                help="Open a SQLite database file (default :memory:).",
            ),
            CommandSpec("disconnect", self._disconnect, help="Close the current database."),
            CommandSpec(
                RAW,
                self._statement,
                (Param("sql", optional=True, variadic=True),),
                help="Run a complete SQL statement.",
                usage="sql <statement>",
            ),
        ]
        for verb in VERBS:
            specs.append(
                CommandSpec(
                    verb,
                    self._statement,
                    (Param("sql", optional=True, variadic=True),),
                    help="Run a statement starting with this verb; end it with ';'.",
                    usage=f"{verb} <sql tail> (omit leading keyword)",
                )
            )
        super().__init__("sql", specs)

    def subcommands(self, name: str) -> list[str]:
        if name in ("create", "alter", "drop"):
            return list(_OBJECT_KINDS)
        return []

    # -- Connection ----------------------------------------------------------

    def _connect(self, context: ExecutionContext, cmd: ParsedCommand, database):
        database = database or ":memory:"
        previous = context.get(CONNECTION)
        if previous is not None:
            previous.close()
        try:
            connection = sqlite3.connect(database)
        except sqlite3.Error as e:
            context.error(f"Cannot open {database}: {e}")
            return CommandResult.FAILURE
        context.put(CONNECTION, connection)
        context.print(f"Connected to {database}")
        return CommandResult.SUCCESS

    def _disconnect(self, context: ExecutionContext, cmd: ParsedCommand):
        connection = context.get(CONNECTION)
        if connection is None:
            context.warn("Not connected.")
            return CommandResult.SUCCESS
        connection.close()
        context.remove(CONNECTION)
        context.print("Disconnected.")
        return CommandResult.SUCCESS

    # -- Statements ----------------------------------------------------------

    def _statement(self, context: ExecutionContext, cmd: ParsedCommand, *words):
        name = cmd.name
        sql = cmd.tail
        if not ends_with_semicolon(sql) and context.allow_continuation:
            self._start_continuation(context, name, sql)
            return CommandResult.SUCCESS
        sql = strip_terminal_semicolon(sql)
        if not sql:
            context.error("SQL is empty.")
            return CommandResult.FAILURE
        statement = sql if name == RAW else f"{name} {sql}"
        return self.execute(context, statement)

    def _start_continuation(self, context: ExecutionContext, name: str, sql: str):
        buffer = [sql] if sql else []

        def on_line(line: str, ctx: ExecutionContext) -> ContinuationResult:
            buffer.append(line)
            combined = "\n".join(buffer)
            if not ends_with_semicolon(combined):
                return ContinuationResult.continue_without_execution()
            return ContinuationResult.execute_and_end(combined)

        context.continue_with(Continuation(name, on_line))

    def execute(self, context: ExecutionContext, statement: str) -> CommandResult:
        connection = context.get(CONNECTION)
        if connection is None:
            context.error("Not connected.")
            return CommandResult.FAILURE
        try:
            cursor = connection.execute(statement)
            if cursor.description is not None:
                headers = [column[0] for column in cursor.description]
                rows = cursor.fetchall()
                context.render(TableValue(headers, rows))
                context.print(f"({len(rows)} {'row' if len(rows) == 1 else 'rows'})")
            else:
                connection.commit()
                context.print(f"Updated {max(cursor.rowcount, 0)} rows.")
        except sqlite3.Error as e:
            context.error(f"SQL failed: {e}")
            return CommandResult.FAILURE
        return CommandResult.SUCCESS
