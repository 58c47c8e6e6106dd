"""Exception types and JSON report generation for agent runs."""

import json
from datetime import datetime, timezone


class ConchError(Exception):
    """Base class for setup and runtime failures reported outside a command."""


class ConfigError(ConchError):
    """Raised for invalid configuration (bad types, unknown backend, etc.)."""


class ReportCollector:
    """Accumulates events during agent runs for JSON report output."""

    def __init__(self):
        self.events: list[dict] = []
        self.tool_stats = {"succeeded": 0, "failed": 0}
        self.llm_calls = 0
        self.total_llm_time = 0.0
        self.total_tool_time = 0.0
        self.truncated_responses = 0
        self.continuations = 0
        self.loop_breaks = 0
        self.max_turn_seen = 0
        self._last_report: dict | None = None

    def record_llm_call(
        self,
        turn: int,
        duration: float,
        token_est: int,
        finish_reason: str,
    ):
        self.llm_calls += 1
        self.total_llm_time += duration
        if turn > self.max_turn_seen:
            self.max_turn_seen = turn
        self.events.append(
            {
                "turn": turn,
                "type": "llm_call",
                "duration_s": round(duration, 3),
                "prompt_tokens_est": token_est,
                "finish_reason": finish_reason,
            }
        )

    def record_tool_call(
        self,
        turn: int,
        line: str,
        succeeded: bool,
        duration: float,
        output_length: int,
    ):
        self.total_tool_time += duration
        self.tool_stats["succeeded" if succeeded else "failed"] += 1
        self.events.append(
            {
                "turn": turn,
                "type": "tool_call",
                "line": line,
                "succeeded": succeeded,
                "duration_s": round(duration, 3),
                "output_length": output_length,
            }
        )

    def record_truncated_response(self, turn: int, reason: str):
        """A reply cut off by the model (``length``) or mid-fence (``fence``)."""
        self.truncated_responses += 1
        self.events.append({"turn": turn, "type": "truncated_response", "reason": reason})

    def record_continuation(self, turn: int, owner: str):
        self.continuations += 1
        self.events.append({"turn": turn, "type": "continuation", "owner": owner})

    def record_loop_break(self, turn: int, calls: list[str]):
        self.loop_breaks += 1
        self.events.append({"turn": turn, "type": "loop_break", "calls": list(calls)})

    def build_report(
        self,
        *,
        task: str,
        model: str,
        backend: str,
        outcome: str,
        answer: str | None,
        turns: int,
        error_message: str | None = None,
    ) -> dict:
        result: dict = {"outcome": outcome, "answer": answer}
        if error_message is not None:
            result["error_message"] = error_message

        return {
            "version": 1,
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "task": task,
            "model": model,
            "backend": backend,
            "result": result,
            "stats": {
                "turns": turns,
                "tool_calls_total": sum(self.tool_stats.values()),
                "tool_calls_succeeded": self.tool_stats["succeeded"],
                "tool_calls_failed": self.tool_stats["failed"],
                "truncated_responses": self.truncated_responses,
                "continuations": self.continuations,
                "loop_breaks": self.loop_breaks,
                "llm_calls": self.llm_calls,
                "total_llm_time_s": round(self.total_llm_time, 3),
                "total_tool_time_s": round(self.total_tool_time, 3),
            },
            "timeline": self.events,
        }

    def finalize(self, **kwargs) -> dict:
        """Build the report and keep it for write()."""
        self._last_report = self.build_report(**kwargs)
        return self._last_report

    def write(self, path: str):
        with open(path, "w", encoding="utf-8") as f:
            json.dump(self._last_report, f, indent=2)
            f.write("\n")
