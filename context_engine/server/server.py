"""
Context Engine MCP Server.

Transport: stdio only.

Expected MCP Tool Return Format:
{
    "ok": bool,
    "results": Any,          # Present if ok is True
    "error": str            # Present if ok is False
}
"""

import argparse
import logging
import os
import signal
import sys
from pathlib import Path
from typing import Annotated, Any, Callable, Dict, List, Optional

from dotenv import load_dotenv
from fastmcp import FastMCP
from mcp.types import ToolAnnotations
from pydantic import BaseModel, Field

from ..advisor.validator import ProposedAction
from ..common.config import CANDIDATE_QUEUE_PATH, ensure_directories, load_config
from ..common.errors import ContextEngineError
from ..common.schemas import ContextScope, EntityType
from ..common.store import LocalContextStore
from ..scribe.review_queue import CandidateQueue
from ..service import ContextService

logger = logging.getLogger("context_engine.mcp")


def _error(exc: Exception) -> Dict[str, Any]:
    if isinstance(exc, ContextEngineError):
        return {"ok": False, "error": str(exc), "error_type": type(exc).__name__}
    return {"ok": False, "error": str(exc)}


def _required(value, name: str):
    if value is None or value == "":
        raise ValueError(f"{name} is required for this action")
    return value


def _dump(result: Any) -> Any:
    if isinstance(result, BaseModel):
        return result.model_dump(mode="json")
    if isinstance(result, list):
        return [_dump(r) for r in result]
    return result


class ContextServerApp:
    """
    Main application class for the MCP server.

    Extraction results are only persisted when a queued candidate is
    confirmed; every other tool reads the store or bumps a counter.
    """
    def __init__(
            self,
            service: ContextService,
            candidate_queue: CandidateQueue,
            mcp_server_name: str = "context_engine",
        ) -> None:
        """
        Initializes the ContextServerApp.
        Args:
            service (ContextService): Engine entry points over a context store.
            candidate_queue (CandidateQueue): Queue of extracted candidates awaiting confirmation.
            mcp_server_name (str): The name of the MCP server.
        """
        self.service = service
        self.queue = candidate_queue
        self.mcp = FastMCP(name=mcp_server_name)

        # ---------- MCP Tools: Extract Context ---------- #
        @self.mcp.tool(
            name="extract_context",
            description=(
                "Extract candidate decisions, goals, preferences and known issues from conversation text. "
                "Nothing is stored unless enqueue is set and a candidate is later confirmed."
            ),
            annotations=ToolAnnotations(readOnlyHint=False, destructiveHint=False)
        )
        async def tool_extract_context(
            text: Annotated[str, Field(description="conversation text to analyze")],
            owner_id: Annotated[str, Field(description="owner of the extracted context")],
            enqueue: Annotated[bool, Field(description="queue the candidates for confirmation")] = False,
        ) -> Dict[str, Any]:
            try:
                result = self.service.extract_context(text, owner_id)
                response = {"ok": True, "results": result.to_dict(), "total": result.total}
                if enqueue:
                    response["queued_ids"] = self.queue.add(result, owner_id)
                return response
            except Exception as e:
                return _error(e)

        # ---------- MCP Tools: Candidate Queue ---------- #
        @self.mcp.tool(
            name="list_candidates",
            description="List candidates waiting for confirmation.",
            annotations=ToolAnnotations(readOnlyHint=True, destructiveHint=False)
        )
        async def tool_list_candidates(
            owner_id: Annotated[Optional[str], Field(description="only list this owner's candidates")] = None,
        ) -> Dict[str, Any]:
            pending = self.queue.get_pending(owner_id)
            return {
                "ok": True,
                "results": [item.to_dict() for item in pending],
                "stats": self.queue.get_stats(),
            }

        @self.mcp.tool(
            name="confirm_candidate",
            description="Confirm a queued candidate and store it as a context item.",
            annotations=ToolAnnotations(readOnlyHint=False, destructiveHint=False)
        )
        async def tool_confirm_candidate(
            candidate_id: Annotated[str, Field(description="queue item id returned by extract_context")],
            scope: Annotated[str, Field(
                description="scope of the new item: 'global', 'project:<id>' or 'workflow:<name>'"
            )] = "global",
        ) -> Dict[str, Any]:
            try:
                stored = self.queue.confirm(
                    candidate_id, self.service.store, ContextScope.from_string(scope)
                )
                return {"ok": True, "results": stored.model_dump(mode="json")}
            except Exception as e:
                return _error(e)

        @self.mcp.tool(
            name="reject_candidate",
            description="Reject a queued candidate. Nothing is stored.",
            annotations=ToolAnnotations(readOnlyHint=False, destructiveHint=False)
        )
        async def tool_reject_candidate(
            candidate_id: Annotated[str, Field(description="queue item id returned by extract_context")],
        ) -> Dict[str, Any]:
            try:
                return {"ok": True, "results": self.queue.reject(candidate_id).to_dict()}
            except Exception as e:
                return _error(e)

        # ---------- MCP Tools: Validate Action ---------- #
        @self.mcp.tool(
            name="validate_action",
            description=(
                "Check a proposed action against the owner's decisions, automation preferences, "
                "known issues and in-progress goals. Read-only."
            ),
            annotations=ToolAnnotations(readOnlyHint=True, destructiveHint=False)
        )
        async def tool_validate_action(
            owner_id: Annotated[str, Field(description="owner whose context applies")],
            action_type: Annotated[str, Field(description="kind of action, e.g. 'configure' or 'install'")],
            target: Annotated[str, Field(description="what the action operates on")],
            parameters: Annotated[Optional[Dict[str, Any]], Field(description="action parameters")] = None,
            project_id: Annotated[Optional[str], Field(
                description="ignore project-scoped context of other projects"
            )] = None,
        ) -> Dict[str, Any]:
            try:
                action = ProposedAction(action_type=action_type, target=target, parameters=dict(parameters or {}))
                validation = self.service.validate_action(action, owner_id, project_id)
                return {"ok": True, "results": validation.to_dict()}
            except Exception as e:
                return _error(e)

        @self.mcp.tool(
            name="record_decision_application",
            description="Record that decisions were applied. Increments each decision's applied count.",
            annotations=ToolAnnotations(readOnlyHint=False, destructiveHint=False)
        )
        async def tool_record_decision_application(
            decision_ids: Annotated[List[str], Field(description="ids of the applied decisions")],
        ) -> Dict[str, Any]:
            try:
                decisions = self.service.record_applied_decisions(decision_ids)
                return {"ok": True, "results": [d.model_dump(mode="json") for d in decisions]}
            except Exception as e:
                return _error(e)

        @self.mcp.tool(
            name="record_preference_observation",
            description="Record that a stored preference was observed again.",
            annotations=ToolAnnotations(readOnlyHint=False, destructiveHint=False)
        )
        async def tool_record_preference_observation(
            preference_id: Annotated[str, Field(description="id of the observed preference")],
        ) -> Dict[str, Any]:
            try:
                preference = self.service.observe_preference(preference_id)
                return {"ok": True, "results": preference.model_dump(mode="json")}
            except Exception as e:
                return _error(e)

        # ---------- MCP Tools: Conflicts and Ranking ---------- #
        @self.mcp.tool(
            name="detect_conflicts",
            description="Find contradicting preferences and changed decisions in the owner's context.",
            annotations=ToolAnnotations(readOnlyHint=True, destructiveHint=False)
        )
        async def tool_detect_conflicts(
            owner_id: Annotated[str, Field(description="owner to scan")],
        ) -> Dict[str, Any]:
            try:
                return {"ok": True, "results": self.service.detect_conflicts(owner_id).to_dict()}
            except Exception as e:
                return _error(e)

        @self.mcp.tool(
            name="rank_decisions",
            description="Rank applied decisions by effectiveness (applied count x confidence).",
            annotations=ToolAnnotations(readOnlyHint=True, destructiveHint=False)
        )
        async def tool_rank_decisions(
            owner_id: Annotated[str, Field(description="owner whose decisions are ranked")],
            limit: Annotated[Optional[int], Field(description="maximum number of decisions")] = None,
        ) -> Dict[str, Any]:
            try:
                ranked = self.service.rank_decisions(owner_id, limit)
                return {"ok": True, "results": [r.to_dict() for r in ranked]}
            except Exception as e:
                return _error(e)

        @self.mcp.tool(
            name="recommend_next_steps",
            description="Next incomplete step of each in-progress goal, highest priority first.",
            annotations=ToolAnnotations(readOnlyHint=True, destructiveHint=False)
        )
        async def tool_recommend_next_steps(
            owner_id: Annotated[str, Field(description="owner whose goals are considered")],
        ) -> Dict[str, Any]:
            try:
                steps = self.service.recommend_next_steps(owner_id)
                return {"ok": True, "results": [s.to_dict() for s in steps]}
            except Exception as e:
                return _error(e)

        # ---------- MCP Tools: Query and Export ---------- #
        @self.mcp.tool(
            name="query_user_context",
            description="Query stored user context, newest first.",
            annotations=ToolAnnotations(readOnlyHint=True, destructiveHint=False)
        )
        async def tool_query_user_context(
            owner_id: Annotated[str, Field(description="owner to query")],
            context_type: Annotated[str, Field(
                description="decisions, goals, preferences, issues, todos or all"
            )] = "all",
            text_filter: Annotated[Optional[str], Field(description="substring the item text must contain")] = None,
            limit: Annotated[Optional[int], Field(description="maximum results per context type")] = None,
        ) -> Dict[str, Any]:
            try:
                sections = self.service.query_context(owner_id, context_type, text_filter, limit)
                return {
                    "ok": True,
                    "results": {
                        name: [item.model_dump(mode="json") for item in items]
                        for name, items in sections.items()
                    },
                    "counts": {name: len(items) for name, items in sections.items()},
                }
            except Exception as e:
                return _error(e)

        @self.mcp.tool(
            name="export_user_context",
            description="Export user context for backup or transfer.",
            annotations=ToolAnnotations(readOnlyHint=True, destructiveHint=False)
        )
        async def tool_export_user_context(
            owner_id: Annotated[str, Field(description="owner to export")],
            format: Annotated[str, Field(description="json, markdown or csv")] = "json",
            include: Annotated[Optional[List[str]], Field(description="context types to include")] = None,
        ) -> Dict[str, Any]:
            try:
                content = self.service.export_context(owner_id, format, include)
                return {"ok": True, "format": format, "size_bytes": len(content.encode("utf-8")), "results": content}
            except Exception as e:
                return _error(e)

        # ---------- MCP Tools: Manage Context Items ---------- #
        @self.mcp.tool(
            name="manage_user_decision",
            description=(
                "Manage stored decisions. Actions: create, read, update, delete, list, "
                "archive, increment_applied."
            ),
            annotations=ToolAnnotations(readOnlyHint=False, destructiveHint=True)
        )
        async def tool_manage_user_decision(
            action: Annotated[str, Field(description="operation to perform")],
            owner_id: Annotated[Optional[str], Field(description="owner (create, list)")] = None,
            item_id: Annotated[Optional[str], Field(description="decision id")] = None,
            fields: Annotated[Optional[Dict[str, Any]], Field(
                description="decision fields for create/update, e.g. text, reason, category, confidence_score"
            )] = None,
            scope: Annotated[Optional[str], Field(description="'global', 'project:<id>' or 'workflow:<name>'")] = None,
        ) -> Dict[str, Any]:
            return self._manage(EntityType.DECISION, action, owner_id, item_id, fields, scope, {
                "archive": lambda: self.service.archive_decision(_required(item_id, "item_id")),
                "increment_applied": lambda: self.service.record_applied_decisions(
                    [_required(item_id, "item_id")]
                )[0],
            })

        @self.mcp.tool(
            name="manage_user_goal",
            description=(
                "Manage stored goals. Actions: create, read, update, delete, list, list_by_status, "
                "update_status, add_step, complete_step."
            ),
            annotations=ToolAnnotations(readOnlyHint=False, destructiveHint=True)
        )
        async def tool_manage_user_goal(
            action: Annotated[str, Field(description="operation to perform")],
            owner_id: Annotated[Optional[str], Field(description="owner (create, list)")] = None,
            item_id: Annotated[Optional[str], Field(description="goal id")] = None,
            fields: Annotated[Optional[Dict[str, Any]], Field(
                description="goal fields for create/update, e.g. text, description, priority, target_date"
            )] = None,
            scope: Annotated[Optional[str], Field(description="'global', 'project:<id>' or 'workflow:<name>'")] = None,
            status: Annotated[Optional[str], Field(
                description="planned, in_progress, completed or blocked"
            )] = None,
            step_description: Annotated[Optional[str], Field(description="text of the step to add")] = None,
            step_number: Annotated[Optional[int], Field(description="step to mark completed")] = None,
        ) -> Dict[str, Any]:
            return self._manage(EntityType.GOAL, action, owner_id, item_id, fields, scope, {
                "list_by_status": lambda: self.service.store.find_goals_by_status(
                    _required(owner_id, "owner_id"), _required(status, "status")
                ),
                "update_status": lambda: self.service.set_goal_status(
                    _required(item_id, "item_id"), _required(status, "status")
                ),
                "add_step": lambda: self.service.add_goal_step(
                    _required(item_id, "item_id"), _required(step_description, "step_description")
                ),
                "complete_step": lambda: self.service.complete_goal_step(
                    _required(item_id, "item_id"), _required(step_number, "step_number")
                ),
            })

        @self.mcp.tool(
            name="manage_user_preference",
            description=(
                "Manage stored preferences. Actions: create, read, update, delete, list, "
                "automation_applicable."
            ),
            annotations=ToolAnnotations(readOnlyHint=False, destructiveHint=True)
        )
        async def tool_manage_user_preference(
            action: Annotated[str, Field(description="operation to perform")],
            owner_id: Annotated[Optional[str], Field(description="owner (create, list)")] = None,
            item_id: Annotated[Optional[str], Field(description="preference id")] = None,
            fields: Annotated[Optional[Dict[str, Any]], Field(
                description="preference fields for create/update, e.g. name, value, preference_type, tags"
            )] = None,
            scope: Annotated[Optional[str], Field(description="'global', 'project:<id>' or 'workflow:<name>'")] = None,
        ) -> Dict[str, Any]:
            return self._manage(EntityType.PREFERENCE, action, owner_id, item_id, fields, scope, {
                "automation_applicable": lambda: self.service.store.find_automation_preferences(
                    _required(owner_id, "owner_id")
                ),
            })

        @self.mcp.tool(
            name="manage_known_issue",
            description=(
                "Manage known issues. Actions: create, read, update, delete, list, by_severity, "
                "mark_resolved."
            ),
            annotations=ToolAnnotations(readOnlyHint=False, destructiveHint=True)
        )
        async def tool_manage_known_issue(
            action: Annotated[str, Field(description="operation to perform")],
            owner_id: Annotated[Optional[str], Field(description="owner (create, list)")] = None,
            item_id: Annotated[Optional[str], Field(description="issue id")] = None,
            fields: Annotated[Optional[Dict[str, Any]], Field(
                description="issue fields for create/update, e.g. description, workaround, affected_components"
            )] = None,
            scope: Annotated[Optional[str], Field(description="'global', 'project:<id>' or 'workflow:<name>'")] = None,
            severity: Annotated[Optional[str], Field(description="low, medium, high or critical")] = None,
            resolution_status: Annotated[Optional[str], Field(
                description="fixed, workaround_available, no_action_needed or unresolved"
            )] = "fixed",
        ) -> Dict[str, Any]:
            return self._manage(EntityType.ISSUE, action, owner_id, item_id, fields, scope, {
                "by_severity": lambda: self.service.store.find_issues_by_severity(
                    _required(owner_id, "owner_id"), _required(severity, "severity")
                ),
                "mark_resolved": lambda: self.service.resolve_issue(
                    _required(item_id, "item_id"), _required(resolution_status, "resolution_status")
                ),
            })

        @self.mcp.tool(
            name="manage_contextual_todo",
            description=(
                "Manage todos linked to context items. Actions: create, read, update, delete, list, "
                "by_status, update_status."
            ),
            annotations=ToolAnnotations(readOnlyHint=False, destructiveHint=True)
        )
        async def tool_manage_contextual_todo(
            action: Annotated[str, Field(description="operation to perform")],
            owner_id: Annotated[Optional[str], Field(description="owner (create, list)")] = None,
            item_id: Annotated[Optional[str], Field(description="todo id")] = None,
            fields: Annotated[Optional[Dict[str, Any]], Field(
                description="todo fields for create/update, e.g. description, context_type, related_entity_id"
            )] = None,
            scope: Annotated[Optional[str], Field(description="'global', 'project:<id>' or 'workflow:<name>'")] = None,
            status: Annotated[Optional[str], Field(
                description="pending, in_progress, completed or blocked"
            )] = None,
        ) -> Dict[str, Any]:
            return self._manage(EntityType.TODO, action, owner_id, item_id, fields, scope, {
                "by_status": lambda: self.service.store.find_todos_by_status(
                    _required(owner_id, "owner_id"), _required(status, "status")
                ),
                "update_status": lambda: self.service.set_todo_status(
                    _required(item_id, "item_id"), _required(status, "status")
                ),
            })

    def _manage(
            self,
            entity_type: EntityType,
            action: str,
            owner_id: Optional[str],
            item_id: Optional[str],
            fields: Optional[Dict[str, Any]],
            scope: Optional[str],
            extra_actions: Dict[str, Callable[[], Any]],
        ) -> Dict[str, Any]:
        """Dispatch one management action; shared by the manage_* tools."""
        try:
            parsed_scope = ContextScope.from_string(scope) if scope else None
        except ValueError as e:
            return _error(e)

        actions: Dict[str, Callable[[], Any]] = {
            "create": lambda: self.service.create_item(
                entity_type, _required(owner_id, "owner_id"), fields or {}, parsed_scope
            ),
            "read": lambda: self.service.get_item(entity_type, _required(item_id, "item_id")),
            "update": lambda: self.service.update_item(
                entity_type, _required(item_id, "item_id"), fields or {}, parsed_scope
            ),
            "delete": lambda: {
                "id": item_id,
                "deleted": self.service.delete_item(entity_type, _required(item_id, "item_id")),
            },
            "list": lambda: self.service.store.find_by_owner(entity_type, _required(owner_id, "owner_id")),
        }
        actions.update(extra_actions)

        try:
            handler = actions.get(action)
            if handler is None:
                raise ValueError(
                    f"Unknown action for {entity_type.value}: {action} (expected one of {', '.join(actions)})"
                )
            return {"ok": True, "action": action, "results": _dump(handler())}
        except Exception as e:
            return _error(e)

    def run(self) -> None:
        """Runs the MCP server using stdio transport."""
        self.mcp.run(transport="stdio")


def main() -> None:
    load_dotenv()
    config = load_config()

    parser = argparse.ArgumentParser(description="Run the context engine MCP server (stdio).")
    parser.add_argument(
        "--server-name",
        default=os.getenv("CONTEXT_ENGINE_SERVER_NAME", config.server.name),
        help="Advertised MCP server name.",
    )
    parser.add_argument(
        "--store-path",
        default=os.getenv("CONTEXT_ENGINE_STORE_PATH", config.store.path),
        help="Path to the context store JSON file.",
    )
    parser.add_argument(
        "--queue-path",
        default=os.getenv("CONTEXT_ENGINE_QUEUE_PATH", str(CANDIDATE_QUEUE_PATH)),
        help="Path to the candidate queue JSON file.",
    )
    parser.add_argument(
        "--patterns",
        default=os.getenv("CONTEXT_ENGINE_PATTERNS", config.extractor.patterns_path),
        help="Markdown trigger catalogue.",
    )
    parser.add_argument(
        "--log-level",
        default=os.getenv("CONTEXT_ENGINE_LOG_LEVEL", config.server.log_level),
        help="Logging level.",
    )
    args = parser.parse_args()

    # stdout carries the MCP protocol
    logging.basicConfig(
        level=getattr(logging, args.log_level.upper(), logging.INFO),
        stream=sys.stderr,
        format="%(asctime)s %(name)s %(levelname)s %(message)s",
    )

    ensure_directories()
    config.extractor.patterns_path = args.patterns
    store = LocalContextStore(Path(args.store_path))
    service = ContextService(store, config=config)
    queue = CandidateQueue(Path(args.queue_path))
    logger.info("Context store: %s (%d pattern(s) loaded)", args.store_path, service.extractor.library.pattern_count)

    app = ContextServerApp(service=service, candidate_queue=queue, mcp_server_name=args.server_name)

    def _handle_shutdown(signum, frame):
        raise SystemExit(0)
    for sig in (signal.SIGINT, getattr(signal, "SIGTERM", None)):
        if sig is not None:
            signal.signal(sig, _handle_shutdown)

    app.run()


if __name__ == "__main__":
    main()
