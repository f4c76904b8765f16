"""Minimal deterministic OpenAPI spec builder.

Scope (purposefully narrow): every route registered by the blueprints, their required
permission codes, caching headers on cacheable reads and the issue state graph as
`x-transitions` / `x-events` on the Issue schema.
"""
from typing import Any, Dict, List, Optional
from facilityops.services.lifecycle import ISSUE_FSM

__all__ = ["build_openapi_spec"]


def caching_headers() -> Dict[str, Any]:
    return {
        "ETag": {"schema": {"type": "string"}},
        "Last-Modified": {"schema": {"type": "string"}},
        "X-Last-Modified-ISO": {"schema": {"type": "string"}},
    }


def _obj(*names: str, required: Optional[List[str]] = None) -> Dict[str, Any]:
    schema: Dict[str, Any] = {"type": "object", "properties": {n: {} for n in names}}
    if required:
        schema["required"] = required
    return schema


# (action, summary, permissions, request body fields)
TRANSITIONS = [
    ("assign", "Assign (or reassign) a contractor", ["ISSUE.ASSIGN"], ["contractor_id", "expected_version"]),
    ("respond", "Contractor accepts or rejects", ["ISSUE.RESPOND"],
     ["decision", "reason", "proposed_cost", "proposal", "attachments", "expected_version"]),
    ("awaiting-parts", "Pause work waiting for parts", ["ISSUE.EXECUTE"], ["note", "expected_version"]),
    ("resume", "Resume work after parts arrive", ["ISSUE.EXECUTE"], ["expected_version"]),
    ("complete", "Submit completion report", ["ISSUE.EXECUTE"],
     ["execution_report", "final_cost", "work_performed", "parts_used", "proof_documents", "attachments", "expected_version"]),
    ("approve", "Approve and close", ["ISSUE.APPROVE"], ["rating", "feedback", "expected_version"]),
    ("escalate", "Escalate an open issue", ["ISSUE.ESCALATE"], ["reason", "expected_version"]),
    ("start", "Start work on an escalated issue", ["ISSUE.EXECUTE", "ISSUE.ESCALATE"], ["expected_version"]),
]


def _error_responses(*codes: str) -> Dict[str, Any]:
    return {c: {"$ref": "#/components/responses/Error"} for c in codes}


def _read(summary: str, perms: List[str], schema_ref: str, params: List[Dict[str, Any]], listing: bool = False):
    body = {"$ref": f"#/components/schemas/{schema_ref}"}
    if listing:
        body = {
            "type": "object",
            "properties": {
                "data": {"type": "array", "items": body},
                "pagination": {"$ref": "#/components/schemas/Pagination"},
            },
        }
        params = params + [
            {"$ref": "#/components/parameters/LimitParam"},
            {"$ref": "#/components/parameters/OffsetParam"},
        ]
    ok = {"description": "OK", "headers": caching_headers(), "content": {"application/json": {"schema": body}}}
    return {
        "get": {
            "summary": summary, "parameters": params, "x-required-permissions": perms,
            "responses": {"200": ok, "304": {"description": "Not Modified"}, **_error_responses("400", "403", "404")},
        },
        "head": {
            "summary": f"{summary} (validators only)", "parameters": params, "x-required-permissions": perms,
            "responses": {"200": {"description": "Headers only", "headers": caching_headers()}, "304": {"description": "Not Modified"}},
        },
    }


def _query(name: str, required: bool = False, kind: str = "integer") -> Dict[str, Any]:
    return {"name": name, "in": "query", "required": required, "schema": {"type": kind}}


def _path(name: str) -> Dict[str, Any]:
    return {"name": name, "in": "path", "required": True, "schema": {"type": "integer"}}


def _post(summary: str, perms: List[str], fields: List[str], params: List[Dict[str, Any]], created: bool = False):
    return {
        "post": {
            "summary": summary,
            "parameters": params,
            "x-required-permissions": perms,
            "requestBody": {"content": {"application/json": {"schema": _obj(*fields)}}},
            "responses": {
                ("201" if created else "200"): {"description": "OK", "content": {"application/json": {"schema": {"$ref": "#/components/schemas/Issue"}}}},
                **_error_responses("400", "403", "404", "409"),
            },
        }
    }


def _issue_schema() -> Dict[str, Any]:
    schema = _obj(
        "id", "company_id", "facility_id", "equipment_id", "task_type", "title", "description", "priority",
        "suggested_priority", "status", "reported_by", "assigned_to", "contractor_response", "completion",
        "execution_metrics", "rating", "feedback", "sla_status", "sla_deadline", "version",
        "created_at", "assigned_at", "responded_at", "accepted_at", "completed_at", "approved_at",
        "closed_at", "rejected_at", "escalated_at", "updated_at",
        required=["id", "status", "version"],
    )
    schema["properties"]["status"] = {"type": "string", "enum": ISSUE_FSM.states()}
    schema["x-transitions"] = ISSUE_FSM.states()
    schema["x-events"] = [{"from": s, "event": e, "to": t} for s, e, t in ISSUE_FSM.edges()]
    return schema


def build_openapi_spec() -> Dict[str, Any]:
    company = _query("company_id", required=True)
    paths: Dict[str, Any] = {}

    paths["/issues"] = _read(
        "List issues", ["ISSUE.READ"], "Issue",
        [company, _query("status", kind="string"), _query("priority", kind="string"), _query("facility_id"),
         _query("task_type", kind="string"), _query("assigned_to"), {"$ref": "#/components/parameters/SortIssuesParam"}],
        listing=True,
    )
    paths["/issues"].update(_post(
        "Report an issue", ["ISSUE.CREATE"],
        ["company_id", "facility_id", "title", "description", "priority", "suggested_priority", "task_type",
         "equipment_id", "contractor_id"],
        [], created=True,
    ))
    paths["/issues/{issue_id}"] = _read("Get issue", ["ISSUE.READ"], "Issue", [_path("issue_id")])
    for action, summary, perms, fields in TRANSITIONS:
        paths[f"/issues/{{issue_id}}/{action}"] = _post(summary, perms, fields, [_path("issue_id")])
    paths["/issues/{issue_id}/metrics"] = {"get": {
        "summary": "Stored vs recomputed execution metrics", "parameters": [_path("issue_id")],
        "x-required-permissions": ["ISSUE.READ"], "responses": {"200": {"description": "OK"}, **_error_responses("403", "404")},
    }}
    paths["/issues/{issue_id}/activity"] = {"get": {
        "summary": "Issue audit trail", "parameters": [_path("issue_id")],
        "x-required-permissions": ["ISSUE.READ"], "responses": {"200": {"description": "OK"}, **_error_responses("403", "404")},
    }}
    paths["/issues/sla/sweep"] = {"post": {
        "summary": "Escalate overdue open issues", "x-required-permissions": ["ISSUE.ESCALATE"],
        "requestBody": {"content": {"application/json": {"schema": _obj("company_id", required=["company_id"])}}},
        "responses": {"200": {"description": "Escalated issue ids"}, **_error_responses("400", "403")},
    }}
    paths["/vendors/metrics"] = _read(
        "Vendor ranking", ["VENDOR.READ"], "VendorMetrics",
        [company, {"$ref": "#/components/parameters/SortVendorsParam"}], listing=True,
    )
    paths["/vendors/{contractor_id}/metrics"] = _read(
        "Contractor performance", ["VENDOR.READ"], "VendorMetrics", [_path("contractor_id"), company],
    )
    paths["/reports/sla"] = _read("SLA compliance summary", ["RPT.READ"], "SlaReport", [company])
    paths["/reports/issues"] = _read("Issue counts by status and priority", ["RPT.READ"], "StatusCount", [company], listing=True)
    paths["/notifications"] = _read(
        "My notifications", ["NOTIFY.READ"], "Notification",
        [_query("unread", kind="string"), _query("company_id")], listing=True,
    )
    paths["/notifications/{notification_id}/read"] = {"post": {
        "summary": "Mark notification read", "parameters": [_path("notification_id")],
        "x-required-permissions": ["NOTIFY.READ"], "responses": {"200": {"description": "OK"}, **_error_responses("404")},
    }}

    components: Dict[str, Any] = {
        "schemas": {
            "Issue": _issue_schema(),
            "VendorMetrics": _obj(
                "contractor_id", "name", "avg_response_minutes", "avg_completion_minutes", "response_count",
                "completion_count", "delayed_jobs_count", "total_jobs", "delay_rate", "version",
            ),
            "SlaReport": _obj(
                "company_id", "total_issues", "sla_status_counts", "on_time_count", "delayed_count",
                "overdue_open_count", "compliance_pct", "avg_response_minutes", "avg_execution_minutes",
                "negative_duration_issue_ids",
            ),
            "StatusCount": _obj("status", "priority", "count"),
            "Notification": _obj("id", "issue_id", "type", "message", "priority", "read", "created_at"),
            "Pagination": {
                "type": "object",
                "properties": {
                    "total": {"type": "integer"},
                    "limit": {"type": "integer"},
                    "offset": {"type": "integer"},
                    "returned": {"type": "integer"},
                },
                "required": ["total", "limit", "offset", "returned"],
            },
            "Error": {
                "type": "object",
                "properties": {"error": _obj("status", "title", "detail", required=["status", "title", "detail"])},
                "required": ["error"],
            },
        },
        "responses": {"Error": {
            "description": "Error", "content": {"application/json": {"schema": {"$ref": "#/components/schemas/Error"}}},
        }},
        "securitySchemes": {"BearerAuth": {"type": "http", "scheme": "bearer", "bearerFormat": "JWT"}},
        "parameters": {
            "LimitParam": {"name": "limit", "in": "query", "schema": {"type": "integer", "default": 50}},
            "OffsetParam": {"name": "offset", "in": "query", "schema": {"type": "integer", "default": 0}},
            "SortIssuesParam": {"name": "sort", "in": "query", "schema": {"type": "string"},
                                "description": "Comma list of id, created_at, updated_at, priority, status, sla_deadline; prefix '-' for desc"},
            "SortVendorsParam": {"name": "sort", "in": "query", "schema": {"type": "string"},
                                 "description": "Comma list of contractor_id, avg_response_minutes, avg_completion_minutes, delayed_jobs_count, total_jobs, updated_at"},
        },
    }

    # Add operationIds & tags
    tag_desc: Dict[str, str] = {}
    for path, ops in paths.items():
        tag = path.split("/")[1].capitalize()
        for method, od in ops.items():
            rid = path.strip("/").replace("/", "_").replace("-", "_").replace("{", "").replace("}", "")
            od["operationId"] = f"{method}_{rid}"
            od["tags"] = [tag]
        tag_desc[tag] = f"{tag} endpoints"

    return {
        "openapi": "3.0.3",
        "info": {"title": "Facility Ops Issue Engine API", "version": "0.1.0"},
        "paths": paths,
        "components": components,
        "security": [{"BearerAuth": []}],
        "tags": [{"name": n, "description": d} for n, d in sorted(tag_desc.items())],
    }
