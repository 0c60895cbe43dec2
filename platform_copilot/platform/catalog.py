"""platform_copilot/platform/catalog.py

Operations the copilot exposes to the model, grouped by platform service.

``build_catalog(client)`` returns plain ``Operation`` records whose handlers
close over an injected ``PlatformClient``; nothing here holds global state.
Handlers reshape raw API responses into compact dicts so the model sees the
fields that matter rather than whole payloads.

Write operations (``execute_sql_query``, ``create_segment``,
``trigger_flow_run``) require operator approval.
"""

from __future__ import annotations

# Standard Library
import asyncio
import logging
import time
from collections import Counter
from collections.abc import Awaitable
from typing import Any, TypeVar

# Local Modules
from platform_copilot.errors import NotFoundError, OperationError
from platform_copilot.platform.client import PlatformClient
from platform_copilot.registry import Operation

logger = logging.getLogger(__name__)

T = TypeVar("T")

BATCHES = "/data/foundation/catalog/batches"
DATASETS = "/data/foundation/catalog/dataSets"
EXPORT_BATCHES = "/data/foundation/export/batches"
SCHEMA_REGISTRY = "/data/foundation/schemaregistry"
PROFILE_ENTITIES = "/data/core/ups/access/entities"
NAMESPACES = "/data/core/idnamespace/identities"
IDENTITY = "/data/core/identity/identity"
CLUSTER_MEMBERS = "/data/core/identity/cluster/members"
QUERIES = "/data/foundation/query/queries"
SEGMENTS = "/data/core/ups/segment/definitions"
SANDBOXES = "/data/foundation/sandbox-management/sandboxes"
FLOWS = "/data/foundation/flowservice/flows"
FLOW_RUNS = "/data/foundation/flowservice/runs"
POLICIES = "/data/foundation/dulepolicy/policies"
AUDIT_EVENTS = "/data/foundation/audit/events"

PROFILE_SCHEMA = "_xdm.context.profile"
SHARED_DEVICE_THRESHOLD = 10

_TIME_RANGES_MS: dict[str, int] = {
    "1h": 60 * 60 * 1000,
    "6h": 6 * 60 * 60 * 1000,
    "24h": 24 * 60 * 60 * 1000,
    "7d": 7 * 24 * 60 * 60 * 1000,
}


# ---------------------------------------------------------------------------
# Schema helpers
# ---------------------------------------------------------------------------


def _params(required: list[str] | None = None, **properties: dict[str, Any]) -> dict[str, Any]:
    schema: dict[str, Any] = {"type": "object", "properties": properties}
    if required:
        schema["required"] = required
    return schema


def _string(description: str, **extra: Any) -> dict[str, Any]:
    return {"type": "string", "description": description, **extra}


def _limit(default: int) -> dict[str, Any]:
    return {
        "type": "integer",
        "minimum": 1,
        "description": f"Maximum number of results (default {default})",
    }


# ---------------------------------------------------------------------------
# Response helpers
# ---------------------------------------------------------------------------


def _keyed(data: Any) -> list[dict[str, Any]]:
    """Flatten the catalog service's ``{id: record}`` responses into a list."""
    if isinstance(data, list):
        return data
    if isinstance(data, dict):
        return [{"id": key, **value} for key, value in data.items() if isinstance(value, dict)]
    return []


async def _optional(call: Awaitable[T], default: T, label: str) -> T:
    """Await a secondary lookup, substituting ``default`` if it fails."""
    try:
        return await call
    except OperationError as exc:
        logger.debug("[catalog] optional lookup %s failed: %s", label, exc.message)
        return default


def _now_ms() -> int:
    return int(time.time() * 1000)


# ---------------------------------------------------------------------------
# Catalog
# ---------------------------------------------------------------------------


def build_catalog(client: PlatformClient) -> list[Operation]:
    """Build every operation, bound to ``client``."""

    # -- batches ------------------------------------------------------------

    async def get_failed_batches(args: dict[str, Any]) -> dict[str, Any]:
        data = await client.get(
            BATCHES,
            status="failed",
            limit=args.get("limit", 10),
            orderBy="desc:created",
            dataSet=args.get("datasetId"),
        )
        batches = [
            {
                "id": b.get("id"),
                "status": b.get("status"),
                "created": b.get("created"),
                "datasetId": (b.get("relatedObjects") or [{}])[0].get("id"),
                "errors": b.get("errors", []),
            }
            for b in _keyed(data)
        ]
        return {"count": len(batches), "batches": batches}

    async def get_batch_details(args: dict[str, Any]) -> dict[str, Any]:
        batch_id = args["batchId"]
        details, meta, failed = await asyncio.gather(
            client.get(f"{BATCHES}/{batch_id}"),
            _optional(client.get(f"{EXPORT_BATCHES}/{batch_id}/meta"), None, "batch meta"),
            _optional(
                client.get(f"{EXPORT_BATCHES}/{batch_id}/failed"), {"data": []}, "failed records"
            ),
        )
        records = _keyed(details)
        return {
            "details": records[0] if records else details,
            "meta": meta,
            "failedRecords": failed,
        }

    async def get_batch_stats(args: dict[str, Any]) -> dict[str, Any]:
        time_range = args.get("timeRange", "24h")
        window = _TIME_RANGES_MS.get(time_range)
        data = await client.get(
            BATCHES,
            limit=200,
            orderBy="desc:created",
            createdAfter=_now_ms() - window if window else None,
        )
        batches = _keyed(data)
        by_status = Counter(str(b.get("status") or "unknown") for b in batches)
        active = sum(by_status[s] for s in ("active", "processing", "loading"))
        return {
            "timeRange": time_range,
            "total": len(batches),
            "success": by_status["success"],
            "failed": by_status["failed"],
            "active": active,
            "byStatus": dict(by_status),
        }

    async def analyze_batch_errors(args: dict[str, Any]) -> dict[str, Any]:
        batch_id = args["batchId"]
        details, failed = await asyncio.gather(
            client.get(f"{BATCHES}/{batch_id}"),
            _optional(
                client.get(f"{EXPORT_BATCHES}/{batch_id}/failed"), {"data": []}, "failed records"
            ),
        )
        records = _keyed(details)
        batch = records[0] if records else {}
        failed_records = (failed or {}).get("data") or []

        groups: dict[str, dict[str, Any]] = {}
        for index, record in enumerate(failed_records):
            code = str(record.get("errorCode") or record.get("code") or "UNKNOWN")
            group = groups.setdefault(
                code,
                {
                    "count": 0,
                    "message": record.get("message") or record.get("errorMessage") or "No message",
                    "samples": [],
                },
            )
            group["count"] += 1
            if len(group["samples"]) < 3:
                group["samples"].append({"index": index, "data": record.get("data", record)})

        total = len(failed_records)
        breakdown = sorted(
            (
                {
                    "errorCode": code,
                    "count": info["count"],
                    "percentage": round(info["count"] / total * 100, 1),
                    "message": info["message"],
                    "samples": info["samples"],
                }
                for code, info in groups.items()
            ),
            key=lambda entry: entry["count"],
            reverse=True,
        )
        top = breakdown[0] if breakdown else None
        return {
            "batchId": batch_id,
            "status": batch.get("status", "unknown"),
            "totalErrors": total,
            "createdAt": batch.get("created"),
            "completedAt": batch.get("completed"),
            "errorBreakdown": breakdown,
            "topError": top,
            "recommendation": (
                f'{top["percentage"]}% of errors are "{top["errorCode"]}". '
                "Review the target schema for type mismatches."
                if top
                else "No errors found to analyze."
            ),
        }

    # -- schemas ------------------------------------------------------------

    async def search_schemas(args: dict[str, Any]) -> dict[str, Any]:
        container = args.get("container", "tenant")
        query = args.get("query")
        data = await client.request(
            "GET",
            f"{SCHEMA_REGISTRY}/{container}/schemas",
            params={"limit": 50, "property": f"title~{query}" if query else None},
            headers={"Accept": "application/vnd.adobe.xed-id+json"},
        )
        results = [
            {"id": s.get("$id"), "title": s.get("title"), "version": s.get("version")}
            for s in (data or {}).get("results", [])
        ]
        return {"count": len(results), "schemas": results}

    async def get_schema_stats(args: dict[str, Any]) -> Any:
        return await client.get(f"{SCHEMA_REGISTRY}/stats")

    # -- datasets -----------------------------------------------------------

    async def list_datasets(args: dict[str, Any]) -> dict[str, Any]:
        data = await client.get(DATASETS, limit=args.get("limit", 20))
        datasets = [
            {
                "id": d.get("id"),
                "name": d.get("name"),
                "created": d.get("created"),
                "schemaRef": (d.get("schemaRef") or {}).get("id"),
            }
            for d in _keyed(data)
        ]
        return {"count": len(datasets), "datasets": datasets}

    async def get_dataset_details(args: dict[str, Any]) -> Any:
        records = _keyed(await client.get(f"{DATASETS}/{args['datasetId']}"))
        if not records:
            raise NotFoundError(f"Dataset {args['datasetId']} not found")
        return records[0]

    # -- profiles and identities --------------------------------------------

    async def lookup_profile(args: dict[str, Any]) -> Any:
        return await client.request(
            "GET",
            PROFILE_ENTITIES,
            params={
                "schema.name": PROFILE_SCHEMA,
                "entityId": args["identity"],
                "entityIdNS": args["namespace"],
            },
        )

    async def list_namespaces(args: dict[str, Any]) -> dict[str, Any]:
        data = await client.get(NAMESPACES)
        namespaces = [
            {"id": ns.get("id"), "code": ns.get("code"), "name": ns.get("name")}
            for ns in (data if isinstance(data, list) else [])
        ]
        return {"count": len(namespaces), "namespaces": namespaces}

    async def get_identity_xid(args: dict[str, Any]) -> Any:
        return await client.get(IDENTITY, namespace=args["namespace"], id=args["id"])

    async def get_identity_graph(args: dict[str, Any]) -> dict[str, Any]:
        namespace, identity = args["namespace"], args["identity"]
        resolved = await client.get(IDENTITY, namespace=namespace, id=identity)
        xid = (resolved or {}).get("xid")
        if not xid:
            raise NotFoundError(f"No XID found for {namespace}:{identity}")

        cluster, namespaces = await asyncio.gather(
            _optional(
                client.get(CLUSTER_MEMBERS, xid=xid, **{"graph-type": "Private Graph"}),
                {},
                "cluster members",
            ),
            _optional(client.get(NAMESPACES), [], "namespaces"),
        )
        by_id = {ns.get("id"): ns for ns in (namespaces if isinstance(namespaces, list) else [])}
        members = (cluster or {}).get("cluster") or []
        shared = len(members) > SHARED_DEVICE_THRESHOLD
        return {
            "inputIdentity": {"namespace": namespace, "identity": identity, "xid": xid},
            "graphSize": len(members),
            "members": [
                {
                    "xid": m.get("xid"),
                    "namespace": (by_id.get(m.get("nsid")) or {}).get("code", m.get("nsid")),
                    "namespaceName": (by_id.get(m.get("nsid")) or {}).get("name", "Unknown"),
                }
                for m in members
            ],
            "isSharedDevice": shared,
            "warning": "Many linked identities; this may be a shared device." if shared else None,
        }

    # -- queries ------------------------------------------------------------

    async def list_recent_queries(args: dict[str, Any]) -> dict[str, Any]:
        data = await client.get(QUERIES, limit=args.get("limit", 10), orderby="-created")
        queries = [
            {
                "id": q.get("id"),
                "name": q.get("name"),
                "state": q.get("state"),
                "created": q.get("created"),
                "sql": str(q.get("sql") or "")[:200],
            }
            for q in (data or {}).get("queries", [])
        ]
        return {"count": len(queries), "queries": queries}

    async def execute_sql_query(args: dict[str, Any]) -> dict[str, Any]:
        created = await client.post(
            QUERIES,
            {
                "dbName": "prod:all",
                "sql": args["sql"],
                "name": args.get("name") or f"Agent_Query_{_now_ms()}",
            },
        )
        return {
            "queryId": created.get("id"),
            "name": created.get("name"),
            "state": created.get("state", "SUBMITTED"),
        }

    # -- segments -----------------------------------------------------------

    async def list_segments(args: dict[str, Any]) -> dict[str, Any]:
        data = await client.get(SEGMENTS, limit=args.get("limit", 20))
        segments = [
            {"id": s.get("id"), "name": s.get("name"), "status": s.get("lifecycleState")}
            for s in (data or {}).get("segments", [])
        ]
        return {"count": len(segments), "segments": segments}

    async def get_segment_stats(args: dict[str, Any]) -> dict[str, Any]:
        data = await client.get(SEGMENTS, limit=100)
        segments = (data or {}).get("segments", [])
        by_state = Counter(str(s.get("lifecycleState") or "unknown") for s in segments)
        return {
            "totalSegments": len(segments),
            "byState": dict(by_state),
            "recentSegments": [
                {"id": s.get("id"), "name": s.get("name"), "status": s.get("lifecycleState")}
                for s in segments[:10]
            ],
        }

    async def create_segment(args: dict[str, Any]) -> dict[str, Any]:
        name = args["name"]
        segment = await client.post(
            SEGMENTS,
            {
                "name": name,
                "description": args.get("description") or f"Segment created by the copilot: {name}",
                "expression": {"type": "PQL", "format": "pql/text", "value": args["pql"]},
                "schema": {"name": PROFILE_SCHEMA},
                "evaluationType": args.get("evaluationType", "batch"),
            },
        )
        return {
            "segmentId": segment.get("id"),
            "name": segment.get("name", name),
            "status": segment.get("lifecycleState", "DRAFT"),
            "pql": args["pql"],
        }

    # -- sandboxes ----------------------------------------------------------

    async def list_sandboxes(args: dict[str, Any]) -> dict[str, Any]:
        data = await client.get(SANDBOXES)
        sandboxes = [
            {
                "name": s.get("name"),
                "title": s.get("title"),
                "type": s.get("type"),
                "state": s.get("state"),
            }
            for s in (data or {}).get("sandboxes", [])
        ]
        return {"count": len(sandboxes), "sandboxes": sandboxes}

    async def get_current_sandbox(args: dict[str, Any]) -> Any:
        return await client.get(f"{SANDBOXES}/{client.sandbox}")

    # -- flows --------------------------------------------------------------

    async def list_data_flows(args: dict[str, Any]) -> dict[str, Any]:
        data = await client.get(FLOWS, limit=args.get("limit", 50))
        flows = [
            {"id": f.get("id"), "name": f.get("name"), "state": f.get("state")}
            for f in (data or {}).get("items", [])
        ]
        return {"totalFlows": len(flows), "flows": flows}

    async def list_flow_runs(args: dict[str, Any]) -> dict[str, Any]:
        flow_id = args.get("flowId")
        data = await client.get(
            FLOW_RUNS,
            limit=args.get("limit", 50),
            property=f"flowId=={flow_id}" if flow_id else None,
        )
        runs = (data or {}).get("items", [])
        return {
            "totalRuns": len(runs),
            "runs": [
                {
                    "id": r.get("id"),
                    "flowId": r.get("flowId"),
                    "state": r.get("state"),
                    "startedAt": (r.get("metrics") or {}).get("durationSummary", {}).get("startedAtUTC"),
                }
                for r in runs[:20]
            ],
        }

    async def trigger_flow_run(args: dict[str, Any]) -> dict[str, Any]:
        run = await client.post(FLOW_RUNS, {"flowId": args["flowId"]})
        return {"triggered": True, "flowId": args["flowId"], "runId": run.get("id")}

    # -- governance and audit -----------------------------------------------

    async def list_governance_policies(args: dict[str, Any]) -> dict[str, Any]:
        kind = args.get("type", "all")
        kinds = ["core", "custom"] if kind == "all" else [kind]
        fetched = await asyncio.gather(
            *(_optional(client.get(f"{POLICIES}/{k}"), {}, f"{k} policies") for k in kinds)
        )
        by_kind = {k: (data or {}).get("children", []) for k, data in zip(kinds, fetched)}
        policies = [p for k in kinds for p in by_kind[k]]
        return {
            "corePolicies": len(by_kind.get("core", [])),
            "customPolicies": len(by_kind.get("custom", [])),
            "policies": [
                {"name": p.get("name"), "description": p.get("description"), "status": p.get("status")}
                for p in policies
            ],
        }

    async def get_audit_logs(args: dict[str, Any]) -> dict[str, Any]:
        filters = [
            f"{field}=={args[key]}"
            for key, field in (("resource", "assetType"), ("action", "action"), ("user", "userEmail"))
            if args.get(key)
        ]
        data = await client.get(
            AUDIT_EVENTS, limit=args.get("limit", 50), property=filters or None
        )
        events = ((data or {}).get("_embedded") or {}).get("events", [])
        return {
            "totalLogs": len(events),
            "logs": [
                {
                    "timestamp": e.get("timestamp"),
                    "user": e.get("userEmail"),
                    "resource": e.get("assetType"),
                    "action": e.get("action"),
                    "status": e.get("status"),
                }
                for e in events[:20]
            ],
        }

    return [
        Operation(
            name="get_failed_batches",
            description=(
                "Get batches that failed during ingestion. Use when the user asks about "
                "failed batches, errors or ingestion problems."
            ),
            handler=get_failed_batches,
            parameters=_params(
                limit=_limit(10), datasetId=_string("Filter by dataset ID (optional)")
            ),
        ),
        Operation(
            name="get_batch_details",
            description="Get detailed information about a batch including metadata and failed records.",
            handler=get_batch_details,
            parameters=_params(["batchId"], batchId=_string("The batch ID to look up")),
        ),
        Operation(
            name="get_batch_stats",
            description="Get batch ingestion statistics: counts by status and success rates.",
            handler=get_batch_stats,
            parameters=_params(
                timeRange=_string("Time range to cover", enum=["1h", "6h", "24h", "7d", "all"])
            ),
        ),
        Operation(
            name="analyze_batch_errors",
            description=(
                "Analyze the errors of a failed batch, group them by error code and identify "
                "the most likely root cause."
            ),
            handler=analyze_batch_errors,
            parameters=_params(["batchId"], batchId=_string("The batch ID to analyze")),
        ),
        Operation(
            name="search_schemas",
            description="Search the schema registry by schema title.",
            handler=search_schemas,
            parameters=_params(
                query=_string("Search term for the schema title"),
                container=_string("Schema container", enum=["tenant", "global"]),
            ),
        ),
        Operation(
            name="get_schema_stats",
            description="Get schema registry statistics.",
            handler=get_schema_stats,
        ),
        Operation(
            name="list_datasets",
            description="List datasets in the catalog.",
            handler=list_datasets,
            parameters=_params(limit=_limit(20)),
        ),
        Operation(
            name="get_dataset_details",
            description="Get details of one dataset, including its schema reference.",
            handler=get_dataset_details,
            parameters=_params(["datasetId"], datasetId=_string("The dataset ID")),
        ),
        Operation(
            name="lookup_profile",
            description="Look up a customer profile by identity (email, ECID, phone, ...).",
            handler=lookup_profile,
            parameters=_params(
                ["namespace", "identity"],
                namespace=_string("Identity namespace code, e.g. Email or ECID"),
                identity=_string("The identity value"),
            ),
        ),
        Operation(
            name="list_namespaces",
            description="List identity namespaces.",
            handler=list_namespaces,
        ),
        Operation(
            name="get_identity_xid",
            description="Resolve an identity to its XID (platform identity id).",
            handler=get_identity_xid,
            parameters=_params(
                ["namespace", "id"],
                namespace=_string("Identity namespace code"),
                id=_string("Identity value"),
            ),
        ),
        Operation(
            name="get_identity_graph",
            description=(
                "Get the identity graph for an identity: every linked identity across "
                "namespaces, with a shared-device warning for large clusters."
            ),
            handler=get_identity_graph,
            parameters=_params(
                ["namespace", "identity"],
                namespace=_string("Identity namespace code, e.g. Email, ECID, Phone"),
                identity=_string("The identity value"),
            ),
        ),
        Operation(
            name="list_recent_queries",
            description="List recent queries run in Query Service.",
            handler=list_recent_queries,
            parameters=_params(limit=_limit(10)),
        ),
        Operation(
            name="execute_sql_query",
            description="Run a SQL query against the data lake. Requires operator approval.",
            handler=execute_sql_query,
            parameters=_params(
                ["sql"],
                sql=_string("The SQL statement to run"),
                name=_string("Optional name for the query"),
            ),
            requires_approval=True,
            describe=lambda args: f"Execute SQL query:\n```sql\n{args['sql'][:100]}...\n```",
        ),
        Operation(
            name="list_segments",
            description="List audience segments.",
            handler=list_segments,
            parameters=_params(limit=_limit(20)),
        ),
        Operation(
            name="get_segment_stats",
            description="Get segment statistics: totals and counts by lifecycle state.",
            handler=get_segment_stats,
        ),
        Operation(
            name="create_segment",
            description=(
                "Create a segment (audience) from a PQL expression. Requires operator approval."
            ),
            handler=create_segment,
            parameters=_params(
                ["name", "pql"],
                name=_string("Name for the segment"),
                description=_string("What the segment captures"),
                pql=_string("PQL expression defining membership"),
                evaluationType=_string("Evaluation type", enum=["batch", "streaming"]),
            ),
            requires_approval=True,
            describe=lambda args: f"Create segment \"{args['name']}\" with PQL: {args['pql']}",
        ),
        Operation(
            name="list_sandboxes",
            description="List sandboxes in the organization.",
            handler=list_sandboxes,
        ),
        Operation(
            name="get_current_sandbox",
            description="Get the sandbox the copilot is connected to.",
            handler=get_current_sandbox,
        ),
        Operation(
            name="list_data_flows",
            description="List data flows (ingestion pipelines) in the sandbox.",
            handler=list_data_flows,
            parameters=_params(limit=_limit(50)),
        ),
        Operation(
            name="list_flow_runs",
            description="List flow runs and their status, optionally for one flow.",
            handler=list_flow_runs,
            parameters=_params(
                flowId=_string("Only runs of this flow (optional)"), limit=_limit(50)
            ),
        ),
        Operation(
            name="trigger_flow_run",
            description="Trigger a data flow run now. Requires operator approval.",
            handler=trigger_flow_run,
            parameters=_params(["flowId"], flowId=_string("The flow ID to trigger")),
            requires_approval=True,
            describe=lambda args: f"Trigger a run of data flow {args['flowId']}",
        ),
        Operation(
            name="list_governance_policies",
            description="List data governance policies (core and custom).",
            handler=list_governance_policies,
            parameters=_params(type=_string("Policy type filter", enum=["core", "custom", "all"])),
        ),
        Operation(
            name="get_audit_logs",
            description="Retrieve audit events: who did what, and when.",
            handler=get_audit_logs,
            parameters=_params(
                resource=_string("Resource type, e.g. schema, dataset, segment"),
                action=_string("Action, e.g. create, update, delete"),
                user=_string("User email"),
                limit=_limit(50),
            ),
        ),
    ]
