"""
Command line simulator for the OneClick rule engine.

Usage (from project root)::

    python -m oneclick --rules config/sample_rules.yaml \
        --work-item-type Bug --project-id Fabrikam \
        --field System.State=New --field System.Title="Crash on start" \
        --event loaded:new --event field:System.State=Active --event saved

Rules come from a YAML file (in-memory storage) or, with ``--api-url``,
from the REST API. The events run in order against an in-memory work item
form; the final field values and the last rule error are printed as JSON.
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from typing import Any, Dict, List, Optional, Tuple

from dotenv import load_dotenv

from .config import Settings, load_settings, validate_runtime_settings
from .constants import FormEvent
from .engine import RuleCache, RuleEngineHost
from .logging_config import setup_logging
from .platform import (
    FieldType,
    InMemoryFormEventRegistry,
    InMemoryWorkItemForm,
    InMemoryWorkItemService,
    Iteration,
    LogNotificationProvider,
    RuleContext,
    StaticIdentityService,
    StaticIterationService,
)
from .schemas.rule import IdentityRef
from .storage import InMemoryRuleStorage, LocalSettingsStore, RestRuleStorage, RuleStorage

_SIMPLE_EVENTS = {
    "loaded": FormEvent.ON_LOADED,
    "saved": FormEvent.ON_SAVED,
    "refreshed": FormEvent.ON_REFRESHED,
    "reset": FormEvent.ON_RESET,
    "unloaded": FormEvent.ON_UNLOADED,
}


def _split_assignment(raw: str) -> Tuple[str, str]:
    name, sep, value = raw.partition("=")
    if not sep or not name.strip():
        raise argparse.ArgumentTypeError(f"expected REF=VALUE, got {raw!r}")
    return name.strip(), value


def parse_event(raw: str) -> Tuple[FormEvent, Dict[str, Any], Optional[Tuple[str, str]]]:
    """
    Turn an ``--event`` value into (event, payload, field assignment).

    ``loaded``, ``loaded:new``, ``saved``, ``refreshed``, ``reset``,
    ``unloaded`` and ``field:REF=VALUE`` are understood.
    """
    text = raw.strip()
    if text.lower().startswith("field:"):
        ref, value = _split_assignment(text[len("field:"):])
        return FormEvent.ON_FIELD_CHANGED, {}, (ref, value)
    name, _, modifier = text.partition(":")
    event = _SIMPLE_EVENTS.get(name.lower())
    if event is None:
        raise argparse.ArgumentTypeError(f"unknown event {raw!r}")
    payload: Dict[str, Any] = {}
    if event == FormEvent.ON_LOADED:
        payload["isNew"] = modifier.lower() == "new"
    return event, payload, None


def parse_args(argv: List[str]) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="OneClick rule engine simulator")
    parser.add_argument("--rules", type=str, default=None, help="Path to YAML rules file (in-memory storage)")
    parser.add_argument("--api-url", type=str, default=None, help="Rule storage REST API base URL")
    parser.add_argument("--work-item-type", type=str, required=True, help="Work item type of the simulated form")
    parser.add_argument("--project-id", type=str, required=True, help="Project id of the simulated form")
    parser.add_argument("--work-item-id", type=int, default=None, help="Id of the simulated work item (omit for new)")
    parser.add_argument(
        "--field",
        action="append",
        default=[],
        type=_split_assignment,
        help="Initial field value, REF=VALUE (repeatable)",
    )
    parser.add_argument(
        "--field-type",
        action="append",
        default=[],
        type=_split_assignment,
        help="Field type, REF=TYPE with TYPE in " + ", ".join(t.value for t in FieldType),
    )
    parser.add_argument(
        "--event",
        action="append",
        default=[],
        type=parse_event,
        help="Lifecycle event to fire, in order: loaded[:new], field:REF=VALUE, saved, refreshed, reset, unloaded",
    )
    parser.add_argument("--user", type=str, default="Local User", help="Display name returned by @Me")
    parser.add_argument("--iteration", type=str, default=None, help="Path of the current iteration")
    parser.add_argument("--refresh", action="store_true", help="Bypass the local rule cache")
    parser.add_argument("--log-level", type=str, default=None, help="Logging level (DEBUG, INFO, WARNING, ERROR)")
    return parser.parse_args(argv)


def build_storage(args: argparse.Namespace, settings: Settings) -> RuleStorage:
    api_url = args.api_url or settings.api_url
    if api_url:
        return RestRuleStorage(api_url, token=settings.api_token, timeout_sec=settings.request_timeout_sec)
    if not args.rules:
        raise ValueError("either --rules or --api-url (ONECLICK_API_URL) is required")
    return InMemoryRuleStorage.from_yaml(args.rules)


def build_form(args: argparse.Namespace) -> InMemoryWorkItemForm:
    field_types = {ref: FieldType(value) for ref, value in args.field_type}
    return InMemoryWorkItemForm(fields=dict(args.field), field_types=field_types, work_item_id=args.work_item_id)


async def simulate(args: argparse.Namespace, settings: Settings) -> Dict[str, Any]:
    logger = logging.getLogger("main")
    storage = build_storage(args, settings)
    local_store = LocalSettingsStore(settings.local_store_path, settings.user_id)
    cache = RuleCache(storage, local_store, key_prefix=settings.rules_cache_key_prefix)
    form = build_form(args)
    iterations = []
    if args.iteration:
        name = args.iteration.replace("/", "\\").split("\\")[-1]
        iterations.append(Iteration(id=name, name=name, path=args.iteration, time_frame="current"))
    context = RuleContext(
        form=form,
        identity=StaticIdentityService(IdentityRef(id=settings.user_id, display_name=args.user)),
        iterations=StaticIterationService(iterations),
        work_items=InMemoryWorkItemService(),
        notifier=LogNotificationProvider(),
        project_id=args.project_id,
        team_id=settings.team_id,
        work_item_type=args.work_item_type,
        tz=settings.tzinfo(),
    )
    host = RuleEngineHost(cache, context, order_key_prefix=settings.rule_order_key_prefix)
    registry = InMemoryFormEventRegistry()
    host.attach(registry)
    if args.refresh:
        cache.invalidate(args.work_item_type, args.project_id)

    for event, payload, assignment in args.event:
        if assignment is not None:
            ref, value = assignment
            old = await form.get_field_value(ref)
            await form.set_field_value(ref, value)
            payload = {"changedFields": {ref: value}, "oldValues": {ref: old}}
        payload.setdefault("id", await form.get_work_item_id())
        if not registry.registered:
            logger.warning("Form session already unloaded; ignoring %s", event.value)
            continue
        logger.info("Firing %s", event.value)
        await registry.fire(event, payload)

    last_error = host.get_last_error()
    return {
        "rules": [r.name for r in host.rules],
        "fields": form.fields,
        "links": [{"target": target, "linkType": link_type} for target, link_type in form.links],
        "lastError": None if last_error is None else {"actionName": last_error.action_name, "message": last_error.message},
    }


def main(argv: List[str] | None = None) -> int:
    load_dotenv()
    args = parse_args(argv if argv is not None else sys.argv[1:])
    try:
        settings = load_settings()
    except Exception as exc:
        print(f"Failed to load configuration: {exc}", file=sys.stderr)
        return 1
    setup_logging(level=args.log_level or settings.log_level)
    validate_runtime_settings(settings)
    logger = logging.getLogger("main")
    try:
        result = asyncio.run(simulate(args, settings))
    except Exception as exc:
        logger.error("Simulation failed: %s", exc)
        return 1
    print(json.dumps(result, indent=2, default=str))
    return 2 if result["lastError"] else 0


if __name__ == "__main__":
    sys.exit(main())
