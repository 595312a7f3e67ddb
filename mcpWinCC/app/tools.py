"""WinCC REST endpoints exposed as MCP tools.

Each endpoint is one :class:`ToolRoute` row in :data:`ROUTES`. A single
factory turns a row into a FastMCP handler with a typed signature, and a
single runner turns the call arguments into one dispatch against WinCC.
"""

from __future__ import annotations

import inspect
import json
import logging
import string
from dataclasses import dataclass
from typing import Annotated, Any, Callable, Dict, List, NamedTuple, Optional, Tuple, Union
from urllib.parse import quote, urlencode

from mcp.server.fastmcp import Context, FastMCP
from mcp.server.fastmcp.exceptions import ToolError
from pydantic import BaseModel, Field

from mcpWinCC.app.context import WinCCAppContext, ctx_info, get_app_context
from mcpWinCC.wincc.client import RequestError


logger = logging.getLogger(__name__)

TAG_MANAGEMENT = "/tagManagement"
TAG_LOGGING = "/tagLogging"
ALARM_LOGGING = "/alarmLogging"

TagScalar = Union[bool, int, float, str]


class TagValue(BaseModel):
    """One entry of a multi-tag write."""

    variableName: str = Field(min_length=1, description="Name of the tag to write")
    value: TagScalar = Field(description="Value to write to the tag")


class ArchiveVariableQuery(BaseModel):
    name: str = Field(min_length=1, description="Archive variable name")
    timeFrom: Optional[str] = Field(default=None, description="Start of the time range (ISO 8601)")
    timeTo: Optional[str] = Field(default=None, description="End of the time range (ISO 8601)")
    range: Optional[Union[int, float]] = Field(default=None, description="Relative time range")
    maxValues: Optional[int] = Field(default=None, ge=1, description="Maximum number of values")


class ArchiveQuery(BaseModel):
    name: str = Field(min_length=1, description="Archive name")
    variables: List[ArchiveVariableQuery] = Field(description="Variables and time filters to read")


@dataclass(frozen=True)
class ToolArg:
    name: str
    annotation: Any
    required: bool = True


def required_text(name: str, description: str) -> ToolArg:
    return ToolArg(name, Annotated[str, Field(min_length=1, description=description)])


def optional(name: str, annotation: Any, description: str, **constraints: Any) -> ToolArg:
    return ToolArg(name, Annotated[Optional[annotation], Field(description=description, **constraints)], required=False)


PAGING_ARGS = (
    optional("itemLimit", int, "Maximum number of items to return", ge=1),
    optional("continuationPoint", int, "Continuation point for paging", ge=0),
)
MAX_VALUES_ARG = optional("maxValues", int, "Maximum number of messages to return", ge=1)
LOCALE_ARGS = (
    optional("acceptLanguage", str, "Accept-Language header for localized texts, e.g. 'en-US'"),
    optional("contentLanguage", str, "Content-Language header of the request, e.g. 'en-US'"),
)


class RequestPlan(NamedTuple):
    method: str
    path: str
    body: Any = None


@dataclass(frozen=True)
class ToolRoute:
    """Declarative description of one WinCC-backed tool.

    ``subject`` and ``action`` are format templates over the call arguments;
    they produce ``WinCC <subject>:`` on success and ``Error <action>:`` on
    failure. ``body`` builds the payload of a fixed-path request, ``resolve``
    replaces method, path and payload selection altogether.
    """

    name: str
    title: str
    path: str
    subject: str
    action: str
    method: str = "GET"
    args: Tuple[ToolArg, ...] = ()
    paging: bool = False
    max_values: bool = False
    locale: bool = False
    body: Optional[Callable[[Dict[str, Any]], Any]] = None
    resolve: Optional[Callable[[Dict[str, Any]], RequestPlan]] = None

    @property
    def read_only(self) -> bool:
        return not self.name.startswith("wincc-write")

    @property
    def all_args(self) -> Tuple[ToolArg, ...]:
        extra: Tuple[ToolArg, ...] = ()
        if self.paging:
            extra += PAGING_ARGS
        if self.max_values:
            extra += (MAX_VALUES_ARG,)
        if self.locale:
            extra += LOCALE_ARGS
        return self.args + extra


class _TemplateArgs(dict):
    def __missing__(self, key: str) -> str:
        return ""


def _plain(value: Any) -> Any:
    """Turn validated pydantic arguments back into plain JSON data."""
    if isinstance(value, BaseModel):
        return value.model_dump(exclude_none=True)
    if isinstance(value, (list, tuple)):
        return [_plain(item) for item in value]
    if isinstance(value, dict):
        return {key: _plain(item) for key, item in value.items()}
    return value


def encode_segment(name: str, value: Any) -> str:
    """Percent-encode a user supplied identifier for use as one path segment."""
    if value is None or str(value) == "":
        raise ValueError(f"{name} cannot be empty")
    return quote(str(value), safe="")


def expand_path(template: str, arguments: Dict[str, Any]) -> str:
    names = [fname for _, fname, _, _ in string.Formatter().parse(template) if fname]
    return template.format(**{name: encode_segment(name, arguments.get(name)) for name in names})


def build_query(route: ToolRoute, arguments: Dict[str, Any]) -> str:
    keys: List[str] = []
    if route.paging:
        keys += ["itemLimit", "continuationPoint"]
    if route.max_values:
        keys.append("maxValues")
    params = [(key, arguments[key]) for key in keys if arguments.get(key) is not None]
    return f"?{urlencode(params)}" if params else ""


def build_headers(route: ToolRoute, arguments: Dict[str, Any]) -> Optional[Dict[str, Any]]:
    if not route.locale:
        return None
    return {
        "Accept-Language": arguments.get("acceptLanguage"),
        "Content-Language": arguments.get("contentLanguage"),
    }


def plan_request(route: ToolRoute, arguments: Dict[str, Any]) -> RequestPlan:
    """Resolve method, endpoint (path + query) and body for one call."""
    if route.resolve is not None:
        plan = route.resolve(arguments)
    else:
        body = route.body(arguments) if route.body is not None else None
        plan = RequestPlan(route.method, expand_path(route.path, arguments), body)
    return RequestPlan(plan.method, plan.path + build_query(route, arguments), plan.body)


def format_json(data: Any) -> str:
    return json.dumps(data, indent=2, default=str)


def report_failure(app_ctx: Optional[WinCCAppContext], message: str) -> str:
    """Return the failure text, or raise it as a ToolError when strict errors are on."""
    if app_ctx is not None and app_ctx.config.wincc.strict_errors:
        raise ToolError(message)
    return message


async def run_route(
    route: ToolRoute,
    app_ctx: WinCCAppContext,
    arguments: Dict[str, Any],
    ctx: Optional[Context] = None,
) -> str:
    """Execute one routed tool call and wrap the outcome as text."""
    values = _TemplateArgs({key: _plain(value) for key, value in arguments.items()})
    action = route.action.format_map(values)
    try:
        plan = plan_request(route, values)
        await ctx_info(ctx, f"{plan.method} {plan.path}")
        result = await app_ctx.client.dispatch(plan.path, plan.method, plan.body, build_headers(route, values))
        return f"WinCC {route.subject.format_map(values)}:\n{format_json(result)}"
    except RequestError as exc:
        return report_failure(app_ctx, f"Error {action}: {exc}")
    except ValueError as exc:
        return report_failure(app_ctx, f"Error {action}: {exc}")
    except Exception as exc:  # pragma: no cover - operational guard
        logger.exception("%s failed", route.name)
        return report_failure(app_ctx, f"Error {action}: {exc}")


def make_handler(route: ToolRoute) -> Callable[..., Any]:
    """Build a FastMCP handler whose signature mirrors the route arguments."""

    async def handler(ctx: Context = None, **arguments: Any) -> str:
        return await run_route(route, get_app_context(ctx), arguments, ctx)

    parameters = [
        inspect.Parameter(
            arg.name,
            inspect.Parameter.KEYWORD_ONLY,
            annotation=arg.annotation,
            default=inspect.Parameter.empty if arg.required else None,
        )
        for arg in route.all_args
    ]
    parameters.append(inspect.Parameter("ctx", inspect.Parameter.KEYWORD_ONLY, annotation=Context, default=None))
    handler.__signature__ = inspect.Signature(parameters, return_annotation=str)
    handler.__annotations__ = {**{arg.name: arg.annotation for arg in route.all_args}, "ctx": Context, "return": str}
    handler.__name__ = route.name.replace("-", "_")
    handler.__qualname__ = handler.__name__
    handler.__doc__ = route.title
    return handler


def register_routes(mcp: FastMCP, routes: Tuple[ToolRoute, ...]) -> Dict[str, Callable[..., Any]]:
    """Register every route as a FastMCP tool and return the handlers by tool name."""
    handlers: Dict[str, Callable[..., Any]] = {}
    for route in routes:
        handler = make_handler(route)
        mcp.tool(
            name=route.name,
            description=route.title,
            annotations={
                "title": route.title,
                "readOnlyHint": route.read_only,
                "destructiveHint": not route.read_only,
                "idempotentHint": route.method in ("GET", "PUT"),
                "openWorldHint": False,
            },
        )(handler)
        handlers[route.name] = handler
    return handlers


def describe_routes(routes: Tuple[ToolRoute, ...]) -> List[Dict[str, Any]]:
    return [
        {
            "name": route.name,
            "method": route.method,
            "path": route.path,
            "paging": route.paging,
            "maxValues": route.max_values,
            "locale": route.locale,
        }
        for route in routes
    ]


# --------------------------------------------------------------------------
# Request resolvers for tools whose endpoint depends on the arguments
# --------------------------------------------------------------------------


def _structure_variables(arguments: Dict[str, Any]) -> RequestPlan:
    if arguments.get("structureTypeName"):
        return RequestPlan("GET", expand_path(TAG_MANAGEMENT + "/StructureVariable/{structureTypeName}", arguments))
    if arguments.get("typeNames"):
        return RequestPlan("POST", TAG_MANAGEMENT + "/StructureVariables", {"typeNames": arguments["typeNames"]})
    return RequestPlan("GET", TAG_MANAGEMENT + "/StructureVariables")


def _archive_values(arguments: Dict[str, Any]) -> RequestPlan:
    if arguments.get("variableNames"):
        body = {"variableNames": arguments["variableNames"]}
    elif arguments.get("archives"):
        body = {"archives": arguments["archives"]}
    else:
        raise ValueError("Either variableNames or archives must be provided")
    return RequestPlan("POST", TAG_LOGGING + "/Values", body)


def _active_alarms(arguments: Dict[str, Any]) -> RequestPlan:
    if arguments.get("filterName"):
        return RequestPlan("GET", expand_path(ALARM_LOGGING + "/Messages/{filterName}", arguments))
    return RequestPlan("GET", ALARM_LOGGING + "/Messages")


def _config_pair(
    stems: Tuple[str, str],
    resources: Tuple[str, str],
    arg_name: str,
    nouns: Tuple[str, str],
    locale: bool = False,
) -> Tuple[ToolRoute, ToolRoute]:
    """List + detail routes for a paged configuration collection.

    ``stems``, ``resources`` and ``nouns`` are (plural, singular) pairs: the
    tool name suffix, the REST path segment and the human readable name.
    """
    plural_stem, singular_stem = stems
    plural_path, singular_path = resources
    plural_noun, singular_noun = nouns
    return (
        ToolRoute(
            name=f"wincc-get-{plural_stem}",
            title=f"Read configuration data of all {plural_noun}",
            path=plural_path,
            subject=plural_noun.title(),
            action=f"retrieving {plural_noun}",
            paging=True,
            locale=locale,
        ),
        ToolRoute(
            name=f"wincc-get-{singular_stem}",
            title=f"Read configuration data of a specific {singular_noun}",
            path=f"{singular_path}/{{{arg_name}}}",
            subject=f"{singular_noun.title()} '{{{arg_name}}}'",
            action=f"retrieving {singular_noun} '{{{arg_name}}}'",
            args=(required_text(arg_name, f"Name of the {singular_noun}"),),
            locale=locale,
        ),
    )


TAG_ROUTES: Tuple[ToolRoute, ...] = (
    *_config_pair(
        ("connections", "connection"),
        (TAG_MANAGEMENT + "/Connections", TAG_MANAGEMENT + "/Connection"),
        "connectionName",
        ("connections", "connection"),
    ),
    *_config_pair(
        ("groups", "group"),
        (TAG_MANAGEMENT + "/Groups", TAG_MANAGEMENT + "/Group"),
        "groupName",
        ("tag groups", "tag group"),
    ),
    *_config_pair(
        ("structure-types", "structure-type"),
        (TAG_MANAGEMENT + "/StructureTypes", TAG_MANAGEMENT + "/StructureType"),
        "structureName",
        ("structure types", "structure type"),
    ),
    ToolRoute(
        name="wincc-get-structure-variables",
        title="Read instances of structure types",
        path=TAG_MANAGEMENT + "/StructureVariables",
        subject="Structure Variables",
        action="retrieving structure variables",
        args=(
            optional("structureTypeName", str, "Name of the structure type"),
            optional("typeNames", List[str], "Array of structure type names for multiple types"),
        ),
        resolve=_structure_variables,
    ),
    ToolRoute(
        name="wincc-get-tag-value",
        title="Read runtime value of a specific tag",
        path=TAG_MANAGEMENT + "/Value/{tagName}",
        subject="Tag Value '{tagName}'",
        action="reading tag value '{tagName}'",
        args=(required_text("tagName", "Name of the tag"),),
    ),
    ToolRoute(
        name="wincc-get-tag-values",
        title="Read runtime values of multiple tags",
        method="POST",
        path=TAG_MANAGEMENT + "/Values",
        subject="Tag Values",
        action="reading tag values",
        args=(
            ToolArg(
                "tagNames",
                Annotated[List[str], Field(min_length=1, description="Names of the tags to read")],
            ),
        ),
        body=lambda arguments: {"variableNames": arguments["tagNames"]},
    ),
    ToolRoute(
        name="wincc-write-tag-value",
        title="Write a value to a specific tag",
        method="PUT",
        path=TAG_MANAGEMENT + "/Value/{tagName}",
        subject="Tag Write Result '{tagName}'",
        action="writing to tag '{tagName}'",
        args=(
            required_text("tagName", "Name of the tag"),
            ToolArg("value", Annotated[TagScalar, Field(description="Value to write to the tag")]),
        ),
        body=lambda arguments: {"value": arguments["value"]},
    ),
    ToolRoute(
        name="wincc-write-tag-values",
        title="Write values to multiple tags",
        method="PUT",
        path=TAG_MANAGEMENT + "/Values",
        subject="Multi-Tag Write Results",
        action="writing tag values",
        args=(
            ToolArg(
                "tagValues",
                Annotated[List[TagValue], Field(min_length=1, description="Tag name/value pairs to write")],
            ),
        ),
        body=lambda arguments: arguments["tagValues"],
    ),
    ToolRoute(
        name="wincc-get-tag-config",
        title="Read configuration data of a specific tag",
        path=TAG_MANAGEMENT + "/variable/{tagName}",
        subject="Tag Configuration '{tagName}'",
        action="retrieving tag configuration '{tagName}'",
        args=(required_text("tagName", "Name of the tag"),),
    ),
    ToolRoute(
        name="wincc-get-tags-config",
        title="Read configuration data of all tags",
        path=TAG_MANAGEMENT + "/variables",
        subject="Tags Configuration",
        action="retrieving tags configuration",
        paging=True,
    ),
)


ARCHIVE_ROUTES: Tuple[ToolRoute, ...] = (
    ToolRoute(
        name="wincc-get-archives",
        title="Read configuration data of all process value archives",
        path=TAG_LOGGING + "/Archives",
        subject="Archives",
        action="retrieving archives",
        paging=True,
    ),
    ToolRoute(
        name="wincc-get-archive",
        title="Read configuration data of a specific process value archive",
        path=TAG_LOGGING + "/Archive/{archiveName}",
        subject="Archive '{archiveName}'",
        action="retrieving archive '{archiveName}'",
        args=(required_text("archiveName", "Name of the archive"),),
    ),
    ToolRoute(
        name="wincc-get-archive-variable",
        title="Read configuration data of a specific archive variable",
        path=TAG_LOGGING + "/Archive/{archiveName}/Variable/{variableName}",
        subject="Archive Variable '{variableName}' in '{archiveName}'",
        action="retrieving archive variable '{variableName}' from '{archiveName}'",
        args=(
            required_text("archiveName", "Name of the archive"),
            required_text("variableName", "Name of the archive variable"),
        ),
    ),
    ToolRoute(
        name="wincc-get-archive-variables",
        title="Read configuration data of all variables in an archive",
        path=TAG_LOGGING + "/Archive/{archiveName}/Variables",
        subject="Archive Variables in '{archiveName}'",
        action="retrieving archive variables from '{archiveName}'",
        args=(required_text("archiveName", "Name of the archive"),),
        paging=True,
    ),
    ToolRoute(
        name="wincc-get-archive-value",
        title="Read runtime value of an archive variable",
        path=TAG_LOGGING + "/Archive/{archiveName}/Value/{variableName}",
        subject="Archive Value '{variableName}' from '{archiveName}'",
        action="retrieving archive value '{variableName}' from '{archiveName}'",
        args=(
            required_text("archiveName", "Name of the archive"),
            required_text("variableName", "Name of the archive variable"),
        ),
    ),
    ToolRoute(
        name="wincc-get-archive-values",
        title="Read runtime values of multiple archive variables",
        method="POST",
        path=TAG_LOGGING + "/Values",
        subject="Archive Values",
        action="retrieving archive values",
        args=(
            optional("variableNames", List[str], "Array of variable names from single archive"),
            optional("archives", List[ArchiveQuery], "Array of archives with their variables and time filters"),
        ),
        resolve=_archive_values,
    ),
    ToolRoute(
        name="wincc-get-timers",
        title="Read configuration data of all archive system timers",
        path=TAG_LOGGING + "/Timers",
        subject="Archive Timers",
        action="retrieving timers",
        paging=True,
    ),
    ToolRoute(
        name="wincc-get-timer",
        title="Read configuration data of a specific archive system timer",
        path=TAG_LOGGING + "/Timer/{timerName}",
        subject="Archive Timer '{timerName}'",
        action="retrieving timer '{timerName}'",
        args=(required_text("timerName", "Name of the timer"),),
    ),
    ToolRoute(
        name="wincc-get-archive-tag",
        title="Read configuration data of an archive system tag",
        path=TAG_LOGGING + "/Variable/{tagName}",
        subject="Archive Tag '{tagName}'",
        action="retrieving archive tag '{tagName}'",
        args=(required_text("tagName", "Name of the archive tag"),),
    ),
    ToolRoute(
        name="wincc-get-archive-tags",
        title="Read configuration data of all archive system tags",
        path=TAG_LOGGING + "/Variables",
        subject="Archive Tags",
        action="retrieving archive tags",
        paging=True,
    ),
)


ALARM_ROUTES: Tuple[ToolRoute, ...] = (
    *_config_pair(
        ("alarm-classes", "alarm-class"),
        (ALARM_LOGGING + "/MessageClasses", ALARM_LOGGING + "/MessageClass"),
        "className",
        ("alarm classes", "alarm class"),
        locale=True,
    ),
    *_config_pair(
        ("alarm-types", "alarm-type"),
        (ALARM_LOGGING + "/MessageTypes", ALARM_LOGGING + "/MessageType"),
        "typeName",
        ("alarm types", "alarm type"),
        locale=True,
    ),
    *_config_pair(
        ("alarm-groups", "alarm-group"),
        (ALARM_LOGGING + "/MessageGroups", ALARM_LOGGING + "/MessageGroup"),
        "groupName",
        ("alarm groups", "alarm group"),
        locale=True,
    ),
    *_config_pair(
        ("alarm-blocks", "alarm-block"),
        (ALARM_LOGGING + "/MessageBlocks", ALARM_LOGGING + "/MessageBlock"),
        "blockName",
        ("alarm blocks", "alarm block"),
        locale=True,
    ),
    *_config_pair(
        ("alarm-filters", "alarm-filter"),
        (ALARM_LOGGING + "/Filters", ALARM_LOGGING + "/Filter"),
        "filterName",
        ("alarm filters", "alarm filter"),
        locale=True,
    ),
    ToolRoute(
        name="wincc-get-active-alarms",
        title="Read runtime alarm messages, optionally through a named REST filter",
        path=ALARM_LOGGING + "/Messages",
        subject="Alarm Messages",
        action="retrieving alarm messages",
        args=(optional("filterName", str, "Name of a REST filter defined in WinCC"),),
        max_values=True,
        locale=True,
        resolve=_active_alarms,
    ),
    ToolRoute(
        name="wincc-query-alarms",
        title="Read runtime alarm messages selected by an ad-hoc filter definition",
        method="POST",
        path=ALARM_LOGGING + "/Messages",
        subject="Alarm Messages",
        action="querying alarm messages",
        args=(
            ToolArg(
                "filter",
                Annotated[Dict[str, Any], Field(description="Filter definition passed to WinCC unchanged")],
            ),
        ),
        max_values=True,
        locale=True,
        body=lambda arguments: arguments["filter"],
    ),
)


ROUTES: Tuple[ToolRoute, ...] = TAG_ROUTES + ARCHIVE_ROUTES + ALARM_ROUTES
