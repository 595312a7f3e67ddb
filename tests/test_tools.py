"""Tests for the routed WinCC tools and the login tool."""

import base64
import json
from unittest.mock import AsyncMock, MagicMock

import pytest
from mcp.server.fastmcp.exceptions import ToolError

from mcpWinCC.app.context import build_app_context
from mcpWinCC.app.mcp_server import TOOL_HANDLERS, login_user, mcp
from mcpWinCC.app.tools import ROUTES, TagValue, encode_segment, plan_request

from tests.helpers import FakeWinCC, make_config


def _route(name):
    return next(route for route in ROUTES if route.name == name)


def _basic(username, password):
    return "Basic " + base64.b64encode(f"{username}:{password}".encode()).decode()


class TestLogin:
    @pytest.mark.asyncio
    async def test_login_then_read_connection(self, fake_wincc, mock_context):
        """Login with opA/pwA, then read a named connection."""
        fake_wincc.routes["/tagManagement/Connections"] = (200, [])
        fake_wincc.routes["/tagManagement/Connection/"] = (200, {"name": "PLC 1/A"})

        login_text = await login_user(username="opA", password="pwA", ctx=mock_context)
        assert "Successfully logged in to WinCC as user 'opA'" in login_text

        text = await TOOL_HANDLERS["wincc-get-connection"](connectionName="PLC 1/A", ctx=mock_context)

        request = fake_wincc.last
        assert request.headers["Authorization"] == _basic("opA", "pwA")
        assert fake_wincc.last_path.endswith("/tagManagement/Connection/PLC%201%2FA")
        assert text.startswith("WinCC Connection 'PLC 1/A':\n")
        assert json.loads(text.split("\n", 1)[1]) == {"name": "PLC 1/A"}

    @pytest.mark.asyncio
    async def test_login_clears_bearer_token(self, fake_wincc):
        app_ctx = build_app_context(make_config(bearer_token="tok"), transport=fake_wincc)
        fake_wincc.routes["/tagManagement/Connections"] = (200, [])

        ctx = MagicMock()
        ctx.info = AsyncMock()
        ctx.request_context.lifespan_context = app_ctx

        await login_user(username="opA", password="pwA", ctx=ctx)

        assert fake_wincc.last.headers["Authorization"] == _basic("opA", "pwA")
        assert app_ctx.session.mode == "basic"

    @pytest.mark.asyncio
    async def test_login_probe_failure_reported(self, fake_wincc, mock_context, app_ctx):
        fake_wincc.routes["/tagManagement/Connections"] = (401, {"error": "denied"})

        text = await login_user(username="opA", password="bad", ctx=mock_context)

        assert text == "Login failed for user 'opA': HTTP 401: Unauthorized"
        assert app_ctx.session.username == "opA"

    @pytest.mark.asyncio
    async def test_login_rejects_empty_password_without_request(self, fake_wincc, mock_context):
        text = await login_user(username="opA", password="", ctx=mock_context)

        assert text.startswith("Login failed for user 'opA':")
        assert fake_wincc.requests == []


class TestTagManagement:
    @pytest.mark.asyncio
    async def test_write_tag_value(self, fake_wincc, mock_context):
        fake_wincc.routes["/tagManagement/Value/"] = (200, {"error": None})

        text = await TOOL_HANDLERS["wincc-write-tag-value"](tagName="Motor1.Speed", value=42, ctx=mock_context)

        assert fake_wincc.last.method == "PUT"
        assert fake_wincc.last_path.endswith("/tagManagement/Value/Motor1.Speed")
        assert fake_wincc.last.content == b'{"value": 42}'
        assert text.startswith("WinCC Tag Write Result 'Motor1.Speed':")

    @pytest.mark.asyncio
    async def test_write_tag_values_sends_list(self, fake_wincc, mock_context):
        fake_wincc.routes["/tagManagement/Values"] = (200, [{"variableName": "A", "error": None}])

        await TOOL_HANDLERS["wincc-write-tag-values"](
            tagValues=[TagValue(variableName="A", value=True), {"variableName": "B", "value": "on"}],
            ctx=mock_context,
        )

        assert fake_wincc.last.method == "PUT"
        assert fake_wincc.body_of() == [{"variableName": "A", "value": True}, {"variableName": "B", "value": "on"}]

    @pytest.mark.asyncio
    async def test_read_tag_values_posts_variable_names(self, fake_wincc, mock_context):
        fake_wincc.routes["/tagManagement/Values"] = (200, [])

        await TOOL_HANDLERS["wincc-get-tag-values"](tagNames=["A", "B"], ctx=mock_context)

        assert fake_wincc.last.method == "POST"
        assert fake_wincc.body_of() == {"variableNames": ["A", "B"]}

    @pytest.mark.asyncio
    async def test_paging_query(self, fake_wincc, mock_context):
        fake_wincc.routes["/tagManagement/Groups"] = (200, [])

        text = await TOOL_HANDLERS["wincc-get-groups"](itemLimit=10, continuationPoint=3, ctx=mock_context)

        assert fake_wincc.last_path.endswith("/tagManagement/Groups?itemLimit=10&continuationPoint=3")
        assert text.startswith("WinCC Tag Groups:")

    @pytest.mark.asyncio
    async def test_paging_omitted_when_not_given(self, fake_wincc, mock_context):
        fake_wincc.routes["/tagManagement/variables"] = (200, [])

        await TOOL_HANDLERS["wincc-get-tags-config"](itemLimit=None, continuationPoint=None, ctx=mock_context)

        assert fake_wincc.last_path.endswith("/tagManagement/variables")

    def test_structure_variables_endpoint_selection(self):
        route = _route("wincc-get-structure-variables")

        by_name = plan_request(route, {"structureTypeName": "Motor Type"})
        by_list = plan_request(route, {"typeNames": ["A", "B"]})
        everything = plan_request(route, {})

        assert by_name == ("GET", "/tagManagement/StructureVariable/Motor%20Type", None)
        assert by_list == ("POST", "/tagManagement/StructureVariables", {"typeNames": ["A", "B"]})
        assert everything == ("GET", "/tagManagement/StructureVariables", None)


class TestArchives:
    @pytest.mark.asyncio
    async def test_archive_values_body_unchanged(self, fake_wincc, mock_context):
        fake_wincc.routes["/tagLogging/Values"] = (200, [])
        archives = [{"name": "Arch1", "variables": [{"name": "Var1", "maxValues": 100}]}]

        await TOOL_HANDLERS["wincc-get-archive-values"](archives=archives, ctx=mock_context)

        assert fake_wincc.last.method == "POST"
        assert fake_wincc.last_path.endswith("/tagLogging/Values")
        assert fake_wincc.body_of() == {"archives": archives}

    @pytest.mark.asyncio
    async def test_archive_values_requires_selection(self, fake_wincc, mock_context):
        text = await TOOL_HANDLERS["wincc-get-archive-values"](ctx=mock_context)

        assert text == "Error retrieving archive values: Either variableNames or archives must be provided"
        assert fake_wincc.requests == []

    @pytest.mark.asyncio
    async def test_archive_variable_path(self, fake_wincc, mock_context):
        fake_wincc.routes["/tagLogging/Archive/"] = (200, {})

        text = await TOOL_HANDLERS["wincc-get-archive-variable"](
            archiveName="Arch 1", variableName="Tank/Level", ctx=mock_context
        )

        assert fake_wincc.last_path.endswith("/tagLogging/Archive/Arch%201/Variable/Tank%2FLevel")
        assert text.startswith("WinCC Archive Variable 'Tank/Level' in 'Arch 1':")


class TestAlarms:
    @pytest.mark.asyncio
    async def test_active_alarms_with_filter_and_locale(self, fake_wincc, mock_context):
        fake_wincc.routes["/alarmLogging/Messages"] = (200, [])

        await TOOL_HANDLERS["wincc-get-active-alarms"](
            filterName="Boiler alarms", maxValues=50, acceptLanguage="de-DE", ctx=mock_context
        )

        request = fake_wincc.last
        assert fake_wincc.last_path.endswith("/alarmLogging/Messages/Boiler%20alarms?maxValues=50")
        assert request.headers["Accept-Language"] == "de-DE"
        assert "Content-Language" not in request.headers

    @pytest.mark.asyncio
    async def test_active_alarms_without_filter(self, fake_wincc, mock_context):
        fake_wincc.routes["/alarmLogging/Messages"] = (200, [])

        await TOOL_HANDLERS["wincc-get-active-alarms"](ctx=mock_context)

        assert fake_wincc.last_path.endswith("/alarmLogging/Messages")
        assert "Accept-Language" not in fake_wincc.last.headers

    @pytest.mark.asyncio
    async def test_query_alarms_posts_filter(self, fake_wincc, mock_context):
        fake_wincc.routes["/alarmLogging/Messages"] = (200, [])
        query = {"messageClasses": ["Alarm"], "states": ["Came In"]}

        await TOOL_HANDLERS["wincc-query-alarms"](filter=query, contentLanguage="en-US", ctx=mock_context)

        assert fake_wincc.last.method == "POST"
        assert fake_wincc.body_of() == query
        assert fake_wincc.last.headers["Content-Language"] == "en-US"

    @pytest.mark.asyncio
    async def test_alarm_filter_detail(self, fake_wincc, mock_context):
        fake_wincc.routes["/alarmLogging/Filter/"] = (200, {"name": "F1"})

        text = await TOOL_HANDLERS["wincc-get-alarm-filter"](filterName="F1", ctx=mock_context)

        assert fake_wincc.last_path.endswith("/alarmLogging/Filter/F1")
        assert text.startswith("WinCC Alarm Filter 'F1':")


class TestFailureReporting:
    @pytest.mark.asyncio
    async def test_unauthorized_reported_as_text(self, fake_wincc, mock_context):
        fake_wincc.routes["/tagLogging/Archive/"] = (401, b"denied")

        text = await TOOL_HANDLERS["wincc-get-archive"](archiveName="Arch1", ctx=mock_context)

        assert "Arch1" in text
        assert "401" in text
        assert text == "Error retrieving archive 'Arch1': HTTP 401: Unauthorized"

    @pytest.mark.asyncio
    async def test_strict_errors_raise_tool_error(self, fake_wincc, mock_context, app_ctx):
        app_ctx.config.wincc.strict_errors = True
        fake_wincc.routes["/tagManagement/Value/"] = (500, {"error": "boom"})

        with pytest.raises(ToolError, match="Error reading tag value 'T1': HTTP 500"):
            await TOOL_HANDLERS["wincc-get-tag-value"](tagName="T1", ctx=mock_context)

    @pytest.mark.asyncio
    async def test_empty_identifier_never_dispatched(self, fake_wincc, mock_context):
        text = await TOOL_HANDLERS["wincc-get-timer"](timerName="", ctx=mock_context)

        assert text == "Error retrieving timer '': timerName cannot be empty"
        assert fake_wincc.requests == []

    def test_encode_segment_reserved_characters(self):
        assert encode_segment("tagName", "a/b c?d#e") == "a%2Fb%20c%3Fd%23e"


class TestRegistration:
    @pytest.mark.asyncio
    async def test_every_route_is_listed(self):
        tools = {tool.name: tool for tool in await mcp.list_tools()}

        assert "login-user" in tools
        for route in ROUTES:
            assert route.name in tools
        assert len(tools) == len(ROUTES) + 1

    @pytest.mark.asyncio
    async def test_input_schema_from_route_arguments(self):
        tools = {tool.name: tool for tool in await mcp.list_tools()}

        schema = tools["wincc-get-archive-variables"].inputSchema
        assert set(schema["properties"]) == {"archiveName", "itemLimit", "continuationPoint"}
        assert schema["required"] == ["archiveName"]
        assert "ctx" not in schema["properties"]

        alarms = tools["wincc-get-active-alarms"].inputSchema["properties"]
        assert {"filterName", "maxValues", "acceptLanguage", "contentLanguage"} <= set(alarms)

    @pytest.mark.asyncio
    async def test_write_tools_are_not_read_only(self):
        tools = {tool.name: tool for tool in await mcp.list_tools()}

        assert tools["wincc-write-tag-value"].annotations.readOnlyHint is False
        assert tools["wincc-get-tag-value"].annotations.readOnlyHint is True

    def test_tool_names_unique(self):
        names = [route.name for route in ROUTES]
        assert len(names) == len(set(names))
