"""
Rudder schema bridge: command trees as structured-call tools.

Scope
- derive_tools(): walk a command tree depth-first and emit one Tool per
  command that owns a handler (root included, children unless excluded).
- Tool: name, description, input/output JSON Schemas and invoke(args), which
  replays a structured call through the parse engine exactly like argv.
- Envelope helpers: success_response(), error_response(), simplify().

Naming
- root -> the root command's name; child -> its command chain joined with "_"
  ("db migrate" -> "db_migrate"); a custom namer(chain, root_name) may take over.
- prefix/suffix are added, then the name is sanitized: characters outside
  [a-zA-Z0-9_-] become "_", empty or all-underscore names become "tool", and
  names are cut at 64 characters.

Schemas
- input: one property per flag (help excluded); type string/number/boolean
  (custom kinds are strings, repeatable flags are arrays), description, enum,
  default; 'required' lists flags whose mandatory is True.
- output: output_schemas[tool name], the command's own output_schema,
  default_output_schema, then the successWithData pattern when
  auto_output_schema is set. Pattern names (see OUTPUT_PATTERNS) expand to
  JSON Schema. Output schemas are only attached while the current capability
  version supports them (see rudder.protocol).

Envelopes
- success: {"content": [{"type": "text", "text": ...}]} plus
  "structuredContent" when the tool has an output schema and the current
  version supports it.
- failure: {"content": [{"type": "text", "text": "Error: Cmd error: <kind> - <message>"}], "isError": true}.
- a tool call never raises; every failure becomes an error envelope.
"""
import asyncio
import difflib
import json
import logging
import re
from collections.abc import Mapping, Iterable

from . import protocol
from .coercion import parse_boolean
from .faults import CommandException, FaultCode, UnknownFlagError, getdoc
from .flags import Kind
from .results import ParseSuccess, ParseError, ParseExit
from .utils import *

logger = logging.getLogger(__name__)

# Longest tool name accepted by structured-call clients.
MAX_NAME_LENGTH = 64

OUTPUT_PATTERNS = {
    "successError": {
        "type": "object",
        "properties": {
            "success": {"type": "boolean", "description": "Whether the operation succeeded"},
            "message": {"type": "string", "description": "Optional message about the operation"},
            "error": {"type": "string", "description": "Error message if the operation failed"},
        },
        "required": ["success"],
    },
    "successWithData": {
        "type": "object",
        "properties": {
            "success": {"type": "boolean", "description": "Whether the operation succeeded"},
            "data": {"description": "Response data"},
            "message": {"type": "string", "description": "Optional message about the operation"},
            "error": {"type": "string", "description": "Error message if the operation failed"},
        },
        "required": ["success", "data"],
    },
    "list": {
        "type": "object",
        "properties": {
            "items": {"type": "array", "items": {}, "description": "Array of items"},
            "count": {"type": "number", "description": "Total number of items"},
            "hasMore": {"type": "boolean", "description": "Whether there are more items available"},
        },
        "required": ["items"],
    },
    "fileOperation": {
        "type": "object",
        "properties": {
            "path": {"type": "string", "description": "File path"},
            "size": {"type": "number", "description": "File size in bytes"},
            "created": {"type": "boolean", "description": "Whether the file was created"},
            "modified": {"type": "boolean", "description": "Whether the file was modified"},
            "exists": {"type": "boolean", "description": "Whether the file exists"},
        },
        "required": ["path"],
    },
    "processExecution": {
        "type": "object",
        "properties": {
            "exitCode": {"type": "number", "description": "Process exit code"},
            "stdout": {"type": "string", "description": "Standard output"},
            "stderr": {"type": "string", "description": "Standard error output"},
            "duration": {"type": "number", "description": "Execution duration in milliseconds"},
        },
        "required": ["exitCode"],
    },
}

_TYPES = {
    Kind.STRING: "string",
    Kind.NUMBER: "number",
    Kind.BOOLEAN: "boolean",
    Kind.CUSTOM: "string",
}


def sanitize_tool_name(name, /):
    """
    Map name onto the tool-name alphabet [a-zA-Z0-9_-] (at most 64 characters).
    """
    sanitized = re.sub(r"[^a-zA-Z0-9_-]", "_", str(name))
    if not sanitized or not sanitized.strip("_"):
        sanitized = "tool"
    return sanitized[:MAX_NAME_LENGTH]


def is_valid_tool_name(name, /):
    return isinstance(name, str) and re.fullmatch(r"[a-zA-Z0-9_-]{1,%d}" % MAX_NAME_LENGTH, name) is not None


def _jsonable(value):
    return isinstance(value, str | int | float | bool | list | dict | None)


def _property(flag):
    item = {"type": _TYPES[flag.kind]}
    if flag.choices:
        item["enum"] = list(flag.choices)

    property = {"type": "array", "items": item} if flag.multiple else dict(item)
    property["description"] = str(flag.descr) if flag.descr else "%s parameter" % flag.name

    if flag.default is not Unset and _jsonable(flag.default):
        property["default"] = flag.default
    elif flag.flag_only:
        property["default"] = False
    return property


def input_schema(command, /):
    """
    JSON Schema of the structured arguments accepted by command.
    """
    properties = {}
    required = []
    for flag in command.flags:
        if flag is command.helpflag:
            continue
        properties[flag.name] = _property(flag)
        if flag.mandatory is True:
            required.append(flag.name)

    schema = {"type": "object", "properties": properties}
    if required:
        schema["required"] = required
    return schema


def output_schema(schema, /):
    """
    Expand an output schema: pattern names map to OUTPUT_PATTERNS, mappings are copied, None stays None.
    """
    if schema is None or schema is Unset:
        return None
    if isinstance(schema, str):
        try:
            return json.loads(json.dumps(OUTPUT_PATTERNS[schema]))
        except KeyError:
            raise ValueError("unknown output pattern %r (choose from %s)" % (schema, ", ".join(OUTPUT_PATTERNS))) from None
    if isinstance(schema, Mapping):
        return dict(schema)
    raise TypeError("output schema must be a pattern name or a mapping")


def _text(value):
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, list | dict):
        return json.dumps(value)
    return str(value)


def serialize(command, args, /):
    """
    Turn structured args back into argv tokens for command.

    - flag-only flags: the token when true, nothing when false.
    - repeatable flags: one "--token=value" per item.
    - everything else: "--token=value" (booleans as true/false).
    - None values are skipped.
    - a key that names no flag of command (the help flag included) raises
      UnknownFlagError; structured calls never reach system directives.
    """
    flags = command.flags
    tokens = []
    for key, value in args.items():
        if (flag := flags.get(key)) is None or flag is command.helpflag:
            suggestions = difflib.get_close_matches(str(key), input_schema(command)["properties"], 3)
            try:
                hint = "did you mean %r?" % suggestions[0]
            except IndexError:
                hint = "see the tool's input schema for accepted arguments"
            raise UnknownFlagError(
                "unknown argument %r for %r" % (key, " ".join(step.name for step in command.path)),
                flag=key,
                suggestions=suggestions,
                hint=hint,
                docs=getdoc(FaultCode.UNKNOWN_FLAG),
            )
        if value is None:
            continue

        if flag.flag_only:
            try:
                present = parse_boolean(value)
            except ValueError:
                present = bool(value)
            if present:
                tokens.append(flag.canonical)
        elif flag.multiple and isinstance(value, list | tuple):
            tokens.extend("%s=%s" % (flag.canonical, _text(item)) for item in value)
        else:
            tokens.append("%s=%s" % (flag.canonical, _text(value)))
    return tokens


def success_response(data, /, *, structured=False):
    """
    Wrap a handler result into a success envelope.
    """
    text = data if isinstance(data, str) else json.dumps(data, indent=2, default=str)
    envelope = {"content": [{"type": "text", "text": text}]}
    if structured:
        envelope["structuredContent"] = data if isinstance(data, Mapping) else {"result": data}
    return envelope


def error_response(message, /, *, structured=False):
    """
    Wrap a failure message into an error envelope.
    """
    envelope = {
        "content": [{"type": "text", "text": "Error: %s" % message}],
        "isError": True,
    }
    if structured:
        envelope["structuredContent"] = {"success": False, "error": message}
    return envelope


def simplify(envelope, /):
    """
    Reduce an envelope to {"success", "data" | "error", "exitCode"} for test harnesses.
    """
    if isinstance(envelope, Mapping) and "success" in envelope:
        simplified = {"success": bool(envelope["success"]), "exitCode": envelope.get("exitCode", 0 if envelope["success"] else 1)}
        if "data" in envelope:
            simplified["data"] = envelope["data"]
        if error := envelope.get("error") or envelope.get("message"):
            simplified["error"] = error
        return simplified

    if not isinstance(envelope, Mapping):
        return {"success": True, "data": envelope, "exitCode": 0}

    content = envelope.get("content") or [{}]
    text = content[0].get("text")

    if envelope.get("isError"):
        return {"success": False, "error": text or "unknown error", "exitCode": 1}
    if "structuredContent" in envelope:
        return {"success": True, "data": envelope["structuredContent"], "exitCode": 0}
    try:
        data = json.loads(text)
    except (TypeError, ValueError):
        data = text
    return {"success": True, "data": data, "exitCode": 0}


class Tool:
    """
    One structured-call entry bound to a command.

    Properties
    - name, descr, chain (relative to the root it was derived from),
      input_schema, output_schema (None when absent or unsupported at
      derivation time), command.
    """
    name = mirror("name")
    descr = mirror("descr")
    chain = mirror("chain")
    input_schema = mirror("input_schema")
    output_schema = mirror("output_schema")

    def __init__(self, name, command, /, *, root=Unset, chain=(), descr=Unset, output_schema=None):
        if not is_valid_tool_name(name):
            raise ValueError("tool name %r must match [a-zA-Z0-9_-]{1,%d}" % (name, MAX_NAME_LENGTH))
        self._name = name
        self._command = command
        self._root = coalesce(root, command)
        self._chain = list(chain)
        self._descr = str(coalesce(descr, command.descr or "run '%s'" % " ".join((self._root.name, *chain))))
        self._input_schema = input_schema(command)
        self._output_schema = output_schema

    @property
    def command(self):
        return self._command

    def definition(self):
        """
        The tool as advertised to structured-call clients.
        """
        definition = {
            "name": self._name,
            "description": self._descr,
            "inputSchema": self.input_schema,
        }
        if self._output_schema is not None and protocol.supports_output_schemas(protocol.get_version()):
            definition["outputSchema"] = self.output_schema
        return definition

    async def invoke(self, args=None, /):
        """
        Run the tool with structured args and return a response envelope.

        - {"help": true} returns the command's rendered help without running it.
        - otherwise args are serialized to argv, parsed from the root (with the
          chain in front), routed, and the outcome is wrapped.
        """
        args = dict(args or {})
        structured = self._output_schema is not None and protocol.supports_output_schemas(protocol.get_version())

        if (help := self._command.helpflag) is not None and help.name in args:
            if args.pop(help.name) is True:
                return success_response(self._command.helptext())

        try:
            tokens = [*self._chain, *serialize(self._command, args)]
        except CommandException as fault:
            logger.debug("tool %s rejected its arguments: %s", self._name, fault.message)
            return error_response("Cmd error: %s - %s" % (fault.kind, fault.message), structured=structured)
        logger.debug("tool %s -> %r", self._name, tokens)

        try:
            result = await self._root.parse_async(tokens, structured=True)
        except Exception as exception:
            logger.exception("tool %s failed outside the parse engine", self._name)
            return error_response("Tool execution failed: %s" % exception, structured=structured)

        match result:
            case ParseError():
                return error_response("Cmd error: %s - %s" % (result.kind, result.message), structured=structured)
            case ParseExit():
                return success_response(result.output)
            case ParseSuccess():
                response = result.response
                if isinstance(response, Mapping) and isinstance(response.get("content"), list):
                    return dict(response)
                return success_response({"success": True} if response is None else response, structured=structured)

    def run(self, args=None, /):
        """
        Synchronous invoke() (not for use inside a running event loop).
        """
        return asyncio.run(self.invoke(args))

    def __rich_repr__(self):
        yield "name", self._name
        yield "chain", self._chain
        yield "output_schema", self._output_schema is not None

    def __repr__(self):
        return f"tool({', '.join('%s=%r' % pair for pair in self.__rich_repr__())})"


def _name_of(manual):
    return manual.name if isinstance(manual, Tool) else manual["name"]


def derive_tools(
        root,
        /,
        *,
        include_children=True,
        prefix="",
        suffix="",
        namer=None,
        output_schemas=None,
        default_output_schema=None,
        auto_output_schema=False,
        manual=()
):
    """
    Derive one Tool per handler-owning command of the tree rooted at root.

    Parameters
    - include_children: also derive tools for descendants.
    - prefix, suffix: added around every derived name (before sanitizing).
    - namer: callable(chain, root_name) -> str replacing the default naming.
    - output_schemas: {tool name: pattern name | schema} overrides.
    - default_output_schema: used when neither an override nor the command's
      own output_schema applies.
    - auto_output_schema: fall back to the successWithData pattern.
    - manual: hand-written tools (Tool instances or definition mappings with a
      'name'); they come first and win name collisions.

    Tools are rebuilt on every call; the tree is never modified.
    """
    if not isinstance(manual, Iterable):
        raise TypeError("derive_tools() 'manual' must be an iterable of tools")
    manual = list(manual)
    taken = {_name_of(tool) for tool in manual}
    output_schemas = dict(output_schemas or {})
    gated = protocol.supports_output_schemas(protocol.get_version())

    def walk(command, chain):
        yield command, chain
        if include_children:
            for name, child in command.children.items():
                yield from walk(child, [*chain, name])

    tools = list(manual)
    for command, chain in walk(root, []):
        if command.handler is None:
            continue

        if namer is not None:
            base = namer(list(chain), root.name)
        else:
            base = "_".join(chain) if chain else root.name
        name = sanitize_tool_name("%s%s%s" % (prefix, base, suffix))

        if name in taken:
            logger.debug("tool %s is taken, skipping %r", name, " ".join(chain) or root.name)
            continue
        taken.add(name)

        schema = None
        if gated:
            for candidate in (
                    output_schemas.get(name),
                    coalesce(command.output_schema, None),
                    default_output_schema,
                    "successWithData" if auto_output_schema else None,
            ):
                if candidate is not None:
                    schema = output_schema(candidate)
                    break

        tools.append(Tool(name, command, root=root, chain=chain, output_schema=schema))

    logger.debug("derived %d tool(s) at version %s", len(tools), protocol.get_version())
    return tools


__all__ = (
    "OUTPUT_PATTERNS",
    "Tool",
    "derive_tools",
    "sanitize_tool_name",
    "is_valid_tool_name",
    "input_schema",
    "output_schema",
    "serialize",
    "success_response",
    "error_response",
    "simplify",
)
