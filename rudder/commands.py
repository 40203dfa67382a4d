"""
Rudder command layer: build, compose, parse and run command trees.

What this module provides
- Command: one node of a command tree.
  • Flag discovery from the handler's defaults (Flag) plus explicitly declared flags.
  • Hierarchies (parent/child) to model subcommands; children are looked up by name.
  • Rich-based help and tree renderers.
  • The parse engine (path resolution, flag scan, validation, coercion) and the
    execution router that runs the deepest node's handler.

- Factories and helpers:
  • command(...): create a Command or a decorator that produces one.
  • router(...): create a handler-less Command that only routes to children.
  • invoke(obj, argv): CLI surface for Commands or plain callables.

Core ideas
- Signature-driven UX: the handler's parameters define the flags it receives.
- Parse state is per call; the tree itself is only read while parsing, so
  independent parses may run concurrently against the same commands.
- Friendly diagnostics: errors start from the position they happened at
  ("at third position") and carry a single actionable hint.

Quick start
    from rudder import command, Flag, Context

    @command(shell=True)
    def deploy(
        target=Flag("--target", "-t", mandatory=True, choices=("staging", "prod")),
        replicas=Flag("--replicas", kind="number", default=1),
        context=Context,
    ):
        return {"target": target, "replicas": replicas, "chain": context.chain}

    @deploy.command
    def rollback(version=Flag("--version", mandatory=True)):
        ...

    if __name__ == "__main__":
        invoke(deploy)

Grammar
- prog [flags] [child [flags]]* [positionals]
- A non-flag token names a child only while no positional has been collected
  at the current level; a value-taking flag always consumes the next token.
- "--" ends flag scanning; the rest is positional overflow.
"""
import asyncio
import contextlib
import difflib
import inspect
import io
import logging
import os.path
import re
import shlex
import sys
import threading
import weakref
from collections import defaultdict, deque
from collections.abc import Iterable, Mapping
from inspect import Parameter

from rich.box import ROUNDED
from rich.console import Console, Group
from rich.panel import Panel
from rich.pretty import Pretty
from rich.table import Table
from rich.text import Text
from rich.tree import Tree

from . import env, protocol
from .coercion import coerce
from .faults import *
from .flags import Flag, FlagSet
from .results import ParseSuccess, ParseError, ParseExit, Context
from .system import SystemArgs, scan
from .utils import *

logger = logging.getLogger(__name__)

# A token is a flag when it starts with one or two dashes followed by a letter;
# "-5" and "-.5" are values.
_FLAGLIKE = re.compile(r"--?[^\W\d_]")

# Rendering width for captured help and debug output.
_WIDTH = 100


class CommandType(type):
    """
    Metaclass that makes commands introspectable.

    Responsibilities
    - Expose selected fields as read-only properties using mirror() for all
      names listed in __introspectable__.
    - Provide stable, readable __repr__/__rich_repr__ for diagnostics.

    Conventions
    - __typename__ is derived from the class name (camel-case split with hyphens).
    - __displayable__ (if set) narrows which properties are shown by __rich_repr__;
      otherwise __introspectable__ is used.
    """
    __introspectable__ = ()
    __displayable__ = Unset

    def __new__(cls, name, bases, namespace, **options):
        self = super().__new__(
            cls,
            name,
            bases,
            namespace | {
                "__typename__": re.sub(r"(?<!^)(?=[A-Z])", r"-", name).lower(),
            } | {
                name: mirror(name) for name in namespace.get("__introspectable__", ())
            },
        )

        @rename("__repr__")
        def __repr__(self):
            return f"{type(self).__typename__}({', '.join('%s=%r' % pair for pair in self.__rich_repr__())})"
        self.__repr__ = __repr__

        @rename("__rich_repr__")
        def __rich_repr__(self):
            for name in coalesce(type(self).__displayable__, type(self).__introspectable__):
                yield name, getattr(self, name)
        self.__rich_repr__ = __rich_repr__

        return self


def _process_source(cls, metadata):
    """
    Introspect the handler and collect the flags it declares.

    Responsibilities
    - Every handler parameter must be passable by keyword and have a default.
    - A Flag default declares a flag bound to that parameter; an unnamed flag
      takes the parameter's name.
    - A default of Context binds the invocation context.
    - Any other default is left to the handler.

    Mutates
    - metadata["signature"]: flags declared through the signature, in order.
    - metadata["bindings"]: {parameter name: flag name | Context}.
    """
    signature = metadata["signature"] = []
    bindings = metadata["bindings"] = {}

    if (handler := metadata["handler"]) is None:
        return
    try:
        parameters = inspect.signature(handler).parameters
    except TypeError:
        raise TypeError(f"{cls.__typename__} 'handler' must be callable") from None
    except ValueError:
        raise ValueError(f"{cls.__typename__} 'handler' must be an inspectable callable") from None

    for name, parameter in parameters.items():
        if parameter.kind in (Parameter.POSITIONAL_ONLY, Parameter.VAR_POSITIONAL, Parameter.VAR_KEYWORD):
            raise TypeError(f"{cls.__typename__} 'handler' parameter {name!r} must be passable by keyword")
        if parameter.default is Parameter.empty:
            raise TypeError(f"{cls.__typename__} 'handler' parameter {name!r} must have a default")

        if parameter.default is Context:
            bindings[name] = Context
        elif isinstance(flag := parameter.default, Flag):
            if flag.name is Unset:
                flag = replace(flag, name=name)
            elif flag.name != name:
                raise ValueError(f"{cls.__typename__} 'handler' parameter {name!r} cannot bind flag {flag.name!r}")
            signature.append(flag)
            bindings[name] = name


def _process_flags(cls, metadata):
    """
    Build the node's FlagSet: signature flags, declared flags, inherited flags, help.

    - Duplicates among the node's own flags raise DuplicateFlagError.
    - Inherited parent flags (inherit=True) are added only where they do not
      collide with the node's own names or tokens; the parent's help flag is
      never inherited.
    - The -h/--help flag is added unless one of its tokens (or its name) is taken.
    """
    if isinstance(declared := metadata["flags"], str | Flag) or not isinstance(declared, Iterable):
        raise TypeError(f"{cls.__typename__} 'flags' must be an iterable of flags")
    declared = list(declared)
    if not all(isinstance(flag, Flag) for flag in declared):
        raise TypeError(f"{cls.__typename__} 'flags' must be an iterable of flags")

    flags = FlagSet((*metadata.pop("signature"), *declared))

    if metadata["inherit"] and (parent := metadata["parent"]):
        for flag in parent._flags:
            if flag is not parent._help and not flags.collisions([flag]):
                flags.add(flag)

    help = Flag(
        "-h", "--help",
        name="help",
        kind="boolean",
        flag_only=True,
        descr="show this help message and exit",
    )
    metadata["help"] = None if flags.collisions([help]) else flags.add(help)
    metadata["flags"] = flags


def _process_strings(cls, metadata):
    """
    Normalize scalar string/Text metadata fields (name, descr, usage, epilog).

    - Validates type: each value must be str | Text | Unset.
    - Trims strings; empty strings are rejected.
    - The name must be a single word that does not look like a flag.
    """
    for name in (
            "name",
            "descr",
            "usage",
            "epilog",
    ):
        if not isinstance(object := metadata[name], str | Text | Unset):
            raise TypeError(f"{cls.__typename__} {name!r} must be a string")
        elif isinstance(object, str) and not (object := object.strip()):
            raise ValueError(f"{cls.__typename__} {name!r} cannot be empty")
        metadata[name] = coalesce(object)

    if re.search(r"\s", name := str(metadata["name"])) or name.startswith("-"):
        raise ValueError(f"{cls.__typename__} 'name' must be a single word that does not start with '-'")


def _process_schema(cls, metadata):
    """
    Validate 'output_schema': Unset, an output pattern name, or a JSON Schema mapping.
    """
    if not isinstance(schema := metadata["output_schema"], str | Mapping | Unset):
        raise TypeError(f"{cls.__typename__} 'output_schema' must be a pattern name or a mapping")
    elif isinstance(schema, str) and not (schema := schema.strip()):
        raise ValueError(f"{cls.__typename__} 'output_schema' cannot be empty")
    metadata["output_schema"] = dict(schema) if isinstance(schema, Mapping) else coalesce(schema)


def _attach_to_parent(self, parent):
    """
    Register this command under its parent, enforcing unique names.
    """
    if getattr(parent, "_children", {}).setdefault(name := str(self.name), self) is self:
        return

    typeof = "subcommand" if parent.parent else "command"
    raise ValueError(f"{type(self).__typename__} {typeof} name {name!r} is already in use")


def _tokenize(argv):
    """
    Normalize argv: Unset reads sys.argv[1:], strings are shell-split, iterables are listed.
    """
    if argv is Unset:
        return sys.argv[1:]
    if isinstance(argv, str):
        return shlex.split(argv)
    if isinstance(argv, Iterable):
        tokens = list(argv)
        if not all(isinstance(token, str) for token in tokens):
            raise TypeError("parse() argument must be a string or an iterable of strings")
        return tokens
    raise TypeError("parse() argument must be a string or an iterable of strings")


def _capture(renderable):
    """
    Render a rich renderable to plain text.
    """
    console = Console(file=io.StringIO(), width=_WIDTH, highlight=False)
    console.print(renderable)
    return console.file.getvalue().rstrip("\n")


class _Level:
    """
    per-parse state of one traversed command.
    """
    __slots__ = ("command", "records", "positionals", "args")

    def __init__(self, command):
        self.command = command
        self.records = []  # (flag, token, index) in input order
        self.positionals = []
        self.args = {}


class _State:
    """
    everything one parse call mutates; commands themselves are only read.
    """

    def __init__(self, *, structured=False):
        self.levels = []
        self.chain = []
        self.index = 0
        self.system = None
        self.fuzzy = False
        self.config = {}
        self.structured = structured

    def enter(self, command):
        self.levels.append(level := _Level(command))
        return level


class Command(metaclass=CommandType):
    """
    One node of a command tree.

    Responsibilities
    - Introspection: name, descr, usage, epilog, children and runtime options
      as read-only properties; flags as a FlagSet copy.
    - Composition: parent/child hierarchies; the parent link is weak.
    - Parsing: parse()/parse_async() resolve argv against the tree rooted here.
    - Routing: the deepest reached node's handler runs with its arguments.
    - Rendering: help (helpview/helptext) and the tree view (tree).

    Lifecycle
    - Built once at program-definition time. add_flag/remove_flag/add_child are
      the only mutations and are refused while any parse of the tree is running.

    Handler binding
    - Each handler parameter must have a default: a Flag (the flag's value is
      passed, None when absent) or Context (the invocation context).
    """

    __introspectable__ = (
        "name",
        "descr",
        "usage",
        "epilog",
        "children",
        "positionals",
        "inherit",
        "output_schema",
        "shell",
        "fancy",
        "colorful",
    )

    __displayable__ = (
        "name",
        "descr",
        "flags",
        "children",
        "positionals",
        "shell",
        "fancy",
        "colorful",
    )

    @property
    def parent(self):
        return self._parent() if self._parent is not None else None

    @property
    def handler(self):
        return self._handler

    @property
    def flags(self):
        return self._flags.copy()

    @property
    def helpflag(self):
        """
        the built-in -h/--help flag, or None when the author claimed its spelling.
        """
        return self._help

    @property
    def root(self):
        """
        Return the topmost command in the current command hierarchy.
        """
        child, parent = self, self.parent
        while parent:
            child, parent = parent, parent.parent
        return child

    @property
    def path(self):
        """
        Return the full ancestry from root to this command as a tuple.
        """
        path = [command := self]
        while command.parent:
            path.append(command := command.parent)
        return tuple(reversed(path))

    @property
    def chain(self):
        """
        Names from below the root down to this command (the root itself is excluded).
        """
        return [step.name for step in self.path[1:]]

    def __new__(
            cls,
            source=None,
            /,
            parent=Unset,
            name=Unset,
            descr=Unset,
            usage=Unset,
            epilog=Unset,
            flags=(),
            *,
            positionals=False,
            inherit=False,
            output_schema=Unset,
            shell=Unset,
            fancy=Unset,
            colorful=Unset
    ):
        """
        Construct a command from a handler (or None for a pure router).

        Parameters
        - source: callable | None
          The handler. Its signature declares flags (see the class docstring).
          None builds a router that only dispatches to children.
        - parent: Command | Unset
          Parent under which to attach this command. If Unset, it is a root.
        - name, descr, usage, epilog: str | Text | Unset
          Identity and help text. The name defaults to the handler's __name__
          (or the program name for routers); descr defaults to the docstring.
        - flags: Iterable[Flag]
          Extra flags; their values land in Context.args.
        - positionals: accept positional overflow (Context.positionals).
        - inherit: copy the parent's flags where they do not collide.
        - output_schema: pattern name or JSON Schema mapping for the schema bridge.
        - shell, fancy, colorful: bool | Unset
          Runtime options; Unset inherits from the parent (or defaults to False).

        Raises
        - DuplicateFlagError when two flags share a name or token.
        - TypeError/ValueError on invalid metadata or handler signatures, or
          when the name is already taken under the parent.
        """
        if not isinstance(parent, Command | Unset):
            raise TypeError(f"{cls.__typename__} 'parent' must be a command")
        if source is not None and not callable(source):
            raise TypeError(f"{cls.__typename__} 'handler' must be callable")

        metadata = {
            "handler": source,
            "name": coalesce(name, getattr(source, "__name__", os.path.basename(sys.argv[0]) or "rudder")),
            "descr": coalesce(descr, inspect.getdoc(source) or Unset if source is not None else Unset),
            "usage": usage,
            "epilog": epilog,
            "flags": flags,
            "positionals": bool(positionals),
            "inherit": bool(inherit),
            "output_schema": output_schema,
            "shell": bool(coalesce(shell, getattr(parent, "shell", False))),
            "fancy": bool(coalesce(fancy, getattr(parent, "fancy", False))),
            "colorful": bool(coalesce(colorful, getattr(parent, "colorful", False))),
            "parent": coalesce(parent),
            "children": {},
        }
        _process_source(cls, metadata)
        _process_flags(cls, metadata)
        _process_strings(cls, metadata)
        _process_schema(cls, metadata)

        self = super().__new__(cls)
        for name, object in metadata.items():
            setattr(self, "_" + name, object)
        self._parent = weakref.ref(parent) if parent else None
        self._inflight = 0
        self._lock = threading.Lock()
        _attach_to_parent(self, self.parent)
        return self

    def __call__(self, /, *args, **kwargs):
        """
        Call the handler directly, bypassing parsing.
        """
        if self._handler is None:
            raise TypeError(f"{type(self).__typename__} {self._name!r} has no handler")
        return self._handler(*args, **kwargs)

    # ── composition ─────────────────────────────────────────────────────────

    def command(self, source=Unset, /, *args, **kwargs):
        """
        Create a subcommand under this command (directly or as a decorator).
        """
        return command(source, self, *args, **kwargs)

    def router(self, *args, **kwargs):
        """
        Create a handler-less subcommand under this command.
        """
        return Command(None, self, *args, **kwargs)

    def _ensure_idle(self):
        if self.root._inflight:
            raise RuntimeError(f"{type(self).__typename__} {self._name!r} cannot change while a parse is running")

    def add_flag(self, flag, /):
        """
        Add a flag to this command and return it (named).
        """
        self._ensure_idle()
        return self._flags.add(flag)

    def remove_flag(self, name, /):
        """
        Remove and return the flag called name.
        """
        self._ensure_idle()
        if self._help is not None and name == self._help.name:
            self._help = None
        return self._flags.remove(name)

    def add_child(self, child, /):
        """
        Attach a root command under this command and return it.
        """
        self._ensure_idle()
        if not isinstance(child, Command):
            raise TypeError(f"{type(self).__typename__} child must be a command")
        if child.parent is not None:
            raise ValueError(f"{type(self).__typename__} {child.name!r} already has a parent")
        if child is self.root:
            raise ValueError(f"{type(self).__typename__} cannot attach the root to itself")
        _attach_to_parent(child, self)
        child._parent = weakref.ref(self)
        return child

    @contextlib.contextmanager
    def _running(self):
        root = self.root
        with root._lock:
            root._inflight += 1
        try:
            yield
        finally:
            with root._lock:
                root._inflight -= 1

    def trigger(self, fault, /, **options):
        """
        Surface a fault with this command's runtime options (see faults.trigger).
        """
        return trigger(fault, **options, tool=self, shell=self._shell, fancy=self._fancy, colorful=self._colorful)

    # ── rendering ───────────────────────────────────────────────────────────

    def _palette(self):
        styles = defaultdict(str, {
            # === Head sections ===
            "usage-label": "bold #00E6FF",
            "program-name": "bold #FF4D94",
            "usage-section": "bold #36C5F0",
            "description-section": "italic #A3A3A3",
            "epilog-section": "#737373",

            # === Groups / flags ===
            "group-label": "bold #FFFFFF",
            "argument-description": "#9CA3AF",
            "option-name": "bold #00E6FF",
            "flag-name": "bold #22C55E",
            "metavar": "bold #FFD600",
            "choice": "bold #FF4D94",
            "mandatory": "bold #EF4444",

            # === Children ===
            "children-title": "bold #FFFFFF",
            "children-table": "#4B5563",
            "children": "bold #36C5F0",
            "children-description": "#9CA3AF",
            "name-column": "",

            # === Fancy panel ===
            "panel-title": "bold #FF4D94",
            "panel-subtitle": "#9CA3AF",
        } | getattr(__import__("__main__"), "__styles__", {}))

        def styler(style):
            return styles[style] if self._colorful else ""

        def text(fragment, style=""):
            if not fragment:
                return Text("")
            if isinstance(fragment, Text):
                return fragment if self._colorful else Text(str(fragment))
            return Text(str(fragment), styler(style))

        return styler, text

    def helpview(self):
        """
        Build the help renderable of this command.

        Palette keys
        - usage-label, program-name, usage-section, description-section, epilog-section
        - group-label, argument-description, option-name, flag-name, metavar, choice, mandatory
        - children-title, children-table, children, children-description, name-column
        - panel-title, panel-subtitle

        Define a mapping named __styles__ in __main__ to override any palette entry.
        """
        styler, text = self._palette()
        renders = []
        width = _WIDTH - 4 * self._fancy
        visible = [flag for flag in self._flags if not flag.hidden]

        def names(flag):
            shorts = [token for token in flag.tokens if not token.startswith("--")]
            longs = [token for token in flag.tokens if token.startswith("--")]
            style = "flag-name" if flag.flag_only else "option-name"
            return Text(" | ").join(text(token, style) for token in (*shorts, *longs))

        def metavar(flag):
            if flag.choices:
                metavar = Text.assemble("{", Text(",").join(text(choice, "choice") for choice in flag.choices), "}")
            else:
                metavar = Text.assemble("<", text(flag.name.replace("_", "-"), "metavar"), ">")
            if flag.multiple:
                metavar.append(" ...")
            return metavar

        def synopsis(flag):
            segment = names(flag)
            if flag.valued:
                segment = Text.assemble(segment, " ", metavar(flag))
            if flag.mandatory is True:
                return segment
            return Text.assemble("[", segment, "]")

        usage = Text()
        usage.append("usage", styler("usage-label")).append(": ")
        if self._usage:
            usage.append(text(self._usage, "usage-section"))
        else:
            usage.append(text(" ".join(step.name for step in self.path), "program-name"))
            for flag in visible:
                usage.append(" ").append(synopsis(flag))
            if self._children:
                usage.append(" ").append(text("<command>", "metavar"))
            if self._positionals:
                usage.append(" ").append(text("[args ...]", "metavar"))
        renders.append(usage.append("\n"))

        if self._descr:
            renders.append(text(self._descr, "description-section").append("\n"))

        if self._children:
            typeof = "subcommands" if self.parent else "commands"
            table = Table(
                "name", "help",
                title=text(typeof, "children-title"),
                width=int(width * (2 / 3)),
                box=ROUNDED,
                style=styler("children-table"),
                header_style=styler("children-title"),
            )
            for name, child in self._children.items():
                if child.descr:
                    help = text(child.descr, "children-description")
                else:
                    route = " ".join(step.name for step in child.path)
                    help = text(f"run '{route} --help' for details", "children-description")
                table.add_row(text(name, "children"), help, style=styler("name-column"))
            renders.append(table)

        groups = defaultdict(list)
        for flag in visible:
            groups[flag.group].append(flag)

        padding = 2
        indent = 24
        sections = Text("\n" if self._children else "")
        for index, (group, members) in enumerate(groups.items()):
            sections.append(text(group, "group-label")).append(":\n")
            for flag in members:
                section = Text(" " * padding).append(names(flag))
                if flag.valued:
                    section.append(" ").append(metavar(flag))

                notes = []
                if flag.descr:
                    notes.append(text(flag.descr, "argument-description"))
                if flag.mandatory is True:
                    notes.append(text("(mandatory)", "mandatory"))
                elif callable(flag.mandatory):
                    notes.append(text("(conditionally mandatory)", "mandatory"))
                if flag.default is not Unset:
                    notes.append(text(f"[default: {flag.default!r}]", "argument-description"))

                if notes:
                    if len(section) >= indent:
                        section.append("\n").append(" " * indent)
                    else:
                        section.append(" " * (indent - len(section)))
                    section.append(Text(" ").join(notes))
                sections.append(section).append("\n")
            sections.append("\n" * (index < len(groups) - 1))
        if groups:
            renders.append(sections)

        if self._epilog:
            renders.append(text(self._epilog, "epilog-section"))

        if isinstance(renders[-1], Text):
            renders[-1].rstrip()
        renderable = Group(*renders)

        if self._fancy:
            renderable = Panel(
                renderable,
                title=Text.assemble("[", " ", f"{self._name} HELP".upper(), " ", "]", style=styler("panel-title")),
                title_align="left",
                width=width + 4,
            )
        return renderable

    def helptext(self):
        """
        Help of this command as plain text.
        """
        return _capture(self.helpview())

    def tree(self):
        """
        Build a rich Tree of this command and its descendants (used by --s-debug-print).
        """
        styler, text = self._palette()

        def label(command):
            label = Text.assemble(
                text(command.name, "program-name"),
                " ",
                text("(handler)" if command.handler else "(router)", "argument-description"),
            )
            for flag in command._flags:
                if flag is command._help or flag.hidden:
                    continue
                label.append(" ").append(text(flag.canonical, "flag-name" if flag.flag_only else "option-name"))
                if flag.mandatory is True:
                    label.append("*", styler("mandatory"))
            return label

        def branch(node, command):
            for child in command._children.values():
                branch(node.add(label(child)), child)
            return node

        return branch(Tree(label(self)), self)

    # ── parsing ─────────────────────────────────────────────────────────────

    def parse(self, argv=Unset, /, *, throw=False, fuzzy=False, skip_handlers=False, structured=False):
        """
        Parse argv against the tree rooted here and run the resolved handler.

        Runs parse_async() to completion with asyncio.run(); inside a running
        event loop, await parse_async() instead.
        """
        return asyncio.run(self.parse_async(
            argv, throw=throw, fuzzy=fuzzy, skip_handlers=skip_handlers, structured=structured
        ))

    async def parse_async(self, argv=Unset, /, *, throw=False, fuzzy=False, skip_handlers=False, structured=False):
        """
        Parse argv against the tree rooted here and run the resolved handler.

        Parameters
        - argv: Unset (sys.argv[1:]) | str (shell-split) | Iterable[str].
        - throw: raise faults instead of returning a ParseError.
        - fuzzy: dry-run; skip mandatory checks and handler execution.
        - skip_handlers: parse and validate only.
        - structured: marks the call as coming from the schema bridge (Context.structured).

        Phases
        - directives: system tokens are scanned out first (see rudder.system).
        - path resolution + flag scan: tokens are walked left to right; child
          names descend, flags are recorded for the level they appear at.
        - validation per traversed level, top-down: coercion in token order,
          environment values, defaults, mandatory checks.
        - routing: the deepest level's handler runs (see _route).

        Returns
        - ParseSuccess | ParseExit | ParseError (the latter only when throw is False).
        """
        tokens = _tokenize(argv)
        state = _State(structured=structured)

        with self._running():
            try:
                return await self._parseargs(state, tokens, fuzzy=fuzzy, skip_handlers=skip_handlers)
            except CommandException as fault:
                logger.debug("parse of %r failed: %s", tokens, fault.message)
                if throw:
                    raise
                return ParseError(fault, chain=list(state.chain), system=state.system)

    async def _parseargs(self, state, tokens, *, fuzzy, skip_handlers):
        tokens, state.system = scan(tokens)
        system = state.system or SystemArgs()

        # --s-debug verbosity lasts for this parse only
        with debugging(logging.DEBUG) if system.debug else contextlib.nullcontext():
            return await self._evaluate(state, tokens, system, fuzzy=fuzzy, skip_handlers=skip_handlers)

    async def _evaluate(self, state, tokens, system, *, fuzzy, skip_handlers):
        if system.mcp_version:
            protocol.set_version(system.mcp_version)
        if system.debug_print:
            tree = self.tree()
            return ParseExit(reason="debug-print", output=_capture(tree), renderable=tree, chain=[], system=state.system)

        state.fuzzy = fuzzy or system.fuzzy
        if system.with_env:
            state.config = env.load(system.with_env)

        if (early := await self._walk(state, tokens)) is not None:
            return early

        if system.debug:
            report = Pretty({
                "command": " ".join(step.name for step in state.levels[-1].command.path),
                "chain": state.chain,
                "tokens": tokens,
                "flags": {
                    level.command.name: [(flag.name, token) for flag, token, _ in level.records]
                    for level in state.levels
                },
                "positionals": state.levels[-1].positionals,
                "system": system._asdict(),
                "version": protocol.get_version(),
            })
            return ParseExit(reason="debug", output=_capture(report), renderable=report, chain=list(state.chain), system=state.system)

        for level in state.levels:
            await self._settle(state, level)

        deepest = state.levels[-1]
        response = None
        if not (state.fuzzy or skip_handlers):
            response = await self._route(state)

        return ParseSuccess(
            args=deepest.args,
            chain=list(state.chain),
            parent_args=state.levels[-2].args if len(state.levels) > 1 else {},
            system=state.system,
            response=response,
            positionals=deepest.positionals,
            fuzzy=state.fuzzy,
            command=deepest.command,
        )

    async def _walk(self, state, tokens):
        """
        Resolve the command path and record flag occurrences per level.

        Returns a ParseExit when a help flag answers the invocation, else None.
        """
        tokens = deque(tokens)
        level = state.enter(node := self)
        literal = False

        while tokens:
            token = tokens.popleft()
            state.index += 1

            if literal:
                self._overflow(state, level, token)
                continue
            if token == "--":
                literal = True
                continue

            if _FLAGLIKE.match(token):
                name, separator, inline = token.partition("=")
                if (flag := node._flags.lookup(name)) is None:
                    route = " ".join(step.name for step in node.path)
                    suggestions = difflib.get_close_matches(name, node._flags.tokens, 3)
                    try:
                        hint = "did you mean %r? run '%s --help' to see available flags" % (suggestions[0], route)
                    except IndexError:
                        hint = "run '%s --help' to see available flags" % route
                    raise UnknownFlagError(
                        "unknown flag %r at %s position" % (name, ordinal(state.index)),
                        flag=name,
                        index=state.index,
                        command=route,
                        suggestions=suggestions,
                        hint=hint,
                        docs=getdoc(FaultCode.UNKNOWN_FLAG),
                    )

                if flag is node._help:
                    view = node.helpview()
                    return ParseExit(reason="help", output=_capture(view), renderable=view, chain=list(state.chain), system=state.system)

                if flag.flag_only:
                    if separator:
                        raise UnexpectedArgumentError(
                            "flag %r at %s position does not take a value" % (name, ordinal(state.index)),
                            flag=flag.name,
                            value=inline,
                            index=state.index,
                            hint="pass %r alone to switch it on" % name,
                            docs=getdoc(FaultCode.UNEXPECTED_ARGUMENT),
                        )
                    level.records.append((flag, None, state.index))
                    continue

                index = state.index
                if separator:
                    value = inline
                elif tokens and tokens[0] != "--" and not _FLAGLIKE.match(tokens[0]):
                    value = tokens.popleft()
                    state.index += 1
                else:
                    raise MissingFlagValueError(
                        "flag %r at %s position expects a value" % (name, ordinal(index)),
                        flag=flag.name,
                        index=index,
                        hint="pass it as '%s <%s>' or '%s=<%s>'" % (name, flag.name, name, flag.name),
                        docs=getdoc(FaultCode.MISSING_FLAG_VALUE),
                    )
                level.records.append((flag, value, index))
                continue

            if not level.positionals and token in node._children:
                node = node._children[token]
                state.chain.append(token)
                level = state.enter(node)
                logger.debug("resolved %r at %s position", token, ordinal(state.index))
                continue

            self._overflow(state, level, token)

        return None

    def _overflow(self, state, level, token):
        node = level.command
        if node._positionals:
            level.positionals.append(token)
            return

        route = " ".join(step.name for step in node.path)
        suggestions = difflib.get_close_matches(token, node._children.keys(), 3) if not level.positionals else []
        try:
            hint = "did you mean %r? run '%s --help' to see available %scommands" % (
                suggestions[0], route, "sub" * bool(node.parent)
            )
        except IndexError:
            hint = "remove this extra value or run '%s --help' to see the expected usage" % route
        raise UnexpectedArgumentError(
            "unexpected argument %r at %s position" % (token, ordinal(state.index)),
            value=token,
            index=state.index,
            command=route,
            suggestions=suggestions,
            hint=hint,
            docs=getdoc(FaultCode.UNEXPECTED_ARGUMENT),
        )

    async def _settle(self, state, level):
        """
        Validate one level: coercion, environment values, defaults, mandatory checks.

        Precedence: CLI token > compiled default > environment file.
        """
        node = level.command
        args = await coerce(level.records)

        if state.config:
            for name, value in (await env.merge(state.config, node._flags, shell=node._shell)).items():
                if name not in args and node._flags.get(name).default is Unset:
                    args[name] = value

        for flag in node._flags:
            if flag.name not in args and flag.default is not Unset:
                args[flag.name] = flag.default

        if not state.fuzzy:
            for flag in node._flags:
                if flag.name in args:
                    continue
                route = " ".join(step.name for step in node.path)
                try:
                    required = flag.required(args)
                except Exception as exception:
                    raise MissingMandatoryFlagError(
                        "could not decide whether flag %r is mandatory for %r: %s" % (flag.canonical, route, exception),
                        flag=flag.name,
                        command=route,
                        exception=exception,
                        hint="make the 'mandatory' predicate of %r tolerate absent flags (args.get(...))" % flag.name,
                        docs=getdoc(FaultCode.MISSING_MANDATORY_FLAG),
                    ) from exception
                if required:
                    raise MissingMandatoryFlagError(
                        "missing mandatory flag %r for %r" % (flag.canonical, route),
                        flag=flag.name,
                        command=route,
                        hint="pass %s%s" % (flag.canonical, "" if flag.flag_only else " <%s>" % flag.name),
                        docs=getdoc(FaultCode.MISSING_MANDATORY_FLAG),
                    )

        level.args = args

    async def _route(self, state):
        """
        Run the deepest level's handler.

        - a handler-less starting command is a pure router: nothing runs.
        - a handler-less deeper command raises NoHandlerError.
        - handler exceptions become HandlerError with the original as __cause__.
        """
        level = state.levels[-1]
        node = level.command

        if node._handler is None:
            if len(state.levels) == 1:
                return None
            route = " ".join(step.name for step in node.path)
            raise NoHandlerError(
                "%r has nothing to run" % route,
                command=route,
                chain=list(state.chain),
                suggestions=list(node._children),
                hint="pick one of its subcommands: %s" % ", ".join(node._children) if node._children else "give it a handler",
                docs=getdoc(FaultCode.NO_HANDLER),
            )

        context = Context(
            level.args,
            state.levels[-2].args if len(state.levels) > 1 else {},
            chain=list(state.chain),
            system=state.system,
            positionals=list(level.positionals),
            structured=state.structured,
            command=node,
        )
        kwargs = {
            parameter: context if target is Context else level.args.get(target)
            for parameter, target in node._bindings.items()
        }

        logger.debug("running %r with %r", node.name, kwargs)
        try:
            return await resolve(node._handler(**kwargs))
        except Exception as exception:
            raise HandlerError(
                str(exception) or type(exception).__name__,
                command=" ".join(step.name for step in node.path),
                chain=list(state.chain),
                exception=exception,
                hint="the %r handler raised %s" % (node.name, type(exception).__name__),
                docs=getdoc(FaultCode.HANDLER_ERROR),
            ) from exception

    def __invoke__(self, argv=Unset, /):
        """
        Execute this command as a CLI.

        - ParseError: surfaced through trigger(); in shell mode it is rendered
          to stderr and the process exits with status 1, otherwise raised.
        - ParseExit: its output is printed to stdout.
        - ParseSuccess: returned.
        """
        result = self.parse(argv)
        match result:
            case ParseError():
                self.trigger(result.fault)
            case ParseExit():
                Console().print(result.output if result.renderable is None else result.renderable)
        return result


def command(source=Unset, /, *args, **kwargs):
    """
    Create a Command or return a decorator to build it later.

    Invocation modes
    - Direct: cmd = command(func, ..., name="x")
    - Decorator:
        @command(name="x", ...)
        def func(...): ...

    Parameters
    - source: Unset | Callable
      When Unset, a decorator is returned. Otherwise a Command is created.
    - *args, **kwargs: forwarded to Command (parent, name, descr, flags, runtime options, ...).
    """
    @rename("command")
    def wrapper(source, /):
        if not callable(source):
            raise TypeError("@command() must be applied to a callable")
        return Command(source, *args, **kwargs)

    return wrapper(source) if source is not Unset else wrapper


def router(*args, **kwargs):
    """
    Create a handler-less Command that only dispatches to its children.
    """
    return Command(None, *args, **kwargs)


def invoke(object, argv=Unset, /):
    """
    CLI runner for commands or callables.

    - If object implements __invoke__, call it with argv.
    - If object is a plain callable, wrap it as a Command and then invoke.
    """
    if hasattr(object, "__invoke__") and callable(object.__invoke__):
        return object.__invoke__(argv)

    if callable(object):
        return invoke(command(object), argv)

    target = "argument" if argv is Unset else "first argument"
    raise TypeError(f"invoke() {target} must implement __invoke__ method") from None


__all__ = (
    "Command",
    "command",
    "router",
    "invoke",
)

# Not part of the public API.
del CommandType
