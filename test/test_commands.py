"""
Commands module behavioral tests (tree building, parsing, routing, CLI surface).

Scope
- Validate declaration-time faults (duplicates, handler signatures).
- Validate the parse engine: path resolution, flag scan, coercion, defaults,
  mandatory checks, positionals and position-first faults.
- Validate the router: deepest handler only, parent arguments, async handlers,
  handler errors, pure routers.
- Validate system directives end to end (fuzzy, env merge, debug, version).
- Validate help rendering and the invoke() CLI surface.

Conventions
- Test method names follow CamelCase per project convention.
- Tests use the public API (command, router, invoke, Flag, Context).
"""

import asyncio
import contextlib
import io
import logging
import pathlib
import tempfile
import unittest
from unittest import IsolatedAsyncioTestCase, TestCase

from rich.logging import RichHandler

from rudder import (
    Command,
    Context,
    Flag,
    ParseError,
    ParseExit,
    ParseSuccess,
    command,
    invoke,
    protocol,
    router,
)
from rudder.faults import (
    DuplicateFlagError,
    HandlerError,
    MissingMandatoryFlagError,
    ReservedFlagError,
    TypeCoercionError,
    UnknownFlagError,
)


def counter():
    """Build a command with the usual mix of flags; returns (command, calls)."""
    calls = []

    @command(name="counter")
    def tool(
            count=Flag("--count", "-c", kind="number"),
            verbose=Flag("-v", "--verbose", kind="boolean", flag_only=True, default=False),
            tag=Flag("--tag", multiple=True),
            level=Flag("--level", choices=("low", "high")),
    ):
        calls.append(dict(count=count, verbose=verbose, tag=tag, level=level))
        return "done"

    return tool, calls


class TestDeclaration(TestCase):
    """Build-time validation."""

    def testDuplicateTokensInSignature(self):
        with self.assertRaises(DuplicateFlagError):
            @command
            def tool(a=Flag("--x"), b=Flag("--x")):
                pass

    def testDuplicateNameBetweenSignatureAndFlags(self):
        def tool(a=Flag("--a")):
            pass

        with self.assertRaises(DuplicateFlagError):
            Command(tool, flags=[Flag("--other", name="a")])

    def testReservedTokenRejected(self):
        with self.assertRaises(ReservedFlagError):
            @command
            def tool(debug=Flag("--s-debug", kind="boolean", flag_only=True)):
                pass

    def testParameterWithoutDefaultRejected(self):
        with self.assertRaises(TypeError):
            @command
            def tool(name):
                pass

    def testPositionalOnlyParameterRejected(self):
        with self.assertRaises(TypeError):
            @command
            def tool(name=Flag("--name"), /):
                pass

    def testFlagNameMustMatchParameter(self):
        with self.assertRaises(ValueError):
            @command
            def tool(name=Flag("--name", name="other")):
                pass

    def testDuplicateChildNameRejected(self):
        root = router(name="app")
        root.command(lambda: None, name="run")
        with self.assertRaises(ValueError):
            root.command(lambda: None, name="run")

    def testNameCannotLookLikeFlag(self):
        with self.assertRaises(ValueError):
            router(name="--app")

    def testHelpFlagAdded(self):
        tool, _ = counter()
        self.assertEqual(tool.helpflag.tokens, ["-h", "--help"])
        self.assertIn("help", tool.flags)

    def testHelpFlagSkippedWhenTokenTaken(self):
        @command
        def tool(host=Flag("-h", "--host")):
            return host

        self.assertIsNone(tool.helpflag)
        self.assertEqual(tool.parse(["-h", "example.org"]).response, "example.org")

    def testRuntimeOptionsInherit(self):
        root = router(name="app", shell=True, colorful=True)
        child = root.router(name="db")
        self.assertTrue(child.shell)
        self.assertTrue(child.colorful)
        self.assertFalse(child.fancy)
        self.assertIs(child.parent, root)
        self.assertIs(child.root, root)
        self.assertEqual(child.chain, ["db"])

    def testCallableForwardsToHandler(self):
        @command
        def add(a=Flag("--a", kind="number")):
            return a + 1

        self.assertEqual(add(a=1), 2)


class TestParsing(TestCase):
    """Flag scan, coercion, defaults and faults at a single level."""

    def testNumberCoerced(self):
        tool, calls = counter()
        result = tool.parse(["--count", "42"])
        self.assertIsInstance(result, ParseSuccess)
        self.assertEqual(result.args["count"], 42)
        self.assertEqual(calls[0]["count"], 42)
        self.assertEqual(result.response, "done")

    def testNumberRejectsText(self):
        tool, calls = counter()
        result = tool.parse(["--count", "abc"])
        self.assertIsInstance(result, ParseError)
        self.assertEqual(result.kind, "type_coercion")
        self.assertEqual(result.exitcode, 1)
        self.assertEqual(calls, [])

    def testThrowingMode(self):
        tool, _ = counter()
        with self.assertRaises(TypeCoercionError):
            tool.parse(["--count", "abc"], throw=True)

    def testMultipleKeepsOrder(self):
        tool, _ = counter()
        result = tool.parse(["--tag", "a", "--tag", "b", "--tag", "c"])
        self.assertEqual(result.args["tag"], ["a", "b", "c"])

    def testFlagOnlyPresenceAndDefault(self):
        tool, _ = counter()
        self.assertIs(tool.parse(["-v"]).args["verbose"], True)
        self.assertIs(tool.parse([]).args["verbose"], False)

    def testFlagOnlyConsumesNothing(self):
        @command(positionals=True)
        def tool(verbose=Flag("--verbose", kind="boolean", flag_only=True), context=Context):
            return list(context.positionals)

        result = tool.parse(["--verbose", "file.txt"])
        self.assertIs(result.args["verbose"], True)
        self.assertEqual(result.response, ["file.txt"])
        self.assertEqual(result.positionals, ["file.txt"])

    def testAbsentFlagWithoutDefault(self):
        tool, calls = counter()
        result = tool.parse([])
        self.assertNotIn("count", result.args)
        self.assertIsNone(calls[0]["count"])

    def testInlineValue(self):
        tool, _ = counter()
        self.assertEqual(tool.parse(["--count=3"]).args["count"], 3)

    def testInlineValueOnFlagOnly(self):
        tool, _ = counter()
        result = tool.parse(["--verbose=yes"])
        self.assertEqual(result.kind, "unexpected_argument")

    def testMissingValue(self):
        tool, _ = counter()
        self.assertEqual(tool.parse(["--count"]).kind, "missing_value")
        self.assertEqual(tool.parse(["--count", "--verbose"]).kind, "missing_value")

    def testNegativeNumberIsValue(self):
        tool, _ = counter()
        self.assertEqual(tool.parse(["--count", "-5"]).args["count"], -5)

    def testRepeatedSingleFlagKeepsLast(self):
        tool, _ = counter()
        self.assertEqual(tool.parse(["-c", "1", "--count", "2"]).args["count"], 2)

    def testEnumViolation(self):
        tool, _ = counter()
        result = tool.parse(["--level", "medium"])
        self.assertEqual(result.kind, "enum_violation")
        self.assertEqual(result.details["allowed"], ["low", "high"])

    def testUnknownFlagSuggests(self):
        tool, _ = counter()
        result = tool.parse(["--cuont", "1"])
        self.assertEqual(result.kind, "unknown_flag")
        self.assertIn("--count", result.details["suggestions"])
        self.assertIn("first position", result.message)
        with self.assertRaises(UnknownFlagError):
            result.throw()

    def testUnknownReservedTokenIsUnknownFlag(self):
        tool, _ = counter()
        self.assertEqual(tool.parse(["--s-nothing"]).kind, "unknown_flag")

    def testUnexpectedPositional(self):
        tool, _ = counter()
        result = tool.parse(["--count", "1", "extra"])
        self.assertEqual(result.kind, "unexpected_argument")
        self.assertIn("third position", result.message)

    def testDoubleDashEndsFlags(self):
        @command(positionals=True)
        def tool(count=Flag("--count", kind="number"), context=Context):
            return list(context.positionals)

        result = tool.parse(["--", "--count", "1"])
        self.assertEqual(result.response, ["--count", "1"])
        self.assertNotIn("count", result.args)

    def testMandatoryMissing(self):
        @command
        def tool(name=Flag("--name", mandatory=True)):
            return name

        result = tool.parse([])
        self.assertEqual(result.kind, "missing_mandatory_flag")
        self.assertFalse(result.ok)
        with self.assertRaises(MissingMandatoryFlagError):
            tool.parse([], throw=True)

    def testMandatoryWithDefaultIsSatisfied(self):
        @command
        def tool(name=Flag("--name", mandatory=True, default="anon")):
            return name

        self.assertEqual(tool.parse([]).response, "anon")

    def testConditionalMandatory(self):
        @command
        def tool(
                mode=Flag("--mode", choices=("local", "remote"), default="local"),
                host=Flag("--host", mandatory=lambda args: args.get("mode") == "remote"),
        ):
            return mode, host

        self.assertTrue(tool.parse([]).ok)
        self.assertEqual(tool.parse(["--mode", "remote"]).kind, "missing_mandatory_flag")
        self.assertEqual(tool.parse(["--mode", "remote", "--host", "h"]).response, ("remote", "h"))

    def testFailingMandatoryPredicateIsFault(self):
        @command
        def tool(
                mode=Flag("--mode"),
                host=Flag("--host", mandatory=lambda args: args["mode"] == "remote"),
        ):
            return mode, host

        result = tool.parse([])
        self.assertIsInstance(result, ParseError)
        self.assertEqual(result.kind, "missing_mandatory_flag")
        self.assertIsInstance(result.fault.__cause__, KeyError)
        self.assertIsInstance(result.details["exception"], KeyError)
        with self.assertRaises(MissingMandatoryFlagError):
            tool.parse([], throw=True)
        self.assertEqual(tool.parse(["--mode", "local"]).response, ("local", None))

    def testDefaultsAreNotEnumChecked(self):
        @command
        def tool(level=Flag("--level", choices=("low",), default="unset")):
            return level

        self.assertEqual(tool.parse([]).response, "unset")

    def testDefaultContainersAreCopied(self):
        @command
        def tool(tag=Flag("--tag", multiple=True, default=["x"])):
            tag.append("y")
            return tag

        self.assertEqual(tool.parse([]).response, ["x", "y"])
        self.assertEqual(tool.parse([]).response, ["x", "y"])

    def testStringArgvIsShellSplit(self):
        tool, _ = counter()
        result = tool.parse("--tag 'a b' --count 2")
        self.assertEqual(result.args["tag"], ["a b"])

    def testArgvMustBeStrings(self):
        tool, _ = counter()
        with self.assertRaises(TypeError):
            tool.parse(["--count", 1])

    def testExtraFlagsReachContext(self):
        def tool(context=Context):
            return dict(context.args)

        cmd = Command(tool, flags=[Flag("--extra", kind="number")])
        self.assertEqual(cmd.parse(["--extra", "1"]).response, {"extra": 1})


class TestRouting(TestCase):
    """Path resolution across levels and the execution router."""

    def setUp(self):
        self.calls = []
        self.root = root = Command(self.record("root"), name="app", flags=[
            Flag("--region", default="eu"),
            Flag("--name"),
        ])

        @root.command
        def child(file=Flag("--file", mandatory=True), name=Flag("--name"), context=Context):
            self.calls.append("child")
            return {
                "file": file,
                "name": name,
                "parent": dict(context.parent_args),
                "chain": context.chain,
            }

        self.group = root.router(name="group")
        self.group.command(self.record("leaf"), name="leaf")

    def record(self, label):
        def handler(context=Context):
            self.calls.append(label)
            return label
        return handler

    def testChildScenario(self):
        result = self.root.parse(["child", "--file", "a.txt"])
        self.assertIsInstance(result, ParseSuccess)
        self.assertEqual(result.chain, ["child"])
        self.assertEqual(result.args["file"], "a.txt")
        self.assertEqual(self.calls, ["child"])
        self.assertIs(result.command, self.root.children["child"])

    def testRootOnlyChainIsEmpty(self):
        result = self.root.parse([])
        self.assertEqual(result.chain, [])
        self.assertEqual(result.response, "root")

    def testParentArgumentsAreSeparate(self):
        result = self.root.parse(["--region", "us", "--name", "outer", "child", "--file", "f", "--name", "inner"])
        self.assertEqual(result.response["name"], "inner")
        self.assertEqual(result.response["parent"], {"region": "us", "name": "outer"})
        self.assertEqual(result.parent_args, {"region": "us", "name": "outer"})

    def testParentMandatoryCheckedToo(self):
        root = router(name="app", flags=[Flag("--token", mandatory=True)])
        root.command(lambda: "ok", name="run")
        self.assertEqual(root.parse(["run"]).kind, "missing_mandatory_flag")
        self.assertEqual(root.parse(["--token", "t", "run"]).response, "ok")

    def testFlagValueMatchingChildNameIsValue(self):
        result = self.root.parse(["--name", "child"])
        self.assertEqual(result.chain, [])
        self.assertEqual(result.args["name"], "child")
        self.assertEqual(self.calls, ["root"])

    def testNestedChain(self):
        result = self.root.parse(["group", "leaf"])
        self.assertEqual(result.chain, ["group", "leaf"])
        self.assertEqual(result.response, "leaf")

    def testRouterWithoutHandlerFails(self):
        result = self.root.parse(["group"])
        self.assertEqual(result.kind, "no_handler")
        self.assertEqual(result.chain, ["group"])

    def testPureRootRouterSucceeds(self):
        root = router(name="app")
        root.command(lambda: "ran", name="run")
        result = root.parse([])
        self.assertTrue(result.ok)
        self.assertIsNone(result.response)

    def testUnknownChildSuggests(self):
        result = self.root.parse(["chlid"])
        self.assertEqual(result.kind, "unexpected_argument")
        self.assertIn("child", result.details["suggestions"])

    def testPositionalsStopChildMatching(self):
        root = router(name="app", positionals=True)
        root.command(lambda: "ran", name="run")
        result = root.parse(["file", "run"])
        self.assertEqual(result.positionals, ["file", "run"])
        self.assertEqual(result.chain, [])

    def testHandlerErrorIsWrapped(self):
        @command
        def tool():
            raise RuntimeError("boom")

        result = tool.parse([])
        self.assertIsInstance(result, ParseError)
        self.assertEqual(result.kind, "handler_error")
        self.assertEqual(result.message, "boom")
        self.assertIsInstance(result.fault.__cause__, RuntimeError)
        with self.assertRaises(HandlerError):
            tool.parse([], throw=True)

    def testAsyncHandlerIsAwaited(self):
        @command
        async def tool(name=Flag("--name", default="x")):
            await asyncio.sleep(0)
            return name * 2

        self.assertEqual(tool.parse([]).response, "xx")

    def testSkipHandlers(self):
        result = self.root.parse(["child", "--file", "f"], skip_handlers=True)
        self.assertTrue(result.ok)
        self.assertIsNone(result.response)
        self.assertEqual(self.calls, [])

    def testInheritedFlags(self):
        root = router(name="app", flags=[Flag("--verbose", kind="boolean", flag_only=True), Flag("--out")])

        @root.command(inherit=True)
        def run(out=Flag("-o", "--output"), context=Context):
            return dict(context.args)

        self.assertIn("verbose", run.flags)
        self.assertEqual(run.flags.lookup("-o").name, "out")
        self.assertIsNone(run.flags.lookup("--out"))
        self.assertEqual(root.parse(["run", "--verbose"]).response, {"verbose": True})

    def testAddChild(self):
        extra = command(lambda: "extra", name="extra")
        self.root.add_child(extra)
        self.assertIs(extra.parent, self.root)
        self.assertEqual(self.root.parse(["extra"]).response, "extra")
        with self.assertRaises(ValueError):
            self.root.add_child(extra)

    def testMutationRefusedDuringParse(self):
        root = self.root

        @command
        def tool(context=Context):
            root.add_flag(Flag("--late"))

        root.add_child(tool)
        result = root.parse(["tool"])
        self.assertEqual(result.kind, "handler_error")
        self.assertIsInstance(result.fault.__cause__, RuntimeError)
        root.add_flag(Flag("--late"))
        self.assertIn("late", root.flags)


class TestDirectives(TestCase):
    """System directives through the parse engine."""

    def setUp(self):
        self._directory = tempfile.TemporaryDirectory()
        self.directory = pathlib.Path(self._directory.name)
        self.calls = []

        @command(name="counter")
        def tool(count=Flag("--count", kind="number", mandatory=True), context=Context):
            self.calls.append(count)
            return count

        self.tool = tool

    def tearDown(self):
        self._directory.cleanup()
        protocol.reset_version()

    def write(self, name, text):
        path = self.directory / name
        path.write_text(text, encoding="utf-8")
        return str(path)

    def testFuzzySkipsMandatoryAndHandler(self):
        result = self.tool.parse([], fuzzy=True)
        self.assertIsInstance(result, ParseSuccess)
        self.assertTrue(result.fuzzy)
        self.assertNotIn("count", result.args)
        self.assertEqual(self.calls, [])

    def testFuzzyDirective(self):
        result = self.tool.parse(["--s-enable-fuzzy"])
        self.assertTrue(result.ok)
        self.assertTrue(result.system.fuzzy)
        self.assertEqual(self.calls, [])

    def testFuzzyStillCoerces(self):
        result = self.tool.parse(["--s-enable-fuzzy", "--count", "abc"])
        self.assertEqual(result.kind, "type_coercion")
        self.assertTrue(result.system.fuzzy)

    def testEnvFileSuppliesValue(self):
        path = self.write("config.yaml", "count: 7\n")
        self.assertEqual(self.tool.parse(["--s-with-env", path]).args["count"], 7)

    def testCliBeatsEnvFile(self):
        path = self.write("config.yaml", "count: 7\n")
        self.assertEqual(self.tool.parse(["--s-with-env", path, "--count", "9"]).args["count"], 9)

    def testDefaultBeatsEnvFile(self):
        @command
        def tool(count=Flag("--count", kind="number", default=1)):
            return count

        path = self.write("config.json", '{"count": 7}')
        self.assertEqual(tool.parse(["--s-with-env", path]).args["count"], 1)

    def testEnvFileReachesChildLevel(self):
        root = router(name="app")

        @root.command
        def run(retries=Flag("--retries", kind="number")):
            return retries

        path = self.write(".env", "RETRIES=3\n")
        self.assertEqual(root.parse(["run", "--s-with-env", path]).response, 3)

    def testEnvFileMissing(self):
        result = self.tool.parse(["--s-with-env", str(self.directory / "missing.yaml")])
        self.assertEqual(result.kind, "env_file_not_found")

    def testEnvPathMissing(self):
        result = self.tool.parse(["--s-with-env"])
        self.assertEqual(result.kind, "env_file_missing_path")
        self.assertEqual(result.message, "--s-with-env requires a file path argument")

    def testVersionDirective(self):
        self.tool.parse(["--s-mcp-version", "2025-03-26", "--count", "1"])
        self.assertEqual(protocol.get_version(), "2025-03-26")

    def testDebugPrintRendersTree(self):
        root = router(name="app")
        root.command(lambda: None, name="build")
        result = root.parse(["--s-debug-print"])
        self.assertIsInstance(result, ParseExit)
        self.assertEqual(result.reason, "debug-print")
        self.assertIn("app", result.output)
        self.assertIn("build", result.output)
        self.assertTrue(result.system.debug_print)

    def testDebugReportsContext(self):
        logger = logging.getLogger("rudder")
        level = logger.level
        self.addCleanup(logger.setLevel, level)
        self.addCleanup(lambda: [
            logger.removeHandler(handler) for handler in list(logger.handlers) if isinstance(handler, RichHandler)
        ])

        root = router(name="app")

        @root.command(name="count")
        def handler(count=Flag("--count", kind="number", mandatory=True)):
            self.calls.append(count)

        result = root.parse(["--s-debug", "count"])
        self.assertIsInstance(result, ParseExit)
        self.assertEqual(result.reason, "debug")
        self.assertEqual(result.chain, ["count"])
        self.assertTrue(result.system.debug)
        self.assertEqual(self.calls, [])

    def testDebugLoggingEndsWithParse(self):
        logger = logging.getLogger("rudder")
        level, handlers = logger.level, list(logger.handlers)

        self.tool.parse(["--s-debug"])
        self.assertEqual(logger.level, level)
        self.assertEqual(logger.handlers, handlers)
        self.assertFalse(any(isinstance(handler, RichHandler) for handler in logger.handlers))


class TestHelp(TestCase):
    """Help rendering and help short-circuits."""

    def setUp(self):
        self.root = router(name="app", descr="deployment tool")

        @self.root.command
        def deploy(
                target=Flag("--target", mandatory=True, choices=("staging", "prod"), descr="where to deploy"),
                replicas=Flag("--replicas", kind="number", default=2),
        ):
            """Roll out the current build."""

    def testRootHelp(self):
        text = self.root.helptext()
        self.assertIn("usage: app", text)
        self.assertIn("deployment tool", text)
        self.assertIn("deploy", text)
        self.assertIn("Roll out the current build.", text)

    def testHelpShortCircuitsMandatory(self):
        result = self.root.parse(["deploy", "--help"])
        self.assertIsInstance(result, ParseExit)
        self.assertEqual(result.reason, "help")
        self.assertEqual(result.chain, ["deploy"])
        self.assertIn("usage: app deploy", result.output)
        self.assertIn("--target", result.output)
        self.assertIn("where to deploy", result.output)
        self.assertIn("staging", result.output)

    def testDescrFromDocstring(self):
        self.assertEqual(self.root.children["deploy"].descr, "Roll out the current build.")


class TestInvoke(TestCase):
    """The CLI surface."""

    def testShellModeExitsOnFault(self):
        @command(shell=True)
        def tool(count=Flag("--count", kind="number")):
            return count

        stderr = io.StringIO()
        with contextlib.redirect_stderr(stderr), self.assertRaises(SystemExit) as context:
            invoke(tool, ["--count", "abc"])
        self.assertEqual(context.exception.code, 1)
        self.assertIn("invalid", stderr.getvalue())

    def testFaultRaisedOutsideShellMode(self):
        @command
        def tool(count=Flag("--count", kind="number")):
            return count

        with self.assertRaises(TypeCoercionError):
            invoke(tool, ["--count", "abc"])

    def testSuccessReturnsResult(self):
        @command
        def tool(count=Flag("--count", kind="number")):
            return count

        result = invoke(tool, "--count 4")
        self.assertEqual(result.response, 4)
        self.assertEqual(result.exitcode, 0)

    def testHelpPrintedToStdout(self):
        @command
        def tool(count=Flag("--count", kind="number")):
            return count

        stdout = io.StringIO()
        with contextlib.redirect_stdout(stdout):
            result = invoke(tool, ["--help"])
        self.assertIsInstance(result, ParseExit)
        self.assertIn("--count", stdout.getvalue())

    def testPlainCallable(self):
        def tool():
            return "plain"

        self.assertEqual(invoke(tool, []).response, "plain")

    def testNotInvocable(self):
        with self.assertRaises(TypeError):
            invoke(42)


class TestConcurrency(IsolatedAsyncioTestCase):
    """Independent parses against the same tree."""

    async def testParallelParsesDoNotShareState(self):
        @command
        async def tool(name=Flag("--name", mandatory=True), context=Context):
            await asyncio.sleep(0.01)
            return name, context.args["name"]

        first, second = await asyncio.gather(
            tool.parse_async(["--name", "a"]),
            tool.parse_async(["--name", "b"]),
        )
        self.assertEqual(first.response, ("a", "a"))
        self.assertEqual(second.response, ("b", "b"))


if __name__ == "__main__":
    unittest.main()
